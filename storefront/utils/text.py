# storefront/utils/text.py
import random
import re


def slugify(text):
    text = (text or "").strip().lower()
    text = re.sub(r"[^a-z0-9]+", "-", text)
    return text.strip("-")


def generate_sku(product_name: str, variant: str = "") -> str:
    prefix = re.sub(r"[^A-Za-z0-9]", "", product_name or "")[:3].upper() or "SKU"
    suffix = random.randint(1000, 9999)
    variant_code = f"-{variant[:3].upper()}" if variant else ""
    return f"{prefix}{suffix}{variant_code}"


def parse_bool(v, default=False):
    if v is None:
        return default
    if isinstance(v, bool):
        return v
    return str(v).strip().lower() in {"1", "true", "yes", "y", "on"}


def parse_opt_float(v):
    if v is None:
        return None
    if isinstance(v, str) and v.strip() == "":
        return None
    try:
        return float(v)
    except (TypeError, ValueError):
        return None


def parse_opt_int(v):
    if v is None:
        return None
    if isinstance(v, str) and v.strip().lower() in {"", "null"}:
        return None
    try:
        return int(v)
    except (TypeError, ValueError):
        return None
