# storefront/services/coupon_service.py
import logging
from decimal import Decimal, InvalidOperation

from sqlalchemy import or_, update

from ..errors import CouponNotValid, DuplicateKey, NotFound, ValidationFailed
from ..extensions import db
from ..model import Coupon
from ..model.coupon import COUPON_TYPES, PERCENTAGE
from ..utils.dates import require_iso8601, utcnow
from ..utils.money import D
from ..utils.text import parse_bool

logger = logging.getLogger(__name__)


def find_by_code(code) -> Coupon:
    code = Coupon.normalize_code(code)
    if not code:
        raise ValidationFailed("code is required")
    coupon = Coupon.query.filter_by(code=code).first()
    if not coupon:
        raise NotFound("Coupon not found")
    return coupon


def quote_discount(code, total_amount, now=None):
    """Dry-run: (coupon, discount) for ``total_amount``. Never touches used_count."""
    coupon = find_by_code(code)
    return coupon, coupon.calculate_discount(total_amount, now)


def redeem(coupon: Coupon):
    """Count one use; the guard keeps used_count within usage_limit under concurrency.

    Runs inside the caller's transaction; the caller commits.
    """
    res = db.session.execute(
        update(Coupon)
        .where(
            Coupon.id == coupon.id,
            Coupon.is_active.is_(True),
            or_(Coupon.usage_limit.is_(None), Coupon.used_count < Coupon.usage_limit),
        )
        .values(used_count=Coupon.used_count + 1)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        raise CouponNotValid("Coupon usage limit reached", code=coupon.code)
    db.session.expire(coupon, ["used_count"])
    logger.info(f"coupon {coupon.code} redeemed")


def active_coupons(now=None):
    now = now or utcnow()
    return (
        Coupon.query.filter(
            Coupon.is_active.is_(True),
            Coupon.start_date <= now,
            Coupon.end_date >= now,
            or_(Coupon.usage_limit.is_(None), Coupon.used_count < Coupon.usage_limit),
        )
        .order_by(Coupon.end_date.asc())
        .all()
    )


# ---- admin payloads ---------------------------------------------------------

def _decimal(data, key, default=None, required=False):
    raw = data.get(key)
    if raw in (None, ""):
        if required:
            raise ValidationFailed(f"{key} is required")
        return default
    try:
        return Decimal(str(raw))
    except (InvalidOperation, ValueError):
        raise ValidationFailed(f"{key} must be numeric")


def _opt_int(data, key):
    raw = data.get(key)
    if raw in (None, ""):
        return None
    try:
        v = int(raw)
    except (TypeError, ValueError):
        raise ValidationFailed(f"{key} must be an integer")
    if v < 0:
        raise ValidationFailed(f"{key} must be >= 0")
    return v


def _check_rules(c: Coupon):
    if c.discount_type not in COUPON_TYPES:
        raise ValidationFailed("discount_type must be 'percentage' or 'fixed'")
    value = D(c.discount_value)
    if value <= 0:
        raise ValidationFailed("discount_value must be > 0")
    if c.discount_type == PERCENTAGE and value > 100:
        raise ValidationFailed("percentage discount must be <= 100")
    if D(c.min_purchase) < 0:
        raise ValidationFailed("min_purchase must be >= 0")
    if c.max_discount is not None and D(c.max_discount) < 0:
        raise ValidationFailed("max_discount must be >= 0")
    if c.start_date >= c.end_date:
        raise ValidationFailed("start_date must be before end_date")


def _ensure_code_free(code, exclude_id=None):
    q = Coupon.query.filter(Coupon.code == code)
    if exclude_id is not None:
        q = q.filter(Coupon.id != exclude_id)
    if q.first():
        raise DuplicateKey("Coupon code already exists", field="code")


def _parse_dates(data, required):
    try:
        start = require_iso8601(data, "start_date", required=required)
        end = require_iso8601(data, "end_date", required=required)
    except ValueError as e:
        raise ValidationFailed(str(e))
    return start, end


def create_coupon_from_payload(data: dict, created_by=None) -> Coupon:
    code = Coupon.normalize_code(data.get("code"))
    if not code:
        raise ValidationFailed("code is required")
    start, end = _parse_dates(data, required=True)

    c = Coupon(
        code=code,
        description=data.get("description"),
        discount_type=(data.get("discount_type") or PERCENTAGE).lower().strip(),
        discount_value=_decimal(data, "discount_value", required=True),
        min_purchase=_decimal(data, "min_purchase", default=Decimal("0")),
        max_discount=_decimal(data, "max_discount"),
        start_date=start,
        end_date=end,
        usage_limit=_opt_int(data, "usage_limit"),
        is_active=parse_bool(data.get("is_active"), True),
        single_use=parse_bool(data.get("single_use"), True),
        created_by=created_by,
    )
    _check_rules(c)
    _ensure_code_free(code)

    db.session.add(c)
    db.session.commit()
    logger.info(f"coupon {c.code} created")
    return c


FLAGS = ("is_active", "single_use")


def update_coupon_from_payload(c: Coupon, data: dict) -> Coupon:
    try:
        _apply_update(c, data)
    except (ValidationFailed, DuplicateKey):
        db.session.rollback()
        raise
    db.session.commit()
    return c


def _apply_update(c: Coupon, data: dict):
    if "code" in data:
        code = Coupon.normalize_code(data.get("code"))
        if not code:
            raise ValidationFailed("code is required")
        if code != c.code:
            _ensure_code_free(code, exclude_id=c.id)
        c.code = code
    if "description" in data:
        c.description = data.get("description")
    for key in FLAGS:
        if key in data:
            setattr(c, key, parse_bool(data[key], getattr(c, key)))
    if "discount_type" in data:
        c.discount_type = (data.get("discount_type") or "").lower().strip()
    if "discount_value" in data:
        c.discount_value = _decimal(data, "discount_value", required=True)
    if "min_purchase" in data:
        c.min_purchase = _decimal(data, "min_purchase", default=Decimal("0"))
    if "max_discount" in data:
        c.max_discount = _decimal(data, "max_discount")
    if "usage_limit" in data:
        c.usage_limit = _opt_int(data, "usage_limit")
    start, end = _parse_dates(data, required=False)
    if start:
        c.start_date = start
    if end:
        c.end_date = end

    _check_rules(c)
