import os
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal

from .utils.money import D


def _env_bool(name, default=False):
    v = os.getenv(name)
    if v is None:
        return default
    return v.strip().lower() in {"1", "true", "yes", "y", "on"}


class Config:
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    JSON_SORT_KEYS = False
    ENV = os.getenv("FLASK_ENV", "development")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    JWT_SECRET_KEY = os.environ.get("JWT_SECRET_KEY", "dev-secret-change-me")
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(hours=1)
    REFRESH_TOKEN_TTL_DAYS = int(os.getenv("REFRESH_TOKEN_TTL_DAYS", "7"))

    MAX_CONTENT_LENGTH = 5 * 1024 * 1024
    UPLOAD_FOLDER = os.getenv("UPLOAD_FOLDER", "static/uploads")

    # pricing
    FREE_SHIPPING_THRESHOLD = os.getenv("FREE_SHIPPING_THRESHOLD", "50")
    FLAT_SHIPPING_FEE = os.getenv("FLAT_SHIPPING_FEE", "10")
    TAX_RATE = os.getenv("TAX_RATE", "0.08")
    CURRENCY = os.getenv("CURRENCY", "USD")

    # payment gateway
    STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
    # shared secret the mobile-money gateway signs its callbacks with
    MOMO_CALLBACK_SECRET = os.getenv("MOMO_CALLBACK_SECRET")

    # outgoing mail (order confirmations); disabled when MAIL_SERVER is unset
    MAIL_SERVER = os.getenv("MAIL_SERVER")
    MAIL_PORT = int(os.getenv("MAIL_PORT", "587"))
    MAIL_USERNAME = os.getenv("MAIL_USERNAME")
    MAIL_PASSWORD = os.getenv("MAIL_PASSWORD")
    MAIL_USE_TLS = _env_bool("MAIL_USE_TLS", True)
    MAIL_DEFAULT_SENDER = os.getenv("MAIL_DEFAULT_SENDER", "no-reply@storefront.local")
    # links in verification and password-reset mails point here
    FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")
    VERIFY_TOKEN_TTL_HOURS = int(os.getenv("VERIFY_TOKEN_TTL_HOURS", "24"))
    RESET_TOKEN_TTL_MINUTES = int(os.getenv("RESET_TOKEN_TTL_MINUTES", "60"))

    @staticmethod
    def init_app(app):
        if app.config.get("SQLALCHEMY_DATABASE_URI"):
            return
        if not os.getenv("DATABASE_URL"):
            os.makedirs(app.instance_path, exist_ok=True)
            app.config["SQLALCHEMY_DATABASE_URI"] = f"sqlite:///{os.path.join(app.instance_path, 'app.db')}"
        else:
            app.config["SQLALCHEMY_DATABASE_URI"] = os.getenv("DATABASE_URL")


@dataclass(frozen=True)
class PricingConfig:
    """Shipping/tax settings handed to the cart and order services."""

    free_shipping_threshold: Decimal = Decimal("50")
    flat_shipping_fee: Decimal = Decimal("10")
    tax_rate: Decimal = Decimal("0.08")
    currency: str = "USD"

    @classmethod
    def from_app(cls, app) -> "PricingConfig":
        cfg = app.config
        return cls(
            free_shipping_threshold=D(cfg.get("FREE_SHIPPING_THRESHOLD", "50")),
            flat_shipping_fee=D(cfg.get("FLAT_SHIPPING_FEE", "10")),
            tax_rate=D(cfg.get("TAX_RATE", "0.08")),
            currency=(cfg.get("CURRENCY") or "USD").upper(),
        )
