# --- storefront/model/coupon.py ---
from decimal import Decimal

from sqlalchemy.sql import func

from ..errors import BelowMinimumPurchase, CouponNotValid
from ..extensions import db
from ..utils.dates import iso, utcnow
from ..utils.money import D, ZERO, money_float

PERCENTAGE = "percentage"
FIXED = "fixed"
COUPON_TYPES = (PERCENTAGE, FIXED)


class Coupon(db.Model):
    __tablename__ = "coupon"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), unique=True, nullable=False, index=True)  # stored upper-case
    description = db.Column(db.String(255))

    discount_type = db.Column(db.String(16), nullable=False, default=PERCENTAGE)
    discount_value = db.Column(db.Numeric(12, 2), nullable=False)
    min_purchase = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    max_discount = db.Column(db.Numeric(12, 2), nullable=True)   # percentage type only

    start_date = db.Column(db.DateTime, nullable=False, index=True)
    end_date = db.Column(db.DateTime, nullable=False, index=True)

    usage_limit = db.Column(db.Integer, nullable=True)
    used_count = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    # declared, not enforced
    single_use = db.Column(db.Boolean, nullable=False, default=True)
    user_limit = db.Column(db.Integer, nullable=False, default=1)

    created_by = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=True)
    created_at = db.Column(db.DateTime, server_default=func.now())
    updated_at = db.Column(db.DateTime, onupdate=func.now(), server_default=func.now())

    @staticmethod
    def normalize_code(code) -> str:
        return (code or "").strip().upper()

    # --------- lifecycle ----------
    def status(self, now=None) -> str:
        """scheduled -> active -> expired, by the validity window only."""
        now = now or utcnow()
        if now < self.start_date:
            return "scheduled"
        if now > self.end_date:
            return "expired"
        return "active"

    @property
    def usage_exhausted(self) -> bool:
        return self.usage_limit is not None and int(self.used_count or 0) >= int(self.usage_limit)

    def is_active_now(self, now=None) -> bool:
        return bool(self.is_active) and self.status(now) == "active" and not self.usage_exhausted

    # --------- money ----------
    def calculate_discount(self, total_amount, now=None) -> Decimal:
        """Discount for ``total_amount``; always within [0, total_amount]."""
        total = D(total_amount)
        if total < D(self.min_purchase):
            raise BelowMinimumPurchase(D(self.min_purchase))
        if not self.is_active_now(now):
            raise CouponNotValid(code=self.code)

        value = D(self.discount_value)
        if self.discount_type == PERCENTAGE:
            discount = total * value / Decimal("100")
            if self.max_discount is not None and discount > D(self.max_discount):
                discount = D(self.max_discount)
        else:
            discount = value

        return max(ZERO, min(discount, total))

    def as_api(self, now=None):
        return {
            "id": self.id,
            "code": self.code,
            "description": self.description,
            "discount_type": self.discount_type,
            "discount_value": money_float(self.discount_value),
            "min_purchase": money_float(self.min_purchase),
            "max_discount": money_float(self.max_discount) if self.max_discount is not None else None,
            "start_date": iso(self.start_date),
            "end_date": iso(self.end_date),
            "usage_limit": self.usage_limit,
            "used_count": self.used_count,
            "is_active": self.is_active,
            "single_use": self.single_use,
            "status": self.status(now),
            "usage_exhausted": self.usage_exhausted,
            "is_active_now": self.is_active_now(now),
        }

    def as_public(self):
        return {
            "code": self.code,
            "description": self.description,
            "discount_type": self.discount_type,
            "discount_value": money_float(self.discount_value),
            "min_purchase": money_float(self.min_purchase),
            "max_discount": money_float(self.max_discount) if self.max_discount is not None else None,
        }
