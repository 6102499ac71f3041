# storefront/model/cart.py
from __future__ import annotations
from sqlalchemy.sql import func

from ..extensions import db
from ..utils.money import money_float


class Cart(db.Model):
    __tablename__ = "cart"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, unique=True, index=True)

    # applied coupon snapshot
    coupon_code = db.Column(db.String(64), nullable=True)
    coupon_discount = db.Column(db.Numeric(12, 2), nullable=True)

    created_at = db.Column(db.DateTime, server_default=func.now())
    updated_at = db.Column(db.DateTime, onupdate=func.now(), server_default=func.now())

    items = db.relationship(
        "CartItem",
        backref="cart",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="CartItem.id.asc()",
    )

    @property
    def item_count(self) -> int:
        return sum(int(i.quantity or 0) for i in self.items)

    def clear(self):
        # delete-orphan cascade removes the rows
        self.items.clear()
        self.coupon_code = None
        self.coupon_discount = None


class CartItem(db.Model):
    __tablename__ = "cart_item"

    id = db.Column(db.Integer, primary_key=True)
    cart_id = db.Column(db.Integer, db.ForeignKey("cart.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("product.id"), nullable=False, index=True)

    # selected variant (color/size/material/sku), None for the base product
    variant_sku = db.Column(db.String(64), nullable=True)
    variant_json = db.Column(db.JSON, nullable=True)

    quantity = db.Column(db.Integer, nullable=False, default=1)

    # display cache, recomputed on every cart read
    price = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    in_stock = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime, server_default=func.now())
    updated_at = db.Column(db.DateTime, onupdate=func.now(), server_default=func.now())

    product = db.relationship("Product", lazy="joined")

    def matches(self, product_id: int, variant_sku: str | None) -> bool:
        return self.product_id == product_id and (self.variant_sku or None) == (variant_sku or None)

    def as_api(self):
        p = self.product
        img = p.default_image() if p else None
        return {
            "id": self.id,
            "product_id": self.product_id,
            "name": p.name if p else None,
            "slug": p.slug if p else None,
            "image_url": img.image_url if img else None,
            "variant": self.variant_json,
            "quantity": self.quantity,
            "price": money_float(self.price),
            "total": money_float(self.total),
            "in_stock": self.in_stock,
        }
