from ..extensions import db
from ..utils.dates import iso, utcnow
from ..utils.money import money_float

ORDER_STATUSES = ("pending", "confirmed", "processing", "shipped", "delivered", "cancelled", "refunded")
PAYMENT_STATUSES = ("pending", "paid", "failed", "refunded", "partially_refunded")
PAYMENT_METHODS = ("stripe", "momo", "itecpay", "cod")
SHIPPING_METHODS = ("standard", "express", "pickup")


class Order(db.Model):
    __tablename__ = "orders"

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(32), unique=True, nullable=False, index=True)  # e.g. "ORD-20251022-4821"
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    order_status = db.Column(db.String(20), nullable=False, default="pending", index=True)

    # Money snapshot
    items_price = db.Column(db.Numeric(12, 2), nullable=False)
    tax_price = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    shipping_price = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total_price = db.Column(db.Numeric(12, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="USD")
    coupon_code = db.Column(db.String(64))
    coupon_discount = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    # Shipping
    shipping_address = db.Column(db.JSON)
    shipping_phone = db.Column(db.String(32))
    shipping_method = db.Column(db.String(16), nullable=False, default="standard")
    tracking_number = db.Column(db.String(64), index=True)
    carrier = db.Column(db.String(64))
    estimated_delivery = db.Column(db.DateTime)
    delivered_at = db.Column(db.DateTime)

    # Payment
    payment_method = db.Column(db.String(16), nullable=False)
    payment_status = db.Column(db.String(20), nullable=False, default="pending", index=True)
    transaction_id = db.Column(db.String(128))
    amount_paid = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    amount_refunded = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    payment_date = db.Column(db.DateTime)
    stripe_payment_intent_id = db.Column(db.String(128), index=True)
    momo_transaction_id = db.Column(db.String(64), index=True)

    notes = db.Column(db.String(1000))
    cancelled_at = db.Column(db.DateTime)
    cancelled_reason = db.Column(db.String(500))

    created_at = db.Column(db.DateTime, default=utcnow, index=True)

    user = db.relationship("User", lazy="joined")
    items = db.relationship(
        "OrderItem",
        backref="order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="OrderItem.id.asc()",
    )
    status_history = db.relationship(
        "OrderStatusHistory",
        backref="order",
        cascade="all",
        lazy="selectin",
        order_by="OrderStatusHistory.id.asc()",
    )

    def record_status(self, status: str, note: str | None = None):
        """Set order_status and append the audit entry."""
        self.order_status = status
        self.status_history.append(OrderStatusHistory(status=status, note=note, timestamp=utcnow()))

    @property
    def total_items(self) -> int:
        return sum(int(i.quantity) for i in self.items)

    @property
    def is_paid(self) -> bool:
        return self.payment_status == "paid"

    def as_api(self):
        return {
            "id": self.id,
            "order_number": self.order_number,
            "user_id": self.user_id,
            "order_status": self.order_status,
            "items": [i.as_api() for i in self.items],
            "total_items": self.total_items,
            "money": {
                "items_price": money_float(self.items_price),
                "shipping_price": money_float(self.shipping_price),
                "tax_price": money_float(self.tax_price),
                "total_price": money_float(self.total_price),
                "currency": self.currency,
            },
            "coupon": {"code": self.coupon_code, "discount": money_float(self.coupon_discount)}
            if self.coupon_code else None,
            "shipping": {
                "address": self.shipping_address,
                "phone": self.shipping_phone,
                "method": self.shipping_method,
                "cost": money_float(self.shipping_price),
                "tracking_number": self.tracking_number,
                "carrier": self.carrier,
                "estimated_delivery": iso(self.estimated_delivery),
                "delivered_at": iso(self.delivered_at),
            },
            "payment": {
                "method": self.payment_method,
                "status": self.payment_status,
                "transaction_id": self.transaction_id,
                "amount_paid": money_float(self.amount_paid),
                "amount_refunded": money_float(self.amount_refunded),
                "payment_date": iso(self.payment_date),
            },
            "status_history": [h.as_api() for h in self.status_history],
            "is_paid": self.is_paid,
            "is_delivered": self.order_status == "delivered",
            "is_cancelled": self.order_status == "cancelled",
            "notes": self.notes,
            "cancelled_at": iso(self.cancelled_at),
            "cancelled_reason": self.cancelled_reason,
            "created_at": iso(self.created_at),
        }


class OrderItem(db.Model):
    __tablename__ = "order_items"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    # copied from the catalog at checkout; never re-read from Product
    product_id = db.Column(db.Integer, index=True)
    name = db.Column(db.String(255), nullable=False)
    image_url = db.Column(db.String(1024))
    sku = db.Column(db.String(64), nullable=False)
    variant_sku = db.Column(db.String(64))
    variant_json = db.Column(db.JSON)

    price = db.Column(db.Numeric(12, 2), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    total = db.Column(db.Numeric(12, 2), nullable=False)

    def as_api(self):
        return {
            "product_id": self.product_id,
            "name": self.name,
            "image_url": self.image_url,
            "sku": self.sku,
            "variant": self.variant_json,
            "price": money_float(self.price),
            "quantity": self.quantity,
            "total": money_float(self.total),
        }


class OrderStatusHistory(db.Model):
    __tablename__ = "order_status_history"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    status = db.Column(db.String(20), nullable=False)
    note = db.Column(db.String(500))
    timestamp = db.Column(db.DateTime, nullable=False, default=utcnow)

    def as_api(self):
        return {"status": self.status, "note": self.note, "timestamp": iso(self.timestamp)}
