# storefront/services/order_lifecycle.py
from __future__ import annotations
import logging

from sqlalchemy import update

from ..errors import InvalidTransition, ValidationFailed
from ..extensions import db
from ..model import Order, Product, ProductVariant
from ..model.order import ORDER_STATUSES
from ..utils.dates import utcnow
from ..utils.money import D, ZERO, round_money

logger = logging.getLogger(__name__)

# happy path, one step at a time; cancel/refund have their own entry points
NEXT_STATUS = {
    "pending": {"confirmed", "cancelled"},
    "confirmed": {"processing", "cancelled"},
    "processing": {"shipped"},
    "shipped": {"delivered"},
}
CANCELLABLE = ("pending", "confirmed")
REFUNDABLE_PAYMENT = ("paid", "partially_refunded")


def update_status(order: Order, status: str, note: str | None = None,
                  tracking_number: str | None = None, carrier: str | None = None,
                  estimated_delivery=None) -> Order:
    status = (status or "").lower().strip()
    if status not in ORDER_STATUSES:
        raise ValidationFailed(f"status must be one of {', '.join(ORDER_STATUSES)}")
    if status == "cancelled":
        return cancel_order(order, note)
    if status not in NEXT_STATUS.get(order.order_status, ()):
        raise InvalidTransition(order.order_status, status)

    if tracking_number:
        order.tracking_number = tracking_number
    if carrier:
        order.carrier = carrier
    if estimated_delivery:
        order.estimated_delivery = estimated_delivery
    if status == "delivered":
        order.delivered_at = utcnow()

    previous = order.order_status
    order.record_status(status, note or "Status updated")
    db.session.commit()
    logger.info(f"order {order.order_number}: {previous} -> {status}")
    return order


def _restore_stock(order: Order):
    """Exact inverse of the checkout decrement; unconditional addition."""
    for item in order.items:
        product = db.session.get(Product, item.product_id) if item.product_id else None
        if product is None:
            logger.warning(f"order {order.order_number}: product {item.product_id} gone, stock not restored")
            continue
        qty = int(item.quantity)
        variant = product.find_variant(item.variant_sku) if item.variant_sku else None
        if variant is not None:
            db.session.execute(
                update(ProductVariant)
                .where(ProductVariant.id == variant.id)
                .values(stock=ProductVariant.stock + qty)
                .execution_options(synchronize_session=False)
            )
            db.session.expire(variant, ["stock"])
        if variant is not None or not item.variant_sku:
            db.session.execute(
                update(Product)
                .where(Product.id == product.id)
                .values(stock=Product.stock + qty, sold_count=Product.sold_count - qty)
                .execution_options(synchronize_session=False)
            )
        else:
            db.session.execute(
                update(Product)
                .where(Product.id == product.id)
                .values(sold_count=Product.sold_count - qty)
                .execution_options(synchronize_session=False)
            )
        db.session.expire(product, ["stock", "sold_count"])


def cancel_order(order: Order, reason: str | None = None) -> Order:
    if order.order_status not in CANCELLABLE:
        raise InvalidTransition(order.order_status, "cancelled", "Order cannot be cancelled at this stage")
    try:
        _restore_stock(order)
        order.cancelled_at = utcnow()
        order.cancelled_reason = reason
        order.record_status("cancelled", reason or "Cancelled")
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info(f"order {order.order_number} cancelled: {reason}")
    return order


# ---- payment sub-status -----------------------------------------------------

def confirm_payment(order: Order, transaction_id: str | None, amount=None) -> Order:
    """Gateway confirmed the charge: mark paid and confirm a pending order."""
    if order.payment_status == "paid":
        return order
    if order.payment_status in ("refunded", "partially_refunded"):
        raise InvalidTransition(order.payment_status, "paid", "Payment already refunded")
    order.payment_status = "paid"
    order.payment_date = utcnow()
    order.amount_paid = round_money(amount if amount is not None else order.total_price)
    if transaction_id:
        order.transaction_id = transaction_id
    if order.order_status == "pending":
        order.record_status("confirmed", "Payment received")
    db.session.commit()
    logger.info(f"order {order.order_number}: payment confirmed ({transaction_id})")
    return order


def fail_payment(order: Order, reason: str | None = None) -> Order:
    if order.payment_status != "pending":
        raise InvalidTransition(order.payment_status, "failed", f"Payment is already {order.payment_status}")
    order.payment_status = "failed"
    db.session.commit()
    logger.info(f"order {order.order_number}: payment failed ({reason})")
    return order


def refund_payment(order: Order, amount=None, note: str | None = None) -> Order:
    if order.payment_status not in REFUNDABLE_PAYMENT:
        raise InvalidTransition(order.payment_status, "refunded", "Only paid orders can be refunded")

    remaining = D(order.amount_paid) - D(order.amount_refunded)
    amount = remaining if amount is None else round_money(amount)
    if amount <= ZERO or amount > remaining:
        raise ValidationFailed(f"refund amount must be > 0 and <= {remaining:.2f}")

    order.amount_refunded = round_money(D(order.amount_refunded) + amount)
    if D(order.amount_refunded) >= D(order.amount_paid):
        order.payment_status = "refunded"
        if order.order_status != "refunded":
            order.record_status("refunded", note or "Payment refunded")
    else:
        order.payment_status = "partially_refunded"
    db.session.commit()
    logger.info(f"order {order.order_number}: refunded {amount}, payment {order.payment_status}")
    return order
