# storefront/services/order_service.py
"""Checkout: turns requested lines into a priced, immutable order.

All lines are validated against the live catalog before any stock is
touched. Stock is then taken with conditional UPDATEs so two checkouts
racing for the last units cannot both succeed; a lost race rolls back the
whole order.
"""
from __future__ import annotations
import logging
import random
from dataclasses import dataclass

from sqlalchemy import update

from ..config import PricingConfig
from ..errors import DuplicateKey, InsufficientStock, NotFound, ValidationFailed
from ..extensions import db
from ..model import Cart, Order, OrderItem, Product, ProductVariant, User
from ..model.order import PAYMENT_METHODS, SHIPPING_METHODS
from ..utils.dates import utcnow
from ..utils.money import ZERO, round_money
from . import coupon_service
from .pricing import LineQuote, resolve_line, summarize

logger = logging.getLogger(__name__)

ORDER_NUMBER_ATTEMPTS = 10


@dataclass(frozen=True)
class LineRequest:
    product_id: int
    quantity: int
    variant_sku: str | None = None

    @classmethod
    def from_payload(cls, raw: dict) -> "LineRequest":
        if not isinstance(raw, dict):
            raise ValidationFailed("each item must be an object")
        product_id = raw.get("product_id") or raw.get("product")
        if not product_id:
            raise ValidationFailed("product_id is required")
        try:
            qty = int(raw.get("quantity", 1))
        except (TypeError, ValueError):
            raise ValidationFailed("quantity must be an integer")
        if qty < 1:
            raise ValidationFailed("quantity must be >= 1")
        variant = raw.get("variant") or {}
        sku = raw.get("variant_sku") or (variant.get("sku") if isinstance(variant, dict) else None)
        return cls(product_id=int(product_id), quantity=qty, variant_sku=sku or None)


def generate_order_number(now=None) -> str:
    now = now or utcnow()
    return f"ORD-{now:%Y%m%d}-{random.randint(1000, 9999)}"


def _allocate_order_number() -> str:
    for _ in range(ORDER_NUMBER_ATTEMPTS):
        number = generate_order_number()
        if not db.session.query(Order.id).filter_by(order_number=number).first():
            return number
    raise DuplicateKey("Could not allocate a unique order number")


def _quote_lines(lines: list[LineRequest], now=None) -> list[LineQuote]:
    """Price every line and check stock; no writes happen here."""
    quotes = []
    wanted: dict[tuple, int] = {}
    for req in lines:
        product = db.session.get(Product, req.product_id)
        if not product or not product.is_active:
            raise NotFound(f"Product {req.product_id} not found")
        quote = resolve_line(product, req.variant_sku, req.quantity, now)

        # the same product/variant may appear on several lines
        key = (product.id, quote.variant.id if quote.variant else None)
        wanted[key] = wanted.get(key, 0) + req.quantity
        if wanted[key] > quote.available:
            raise InsufficientStock(product.id, product.name, wanted[key], quote.available)
        quotes.append(quote)
    return quotes


def _take_stock(quote: LineQuote):
    qty = quote.quantity
    product = quote.product
    if quote.variant is not None:
        res = db.session.execute(
            update(ProductVariant)
            .where(ProductVariant.id == quote.variant.id, ProductVariant.stock >= qty)
            .values(stock=ProductVariant.stock - qty)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            raise InsufficientStock(product.id, product.name, qty, quote.available)
        # aggregate follows the variant
        db.session.execute(
            update(Product)
            .where(Product.id == product.id)
            .values(stock=Product.stock - qty, sold_count=Product.sold_count + qty)
            .execution_options(synchronize_session=False)
        )
        db.session.expire(quote.variant, ["stock"])
    else:
        res = db.session.execute(
            update(Product)
            .where(Product.id == product.id, Product.stock >= qty)
            .values(stock=Product.stock - qty, sold_count=Product.sold_count + qty)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            raise InsufficientStock(product.id, product.name, qty, quote.available)
    db.session.expire(product, ["stock", "sold_count"])


def _snapshot(quote: LineQuote) -> OrderItem:
    product = quote.product
    img = product.default_image()
    return OrderItem(
        product_id=product.id,
        name=product.name,
        image_url=img.image_url if img else None,
        sku=quote.sku,
        variant_sku=quote.variant.sku if quote.variant else None,
        variant_json=quote.variant.descriptor() if quote.variant else None,
        price=round_money(quote.unit_price),
        quantity=quote.quantity,
        total=round_money(quote.line_total),
    )


def place_order(
    user: User,
    lines: list[LineRequest],
    *,
    shipping_address: dict,
    payment_method: str,
    config: PricingConfig,
    coupon_code: str | None = None,
    shipping_method: str = "standard",
    phone: str | None = None,
    notes: str | None = None,
    notifier=None,
    now=None,
) -> Order:
    if not lines:
        raise ValidationFailed("No items in order")
    if not shipping_address:
        raise ValidationFailed("shipping_address is required")
    payment_method = (payment_method or "").lower().strip()
    if payment_method not in PAYMENT_METHODS:
        raise ValidationFailed(f"payment_method must be one of {', '.join(PAYMENT_METHODS)}")
    shipping_method = (shipping_method or "standard").lower().strip()
    if shipping_method not in SHIPPING_METHODS:
        raise ValidationFailed(f"shipping_method must be one of {', '.join(SHIPPING_METHODS)}")

    try:
        quotes = _quote_lines(lines, now)
        raw_items_price = sum((q.line_total for q in quotes), ZERO)
        summary = summarize(raw_items_price, config)

        coupon = None
        discount = ZERO
        if coupon_code:
            coupon, discount = coupon_service.quote_discount(coupon_code, summary.subtotal, now)
            discount = round_money(discount)

        for q in quotes:
            _take_stock(q)
        if coupon is not None:
            coupon_service.redeem(coupon)

        order = Order(
            order_number=_allocate_order_number(),
            user_id=user.id,
            items_price=summary.subtotal,
            shipping_price=summary.shipping,
            tax_price=summary.tax,
            total_price=max(ZERO, summary.total - discount),
            currency=config.currency,
            coupon_code=coupon.code if coupon else None,
            coupon_discount=discount,
            shipping_address=shipping_address,
            shipping_phone=phone,
            shipping_method=shipping_method,
            payment_method=payment_method,
            payment_status="pending",
            notes=notes,
        )
        order.items = [_snapshot(q) for q in quotes]
        order.record_status("pending", "Order placed")
        db.session.add(order)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(f"order {order.order_number} placed by user {user.id}: total {order.total_price}")

    if notifier is not None:
        try:
            notifier.deliver(order, user)
        except Exception:
            db.session.rollback()
            logger.exception(f"order {order.order_number}: confirmation notification failed")
    return order


def lines_from_cart(cart: Cart) -> list[LineRequest]:
    return [LineRequest(product_id=i.product_id, quantity=i.quantity, variant_sku=i.variant_sku) for i in cart.items]


def checkout_cart(cart: Cart, user: User, **kwargs) -> Order:
    """Place an order for the cart's lines, then empty the cart."""
    if not cart.items:
        raise ValidationFailed("cart is empty")
    kwargs.setdefault("coupon_code", cart.coupon_code)
    order = place_order(user, lines_from_cart(cart), **kwargs)
    cart.clear()
    db.session.commit()
    return order
