# storefront/services/cart_service.py
from __future__ import annotations
import logging
from dataclasses import dataclass
from decimal import Decimal

from ..config import PricingConfig
from ..errors import (
    BelowMinimumPurchase, CouponNotValid, InsufficientStock, NotFound,
    ValidationFailed, VariantNotFound,
)
from ..extensions import db
from ..model import Cart, CartItem, Coupon, Product
from ..utils.money import ZERO, money_float, round_money
from .coupon_service import find_by_code
from .pricing import (
    PriceSummary, available_stock, resolve_line, resolve_variant, summarize, unit_price,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CartTotals:
    summary: PriceSummary
    total_items: int
    coupon: dict | None
    discount: Decimal

    @property
    def payable(self) -> Decimal:
        return max(ZERO, self.summary.total - self.discount)

    def as_api(self, cart: Cart):
        return {
            "id": cart.id,
            "items": [i.as_api() for i in cart.items],
            "summary": {
                **self.summary.as_api(),
                "total_items": self.total_items,
                "discount": money_float(self.discount),
                "payable": money_float(self.payable),
            },
            "coupon": self.coupon,
        }


def get_or_create_cart(user_id: int) -> Cart:
    cart = Cart.query.filter_by(user_id=user_id).first()
    if not cart:
        cart = Cart(user_id=user_id)
        db.session.add(cart)
        db.session.commit()
    return cart


def recalc_cart(cart: Cart, config: PricingConfig, now=None) -> CartTotals:
    """Re-price every line against the live catalog and rebuild the summary.

    Cached price/total/in_stock on the items are overwritten; inactive or
    deleted products stay in the cart but are left out of the subtotal.
    """
    raw_subtotal = ZERO
    total_items = 0

    for item in cart.items:
        product = item.product
        if product is None or not product.is_active:
            item.in_stock = False
            continue
        try:
            quote = resolve_line(product, item.variant_sku, item.quantity, now)
        except VariantNotFound:
            logger.info(f"cart {cart.id}: variant {item.variant_sku} no longer exists")
            item.in_stock = False
            continue

        item.price = round_money(quote.unit_price)
        item.total = round_money(quote.line_total)
        item.in_stock = quote.in_stock
        raw_subtotal += quote.line_total
        total_items += quote.quantity

    summary = summarize(raw_subtotal, config)
    coupon_view, discount = _coupon_view(cart, summary.subtotal, now)
    db.session.commit()
    return CartTotals(summary=summary, total_items=total_items, coupon=coupon_view, discount=discount)


def _coupon_view(cart: Cart, subtotal, now=None):
    if not cart.coupon_code:
        return None, ZERO

    coupon = Coupon.query.filter_by(code=cart.coupon_code).first()
    reason = None
    discount = ZERO
    if coupon is None:
        reason = "Coupon not found"
    else:
        try:
            discount = round_money(coupon.calculate_discount(subtotal, now))
        except (CouponNotValid, BelowMinimumPurchase) as e:
            reason = e.message

    cart.coupon_discount = discount
    return {
        "code": cart.coupon_code,
        "discount": money_float(discount),
        "valid": reason is None,
        "reason": reason,
    }, discount


def _find_item(cart: Cart, item_id: int) -> CartItem:
    item = next((i for i in cart.items if i.id == item_id), None)
    if not item:
        raise NotFound("Cart item not found")
    return item


def _active_product(product_id) -> Product:
    product = db.session.get(Product, product_id) if product_id else None
    if not product or not product.is_active:
        raise NotFound("Product not found")
    return product


def add_item(cart: Cart, product_id, quantity=1, variant_sku=None, now=None) -> CartItem:
    """Add to the cart, merging into an existing (product, variant) line."""
    try:
        qty = int(quantity)
    except (TypeError, ValueError):
        raise ValidationFailed("quantity must be an integer")
    if qty < 1:
        raise ValidationFailed("quantity must be >= 1")

    product = _active_product(product_id)
    variant = resolve_variant(product, variant_sku)
    sku = variant.sku if variant else None
    available = available_stock(product, variant)

    item = next((i for i in cart.items if i.matches(product.id, sku)), None)
    new_qty = (item.quantity if item else 0) + qty
    if new_qty > available:
        raise InsufficientStock(product.id, product.name, new_qty, available)

    price = unit_price(product, variant, now)
    if item:
        item.quantity = new_qty
    else:
        item = CartItem(
            product=product,
            variant_sku=sku,
            variant_json=variant.descriptor() if variant else None,
            quantity=new_qty,
        )
        cart.items.append(item)
    item.price = round_money(price)
    item.total = round_money(price * new_qty)
    item.in_stock = True

    db.session.commit()
    return item


def update_item(cart: Cart, item_id: int, quantity) -> CartItem | None:
    """Set a line's quantity; zero or less removes the line and returns None."""
    item = _find_item(cart, item_id)
    try:
        qty = int(quantity)
    except (TypeError, ValueError):
        raise ValidationFailed("quantity must be an integer")

    if qty <= 0:
        cart.items.remove(item)
        db.session.commit()
        return None

    product = item.product
    if product is None or not product.is_active:
        raise NotFound("Product is no longer available")
    variant = resolve_variant(product, item.variant_sku)
    available = available_stock(product, variant)
    if qty > available:
        raise InsufficientStock(product.id, product.name, qty, available)

    item.quantity = qty
    item.total = round_money(item.price * qty)
    db.session.commit()
    return item


def remove_item(cart: Cart, item_id: int):
    item = _find_item(cart, item_id)
    cart.items.remove(item)
    db.session.commit()


def clear_cart(cart: Cart):
    cart.clear()
    db.session.commit()


def apply_coupon(cart: Cart, code, config: PricingConfig, now=None) -> CartTotals:
    totals = recalc_cart(cart, config, now)
    coupon = find_by_code(code)
    discount = coupon.calculate_discount(totals.summary.subtotal, now)
    cart.coupon_code = coupon.code
    cart.coupon_discount = round_money(discount)
    db.session.commit()
    return recalc_cart(cart, config, now)


def remove_coupon(cart: Cart):
    cart.coupon_code = None
    cart.coupon_discount = None
    db.session.commit()
