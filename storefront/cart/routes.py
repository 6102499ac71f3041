# storefront/cart/routes.py
from flask import current_app, request

from . import bp
from ..config import PricingConfig
from ..errors import ValidationFailed
from ..services import cart_service
from ..utils.api import ok
from ..utils.decorators import current_user, login_required


# ---- helpers ---------------------------------------------------------------
def _my_cart():
    return cart_service.get_or_create_cart(current_user().id)


def _view(cart, msg="cart", status=200):
    totals = cart_service.recalc_cart(cart, PricingConfig.from_app(current_app))
    return ok(msg, {"cart": totals.as_api(cart)}, status)


# ---- routes ----------------------------------------------------------------
@bp.get("")
@login_required
def get_cart():
    return _view(_my_cart())


@bp.post("/items")
@login_required
def add_item():
    data = request.get_json(silent=True) or {}
    if not data.get("product_id"):
        raise ValidationFailed("product_id is required")
    cart = _my_cart()
    cart_service.add_item(
        cart,
        data.get("product_id"),
        quantity=data.get("quantity", 1),
        variant_sku=data.get("variant_sku"),
    )
    return _view(cart, "Item added to cart", 201)


@bp.patch("/items/<int:item_id>")
@login_required
def update_item(item_id):
    data = request.get_json(silent=True) or {}
    if "quantity" not in data:
        raise ValidationFailed("quantity is required")
    cart = _my_cart()
    item = cart_service.update_item(cart, item_id, data.get("quantity"))
    return _view(cart, "Cart updated" if item else "Item removed from cart")


@bp.delete("/items/<int:item_id>")
@login_required
def remove_item(item_id):
    cart = _my_cart()
    cart_service.remove_item(cart, item_id)
    return _view(cart, "Item removed from cart")


@bp.delete("")
@login_required
def clear_cart():
    cart = _my_cart()
    cart_service.clear_cart(cart)
    return _view(cart, "Cart cleared")


@bp.post("/coupon")
@login_required
def apply_coupon():
    data = request.get_json(silent=True) or {}
    cart = _my_cart()
    totals = cart_service.apply_coupon(cart, data.get("code"), PricingConfig.from_app(current_app))
    return ok("Coupon applied", {"cart": totals.as_api(cart)})


@bp.delete("/coupon")
@login_required
def remove_coupon():
    cart = _my_cart()
    cart_service.remove_coupon(cart)
    return _view(cart, "Coupon removed")
