# storefront/order/routes.py
from datetime import datetime, timedelta

from flask import current_app, request
from sqlalchemy import func

from . import bp
from ..config import PricingConfig
from ..errors import Forbidden, NotFound, ValidationFailed
from ..extensions import db
from ..model import Order
from ..model.order import ORDER_STATUSES
from ..services import cart_service, order_lifecycle, order_service
from ..services.notification_service import get_notifier
from ..utils.api import ok, paginate
from ..utils.decorators import current_user, is_staff, login_required, role_at_least
from ..utils.dates import require_iso8601
from ..utils.money import money_float


# ---- helpers ---------------------------------------------------------------
def _get_or_404(order_id) -> Order:
    order = db.session.get(Order, order_id)
    if not order:
        raise NotFound("Order not found")
    return order


def _shipping_address(data):
    if data.get("shipping_address"):
        return data["shipping_address"]
    saved = current_user().default_address()
    return saved.as_shipping() if saved else None


def _checkout_kwargs(data):
    return dict(
        shipping_address=_shipping_address(data),
        payment_method=data.get("payment_method"),
        shipping_method=data.get("shipping_method") or "standard",
        phone=data.get("phone"),
        notes=data.get("notes"),
        config=PricingConfig.from_app(current_app),
        notifier=get_notifier(),
    )


def _date_arg(name):
    raw = request.args.get(name)
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw)
    except ValueError:
        raise ValidationFailed(f"{name} must be YYYY-MM-DD")


# ---- customer --------------------------------------------------------------
@bp.post("")
@login_required
def create_order():
    data = request.get_json(silent=True) or {}
    raw_items = data.get("items")
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationFailed("No items in order")
    lines = [order_service.LineRequest.from_payload(raw) for raw in raw_items]

    order = order_service.place_order(
        current_user(), lines, coupon_code=data.get("coupon_code"), **_checkout_kwargs(data)
    )
    return ok("Order placed", {"order": order.as_api()}, 201)


@bp.post("/checkout")
@login_required
def checkout():
    data = request.get_json(silent=True) or {}
    user = current_user()
    cart = cart_service.get_or_create_cart(user.id)
    kwargs = _checkout_kwargs(data)
    if data.get("coupon_code"):
        kwargs["coupon_code"] = data["coupon_code"]
    order = order_service.checkout_cart(cart, user, **kwargs)
    return ok("Order placed", {"order": order.as_api()}, 201)


@bp.get("/mine")
@login_required
def my_orders():
    q = Order.query.filter_by(user_id=current_user().id).order_by(Order.created_at.desc(), Order.id.desc())
    page = paginate(q, request.args.get("page"), request.args.get("per_page"), lambda o: o.as_api())
    return ok("orders", {"meta": page["meta"], "orders": page["items"]})


@bp.get("/<int:order_id>")
@login_required
def get_order(order_id: int):
    order = _get_or_404(order_id)
    if order.user_id != current_user().id:
        raise NotFound("Order not found")
    return ok("order", {"order": order.as_api()})


@bp.put("/<int:order_id>/cancel")
@login_required
def cancel_order(order_id: int):
    user = current_user()
    order = _get_or_404(order_id)
    if order.user_id != user.id and not is_staff(user):
        raise Forbidden("Not authorized to cancel this order")
    data = request.get_json(silent=True) or {}
    order_lifecycle.cancel_order(order, data.get("reason"))
    return ok("Order cancelled", {"order": order.as_api()})


# ---- admin -----------------------------------------------------------------
@bp.get("")
@role_at_least("admin")
def list_orders():
    """
    Query params:
      - page, per_page
      - status=pending|confirmed|processing|shipped|delivered|cancelled|refunded
      - code=ORD-...
      - start=YYYY-MM-DD
      - end=YYYY-MM-DD (inclusive)
    """
    q = Order.query

    status = (request.args.get("status") or "").strip().lower()
    code = (request.args.get("code") or "").strip()
    start = _date_arg("start")
    end = _date_arg("end")

    if status:
        if status not in ORDER_STATUSES:
            raise ValidationFailed(f"status must be one of {', '.join(ORDER_STATUSES)}")
        q = q.filter(Order.order_status == status)
    if code:
        q = q.filter(Order.order_number == code)
    if start:
        q = q.filter(Order.created_at >= start)
    if end:
        # make end inclusive for the whole day
        q = q.filter(Order.created_at < end + timedelta(days=1))

    q = q.order_by(Order.created_at.desc(), Order.id.desc())
    page = paginate(q, request.args.get("page"), request.args.get("per_page"), lambda o: o.as_api())

    revenue = db.session.query(func.coalesce(func.sum(Order.total_price), 0)).filter(
        Order.payment_status == "paid"
    ).scalar()
    stats = {
        "total_orders": Order.query.count(),
        "total_revenue": money_float(revenue),
        "pending_orders": Order.query.filter_by(order_status="pending").count(),
        "delivered_orders": Order.query.filter_by(order_status="delivered").count(),
    }
    return ok("orders", {"meta": page["meta"], "orders": page["items"], "stats": stats})


@bp.get("/admin/<int:order_id>")
@role_at_least("admin")
def admin_get_order(order_id: int):
    order = _get_or_404(order_id)
    return ok("order", {"order": order.as_api(), "user": order.user.as_dict() if order.user else None})


@bp.put("/<int:order_id>/status")
@role_at_least("admin")
def update_status(order_id: int):
    data = request.get_json(silent=True) or {}
    if not data.get("status"):
        raise ValidationFailed("status is required")
    order = order_lifecycle.update_status(
        _get_or_404(order_id),
        data.get("status"),
        note=data.get("note"),
        tracking_number=data.get("tracking_number"),
        carrier=data.get("carrier"),
        estimated_delivery=require_iso8601(data, "estimated_delivery"),
    )
    return ok("Order status updated", {"order": order.as_api()})
