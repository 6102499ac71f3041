# storefront/payment/routes.py
from flask import request

from . import bp
from ..errors import Forbidden, NotFound, ValidationFailed
from ..extensions import db
from ..model import Order
from ..services import order_lifecycle, payment_service
from ..utils.api import ok
from ..utils.decorators import current_user, is_staff, login_required, role_at_least
from ..utils.text import parse_opt_int

CALLBACK_SIGNATURE_HEADER = "X-Momo-Signature"


def _order_from(data, owner_only=True) -> Order:
    order_id = parse_opt_int(data.get("order_id"))
    if order_id is None:
        raise ValidationFailed("order_id is required")
    order = db.session.get(Order, order_id)
    if not order:
        raise NotFound("Order not found")
    if owner_only:
        user = current_user()
        if order.user_id != user.id and not is_staff(user):
            raise Forbidden("Not authorized to pay for this order")
    return order


@bp.post("/create-intent")
@login_required
def create_intent():
    data = request.get_json(silent=True) or {}
    order = _order_from(data)
    intent = payment_service.create_payment_intent(order)
    return ok("Payment intent created", intent)


@bp.post("/confirm")
@login_required
def confirm():
    data = request.get_json(silent=True) or {}
    intent_id = data.get("payment_intent_id")
    order = payment_service.order_for_intent(intent_id)
    user = current_user()
    if order.user_id != user.id and not is_staff(user):
        raise Forbidden("Not authorized to confirm this payment")
    order, status = payment_service.confirm_payment_intent(intent_id, order)
    msg = "Payment confirmed" if status == "succeeded" else f"Payment {status}"
    return ok(msg, {"status": status, "order": order.as_api()})


@bp.post("/mobile/create")
@login_required
def mobile_create():
    data = request.get_json(silent=True) or {}
    order = _order_from(data)
    tx = payment_service.create_mobile_payment(order, data.get("phone_number"), data.get("provider") or "mtn")
    return ok("Mobile payment initiated", tx)


@bp.post("/mobile/verify")
def mobile_verify():
    """Gateway callback, signed with the shared secret. Staff may settle a transaction by hand."""
    signature = request.headers.get(CALLBACK_SIGNATURE_HEADER)
    if signature or not is_staff(current_user(optional=True)):
        payment_service.check_callback_signature(request.get_data(), signature)
    data = request.get_json(silent=True) or {}
    order = payment_service.verify_mobile_payment(data.get("transaction_id"), data.get("status"))
    return ok(f"Payment {order.payment_status}", {"order": order.as_api()})


@bp.get("/methods")
@login_required
def payment_methods():
    country = request.args.get("country")
    if not country:
        saved = current_user().default_address()
        country = saved.country if saved else None
    return ok("payment methods", {"country": country, "methods": payment_service.available_methods(country)})


@bp.post("/refund")
@role_at_least("admin")
def refund():
    data = request.get_json(silent=True) or {}
    order = _order_from(data, owner_only=False)
    amount = data.get("amount")
    order_lifecycle.refund_payment(order, amount if amount not in (None, "") else None, data.get("note"))
    return ok("Refund recorded", {"order": order.as_api()})
