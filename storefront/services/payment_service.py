# storefront/services/payment_service.py
import hashlib
import hmac
import logging
import random
import string
import time
from decimal import Decimal

import stripe
from flask import current_app

from ..errors import NotFound, StoreError, Unauthorized, ValidationFailed
from ..extensions import db
from ..model import Order
from ..model.order import PAYMENT_METHODS
from ..utils.money import D
from . import order_lifecycle

logger = logging.getLogger(__name__)

FAILED_INTENT_STATES = ("canceled", "requires_payment_method")

# display data for PAYMENT_METHODS; countries=None means available everywhere
METHOD_DETAILS = {
    "stripe": {"name": "Credit/Debit Card", "description": "Pay with Visa, Mastercard or American Express",
               "icon": "credit-card", "countries": None},
    "momo": {"name": "Mobile Money", "description": "Pay with MTN MoMo or other mobile money services",
             "icon": "smartphone", "countries": ("GH", "KE", "UG", "TZ", "ZA", "RW")},
    "itecpay": {"name": "ITECPay", "description": "Secure online payment solution",
                "icon": "shield", "countries": ("GH", "NG")},
    "cod": {"name": "Cash on Delivery", "description": "Pay when you receive your order",
            "icon": "package", "countries": ("GH", "NG", "KE")},
}


class PaymentGatewayError(StoreError):
    kind = "payment_gateway_error"
    status_code = 502


def _stripe():
    key = current_app.config.get("STRIPE_SECRET_KEY")
    if not key:
        raise PaymentGatewayError("Stripe is not configured")
    stripe.api_key = key
    return stripe


def to_minor_units(amount) -> int:
    return int((D(amount) * 100).quantize(Decimal("1")))


def create_payment_intent(order: Order) -> dict:
    if order.payment_status != "pending":
        raise ValidationFailed(f"Payment is already {order.payment_status}")
    try:
        intent = _stripe().PaymentIntent.create(
            amount=to_minor_units(order.total_price),
            currency=order.currency.lower(),
            metadata={"order_id": str(order.id), "order_number": order.order_number, "user_id": str(order.user_id)},
        )
    except stripe.StripeError as e:
        logger.error(f"stripe create intent failed for {order.order_number}: {e}")
        raise PaymentGatewayError("Failed to create payment intent")

    order.stripe_payment_intent_id = intent["id"]
    db.session.commit()
    return {"client_secret": intent["client_secret"], "payment_intent_id": intent["id"]}


def order_for_intent(payment_intent_id: str) -> Order:
    if not payment_intent_id:
        raise ValidationFailed("payment_intent_id is required")
    order = Order.query.filter_by(stripe_payment_intent_id=payment_intent_id).first()
    if not order:
        raise NotFound("Order not found")
    return order


def confirm_payment_intent(payment_intent_id: str, order: Order | None = None):
    """Returns (order, intent_status); the order is updated for terminal states."""
    order = order or order_for_intent(payment_intent_id)
    try:
        intent = _stripe().PaymentIntent.retrieve(payment_intent_id)
    except stripe.StripeError as e:
        logger.error(f"stripe retrieve intent {payment_intent_id} failed: {e}")
        raise PaymentGatewayError("Failed to confirm payment")

    status = intent["status"]
    if status == "succeeded":
        amount = D(intent["amount_received"]) / 100
        order_lifecycle.confirm_payment(order, intent["id"], amount)
    elif status in FAILED_INTENT_STATES and order.payment_status == "pending":
        order_lifecycle.fail_payment(order, status)
    return order, status


def new_mobile_transaction_id() -> str:
    tail = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"MOMO-{int(time.time() * 1000)}-{tail}"


def create_mobile_payment(order: Order, phone_number: str, provider: str = "mtn") -> dict:
    if not phone_number:
        raise ValidationFailed("phone_number is required")
    if order.payment_status != "pending":
        raise ValidationFailed(f"Payment is already {order.payment_status}")
    tx = new_mobile_transaction_id()
    order.momo_transaction_id = tx
    db.session.commit()
    logger.info(f"order {order.order_number}: mobile payment {tx} via {provider}")
    return {
        "transaction_id": tx,
        "phone_number": phone_number,
        "amount": float(order.total_price),
        "currency": order.currency,
        "provider": provider,
    }


def sign_callback(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def check_callback_signature(body: bytes, signature: str | None):
    """The gateway signs the raw callback body with the shared MOMO_CALLBACK_SECRET."""
    secret = current_app.config.get("MOMO_CALLBACK_SECRET")
    if not secret:
        raise Unauthorized("Mobile money callbacks are not configured")
    expected = sign_callback(body, secret).encode()
    if not signature or not hmac.compare_digest(expected, signature.strip().lower().encode()):
        logger.warning("mobile money callback rejected: bad signature")
        raise Unauthorized("Invalid callback signature")


def verify_mobile_payment(transaction_id: str, status: str) -> Order:
    """Gateway callback for a mobile-money transaction."""
    order = Order.query.filter_by(momo_transaction_id=transaction_id).first() if transaction_id else None
    if not order:
        raise NotFound("Transaction not found")
    status = (status or "").lower().strip()
    if status in ("paid", "success", "successful", "succeeded"):
        return order_lifecycle.confirm_payment(order, transaction_id)
    if status in ("failed", "rejected", "cancelled"):
        return order_lifecycle.fail_payment(order, status)
    raise ValidationFailed("status must be 'paid' or 'failed'")


def _method_enabled(method: str) -> bool:
    cfg = current_app.config
    if method == "stripe":
        return bool(cfg.get("STRIPE_SECRET_KEY"))
    if method == "momo":
        return bool(cfg.get("MOMO_CALLBACK_SECRET"))
    return True


def available_methods(country: str | None = None) -> list:
    """Enabled payment methods, narrowed to those offered in ``country`` when given."""
    country = (country or "").strip().upper() or None
    methods = []
    for method in PAYMENT_METHODS:
        details = METHOD_DETAILS[method]
        if not _method_enabled(method):
            continue
        if country and details["countries"] and country not in details["countries"]:
            continue
        methods.append({"id": method, **details, "countries": list(details["countries"] or [])})
    return methods
