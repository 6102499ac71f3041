# --- storefront/errors.py ---
"""Domain errors raised by the services and rendered by the app.

Every error has a stable ``kind`` and an HTTP status. Services raise them,
routes let them propagate, and ``register_error_handlers`` turns them into
the standard ``api_error`` envelope.
"""
import logging
from decimal import InvalidOperation

from flask import jsonify
from sqlalchemy.exc import IntegrityError
from werkzeug.exceptions import HTTPException

from .extensions import db
from .utils.api import api_error

logger = logging.getLogger(__name__)


class StoreError(Exception):
    kind = "error"
    status_code = 400

    def __init__(self, message, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def as_api(self):
        return api_error(self.message, {"kind": self.kind, **self.details})


class NotFound(StoreError):
    kind = "not_found"
    status_code = 404


class ValidationFailed(StoreError):
    kind = "validation_failed"
    status_code = 422


class InsufficientStock(StoreError):
    kind = "insufficient_stock"
    status_code = 409

    def __init__(self, product_id, product_name, requested, available):
        shortfall = max(int(requested) - int(available), 0)
        super().__init__(
            f"Insufficient stock for {product_name}. Available: {available}",
            product_id=product_id,
            product_name=product_name,
            requested=int(requested),
            available=int(available),
            shortfall=shortfall,
        )
        self.product_id = product_id
        self.requested = int(requested)
        self.available = int(available)
        self.shortfall = shortfall


class VariantNotFound(StoreError):
    kind = "variant_not_found"
    status_code = 400

    def __init__(self, sku, product_id=None):
        super().__init__(f"Variant {sku} not found", sku=sku, product_id=product_id)
        self.sku = sku


class CouponNotValid(StoreError):
    kind = "coupon_not_valid"
    status_code = 400

    def __init__(self, message="Coupon is not valid", **details):
        super().__init__(message, **details)


class BelowMinimumPurchase(StoreError):
    kind = "below_minimum_purchase"
    status_code = 400

    def __init__(self, min_purchase):
        super().__init__(
            f"Minimum purchase of {min_purchase:.2f} required",
            min_purchase=float(min_purchase),
        )
        self.min_purchase = min_purchase


class InvalidTransition(StoreError):
    kind = "invalid_transition"
    status_code = 409

    def __init__(self, current, target, message=None):
        super().__init__(
            message or f"Cannot change order status from {current} to {target}",
            current=current,
            target=target,
        )
        self.current = current
        self.target = target


class DuplicateKey(StoreError):
    kind = "duplicate_key"
    status_code = 409


class Unauthorized(StoreError):
    kind = "unauthorized"
    status_code = 401


class Forbidden(StoreError):
    kind = "forbidden"
    status_code = 403


def register_error_handlers(app):
    @app.errorhandler(StoreError)
    def handle_store_error(e):
        r = jsonify(e.as_api())
        r.status_code = e.status_code
        return r

    @app.errorhandler(IntegrityError)
    def handle_integrity_error(e):
        db.session.rollback()
        logger.warning(f"integrity error: {e.orig}")
        r = jsonify(api_error("Unique constraint violation", {"kind": DuplicateKey.kind}))
        r.status_code = DuplicateKey.status_code
        return r

    @app.errorhandler(ValueError)
    def handle_value_error(e):
        r = jsonify(api_error(str(e), {"kind": ValidationFailed.kind}))
        r.status_code = 422
        return r

    @app.errorhandler(InvalidOperation)
    def handle_bad_number(e):
        r = jsonify(api_error("Invalid numeric value", {"kind": ValidationFailed.kind}))
        r.status_code = 422
        return r

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        r = jsonify(api_error(e.description or e.name))
        r.status_code = e.code or 500
        return r
