# storefront/coupon/routes.py
from __future__ import annotations
import logging

from flask import request
from sqlalchemy import desc

from . import bp
from ..errors import CouponNotValid, NotFound, ValidationFailed
from ..extensions import db
from ..model import Coupon
from ..services import coupon_service
from ..utils.api import ok, paginate
from ..utils.dates import utcnow
from ..utils.decorators import current_user, login_required, role_at_least
from ..utils.money import D, money_float, round_money

logger = logging.getLogger(__name__)


def _get_or_404(cid) -> Coupon:
    c = db.session.get(Coupon, cid)
    if not c:
        raise NotFound("Coupon not found")
    return c


# ---- admin ------------------------------------------------------------------
@bp.post("")
@role_at_least("admin")
def create_coupon():
    data = request.get_json(silent=True) or {}
    c = coupon_service.create_coupon_from_payload(data, created_by=current_user().id)
    return ok("Coupon created", {"coupon": c.as_api()}, 201)


@bp.get("")
@role_at_least("admin")
def list_coupons():
    """
    q        -> substring match on code
    status   -> scheduled | active | expired
    page     -> default 1
    per_page -> default 10 (cap 100)
    """
    now = utcnow()
    q = (request.args.get("q") or "").strip().upper()
    status = (request.args.get("status") or "").strip().lower()

    qry = Coupon.query
    if q:
        qry = qry.filter(Coupon.code.ilike(f"%{q}%"))
    if status == "scheduled":
        qry = qry.filter(Coupon.start_date > now)
    elif status == "expired":
        qry = qry.filter(Coupon.end_date < now)
    elif status == "active":
        qry = qry.filter(Coupon.start_date <= now, Coupon.end_date >= now)
    elif status:
        raise ValidationFailed("status must be scheduled, active or expired")

    qry = qry.order_by(desc(Coupon.created_at), desc(Coupon.id))
    page = paginate(qry, request.args.get("page"), request.args.get("per_page"), lambda c: c.as_api(now))
    return ok("coupons", {"meta": page["meta"], "coupons": page["items"]})


@bp.get("/<int:cid>")
@role_at_least("admin")
def get_coupon(cid):
    return ok("coupon", {"coupon": _get_or_404(cid).as_api()})


@bp.put("/<int:cid>")
@role_at_least("admin")
def update_coupon(cid):
    c = coupon_service.update_coupon_from_payload(_get_or_404(cid), request.get_json(silent=True) or {})
    return ok("Coupon updated", {"coupon": c.as_api()})


@bp.delete("/<int:cid>")
@role_at_least("admin")
def delete_coupon(cid):
    c = _get_or_404(cid)
    db.session.delete(c)
    db.session.commit()
    logger.info(f"coupon {c.code} deleted")
    return ok("Coupon deleted")


# ---- public -----------------------------------------------------------------
@bp.get("/active")
def active_coupons():
    return ok("coupons", {"coupons": [c.as_public() for c in coupon_service.active_coupons()]})


@bp.get("/code/<code>")
def get_by_code(code):
    c = coupon_service.find_by_code(code)
    if not c.is_active_now():
        raise CouponNotValid(code=c.code, status=c.status())
    return ok("coupon", {"coupon": c.as_public()})


@bp.post("/validate")
@login_required
def validate_coupon():
    data = request.get_json(silent=True) or {}
    if data.get("total_amount") in (None, ""):
        raise ValidationFailed("total_amount is required")
    total = round_money(D(data.get("total_amount")))
    if total < 0:
        raise ValidationFailed("total_amount must be >= 0")

    c, discount = coupon_service.quote_discount(data.get("code"), total)
    discount = round_money(discount)
    return ok("Coupon is valid", {
        "coupon": c.as_public(),
        "discount": money_float(discount),
        "new_total": money_float(total - discount),
    })
