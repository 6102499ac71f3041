# storefront/user/routes.py
from datetime import timedelta

from flask import request
from sqlalchemy import extract, func

from . import bp
from ..errors import DuplicateKey, NotFound, ValidationFailed
from ..extensions import db
from ..model import Address, Product, RefreshToken, User
from ..utils.api import ok
from ..utils.dates import utcnow
from ..utils.decorators import current_user, login_required, role_at_least
from ..utils.text import parse_bool

ADDRESS_FIELDS = ("street", "city", "state", "country", "postal_code", "phone")
GROWTH_MONTHS = 6


# ---- addresses -------------------------------------------------------------
def _address_or_404(user, address_id) -> Address:
    address = next((a for a in user.addresses if a.id == address_id), None)
    if not address:
        raise NotFound("Address not found")
    return address


def _apply_address(address: Address, data: dict):
    for field in ADDRESS_FIELDS:
        if field in data:
            value = str(data.get(field) or "").strip() or None
            setattr(address, field, value)
    if address.country:
        address.country = address.country.upper()
    if not address.street or not address.city:
        raise ValidationFailed("street and city are required")
    if not address.country or len(address.country) != 2 or not address.country.isalpha():
        raise ValidationFailed("country must be a two-letter code")


def _make_default(user, address):
    for a in user.addresses:
        a.is_default = a is address


def _addresses(user):
    return {"addresses": [a.as_api() for a in user.addresses]}


@bp.get("/addresses")
@login_required
def list_addresses():
    return ok("addresses", _addresses(current_user()))


@bp.post("/addresses")
@login_required
def add_address():
    user = current_user()
    data = request.get_json(silent=True) or {}
    address = Address()
    _apply_address(address, data)
    user.addresses.append(address)
    # the first address is the default one
    if parse_bool(data.get("is_default")) or len(user.addresses) == 1:
        _make_default(user, address)
    db.session.commit()
    return ok("Address added", {"address": address.as_api(), **_addresses(user)}, 201)


@bp.put("/addresses/<int:address_id>")
@login_required
def update_address(address_id):
    user = current_user()
    address = _address_or_404(user, address_id)
    data = request.get_json(silent=True) or {}
    try:
        _apply_address(address, data)
    except ValidationFailed:
        db.session.rollback()
        raise
    if parse_bool(data.get("is_default")):
        _make_default(user, address)
    db.session.commit()
    return ok("Address updated", {"address": address.as_api(), **_addresses(user)})


@bp.delete("/addresses/<int:address_id>")
@login_required
def delete_address(address_id):
    user = current_user()
    address = _address_or_404(user, address_id)
    was_default = address.is_default
    user.addresses.remove(address)
    if was_default and user.addresses:
        user.addresses[0].is_default = True
    db.session.commit()
    return ok("Address deleted", _addresses(user))


@bp.put("/addresses/<int:address_id>/default")
@login_required
def set_default_address(address_id):
    user = current_user()
    _make_default(user, _address_or_404(user, address_id))
    db.session.commit()
    return ok("Default address updated", _addresses(user))


# ---- wishlist --------------------------------------------------------------
@bp.get("/wishlist")
@login_required
def get_wishlist():
    products = [p for p in current_user().wishlist if p.is_active]
    return ok("wishlist", {"products": [p.as_api() for p in products]})


@bp.post("/wishlist/<int:product_id>")
@login_required
def add_to_wishlist(product_id):
    user = current_user()
    product = db.session.get(Product, product_id)
    if not product or not product.is_active:
        raise NotFound("Product not found")
    if product in user.wishlist:
        raise DuplicateKey("Product already in wishlist", product_id=product_id)
    user.wishlist.append(product)
    db.session.commit()
    return ok("Added to wishlist", {"product_ids": [p.id for p in user.wishlist]})


@bp.delete("/wishlist/<int:product_id>")
@login_required
def remove_from_wishlist(product_id):
    user = current_user()
    product = next((p for p in user.wishlist if p.id == product_id), None)
    if not product:
        raise NotFound("Product not in wishlist")
    user.wishlist.remove(product)
    db.session.commit()
    return ok("Removed from wishlist", {"product_ids": [p.id for p in user.wishlist]})


# ---- admin -----------------------------------------------------------------
@bp.get("/stats")
@role_at_least("admin")
def user_stats():
    total = db.session.query(func.count(User.id)).scalar()
    active = db.session.query(func.count(User.id)).filter(User.is_active.is_(True)).scalar()
    new = db.session.query(func.count(User.id)).filter(User.created_at >= utcnow() - timedelta(days=30)).scalar()

    year = extract("year", User.created_at)
    month = extract("month", User.created_at)
    rows = (
        db.session.query(year, month, func.count(User.id))
        .group_by(year, month)
        .order_by(year.desc(), month.desc())
        .limit(GROWTH_MONTHS)
        .all()
    )
    growth = [{"year": int(y), "month": int(m), "count": c} for y, m, c in reversed(rows)]
    return ok("user stats", {
        "total_users": total,
        "active_users": active,
        "new_users": new,
        "user_growth": growth,
    })


@bp.delete("/<int:user_id>")
@role_at_least("admin")
def deactivate_user(user_id):
    target = db.session.get(User, user_id)
    if not target:
        raise NotFound("User not found")
    if target.id == current_user().id:
        raise ValidationFailed("You cannot deactivate your own account")

    # soft delete: orders keep their owner
    target.is_active = False
    RefreshToken.query.filter_by(user_id=target.id, revoked=False).update({"revoked": True})
    db.session.commit()
    return ok("User deactivated", {"user": target.as_dict()})
