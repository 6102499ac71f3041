from flask import Blueprint

bp = Blueprint("coupon", __name__, url_prefix="/api/v1/coupons")

from . import routes  # noqa: E402,F401
