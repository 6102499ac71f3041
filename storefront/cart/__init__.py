from flask import Blueprint

bp = Blueprint("cart", __name__, url_prefix="/api/v1/cart")

from . import routes  # noqa: E402,F401
