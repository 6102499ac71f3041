# ------- storefront/utils/decorators.py -------
from functools import wraps

from flask_jwt_extended import get_jwt_identity, verify_jwt_in_request

from ..extensions import db
from ..errors import Forbidden, Unauthorized
from ..model.user import User

ROLE_LEVEL = {"user": 1, "manager": 2, "admin": 3}


def current_user(optional: bool = False) -> User | None:
    verify_jwt_in_request(optional=optional)
    uid = get_jwt_identity()
    try:
        uid = int(uid)
    except (TypeError, ValueError):
        uid = None
    user = db.session.get(User, uid) if uid else None
    if user is None and not optional:
        raise Unauthorized("Unauthorized")
    if user is not None and not user.is_active:
        raise Unauthorized("Account disabled")
    return user


def login_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        current_user()
        return fn(*args, **kwargs)
    return wrapper


def role_at_least(min_role: str, message: str | None = None):  # admin > manager > user
    min_level = ROLE_LEVEL[min_role]
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            u = current_user()
            if ROLE_LEVEL.get(u.role, 0) < min_level:
                raise Forbidden(message or "Forbidden")
            return fn(*args, **kwargs)
        return wrapper
    return decorator


def is_staff(user: User | None) -> bool:
    return bool(user) and ROLE_LEVEL.get(user.role, 0) >= ROLE_LEVEL["manager"]
