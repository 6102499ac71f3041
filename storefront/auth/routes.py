import hashlib
import logging
import uuid
from datetime import timedelta

from flask import current_app, request
from flask_jwt_extended import create_access_token
from werkzeug.security import check_password_hash, generate_password_hash

from . import bp
from ..errors import DuplicateKey, NotFound, Unauthorized, ValidationFailed
from ..extensions import db
from ..model import RefreshToken, User
from ..services.notification_service import get_notifier
from ..utils.api import ok
from ..utils.dates import utcnow
from ..utils.decorators import ROLE_LEVEL, current_user, login_required, role_at_least

logger = logging.getLogger(__name__)

MIN_PASSWORD = 6


# --- helper: create & persist a token pair ---
def _issue_tokens(user_id: int):
    access_token = create_access_token(identity=str(user_id))
    refresh_token_str = uuid.uuid4().hex
    db.session.add(RefreshToken(
        user_id=user_id,
        token=refresh_token_str,
        expires_at=utcnow() + timedelta(days=current_app.config.get("REFRESH_TOKEN_TTL_DAYS", 7)),
    ))
    return access_token, refresh_token_str


def _digest(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def _send_verification(user: User):
    token = uuid.uuid4().hex
    user.verification_token = _digest(token)
    user.verification_expires = utcnow() + timedelta(hours=current_app.config.get("VERIFY_TOKEN_TTL_HOURS", 24))
    db.session.commit()
    try:
        get_notifier().send_verification(user, token)
    except Exception:
        logger.exception(f"verification mail for user {user.id} failed")


@bp.post("/register")
def register():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    name = (data.get("name") or "").strip()

    if not email or "@" not in email:
        raise ValidationFailed("A valid email is required")
    if len(password) < MIN_PASSWORD:
        raise ValidationFailed(f"Password required, min {MIN_PASSWORD} chars")
    if not name:
        raise ValidationFailed("Name is required")
    if User.query.filter_by(email=email).first():
        raise DuplicateKey("Email already registered", field="email")

    # Bootstrap: very first account becomes admin
    is_first_user = db.session.query(User.id).count() == 0
    user = User(
        email=email,
        name=name,
        phone=(data.get("phone") or None),
        password_hash=generate_password_hash(password),
        role="admin" if is_first_user else "user",
    )
    db.session.add(user)
    db.session.flush()
    access, refresh = _issue_tokens(user.id)
    db.session.commit()
    _send_verification(user)

    return ok("Account created successfully", {"user": user.as_dict(), "token": access, "refresh_token": refresh}, 201)


@bp.post("/login")
def login():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    if not email or not password:
        raise ValidationFailed("Email and password are required")

    user = User.query.filter_by(email=email).first()
    if not user or not check_password_hash(user.password_hash, password):
        raise Unauthorized("Invalid email or password")
    if not user.is_active:
        raise Unauthorized("Account disabled")

    access, refresh = _issue_tokens(user.id)
    db.session.commit()
    return ok("You've logged in successfully", {"user": user.as_dict(), "token": access, "refresh_token": refresh})


@bp.post("/refresh")
def refresh():
    data = request.get_json(silent=True) or {}
    token_str = data.get("refresh_token")
    if not token_str:
        raise ValidationFailed("refresh_token is required")

    row = RefreshToken.query.filter_by(token=token_str).first()
    if not row or row.revoked or row.expires_at < utcnow():
        raise Unauthorized("Invalid or expired refresh token")

    # rotate: refresh tokens are single-use
    row.revoked = True
    access, new_refresh = _issue_tokens(row.user_id)
    db.session.commit()
    return ok("Token refreshed", {"token": access, "refresh_token": new_refresh})


@bp.post("/logout")
@login_required
def logout():
    data = request.get_json(silent=True) or {}
    token_str = data.get("refresh_token")
    if token_str:
        row = RefreshToken.query.filter_by(token=token_str, user_id=current_user().id).first()
        if row:
            row.revoked = True
            db.session.commit()
    return ok("Logged out")


@bp.post("/forgot-password")
def forgot_password():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    if not email:
        raise ValidationFailed("Email is required")

    user = User.query.filter_by(email=email, is_active=True).first()
    if user:
        token = uuid.uuid4().hex
        user.reset_token = _digest(token)
        user.reset_expires = utcnow() + timedelta(minutes=current_app.config.get("RESET_TOKEN_TTL_MINUTES", 60))
        db.session.commit()
        try:
            get_notifier().send_password_reset(user, token)
        except Exception:
            logger.exception(f"password reset mail for user {user.id} failed")
    # same answer whether or not the address is registered
    return ok("If the e-mail is registered, a reset link has been sent")


@bp.put("/reset-password/<token>")
def reset_password(token):
    data = request.get_json(silent=True) or {}
    password = data.get("password") or ""
    if len(password) < MIN_PASSWORD:
        raise ValidationFailed(f"Password required, min {MIN_PASSWORD} chars")

    user = User.query.filter_by(reset_token=_digest(token)).first()
    if not user or not user.reset_expires or user.reset_expires < utcnow():
        raise ValidationFailed("Invalid or expired reset token")

    user.password_hash = generate_password_hash(password)
    user.reset_token = None
    user.reset_expires = None
    # sign out every other session
    RefreshToken.query.filter_by(user_id=user.id, revoked=False).update({"revoked": True})
    access, refresh = _issue_tokens(user.id)
    db.session.commit()
    return ok("Password reset", {"user": user.as_dict(), "token": access, "refresh_token": refresh})


@bp.get("/verify-email/<token>")
def verify_email(token):
    user = User.query.filter_by(verification_token=_digest(token)).first()
    if not user or not user.verification_expires or user.verification_expires < utcnow():
        raise ValidationFailed("Invalid or expired verification token")
    user.email_verified = True
    user.verification_token = None
    user.verification_expires = None
    db.session.commit()
    return ok("E-mail verified", {"user": user.as_dict()})


@bp.post("/resend-verification")
@login_required
def resend_verification():
    user = current_user()
    if user.email_verified:
        raise ValidationFailed("E-mail is already verified")
    _send_verification(user)
    return ok("Verification e-mail sent")


@bp.get("/me")
@login_required
def me():
    return ok("user", {"user": current_user().as_dict()})


@bp.put("/me")
@login_required
def update_me():
    user = current_user()
    data = request.get_json(silent=True) or {}
    if "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationFailed("Name cannot be empty")
        user.name = name
    if "phone" in data:
        user.phone = (data.get("phone") or None)
    if data.get("new_password"):
        if not check_password_hash(user.password_hash, data.get("current_password") or ""):
            raise Unauthorized("Current password is incorrect")
        if len(data["new_password"]) < MIN_PASSWORD:
            raise ValidationFailed(f"Password min {MIN_PASSWORD} chars")
        user.password_hash = generate_password_hash(data["new_password"])
    db.session.commit()
    return ok("Profile updated", {"user": user.as_dict()})


@bp.get("/users")
@role_at_least("manager", message="Only managers and admins can list users")
def list_users():
    actor = current_user()
    q = User.query
    if actor.role == "manager":
        q = q.filter(User.role == "user")
    return ok("users", {"users": [u.as_dict() for u in q.order_by(User.id.asc()).all()]})


@bp.patch("/users/<int:user_id>/role")
@role_at_least("admin")
def update_user_role(user_id):
    body = request.get_json(silent=True) or {}
    new_role = (body.get("role") or "").strip().lower()
    if new_role not in ROLE_LEVEL:
        raise ValidationFailed("Invalid role")

    target = db.session.get(User, user_id)
    if not target:
        raise NotFound("User not found")

    # Prevent demoting the last admin
    if target.role == "admin" and new_role != "admin":
        if db.session.query(User).filter_by(role="admin").count() <= 1:
            raise ValidationFailed("Cannot demote the last admin")

    target.role = new_role
    db.session.commit()
    return ok("Role updated", {"user": target.as_dict()})
