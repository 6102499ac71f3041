# --- storefront/model/user.py ---
from sqlalchemy.sql import func

from ..extensions import db
from ..utils.dates import iso, utcnow

wishlist_items = db.Table(
    "wishlist",
    db.Column("user_id", db.Integer, db.ForeignKey("user.id", ondelete="CASCADE"), primary_key=True),
    db.Column("product_id", db.Integer, db.ForeignKey("product.id", ondelete="CASCADE"), primary_key=True),
    db.Column("added_at", db.DateTime, default=utcnow),
)


class User(db.Model):
    __tablename__ = "user"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(180), nullable=True)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    phone = db.Column(db.String(32), nullable=True)
    password_hash = db.Column(db.String(255), nullable=False, default="")
    role = db.Column(db.String(50), nullable=False, default="user", index=True)  # roles: user, manager, admin
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, server_default=func.now())

    # e-mail verification / password reset; only sha256 digests of the tokens are stored
    email_verified = db.Column(db.Boolean, nullable=False, default=False)
    verification_token = db.Column(db.String(64), index=True)
    verification_expires = db.Column(db.DateTime)
    reset_token = db.Column(db.String(64), index=True)
    reset_expires = db.Column(db.DateTime)

    addresses = db.relationship(
        "Address", backref="user", cascade="all, delete-orphan", order_by="Address.id", lazy=True
    )
    wishlist = db.relationship("Product", secondary=wishlist_items, lazy="select")

    def default_address(self):
        return next((a for a in self.addresses if a.is_default), None)

    def as_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "phone": self.phone,
            "role": self.role,
            "is_active": self.is_active,
            "email_verified": bool(self.email_verified),
        }


class Address(db.Model):
    __tablename__ = "address"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    street = db.Column(db.String(255), nullable=False)
    city = db.Column(db.String(120), nullable=False)
    state = db.Column(db.String(120))
    country = db.Column(db.String(2), nullable=False)  # ISO 3166-1 alpha-2
    postal_code = db.Column(db.String(32))
    phone = db.Column(db.String(32))
    is_default = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=utcnow)

    def as_shipping(self):
        """Shape stored on an order's shipping_address."""
        return {
            "street": self.street,
            "city": self.city,
            "state": self.state,
            "country": self.country,
            "zip": self.postal_code,
            "phone": self.phone,
        }

    def as_api(self):
        return {
            "id": self.id,
            **self.as_shipping(),
            "is_default": self.is_default,
            "created_at": iso(self.created_at),
        }


class RefreshToken(db.Model):
    __tablename__ = "refresh_token"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    token = db.Column(db.String(64), unique=True, nullable=False, index=True)
    expires_at = db.Column(db.DateTime, nullable=False)
    revoked = db.Column(db.Boolean, nullable=False, default=False)
