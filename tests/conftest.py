# tests/conftest.py
import itertools
from datetime import timedelta
from decimal import Decimal

import pytest
from flask_jwt_extended import create_access_token
from werkzeug.security import generate_password_hash

from storefront import create_app
from storefront.config import PricingConfig
from storefront.extensions import db as _db
from storefront.model import Coupon, Product, ProductVariant, User
from storefront.utils.dates import utcnow

_seq = itertools.count(1)


@pytest.fixture
def app(tmp_path):
    """Application bound to a fresh in-memory database."""
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite://",
        "JWT_SECRET_KEY": "test-secret-key-with-enough-length-for-hs256",
        "STRIPE_SECRET_KEY": "sk_test_dummy",
        "MOMO_CALLBACK_SECRET": "momo-test-secret",
        "MAIL_SERVER": None,
        "UPLOAD_FOLDER": str(tmp_path / "uploads"),
    })
    with app.app_context():
        yield app
        _db.session.remove()
        _db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def session(app):
    return _db.session


@pytest.fixture
def pricing():
    return PricingConfig()


@pytest.fixture
def make_user(session):
    def factory(role="user", email=None, password="secret123", name="Test User"):
        n = next(_seq)
        user = User(
            email=email or f"user{n}@example.com",
            name=name,
            password_hash=generate_password_hash(password),
            role=role,
        )
        session.add(user)
        session.commit()
        return user
    return factory


@pytest.fixture
def customer(make_user):
    return make_user()


@pytest.fixture
def admin(make_user):
    return make_user(role="admin")


@pytest.fixture
def auth_headers():
    def factory(user):
        return {"Authorization": f"Bearer {create_access_token(identity=str(user.id))}"}
    return factory


@pytest.fixture
def make_product(session):
    def factory(name=None, price="100", stock=5, variants=None, **kwargs):
        n = next(_seq)
        name = name or f"Product {n}"
        product = Product(
            name=name,
            slug=f"product-{n}",
            sku=f"SKU{n:04d}",
            price=Decimal(str(price)),
            stock=stock,
            **kwargs,
        )
        for v in variants or []:
            product.variants.append(ProductVariant(
                sku=v["sku"],
                price=Decimal(str(v.get("price", price))),
                stock=v.get("stock", 0),
                color=v.get("color"),
                size=v.get("size"),
            ))
        product.sync_stock_from_variants()
        session.add(product)
        session.commit()
        return product
    return factory


@pytest.fixture
def make_coupon(session):
    def factory(code=None, discount_type="percentage", discount_value="10", **kwargs):
        now = utcnow()
        kwargs.setdefault("start_date", now - timedelta(days=1))
        kwargs.setdefault("end_date", now + timedelta(days=30))
        kwargs.setdefault("min_purchase", Decimal("0"))
        coupon = Coupon(
            code=(code or f"SAVE{next(_seq)}").upper(),
            discount_type=discount_type,
            discount_value=Decimal(str(discount_value)),
            **kwargs,
        )
        session.add(coupon)
        session.commit()
        return coupon
    return factory


@pytest.fixture
def shipping_address():
    return {"street": "1 Main St", "city": "Springfield", "country": "US", "zip": "12345"}
