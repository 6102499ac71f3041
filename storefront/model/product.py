# storefront/model/product.py
from sqlalchemy.sql import func

from ..extensions import db
from ..utils.dates import iso, utcnow
from ..utils.money import D, money_float


class Product(db.Model):
    __tablename__ = "product"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False, index=True)
    slug = db.Column(db.String(255), nullable=False, unique=True, index=True)
    description = db.Column(db.Text, nullable=False, default="")
    short_description = db.Column(db.String(500))
    brand = db.Column(db.String(120))
    sku = db.Column(db.String(64), nullable=False, unique=True, index=True)
    barcode = db.Column(db.String(180))

    price = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    compare_price = db.Column(db.Numeric(12, 2))
    cost_price = db.Column(db.Numeric(12, 2))

    is_on_sale = db.Column(db.Boolean, default=False, index=True)
    sale_price = db.Column(db.Numeric(12, 2))
    sale_start = db.Column(db.DateTime)
    sale_end = db.Column(db.DateTime)

    # sum of variant stocks when the product has variants
    stock = db.Column(db.Integer, nullable=False, default=0)
    low_stock_threshold = db.Column(db.Integer, default=10)
    sold_count = db.Column(db.Integer, nullable=False, default=0)
    view_count = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, default=True, index=True)
    is_featured = db.Column(db.Boolean, default=False, index=True)

    category_id = db.Column(db.Integer, db.ForeignKey("category.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime, server_default=func.now(), index=True)
    updated_at = db.Column(db.DateTime, onupdate=func.now(), server_default=func.now())

    variants = db.relationship(
        "ProductVariant",
        backref="product",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ProductVariant.id.asc()",
    )
    images = db.relationship(
        "ProductImage",
        backref="product",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ProductImage.id.asc()",
    )

    # ---- derived state ----
    def is_on_sale_now(self, now=None) -> bool:
        if not self.is_on_sale or self.sale_price is None:
            return False
        now = now or utcnow()
        if self.sale_start and now < self.sale_start:
            return False
        if self.sale_end and now > self.sale_end:
            return False
        return True

    def current_price(self, now=None):
        if self.is_on_sale_now(now):
            return D(self.sale_price)
        return D(self.price)

    def find_variant(self, sku):
        if not sku:
            return None
        sku = str(sku).strip().upper()
        return next((v for v in self.variants if v.sku == sku), None)

    def sync_stock_from_variants(self):
        if self.variants:
            self.stock = sum(int(v.stock or 0) for v in self.variants)

    def remove_variant(self, variant):
        """Drop a variant; its units leave with it, down to 0 for the last one."""
        self.variants.remove(variant)
        if self.variants:
            self.sync_stock_from_variants()
        else:
            self.stock = 0

    @property
    def in_stock(self) -> bool:
        return int(self.stock or 0) > 0

    @property
    def is_low_stock(self) -> bool:
        return 0 < int(self.stock or 0) <= int(self.low_stock_threshold or 0)

    @property
    def discount_percentage(self) -> int:
        if self.compare_price and D(self.compare_price) > D(self.price):
            cp = D(self.compare_price)
            return int(((cp - D(self.price)) / cp * 100).quantize(D("1")))
        return 0

    def default_image(self):
        if not self.images:
            return None
        return next((i for i in self.images if i.is_default), self.images[0])

    def as_api(self):
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "short_description": self.short_description,
            "brand": self.brand,
            "sku": self.sku,
            "barcode": self.barcode,
            "price": money_float(self.price),
            "compare_price": money_float(self.compare_price) if self.compare_price is not None else None,
            "current_price": money_float(self.current_price()),
            "discount_percentage": self.discount_percentage,
            "is_on_sale": bool(self.is_on_sale),
            "is_on_sale_now": self.is_on_sale_now(),
            "sale_price": money_float(self.sale_price) if self.sale_price is not None else None,
            "sale_start": iso(self.sale_start),
            "sale_end": iso(self.sale_end),
            "stock": self.stock,
            "in_stock": self.in_stock,
            "is_low_stock": self.is_low_stock,
            "sold_count": self.sold_count,
            "is_active": self.is_active,
            "is_featured": self.is_featured,
            "category": self.category.as_dict() if self.category else None,
            "variants": [v.as_api() for v in self.variants],
            "images": [img.as_api() for img in self.images],
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }


class ProductVariant(db.Model):
    __tablename__ = "product_variant"

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("product.id", ondelete="CASCADE"), nullable=False, index=True)
    sku = db.Column(db.String(64), nullable=False, unique=True, index=True)
    color = db.Column(db.String(64))
    size = db.Column(db.String(64))
    material = db.Column(db.String(64))
    price = db.Column(db.Numeric(12, 2), nullable=False)
    compare_price = db.Column(db.Numeric(12, 2))
    stock = db.Column(db.Integer, nullable=False, default=0)

    def descriptor(self):
        return {"color": self.color, "size": self.size, "material": self.material, "sku": self.sku}

    def as_api(self):
        return {
            "id": self.id,
            **self.descriptor(),
            "price": money_float(self.price),
            "compare_price": money_float(self.compare_price) if self.compare_price is not None else None,
            "stock": self.stock,
        }


class ProductImage(db.Model):
    __tablename__ = "product_image"

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("product.id"), nullable=False, index=True)
    image_path = db.Column(db.String(512))           # relative path on disk
    image_url = db.Column(db.String(1024))
    alt_text = db.Column(db.String(255))
    is_default = db.Column(db.Boolean, default=False)

    def as_api(self):
        return {
            "id": self.id,
            "image_url": self.image_url,
            "alt_text": self.alt_text,
            "is_default": self.is_default,
        }
