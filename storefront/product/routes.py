import logging
import os
from decimal import InvalidOperation

from flask import current_app, request, url_for
from sqlalchemy import and_, asc, desc, or_
from werkzeug.utils import secure_filename

from . import bp
from ..errors import DuplicateKey, NotFound, ValidationFailed
from ..extensions import db
from ..model import Category, Product, ProductImage, ProductVariant
from ..utils.api import ok, paginate
from ..utils.dates import require_iso8601, utcnow
from ..utils.decorators import current_user, is_staff, role_at_least
from ..utils.money import D, ZERO, round_money
from ..utils.text import generate_sku, parse_bool, parse_opt_float, parse_opt_int, slugify

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {"jpg", "jpeg", "png", "gif", "webp"}


# ---------- helpers ----------
def _ep(name: str) -> str:
    return f"{bp.name}.{name}"


def _allowed(filename: str) -> bool:
    return "." in filename and filename.rsplit(".", 1)[1].lower() in ALLOWED_EXTENSIONS


def _save_file(file_storage, product_name=None):
    """Save FileStorage to the upload folder with product-name-based filename."""
    if not file_storage or not file_storage.filename:
        return None, None
    if not _allowed(file_storage.filename):
        raise ValidationFailed("Unsupported file type", filename=file_storage.filename)

    upload_folder = current_app.config["UPLOAD_FOLDER"]
    ext = os.path.splitext(secure_filename(file_storage.filename))[1].lower()
    filename = f"{slugify(product_name)}{ext}" if product_name else secure_filename(file_storage.filename)

    upload_dir = os.path.join(current_app.root_path, upload_folder)
    os.makedirs(upload_dir, exist_ok=True)

    abs_path = os.path.join(upload_dir, filename)
    base, ext2 = os.path.splitext(filename)
    counter = 1
    while os.path.exists(abs_path):
        filename = f"{base}-{counter}{ext2}"
        abs_path = os.path.join(upload_dir, filename)
        counter += 1

    file_storage.save(abs_path)
    public_url = f"/{upload_folder}/{filename}"
    return public_url, abs_path


def _money(data, key, required=False):
    raw = data.get(key)
    if raw in (None, ""):
        if required:
            raise ValidationFailed(f"{key} is required")
        return None
    try:
        value = round_money(D(raw))
    except (InvalidOperation, ValueError):
        raise ValidationFailed(f"Invalid value for {key}")
    if value < ZERO:
        raise ValidationFailed(f"{key} cannot be negative")
    return value


def _count(data, key, default=0):
    raw = data.get(key)
    if raw in (None, ""):
        return default
    value = parse_opt_int(raw)
    if value is None or value < 0:
        raise ValidationFailed(f"{key} must be a non-negative integer")
    return value


def _unique_slug(base, exclude_id=None):
    base = slugify(base) or "product"
    slug, n = base, 1
    while True:
        q = Product.query.filter(Product.slug == slug)
        if exclude_id is not None:
            q = q.filter(Product.id != exclude_id)
        if not q.first():
            return slug
        n += 1
        slug = f"{base}-{n}"


def _sku_taken(sku, exclude_product=None, exclude_variant=None):
    q = Product.query.filter(Product.sku == sku)
    if exclude_product is not None:
        q = q.filter(Product.id != exclude_product)
    if q.first():
        return True
    q = ProductVariant.query.filter(ProductVariant.sku == sku)
    if exclude_variant is not None:
        q = q.filter(ProductVariant.id != exclude_variant)
    return q.first() is not None


def _category_id(data):
    cid = parse_opt_int(data.get("category_id"))
    if cid is None:
        return None
    if not db.session.get(Category, cid):
        raise NotFound(f"Category {cid} not found")
    return cid


def _get_or_404(pid, include_inactive=False) -> Product:
    product = db.session.get(Product, pid)
    if not product or (not product.is_active and not include_inactive):
        raise NotFound("Product not found")
    return product


def _payload():
    if request.content_type and "multipart/form-data" in request.content_type:
        return request.form.to_dict(flat=True)
    return request.get_json(silent=True) or {}


def _list(data, key):
    value = data.get(key)
    return value if isinstance(value, list) else []


def _sort_products(query, sort):
    sort = (sort or "").strip()
    mapping = {
        "id": asc(Product.id), "-id": desc(Product.id),
        "name": asc(Product.name), "-name": desc(Product.name),
        "price": asc(Product.price), "-price": desc(Product.price),
        "newest": desc(Product.created_at),
        "-sold": desc(Product.sold_count),
    }
    col = mapping.get(sort, desc(Product.id))  # default newest first (id desc)
    return query.order_by(col, desc(Product.id))


def _apply_sale(product, data):
    if "is_on_sale" in data:
        product.is_on_sale = parse_bool(data.get("is_on_sale"))
    if "sale_price" in data:
        product.sale_price = _money(data, "sale_price")
    try:
        if "sale_start" in data:
            product.sale_start = require_iso8601(data, "sale_start")
        if "sale_end" in data:
            product.sale_end = require_iso8601(data, "sale_end")
    except ValueError as e:
        raise ValidationFailed(str(e))
    if product.is_on_sale and product.sale_price is None:
        raise ValidationFailed("sale_price is required when is_on_sale is set")
    if product.sale_start and product.sale_end and product.sale_start >= product.sale_end:
        raise ValidationFailed("sale_start must be before sale_end")


def _attach_images(product, files):
    for key, fs in files.items(multi=True):
        if not key.startswith("image") or not fs.filename:
            continue
        public_url, _ = _save_file(fs, product_name=product.name)
        product.images.append(ProductImage(
            image_path=public_url,
            image_url=public_url,
            alt_text=product.name,
            is_default=not product.images,
        ))


# ---------- routes ----------
# GET /api/v1/products
@bp.get("")
def list_products():
    """
    Query params:
      q            -> substring match on name/brand/sku
      category_id  -> int
      min_price    -> float
      max_price    -> float
      in_stock     -> bool (True = stock > 0, False = stock <= 0)
      on_sale      -> bool, sale flag set and inside the sale window
      featured     -> bool
      sort         -> price, -price, name, -name, newest, -sold, id, -id
      page         -> int, default 1
      per_page     -> int, default 10 (cap 100)
    """
    args = request.args
    query = Product.query
    viewer = current_user(optional=True)
    if not (is_staff(viewer) and parse_bool(args.get("include_inactive"))):
        query = query.filter(Product.is_active.is_(True))

    q = (args.get("q") or "").strip()
    if q:
        like = f"%{q}%"
        query = query.filter(or_(Product.name.ilike(like), Product.brand.ilike(like), Product.sku.ilike(like)))

    category_id = parse_opt_int(args.get("category_id"))
    if category_id is not None:
        query = query.filter(Product.category_id == category_id)

    min_price = parse_opt_float(args.get("min_price"))
    max_price = parse_opt_float(args.get("max_price"))
    if min_price is not None:
        query = query.filter(Product.price >= min_price)
    if max_price is not None:
        query = query.filter(Product.price <= max_price)

    if args.get("in_stock") is not None:
        query = query.filter(Product.stock > 0 if parse_bool(args.get("in_stock")) else Product.stock <= 0)

    if parse_bool(args.get("on_sale")):
        now = utcnow()
        query = query.filter(and_(
            Product.is_on_sale.is_(True),
            Product.sale_price.isnot(None),
            or_(Product.sale_start.is_(None), Product.sale_start <= now),
            or_(Product.sale_end.is_(None), Product.sale_end >= now),
        ))

    if parse_bool(args.get("featured")):
        query = query.filter(Product.is_featured.is_(True))

    query = _sort_products(query, args.get("sort"))
    page = paginate(query, args.get("page"), args.get("per_page"), lambda p: p.as_api())
    return ok("Products fetched", {"items": page["items"], "meta": page["meta"]})


# GET /api/v1/products/<id>
@bp.get("/<int:pid>")
def get_product(pid):
    product = _get_or_404(pid, include_inactive=is_staff(current_user(optional=True)))
    product.view_count = (product.view_count or 0) + 1
    db.session.commit()
    return ok("Product fetched", {"product": product.as_api()})


@bp.get("/slug/<slug>")
def get_product_by_slug(slug):
    product = Product.query.filter_by(slug=slug, is_active=True).first()
    if not product:
        raise NotFound("Product not found")
    product.view_count = (product.view_count or 0) + 1
    db.session.commit()
    return ok("Product fetched", {"product": product.as_api()})


# POST /api/v1/products
@bp.post("")
@role_at_least("manager")
def create_product():
    data = _payload()
    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationFailed("name is required")

    sku = (data.get("sku") or "").strip().upper() or generate_sku(name)
    if _sku_taken(sku):
        raise DuplicateKey(f"Duplicate sku {sku}", field="sku")

    product = Product(
        name=name,
        slug=_unique_slug(data.get("slug") or name),
        description=data.get("description") or "",
        short_description=data.get("short_description"),
        brand=data.get("brand"),
        sku=sku,
        barcode=data.get("barcode"),
        price=_money(data, "price", required=True),
        compare_price=_money(data, "compare_price"),
        cost_price=_money(data, "cost_price"),
        stock=_count(data, "stock"),
        low_stock_threshold=_count(data, "low_stock_threshold", 10),
        is_active=parse_bool(data.get("is_active"), True),
        is_featured=parse_bool(data.get("is_featured")),
        category_id=_category_id(data),
    )
    _apply_sale(product, data)

    for raw in _list(data, "variants"):
        product.variants.append(_build_variant(product, raw))
    product.sync_stock_from_variants()

    if request.files:
        _attach_images(product, request.files)
    for img in _list(data, "images"):
        url = img.get("image_url") or img.get("image_path")
        if url:
            product.images.append(ProductImage(
                image_path=img.get("image_path") or url,
                image_url=url,
                alt_text=img.get("alt_text") or name,
                is_default=parse_bool(img.get("is_default")) or not product.images,
            ))

    db.session.add(product)
    db.session.commit()
    logger.info(f"product {product.id} created ({product.sku})")

    resp = ok("Product created", {"product": product.as_api()}, 201)
    resp.headers["Location"] = url_for(_ep("get_product"), pid=product.id, _external=True)
    return resp


# PUT /api/v1/products/<id>
@bp.put("/<int:pid>")
@role_at_least("manager")
def update_product(pid):
    product = _get_or_404(pid, include_inactive=True)
    data = _payload()

    if "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationFailed("name cannot be empty")
        product.name = name
    if "slug" in data or "name" in data:
        product.slug = _unique_slug(data.get("slug") or product.name, exclude_id=product.id)
    if "sku" in data:
        sku = (data.get("sku") or "").strip().upper()
        if not sku:
            raise ValidationFailed("sku cannot be empty")
        if _sku_taken(sku, exclude_product=product.id):
            raise DuplicateKey(f"Duplicate sku {sku}", field="sku")
        product.sku = sku
    if "category_id" in data:
        product.category_id = _category_id(data)

    for field in ("description", "short_description", "brand", "barcode"):
        if field in data:
            setattr(product, field, data.get(field))
    if "price" in data:
        product.price = _money(data, "price", required=True)
    for field in ("compare_price", "cost_price"):
        if field in data:
            setattr(product, field, _money(data, field))
    if "stock" in data:
        if product.variants:
            raise ValidationFailed("stock of a product with variants follows its variants")
        product.stock = _count(data, "stock")
    if "low_stock_threshold" in data:
        product.low_stock_threshold = _count(data, "low_stock_threshold", 10)
    for field in ("is_active", "is_featured"):
        if field in data:
            setattr(product, field, parse_bool(data.get(field)))
    _apply_sale(product, data)

    if request.files:
        _attach_images(product, request.files)

    db.session.commit()
    return ok("Product updated", {"product": product.as_api()})


# DELETE /api/v1/products/<id>
@bp.delete("/<int:pid>")
@role_at_least("manager")
def delete_product(pid):
    product = _get_or_404(pid, include_inactive=True)
    product.is_active = False
    db.session.commit()
    logger.info(f"product {product.id} deactivated")
    return ok("Product deleted", {"id": product.id})


# ---------- variants ----------
def _build_variant(product, raw, variant=None):
    sku = (raw.get("sku") or "").strip().upper()
    if variant is None and not sku:
        sku = generate_sku(product.name, raw.get("color") or raw.get("size") or "")
    if sku:
        if _sku_taken(sku, exclude_variant=variant.id if variant else None) or \
                any(v.sku == sku and v is not variant for v in product.variants):
            raise DuplicateKey(f"Duplicate sku {sku}", field="sku")
    variant = variant or ProductVariant()
    if sku:
        variant.sku = sku
    for field in ("color", "size", "material"):
        if field in raw:
            setattr(variant, field, raw.get(field))
    if "price" in raw or variant.price is None:
        price = _money(raw, "price")
        variant.price = price if price is not None else D(product.price)
    if "compare_price" in raw:
        variant.compare_price = _money(raw, "compare_price")
    if "stock" in raw or variant.stock is None:
        variant.stock = _count(raw, "stock")
    return variant


def _variant_or_404(product, vid):
    variant = next((v for v in product.variants if v.id == vid), None)
    if not variant:
        raise NotFound("Variant not found")
    return variant


@bp.post("/<int:pid>/variants")
@role_at_least("manager")
def add_variant(pid):
    product = _get_or_404(pid, include_inactive=True)
    variant = _build_variant(product, request.get_json(silent=True) or {})
    product.variants.append(variant)
    product.sync_stock_from_variants()
    db.session.commit()
    return ok("Variant added", {"variant": variant.as_api(), "product": product.as_api()}, 201)


@bp.put("/<int:pid>/variants/<int:vid>")
@role_at_least("manager")
def update_variant(pid, vid):
    product = _get_or_404(pid, include_inactive=True)
    variant = _build_variant(product, request.get_json(silent=True) or {}, _variant_or_404(product, vid))
    product.sync_stock_from_variants()
    db.session.commit()
    return ok("Variant updated", {"variant": variant.as_api(), "product": product.as_api()})


@bp.delete("/<int:pid>/variants/<int:vid>")
@role_at_least("manager")
def delete_variant(pid, vid):
    product = _get_or_404(pid, include_inactive=True)
    product.remove_variant(_variant_or_404(product, vid))
    db.session.commit()
    return ok("Variant deleted", {"product": product.as_api()})


# ---------- images ----------
@bp.post("/<int:pid>/images")
@role_at_least("manager")
def upload_images(pid):
    product = _get_or_404(pid, include_inactive=True)
    if not request.files:
        raise ValidationFailed("No files uploaded")
    _attach_images(product, request.files)
    db.session.commit()
    return ok("Images uploaded", {"images": [img.as_api() for img in product.images]}, 201)


@bp.delete("/<int:pid>/images/<int:image_id>")
@role_at_least("manager")
def delete_image(pid, image_id):
    product = _get_or_404(pid, include_inactive=True)
    image = next((i for i in product.images if i.id == image_id), None)
    if not image:
        raise NotFound("Image not found")

    if image.image_path and image.image_path.startswith("/"):
        abs_path = os.path.join(current_app.root_path, image.image_path.lstrip("/"))
        if os.path.exists(abs_path):
            os.remove(abs_path)

    was_default = image.is_default
    product.images.remove(image)
    if was_default and product.images:
        product.images[0].is_default = True
    db.session.commit()
    return ok("Image deleted", {"images": [img.as_api() for img in product.images]})
