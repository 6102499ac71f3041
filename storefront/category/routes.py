# --- category/routes.py ---
from flask import request
from sqlalchemy import desc, or_

from . import bp
from ..errors import DuplicateKey, NotFound, ValidationFailed
from ..extensions import db
from ..model import Category, Product
from ..utils.api import ok, paginate
from ..utils.decorators import role_at_least
from ..utils.text import parse_bool, parse_opt_int, slugify


# ------------------------ helpers ------------------------
def _get_or_404(cid):
    c = db.session.get(Category, cid)
    if not c:
        raise NotFound("Category not found")
    return c


def _check_unique(name, slug, exclude_id=None):
    q = Category.query.filter(or_(Category.name.ilike(name), Category.slug == slug))
    if exclude_id is not None:
        q = q.filter(Category.id != exclude_id)
    if q.first():
        raise DuplicateKey("category name already exists", field="name")


def _parent_id(data, self_id=None):
    pid = parse_opt_int(data.get("parent_id"))
    if pid is None:
        return None
    if pid == self_id:
        raise ValidationFailed("category cannot be its own parent")
    _get_or_404(pid)
    return pid


# ------------------------ CATEGORY ROUTES ------------------------

@bp.post("/")
@role_at_least("manager")
def create_category():
    data = request.get_json(silent=True) or {}
    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationFailed("name required")
    slug = slugify(data.get("slug") or name)
    _check_unique(name, slug)

    c = Category(
        name=name,
        slug=slug,
        description=data.get("description"),
        parent_id=_parent_id(data),
        is_active=parse_bool(data.get("is_active"), True),
    )
    db.session.add(c)
    db.session.commit()
    return ok("Category created", {"category": c.as_dict()}, 201)


@bp.get("/")
def list_categories():
    """
    q        -> substring match on name
    sort     -> name, -name, id, -id
    page     -> default 1
    per_page -> default 10 (cap 100)
    """
    q = (request.args.get("q") or "").strip()
    sort = (request.args.get("sort") or "name").strip()

    qry = Category.query.filter(Category.is_active.is_(True))
    if q:
        qry = qry.filter(Category.name.ilike(f"%{q}%"))
    parent = request.args.get("parent_id")
    if parent is not None:
        pid = parse_opt_int(parent)
        qry = qry.filter(Category.parent_id == pid) if pid else qry.filter(Category.parent_id.is_(None))

    sort_map = {
        "id": Category.id,
        "-id": desc(Category.id),
        "name": Category.name,
        "-name": desc(Category.name),
    }
    qry = qry.order_by(sort_map.get(sort, Category.name))
    page = paginate(qry, request.args.get("page"), request.args.get("per_page"), lambda c: c.as_dict())
    return ok("categories", {"meta": page["meta"], "categories": page["items"]})


@bp.get("/<int:cid>")
def get_category(cid):
    c = _get_or_404(cid)
    return ok("category", {
        "category": c.as_dict(),
        "children": [ch.as_dict() for ch in c.children if ch.is_active],
    })


@bp.put("/<int:cid>")
@role_at_least("manager")
def update_category(cid):
    c = _get_or_404(cid)
    data = request.get_json(silent=True) or {}
    if "name" in data or "slug" in data:
        new_name = (data.get("name") or c.name).strip()
        if not new_name:
            raise ValidationFailed("name cannot be empty")
        new_slug = slugify(data.get("slug") or new_name)
        _check_unique(new_name, new_slug, exclude_id=c.id)
        c.name, c.slug = new_name, new_slug
    if "description" in data:
        c.description = data.get("description")
    if "parent_id" in data:
        c.parent_id = _parent_id(data, self_id=c.id)
    if "is_active" in data:
        c.is_active = parse_bool(data.get("is_active"), c.is_active)
    db.session.commit()
    return ok("Category updated", {"category": c.as_dict()})


@bp.delete("/<int:cid>")
@role_at_least("admin")
def delete_category(cid):
    c = _get_or_404(cid)
    if Product.query.filter_by(category_id=cid).first():
        raise DuplicateKey("cannot delete: category has products")
    if Category.query.filter_by(parent_id=cid).first():
        raise DuplicateKey("cannot delete: category has sub-categories")
    db.session.delete(c)
    db.session.commit()
    return ok("deleted")
