from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import or_

from storedash.errors import ConflictError, NotFoundError, ValidationError
from storedash.extensions import db
from storedash.models_shop import Inventory, Product, ProductCategory, ProductVariant
from storedash.services import categories as categories_svc
from storedash.utils import iso, money, paginate_query, slugify, to_decimal, unique_slug

STATUSES = ("draft", "published", "archived")
SORT_FIELDS = {
    "created_at": Product.created_at,
    "name": Product.name,
    "base_price": Product.base_price,
}


def serialize_variant(v: ProductVariant) -> dict[str, Any]:
    inv = v.inventory
    return {
        "id": v.id,
        "product_id": v.product_id,
        "name": v.name,
        "sku": v.sku,
        "price": money(v.price) if v.price is not None else None,
        "effective_price": money(v.effective_price),
        "attributes": dict(v.attributes or {}),
        "is_active": v.is_active,
        "available": inv.available if inv else 0,
    }


def serialize(p: Product) -> dict[str, Any]:
    return {
        "id": p.id,
        "name": p.name,
        "slug": p.slug,
        "description": p.description,
        "base_price": money(p.base_price),
        "compare_at_price": money(p.compare_at_price) if p.compare_at_price is not None else None,
        "sku": p.sku,
        "status": p.status,
        "is_featured": p.is_featured,
        "variants": [serialize_variant(v) for v in p.variants],
        "categories": [{"id": c.id, "name": c.name, "slug": c.slug} for c in p.categories],
        "created_at": iso(p.created_at),
        "updated_at": iso(p.updated_at),
    }


# ---------------- consultas ----------------
def list_products(
    tenant_id: int,
    *,
    search: str | None = None,
    status: str | None = None,
    sort: str = "created_at",
    order: str = "desc",
    page: int = 1,
    limit: int = 20,
    published_only: bool = False,
    category_id: int | None = None,
    category_slug: str | None = None,
) -> dict[str, Any]:
    q = Product.query.filter(Product.tenant_id == tenant_id)
    if category_id:
        q = q.filter(Product.categories.any(ProductCategory.id == int(category_id)))
    elif category_slug:
        q = q.filter(Product.categories.any(ProductCategory.slug == category_slug))
    if published_only:
        q = q.filter(Product.status == "published")
    elif status:
        if status not in STATUSES:
            raise ValidationError(f"Unknown status: {status}")
        q = q.filter(Product.status == status)
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(
            Product.name.ilike(like),
            Product.description.ilike(like),
            Product.sku.ilike(like),
        ))
    col = SORT_FIELDS.get(sort, Product.created_at)
    q = q.order_by(col.asc() if order == "asc" else col.desc(), Product.id.desc())
    return paginate_query(q, page, limit, serialize)


def get_product(tenant_id: int, product_id: int) -> Product:
    p = Product.query.filter_by(tenant_id=tenant_id, id=product_id).first()
    if not p:
        raise NotFoundError("Product not found")
    return p


def get_product_by_slug(tenant_id: int, slug: str, *, published_only: bool = True) -> Product:
    q = Product.query.filter_by(tenant_id=tenant_id, slug=slug)
    if published_only:
        q = q.filter_by(status="published")
    p = q.first()
    if not p:
        raise NotFoundError("Product not found")
    return p


def get_variant(tenant_id: int, variant_id: int) -> ProductVariant:
    v = ProductVariant.query.filter_by(tenant_id=tenant_id, id=variant_id).first()
    if not v:
        raise NotFoundError("Variant not found")
    return v


# ---------------- escrita ----------------
def _slug_exists(tenant_id: int, exclude_id: int | None = None):
    def check(candidate: str) -> bool:
        q = Product.query.filter(Product.tenant_id == tenant_id, Product.slug == candidate)
        if exclude_id:
            q = q.filter(Product.id != exclude_id)
        return db.session.query(q.exists()).scalar()
    return check


def _price(value, field: str, *, allow_none: bool = False):
    dec = to_decimal(value, field, allow_none=allow_none)
    if dec is not None and dec < 0:
        raise ValidationError(f"{field} must be >= 0")
    return dec


def create_product(tenant_id: int, data: dict) -> Product:
    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("name is required")
    status = data.get("status") or "draft"
    if status not in STATUSES:
        raise ValidationError(f"Unknown status: {status}")

    if data.get("slug"):
        slug = slugify(data["slug"])
        if not slug:
            raise ValidationError("Invalid slug")
        if _slug_exists(tenant_id)(slug):
            raise ConflictError(f"Slug '{slug}' already in use")
    else:
        slug = unique_slug(name, _slug_exists(tenant_id), fallback="product")

    p = Product(
        tenant_id=tenant_id,
        name=name,
        slug=slug,
        description=data.get("description"),
        base_price=_price(data.get("base_price"), "base_price"),
        compare_at_price=_price(data.get("compare_at_price"), "compare_at_price", allow_none=True),
        sku=data.get("sku"),
        status=status,
        is_featured=bool(data.get("is_featured", False)),
    )
    db.session.add(p)
    db.session.flush()
    for vdata in data.get("variants") or []:
        add_variant(p, vdata)
    if data.get("category_ids"):
        categories_svc.set_product_categories(p, data["category_ids"])
    return p


def update_product(p: Product, data: dict) -> Product:
    if "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationError("name is required")
        p.name = name
    if "slug" in data and data["slug"] != p.slug:
        slug = slugify(data.get("slug"))
        if not slug:
            raise ValidationError("Invalid slug")
        if _slug_exists(p.tenant_id, exclude_id=p.id)(slug):
            raise ConflictError(f"Slug '{slug}' already in use")
        p.slug = slug
    if "description" in data:
        p.description = data.get("description")
    if "base_price" in data:
        p.base_price = _price(data.get("base_price"), "base_price")
    if "compare_at_price" in data:
        p.compare_at_price = _price(data.get("compare_at_price"), "compare_at_price", allow_none=True)
    if "sku" in data:
        p.sku = data.get("sku")
    if "is_featured" in data:
        p.is_featured = bool(data["is_featured"])
    if "category_ids" in data:
        categories_svc.set_product_categories(p, data.get("category_ids") or [])
    if "status" in data:
        set_status(p, data["status"])
    p.updated_at = datetime.utcnow()
    db.session.flush()
    return p


def set_status(p: Product, status: str) -> Product:
    if status not in STATUSES:
        raise ValidationError(f"Unknown status: {status}")
    p.status = status
    db.session.flush()
    return p


def bulk_update_status(tenant_id: int, ids: list[int], status: str) -> int:
    if status not in STATUSES:
        raise ValidationError(f"Unknown status: {status}")
    if not ids:
        return 0
    rows = Product.query.filter(Product.tenant_id == tenant_id, Product.id.in_(ids)).all()
    for p in rows:
        p.status = status
    db.session.flush()
    return len(rows)


def delete_product(p: Product) -> None:
    db.session.delete(p)
    db.session.flush()


# ---------------- variantes ----------------
def _sku_taken(tenant_id: int, sku: str, exclude_id: int | None = None) -> bool:
    q = ProductVariant.query.filter(ProductVariant.tenant_id == tenant_id, ProductVariant.sku == sku)
    if exclude_id:
        q = q.filter(ProductVariant.id != exclude_id)
    return db.session.query(q.exists()).scalar()


def add_variant(p: Product, data: dict) -> ProductVariant:
    name = (data.get("name") or "").strip()
    sku = (data.get("sku") or "").strip()
    if not name or not sku:
        raise ValidationError("Variant name and sku are required")
    if _sku_taken(p.tenant_id, sku):
        raise ConflictError(f"SKU '{sku}' already in use")
    v = ProductVariant(
        tenant_id=p.tenant_id,
        product=p,
        name=name,
        sku=sku,
        price=_price(data.get("price"), "price", allow_none=True),
        attributes=dict(data.get("attributes") or {}),
        is_active=bool(data.get("is_active", True)),
    )
    db.session.add(v)
    db.session.flush()

    qty = int(data.get("quantity") or 0)
    inv = Inventory(
        tenant_id=p.tenant_id,
        variant_id=v.id,
        quantity=qty,
        reserved=0,
        available=qty,
        low_stock_threshold=int(data.get("low_stock_threshold") or 10),
    )
    v.inventory = inv
    db.session.add(inv)
    db.session.flush()
    return v


def update_variant(v: ProductVariant, data: dict) -> ProductVariant:
    if "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationError("Variant name is required")
        v.name = name
    if "sku" in data and data["sku"] != v.sku:
        sku = (data.get("sku") or "").strip()
        if not sku:
            raise ValidationError("sku is required")
        if _sku_taken(v.tenant_id, sku, exclude_id=v.id):
            raise ConflictError(f"SKU '{sku}' already in use")
        v.sku = sku
    if "price" in data:
        v.price = _price(data.get("price"), "price", allow_none=True)
    if "attributes" in data:
        v.attributes = dict(data.get("attributes") or {})
    if "is_active" in data:
        v.is_active = bool(data["is_active"])
    db.session.flush()
    return v


def delete_variant(v: ProductVariant) -> None:
    db.session.delete(v)
    db.session.flush()
