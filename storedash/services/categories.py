from __future__ import annotations

from typing import Any, Iterable

from sqlalchemy import func

from storedash.errors import ConflictError, NotFoundError, ValidationError
from storedash.extensions import db
from storedash.models_shop import Product, ProductCategory, product_category_links
from storedash.utils import iso, slugify, unique_slug


def serialize(c: ProductCategory, *, product_count: int | None = None, children: list | None = None) -> dict[str, Any]:
    data = {
        "id": c.id,
        "name": c.name,
        "slug": c.slug,
        "description": c.description,
        "parent_id": c.parent_id,
        "display_order": c.display_order,
        "is_visible": c.is_visible,
        "created_at": iso(c.created_at),
    }
    if product_count is not None:
        data["product_count"] = product_count
    if children is not None:
        data["children"] = children
    return data


def _published_counts(tenant_id: int) -> dict[int, int]:
    rows = (
        db.session.query(product_category_links.c.category_id, func.count(Product.id))
        .join(Product, Product.id == product_category_links.c.product_id)
        .filter(Product.tenant_id == tenant_id, Product.status == "published")
        .group_by(product_category_links.c.category_id)
        .all()
    )
    return {cid: n for cid, n in rows}


def list_categories(tenant_id: int, *, visible_only: bool = False) -> list[dict[str, Any]]:
    """Category tree (roots first, children nested) ordered by ``display_order``."""
    q = ProductCategory.query.filter(ProductCategory.tenant_id == tenant_id)
    if visible_only:
        q = q.filter(ProductCategory.is_visible.is_(True))
    rows = q.order_by(ProductCategory.display_order, ProductCategory.id).all()
    counts = _published_counts(tenant_id)
    ids = {c.id for c in rows}

    def node(c: ProductCategory) -> dict[str, Any]:
        kids = [node(k) for k in rows if k.parent_id == c.id]
        return serialize(c, product_count=counts.get(c.id, 0), children=kids)

    # filhos de uma categoria oculta também somem da vitrine
    return [node(c) for c in rows if c.parent_id is None or (c.parent_id not in ids and not visible_only)]


def get_category(tenant_id: int, category_id: int) -> ProductCategory:
    c = ProductCategory.query.filter_by(tenant_id=tenant_id, id=category_id).first()
    if not c:
        raise NotFoundError("Category not found")
    return c


def get_by_slug(tenant_id: int, slug: str, *, visible_only: bool = False) -> ProductCategory:
    q = ProductCategory.query.filter_by(tenant_id=tenant_id, slug=slug)
    if visible_only:
        q = q.filter_by(is_visible=True)
    c = q.first()
    if not c:
        raise NotFoundError(f"Category '{slug}' not found")
    return c


def _slug_exists(tenant_id: int, exclude_id: int | None = None):
    def check(candidate: str) -> bool:
        q = ProductCategory.query.filter(ProductCategory.tenant_id == tenant_id, ProductCategory.slug == candidate)
        if exclude_id:
            q = q.filter(ProductCategory.id != exclude_id)
        return db.session.query(q.exists()).scalar()
    return check


def _check_parent(c: ProductCategory | None, tenant_id: int, parent_id: Any) -> int | None:
    if parent_id in (None, ""):
        return None
    parent = get_category(tenant_id, int(parent_id))
    if c is None:
        return parent.id
    if parent.id == c.id:
        raise ValidationError("A category cannot be its own parent")
    seen = set()
    while parent is not None and parent.id not in seen:
        if parent.parent_id == c.id:
            raise ValidationError("Parent assignment would create a cycle")
        seen.add(parent.id)
        parent = parent.parent
    return int(parent_id)


def create_category(tenant_id: int, data: dict) -> ProductCategory:
    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("name is required")
    if data.get("slug"):
        slug = slugify(data["slug"])
        if not slug:
            raise ValidationError("Invalid slug")
        if _slug_exists(tenant_id)(slug):
            raise ConflictError(f"Category with slug '{slug}' already exists")
    else:
        slug = unique_slug(name, _slug_exists(tenant_id), fallback="category")
    c = ProductCategory(
        tenant_id=tenant_id,
        name=name,
        slug=slug,
        description=data.get("description"),
        parent_id=_check_parent(None, tenant_id, data.get("parent_id")),
        display_order=int(data.get("display_order") or 0),
        is_visible=bool(data.get("is_visible", True)),
    )
    db.session.add(c)
    db.session.flush()
    return c


def update_category(c: ProductCategory, data: dict) -> ProductCategory:
    if "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationError("name is required")
        c.name = name
    if "slug" in data and data["slug"] != c.slug:
        slug = slugify(data.get("slug"))
        if not slug:
            raise ValidationError("Invalid slug")
        if _slug_exists(c.tenant_id, exclude_id=c.id)(slug):
            raise ConflictError(f"Category with slug '{slug}' already exists")
        c.slug = slug
    if "parent_id" in data:
        c.parent_id = _check_parent(c, c.tenant_id, data.get("parent_id"))
    if "description" in data:
        c.description = data.get("description")
    if "display_order" in data:
        c.display_order = int(data.get("display_order") or 0)
    if "is_visible" in data:
        c.is_visible = bool(data["is_visible"])
    db.session.flush()
    return c


def delete_category(c: ProductCategory) -> None:
    """Products keep existing; only their link to the category goes away."""
    if ProductCategory.query.filter_by(tenant_id=c.tenant_id, parent_id=c.id).count():
        raise ValidationError("Cannot delete a category that has subcategories")
    db.session.delete(c)
    db.session.flush()


def set_product_categories(product: Product, category_ids: Iterable[Any]) -> Product:
    ids = {int(i) for i in category_ids or []}
    rows = (
        ProductCategory.query.filter(ProductCategory.tenant_id == product.tenant_id, ProductCategory.id.in_(ids)).all()
        if ids else []
    )
    missing = sorted(ids - {c.id for c in rows})
    if missing:
        raise NotFoundError("Categories not found", details={"ids": missing})
    product.categories = rows
    db.session.flush()
    return product


def related_products(product: Product, limit: int = 6) -> list[Product]:
    """Published products sharing at least one category, newest first."""
    ids = [c.id for c in product.categories]
    if not ids:
        return []
    return (
        Product.query.filter(
            Product.tenant_id == product.tenant_id,
            Product.status == "published",
            Product.id != product.id,
            Product.categories.any(ProductCategory.id.in_(ids)),
        )
        .order_by(Product.created_at.desc(), Product.id.desc())
        .limit(limit)
        .all()
    )
