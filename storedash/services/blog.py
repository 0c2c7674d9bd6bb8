from __future__ import annotations

import re
from datetime import datetime
from typing import Any

from sqlalchemy import func, or_

from storedash.errors import ConflictError, NotFoundError, ValidationError
from storedash.extensions import db
from storedash.models import User
from storedash.models_site import BlogPost
from storedash.utils import iso, paginate_list, paginate_query, slugify, unique_slug

STATUSES = ("draft", "published", "archived")
EXCERPT_LENGTH = 200

_MD_PATTERNS = [
    (re.compile(r"```.*?```", re.S), " "),
    (re.compile(r"!\[[^\]]*\]\([^)]*\)"), " "),
    (re.compile(r"\[([^\]]*)\]\([^)]*\)"), r"\1"),
    (re.compile(r"<[^>]+>"), " "),
    (re.compile(r"^\s{0,3}(#{1,6}|>|[-*+]|\d+\.)\s+", re.M), ""),
    (re.compile(r"[*_~`]+"), ""),
]


def generate_excerpt(content: str | None, max_length: int = EXCERPT_LENGTH) -> str:
    """Plain-text excerpt: markdown stripped, cut at a word boundary with ``...``."""
    text = content or ""
    for pattern, repl in _MD_PATTERNS:
        text = pattern.sub(repl, text)
    text = re.sub(r"\s+", " ", text).strip()
    if len(text) <= max_length:
        return text
    cut = text[:max_length]
    if " " in cut:
        cut = cut[: cut.rfind(" ")]
    return cut.rstrip(" ,.;:") + "..."


def serialize(p: BlogPost) -> dict[str, Any]:
    return {
        "id": p.id,
        "title": p.title,
        "slug": p.slug,
        "excerpt": p.excerpt,
        "content": p.content,
        "status": p.status,
        "author_id": p.author_id,
        "author_name": p.author.display_name if p.author else None,
        "tags": list(p.tags or []),
        "category": p.category,
        "featured_image": p.featured_image,
        "meta_title": p.meta_title,
        "meta_description": p.meta_description,
        "published_at": iso(p.published_at),
        "created_at": iso(p.created_at),
        "updated_at": iso(p.updated_at),
    }


def _slug_exists(tenant_id: int, exclude_id: int | None = None):
    def check(candidate: str) -> bool:
        q = BlogPost.query.filter(BlogPost.tenant_id == tenant_id, BlogPost.slug == candidate)
        if exclude_id:
            q = q.filter(BlogPost.id != exclude_id)
        return db.session.query(q.exists()).scalar()
    return check


def _tags(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, (list, tuple)):
        raise ValidationError("tags must be a list")
    out = []
    for t in value:
        t = str(t).strip()
        if t and t not in out:
            out.append(t)
    return out


# ---------------- consultas ----------------
def get_post(tenant_id: int, post_id: int) -> BlogPost:
    p = BlogPost.query.filter_by(tenant_id=tenant_id, id=post_id).first()
    if not p:
        raise NotFoundError("Blog post not found")
    return p


def find_by_slug(tenant_id: int, slug: str) -> BlogPost:
    """Public lookup; drafts and archived posts do not exist for readers."""
    p = BlogPost.query.filter_by(tenant_id=tenant_id, slug=slug, status="published").first()
    if not p:
        raise NotFoundError(f'Blog post with slug "{slug}" not found')
    return p


def list_posts(
    tenant_id: int,
    *,
    status: str | None = None,
    category: str | None = None,
    tag: str | None = None,
    search: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> dict[str, Any]:
    q = BlogPost.query.filter(BlogPost.tenant_id == tenant_id)
    if status:
        q = q.filter(BlogPost.status == status)
    if category:
        q = q.filter(BlogPost.category == category)
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(BlogPost.title.ilike(like), BlogPost.excerpt.ilike(like), BlogPost.content.ilike(like)))
    if status == "published":
        q = q.order_by(BlogPost.published_at.desc(), BlogPost.id.desc())
    else:
        q = q.order_by(BlogPost.created_at.desc(), BlogPost.id.desc())
    if tag:
        # tags é JSON; filtra em Python para funcionar em qualquer banco
        rows = [p for p in q.all() if tag in (p.tags or [])]
        return paginate_list(rows, page, limit, serialize)
    return paginate_query(q, page, limit, serialize)


def list_published(
    tenant_id: int,
    *,
    category: str | None = None,
    tag: str | None = None,
    search: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> dict[str, Any]:
    return list_posts(
        tenant_id, status="published", category=category, tag=tag,
        search=search, page=page, limit=limit,
    )


def validate_slug(tenant_id: int, slug: str, exclude_id: int | None = None) -> dict[str, Any]:
    slug = slugify(slug)
    if not slug:
        raise ValidationError("slug is required")
    existing = BlogPost.query.filter_by(tenant_id=tenant_id, slug=slug).first()
    if not existing or (exclude_id and existing.id == exclude_id):
        return {"available": True, "slug": slug, "message": "Slug is available", "suggestions": []}

    taken = _slug_exists(tenant_id)
    suggestions = [f"{slug}-{i}" for i in range(1, 4) if not taken(f"{slug}-{i}")]
    return {
        "available": False,
        "slug": slug,
        "message": f'Slug "{slug}" is already in use by "{existing.title}"',
        "existing_post": {"id": existing.id, "title": existing.title, "status": existing.status},
        "suggestions": suggestions,
    }


# ---------------- escrita ----------------
def create_post(tenant_id: int, data: dict, *, author: User | None = None, now: datetime | None = None) -> BlogPost:
    title = (data.get("title") or "").strip()
    if not title:
        raise ValidationError("title is required")
    status = data.get("status") or "draft"
    if status not in STATUSES:
        raise ValidationError(f"Unknown status: {status}")
    now = now or datetime.utcnow()

    base = data.get("slug") or title
    slug = unique_slug(base, _slug_exists(tenant_id), fallback="post")
    content = data.get("content") or ""

    p = BlogPost(
        tenant_id=tenant_id,
        author_id=author.id if author else None,
        title=title,
        slug=slug,
        content=content,
        excerpt=data.get("excerpt") or generate_excerpt(content),
        status=status,
        tags=_tags(data.get("tags")),
        category=data.get("category"),
        featured_image=data.get("featured_image"),
        meta_title=data.get("meta_title"),
        meta_description=data.get("meta_description"),
        published_at=now if status == "published" else None,
        created_at=now,
        updated_at=now,
    )
    db.session.add(p)
    db.session.flush()
    return p


def update_post(p: BlogPost, data: dict, *, now: datetime | None = None) -> BlogPost:
    now = now or datetime.utcnow()
    if "title" in data:
        title = (data.get("title") or "").strip()
        if not title:
            raise ValidationError("title is required")
        p.title = title
    if data.get("slug") and data["slug"] != p.slug:
        slug = slugify(data["slug"])
        if not slug:
            raise ValidationError("Invalid slug")
        conflict = BlogPost.query.filter(
            BlogPost.tenant_id == p.tenant_id, BlogPost.slug == slug, BlogPost.id != p.id
        ).first()
        if conflict:
            raise ConflictError(
                f'Slug "{slug}" is already in use by "{conflict.title}". Please choose a different slug.'
            )
        p.slug = slug
    if "content" in data:
        p.content = data.get("content") or ""
        if "excerpt" not in data:
            p.excerpt = generate_excerpt(p.content)
    if "excerpt" in data:
        p.excerpt = data.get("excerpt") or ""
    if "tags" in data:
        p.tags = _tags(data.get("tags"))
    for field in ("category", "featured_image", "meta_title", "meta_description"):
        if field in data:
            setattr(p, field, data.get(field))
    if "status" in data:
        _set_status(p, data["status"], now)
    p.updated_at = now
    db.session.flush()
    return p


def _set_status(p: BlogPost, status: str, now: datetime) -> None:
    if status not in STATUSES:
        raise ValidationError(f"Unknown status: {status}")
    if status == "published" and p.published_at is None:
        p.published_at = now
    p.status = status


def publish(p: BlogPost, *, now: datetime | None = None) -> BlogPost:
    _set_status(p, "published", now or datetime.utcnow())
    db.session.flush()
    return p


def unpublish(p: BlogPost) -> BlogPost:
    p.status = "draft"
    db.session.flush()
    return p


def archive(p: BlogPost) -> BlogPost:
    p.status = "archived"
    db.session.flush()
    return p


def delete_post(p: BlogPost) -> None:
    db.session.delete(p)
    db.session.flush()


# ---------------- categorias e tags ----------------
def list_categories(tenant_id: int, *, published_only: bool = False) -> list[dict[str, Any]]:
    q = db.session.query(BlogPost.category, func.count(BlogPost.id)).filter(
        BlogPost.tenant_id == tenant_id, BlogPost.category.isnot(None), BlogPost.category != "",
    )
    if published_only:
        q = q.filter(BlogPost.status == "published")
    rows = q.group_by(BlogPost.category).order_by(BlogPost.category).all()
    return [{"name": name, "slug": slugify(name), "post_count": n} for name, n in rows]


def list_tags(tenant_id: int, *, published_only: bool = False) -> list[dict[str, Any]]:
    q = BlogPost.query.filter(BlogPost.tenant_id == tenant_id)
    if published_only:
        q = q.filter(BlogPost.status == "published")
    counts: dict[str, int] = {}
    for p in q.all():
        for t in p.tags or []:
            counts[t] = counts.get(t, 0) + 1
    return [{"name": t, "slug": slugify(t), "post_count": counts[t]} for t in sorted(counts)]


def _name(value: Any, field: str) -> str:
    name = str(value or "").strip()
    if not name:
        raise ValidationError(f"{field} is required")
    return name


def rename_category(tenant_id: int, old: str, new: str) -> int:
    """Moves every post from ``old`` to ``new``; renaming onto an existing category merges them."""
    old, new = _name(old, "category"), _name(new, "new_name")
    rows = BlogPost.query.filter_by(tenant_id=tenant_id, category=old).all()
    if not rows:
        raise NotFoundError(f"Category '{old}' not found")
    for p in rows:
        p.category = new
    db.session.flush()
    return len(rows)


def remove_category(tenant_id: int, name: str) -> int:
    """Leaves the posts uncategorized."""
    name = _name(name, "category")
    rows = BlogPost.query.filter_by(tenant_id=tenant_id, category=name).all()
    if not rows:
        raise NotFoundError(f"Category '{name}' not found")
    for p in rows:
        p.category = None
    db.session.flush()
    return len(rows)


def _tagged(tenant_id: int, tag: str) -> list[BlogPost]:
    rows = [p for p in BlogPost.query.filter_by(tenant_id=tenant_id).all() if tag in (p.tags or [])]
    if not rows:
        raise NotFoundError(f"Tag '{tag}' not found")
    return rows


def rename_tag(tenant_id: int, old: str, new: str) -> int:
    old, new = _name(old, "tag"), _name(new, "new_name")
    rows = _tagged(tenant_id, old)
    for p in rows:
        p.tags = _tags([new if t == old else t for t in p.tags])
    db.session.flush()
    return len(rows)


def remove_tag(tenant_id: int, tag: str) -> int:
    tag = _name(tag, "tag")
    rows = _tagged(tenant_id, tag)
    for p in rows:
        p.tags = [t for t in p.tags if t != tag]
    db.session.flush()
    return len(rows)
