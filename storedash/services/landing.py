from __future__ import annotations

import re
from collections import Counter
from datetime import datetime, timedelta
from typing import Any

from storedash.errors import ConflictError, NotFoundError, ValidationError
from storedash.extensions import db
from storedash.models_site import LandingPage, PageView
from storedash.utils import iso, paginate_query, slugify, unique_slug

SECTION_TYPES = (
    "hero", "features", "testimonials", "cta", "stats",
    "content", "products", "blog-posts", "footer",
)
# tipo -> (campo obrigatório em data, precisa ser lista?)
REQUIRED_DATA = {
    "hero": ("headline", False),
    "features": ("features", True),
    "testimonials": ("testimonials", True),
    "stats": ("stats", True),
}

_TABLET_RE = re.compile(r"ipad|tablet|kindle|silk|playbook", re.I)
_MOBILE_RE = re.compile(r"mobi|iphone|ipod|android.*mobile|windows phone|blackberry", re.I)
_ANDROID_RE = re.compile(r"android", re.I)


def serialize(page: LandingPage, *, public: bool = False) -> dict[str, Any]:
    sections = list(page.sections or [])
    if public:
        sections = [s for s in sections if s.get("visible", True)]
    return {
        "id": page.id,
        "slug": page.slug,
        "title": page.title,
        "sections": sections,
        "settings": dict(page.settings or {}),
        "is_published": page.is_published,
        "published_at": iso(page.published_at),
        "meta_title": page.meta_title,
        "meta_description": page.meta_description,
        "updated_at": iso(page.updated_at),
    }


# ---------------- seções ----------------
def validate_sections(sections: Any) -> list[dict[str, Any]]:
    """Raises ValidationError with per-section details; returns normalized sections."""
    if not isinstance(sections, list):
        raise ValidationError("sections must be a list")
    errors: list[dict[str, Any]] = []
    seen: set[str] = set()
    normalized = []
    for idx, section in enumerate(sections):
        problems = []
        if not isinstance(section, dict):
            errors.append({"index": idx, "errors": ["section must be an object"]})
            continue
        sid = str(section.get("id") or "").strip()
        stype = section.get("type")
        data = section.get("data")
        if not sid:
            problems.append("id is required")
        elif sid in seen:
            problems.append(f"duplicate section id '{sid}'")
        seen.add(sid)
        if stype not in SECTION_TYPES:
            problems.append(f"unknown section type '{stype}'")
        if data is None:
            data = {}
        if not isinstance(data, dict):
            problems.append("data must be an object")
            data = {}
        required = REQUIRED_DATA.get(stype)
        if required:
            field, must_be_list = required
            value = data.get(field)
            if must_be_list and not isinstance(value, list):
                problems.append(f"data.{field} must be a list")
            elif not must_be_list and not str(value or "").strip():
                problems.append(f"data.{field} is required")
        if problems:
            errors.append({"index": idx, "id": sid or None, "errors": problems})
            continue
        normalized.append({
            "id": sid,
            "type": stype,
            "visible": bool(section.get("visible", True)),
            "data": data,
        })
    if errors:
        raise ValidationError("Invalid sections", details=errors)
    return normalized


# ---------------- consultas ----------------
def list_pages(tenant_id: int, *, page: int = 1, limit: int = 20) -> dict[str, Any]:
    q = LandingPage.query.filter_by(tenant_id=tenant_id).order_by(LandingPage.updated_at.desc(), LandingPage.id.desc())
    return paginate_query(q, page, limit, serialize)


def get_page(tenant_id: int, page_id: int) -> LandingPage:
    p = LandingPage.query.filter_by(tenant_id=tenant_id, id=page_id).first()
    if not p:
        raise NotFoundError("Landing page not found")
    return p


def get_public(tenant_id: int, slug: str) -> LandingPage:
    p = LandingPage.query.filter_by(tenant_id=tenant_id, slug=slug, is_published=True).first()
    if not p:
        raise NotFoundError("Landing page not found")
    return p


# ---------------- escrita ----------------
def _slug_exists(tenant_id: int, exclude_id: int | None = None):
    def check(candidate: str) -> bool:
        q = LandingPage.query.filter(LandingPage.tenant_id == tenant_id, LandingPage.slug == candidate)
        if exclude_id:
            q = q.filter(LandingPage.id != exclude_id)
        return db.session.query(q.exists()).scalar()
    return check


def create_page(tenant_id: int, data: dict, *, now: datetime | None = None) -> LandingPage:
    title = (data.get("title") or "").strip()
    if not title:
        raise ValidationError("title is required")
    now = now or datetime.utcnow()
    if data.get("slug"):
        slug = slugify(data["slug"])
        if not slug:
            raise ValidationError("Invalid slug")
        if _slug_exists(tenant_id)(slug):
            raise ConflictError(f"Slug '{slug}' already in use")
    else:
        slug = unique_slug(title, _slug_exists(tenant_id), fallback="page")
    published = bool(data.get("is_published", False))
    p = LandingPage(
        tenant_id=tenant_id,
        slug=slug,
        title=title,
        sections=validate_sections(data.get("sections") or []),
        settings=dict(data.get("settings") or {}),
        is_published=published,
        published_at=now if published else None,
        meta_title=data.get("meta_title"),
        meta_description=data.get("meta_description"),
    )
    db.session.add(p)
    db.session.flush()
    return p


def update_page(p: LandingPage, data: dict, *, now: datetime | None = None) -> LandingPage:
    if "title" in data:
        title = (data.get("title") or "").strip()
        if not title:
            raise ValidationError("title is required")
        p.title = title
    if data.get("slug") and data["slug"] != p.slug:
        slug = slugify(data["slug"])
        if not slug:
            raise ValidationError("Invalid slug")
        if _slug_exists(p.tenant_id, exclude_id=p.id)(slug):
            raise ConflictError(f"Slug '{slug}' already in use")
        p.slug = slug
    if "sections" in data:
        p.sections = validate_sections(data.get("sections") or [])
    if "settings" in data:
        p.settings = dict(data.get("settings") or {})
    for field in ("meta_title", "meta_description"):
        if field in data:
            setattr(p, field, data.get(field))
    if "is_published" in data:
        if data["is_published"]:
            publish(p, now=now)
        else:
            unpublish(p)
    p.updated_at = now or datetime.utcnow()
    db.session.flush()
    return p


def publish(p: LandingPage, *, now: datetime | None = None) -> LandingPage:
    if not p.is_published:
        p.is_published = True
        p.published_at = now or datetime.utcnow()
    db.session.flush()
    return p


def unpublish(p: LandingPage) -> LandingPage:
    p.is_published = False
    db.session.flush()
    return p


def reorder_sections(p: LandingPage, section_ids: list[str]) -> LandingPage:
    current = {s["id"]: s for s in (p.sections or [])}
    if sorted(map(str, section_ids)) != sorted(current) or len(set(section_ids)) != len(section_ids):
        raise ValidationError("section_ids must list every existing section exactly once")
    p.sections = [current[str(sid)] for sid in section_ids]
    db.session.flush()
    return p


def delete_page(p: LandingPage) -> None:
    db.session.delete(p)
    db.session.flush()


# ---------------- analytics ----------------
def device_type(user_agent: str | None) -> str:
    ua = user_agent or ""
    if _TABLET_RE.search(ua) or (_ANDROID_RE.search(ua) and not re.search(r"mobile", ua, re.I)):
        return "tablet"
    if _MOBILE_RE.search(ua):
        return "mobile"
    return "desktop"


def record_view(
    page: LandingPage,
    *,
    session_id: str | None = None,
    referrer: str | None = None,
    user_agent: str | None = None,
    now: datetime | None = None,
) -> PageView:
    view = PageView(
        tenant_id=page.tenant_id,
        page_id=page.id,
        session_id=session_id,
        referrer=(referrer or None) and referrer[:512],
        device_type=device_type(user_agent),
        viewed_at=now or datetime.utcnow(),
    )
    db.session.add(view)
    db.session.flush()
    return view


def analytics(page: LandingPage, days: int = 30, *, now: datetime | None = None) -> dict[str, Any]:
    now = now or datetime.utcnow()
    since = now - timedelta(days=days)
    views = page.views.filter(PageView.viewed_at >= since).all()
    by_day = Counter(v.viewed_at.date().isoformat() for v in views)
    referrers = Counter(v.referrer for v in views if v.referrer)
    return {
        "page_id": page.id,
        "days": days,
        "total_views": len(views),
        "unique_sessions": len({v.session_id for v in views if v.session_id}),
        "by_device": dict(Counter(v.device_type or "desktop" for v in views)),
        "by_day": [{"date": d, "views": by_day[d]} for d in sorted(by_day)],
        "top_referrers": [{"referrer": r, "views": c} for r, c in referrers.most_common(5)],
    }
