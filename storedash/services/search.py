"""
Global search across the tenant's data.

Each provider owns one entity type and the permission needed to see it.
``search`` runs the providers the user is allowed to use, merges their scored
results and paginates them.
"""
from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

from flask import current_app
from sqlalchemy import or_, select

from storedash.errors import RateLimitError, ValidationError
from storedash.models import User
from storedash.models_shop import Order, Product, ProductVariant
from storedash.models_site import BlogPost, LandingPage
from storedash.services.activity_log import log_activity
from storedash.services.permissions import user_has_permission
from storedash.utils import iso

MAX_QUERY_LENGTH = 200
PROVIDER_LIMIT = 50
QUICK_LIMIT = 8
SENSITIVE_TYPES = {"users", "orders"}
SORTS = ("relevance", "date", "name")


@dataclass
class SearchResult:
    id: int
    entity_type: str
    title: str
    description: str = ""
    url: str = ""
    metadata: dict = field(default_factory=dict)
    relevance_score: int = 0
    date: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def title_score(title: str | None, q: str) -> int:
    t = (title or "").lower()
    if not t:
        return 0
    if t == q:
        return 100
    if t.startswith(q):
        return 75
    if q in t:
        return 50
    return 0


def field_score(value: str | None, q: str, *, exact: int = 60, partial: int = 40) -> int:
    v = (value or "").lower()
    if not v:
        return 0
    if v == q:
        return exact
    if q in v:
        return partial
    return 0


# ============================ Providers ============================

class SearchProvider:
    entity_type = ""
    permission = ""

    def query(self, tenant_id: int, like: str):
        raise NotImplementedError

    def to_result(self, row, q: str) -> SearchResult:
        raise NotImplementedError

    def search(self, tenant_id: int, q: str) -> list[SearchResult]:
        like = f"%{q}%"
        rows = self.query(tenant_id, like).limit(PROVIDER_LIMIT).all()
        results = [self.to_result(r, q) for r in rows]
        return [r for r in results if r.relevance_score > 0]


class ProductsProvider(SearchProvider):
    entity_type = "products"
    permission = "products:read"

    def query(self, tenant_id, like):
        skus = select(ProductVariant.product_id).where(ProductVariant.sku.ilike(like))
        return Product.query.filter(
            Product.tenant_id == tenant_id,
            or_(Product.name.ilike(like), Product.description.ilike(like), Product.sku.ilike(like), Product.id.in_(skus)),
        )

    def to_result(self, p: Product, q):
        sku_score = max(
            [field_score(p.sku, q)] + [field_score(v.sku, q) for v in p.variants]
        )
        score = max(title_score(p.name, q), sku_score, field_score(p.description, q, exact=25, partial=25))
        return SearchResult(
            id=p.id, entity_type=self.entity_type, title=p.name,
            description=(p.description or "")[:160], url=f"/products/{p.id}",
            metadata={"status": p.status, "sku": p.sku}, relevance_score=score, date=iso(p.created_at),
        )


class OrdersProvider(SearchProvider):
    entity_type = "orders"
    permission = "orders:read"

    def query(self, tenant_id, like):
        return Order.query.filter(
            Order.tenant_id == tenant_id,
            or_(Order.order_number.ilike(like), Order.customer_email.ilike(like), Order.customer_name.ilike(like)),
        )

    def to_result(self, o: Order, q):
        score = max(
            field_score(o.order_number, q),
            field_score(o.customer_email, q),
            title_score(o.customer_name, q) // 2,
        )
        return SearchResult(
            id=o.id, entity_type=self.entity_type, title=o.order_number,
            description=f"{o.customer_name or o.customer_email or ''} - {o.status}",
            url=f"/orders/{o.id}", metadata={"status": o.status, "total": str(o.total)},
            relevance_score=score, date=iso(o.created_at),
        )


class BlogPostsProvider(SearchProvider):
    entity_type = "posts"
    permission = "blog:read"

    def query(self, tenant_id, like):
        return BlogPost.query.filter(
            BlogPost.tenant_id == tenant_id,
            or_(BlogPost.title.ilike(like), BlogPost.excerpt.ilike(like)),
        )

    def to_result(self, p: BlogPost, q):
        score = max(title_score(p.title, q), field_score(p.excerpt, q, exact=25, partial=25))
        return SearchResult(
            id=p.id, entity_type=self.entity_type, title=p.title, description=p.excerpt or "",
            url=f"/blog/{p.id}", metadata={"status": p.status, "slug": p.slug},
            relevance_score=score, date=iso(p.created_at),
        )


class UsersProvider(SearchProvider):
    entity_type = "users"
    permission = "users:read"

    def query(self, tenant_id, like):
        return User.query.filter(User.tenant_id == tenant_id, or_(User.name.ilike(like), User.email.ilike(like)))

    def to_result(self, u: User, q):
        score = max(title_score(u.name, q), field_score(u.email, q))
        return SearchResult(
            id=u.id, entity_type=self.entity_type, title=u.display_name, description=u.email,
            url=f"/users/{u.id}", metadata={"is_active": u.is_active},
            relevance_score=score, date=iso(u.created_at),
        )


class LandingPagesProvider(SearchProvider):
    entity_type = "pages"
    permission = "landing:read"

    def query(self, tenant_id, like):
        return LandingPage.query.filter(
            LandingPage.tenant_id == tenant_id,
            or_(LandingPage.title.ilike(like), LandingPage.slug.ilike(like)),
        )

    def to_result(self, p: LandingPage, q):
        score = max(title_score(p.title, q), field_score(p.slug, q, exact=40, partial=25))
        return SearchResult(
            id=p.id, entity_type=self.entity_type, title=p.title, description=p.meta_description or "",
            url=f"/landing-pages/{p.id}", metadata={"slug": p.slug, "is_published": p.is_published},
            relevance_score=score, date=iso(p.created_at),
        )


PROVIDERS: list[SearchProvider] = [
    ProductsProvider(),
    OrdersProvider(),
    BlogPostsProvider(),
    UsersProvider(),
    LandingPagesProvider(),
]


# ============================ Rate limit ============================

class SlidingWindowLimiter:
    """In-process limiter: at most ``limit`` hits per key inside ``window`` seconds."""

    def __init__(self, window: float = 60.0):
        self.window = window
        self._hits: dict[Any, deque] = {}
        self._lock = threading.Lock()

    def hit(self, key: Any, limit: int, now: float | None = None) -> int:
        now = time.monotonic() if now is None else now
        with self._lock:
            self._evict(now)
            hits = self._hits.setdefault(key, deque())
            if len(hits) >= limit:
                retry = int(self.window - (now - hits[0])) + 1
                raise RateLimitError(
                    "Too many search requests", details={"retry_after": retry, "limit": limit}
                )
            hits.append(now)
            return limit - len(hits)

    def _evict(self, now: float) -> None:
        for key in list(self._hits):
            hits = self._hits[key]
            while hits and now - hits[0] >= self.window:
                hits.popleft()
            if not hits:
                del self._hits[key]

    def __len__(self) -> int:
        return len(self._hits)

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()


limiter = SlidingWindowLimiter()


def enforce_rate_limit(user: User, now: float | None = None) -> int:
    limit = int(current_app.config.get("SEARCH_RATE_LIMIT", 100))
    try:
        return limiter.hit(user.id, limit, now)
    except RateLimitError:
        current_app.logger.warning("search rate limit hit by user %s", user.id)
        raise


# ============================ Busca ============================

def _validate_query(q: str | None) -> str:
    q = (q or "").strip()
    if not q:
        raise ValidationError("Search query must not be empty")
    if len(q) > MAX_QUERY_LENGTH:
        raise ValidationError(f"Search query must be at most {MAX_QUERY_LENGTH} characters")
    return q


def _providers_for(user: User, type_: str) -> list[SearchProvider]:
    known = {p.entity_type for p in PROVIDERS}
    if type_ != "all" and type_ not in known:
        raise ValidationError(f"Unknown search type: {type_}")
    return [
        p for p in PROVIDERS
        if (type_ == "all" or p.entity_type == type_) and user_has_permission(user, p.permission)
    ]


def _run(user: User, q: str, providers: list[SearchProvider]) -> list[SearchResult]:
    needle = q.lower()
    results: list[SearchResult] = []
    for provider in providers:
        try:
            results.extend(provider.search(user.tenant_id, needle))
        except Exception:
            current_app.logger.exception("search provider %s failed", provider.entity_type)
    return results


def _sort(results: list[SearchResult], sort_by: str) -> list[SearchResult]:
    if sort_by == "date":
        return sorted(results, key=lambda r: r.date or "", reverse=True)
    if sort_by == "name":
        return sorted(results, key=lambda r: (r.title or "").lower())
    return sorted(results, key=lambda r: (-r.relevance_score, (r.title or "").lower()))


def search(
    user: User,
    q: str,
    *,
    type: str = "all",
    page: int = 1,
    limit: int = 20,
    sort_by: str = "relevance",
    now: datetime | None = None,
) -> dict[str, Any]:
    q = _validate_query(q)
    if sort_by not in SORTS:
        raise ValidationError(f"sort_by must be one of {', '.join(SORTS)}")
    providers = _providers_for(user, type)
    results = _sort(_run(user, q, providers), sort_by)

    touched = {p.entity_type for p in providers} & SENSITIVE_TYPES
    if touched:
        log_activity(
            user.tenant_id, "search", user=user, entity_type="search",
            metadata={"query": q, "types": sorted(touched)}, now=now,
        )

    total = len(results)
    chunk = results[(page - 1) * limit: page * limit]
    return {
        "results": [r.to_dict() for r in chunk],
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": (total + limit - 1) // limit,
    }


def quick_search(user: User, q: str) -> list[dict[str, Any]]:
    q = _validate_query(q)
    results = _sort(_run(user, q, _providers_for(user, "all")), "relevance")
    return [r.to_dict() for r in results[:QUICK_LIMIT]]
