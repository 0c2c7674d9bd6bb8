# storedash/utils.py
from __future__ import annotations

import re
import unicodedata
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Callable

from flask import current_app, request

from storedash.errors import ValidationError

CENTS = Decimal("0.01")


# -------------------------------------------------------------
# Helpers gerais
# -------------------------------------------------------------
def slugify(text: str | None) -> str:
    text = unicodedata.normalize("NFKD", text or "").encode("ascii", "ignore").decode("ascii")
    text = text.lower().strip()
    text = re.sub(r"[^a-z0-9]+", "-", text)
    return re.sub(r"-+", "-", text).strip("-")


def unique_slug(base: str, exists: Callable[[str], bool], fallback: str = "item") -> str:
    """Append -2, -3, ... until ``exists(candidate)`` is False."""
    base = slugify(base) or fallback
    candidate = base
    counter = 2
    while exists(candidate):
        candidate = f"{base}-{counter}"
        counter += 1
    return candidate


def as_bool(v: Any) -> bool:
    """Converte valores diversos para booleano (1/true/on)."""
    if isinstance(v, bool):
        return v
    s = str(v).strip().lower()
    return s in ("1", "true", "yes", "on")


def to_decimal(value: Any, field: str = "amount", *, allow_none: bool = False) -> Decimal | None:
    if value is None or value == "":
        if allow_none:
            return None
        raise ValidationError(f"{field} is required")
    try:
        dec = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number")
    if not dec.is_finite():
        raise ValidationError(f"{field} must be a number")
    return dec.quantize(CENTS, rounding=ROUND_HALF_UP)


def money(value: Decimal | int | float | None) -> str:
    return str(Decimal(str(value or 0)).quantize(CENTS, rounding=ROUND_HALF_UP))


def to_int(value: Any, field: str, *, default: int | None = None, minimum: int | None = None) -> int:
    if value is None or value == "":
        if default is None:
            raise ValidationError(f"{field} is required")
        return default
    try:
        n = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer")
    if minimum is not None and n < minimum:
        raise ValidationError(f"{field} must be >= {minimum}")
    return n


def parse_datetime(value: Any, field: str = "date", *, allow_none: bool = False) -> datetime | None:
    """Accepts datetime/date objects and ISO strings ('Z' suffix tolerated)."""
    if value is None or value == "":
        if allow_none:
            return None
        raise ValidationError(f"{field} is required")
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    s = str(value).strip()
    if s.endswith("Z"):
        s = s[:-1]
    try:
        return datetime.fromisoformat(s).replace(tzinfo=None)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO date/datetime")


def iso(value: datetime | date | None) -> str | None:
    return value.isoformat() if value else None


# -------------------------------------------------------------
# Request helpers
# -------------------------------------------------------------
def json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("JSON body must be an object")
    return data


def page_args() -> tuple[int, int]:
    cfg = current_app.config
    page = to_int(request.args.get("page"), "page", default=1, minimum=1)
    limit = to_int(
        request.args.get("limit"), "limit",
        default=cfg.get("DEFAULT_PAGE_SIZE", 20), minimum=1,
    )
    return page, min(limit, cfg.get("MAX_PAGE_SIZE", 100))


def paginate_query(query, page: int, limit: int, serialize: Callable) -> dict:
    total = query.order_by(None).count()
    rows = query.offset((page - 1) * limit).limit(limit).all()
    return {
        "data": [serialize(r) for r in rows],
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": (total + limit - 1) // limit,
    }


def paginate_list(items: list, page: int, limit: int, serialize: Callable | None = None) -> dict:
    total = len(items)
    chunk = items[(page - 1) * limit: (page - 1) * limit + limit]
    return {
        "data": [serialize(i) for i in chunk] if serialize else chunk,
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": (total + limit - 1) // limit,
    }
