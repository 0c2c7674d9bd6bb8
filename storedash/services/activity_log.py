from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from flask import current_app, has_request_context, request

from storedash.extensions import db
from storedash.models import ActivityLog, User
from storedash.utils import iso, paginate_query, parse_datetime

DEFAULT_RETENTION_DAYS = 90


def serialize(a: ActivityLog) -> dict[str, Any]:
    return {
        "id": a.id,
        "user_id": a.user_id,
        "user_email": a.user.email if a.user else None,
        "action": a.action,
        "entity_type": a.entity_type,
        "entity_id": a.entity_id,
        "metadata": dict(a.meta or {}),
        "ip_address": a.ip_address,
        "user_agent": a.user_agent,
        "created_at": iso(a.created_at),
    }


def log_activity(
    tenant_id: int,
    action: str,
    *,
    user: User | None = None,
    entity_type: str | None = None,
    entity_id: Any = None,
    metadata: dict | None = None,
    now: datetime | None = None,
) -> ActivityLog:
    ip = ua = None
    if has_request_context():
        ip = request.headers.get("X-Forwarded-For", request.remote_addr or "").split(",")[0].strip() or None
        ua = (request.user_agent.string or "")[:255] or None
    entry = ActivityLog(
        tenant_id=tenant_id,
        user_id=user.id if user else None,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        meta=dict(metadata or {}),
        ip_address=ip,
        user_agent=ua,
        created_at=now or datetime.utcnow(),
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def list_logs(
    tenant_id: int,
    *,
    user_id: int | None = None,
    action: str | None = None,
    entity_type: str | None = None,
    entity_id: str | None = None,
    date_from: Any = None,
    date_to: Any = None,
    page: int = 1,
    limit: int = 20,
) -> dict[str, Any]:
    q = ActivityLog.query.filter(ActivityLog.tenant_id == tenant_id)
    if user_id:
        q = q.filter(ActivityLog.user_id == user_id)
    if action:
        q = q.filter(ActivityLog.action.ilike(f"%{action}%"))
    if entity_type:
        q = q.filter(ActivityLog.entity_type == entity_type)
    if entity_id:
        q = q.filter(ActivityLog.entity_id == str(entity_id))
    start = parse_datetime(date_from, "date_from", allow_none=True)
    end = parse_datetime(date_to, "date_to", allow_none=True)
    if start:
        q = q.filter(ActivityLog.created_at >= start)
    if end:
        q = q.filter(ActivityLog.created_at <= end)
    q = q.order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
    return paginate_query(q, page, limit, serialize)


def purge_activity_logs(now: datetime | None = None, days: int | None = None) -> int:
    """Bulk delete of log rows (all tenants) older than ``days``."""
    now = now or datetime.utcnow()
    if days is None:
        days = int(current_app.config.get("ACTIVITY_LOG_RETENTION_DAYS", DEFAULT_RETENTION_DAYS))
    cutoff = now - timedelta(days=days)
    deleted = (
        ActivityLog.query
        .execution_options(skip_tenant_scope=True)
        .filter(ActivityLog.created_at < cutoff)
        .delete(synchronize_session=False)
    )
    db.session.flush()
    current_app.logger.info("purged %s activity log rows older than %s", deleted, cutoff.isoformat())
    return int(deleted or 0)
