from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Iterable

from flask import current_app

from storedash.errors import ForbiddenError, NotFoundError, ValidationError
from storedash.extensions import db
from storedash.models import User
from storedash.models_comm import Notification, NotificationPreference
from storedash.services.permissions import user_has_permission, users_with_permission
from storedash.utils import iso, paginate_list

CATEGORIES = (
    "system", "user", "security", "billing", "content",
    "workflow", "inventory", "messaging", "calendar",
)
PRIORITIES = ("low", "normal", "high", "urgent")

_HHMM = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def serialize(n: Notification) -> dict[str, Any]:
    return {
        "id": n.id,
        "title": n.title,
        "message": n.message,
        "category": n.category,
        "priority": n.priority,
        "action_url": n.action_url,
        "action_label": n.action_label,
        "metadata": dict(n.meta or {}),
        "is_read": n.is_read,
        "read_at": iso(n.read_at),
        "delivered": n.delivered,
        "created_at": iso(n.created_at),
    }


def serialize_preference(p: NotificationPreference) -> dict[str, Any]:
    return {
        "category": p.category,
        "enabled": p.enabled,
        "dnd_enabled": p.dnd_enabled,
        "dnd_start_time": p.dnd_start_time,
        "dnd_end_time": p.dnd_end_time,
        "dnd_days": list(p.dnd_days or []),
    }


# ============================ Preferências / DND ============================

def _preference(user_id: int, category: str) -> NotificationPreference | None:
    return NotificationPreference.query.filter_by(user_id=user_id, category=category).first()


def get_preferences(user: User) -> list[NotificationPreference]:
    """Returns one preference per category, creating the defaults on first access."""
    existing = {p.category: p for p in NotificationPreference.query.filter_by(user_id=user.id).all()}
    created = False
    for cat in CATEGORIES:
        if cat not in existing:
            existing[cat] = NotificationPreference(user_id=user.id, category=cat, enabled=True, dnd_days=[])
            db.session.add(existing[cat])
            created = True
    if created:
        db.session.flush()
    return [existing[c] for c in CATEGORIES]


def _check_category(category: str) -> str:
    if category not in CATEGORIES:
        raise ValidationError(f"Unknown category: {category}")
    return category


def _check_time(value: Any, field: str) -> str:
    s = str(value or "").strip()
    if not _HHMM.match(s):
        raise ValidationError(f"{field} must be HH:MM")
    return s


def _check_days(days: Any) -> list[int]:
    if days is None:
        return []
    if not isinstance(days, (list, tuple)):
        raise ValidationError("dnd_days must be a list")
    out = []
    for d in days:
        if not isinstance(d, int) or isinstance(d, bool) or not 0 <= d <= 6:
            raise ValidationError("dnd_days must contain integers between 0 and 6")
        if d not in out:
            out.append(d)
    return sorted(out)


def update_preference(user: User, category: str, data: dict) -> NotificationPreference:
    _check_category(category)
    get_preferences(user)
    pref = _preference(user.id, category)
    if "enabled" in data:
        pref.enabled = bool(data["enabled"])
    if any(k in data for k in ("dnd_enabled", "dnd_start_time", "dnd_end_time", "dnd_days")):
        _apply_dnd(
            pref,
            data.get("dnd_enabled", pref.dnd_enabled),
            data.get("dnd_start_time", pref.dnd_start_time),
            data.get("dnd_end_time", pref.dnd_end_time),
            data.get("dnd_days", pref.dnd_days),
        )
    db.session.flush()
    return pref


def _apply_dnd(pref: NotificationPreference, enabled, start, end, days) -> None:
    enabled = bool(enabled)
    if enabled:
        pref.dnd_start_time = _check_time(start, "dnd_start_time")
        pref.dnd_end_time = _check_time(end, "dnd_end_time")
    else:
        pref.dnd_start_time = _check_time(start, "dnd_start_time") if start else None
        pref.dnd_end_time = _check_time(end, "dnd_end_time") if end else None
    pref.dnd_days = _check_days(days)
    pref.dnd_enabled = enabled


def set_dnd(
    user: User,
    enabled: bool,
    start: str | None = None,
    end: str | None = None,
    days: Iterable[int] | None = None,
    *,
    category: str | None = None,
) -> list[NotificationPreference]:
    """Applies a do-not-disturb window to one category, or to all of them."""
    prefs = get_preferences(user)
    if category:
        _check_category(category)
        prefs = [p for p in prefs if p.category == category]
    days = list(days) if days is not None else []
    for p in prefs:
        _apply_dnd(p, enabled, start, end, days)
    db.session.flush()
    return prefs


def _minutes(hhmm: str) -> int:
    h, m = hhmm.split(":")
    return int(h) * 60 + int(m)


def _window_active(pref: NotificationPreference, now: datetime) -> bool:
    """
    A window crossing midnight belongs to the day it starts on: with
    22:00-07:00 on Monday only, Tuesday 01:00 is quiet and Monday 01:00 is not.
    """
    if not pref.dnd_enabled or not pref.dnd_start_time or not pref.dnd_end_time:
        return False
    start = _minutes(pref.dnd_start_time)
    end = _minutes(pref.dnd_end_time)
    current = now.hour * 60 + now.minute
    if start == end:
        return False
    weekday = (now.weekday() + 1) % 7  # domingo = 0
    if start < end:
        inside = start <= current < end
    elif current >= start:
        inside = True
    else:
        # madrugada: a janela começou no dia anterior
        inside = current < end
        weekday = (weekday - 1) % 7
    days = list(pref.dnd_days or [])
    return inside and (not days or weekday in days)


def is_in_dnd(user: User, now: datetime | None = None, category: str | None = None) -> bool:
    now = now or datetime.utcnow()
    q = NotificationPreference.query.filter_by(user_id=user.id)
    if category:
        q = q.filter_by(category=category)
    return any(_window_active(p, now) for p in q.all())


# ============================ Envio ============================

def notify(
    user: User,
    title: str,
    message: str,
    *,
    category: str = "system",
    priority: str = "normal",
    action_url: str | None = None,
    action_label: str | None = None,
    metadata: dict | None = None,
    required_permission: str | None = None,
    now: datetime | None = None,
) -> Notification | None:
    """
    Stores a notification for ``user``.

    Returns None when the user turned the category off. During a DND window the
    notification is kept but flagged ``delivered=False``; urgent ones ignore DND.
    """
    _check_category(category)
    if priority not in PRIORITIES:
        raise ValidationError(f"Unknown priority: {priority}")
    now = now or datetime.utcnow()

    pref = _preference(user.id, category)
    if pref is not None and not pref.enabled:
        return None

    delivered = True
    if priority != "urgent" and pref is not None and _window_active(pref, now):
        delivered = False

    n = Notification(
        tenant_id=user.tenant_id,
        user_id=user.id,
        title=title,
        message=message,
        category=category,
        priority=priority,
        action_url=action_url,
        action_label=action_label,
        meta=dict(metadata or {}),
        required_permission=required_permission,
        delivered=delivered,
        created_at=now,
    )
    db.session.add(n)
    db.session.flush()
    return n


def notify_users(users: Iterable[User], title: str, message: str, **kwargs) -> list[Notification]:
    sent = []
    for u in users:
        n = notify(u, title, message, **kwargs)
        if n is not None:
            sent.append(n)
    return sent


def notify_permission_holders(tenant_id: int, permission: str, title: str, message: str, **kwargs) -> list[Notification]:
    kwargs.setdefault("required_permission", permission)
    users = users_with_permission(tenant_id, permission)
    return notify_users(users, title, message, **kwargs)


def notify_superadmins(title: str, message: str, **kwargs) -> list[Notification]:
    admins = (
        User.query.execution_options(skip_tenant_scope=True)
        .filter(User.is_superadmin.is_(True), User.is_active.is_(True))
        .all()
    )
    if not admins:
        current_app.logger.warning("No superadmin to notify: %s", title)
    return notify_users(admins, title, message, **kwargs)


# ============================ Leitura ============================

def _own(user: User):
    # notificações pertencem ao usuário, não ao tenant da URL (superadmin navegando outro tenant)
    return Notification.query.execution_options(skip_tenant_scope=True).filter_by(user_id=user.id)


def _visible(user: User, n: Notification) -> bool:
    return not n.required_permission or user_has_permission(user, n.required_permission)


def list_for_user(
    user: User,
    *,
    category: str | None = None,
    priority: str | None = None,
    is_read: bool | None = None,
    page: int = 1,
    limit: int = 20,
) -> dict[str, Any]:
    q = _own(user)
    if category:
        q = q.filter_by(category=category)
    if priority:
        q = q.filter_by(priority=priority)
    if is_read is not None:
        q = q.filter_by(is_read=bool(is_read))
    rows = [n for n in q.order_by(Notification.created_at.desc(), Notification.id.desc()).all() if _visible(user, n)]
    out = paginate_list(rows, page, limit, serialize)
    out["unread_count"] = unread_count(user)
    return out


def unread_count(user: User) -> int:
    rows = _own(user).filter_by(is_read=False).all()
    return sum(1 for n in rows if _visible(user, n))


def get_notification(user: User, notification_id: int) -> Notification:
    n = db.session.get(Notification, notification_id, execution_options={"skip_tenant_scope": True})
    if not n:
        raise NotFoundError("Notification not found")
    if n.user_id != user.id:
        raise ForbiddenError("Not your notification")
    return n


def mark_read(user: User, notification_id: int, *, now: datetime | None = None) -> Notification:
    n = get_notification(user, notification_id)
    if not n.is_read:
        n.is_read = True
        n.read_at = now or datetime.utcnow()
        db.session.flush()
    return n


def mark_all_read(user: User, *, now: datetime | None = None) -> int:
    now = now or datetime.utcnow()
    rows = _own(user).filter_by(is_read=False).all()
    for n in rows:
        n.is_read = True
        n.read_at = now
    db.session.flush()
    return len(rows)


def delete_notification(user: User, notification_id: int) -> None:
    n = get_notification(user, notification_id)
    db.session.delete(n)
    db.session.flush()


def delete_all(user: User) -> int:
    deleted = Notification.query.filter_by(user_id=user.id).delete(synchronize_session=False)
    db.session.flush()
    return int(deleted or 0)
