"""
Calendar events and recurrence expansion.

A recurring event is stored once (the parent) with a ``RecurrenceRule``.
Occurrences are either computed on the fly for a window
(:func:`generate_instances`) or materialized as child events
(:func:`create_recurring_instances`), which is what the daily job does.
"""
from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Any, Iterable

from flask import current_app
from sqlalchemy import or_

from storedash.errors import ForbiddenError, NotFoundError, ValidationError
from storedash.extensions import db
from storedash.models import User
from storedash.models_calendar import CalendarEvent, EventAttendee, EventReminder, RecurrenceRule
from storedash.tenant_scope import current_tenant_id
from storedash.services import notifications
from storedash.utils import iso, parse_datetime

FREQUENCIES = ("daily", "weekly", "monthly", "yearly")
STATUSES = ("scheduled", "cancelled", "completed")
VISIBILITIES = ("public", "private", "team")
RESPONSES = ("pending", "accepted", "declined", "tentative")
MAX_INSTANCES = 1000
MATERIALIZE_DAYS = 30

DAY_NAMES = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")
MONTH_NAMES = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)


def _weekday(d: date) -> int:
    """0 = Sunday .. 6 = Saturday."""
    return (d.weekday() + 1) % 7


# ============================ Regras ============================

def _int_list(value: Any, field: str, lo: int, hi: int) -> list[int]:
    if value in (None, ""):
        return []
    if not isinstance(value, (list, tuple)):
        raise ValidationError(f"{field} must be a list")
    out = []
    for v in value:
        if not isinstance(v, int) or isinstance(v, bool) or not lo <= v <= hi:
            raise ValidationError(f"{field} values must be integers between {lo} and {hi}")
        if v not in out:
            out.append(v)
    return sorted(out)


def _exception_dates(value: Any) -> list[str]:
    if value in (None, ""):
        return []
    if not isinstance(value, (list, tuple)):
        raise ValidationError("exceptions must be a list")
    return sorted({parse_datetime(v, "exceptions").date().isoformat() for v in value})


def build_rule(data: dict) -> RecurrenceRule:
    freq = (data.get("frequency") or "").lower()
    if freq not in FREQUENCIES:
        raise ValidationError(f"frequency must be one of {', '.join(FREQUENCIES)}")
    try:
        interval = int(data.get("interval") or 1)
    except (TypeError, ValueError):
        raise ValidationError("interval must be an integer")
    if interval < 1:
        raise ValidationError("interval must be >= 1")
    count = data.get("count")
    if count is not None:
        try:
            count = int(count)
        except (TypeError, ValueError):
            raise ValidationError("count must be an integer")
        if count < 1:
            raise ValidationError("count must be >= 1")
    return RecurrenceRule(
        frequency=freq,
        interval=interval,
        by_day=_int_list(data.get("by_day"), "by_day", 0, 6),
        by_month_day=_int_list(data.get("by_month_day"), "by_month_day", 1, 31),
        by_month=_int_list(data.get("by_month"), "by_month", 1, 12),
        count=count,
        until=parse_datetime(data.get("until"), "until", allow_none=True),
        exceptions=_exception_dates(data.get("exceptions")),
    )


def serialize_rule(rule: RecurrenceRule | None) -> dict[str, Any] | None:
    if rule is None:
        return None
    return {
        "frequency": rule.frequency,
        "interval": rule.interval,
        "by_day": list(rule.by_day or []),
        "by_month_day": list(rule.by_month_day or []),
        "by_month": list(rule.by_month or []),
        "count": rule.count,
        "until": iso(rule.until),
        "exceptions": list(rule.exceptions or []),
        "description": describe_rule(rule),
    }


def describe_rule(rule: RecurrenceRule | None) -> str:
    if rule is None:
        return "Does not repeat"
    interval = rule.interval or 1
    freq = rule.frequency
    if freq == "daily":
        text = "Daily" if interval == 1 else f"Every {interval} days"
    elif freq == "weekly":
        text = "Weekly" if interval == 1 else f"Every {interval} weeks"
        if rule.by_day:
            text += " on " + ", ".join(DAY_NAMES[d] for d in rule.by_day)
    elif freq == "monthly":
        text = "Monthly" if interval == 1 else f"Every {interval} months"
        if rule.by_month_day:
            text += " on day " + ", ".join(str(d) for d in rule.by_month_day)
    else:
        text = "Yearly" if interval == 1 else f"Every {interval} years"
        if rule.by_month:
            text += " in " + ", ".join(MONTH_NAMES[m - 1] for m in rule.by_month)
    if rule.count:
        text += f", {rule.count} times"
    elif rule.until:
        text += f", until {rule.until.date().isoformat()}"
    return text


def _matches(day: date, start: date, rule: RecurrenceRule) -> bool:
    interval = rule.interval or 1
    freq = rule.frequency
    if freq == "daily":
        return (day - start).days % interval == 0
    if freq == "weekly":
        days = rule.by_day or [_weekday(start)]
        if _weekday(day) not in days:
            return False
        week0 = start - timedelta(days=_weekday(start))
        return ((day - week0).days // 7) % interval == 0
    if freq == "monthly":
        days = rule.by_month_day or [start.day]
        if day.day not in days:
            return False
        months = (day.year - start.year) * 12 + (day.month - start.month)
        return months % interval == 0
    if freq == "yearly":
        months = rule.by_month or [start.month]
        days = rule.by_month_day or [start.day]
        if day.month not in months or day.day not in days:
            return False
        return (day.year - start.year) % interval == 0
    return False


def generate_instances(
    event: CalendarEvent,
    window_start: datetime,
    window_end: datetime,
) -> list[dict[str, datetime]]:
    """
    Occurrences of ``event`` starting inside [window_start, window_end].

    Days are walked from the series start so ``count`` is applied to the whole
    series; exception dates are skipped without consuming it.
    """
    rule = event.recurrence
    if rule is None:
        if window_start <= event.start_time <= window_end:
            return [{"start_time": event.start_time, "end_time": event.end_time}]
        return []

    duration = event.end_time - event.start_time
    series_start = event.start_time
    start_day = series_start.date()
    last_day = window_end.date()
    if rule.until is not None:
        last_day = min(last_day, rule.until.date())
    exceptions = set(rule.exceptions or [])

    out: list[dict[str, datetime]] = []
    produced = 0
    day = start_day
    while day <= last_day:
        if _matches(day, start_day, rule):
            occ = datetime.combine(day, series_start.time())
            if rule.until is not None and occ > rule.until:
                break
            if day.isoformat() not in exceptions:
                produced += 1
                if rule.count and produced > rule.count:
                    break
                if window_start <= occ <= window_end:
                    out.append({"start_time": occ, "end_time": occ + duration})
                    if len(out) >= MAX_INSTANCES:
                        current_app.logger.warning(
                            "recurrence for event %s capped at %s instances", event.id, MAX_INSTANCES
                        )
                        break
        day += timedelta(days=1)
    return out


# ============================ Serialização ============================

def serialize(e: CalendarEvent, *, start: datetime | None = None, end: datetime | None = None) -> dict[str, Any]:
    return {
        "id": e.id,
        "title": e.title,
        "description": e.description,
        "start_time": iso(start or e.start_time),
        "end_time": iso(end or e.end_time),
        "all_day": e.all_day,
        "location": e.location,
        "color": e.color,
        "status": e.status,
        "visibility": e.visibility,
        "creator_id": e.creator_id,
        "parent_event_id": e.parent_event_id,
        "is_recurring": e.recurrence is not None,
        "is_occurrence": start is not None and start != e.start_time,
        "recurrence": serialize_rule(e.recurrence),
        "attendees": [
            {"user_id": a.user_id, "response_status": a.response_status, "is_organizer": a.is_organizer}
            for a in e.attendees
        ],
        "reminders": [
            {"user_id": r.user_id, "minutes_before": r.minutes_before, "is_sent": r.is_sent}
            for r in e.reminders
        ],
        "metadata": dict(e.meta or {}),
    }


# ============================ CRUD ============================

def _can_see(user: User, e: CalendarEvent) -> bool:
    # team e private: só o criador e os convidados
    if e.visibility == "public":
        return True
    if e.creator_id == user.id or getattr(user, "is_superadmin", False):
        return True
    return any(a.user_id == user.id for a in e.attendees)


def get_event(user: User, event_id: int) -> CalendarEvent:
    e = CalendarEvent.query.filter_by(tenant_id=current_tenant_id(user), id=event_id).first()
    if not e or not _can_see(user, e):
        raise NotFoundError("Event not found")
    return e


def _times(data: dict, current: CalendarEvent | None = None) -> tuple[datetime, datetime]:
    start = parse_datetime(data.get("start_time"), "start_time", allow_none=current is not None) or current.start_time
    end = parse_datetime(data.get("end_time"), "end_time", allow_none=current is not None) or current.end_time
    if end <= start:
        raise ValidationError("end_time must be after start_time")
    return start, end


def _choice(value: Any, allowed: Iterable[str], field: str) -> str:
    if value not in allowed:
        raise ValidationError(f"{field} must be one of {', '.join(allowed)}")
    return value


def _set_attendees(e: CalendarEvent, tenant_id: int, user_ids: Iterable[int], organizer_id: int | None) -> list[User]:
    ids = {int(i) for i in user_ids}
    if organizer_id:
        ids.add(organizer_id)
    users = User.query.filter(User.tenant_id == tenant_id, User.id.in_(ids)).all() if ids else []
    if len(users) != len(ids):
        raise NotFoundError("Attendee not found", details={"user_ids": sorted(ids - {u.id for u in users})})
    existing = {a.user_id: a for a in e.attendees}
    for a in list(e.attendees):
        if a.user_id not in ids:
            e.attendees.remove(a)
    added = []
    for u in users:
        if u.id in existing:
            continue
        is_org = u.id == organizer_id
        e.attendees.append(EventAttendee(
            user_id=u.id,
            is_organizer=is_org,
            response_status="accepted" if is_org else "pending",
        ))
        if not is_org:
            added.append(u)
    return added


def _set_reminders(e: CalendarEvent, reminders: Any, user_id: int | None) -> None:
    if not isinstance(reminders, (list, tuple)):
        raise ValidationError("reminders must be a list")
    e.reminders.clear()
    for r in reminders:
        minutes = r.get("minutes_before") if isinstance(r, dict) else r
        try:
            minutes = int(minutes)
        except (TypeError, ValueError):
            raise ValidationError("reminder minutes must be integers")
        if minutes < 0:
            raise ValidationError("reminder minutes must be >= 0")
        e.reminders.append(EventReminder(user_id=user_id, minutes_before=minutes))


def _invite(e: CalendarEvent, users: list[User]) -> None:
    for u in users:
        notifications.notify(
            u,
            "Event invitation",
            f"You were invited to '{e.title}' on {e.start_time:%Y-%m-%d %H:%M}.",
            category="calendar",
            action_url=f"/calendar/events/{e.id}",
            metadata={"event_id": e.id},
        )


def create_event(creator: User, data: dict) -> CalendarEvent:
    title = (data.get("title") or "").strip()
    if not title:
        raise ValidationError("title is required")
    start, end = _times(data)
    e = CalendarEvent(
        tenant_id=current_tenant_id(creator),
        creator_id=creator.id,
        title=title,
        description=data.get("description"),
        start_time=start,
        end_time=end,
        all_day=bool(data.get("all_day", False)),
        location=data.get("location"),
        color=data.get("color"),
        status=_choice(data.get("status") or "scheduled", STATUSES, "status"),
        visibility=_choice(data.get("visibility") or "public", VISIBILITIES, "visibility"),
        meta=dict(data.get("metadata") or {}),
    )
    if data.get("recurrence"):
        e.recurrence = build_rule(data["recurrence"])
    db.session.add(e)
    invited = _set_attendees(e, e.tenant_id, data.get("attendee_ids") or [], creator.id)
    if "reminders" in data:
        _set_reminders(e, data.get("reminders") or [], creator.id)
    db.session.flush()
    _invite(e, invited)
    return e


# mudanças que os convidados precisam saber
_NOTIFIED_FIELDS = ("title", "start_time", "end_time", "all_day", "location", "description", "status", "recurrence")


def update_event(user: User, event_id: int, data: dict) -> CalendarEvent:
    e = get_event(user, event_id)
    if e.creator_id != user.id and not getattr(user, "is_superadmin", False):
        raise ForbiddenError("Only the organizer can edit this event")
    was_cancelled = e.status == "cancelled"
    old_start = e.start_time
    if "title" in data:
        title = (data.get("title") or "").strip()
        if not title:
            raise ValidationError("title is required")
        e.title = title
    if "start_time" in data or "end_time" in data:
        e.start_time, e.end_time = _times(data, e)
    for field in ("description", "location", "color"):
        if field in data:
            setattr(e, field, data.get(field))
    if "all_day" in data:
        e.all_day = bool(data["all_day"])
    if "status" in data:
        e.status = _choice(data["status"], STATUSES, "status")
    if "visibility" in data:
        e.visibility = _choice(data["visibility"], VISIBILITIES, "visibility")
    if "metadata" in data:
        e.meta = dict(data.get("metadata") or {})
    if "recurrence" in data:
        e.recurrence = build_rule(data["recurrence"]) if data["recurrence"] else None
    invited = []
    if "attendee_ids" in data:
        invited = _set_attendees(e, e.tenant_id, data.get("attendee_ids") or [], e.creator_id)
    if "reminders" in data:
        _set_reminders(e, data.get("reminders") or [], user.id)
    db.session.flush()
    _invite(e, invited)
    if e.status == "cancelled" and not was_cancelled:
        cancel_event_reminders(e)
        notify_event_update(e, "cancelled")
    elif any(k in data for k in _NOTIFIED_FIELDS):
        if e.start_time != old_start:
            _reset_reminders(e)
        notify_event_update(e, "updated", exclude=[u.id for u in invited])
    db.session.flush()
    return e


def delete_event(user: User, event_id: int) -> None:
    e = get_event(user, event_id)
    if e.creator_id != user.id and not getattr(user, "is_superadmin", False):
        raise ForbiddenError("Only the organizer can delete this event")
    if e.status != "cancelled":
        notify_event_update(e, "cancelled")
    db.session.delete(e)  # instâncias materializadas vão junto (cascade)
    db.session.flush()


def respond(user: User, event_id: int, status: str, *, now: datetime | None = None) -> EventAttendee:
    e = get_event(user, event_id)
    _choice(status, ("accepted", "declined", "tentative"), "response_status")
    for a in e.attendees:
        if a.user_id == user.id:
            a.response_status = status
            a.responded_at = now or datetime.utcnow()
            db.session.flush()
            return a
    raise NotFoundError("You are not invited to this event")


def list_events(user: User, window_start: datetime, window_end: datetime) -> list[dict[str, Any]]:
    if window_end < window_start:
        raise ValidationError("end must be after start")
    attended = db.session.query(EventAttendee.event_id).filter(EventAttendee.user_id == user.id)
    visible = or_(
        CalendarEvent.visibility == "public",
        CalendarEvent.creator_id == user.id,
        CalendarEvent.id.in_(attended),
    )
    base = CalendarEvent.query.filter(CalendarEvent.tenant_id == current_tenant_id(user))
    if not getattr(user, "is_superadmin", False):
        base = base.filter(visible)

    single = (
        base.filter(
            ~CalendarEvent.recurrence.has(),
            CalendarEvent.start_time <= window_end,
            CalendarEvent.end_time >= window_start,
        )
        .all()
    )
    out = [serialize(e) for e in single]

    parents = base.filter(CalendarEvent.recurrence.has(), CalendarEvent.start_time <= window_end).all()
    for parent in parents:
        materialized = {child.start_time for child in parent.instances}
        for occ in generate_instances(parent, window_start, window_end):
            if occ["start_time"] in materialized:
                continue
            out.append(serialize(parent, start=occ["start_time"], end=occ["end_time"]))
    out.sort(key=lambda d: (d["start_time"], d["id"]))
    return out


# ============================ Lembretes e avisos ============================

REMINDER_WINDOW_MINUTES = 10


def _time_until(minutes: int) -> str:
    if minutes < 60:
        return f"in {minutes} minute{'s' if minutes != 1 else ''}"
    if minutes < 1440:
        hours = minutes // 60
        return f"in {hours} hour{'s' if hours != 1 else ''}"
    days = minutes // 1440
    return f"in {days} day{'s' if days != 1 else ''}"


def _reminder_priority(minutes: int) -> str:
    if minutes <= 15:
        return "high"
    if minutes <= 60:
        return "normal"
    return "low"


def pending_reminders(now: datetime | None = None, window_minutes: int = REMINDER_WINDOW_MINUTES) -> list[EventReminder]:
    """
    Unsent reminders of live events that are due by ``now + window_minutes``.

    Events that already started are left out, so a reminder held back by a
    do-not-disturb window goes out later only while it is still useful.
    """
    now = now or datetime.utcnow()
    horizon = now + timedelta(minutes=window_minutes)
    rows = (
        EventReminder.query.execution_options(skip_tenant_scope=True)
        .join(CalendarEvent, CalendarEvent.id == EventReminder.event_id)
        .filter(
            EventReminder.is_sent.is_(False),
            CalendarEvent.status != "cancelled",
            CalendarEvent.start_time >= now,
        )
        .order_by(CalendarEvent.start_time, EventReminder.id)
        .all()
    )
    return [r for r in rows if r.event.start_time - timedelta(minutes=r.minutes_before) <= horizon]


def _mark_sent(r: EventReminder, now: datetime) -> None:
    r.is_sent = True
    r.sent_at = now


def process_reminder(r: EventReminder, now: datetime | None = None) -> str:
    """Returns ``sent``, ``skipped`` (category off or nobody to warn) or ``held`` (DND)."""
    now = now or datetime.utcnow()
    e = r.event
    user = r.user or (db.session.get(User, e.creator_id) if e.creator_id else None)
    if user is None:
        _mark_sent(r, now)
        return "skipped"
    if notifications.is_in_dnd(user, now, "calendar"):
        # fica pendente; sai na próxima rodada depois da janela
        return "held"
    sent = notifications.notify(
        user,
        f"Reminder: {e.title}",
        f'Your event "{e.title}" starts {_time_until(r.minutes_before)}',
        category="calendar",
        priority=_reminder_priority(r.minutes_before),
        action_url=f"/calendar/events/{e.id}",
        action_label="View Event",
        metadata={"event_id": e.id, "reminder_minutes": r.minutes_before},
        now=now,
    )
    _mark_sent(r, now)
    return "sent" if sent is not None else "skipped"


def process_pending_reminders(now: datetime | None = None, window_minutes: int = REMINDER_WINDOW_MINUTES) -> dict[str, int]:
    now = now or datetime.utcnow()
    out = {"sent": 0, "skipped": 0, "held": 0}
    for r in pending_reminders(now, window_minutes):
        out[process_reminder(r, now)] += 1
    db.session.flush()
    if out["sent"] or out["held"]:
        current_app.logger.info(
            "event reminders: %s sent, %s skipped, %s held", out["sent"], out["skipped"], out["held"]
        )
    return out


def cancel_event_reminders(e: CalendarEvent, now: datetime | None = None) -> int:
    now = now or datetime.utcnow()
    count = 0
    for r in e.reminders:
        if not r.is_sent:
            _mark_sent(r, now)
            count += 1
    return count


def _reset_reminders(e: CalendarEvent) -> None:
    for r in e.reminders:
        r.is_sent = False
        r.sent_at = None


def notify_event_update(e: CalendarEvent, change_type: str, *, exclude: Iterable[int] = ()) -> list:
    """Tells every attendee but the organizer that ``e`` was updated or cancelled."""
    _choice(change_type, ("updated", "cancelled"), "change_type")
    skip = set(exclude)
    creator = db.session.get(User, e.creator_id) if e.creator_id else None
    by = creator.display_name if creator is not None else "the organizer"
    users = [a.user for a in e.attendees if a.user_id != e.creator_id and a.user_id not in skip]
    if change_type == "cancelled":
        return notifications.notify_users(
            users,
            f"Event cancelled: {e.title}",
            f'The event "{e.title}" has been cancelled by {by}',
            category="calendar",
            priority="high",
            action_url="/calendar",
            action_label="View Calendar",
            metadata={"event_id": e.id, "change_type": change_type},
        )
    return notifications.notify_users(
        users,
        f"Event updated: {e.title}",
        f'The event "{e.title}" has been updated by {by}',
        category="calendar",
        action_url=f"/calendar/events/{e.id}",
        action_label="View Event",
        metadata={"event_id": e.id, "change_type": change_type},
    )


# ============================ Materialização ============================

def create_recurring_instances(event: CalendarEvent, window_start: datetime, window_end: datetime) -> int:
    """Stores occurrences as child events; existing start times are left alone."""
    if event.recurrence is None:
        return 0
    existing = {child.start_time for child in event.instances}
    existing.add(event.start_time)
    created = 0
    for occ in generate_instances(event, window_start, window_end):
        if occ["start_time"] in existing:
            continue
        child = CalendarEvent(
            tenant_id=event.tenant_id,
            creator_id=event.creator_id,
            parent_event_id=event.id,
            title=event.title,
            description=event.description,
            start_time=occ["start_time"],
            end_time=occ["end_time"],
            all_day=event.all_day,
            location=event.location,
            color=event.color,
            status="scheduled",
            visibility=event.visibility,
            meta=dict(event.meta or {}),
        )
        for a in event.attendees:
            child.attendees.append(EventAttendee(
                user_id=a.user_id, is_organizer=a.is_organizer, response_status="pending",
            ))
        for r in event.reminders:
            child.reminders.append(EventReminder(user_id=r.user_id, minutes_before=r.minutes_before))
        event.instances.append(child)
        existing.add(occ["start_time"])
        created += 1
    db.session.flush()
    return created


def expand_all_recurring(now: datetime | None = None, days: int = MATERIALIZE_DAYS) -> int:
    now = now or datetime.utcnow()
    parents = (
        CalendarEvent.query.execution_options(skip_tenant_scope=True)
        .filter(CalendarEvent.recurrence.has(), CalendarEvent.parent_event_id.is_(None))
        .all()
    )
    total = 0
    for e in parents:
        total += create_recurring_instances(e, now, now + timedelta(days=days))
    return total
