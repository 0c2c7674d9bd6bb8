"""
Scheduled maintenance jobs.

Jobs are plain functions registered with :func:`register_job`; ``sync_jobs``
mirrors the registry into the ``cron_jobs`` table. Execution is driven from the
system crontab through ``flask jobs tick`` (every minute) or ``flask jobs run``.
"""
from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from flask import current_app

from storedash.errors import NotFoundError, ValidationError
from storedash.extensions import db
from storedash.models import CronJob, CronLog
from storedash.services import notifications
from storedash.utils import iso, parse_datetime

AUTO_DISABLE_AFTER = 3
LOGS_LIMIT = 50

# (nome, mínimo, máximo)
_CRON_FIELDS = (
    ("minute", 0, 59),
    ("hour", 0, 23),
    ("day_of_month", 1, 31),
    ("month", 1, 12),
    ("day_of_week", 0, 7),
)


# ============================ Cron ============================

def _parse_field(field: str, lo: int, hi: int) -> set[int]:
    values: set[int] = set()
    for part in field.split(","):
        if not part:
            raise ValueError("empty list item")
        step = 1
        if "/" in part:
            part, step_s = part.split("/", 1)
            step = int(step_s)
            if step < 1:
                raise ValueError("step must be >= 1")
        if part == "*":
            start, end = lo, hi
        elif "-" in part:
            a, b = part.split("-", 1)
            start, end = int(a), int(b)
        else:
            start = end = int(part)
            if step != 1:
                end = hi
        if start < lo or end > hi or start > end:
            raise ValueError(f"{part} out of range {lo}-{hi}")
        values.update(range(start, end + 1, step))
    return values


def parse_cron(expression: str) -> list[set[int]]:
    fields = (expression or "").split()
    if len(fields) != 5:
        raise ValueError("cron expression must have 5 fields")
    parsed = [_parse_field(f, lo, hi) for f, (_, lo, hi) in zip(fields, _CRON_FIELDS)]
    if 7 in parsed[4]:
        parsed[4].add(0)  # 7 também é domingo
    return parsed


def is_valid_cron(expression: str) -> bool:
    try:
        parse_cron(expression)
    except ValueError:
        return False
    return True


def cron_matches(expression: str, when: datetime) -> bool:
    minute, hour, dom, month, dow = parse_cron(expression)
    weekday = (when.weekday() + 1) % 7
    return (
        when.minute in minute
        and when.hour in hour
        and when.day in dom
        and when.month in month
        and weekday in dow
    )


# ============================ Registro ============================

@dataclass
class JobSpec:
    name: str
    schedule: str
    description: str
    func: Callable[..., Any]
    locked: bool = False

    @property
    def handler(self) -> str:
        return f"{self.func.__module__}.{self.func.__name__}"


REGISTRY: dict[str, JobSpec] = {}


def register_job(name: str, schedule: str, description: str = "", *, locked: bool = False):
    def decorator(func):
        REGISTRY[name] = JobSpec(name, schedule, description, func, locked)
        return func
    return decorator


def sync_jobs() -> list[CronJob]:
    """Creates missing rows for registered jobs; schedules edited in the DB are kept."""
    synced = []
    for entry in REGISTRY.values():
        if not is_valid_cron(entry.schedule):
            current_app.logger.warning("job %s skipped: invalid cron expression %r", entry.name, entry.schedule)
            continue
        job = CronJob.query.filter_by(name=entry.name).first()
        if job is None:
            job = CronJob(
                name=entry.name,
                schedule=entry.schedule,
                description=entry.description,
                handler=entry.handler,
                is_locked=entry.locked,
            )
            db.session.add(job)
        else:
            job.handler = entry.handler
            job.is_locked = entry.locked
            if entry.locked:
                job.schedule = entry.schedule
        synced.append(job)
    db.session.commit()
    return synced


# ============================ Serialização ============================

def serialize(job: CronJob) -> dict[str, Any]:
    return {
        "id": job.id,
        "name": job.name,
        "description": job.description,
        "schedule": job.schedule,
        "handler": job.handler,
        "is_enabled": job.is_enabled,
        "is_locked": job.is_locked,
        "notify_on_failure": job.notify_on_failure,
        "last_run_at": iso(job.last_run_at),
        "success_count": job.success_count,
        "failure_count": job.failure_count,
        "consecutive_failures": job.consecutive_failures,
        "average_duration_ms": round(job.average_duration_ms, 2) if job.average_duration_ms is not None else None,
    }


def serialize_log(log: CronLog) -> dict[str, Any]:
    return {
        "id": log.id,
        "job_id": log.job_id,
        "status": log.status,
        "started_at": iso(log.started_at),
        "completed_at": iso(log.completed_at),
        "duration_ms": log.duration_ms,
        "result": log.result,
        "error": log.error,
    }


# ============================ Gestão ============================

def list_jobs() -> list[CronJob]:
    return CronJob.query.order_by(CronJob.name).all()


def get_job(name: str) -> CronJob:
    job = CronJob.query.filter_by(name=name).first()
    if not job:
        raise NotFoundError(f"Job '{name}' not found")
    return job


def enable_job(name: str) -> CronJob:
    job = get_job(name)
    job.is_enabled = True
    job.consecutive_failures = 0
    db.session.commit()
    current_app.logger.info("job %s enabled", name)
    return job


def disable_job(name: str) -> CronJob:
    job = get_job(name)
    job.is_enabled = False
    db.session.commit()
    current_app.logger.info("job %s disabled", name)
    return job


def update_schedule(name: str, schedule: str) -> CronJob:
    job = get_job(name)
    if job.is_locked:
        raise ValidationError(f"Job '{name}' is locked; its schedule cannot change")
    schedule = " ".join((schedule or "").split())
    if not is_valid_cron(schedule):
        current_app.logger.warning("rejected cron expression %r for job %s", schedule, name)
        raise ValidationError(f"Invalid cron expression: {schedule!r}")
    job.schedule = schedule
    db.session.commit()
    return job


def job_logs(
    name: str,
    *,
    status: str | None = None,
    date_from: Any = None,
    date_to: Any = None,
    limit: int = LOGS_LIMIT,
) -> list[CronLog]:
    job = get_job(name)
    q = job.logs
    if status:
        q = q.filter(CronLog.status == status)
    start = parse_datetime(date_from, "date_from", allow_none=True)
    end = parse_datetime(date_to, "date_to", allow_none=True)
    if start:
        q = q.filter(CronLog.started_at >= start)
    if end:
        q = q.filter(CronLog.started_at <= end)
    return q.order_by(CronLog.started_at.desc(), CronLog.id.desc()).limit(min(limit, LOGS_LIMIT)).all()


def job_stats(name: str) -> dict[str, Any]:
    job = get_job(name)
    total = job.success_count + job.failure_count
    last_success = job.logs.filter(CronLog.status == "success").order_by(CronLog.started_at.desc()).first()
    last_failure = job.logs.filter(CronLog.status == "failed").order_by(CronLog.started_at.desc()).first()
    return {
        "name": job.name,
        "total_runs": total,
        "success_count": job.success_count,
        "failure_count": job.failure_count,
        "success_rate": round(job.success_count / total * 100, 2) if total else 0.0,
        "average_duration_ms": round(job.average_duration_ms, 2) if job.average_duration_ms is not None else None,
        "consecutive_failures": job.consecutive_failures,
        "last_success_at": iso(last_success.started_at) if last_success else None,
        "last_failure_at": iso(last_failure.started_at) if last_failure else None,
    }


# ============================ Execução ============================

def _is_running(job: CronJob) -> bool:
    return job.logs.filter(CronLog.status == "running").first() is not None


def run_job(name: str, *, manual: bool = False, now: datetime | None = None) -> CronLog:
    job = get_job(name)
    if not job.is_enabled and not manual:
        raise ValidationError(f"Job '{name}' is disabled")
    if _is_running(job):
        raise ValidationError(f"Job '{name}' is already running")

    started = now or datetime.utcnow()
    log = CronLog(job_id=job.id, status="running", started_at=started)
    db.session.add(log)
    db.session.commit()
    current_app.logger.info("job %s started (manual=%s)", name, manual)

    entry = REGISTRY.get(name)
    t0 = time.perf_counter()
    try:
        if entry is None:
            raise LookupError(f"No handler registered for job '{name}'")
        result = entry.func(now=now)
        db.session.commit()
    except Exception as ex:
        db.session.rollback()
        duration = int((time.perf_counter() - t0) * 1000)
        current_app.logger.exception("job %s failed after %sms", name, duration)
        _record_failure(job, log, ex, duration, started)
        return log

    duration = int((time.perf_counter() - t0) * 1000)
    _record_success(job, log, result, duration, started)
    current_app.logger.info("job %s finished in %sms", name, duration)
    return log


def _record_success(job: CronJob, log: CronLog, result: Any, duration: int, started: datetime) -> None:
    recovered_from = job.consecutive_failures
    log.status = "success"
    log.completed_at = datetime.utcnow()
    log.duration_ms = duration
    log.result = result if isinstance(result, (dict, list)) else {"count": result}

    job.success_count += 1
    prev = job.average_duration_ms or 0.0
    job.average_duration_ms = prev + (duration - prev) / job.success_count
    job.consecutive_failures = 0
    job.last_run_at = started

    if recovered_from and job.notify_on_failure:
        notifications.notify_superadmins(
            f"Job recovered: {job.name}",
            f"Job {job.name} succeeded after {recovered_from} consecutive failure(s).",
            category="system",
            priority="normal",
            metadata={"job": job.name},
        )
    db.session.commit()


def _record_failure(job: CronJob, log: CronLog, ex: Exception, duration: int, started: datetime) -> None:
    log.status = "failed"
    log.completed_at = datetime.utcnow()
    log.duration_ms = duration
    log.error = f"{type(ex).__name__}: {ex}"

    job.failure_count += 1
    job.consecutive_failures += 1
    job.last_run_at = started

    if job.notify_on_failure:
        notifications.notify_superadmins(
            f"Job failed: {job.name}",
            f"Job {job.name} failed ({job.consecutive_failures} in a row): {ex}",
            category="system",
            priority="high" if job.consecutive_failures >= 2 else "normal",
            metadata={"job": job.name, "error": str(ex)},
        )
    if job.consecutive_failures >= AUTO_DISABLE_AFTER and job.is_enabled:
        job.is_enabled = False
        current_app.logger.warning(
            "job %s disabled after %s consecutive failures", job.name, job.consecutive_failures
        )
        notifications.notify_superadmins(
            f"Job disabled: {job.name}",
            f"Job {job.name} was disabled after {job.consecutive_failures} consecutive failures.",
            category="system",
            priority="urgent",
            metadata={"job": job.name},
        )
    db.session.commit()


def due_jobs(now: datetime | None = None) -> list[CronJob]:
    now = now or datetime.utcnow()
    out = []
    for job in CronJob.query.filter_by(is_enabled=True).order_by(CronJob.name).all():
        try:
            if cron_matches(job.schedule, now):
                out.append(job)
        except ValueError:
            current_app.logger.warning("job %s has an invalid schedule %r", job.name, job.schedule)
    return out


def run_due(now: datetime | None = None) -> list[CronLog]:
    now = (now or datetime.utcnow()).replace(second=0, microsecond=0)
    logs = []
    for job in due_jobs(now):
        try:
            logs.append(run_job(job.name, now=now))
        except ValidationError as ex:
            current_app.logger.warning("job %s not started: %s", job.name, ex.message)
    return logs


# ============================ Jobs embutidos ============================

@register_job("cleanup-expired-carts", "0 * * * *", "Delete shopping carts past their expiry date")
def cleanup_expired_carts_job(now: datetime | None = None) -> int:
    from storedash.services.cart import cleanup_expired_carts
    return cleanup_expired_carts(now)


@register_job("purge-old-messages", "0 3 * * *", "Delete messages older than each tenant's retention window")
def purge_old_messages_job(now: datetime | None = None) -> int:
    from storedash.services.messaging import purge_old_messages
    return purge_old_messages(now)


@register_job("purge-activity-logs", "30 3 * * *", "Delete activity log rows past the retention window")
def purge_activity_logs_job(now: datetime | None = None) -> int:
    from storedash.services.activity_log import purge_activity_logs
    return purge_activity_logs(now)


@register_job("expand-recurring-events", "0 4 * * *", "Materialize recurring calendar events 30 days ahead")
def expand_recurring_events_job(now: datetime | None = None) -> int:
    from storedash.services.calendar import expand_all_recurring
    return expand_all_recurring(now)


@register_job("process-event-reminders", "*/5 * * * *", "Send calendar reminders that are due")
def process_event_reminders_job(now: datetime | None = None) -> dict:
    from storedash.services.calendar import process_pending_reminders
    return process_pending_reminders(now)
