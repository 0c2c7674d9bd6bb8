# storedash/models_calendar.py
from __future__ import annotations

from datetime import datetime

from .extensions import db
from .models import json_dict, json_list
from .tenant_scope import TenantScoped


class CalendarEvent(db.Model, TenantScoped):
    __tablename__ = "calendar_events"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    creator_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    parent_event_id = db.Column(db.Integer, db.ForeignKey("calendar_events.id", ondelete="CASCADE"), nullable=True, index=True)

    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    start_time = db.Column(db.DateTime, nullable=False, index=True)
    end_time = db.Column(db.DateTime, nullable=False)
    all_day = db.Column(db.Boolean, default=False, nullable=False)
    location = db.Column(db.String(255))
    color = db.Column(db.String(20))
    status = db.Column(db.String(12), nullable=False, default="scheduled")  # scheduled | cancelled | completed
    visibility = db.Column(db.String(10), nullable=False, default="public")  # public | private | team
    meta = db.Column("metadata", json_dict(), default=dict)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    recurrence = db.relationship(
        "RecurrenceRule", back_populates="event", uselist=False,
        cascade="all, delete-orphan", lazy="selectin",
    )
    attendees = db.relationship(
        "EventAttendee", back_populates="event", lazy="selectin",
        cascade="all, delete-orphan",
    )
    reminders = db.relationship(
        "EventReminder", back_populates="event", lazy="selectin",
        cascade="all, delete-orphan",
    )
    instances = db.relationship(
        "CalendarEvent", lazy=True, cascade="all, delete-orphan",
        backref=db.backref("parent", remote_side=[id]),
    )

    @property
    def duration(self):
        return self.end_time - self.start_time

    def __repr__(self) -> str:
        return f"<CalendarEvent {self.title} {self.start_time}>"


class RecurrenceRule(db.Model):
    __tablename__ = "recurrence_rules"

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.Integer, db.ForeignKey("calendar_events.id", ondelete="CASCADE"), nullable=False, unique=True)

    frequency = db.Column(db.String(10), nullable=False)  # daily | weekly | monthly | yearly
    interval = db.Column(db.Integer, default=1, nullable=False)
    by_day = db.Column(json_list(), default=list)        # 0=domingo .. 6=sábado
    by_month_day = db.Column(json_list(), default=list)  # 1..31
    by_month = db.Column(json_list(), default=list)      # 1..12
    count = db.Column(db.Integer)
    until = db.Column(db.DateTime)
    exceptions = db.Column(json_list(), default=list)    # datas ISO (YYYY-MM-DD)

    event = db.relationship("CalendarEvent", back_populates="recurrence", lazy=True)


class EventAttendee(db.Model):
    __tablename__ = "event_attendees"

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.Integer, db.ForeignKey("calendar_events.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    response_status = db.Column(db.String(10), nullable=False, default="pending")  # pending | accepted | declined | tentative
    is_organizer = db.Column(db.Boolean, default=False, nullable=False)
    responded_at = db.Column(db.DateTime)

    event = db.relationship("CalendarEvent", back_populates="attendees", lazy=True)
    user = db.relationship("User", lazy="joined")

    __table_args__ = (
        db.UniqueConstraint("event_id", "user_id", name="uq_attendee_event_user"),
    )


class EventReminder(db.Model):
    __tablename__ = "event_reminders"

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.Integer, db.ForeignKey("calendar_events.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=True)
    minutes_before = db.Column(db.Integer, nullable=False, default=15)
    is_sent = db.Column(db.Boolean, default=False, nullable=False)
    sent_at = db.Column(db.DateTime)

    event = db.relationship("CalendarEvent", back_populates="reminders", lazy=True)
    user = db.relationship("User", lazy="joined")
