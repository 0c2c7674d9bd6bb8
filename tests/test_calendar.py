from datetime import datetime, timedelta

from flask import g

from storedash.errors import NotFoundError, ValidationError
from storedash.extensions import db
from storedash.models_comm import Notification
from storedash.models_calendar import EventReminder
from storedash.services import calendar, jobs, notifications
from tests.helpers import AppTestCase

MONDAY = datetime(2026, 1, 5, 10, 0)


class CalendarTestCase(AppTestCase):
    def setUp(self):
        super().setUp()
        self.tenant = self.make_tenant()
        self.user = self.make_user(self.tenant, "ana@loja1.com")

    def _event(self, recurrence=None, start=MONDAY, **extra):
        data = {
            "title": "Reunião",
            "start_time": start,
            "end_time": start + timedelta(hours=1),
            "recurrence": recurrence,
        }
        data.update(extra)
        event = calendar.create_event(self.user, data)
        db.session.commit()
        return event

    def _days(self, event, end=datetime(2026, 6, 30)):
        return [o["start_time"].date().isoformat() for o in calendar.generate_instances(event, datetime(2026, 1, 1), end)]


class RecurrenceTests(CalendarTestCase):
    def test_weekly_by_day_with_count(self):
        event = self._event({"frequency": "weekly", "by_day": [1, 3], "count": 4})
        self.assertEqual(self._days(event), ["2026-01-05", "2026-01-07", "2026-01-12", "2026-01-14"])
        occ = calendar.generate_instances(event, datetime(2026, 1, 7), datetime(2026, 1, 8))[0]
        self.assertEqual(occ["end_time"] - occ["start_time"], timedelta(hours=1))

    def test_exception_does_not_consume_count(self):
        event = self._event({"frequency": "weekly", "by_day": [1, 3], "count": 4, "exceptions": ["2026-01-07"]})
        self.assertEqual(self._days(event), ["2026-01-05", "2026-01-12", "2026-01-14", "2026-01-19"])

    def test_daily_interval_until(self):
        event = self._event({"frequency": "daily", "interval": 2, "until": "2026-01-10"})
        self.assertEqual(self._days(event), ["2026-01-05", "2026-01-07", "2026-01-09"])

    def test_monthly_skips_short_months(self):
        event = self._event({"frequency": "monthly"}, start=datetime(2026, 1, 31, 9, 0))
        self.assertEqual(self._days(event), ["2026-01-31", "2026-03-31", "2026-05-31"])

    def test_window_limits_output(self):
        event = self._event({"frequency": "daily"})
        days = self._days(event, end=datetime(2026, 1, 7, 23, 59))
        self.assertEqual(days, ["2026-01-05", "2026-01-06", "2026-01-07"])

    def test_single_event(self):
        event = self._event()
        self.assertEqual(self._days(event), ["2026-01-05"])
        self.assertEqual(calendar.generate_instances(event, datetime(2026, 2, 1), datetime(2026, 3, 1)), [])

    def test_describe_rule(self):
        event = self._event({"frequency": "weekly", "by_day": [1, 3], "count": 4})
        self.assertEqual(calendar.describe_rule(event.recurrence), "Weekly on Monday, Wednesday, 4 times")
        self.assertEqual(calendar.describe_rule(None), "Does not repeat")
        rule = calendar.build_rule({"frequency": "daily", "interval": 3, "until": "2026-02-01"})
        self.assertEqual(calendar.describe_rule(rule), "Every 3 days, until 2026-02-01")

    def test_rule_validation(self):
        with self.assertRaises(ValidationError):
            calendar.build_rule({"frequency": "hourly"})
        with self.assertRaises(ValidationError):
            calendar.build_rule({"frequency": "weekly", "by_day": [7]})
        with self.assertRaises(ValidationError):
            calendar.build_rule({"frequency": "daily", "interval": 0})

    def test_end_must_follow_start(self):
        with self.assertRaises(ValidationError):
            calendar.create_event(self.user, {"title": "X", "start_time": MONDAY, "end_time": MONDAY})


class MaterializationTests(CalendarTestCase):
    def test_materialize_is_idempotent(self):
        event = self._event({"frequency": "weekly", "by_day": [1, 3], "count": 4})
        window = (datetime(2026, 1, 1), datetime(2026, 1, 31))
        self.assertEqual(calendar.create_recurring_instances(event, *window), 3)
        db.session.commit()
        self.assertEqual(calendar.create_recurring_instances(event, *window), 0)

        listed = calendar.list_events(self.user, *window)
        self.assertEqual(
            [e["start_time"][:10] for e in listed],
            ["2026-01-05", "2026-01-07", "2026-01-12", "2026-01-14"],
        )

    def test_expand_all_recurring(self):
        self._event({"frequency": "daily", "count": 5})
        self._event()
        created = calendar.expand_all_recurring(now=datetime(2026, 1, 1), days=30)
        self.assertEqual(created, 4)


class AttendeeTests(AppTestCase):
    def setUp(self):
        super().setUp()
        self.tenant = self.make_tenant()
        self.owner = self.make_user(self.tenant, "ana@loja1.com")
        self.guest = self.make_user(self.tenant, "bia@loja1.com")
        self.outsider = self.make_user(self.tenant, "caio@loja1.com")
        self.event = calendar.create_event(self.owner, {
            "title": "Planejamento",
            "start_time": MONDAY,
            "end_time": MONDAY + timedelta(hours=2),
            "attendee_ids": [self.guest.id],
            "reminders": [15, {"minutes_before": 60}],
            "visibility": "private",
        })
        db.session.commit()

    def test_invitation_and_response(self):
        invites = Notification.query.filter_by(user_id=self.guest.id, category="calendar").all()
        self.assertEqual([n.title for n in invites], ["Event invitation"])
        attendee = calendar.respond(self.guest, self.event.id, "accepted")
        self.assertEqual(attendee.response_status, "accepted")
        self.assertEqual(sorted(r.minutes_before for r in self.event.reminders), [15, 60])

    def test_private_event_hidden_from_outsiders(self):
        with self.assertRaises(NotFoundError):
            calendar.get_event(self.outsider, self.event.id)
        window = (datetime(2026, 1, 1), datetime(2026, 1, 31))
        self.assertEqual(calendar.list_events(self.outsider, *window), [])
        self.assertEqual(len(calendar.list_events(self.guest, *window)), 1)

    def test_team_event_is_limited_to_creator_and_attendees(self):
        start = datetime(2026, 3, 10, 9, 0)
        team = calendar.create_event(self.owner, {
            "title": "Team sync",
            "start_time": start,
            "end_time": start + timedelta(hours=1),
            "attendee_ids": [self.guest.id],
            "visibility": "team",
        })
        db.session.commit()
        window = (datetime(2026, 3, 1), datetime(2026, 3, 31))
        self.assertEqual(calendar.list_events(self.outsider, *window), [])
        with self.assertRaises(NotFoundError):
            calendar.get_event(self.outsider, team.id)
        self.assertEqual([e["title"] for e in calendar.list_events(self.guest, *window)], ["Team sync"])
        self.assertEqual(calendar.get_event(self.owner, team.id).id, team.id)

    def test_public_event_is_visible_to_everyone(self):
        start = datetime(2026, 3, 12, 9, 0)
        calendar.create_event(self.owner, {
            "title": "Inventário", "start_time": start, "end_time": start + timedelta(hours=1),
        })
        db.session.commit()
        listed = calendar.list_events(self.outsider, datetime(2026, 3, 1), datetime(2026, 3, 31))
        self.assertEqual([e["title"] for e in listed], ["Inventário"])

    def test_superadmin_browsing_another_tenant(self):
        other = self.make_tenant("Loja 2", "loja2")
        manager = self.make_user(other, "gerente@loja2.com")
        event = calendar.create_event(manager, {
            "title": "Fechamento",
            "start_time": MONDAY,
            "end_time": MONDAY + timedelta(hours=1),
            "visibility": "private",
        })
        db.session.commit()
        root = self.make_user(self.tenant, "root@loja1.com", role=None, is_superadmin=True)
        with self.app.test_request_context():
            g.tenant = other
            self.assertEqual(calendar.get_event(root, event.id).title, "Fechamento")
            listed = calendar.list_events(root, datetime(2026, 1, 1), datetime(2026, 1, 31))
            self.assertEqual([e["title"] for e in listed], ["Fechamento"])
            g.pop("tenant")


class ReminderTests(AppTestCase):
    def setUp(self):
        super().setUp()
        self.tenant = self.make_tenant()
        self.owner = self.make_user(self.tenant, "ana@loja1.com", name="Ana")
        self.guest = self.make_user(self.tenant, "bia@loja1.com")
        self.event = calendar.create_event(self.owner, {
            "title": "Planejamento",
            "start_time": MONDAY,
            "end_time": MONDAY + timedelta(hours=1),
            "attendee_ids": [self.guest.id],
            "reminders": [15],
        })
        db.session.commit()

    def _calendar_titles(self, user):
        rows = Notification.query.filter_by(user_id=user.id, category="calendar").order_by(Notification.id).all()
        return [n.title for n in rows]

    def test_reminder_is_sent_once(self):
        self.assertEqual(calendar.process_pending_reminders(now=MONDAY - timedelta(hours=1))["sent"], 0)

        result = calendar.process_pending_reminders(now=MONDAY - timedelta(minutes=20))
        db.session.commit()
        self.assertEqual(result, {"sent": 1, "skipped": 0, "held": 0})
        n = Notification.query.filter_by(user_id=self.owner.id, title="Reminder: Planejamento").one()
        self.assertEqual(n.message, 'Your event "Planejamento" starts in 15 minutes')
        self.assertEqual(n.priority, "high")
        reminder = EventReminder.query.one()
        self.assertTrue(reminder.is_sent)
        self.assertEqual(reminder.sent_at, MONDAY - timedelta(minutes=20))

        self.assertEqual(calendar.process_pending_reminders(now=MONDAY - timedelta(minutes=10))["sent"], 0)
        self.assertEqual(self._calendar_titles(self.owner), ["Reminder: Planejamento"])

    def test_dnd_holds_reminder_until_window_ends(self):
        notifications.set_dnd(self.owner, True, "09:00", "09:50", category="calendar")
        db.session.commit()
        held = calendar.process_pending_reminders(now=MONDAY - timedelta(minutes=20))
        self.assertEqual(held["held"], 1)
        self.assertFalse(EventReminder.query.one().is_sent)

        later = calendar.process_pending_reminders(now=MONDAY - timedelta(minutes=5))
        self.assertEqual(later["sent"], 1)
        self.assertEqual(self._calendar_titles(self.owner), ["Reminder: Planejamento"])

    def test_started_event_gets_no_reminder(self):
        self.assertEqual(calendar.pending_reminders(MONDAY + timedelta(minutes=1)), [])

    def test_disabled_category_consumes_reminder(self):
        notifications.update_preference(self.owner, "calendar", {"enabled": False})
        result = calendar.process_pending_reminders(now=MONDAY - timedelta(minutes=15))
        self.assertEqual(result["skipped"], 1)
        self.assertTrue(EventReminder.query.one().is_sent)

    def test_update_notifies_attendees_but_not_organizer(self):
        calendar.update_event(self.owner, self.event.id, {"location": "Sala 2"})
        db.session.commit()
        self.assertEqual(self._calendar_titles(self.guest), ["Event invitation", "Event updated: Planejamento"])
        self.assertEqual(self._calendar_titles(self.owner), [])

        # cor não interessa aos convidados
        calendar.update_event(self.owner, self.event.id, {"color": "#ff0000"})
        self.assertEqual(len(self._calendar_titles(self.guest)), 2)

    def test_moving_event_rearms_reminders(self):
        calendar.process_pending_reminders(now=MONDAY - timedelta(minutes=15))
        self.assertTrue(EventReminder.query.one().is_sent)
        tuesday = MONDAY + timedelta(days=1)
        calendar.update_event(self.owner, self.event.id, {
            "start_time": tuesday, "end_time": tuesday + timedelta(hours=1),
        })
        db.session.commit()
        self.assertFalse(EventReminder.query.one().is_sent)

    def test_cancelling_notifies_and_stops_reminders(self):
        calendar.update_event(self.owner, self.event.id, {"status": "cancelled"})
        db.session.commit()
        n = Notification.query.filter_by(user_id=self.guest.id, title="Event cancelled: Planejamento").one()
        self.assertEqual(n.priority, "high")
        self.assertEqual(n.message, 'The event "Planejamento" has been cancelled by Ana')
        self.assertTrue(EventReminder.query.one().is_sent)
        self.assertEqual(calendar.pending_reminders(MONDAY - timedelta(minutes=15)), [])

    def test_delete_notifies_attendees(self):
        calendar.delete_event(self.owner, self.event.id)
        db.session.commit()
        self.assertEqual(self._calendar_titles(self.guest), ["Event invitation", "Event cancelled: Planejamento"])

    def test_reminder_job(self):
        jobs.sync_jobs()
        log = jobs.run_job("process-event-reminders", now=MONDAY - timedelta(minutes=10))
        self.assertEqual(log.status, "success")
        self.assertEqual(log.result, {"sent": 1, "skipped": 0, "held": 0})
