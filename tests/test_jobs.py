import unittest
from datetime import datetime

from storedash.errors import NotFoundError, ValidationError
from storedash.extensions import db
from storedash.models import CronLog
from storedash.models_comm import Notification
from storedash.services import jobs
from tests.helpers import AppTestCase

SUNDAY_3AM = datetime(2026, 1, 4, 3, 0)


class CronExpressionTests(unittest.TestCase):
    def test_valid_expressions(self):
        for expr in ("* * * * *", "*/15 0-6 1,15 * 1-5", "0 3 * * 7", "5/10 * * * *"):
            self.assertTrue(jobs.is_valid_cron(expr), expr)

    def test_invalid_expressions(self):
        for expr in ("", "* * * *", "60 * * * *", "* 24 * * *", "* * 0 * *", "*/0 * * * *", "a * * * *", "1,,2 * * * *"):
            self.assertFalse(jobs.is_valid_cron(expr), expr)

    def test_steps_and_ranges(self):
        minute = jobs.parse_cron("*/20 * * * *")[0]
        self.assertEqual(minute, {0, 20, 40})
        self.assertEqual(jobs.parse_cron("10-12 * * * *")[0], {10, 11, 12})

    def test_seven_is_sunday(self):
        self.assertTrue(jobs.cron_matches("0 3 * * 7", SUNDAY_3AM))
        self.assertTrue(jobs.cron_matches("0 3 * * 0", SUNDAY_3AM))
        self.assertFalse(jobs.cron_matches("0 3 * * 1-6", SUNDAY_3AM))
        self.assertFalse(jobs.cron_matches("1 3 * * *", SUNDAY_3AM))


class JobRunnerTests(AppTestCase):
    def setUp(self):
        super().setUp()
        self.calls = []
        jobs.register_job("test-fails", "* * * * *", "Always fails")(self._boom)
        jobs.register_job("test-works", "*/5 * * * *", "Counts calls")(self._ok)
        jobs.register_job("test-locked", "0 0 * * *", "Fixed schedule", locked=True)(self._ok)
        tenant = self.make_tenant()
        self.root = self.make_user(tenant, "root@loja1.com", role=None, is_superadmin=True)
        jobs.sync_jobs()

    def tearDown(self):
        for name in ("test-fails", "test-works", "test-locked"):
            jobs.REGISTRY.pop(name, None)
        super().tearDown()

    def _boom(self, now=None):
        raise RuntimeError("kaboom")

    def _ok(self, now=None):
        self.calls.append(now)
        return len(self.calls)

    def test_sync_registers_builtin_jobs(self):
        names = {j.name for j in jobs.list_jobs()}
        self.assertTrue({"cleanup-expired-carts", "purge-old-messages", "purge-activity-logs",
                         "expand-recurring-events", "process-event-reminders"} <= names)
        self.assertEqual(jobs.get_job("test-works").handler, f"{__name__}._ok")

    def test_success_updates_counters(self):
        log = jobs.run_job("test-works", now=SUNDAY_3AM)
        self.assertEqual(log.status, "success")
        self.assertEqual(log.result, {"count": 1})
        stats = jobs.job_stats("test-works")
        self.assertEqual((stats["total_runs"], stats["success_rate"]), (1, 100.0))
        self.assertEqual(stats["last_success_at"], SUNDAY_3AM.isoformat())

    def test_auto_disable_after_three_failures(self):
        for _ in range(3):
            log = jobs.run_job("test-fails")
            self.assertEqual(log.status, "failed")
            self.assertEqual(log.error, "RuntimeError: kaboom")
        job = jobs.get_job("test-fails")
        self.assertFalse(job.is_enabled)
        self.assertEqual(job.consecutive_failures, 3)

        titles = [n.title for n in Notification.query.filter_by(user_id=self.root.id).all()]
        self.assertEqual(titles.count("Job failed: test-fails"), 3)
        self.assertIn("Job disabled: test-fails", titles)

        with self.assertRaises(ValidationError):
            jobs.run_job("test-fails")
        self.assertEqual(jobs.run_job("test-fails", manual=True).status, "failed")

        jobs.enable_job("test-fails")
        self.assertEqual(jobs.get_job("test-fails").consecutive_failures, 0)

    def test_running_job_is_not_started_twice(self):
        job = jobs.get_job("test-works")
        db.session.add(CronLog(job_id=job.id, status="running", started_at=SUNDAY_3AM))
        db.session.commit()
        with self.assertRaises(ValidationError):
            jobs.run_job("test-works")

    def test_schedule_updates(self):
        with self.assertRaises(ValidationError):
            jobs.update_schedule("test-locked", "*/5 * * * *")
        with self.assertRaises(ValidationError):
            jobs.update_schedule("test-works", "every minute")
        job = jobs.update_schedule("test-works", "  0  12 * * * ")
        self.assertEqual(job.schedule, "0 12 * * *")
        with self.assertRaises(NotFoundError):
            jobs.update_schedule("missing", "* * * * *")

    def test_due_jobs_and_run_due(self):
        jobs.disable_job("test-fails")
        due = [j.name for j in jobs.due_jobs(SUNDAY_3AM)]
        self.assertIn("test-works", due)
        self.assertIn("purge-old-messages", due)
        self.assertNotIn("test-fails", due)
        self.assertNotIn("purge-activity-logs", due)

        logs = jobs.run_due(datetime(2026, 1, 4, 3, 0, 42))
        by_job = {log.job.name: log.status for log in logs}
        self.assertEqual(by_job["test-works"], "success")
        self.assertEqual(self.calls, [SUNDAY_3AM])

    def test_logs_filter(self):
        jobs.run_job("test-works", now=datetime(2026, 1, 1))
        jobs.run_job("test-fails", now=datetime(2026, 1, 2))
        self.assertEqual(len(jobs.job_logs("test-works", status="success")), 1)
        self.assertEqual(jobs.job_logs("test-works", status="failed"), [])
