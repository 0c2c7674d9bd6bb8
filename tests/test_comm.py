from datetime import datetime

from flask import g

from storedash.errors import ForbiddenError, ValidationError
from storedash.extensions import db
from storedash.models_comm import Message, Notification
from storedash.services import messaging, notifications
from tests.helpers import AppTestCase

MONDAY_NIGHT = datetime(2026, 1, 5, 23, 30)
MONDAY_NOON = datetime(2026, 1, 5, 12, 0)


class MessagingTests(AppTestCase):
    def setUp(self):
        super().setUp()
        self.tenant = self.make_tenant()
        self.alice = self.make_user(self.tenant, "alice@loja1.com", name="Alice")
        self.bob = self.make_user(self.tenant, "bob@loja1.com", name="Bob")
        messaging.update_settings(self.tenant.id, {"enabled": True, "message_retention_days": 30})
        db.session.commit()

    def _direct(self):
        conv = messaging.create_conversation(self.alice, participant_ids=[self.bob.id])
        db.session.commit()
        return conv

    def test_direct_conversation_is_reused(self):
        first = self._direct()
        again = messaging.create_conversation(self.bob, participant_ids=[self.alice.id])
        self.assertEqual(first.id, again.id)

    def test_group_requires_name(self):
        with self.assertRaises(ValidationError):
            messaging.create_conversation(self.alice, type="group", participant_ids=[self.bob.id])
        group = messaging.create_conversation(
            self.alice, type="group", participant_ids=[self.bob.id], name="Equipe"
        )
        self.assertEqual(len(group.participants), 2)

    def test_disabled_messaging_is_forbidden(self):
        conv = self._direct()
        messaging.update_settings(self.tenant.id, {"enabled": False})
        with self.assertRaises(ForbiddenError):
            messaging.send_message(self.alice, conv.id, "oi")

    def test_send_notifies_and_counts_unread(self):
        conv = self._direct()
        messaging.send_message(self.alice, conv.id, "Oi Bob")
        messaging.send_message(self.alice, conv.id, "Tudo bem?")
        db.session.commit()

        self.assertEqual(messaging.unread_count(self.bob), 2)
        self.assertEqual(messaging.unread_count(self.alice, conv.id), 0)
        alerts = Notification.query.filter_by(user_id=self.bob.id, category="messaging").all()
        self.assertEqual([n.title for n in alerts], ["New message from Alice"] * 2)
        self.assertEqual(conv.last_message_text, "Tudo bem?")

        self.assertEqual(messaging.mark_conversation_read(self.bob, conv.id), 2)
        self.assertEqual(messaging.unread_count(self.bob), 0)

    def test_outsider_cannot_read(self):
        conv = self._direct()
        carol = self.make_user(self.tenant, "carol@loja1.com")
        with self.assertRaises(ForbiddenError):
            messaging.list_messages(carol, conv.id)

    def test_edit_and_delete_own_message(self):
        conv = self._direct()
        msg = messaging.send_message(self.alice, conv.id, "Oi")
        with self.assertRaises(ForbiddenError):
            messaging.edit_message(self.bob, msg.id, "hack")
        messaging.edit_message(self.alice, msg.id, "Olá")
        self.assertIsNotNone(msg.edited_at)
        messaging.delete_message(self.alice, msg.id)
        self.assertEqual(msg.content, messaging.DELETED_PLACEHOLDER)
        with self.assertRaises(ValidationError):
            messaging.edit_message(self.alice, msg.id, "de novo")

    def test_message_length_limit(self):
        conv = self._direct()
        messaging.update_settings(self.tenant.id, {"max_message_length": 5})
        with self.assertRaises(ValidationError):
            messaging.send_message(self.alice, conv.id, "longa demais")

    def test_purge_respects_retention(self):
        conv = self._direct()
        messaging.send_message(self.alice, conv.id, "antiga", now=datetime(2026, 1, 1))
        messaging.send_message(self.alice, conv.id, "recente", now=datetime(2026, 2, 25))
        db.session.commit()
        purged = messaging.purge_old_messages(now=datetime(2026, 3, 1))
        db.session.commit()
        self.assertEqual(purged, 1)
        self.assertEqual([m.content for m in Message.query.all()], ["recente"])


class NotificationTests(AppTestCase):
    def setUp(self):
        super().setUp()
        self.tenant = self.make_tenant()
        self.user = self.make_user(self.tenant, "ana@loja1.com")

    def test_default_preferences(self):
        prefs = notifications.get_preferences(self.user)
        self.assertEqual([p.category for p in prefs], list(notifications.CATEGORIES))
        self.assertTrue(all(p.enabled for p in prefs))

    def test_disabled_category_is_dropped(self):
        notifications.update_preference(self.user, "content", {"enabled": False})
        self.assertIsNone(notifications.notify(self.user, "Post", "novo", category="content"))
        self.assertIsNotNone(notifications.notify(self.user, "Aviso", "sistema"))

    def test_dnd_window_holds_delivery(self):
        notifications.set_dnd(self.user, True, "22:00", "07:00", [1])
        held = notifications.notify(self.user, "A", "noite", now=MONDAY_NIGHT)
        urgent = notifications.notify(self.user, "B", "urgente", priority="urgent", now=MONDAY_NIGHT)
        daytime = notifications.notify(self.user, "C", "dia", now=MONDAY_NOON)
        self.assertFalse(held.delivered)
        self.assertTrue(urgent.delivered)
        self.assertTrue(daytime.delivered)
        self.assertTrue(notifications.is_in_dnd(self.user, MONDAY_NIGHT))
        # terça fora da lista de dias
        self.assertFalse(notifications.is_in_dnd(self.user, datetime(2026, 1, 6, 23, 30)))

    def test_overnight_dnd_follows_the_starting_day(self):
        notifications.set_dnd(self.user, True, "22:00", "07:00", [1])
        # segunda 22:00 -> terça 07:00
        self.assertTrue(notifications.is_in_dnd(self.user, datetime(2026, 1, 6, 1, 0)))
        self.assertFalse(notifications.is_in_dnd(self.user, datetime(2026, 1, 6, 7, 0)))
        # madrugada de segunda pertence à janela de domingo, fora da lista
        self.assertFalse(notifications.is_in_dnd(self.user, datetime(2026, 1, 5, 1, 0)))
        held = notifications.notify(self.user, "Tarde da noite", "x", now=datetime(2026, 1, 6, 2, 0))
        self.assertFalse(held.delivered)

    def test_superadmin_sees_own_notifications_in_another_tenant(self):
        other = self.make_tenant("Loja 2", "loja2")
        root = self.make_user(self.tenant, "root@loja1.com", role=None, is_superadmin=True)
        notifications.notify(root, "Alerta", "x")
        db.session.commit()
        with self.app.test_request_context():
            g.tenant = other
            listing = notifications.list_for_user(root)
            self.assertEqual([n["title"] for n in listing["data"]], ["Alerta"])
            self.assertEqual(listing["unread_count"], 1)
            g.pop("tenant")

    def test_dnd_requires_valid_times(self):
        with self.assertRaises(ValidationError):
            notifications.set_dnd(self.user, True, "25:00", "07:00")
        with self.assertRaises(ValidationError):
            notifications.set_dnd(self.user, True, "22:00", "07:00", [7])

    def test_read_flow(self):
        for i in range(3):
            notifications.notify(self.user, f"N{i}", "msg", now=datetime(2026, 1, 1, 10, i))
        db.session.commit()
        listing = notifications.list_for_user(self.user)
        self.assertEqual([n["title"] for n in listing["data"]], ["N2", "N1", "N0"])
        self.assertEqual(listing["unread_count"], 3)

        first = Notification.query.filter_by(title="N0").first()
        notifications.mark_read(self.user, first.id)
        self.assertEqual(notifications.unread_count(self.user), 2)
        self.assertEqual(notifications.mark_all_read(self.user), 2)
        self.assertEqual(notifications.delete_all(self.user), 3)

    def test_cannot_touch_other_users_notification(self):
        other = self.make_user(self.tenant, "outro@loja1.com")
        n = notifications.notify(other, "X", "y")
        with self.assertRaises(ForbiddenError):
            notifications.mark_read(self.user, n.id)

    def test_permission_gated_notification_is_hidden(self):
        viewer = self.make_user(self.tenant, "viewer@loja1.com", role="viewer")
        notifications.notify(viewer, "Segredo", "x", required_permission="users:delete")
        notifications.notify(viewer, "Livre", "x")
        self.assertEqual([n["title"] for n in notifications.list_for_user(viewer)["data"]], ["Livre"])
