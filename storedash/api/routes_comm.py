# storedash/api/routes_comm.py
from __future__ import annotations

from datetime import datetime, timedelta

from flask import g, jsonify, request
from flask_login import current_user

from storedash.errors import ValidationError
from storedash.extensions import db
from storedash.services import calendar, messaging, notifications
from storedash.services.permissions import permission_required
from storedash.utils import as_bool, json_body, page_args, parse_datetime, to_int
from . import api_bp


# =====================================================================
# MESSAGING
# =====================================================================
@api_bp.get("/messaging/settings")
@permission_required("messaging:read")
def messaging_settings_get():
    s = messaging.get_settings(g.tenant.id)
    db.session.commit()
    return jsonify(messaging.serialize_settings(s))


@api_bp.put("/messaging/settings")
@permission_required("messaging:update")
def messaging_settings_update():
    s = messaging.update_settings(g.tenant.id, json_body())
    db.session.commit()
    return jsonify(messaging.serialize_settings(s))


@api_bp.get("/conversations")
@permission_required("messaging:read")
def conversations_list():
    page, limit = page_args()
    q = request.args.get("q")
    if q:
        rows = messaging.search_conversations(current_user, q)
        return jsonify({"data": [messaging.serialize_conversation(c, current_user) for c in rows]})
    return jsonify(messaging.list_conversations(current_user, page=page, limit=limit))


@api_bp.post("/conversations")
@permission_required("messaging:create")
def conversations_create():
    data = json_body()
    c = messaging.create_conversation(
        current_user,
        type=data.get("type") or "direct",
        participant_ids=[int(i) for i in data.get("participant_ids") or []],
        name=data.get("name"),
        description=data.get("description"),
    )
    db.session.commit()
    return jsonify(messaging.serialize_conversation(c, current_user)), 201


@api_bp.get("/conversations/<int:conversation_id>")
@permission_required("messaging:read")
def conversations_get(conversation_id: int):
    c = messaging.get_conversation(current_user, conversation_id)
    return jsonify(messaging.serialize_conversation(c, current_user))


@api_bp.put("/conversations/<int:conversation_id>")
@permission_required("messaging:update")
def conversations_update(conversation_id: int):
    c = messaging.update_conversation(current_user, conversation_id, json_body())
    db.session.commit()
    return jsonify(messaging.serialize_conversation(c, current_user))


@api_bp.delete("/conversations/<int:conversation_id>")
@permission_required("messaging:delete")
def conversations_delete(conversation_id: int):
    messaging.delete_conversation(current_user, conversation_id)
    db.session.commit()
    return jsonify({"ok": True})


@api_bp.post("/conversations/<int:conversation_id>/mute")
@permission_required("messaging:read")
def conversations_mute(conversation_id: int):
    messaging.set_muted(current_user, conversation_id, as_bool(json_body().get("muted", True)))
    db.session.commit()
    return jsonify({"ok": True})


@api_bp.post("/conversations/<int:conversation_id>/participants")
@permission_required("messaging:update")
def conversations_add_participants(conversation_id: int):
    ids = json_body().get("user_ids")
    if not isinstance(ids, list) or not ids:
        raise ValidationError("user_ids must be a non-empty list")
    c = messaging.add_participants(current_user, conversation_id, [int(i) for i in ids])
    db.session.commit()
    return jsonify(messaging.serialize_conversation(c, current_user))


@api_bp.delete("/conversations/<int:conversation_id>/participants/<int:user_id>")
@permission_required("messaging:update")
def conversations_remove_participant(conversation_id: int, user_id: int):
    c = messaging.remove_participant(current_user, conversation_id, user_id)
    db.session.commit()
    return jsonify(messaging.serialize_conversation(c, current_user))


@api_bp.post("/conversations/<int:conversation_id>/leave")
@permission_required("messaging:read")
def conversations_leave(conversation_id: int):
    messaging.leave(current_user, conversation_id)
    db.session.commit()
    return jsonify({"ok": True})


@api_bp.get("/conversations/<int:conversation_id>/messages")
@permission_required("messaging:read")
def messages_list(conversation_id: int):
    page = to_int(request.args.get("page"), "page", default=1, minimum=1)
    limit = min(to_int(request.args.get("limit"), "limit", default=50, minimum=1), 100)
    return jsonify(messaging.list_messages(current_user, conversation_id, page=page, limit=limit))


@api_bp.post("/conversations/<int:conversation_id>/messages")
@permission_required("messaging:create")
def messages_send(conversation_id: int):
    m = messaging.send_message(current_user, conversation_id, json_body().get("content") or "")
    db.session.commit()
    return jsonify(messaging.serialize_message(m)), 201


@api_bp.post("/conversations/<int:conversation_id>/read")
@permission_required("messaging:read")
def conversations_mark_read(conversation_id: int):
    count = messaging.mark_conversation_read(current_user, conversation_id)
    db.session.commit()
    return jsonify({"marked": count})


@api_bp.put("/messages/<int:message_id>")
@permission_required("messaging:update")
def messages_edit(message_id: int):
    m = messaging.edit_message(current_user, message_id, json_body().get("content") or "")
    db.session.commit()
    return jsonify(messaging.serialize_message(m))


@api_bp.delete("/messages/<int:message_id>")
@permission_required("messaging:delete")
def messages_delete(message_id: int):
    m = messaging.delete_message(current_user, message_id)
    db.session.commit()
    return jsonify(messaging.serialize_message(m))


@api_bp.post("/messages/<int:message_id>/read")
@permission_required("messaging:read")
def messages_mark_read(message_id: int):
    messaging.mark_message_read(current_user, message_id)
    db.session.commit()
    return jsonify({"ok": True})


@api_bp.get("/messages/unread-count")
@permission_required("messaging:read")
def messages_unread_count():
    cid = request.args.get("conversation_id")
    return jsonify({"unread": messaging.unread_count(current_user, int(cid) if cid else None)})


# =====================================================================
# NOTIFICATIONS (sempre do próprio usuário)
# =====================================================================
@api_bp.get("/notifications")
@permission_required("notifications:read")
def notifications_list():
    page, limit = page_args()
    a = request.args
    is_read = a.get("is_read")
    return jsonify(notifications.list_for_user(
        current_user,
        category=a.get("category"),
        priority=a.get("priority"),
        is_read=as_bool(is_read) if is_read not in (None, "") else None,
        page=page,
        limit=limit,
    ))


@api_bp.get("/notifications/unread-count")
@permission_required("notifications:read")
def notifications_unread_count():
    return jsonify({"unread": notifications.unread_count(current_user)})


@api_bp.post("/notifications/<int:notification_id>/read")
@permission_required("notifications:read")
def notifications_mark_read(notification_id: int):
    n = notifications.mark_read(current_user, notification_id)
    db.session.commit()
    return jsonify(notifications.serialize(n))


@api_bp.post("/notifications/read-all")
@permission_required("notifications:read")
def notifications_mark_all_read():
    count = notifications.mark_all_read(current_user)
    db.session.commit()
    return jsonify({"marked": count})


@api_bp.delete("/notifications/<int:notification_id>")
@permission_required("notifications:read")
def notifications_delete(notification_id: int):
    notifications.delete_notification(current_user, notification_id)
    db.session.commit()
    return jsonify({"ok": True})


@api_bp.delete("/notifications")
@permission_required("notifications:read")
def notifications_delete_all():
    count = notifications.delete_all(current_user)
    db.session.commit()
    return jsonify({"deleted": count})


@api_bp.get("/notifications/preferences")
@permission_required("notifications:read")
def notifications_preferences():
    prefs = notifications.get_preferences(current_user)
    db.session.commit()
    return jsonify({"data": [notifications.serialize_preference(p) for p in prefs]})


@api_bp.put("/notifications/preferences/<category>")
@permission_required("notifications:read")
def notifications_preference_update(category: str):
    p = notifications.update_preference(current_user, category, json_body())
    db.session.commit()
    return jsonify(notifications.serialize_preference(p))


@api_bp.put("/notifications/dnd")
@permission_required("notifications:read")
def notifications_dnd():
    data = json_body()
    prefs = notifications.set_dnd(
        current_user,
        as_bool(data.get("enabled")),
        data.get("start"),
        data.get("end"),
        data.get("days"),
        category=data.get("category"),
    )
    db.session.commit()
    return jsonify({"data": [notifications.serialize_preference(p) for p in prefs]})


# =====================================================================
# CALENDAR
# =====================================================================
def _window() -> tuple[datetime, datetime]:
    start = parse_datetime(request.args.get("start"), "start", allow_none=True)
    end = parse_datetime(request.args.get("end"), "end", allow_none=True)
    start = start or datetime.utcnow().replace(hour=0, minute=0, second=0, microsecond=0)
    end = end or start + timedelta(days=30)
    return start, end


@api_bp.get("/calendar/events")
@permission_required("calendar:read")
def calendar_list():
    start, end = _window()
    return jsonify({"data": calendar.list_events(current_user, start, end)})


@api_bp.post("/calendar/events")
@permission_required("calendar:create")
def calendar_create():
    e = calendar.create_event(current_user, json_body())
    db.session.commit()
    return jsonify(calendar.serialize(e)), 201


@api_bp.get("/calendar/events/<int:event_id>")
@permission_required("calendar:read")
def calendar_get(event_id: int):
    return jsonify(calendar.serialize(calendar.get_event(current_user, event_id)))


@api_bp.put("/calendar/events/<int:event_id>")
@permission_required("calendar:update")
def calendar_update(event_id: int):
    e = calendar.update_event(current_user, event_id, json_body())
    db.session.commit()
    return jsonify(calendar.serialize(e))


@api_bp.delete("/calendar/events/<int:event_id>")
@permission_required("calendar:delete")
def calendar_delete(event_id: int):
    calendar.delete_event(current_user, event_id)
    db.session.commit()
    return jsonify({"ok": True})


@api_bp.post("/calendar/events/<int:event_id>/respond")
@permission_required("calendar:read")
def calendar_respond(event_id: int):
    calendar.respond(current_user, event_id, json_body().get("status") or "")
    db.session.commit()
    return jsonify(calendar.serialize(calendar.get_event(current_user, event_id)))


@api_bp.get("/calendar/events/<int:event_id>/describe")
@permission_required("calendar:read")
def calendar_describe(event_id: int):
    e = calendar.get_event(current_user, event_id)
    return jsonify({"description": calendar.describe_rule(e.recurrence)})


@api_bp.post("/calendar/events/<int:event_id>/materialize")
@permission_required("calendar:update")
def calendar_materialize(event_id: int):
    e = calendar.get_event(current_user, event_id)
    start, end = _window()
    created = calendar.create_recurring_instances(e, start, end)
    db.session.commit()
    return jsonify({"created": created})
