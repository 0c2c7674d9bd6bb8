from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Iterable

from flask import current_app
from sqlalchemy import func, or_

from storedash.errors import ForbiddenError, NotFoundError, ValidationError
from storedash.extensions import db
from storedash.models import Tenant, User
from storedash.models_comm import (
    Conversation, ConversationParticipant, Message, MessageStatus, MessagingSettings,
)
from storedash.services import notifications
from storedash.utils import iso, paginate_list

DELETED_PLACEHOLDER = "[Message deleted]"
PREVIEW_LENGTH = 100
SEARCH_LIMIT = 20


# ============================ Configurações ============================

def get_settings(tenant_id: int) -> MessagingSettings:
    s = MessagingSettings.query.filter_by(tenant_id=tenant_id).first()
    if s is None:
        s = MessagingSettings(
            tenant_id=tenant_id,
            enabled=False,
            max_message_length=2000,
            max_group_participants=50,
            message_retention_days=90,
        )
        db.session.add(s)
        db.session.flush()
    return s


def serialize_settings(s: MessagingSettings) -> dict[str, Any]:
    return {
        "enabled": s.enabled,
        "max_message_length": s.max_message_length,
        "max_group_participants": s.max_group_participants,
        "message_retention_days": s.message_retention_days,
    }


def update_settings(tenant_id: int, data: dict) -> MessagingSettings:
    s = get_settings(tenant_id)
    if "enabled" in data:
        s.enabled = bool(data["enabled"])
    for field, minimum in (("max_message_length", 1), ("max_group_participants", 2), ("message_retention_days", 0)):
        if field in data:
            try:
                value = int(data[field])
            except (TypeError, ValueError):
                raise ValidationError(f"{field} must be an integer")
            if value < minimum:
                raise ValidationError(f"{field} must be >= {minimum}")
            setattr(s, field, value)
    db.session.flush()
    return s


# ============================ Serialização ============================

def _user_brief(u: User | None) -> dict[str, Any] | None:
    if u is None:
        return None
    return {"id": u.id, "name": u.name, "email": u.email}


def serialize_message(m: Message) -> dict[str, Any]:
    return {
        "id": m.id,
        "conversation_id": m.conversation_id,
        "sender": _user_brief(m.sender),
        "content": m.content,
        "type": m.type,
        "is_system_message": m.is_system_message,
        "edited_at": iso(m.edited_at),
        "deleted_at": iso(m.deleted_at),
        "created_at": iso(m.created_at),
        "statuses": [{"user_id": s.user_id, "status": s.status} for s in m.statuses],
    }


def serialize_conversation(c: Conversation, user: User | None = None) -> dict[str, Any]:
    data = {
        "id": c.id,
        "type": c.type,
        "name": c.name,
        "description": c.description,
        "created_by_id": c.created_by_id,
        "last_message_at": iso(c.last_message_at),
        "last_message_text": c.last_message_text,
        "participants": [
            {
                "user": _user_brief(p.user),
                "is_active": p.is_active,
                "is_muted": p.is_muted,
                "joined_at": iso(p.joined_at),
                "last_read_at": iso(p.last_read_at),
            }
            for p in c.participants if p.is_active
        ],
        "created_at": iso(c.created_at),
    }
    if user is not None:
        data["unread_count"] = unread_count(user, c.id)
    return data


# ============================ Conversas ============================

def _load_users(tenant_id: int, ids: Iterable[int]) -> list[User]:
    ids = sorted({int(i) for i in ids})
    if not ids:
        return []
    users = User.query.filter(User.tenant_id == tenant_id, User.id.in_(ids), User.is_active.is_(True)).all()
    if len(users) != len(ids):
        missing = sorted(set(ids) - {u.id for u in users})
        raise NotFoundError("Users not found", details={"user_ids": missing})
    return users


def _find_direct(tenant_id: int, a: int, b: int) -> Conversation | None:
    candidates = (
        Conversation.query
        .join(ConversationParticipant, ConversationParticipant.conversation_id == Conversation.id)
        .filter(
            Conversation.tenant_id == tenant_id,
            Conversation.type == "direct",
            ConversationParticipant.user_id == a,
        )
        .all()
    )
    for c in candidates:
        if {p.user_id for p in c.participants} == {a, b}:
            return c
    return None


def _system_message(conv: Conversation, actor: User, content: str, now: datetime) -> Message:
    msg = Message(
        conversation=conv,
        sender_id=actor.id,
        content=content,
        type="system",
        is_system_message=True,
        created_at=now,
    )
    db.session.add(msg)
    return msg


def create_conversation(
    creator: User,
    *,
    type: str = "direct",
    participant_ids: Iterable[int] = (),
    name: str | None = None,
    description: str | None = None,
    now: datetime | None = None,
) -> Conversation:
    now = now or datetime.utcnow()
    if type not in ("direct", "group"):
        raise ValidationError(f"Unknown conversation type: {type}")
    others = [i for i in {int(x) for x in participant_ids} if i != creator.id]

    if type == "group":
        if not (name or "").strip():
            raise ValidationError("Group conversations require a name")
        settings = get_settings(creator.tenant_id)
        if len(others) + 1 > settings.max_group_participants:
            raise ValidationError(f"Maximum {settings.max_group_participants} participants allowed")
    else:
        if len(others) != 1:
            raise ValidationError("Direct conversations require exactly one other participant")
        existing = _find_direct(creator.tenant_id, creator.id, others[0])
        if existing is not None:
            return existing

    users = _load_users(creator.tenant_id, others)
    conv = Conversation(
        tenant_id=creator.tenant_id,
        created_by_id=creator.id,
        type=type,
        name=(name or "").strip() or None,
        description=description,
        created_at=now,
    )
    db.session.add(conv)
    conv.participants.append(ConversationParticipant(user_id=creator.id, joined_at=now))
    for u in users:
        conv.participants.append(ConversationParticipant(user_id=u.id, joined_at=now))
    db.session.flush()
    return conv


def get_conversation(user: User, conversation_id: int) -> Conversation:
    conv = Conversation.query.filter_by(tenant_id=user.tenant_id, id=conversation_id).first()
    if not conv:
        raise NotFoundError("Conversation not found")
    p = conv.participant_for(user.id)
    if p is None or not p.is_active:
        raise ForbiddenError("You are not a participant of this conversation")
    return conv


def list_conversations(user: User, *, page: int = 1, limit: int = 20) -> dict[str, Any]:
    rows = (
        Conversation.query
        .join(ConversationParticipant, ConversationParticipant.conversation_id == Conversation.id)
        .filter(
            Conversation.tenant_id == user.tenant_id,
            ConversationParticipant.user_id == user.id,
            ConversationParticipant.is_active.is_(True),
        )
        .order_by(func.coalesce(Conversation.last_message_at, Conversation.created_at).desc(), Conversation.id.desc())
        .all()
    )
    return paginate_list(rows, page, limit, lambda c: serialize_conversation(c, user))


def update_conversation(user: User, conversation_id: int, data: dict) -> Conversation:
    conv = get_conversation(user, conversation_id)
    if conv.type != "group":
        raise ValidationError("Only group conversations can be updated")
    if "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationError("Group conversations require a name")
        conv.name = name
    if "description" in data:
        conv.description = data.get("description")
    db.session.flush()
    return conv


def delete_conversation(user: User, conversation_id: int) -> None:
    conv = get_conversation(user, conversation_id)
    if conv.created_by_id != user.id:
        raise ForbiddenError("Only the creator can delete this conversation")
    MessageStatus.query.filter(
        MessageStatus.message_id.in_(db.session.query(Message.id).filter(Message.conversation_id == conv.id))
    ).delete(synchronize_session=False)
    Message.query.filter_by(conversation_id=conv.id).delete(synchronize_session=False)
    db.session.delete(conv)
    db.session.flush()


def set_muted(user: User, conversation_id: int, muted: bool) -> ConversationParticipant:
    conv = get_conversation(user, conversation_id)
    p = conv.participant_for(user.id)
    p.is_muted = bool(muted)
    db.session.flush()
    return p


def add_participants(user: User, conversation_id: int, user_ids: Iterable[int], *, now: datetime | None = None) -> Conversation:
    now = now or datetime.utcnow()
    conv = get_conversation(user, conversation_id)
    if conv.type != "group":
        raise ValidationError("Participants can only be added to group conversations")

    active_ids = {p.user_id for p in conv.active_participants()}
    new_ids = [i for i in {int(x) for x in user_ids} if i not in active_ids]
    if not new_ids:
        return conv
    settings = get_settings(conv.tenant_id)
    if len(active_ids) + len(new_ids) > settings.max_group_participants:
        raise ValidationError(f"Maximum {settings.max_group_participants} participants allowed")

    users = _load_users(conv.tenant_id, new_ids)
    for u in users:
        p = conv.participant_for(u.id)
        if p is None:
            conv.participants.append(ConversationParticipant(user_id=u.id, joined_at=now))
        else:
            p.is_active, p.left_at, p.joined_at = True, None, now

    names = ", ".join(u.name or u.email for u in users)
    verb = "was" if len(users) == 1 else "were"
    _system_message(conv, user, f"{names} {verb} added to the conversation", now)
    db.session.flush()
    return conv


def remove_participant(user: User, conversation_id: int, user_id: int, *, now: datetime | None = None) -> Conversation:
    now = now or datetime.utcnow()
    conv = get_conversation(user, conversation_id)
    if user_id != user.id and conv.created_by_id != user.id:
        raise ForbiddenError("Only the creator can remove other participants")
    p = conv.participant_for(user_id)
    if p is None or not p.is_active:
        raise NotFoundError("Participant not found")
    p.is_active = False
    p.left_at = now

    removed = p.user
    removed_name = (removed.name or removed.email) if removed else "User"
    action = "left" if user_id == user.id else "was removed from"
    _system_message(conv, user, f"{removed_name} {action} the conversation", now)
    db.session.flush()
    return conv


def leave(user: User, conversation_id: int, *, now: datetime | None = None) -> Conversation:
    return remove_participant(user, conversation_id, user.id, now=now)


def search_conversations(user: User, query: str) -> list[Conversation]:
    q = (query or "").strip()
    if not q:
        return []
    like = f"%{q}%"
    mine = (
        db.session.query(ConversationParticipant.conversation_id)
        .filter(ConversationParticipant.user_id == user.id, ConversationParticipant.is_active.is_(True))
    )
    by_member = (
        db.session.query(ConversationParticipant.conversation_id)
        .join(User, User.id == ConversationParticipant.user_id)
        .filter(or_(User.name.ilike(like), User.email.ilike(like)))
    )
    return (
        Conversation.query
        .filter(
            Conversation.tenant_id == user.tenant_id,
            Conversation.id.in_(mine),
            or_(
                Conversation.name.ilike(like),
                Conversation.last_message_text.ilike(like),
                Conversation.id.in_(by_member),
            ),
        )
        .order_by(func.coalesce(Conversation.last_message_at, Conversation.created_at).desc())
        .limit(SEARCH_LIMIT)
        .all()
    )


# ============================ Mensagens ============================

def send_message(user: User, conversation_id: int, content: str, *, now: datetime | None = None) -> Message:
    now = now or datetime.utcnow()
    settings = get_settings(user.tenant_id)
    if not settings.enabled:
        raise ForbiddenError("Messaging is disabled")
    content = (content or "").strip()
    if not content:
        raise ValidationError("Message content is required")
    if len(content) > settings.max_message_length:
        raise ValidationError(f"Message exceeds {settings.max_message_length} characters")

    conv = get_conversation(user, conversation_id)
    msg = Message(conversation=conv, sender_id=user.id, content=content, type="text", created_at=now)
    db.session.add(msg)
    for p in conv.active_participants():
        msg.statuses.append(MessageStatus(
            user_id=p.user_id,
            status="read" if p.user_id == user.id else "sent",
            timestamp=now,
        ))
    conv.last_message_at = now
    conv.last_message_text = content[:PREVIEW_LENGTH]
    me = conv.participant_for(user.id)
    me.last_read_at = now
    db.session.flush()
    me.last_read_message_id = msg.id

    sender_name = user.name or user.email
    title = f"New message from {sender_name}" if conv.type == "direct" else f"New message in {conv.name}"
    for p in conv.active_participants():
        if p.user_id == user.id or p.is_muted or p.user is None:
            continue
        notifications.notify(
            p.user,
            title,
            content[:PREVIEW_LENGTH],
            category="messaging",
            action_url=f"/messages/{conv.id}",
            metadata={"conversation_id": conv.id, "message_id": msg.id},
            now=now,
        )
    db.session.flush()
    return msg


def list_messages(user: User, conversation_id: int, *, page: int = 1, limit: int = 50) -> dict[str, Any]:
    """Newest page first; messages inside a page in chronological order."""
    conv = get_conversation(user, conversation_id)
    q = conv.messages
    total = q.count()
    offset = (page - 1) * limit
    rows = q.order_by(Message.created_at.desc(), Message.id.desc()).offset(offset).limit(limit).all()
    rows.reverse()
    return {
        "data": [serialize_message(m) for m in rows],
        "total": total,
        "page": page,
        "limit": limit,
        "has_more": offset + len(rows) < total,
    }


def _own_message(user: User, message_id: int) -> Message:
    msg = db.session.get(Message, message_id)
    if msg is None:
        raise NotFoundError("Message not found")
    get_conversation(user, msg.conversation_id)
    return msg


def edit_message(user: User, message_id: int, content: str, *, now: datetime | None = None) -> Message:
    msg = _own_message(user, message_id)
    if msg.sender_id != user.id or msg.is_system_message:
        raise ForbiddenError("You can only edit your own messages")
    if msg.deleted_at is not None:
        raise ValidationError("Deleted messages cannot be edited")
    settings = get_settings(user.tenant_id)
    content = (content or "").strip()
    if not content:
        raise ValidationError("Message content is required")
    if len(content) > settings.max_message_length:
        raise ValidationError(f"Message exceeds {settings.max_message_length} characters")
    msg.content = content
    msg.edited_at = now or datetime.utcnow()
    db.session.flush()
    return msg


def delete_message(user: User, message_id: int, *, now: datetime | None = None) -> Message:
    msg = _own_message(user, message_id)
    if msg.sender_id != user.id:
        raise ForbiddenError("You can only delete your own messages")
    msg.deleted_at = now or datetime.utcnow()
    msg.content = DELETED_PLACEHOLDER
    db.session.flush()
    return msg


def mark_message_read(user: User, message_id: int, *, now: datetime | None = None) -> MessageStatus:
    now = now or datetime.utcnow()
    msg = _own_message(user, message_id)
    status = MessageStatus.query.filter_by(message_id=msg.id, user_id=user.id).first()
    if status is None:
        status = MessageStatus(message_id=msg.id, user_id=user.id)
        db.session.add(status)
    status.status = "read"
    status.timestamp = now
    db.session.flush()
    return status


def mark_conversation_read(user: User, conversation_id: int, *, now: datetime | None = None) -> int:
    now = now or datetime.utcnow()
    conv = get_conversation(user, conversation_id)
    pending = (
        MessageStatus.query
        .join(Message, Message.id == MessageStatus.message_id)
        .filter(
            Message.conversation_id == conv.id,
            MessageStatus.user_id == user.id,
            MessageStatus.status != "read",
        )
        .all()
    )
    for s in pending:
        s.status = "read"
        s.timestamp = now
    p = conv.participant_for(user.id)
    p.last_read_at = now
    last = conv.messages.order_by(Message.id.desc()).first()
    if last is not None:
        p.last_read_message_id = last.id
    db.session.flush()
    return len(pending)


def unread_count(user: User, conversation_id: int | None = None) -> int:
    q = (
        db.session.query(func.count(MessageStatus.id))
        .join(Message, Message.id == MessageStatus.message_id)
        .join(Conversation, Conversation.id == Message.conversation_id)
        .filter(
            Conversation.tenant_id == user.tenant_id,
            MessageStatus.user_id == user.id,
            MessageStatus.status != "read",
            Message.deleted_at.is_(None),
        )
    )
    if conversation_id is not None:
        q = q.filter(Message.conversation_id == conversation_id)
    return int(q.scalar() or 0)


# ============================ Retenção ============================

def purge_old_messages(now: datetime | None = None) -> int:
    """Deletes, per tenant, messages older than its retention window (0 = keep forever)."""
    now = now or datetime.utcnow()
    total = 0
    settings_rows = MessagingSettings.query.execution_options(skip_tenant_scope=True).all()
    for s in settings_rows:
        if not s.message_retention_days or s.message_retention_days <= 0:
            continue
        cutoff = now - timedelta(days=s.message_retention_days)
        old_ids = (
            db.session.query(Message.id)
            .join(Conversation, Conversation.id == Message.conversation_id)
            .filter(Conversation.tenant_id == s.tenant_id, Message.created_at < cutoff)
        )
        ids = [row[0] for row in old_ids.all()]
        if not ids:
            continue
        MessageStatus.query.filter(MessageStatus.message_id.in_(ids)).delete(synchronize_session=False)
        deleted = Message.query.filter(Message.id.in_(ids)).delete(synchronize_session=False)
        total += int(deleted or 0)
        tenant = db.session.get(Tenant, s.tenant_id)
        current_app.logger.info(
            "purged %s messages for tenant %s (cutoff %s)",
            deleted, tenant.slug if tenant else s.tenant_id, cutoff.isoformat(),
        )
    db.session.flush()
    return total
