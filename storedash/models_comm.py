# storedash/models_comm.py
from __future__ import annotations

from datetime import datetime

from .extensions import db
from .models import json_dict, json_list
from .tenant_scope import TenantScoped


# =====================================================================
# MENSAGENS
# =====================================================================
class MessagingSettings(db.Model, TenantScoped):
    __tablename__ = "messaging_settings"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, unique=True)

    enabled = db.Column(db.Boolean, default=False, nullable=False)
    max_message_length = db.Column(db.Integer, default=2000, nullable=False)
    max_group_participants = db.Column(db.Integer, default=50, nullable=False)
    message_retention_days = db.Column(db.Integer, default=90, nullable=False)  # 0 = nunca apagar
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class Conversation(db.Model, TenantScoped):
    __tablename__ = "conversations"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    type = db.Column(db.String(10), nullable=False, default="direct")  # direct | group
    name = db.Column(db.String(120))
    description = db.Column(db.String(255))
    last_message_at = db.Column(db.DateTime, index=True)
    last_message_text = db.Column(db.String(100))
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    participants = db.relationship(
        "ConversationParticipant", back_populates="conversation", lazy="selectin",
        cascade="all, delete-orphan",
    )
    messages = db.relationship(
        "Message", back_populates="conversation", lazy="dynamic",
        cascade="all, delete-orphan",
    )

    def active_participants(self) -> list["ConversationParticipant"]:
        return [p for p in self.participants if p.is_active]

    def participant_for(self, user_id: int) -> "ConversationParticipant | None":
        for p in self.participants:
            if p.user_id == user_id:
                return p
        return None


class ConversationParticipant(db.Model):
    __tablename__ = "conversation_participants"

    id = db.Column(db.Integer, primary_key=True)
    conversation_id = db.Column(db.Integer, db.ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    is_active = db.Column(db.Boolean, default=True, nullable=False)
    is_muted = db.Column(db.Boolean, default=False, nullable=False)
    joined_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    left_at = db.Column(db.DateTime)
    last_read_at = db.Column(db.DateTime)
    last_read_message_id = db.Column(db.Integer)

    conversation = db.relationship("Conversation", back_populates="participants", lazy=True)
    user = db.relationship("User", lazy="joined")

    __table_args__ = (
        db.UniqueConstraint("conversation_id", "user_id", name="uq_participant_conversation_user"),
    )


class Message(db.Model):
    __tablename__ = "messages"

    id = db.Column(db.Integer, primary_key=True)
    conversation_id = db.Column(db.Integer, db.ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True)
    sender_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    content = db.Column(db.Text, nullable=False)
    type = db.Column(db.String(10), nullable=False, default="text")  # text | system
    is_system_message = db.Column(db.Boolean, default=False, nullable=False)
    edited_at = db.Column(db.DateTime)
    deleted_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)

    conversation = db.relationship("Conversation", back_populates="messages", lazy=True)
    sender = db.relationship("User", lazy="joined")
    statuses = db.relationship(
        "MessageStatus", back_populates="message", lazy="selectin",
        cascade="all, delete-orphan",
    )


class MessageStatus(db.Model):
    __tablename__ = "message_statuses"

    id = db.Column(db.Integer, primary_key=True)
    message_id = db.Column(db.Integer, db.ForeignKey("messages.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    status = db.Column(db.String(10), nullable=False, default="sent")  # sent | delivered | read
    timestamp = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    message = db.relationship("Message", back_populates="statuses", lazy=True)

    __table_args__ = (
        db.UniqueConstraint("message_id", "user_id", name="uq_message_status_user"),
    )


# =====================================================================
# NOTIFICAÇÕES
# =====================================================================
class Notification(db.Model, TenantScoped):
    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    title = db.Column(db.String(200), nullable=False)
    message = db.Column(db.Text, nullable=False)
    category = db.Column(db.String(20), nullable=False, default="system", index=True)
    priority = db.Column(db.String(10), nullable=False, default="normal")  # low | normal | high | urgent
    action_url = db.Column(db.String(512))
    action_label = db.Column(db.String(80))
    meta = db.Column("metadata", json_dict(), default=dict)
    required_permission = db.Column(db.String(100))
    delivered = db.Column(db.Boolean, default=True, nullable=False)

    is_read = db.Column(db.Boolean, default=False, nullable=False, index=True)
    read_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)

    user = db.relationship("User", lazy=True)


class NotificationPreference(db.Model):
    __tablename__ = "notification_preferences"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    category = db.Column(db.String(20), nullable=False)

    enabled = db.Column(db.Boolean, default=True, nullable=False)
    dnd_enabled = db.Column(db.Boolean, default=False, nullable=False)
    dnd_start_time = db.Column(db.String(5))  # "HH:MM"
    dnd_end_time = db.Column(db.String(5))
    dnd_days = db.Column(json_list(), default=list)  # 0=domingo .. 6=sábado

    __table_args__ = (
        db.UniqueConstraint("user_id", "category", name="uq_notification_pref_user_category"),
    )
