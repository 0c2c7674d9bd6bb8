# storedash/models.py
from __future__ import annotations

from datetime import datetime

from flask_login import UserMixin
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.mutable import MutableDict, MutableList
from sqlalchemy.types import JSON
from werkzeug.security import generate_password_hash, check_password_hash

from .extensions import db, login_manager
from .tenant_scope import TenantScoped

# JSON portátil (JSONB no Postgres, JSON em outros)
JSONType = JSON().with_variant(JSONB(), "postgresql")


# cada coluna mutável precisa da sua própria instância de tipo
def json_dict():
    return MutableDict.as_mutable(JSON().with_variant(JSONB(), "postgresql"))


def json_list():
    return MutableList.as_mutable(JSON().with_variant(JSONB(), "postgresql"))


# =====================================================================
# TENANT
# =====================================================================
class Tenant(db.Model):
    __tablename__ = "tenants"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    slug = db.Column(db.String(80), unique=True, nullable=False, index=True)

    is_blocked = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    users = db.relationship("User", back_populates="tenant", lazy=True, cascade="all, delete-orphan")
    roles = db.relationship("Role", back_populates="tenant", lazy=True, cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<Tenant {self.slug}>"


# =====================================================================
# PERMISSIONS (resource:action) + ROLES
# =====================================================================
class Permission(db.Model):
    __tablename__ = "permissions"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False, index=True)
    resource = db.Column(db.String(50), nullable=False)
    action = db.Column(db.String(50), nullable=False)
    description = db.Column(db.String(255))

    def __repr__(self) -> str:
        return f"<Permission {self.name}>"


class RolePermission(db.Model):
    __tablename__ = "role_permissions"

    id = db.Column(db.Integer, primary_key=True)
    role_id = db.Column(db.Integer, db.ForeignKey("roles.id", ondelete="CASCADE"), nullable=False, index=True)
    permission_id = db.Column(db.Integer, db.ForeignKey("permissions.id", ondelete="CASCADE"), nullable=False, index=True)

    permission = db.relationship("Permission", lazy="joined")

    __table_args__ = (
        db.UniqueConstraint("role_id", "permission_id", name="uq_role_permission"),
    )


class Role(db.Model, TenantScoped):
    __tablename__ = "roles"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    name = db.Column(db.String(80), nullable=False)
    description = db.Column(db.String(255))
    is_system = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    tenant = db.relationship("Tenant", back_populates="roles", lazy=True)
    role_permissions = db.relationship(
        "RolePermission", lazy="selectin", cascade="all, delete-orphan", passive_deletes=True
    )
    users = db.relationship("User", back_populates="role", lazy="dynamic")

    __table_args__ = (
        db.UniqueConstraint("tenant_id", "name", name="uq_role_tenant_name"),
    )

    @property
    def permission_names(self) -> set[str]:
        return {rp.permission.name for rp in self.role_permissions}

    def __repr__(self) -> str:
        return f"<Role {self.name}>"


# =====================================================================
# USER
# =====================================================================
class User(UserMixin, db.Model, TenantScoped):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    role_id = db.Column(db.Integer, db.ForeignKey("roles.id", ondelete="SET NULL"), nullable=True, index=True)

    email = db.Column(db.String(255), nullable=False)
    name = db.Column(db.String(120))
    password_hash = db.Column(db.String(255), nullable=False)

    is_active = db.Column(db.Boolean, default=True, nullable=False)
    is_superadmin = db.Column(db.Boolean, default=False, nullable=False)
    last_login_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    tenant = db.relationship("Tenant", back_populates="users", lazy=True)
    role = db.relationship("Role", back_populates="users", lazy="joined")

    __table_args__ = (
        db.UniqueConstraint("tenant_id", "email", name="uq_user_tenant_email"),
    )

    def set_password(self, raw: str):
        self.password_hash = generate_password_hash(raw)

    def check_password(self, raw: str) -> bool:
        return check_password_hash(self.password_hash, raw)

    @property
    def display_name(self) -> str:
        return self.name or self.email

    def __repr__(self) -> str:
        return f"<User {self.email}>"


@login_manager.user_loader
def load_user(user_id):
    try:
        return db.session.get(User, int(user_id), execution_options={"skip_tenant_scope": True})
    except (TypeError, ValueError):
        return None


# =====================================================================
# ACTIVITY LOG
# =====================================================================
class ActivityLog(db.Model, TenantScoped):
    __tablename__ = "activity_logs"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    action = db.Column(db.String(120), nullable=False, index=True)
    entity_type = db.Column(db.String(60), index=True)
    entity_id = db.Column(db.String(64))
    meta = db.Column("metadata", json_dict(), default=dict)
    ip_address = db.Column(db.String(64))
    user_agent = db.Column(db.String(255))
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)

    user = db.relationship("User", lazy=True)

    def __repr__(self) -> str:
        return f"<ActivityLog {self.action} user_id={self.user_id}>"


# =====================================================================
# SCHEDULED JOBS
# =====================================================================
class CronJob(db.Model):
    __tablename__ = "cron_jobs"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False, index=True)
    description = db.Column(db.String(255))
    schedule = db.Column(db.String(100), nullable=False)
    handler = db.Column(db.String(100), nullable=False)

    is_enabled = db.Column(db.Boolean, default=True, nullable=False)
    is_locked = db.Column(db.Boolean, default=False, nullable=False)
    notify_on_failure = db.Column(db.Boolean, default=True, nullable=False)

    last_run_at = db.Column(db.DateTime)
    success_count = db.Column(db.Integer, default=0, nullable=False)
    failure_count = db.Column(db.Integer, default=0, nullable=False)
    consecutive_failures = db.Column(db.Integer, default=0, nullable=False)
    average_duration_ms = db.Column(db.Float)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    logs = db.relationship("CronLog", back_populates="job", lazy="dynamic", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<CronJob {self.name} enabled={self.is_enabled}>"


class CronLog(db.Model):
    __tablename__ = "cron_logs"

    id = db.Column(db.Integer, primary_key=True)
    job_id = db.Column(db.Integer, db.ForeignKey("cron_jobs.id", ondelete="CASCADE"), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, index=True)  # running | success | failed
    started_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)
    completed_at = db.Column(db.DateTime)
    duration_ms = db.Column(db.Integer)
    result = db.Column(JSONType)
    error = db.Column(db.Text)

    job = db.relationship("CronJob", back_populates="logs", lazy=True)

    def __repr__(self) -> str:
        return f"<CronLog job_id={self.job_id} status={self.status}>"
