# storedash/auth/routes.py
from __future__ import annotations

from datetime import datetime

from flask import current_app, g, jsonify, request
from flask_login import current_user, login_required, login_user, logout_user

from storedash.extensions import db
from storedash.models import User
from storedash.models_shop import Cart
from storedash.services import cart as cart_svc
from storedash.services.activity_log import log_activity
from storedash.services.users import serialize as serialize_user
from storedash.tenant_scope import bind_tenant_urls
from storedash.utils import as_bool, json_body
from . import auth_bp

bind_tenant_urls(auth_bp)


def _find_user(email: str) -> User | None:
    user = User.query.filter_by(tenant_id=g.tenant.id, email=email).first()
    if user:
        return user
    # superadmins entram em qualquer tenant
    return (
        User.query.execution_options(skip_tenant_scope=True)
        .filter_by(email=email, is_superadmin=True)
        .first()
    )


def _merge_guest_cart(user: User) -> None:
    session_id = (request.headers.get("X-Session-Id") or "").strip()
    if not session_id:
        return
    guest = Cart.query.filter_by(tenant_id=g.tenant.id, session_id=session_id, user_id=None).first()
    if not guest or not guest.items:
        return
    target = cart_svc.get_or_create(g.tenant.id, user_id=user.id)
    cart_svc.merge_carts(guest, target)
    current_app.logger.info("guest cart %s merged into cart %s", guest.id, target.id)


@auth_bp.post("/login")
def login():
    data = json_body()
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    if not email or not password:
        return jsonify({"error": "validation_error", "message": "email and password are required"}), 400

    user = _find_user(email)
    if not user or not user.check_password(password):
        current_app.logger.warning("failed login for %s on tenant %s", email, g.tenant.slug)
        return jsonify({"error": "invalid_credentials", "message": "Invalid email or password"}), 401
    if not user.is_active:
        return jsonify({"error": "inactive_user", "message": "This account is inactive"}), 403

    login_user(user, remember=as_bool(data.get("remember")))
    user.last_login_at = datetime.utcnow()
    _merge_guest_cart(user)
    log_activity(g.tenant.id, "login", user=user, entity_type="user", entity_id=user.id)
    db.session.commit()
    return jsonify({"user": serialize_user(user, with_permissions=True)})


@auth_bp.post("/logout")
@login_required
def logout():
    log_activity(g.tenant.id, "logout", user=current_user, entity_type="user", entity_id=current_user.id)
    db.session.commit()
    logout_user()
    return jsonify({"ok": True})


@auth_bp.get("/me")
@login_required
def me():
    return jsonify({"user": serialize_user(current_user, with_permissions=True)})
