# storedash/api/__init__.py
from __future__ import annotations

from flask import Blueprint, current_app, g, request
from flask_login import current_user
from sqlalchemy.exc import SQLAlchemyError

from storedash.extensions import db
from storedash.tenant_scope import bind_tenant_urls

# único ponto de criação do blueprint da API administrativa
api_bp = Blueprint("api", __name__)

bind_tenant_urls(api_bp, members_only=True)

MUTATING = {"POST", "PUT", "PATCH", "DELETE"}


@api_bp.after_request
def record_activity(resp):
    """Registra no activity log toda mutação bem-sucedida feita pela API."""
    if request.method not in MUTATING or not (200 <= resp.status_code < 300):
        return resp
    tenant = getattr(g, "tenant", None)
    if tenant is None or not current_user.is_authenticated:
        return resp

    from storedash.services.activity_log import log_activity

    endpoint = (request.endpoint or "").split(".")[-1]
    view_args = dict(request.view_args or {})
    entity_id = next((v for k, v in view_args.items() if k.endswith("_id")), None)
    try:
        log_activity(
            tenant.id,
            f"{request.method} {endpoint}",
            user=current_user,
            entity_type=endpoint.split("_", 1)[0],
            entity_id=entity_id,
            metadata={"path": request.path, "status": resp.status_code},
        )
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("could not record activity for %s %s", request.method, request.path)
    return resp


# Carrega as rotas (que importam api_bp daqui)
from . import routes_shop, routes_content, routes_comm, routes_dashboard  # noqa: E402,F401
