# storedash/tenant_scope.py
from flask import g, has_request_context
from sqlalchemy import event
from sqlalchemy.orm import with_loader_criteria

from storedash.extensions import db


class TenantScoped:
    """
    Mixin para modelos multi-tenant.
    Só precisa herdar dele e ter a coluna tenant_id.
    """
    pass


_installed = False


def current_tenant_id(user=None):
    """Tenant bound to the request (``g.tenant``), else the user's own tenant."""
    if has_request_context():
        ten = getattr(g, "tenant", None)
        if ten is not None:
            return ten.id
    return getattr(user, "tenant_id", None)


def init_tenant_scope(models_using_mixin: list[type]) -> None:
    """
    Ativa o filtro automático de tenant para todos os SELECTs do ORM
    feitos durante um request que já resolveu ``g.tenant``.
    Chamado uma vez no create_app; chamadas repetidas são ignoradas.
    """
    global _installed
    if _installed:
        return
    _installed = True

    @event.listens_for(db.session, "do_orm_execute")
    def _add_tenant_filter(execute_state):
        if (
            not execute_state.is_select
            or execute_state.is_column_load
            or execute_state.is_relationship_load
            or execute_state.execution_options.get("skip_tenant_scope", False)
        ):
            return
        if not has_request_context():
            return
        ten = getattr(g, "tenant", None)
        if not ten:
            return
        tenant_id = ten.id
        for Model in models_using_mixin:
            execute_state.statement = execute_state.statement.options(
                with_loader_criteria(
                    Model,
                    lambda cls: cls.tenant_id == tenant_id,
                    include_aliases=True,
                )
            )


# -----------------------------------------------------------------------------#
# Helpers de tenant nos blueprints (/<tenant_slug>/...)
# -----------------------------------------------------------------------------#
def bind_tenant_urls(bp, *, members_only: bool = False) -> None:
    """
    Registra no blueprint a resolução de ``g.tenant`` a partir do slug da URL.
    Com ``members_only`` usuários autenticados de outro tenant recebem 403
    (superadmins passam).
    """
    from flask import abort, current_app, request
    from flask_login import current_user

    from storedash.models import Tenant

    @bp.url_value_preprocessor
    def pull_tenant(endpoint, values):
        if values is None:
            return
        g.tenant_slug = values.pop("tenant_slug", None)

    @bp.url_defaults
    def add_tenant_slug(endpoint, values):
        if "tenant_slug" in values or not getattr(g, "tenant_slug", None):
            return
        values["tenant_slug"] = g.tenant_slug

    @bp.before_request
    def load_tenant():
        slug = getattr(g, "tenant_slug", None)
        if not slug:
            abort(404)
        g.tenant = Tenant.query.filter_by(slug=slug).first_or_404()
        if g.tenant.is_blocked:
            abort(403, description="Tenant is blocked")
        if (
            members_only
            and current_user.is_authenticated
            and not current_user.is_superadmin
            and current_user.tenant_id != g.tenant.id
        ):
            current_app.logger.warning(
                "user %s tried to reach tenant %s at %s", current_user.id, slug, request.path
            )
            abort(403, description="User does not belong to this tenant")