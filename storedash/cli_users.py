# storedash/cli_users.py
"""
Criar/atualizar um admin para um tenant específico.

Uso:
  flask --app storedash users seed-admin --tenant loja1 --email admin@loja1.com --password 123456
  python -m storedash.cli_users seed-admin --tenant loja1 --email admin@loja1.com --password 123456
"""

from __future__ import annotations

import sys
from contextlib import nullcontext

import click
from flask import has_app_context
from sqlalchemy.exc import SQLAlchemyError

from storedash.extensions import db
from storedash.models import Role, Tenant, User


def app_context():
    """Reaproveita o contexto do ``flask`` CLI; fora dele cria o app."""
    if has_app_context():
        return nullcontext()
    from storedash import create_app
    return create_app().app_context()


@click.group("users")
def users_cli():
    """Gestão de usuários."""


@users_cli.command("seed-admin")
@click.option("--tenant", "tenant_slug", required=True, help="Slug do tenant (ex.: loja1)")
@click.option("--email", required=True, help="E-mail do usuário admin")
@click.option("--password", required=True, help="Senha a ser definida")
@click.option("--role", "role_name", default="admin", show_default=True, help="Role atribuída ao usuário")
@click.option("--superadmin", is_flag=True, help="Marca o usuário como superadmin")
def seed_admin(tenant_slug: str, email: str, password: str, role_name: str, superadmin: bool):
    """
    Upsert do usuário por (tenant_id, email):
    - Se existir, atualiza senha, role e reativa.
    - Se não existir, cria já com a senha definida antes do flush.
    """
    email = email.strip().lower()
    with app_context():
        tenant = Tenant.query.filter_by(slug=tenant_slug).first()
        if not tenant:
            click.echo(f"[ERRO] Tenant '{tenant_slug}' não encontrado.", err=True)
            sys.exit(1)

        role = Role.query.filter_by(tenant_id=tenant.id, name=role_name).first()
        if not role:
            click.echo(f"[ERRO] Role '{role_name}' não existe em {tenant_slug}.", err=True)
            sys.exit(1)

        user = User.query.filter_by(tenant_id=tenant.id, email=email).first()
        created = user is None
        try:
            if created:
                user = User(tenant_id=tenant.id, email=email)
                user.set_password(password)  # antes do add
                db.session.add(user)
            else:
                user.set_password(password)
            user.role_id = role.id
            user.is_active = True
            if superadmin:
                user.is_superadmin = True
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            click.echo(f"[ERRO] salvando usuário: {e}", err=True)
            sys.exit(1)

        click.echo(f"[OK] Admin {'criado' if created else 'atualizado'}: {email} em {tenant_slug} (role {role_name})")
        click.echo(f"Login: POST http://localhost:5000/{tenant_slug}/auth/login")


@users_cli.command("create-tenant")
@click.option("--name", required=True, help="Nome do tenant")
@click.option("--slug", default=None, help="Slug (padrão: derivado do nome)")
def create_tenant(name: str, slug: str | None):
    """Cria o tenant com as roles padrão (admin, manager, viewer)."""
    from storedash.errors import ServiceError
    from storedash.services.tenants import create_tenant as _create

    with app_context():
        try:
            t = _create(name, slug)
            db.session.commit()
        except ServiceError as e:
            db.session.rollback()
            click.echo(f"[ERRO] {e.message}", err=True)
            sys.exit(1)
        click.echo(f"[OK] Tenant criado: {t.slug} (id={t.id})")


if __name__ == "__main__":
    users_cli()
