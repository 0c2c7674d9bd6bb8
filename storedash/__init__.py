# storedash/__init__.py
from __future__ import annotations

import logging
import os
import subprocess

from flask import Flask, jsonify
from dotenv import load_dotenv, find_dotenv

from .config import Config
from .extensions import db, login_manager, migrate
from .errors import register_error_handlers
from .tenant_scope import TenantScoped, init_tenant_scope


def _tenant_scoped_models() -> list[type]:
    return [
        mapper.class_
        for mapper in db.Model.registry.mappers
        if issubclass(mapper.class_, TenantScoped)
    ]


def create_app(config_override: dict | None = None) -> Flask:
    # Carrega .env
    load_dotenv(find_dotenv(), override=True)

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config())
    if config_override:
        app.config.update(config_override)

    app.logger.setLevel(getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO))

    repo_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

    def _git_cmd(args: list[str]) -> str:
        try:
            return subprocess.check_output(
                ["git", "-C", repo_root, *args],
                stderr=subprocess.DEVNULL,
                text=True,
            ).strip()
        except (OSError, subprocess.CalledProcessError):
            return ""

    app_version = os.getenv("APP_VERSION") or os.getenv("RELEASE_VERSION") or ""
    git_sha = os.getenv("GIT_SHA") or os.getenv("COMMIT_SHA") or ""
    if not app_version:
        app_version = _git_cmd(["describe", "--tags", "--always"])
    if not git_sha:
        git_sha = _git_cmd(["rev-parse", "--short", "HEAD"])
    app.config["APP_VERSION"] = app_version
    app.config["GIT_SHA"] = git_sha

    # --------- Extensões ----------
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)

    # registra todos os modelos no metadata antes do filtro de tenant
    from . import models, models_shop, models_site, models_comm, models_calendar  # noqa: F401
    init_tenant_scope(_tenant_scoped_models())

    register_error_handlers(app)

    @app.get("/health")
    def health():
        return jsonify({"status": "ok", "version": app.config.get("APP_VERSION", ""), "sha": app.config.get("GIT_SHA", "")})

    # --------- Blueprints ----------
    from .auth import auth_bp              # /<tenant_slug>/auth
    from .api import api_bp                # /<tenant_slug>/api
    from .store import store_bp            # /<tenant_slug>/store
    from .superadmin import superadmin_bp  # /superadmin

    app.register_blueprint(auth_bp,  url_prefix="/<tenant_slug>/auth")
    app.register_blueprint(api_bp,   url_prefix="/<tenant_slug>/api")
    app.register_blueprint(store_bp, url_prefix="/<tenant_slug>/store")
    app.register_blueprint(superadmin_bp)

    # --------- CLI ----------
    from .cli_users import users_cli
    from .cli_jobs import jobs_cli
    app.cli.add_command(users_cli)
    app.cli.add_command(jobs_cli)

    # jobs embutidos precisam estar registrados antes do sync
    from .services import jobs  # noqa: F401

    return app
