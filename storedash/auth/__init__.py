from __future__ import annotations
from flask import Blueprint

auth_bp = Blueprint("auth", __name__)

# Importa as rotas (necessário para registrá-las de fato)
from . import routes  # noqa: E402,F401
