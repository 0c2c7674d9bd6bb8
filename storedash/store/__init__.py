from __future__ import annotations
from flask import Blueprint

# vitrine pública: /<tenant_slug>/store
store_bp = Blueprint("store", __name__)

from . import routes  # noqa: E402,F401
