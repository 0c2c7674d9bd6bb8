# storedash/errors.py
"""
Domain errors raised by the services layer.

Every error carries an HTTP status and a short machine code; the app renders
them as ``{"error": code, "message": text}`` (plus ``details`` when present).
"""
from __future__ import annotations

from typing import Any

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException


class ServiceError(Exception):
    status_code = 400
    error_code = "bad_request"

    def __init__(self, message: str, *, details: Any = None, error_code: str | None = None):
        super().__init__(message)
        self.message = message
        self.details = details
        if error_code:
            self.error_code = error_code

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.error_code, "message": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class ValidationError(ServiceError):
    status_code = 400
    error_code = "validation_error"


class NotFoundError(ServiceError):
    status_code = 404
    error_code = "not_found"


class ForbiddenError(ServiceError):
    status_code = 403
    error_code = "forbidden"


class ConflictError(ServiceError):
    status_code = 409
    error_code = "conflict"


class RateLimitError(ServiceError):
    status_code = 429
    error_code = "rate_limited"


def register_error_handlers(app: Flask) -> None:
    from .extensions import db

    @app.errorhandler(ServiceError)
    def _handle_service_error(ex: ServiceError):
        db.session.rollback()
        if ex.status_code >= 500:
            app.logger.error("service error: %s", ex.message)
        return jsonify(ex.to_dict()), ex.status_code

    @app.errorhandler(HTTPException)
    def _handle_http_error(ex: HTTPException):
        code = (ex.name or "error").lower().replace(" ", "_")
        return jsonify({"error": code, "message": ex.description}), ex.code

    @app.errorhandler(Exception)
    def _handle_unexpected(ex: Exception):
        db.session.rollback()
        app.logger.exception("Unhandled exception on request")
        return jsonify({"error": "internal_error", "message": "Internal server error"}), 500
