"""Error taxonomy and the JSON error handlers registered on the app."""
from __future__ import annotations

from flask import Flask, jsonify, request
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException


class SalonError(Exception):
    """Base class for errors rendered as a JSON failure envelope."""

    status_code = 400
    error = "bad_request"

    def __init__(self, message: str, errors: dict[str, object] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.errors = errors

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "success": False,
            "error": self.error,
            "message": self.message,
        }
        if self.errors:
            payload["errors"] = self.errors
        return payload


class ValidationError(SalonError):
    status_code = 422
    error = "invalid_payload"


class NotFoundError(SalonError):
    status_code = 404
    error = "not_found"


class ConflictError(SalonError):
    status_code = 409
    error = "conflict"


class AuthenticationError(SalonError):
    status_code = 401
    error = "unauthorized"


class AuthorizationError(SalonError):
    status_code = 403
    error = "forbidden"


class GenerationExhaustedError(SalonError):
    """The code generator ran out of candidates."""

    status_code = 500
    error = "generation_exhausted"


class StorageError(SalonError):
    status_code = 500
    error = "database_error"


def register_error_handlers(app: Flask) -> None:
    """Render every error as ``{"success": false, ...}`` and roll back the session."""
    from .extensions import database_error, db

    @app.errorhandler(SalonError)
    def handle_salon_error(exc: SalonError):
        db.session.rollback()
        if exc.status_code >= 500:
            app.logger.error("%s: %s", exc.error, exc.message, exc_info=exc.__cause__ or exc)
        else:
            app.logger.warning("%s: %s %s", exc.error, exc.message, exc.errors or "")
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(SQLAlchemyError)
    def handle_database_error(exc: SQLAlchemyError):
        # Raised at flush time, before any commit_session call
        db.session.rollback()
        error = database_error(exc, request.endpoint or "request")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_exception(exc: HTTPException):
        app.logger.warning("HTTP exception %s: %s", exc.code, exc.description)
        payload = {
            "success": False,
            "error": (exc.name or "error").lower().replace(" ", "_"),
            "message": exc.description,
        }
        return jsonify(payload), exc.code

    @app.errorhandler(Exception)
    def handle_unexpected(exc: Exception):
        db.session.rollback()
        app.logger.exception("Unhandled exception", exc_info=exc)
        payload = {
            "success": False,
            "error": "server_error",
            "message": "Internal server error",
        }
        return jsonify(payload), 500
