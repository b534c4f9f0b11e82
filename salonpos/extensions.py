"""Shared Flask extensions for the application."""
from __future__ import annotations

from flask import current_app
from flask_cors import CORS
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .errors import ConflictError, SalonError, StorageError

# SQLAlchemy database instance shared across the app.
db = SQLAlchemy()

cors = CORS()


def database_error(exc: SQLAlchemyError, operation: str) -> SalonError:
    """Map a database failure to the API error reported for it.

    Unique-key violations surface as ``ConflictError``; anything else the
    driver raises becomes a ``StorageError``.
    """
    if isinstance(exc, IntegrityError):
        current_app.logger.warning("Integrity error during %s: %s", operation, exc.orig)
        error: SalonError = ConflictError(f"Duplicate value rejected during {operation}")
    else:
        current_app.logger.exception("Database error during %s", operation, exc_info=exc)
        error = StorageError(f"Database error during {operation}")
    error.__cause__ = exc
    return error


def commit_session(operation: str) -> None:
    """Commit the current unit of work, rolling back on any database failure."""
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise database_error(exc, operation) from exc
