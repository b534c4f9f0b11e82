"""Bearer-token authentication and role checks."""
from __future__ import annotations

from functools import wraps

from flask import current_app, g, request
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from .errors import AuthenticationError, AuthorizationError
from .extensions import db
from .models import User


def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(current_app.config["SECRET_KEY"], salt="auth-token")


def build_token(user: User) -> str:
    return _serializer().dumps({"user_id": user.user_id, "role": user.role})


def get_token_identity() -> dict[str, object] | None:
    """Decode the ``Authorization: Bearer`` header.

    Returns the token payload (``user_id`` and ``role``), or None when the
    header is missing, malformed, tampered with or expired.
    """
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None

    token = auth_header[7:]
    max_age = current_app.config.get("AUTH_TOKEN_MAX_AGE", 86400)
    try:
        payload = _serializer().loads(token, max_age=max_age)
    except SignatureExpired:
        current_app.logger.info("Rejected expired auth token")
        return None
    except BadSignature:
        current_app.logger.warning("Rejected auth token with bad signature")
        return None
    if not isinstance(payload, dict) or "user_id" not in payload:
        return None
    return payload


def current_user() -> User:
    user = g.get("current_user")
    if user is None:
        raise AuthenticationError("Invalid or missing token")
    return user


def _load_user() -> User:
    identity = get_token_identity()
    if identity is None:
        raise AuthenticationError("Invalid or missing token")
    user = db.session.get(User, identity["user_id"])
    if user is None or not user.is_active:
        raise AuthenticationError("Account unknown or disabled")
    g.current_user = user
    return user


def login_required(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        _load_user()
        return view(*args, **kwargs)

    return wrapper


def roles_required(*roles: str):
    """Restrict a view to users whose role is in ``roles``."""

    def decorator(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            user = _load_user()
            if user.role not in roles:
                raise AuthorizationError(
                    f"Role '{user.role}' is not allowed to perform this action"
                )
            return view(*args, **kwargs)

        return wrapper

    return decorator
