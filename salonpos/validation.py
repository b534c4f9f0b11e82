"""Input parsing helpers. Each helper raises ValidationError naming the field."""
from __future__ import annotations

from collections.abc import Iterable
from datetime import date, datetime, time, timedelta, timezone
from typing import NoReturn

from flask import request

from .errors import ValidationError

# Signed 32-bit range of an INTEGER column
INT_MIN = -(2**31)
INT_MAX = 2**31 - 1


def _fail(field: str, message: str) -> NoReturn:
    raise ValidationError(f"{field}: {message}", {field: [message]})


def get_json_payload() -> dict[str, object]:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


def clean_string(
    value: object,
    field: str,
    *,
    required: bool = False,
    max_length: int | None = None,
) -> str | None:
    """Strip a string value; empty strings become None."""
    if value is None:
        cleaned = None
    elif isinstance(value, (str, int)) and not isinstance(value, bool):
        cleaned = str(value).strip() or None
    else:
        _fail(field, "must be a string")
    if cleaned is None:
        if required:
            _fail(field, "is required")
        return None
    if max_length is not None and len(cleaned) > max_length:
        _fail(field, f"must be at most {max_length} characters")
    return cleaned


def parse_int(
    value: object,
    field: str,
    *,
    required: bool = False,
    minimum: int | None = None,
    maximum: int | None = None,
    default: int | None = None,
) -> int | None:
    if value is None or value == "":
        if required:
            _fail(field, "is required")
        return default
    if isinstance(value, bool):
        _fail(field, "must be an integer")
    try:
        number = int(value)
    except (TypeError, ValueError):
        _fail(field, "must be an integer")
    if isinstance(value, float) and number != value:
        _fail(field, "must be an integer")
    if minimum is not None and number < minimum:
        _fail(field, f"must be >= {minimum}")
    if maximum is not None and number > maximum:
        _fail(field, f"must be <= {maximum}")
    if not INT_MIN <= number <= INT_MAX:
        _fail(field, "is out of range")
    return number


def parse_float(
    value: object,
    field: str,
    *,
    minimum: float | None = None,
    maximum: float | None = None,
    default: float | None = None,
) -> float | None:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        _fail(field, "must be a number")
    try:
        number = float(value)
    except (TypeError, ValueError):
        _fail(field, "must be a number")
    if minimum is not None and number < minimum:
        _fail(field, f"must be >= {minimum}")
    if maximum is not None and number > maximum:
        _fail(field, f"must be <= {maximum}")
    return number


def parse_bool(value: object, field: str, *, default: bool | None = None) -> bool | None:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    _fail(field, "must be a boolean")


def parse_choice(
    value: object,
    field: str,
    choices: Iterable[str],
    *,
    required: bool = False,
    default: str | None = None,
) -> str | None:
    cleaned = clean_string(value, field, required=required)
    if cleaned is None:
        return default
    choices = tuple(choices)
    cleaned = cleaned.lower()
    if cleaned not in choices:
        _fail(field, f"must be one of: {', '.join(choices)}")
    return cleaned


def parse_datetime(value: object, field: str, *, required: bool = False) -> datetime | None:
    """Parse an ISO-8601 date or datetime into an aware UTC datetime."""
    if value is None or value == "":
        if required:
            _fail(field, "is required")
        return None
    if not isinstance(value, str):
        _fail(field, "must be an ISO-8601 datetime")
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        _fail(field, "must be an ISO-8601 datetime")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def parse_date(value: object, field: str) -> date | None:
    if value is None or value == "":
        return None
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError:
        _fail(field, "must be a date (YYYY-MM-DD)")


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """UTC ``[start, end)`` bounds of a calendar day."""
    start = datetime.combine(day, time.min).replace(tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


def pagination_args(default_limit: int = 20, max_limit: int = 100) -> tuple[int, int]:
    page = parse_int(request.args.get("page"), "page", minimum=1, default=1)
    limit = parse_int(request.args.get("limit"), "limit", minimum=1, default=default_limit)
    return page, min(limit, max_limit)


def paginate(query, page: int, limit: int) -> tuple[list, dict[str, int]]:
    total = query.count()
    rows = query.limit(limit).offset((page - 1) * limit).all()
    meta = {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": (total + limit - 1) // limit,
    }
    return rows, meta
