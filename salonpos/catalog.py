"""Prestation catalogue and the stylist associations."""
from __future__ import annotations

from sqlalchemy import func

from .errors import ConflictError, NotFoundError, ValidationError
from .extensions import db
from .models import PRESTATION_SPECIALTIES, Prestation, User, utc_now
from .validation import INT_MAX, clean_string, parse_bool, parse_choice, parse_int


def get_prestation(prestation_id: int, include_deleted: bool = False) -> Prestation:
    prestation = db.session.get(Prestation, prestation_id)
    if prestation is None or (prestation.deleted_at is not None and not include_deleted):
        raise NotFoundError(f"Prestation {prestation_id} not found")
    return prestation


def _check_label_free(label: str, exclude_id: int | None = None) -> None:
    query = db.session.query(Prestation).filter(
        func.lower(Prestation.label) == label.lower(),
        Prestation.deleted_at.is_(None),
    )
    if exclude_id is not None:
        query = query.filter(Prestation.prestation_id != exclude_id)
    if query.first() is not None:
        raise ConflictError(
            f"A prestation named '{label}' already exists", {"label": ["already exists"]}
        )


def _next_display_order() -> int:
    current = (
        db.session.query(func.max(Prestation.display_order))
        .filter(Prestation.deleted_at.is_(None))
        .scalar()
    )
    return (current or 0) + 1


def resolve_stylists(raw_ids: object) -> list[User]:
    if raw_ids is None:
        return []
    if not isinstance(raw_ids, list):
        raise ValidationError("stylist_ids: must be a list", {"stylist_ids": ["must be a list"]})
    stylists = []
    for raw_id in raw_ids:
        stylist_id = parse_int(raw_id, "stylist_ids", required=True)
        stylist = db.session.get(User, stylist_id)
        if stylist is None or not stylist.is_stylist:
            raise ValidationError(
                f"stylist_ids: user {stylist_id} is not a stylist",
                {"stylist_ids": [f"user {stylist_id} is not a stylist"]},
            )
        if stylist not in stylists:
            stylists.append(stylist)
    return stylists


def create_prestation(payload: dict, *, device_id: str | None = None, synced_at=None) -> Prestation:
    label = clean_string(payload.get("label"), "label", required=True, max_length=100)
    _check_label_free(label)
    display_order = parse_int(payload.get("display_order"), "display_order", minimum=0)
    if display_order is None:
        display_order = _next_display_order()
    prestation = Prestation(
        label=label,
        price_cents=parse_int(
            payload.get("price_cents"), "price_cents", required=True, minimum=0, maximum=INT_MAX
        ),
        description=clean_string(payload.get("description"), "description"),
        is_active=parse_bool(payload.get("is_active"), "is_active", default=True),
        display_order=display_order,
        duration_minutes=parse_int(payload.get("duration_minutes"), "duration_minutes", minimum=1),
        specialty=parse_choice(payload.get("specialty"), "specialty", PRESTATION_SPECIALTIES),
        device_id=device_id,
        synced_at=synced_at,
    )
    prestation.stylists = resolve_stylists(payload.get("stylist_ids"))
    db.session.add(prestation)
    db.session.flush()
    return prestation


def update_prestation(prestation: Prestation, payload: dict, *, synced_at=None) -> Prestation:
    if "label" in payload:
        label = clean_string(payload.get("label"), "label", required=True, max_length=100)
        _check_label_free(label, exclude_id=prestation.prestation_id)
        prestation.label = label
    if "price_cents" in payload:
        # Existing visit lines keep their snapshotted price
        prestation.price_cents = parse_int(
            payload.get("price_cents"), "price_cents", required=True, minimum=0, maximum=INT_MAX
        )
    if "description" in payload:
        prestation.description = clean_string(payload.get("description"), "description")
    if "is_active" in payload:
        prestation.is_active = parse_bool(payload.get("is_active"), "is_active", default=True)
    if "display_order" in payload:
        prestation.display_order = parse_int(
            payload.get("display_order"), "display_order", required=True, minimum=0
        )
    if "duration_minutes" in payload:
        prestation.duration_minutes = parse_int(
            payload.get("duration_minutes"), "duration_minutes", minimum=1
        )
    if "specialty" in payload:
        prestation.specialty = parse_choice(
            payload.get("specialty"), "specialty", PRESTATION_SPECIALTIES
        )
    if "stylist_ids" in payload:
        prestation.stylists = resolve_stylists(payload.get("stylist_ids"))
    if synced_at is not None:
        prestation.synced_at = synced_at
    db.session.flush()
    return prestation


def delete_prestation(prestation: Prestation) -> None:
    """Soft delete. Past visit lines still reference the row."""
    prestation.deleted_at = utc_now()
    prestation.is_active = False
    prestation.stylists = []
    db.session.flush()
