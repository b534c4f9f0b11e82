"""Visit (passage) engine: numbering, loyalty and client counters.

Every path that adds, removes or reorders passages goes through this module so
that ``Client.visit_count`` and the dense ``visit_number`` sequence stay in
step with the passage rows. Functions flush but never commit; the caller owns
the transaction.
"""
from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import func

from .errors import ConflictError, NotFoundError, ValidationError
from .extensions import db
from .models import Client, Passage, PassagePrestation, Prestation, User, utc_now
from .validation import clean_string, parse_int

_UNSET = object()
MAX_QUANTITY = 1000


def loyalty_settings() -> tuple[int, bool]:
    interval = int(current_app.config.get("LOYALTY_INTERVAL", 10))
    enabled = bool(current_app.config.get("LOYALTY_ENABLED", True))
    return interval, enabled


def is_free_visit(visit_number: int) -> bool:
    interval, enabled = loyalty_settings()
    return enabled and interval > 0 and visit_number % interval == 0


def _lock_client(client_id: int) -> Client:
    client = (
        db.session.query(Client)
        .filter(Client.client_id == client_id)
        .with_for_update()
        .first()
    )
    if client is None:
        raise NotFoundError(f"Client {client_id} not found")
    return client


def get_passage(passage_id: int) -> Passage:
    passage = db.session.get(Passage, passage_id)
    if passage is None:
        raise NotFoundError(f"Passage {passage_id} not found")
    return passage


def build_items(raw_items: object) -> list[PassagePrestation]:
    """Validate visit lines and snapshot the current prestation prices.

    Every line is checked before anything is attached to the session, so a bad
    third line leaves no trace of the first two.
    """
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError(
            "items: at least one prestation is required",
            {"items": ["at least one prestation is required"]},
        )

    errors: dict[str, list[str]] = {}
    lines: list[PassagePrestation] = []
    for index, raw in enumerate(raw_items):
        prefix = f"items[{index}]"
        if not isinstance(raw, dict):
            errors[prefix] = ["must be an object"]
            continue

        prestation_id = parse_int(raw.get("prestation_id"), f"{prefix}.prestation_id", required=True)
        quantity = parse_int(
            raw.get("quantity"), f"{prefix}.quantity", minimum=1, maximum=MAX_QUANTITY, default=1
        )
        stylist_id = parse_int(raw.get("stylist_id"), f"{prefix}.stylist_id")

        prestation = db.session.get(Prestation, prestation_id)
        if prestation is None or prestation.deleted_at is not None:
            errors[f"{prefix}.prestation_id"] = [f"prestation {prestation_id} does not exist"]
            continue
        if not prestation.is_active:
            errors[f"{prefix}.prestation_id"] = [f"prestation {prestation_id} is inactive"]
            continue

        if stylist_id is not None:
            stylist = db.session.get(User, stylist_id)
            if stylist is None or not stylist.is_stylist or not stylist.is_active:
                errors[f"{prefix}.stylist_id"] = [f"user {stylist_id} is not an active stylist"]
                continue

        lines.append(
            PassagePrestation(
                prestation_id=prestation.prestation_id,
                applied_price_cents=prestation.price_cents,
                quantity=quantity,
                stylist_id=stylist_id,
            )
        )

    if errors:
        raise ValidationError("Invalid visit items", errors)
    return lines


def recount_client(client: Client) -> None:
    """Renumber a client's passages 1..N by (visited_at, id) and refresh counters.

    ``is_free`` is left as it was granted at creation time.
    """
    passages = (
        db.session.query(Passage)
        .filter(Passage.client_id == client.client_id)
        .order_by(Passage.visited_at.asc(), Passage.passage_id.asc())
        .all()
    )
    moved = [
        (number, passage)
        for number, passage in enumerate(passages, start=1)
        if passage.visit_number != number
    ]
    # Park moved rows on negative numbers so no UPDATE collides with a row not yet moved
    for number, passage in moved:
        passage.visit_number = -number
    db.session.flush()
    for number, passage in moved:
        passage.visit_number = number
    client.visit_count = len(passages)
    client.last_visit_at = passages[-1].visited_at if passages else None
    db.session.flush()


def create_visit(
    client_id: int,
    raw_items: object,
    *,
    visited_at: datetime | None = None,
    notes: str | None = None,
    device_id: str | None = None,
    synced_at: datetime | None = None,
) -> Passage:
    client = _lock_client(client_id)
    if client.is_archived:
        raise ValidationError(
            f"Client {client.code} is archived", {"client_id": ["client is archived"]}
        )
    lines = build_items(raw_items)

    visit_number = client.visit_count + 1
    passage = Passage(
        client_id=client.client_id,
        visit_number=visit_number,
        is_free=is_free_visit(visit_number),
        notes=notes,
        visited_at=visited_at or utc_now(),
        device_id=device_id,
        synced_at=synced_at,
    )
    passage.items.extend(lines)
    db.session.add(passage)
    db.session.flush()

    client.visit_count = visit_number
    client.last_visit_at = (
        db.session.query(func.max(Passage.visited_at))
        .filter(Passage.client_id == client.client_id)
        .scalar()
    )
    db.session.flush()

    if passage.is_free:
        current_app.logger.info(
            "Free visit #%s granted to client %s", visit_number, client.code
        )
    return passage


def update_visit(
    passage_id: int,
    *,
    raw_items: object = None,
    visited_at: datetime | None = None,
    notes: object = _UNSET,
) -> Passage:
    passage = get_passage(passage_id)
    client = _lock_client(passage.client_id)

    if raw_items is not None:
        if passage.active_paiement is not None:
            raise ConflictError(
                f"Passage {passage_id} is paid; cancel the payment before changing its items"
            )
        lines = build_items(raw_items)
        passage.items.clear()
        db.session.flush()
        passage.items.extend(lines)

    if notes is not _UNSET:
        passage.notes = clean_string(notes, "notes")

    if visited_at is not None:
        passage.visited_at = visited_at
        db.session.flush()
        recount_client(client)

    db.session.flush()
    return passage


def delete_visit(passage_id: int) -> Client:
    """Delete a passage with its lines and payments, then renumber the client."""
    passage = get_passage(passage_id)
    client = _lock_client(passage.client_id)
    deleted_number = passage.visit_number

    db.session.delete(passage)
    db.session.flush()
    recount_client(client)

    current_app.logger.info(
        "Deleted visit #%s of client %s; %s visits renumbered",
        deleted_number,
        client.code,
        client.visit_count,
    )
    return client


def compute_free_eligibility(client_id: int) -> dict[str, object]:
    client = db.session.get(Client, client_id)
    if client is None:
        raise NotFoundError(f"Client {client_id} not found")

    interval, enabled = loyalty_settings()
    next_number = client.visit_count + 1
    next_is_free = is_free_visit(next_number)
    if enabled and interval > 0:
        remaining = (interval - next_number % interval) % interval
        next_free_number = next_number + remaining
    else:
        remaining = None
        next_free_number = None

    return {
        "client_id": client.client_id,
        "current_count": client.visit_count,
        "next_visit_number": next_number,
        "next_is_free": next_is_free,
        "visits_remaining": remaining,
        "next_free_visit_number": next_free_number,
        "loyalty_interval": interval,
        "loyalty_enabled": enabled,
    }
