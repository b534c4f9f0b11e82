"""Client records: creation with generated codes, updates and the archive / purge lifecycle."""
from __future__ import annotations

from flask import current_app
from sqlalchemy import func

from .codes import generate_client_code, is_valid_client_code
from .errors import ConflictError, NotFoundError, ValidationError
from .extensions import db
from .models import Client, Paiement, Passage
from .validation import clean_string
from .visits import compute_free_eligibility


def get_client(client_id: int) -> Client:
    client = db.session.get(Client, client_id)
    if client is None:
        raise NotFoundError(f"Client {client_id} not found")
    return client


def find_by_phone(phone: str | None) -> Client | None:
    if not phone:
        return None
    return db.session.query(Client).filter(Client.phone == phone).first()


def _check_phone_free(phone: str | None, exclude_id: int | None = None) -> None:
    existing = find_by_phone(phone)
    if existing is not None and existing.client_id != exclude_id:
        raise ConflictError(
            f"Phone {phone} already belongs to client {existing.code}",
            {"phone": ["already used by another client"]},
        )


def _clean_code(value: object, exclude_id: int | None = None) -> str | None:
    code = clean_string(value, "code", max_length=20)
    if code is None:
        return None
    code = code.upper()
    if not is_valid_client_code(code):
        raise ValidationError("code: must look like C001-26", {"code": ["must look like C001-26"]})
    existing = db.session.query(Client).filter(Client.code == code).first()
    if existing is not None and existing.client_id != exclude_id:
        raise ConflictError(f"Client code {code} is already taken", {"code": ["already taken"]})
    return code


def create_client(payload: dict, *, device_id: str | None = None, synced_at=None) -> Client:
    name = clean_string(payload.get("name"), "name", required=True, max_length=100)
    surname = clean_string(payload.get("surname"), "surname", required=True, max_length=100)
    phone = clean_string(payload.get("phone"), "phone", max_length=30)
    _check_phone_free(phone)

    code = _clean_code(payload.get("code"))
    if code is None:
        code = generate_client_code()

    client = Client(
        name=name,
        surname=surname,
        phone=phone,
        code=code,
        visit_count=0,
        status="active",
        device_id=device_id,
        synced_at=synced_at,
    )
    db.session.add(client)
    db.session.flush()
    return client


def update_client(client: Client, payload: dict, *, synced_at=None) -> Client:
    if "name" in payload:
        client.name = clean_string(payload.get("name"), "name", required=True, max_length=100)
    if "surname" in payload:
        client.surname = clean_string(
            payload.get("surname"), "surname", required=True, max_length=100
        )
    if "phone" in payload:
        phone = clean_string(payload.get("phone"), "phone", max_length=30)
        _check_phone_free(phone, exclude_id=client.client_id)
        client.phone = phone
    if "code" in payload:
        code = _clean_code(payload.get("code"), exclude_id=client.client_id)
        if code is None:
            raise ValidationError("code: cannot be emptied", {"code": ["cannot be emptied"]})
        client.code = code
    if synced_at is not None:
        client.synced_at = synced_at
    db.session.flush()
    return client


def archive_client(client: Client) -> Client:
    if client.is_archived:
        raise ConflictError(f"Client {client.code} is already archived")
    client.status = "archived"
    return client


def unarchive_client(client: Client) -> Client:
    if not client.is_archived:
        raise ConflictError(f"Client {client.code} is not archived")
    client.status = "active"
    return client


def purge_client(client: Client) -> None:
    """Hard delete; passages, their lines and payments go with it."""
    current_app.logger.info(
        "Purging client %s with %s visits", client.code, client.visit_count
    )
    db.session.delete(client)
    db.session.flush()


def client_stats(client: Client) -> dict[str, object]:
    revenue = (
        db.session.query(func.coalesce(func.sum(Paiement.paid_amount_cents), 0))
        .join(Passage, Passage.passage_id == Paiement.passage_id)
        .filter(Passage.client_id == client.client_id, Paiement.status == "valid")
        .scalar()
    )
    free_visits = (
        db.session.query(func.count(Passage.passage_id))
        .filter(Passage.client_id == client.client_id, Passage.is_free.is_(True))
        .scalar()
    )
    loyalty = compute_free_eligibility(client.client_id)
    return {
        "visit_count": client.visit_count,
        "free_visits": int(free_visits or 0),
        "revenue_cents": int(revenue or 0),
        "last_visit_at": client.to_dict()["last_visit_at"],
        "visits_until_free": loyalty["visits_remaining"],
        "next_is_free": loyalty["next_is_free"],
    }
