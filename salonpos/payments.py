"""Payments of visits and the receipt data document."""
from __future__ import annotations

from flask import current_app

from .codes import generate_receipt_number, receipt_number_exists
from .errors import ConflictError, NotFoundError, ValidationError
from .extensions import db
from .models import PAYMENT_MODES, PAYMENT_STATUSES, Paiement, _iso
from .validation import INT_MAX, clean_string, parse_choice, parse_datetime, parse_int
from .visits import get_passage


def get_paiement(paiement_id: int) -> Paiement:
    paiement = db.session.get(Paiement, paiement_id)
    if paiement is None:
        raise NotFoundError(f"Paiement {paiement_id} not found")
    return paiement


def create_paiement(passage_id: int, payload: dict, *, device_id: str | None = None, synced_at=None) -> Paiement:
    """Record the payment of a visit.

    The total is a snapshot of the visit total (0 for a free visit). A visit
    carries at most one payment that is not cancelled.
    """
    passage = get_passage(passage_id)
    active = passage.active_paiement
    if active is not None:
        raise ConflictError(
            f"Passage {passage_id} already has payment {active.receipt_number}",
            {"passage_id": ["already paid"]},
        )

    total = passage.total_amount_cents
    if total > INT_MAX:
        raise ValidationError(
            f"Passage {passage_id} total is too large to be paid", {"passage_id": ["total out of range"]}
        )
    paid = parse_int(
        payload.get("paid_amount_cents"), "paid_amount_cents", minimum=0, maximum=INT_MAX, default=total
    )
    paid_at = parse_datetime(payload.get("paid_at"), "paid_at")
    receipt_number = generate_receipt_number(paid_at)
    if receipt_number_exists(receipt_number):
        raise ConflictError(f"Receipt number {receipt_number} already exists")

    paiement = Paiement(
        passage_id=passage.passage_id,
        total_amount_cents=total,
        paid_amount_cents=paid,
        payment_mode=parse_choice(
            payload.get("payment_mode"), "payment_mode", PAYMENT_MODES, default="cash"
        ),
        status=parse_choice(payload.get("status"), "status", PAYMENT_STATUSES, default="valid"),
        receipt_number=receipt_number,
        notes=clean_string(payload.get("notes"), "notes"),
        device_id=device_id,
        synced_at=synced_at,
    )
    if paid_at is not None:
        paiement.paid_at = paid_at
    passage.paiements.append(paiement)
    db.session.add(paiement)
    db.session.flush()
    return paiement


def update_paiement(paiement: Paiement, payload: dict, *, synced_at=None) -> Paiement:
    if "receipt_number" in payload and payload["receipt_number"] != paiement.receipt_number:
        raise ValidationError(
            "receipt_number: cannot be changed", {"receipt_number": ["cannot be changed"]}
        )
    if "paid_amount_cents" in payload:
        paiement.paid_amount_cents = parse_int(
            payload.get("paid_amount_cents"), "paid_amount_cents", required=True, minimum=0, maximum=INT_MAX
        )
    if "payment_mode" in payload:
        paiement.payment_mode = parse_choice(
            payload.get("payment_mode"), "payment_mode", PAYMENT_MODES, required=True
        )
    if "status" in payload:
        status = parse_choice(payload.get("status"), "status", PAYMENT_STATUSES, required=True)
        if status != "cancelled" and paiement.status == "cancelled":
            other = paiement.passage.active_paiement
            if other is not None and other.paiement_id != paiement.paiement_id:
                raise ConflictError(
                    f"Passage {paiement.passage_id} already has payment {other.receipt_number}"
                )
        paiement.status = status
    if "notes" in payload:
        paiement.notes = clean_string(payload.get("notes"), "notes")
    if synced_at is not None:
        paiement.synced_at = synced_at
    db.session.flush()
    return paiement


def cancel_paiement(paiement: Paiement, reason: str | None = None) -> Paiement:
    if paiement.status == "cancelled":
        raise ConflictError(f"Payment {paiement.receipt_number} is already cancelled")
    paiement.status = "cancelled"
    if reason:
        paiement.notes = f"{paiement.notes}\n{reason}" if paiement.notes else reason
    current_app.logger.info("Cancelled payment %s", paiement.receipt_number)
    db.session.flush()
    return paiement


def receipt_data(paiement: Paiement) -> dict[str, object]:
    """Fields a receipt renderer needs; rendering itself happens elsewhere."""
    passage = paiement.passage
    client = passage.client
    config = current_app.config
    return {
        "salon": {
            "name": config.get("SALON_NAME"),
            "address": config.get("SALON_ADDRESS"),
            "phone": config.get("SALON_PHONE"),
            "email": config.get("SALON_EMAIL"),
        },
        "receipt_number": paiement.receipt_number,
        "date": _iso(paiement.paid_at),
        "client": {
            "full_name": client.full_name,
            "phone": client.phone,
            "code": client.code,
        },
        "visit_number": passage.visit_number,
        "is_free": bool(passage.is_free),
        "items": [
            {
                "label": item.prestation.label if item.prestation else None,
                "quantity": item.quantity,
                "unit_price_cents": item.applied_price_cents,
                "line_total_cents": item.line_total_cents,
                "stylist": item.stylist.full_name if item.stylist else None,
            }
            for item in passage.items
        ],
        "theoretical_amount_cents": passage.theoretical_amount_cents,
        "total_amount_cents": paiement.total_amount_cents,
        "paid_amount_cents": paiement.paid_amount_cents,
        "remaining_cents": paiement.remaining_cents,
        "payment_mode": paiement.payment_mode,
        "status": paiement.status,
    }
