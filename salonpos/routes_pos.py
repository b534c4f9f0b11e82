"""Point-of-sale routes: visits, payments, receipts and device sync."""
from __future__ import annotations

from flask import Blueprint, current_app, request

from .auth import login_required
from .errors import NotFoundError, ValidationError
from .extensions import commit_session, db
from .models import (PAYMENT_STATUSES, SYNC_STATUSES, Paiement, Passage,
                     PassagePrestation, SyncLog, User)
from .payments import (cancel_paiement, create_paiement, get_paiement,
                       receipt_data, update_paiement)
from .routes import ok
from .sync import ENTITY_TYPES, process_batch, pull_snapshot, sync_status
from .validation import (clean_string, day_bounds, get_json_payload, paginate,
                         pagination_args, parse_bool, parse_choice, parse_date,
                         parse_datetime, parse_int)
from .visits import create_visit, delete_visit, get_passage, update_visit

bp_pos = Blueprint("api_pos", __name__)


def _date_range(query, column):
    """Apply ``date`` or ``date_from``/``date_to`` query args to ``column``."""
    day = parse_date(request.args.get("date"), "date")
    if day is not None:
        start, end = day_bounds(day)
        return query.filter(column >= start, column < end)

    date_from = parse_date(request.args.get("date_from"), "date_from")
    date_to = parse_date(request.args.get("date_to"), "date_to")
    if date_from and date_to and date_from > date_to:
        raise ValidationError("date_from must not be after date_to")
    if date_from is not None:
        query = query.filter(column >= day_bounds(date_from)[0])
    if date_to is not None:
        query = query.filter(column < day_bounds(date_to)[1])
    return query


def _stylist_filter(query, stylist_id: int):
    return query.filter(Passage.items.any(PassagePrestation.stylist_id == stylist_id))


# ---------------------------------------------------------------- passages


@bp_pos.get("/passages")
@login_required
def list_passages():
    """List visits, newest first.
    ---
    tags:
      - Passages
    parameters:
      - name: client_id
        in: query
        type: integer
      - name: stylist_id
        in: query
        type: integer
      - name: date
        in: query
        type: string
        format: date
      - name: date_from
        in: query
        type: string
        format: date
      - name: date_to
        in: query
        type: string
        format: date
      - name: free
        in: query
        type: boolean
      - name: page
        in: query
        type: integer
        default: 1
      - name: limit
        in: query
        type: integer
        default: 20
    responses:
      200:
        description: Visits with pagination metadata
    """
    page, limit = pagination_args()
    query = Passage.query

    client_id = parse_int(request.args.get("client_id"), "client_id")
    if client_id is not None:
        query = query.filter(Passage.client_id == client_id)
    stylist_id = parse_int(request.args.get("stylist_id"), "stylist_id")
    if stylist_id is not None:
        query = _stylist_filter(query, stylist_id)
    free = parse_bool(request.args.get("free"), "free")
    if free is not None:
        query = query.filter(Passage.is_free.is_(free))
    query = _date_range(query, Passage.visited_at)

    passages, pagination = paginate(
        query.order_by(Passage.visited_at.desc(), Passage.passage_id.desc()), page, limit
    )
    return ok([p.to_dict(include_client=True) for p in passages], pagination=pagination)


@bp_pos.post("/passages")
@login_required
def create_passage():
    """Record a visit. The visit number and free flag are assigned by the server.
    ---
    tags:
      - Passages
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [client_id, items]
          properties:
            client_id:
              type: integer
            visited_at:
              type: string
              format: date-time
            notes:
              type: string
            items:
              type: array
              items:
                type: object
                properties:
                  prestation_id:
                    type: integer
                  quantity:
                    type: integer
                  stylist_id:
                    type: integer
    responses:
      201:
        description: Visit created
      404:
        description: Client not found
      422:
        description: Invalid items
    """
    payload = get_json_payload()
    client_id = parse_int(payload.get("client_id"), "client_id", required=True)
    passage = create_visit(
        client_id,
        payload.get("items"),
        visited_at=parse_datetime(payload.get("visited_at"), "visited_at"),
        notes=clean_string(payload.get("notes"), "notes"),
    )
    commit_session("visit creation")

    message = "Free visit!" if passage.is_free else "Visit recorded"
    return ok(passage.to_dict(include_client=True), 201, message=message)


@bp_pos.get("/passages/<int:passage_id>")
@login_required
def show_passage(passage_id: int):
    return ok(get_passage(passage_id).to_dict(include_client=True))


@bp_pos.put("/passages/<int:passage_id>")
@login_required
def update_passage(passage_id: int):
    payload = get_json_payload()
    changes = {}
    if "notes" in payload:
        changes["notes"] = payload.get("notes")
    if "items" in payload:
        changes["raw_items"] = payload.get("items")
    passage = update_visit(
        passage_id,
        visited_at=parse_datetime(payload.get("visited_at"), "visited_at"),
        **changes,
    )
    commit_session("visit update")
    return ok(passage.to_dict(include_client=True), message="Visit updated")


@bp_pos.delete("/passages/<int:passage_id>")
@login_required
def delete_passage(passage_id: int):
    """Delete a visit and renumber the client's remaining visits."""
    client = delete_visit(passage_id)
    commit_session("visit deletion")
    return ok({"client": client.to_dict()}, message="Visit deleted")


@bp_pos.get("/clients/<int:client_id>/passages")
@login_required
def client_passages(client_id: int):
    passages = (
        Passage.query.filter(Passage.client_id == client_id)
        .order_by(Passage.visit_number.asc())
        .all()
    )
    return ok([p.to_dict() for p in passages])


@bp_pos.get("/users/<int:stylist_id>/passages")
@login_required
def stylist_passages(stylist_id: int):
    stylist = db.session.get(User, stylist_id)
    if stylist is None or not stylist.is_stylist:
        raise NotFoundError(f"Stylist {stylist_id} not found")
    page, limit = pagination_args()
    query = _date_range(_stylist_filter(Passage.query, stylist_id), Passage.visited_at)
    passages, pagination = paginate(
        query.order_by(Passage.visited_at.desc(), Passage.passage_id.desc()), page, limit
    )
    return ok([p.to_dict(include_client=True) for p in passages], pagination=pagination)


# ---------------------------------------------------------------- paiements


@bp_pos.get("/paiements")
@login_required
def list_paiements():
    page, limit = pagination_args()
    query = Paiement.query
    status = parse_choice(request.args.get("status"), "status", PAYMENT_STATUSES)
    if status:
        query = query.filter(Paiement.status == status)
    query = _date_range(query, Paiement.paid_at)
    paiements, pagination = paginate(
        query.order_by(Paiement.paid_at.desc(), Paiement.paiement_id.desc()), page, limit
    )
    return ok([p.to_dict() for p in paiements], pagination=pagination)


@bp_pos.post("/paiements")
@login_required
def create_paiement_route():
    """Pay a visit; a receipt number is assigned once, here.
    ---
    tags:
      - Paiements
    responses:
      201:
        description: Payment recorded
      404:
        description: Visit not found
      409:
        description: Visit already has an active payment
    """
    payload = get_json_payload()
    passage_id = parse_int(payload.get("passage_id"), "passage_id", required=True)
    paiement = create_paiement(passage_id, payload)
    commit_session("payment creation")
    current_app.logger.info(
        "Payment %s recorded for visit %s", paiement.receipt_number, passage_id
    )
    return ok(paiement.to_dict(), 201, message="Payment recorded")


@bp_pos.get("/paiements/<int:paiement_id>")
@login_required
def show_paiement(paiement_id: int):
    paiement = get_paiement(paiement_id)
    data = paiement.to_dict()
    data["passage"] = paiement.passage.to_dict(include_client=True)
    return ok(data)


@bp_pos.put("/paiements/<int:paiement_id>")
@login_required
def update_paiement_route(paiement_id: int):
    paiement = update_paiement(get_paiement(paiement_id), get_json_payload())
    commit_session("payment update")
    return ok(paiement.to_dict(), message="Payment updated")


@bp_pos.post("/paiements/<int:paiement_id>/cancel")
@login_required
def cancel_paiement_route(paiement_id: int):
    reason = clean_string(get_json_payload().get("reason"), "reason")
    paiement = cancel_paiement(get_paiement(paiement_id), reason)
    commit_session("payment cancellation")
    return ok(paiement.to_dict(), message="Payment cancelled")


@bp_pos.delete("/paiements/<int:paiement_id>")
@login_required
def delete_paiement(paiement_id: int):
    paiement = get_paiement(paiement_id)
    db.session.delete(paiement)
    commit_session("payment deletion")
    return ok(message="Payment deleted")


@bp_pos.get("/paiements/<int:paiement_id>/receipt")
@login_required
def paiement_receipt(paiement_id: int):
    """Receipt data for a renderer (printer, PDF or screen)."""
    return ok(receipt_data(get_paiement(paiement_id)))


# ---------------------------------------------------------------- sync


@bp_pos.post("/sync/batch")
@login_required
def sync_batch():
    """Apply a batch of offline changes from one device.
    ---
    tags:
      - Sync
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [device_id]
          properties:
            device_id:
              type: string
            clients:
              type: array
            prestations:
              type: array
            passages:
              type: array
            paiements:
              type: array
    responses:
      200:
        description: Per-item results keyed by local id
      422:
        description: Malformed or oversized batch
    """
    return ok(process_batch(get_json_payload()))


@bp_pos.get("/sync/pull")
@login_required
def sync_pull():
    since = parse_datetime(request.args.get("since"), "since")
    return ok(pull_snapshot(since))


@bp_pos.get("/sync/status")
@login_required
def sync_status_route():
    return ok(sync_status(clean_string(request.args.get("device_id"), "device_id")))


@bp_pos.get("/sync/logs")
@login_required
def sync_logs():
    page, limit = pagination_args(default_limit=50, max_limit=200)
    query = SyncLog.query
    device_id = clean_string(request.args.get("device_id"), "device_id")
    if device_id:
        query = query.filter(SyncLog.device_id == device_id)
    entity_type = parse_choice(
        request.args.get("entity_type"), "entity_type", tuple(ENTITY_TYPES.values())
    )
    if entity_type:
        query = query.filter(SyncLog.entity_type == entity_type)
    status = parse_choice(request.args.get("status"), "status", SYNC_STATUSES)
    if status:
        query = query.filter(SyncLog.status == status)
    logs, pagination = paginate(query.order_by(SyncLog.sync_log_id.desc()), page, limit)
    return ok([log.to_dict() for log in logs], pagination=pagination)
