"""Offline sync: batch push from a device, pull snapshot and audit log.

Each batch item is its own unit of work. It is committed together with its
``SyncLog`` row; when it fails, its changes are rolled back and a failure row
is committed instead, so earlier items stay applied and every item leaves
exactly one audit row.
"""
from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from .catalog import create_prestation, get_prestation, update_prestation
from .clients import create_client, find_by_phone, get_client, update_client
from .errors import SalonError, ValidationError
from .extensions import commit_session, database_error, db
from .models import Client, Paiement, Passage, Prestation, SyncLog, _iso, utc_now
from .payments import create_paiement, get_paiement, update_paiement
from .validation import clean_string, parse_datetime, parse_int
from .visits import create_visit, get_passage, update_visit

# Dependency order: a visit needs its client and prestations, a payment its visit
ENTITY_ORDER = ("clients", "prestations", "passages", "paiements")
ENTITY_TYPES = {
    "clients": "client",
    "prestations": "prestation",
    "passages": "passage",
    "paiements": "paiement",
}
SYNC_ACTIONS = ("create", "update")


class ItemOutcome:
    """What a handler did with one item, before it is logged."""

    def __init__(self, status, entity_id=None, before=None, after=None, message=None):
        self.status = status
        self.entity_id = entity_id
        self.before = before
        self.after = after
        self.message = message


class SyncBatch:
    def __init__(self, device_id: str) -> None:
        self.device_id = device_id
        # local_id -> server id for rows created (or matched) earlier in the batch
        self.local_ids: dict[str, dict[str, int]] = {name: {} for name in ENTITY_TYPES.values()}
        self.results: list[dict[str, object]] = []
        self.counts = {"success": 0, "failure": 0, "conflict": 0}

    def resolve(self, entity_type: str, data: dict, field: str) -> int | None:
        """Server id from ``<field>`` or from ``<entity>_local_id`` in the same batch."""
        local_key = f"{entity_type}_local_id"
        local_id = data.get(local_key)
        if local_id is not None:
            server_id = self.local_ids[entity_type].get(str(local_id))
            if server_id is None:
                raise ValidationError(
                    f"{local_key}: '{local_id}' was not synced in this batch",
                    {local_key: ["unknown local id"]},
                )
            return server_id
        return parse_int(data.get(field), field)


def _require_server_id(item: dict) -> int:
    server_id = parse_int(item.get("server_id"), "server_id")
    if server_id is None:
        raise ValidationError("server_id: required for update", {"server_id": ["is required"]})
    return server_id


def _sync_client(batch: SyncBatch, action: str, item: dict, data: dict) -> ItemOutcome:
    now = utc_now()
    if action == "create":
        existing = find_by_phone(clean_string(data.get("phone"), "phone"))
        if existing is not None and not existing.is_archived:
            return ItemOutcome(
                "conflict",
                existing.client_id,
                after=existing.to_dict(),
                message=f"A client with phone {existing.phone} already exists ({existing.code})",
            )
        client = create_client(data, device_id=batch.device_id, synced_at=now)
        return ItemOutcome("success", client.client_id, after=client.to_dict())

    client = get_client(_require_server_id(item))
    before = client.to_dict()
    update_client(client, data, synced_at=now)
    return ItemOutcome("success", client.client_id, before=before, after=client.to_dict())


def _sync_prestation(batch: SyncBatch, action: str, item: dict, data: dict) -> ItemOutcome:
    now = utc_now()
    if action == "create":
        prestation = create_prestation(data, device_id=batch.device_id, synced_at=now)
        return ItemOutcome("success", prestation.prestation_id, after=prestation.to_dict())

    prestation = get_prestation(_require_server_id(item))
    before = prestation.to_dict()
    update_prestation(prestation, data, synced_at=now)
    return ItemOutcome("success", prestation.prestation_id, before=before, after=prestation.to_dict())


def _resolve_items(batch: SyncBatch, raw_items: object) -> object:
    if not isinstance(raw_items, list):
        return raw_items
    resolved = []
    for raw in raw_items:
        if isinstance(raw, dict) and raw.get("prestation_local_id") is not None:
            raw = {**raw, "prestation_id": batch.resolve("prestation", raw, "prestation_id")}
        resolved.append(raw)
    return resolved


def _sync_passage(batch: SyncBatch, action: str, item: dict, data: dict) -> ItemOutcome:
    now = utc_now()
    visited_at = parse_datetime(data.get("visited_at"), "visited_at")
    if action == "create":
        client_id = batch.resolve("client", data, "client_id")
        if client_id is None:
            raise ValidationError("client_id: is required", {"client_id": ["is required"]})
        passage = create_visit(
            client_id,
            _resolve_items(batch, data.get("items")),
            visited_at=visited_at,
            notes=clean_string(data.get("notes"), "notes"),
            device_id=batch.device_id,
            synced_at=now,
        )
        return ItemOutcome("success", passage.passage_id, after=passage.to_dict())

    passage = get_passage(_require_server_id(item))
    before = passage.to_dict()
    changes = {}
    if "notes" in data:
        changes["notes"] = data.get("notes")
    if "items" in data:
        changes["raw_items"] = _resolve_items(batch, data.get("items"))
    passage = update_visit(passage.passage_id, visited_at=visited_at, **changes)
    passage.synced_at = now
    return ItemOutcome("success", passage.passage_id, before=before, after=passage.to_dict())


def _sync_paiement(batch: SyncBatch, action: str, item: dict, data: dict) -> ItemOutcome:
    now = utc_now()
    if action == "create":
        passage_id = batch.resolve("passage", data, "passage_id")
        if passage_id is None:
            raise ValidationError("passage_id: is required", {"passage_id": ["is required"]})
        paiement = create_paiement(passage_id, data, device_id=batch.device_id, synced_at=now)
        return ItemOutcome("success", paiement.paiement_id, after=paiement.to_dict())

    paiement = get_paiement(_require_server_id(item))
    before = paiement.to_dict()
    update_paiement(paiement, data, synced_at=now)
    return ItemOutcome("success", paiement.paiement_id, before=before, after=paiement.to_dict())


HANDLERS = {
    "clients": _sync_client,
    "prestations": _sync_prestation,
    "passages": _sync_passage,
    "paiements": _sync_paiement,
}


def _record(batch: SyncBatch, entity_type: str, local_id, action, outcome: ItemOutcome) -> None:
    db.session.add(
        SyncLog(
            device_id=batch.device_id,
            entity_type=entity_type,
            entity_id=outcome.entity_id,
            local_id=local_id,
            action=str(action)[:20] if action else "unknown",
            data_before=outcome.before,
            data_after=outcome.after,
            status=outcome.status,
            message=outcome.message,
        )
    )


def _process_item(batch: SyncBatch, collection: str, item: object) -> None:
    entity_type = ENTITY_TYPES[collection]
    local_id = None
    action = None
    try:
        if not isinstance(item, dict):
            raise ValidationError("Sync item must be an object")
        if item.get("local_id") is not None:
            local_id = str(item["local_id"])
        action = item.get("action")
        if action not in SYNC_ACTIONS:
            raise ValidationError(
                f"action: must be one of {', '.join(SYNC_ACTIONS)}",
                {"action": ["unsupported action"]},
            )
        data = item.get("data") or {}
        if not isinstance(data, dict):
            raise ValidationError("data: must be an object", {"data": ["must be an object"]})

        outcome = HANDLERS[collection](batch, action, item, data)
        _record(batch, entity_type, local_id, action, outcome)
        commit_session(f"sync {entity_type} {action}")
    except (SalonError, SQLAlchemyError) as exc:
        db.session.rollback()
        error = exc
        if isinstance(exc, SQLAlchemyError):
            error = database_error(exc, f"sync {entity_type} {action}")
        current_app.logger.warning(
            "Sync item %s/%s from %s failed: %s", entity_type, local_id, batch.device_id, error.message
        )
        outcome = ItemOutcome("failure", message=error.message)
        _record(batch, entity_type, local_id, action, outcome)
        commit_session(f"sync failure log for {entity_type}")

    if local_id is not None and outcome.entity_id is not None:
        batch.local_ids[entity_type][local_id] = outcome.entity_id

    result: dict[str, object] = {
        "local_id": local_id,
        "entity": entity_type,
        "action": action,
        "status": outcome.status,
    }
    if outcome.entity_id is not None:
        result["server_id"] = outcome.entity_id
    if outcome.after is not None:
        result["data"] = outcome.after
    if outcome.message:
        result["message"] = outcome.message
    batch.results.append(result)
    batch.counts[outcome.status] += 1


def process_batch(payload: dict) -> dict[str, object]:
    device_id = clean_string(payload.get("device_id"), "device_id", required=True, max_length=100)

    collections: dict[str, list] = {}
    total = 0
    for collection in ENTITY_ORDER:
        items = payload.get(collection) or []
        if not isinstance(items, list):
            raise ValidationError(f"{collection}: must be a list", {collection: ["must be a list"]})
        collections[collection] = items
        total += len(items)

    limit = int(current_app.config.get("SYNC_BATCH_SIZE", 100))
    if total > limit:
        raise ValidationError(
            f"Batch holds {total} items; the limit is {limit}",
            {"batch": [f"at most {limit} items per batch"]},
        )

    batch = SyncBatch(device_id)
    for collection in ENTITY_ORDER:
        for item in collections[collection]:
            _process_item(batch, collection, item)

    current_app.logger.info(
        "Sync batch from %s: %s success, %s conflict, %s failure",
        device_id,
        batch.counts["success"],
        batch.counts["conflict"],
        batch.counts["failure"],
    )
    return {
        "device_id": device_id,
        "total": total,
        "counts": batch.counts,
        "results": batch.results,
        "server_time": utc_now().isoformat(),
    }


def pull_snapshot(since: datetime | None = None) -> dict[str, object]:
    """Rows a device needs to refresh its local copy, changed since ``since``."""
    clients = db.session.query(Client).filter(Client.status == "active")
    prestations = db.session.query(Prestation).filter(Prestation.deleted_at.is_(None))
    passages = db.session.query(Passage)
    paiements = db.session.query(Paiement)
    archived = db.session.query(Client.client_id).filter(Client.status == "archived")
    deleted = db.session.query(Prestation.prestation_id).filter(Prestation.deleted_at.isnot(None))
    if since is not None:
        clients = clients.filter(Client.updated_at >= since)
        prestations = prestations.filter(Prestation.updated_at >= since)
        passages = passages.filter(Passage.updated_at >= since)
        paiements = paiements.filter(Paiement.updated_at >= since)
        archived = archived.filter(Client.updated_at >= since)
        deleted = deleted.filter(Prestation.updated_at >= since)

    return {
        "server_time": utc_now().isoformat(),
        "since": since.isoformat() if since else None,
        "clients": [c.to_dict() for c in clients.order_by(Client.client_id).all()],
        "prestations": [
            p.to_dict() for p in prestations.order_by(Prestation.display_order).all()
        ],
        "passages": [p.to_dict() for p in passages.order_by(Passage.passage_id).all()],
        "paiements": [p.to_dict() for p in paiements.order_by(Paiement.paiement_id).all()],
        "archived_client_ids": [row[0] for row in archived.all()],
        "deleted_prestation_ids": [row[0] for row in deleted.all()],
    }


def sync_status(device_id: str | None = None) -> dict[str, object]:
    logs = db.session.query(SyncLog)
    if device_id:
        logs = logs.filter(SyncLog.device_id == device_id)
    by_status = dict(
        logs.with_entities(SyncLog.status, func.count(SyncLog.sync_log_id))
        .group_by(SyncLog.status)
        .all()
    )
    last_sync = logs.with_entities(func.max(SyncLog.synced_at)).scalar()
    return {
        "server_time": utc_now().isoformat(),
        "device_id": device_id,
        "last_sync_at": _iso(last_sync),
        "log_counts": {status: int(by_status.get(status, 0)) for status in ("success", "failure", "conflict")},
        "totals": {
            "clients": db.session.query(func.count(Client.client_id))
            .filter(Client.status == "active")
            .scalar(),
            "prestations": db.session.query(func.count(Prestation.prestation_id))
            .filter(Prestation.deleted_at.is_(None))
            .scalar(),
            "passages": db.session.query(func.count(Passage.passage_id)).scalar(),
            "paiements": db.session.query(func.count(Paiement.paiement_id)).scalar(),
        },
    }
