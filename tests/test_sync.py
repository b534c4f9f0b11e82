"""Tests for offline sync: batch push, pull, status and logs."""
from __future__ import annotations

from sqlalchemy import text

from salonpos import sync
from salonpos.extensions import db
from salonpos.models import Client, Paiement, Passage, Prestation, SyncLog


def _push(client, headers, **collections):
    return client.post(
        "/api/sync/batch", headers=headers, json={"device_id": "tablet-1", **collections}
    )


def test_batch_creates_in_dependency_order(app, client, auth_headers, make_prestation) -> None:
    prestation_id = make_prestation(price_cents=200000)

    # Collections are sent in reverse order on purpose
    response = _push(
        client,
        auth_headers,
        paiements=[
            {"local_id": "pay-1", "action": "create", "data": {"passage_local_id": "v-1", "payment_mode": "cash"}}
        ],
        passages=[
            {
                "local_id": "v-1",
                "action": "create",
                "data": {"client_local_id": "c-1", "items": [{"prestation_id": prestation_id}]},
            }
        ],
        clients=[
            {"local_id": "c-1", "action": "create", "data": {"name": "Awa", "surname": "Kone", "phone": "0700000010"}}
        ],
    )

    assert response.status_code == 200
    data = response.get_json()["data"]
    assert data["counts"] == {"success": 3, "failure": 0, "conflict": 0}
    assert [r["entity"] for r in data["results"]] == ["client", "passage", "paiement"]
    assert all(r["server_id"] for r in data["results"])

    with app.app_context():
        client_row = Client.query.filter_by(phone="0700000010").one()
        assert client_row.device_id == "tablet-1"
        assert client_row.synced_at is not None
        assert client_row.visit_count == 1
        assert Paiement.query.one().total_amount_cents == 200000
        assert SyncLog.query.count() == 3


def test_phone_conflict_returns_existing_client(app, client, auth_headers, make_client) -> None:
    existing_id = make_client("Jean", "Kouassi", phone="0700000001")

    response = _push(
        client,
        auth_headers,
        clients=[
            {"local_id": "c-9", "action": "create", "data": {"name": "J", "surname": "K", "phone": "0700000001"}}
        ],
    )

    result = response.get_json()["data"]["results"][0]
    assert result["status"] == "conflict"
    assert result["server_id"] == existing_id
    assert result["data"]["name"] == "Jean"
    with app.app_context():
        assert Client.query.filter_by(phone="0700000001").count() == 1
        log = SyncLog.query.one()
        assert log.status == "conflict"
        assert log.entity_id == existing_id
        assert log.local_id == "c-9"


def test_conflicting_client_maps_local_id_to_existing(app, client, auth_headers, make_client, make_prestation) -> None:
    existing_id = make_client(phone="0700000001")
    prestation_id = make_prestation()

    _push(
        client,
        auth_headers,
        clients=[{"local_id": "c-1", "action": "create", "data": {"name": "J", "surname": "K", "phone": "0700000001"}}],
        passages=[
            {"local_id": "v-1", "action": "create", "data": {"client_local_id": "c-1", "items": [{"prestation_id": prestation_id}]}}
        ],
    )

    with app.app_context():
        assert db.session.get(Client, existing_id).visit_count == 1


def test_failed_item_does_not_block_others(app, client, auth_headers) -> None:
    response = _push(
        client,
        auth_headers,
        clients=[
            {"local_id": "bad", "action": "create", "data": {"surname": "NoName"}},
            {"local_id": "good", "action": "create", "data": {"name": "Ok", "surname": "Client"}},
        ],
    )

    data = response.get_json()["data"]
    assert [r["status"] for r in data["results"]] == ["failure", "success"]
    assert "name" in data["results"][0]["message"]
    with app.app_context():
        assert Client.query.count() == 1
        statuses = sorted(log.status for log in SyncLog.query.all())
        assert statuses == ["failure", "success"]


def test_update_requires_server_id(client, auth_headers) -> None:
    response = _push(
        client,
        auth_headers,
        clients=[{"local_id": "c-1", "action": "update", "data": {"name": "New"}}],
    )

    result = response.get_json()["data"]["results"][0]
    assert result["status"] == "failure"
    assert "server_id" in result["message"]


def test_update_of_missing_row_fails(client, auth_headers) -> None:
    response = _push(
        client,
        auth_headers,
        prestations=[{"local_id": "p-1", "action": "update", "server_id": 4040, "data": {"price_cents": 1}}],
    )

    result = response.get_json()["data"]["results"][0]
    assert result["status"] == "failure"
    assert result["entity"] == "prestation"


def test_update_logs_before_and_after(app, client, auth_headers, make_client) -> None:
    client_id = make_client("Jean", "Kouassi")

    response = _push(
        client,
        auth_headers,
        clients=[{"local_id": "c-1", "action": "update", "server_id": client_id, "data": {"surname": "Kouame"}}],
    )

    assert response.get_json()["data"]["results"][0]["status"] == "success"
    with app.app_context():
        log = SyncLog.query.one()
        assert log.data_before["surname"] == "Kouassi"
        assert log.data_after["surname"] == "Kouame"


def test_passage_failure_rolls_back_only_that_item(app, client, auth_headers, staff, make_client, make_prestation) -> None:
    client_id = make_client()
    prestation_id = make_prestation()

    response = _push(
        client,
        auth_headers,
        passages=[
            {"local_id": "v-1", "action": "create", "data": {"client_id": client_id, "items": [{"prestation_id": prestation_id}]}},
            {
                "local_id": "v-2",
                "action": "create",
                "data": {
                    "client_id": client_id,
                    "items": [{"prestation_id": prestation_id, "stylist_id": staff["cashier"]}],
                },
            },
        ],
    )

    assert [r["status"] for r in response.get_json()["data"]["results"]] == ["success", "failure"]
    with app.app_context():
        assert Passage.query.count() == 1
        assert db.session.get(Client, client_id).visit_count == 1


def test_unknown_local_reference_fails(client, auth_headers, make_prestation) -> None:
    prestation_id = make_prestation()

    response = _push(
        client,
        auth_headers,
        passages=[
            {"local_id": "v-1", "action": "create", "data": {"client_local_id": "ghost", "items": [{"prestation_id": prestation_id}]}}
        ],
    )

    result = response.get_json()["data"]["results"][0]
    assert result["status"] == "failure"
    assert "client_local_id" in result["message"]


def test_unsupported_action(client, auth_headers) -> None:
    response = _push(
        client,
        auth_headers,
        clients=[{"local_id": "c-1", "action": "delete", "data": {}}],
    )

    assert response.get_json()["data"]["results"][0]["status"] == "failure"


def test_batch_requires_device_id(client, auth_headers) -> None:
    response = client.post("/api/sync/batch", headers=auth_headers, json={"clients": []})

    assert response.status_code == 422
    assert "device_id" in response.get_json()["errors"]


def test_oversized_batch_rejected(app, client, auth_headers) -> None:
    app.config["SYNC_BATCH_SIZE"] = 2
    items = [
        {"local_id": str(i), "action": "create", "data": {"name": f"N{i}", "surname": "S"}}
        for i in range(3)
    ]

    response = _push(client, auth_headers, clients=items)

    assert response.status_code == 422
    with app.app_context():
        assert Client.query.count() == 0


def test_pull_snapshot(client, auth_headers, make_client, make_prestation, add_visits) -> None:
    client_id = make_client()
    archived_id = make_client("Old", "Client")
    prestation_id = make_prestation()
    add_visits(client_id, prestation_id, 2)
    client.delete(f"/api/clients/{archived_id}", headers=auth_headers)

    response = client.get("/api/sync/pull", headers=auth_headers)

    data = response.get_json()["data"]
    assert [c["id"] for c in data["clients"]] == [client_id]
    assert data["archived_client_ids"] == [archived_id]
    assert len(data["prestations"]) == 1
    assert len(data["passages"]) == 2
    assert data["server_time"]


def test_pull_since_filters_old_rows(client, auth_headers, make_client) -> None:
    make_client()

    response = client.get("/api/sync/pull?since=2999-01-01T00:00:00Z", headers=auth_headers)

    data = response.get_json()["data"]
    assert data["clients"] == []
    assert data["passages"] == []


def test_status_and_logs(client, auth_headers) -> None:
    _push(
        client,
        auth_headers,
        clients=[
            {"local_id": "a", "action": "create", "data": {"name": "A", "surname": "A"}},
            {"local_id": "b", "action": "create", "data": {"surname": "missing name"}},
        ],
    )
    client.post(
        "/api/sync/batch",
        headers=auth_headers,
        json={"device_id": "phone-2", "clients": [{"local_id": "c", "action": "create", "data": {"name": "C", "surname": "C"}}]},
    )

    status = client.get("/api/sync/status?device_id=tablet-1", headers=auth_headers).get_json()["data"]
    failures = client.get("/api/sync/logs?status=failure", headers=auth_headers).get_json()
    device_logs = client.get("/api/sync/logs?device_id=phone-2", headers=auth_headers).get_json()

    assert status["log_counts"] == {"success": 1, "failure": 1, "conflict": 0}
    assert status["last_sync_at"] is not None
    assert status["totals"]["clients"] == 2
    assert failures["pagination"]["total"] == 1
    assert [log["local_id"] for log in device_logs["data"]] == ["c"]


def test_database_failure_is_isolated_to_its_item(app, client, auth_headers, monkeypatch) -> None:
    real_create = sync.create_prestation

    def create_then_break(data, **kwargs):
        prestation = real_create(data, **kwargs)
        if data.get("label") == "Brushing":
            db.session.execute(text("INSERT INTO no_such_table VALUES (1)"))
        return prestation

    monkeypatch.setattr(sync, "create_prestation", create_then_break)

    response = _push(
        client,
        auth_headers,
        prestations=[
            {"local_id": "p1", "action": "create", "data": {"label": "Coupe", "price_cents": 200000}},
            {"local_id": "p2", "action": "create", "data": {"label": "Brushing", "price_cents": 150000}},
            {"local_id": "p3", "action": "create", "data": {"label": "Tresses", "price_cents": 500000}},
        ],
    )

    assert response.status_code == 200
    data = response.get_json()["data"]
    assert [r["status"] for r in data["results"]] == ["success", "failure", "success"]
    assert "Database error" in data["results"][1]["message"]
    with app.app_context():
        assert sorted(p.label for p in Prestation.query.all()) == ["Coupe", "Tresses"]
        logs = SyncLog.query.order_by(SyncLog.sync_log_id).all()
        assert [(log.local_id, log.status) for log in logs] == [
            ("p1", "success"),
            ("p2", "failure"),
            ("p3", "success"),
        ]


def test_out_of_range_amount_fails_only_that_item(app, client, auth_headers) -> None:
    response = _push(
        client,
        auth_headers,
        prestations=[
            {"local_id": "p1", "action": "create", "data": {"label": "Coupe", "price_cents": 200000}},
            {"local_id": "p2", "action": "create", "data": {"label": "Soin", "price_cents": 10**20}},
            {"local_id": "p3", "action": "create", "data": {"label": "Tresses", "price_cents": 500000}},
        ],
    )

    data = response.get_json()["data"]
    assert [r["status"] for r in data["results"]] == ["success", "failure", "success"]
    assert "price_cents" in data["results"][1]["message"]
    with app.app_context():
        assert SyncLog.query.count() == 3
