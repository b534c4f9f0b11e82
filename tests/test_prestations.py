"""Tests for the prestation catalogue."""
from __future__ import annotations

from salonpos.extensions import db
from salonpos.models import Prestation


def test_manager_creates_prestation(client, manager_headers, staff) -> None:
    response = client.post(
        "/api/prestations",
        headers=manager_headers,
        json={
            "label": "Coupe homme",
            "price_cents": 200000,
            "duration_minutes": 30,
            "specialty": "hair",
            "stylist_ids": [staff["stylist"]],
        },
    )

    assert response.status_code == 201
    data = response.get_json()["data"]
    assert data["display_order"] == 1
    assert [s["id"] for s in data["stylists"]] == [staff["stylist"]]


def test_cashier_cannot_create_prestation(client, auth_headers) -> None:
    response = client.post(
        "/api/prestations", headers=auth_headers, json={"label": "X", "price_cents": 1}
    )

    assert response.status_code == 403


def test_display_order_defaults_to_next(client, manager_headers, make_prestation) -> None:
    make_prestation("Coupe homme", display_order=4)

    response = client.post(
        "/api/prestations",
        headers=manager_headers,
        json={"label": "Coupe femme", "price_cents": 500000},
    )

    assert response.get_json()["data"]["display_order"] == 5


def test_duplicate_label_conflicts(client, manager_headers, make_prestation) -> None:
    make_prestation("Coupe homme")

    response = client.post(
        "/api/prestations",
        headers=manager_headers,
        json={"label": "coupe homme", "price_cents": 100},
    )

    assert response.status_code == 409


def test_negative_price_rejected(client, manager_headers) -> None:
    response = client.post(
        "/api/prestations",
        headers=manager_headers,
        json={"label": "Promo", "price_cents": -5},
    )

    assert response.status_code == 422
    assert "price_cents" in response.get_json()["errors"]


def test_stylist_ids_must_be_stylists(client, manager_headers, staff) -> None:
    response = client.post(
        "/api/prestations",
        headers=manager_headers,
        json={"label": "Coupe", "price_cents": 100, "stylist_ids": [staff["cashier"]]},
    )

    assert response.status_code == 422


def test_list_filters_and_order(client, auth_headers, make_prestation) -> None:
    make_prestation("Tresses", 1500000, display_order=2, specialty="hair")
    make_prestation("Barbe", 100000, display_order=1, specialty="beard")
    make_prestation("Ancienne", 100, display_order=3, is_active=False)

    ordered = client.get("/api/prestations", headers=auth_headers).get_json()["data"]
    active = client.get("/api/prestations?active=true", headers=auth_headers).get_json()["data"]
    hair = client.get("/api/prestations?specialty=hair", headers=auth_headers).get_json()["data"]

    assert [p["label"] for p in ordered] == ["Barbe", "Tresses", "Ancienne"]
    assert [p["label"] for p in active] == ["Barbe", "Tresses"]
    assert [p["label"] for p in hair] == ["Tresses"]


def test_update_price_keeps_visit_snapshot(
    client, manager_headers, auth_headers, make_client, make_prestation, add_visits
) -> None:
    client_id = make_client()
    prestation_id = make_prestation(price_cents=200000)
    passage_id = add_visits(client_id, prestation_id, 1)[0]

    response = client.put(
        f"/api/prestations/{prestation_id}", headers=manager_headers, json={"price_cents": 250000}
    )
    passage = client.get(f"/api/passages/{passage_id}", headers=auth_headers).get_json()["data"]

    assert response.get_json()["data"]["price_cents"] == 250000
    assert passage["items"][0]["applied_price_cents"] == 200000
    assert passage["total_amount_cents"] == 200000


def test_soft_delete(app, client, manager_headers, auth_headers, make_prestation, staff) -> None:
    prestation_id = make_prestation()
    client.post(
        f"/api/prestations/{prestation_id}/stylists",
        headers=manager_headers,
        json={"stylist_id": staff["stylist"]},
    )

    response = client.delete(f"/api/prestations/{prestation_id}", headers=manager_headers)

    assert response.status_code == 200
    assert client.get(f"/api/prestations/{prestation_id}", headers=auth_headers).status_code == 404
    with app.app_context():
        prestation = db.session.get(Prestation, prestation_id)
        assert prestation.deleted_at is not None
        assert prestation.stylists == []


def test_label_reusable_after_delete(client, manager_headers, make_prestation) -> None:
    prestation_id = make_prestation("Coupe homme")
    client.delete(f"/api/prestations/{prestation_id}", headers=manager_headers)

    response = client.post(
        "/api/prestations",
        headers=manager_headers,
        json={"label": "Coupe homme", "price_cents": 300000},
    )

    assert response.status_code == 201


def test_toggle_active(client, manager_headers, make_prestation) -> None:
    prestation_id = make_prestation()

    response = client.post(f"/api/prestations/{prestation_id}/toggle-active", headers=manager_headers)

    assert response.get_json()["data"]["is_active"] is False


def test_attach_and_detach_stylist(client, manager_headers, auth_headers, make_prestation, staff) -> None:
    prestation_id = make_prestation()
    stylist_id = staff["stylist"]

    attached = client.post(
        f"/api/prestations/{prestation_id}/stylists",
        headers=manager_headers,
        json={"stylist_id": stylist_id},
    )
    again = client.post(
        f"/api/prestations/{prestation_id}/stylists",
        headers=manager_headers,
        json={"stylist_id": stylist_id},
    )
    listed = client.get(f"/api/prestations/{prestation_id}/stylists", headers=auth_headers)
    detached = client.delete(
        f"/api/prestations/{prestation_id}/stylists/{stylist_id}", headers=manager_headers
    )

    assert attached.status_code == 201
    assert again.status_code == 409
    assert [s["id"] for s in listed.get_json()["data"]] == [stylist_id]
    assert detached.get_json()["data"]["stylists"] == []
