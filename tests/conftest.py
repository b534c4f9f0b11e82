"""pytest fixtures: an in-memory app, staff accounts and small factories."""
from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Ensure the project root is available on sys.path so tests can import the app package.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from salonpos import create_app  # noqa: E402
from salonpos.auth import build_token  # noqa: E402
from salonpos.config import TestingConfig  # noqa: E402
from salonpos.extensions import db  # noqa: E402
from salonpos.models import Client, Prestation, User  # noqa: E402
from salonpos.visits import create_visit  # noqa: E402

PASSWORD = "Secret123!"


@pytest.fixture
def app():
    app = create_app(TestingConfig)
    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def staff(app) -> dict[str, int]:
    """One user per role; every role but the stylist can log in."""
    with app.app_context():
        users = {
            "admin": User(name="Ada", surname="Admin", email="admin@example.com", role="admin"),
            "manager": User(name="Max", surname="Manager", email="manager@example.com", role="manager"),
            "cashier": User(name="Cara", surname="Cashier", email="cashier@example.com", role="cashier"),
            "stylist": User(
                name="Koffi", surname="Yao", role="stylist", specialty="hair", commission_percent=30
            ),
        }
        for role, user in users.items():
            if role != "stylist":
                user.set_password(PASSWORD)
            db.session.add(user)
        db.session.commit()
        return {role: user.user_id for role, user in users.items()}


def _headers(app, user_id: int) -> dict[str, str]:
    with app.app_context():
        user = db.session.get(User, user_id)
        return {"Authorization": f"Bearer {build_token(user)}"}


@pytest.fixture
def auth_headers(app, staff) -> dict[str, str]:
    return _headers(app, staff["cashier"])


@pytest.fixture
def admin_headers(app, staff) -> dict[str, str]:
    return _headers(app, staff["admin"])


@pytest.fixture
def manager_headers(app, staff) -> dict[str, str]:
    return _headers(app, staff["manager"])


@pytest.fixture
def make_client(app):
    counter = {"n": 0}

    def _make(name: str = "Jean", surname: str = "Kouassi", phone: str | None = None, code: str | None = None) -> int:
        counter["n"] += 1
        with app.app_context():
            client = Client(
                name=name,
                surname=surname,
                phone=phone,
                code=code or "C%03d-26" % (900 + counter["n"]),
            )
            db.session.add(client)
            db.session.commit()
            return client.client_id

    return _make


@pytest.fixture
def make_prestation(app):
    def _make(label: str = "Coupe homme", price_cents: int = 200000, **fields) -> int:
        with app.app_context():
            prestation = Prestation(label=label, price_cents=price_cents, **fields)
            db.session.add(prestation)
            db.session.commit()
            return prestation.prestation_id

    return _make


@pytest.fixture
def add_visits(app):
    """Record ``count`` visits for a client through the visit engine."""

    def _add(client_id: int, prestation_id: int, count: int, **kwargs) -> list[int]:
        ids = []
        with app.app_context():
            for _ in range(count):
                passage = create_visit(client_id, [{"prestation_id": prestation_id}], **kwargs)
                db.session.commit()
                ids.append(passage.passage_id)
        return ids

    return _add
