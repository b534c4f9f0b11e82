#!/usr/bin/env python3
"""
Seed a development database with staff, the service catalogue and a few clients.
Safe to run twice: existing rows (matched by email, label or phone) are skipped.
"""

import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from salonpos import create_app
from salonpos.clients import create_client
from salonpos.extensions import db
from salonpos.models import Client, Prestation, User

STAFF = [
    {"name": "Admin", "surname": "Salon", "email": "admin@salon.ci", "role": "admin", "password": "password123"},
    {"name": "Awa", "surname": "Kone", "email": "manager@salon.ci", "role": "manager", "password": "password123"},
    {"name": "Mariam", "surname": "Traore", "email": "caisse@salon.ci", "role": "cashier", "password": "password123"},
    {"name": "Koffi", "surname": "Yao", "role": "stylist", "specialty": "hair", "commission_percent": 30},
    {"name": "Ibrahim", "surname": "Diallo", "role": "stylist", "specialty": "beard", "commission_percent": 25},
]

PRESTATIONS = [
    {"label": "Coupe homme", "price_cents": 200000, "duration_minutes": 30, "specialty": "hair"},
    {"label": "Coupe femme", "price_cents": 500000, "duration_minutes": 60, "specialty": "hair"},
    {"label": "Taille de barbe", "price_cents": 100000, "duration_minutes": 15, "specialty": "beard"},
    {"label": "Tresses", "price_cents": 1500000, "duration_minutes": 180, "specialty": "hair"},
    {"label": "Soin visage", "price_cents": 800000, "duration_minutes": 45, "specialty": "care"},
    {"label": "Manucure", "price_cents": 400000, "duration_minutes": 40, "specialty": "manicure"},
]

CLIENTS = [
    {"name": "Jean", "surname": "Kouassi", "phone": "0700000001"},
    {"name": "Fatou", "surname": "Bamba", "phone": "0700000002"},
    {"name": "Serge", "surname": "N'Guessan", "phone": "0700000003"},
]


def seed_staff() -> list[User]:
    stylists = []
    for entry in STAFF:
        entry = dict(entry)
        password = entry.pop("password", None)
        user = None
        if entry.get("email"):
            user = User.query.filter_by(email=entry["email"]).first()
        else:
            user = User.query.filter_by(name=entry["name"], surname=entry["surname"], role="stylist").first()
        if user is not None:
            print(f"Skipping existing user {user.full_name}")
        else:
            user = User(**entry)
            user.set_password(password)
            db.session.add(user)
            print(f"Created {user.role} {user.full_name}")
        if user.role == "stylist":
            stylists.append(user)
    db.session.flush()
    return stylists


def seed_prestations(stylists: list[User]) -> None:
    for order, entry in enumerate(PRESTATIONS, start=1):
        if Prestation.query.filter_by(label=entry["label"], deleted_at=None).first():
            print(f"Skipping existing prestation {entry['label']}")
            continue
        prestation = Prestation(display_order=order, **entry)
        prestation.stylists = [s for s in stylists if s.specialty == entry["specialty"]]
        db.session.add(prestation)
        print(f"Created prestation {entry['label']}")


def seed_clients() -> None:
    for entry in CLIENTS:
        if Client.query.filter_by(phone=entry["phone"]).first():
            print(f"Skipping existing client {entry['phone']}")
            continue
        client = create_client(entry)
        print(f"Created client {client.full_name} ({client.code})")


def main() -> None:
    app = create_app()
    with app.app_context():
        db.create_all()
        stylists = seed_staff()
        seed_prestations(stylists)
        seed_clients()
        db.session.commit()
        print("Seeding complete")


if __name__ == "__main__":
    main()
