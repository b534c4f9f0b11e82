"""Create a staff login or reset its password for local development."""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Ensure the project root is on sys.path so ``salonpos`` can be imported when the script is executed directly.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from salonpos import create_app
from salonpos.extensions import db
from salonpos.models import USER_ROLES, User

LOGIN_ROLES = [role for role in USER_ROLES if role != "stylist"]


def set_password(email: str, password: str, role: str = "cashier") -> None:
    app = create_app()

    with app.app_context():
        email = email.strip().lower()
        user = User.query.filter_by(email=email).first()
        if user is None:
            user = User(name=role.capitalize(), surname="", email=email, role=role)
            db.session.add(user)
            print(f"Created new {role} user: {email}")
        elif user.role != role:
            print(f"Updating user role from '{user.role}' to '{role}'")
            user.role = role

        user.set_password(password)
        user.is_active = True
        db.session.commit()

        print(f"Password for {role} user '{email}' has been set successfully.")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Set a staff password for local testing.")
    parser.add_argument("email", help="User email address")
    parser.add_argument("password", help="Plain-text password to hash and store")
    parser.add_argument(
        "--role",
        choices=LOGIN_ROLES,
        default="cashier",
        help="User role (default: cashier)",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    set_password(args.email, args.password, args.role)


if __name__ == "__main__":
    main()
