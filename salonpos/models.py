"""Database models for the SalonPOS backend."""
from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import event
from werkzeug.security import check_password_hash, generate_password_hash

from .extensions import db

USER_ROLES = ("admin", "manager", "cashier", "stylist")
CLIENT_STATUSES = ("active", "archived")
PAYMENT_MODES = ("cash", "mobile_money", "card", "other")
PAYMENT_STATUSES = ("pending", "valid", "cancelled")
SYNC_STATUSES = ("pending", "success", "failure", "conflict")
PRESTATION_SPECIALTIES = ("hair", "beard", "care", "beauty", "makeup", "manicure", "waxing")
CODE_SCOPES = ("client_code",)


def utc_now() -> datetime:
    """Return a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    # SQLite hands back naive values; every stored timestamp is UTC
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


# Stylists allowed to perform a prestation
prestation_stylists = db.Table(
    "prestation_stylists",
    db.Column(
        "prestation_id",
        db.Integer,
        db.ForeignKey("prestations.prestation_id", ondelete="CASCADE"),
        primary_key=True,
    ),
    db.Column(
        "stylist_id",
        db.Integer,
        db.ForeignKey("users.user_id", ondelete="CASCADE"),
        primary_key=True,
    ),
    db.Column("created_at", db.DateTime, nullable=False, default=utc_now),
)


class User(db.Model):
    """Salon staff. Stylists may exist without a login."""

    __tablename__ = "users"

    user_id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    surname = db.Column(db.String(100), nullable=False, default="")
    email = db.Column(db.String(255), unique=True, nullable=True)
    phone = db.Column(db.String(30))
    password_hash = db.Column(db.String(255), nullable=True)
    role = db.Column(
        db.Enum(*USER_ROLES, name="user_role", native_enum=False, validate_strings=True),
        nullable=False,
        server_default="cashier",
    )
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    specialty = db.Column(db.String(50))
    commission_percent = db.Column(db.Numeric(5, 2, asdecimal=False))
    last_login_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    prestations = db.relationship(
        "Prestation", secondary=prestation_stylists, back_populates="stylists"
    )

    @property
    def full_name(self) -> str:
        return f"{self.name} {self.surname}".strip()

    @property
    def is_stylist(self) -> bool:
        return self.role == "stylist"

    @property
    def has_account(self) -> bool:
        return bool(self.email and self.password_hash)

    def can_manage_users(self) -> bool:
        return self.role == "admin"

    def can_manage_prestations(self) -> bool:
        return self.role in ("admin", "manager")

    def set_password(self, password: str | None) -> None:
        self.password_hash = generate_password_hash(password) if password else None

    def check_password(self, password: str) -> bool:
        if not self.password_hash:
            return False
        return check_password_hash(self.password_hash, password)

    def to_dict_basic(self) -> dict[str, object]:
        return {
            "id": self.user_id,
            "user_id": self.user_id,
            "name": self.name,
            "surname": self.surname,
            "full_name": self.full_name,
            "role": self.role,
        }

    def to_dict(self, include_prestations: bool = False) -> dict[str, object]:
        data = {
            **self.to_dict_basic(),
            "email": self.email,
            "phone": self.phone,
            "is_active": bool(self.is_active),
            "has_account": self.has_account,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if self.is_stylist:
            data["specialty"] = self.specialty
            data["commission_percent"] = self.commission_percent
        if include_prestations:
            data["prestations"] = [
                {"id": p.prestation_id, "label": p.label, "price_cents": p.price_cents}
                for p in self.prestations
                if p.deleted_at is None
            ]
        return data


class Client(db.Model):
    __tablename__ = "clients"

    client_id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    surname = db.Column(db.String(100), nullable=False)
    phone = db.Column(db.String(30), unique=True, nullable=True)
    code = db.Column(db.String(20), unique=True, nullable=False)
    # Denormalized; kept equal to the number of passages by the visit engine
    visit_count = db.Column(db.Integer, nullable=False, default=0)
    last_visit_at = db.Column(db.DateTime)
    status = db.Column(
        db.Enum(*CLIENT_STATUSES, name="client_status", native_enum=False, validate_strings=True),
        nullable=False,
        default="active",
        server_default="active",
    )
    device_id = db.Column(db.String(100))
    synced_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    passages = db.relationship(
        "Passage", back_populates="client", cascade="all, delete-orphan"
    )

    __table_args__ = (db.Index("ix_clients_name_surname", "name", "surname"),)

    @property
    def full_name(self) -> str:
        return f"{self.name} {self.surname}".strip()

    @property
    def is_archived(self) -> bool:
        return self.status == "archived"

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.client_id,
            "name": self.name,
            "surname": self.surname,
            "full_name": self.full_name,
            "phone": self.phone,
            "code": self.code,
            "visit_count": self.visit_count,
            "last_visit_at": _iso(self.last_visit_at),
            "status": self.status,
            "device_id": self.device_id,
            "synced_at": _iso(self.synced_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class Prestation(db.Model):
    """A sellable service of the salon."""

    __tablename__ = "prestations"

    prestation_id = db.Column(db.Integer, primary_key=True)
    label = db.Column(db.String(100), nullable=False)
    price_cents = db.Column(db.Integer, nullable=False)
    description = db.Column(db.Text)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    display_order = db.Column(db.Integer, nullable=False, default=0)
    duration_minutes = db.Column(db.Integer)
    specialty = db.Column(db.String(50))
    deleted_at = db.Column(db.DateTime)
    device_id = db.Column(db.String(100))
    synced_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    stylists = db.relationship(
        "User", secondary=prestation_stylists, back_populates="prestations"
    )

    def to_dict(self, include_stylists: bool = False) -> dict[str, object]:
        data = {
            "id": self.prestation_id,
            "label": self.label,
            "price_cents": self.price_cents,
            "description": self.description,
            "is_active": bool(self.is_active),
            "display_order": self.display_order,
            "duration_minutes": self.duration_minutes,
            "specialty": self.specialty,
            "synced_at": _iso(self.synced_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_stylists:
            data["stylists"] = [s.to_dict_basic() for s in self.stylists]
        return data


class Passage(db.Model):
    """A client visit (UC "passage")."""

    __tablename__ = "passages"

    passage_id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(
        db.Integer, db.ForeignKey("clients.client_id", ondelete="CASCADE"), nullable=False
    )
    visit_number = db.Column(db.Integer, nullable=False)
    is_free = db.Column(db.Boolean, nullable=False, default=False)
    notes = db.Column(db.Text)
    visited_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    device_id = db.Column(db.String(100))
    synced_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    client = db.relationship("Client", back_populates="passages")
    items = db.relationship(
        "PassagePrestation",
        back_populates="passage",
        cascade="all, delete-orphan",
        order_by="PassagePrestation.passage_prestation_id",
    )
    paiements = db.relationship(
        "Paiement", back_populates="passage", cascade="all, delete-orphan"
    )

    __table_args__ = (
        db.Index("ix_passages_client_visited", "client_id", "visited_at"),
        db.UniqueConstraint("client_id", "visit_number", name="uq_passages_client_visit_number"),
    )

    @property
    def theoretical_amount_cents(self) -> int:
        return sum(item.line_total_cents for item in self.items)

    @property
    def total_amount_cents(self) -> int:
        if self.is_free:
            return 0
        return self.theoretical_amount_cents

    @property
    def active_paiement(self) -> "Paiement | None":
        for paiement in self.paiements:
            if paiement.status != "cancelled":
                return paiement
        return None

    def to_dict(self, include_client: bool = False) -> dict[str, object]:
        paiement = self.active_paiement
        data = {
            "id": self.passage_id,
            "client_id": self.client_id,
            "visit_number": self.visit_number,
            "is_free": bool(self.is_free),
            "notes": self.notes,
            "visited_at": _iso(self.visited_at),
            "items": [item.to_dict() for item in self.items],
            "total_amount_cents": self.total_amount_cents,
            "theoretical_amount_cents": self.theoretical_amount_cents,
            "paiement": paiement.to_dict() if paiement else None,
            "device_id": self.device_id,
            "synced_at": _iso(self.synced_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_client and self.client:
            data["client"] = {
                "id": self.client.client_id,
                "full_name": self.client.full_name,
                "code": self.client.code,
                "phone": self.client.phone,
            }
        return data


class PassagePrestation(db.Model):
    """A service line of a visit; the price is a snapshot taken at visit time."""

    __tablename__ = "passage_prestation"

    passage_prestation_id = db.Column(db.Integer, primary_key=True)
    passage_id = db.Column(
        db.Integer, db.ForeignKey("passages.passage_id", ondelete="CASCADE"), nullable=False
    )
    prestation_id = db.Column(
        db.Integer, db.ForeignKey("prestations.prestation_id"), nullable=False
    )
    stylist_id = db.Column(
        db.Integer, db.ForeignKey("users.user_id", ondelete="SET NULL"), nullable=True
    )
    applied_price_cents = db.Column(db.Integer, nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    passage = db.relationship("Passage", back_populates="items")
    prestation = db.relationship("Prestation")
    stylist = db.relationship("User")

    @property
    def line_total_cents(self) -> int:
        return self.applied_price_cents * self.quantity

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.passage_prestation_id,
            "prestation_id": self.prestation_id,
            "label": self.prestation.label if self.prestation else None,
            "applied_price_cents": self.applied_price_cents,
            "quantity": self.quantity,
            "line_total_cents": self.line_total_cents,
            "stylist_id": self.stylist_id,
            "stylist": self.stylist.to_dict_basic() if self.stylist else None,
        }


class Paiement(db.Model):
    """Payment of a visit."""

    __tablename__ = "paiements"

    paiement_id = db.Column(db.Integer, primary_key=True)
    passage_id = db.Column(
        db.Integer, db.ForeignKey("passages.passage_id", ondelete="CASCADE"), nullable=False
    )
    total_amount_cents = db.Column(db.Integer, nullable=False)
    paid_amount_cents = db.Column(db.Integer, nullable=False)
    payment_mode = db.Column(
        db.Enum(*PAYMENT_MODES, name="payment_mode", native_enum=False, validate_strings=True),
        nullable=False,
        server_default="cash",
    )
    status = db.Column(
        db.Enum(*PAYMENT_STATUSES, name="payment_status", native_enum=False, validate_strings=True),
        nullable=False,
        default="valid",
        server_default="valid",
    )
    # Assigned once at creation
    receipt_number = db.Column(db.String(40), unique=True, nullable=False)
    notes = db.Column(db.Text)
    paid_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    device_id = db.Column(db.String(100))
    synced_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    passage = db.relationship("Passage", back_populates="paiements")

    __table_args__ = (
        db.Index("ix_paiements_paid_at", "paid_at"),
        db.Index("ix_paiements_status", "status"),
    )

    @property
    def remaining_cents(self) -> int:
        return max(0, self.total_amount_cents - self.paid_amount_cents)

    @property
    def is_complete(self) -> bool:
        return self.paid_amount_cents >= self.total_amount_cents

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.paiement_id,
            "passage_id": self.passage_id,
            "total_amount_cents": self.total_amount_cents,
            "paid_amount_cents": self.paid_amount_cents,
            "remaining_cents": self.remaining_cents,
            "is_complete": self.is_complete,
            "payment_mode": self.payment_mode,
            "status": self.status,
            "receipt_number": self.receipt_number,
            "notes": self.notes,
            "paid_at": _iso(self.paid_at),
            "device_id": self.device_id,
            "synced_at": _iso(self.synced_at),
            "created_at": _iso(self.created_at),
        }


class SyncLog(db.Model):
    """Append-only audit row, one per processed sync item."""

    __tablename__ = "sync_logs"

    sync_log_id = db.Column(db.Integer, primary_key=True)
    device_id = db.Column(db.String(100), nullable=False)
    entity_type = db.Column(db.String(30), nullable=False)
    entity_id = db.Column(db.Integer)
    local_id = db.Column(db.String(100))
    action = db.Column(db.String(20), nullable=False)
    data_before = db.Column(db.JSON)
    data_after = db.Column(db.JSON)
    status = db.Column(
        db.Enum(*SYNC_STATUSES, name="sync_status", native_enum=False, validate_strings=True),
        nullable=False,
        server_default="pending",
    )
    message = db.Column(db.Text)
    synced_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    __table_args__ = (
        db.Index("ix_sync_logs_device", "device_id"),
        db.Index("ix_sync_logs_entity_type", "entity_type"),
        db.Index("ix_sync_logs_status", "status"),
    )

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.sync_log_id,
            "device_id": self.device_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "local_id": self.local_id,
            "action": self.action,
            "data_before": self.data_before,
            "data_after": self.data_after,
            "status": self.status,
            "message": self.message,
            "synced_at": _iso(self.synced_at),
        }


class CodeSequence(db.Model):
    """Counter row per code scope, locked while the next code is allocated."""

    __tablename__ = "code_sequences"

    name = db.Column(db.String(50), primary_key=True)
    last_value = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)


@event.listens_for(CodeSequence.__table__, "after_create")
def _seed_code_sequences(target, connection, **kw) -> None:
    # Seeded so that code allocation always finds a row to lock
    connection.execute(
        target.insert(),
        [{"name": name, "last_value": 0, "updated_at": utc_now()} for name in CODE_SCOPES],
    )
