"""HTTP routes for the SalonPOS backend: health, auth, staff, clients and prestations."""
from __future__ import annotations

from flask import Blueprint, Flask, current_app, g, jsonify, request
from sqlalchemy import or_, text
from sqlalchemy.exc import SQLAlchemyError

from .auth import build_token, current_user, login_required, roles_required
from .catalog import (create_prestation, delete_prestation, get_prestation,
                      update_prestation)
from .clients import (archive_client, client_stats, create_client, get_client,
                      purge_client, unarchive_client, update_client)
from .codes import preview_client_code
from .errors import (AuthenticationError, AuthorizationError, ConflictError,
                     NotFoundError, StorageError, ValidationError)
from .extensions import commit_session, db
from .models import (PRESTATION_SPECIALTIES, USER_ROLES, Client, Passage,
                     Prestation, User, utc_now)
from .validation import (clean_string, get_json_payload, paginate,
                         pagination_args, parse_bool, parse_choice, parse_float,
                         parse_int)
from .visits import compute_free_eligibility

bp = Blueprint("api", __name__)

DEFAULT_COMMISSION_PERCENT = 30.0
MIN_PASSWORD_LENGTH = 8


def ok(data=None, status: int = 200, message: str | None = None, **extra):
    payload: dict[str, object] = {"success": True, "data": data}
    if message:
        payload["message"] = message
    payload.update(extra)
    return jsonify(payload), status


def register_routes(app: Flask) -> None:
    from .routes_pos import bp_pos

    app.register_blueprint(bp, url_prefix="/api")
    app.register_blueprint(bp_pos, url_prefix="/api")


@bp.get("/health")
def health_check():
    """
    Expose a simple uptime check endpoint.
    ---
    tags:
      - Health
    responses:
      200:
        description: Service is healthy and running.
    """
    return ok({"status": "ok"})


@bp.get("/db-health")
def database_health():
    """Check connectivity to the configured database.
    ---
    tags:
      - Health
    responses:
      200:
        description: Database connection is ok.
      500:
        description: Database connection failed.
    """
    try:
        db.session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        current_app.logger.exception("Database connectivity check failed", exc_info=exc)
        raise StorageError("Database unavailable") from exc

    return ok({"database": "ok"})


# ---------------------------------------------------------------- auth


@bp.post("/auth/login")
def login() -> tuple[dict[str, object], int]:
    """Exchange email and password for a bearer token.
    ---
    tags:
      - Auth
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required: [email, password]
          properties:
            email:
              type: string
            password:
              type: string
    responses:
      200:
        description: Token issued
      401:
        description: Wrong credentials or disabled account
      422:
        description: Missing fields
    """
    payload = get_json_payload()
    email = clean_string(payload.get("email"), "email", required=True, max_length=255).lower()
    password = clean_string(payload.get("password"), "password", required=True)

    user = User.query.filter(User.email == email).first()
    if user is None or not user.check_password(password):
        current_app.logger.warning("Failed login attempt for %s", email)
        raise AuthenticationError("Invalid email or password")
    if not user.is_active:
        raise AuthenticationError("Account is disabled")

    user.last_login_at = utc_now()
    commit_session("login")

    return ok({"token": build_token(user), "user": user.to_dict()}, message="Logged in")


@bp.get("/auth/me")
@login_required
def me():
    return ok(current_user().to_dict(include_prestations=True))


@bp.post("/auth/refresh")
@login_required
def refresh_token():
    """Issue a fresh token for the current user."""
    return ok({"token": build_token(current_user())})


@bp.post("/auth/change-password")
@login_required
def change_password():
    payload = get_json_payload()
    current_password = clean_string(payload.get("current_password"), "current_password", required=True)
    new_password = clean_string(payload.get("new_password"), "new_password", required=True)
    if len(new_password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"new_password: must be at least {MIN_PASSWORD_LENGTH} characters",
            {"new_password": [f"must be at least {MIN_PASSWORD_LENGTH} characters"]},
        )

    user = current_user()
    if not user.check_password(current_password):
        raise ValidationError(
            "current_password: incorrect", {"current_password": ["incorrect"]}
        )
    user.set_password(new_password)
    commit_session("password change")
    return ok(message="Password updated")


# ---------------------------------------------------------------- users


def _get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError(f"User {user_id} not found")
    return user


def _apply_user_fields(user: User, payload: dict, creating: bool) -> None:
    if creating or "name" in payload:
        user.name = clean_string(payload.get("name"), "name", required=True, max_length=100)
    if creating or "surname" in payload:
        user.surname = clean_string(payload.get("surname"), "surname", max_length=100) or ""
    if creating or "role" in payload:
        user.role = parse_choice(payload.get("role"), "role", USER_ROLES, required=True)
    if creating or "email" in payload:
        email = clean_string(payload.get("email"), "email", max_length=255)
        email = email.lower() if email else None
        if email:
            other = User.query.filter(User.email == email).first()
            if other is not None and other.user_id != user.user_id:
                raise ConflictError(f"Email {email} is already used", {"email": ["already used"]})
        user.email = email
    if creating or "phone" in payload:
        user.phone = clean_string(payload.get("phone"), "phone", max_length=30)
    if "password" in payload and payload.get("password"):
        password = clean_string(payload.get("password"), "password", required=True)
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(
                f"password: must be at least {MIN_PASSWORD_LENGTH} characters",
                {"password": [f"must be at least {MIN_PASSWORD_LENGTH} characters"]},
            )
        user.set_password(password)
    if "is_active" in payload:
        user.is_active = parse_bool(payload.get("is_active"), "is_active", default=True)

    if user.is_stylist:
        if creating or "specialty" in payload:
            user.specialty = parse_choice(
                payload.get("specialty"), "specialty", PRESTATION_SPECIALTIES
            )
        if creating or "commission_percent" in payload:
            user.commission_percent = parse_float(
                payload.get("commission_percent"),
                "commission_percent",
                minimum=0,
                maximum=100,
                default=DEFAULT_COMMISSION_PERCENT,
            )
    elif not user.has_account:
        # Only stylists may exist without a login
        raise ValidationError(
            "email and password are required for this role",
            {"email": ["is required"], "password": ["is required"]},
        )


@bp.get("/users")
@roles_required("admin")
def list_users():
    query = User.query
    role = parse_choice(request.args.get("role"), "role", USER_ROLES)
    if role:
        query = query.filter(User.role == role)
    active = parse_bool(request.args.get("active"), "active")
    if active is not None:
        query = query.filter(User.is_active.is_(active))
    users = query.order_by(User.name, User.surname).all()
    return ok([u.to_dict() for u in users])


@bp.get("/users/stylists")
@login_required
def list_stylists():
    """Active stylists, for the visit form."""
    stylists = (
        User.query.filter(User.role == "stylist", User.is_active.is_(True))
        .order_by(User.name, User.surname)
        .all()
    )
    return ok([s.to_dict(include_prestations=True) for s in stylists])


@bp.post("/users")
@roles_required("admin")
def create_user():
    """Create a staff member.
    ---
    tags:
      - Users
    responses:
      201:
        description: User created
      409:
        description: Email already used
      422:
        description: Invalid payload
    """
    payload = get_json_payload()
    user = User()
    _apply_user_fields(user, payload, creating=True)
    db.session.add(user)
    commit_session("user creation")
    current_app.logger.info("User %s created with role %s", user.user_id, user.role)
    return ok(user.to_dict(), 201, message="User created")


@bp.get("/users/<int:user_id>")
@login_required
def get_user(user_id: int):
    actor = current_user()
    if actor.user_id != user_id and not actor.can_manage_users():
        raise AuthorizationError("Only administrators can view other accounts")
    return ok(_get_user(user_id).to_dict(include_prestations=True))


@bp.put("/users/<int:user_id>")
@roles_required("admin")
def update_user(user_id: int):
    user = _get_user(user_id)
    payload = get_json_payload()
    if user.user_id == g.current_user.user_id and "role" in payload and payload["role"] != user.role:
        raise ValidationError("role: you cannot change your own role", {"role": ["cannot change own role"]})
    _apply_user_fields(user, payload, creating=False)
    commit_session("user update")
    return ok(user.to_dict(include_prestations=True), message="User updated")


@bp.delete("/users/<int:user_id>")
@roles_required("admin")
def delete_user(user_id: int):
    user = _get_user(user_id)
    if user.user_id == g.current_user.user_id:
        raise ValidationError("You cannot delete your own account")
    user.prestations = []
    db.session.delete(user)
    commit_session("user deletion")
    return ok(message="User deleted")


@bp.post("/users/<int:user_id>/toggle-active")
@roles_required("admin")
def toggle_user_active(user_id: int):
    user = _get_user(user_id)
    if user.user_id == g.current_user.user_id:
        raise ValidationError("You cannot deactivate your own account")
    user.is_active = not user.is_active
    commit_session("user activation toggle")
    return ok(user.to_dict(), message="User activated" if user.is_active else "User deactivated")


@bp.put("/users/<int:user_id>/prestations")
@roles_required("admin", "manager")
def set_stylist_prestations(user_id: int):
    """Replace the prestations a stylist performs."""
    user = _get_user(user_id)
    if not user.is_stylist:
        raise ValidationError("Only stylists can be associated with prestations")
    raw_ids = get_json_payload().get("prestation_ids")
    if not isinstance(raw_ids, list):
        raise ValidationError(
            "prestation_ids: must be a list", {"prestation_ids": ["must be a list"]}
        )
    prestations = []
    for raw_id in raw_ids:
        prestation = get_prestation(parse_int(raw_id, "prestation_ids", required=True))
        if prestation not in prestations:
            prestations.append(prestation)
    user.prestations = prestations
    commit_session("stylist prestations update")
    return ok(user.to_dict(include_prestations=True))


# ---------------------------------------------------------------- clients


@bp.get("/clients")
@login_required
def list_clients():
    """List clients with search and pagination.
    ---
    tags:
      - Clients
    parameters:
      - name: search
        in: query
        type: string
        description: Matches name, surname, phone or code
      - name: status
        in: query
        type: string
        enum: [active, archived, all]
        default: active
      - name: page
        in: query
        type: integer
        default: 1
      - name: limit
        in: query
        type: integer
        default: 20
        maximum: 100
    responses:
      200:
        description: Clients with pagination metadata
    """
    page, limit = pagination_args()
    status = parse_choice(
        request.args.get("status"), "status", ("active", "archived", "all"), default="active"
    )
    query = Client.query
    if status != "all":
        query = query.filter(Client.status == status)

    search = (request.args.get("search") or "").strip()
    if search:
        pattern = f"%{search}%"
        query = query.filter(
            or_(
                Client.name.ilike(pattern),
                Client.surname.ilike(pattern),
                Client.phone.ilike(pattern),
                Client.code.ilike(pattern),
            )
        )

    clients, pagination = paginate(
        query.order_by(Client.name, Client.surname, Client.client_id), page, limit
    )
    return ok([c.to_dict() for c in clients], pagination=pagination)


@bp.get("/clients/generate-code")
@login_required
def generate_code():
    """Preview the next client code; it is reserved only when a client is created."""
    return ok({"code": preview_client_code()})


@bp.get("/clients/search-phone")
@login_required
def search_client_by_phone():
    phone = clean_string(request.args.get("phone"), "phone", required=True)
    client = Client.query.filter(Client.phone == phone).first()
    if client is None:
        raise NotFoundError(f"No client with phone {phone}")
    return ok(client.to_dict())


@bp.post("/clients")
@login_required
def create_client_route():
    """Create a client; the code is generated when none is supplied.
    ---
    tags:
      - Clients
    responses:
      201:
        description: Client created
      409:
        description: Phone or code already used
      422:
        description: Invalid payload
    """
    client = create_client(get_json_payload())
    commit_session("client creation")
    current_app.logger.info("Client %s created (%s)", client.client_id, client.code)
    return ok(client.to_dict(), 201, message="Client created")


@bp.get("/clients/<int:client_id>")
@login_required
def show_client(client_id: int):
    client = get_client(client_id)
    data = client.to_dict()
    data["stats"] = client_stats(client)
    return ok(data)


@bp.put("/clients/<int:client_id>")
@login_required
def update_client_route(client_id: int):
    client = update_client(get_client(client_id), get_json_payload())
    commit_session("client update")
    return ok(client.to_dict(), message="Client updated")


@bp.delete("/clients/<int:client_id>")
@login_required
def delete_client(client_id: int):
    """Archive a client, or purge it with ``?purge=1`` (admin only).
    ---
    tags:
      - Clients
    parameters:
      - name: purge
        in: query
        type: boolean
        default: false
    responses:
      200:
        description: Client archived or purged
      403:
        description: Purge requested by a non-admin
      404:
        description: Client not found
    """
    client = get_client(client_id)
    if parse_bool(request.args.get("purge"), "purge", default=False):
        if not current_user().can_manage_users():
            raise AuthorizationError("Only administrators can purge clients")
        purge_client(client)
        commit_session("client purge")
        return ok(message="Client permanently deleted")

    archive_client(client)
    commit_session("client archive")
    return ok(client.to_dict(), message="Client archived")


@bp.post("/clients/<int:client_id>/unarchive")
@login_required
def unarchive_client_route(client_id: int):
    client = unarchive_client(get_client(client_id))
    commit_session("client unarchive")
    return ok(client.to_dict(), message="Client restored")


@bp.get("/clients/<int:client_id>/history")
@login_required
def client_history(client_id: int):
    client = get_client(client_id)
    page, limit = pagination_args()
    query = Passage.query.filter(Passage.client_id == client.client_id).order_by(
        Passage.visited_at.desc(), Passage.passage_id.desc()
    )
    passages, pagination = paginate(query, page, limit)
    return ok(
        {"client": client.to_dict(), "passages": [p.to_dict() for p in passages]},
        pagination=pagination,
    )


@bp.get("/clients/<int:client_id>/loyalty")
@login_required
def client_loyalty(client_id: int):
    return ok(compute_free_eligibility(client_id))


# ---------------------------------------------------------------- prestations


@bp.get("/prestations")
@login_required
def list_prestations():
    query = Prestation.query.filter(Prestation.deleted_at.is_(None))
    active = parse_bool(request.args.get("active"), "active")
    if active is not None:
        query = query.filter(Prestation.is_active.is_(active))
    specialty = parse_choice(request.args.get("specialty"), "specialty", PRESTATION_SPECIALTIES)
    if specialty:
        query = query.filter(Prestation.specialty == specialty)
    if parse_bool(request.args.get("ordered"), "ordered", default=True):
        query = query.order_by(Prestation.display_order, Prestation.label)
    else:
        query = query.order_by(Prestation.label)
    return ok([p.to_dict() for p in query.all()])


@bp.post("/prestations")
@roles_required("admin", "manager")
def create_prestation_route():
    """Add a prestation to the catalogue.
    ---
    tags:
      - Prestations
    responses:
      201:
        description: Prestation created
      409:
        description: Label already used
      422:
        description: Invalid payload
    """
    prestation = create_prestation(get_json_payload())
    commit_session("prestation creation")
    return ok(prestation.to_dict(include_stylists=True), 201, message="Prestation created")


@bp.get("/prestations/<int:prestation_id>")
@login_required
def show_prestation(prestation_id: int):
    return ok(get_prestation(prestation_id).to_dict(include_stylists=True))


@bp.put("/prestations/<int:prestation_id>")
@roles_required("admin", "manager")
def update_prestation_route(prestation_id: int):
    prestation = update_prestation(get_prestation(prestation_id), get_json_payload())
    commit_session("prestation update")
    return ok(prestation.to_dict(include_stylists=True), message="Prestation updated")


@bp.delete("/prestations/<int:prestation_id>")
@roles_required("admin", "manager")
def delete_prestation_route(prestation_id: int):
    delete_prestation(get_prestation(prestation_id))
    commit_session("prestation deletion")
    return ok(message="Prestation deleted")


@bp.post("/prestations/<int:prestation_id>/toggle-active")
@roles_required("admin", "manager")
def toggle_prestation_active(prestation_id: int):
    prestation = get_prestation(prestation_id)
    prestation.is_active = not prestation.is_active
    commit_session("prestation activation toggle")
    return ok(prestation.to_dict())


@bp.get("/prestations/<int:prestation_id>/stylists")
@login_required
def prestation_stylists(prestation_id: int):
    prestation = get_prestation(prestation_id)
    return ok([s.to_dict_basic() for s in prestation.stylists if s.is_active])


@bp.post("/prestations/<int:prestation_id>/stylists")
@roles_required("admin", "manager")
def attach_stylist(prestation_id: int):
    prestation = get_prestation(prestation_id)
    stylist = _get_user(parse_int(get_json_payload().get("stylist_id"), "stylist_id", required=True))
    if not stylist.is_stylist:
        raise ValidationError("stylist_id: user is not a stylist", {"stylist_id": ["not a stylist"]})
    if stylist in prestation.stylists:
        raise ConflictError(f"Stylist {stylist.user_id} is already attached")
    prestation.stylists.append(stylist)
    commit_session("stylist attach")
    return ok(prestation.to_dict(include_stylists=True), 201)


@bp.delete("/prestations/<int:prestation_id>/stylists/<int:stylist_id>")
@roles_required("admin", "manager")
def detach_stylist(prestation_id: int, stylist_id: int):
    prestation = get_prestation(prestation_id)
    stylist = _get_user(stylist_id)
    if stylist not in prestation.stylists:
        raise NotFoundError(f"Stylist {stylist_id} is not attached to this prestation")
    prestation.stylists.remove(stylist)
    commit_session("stylist detach")
    return ok(prestation.to_dict(include_stylists=True))
