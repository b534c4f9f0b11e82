"""Generation of client codes (``C007-26``) and receipt numbers."""
from __future__ import annotations

import re
import secrets
from datetime import datetime

from flask import current_app
from sqlalchemy import update

from .errors import GenerationExhaustedError
from .extensions import db
from .models import CODE_SCOPES, Client, CodeSequence, Paiement, utc_now

CLIENT_CODE_SCOPE = CODE_SCOPES[0]
CLIENT_CODE_PATTERN = re.compile(r"^C(\d{3,})-(\d{2})$")


def format_client_code(number: int, year: int) -> str:
    return "C%03d-%02d" % (number, year % 100)


def _scan_max_sequence() -> int:
    """Highest numeric part among existing client codes, all years included."""
    highest = 0
    codes = db.session.query(Client.code).filter(Client.code.like("C%-%")).all()
    for (code,) in codes:
        match = CLIENT_CODE_PATTERN.match(code or "")
        if match:
            highest = max(highest, int(match.group(1)))
    return highest


def _code_taken(code: str) -> bool:
    return db.session.query(Client.client_id).filter(Client.code == code).first() is not None


def _lock_sequence(name: str) -> CodeSequence:
    # Writing the row first takes the write lock on backends that ignore FOR UPDATE
    touched = db.session.execute(
        update(CodeSequence)
        .where(CodeSequence.name == name)
        .values(last_value=CodeSequence.last_value),
        execution_options={"synchronize_session": False},
    ).rowcount
    if not touched:
        # Tables created outside create_all() miss the seeded row
        db.session.add(CodeSequence(name=name, last_value=0))
        db.session.flush()
    return (
        db.session.query(CodeSequence)
        .filter(CodeSequence.name == name)
        .with_for_update()
        .populate_existing()
        .one()
    )


def _first_free_code(start: int, year: int, max_attempts: int) -> tuple[int, str]:
    number = start
    for _ in range(max_attempts):
        code = format_client_code(number, year)
        if not _code_taken(code):
            return number, code
        number += 1
    raise GenerationExhaustedError(
        f"No free client code found after {max_attempts} attempts (started at {start})"
    )


def generate_client_code(year: int | None = None) -> str:
    """Reserve the next client code inside the current transaction.

    The ``client_code`` counter row stays locked until the caller commits, so
    two concurrent requests cannot compute the same number. The scan over
    existing codes covers codes entered by hand or imported by sync.
    """
    if year is None:
        year = utc_now().year
    max_attempts = current_app.config.get("CLIENT_CODE_MAX_ATTEMPTS", 1000)

    sequence = _lock_sequence(CLIENT_CODE_SCOPE)
    start = max(sequence.last_value, _scan_max_sequence()) + 1
    number, code = _first_free_code(start, year, max_attempts)
    sequence.last_value = number
    return code


def preview_client_code(year: int | None = None) -> str:
    """Next client code, without reserving it."""
    if year is None:
        year = utc_now().year
    sequence = db.session.get(CodeSequence, CLIENT_CODE_SCOPE)
    last_value = sequence.last_value if sequence else 0
    start = max(last_value, _scan_max_sequence()) + 1
    max_attempts = current_app.config.get("CLIENT_CODE_MAX_ATTEMPTS", 1000)
    return _first_free_code(start, year, max_attempts)[1]


def is_valid_client_code(code: str) -> bool:
    return bool(re.fullmatch(r"C\d{3}-\d{2}", code or ""))


def generate_receipt_number(paid_at: datetime | None = None) -> str:
    """``REC-YYYYMMDD-XXXXXX`` with six random hex digits.

    Not retried: the unique constraint on ``paiements.receipt_number`` turns a
    collision into a ConflictError at commit time.
    """
    prefix = current_app.config.get("RECEIPT_PREFIX", "REC")
    stamp = (paid_at or utc_now()).strftime("%Y%m%d")
    return f"{prefix}-{stamp}-{secrets.token_hex(3).upper()}"


def receipt_number_exists(receipt_number: str) -> bool:
    return (
        db.session.query(Paiement.paiement_id)
        .filter(Paiement.receipt_number == receipt_number)
        .first()
        is not None
    )
