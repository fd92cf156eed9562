# Overview: Service-layer operations for QR codes; encapsulates business logic and database work.

"""
QR Serial Allocator and Lifecycle

SERIALS:
- Issued from one authoritative counter row (serial_counters, name "QR"),
  bumped with an atomic UPDATE inside the allocating transaction.
  Concurrent callers serialize on that row: no duplicates, no gaps.
- Rendered as prefix + zero-padded decimal, e.g. SR000001
  (QR_SERIAL_PREFIX / QR_SERIAL_WIDTH).
- Never reused, except after wipe_all(), which deletes every code and
  resets the counter to 0 in the same transaction.

LIFECYCLE: UNUSED -> ACTIVE (activate) ; UNUSED/ACTIVE -> REVOKED (revoke)
"""

from __future__ import annotations

import re
import secrets

from flask import current_app
from sqlalchemy import func, update

from ..errors import InvalidInputError, InvalidStateError, NotFoundError
from ..extensions import db
from ..models import CreditLogType, QRCodeData, QRStatus, SerialCounter, User
from ..time_utils import utcnow
from . import credit_service
from .authorization_service import log_security_event
from .concurrency import lock_for_update, run_in_transaction


QR_SEQUENCE = "QR"


def _serial_prefix() -> str:
    return str(current_app.config.get("QR_SERIAL_PREFIX", "SR")).strip().upper()


def _serial_width() -> int:
    return int(current_app.config.get("QR_SERIAL_WIDTH", 6))


def format_serial(sequence: int) -> str:
    """Render a sequence number as its printed serial (1 -> SR000001)."""
    width = _serial_width()
    if sequence < 1:
        raise InvalidInputError("Serial sequence starts at 1", {"sequence": sequence})
    if sequence >= 10 ** width:
        raise InvalidStateError(
            f"Serial space exhausted for width {width}",
            {"sequence": sequence, "width": width},
        )
    return f"{_serial_prefix()}{sequence:0{width}d}"


def parse_serial(serial: str) -> int:
    """Inverse of format_serial; rejects anything not in the exact format."""
    prefix = _serial_prefix()
    pattern = re.compile(rf"^{re.escape(prefix)}(\d{{{_serial_width()}}})$")
    match = pattern.match((serial or "").strip().upper())
    if not match:
        raise InvalidInputError(f"Malformed serial '{serial}'", {"serial": serial})
    return int(match.group(1))


def _normalize_serial(serial: str) -> str:
    if not isinstance(serial, str) or not serial.strip():
        raise InvalidInputError("serial is required")
    return serial.strip().upper()


def _reserve_sequences(count: int) -> int:
    """
    Atomically advance the counter by count; return the new last value.

    Must run inside the caller's transaction. The first allocation ever
    creates the counter row, seeded from any pre-existing codes; two
    first allocations racing on that insert surface as IntegrityError and
    are retried once by the caller.
    """
    stmt = (
        update(SerialCounter)
        .where(SerialCounter.name == QR_SEQUENCE)
        .values(last_value=SerialCounter.last_value + count)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if result.rowcount:
        return db.session.query(SerialCounter.last_value).filter_by(name=QR_SEQUENCE).scalar()

    baseline = db.session.query(func.coalesce(func.max(QRCodeData.sequence), 0)).scalar() or 0
    db.session.add(SerialCounter(name=QR_SEQUENCE, last_value=baseline + count))
    db.session.flush()
    return baseline + count


def _new_code() -> str:
    return secrets.token_urlsafe(12)


def _build(sequence: int, generated_by_user_id: int | None) -> QRCodeData:
    return QRCodeData(
        sequence=sequence,
        serial_number=format_serial(sequence),
        code=_new_code(),
        status=QRStatus.UNUSED,
        generated_by_user_id=generated_by_user_id,
        created_at=utcnow(),
    )


def allocate_batch(quantity: int, generated_by_user_id: int | None = None) -> list[QRCodeData]:
    """
    Allocate a contiguous block of UNUSED codes in one transaction.

    quantity must be 1..QR_MAX_BATCH_SIZE.
    """
    max_batch = int(current_app.config.get("QR_MAX_BATCH_SIZE", 1000))
    if isinstance(quantity, bool) or not isinstance(quantity, int) or not 1 <= quantity <= max_batch:
        raise InvalidInputError(
            f"quantity must be between 1 and {max_batch}",
            {"quantity": quantity},
        )

    def _op() -> list[QRCodeData]:
        if generated_by_user_id is not None and not db.session.get(User, generated_by_user_id):
            raise NotFoundError(f"User {generated_by_user_id} not found", {"user_id": generated_by_user_id})

        last = _reserve_sequences(quantity)
        codes = [_build(seq, generated_by_user_id) for seq in range(last - quantity + 1, last + 1)]
        db.session.add_all(codes)
        db.session.flush()
        return codes

    # One retry on conflict: a detected race on the counter row or a serial
    codes = run_in_transaction("allocate_qr", _op, conflict_attempts=2)
    current_app.logger.info(
        "Allocated %d QR code(s): %s..%s",
        len(codes), codes[0].serial_number, codes[-1].serial_number,
    )
    return codes


def allocate(generated_by_user_id: int | None = None) -> QRCodeData:
    """Allocate one UNUSED code with the next serial."""
    return allocate_batch(1, generated_by_user_id=generated_by_user_id)[0]


def get_by_serial(serial: str) -> QRCodeData:
    serial = _normalize_serial(serial)
    qr = db.session.query(QRCodeData).filter_by(serial_number=serial).first()
    if not qr:
        raise NotFoundError(f"QR code {serial} not found", {"serial": serial})
    return qr


def get_by_code(code: str) -> QRCodeData:
    """Lookup by the scanned token (public scan path)."""
    qr = db.session.query(QRCodeData).filter_by(code=(code or "").strip()).first()
    if not qr:
        raise NotFoundError("QR code not found", {"code": code})
    return qr


def list_codes(
    status: str | None = None,
    owner_user_id: int | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[QRCodeData]:
    """Codes in serial order, optionally filtered."""
    query = db.session.query(QRCodeData)
    if status is not None:
        if status not in QRStatus.ALL:
            raise InvalidInputError(f"Unknown status '{status}'", {"status": status})
        query = query.filter(QRCodeData.status == status)
    if owner_user_id is not None:
        query = query.filter(QRCodeData.owner_user_id == owner_user_id)
    limit = max(1, min(limit, 1000))
    return query.order_by(QRCodeData.sequence.asc()).limit(limit).offset(max(0, offset)).all()


def status_counts() -> dict[str, int]:
    counts = {status: 0 for status in QRStatus.ALL}
    rows = db.session.query(QRCodeData.status, func.count(QRCodeData.id)).group_by(QRCodeData.status).all()
    for status, count in rows:
        counts[status] = count
    counts["TOTAL"] = sum(counts[s] for s in QRStatus.ALL)
    return counts


def activate(
    serial: str,
    owner_user_id: int,
    *,
    owner_name: str | None = None,
    vehicle_number: str | None = None,
) -> QRCodeData:
    """
    First redemption: UNUSED -> ACTIVE, bound to owner_user_id.

    When QR_ACTIVATION_CREDIT_COST > 0 the owner is debited in the same
    transaction (type ACTIVATION) and may not go negative.

    Raises NotFoundError (serial or owner), InvalidStateError (not UNUSED),
    InsufficientCreditsError (activation charge not covered).
    """
    serial = _normalize_serial(serial)
    cost = int(current_app.config.get("QR_ACTIVATION_CREDIT_COST", 0))

    def _op() -> QRCodeData:
        qr = lock_for_update(db.session.query(QRCodeData).filter_by(serial_number=serial)).first()
        if not qr:
            raise NotFoundError(f"QR code {serial} not found", {"serial": serial})
        if not db.session.get(User, owner_user_id):
            raise NotFoundError(f"User {owner_user_id} not found", {"user_id": owner_user_id})
        if qr.status != QRStatus.UNUSED:
            raise InvalidStateError(
                f"QR code {serial} is {qr.status}, expected {QRStatus.UNUSED}",
                {"serial": serial, "status": qr.status},
            )

        # Conditional transition: a concurrent activation loses here
        result = db.session.execute(
            update(QRCodeData)
            .where(QRCodeData.id == qr.id, QRCodeData.status == QRStatus.UNUSED)
            .values(
                status=QRStatus.ACTIVE,
                owner_user_id=owner_user_id,
                owner_name=owner_name,
                vehicle_number=vehicle_number,
                activated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if not result.rowcount:
            raise InvalidStateError(f"QR code {serial} was activated concurrently", {"serial": serial})

        if cost > 0:
            credit_service.record_entry(
                user_id=owner_user_id,
                amount=-cost,
                reason=f"Activated QR {serial}",
                log_type=CreditLogType.ACTIVATION,
                actor_user_id=owner_user_id,
                allow_negative=False,
            )

        db.session.refresh(qr)
        return qr

    return run_in_transaction("activate_qr", _op, conflict_attempts=2)


def revoke(serial: str, reason: str, *, actor_user_id: int | None = None) -> QRCodeData:
    """Move a code to the terminal REVOKED state."""
    serial = _normalize_serial(serial)
    if not isinstance(reason, str) or not reason.strip():
        raise InvalidInputError("reason is required")

    def _op() -> QRCodeData:
        qr = lock_for_update(db.session.query(QRCodeData).filter_by(serial_number=serial)).first()
        if not qr:
            raise NotFoundError(f"QR code {serial} not found", {"serial": serial})
        if qr.status == QRStatus.REVOKED:
            raise InvalidStateError(f"QR code {serial} is already revoked", {"serial": serial})

        qr.status = QRStatus.REVOKED
        qr.revoked_at = utcnow()
        qr.revoked_reason = reason.strip()
        log_security_event(
            user_id=actor_user_id,
            event_type="QR_REVOKED",
            success=True,
            resource="qrs",
            action="delete",
            reason=f"{serial}: {qr.revoked_reason}",
            commit=False,
        )
        return qr

    return run_in_transaction("revoke_qr", _op)


def wipe_all(*, actor_user_id: int | None = None) -> int:
    """
    Delete every QR code and reset the serial counter to 0, atomically.

    The next allocate() after a wipe returns SR000001. Returns the number
    of codes deleted.
    """
    def _op() -> int:
        # Counter first: concurrent allocations queue behind this transaction
        reset = db.session.execute(
            update(SerialCounter)
            .where(SerialCounter.name == QR_SEQUENCE)
            .values(last_value=0)
            .execution_options(synchronize_session=False)
        )
        if not reset.rowcount:
            db.session.add(SerialCounter(name=QR_SEQUENCE, last_value=0))

        deleted = db.session.query(QRCodeData).delete(synchronize_session=False)
        log_security_event(
            user_id=actor_user_id,
            event_type="QR_WIPE",
            success=True,
            resource="qrs",
            action="delete",
            reason=f"Deleted {deleted} QR code(s); serial counter reset",
            commit=False,
        )
        return deleted

    deleted = run_in_transaction("wipe_qr_codes", _op, conflict_attempts=2)
    current_app.logger.warning("Wiped %d QR code(s); serial counter reset to 0", deleted)
    return deleted
