# Overview: Service-layer operations for maintenance; encapsulates business logic and database work.

from __future__ import annotations

from datetime import timedelta

from flask import current_app

from ..errors import InvalidInputError
from ..extensions import db
from ..models import SecurityEvent
from ..time_utils import utcnow
from .concurrency import run_in_transaction


def cleanup_security_events(*, retention_days: int | None = None) -> int:
    """
    Prune audit rows older than retention_days (SECURITY_EVENT_RETENTION_DAYS
    when omitted). Returns the number of rows removed.

    The credit ledger is append-only and never pruned here.
    """
    if retention_days is None:
        retention_days = int(current_app.config.get("SECURITY_EVENT_RETENTION_DAYS", 90))
    if retention_days < 0:
        raise InvalidInputError("retention_days must be >= 0", {"retention_days": retention_days})

    cutoff = utcnow() - timedelta(days=retention_days)

    def _op() -> int:
        return (
            db.session.query(SecurityEvent)
            .filter(SecurityEvent.occurred_at < cutoff)
            .delete(synchronize_session=False)
        )

    deleted = run_in_transaction("cleanup_security_events", _op)
    current_app.logger.info("Pruned %d security event(s) older than %s", deleted, cutoff.date())
    return deleted
