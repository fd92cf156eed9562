# Overview: Service-layer operations for the credit ledger; encapsulates business logic and database work.

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app
from sqlalchemy import case, func, update

from ..errors import (
    InsufficientCreditsError,
    InvalidAmountError,
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
)
from ..extensions import db
from ..models import CreditAccount, CreditLog, CreditLogType, User
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_in_transaction

"""
Credit Ledger Invariants (authoritative)

- credit_logs is append-only: entries are never edited or deleted.
- Reversals are new offsetting entries (type REVERSAL, reverses_log_id set).
- credit_accounts.balance == SUM(credit_logs.amount) for the user, always.
  The cache is bumped with an atomic UPDATE in the same transaction as the
  log insert, so concurrent appends for one user serialize on that row and
  no update is lost.
- Negative balances are a policy (CREDIT_ALLOW_NEGATIVE_BALANCE), not a
  ledger invariant.
"""


@dataclass(frozen=True)
class BalanceCheck:
    user_id: int
    cached_balance: int
    ledger_balance: int

    @property
    def consistent(self) -> bool:
        return self.cached_balance == self.ledger_balance

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "cached_balance": self.cached_balance,
            "ledger_balance": self.ledger_balance,
            "consistent": self.consistent,
        }


def _validate_amount(amount) -> int:
    # bool is an int subclass; True is not a credit amount
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmountError("amount must be an integer", {"amount": repr(amount)})
    if amount == 0:
        raise InvalidAmountError("amount must be non-zero", {"amount": amount})
    return amount


def _validate_text(value, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidInputError(f"{field_name} is required", {"field": field_name})
    return value.strip()


def _require_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError(f"User {user_id} not found", {"user_id": user_id})
    return user


def _ensure_account(user_id: int) -> None:
    exists = db.session.query(CreditAccount.id).filter_by(user_id=user_id).first()
    if not exists:
        db.session.add(CreditAccount(user_id=user_id, balance=0, lifetime_credited=0, lifetime_debited=0))
        db.session.flush()


def _allow_negative(override: bool | None) -> bool:
    if override is not None:
        return override
    return bool(current_app.config.get("CREDIT_ALLOW_NEGATIVE_BALANCE", True))


def record_entry(
    *,
    user_id: int,
    amount: int,
    reason: str,
    log_type: str,
    related_user_id: int | None = None,
    reverses_log_id: int | None = None,
    actor_user_id: int | None = None,
    allow_negative: bool | None = None,
) -> CreditLog:
    """
    Append a ledger entry inside the caller's transaction (flush, no commit).

    Used directly by services that must record credits atomically with
    their own change (QR activation, transfers); everyone else calls
    append_entry().
    """
    amount = _validate_amount(amount)
    reason = _validate_text(reason, "reason")
    log_type = _validate_text(log_type, "type").upper()
    _require_user(user_id)
    _ensure_account(user_id)

    stmt = update(CreditAccount).where(CreditAccount.user_id == user_id)
    if amount < 0 and not _allow_negative(allow_negative):
        stmt = stmt.where(CreditAccount.balance + amount >= 0)

    stmt = stmt.values(
        balance=CreditAccount.balance + amount,
        lifetime_credited=CreditAccount.lifetime_credited + (amount if amount > 0 else 0),
        lifetime_debited=CreditAccount.lifetime_debited + (-amount if amount < 0 else 0),
        version_id=CreditAccount.version_id + 1,
    ).execution_options(synchronize_session=False)

    result = db.session.execute(stmt)
    if not result.rowcount:
        available = db.session.query(CreditAccount.balance).filter_by(user_id=user_id).scalar()
        raise InsufficientCreditsError(
            "Insufficient credits",
            {"user_id": user_id, "available": available, "requested": -amount},
        )

    balance_after = db.session.query(CreditAccount.balance).filter_by(user_id=user_id).scalar()

    entry = CreditLog(
        user_id=user_id,
        amount=amount,
        reason=reason,
        log_type=log_type,
        balance_after=balance_after,
        related_user_id=related_user_id,
        reverses_log_id=reverses_log_id,
        actor_user_id=actor_user_id,
        created_at=utcnow(),
    )
    db.session.add(entry)
    db.session.flush()  # ensures entry.id is assigned without committing
    return entry


def append_entry(
    user_id: int,
    amount: int,
    reason: str,
    log_type: str,
    *,
    related_user_id: int | None = None,
    actor_user_id: int | None = None,
    allow_negative: bool | None = None,
) -> CreditLog:
    """
    Append a signed credit delta for a user and commit.

    Raises InvalidAmountError (zero / non-integer amount),
    InvalidInputError (blank reason or type), NotFoundError (unknown user),
    InsufficientCreditsError (debit below zero while disallowed).
    """
    def _op() -> CreditLog:
        return record_entry(
            user_id=user_id,
            amount=amount,
            reason=reason,
            log_type=log_type,
            related_user_id=related_user_id,
            actor_user_id=actor_user_id,
            allow_negative=allow_negative,
        )

    # conflict_attempts=2: two first-ever appends may race to create the account row
    return run_in_transaction("append_credit_entry", _op, conflict_attempts=2)


def current_balance(user_id: int) -> int:
    """Cached balance; 0 for a user with no entries."""
    _require_user(user_id)
    balance = db.session.query(CreditAccount.balance).filter_by(user_id=user_id).scalar()
    return balance or 0


def ledger_balance(user_id: int) -> int:
    """Balance derived from the log alone."""
    _require_user(user_id)
    total = db.session.query(func.coalesce(func.sum(CreditLog.amount), 0)).filter(
        CreditLog.user_id == user_id
    ).scalar()
    return int(total or 0)


def get_account(user_id: int) -> CreditAccount | None:
    _require_user(user_id)
    return db.session.query(CreditAccount).filter_by(user_id=user_id).first()


def list_entries(user_id: int, limit: int = 50, offset: int = 0) -> tuple[list[CreditLog], int]:
    """Entries in append order (created_at, id), with the total count."""
    _require_user(user_id)
    limit = max(1, min(limit, 500))
    offset = max(0, offset)

    query = db.session.query(CreditLog).filter(CreditLog.user_id == user_id)
    total = query.count()
    entries = (
        query.order_by(CreditLog.created_at.asc(), CreditLog.id.asc())
        .limit(limit)
        .offset(offset)
        .all()
    )
    return entries, total


def verify_balance(user_id: int) -> BalanceCheck:
    return BalanceCheck(
        user_id=user_id,
        cached_balance=current_balance(user_id),
        ledger_balance=ledger_balance(user_id),
    )


def verify_all_balances() -> list[BalanceCheck]:
    """Checks for every user that has an account or any entries."""
    user_ids = {
        uid for (uid,) in db.session.query(CreditAccount.user_id).all()
    } | {
        uid for (uid,) in db.session.query(CreditLog.user_id).distinct().all()
    }
    return [verify_balance(uid) for uid in sorted(user_ids)]


def rebuild_balance(user_id: int) -> BalanceCheck:
    """
    Repair the cached balance from the log.

    Returns the check as it was before the repair. The log is never
    touched; the cache is recomputed from it.
    """
    def _op() -> BalanceCheck:
        _require_user(user_id)
        _ensure_account(user_id)
        account = lock_for_update(
            db.session.query(CreditAccount).filter_by(user_id=user_id)
        ).populate_existing().one()

        credited, debited = db.session.query(
            func.coalesce(func.sum(case((CreditLog.amount > 0, CreditLog.amount), else_=0)), 0),
            func.coalesce(func.sum(case((CreditLog.amount < 0, -CreditLog.amount), else_=0)), 0),
        ).filter(CreditLog.user_id == user_id).one()

        before = BalanceCheck(user_id, account.balance, int(credited) - int(debited))
        account.balance = before.ledger_balance
        account.lifetime_credited = int(credited)
        account.lifetime_debited = int(debited)
        return before

    before = run_in_transaction("rebuild_balance", _op, conflict_attempts=2)
    if not before.consistent:
        current_app.logger.warning(
            "Repaired balance drift for user %s: cached=%s ledger=%s",
            user_id, before.cached_balance, before.ledger_balance,
        )
    return before


def reverse_entry(log_id: int, reason: str, *, actor_user_id: int | None = None) -> CreditLog:
    """
    Append an offsetting REVERSAL entry for an existing entry.

    An entry can be reversed once; reversal entries themselves cannot be
    reversed. Reversals ignore the negative-balance policy: a correction
    must always be recordable.
    """
    reason = _validate_text(reason, "reason")

    def _op() -> CreditLog:
        original = db.session.get(CreditLog, log_id)
        if not original:
            raise NotFoundError(f"Credit log {log_id} not found", {"log_id": log_id})
        if original.reverses_log_id is not None:
            raise InvalidStateError("Reversal entries cannot be reversed", {"log_id": log_id})
        already = db.session.query(CreditLog.id).filter_by(reverses_log_id=log_id).first()
        if already:
            raise InvalidStateError(
                f"Credit log {log_id} was already reversed",
                {"log_id": log_id, "reversal_id": already[0]},
            )
        return record_entry(
            user_id=original.user_id,
            amount=-original.amount,
            reason=reason,
            log_type=CreditLogType.REVERSAL,
            related_user_id=original.related_user_id,
            reverses_log_id=original.id,
            actor_user_id=actor_user_id,
            allow_negative=True,
        )

    return run_in_transaction("reverse_credit_entry", _op)


def transfer_credits(
    from_user_id: int,
    to_user_id: int,
    amount: int,
    reason: str | None = None,
    *,
    actor_user_id: int | None = None,
) -> tuple[CreditLog, CreditLog]:
    """
    Move credits between users in one transaction.

    Sender gets a GRANT debit, recipient an ADD credit. The sender may
    never go negative, whatever the global policy.
    Returns (sender_entry, recipient_entry).
    """
    amount = _validate_amount(amount)
    if amount < 0:
        raise InvalidAmountError("Transfer amount must be positive", {"amount": amount})
    if from_user_id == to_user_id:
        raise InvalidInputError("Cannot transfer credits to the same user")

    def _op() -> tuple[CreditLog, CreditLog]:
        sender = _require_user(from_user_id)
        recipient = _require_user(to_user_id)
        sent_reason = reason or f"Granted {amount} credits to {recipient.name}"
        received_reason = reason or f"Received {amount} credits from {sender.name}"

        legs = {
            from_user_id: dict(
                user_id=from_user_id, amount=-amount, reason=sent_reason,
                log_type=CreditLogType.GRANT, related_user_id=to_user_id,
                actor_user_id=actor_user_id, allow_negative=False,
            ),
            to_user_id: dict(
                user_id=to_user_id, amount=amount, reason=received_reason,
                log_type=CreditLogType.ADD, related_user_id=from_user_id,
                actor_user_id=actor_user_id,
            ),
        }
        # Lock accounts in id order so opposite transfers cannot deadlock
        entries = {uid: record_entry(**legs[uid]) for uid in sorted(legs)}
        return entries[from_user_id], entries[to_user_id]

    return run_in_transaction("transfer_credits", _op, conflict_attempts=2)
