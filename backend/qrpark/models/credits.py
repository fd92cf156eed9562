from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class CreditLogType:
    """Well-known ledger entry types. The ledger itself accepts any non-empty tag."""
    ADD = "ADD"
    SUBTRACT = "SUBTRACT"
    GRANT = "GRANT"
    ACTIVATION = "ACTIVATION"
    REVERSAL = "REVERSAL"


class CreditAccount(db.Model):
    """
    Cached running balance for one user.

    WHY: Reading a balance must not require summing the whole log.
    The cache is updated in the same transaction as every CreditLog
    append, with an atomic increment, so it never diverges from the log.
    """
    __tablename__ = "credit_accounts"
    __table_args__ = (
        db.UniqueConstraint("user_id", name="uq_credit_accounts_user"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    balance = db.Column(db.Integer, nullable=False, default=0)
    lifetime_credited = db.Column(db.Integer, nullable=False, default=0)
    lifetime_debited = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    user = db.relationship("User", backref=db.backref("credit_account", uselist=False, lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "balance": self.balance,
            "lifetime_credited": self.lifetime_credited,
            "lifetime_debited": self.lifetime_debited,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class CreditLog(db.Model):
    """
    Append-only ledger of signed credit deltas.

    - amount > 0 credits the user, amount < 0 debits
    - balance_after records the running balance at append time
    - Reversals are new offsetting entries pointing at reverses_log_id

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "credit_logs"
    __table_args__ = (
        db.Index("ix_credit_logs_user_created", "user_id", "created_at", "id"),
        db.CheckConstraint("amount <> 0", name="ck_credit_logs_amount_nonzero"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    amount = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=False)
    log_type = db.Column(db.String(32), nullable=False, index=True)
    balance_after = db.Column(db.Integer, nullable=False)

    # Counterparty for transfers (GRANT on sender, ADD on recipient)
    related_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    # Set on REVERSAL entries; unique so an entry is reversed at most once
    reverses_log_id = db.Column(db.Integer, db.ForeignKey("credit_logs.id"), nullable=True, unique=True)

    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    user = db.relationship("User", foreign_keys=[user_id], backref=db.backref("credit_logs", lazy="dynamic"))
    related_user = db.relationship("User", foreign_keys=[related_user_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "amount": self.amount,
            "reason": self.reason,
            "type": self.log_type,
            "balance_after": self.balance_after,
            "related_user_id": self.related_user_id,
            "related_user_name": self.related_user.name if self.related_user else None,
            "reverses_log_id": self.reverses_log_id,
            "actor_user_id": self.actor_user_id,
            "created_at": to_utc_z(self.created_at),
        }
