"""
Credit ledger tests.

Verifies:
- Cached balance always equals the sum of appended amounts
- Negative-balance policy is configurable and enforced atomically
- Reversals and transfers are new offsetting entries
- verify/rebuild detect and repair cache drift
"""

import pytest
from sqlalchemy import update

from qrpark.errors import (
    InsufficientCreditsError,
    InvalidAmountError,
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
)
from qrpark.models import CreditAccount, CreditLog, CreditLogType
from qrpark.services import credit_service


@pytest.fixture
def holder(make_user):
    return make_user(name="Credit Holder", email="holder@example.com")


@pytest.fixture
def disallow_negative(app, monkeypatch):
    monkeypatch.setitem(app.config, "CREDIT_ALLOW_NEGATIVE_BALANCE", False)


# =============================================================================
# APPEND AND BALANCE
# =============================================================================


class TestAppendEntry:

    def test_balance_is_sum_of_entries(self, holder, db_session):
        amounts = [100, -30, 45, -5, 1]
        for amount in amounts:
            credit_service.append_entry(holder.id, amount, "adjustment", CreditLogType.ADD)

        assert credit_service.current_balance(holder.id) == sum(amounts)
        assert credit_service.ledger_balance(holder.id) == sum(amounts)
        assert credit_service.verify_balance(holder.id).consistent

    def test_entry_records_running_balance(self, holder, admin):
        first = credit_service.append_entry(holder.id, 50, "Top-up", "add", actor_user_id=admin.id)
        second = credit_service.append_entry(holder.id, -20, "Redeem", "subtract")

        assert (first.balance_after, second.balance_after) == (50, 30)
        assert first.log_type == "ADD"
        assert first.actor_user_id == admin.id

    def test_lifetime_totals(self, holder):
        credit_service.append_entry(holder.id, 70, "Top-up", CreditLogType.ADD)
        credit_service.append_entry(holder.id, -25, "Redeem", CreditLogType.SUBTRACT)

        account = credit_service.get_account(holder.id)
        assert (account.lifetime_credited, account.lifetime_debited) == (70, 25)

    def test_no_entries_balance_zero(self, holder):
        assert credit_service.current_balance(holder.id) == 0
        assert credit_service.get_account(holder.id) is None

    @pytest.mark.parametrize("amount", [0, 1.5, "10", True, None])
    def test_invalid_amount_rejected(self, holder, db_session, amount):
        with pytest.raises(InvalidAmountError):
            credit_service.append_entry(holder.id, amount, "bad", CreditLogType.ADD)
        assert db_session.query(CreditLog).count() == 0

    @pytest.mark.parametrize("reason,log_type", [("", "ADD"), ("   ", "ADD"), ("ok", ""), (None, "ADD")])
    def test_blank_reason_or_type_rejected(self, holder, reason, log_type):
        with pytest.raises(InvalidInputError):
            credit_service.append_entry(holder.id, 10, reason, log_type)

    def test_unknown_user(self, db_session):
        with pytest.raises(NotFoundError):
            credit_service.append_entry(9999, 10, "Top-up", CreditLogType.ADD)

    def test_history_in_append_order(self, holder):
        for n in range(1, 6):
            credit_service.append_entry(holder.id, n, f"entry {n}", CreditLogType.ADD)

        entries, total = credit_service.list_entries(holder.id, limit=3, offset=1)
        assert total == 5
        assert [e.amount for e in entries] == [2, 3, 4]


# =============================================================================
# NEGATIVE BALANCE POLICY
# =============================================================================


class TestNegativeBalancePolicy:

    def test_debit_below_zero_allowed_by_default(self, holder):
        """Balance 30, append -50 with an arbitrary type tag: permitted, balance -20."""
        credit_service.append_entry(holder.id, 30, "Top-up", CreditLogType.ADD)

        entry = credit_service.append_entry(holder.id, -50, "redeem", "DEBIT")

        assert entry.balance_after == -20
        assert entry.log_type == "DEBIT"
        assert credit_service.current_balance(holder.id) == -20

    def test_debit_below_zero_rejected_when_disallowed(self, holder, db_session, disallow_negative):
        credit_service.append_entry(holder.id, 30, "Top-up", CreditLogType.ADD)

        with pytest.raises(InsufficientCreditsError) as exc_info:
            credit_service.append_entry(holder.id, -50, "redeem", "DEBIT")

        assert exc_info.value.details["available"] == 30
        assert credit_service.current_balance(holder.id) == 30
        assert db_session.query(CreditLog).filter_by(user_id=holder.id).count() == 1

    def test_debit_to_exactly_zero_allowed_when_disallowed(self, holder, disallow_negative):
        credit_service.append_entry(holder.id, 30, "Top-up", CreditLogType.ADD)
        entry = credit_service.append_entry(holder.id, -30, "redeem", "DEBIT")
        assert entry.balance_after == 0

    def test_per_call_override(self, holder):
        with pytest.raises(InsufficientCreditsError):
            credit_service.append_entry(holder.id, -1, "redeem", "DEBIT", allow_negative=False)
        assert credit_service.current_balance(holder.id) == 0


# =============================================================================
# REVERSALS
# =============================================================================


class TestReverseEntry:

    def test_reversal_offsets_original(self, holder, admin, db_session):
        original = credit_service.append_entry(holder.id, 40, "Top-up", CreditLogType.ADD)

        reversal = credit_service.reverse_entry(original.id, "Entered twice", actor_user_id=admin.id)

        assert reversal.amount == -40
        assert reversal.log_type == CreditLogType.REVERSAL
        assert reversal.reverses_log_id == original.id
        assert credit_service.current_balance(holder.id) == 0
        # The original is untouched
        assert db_session.get(CreditLog, original.id).amount == 40

    def test_reversal_ignores_negative_policy(self, holder, disallow_negative):
        original = credit_service.append_entry(holder.id, 40, "Top-up", CreditLogType.ADD)
        credit_service.append_entry(holder.id, -40, "Redeem", CreditLogType.SUBTRACT)

        credit_service.reverse_entry(original.id, "Chargeback")

        assert credit_service.current_balance(holder.id) == -40

    def test_reverse_twice_rejected(self, holder):
        original = credit_service.append_entry(holder.id, 40, "Top-up", CreditLogType.ADD)
        credit_service.reverse_entry(original.id, "Mistake")
        with pytest.raises(InvalidStateError):
            credit_service.reverse_entry(original.id, "Mistake again")

    def test_reversal_not_reversible(self, holder):
        original = credit_service.append_entry(holder.id, 40, "Top-up", CreditLogType.ADD)
        reversal = credit_service.reverse_entry(original.id, "Mistake")
        with pytest.raises(InvalidStateError):
            credit_service.reverse_entry(reversal.id, "Undo the undo")

    def test_reverse_missing(self, db_session):
        with pytest.raises(NotFoundError):
            credit_service.reverse_entry(9999, "Nothing")


# =============================================================================
# TRANSFERS
# =============================================================================


class TestTransferCredits:

    def test_transfer_moves_credits(self, admin, retailer):
        credit_service.append_entry(admin.id, 100, "Top-up", CreditLogType.ADD)

        sent, received = credit_service.transfer_credits(admin.id, retailer.id, 60)

        assert (sent.amount, sent.log_type, sent.related_user_id) == (-60, CreditLogType.GRANT, retailer.id)
        assert (received.amount, received.log_type, received.related_user_id) == (60, CreditLogType.ADD, admin.id)
        assert credit_service.current_balance(admin.id) == 40
        assert credit_service.current_balance(retailer.id) == 60
        assert "Corner Shop" in sent.reason

    def test_sender_cannot_go_negative(self, admin, retailer, db_session):
        credit_service.append_entry(admin.id, 10, "Top-up", CreditLogType.ADD)

        with pytest.raises(InsufficientCreditsError):
            credit_service.transfer_credits(admin.id, retailer.id, 11)

        assert credit_service.current_balance(admin.id) == 10
        assert credit_service.current_balance(retailer.id) == 0
        assert db_session.query(CreditLog).filter_by(user_id=retailer.id).count() == 0

    @pytest.mark.parametrize("amount", [0, -5])
    def test_amount_must_be_positive(self, admin, retailer, amount):
        with pytest.raises(InvalidAmountError):
            credit_service.transfer_credits(admin.id, retailer.id, amount)

    def test_same_user_rejected(self, admin):
        with pytest.raises(InvalidInputError):
            credit_service.transfer_credits(admin.id, admin.id, 5)


# =============================================================================
# VERIFY / REBUILD
# =============================================================================


class TestVerifyAndRebuild:

    def _corrupt_cache(self, db_session, user_id, balance):
        db_session.execute(
            update(CreditAccount).where(CreditAccount.user_id == user_id).values(balance=balance)
        )
        db_session.commit()

    def test_drift_detected_and_repaired(self, holder, db_session):
        credit_service.append_entry(holder.id, 25, "Top-up", CreditLogType.ADD)
        credit_service.append_entry(holder.id, -5, "Redeem", CreditLogType.SUBTRACT)
        self._corrupt_cache(db_session, holder.id, 999)

        drifted = [c for c in credit_service.verify_all_balances() if not c.consistent]
        assert [(c.user_id, c.cached_balance, c.ledger_balance) for c in drifted] == [(holder.id, 999, 20)]

        before = credit_service.rebuild_balance(holder.id)

        assert before.cached_balance == 999
        assert credit_service.current_balance(holder.id) == 20
        account = credit_service.get_account(holder.id)
        assert (account.lifetime_credited, account.lifetime_debited) == (25, 5)
        assert all(c.consistent for c in credit_service.verify_all_balances())

    def test_rebuild_consistent_is_noop(self, holder):
        credit_service.append_entry(holder.id, 25, "Top-up", CreditLogType.ADD)
        before = credit_service.rebuild_balance(holder.id)
        assert before.consistent
        assert credit_service.current_balance(holder.id) == 25
