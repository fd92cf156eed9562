"""
Concurrency tests for serial allocation and credit appends.

Runs against a file-backed SQLite database so every thread gets its own
connection and session, the way concurrent requests would.

Verifies:
- K concurrent allocations produce K distinct, contiguous serials
- Concurrent appends for one user lose no updates
- Concurrent debits never overdraw when negatives are disallowed
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from qrpark import create_app
from qrpark.errors import InsufficientCreditsError
from qrpark.extensions import db
from qrpark.models import BaseRole, CreditLog, CreditLogType, User
from qrpark.services import credit_service, qr_service


WORKERS = 8


@pytest.fixture
def file_app(tmp_path):
    """Application bound to a fresh on-disk database."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'concurrency.sqlite3'}",
        'SQLALCHEMY_ENGINE_OPTIONS': {
            'connect_args': {'timeout': 30, 'check_same_thread': False},
        },
        'LOG_LEVEL': 'WARNING',
    })
    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.engine.dispose()


def _create_user(app, email):
    with app.app_context():
        user = User(name=email.split("@")[0], email=email, base_role=BaseRole.RETAILER)
        db.session.add(user)
        db.session.commit()
        return user.id


def _run_concurrently(app, func, calls):
    """Run func(i) for each i in calls on WORKERS threads released together."""
    barrier = threading.Barrier(min(WORKERS, len(calls)))

    def _task(i):
        with app.app_context():
            try:
                barrier.wait(timeout=10)
            except threading.BrokenBarrierError:
                pass
            return func(i)

    with ThreadPoolExecutor(max_workers=WORKERS) as pool:
        futures = [pool.submit(_task, i) for i in calls]
        return [f.exception() or f.result() for f in futures]


def test_concurrent_allocation_is_gap_free(file_app):
    results = _run_concurrently(file_app, lambda _i: qr_service.allocate().serial_number, range(WORKERS))

    assert all(isinstance(r, str) for r in results), results
    assert len(set(results)) == WORKERS

    with file_app.app_context():
        sequences = sorted(qr_service.parse_serial(s) for s in results)
        assert sequences == list(range(1, WORKERS + 1))


def test_concurrent_batches_do_not_overlap(file_app):
    results = _run_concurrently(
        file_app,
        lambda _i: [qr.sequence for qr in qr_service.allocate_batch(5)],
        range(WORKERS),
    )

    assert all(isinstance(r, list) for r in results), results
    for batch in results:
        assert batch == list(range(batch[0], batch[0] + 5))
    flat = sorted(seq for batch in results for seq in batch)
    assert flat == list(range(1, WORKERS * 5 + 1))


def test_concurrent_appends_lose_no_updates(file_app):
    user_id = _create_user(file_app, "busy@example.com")
    with file_app.app_context():
        credit_service.append_entry(user_id, 1, "Opening", CreditLogType.ADD)

    amounts = [(i % 7) - 3 or 5 for i in range(WORKERS * 4)]

    results = _run_concurrently(
        file_app,
        lambda i: credit_service.append_entry(user_id, amounts[i], f"entry {i}", CreditLogType.ADD).id,
        range(len(amounts)),
    )

    assert all(isinstance(r, int) for r in results), results
    with file_app.app_context():
        expected = 1 + sum(amounts)
        assert credit_service.current_balance(user_id) == expected
        assert credit_service.ledger_balance(user_id) == expected
        assert db.session.query(CreditLog).filter_by(user_id=user_id).count() == len(amounts) + 1


def test_concurrent_debits_never_overdraw(file_app):
    file_app.config['CREDIT_ALLOW_NEGATIVE_BALANCE'] = False
    user_id = _create_user(file_app, "thrifty@example.com")
    with file_app.app_context():
        credit_service.append_entry(user_id, 5, "Opening", CreditLogType.ADD)

    def _debit(i):
        try:
            credit_service.append_entry(user_id, -1, f"debit {i}", CreditLogType.SUBTRACT)
            return True
        except InsufficientCreditsError:
            return False

    results = _run_concurrently(file_app, _debit, range(WORKERS * 2))

    assert results.count(True) == 5
    assert results.count(False) == WORKERS * 2 - 5
    with file_app.app_context():
        assert credit_service.current_balance(user_id) == 0
        balances = [row.balance_after for row in db.session.query(CreditLog).filter_by(user_id=user_id)]
        assert min(balances) >= 0
