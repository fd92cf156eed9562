# Overview: Transaction boundaries, row locking and retry handling shared by all services.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConflictError, InternalError, ServiceError
from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    On SQLite the first write statement takes the database write lock,
    which is why counters and balances are bumped with atomic UPDATEs.
    """
    return query.with_for_update()


def run_in_transaction(
    operation: str,
    func,
    *,
    attempts: int = 3,
    backoff_base: float = 0.05,
    conflict_attempts: int = 1,
):
    """
    Execute func() and commit as one unit of work.

    - ServiceError: rollback and re-raise untouched (expected outcome).
    - IntegrityError: rollback; retried up to conflict_attempts in total,
      then surfaced as ConflictError.
    - OperationalError / StaleDataError (locks, deadlocks, optimistic
      version clashes): rollback and retry with exponential backoff.
    - Any other store failure: logged, surfaced as a generic InternalError.
    """
    failures = 0
    conflicts = 0
    while True:
        try:
            result = func()
            db.session.commit()
            return result
        except ServiceError:
            db.session.rollback()
            raise
        except IntegrityError as exc:
            db.session.rollback()
            conflicts += 1
            if conflicts >= conflict_attempts:
                current_app.logger.warning("%s conflicted with a concurrent change", operation)
                raise ConflictError(f"{operation} conflicted with a concurrent change") from exc
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            failures += 1
            if failures >= attempts:
                current_app.logger.exception("%s failed after %d attempts", operation, attempts)
                raise InternalError() from exc
            time.sleep(backoff_base * (2 ** (failures - 1)))
        except SQLAlchemyError as exc:
            db.session.rollback()
            current_app.logger.exception("%s failed", operation)
            raise InternalError() from exc
