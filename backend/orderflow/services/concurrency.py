# Overview: Transaction helpers: row locks, retry on lock/version conflicts, and the atomic action wrapper.

from __future__ import annotations

import functools
import logging
import time
from typing import Callable, TypeVar

from flask import current_app, has_app_context
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import EngineFailure, Result, StorageError
from ..extensions import db
from . import notification_service


logger = logging.getLogger(__name__)

T = TypeVar("T")


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def _default_attempts() -> int:
    if has_app_context():
        return int(current_app.config.get("ORDERFLOW_RETRY_ATTEMPTS", 3))
    return 3


def run_with_retry(func: Callable[[], T], *, attempts: int | None = None, backoff_base: float = 0.1) -> T:
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts).
    """
    attempts = attempts or _default_attempts()
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


def run_action(func: Callable[[], T], *, attempts: int | None = None) -> Result[T]:
    """
    Run one engine operation as a single guard-then-mutate unit.

    - func raises EngineFailure -> rollback, Result.fail(failure)
    - func returns -> commit, deliver queued notifications, Result.success(value)
    - storage failure surviving the retries -> rollback, StorageError raised
    - any other exception -> rollback, re-raised unchanged

    A retried attempt starts from a clean session, so guards are re-evaluated
    against whatever the competing writer committed.
    """
    def _op() -> Result[T]:
        notification_service.discard()
        try:
            value = func()
            db.session.flush()
        except EngineFailure as failure:
            db.session.rollback()
            notification_service.discard()
            return Result.fail(failure)
        except Exception:
            db.session.rollback()
            notification_service.discard()
            raise
        db.session.commit()
        return Result.success(value)

    try:
        result = run_with_retry(_op, attempts=attempts)
    except SQLAlchemyError as exc:
        db.session.rollback()
        notification_service.discard()
        logger.warning("Storage failure: %s", exc)
        raise StorageError(str(exc)) from exc

    if result.ok:
        notification_service.flush()
    return result


def engine_operation(func: Callable[..., T]) -> Callable[..., Result[T]]:
    """Expose a service body as a public operation: one run_action per call."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs) -> Result[T]:
        return run_action(lambda: func(*args, **kwargs))

    return wrapper
