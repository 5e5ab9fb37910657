# Overview: Serialization locks and retry discipline shared by the stock and order services.

from __future__ import annotations

import hashlib
import threading
import time
from contextlib import contextmanager

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..errors import StockBusyError


# =============================================================================
# LOCK KEYS
# =============================================================================

def lock_key(*parts) -> int:
    """
    Deterministic signed 64-bit key for a tuple of identifiers.

    Same parts always map to the same key, in every process, so it can be
    used directly as a PostgreSQL advisory lock id.
    """
    raw = ":".join(str(p) for p in parts).encode("utf-8")
    digest = hashlib.sha256(raw).digest()
    return int.from_bytes(digest[:8], "big", signed=True)


def stock_lock_key(variant_id: int, location_id: int) -> int:
    return lock_key("stock", variant_id, location_id)


def order_lock_key(order_id: int) -> int:
    return lock_key("order", order_id)


# =============================================================================
# KEYED LOCKS
# =============================================================================

_local_locks: dict[int, list] = {}  # key -> [RLock, holders and waiters]
_registry_guard = threading.Lock()


def _checkout_local_lock(key: int) -> threading.RLock:
    with _registry_guard:
        entry = _local_locks.get(key)
        if entry is None:
            entry = [threading.RLock(), 0]
            _local_locks[key] = entry
        entry[1] += 1
        return entry[0]


def _checkin_local_lock(key: int) -> None:
    with _registry_guard:
        entry = _local_locks[key]
        entry[1] -= 1
        if entry[1] == 0:
            del _local_locks[key]


def _uses_advisory_locks() -> bool:
    return db.engine.dialect.name == "postgresql"


def _acquire_advisory(keys: list[int], timeout: float) -> None:
    # lock_timeout applies to advisory lock waits; SET LOCAL scopes it to this transaction
    db.session.execute(text(f"SET LOCAL lock_timeout = '{int(timeout * 1000)}ms'"))
    for key in keys:
        db.session.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": key})


@contextmanager
def keyed_lock(*keys: int, timeout: float | None = None):
    """
    Hold mutual exclusion on every key for the duration of the block.

    Keys are acquired in sorted order so callers that need several cells
    (multi-line orders, bundles) cannot deadlock against each other.

    PostgreSQL: transaction-scoped advisory locks; they are released by the
    commit or rollback that ends the block.
    Other engines: in-process re-entrant mutexes; released when the block exits.

    Callers must commit INSIDE the block so the lock covers the commit. Any
    exception rolls the session back before the locks are released.

    Raises StockBusyError if a lock cannot be acquired within `timeout`
    seconds (default STOCK_LOCK_TIMEOUT_SECONDS).
    """
    ordered = sorted(set(keys))
    if timeout is None:
        timeout = float(current_app.config.get("STOCK_LOCK_TIMEOUT_SECONDS", 5))

    acquired: list[tuple[int, threading.RLock]] = []
    try:
        if _uses_advisory_locks():
            try:
                _acquire_advisory(ordered, timeout)
            except OperationalError as exc:
                db.session.rollback()
                current_app.logger.info("Advisory lock wait expired for keys %s", ordered)
                raise StockBusyError("Stock is busy, try again") from exc
        else:
            for key in ordered:
                lock = _checkout_local_lock(key)
                if not lock.acquire(timeout=timeout):
                    _checkin_local_lock(key)
                    current_app.logger.info("Lock wait expired for key %s", key)
                    raise StockBusyError("Stock is busy, try again")
                acquired.append((key, lock))
        yield
    except Exception:
        db.session.rollback()
        raise
    finally:
        for key, lock in reversed(acquired):
            lock.release()
            _checkin_local_lock(key)


# =============================================================================
# ROW LOCKS AND RETRIES
# =============================================================================

def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    Rows already in the session are refreshed from the database so a value
    read before the lock was taken is never reused.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.populate_existing().with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, "database is locked") and
    StaleDataError. Domain errors (LedgerError) are never retried.
    """
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
