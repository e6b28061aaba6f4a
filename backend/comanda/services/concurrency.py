# Overview: Service-layer operations for concurrency; transaction boundaries, row locks and retry on contention.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ApiError, RetryableError
from ..extensions import db


# Fragments of driver messages that mean "try again", across engines
_TRANSIENT_MARKERS = (
    "deadlock",
    "lock wait timeout",
    "database is locked",
    "database table is locked",
    "could not serialize",
    "serialization failure",
)

# SQLSTATE codes: serialization_failure, deadlock_detected, lock_not_available
_TRANSIENT_SQLSTATES = {"40001", "40P01", "55P03"}

# Unique keys that only collide when two number allocations raced each other
_SEQUENCE_COLLISION_MARKERS = (
    "uq_order_sequences_tenant_date",
    "uq_orders_tenant_date_number",
    "order_sequences.tenant_id",
    "orders.order_number",
    "uq_purchase_orders_tenant_number",
    "purchase_orders.purchase_number",
)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; writers there are serialized
    by begin_immediate() instead.
    """
    return query.with_for_update()


def begin_immediate() -> None:
    """
    On SQLite, take the write lock up front so concurrent writers queue on
    the busy timeout instead of failing with a lock upgrade deadlock.
    No-op on other engines or when a transaction is already open.
    """
    if db.session.get_bind().dialect.name != "sqlite":
        return
    raw = db.session.connection().connection.dbapi_connection
    if not raw.in_transaction:
        db.session.execute(text("BEGIN IMMEDIATE"))


def is_transient_error(exc: Exception) -> bool:
    """True for contention errors where re-running the whole unit of work can succeed."""
    if isinstance(exc, StaleDataError):
        return True

    orig = getattr(exc, "orig", None)
    message = str(orig if orig is not None else exc).lower()

    if isinstance(exc, IntegrityError):
        return any(marker in message for marker in _SEQUENCE_COLLISION_MARKERS)

    if isinstance(exc, OperationalError):
        sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
        if sqlstate in _TRANSIENT_SQLSTATES:
            return True
        # MySQL: 1213 deadlock, 1205 lock wait timeout
        args = getattr(orig, "args", ())
        if args and args[0] in (1205, 1213):
            return True
        return any(marker in message for marker in _TRANSIENT_MARKERS)

    return False


def run_in_transaction(func, *, immediate: bool = False, attempts: int | None = None, backoff: float | None = None):
    """
    Run func as one unit of work and commit it.

    WHY: Every financial operation is all-or-nothing. Any exception rolls
    the whole unit back. Transient contention (deadlock, lock timeout,
    busy database, optimistic version conflict, sequence race) re-runs the
    whole unit with linear backoff; when attempts run out the caller gets
    RetryableError and decides whether to resubmit.
    """
    config = current_app.config
    if attempts is None:
        attempts = config.get("TRANSACTION_RETRY_ATTEMPTS", 3)
    if backoff is None:
        backoff = config.get("TRANSACTION_RETRY_BACKOFF", 0.05)

    for attempt in range(1, attempts + 1):
        try:
            if immediate:
                begin_immediate()
            result = func()
            db.session.commit()
            return result
        except ApiError:
            db.session.rollback()
            raise
        except (OperationalError, IntegrityError, StaleDataError) as exc:
            db.session.rollback()
            if not is_transient_error(exc):
                raise
            if attempt >= attempts:
                current_app.logger.error(
                    "Transaction failed after %s attempts due to contention: %s", attempts, exc
                )
                raise RetryableError(
                    "The operation could not be completed due to concurrent activity. Please retry.",
                    details={"attempts": attempts},
                ) from exc
            current_app.logger.warning(
                "Transient database contention (attempt %s/%s), retrying: %s", attempt, attempts, exc
            )
            time.sleep(backoff * attempt)
        except Exception:
            db.session.rollback()
            raise
