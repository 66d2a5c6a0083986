# Overview: Row locking and retry helpers shared by the cart and order services.

from __future__ import annotations

import logging
import re
import time
from contextlib import contextmanager

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..db_router import DatabaseTarget
from ..errors import DatabaseTargetError
from ..extensions import db


logger = logging.getLogger(__name__)

# Lock waits, deadlocks and version_id mismatches on OnlineOrder
DEFAULT_RETRY_ON = (OperationalError, StaleDataError)

_STATEMENT_TABLE = re.compile(
    r'\b(?:INSERT\s+INTO|UPDATE|DELETE\s+FROM|FROM)\s+["`]?([A-Za-z_][A-Za-z0-9_]*)',
    re.IGNORECASE,
)


def statement_table(exc: SQLAlchemyError, default: str | None = None) -> str | None:
    """Table named by the failing statement, or default when the driver gave none."""
    statement = getattr(exc, "statement", None)
    if statement:
        match = _STATEMENT_TABLE.search(statement)
        if match:
            return match.group(1)
    return default


@contextmanager
def primary_write(operation: str, table: str):
    """
    Roll back and re-raise database errors as DatabaseTargetError on the primary.

    Service errors pass through untouched. Use only around work that owns the
    whole session transaction; a rollback here would discard an outer
    transaction's savepoints too.
    """
    try:
        yield
    except SQLAlchemyError as exc:
        db.session.rollback()
        failed = statement_table(exc, table)
        logger.error("%s failed on primary.%s", operation, failed, exc_info=True)
        raise DatabaseTargetError(DatabaseTarget.PRIMARY.value, operation, cause=exc, table=failed) from exc


def lock_for_update(query):
    """SELECT ... FOR UPDATE on PostgreSQL. SQLite ignores the clause."""
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1, retry_on=DEFAULT_RETRY_ON):
    """
    Call func() until it succeeds or attempts run out.

    func owns its transaction: it should query, mutate and commit. Only
    exceptions in retry_on trigger another attempt; the session is rolled
    back first and the wait doubles each time. Anything else propagates
    untouched.
    """
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except retry_on as exc:
            db.session.rollback()
            if attempt == attempts:
                raise
            delay = backoff_base * (2 ** (attempt - 1))
            logger.info("Retrying after %s (attempt %s of %s, sleeping %.2fs)",
                        type(exc).__name__, attempt, attempts, delay)
            time.sleep(delay)
