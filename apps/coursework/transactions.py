"""
Unit of work helpers on top of ``transaction.atomic``.

Django has no per-transaction isolation switch, so ``unit_of_work`` issues
``SET TRANSACTION ISOLATION LEVEL SERIALIZABLE`` itself on PostgreSQL. That
statement has to be the first one in the transaction, hence it is only sent
for outermost blocks; nested blocks inherit whatever the outer one runs at.

SQLite has no such level. Its writers are serialized by the database lock
(``transaction_mode = IMMEDIATE`` in settings), and a writer that cannot get
the lock is retried the same way as a PostgreSQL serialization failure.
"""
import logging
from contextlib import contextmanager

from django.db import DEFAULT_DB_ALIAS, OperationalError, transaction
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from .exceptions import Conflict

logger = logging.getLogger(__name__)

SERIALIZATION_FAILURE = '40001'


@contextmanager
def unit_of_work(serializable=False, using=DEFAULT_DB_ALIAS):
    connection = transaction.get_connection(using)
    outermost = not connection.in_atomic_block
    with transaction.atomic(using=using):
        if serializable and outermost and connection.vendor == 'postgresql':
            with connection.cursor() as cursor:
                cursor.execute('SET TRANSACTION ISOLATION LEVEL SERIALIZABLE')
        yield


def is_serialization_failure(exc):
    """True when the database aborted the transaction because of a concurrent writer."""
    if not isinstance(exc, OperationalError):
        return False
    cause = exc.__cause__
    code = getattr(cause, 'sqlstate', None) or getattr(cause, 'pgcode', None)
    if code == SERIALIZATION_FAILURE:
        return True
    # sqlite3: "database is locked" / "database table is locked"
    return 'is locked' in str(exc)


def run_serializable(operation, retries=3, using=DEFAULT_DB_ALIAS):
    """
    Run ``operation()`` inside a serializable unit of work.

    Aborted transactions are retried; once retries run out the caller gets a
    Conflict, since the competing transaction changed what was checked.
    """
    retrying = Retrying(
        retry=retry_if_exception(is_serialization_failure),
        stop=stop_after_attempt(retries),
        wait=wait_exponential(multiplier=0.05, max=1),
        before_sleep=before_sleep_log(logger, logging.INFO),
        reraise=True,
    )
    try:
        for attempt in retrying:
            with attempt:
                with unit_of_work(serializable=True, using=using):
                    return operation()
    except OperationalError as exc:
        if not is_serialization_failure(exc):
            raise
        logger.warning("Serializable transaction aborted %d times; giving up", retries)
        raise Conflict("Concurrent update detected; please retry") from exc
