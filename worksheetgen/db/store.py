"""
Store access wrapper.

Maps transient SQLAlchemy failures to StoreUnavailable and retries them with
bounded backoff. Integrity and programming errors are not transient and
propagate unchanged.
"""
import logging
from typing import Callable, TypeVar

from sqlalchemy.exc import DisconnectionError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from worksheetgen.core.errors import StoreUnavailable
from worksheetgen.core.retry import retry_call

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_DB_ERRORS = (OperationalError, InterfaceError, DisconnectionError, PoolTimeoutError)


def store_call(db: Session, fn: Callable[[], T], operation: str, **retry_kwargs) -> T:
    """
    Run a store operation, rolling back and retrying on transient failures.

    Args:
        db: Database session the operation uses
        fn: Zero-argument callable doing the reads/writes (and commit, for writes)
        operation: Name used in logs and in the raised error
        **retry_kwargs: Overrides passed to retry_call (attempts, sleep, ...)

    Raises:
        StoreUnavailable: when every attempt hit a transient database error
    """
    def attempt() -> T:
        try:
            return fn()
        except TRANSIENT_DB_ERRORS as e:
            db.rollback()
            logger.warning(f"Transient store error during {operation}: {e}")
            raise StoreUnavailable(f"{operation} failed: {e}") from e

    return retry_call(attempt, operation=operation, **retry_kwargs)
