"""Database utility functions and decorators."""

from functools import wraps
import logging
import time

from sqlalchemy.exc import DisconnectionError, OperationalError

logger = logging.getLogger(__name__)

CONNECTION_ERRORS = (
    "server closed the connection unexpectedly",
    "connection was closed",
    "connection is closed",
    "lost connection",
    "connection reset by peer",
    "broken pipe",
    "connection timed out",
    "could not connect to server",
)


def retry_db_operation(max_retries=3, backoff_seconds=1):
    """
    Decorator to retry read-only database operations on connection failures.

    Only dropped or stale connections are retried, with exponential backoff
    and a connection pool refresh between attempts. Anything else, including
    lock contention, is raised immediately. Never wrap a function that writes:
    a retried write may apply twice.

    Args:
        max_retries: Maximum number of retry attempts (default: 3)
        backoff_seconds: Initial backoff time in seconds, doubles with each retry
    """

    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            from hpapi import db

            backoff = backoff_seconds

            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except (OperationalError, DisconnectionError) as e:
                    error_msg = str(e).lower()
                    is_connection_error = any(
                        err in error_msg for err in CONNECTION_ERRORS
                    )

                    if not is_connection_error or attempt == max_retries:
                        raise

                    logger.warning(
                        f"[DB]: Connection error on attempt {attempt + 1}/"
                        f"{max_retries + 1}: {e}. Retrying in {backoff} seconds..."
                    )

                    db.session.rollback()
                    db.engine.dispose()

                    time.sleep(backoff)
                    backoff *= 2

        return wrapper

    return decorator
