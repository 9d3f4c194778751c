"""
Database connection retry utilities for handling intermittent connection issues.
Read-only reminder endpoints wrap their queries with ``with_db_retry``.
"""
import time
import functools
from flask import current_app, jsonify
from sqlalchemy.exc import OperationalError, InterfaceError, TimeoutError as SQLTimeoutError

from apps.reminders import db


# Exceptions that indicate a connection issue (should retry)
RETRIABLE_EXCEPTIONS = (
    OperationalError,
    InterfaceError,
    SQLTimeoutError,
    ConnectionError,
    TimeoutError,
)


def _reset_session():
    db.session.rollback()
    db.session.remove()


def with_db_retry(max_retries=3, initial_delay=1.0, backoff_factor=2.0):
    """
    Decorator that retries database operations on connection failures.

    Args:
        max_retries: Maximum number of retry attempts (default: 3)
        initial_delay: Initial delay between retries in seconds (default: 1.0)
        backoff_factor: Multiply delay by this factor after each retry (default: 2.0)

    Returns a 503 JSON response once every attempt has failed.
    """
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            last_exception = None
            delay = initial_delay

            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except RETRIABLE_EXCEPTIONS as e:
                    last_exception = e
                    _reset_session()

                    if attempt < max_retries:
                        current_app.logger.warning(
                            "Database connection failed (attempt %s/%s): %s. Retrying in %.1fs...",
                            attempt + 1,
                            max_retries + 1,
                            str(e)[:100],
                            delay,
                        )
                        time.sleep(delay)
                        delay *= backoff_factor
                    else:
                        current_app.logger.error(
                            "Database connection failed after %s attempts: %s", max_retries + 1, e
                        )

            return jsonify({
                'error': 'Database connection temporarily unavailable',
                'message': 'Please try again in a few moments',
                'details': str(last_exception)[:200] if current_app.debug else None
            }), 503

        return wrapper
    return decorator
