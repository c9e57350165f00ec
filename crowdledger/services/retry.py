"""Bounded retries for store connectivity failures."""
from __future__ import annotations

import functools
import logging
from typing import Callable, ParamSpec, TypeVar

from sqlalchemy.exc import DisconnectionError, OperationalError
from sqlalchemy.orm import Session
from tenacity import RetryCallState, Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from crowdledger.config import get_settings
from crowdledger.core.errors import ConnectivityError

logger = logging.getLogger(__name__)

P = ParamSpec("P")
R = TypeVar("R")

TRANSIENT_ERRORS = (OperationalError, DisconnectionError)


def _retry_logger(operation: str | None) -> Callable[[RetryCallState], None]:
    def _log(state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        logger.warning(
            "Store operation failed, retrying",
            extra={"operation": operation, "attempt": state.attempt_number, "error": str(exc)},
        )

    return _log


def retrying(operation: str | None = None) -> Retrying:
    """Return a tenacity controller configured from the settings."""

    settings = get_settings()
    return Retrying(
        stop=stop_after_attempt(settings.DB_RETRY_ATTEMPTS),
        wait=wait_exponential(multiplier=settings.DB_RETRY_BACKOFF_SECONDS, max=5),
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        before_sleep=_retry_logger(operation),
        reraise=True,
    )


def retry_on_disconnect(func: Callable[P, R]) -> Callable[P, R]:
    """Retry a unit of work whose first argument is the session.

    The session is rolled back before each retry so that every attempt starts
    from a clean transaction. Once the attempts are exhausted the failure is
    surfaced as :class:`ConnectivityError`.
    """

    @functools.wraps(func)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        db: Session = args[0]  # type: ignore[assignment]
        try:
            for attempt in retrying(func.__name__):
                with attempt:
                    try:
                        return func(*args, **kwargs)
                    except TRANSIENT_ERRORS:
                        db.rollback()
                        raise
        except TRANSIENT_ERRORS as exc:
            logger.error("Store unreachable, giving up", extra={"operation": func.__name__})
            raise ConnectivityError("The ledger store is currently unreachable.") from exc
        raise AssertionError("unreachable")  # pragma: no cover

    return wrapper


__all__ = ["TRANSIENT_ERRORS", "retry_on_disconnect", "retrying"]
