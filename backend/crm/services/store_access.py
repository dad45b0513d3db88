# backend/crm/services/store_access.py
"""
Store access policy.

Every public store operation runs inside `store_call`, which:
- Bounds each attempt with a timeout
- Retries transient failures (timeouts, dropped connections) with exponential backoff
- Raises StoreUnavailable once the retry budget is spent

Client errors and unique-key violations are never retried here.
"""

import asyncio
import logging
from dataclasses import dataclass
from functools import wraps

from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from crm.exceptions import StoreUnavailable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StorePolicy:
    """Timeout and retry budget applied to each store call."""
    timeout_seconds: float = 5.0
    max_attempts: int = 3
    backoff_seconds: float = 0.2
    max_backoff_seconds: float = 2.0

    @classmethod
    def from_settings(cls, settings) -> "StorePolicy":
        return cls(
            timeout_seconds=settings.STORE_TIMEOUT_SECONDS,
            max_attempts=max(1, settings.STORE_RETRY_ATTEMPTS),
            backoff_seconds=settings.STORE_RETRY_BACKOFF_SECONDS,
        )


def is_transient(exc: BaseException) -> bool:
    """True for failures worth retrying against the store."""
    if isinstance(exc, IntegrityError):
        return False
    if isinstance(exc, (asyncio.TimeoutError, OperationalError, InterfaceError, ConnectionError)):
        return True
    return isinstance(exc, DBAPIError) and exc.connection_invalidated


def store_call(operation: str):
    """
    Decorate an async store method with the owner's `policy`.

    Usage:
        class ContactStore:
            @store_call("upsert_contact")
            async def upsert_contact(self, ...):
                ...
    """
    def decorator(func):
        @wraps(func)
        async def wrapper(self, *args, **kwargs):
            policy: StorePolicy = self.policy
            retrying = AsyncRetrying(
                stop=stop_after_attempt(policy.max_attempts),
                wait=wait_exponential(multiplier=policy.backoff_seconds, max=policy.max_backoff_seconds),
                retry=retry_if_exception(is_transient),
                before_sleep=before_sleep_log(logger, logging.WARNING),
                reraise=True,
            )
            try:
                async for attempt in retrying:
                    with attempt:
                        return await asyncio.wait_for(
                            func(self, *args, **kwargs),
                            timeout=policy.timeout_seconds
                        )
            except Exception as e:
                if not is_transient(e):
                    raise
                logger.error(f"Store operation {operation} exhausted {policy.max_attempts} attempt(s): {e!r}")
                raise StoreUnavailable(operation, policy.max_attempts, e) from e

        return wrapper
    return decorator
