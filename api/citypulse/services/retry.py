import asyncio
from typing import Awaitable, Callable, TypeVar

import structlog

log = structlog.get_logger(__name__)

T = TypeVar("T")


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    *,
    retry_on: tuple[type[BaseException], ...],
    max_retries: int,
    base_delay: float,
    operation_name: str,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run operation, retrying only the listed transient errors.

    Delays grow as base_delay * 2**attempt (1s, 2s, 4s... with the default
    base). Anything not in retry_on propagates immediately. After
    max_retries retries the last transient error is re-raised.
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except retry_on as exc:
            if attempt >= max_retries:
                log.error(
                    "retries_exhausted",
                    operation=operation_name,
                    attempts=attempt + 1,
                    error=type(exc).__name__,
                )
                raise
            delay = base_delay * (2 ** attempt)
            attempt += 1
            log.warning(
                "transient_failure_retry",
                operation=operation_name,
                attempt=attempt,
                max_retries=max_retries,
                delay_seconds=delay,
                error=type(exc).__name__,
            )
            await sleep(delay)
