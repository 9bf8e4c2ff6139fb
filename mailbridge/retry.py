"""Tenacity reconnect policy driven by ReconnectConfig."""

from __future__ import annotations

from collections.abc import Callable

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    wait_fixed,
)

from .config import ReconnectConfig


def reconnect_policy(
    config: ReconnectConfig,
    *,
    attempts_used: Callable[[], int],
    before_sleep: Callable[[RetryCallState], None],
    retryable_exceptions: tuple[type[BaseException], ...] = (Exception,),
) -> AsyncRetrying:
    """Return an ``AsyncRetrying`` that waits a fixed delay between tries.

    Unlike ``stop_after_attempt`` the stop condition reads an external
    counter, so the owner can reset it after every successful connection
    while the same retry loop keeps running::

        async for attempt in reconnect_policy(cfg, attempts_used=..., before_sleep=...):
            with attempt:
                await run_session()
    """

    def _exhausted(_: RetryCallState) -> bool:
        return attempts_used() >= config.max_attempts

    return AsyncRetrying(
        stop=_exhausted,
        wait=wait_fixed(config.delay_seconds),
        retry=retry_if_exception_type(retryable_exceptions),
        before_sleep=before_sleep,
        reraise=True,
    )
