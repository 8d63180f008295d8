"""Bounded retry of ledger calls, one fresh attempt at a time.

Each attempt calls ``operation`` again, which builds and signs a new
transaction. A pending transaction is never resent. The pause between attempts
is fixed; there is no backoff.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import structlog
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_fixed

from tradefin.core.errors import InsufficientFunds, LedgerError, LedgerPending, UserCancelled
from tradefin.modules.ledger.classify import classify_ledger_error

logger = structlog.get_logger()

T = TypeVar("T")

# Retrying these cannot change the outcome, or would duplicate a broadcast transaction
TERMINAL_ERRORS: tuple[type[LedgerError], ...] = (InsufficientFunds, UserCancelled, LedgerPending)


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, LedgerError) and not isinstance(exc, TERMINAL_ERRORS)


class FreshAttemptRetry:
    def __init__(
        self,
        attempts: int = 3,
        delay: float = 2.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if attempts < 1:
            raise ValueError("attempts must be >= 1")
        self.attempts = attempts
        self.delay = delay
        self._sleep = sleep
        self.attempts_made = 0
        self.errors: list[LedgerError] = []

    async def run(self, operation: Callable[[], Awaitable[T]], *, op: str, **context: Any) -> T:
        """Run ``operation`` until it succeeds or the budget is spent.

        Raises the last classified LedgerError on exhaustion, or the first
        terminal one immediately.
        """

        async def attempt() -> T:
            self.attempts_made += 1
            try:
                return await operation()
            except Exception as exc:
                error = classify_ledger_error(exc)
                self.errors.append(error)
                logger.warning(
                    "ledger.attempt_failed",
                    op=op,
                    attempt=self.attempts_made,
                    max_attempts=self.attempts,
                    error_type=error.error,
                    reason=error.reason,
                    **context,
                )
                if error is exc:
                    raise
                raise error from exc

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.attempts),
            wait=wait_fixed(self.delay),
            retry=retry_if_exception(_is_retryable),
            sleep=self._sleep,
            reraise=True,
        )
        result = await retrying(attempt)
        if self.attempts_made > 1:
            logger.info("ledger.attempt_recovered", op=op, attempt=self.attempts_made, **context)
        return result
