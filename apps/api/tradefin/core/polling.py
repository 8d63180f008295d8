"""Cancellable polling for results that arrive asynchronously.

A poll makes at most ``attempts`` calls to ``fetch`` with a fixed ``interval``
between them. ``fetch`` returns ``None`` while the result is not ready yet.
Running out of attempts is a timeout ("unknown, check later"), not an error.

Usage:
    handle = PollHandle(lambda: client.get_status(ref), attempts=30, interval=4.0).start()
    state = await handle.wait()
    if state is PollState.SUCCEEDED:
        use(handle.value)
"""

from __future__ import annotations

import asyncio
import enum
from collections.abc import Awaitable, Callable
from typing import Any, Generic, TypeVar

import structlog

logger = structlog.get_logger()

T = TypeVar("T")


class PollState(str, enum.Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


class PollHandle(Generic[T]):
    """Owner-cancellable handle around one polling loop."""

    def __init__(
        self,
        fetch: Callable[[], Awaitable[T | None]],
        *,
        attempts: int,
        interval: float,
        name: str = "poll",
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if attempts < 1:
            raise ValueError("attempts must be >= 1")
        self._fetch = fetch
        self._attempts = attempts
        self._interval = interval
        self._sleep = sleep
        self.name = name
        self.state = PollState.PENDING
        self.value: T | None = None
        self.attempts_made = 0
        self._task: asyncio.Task | None = None

    def start(self) -> "PollHandle[T]":
        if self._task is None and self.state is PollState.PENDING:
            self._task = asyncio.create_task(self._run(), name=self.name)
        return self

    @property
    def done(self) -> bool:
        return self.state is not PollState.PENDING

    def cancel(self) -> None:
        if self.done:
            return
        self.state = PollState.CANCELLED
        if self._task is not None:
            self._task.cancel()
        logger.info("poll.cancelled", poll=self.name, attempts=self.attempts_made)

    async def wait(self) -> PollState:
        """Wait until the poll leaves PENDING. Cancelling the waiter leaves the poll running."""
        if self._task is not None:
            await asyncio.wait({self._task})
        return self.state

    async def _run(self) -> None:
        try:
            for attempt in range(1, self._attempts + 1):
                self.attempts_made = attempt
                try:
                    value = await self._fetch()
                except asyncio.CancelledError:
                    raise
                except Exception as exc:  # noqa: BLE001
                    logger.warning("poll.attempt_failed", poll=self.name, attempt=attempt, error=str(exc))
                    value = None

                if self.state is not PollState.PENDING:
                    return
                if value is not None:
                    self.value = value
                    self.state = PollState.SUCCEEDED
                    logger.info("poll.succeeded", poll=self.name, attempts=attempt)
                    return
                if attempt < self._attempts:
                    await self._sleep(self._interval)

            if self.state is PollState.PENDING:
                self.state = PollState.TIMED_OUT
                logger.warning("poll.timed_out", poll=self.name, attempts=self._attempts)
        except asyncio.CancelledError:
            self.state = PollState.CANCELLED
            raise
