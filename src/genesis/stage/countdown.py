"""Stage-start countdown as a cancellable asyncio task.

Ticks once per whole second remaining until ``target`` (the Game Session's
``starts_at``), then fires the completion callback once. Cancelling the
countdown suppresses both.
"""

from __future__ import annotations

import asyncio
import inspect
import math
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any

import structlog

logger = structlog.get_logger()

TickCallback = Callable[[int], Awaitable[None] | None]
DoneCallback = Callable[[], Awaitable[None] | None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def _maybe_await(result: Any) -> None:
    if inspect.isawaitable(result):
        await result


class Countdown:
    def __init__(
        self,
        target: datetime,
        on_tick: TickCallback | None = None,
        on_done: DoneCallback | None = None,
        *,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.target = target
        self.on_tick = on_tick
        self.on_done = on_done
        self._clock = clock
        self._sleep = sleep
        self._task: asyncio.Task | None = None

    def remaining(self) -> int:
        """Whole seconds left, rounded up; 0 once the target has passed."""
        delta = (self.target - self._clock()).total_seconds()
        return max(0, math.ceil(delta))

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        if self.running:
            return self._task
        self._task = asyncio.create_task(self.run())
        return self._task

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def stop(self) -> None:
        """Cancel and wait for the task to unwind."""
        task = self._task
        self.cancel()
        if task is None or task is asyncio.current_task():
            return
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def run(self) -> None:
        while True:
            delta = (self.target - self._clock()).total_seconds()
            if delta <= 0:
                break
            whole = math.ceil(delta)
            if self.on_tick is not None:
                await _maybe_await(self.on_tick(whole))
            # Wake on the next whole-second boundary.
            await self._sleep(delta - (whole - 1))

        logger.debug("countdown_finished", target=self.target.isoformat())
        if self.on_done is not None:
            await _maybe_await(self.on_done())
