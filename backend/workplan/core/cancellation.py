"""Cooperative cancellation for the submit/backoff cycle."""
from __future__ import annotations

import asyncio
from contextlib import suppress
from typing import Awaitable, Optional, TypeVar

from workplan.core.errors import OperationCancelledError

T = TypeVar("T")


class CancellationToken:
    """Shared flag that aborts an in-flight request or a pending backoff sleep."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled by caller") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise OperationCancelledError("Operation cancelled", {"reason": self.reason})

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the token fires first, in which case it is cancelled."""
        self.raise_if_cancelled()
        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            waiter.cancel()
            raise
        if work in done:
            waiter.cancel()
            return work.result()

        work.cancel()
        with suppress(asyncio.CancelledError):
            await work
        raise OperationCancelledError("Operation cancelled", {"reason": self.reason})

    async def sleep(self, seconds: float) -> None:
        await self.guard(asyncio.sleep(seconds))
