from __future__ import annotations

import asyncio
from typing import Awaitable, Optional, TypeVar

T = TypeVar("T")


class ContractCancelledError(Exception):
    """Raised when a cancellation token fires while a stage is in flight."""

    def __init__(self, stage: str = "", attempts: int = 0) -> None:
        super().__init__(f"Cancelled during {stage or 'pipeline'}")
        self.stage = stage
        self.attempts = attempts


class CancellationToken:
    """Single-use cancellation signal shared by every stage of one run."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


async def race_with_token(awaitable: Awaitable[T], token: Optional[CancellationToken]) -> T:
    """Await ``awaitable`` unless ``token`` fires first.

    The losing task is cancelled. Raises ContractCancelledError when the token wins.
    """
    if token is None:
        return await awaitable
    if token.cancelled:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise ContractCancelledError()

    work = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(token.wait())
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
    try:
        await work
    except (asyncio.CancelledError, Exception):
        pass
    raise ContractCancelledError()
