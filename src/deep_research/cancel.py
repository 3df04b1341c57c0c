"""
Cancellation signal passed into every externally-facing entry point.

Setting the token stops new work from starting and aborts any awaitable
currently guarded with `race()`. Work that already finished is left alone.
"""

import asyncio
from typing import Awaitable, Optional, TypeVar

from deep_research.errors import OperationCancelled

T = TypeVar("T")


class CancelToken:
    """A one-shot cancellation flag backed by an asyncio.Event."""

    def __init__(self):
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled()

    async def race(self, awaitable: Awaitable[T]) -> T:
        """
        Await `awaitable` unless the token fires first.
        On cancellation the pending work is cancelled and OperationCancelled raised.
        """
        work = asyncio.ensure_future(awaitable)
        if self.cancelled:
            work.cancel()
            raise OperationCancelled()
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            waiter.cancel()

        if work in done:
            return work.result()

        work.cancel()
        # drain so the cancelled task's own error is not reported as unretrieved
        await asyncio.gather(work, return_exceptions=True)
        raise OperationCancelled()


async def guarded(awaitable: Awaitable[T], cancel: Optional[CancelToken]) -> T:
    """Race against `cancel` when one was supplied, otherwise just await."""
    if cancel is None:
        return await awaitable
    return await cancel.race(awaitable)
