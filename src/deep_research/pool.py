"""
Bounded-parallelism worker pool.

Runs items through an async operation with at most `concurrency` in flight.
As soon as one finishes the next queued item starts. A failing item is logged
and recorded as None so it never stalls or aborts the others.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Iterable, List, Optional, TypeVar

from deep_research.cancel import CancelToken, guarded
from deep_research.errors import OperationCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


async def run_pool(
    items: Iterable[T],
    concurrency: int,
    operation: Callable[[T], Awaitable[R]],
    cancel: Optional[CancelToken] = None,
    label: str = "pool",
) -> List[Optional[R]]:
    """
    Run `operation` over `items` with bounded concurrency.

    Results come back in completion order, not input order. Items that raised
    contribute None. Once `cancel` fires no further items are started and the
    in-flight ones are aborted; results already collected are returned.
    """
    if concurrency < 1:
        raise ValueError("concurrency must be >= 1")

    pending = list(items)
    results: List[Optional[R]] = []
    if not pending:
        return results

    queue = iter(enumerate(pending))

    async def worker() -> None:
        for index, item in queue:
            if cancel is not None and cancel.cancelled:
                return
            try:
                result = await guarded(operation(item), cancel)
            except OperationCancelled:
                return
            except Exception as e:
                logger.warning(f"{label}: item {index} failed: {e!r}")
                result = None
            results.append(result)

    workers = min(concurrency, len(pending))
    await asyncio.gather(*(worker() for _ in range(workers)))
    return results
