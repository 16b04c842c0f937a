from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Iterable, TypeVar

T = TypeVar("T")
R = TypeVar("R")


async def map_limit(
    items: Iterable[T],
    concurrency: int,
    fn: Callable[[T], Awaitable[R]],
) -> list[R]:
    """
    Apply `fn` to every item with at most `concurrency` calls in flight.

    A fixed pool of workers shares one cursor; each worker claims the next
    unclaimed index until the list is exhausted. Results keep input order
    no matter which call finishes first. `fn` is expected to handle its own
    failures: an exception propagates out of map_limit once the remaining
    workers have drained.
    """
    seq = list(items)
    out: list[R] = [None] * len(seq)  # type: ignore[list-item]
    cursor = 0

    async def worker() -> None:
        nonlocal cursor
        while True:
            i = cursor
            cursor += 1
            if i >= len(seq):
                return
            out[i] = await fn(seq[i])

    results = await asyncio.gather(
        *(worker() for _ in range(max(1, concurrency))),
        return_exceptions=True,
    )
    for r in results:
        if isinstance(r, BaseException):
            raise r
    return out
