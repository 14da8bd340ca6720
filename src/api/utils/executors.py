"""Execution helpers bridging synchronous services into async contexts."""

from __future__ import annotations

from collections.abc import Callable
from functools import partial
from typing import Any, TypeVar

import anyio.to_thread
from anyio import CapacityLimiter
from fastapi import Request

T = TypeVar("T")


def conversion_limiter(max_inflight: int) -> CapacityLimiter:
    """Thread budget for blocking conversions, kept apart from the default pool.

    Twice the admission limit: the extra threads wait on the service's admission
    semaphore and turn into ``SERVICE_BUSY`` once its timeout expires.
    """

    return CapacityLimiter(max(1, max_inflight) * 2)


def get_limiter(request: Request) -> CapacityLimiter | None:
    return getattr(request.app.state, "limiter", None)


async def run_sync(
    func: Callable[..., T],
    /,
    *args: Any,
    limiter: CapacityLimiter | None = None,
    **kwargs: Any,
) -> T:
    """Execute *func* in a worker thread and return the result."""

    return await anyio.to_thread.run_sync(partial(func, *args, **kwargs), limiter=limiter)


__all__ = ["conversion_limiter", "get_limiter", "run_sync"]
