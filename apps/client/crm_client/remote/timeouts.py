from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from crm_client.remote.errors import RemoteTimeoutError


T = TypeVar("T")


async def await_with_timeout(operation: Awaitable[T], timeout: float | None) -> T:
    """Await one remote call; a missing, zero or negative timeout means no limit."""
    if not timeout or timeout <= 0:
        return await operation
    try:
        return await asyncio.wait_for(operation, timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise RemoteTimeoutError(timeout) from exc
