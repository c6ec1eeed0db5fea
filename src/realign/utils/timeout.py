"""Cancellation-aware timeout wrapper for network-bound operations."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from realign.core.errors import ModelTimeoutError

T = TypeVar("T")


async def run_with_timeout(
    operation: Callable[[], Awaitable[T]],
    timeout_seconds: float,
) -> T:
    """Run ``operation`` and return its result, or raise once the deadline passes.

    The operation is started inside this call and cancelled at the deadline,
    so a late result is never observed by the caller.

    Args:
        operation: Zero-argument callable producing the awaitable to run.
        timeout_seconds: Deadline for the operation, in seconds.

    Returns:
        The operation's result.

    Raises:
        ModelTimeoutError: If the deadline expired before the operation finished.
    """
    scope = asyncio.timeout(timeout_seconds)
    try:
        async with scope:
            return await operation()
    except TimeoutError as e:
        # A TimeoutError raised by the operation itself is not our deadline
        if scope.expired():
            raise ModelTimeoutError(timeout_seconds) from e
        raise
