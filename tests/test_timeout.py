"""Tests for the cancellation-aware timeout wrapper."""

import asyncio

import pytest

from realign.core.errors import ModelTimeoutError
from realign.utils.timeout import run_with_timeout


class TestRunWithTimeout:
    @pytest.mark.asyncio
    async def test_returns_result_within_deadline(self) -> None:
        async def quick() -> str:
            return "done"

        assert await run_with_timeout(quick, 1.0) == "done"

    @pytest.mark.asyncio
    async def test_deadline_raises_and_cancels(self) -> None:
        """A late operation is cancelled, never observed."""
        finished = False
        cancelled = False

        async def slow() -> str:
            nonlocal finished, cancelled
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled = True
                raise
            finished = True
            return "late"

        with pytest.raises(ModelTimeoutError) as exc_info:
            await run_with_timeout(slow, 0.01)

        assert exc_info.value.timeout_seconds == 0.01
        assert cancelled is True
        assert finished is False

    @pytest.mark.asyncio
    async def test_operation_errors_propagate(self) -> None:
        async def broken() -> None:
            raise ValueError("bad input")

        with pytest.raises(ValueError, match="bad input"):
            await run_with_timeout(broken, 1.0)

    @pytest.mark.asyncio
    async def test_operation_timeout_error_is_not_the_deadline(self) -> None:
        """A TimeoutError raised by the operation itself passes through unchanged."""

        async def own_timeout() -> None:
            raise TimeoutError("upstream timed out")

        with pytest.raises(TimeoutError, match="upstream") as exc_info:
            await run_with_timeout(own_timeout, 5.0)
        assert not isinstance(exc_info.value, ModelTimeoutError)

    @pytest.mark.asyncio
    async def test_operation_started_inside_call(self) -> None:
        calls = 0

        async def counted() -> int:
            nonlocal calls
            calls += 1
            return calls

        assert await run_with_timeout(counted, 1.0) == 1
        assert await run_with_timeout(counted, 1.0) == 2
