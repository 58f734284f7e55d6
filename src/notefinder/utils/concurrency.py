"""Asyncio coordination helpers."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Generic, TypeVar

T = TypeVar("T")


class SingleFlight(Generic[T]):
    """Collapse concurrent calls into one in-flight execution.

    The first caller runs the coroutine; callers arriving while it is running
    await the same result, or see the same exception.
    """

    def __init__(self) -> None:
        self._future: asyncio.Future[T] | None = None

    @property
    def in_flight(self) -> bool:
        return self._future is not None

    async def run(self, func: Callable[[], Awaitable[T]]) -> T:
        if self._future is not None:
            return await asyncio.shield(self._future)

        future: asyncio.Future[T] = asyncio.get_running_loop().create_future()
        self._future = future
        try:
            result = await func()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as exc:
            future.set_exception(exc)
            # The first caller re-raises; waiters (if any) retrieve it too.
            future.exception()
            raise
        else:
            future.set_result(result)
            return result
        finally:
            self._future = None
