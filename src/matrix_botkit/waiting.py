"""Deadline-bounded waiting helpers.

The sync loop materializes state (room membership, decrypted events) in the
background. These helpers let a single task wait for such state without
holding up other event handlers.
"""

from __future__ import annotations

import inspect
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import TypeVar, Union

import anyio

T = TypeVar("T")

DEFAULT_TIMEOUT = 3.0
DEFAULT_POLL_INTERVAL = 0.1

Predicate = Callable[[T], Union[bool, Awaitable[bool]]]


async def first_with_timeout(
    source: AsyncIterator[T],
    predicate: Predicate[T],
    timeout: float = DEFAULT_TIMEOUT,
) -> T | None:
    """Return the first value of ``source`` matching ``predicate``.

    Args:
        source: Lazily produced values, possibly unbounded.
        predicate: Sync or async check applied to each value.
        timeout: Deadline in seconds.

    Returns:
        The first matching value, or None if the deadline elapsed first.
        The source is closed in both cases.
    """
    result: T | None = None
    with anyio.move_on_after(timeout):
        try:
            async for value in source:
                matched = predicate(value)
                if inspect.isawaitable(matched):
                    matched = await matched
                if matched:
                    result = value
                    break
        finally:
            aclose = getattr(source, "aclose", None)
            if aclose is not None:
                with anyio.CancelScope(shield=True):
                    await aclose()
    return result


async def poll(
    fetch: Callable[[], Union[T, Awaitable[T]]],
    interval: float = DEFAULT_POLL_INTERVAL,
) -> AsyncIterator[T]:
    """Yield the current value of ``fetch()`` every ``interval`` seconds."""
    while True:
        value = fetch()
        if inspect.isawaitable(value):
            value = await value
        yield value
        await anyio.sleep(interval)


class ReleaseGate:
    """One-slot gate that starts closed.

    The first ``release()`` unblocks exactly one pending (or future)
    ``wait()``; any later release is a no-op and other waiters stay blocked.
    """

    def __init__(self) -> None:
        self._released = False
        self._taken = False
        self._event: anyio.Event | None = None

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> bool:
        """Open the gate. Returns True only for the call that opened it."""
        if self._released:
            return False
        self._released = True
        if self._event is not None:
            self._event.set()
        return True

    async def wait(self) -> None:
        if not self._released:
            if self._event is None:
                self._event = anyio.Event()
            await self._event.wait()
        if self._taken:
            await anyio.sleep_forever()
        self._taken = True
