from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Hashable
from contextlib import asynccontextmanager

LOGGER = logging.getLogger("mini_claw.locks")


class LockHandle:
    """Release handle for one granted conversation lock. Releasing twice is a no-op."""

    def __init__(self, table: "ConversationLockTable", key: Hashable, signal: asyncio.Future[None]) -> None:
        self._table = table
        self._key = key
        self._signal = signal
        self._released = False

    @property
    def key(self) -> Hashable:
        return self._key

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        self._table._settle(self._key, self._signal)


class ConversationLockTable:
    """Per-conversation mutual exclusion with FIFO hand-off.

    Each key maps to the completion signal of its most recent requester. A new
    requester installs its own signal as the tail and waits for the previous
    one, so grants follow arrival order. Keys never share signals.
    """

    def __init__(self) -> None:
        self._tails: dict[Hashable, asyncio.Future[None]] = {}

    def locked(self, key: Hashable) -> bool:
        return key in self._tails

    def reset(self) -> None:
        for signal in self._tails.values():
            if not signal.done():
                signal.set_result(None)
        self._tails.clear()

    async def acquire(self, key: Hashable) -> LockHandle:
        loop = asyncio.get_running_loop()
        previous = self._tails.get(key)
        signal: asyncio.Future[None] = loop.create_future()
        self._tails[key] = signal
        if previous is not None and not previous.done():
            LOGGER.debug(
                "Waiting for conversation lock",
                extra={"chat_id": str(key), "component": "locks", "operation": "acquire", "result": "queued"},
            )
            try:
                await asyncio.shield(previous)
            except asyncio.CancelledError:
                # Keep the chain intact: pass the turn on once the predecessor finishes.
                previous.add_done_callback(lambda _done: self._settle(key, signal))
                raise
        return LockHandle(self, key, signal)

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[LockHandle]:
        handle = await self.acquire(key)
        try:
            yield handle
        finally:
            handle.release()

    def _settle(self, key: Hashable, signal: asyncio.Future[None]) -> None:
        if not signal.done():
            signal.set_result(None)
        if self._tails.get(key) is signal:
            del self._tails[key]


__all__ = ["ConversationLockTable", "LockHandle"]
