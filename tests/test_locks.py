from __future__ import annotations

import asyncio
import unittest

from mini_claw.locks import ConversationLockTable


class ConversationLockTableTests(unittest.IsolatedAsyncioTestCase):
    async def test_same_key_is_granted_in_arrival_order_without_overlap(self) -> None:
        table = ConversationLockTable()
        timeline: list[str] = []

        async def worker(name: str) -> None:
            async with table.hold(42):
                timeline.append(f"enter {name}")
                await asyncio.sleep(0.01)
                timeline.append(f"exit {name}")

        await asyncio.gather(worker("a"), worker("b"), worker("c"))

        self.assertEqual(
            timeline,
            ["enter a", "exit a", "enter b", "exit b", "enter c", "exit c"],
        )
        self.assertFalse(table.locked(42))

    async def test_different_keys_do_not_block_each_other(self) -> None:
        table = ConversationLockTable()
        held = await table.acquire(1)

        other = await asyncio.wait_for(table.acquire(2), timeout=0.5)

        self.assertTrue(table.locked(1))
        self.assertTrue(table.locked(2))
        held.release()
        other.release()
        self.assertFalse(table.locked(1))
        self.assertFalse(table.locked(2))

    async def test_second_acquire_waits_for_release(self) -> None:
        table = ConversationLockTable()
        first = await table.acquire("chat")
        waiter = asyncio.create_task(table.acquire("chat"))

        await asyncio.sleep(0.02)
        self.assertFalse(waiter.done())

        first.release()
        second = await asyncio.wait_for(waiter, timeout=0.5)
        self.assertTrue(table.locked("chat"))
        second.release()
        self.assertFalse(table.locked("chat"))

    async def test_release_is_idempotent(self) -> None:
        table = ConversationLockTable()
        handle = await table.acquire(7)
        follower = asyncio.create_task(table.acquire(7))
        await asyncio.sleep(0)

        handle.release()
        handle.release()
        second = await asyncio.wait_for(follower, timeout=0.5)

        self.assertTrue(handle.released)
        self.assertTrue(table.locked(7))
        handle.release()
        self.assertTrue(table.locked(7))
        second.release()
        self.assertFalse(table.locked(7))

    async def test_hold_releases_when_guarded_operation_raises(self) -> None:
        table = ConversationLockTable()

        with self.assertRaises(RuntimeError):
            async with table.hold(3):
                raise RuntimeError("boom")

        self.assertFalse(table.locked(3))
        handle = await asyncio.wait_for(table.acquire(3), timeout=0.5)
        handle.release()

    async def test_cancelled_waiter_passes_the_turn_along(self) -> None:
        table = ConversationLockTable()
        first = await table.acquire(9)
        cancelled = asyncio.create_task(table.acquire(9))
        third = asyncio.create_task(table.acquire(9))
        await asyncio.sleep(0.01)

        cancelled.cancel()
        with self.assertRaises(asyncio.CancelledError):
            await cancelled
        self.assertFalse(third.done())

        first.release()
        handle = await asyncio.wait_for(third, timeout=0.5)
        handle.release()
        self.assertFalse(table.locked(9))

    async def test_reset_wakes_waiters_and_clears_entries(self) -> None:
        table = ConversationLockTable()
        await table.acquire(5)
        waiter = asyncio.create_task(table.acquire(5))
        await asyncio.sleep(0)

        table.reset()
        handle = await asyncio.wait_for(waiter, timeout=0.5)

        self.assertFalse(table.locked(5))
        handle.release()
