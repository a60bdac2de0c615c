"""
Tests for the per-user lock registry.
"""
import asyncio
import gc

import pytest

from app.services.locks import UserLocks


class TestUserLocks:

    def test_same_user_shares_a_lock_while_referenced(self, locks):
        first = locks.for_user("u1")

        assert locks.for_user("u1") is first
        assert locks.for_user("u2") is not first

    def test_released_locks_are_dropped(self):
        locks = UserLocks()
        for n in range(100):
            locks.for_user(f"user-{n}")
        gc.collect()

        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_lock_is_kept_while_held_and_waited_on(self, locks):
        order = []

        async def worker(name: str) -> None:
            async with locks.for_user("u1"):
                order.append(f"{name}-in")
                await asyncio.sleep(0)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))
        gc.collect()

        assert order == ["a-in", "a-out", "b-in", "b-out"]
        assert len(locks) == 0
