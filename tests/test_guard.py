"""Tests for the per-team ConcurrencyGuard."""

import asyncio

import pytest

from guildhall.governance import CommandTimeout, ConcurrencyGuard


class TestConcurrencyGuard:
    """Tests for slot serialization, ordering and cleanup."""

    @pytest.mark.asyncio
    async def test_same_team_is_serialized(self):
        guard = ConcurrencyGuard()
        active = 0
        peak = 0

        async def work():
            nonlocal active, peak
            async with guard.slot("t1"):
                active += 1
                peak = max(peak, active)
                await asyncio.sleep(0.01)
                active -= 1

        await asyncio.gather(*(work() for _ in range(5)))

        assert peak == 1

    @pytest.mark.asyncio
    async def test_fifo_order(self):
        guard = ConcurrencyGuard()
        order = []

        async def work(n):
            async with guard.slot("t1"):
                order.append(n)
                await asyncio.sleep(0)

        async with guard.slot("t1"):
            tasks = [asyncio.create_task(work(n)) for n in range(4)]
            await asyncio.sleep(0.01)
            assert guard.waiting("t1") == 5

        await asyncio.gather(*tasks)
        assert order == [0, 1, 2, 3]

    @pytest.mark.asyncio
    async def test_different_teams_run_in_parallel(self):
        guard = ConcurrencyGuard()
        entered = asyncio.Event()

        async def hold_t1():
            async with guard.slot("t1"):
                await entered.wait()

        holder = asyncio.create_task(hold_t1())
        await asyncio.sleep(0)

        async with guard.slot("t2"):
            assert guard.is_busy("t1")
            entered.set()

        await holder

    @pytest.mark.asyncio
    async def test_timeout(self):
        guard = ConcurrencyGuard(default_timeout=0.01)

        async with guard.slot("t1"):
            with pytest.raises(CommandTimeout) as exc:
                async with guard.slot("t1"):
                    pytest.fail("slot should not have been acquired")

        assert exc.value.team_id == "t1"
        assert exc.value.retryable

    @pytest.mark.asyncio
    async def test_slot_released_on_error(self):
        guard = ConcurrencyGuard()

        with pytest.raises(RuntimeError):
            async with guard.slot("t1"):
                raise RuntimeError("boom")

        assert not guard.is_busy("t1")
        async with guard.slot("t1", timeout=0.01):
            pass

    @pytest.mark.asyncio
    async def test_idle_slots_are_dropped(self):
        guard = ConcurrencyGuard()

        async with guard.slot("t1"):
            assert guard.active_slots() == ["t1"]

        assert guard.active_slots() == []
        assert guard.waiting("t1") == 0
