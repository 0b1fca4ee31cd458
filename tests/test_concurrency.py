import asyncio

import pytest

from cardsync.services.sync import ConcurrencyController, SlotTimeout


def test_fetch_slots_bound_parallel_work():
    async def scenario():
        controller = ConcurrencyController(max_fetch=3)
        active = 0
        seen_max = 0

        async def work():
            nonlocal active, seen_max
            async with controller.fetch_slot():
                active += 1
                seen_max = max(seen_max, active)
                await asyncio.sleep(0.01)
                active -= 1

        await asyncio.gather(*(work() for _ in range(12)))
        return controller, seen_max

    controller, seen_max = asyncio.run(scenario())

    assert seen_max == 3
    assert controller.peak_fetch == 3
    assert controller.fetch_in_flight == 0


def test_write_slots_default_to_twice_the_fetch_slots():
    controller = ConcurrencyController(max_fetch=4)

    assert controller.max_write == 8
    assert controller.snapshot()["max_write"] == 8


def test_full_write_pool_holds_back_new_fetches():
    async def scenario():
        controller = ConcurrencyController(max_fetch=2, max_write=1, acquire_timeout=0.05)
        await controller.acquire_write()
        with pytest.raises(SlotTimeout):
            await controller.acquire_fetch()
        await controller.release_write()
        await controller.acquire_fetch()
        return controller

    controller = asyncio.run(scenario())

    assert controller.fetch_in_flight == 1
    assert controller.write_in_flight == 0


def test_released_slot_wakes_a_waiter():
    async def scenario():
        controller = ConcurrencyController(max_fetch=1, acquire_timeout=1.0)
        order = []

        async def holder():
            async with controller.fetch_slot():
                order.append("first")
                await asyncio.sleep(0.02)

        async def waiter():
            await asyncio.sleep(0.005)
            async with controller.fetch_slot():
                order.append("second")

        await asyncio.gather(holder(), waiter())
        return order

    assert asyncio.run(scenario()) == ["first", "second"]


def test_slot_is_released_when_the_body_raises():
    async def scenario():
        controller = ConcurrencyController(max_fetch=1)
        with pytest.raises(RuntimeError):
            async with controller.write_slot():
                raise RuntimeError("boom")
        return controller

    assert asyncio.run(scenario()).write_in_flight == 0


def test_invalid_limits_are_rejected():
    with pytest.raises(ValueError):
        ConcurrencyController(max_fetch=0)
    with pytest.raises(ValueError):
        ConcurrencyController(max_fetch=1, max_write=0)
