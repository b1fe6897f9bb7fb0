"""Tests for the single-fire cancellation scope"""

import asyncio

import pytest

from framectl.core.scope import LongStandingScope


class Closed(Exception):
    pass


# TEST010: Test race returns the awaitable's result while the scope stays open
@pytest.mark.asyncio
async def test_010_race_returns_result():
    scope = LongStandingScope()

    async def work():
        await asyncio.sleep(0)
        return 42

    assert await scope.race(work()) == 42
    assert not scope.is_closed()


# TEST011: Test closing the scope fails a pending race and cancels the operation
@pytest.mark.asyncio
async def test_011_close_fails_pending_race():
    scope = LongStandingScope()
    cancelled = asyncio.Event()

    async def forever():
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            cancelled.set()
            raise

    task = asyncio.ensure_future(scope.race(forever()))
    await asyncio.sleep(0)
    scope.close(Closed("destroyed"))
    with pytest.raises(Closed):
        await task
    await asyncio.sleep(0)
    assert cancelled.is_set()


# TEST012: Test racing on an already closed scope fails immediately without running the operation
@pytest.mark.asyncio
async def test_012_closed_scope_fails_immediately():
    scope = LongStandingScope()
    scope.close(Closed("gone"))
    ran = []

    async def work():
        ran.append(True)

    with pytest.raises(Closed):
        await scope.race(work())
    assert ran == []


# TEST013: Test close is single-fire: the first error wins
@pytest.mark.asyncio
async def test_013_close_is_single_fire():
    scope = LongStandingScope()
    first = Closed("first")
    scope.close(first)
    scope.close(Closed("second"))
    assert scope.close_reason is first
    assert await scope.wait_closed() is first


# TEST014: Test race_multiple fails when any of the scopes closes
@pytest.mark.asyncio
async def test_014_race_multiple():
    a, b = LongStandingScope(), LongStandingScope()
    task = asyncio.ensure_future(LongStandingScope.race_multiple([a, b], asyncio.Event().wait()))
    await asyncio.sleep(0)
    b.close(Closed("b"))
    with pytest.raises(Closed, match="b"):
        await task
    assert not a.is_closed()


# TEST015: Test a result arriving together with the close still reports the close
@pytest.mark.asyncio
async def test_015_close_wins_over_late_result():
    scope = LongStandingScope()
    future = asyncio.get_running_loop().create_future()
    task = asyncio.ensure_future(scope.race(future))
    await asyncio.sleep(0)
    future.set_result("stale")
    scope.close(Closed("destroyed"))
    with pytest.raises(Closed):
        await task
