"""Tests for the deadline/progress controller"""

import asyncio

import pytest

from framectl.core.progress import (
    ProgressAbortedError,
    ProgressController,
    ProgressTimeoutError,
    execute_with_progress,
    is_abort_error,
)


# TEST020: Test run returns the task result and finishes the controller
@pytest.mark.asyncio
async def test_020_run_returns_result():
    controller = ProgressController(timeout=1.0)

    async def task(progress):
        progress.log("doing work")
        return "done"

    assert await controller.run(task) == "done"
    assert controller.state == "finished"
    assert controller.logs == ["doing work"]


# TEST021: Test the deadline aborts a hanging task with a timeout error naming milliseconds
@pytest.mark.asyncio
async def test_021_deadline_times_out():
    controller = ProgressController(timeout=0.01)

    async def task(progress):
        await progress.race(asyncio.Event().wait())

    with pytest.raises(ProgressTimeoutError, match=r"Timeout 10ms exceeded\."):
        await controller.run(task)
    assert controller.state == "aborted"


# TEST022: Test run can only be called once
@pytest.mark.asyncio
async def test_022_run_once():
    controller = ProgressController()

    async def task(progress):
        return 1

    await controller.run(task)
    with pytest.raises(RuntimeError):
        await controller.run(task)


# TEST023: Test cleanups registered with cleanup_when_aborted run on abort but not on success
@pytest.mark.asyncio
async def test_023_cleanups_only_on_abort():
    cleaned = []

    async def ok(progress):
        progress.cleanup_when_aborted(lambda: cleaned.append("ok"))
        return True

    await ProgressController().run(ok)
    assert cleaned == []

    controller = ProgressController()

    async def aborted(progress):
        progress.cleanup_when_aborted(lambda: cleaned.append("aborted"))
        progress.abort()
        await progress.wait(10)

    with pytest.raises(ProgressAbortedError):
        await controller.run(aborted)
    assert cleaned == ["aborted"]


# TEST024: Test aborting a parent controller aborts races on the child
@pytest.mark.asyncio
async def test_024_parent_abort_propagates():
    parent = ProgressController()
    child = ProgressController(parent=parent)
    pending = asyncio.ensure_future(child.race(asyncio.Event().wait()))
    await asyncio.sleep(0)
    parent.abort(ProgressAbortedError("parent gone"))
    with pytest.raises(ProgressAbortedError, match="parent gone"):
        await pending
    child.log("child line")
    assert parent.logs == ["child line"]


# TEST025: Test execute_with_progress reuses an existing progress and creates one otherwise
@pytest.mark.asyncio
async def test_025_execute_with_progress():
    existing = ProgressController()

    async def fn(progress):
        return progress

    assert await execute_with_progress(fn, progress=existing) is existing
    created = await execute_with_progress(fn, timeout=1.0)
    assert isinstance(created, ProgressController)
    assert created.timeout == 1.0


# TEST026: Test is_abort_error recognises timeouts and aborts only
def test_026_is_abort_error():
    assert is_abort_error(ProgressTimeoutError(1.0))
    assert is_abort_error(ProgressAbortedError())
    assert not is_abort_error(RuntimeError("x"))
