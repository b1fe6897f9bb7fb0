"""Deadline/progress controller

Execution contexts never time out on their own. Callers that want a deadline
wrap their work in a `ProgressController`, which aborts every operation raced
through it once the deadline passes or `abort()` is called.
"""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, List, Optional

from framectl.core.scope import LongStandingScope

logger = logging.getLogger("framectl.progress")

DEFAULT_TIMEOUT = 30.0


class ProgressError(Exception):
    """Base error for progress controllers"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ProgressTimeoutError(ProgressError):
    """The controller deadline passed"""

    def __init__(self, timeout: float):
        super().__init__(f"Timeout {int(round(timeout * 1000))}ms exceeded.")
        self.timeout = timeout


class ProgressAbortedError(ProgressError):
    """The controller was aborted explicitly"""

    def __init__(self, message: str = "Operation was aborted"):
        super().__init__(message)


class ProgressController:
    """Runs one task under an optional deadline

    Args:
        timeout: deadline in seconds, or None for no deadline
        parent: enclosing controller; aborting the parent aborts this one
    """

    def __init__(self, timeout: Optional[float] = None, parent: Optional["ProgressController"] = None):
        self.timeout = timeout
        self._parent = parent
        self._scope = LongStandingScope()
        self._state = "before"
        self._cleanups: List[Callable[[], Any]] = []
        self._logs: List[str] = []

    @property
    def state(self) -> str:
        return self._state

    @property
    def logs(self) -> List[str]:
        return list(self._logs)

    def log(self, message: str) -> None:
        self._logs.append(message)
        if self._parent is not None:
            self._parent.log(message)
        else:
            logger.debug(message)

    def cleanup_when_aborted(self, cleanup: Callable[[], Any]) -> None:
        """Register a cleanup that runs only if the task is aborted"""
        if self._state == "aborted":
            self._schedule_cleanup(cleanup)
        else:
            self._cleanups.append(cleanup)

    def scopes(self) -> List[LongStandingScope]:
        """This controller's scope followed by its ancestors'"""
        scopes = [self._scope]
        parent = self._parent
        while parent is not None:
            scopes.append(parent._scope)
            parent = parent._parent
        return scopes

    async def race(self, awaitable: Awaitable[Any]) -> Any:
        return await LongStandingScope.race_multiple(self.scopes(), awaitable)

    async def race_with_cleanup(self, awaitable: Awaitable[Any], cleanup: Callable[[Any], Any]) -> Any:
        """Race `awaitable`; if it completes after an abort, pass its result to `cleanup`"""
        task = asyncio.ensure_future(awaitable)

        def on_done(finished: asyncio.Future) -> None:
            if finished.cancelled() or finished.exception() is not None:
                return
            if self._scope.is_closed():
                self._schedule_cleanup(lambda: cleanup(finished.result()))

        task.add_done_callback(on_done)
        return await self.race(asyncio.shield(task))

    async def wait(self, seconds: float) -> None:
        await self.race(asyncio.sleep(seconds))

    def abort(self, error: Optional[BaseException] = None) -> None:
        self._scope.close(error or ProgressAbortedError())

    async def run(self, task: Callable[["ProgressController"], Awaitable[Any]]) -> Any:
        """Run `task` once under this controller

        Raises:
            RuntimeError: if run() was already called
            ProgressTimeoutError: if the deadline passed first
        """
        if self._state != "before":
            raise RuntimeError("ProgressController.run() can only be called once")
        self._state = "running"

        timer = None
        if self.timeout is not None:
            timer = asyncio.get_running_loop().call_later(
                self.timeout, lambda: self._scope.close(ProgressTimeoutError(self.timeout))
            )
        try:
            result = await self.race(task(self))
            self._state = "finished"
            return result
        except BaseException as e:
            self._state = "aborted"
            self._scope.close(e)
            await self._run_cleanups()
            raise
        finally:
            if timer is not None:
                timer.cancel()

    async def _run_cleanups(self) -> None:
        cleanups, self._cleanups = self._cleanups, []
        for cleanup in cleanups:
            try:
                await _call(cleanup)
            except Exception:
                logger.exception("Progress cleanup failed")

    def _schedule_cleanup(self, cleanup: Callable[[], Any]) -> None:
        result = cleanup()
        if inspect.isawaitable(result):
            asyncio.ensure_future(result)


async def _call(fn: Callable[..., Any], *args: Any) -> Any:
    result = fn(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


def is_abort_error(error: object) -> bool:
    return isinstance(error, (ProgressTimeoutError, ProgressAbortedError))


async def execute_with_progress(
    fn: Callable[[ProgressController], Awaitable[Any]],
    timeout: Optional[float] = None,
    progress: Optional[ProgressController] = None,
) -> Any:
    """Run `fn` with an existing progress, or under a fresh controller"""
    if progress is not None:
        return await fn(progress)
    controller = ProgressController(DEFAULT_TIMEOUT if timeout is None else timeout)
    return await controller.run(fn)
