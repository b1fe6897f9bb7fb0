"""Single-fire cancellation scope

A `LongStandingScope` is closed at most once, with an error. Any awaitable
raced against the scope either completes normally or, if the scope closes
first, fails with the close error. The losing operation is cancelled.

```
  race(op) ──┬── op finishes first ────► result
             └── scope.close(err) ─────► raise err, cancel op
```
"""

import asyncio
import inspect
from typing import Any, Awaitable, Iterable, Optional, Set


class LongStandingScope:
    """Cancellation scope that fires exactly once"""

    def __init__(self):
        self._error: Optional[BaseException] = None
        self._waiters: Set[asyncio.Future] = set()

    def close(self, error: BaseException) -> None:
        """Close the scope, failing every pending race

        Later calls are ignored; the first error wins.
        """
        if self._error is not None:
            return
        self._error = error
        waiters, self._waiters = self._waiters, set()
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(None)

    def is_closed(self) -> bool:
        return self._error is not None

    @property
    def close_reason(self) -> Optional[BaseException]:
        return self._error

    async def race(self, awaitable: Awaitable[Any]) -> Any:
        """Await `awaitable` unless the scope closes first"""
        return await LongStandingScope.race_multiple([self], awaitable)

    async def wait_closed(self) -> BaseException:
        """Wait until the scope closes and return its error"""
        if self._error is not None:
            return self._error
        waiter = asyncio.get_running_loop().create_future()
        self._waiters.add(waiter)
        try:
            await waiter
        finally:
            self._waiters.discard(waiter)
        return self._error

    @staticmethod
    async def race_multiple(scopes: Iterable["LongStandingScope"], awaitable: Awaitable[Any]) -> Any:
        """Await `awaitable` unless any of `scopes` closes first

        Raises:
            The close error of the first closed scope
        """
        scopes = [scope for scope in scopes if scope is not None]
        for scope in scopes:
            if scope._error is not None:
                _discard(awaitable)
                raise scope._error

        loop = asyncio.get_running_loop()
        task = asyncio.ensure_future(awaitable)
        watchers = []
        for scope in scopes:
            watcher = loop.create_future()
            scope._waiters.add(watcher)
            watchers.append((scope, watcher))

        try:
            await asyncio.wait([task] + [w for _, w in watchers], return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            for scope, watcher in watchers:
                scope._waiters.discard(watcher)
                if not watcher.done():
                    watcher.cancel()

        for scope in scopes:
            if scope._error is not None:
                if not task.done():
                    task.cancel()
                elif not task.cancelled():
                    # retrieve so a late failure is not reported as unhandled
                    task.exception()
                raise scope._error
        return task.result()


def _discard(awaitable: Awaitable[Any]) -> None:
    if inspect.iscoroutine(awaitable):
        awaitable.close()
    elif isinstance(awaitable, asyncio.Future):
        awaitable.cancel()
