"""Event emitters and disposables

Host notifications and tracker signals are exposed as `Emitter` objects.
Subscribing returns a `Disposable`; owners collect their subscriptions in a
`DisposableStore` and release them all at once.

```python
store = DisposableStore()
store.add(host.on_committed(handle_commit))
...
store.dispose()
```
"""

import asyncio
import logging
from typing import Any, Callable, Generic, List, Optional, TypeVar

logger = logging.getLogger("framectl.events")

T = TypeVar("T")
D = TypeVar("D", bound="Disposable")


class Disposable:
    """Releasable resource"""

    def __init__(self, on_dispose: Optional[Callable[[], None]] = None):
        self._on_dispose = on_dispose
        self._disposed = False

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        if self._on_dispose is not None:
            callback, self._on_dispose = self._on_dispose, None
            callback()


class DisposableStore(Disposable):
    """Owns a set of disposables and releases them together"""

    def __init__(self):
        super().__init__()
        self._items: List[Disposable] = []

    def add(self, item: D) -> D:
        if self._disposed:
            item.dispose()
            return item
        self._items.append(item)
        return item

    def _register(self, item: D) -> D:
        return self.add(item)

    def dispose(self) -> None:
        if self._disposed:
            return
        super().dispose()
        items, self._items = self._items, []
        for item in reversed(items):
            try:
                item.dispose()
            except Exception:
                logger.exception("Error while disposing %r", item)


class Emitter(Generic[T]):
    """Synchronous event emitter

    Listeners run in subscription order when `fire` is called. A listener
    that raises is logged and does not prevent delivery to the others.
    """

    def __init__(self, name: str = "event"):
        self.name = name
        self._listeners: List[Callable[[T], Any]] = []
        self._disposed = False

    def event(self, listener: Callable[[T], Any]) -> Disposable:
        if self._disposed:
            return Disposable()
        self._listeners.append(listener)

        def remove() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

        return Disposable(remove)

    __call__ = event

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def fire(self, value: T = None) -> None:
        for listener in list(self._listeners):
            try:
                listener(value)
            except Exception:
                logger.exception("Listener for %s failed", self.name)

    def dispose(self) -> None:
        self._disposed = True
        self._listeners.clear()


def wait_for_event(
    event: Callable[[Callable[[T], Any]], Disposable],
    predicate: Optional[Callable[[T], bool]] = None,
) -> "asyncio.Future[T]":
    """Future resolved by the first value from `event` matching `predicate`

    The subscription is released as soon as the future settles.
    """
    future = asyncio.get_running_loop().create_future()

    def listener(value: T) -> None:
        if future.done():
            return
        if predicate is not None and not predicate(value):
            return
        future.set_result(value)

    subscription = event(listener)
    future.add_done_callback(lambda _: subscription.dispose())
    return future
