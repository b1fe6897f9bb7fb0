"""Navigation/Frame Tracker

Turns the host's unordered, possibly duplicated lifecycle notifications
into per-tab frame trees and higher-level signals.

## Event handling

```
host event ──► listener (sync) ──► dedup check ──► per-tab queue (asyncio.Lock)
                                                        │
                        ┌───────────────────────────────┘
                        ▼
   committed, main frame:  commit main ─► detach children ─► get_all_frames ─► attach parent-first
   committed, subframe:    get_frame ─► attach ─► commit
   before-navigate:        pending document          ─► on_navigation_requested
   error-occurred:         abort pending navigation  ─► on_navigation_aborted
   history / fragment:     same-document url update  ─► on_same_document_navigated
   dom-content-loaded:     lifecycle                 ─► on_dom_content_loaded
   completed:              lifecycle                 ─► on_loaded
```

Committed notifications carrying a document id are deduplicated on
`tabId:frameId:documentId` before anything else happens. A commit without a
document id cannot be keyed and is always applied.

Every commit destroys the execution contexts of the affected frame and
closes the transfer ports bound to it. Removing a tab purges its page, its
ports and its dedup keys.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

from framectl.config import ControlConfig
from framectl.core.events import DisposableStore, Emitter
from framectl.core.progress import ProgressController, execute_with_progress
from framectl.core.protocol_error import ProtocolError, is_session_closed_error
from framectl.execution.context import ExecutionContext
from framectl.host import (
    FrameInfo,
    HostSurface,
    NavigationDetails,
    TabActivation,
    TabInfo,
    World,
)
from framectl.navigation.frame import DocumentInfo, Frame, LifecycleEvent, NavigationEvent
from framectl.navigation.page import Page
from framectl.transfer.port import TransferPortController

logger = logging.getLogger("framectl.tracker")

MAIN_FRAME_COMMIT_REASON = "Main frame committed new document"
SUBFRAME_COMMIT_REASON = "Subframe committed new document"


@dataclass
class CommitEvent:
    """Fired after a cross-document commit has been applied"""
    page: Page
    frame: Frame
    details: NavigationDetails
    reason: str


def sort_frames_by_hierarchy(frames: List[FrameInfo]) -> List[FrameInfo]:
    """Order a frame snapshot so every parent precedes its children

    Roots come first, then their descendants depth-first, siblings keeping
    their snapshot order. Frames whose parent is not in the snapshot are
    left out.
    """
    by_parent: Dict[Optional[int], List[FrameInfo]] = {}
    ids = {info.frame_id for info in frames}
    for info in frames:
        by_parent.setdefault(info.parent_id, []).append(info)

    ordered: List[FrameInfo] = []
    visited: Set[int] = set()
    stack = list(reversed(by_parent.get(None, [])))
    while stack:
        info = stack.pop()
        if info.frame_id in visited:
            continue
        visited.add(info.frame_id)
        ordered.append(info)
        stack.extend(reversed(by_parent.get(info.frame_id, [])))

    orphans = [info.frame_id for info in frames if info.frame_id not in visited]
    if orphans:
        missing = sorted({info.parent_id for info in frames if info.frame_id in orphans and info.parent_id not in ids})
        logger.debug("Skipping frames %s: parents %s are not in the snapshot", orphans, missing)
    return ordered


class NavigationTracker:
    """Frame trees and navigation signals for every tab of one window

    Use `NavigationTracker.create()` to build a tracker that already knows
    the existing tabs and frames.

    Args:
        host: the host surface to observe
        config: shared configuration
        window_id: restrict the initial enumeration to one window
    """

    def __init__(self, host: HostSurface, config: Optional[ControlConfig] = None, window_id: Optional[int] = None):
        self._host = host
        self.config = config or ControlConfig.default()
        self.window_id = window_id
        self.port_controller = TransferPortController(host, self.config.chunk_size)
        self.active_tab_id: Optional[int] = None
        self.handler_errors: List[BaseException] = []

        self._pages: Dict[int, Page] = {}
        self._page_subscriptions: Dict[int, DisposableStore] = {}
        self._processed_documents: Dict[int, Set[str]] = {}
        self._removed_tabs: Set[int] = set()
        self._tab_locks: Dict[int, asyncio.Lock] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._disposed = False

        self.on_committed: Emitter[CommitEvent] = Emitter("committed")
        self.on_loaded: Emitter[NavigationDetails] = Emitter("loaded")
        self.on_dom_content_loaded: Emitter[NavigationDetails] = Emitter("dom-content-loaded")
        self.on_same_document_navigated: Emitter[NavigationDetails] = Emitter("same-document-navigated")
        self.on_navigation_requested: Emitter[NavigationDetails] = Emitter("navigation-requested")
        self.on_navigation_aborted: Emitter[NavigationDetails] = Emitter("navigation-aborted")
        self.on_page_created: Emitter[Page] = Emitter("page-created")
        self.on_page_closed: Emitter[Page] = Emitter("page-closed")

        self._store = DisposableStore()
        self._store.add(host.on_tab_created(self._on_tab_created))
        self._store.add(host.on_tab_removed(self._on_tab_removed))
        self._store.add(host.on_tab_activated(self._on_tab_activated))
        self._store.add(host.on_before_navigate(self._on_before_navigate))
        self._store.add(host.on_committed(self._on_committed))
        self._store.add(host.on_dom_content_loaded(self._on_dom_content_loaded))
        self._store.add(host.on_completed(self._on_completed))
        self._store.add(host.on_history_state_updated(self._on_same_document))
        self._store.add(host.on_reference_fragment_updated(self._on_same_document))
        self._store.add(host.on_error_occurred(self._on_error_occurred))

    @classmethod
    async def create(
        cls,
        host: HostSurface,
        window_id: Optional[int] = None,
        config: Optional[ControlConfig] = None,
    ) -> "NavigationTracker":
        tracker = cls(host, config, window_id)
        await tracker.initialize()
        return tracker

    async def initialize(self) -> None:
        """Enumerate existing tabs and attach their frames parent-first"""
        tabs = await self._query(self._host.query_tabs(self.window_id), "query_tabs")
        for tab in tabs or []:
            page = self._ensure_page(tab.tab_id, tab.window_id)
            if tab.active:
                self.active_tab_id = tab.tab_id
            frames = await self._query(self._host.get_all_frames(tab.tab_id), "get_all_frames")
            if frames is None or page.is_closed():
                continue
            for info in sort_frames_by_hierarchy(frames):
                frame = page.frame_manager.frame_attached(info.frame_id, info.parent_id, info.url)
                frame._on_new_document(DocumentInfo(info.document_id, info.url))
        logger.debug("Tracker initialized with %d tab(s)", len(self._pages))

    # =========================================================================
    # Lookup
    # =========================================================================

    def pages(self) -> List[Page]:
        return list(self._pages.values())

    def get_page(self, tab_id: int) -> Optional[Page]:
        return self._pages.get(tab_id)

    def get_current_page(self) -> Optional[Page]:
        if self.active_tab_id is None:
            return None
        return self._pages.get(self.active_tab_id)

    def frame(self, tab_id: int, frame_id: int) -> Optional[Frame]:
        page = self._pages.get(tab_id)
        return page.frame(frame_id) if page is not None else None

    def context(self, tab_id: int, frame_id: int = 0, world: World = World.ISOLATED) -> Optional[ExecutionContext]:
        frame = self.frame(tab_id, frame_id)
        if frame is None or frame.is_detached():
            return None
        return frame.context(world)

    def has_processed_document(self, tab_id: int, frame_id: int, document_id: str) -> bool:
        return _document_key(tab_id, frame_id, document_id) in self._processed_documents.get(tab_id, ())

    # =========================================================================
    # Scheduling
    # =========================================================================

    def _schedule(self, tab_id: int, handler: Callable[[], Awaitable[None]], label: str) -> None:
        if self._disposed:
            return
        lock = self._tab_locks.setdefault(tab_id, asyncio.Lock())

        async def run() -> None:
            async with lock:
                if tab_id in self._removed_tabs:
                    return
                await handler()

        task = asyncio.ensure_future(run())
        self._tasks.add(task)
        task.add_done_callback(lambda done: self._on_task_done(done, tab_id, label))

    def _on_task_done(self, task: asyncio.Task, tab_id: int, label: str) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self.handler_errors.append(error)
            logger.error("Handling %s for tab %s failed: %s", label, tab_id, error, exc_info=error)

    async def settle(self) -> None:
        """Wait until every scheduled event handler has finished"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _query(self, awaitable: Awaitable[Any], method: str) -> Any:
        """Await a host query; target-gone failures are logged and yield None"""
        try:
            return await awaitable
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = ProtocolError.from_exception(e, method)
            if is_session_closed_error(error):
                logger.debug("Host query %s skipped: %s", method, error)
            else:
                logger.warning("Host query %s failed: %s", method, error)
            return None

    def _ensure_page(self, tab_id: int, window_id: Optional[int] = None) -> Page:
        page = self._pages.get(tab_id)
        if page is not None:
            return page
        self._removed_tabs.discard(tab_id)
        page = Page(self._host, tab_id, self.config, self.port_controller, window_id)
        subscriptions = DisposableStore()
        subscriptions.add(page.on_frame_detached(
            lambda frame: self.port_controller.close_ports_for_frame(frame.tab_id, frame.frame_id)
        ))
        self._page_subscriptions[tab_id] = subscriptions
        self._pages[tab_id] = page
        self.on_page_created.fire(page)
        return page

    # =========================================================================
    # Commits
    # =========================================================================

    def _consume_document(self, details: NavigationDetails) -> bool:
        """Record the commit's document key; False if it was already seen"""
        if details.document_id is None:
            logger.debug(
                "Commit without document id for tab %s frame %s; applying without dedup",
                details.tab_id, details.frame_id,
            )
            return True
        key = _document_key(details.tab_id, details.frame_id, details.document_id)
        seen = self._processed_documents.setdefault(details.tab_id, set())
        if key in seen:
            return False
        seen.add(key)
        return True

    def _on_committed(self, details: NavigationDetails) -> None:
        if not self._consume_document(details):
            logger.debug("Duplicate commit for %s ignored", _document_key(details.tab_id, details.frame_id, details.document_id))
            return
        self._schedule(details.tab_id, lambda: self._handle_commit(details), "commit")

    async def _handle_commit(self, details: NavigationDetails) -> None:
        page = self._ensure_page(details.tab_id)
        if details.is_main_frame:
            await self._handle_main_frame_commit(page, details)
        else:
            await self._handle_subframe_commit(page, details)

    async def _handle_main_frame_commit(self, page: Page, details: NavigationDetails) -> None:
        manager = page.frame_manager
        manager.frame_attached(details.frame_id, None, details.url)
        self.port_controller.close_ports_for_frame(page.tab_id, details.frame_id)
        frame = manager.frame_committed_new_document(
            details.frame_id, details.url, details.document_id, MAIN_FRAME_COMMIT_REASON
        )

        frames = await self._query(self._host.get_all_frames(page.tab_id), "get_all_frames")
        if page.is_closed() or frame.is_detached():
            return
        for info in sort_frames_by_hierarchy(frames or []):
            if info.parent_id is None:
                continue
            manager.frame_attached(info.frame_id, info.parent_id, info.url)

        self.on_committed.fire(CommitEvent(page, frame, details, MAIN_FRAME_COMMIT_REASON))

    async def _handle_subframe_commit(self, page: Page, details: NavigationDetails) -> None:
        info = await self._query(self._host.get_frame(page.tab_id, details.frame_id), "get_frame")
        if info is None or page.is_closed():
            return
        if info.parent_id is None:
            logger.warning("Subframe %s of tab %s reported without a parent", details.frame_id, page.tab_id)
            return
        manager = page.frame_manager
        manager.frame_attached(details.frame_id, info.parent_id, details.url or info.url)
        self.port_controller.close_ports_for_frame(page.tab_id, details.frame_id)
        frame = manager.frame_committed_new_document(
            details.frame_id, details.url or info.url, details.document_id, SUBFRAME_COMMIT_REASON
        )
        self.on_committed.fire(CommitEvent(page, frame, details, SUBFRAME_COMMIT_REASON))

    # =========================================================================
    # Other navigation events
    # =========================================================================

    def _on_before_navigate(self, details: NavigationDetails) -> None:
        async def handle() -> None:
            page = self._pages.get(details.tab_id)
            if page is not None:
                page.frame_manager.frame_requested_navigation(details.frame_id, details.url, details.document_id)
            self.on_navigation_requested.fire(details)

        self._schedule(details.tab_id, handle, "before-navigate")

    def _on_error_occurred(self, details: NavigationDetails) -> None:
        async def handle() -> None:
            page = self._pages.get(details.tab_id)
            if page is not None:
                page.frame_manager.frame_aborted_navigation(
                    details.frame_id, details.error or "Navigation failed", details.document_id
                )
            self.on_navigation_aborted.fire(details)

        self._schedule(details.tab_id, handle, "error-occurred")

    def _on_same_document(self, details: NavigationDetails) -> None:
        async def handle() -> None:
            page = self._pages.get(details.tab_id)
            if page is None or page.frame_manager.frame_committed_same_document(details.frame_id, details.url) is None:
                return
            self.on_same_document_navigated.fire(details)

        self._schedule(details.tab_id, handle, "same-document navigation")

    def _on_dom_content_loaded(self, details: NavigationDetails) -> None:
        self._schedule(
            details.tab_id,
            lambda: self._handle_lifecycle(details, LifecycleEvent.DOM_CONTENT_LOADED, self.on_dom_content_loaded),
            "dom-content-loaded",
        )

    def _on_completed(self, details: NavigationDetails) -> None:
        self._schedule(
            details.tab_id,
            lambda: self._handle_lifecycle(details, LifecycleEvent.LOAD, self.on_loaded),
            "completed",
        )

    async def _handle_lifecycle(self, details: NavigationDetails, event: LifecycleEvent, signal: Emitter) -> None:
        page = self._pages.get(details.tab_id)
        if page is None or page.frame_manager.frame_lifecycle_event(details.frame_id, event) is None:
            return
        signal.fire(details)

    # =========================================================================
    # Tabs
    # =========================================================================

    def _on_tab_created(self, tab: TabInfo) -> None:
        self._ensure_page(tab.tab_id, tab.window_id)
        if tab.active:
            self.active_tab_id = tab.tab_id

    def _on_tab_activated(self, activation: TabActivation) -> None:
        self._ensure_page(activation.tab_id, activation.window_id)
        self.active_tab_id = activation.tab_id

    def _on_tab_removed(self, tab_id: int) -> None:
        self._removed_tabs.add(tab_id)
        self._processed_documents.pop(tab_id, None)
        self._tab_locks.pop(tab_id, None)
        self.port_controller.close_ports_for_tab(tab_id)
        subscriptions = self._page_subscriptions.pop(tab_id, None)
        if subscriptions is not None:
            subscriptions.dispose()
        page = self._pages.pop(tab_id, None)
        if self.active_tab_id == tab_id:
            self.active_tab_id = None
        if page is None:
            return
        page.dispose()
        logger.debug("Tab %s removed", tab_id)
        self.on_page_closed.fire(page)

    # =========================================================================
    # Waiting
    # =========================================================================

    async def wait_for_navigation(
        self,
        tab_id: int,
        frame_id: int = 0,
        to_url: Union[None, str, Callable[[str], bool]] = None,
        wait_until: LifecycleEvent = LifecycleEvent.LOAD,
        timeout: Optional[float] = None,
        progress: Optional[ProgressController] = None,
    ) -> NavigationEvent:
        """Wait for the next cross-document navigation of a frame

        Args:
            tab_id: tab to watch
            frame_id: frame to watch, the main frame by default
            to_url: exact URL or predicate the committed URL must match
            wait_until: lifecycle state to reach after the commit
            timeout: deadline in seconds, defaults to the configured timeout

        Raises:
            ProgressTimeoutError: if the deadline passes
            NavigationAbortedError: if the navigation is aborted
        """
        page = self._pages.get(tab_id)
        if page is None:
            page = self._ensure_page(tab_id)

        def matches(url: str) -> bool:
            if to_url is None:
                return True
            if callable(to_url):
                return bool(to_url(url))
            return url == to_url

        async def task(progress: ProgressController) -> NavigationEvent:
            if frame_id == 0:
                frame = await page.wait_for_main_frame(progress)
            else:
                frame = page.frame(frame_id)
                if frame is None:
                    raise ProtocolError(message=f"Frame {frame_id} is not attached", method="wait_for_navigation")
            progress.log(f"waiting for navigation of frame {frame.frame_id}")
            return await frame.wait_for_navigation(progress, wait_until, requires_new_document=True, url_matches=matches)

        if progress is not None:
            return await task(progress)
        return await execute_with_progress(task, timeout or self.config.default_timeout)

    # =========================================================================
    # Disposal
    # =========================================================================

    def dispose(self) -> None:
        """Release every host subscription and tear down all pages"""
        if self._disposed:
            return
        self._disposed = True
        self._store.dispose()
        for task in list(self._tasks):
            task.cancel()
        for tab_id in list(self._pages):
            self._on_tab_removed(tab_id)
        self.port_controller.dispose()
        for emitter in (
            self.on_committed,
            self.on_loaded,
            self.on_dom_content_loaded,
            self.on_same_document_navigated,
            self.on_navigation_requested,
            self.on_navigation_aborted,
            self.on_page_created,
            self.on_page_closed,
        ):
            emitter.dispose()


def _document_key(tab_id: int, frame_id: int, document_id: Optional[str]) -> str:
    return f"{tab_id}:{frame_id}:{document_id}"
