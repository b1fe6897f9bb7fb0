"""Frame - one navigable document slot inside a tab

## Lifecycle

```
attached ──► navigating ──► committed ──► dom-content-loaded ──► loaded
    │                            ▲                                  │
    │                            └──────── new document ◄───────────┘
    └──────────────────────────► detached (terminal)
```

A frame owns one execution context per world. Every context is destroyed
when the frame commits a new document or detaches, and a fresh one is
created on the next `context(world)` call.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Set

from framectl.core.events import Emitter, wait_for_event
from framectl.core.protocol_error import FrameDetachedError
from framectl.core.scope import LongStandingScope
from framectl.host import World

if TYPE_CHECKING:
    from framectl.core.progress import ProgressController
    from framectl.execution.context import ExecutionContext
    from framectl.navigation.page import Page

logger = logging.getLogger("framectl.tracker")


class FrameStatus(str, Enum):
    ATTACHED = "attached"
    NAVIGATING = "navigating"
    COMMITTED = "committed"
    DOM_CONTENT_LOADED = "dom-content-loaded"
    LOADED = "loaded"
    DETACHED = "detached"


class LifecycleEvent(str, Enum):
    COMMIT = "commit"
    DOM_CONTENT_LOADED = "domcontentloaded"
    LOAD = "load"


_STATUS_FOR_EVENT = {
    LifecycleEvent.COMMIT: FrameStatus.COMMITTED,
    LifecycleEvent.DOM_CONTENT_LOADED: FrameStatus.DOM_CONTENT_LOADED,
    LifecycleEvent.LOAD: FrameStatus.LOADED,
}


class NavigationAbortedError(Exception):
    """A navigation failed before committing"""

    def __init__(self, document_id: Optional[str], message: str):
        super().__init__(message)
        self.document_id = document_id
        self.message = message


@dataclass
class DocumentInfo:
    document_id: Optional[str]
    url: str = ""


@dataclass
class NavigationEvent:
    """Fired on every committed, same-document or aborted navigation

    `new_document` is None for same-document navigations.
    """
    frame_id: int
    url: str
    new_document: Optional[DocumentInfo] = None
    error: Optional[NavigationAbortedError] = None


class Frame:
    """A frame in a page's frame tree"""

    def __init__(self, page: "Page", frame_id: int, parent: Optional["Frame"]):
        self._page = page
        self.frame_id = frame_id
        self._parent = parent
        self._children: Dict[int, "Frame"] = {}
        self._url = ""
        self._name = ""
        self._status = FrameStatus.ATTACHED
        self._lifecycle: Set[LifecycleEvent] = set()
        self._detached_scope = LongStandingScope()
        self._contexts: Dict[World, "ExecutionContext"] = {}
        self._current_document = DocumentInfo(None)
        self._pending_document: Optional[DocumentInfo] = None

        self.on_internal_navigation: Emitter[NavigationEvent] = Emitter("internal-navigation")
        self.on_add_lifecycle: Emitter[LifecycleEvent] = Emitter("add-lifecycle")
        self.on_remove_lifecycle: Emitter[LifecycleEvent] = Emitter("remove-lifecycle")

        if parent is not None:
            parent._children[frame_id] = self

    def __repr__(self) -> str:
        return f"Frame(tab={self.tab_id}, id={self.frame_id}, status={self._status.value}, url={self._url!r})"

    # =========================================================================
    # Identity and tree
    # =========================================================================

    @property
    def tab_id(self) -> int:
        return self._page.tab_id

    @property
    def page(self) -> "Page":
        return self._page

    @property
    def key(self) -> str:
        """Stable lookup key for external collaborators"""
        return f"{self.tab_id}:{self.frame_id}"

    def is_main_frame(self) -> bool:
        return self._parent is None

    def parent_frame(self) -> Optional["Frame"]:
        return self._parent

    def child_frames(self) -> List["Frame"]:
        return list(self._children.values())

    def ancestors(self) -> List["Frame"]:
        """This frame followed by its parent chain up to the root"""
        chain = []
        frame: Optional[Frame] = self
        while frame is not None:
            chain.append(frame)
            frame = frame._parent
        return chain

    def ancestor_ids(self) -> List[int]:
        return [frame.frame_id for frame in self.ancestors()]

    # =========================================================================
    # State
    # =========================================================================

    @property
    def url(self) -> str:
        return self._url

    @property
    def name(self) -> str:
        return self._name

    @property
    def status(self) -> FrameStatus:
        return self._status

    @property
    def current_document(self) -> DocumentInfo:
        return self._current_document

    def pending_document(self) -> Optional[DocumentInfo]:
        return self._pending_document

    def is_detached(self) -> bool:
        return self._detached_scope.is_closed()

    @property
    def detached_scope(self) -> LongStandingScope:
        return self._detached_scope

    def has_lifecycle(self, event: LifecycleEvent) -> bool:
        return event in self._lifecycle

    def _set_url(self, url: str) -> None:
        self._url = url

    def _set_name(self, name: str) -> None:
        self._name = name

    def _set_pending_document(self, document: Optional[DocumentInfo]) -> None:
        self._pending_document = document
        if document is not None and not self.is_detached():
            self._status = FrameStatus.NAVIGATING

    def _restore_status(self) -> None:
        status = FrameStatus.ATTACHED
        for event in (LifecycleEvent.COMMIT, LifecycleEvent.DOM_CONTENT_LOADED, LifecycleEvent.LOAD):
            if event in self._lifecycle:
                status = _STATUS_FOR_EVENT[event]
        self._status = status

    def _on_lifecycle_event(self, event: LifecycleEvent) -> bool:
        """Record a lifecycle event; False when detached or already seen"""
        if self.is_detached() or event in self._lifecycle:
            return False
        self._lifecycle.add(event)
        self._restore_status()
        self.on_add_lifecycle.fire(event)
        return True

    def _on_clear_lifecycle(self) -> None:
        removed, self._lifecycle = self._lifecycle, set()
        for event in removed:
            self.on_remove_lifecycle.fire(event)

    def _on_new_document(self, document: DocumentInfo) -> None:
        self._current_document = document
        self._pending_document = None

    def _on_detached(self) -> None:
        if self.is_detached():
            return
        self._status = FrameStatus.DETACHED
        self._detached_scope.close(FrameDetachedError(self.frame_id))
        self._destroy_contexts("Frame was detached")
        if self._parent is not None:
            self._parent._children.pop(self.frame_id, None)
        for emitter in (self.on_internal_navigation, self.on_add_lifecycle, self.on_remove_lifecycle):
            emitter.dispose()

    # =========================================================================
    # Execution contexts
    # =========================================================================

    def on_new_document_committed(self, reason: str) -> int:
        """Destroy every execution context of this frame

        Returns:
            Number of contexts destroyed
        """
        return self._destroy_contexts(reason)

    def _destroy_contexts(self, reason: str) -> int:
        contexts, self._contexts = self._contexts, {}
        for context in contexts.values():
            context.context_destroyed(reason)
        if contexts:
            logger.debug("Destroyed %d context(s) of %r: %s", len(contexts), self, reason)
        return len(contexts)

    def context(self, world: World = World.ISOLATED) -> "ExecutionContext":
        """The live execution context for `world`, created on demand

        Raises:
            FrameDetachedError: if the frame is detached
        """
        if self.is_detached():
            raise FrameDetachedError(self.frame_id)
        context = self._contexts.get(world)
        if context is None or context.is_destroyed():
            context = self._page.create_execution_context(self, world)
            self._contexts[world] = context
        return context

    def get_context(self, world: World = World.ISOLATED) -> Optional["ExecutionContext"]:
        """The existing live context for `world`, without creating one"""
        context = self._contexts.get(world)
        if context is None or context.is_destroyed():
            return None
        return context

    # =========================================================================
    # Waiting
    # =========================================================================

    async def _race(self, awaitable, progress: Optional["ProgressController"]):
        scopes = [self._detached_scope]
        if progress is not None:
            scopes.extend(progress.scopes())
        return await LongStandingScope.race_multiple(scopes, awaitable)

    async def wait_for_lifecycle(
        self,
        event: LifecycleEvent = LifecycleEvent.LOAD,
        progress: Optional["ProgressController"] = None,
    ) -> None:
        """Wait until `event` has fired for the current document

        Raises:
            FrameDetachedError: if the frame detaches first
        """
        if event in self._lifecycle:
            return
        if self.is_detached():
            raise self._detached_scope.close_reason
        waiter = wait_for_event(self.on_add_lifecycle, lambda added: added == event)
        if progress is not None:
            progress.log(f"waiting for \"{event.value}\" in frame {self.frame_id}")
        await self._race(waiter, progress)

    async def wait_for_navigation(
        self,
        progress: Optional["ProgressController"] = None,
        wait_until: LifecycleEvent = LifecycleEvent.LOAD,
        requires_new_document: bool = False,
        url_matches: Optional[Callable[[str], bool]] = None,
    ) -> NavigationEvent:
        """Wait for the next navigation of this frame

        Aborted navigations always end the wait; committed ones only when
        `url_matches` accepts their URL.

        Raises:
            NavigationAbortedError: if the navigation was aborted
            FrameDetachedError: if the frame detaches first
        """
        if self.is_detached():
            raise self._detached_scope.close_reason
        waiter = wait_for_event(
            self.on_internal_navigation,
            lambda nav: nav.error is not None or (
                (not requires_new_document or nav.new_document is not None)
                and (url_matches is None or url_matches(nav.url))
            ),
        )
        event = await self._race(waiter, progress)
        if event.error is not None:
            raise event.error
        if event.new_document is not None:
            await self.wait_for_lifecycle(wait_until, progress)
        return event
