"""Per-tab frame tree

The FrameManager is only mutated by the navigation tracker's event
handlers. A frame is never attached before its parent: attaching a child
whose parent is unknown raises `FrameAttachError`, and bulk snapshots are
sorted parent-first before attaching.
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Dict, List, Optional

from framectl.core.scope import LongStandingScope
from framectl.navigation.frame import (
    DocumentInfo,
    Frame,
    LifecycleEvent,
    NavigationAbortedError,
    NavigationEvent,
)

if TYPE_CHECKING:
    from framectl.core.progress import ProgressController
    from framectl.navigation.page import Page

logger = logging.getLogger("framectl.tracker")


class FrameManagerError(Exception):
    """Base error for frame tree operations"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class FrameAttachError(FrameManagerError):
    """A child frame was attached before its parent"""

    def __init__(self, frame_id: int, parent_id: int):
        super().__init__(f"Parent frame {parent_id} not found when attaching child frame {frame_id}")
        self.frame_id = frame_id
        self.parent_id = parent_id


class UnknownFrameError(FrameManagerError):
    def __init__(self, frame_id: int):
        super().__init__(f"Frame {frame_id} is not attached")
        self.frame_id = frame_id


class FrameManager:
    """Frame tree of one tab"""

    def __init__(self, page: "Page"):
        self._page = page
        self._frames: Dict[int, Frame] = {}
        self._main_frame: Optional[Frame] = None
        self._main_frame_waiters: List[asyncio.Future] = []

    def frame(self, frame_id: int) -> Optional[Frame]:
        return self._frames.get(frame_id)

    def frames(self) -> List[Frame]:
        return list(self._frames.values())

    def main_frame(self) -> Optional[Frame]:
        return self._main_frame

    def __len__(self) -> int:
        return len(self._frames)

    # =========================================================================
    # Attachment
    # =========================================================================

    def frame_attached(self, frame_id: int, parent_frame_id: Optional[int], url: str = "") -> Frame:
        """Insert or update a frame

        A parent id of None (or a negative id) attaches a main frame. A main
        frame with a different id replaces, and detaches, the previous one.

        Args:
            frame_id: frame identity within the tab
            parent_frame_id: parent identity, None for the main frame
            url: current URL; an empty string leaves an existing URL alone

        Returns:
            The attached frame

        Raises:
            FrameAttachError: if the parent is not attached
        """
        if parent_frame_id is not None and parent_frame_id < 0:
            parent_frame_id = None

        existing = self._frames.get(frame_id)
        if existing is not None:
            if url:
                existing._set_url(url)
            return existing

        if parent_frame_id is None:
            previous = self._main_frame
            if previous is not None:
                logger.debug("Main frame of tab %s replaced: %s -> %s", self._page.tab_id, previous.frame_id, frame_id)
                self._remove_frame_recursively(previous)
            frame = Frame(self._page, frame_id, None)
            self._main_frame = frame
        else:
            parent = self._frames.get(parent_frame_id)
            if parent is None:
                raise FrameAttachError(frame_id, parent_frame_id)
            frame = Frame(self._page, frame_id, parent)

        self._frames[frame_id] = frame
        if url:
            frame._set_url(url)
        self._page.on_frame_attached.fire(frame)

        if frame is self._main_frame:
            waiters, self._main_frame_waiters = self._main_frame_waiters, []
            for waiter in waiters:
                if not waiter.done():
                    waiter.set_result(frame)
        return frame

    async def wait_for_main_frame(self, progress: Optional["ProgressController"] = None) -> Frame:
        """Return the main frame, waiting for it to attach if needed"""
        if self._main_frame is not None:
            return self._main_frame
        waiter = asyncio.get_running_loop().create_future()
        self._main_frame_waiters.append(waiter)
        scopes = [self._page.open_scope]
        if progress is not None:
            scopes.extend(progress.scopes())
        try:
            return await LongStandingScope.race_multiple(scopes, waiter)
        finally:
            if waiter in self._main_frame_waiters:
                self._main_frame_waiters.remove(waiter)

    # =========================================================================
    # Detachment
    # =========================================================================

    def clear_frames(self) -> None:
        """Detach everything below the main frame"""
        if self._main_frame is None:
            for frame in list(self._frames.values()):
                if frame.parent_frame() is None:
                    self._remove_frame_recursively(frame)
            return
        self.remove_child_frames_recursively(self._main_frame)

    def remove_child_frames_recursively(self, frame: Frame) -> None:
        for child in frame.child_frames():
            self._remove_frame_recursively(child)

    def frame_detached(self, frame_id: int) -> bool:
        frame = self._frames.get(frame_id)
        if frame is None:
            return False
        self._remove_frame_recursively(frame)
        return True

    def detach_all(self) -> None:
        if self._main_frame is not None:
            self._remove_frame_recursively(self._main_frame)
        for frame in list(self._frames.values()):
            self._remove_frame_recursively(frame)

    def _remove_frame_recursively(self, frame: Frame) -> None:
        for child in frame.child_frames():
            self._remove_frame_recursively(child)
        frame._on_detached()
        if self._frames.get(frame.frame_id) is frame:
            del self._frames[frame.frame_id]
        if frame is self._main_frame:
            self._main_frame = None
        self._page.on_frame_detached.fire(frame)

    # =========================================================================
    # Navigation
    # =========================================================================

    def _require(self, frame_id: int) -> Frame:
        frame = self._frames.get(frame_id)
        if frame is None:
            raise UnknownFrameError(frame_id)
        return frame

    def frame_requested_navigation(self, frame_id: int, url: str, document_id: Optional[str] = None) -> Optional[Frame]:
        frame = self._frames.get(frame_id)
        if frame is None:
            return None
        frame._set_pending_document(DocumentInfo(document_id, url))
        return frame

    def frame_committed_new_document(
        self,
        frame_id: int,
        url: str,
        document_id: Optional[str],
        reason: str = "new document committed",
    ) -> Frame:
        """Apply a cross-document navigation commit

        Children of the old document are detached, lifecycle state is reset
        and every execution context of the frame is destroyed.

        Raises:
            UnknownFrameError: if the frame is not attached
        """
        frame = self._require(frame_id)
        self.remove_child_frames_recursively(frame)
        frame._set_url(url)
        document = DocumentInfo(document_id, url)
        frame._on_new_document(document)
        frame._on_clear_lifecycle()
        frame.on_new_document_committed(reason)
        frame._on_lifecycle_event(LifecycleEvent.COMMIT)
        frame.on_internal_navigation.fire(NavigationEvent(frame_id, url, new_document=document))
        self._page.on_frame_navigated_to_new_document.fire(frame)
        return frame

    def frame_committed_same_document(self, frame_id: int, url: str) -> Optional[Frame]:
        """Hash change or history API navigation; contexts survive"""
        frame = self._frames.get(frame_id)
        if frame is None:
            return None
        frame._set_url(url)
        frame.on_internal_navigation.fire(NavigationEvent(frame_id, url))
        return frame

    def frame_aborted_navigation(
        self,
        frame_id: int,
        error_text: str,
        document_id: Optional[str] = None,
    ) -> Optional[Frame]:
        frame = self._frames.get(frame_id)
        if frame is None:
            return None
        pending = frame.pending_document()
        if pending is not None and document_id is not None and pending.document_id not in (None, document_id):
            return frame
        frame._set_pending_document(None)
        frame._restore_status()
        event = NavigationEvent(
            frame_id,
            frame.url,
            new_document=DocumentInfo(document_id, pending.url if pending else frame.url),
            error=NavigationAbortedError(document_id, error_text),
        )
        frame.on_internal_navigation.fire(event)
        return frame

    def frame_lifecycle_event(self, frame_id: int, event: LifecycleEvent) -> Optional[Frame]:
        """Apply a lifecycle event; None when the frame is unknown or the event is a repeat"""
        frame = self._frames.get(frame_id)
        if frame is None or not frame._on_lifecycle_event(event):
            return None
        if frame is self._main_frame:
            if event is LifecycleEvent.DOM_CONTENT_LOADED:
                self._page.on_dom_content_loaded.fire(self._page)
            elif event is LifecycleEvent.LOAD:
                self._page.on_load.fire(self._page)
        return frame
