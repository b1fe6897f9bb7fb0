"""Host Automation Surface

The control plane only talks to the document host through this interface:

- tab enumeration with created/removed/activated notifications
- frame enumeration and navigation lifecycle notifications
- `execute(tab_id, frame_id, world, function, args)`, the remote-call primitive
- a message channel per (tab, frame), optionally carrying raw binary frames

Concrete hosts subclass `HostSurface`, implement the async query methods and
fire the emitters when the host reports something. Frame snapshots use
`-1` as the parent id of a root frame, the way hosts report it.
"""

import abc
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional, Sequence

from framectl.core.events import Emitter

MAIN_FRAME_ID = 0
NO_PARENT = -1


class World(str, Enum):
    """Isolation boundary for remote calls"""
    MAIN = "MAIN"
    ISOLATED = "ISOLATED"

    @property
    def is_privileged(self) -> bool:
        return self is World.MAIN


@dataclass
class TabInfo:
    """A tab as reported by the host"""
    tab_id: int
    window_id: Optional[int] = None
    url: str = ""
    active: bool = False
    title: str = ""


@dataclass
class FrameInfo:
    """A frame snapshot as reported by the host"""
    frame_id: int
    parent_frame_id: int = NO_PARENT
    url: str = ""
    document_id: Optional[str] = None

    @property
    def parent_id(self) -> Optional[int]:
        """Parent frame id, or None for a root frame"""
        if self.parent_frame_id is None or self.parent_frame_id < 0:
            return None
        return self.parent_frame_id

    @classmethod
    def from_dict(cls, data: dict) -> "FrameInfo":
        parent = data.get("parentFrameId", data.get("parent_frame_id", NO_PARENT))
        return cls(
            frame_id=data.get("frameId", data.get("frame_id")),
            parent_frame_id=NO_PARENT if parent is None else parent,
            url=data.get("url", ""),
            document_id=data.get("documentId", data.get("document_id")),
        )


@dataclass
class NavigationDetails:
    """Payload of every navigation lifecycle notification"""
    tab_id: int
    frame_id: int
    url: str = ""
    document_id: Optional[str] = None
    parent_frame_id: int = NO_PARENT
    error: Optional[str] = None
    timestamp: float = field(default_factory=time.time)

    @property
    def is_main_frame(self) -> bool:
        return self.frame_id == MAIN_FRAME_ID


@dataclass
class TabActivation:
    tab_id: int
    window_id: Optional[int] = None


@dataclass
class ChannelMessage:
    """A message posted by injected code, tagged with its sender"""
    tab_id: int
    frame_id: int
    payload: Any


class HostSurface(abc.ABC):
    """Abstract document host

    Emitters are subscribed by calling them with a listener and return a
    `Disposable`:

    ```python
    subscription = host.on_committed(lambda details: ...)
    subscription.dispose()
    ```
    """

    def __init__(self):
        self.on_tab_created: Emitter[TabInfo] = Emitter("tab-created")
        self.on_tab_removed: Emitter[int] = Emitter("tab-removed")
        self.on_tab_activated: Emitter[TabActivation] = Emitter("tab-activated")
        self.on_before_navigate: Emitter[NavigationDetails] = Emitter("before-navigate")
        self.on_committed: Emitter[NavigationDetails] = Emitter("committed")
        self.on_dom_content_loaded: Emitter[NavigationDetails] = Emitter("dom-content-loaded")
        self.on_completed: Emitter[NavigationDetails] = Emitter("completed")
        self.on_history_state_updated: Emitter[NavigationDetails] = Emitter("history-state-updated")
        self.on_reference_fragment_updated: Emitter[NavigationDetails] = Emitter("reference-fragment-updated")
        self.on_error_occurred: Emitter[NavigationDetails] = Emitter("error-occurred")
        self.on_message: Emitter[ChannelMessage] = Emitter("message")

    @property
    def supports_binary_messages(self) -> bool:
        """Whether the message channel carries raw bytes natively"""
        return False

    @abc.abstractmethod
    async def query_tabs(self, window_id: Optional[int] = None) -> List[TabInfo]:
        ...

    @abc.abstractmethod
    async def get_tab(self, tab_id: int) -> TabInfo:
        ...

    @abc.abstractmethod
    async def get_all_frames(self, tab_id: int) -> List[FrameInfo]:
        ...

    @abc.abstractmethod
    async def get_frame(self, tab_id: int, frame_id: int) -> Optional[FrameInfo]:
        ...

    @abc.abstractmethod
    async def execute(
        self,
        tab_id: int,
        frame_id: int,
        world: World,
        function: str,
        args: Sequence[Any] = (),
    ) -> Any:
        """Run `function` inside the frame's injected runtime and return its result

        Raises:
            Exception: with the host's raw failure message
        """

    @abc.abstractmethod
    async def send_message(self, tab_id: int, frame_id: int, payload: Any) -> None:
        """Post a message to the injected code of one frame"""
