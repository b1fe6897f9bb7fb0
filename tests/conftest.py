"""Shared fakes: an in-process document host driving real InjectedScript instances"""

import asyncio
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pytest

from framectl.host import (
    ChannelMessage,
    FrameInfo,
    HostSurface,
    NavigationDetails,
    TabActivation,
    TabInfo,
    World,
)
from framectl.injected import InjectedScript


class FakeNode:
    """Minimal DOM-like node"""

    def __init__(
        self,
        tag_name: str = "div",
        input_type: Optional[str] = None,
        role: Optional[str] = None,
        name: str = "",
        checked: bool = False,
        disabled: bool = False,
        multiple: bool = False,
        box: Optional[Dict[str, float]] = None,
        payload: bytes = b"",
        children: Optional[List["FakeNode"]] = None,
    ):
        self.tag_name = tag_name
        self.input_type = input_type
        self.role = role
        self.name = name
        self.checked = checked
        self.disabled = disabled
        self.multiple = multiple
        self.box = box
        self.payload = payload
        self.children = children or []
        self.is_connected = True
        self.attributes: Dict[str, str] = {}
        self.events: List[Tuple[str, Dict[str, Any]]] = []
        self.clicks = 0
        self.files: List[Any] = []

    def click(self, options=None):
        self.clicks += 1
        if self.input_type == "checkbox":
            self.checked = not self.checked
        elif self.input_type == "radio":
            self.checked = True

    def bounding_box(self):
        return dict(self.box) if self.box else None

    def dispatch_event(self, event_type, event_init):
        self.events.append((event_type, event_init))

    def set_attribute(self, name, value):
        self.attributes[name] = value

    def set_files(self, files):
        self.files = list(files)

    def read_payload(self, kind, option):
        return self.payload, f"{self.tag_name}.bin", "application/octet-stream"

    def detach(self):
        self.is_connected = False


class FakeDocument:
    """Selector table standing in for a document"""

    def __init__(self, body: Optional[FakeNode] = None):
        self.body = body
        self.selectors: Dict[str, List[FakeNode]] = {}

    def add(self, selector: str, *nodes: FakeNode) -> FakeNode:
        self.selectors.setdefault(selector, []).extend(nodes)
        return nodes[0]

    def query_selector(self, selector):
        for node in self.selectors.get(selector, []):
            if node.is_connected:
                return node
        return None

    def query_selector_all(self, selector):
        return [node for node in self.selectors.get(selector, []) if node.is_connected]


class FakeChannel:
    """Injected-side end of the message channel; delivery is asynchronous"""

    def __init__(self, host: "FakeHost", tab_id: int, frame_id: int):
        self._host = host
        self.tab_id = tab_id
        self.frame_id = frame_id
        self.posted: List[Any] = []

    @property
    def binary(self) -> bool:
        return self._host.binary

    async def post(self, payload):
        self.posted.append(payload)
        message = ChannelMessage(self.tab_id, self.frame_id, payload)
        asyncio.get_running_loop().call_soon(self._host.on_message.fire, message)


class FakeHost(HostSurface):
    """Host surface backed by in-memory tabs, frames and injected scripts"""

    def __init__(self, binary: bool = False):
        super().__init__()
        self.binary = binary
        self.tabs: Dict[int, TabInfo] = {}
        self.frames: Dict[int, Dict[int, FrameInfo]] = {}
        self.documents: Dict[Tuple[int, int], FakeDocument] = {}
        self.scripts: Dict[Tuple[int, int, World], InjectedScript] = {}
        self.calls: List[Tuple[int, int, World, str, list]] = []
        self.frame_queries: List[Tuple[int, int]] = []
        self.sent: List[Tuple[int, int, Any]] = []
        self.gate: Optional[asyncio.Event] = None
        self.fail_with: Optional[str] = None

    @property
    def supports_binary_messages(self) -> bool:
        return self.binary

    # setup helpers

    def add_tab(self, tab_id: int, window_id: int = 1, active: bool = False, url: str = "") -> TabInfo:
        tab = TabInfo(tab_id, window_id, url, active)
        self.tabs[tab_id] = tab
        self.frames.setdefault(tab_id, {})
        return tab

    def add_frame(self, tab_id: int, frame_id: int, parent: int = -1, url: str = "", document_id: Optional[str] = None):
        info = FrameInfo(frame_id, parent, url, document_id)
        self.frames.setdefault(tab_id, {})[frame_id] = info
        return info

    def remove_frame(self, tab_id: int, frame_id: int) -> None:
        self.frames.get(tab_id, {}).pop(frame_id, None)

    def document(self, tab_id: int, frame_id: int = 0) -> FakeDocument:
        key = (tab_id, frame_id)
        if key not in self.documents:
            self.documents[key] = FakeDocument()
        return self.documents[key]

    def script(self, tab_id: int, frame_id: int = 0, world: World = World.ISOLATED) -> InjectedScript:
        key = (tab_id, frame_id, world)
        if key not in self.scripts:
            channel = FakeChannel(self, tab_id, frame_id)
            self.scripts[key] = InjectedScript(self.document(tab_id, frame_id), channel)
        return self.scripts[key]

    # event helpers

    def commit(self, tab_id: int, frame_id: int, url: str = "", document_id: Optional[str] = None) -> None:
        self.on_committed.fire(NavigationDetails(tab_id, frame_id, url, document_id))

    def remove_tab(self, tab_id: int) -> None:
        self.tabs.pop(tab_id, None)
        self.frames.pop(tab_id, None)
        self.on_tab_removed.fire(tab_id)

    def activate(self, tab_id: int) -> None:
        self.on_tab_activated.fire(TabActivation(tab_id, 1))

    # HostSurface

    async def query_tabs(self, window_id=None):
        return [tab for tab in self.tabs.values() if window_id is None or tab.window_id == window_id]

    async def get_tab(self, tab_id):
        if tab_id not in self.tabs:
            raise RuntimeError(f"No tab with id: {tab_id}.")
        return self.tabs[tab_id]

    async def get_all_frames(self, tab_id):
        if tab_id not in self.tabs:
            raise RuntimeError(f"No tab with id: {tab_id}.")
        return list(self.frames[tab_id].values())

    async def get_frame(self, tab_id, frame_id):
        self.frame_queries.append((tab_id, frame_id))
        if tab_id not in self.tabs:
            raise RuntimeError(f"No tab with id: {tab_id}.")
        info = self.frames[tab_id].get(frame_id)
        if info is None:
            raise RuntimeError(f"No frame with id {frame_id} in tab {tab_id}.")
        return info

    async def execute(self, tab_id, frame_id, world, function, args: Sequence[Any] = ()):
        self.calls.append((tab_id, frame_id, world, function, list(args)))
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_with is not None:
            message, self.fail_with = self.fail_with, None
            raise RuntimeError(message)
        if tab_id not in self.tabs:
            raise RuntimeError(f"No tab with id: {tab_id}.")
        if frame_id not in self.frames[tab_id]:
            raise RuntimeError(f"No frame with id {frame_id} in tab {tab_id}.")
        return await self.script(tab_id, frame_id, world).dispatch(function, args)

    async def send_message(self, tab_id, frame_id, payload):
        self.sent.append((tab_id, frame_id, payload))
        for (t, f, _), script in list(self.scripts.items()):
            if t == tab_id and f == frame_id:
                await script.ports.handle_message(payload)


async def drain(rounds: int = 5) -> None:
    """Let call_soon deliveries and scheduled tasks run"""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def host():
    return FakeHost()


@pytest.fixture
def binary_host():
    return FakeHost(binary=True)
