"""Page - everything the control plane knows about one tab"""

from typing import TYPE_CHECKING, List, Optional

from framectl.config import ControlConfig
from framectl.core.events import Emitter
from framectl.core.protocol_error import ErrorKind, ProtocolError
from framectl.core.scope import LongStandingScope
from framectl.execution.context import ExecutionContext
from framectl.host import HostSurface, World
from framectl.navigation.frame import Frame
from framectl.navigation.frame_manager import FrameManager

if TYPE_CHECKING:
    from framectl.core.progress import ProgressController
    from framectl.transfer.port import TransferPortController


class PageClosedError(ProtocolError):
    """The tab owning the page was removed"""

    def __init__(self, tab_id: int):
        super().__init__(ErrorKind.CLOSED, f"Tab {tab_id} was closed")
        self.tab_id = tab_id


class Page:
    """Tab-scoped owner of a frame tree

    Args:
        host: the host surface used by execution contexts
        tab_id: host tab identity
        config: shared configuration
        port_controller: transfer port controller used for isolated-world file injection
    """

    def __init__(
        self,
        host: HostSurface,
        tab_id: int,
        config: Optional[ControlConfig] = None,
        port_controller: Optional["TransferPortController"] = None,
        window_id: Optional[int] = None,
    ):
        self.host = host
        self.tab_id = tab_id
        self.window_id = window_id
        self.config = config or ControlConfig.default()
        self.port_controller = port_controller
        self.open_scope = LongStandingScope()

        self.on_frame_attached: Emitter[Frame] = Emitter("frame-attached")
        self.on_frame_detached: Emitter[Frame] = Emitter("frame-detached")
        self.on_frame_navigated_to_new_document: Emitter[Frame] = Emitter("frame-navigated")
        self.on_dom_content_loaded: Emitter["Page"] = Emitter("page-dom-content-loaded")
        self.on_load: Emitter["Page"] = Emitter("page-load")
        self.on_close: Emitter["Page"] = Emitter("page-close")

        self.frame_manager = FrameManager(self)

    def __repr__(self) -> str:
        return f"Page(tab={self.tab_id}, frames={len(self.frame_manager)})"

    def main_frame(self) -> Optional[Frame]:
        return self.frame_manager.main_frame()

    def frames(self) -> List[Frame]:
        return self.frame_manager.frames()

    def frame(self, frame_id: int) -> Optional[Frame]:
        return self.frame_manager.frame(frame_id)

    @property
    def url(self) -> str:
        main = self.main_frame()
        return main.url if main is not None else ""

    def is_closed(self) -> bool:
        return self.open_scope.is_closed()

    async def wait_for_main_frame(self, progress: Optional["ProgressController"] = None) -> Frame:
        return await self.frame_manager.wait_for_main_frame(progress)

    def create_execution_context(self, frame: Frame, world: World) -> ExecutionContext:
        return ExecutionContext(frame, world, self.host, self.config, self.port_controller)

    def dispose(self) -> None:
        """Tear the page down after its tab was removed"""
        if self.open_scope.is_closed():
            return
        self.frame_manager.detach_all()
        self.open_scope.close(PageClosedError(self.tab_id))
        self.on_close.fire(self)
        for emitter in (
            self.on_frame_attached,
            self.on_frame_detached,
            self.on_frame_navigated_to_new_document,
            self.on_dom_content_loaded,
            self.on_load,
            self.on_close,
        ):
            emitter.dispose()
