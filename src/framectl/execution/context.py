"""Execution Context - remote calls against one (tab, frame, world)

Every call goes through the host's `execute` primitive and is raced against
two scopes:

- the context's own "destroyed" scope, closed by the navigation tracker when
  the frame commits a new document
- the frame's "detached" scope

Whichever closes first fails the call with a closed-kind `ProtocolError`
instead of leaving it hanging. The context never retries; raw host failures
are classified and re-raised with the method name attached.

## File injection

```
world MAIN      files ─► base64 ─► set_input_files_from_base64(handle, files)
world ISOLATED  files ─► transfer port (chunks) ─► set_input_files_from_port(handle, port, ids)
```
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence

from framectl.config import ControlConfig
from framectl.core.protocol_error import (
    ContextDestroyedError,
    ErrorKind,
    FrameDetachedError,
    ProtocolError,
)
from framectl.core.scope import LongStandingScope
from framectl.execution.element_handle import ElementHandle
from framectl.execution.types import ActionResult, BoundingBox, FilePayload, SetInputFilesResult
from framectl.host import HostSurface, World
from framectl.transfer.port import PortNotFoundError, TransferPortConnection, TransferPortController

if TYPE_CHECKING:
    from framectl.navigation.frame import Frame

logger = logging.getLogger("framectl.execution")


class ExecutionError(Exception):
    """Base error for execution-context operations that are not protocol failures"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class PayloadTooLargeError(ExecutionError):
    def __init__(self, size: int, limit: int):
        super().__init__(f"Inline payload of {size} bytes exceeds the {limit} byte limit")
        self.size = size
        self.limit = limit


class TransferUnavailableError(ExecutionError):
    def __init__(self):
        super().__init__("No transfer port controller is configured for this context")


class ExecutionContext:
    """Runs injected-script operations in one frame and world

    Args:
        frame: owning frame
        world: default world for calls
        host: host surface providing `execute`
        config: shared configuration
        port_controller: transfer port controller for isolated-world file injection
    """

    def __init__(
        self,
        frame: "Frame",
        world: World,
        host: HostSurface,
        config: Optional[ControlConfig] = None,
        port_controller: Optional[TransferPortController] = None,
    ):
        self.frame = frame
        self.world = world
        self._host = host
        self.config = config or ControlConfig.default()
        self._port_controller = port_controller
        self._destroyed_scope = LongStandingScope()
        self._element_handles: Dict[str, ElementHandle] = {}

    def __repr__(self) -> str:
        state = "destroyed" if self.is_destroyed() else "live"
        return f"ExecutionContext(tab={self.tab_id}, frame={self.frame_id}, world={self.world.value}, {state})"

    @property
    def tab_id(self) -> int:
        return self.frame.tab_id

    @property
    def frame_id(self) -> int:
        return self.frame.frame_id

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def context_destroyed(self, reason: str = "Execution context was destroyed") -> None:
        """Fire the destroyed scope; only the frame tracker calls this"""
        if self._destroyed_scope.is_closed():
            return
        self._destroyed_scope.close(ContextDestroyedError(reason))
        self._element_handles.clear()
        logger.debug("%r destroyed: %s", self, reason)

    def is_destroyed(self) -> bool:
        return self._destroyed_scope.is_closed()

    @property
    def destroyed_scope(self) -> LongStandingScope:
        return self._destroyed_scope

    # =========================================================================
    # Core calls
    # =========================================================================

    async def run(self, function: str, *args: Any, world: Optional[World] = None) -> Any:
        """Run an injected-script function and return its result

        Args:
            function: name of the injected-script operation
            *args: JSON-compatible arguments
            world: world override for this call

        Returns:
            The value returned by the remote function

        Raises:
            FrameDetachedError: if the frame is detached
            ContextDestroyedError: if the context is or becomes destroyed
            ProtocolError: classified host failure
        """
        if self.frame.is_detached():
            raise FrameDetachedError(self.frame_id, method=function)
        call = self._host.execute(self.tab_id, self.frame_id, world or self.world, function, list(args))
        scopes = [self._destroyed_scope, self.frame.detached_scope]
        try:
            return await LongStandingScope.race_multiple(scopes, call)
        except ContextDestroyedError as e:
            raise ContextDestroyedError(e.reason, method=function) from e
        except FrameDetachedError as e:
            raise FrameDetachedError(e.frame_id, method=function) from e
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = ProtocolError.from_exception(e, function)
            if error.kind is not ErrorKind.GENERIC:
                logger.debug("%s on %r failed: %s", function, self, error)
            raise error

    async def run_for_handle(self, function: str, *args: Any, world: Optional[World] = None) -> Optional[ElementHandle]:
        """Like `run`, but wraps the returned handle; None means no match"""
        result = await self.run(function, *args, world=world)
        if result is None:
            return None
        if not isinstance(result, str):
            raise ProtocolError(ErrorKind.GENERIC, f"Expected a handle, got {type(result).__name__}", function)
        return self._wrap(result)

    def _wrap(self, handle: str) -> ElementHandle:
        element = self._element_handles.get(handle)
        if element is None:
            element = ElementHandle(self, handle)
            self._element_handles[handle] = element
        return element

    # =========================================================================
    # Element queries
    # =========================================================================

    async def query_selector(self, selector: str) -> Optional[ElementHandle]:
        return await self.run_for_handle("query_selector", selector)

    async def query_selector_all(self, selector: str) -> List[ElementHandle]:
        handles = await self.run("query_selector_all", selector)
        return [self._wrap(handle) for handle in handles or []]

    async def element_exists(self, selector: str) -> bool:
        return bool(await self.run("element_exists", selector))

    async def is_handle_valid(self, handle: str) -> bool:
        return bool(await self.run("is_handle_valid", handle))

    # =========================================================================
    # Element operations
    # =========================================================================

    async def click_selector(self, selector: str) -> ActionResult:
        return ActionResult.from_dict(await self.run("click_selector", selector))

    async def click_element(self, handle: str, **options: Any) -> ActionResult:
        return ActionResult.from_dict(await self.run("click_element", handle, options))

    async def get_bounding_box(self, handle: str) -> Optional[BoundingBox]:
        box = await self.run("get_bounding_box", handle)
        return BoundingBox.from_dict(box) if box else None

    async def is_checked(self, handle: str) -> bool:
        return bool(await self.run("is_checked", handle))

    async def set_checked(self, handle: str, checked: bool) -> ActionResult:
        return ActionResult.from_dict(await self.run("set_checked", handle, checked))

    async def dispatch_event(self, handle: str, event_type: str, event_init: Optional[Dict[str, Any]] = None) -> ActionResult:
        return ActionResult.from_dict(await self.run("dispatch_event", handle, event_type, event_init or {}))

    async def highlight(self, handle: str) -> bool:
        return bool(await self.run("highlight", handle))

    async def hide_highlight(self) -> None:
        await self.run("hide_highlight")

    async def aria_snapshot(self, handle: Optional[str] = None) -> str:
        return await self.run("aria_snapshot", handle) or ""

    async def mark_target_elements(self, handles: Sequence[str], marker: str = "data-framectl-target") -> int:
        return int(await self.run("mark_target_elements", list(handles), marker) or 0)

    async def execute_element_function(self, name: str, *args: Any) -> Any:
        """Call a function registered on the injected script by name

        ElementHandle arguments are passed as their handle strings.
        """
        marshalled = [arg.handle if isinstance(arg, ElementHandle) else arg for arg in args]
        return await self.run("execute_element_function", name, marshalled)

    # =========================================================================
    # File transfer
    # =========================================================================

    async def create_transfer_port(self, world: Optional[World] = None) -> TransferPortConnection:
        """Open a transfer port in this frame and wait for it to connect

        Raises:
            TransferUnavailableError: if no port controller is configured
            PortNotFoundError: if the port does not announce itself in time
        """
        if self._port_controller is None:
            raise TransferUnavailableError()
        port_id = await self.run("create_transfer_port", world=world)
        try:
            return await self._port_controller.wait_for_port(port_id, self.config.port_connect_timeout)
        except asyncio.TimeoutError:
            raise PortNotFoundError(port_id)

    async def set_input_files(
        self,
        handle: str,
        files: Sequence[FilePayload],
        world: Optional[World] = None,
    ) -> SetInputFilesResult:
        """Put `files` into the file input identified by `handle`

        The privileged world receives the files inline as base64; the
        isolated world receives them through a transfer port.
        """
        world = world or self.world
        if world.is_privileged:
            return await self._set_input_files_inline(handle, files, world)
        return await self._set_input_files_via_port(handle, files, world)

    async def _set_input_files_inline(self, handle: str, files: Sequence[FilePayload], world: World) -> SetInputFilesResult:
        payloads = [payload.to_base64_dict() for payload in files]
        size = sum(len(payload["base64"]) for payload in payloads)
        if size > self.config.max_inline_payload:
            raise PayloadTooLargeError(size, self.config.max_inline_payload)
        result = await self.run("set_input_files_from_base64", handle, payloads, world=world)
        return SetInputFilesResult.from_dict(result)

    async def _set_input_files_via_port(self, handle: str, files: Sequence[FilePayload], world: World) -> SetInputFilesResult:
        port = await self.create_transfer_port(world=world)
        try:
            transfer_ids = []
            for payload in files:
                transfer_id = await self.frame_race(
                    port.send_buffer(payload.data, payload.name, payload.mime_type, self.config.chunk_size, wait_for_ack=True)
                )
                transfer_ids.append(transfer_id)
            result = await self.run("set_input_files_from_port", handle, port.port_id, transfer_ids, world=world)
            return SetInputFilesResult.from_dict(result)
        finally:
            await self._port_controller.release_port(port.port_id)

    async def frame_race(self, awaitable: Any) -> Any:
        """Race any awaitable against this context's destroyed and detached scopes"""
        return await LongStandingScope.race_multiple([self._destroyed_scope, self.frame.detached_scope], awaitable)
