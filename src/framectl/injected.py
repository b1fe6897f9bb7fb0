"""Injected-side runtime

`InjectedScript` is the single capability every execution-context call is
addressed to. It lives inside one injected context (one frame and world),
owns that side's `HandleRegistry` and `TransferPortManager`, and only ever
returns plain values: nodes in results are replaced by handles.

Documents and nodes are duck-typed. A document provides
`query_selector(selector)` and `query_selector_all(selector)`, and
optionally `body`. A node provides `is_connected` and, depending on the
operations used on it: `tag_name`, `input_type`, `multiple`, `disabled`,
`checked`, `role`, `name`, `children`, `click(options)`,
`bounding_box()`, `dispatch_event(type, init)`, `set_attribute(name,
value)`, `set_files(files)` and `read_payload(kind, option)`.
"""

import inspect
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from framectl.execution.types import FilePayload
from framectl.handles import HandleRegistry
from framectl.transfer.messages import DEFAULT_CHUNK_SIZE, CommandType
from framectl.transfer.remote import TransferPortManager

logger = logging.getLogger("framectl.injected")

NOT_ATTACHED = "Element is not attached to the DOM"

EXPORTED_METHODS = frozenset({
    "query_selector",
    "query_selector_all",
    "element_exists",
    "is_handle_valid",
    "click_selector",
    "click_element",
    "get_bounding_box",
    "is_checked",
    "set_checked",
    "dispatch_event",
    "highlight",
    "hide_highlight",
    "aria_snapshot",
    "mark_target_elements",
    "create_transfer_port",
    "set_input_files_from_base64",
    "set_input_files_from_port",
    "execute_element_function",
    "sweep_handles",
})


class InjectedScriptError(Exception):
    """A call the injected script cannot serve"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


def _failure(error: str) -> Dict[str, Any]:
    return {"success": False, "error": error}


_SUCCESS = {"success": True}


class InjectedScript:
    """Remote runtime for one injected context

    Args:
        document: the document this context runs in
        channel: message channel to the controller (see transfer.remote)
        chunk_size: chunk size for payloads streamed to the controller
    """

    def __init__(self, document: Any, channel: Any, chunk_size: int = DEFAULT_CHUNK_SIZE):
        self.document = document
        self.handles = HandleRegistry()
        self.ports = TransferPortManager(channel, self._read_payload, chunk_size)
        self._element_functions: Dict[str, Callable[..., Any]] = {}
        self._highlighted: Optional[str] = None

    async def dispatch(self, method: str, args: Sequence[Any] = ()) -> Any:
        """Run an exported method and convert nodes in its result to handles

        Raises:
            InjectedScriptError: if `method` is not exported
        """
        if method not in EXPORTED_METHODS:
            logger.debug("Rejected call to %s", method)
            raise InjectedScriptError(f"Unknown injected method: {method}")
        result = getattr(self, method)(*args)
        if inspect.isawaitable(result):
            result = await result
        return self.handles.convert_to_handles(result)

    def _resolve(self, handle: str) -> Optional[Any]:
        return self.handles.resolve(handle)

    # =========================================================================
    # Queries
    # =========================================================================

    def query_selector(self, selector: str) -> Optional[Any]:
        return self.document.query_selector(selector)

    def query_selector_all(self, selector: str) -> List[Any]:
        return list(self.document.query_selector_all(selector))

    def element_exists(self, selector: str) -> bool:
        return self.document.query_selector(selector) is not None

    def is_handle_valid(self, handle: str) -> bool:
        return self.handles.is_handle_valid(handle)

    def sweep_handles(self) -> int:
        return self.handles.sweep_disconnected()

    # =========================================================================
    # Actions
    # =========================================================================

    def click_selector(self, selector: str) -> Dict[str, Any]:
        node = self.document.query_selector(selector)
        if node is None:
            return _failure(f"No element matches selector {selector}")
        return self._click(node, {})

    def click_element(self, handle: str, options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        node = self._resolve(handle)
        if node is None:
            return _failure(NOT_ATTACHED)
        return self._click(node, options or {})

    def _click(self, node: Any, options: Dict[str, Any]) -> Dict[str, Any]:
        if getattr(node, "disabled", False):
            return _failure("Element is disabled")
        node.click(options)
        return dict(_SUCCESS)

    def get_bounding_box(self, handle: str) -> Optional[Dict[str, float]]:
        node = self._resolve(handle)
        if node is None:
            return None
        return node.bounding_box()

    def is_checked(self, handle: str) -> bool:
        node = self._resolve(handle)
        if node is None:
            raise InjectedScriptError(NOT_ATTACHED)
        return bool(getattr(node, "checked", False))

    def set_checked(self, handle: str, checked: bool) -> Dict[str, Any]:
        node = self._resolve(handle)
        if node is None:
            return _failure(NOT_ATTACHED)
        if getattr(node, "input_type", None) not in ("checkbox", "radio"):
            return _failure("Not a checkbox or radio button")
        if bool(node.checked) == checked:
            return dict(_SUCCESS)
        if node.input_type == "radio" and not checked:
            return _failure("Cannot uncheck radio button")
        result = self._click(node, {})
        if not result["success"]:
            return result
        if bool(node.checked) != checked:
            return _failure("Clicking the checkbox did not change its state")
        return dict(_SUCCESS)

    def dispatch_event(self, handle: str, event_type: str, event_init: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        node = self._resolve(handle)
        if node is None:
            return _failure(NOT_ATTACHED)
        node.dispatch_event(event_type, event_init or {})
        return dict(_SUCCESS)

    def highlight(self, handle: str) -> bool:
        if self._resolve(handle) is None:
            return False
        self._highlighted = handle
        return True

    def hide_highlight(self) -> None:
        self._highlighted = None

    @property
    def highlighted(self) -> Optional[str]:
        return self._highlighted

    def mark_target_elements(self, handles: Sequence[str], marker: str) -> int:
        marked = 0
        for handle in handles:
            node = self._resolve(handle)
            if node is None:
                continue
            node.set_attribute(marker, "true")
            marked += 1
        return marked

    def aria_snapshot(self, handle: Optional[str] = None) -> str:
        if handle is None:
            root = getattr(self.document, "body", None)
        else:
            root = self._resolve(handle)
            if root is None:
                raise InjectedScriptError(NOT_ATTACHED)
        if root is None:
            return ""
        lines: List[str] = []
        self._snapshot(root, 0, lines)
        return "\n".join(lines)

    def _snapshot(self, node: Any, depth: int, lines: List[str]) -> None:
        role = getattr(node, "role", None)
        if role:
            name = getattr(node, "name", "")
            label = f'{role} "{name}"' if name else role
            lines.append(f"{'  ' * depth}- {label}")
            depth += 1
        for child in getattr(node, "children", ()) or ():
            self._snapshot(child, depth, lines)

    # =========================================================================
    # Files
    # =========================================================================

    async def create_transfer_port(self) -> str:
        port = await self.ports.create_port()
        return port.port_id

    def set_input_files_from_base64(self, handle: str, files: Sequence[Dict[str, Any]]) -> Dict[str, Any]:
        node = self._resolve(handle)
        if node is None:
            return _failure(NOT_ATTACHED)
        try:
            payloads = [FilePayload.from_base64_dict(entry) for entry in files]
        except (KeyError, ValueError) as e:
            return _failure(f"Invalid file payload: {e}")
        return self._set_files(node, payloads)

    def set_input_files_from_port(self, handle: str, port_id: str, transfer_ids: Sequence[str]) -> Dict[str, Any]:
        node = self._resolve(handle)
        if node is None:
            return _failure(NOT_ATTACHED)
        port = self.ports.get_port(port_id)
        if port is None:
            return _failure(f"Transfer port {port_id} not found")
        payloads = []
        for transfer_id in transfer_ids:
            buffer = port.take_incoming_buffer(transfer_id)
            if buffer is None:
                logger.warning("Transfer %s was not completed on port %s", transfer_id, port_id)
                return _failure(f"No completed transfer {transfer_id} on port {port_id}")
            payloads.append(FilePayload(buffer.filename, buffer.mime_type, buffer.data))
        return self._set_files(node, payloads)

    def _set_files(self, node: Any, payloads: List[FilePayload]) -> Dict[str, Any]:
        if getattr(node, "tag_name", "").lower() != "input" or getattr(node, "input_type", None) != "file":
            return _failure("Node is not an HTMLInputElement of type file")
        if len(payloads) > 1 and not getattr(node, "multiple", False):
            return _failure("Non-multiple file input can only accept single file")
        node.set_files(payloads)
        return {"success": True, "filesSet": len(payloads)}

    async def _read_payload(self, kind: CommandType, selector: str, option: Optional[str]) -> Tuple[bytes, str, str]:
        node = self.document.query_selector(selector)
        if node is None:
            raise InjectedScriptError(f"No element matches selector {selector}")
        result = node.read_payload(kind.value, option)
        if inspect.isawaitable(result):
            result = await result
        return result

    # =========================================================================
    # Registered element functions
    # =========================================================================

    def register_element_function(self, name: str, function: Callable[..., Any]) -> None:
        self._element_functions[name] = function

    async def execute_element_function(self, name: str, args: Sequence[Any] = ()) -> Any:
        function = self._element_functions.get(name)
        if function is None:
            raise InjectedScriptError(f"Unknown element function: {name}")
        result = function(*self.handles.convert_from_handles(list(args)))
        if inspect.isawaitable(result):
            result = await result
        return result
