"""Handle-addressed element wrapper"""

from typing import TYPE_CHECKING, Any, Dict, Optional, Sequence

from framectl.execution.types import ActionResult, BoundingBox, FilePayload, SetInputFilesResult

if TYPE_CHECKING:
    from framectl.execution.context import ExecutionContext


class ElementOperationError(Exception):
    """An element operation reported failure"""

    def __init__(self, operation: str, handle: str, error: Optional[str]):
        super().__init__(f"{operation} failed for {handle}: {error or 'unknown error'}")
        self.operation = operation
        self.handle = handle
        self.error = error


class ElementHandle:
    """A remote element, addressed by its handle in one execution context

    The handle is only meaningful inside the context that produced it; once
    that context is destroyed every operation fails with a closed-kind
    protocol error.
    """

    def __init__(self, context: "ExecutionContext", handle: str):
        self.context = context
        self.handle = handle

    def __repr__(self) -> str:
        return f"ElementHandle({self.handle!r})"

    def __eq__(self, other: object) -> bool:
        return isinstance(other, ElementHandle) and other.context is self.context and other.handle == self.handle

    def __hash__(self) -> int:
        return hash((id(self.context), self.handle))

    def _check(self, operation: str, result: ActionResult) -> None:
        if not result.success:
            raise ElementOperationError(operation, self.handle, result.error)

    async def is_valid(self) -> bool:
        return await self.context.is_handle_valid(self.handle)

    async def click(self, **options: Any) -> None:
        self._check("click", await self.context.click_element(self.handle, **options))

    async def set_checked(self, checked: bool) -> None:
        self._check("set_checked", await self.context.set_checked(self.handle, checked))

    async def check(self) -> None:
        await self.set_checked(True)

    async def uncheck(self) -> None:
        await self.set_checked(False)

    async def is_checked(self) -> bool:
        return await self.context.is_checked(self.handle)

    async def bounding_box(self) -> Optional[BoundingBox]:
        return await self.context.get_bounding_box(self.handle)

    async def dispatch_event(self, event_type: str, event_init: Optional[Dict[str, Any]] = None) -> None:
        self._check("dispatch_event", await self.context.dispatch_event(self.handle, event_type, event_init))

    async def highlight(self) -> bool:
        return await self.context.highlight(self.handle)

    async def aria_snapshot(self) -> str:
        return await self.context.aria_snapshot(self.handle)

    async def set_input_files(self, files: Sequence[FilePayload]) -> SetInputFilesResult:
        result = await self.context.set_input_files(self.handle, files)
        if not result.success:
            raise ElementOperationError("set_input_files", self.handle, result.error)
        return result

    async def evaluate_function(self, name: str, *args: Any) -> Any:
        """Run a registered element function with this element as first argument"""
        return await self.context.execute_element_function(name, self, *args)
