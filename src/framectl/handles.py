"""Handle Registry - opaque, revalidatable identity for remote nodes

Remote calls can only return plain values, so every node that crosses the
controller/injected boundary is replaced by a string handle. Each execution
side owns its own registry; handles are never valid across registries.

## Invariants

- At most one live handle per node. The reverse index (keyed by node
  identity) is authoritative.
- A node that stops being connected is evicted lazily on the next
  `resolve`, or eagerly by `sweep_disconnected`.
"""

import uuid
from typing import Any, Callable, Dict, Optional, Union


def _default_is_node(value: Any) -> bool:
    return hasattr(value, "is_connected") and not isinstance(value, (str, bytes, dict, list, tuple))


def _default_is_connected(node: Any) -> bool:
    return bool(getattr(node, "is_connected", False))


class HandleRegistry:
    """Bidirectional handle <-> node map

    Args:
        is_node: predicate deciding which values are nodes during conversion
        is_connected: predicate deciding whether a node is still live
        prefix: prefix for minted handles
    """

    def __init__(
        self,
        is_node: Optional[Callable[[Any], bool]] = None,
        is_connected: Optional[Callable[[Any], bool]] = None,
        prefix: str = "handle",
    ):
        self._is_node = is_node or _default_is_node
        self._is_connected = is_connected or _default_is_connected
        self._prefix = prefix
        self._nodes: Dict[str, Any] = {}
        self._handles: Dict[int, str] = {}

    def _mint(self) -> str:
        return f"{self._prefix}-{uuid.uuid4()}"

    def get_or_create_handle(self, node: Any) -> str:
        """Return the node's handle, minting one on first sight"""
        handle = self._handles.get(id(node))
        if handle is not None and self._nodes.get(handle) is node:
            return handle
        handle = self._mint()
        self._nodes[handle] = node
        self._handles[id(node)] = handle
        return handle

    def register(self, node: Any) -> str:
        return self.get_or_create_handle(node)

    def resolve(self, handle: str) -> Optional[Any]:
        """Return the live node for `handle`, or None

        A disconnected node is evicted and None is returned.
        """
        node = self._nodes.get(handle)
        if node is None:
            return None
        if not self._is_connected(node):
            self._evict(handle, node)
            return None
        return node

    def is_handle_valid(self, handle: str) -> bool:
        return self.resolve(handle) is not None

    def convert_to_handles(self, value: Any) -> Any:
        """Replace nodes with handles inside nested lists, tuples and str-keyed dicts"""
        if self._is_node(value):
            return self.get_or_create_handle(value)
        if isinstance(value, (list, tuple)):
            return [self.convert_to_handles(item) for item in value]
        if isinstance(value, dict) and all(isinstance(key, str) for key in value):
            return {key: self.convert_to_handles(item) for key, item in value.items()}
        return value

    def convert_from_handles(self, value: Any) -> Any:
        """Replace known handle strings with their live nodes

        Unknown strings and handles of evicted nodes are left as they are.
        """
        if isinstance(value, str):
            if value in self._nodes:
                node = self.resolve(value)
                return node if node is not None else value
            return value
        if isinstance(value, (list, tuple)):
            return [self.convert_from_handles(item) for item in value]
        if isinstance(value, dict) and all(isinstance(key, str) for key in value):
            return {key: self.convert_from_handles(item) for key, item in value.items()}
        return value

    def unregister(self, target: Union[str, Any]) -> bool:
        """Remove a node or handle; returns whether anything was removed"""
        if isinstance(target, str):
            node = self._nodes.get(target)
            if node is None:
                return False
            self._evict(target, node)
            return True
        handle = self._handles.get(id(target))
        if handle is None or self._nodes.get(handle) is not target:
            return False
        self._evict(handle, target)
        return True

    def sweep_disconnected(self) -> int:
        """Evict every disconnected node and return how many were evicted"""
        stale = [(handle, node) for handle, node in self._nodes.items() if not self._is_connected(node)]
        for handle, node in stale:
            self._evict(handle, node)
        return len(stale)

    def clear(self) -> None:
        self._nodes.clear()
        self._handles.clear()

    @property
    def size(self) -> int:
        return len(self._nodes)

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, handle: object) -> bool:
        return handle in self._nodes

    def _evict(self, handle: str, node: Any) -> None:
        self._nodes.pop(handle, None)
        if self._handles.get(id(node)) == handle:
            del self._handles[id(node)]
