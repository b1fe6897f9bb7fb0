"""Tests for HandleRegistry"""

from framectl.handles import HandleRegistry

from conftest import FakeNode


# TEST100: Test the same node always gets the same handle and distinct nodes get distinct handles
def test_100_handle_stability():
    registry = HandleRegistry()
    a, b = FakeNode(), FakeNode()
    first = registry.get_or_create_handle(a)
    assert registry.get_or_create_handle(a) == first
    assert registry.get_or_create_handle(b) != first
    assert registry.size == 2


# TEST101: Test resolve returns the live node for a known handle and None for unknown handles
def test_101_resolve():
    registry = HandleRegistry()
    node = FakeNode()
    handle = registry.get_or_create_handle(node)
    assert registry.resolve(handle) is node
    assert registry.resolve("handle-missing") is None


# TEST102: Test a node disconnected before resolve is evicted lazily
def test_102_stale_handle_eviction():
    registry = HandleRegistry()
    node = FakeNode()
    handle = registry.get_or_create_handle(node)
    node.detach()
    assert handle in registry
    assert registry.resolve(handle) is None
    assert handle not in registry
    assert not registry.is_handle_valid(handle)


# TEST103: Test a reconnected node that was evicted gets a fresh handle
def test_103_fresh_handle_after_eviction():
    registry = HandleRegistry()
    node = FakeNode()
    old = registry.get_or_create_handle(node)
    node.detach()
    registry.resolve(old)
    node.is_connected = True
    new = registry.get_or_create_handle(node)
    assert new != old
    assert registry.resolve(new) is node


# TEST104: Test convert_to_handles replaces nodes inside nested lists and string-keyed dicts
def test_104_convert_to_handles():
    registry = HandleRegistry()
    a, b = FakeNode(), FakeNode()
    converted = registry.convert_to_handles({"items": [a, {"inner": b}], "count": 2, "label": "x"})
    assert converted["count"] == 2
    assert converted["label"] == "x"
    assert converted["items"][0] == registry.get_or_create_handle(a)
    assert converted["items"][1]["inner"] == registry.get_or_create_handle(b)


# TEST105: Test convert_from_handles restores nodes and leaves unknown strings untouched
def test_105_convert_from_handles():
    registry = HandleRegistry()
    node = FakeNode()
    handle = registry.get_or_create_handle(node)
    restored = registry.convert_from_handles([handle, "plain", {"el": handle, "n": 1}])
    assert restored[0] is node
    assert restored[1] == "plain"
    assert restored[2] == {"el": node, "n": 1}


# TEST106: Test unregister by node or handle is idempotent and reports whether anything was removed
def test_106_unregister():
    registry = HandleRegistry()
    a, b = FakeNode(), FakeNode()
    handle_a = registry.get_or_create_handle(a)
    registry.get_or_create_handle(b)
    assert registry.unregister(handle_a)
    assert not registry.unregister(handle_a)
    assert registry.unregister(b)
    assert not registry.unregister(b)
    assert len(registry) == 0


# TEST107: Test sweep_disconnected evicts every disconnected node and returns the count
def test_107_sweep_disconnected():
    registry = HandleRegistry()
    nodes = [FakeNode() for _ in range(4)]
    handles = [registry.get_or_create_handle(node) for node in nodes]
    nodes[1].detach()
    nodes[3].detach()
    assert registry.sweep_disconnected() == 2
    assert registry.sweep_disconnected() == 0
    assert [h in registry for h in handles] == [True, False, True, False]


# TEST108: Test custom predicates decide node-ness and connectivity
def test_108_custom_predicates():
    live = set()

    class Obj:
        pass

    registry = HandleRegistry(
        is_node=lambda value: isinstance(value, Obj),
        is_connected=lambda value: value in live,
        prefix="el",
    )
    obj = Obj()
    live.add(obj)
    handle = registry.convert_to_handles(obj)
    assert handle.startswith("el-")
    live.clear()
    assert registry.resolve(handle) is None


# TEST109: Test clear empties both directions of the map
def test_109_clear():
    registry = HandleRegistry()
    node = FakeNode()
    handle = registry.get_or_create_handle(node)
    registry.clear()
    assert registry.size == 0
    assert registry.get_or_create_handle(node) != handle
