"""Tests for element handles and the injected-side runtime"""

import pytest

from framectl.execution.element_handle import ElementOperationError
from framectl.execution.types import BoundingBox
from framectl.host import World
from framectl.injected import InjectedScript, InjectedScriptError
from framectl.navigation.page import Page

from conftest import FakeChannel, FakeDocument, FakeNode


async def _element(host, selector, node, world=World.ISOLATED):
    host.add_tab(1)
    host.add_frame(1, 0)
    page = Page(host, 1)
    frame = page.frame_manager.frame_attached(0, None)
    host.document(1, 0).add(selector, node)
    context = frame.context(world)
    return context, await context.query_selector(selector)


# TEST420: Test clicking an element, and the failure for disabled and detached elements
@pytest.mark.asyncio
async def test_420_click(host):
    node = FakeNode("button")
    context, element = await _element(host, "#go", node)
    await element.click()
    assert node.clicks == 1

    node.disabled = True
    with pytest.raises(ElementOperationError, match="Element is disabled"):
        await element.click()

    node.disabled = False
    node.detach()
    assert not await element.is_valid()
    with pytest.raises(ElementOperationError, match="not attached"):
        await element.click()
    assert node.clicks == 1


# TEST421: Test check and uncheck toggle a checkbox and leave it alone when already set
@pytest.mark.asyncio
async def test_421_checkbox(host):
    node = FakeNode("input", input_type="checkbox")
    context, element = await _element(host, "#agree", node)
    await element.check()
    assert await element.is_checked()
    await element.check()
    assert node.clicks == 1
    await element.uncheck()
    assert not node.checked


# TEST422: Test a radio button cannot be unchecked and non-checkable elements are refused
@pytest.mark.asyncio
async def test_422_radio_and_non_checkable(host):
    node = FakeNode("input", input_type="radio")
    context, element = await _element(host, "#opt", node)
    await element.check()
    with pytest.raises(ElementOperationError, match="Cannot uncheck radio button"):
        await element.uncheck()

    result = await context.set_checked((await context.query_selector("#opt")).handle, True)
    assert result.success
    host.document(1, 0).add("#text", FakeNode("input", input_type="text"))
    text = await context.query_selector("#text")
    with pytest.raises(ElementOperationError, match="Not a checkbox or radio button"):
        await text.check()


# TEST423: Test bounding boxes, event dispatch and highlighting
@pytest.mark.asyncio
async def test_423_box_dispatch_highlight(host):
    node = FakeNode("div", box={"x": 10, "y": 20, "width": 100, "height": 50})
    context, element = await _element(host, "#panel", node)

    box = await element.bounding_box()
    assert box == BoundingBox(10.0, 20.0, 100.0, 50.0)
    assert box.center == (60.0, 45.0)

    await element.dispatch_event("input", {"bubbles": True})
    assert node.events == [("input", {"bubbles": True})]

    assert await element.highlight()
    script = host.script(1, 0, World.ISOLATED)
    assert script.highlighted == element.handle
    await context.hide_highlight()
    assert script.highlighted is None


# TEST424: Test the accessibility snapshot outline
@pytest.mark.asyncio
async def test_424_aria_snapshot(host):
    tree = FakeNode("nav", role="navigation", name="Main", children=[
        FakeNode("a", role="link", name="Home"),
        FakeNode("div", children=[FakeNode("button", role="button", name="Menu")]),
    ])
    context, element = await _element(host, "nav", tree)
    assert await element.aria_snapshot() == '- navigation "Main"\n  - link "Home"\n  - button "Menu"'

    host.document(1, 0).body = FakeNode("body", children=[FakeNode("h1", role="heading")])
    assert await context.aria_snapshot() == "- heading"


# TEST425: Test marking target elements skips handles that no longer resolve
@pytest.mark.asyncio
async def test_425_mark_target_elements(host):
    first, second = FakeNode("li"), FakeNode("li")
    context, _ = await _element(host, "li", first)
    host.document(1, 0).add("li", second)
    items = await context.query_selector_all("li")
    second.detach()

    marked = await context.mark_target_elements([item.handle for item in items] + ["handle-unknown"])
    assert marked == 1
    assert first.attributes == {"data-framectl-target": "true"}
    assert second.attributes == {}


# TEST426: Test registered element functions receive resolved nodes
@pytest.mark.asyncio
async def test_426_element_functions(host):
    node = FakeNode("input", input_type="text")
    context, element = await _element(host, "#name", node)
    script = host.script(1, 0, World.ISOLATED)
    script.register_element_function("tag_of", lambda target, suffix: target.tag_name + suffix)

    assert await element.evaluate_function("tag_of", "!") == "input!"
    with pytest.raises(Exception, match="Unknown element function"):
        await context.execute_element_function("nope")


# TEST427: Test dispatch refuses methods that are not exported
@pytest.mark.asyncio
async def test_427_dispatch_rejects_unknown_methods():
    script = InjectedScript(FakeDocument(), channel=None)
    with pytest.raises(InjectedScriptError, match="Unknown injected method"):
        await script.dispatch("_resolve", ["x"])
    assert await script.dispatch("element_exists", ["#a"]) is False


# TEST428: Test injected results replace nodes with handles and sweeping forgets disconnected nodes
@pytest.mark.asyncio
async def test_428_results_use_handles(host):
    document = FakeDocument()
    node = document.add("#x", FakeNode())
    script = InjectedScript(document, FakeChannel(host, 1, 0))

    handle = await script.dispatch("query_selector", ["#x"])
    assert isinstance(handle, str)
    assert await script.dispatch("is_handle_valid", [handle]) is True
    node.detach()
    assert await script.dispatch("sweep_handles") == 1
    assert await script.dispatch("is_handle_valid", [handle]) is False
    with pytest.raises(InjectedScriptError):
        script.is_checked(handle)
