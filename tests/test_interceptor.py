import logging

import pytest

from dev_browser.allowlist import HostAllowlist
from dev_browser.interceptor import BLOCKED_ERROR_CODE, install_request_gate, suppress_popups

from fakes import FakeContext, FakePage


class FakeRequest:
    def __init__(self, url, resource_type="document"):
        self.url = url
        self.resource_type = resource_type


class FakeRoute:
    def __init__(self, url, resource_type="document"):
        self.request = FakeRequest(url, resource_type)
        self.outcome = None

    async def continue_(self):
        self.outcome = "continued"

    async def abort(self, error_code=None):
        self.outcome = ("aborted", error_code)


@pytest.mark.asyncio
async def test_request_gate_filters_every_request(caplog):
    context = FakeContext()
    await install_request_gate(context, HostAllowlist(["example.com", "*.cdn.example.com"]))

    assert len(context.routes) == 1
    pattern, gate = context.routes[0]
    assert pattern == "**/*"

    allowed = FakeRoute("https://example.com/")
    subresource = FakeRoute("https://img.cdn.example.com/a.png", resource_type="image")
    inline = FakeRoute("data:image/png;base64,AAAA", resource_type="image")
    blocked = FakeRoute("https://tracker.net/pixel.gif", resource_type="image")

    with caplog.at_level(logging.INFO, logger="dev_browser.interceptor"):
        for route in (allowed, subresource, inline, blocked):
            await gate(route)

    assert allowed.outcome == "continued"
    assert subresource.outcome == "continued"
    assert inline.outcome == "continued"
    assert blocked.outcome == ("aborted", BLOCKED_ERROR_CODE)
    assert "event=request_blocked host=tracker.net resource_type=image" in caplog.text


@pytest.mark.asyncio
async def test_popups_are_closed():
    page = FakePage()
    suppress_popups(page)

    (handler,) = page.handlers["popup"]
    popup = FakePage()
    await handler(popup)
    assert popup.closed

    failing = FakePage(fail_close=True)
    await handler(failing)
