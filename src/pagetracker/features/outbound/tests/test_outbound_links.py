from __future__ import annotations

from datetime import UTC, datetime

import simpy

from pagetracker.core.config import PageConfig
from pagetracker.core.types import PageClock
from pagetracker.features.dispatch.ip import StaticIpResolver
from pagetracker.features.dispatch.transport import MemoryTransport
from pagetracker.features.outbound.service import LISTENER_FLAG, append_query_param
from pagetracker.features.page.service import PageFactory, click_anchor
from pagetracker.features.page.types import Element
from pagetracker.features.tracker.service import Tracker

T0 = datetime(2026, 1, 1, tzinfo=UTC)
CHECKOUT = "https://pay.hotmart.com/X123?off=a1"


def _installed(queued=None):
    env = simpy.Environment()
    clock = PageClock(env=env, start_dt_utc=T0)
    page = PageFactory(clock=clock).build(
        PageConfig(
            url="https://shop.example.com/",
            script_src="https://tracker.example.net/track.js",
            anchors={"buy": CHECKOUT, "blog": "https://shop.example.com/blog"},
            queued=queued if queued is not None else [["init", "trk_1"]],
        )
    )
    transport = MemoryTransport()
    tracker = Tracker(env=env, window=page.window, clock=clock, transport=transport, ip=StaticIpResolver("203.0.113.7"))
    tracker.install()
    return env, page, tracker, transport


def _clicks(transport: MemoryTransport) -> list[dict]:
    return [p for p in transport.payloads if p["type"] == "hotmart_click"]


def test_checkout_click_is_reported_then_followed_with_visitor_id() -> None:
    _, page, tracker, transport = _installed()

    ev = click_anchor(page, "buy")

    assert ev.default_prevented
    clicks = _clicks(transport)
    assert len(clicks) == 1
    assert clicks[0]["event_data"]["url"] == CHECKOUT
    assert clicks[0]["event_data"]["visitor_id"] == tracker.state.visitor_id
    assert clicks[0]["event_data"]["ip"] == "203.0.113.7"
    assert page.window.location.navigations == [f"{CHECKOUT}&xcod={tracker.state.visitor_id}"]


def test_click_on_nested_element_inside_link() -> None:
    _, page, _, transport = _installed()
    icon = Element(tag="img", parent=page.anchors["buy"])

    page.window.document.click(icon)

    assert len(_clicks(transport)) == 1
    assert len(page.window.location.navigations) == 1


def test_other_links_are_left_alone() -> None:
    _, page, _, transport = _installed()

    ev = click_anchor(page, "blog")

    assert not ev.default_prevented
    assert _clicks(transport) == []
    assert page.window.location.navigations == ["https://shop.example.com/blog"]


def test_click_reaches_every_account() -> None:
    _, page, _, transport = _installed([["init", "trk_1"], ["init", "trk_2"]])

    click_anchor(page, "buy")

    assert sorted(p["tracking_id"] for p in _clicks(transport)) == ["trk_1", "trk_2"]
    assert len(page.window.location.navigations) == 1


def test_listener_attached_once() -> None:
    _, page, tracker, _ = _installed([["init", "trk_1"], ["init", "trk_2"]])

    assert page.window.globals[LISTENER_FLAG] is True
    assert page.window.document.listener_count("click") == 1
    assert tracker.interceptor.arm() is False


def test_no_listener_before_any_account() -> None:
    _, page, _, _ = _installed([])

    assert page.window.document.listener_count("click") == 0


def test_tracking_failure_still_navigates_to_original_link() -> None:
    _, page, tracker, _ = _installed()

    def broken():
        raise RuntimeError("snapshot failed")

    tracker.dispatcher.snapshot = broken
    click_anchor(page, "buy")

    assert page.window.location.navigations == [CHECKOUT]


def test_append_query_param() -> None:
    assert append_query_param("https://pay.hotmart.com/X", "xcod", "v 1") == "https://pay.hotmart.com/X?xcod=v+1"
    assert (
        append_query_param("https://pay.hotmart.com/X?xcod=old#top", "xcod", "new")
        == "https://pay.hotmart.com/X?xcod=old&xcod=new#top"
    )
