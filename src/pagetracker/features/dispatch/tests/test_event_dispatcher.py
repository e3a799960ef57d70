from __future__ import annotations

from datetime import UTC, datetime

import simpy

from pagetracker.core.config import PageConfig, TrackerConfig
from pagetracker.core.types import PageClock
from pagetracker.features.attribution.service import AttributionSnapshot
from pagetracker.features.dispatch.service import (
    build_custom_payload,
    build_page_view_payload,
    resolve_endpoint,
)
from pagetracker.features.page.service import PageFactory
from pagetracker.features.page.types import CookieJar, Document, Element, Location
from pagetracker.features.tracker.service import Tracker
from pagetracker.features.tracker.types import TrackerState

T0 = datetime(2026, 1, 1, tzinfo=UTC)
SCRIPT = "https://tracker.example.net/js/track.js?v=2"


class RecordingTransport:
    def __init__(self, env) -> None:
        self.env = env
        self.sent: list[tuple[float, str, dict]] = []

    def send(self, url, payload) -> None:
        self.sent.append((self.env.now, url, payload))

    def close(self) -> None:
        pass


class FailingTransport(RecordingTransport):
    def send(self, url, payload) -> None:
        raise ConnectionError("offline")


class NeverResolvingIp:
    ip = None

    def __init__(self) -> None:
        self.started = 0

    def start(self) -> None:
        self.started += 1

    def close(self) -> None:
        pass


class IpAfter:
    """IP becomes known once the page clock passes `at`."""

    def __init__(self, env, at: float, value: str = "198.51.100.4") -> None:
        self.env = env
        self.at = at
        self.value = value

    @property
    def ip(self):
        return self.value if self.env.now >= self.at else None

    def start(self) -> None:
        pass

    def close(self) -> None:
        pass


def _tracker(env, ip=None, transport_cls=RecordingTransport, **page_kwargs):
    page_kwargs.setdefault("script_src", SCRIPT)
    page_kwargs.setdefault("queued", [["init", "trk_1"]])
    clock = PageClock(env=env, start_dt_utc=T0)
    page = PageFactory(clock=clock).build(
        PageConfig(url="https://shop.example.com/landing?utm_source=fb", **page_kwargs)
    )
    transport = transport_cls(env)
    tracker = Tracker(
        env=env,
        window=page.window,
        clock=clock,
        transport=transport,
        ip=ip or NeverResolvingIp(),
        cfg=TrackerConfig(),
    )
    return tracker, transport


def test_page_view_waits_at_most_ten_checks_for_ip() -> None:
    env = simpy.Environment()
    ip = NeverResolvingIp()
    tracker, transport = _tracker(env, ip=ip)

    tracker.install()
    env.run()

    assert ip.started == 1
    assert len(transport.sent) == 1
    at, url, payload = transport.sent[0]
    assert at == 4.5
    assert url == "https://tracker.example.net/api/track"
    assert payload["type"] == "pageview"
    assert payload["event_data"]["ip"] == "-"


def test_page_view_sent_on_first_check_after_ip_arrives() -> None:
    env = simpy.Environment()
    tracker, transport = _tracker(env, ip=IpAfter(env, at=1.2))

    tracker.install()
    env.run()

    at, _, payload = transport.sent[0]
    assert at == 1.5
    assert payload["event_data"]["ip"] == "198.51.100.4"


def test_page_view_immediate_when_everything_known() -> None:
    env = simpy.Environment()
    tracker, transport = _tracker(env, ip=IpAfter(env, at=0))

    tracker.install()
    env.run()

    at, _, payload = transport.sent[0]
    assert at == 0
    assert payload["timestamp"] == "2026-01-01T00:00:00.000Z"
    assert payload["page_view_id"] == 1767225600000
    assert payload["url"] == "https://shop.example.com/landing?utm_source=fb"
    assert payload["screen_resolution"] == "1920x1080"
    assert payload["viewport_size"] == "1280x720"
    assert payload["event_data"]["utm_data"] == {"utm_source": "fb"}
    assert payload["event_data"]["campaign_data"] == tracker.state.campaign


def test_custom_event_does_not_wait() -> None:
    env = simpy.Environment()
    tracker, transport = _tracker(env)
    tracker.install()

    tracker.window.globals["_lt"].push(["event", {"type": "Lead", "value": 10}])

    # nothing has run on the event loop yet
    assert env.now == 0
    assert [p["type"] for _, _, p in transport.sent] == ["Lead"]
    data = transport.sent[0][2]["event_data"]
    assert data["value"] == 10
    assert data["ip"] == "-"


def test_missing_script_drops_event() -> None:
    env = simpy.Environment()
    tracker, transport = _tracker(env, script_src="")
    tracker.install()
    env.run()

    assert transport.sent == []
    assert tracker.dispatcher.sent == 0


def test_transport_failure_is_contained() -> None:
    env = simpy.Environment()
    tracker, _ = _tracker(env, transport_cls=FailingTransport)
    tracker.install()

    assert tracker.dispatcher.dispatch_custom_event({"name": "Lead"}, "trk_1") is not None
    env.run()
    assert tracker.dispatcher.sent == 0


def test_resolve_endpoint_falls_back_to_marker_query() -> None:
    loc = Location("https://shop.example.com/")
    doc = Document(location=loc, jar=CookieJar(now=lambda: T0))
    assert resolve_endpoint(doc, path="/api/track", marker_attribute="data-tracking-id") is None

    doc.scripts.append(Element(tag="script", attrs={"src": "/relative.js", "data-tracking-id": ""}))
    assert resolve_endpoint(doc, path="/api/track", marker_attribute="data-tracking-id") is None

    doc.scripts.append(Element(tag="script", attrs={"src": "https://cdn.example.org/t.js", "data-tracking-id": ""}))
    doc.scripts.pop(0)
    assert (
        resolve_endpoint(doc, path="/api/track", marker_attribute="data-tracking-id")
        == "https://cdn.example.org/api/track"
    )


def _snapshot(ip: str = "-") -> AttributionSnapshot:
    return AttributionSnapshot(fbc="-", fbp="-", ip=ip, in_iframe=True, utm_data={}, browser_info={})


def test_framed_page_view_reports_parent_url() -> None:
    env = simpy.Environment()
    page = PageFactory(clock=PageClock(env=env, start_dt_utc=T0)).build(
        PageConfig(url="https://widget.example.com/", referrer="https://parent.example.com/p", in_iframe=True)
    )
    state = TrackerState(visitor_id="v", session_id="s", page_view_id=1, in_iframe=True)

    payload = build_page_view_payload(
        state=state, window=page.window, snapshot=_snapshot(), tracking_id="t", timestamp="ts"
    )

    assert payload["url"] == "https://parent.example.com/p"
    assert payload["event_data"]["in_iframe"] is True


def test_custom_payload_ip_is_current() -> None:
    state = TrackerState(visitor_id="v", session_id="s", page_view_id=1)

    payload = build_custom_payload(
        state=state,
        url="https://shop.example.com/",
        event={"name": "Lead", "ip": "stale"},
        snapshot=_snapshot(ip="203.0.113.9"),
        tracking_id="t",
        timestamp="ts",
    )

    assert payload["type"] == "custom"
    assert payload["event_data"]["name"] == "Lead"
    assert payload["event_data"]["ip"] == "203.0.113.9"
