from __future__ import annotations

import base64
import json
from datetime import UTC, datetime

import pytest

from pagetracker.core.types import PageClock
from pagetracker.features.identity_store.service import MemoryStore
from pagetracker.features.sessions.service import (
    SESSION_KEY,
    SessionManager,
    SessionRecord,
    campaign_fingerprint,
)

T0 = datetime(2026, 1, 1, tzinfo=UTC)
T0_MS = 1767225600000


def _decode(fingerprint: str) -> dict[str, str]:
    return json.loads(base64.b64decode(fingerprint))


class DummyEnv:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now


def _manager(store: MemoryStore, ids=None) -> tuple[SessionManager, DummyEnv]:
    env = DummyEnv()
    ids = ids or iter(f"sess_{i}" for i in range(100))
    mgr = SessionManager(
        store=store,
        clock=PageClock(env=env, start_dt_utc=T0),
        timeout_seconds=1800,
        new_id=lambda: next(ids),
    )
    return mgr, env


def _seed(store: MemoryStore, *, ago_s: float, campaign: str = "", session_id: str = "sess_old") -> None:
    ts = T0_MS - int(ago_s * 1000)
    store.set(SESSION_KEY, SessionRecord(ts, campaign, session_id).encode())


def test_first_visit_starts_session() -> None:
    store = MemoryStore()
    mgr, _ = _manager(store)

    res = mgr.resolve({})

    assert res.reason == "new"
    assert res.session_id == "sess_0"
    assert store.get(SESSION_KEY) == f"{T0_MS}__sess_0"


@pytest.mark.parametrize(
    "ago_s, expected_reason",
    [(1799, "continued"), (1800, "continued"), (1801, "timeout")],
)
def test_inactivity_boundary(ago_s: float, expected_reason: str) -> None:
    store = MemoryStore()
    _seed(store, ago_s=ago_s)
    mgr, _ = _manager(store)

    res = mgr.resolve({})

    assert res.reason == expected_reason
    assert (res.session_id == "sess_old") is (expected_reason == "continued")


def test_campaign_change_rotates() -> None:
    store = MemoryStore()
    _seed(store, ago_s=60, campaign=campaign_fingerprint({"utm_source": "google"}))
    mgr, _ = _manager(store)

    res = mgr.resolve({"utm_source": "facebook"})

    assert res.reason == "campaign_changed"
    assert res.rotated
    assert _decode(res.record.campaign) == {"utm_source": "facebook"}


def test_same_campaign_continues() -> None:
    fp = campaign_fingerprint({"utm_source": "fb", "utm_campaign": "launch"})
    store = MemoryStore()
    _seed(store, ago_s=60, campaign=fp)
    mgr, _ = _manager(store)

    res = mgr.resolve({"utm_campaign": "launch", "utm_source": "fb"})

    assert res.reason == "continued"
    assert res.session_id == "sess_old"


def test_page_without_utm_never_rotates_on_campaign() -> None:
    store = MemoryStore()
    _seed(store, ago_s=60, campaign=campaign_fingerprint({"utm_source": "google"}))
    mgr, _ = _manager(store)

    res = mgr.resolve({"q": "shoes"})

    assert res.reason == "continued"
    assert res.record.campaign == ""


def test_each_load_extends_the_session() -> None:
    store = MemoryStore()
    mgr, env = _manager(store)
    first = mgr.resolve({})

    # two loads 20 minutes apart never cross the 30 minute window
    env.now = 20 * 60
    assert mgr.resolve({}).session_id == first.session_id
    env.now = 40 * 60
    assert mgr.resolve({}).session_id == first.session_id
    env.now = 71 * 60
    assert mgr.resolve({}).reason == "timeout"


def test_record_keeps_underscored_session_id() -> None:
    rec = SessionRecord.parse("1767225600000_eyJ1dG1fc291cmNlIjoiZmIifQ==_sess_abc123")

    assert rec == SessionRecord(1767225600000, "eyJ1dG1fc291cmNlIjoiZmIifQ==", "sess_abc123")


@pytest.mark.parametrize("value", [None, "", "garbage", "abc_x_sess_1", "123_x_"])
def test_malformed_record_starts_new_session(value) -> None:
    assert SessionRecord.parse(value) is None


def test_fingerprint_field_order_is_fixed() -> None:
    a = campaign_fingerprint({"utm_medium": "cpc", "utm_source": "fb"})
    b = campaign_fingerprint({"utm_source": "fb", "utm_medium": "cpc"})

    assert a == b
    assert list(_decode(a)) == ["utm_source", "utm_medium"]
    assert campaign_fingerprint({"fbclid": "x"}) == ""
