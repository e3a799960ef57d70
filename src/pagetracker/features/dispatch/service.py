from __future__ import annotations

from collections.abc import Mapping
from typing import Any
from urllib.parse import urlsplit

from pagetracker.core.config import TrackerConfig
from pagetracker.core.logging import get_logger
from pagetracker.core.types import PageClock
from pagetracker.features.attribution.service import AttributionSnapshot, take_snapshot
from pagetracker.features.identity_store.service import KeyValueStore
from pagetracker.features.page.types import Document, Window
from pagetracker.features.tracker.types import TrackerState

from .types import IpResolver, Transport

# ----------------------------
# Payload builders (pure)
# ----------------------------


def build_page_view_payload(
    *,
    state: TrackerState,
    window: Window,
    snapshot: AttributionSnapshot,
    tracking_id: str,
    timestamp: str,
) -> dict[str, Any]:
    doc = window.document
    event_data = {
        "title": doc.title,
        "encoding": doc.character_set,
        "referrer": doc.referrer or "",
        **snapshot.as_event_data(),
        "campaign_data": state.campaign,
    }
    return {
        "type": "pageview",
        "tracking_id": tracking_id,
        "visitor_id": state.visitor_id,
        "session_id": state.session_id,
        "page_view_id": state.page_view_id,
        "timestamp": timestamp,
        "url": doc.referrer if state.in_iframe else doc.URL,
        "referrer": doc.referrer or "",
        "user_agent": window.navigator.user_agent,
        "screen_resolution": f"{window.screen.width}x{window.screen.height}",
        "viewport_size": f"{window.inner_width}x{window.inner_height}",
        "event_data": event_data,
    }


def build_custom_payload(
    *,
    state: TrackerState,
    url: str,
    event: Mapping[str, Any],
    snapshot: AttributionSnapshot,
    tracking_id: str,
    timestamp: str,
) -> dict[str, Any]:
    event_data = {**snapshot.as_event_data(), **event}
    # the freshest IP wins over whatever the caller captured
    event_data["ip"] = snapshot.ip
    return {
        "type": str(event.get("type") or "custom"),
        "tracking_id": tracking_id,
        "visitor_id": state.visitor_id,
        "session_id": state.session_id,
        "page_view_id": state.page_view_id,
        "timestamp": timestamp,
        "url": url,
        "event_data": event_data,
    }


def resolve_endpoint(document: Document, *, path: str, marker_attribute: str) -> str | None:
    """
    The backend lives wherever the tracking script was served from:
    <origin of the script src> + path.
    """
    script = document.current_script or document.query_script(marker_attribute)
    if script is None or not script.src:
        return None
    parts = urlsplit(script.src)
    if not parts.scheme or not parts.netloc:
        return None
    return f"{parts.scheme}://{parts.netloc}{path}"


# ----------------------------
# Service
# ----------------------------


class EventDispatcher:
    """
    Assembles and sends tracker events.

    - dispatch_page_view: SimPy process; polls every poll_interval_seconds
      until fbc/fbp and the IP are known, or poll_max_attempts checks have
      run, then sends with whatever is available.
    - dispatch_custom_event: builds and sends in the same turn (no waiting).
    - send: POST target derived from the script tag; failures are logged.
    """

    def __init__(
        self,
        *,
        env: Any,
        window: Window,
        state: TrackerState,
        store: KeyValueStore,
        clock: PageClock,
        ip: IpResolver,
        transport: Transport,
        cfg: TrackerConfig,
    ) -> None:
        self.env = env
        self.window = window
        self.state = state
        self.store = store
        self.clock = clock
        self.ip = ip
        self.transport = transport
        self.cfg = cfg
        self.sent = 0
        self._logger = get_logger(__name__)

    def snapshot(self) -> AttributionSnapshot:
        return take_snapshot(
            store=self.store,
            params=self.state.url_params,
            clock=self.clock,
            navigator=self.window.navigator,
            ip=self.ip.ip,
            in_iframe=self.state.in_iframe,
            persist_synthesized_fbc=self.cfg.persist_synthesized_fbc,
        )

    # ----- page views -----
    def dispatch_page_view(self, tracking_id: str) -> Any:
        return self.env.process(self._page_view_proc(tracking_id))

    def _page_view_proc(self, tracking_id: str):
        max_attempts = int(self.cfg.poll_max_attempts)
        attempts = 0
        while True:
            attempts += 1
            snap = self.snapshot()
            ready = bool(snap.fbc and snap.fbp and self.ip.ip)
            self._logger.debug(
                f"waiting for cookies and ip, attempt {attempts} of {max_attempts}",
                extra={"context": "PageView", "tracking_id": tracking_id},
            )
            if ready or attempts >= max_attempts:
                break
            yield self.env.timeout(self.cfg.poll_interval_seconds)

        try:
            if self.ip.ip is None:
                self._logger.info(
                    "ip unresolved after polling, sending without it",
                    extra={"context": "PageView", "tracking_id": tracking_id},
                )
            payload = build_page_view_payload(
                state=self.state,
                window=self.window,
                snapshot=self.snapshot(),
                tracking_id=tracking_id,
                timestamp=self.clock.iso_now(),
            )
        except Exception:
            self._logger.exception("page view assembly failed", extra={"context": "PageView"})
            return
        self.send(payload)

    # ----- custom events -----
    def dispatch_custom_event(self, event: Mapping[str, Any], tracking_id: str) -> dict[str, Any] | None:
        try:
            payload = build_custom_payload(
                state=self.state,
                url=self.window.location.href,
                event=event,
                snapshot=self.snapshot(),
                tracking_id=tracking_id,
                timestamp=self.clock.iso_now(),
            )
        except Exception:
            self._logger.exception(
                "custom event assembly failed",
                extra={"context": "Event", "tracking_id": tracking_id},
            )
            return None
        self.send(payload)
        return payload

    # ----- transport -----
    def send(self, payload: dict[str, Any]) -> bool:
        url = resolve_endpoint(
            self.window.document,
            path=self.cfg.endpoint_path,
            marker_attribute=self.cfg.script_marker_attribute,
        )
        if url is None:
            self._logger.error(
                "tracking script not found, event dropped",
                extra={"context": "Backend", "event_type": payload.get("type")},
            )
            return False

        try:
            self.transport.send(url, payload)
        except Exception:
            self._logger.exception(
                "send failed", extra={"context": "Backend", "event_type": payload.get("type")}
            )
            return False

        self.sent += 1
        self._logger.info(
            "event sent",
            extra={
                "context": "Backend",
                "event_type": payload.get("type"),
                "tracking_id": payload.get("tracking_id"),
                "visitor_id": payload.get("visitor_id"),
                "session_id": payload.get("session_id"),
            },
        )
        return True

