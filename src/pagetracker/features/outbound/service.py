from __future__ import annotations

from typing import Any
from urllib.parse import urlencode, urlsplit, urlunsplit

from pagetracker.core.config import TrackerConfig
from pagetracker.core.logging import get_logger
from pagetracker.features.dispatch.service import EventDispatcher
from pagetracker.features.page.types import ClickEvent, Window
from pagetracker.features.tracker.types import TrackerState

LISTENER_FLAG = "__hotmartClickListenerAttached"


def append_query_param(url: str, name: str, value: str) -> str:
    """
    Append name=value to the query, keeping existing parameters (and any
    existing `name`) untouched, like URLSearchParams.append.
    """
    parts = urlsplit(url)
    extra = urlencode({name: value})
    query = f"{parts.query}&{extra}" if parts.query else extra
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))


class OutboundLinkInterceptor:
    """
    One delegated click listener per page. Clicks on links to the checkout
    (href containing `outbound_marker`) are held back, reported, tagged with
    the visitor id and then followed.
    """

    def __init__(
        self,
        *,
        window: Window,
        state: TrackerState,
        dispatcher: EventDispatcher,
        cfg: TrackerConfig,
    ) -> None:
        self.window = window
        self.state = state
        self.dispatcher = dispatcher
        self.cfg = cfg
        self._logger = get_logger(__name__)

    def arm(self) -> bool:
        if self.window.globals.get(LISTENER_FLAG):
            return False
        self.window.globals[LISTENER_FLAG] = True
        try:
            self.window.document.add_event_listener("click", self.on_click)
        except Exception:
            self._logger.exception("click listener not attached", extra={"context": "Interaction"})
            return False
        return True

    def is_outbound(self, href: str) -> bool:
        return bool(href) and self.cfg.outbound_marker in href

    def on_click(self, event: ClickEvent) -> None:
        anchor = event.target.closest("a")
        if anchor is None or not self.is_outbound(anchor.href):
            return

        href = anchor.href
        event.prevent_default()
        destination = href
        try:
            self._logger.info("outbound click", extra={"context": "Interaction", "data": href})
            self._report(href)
            destination = append_query_param(href, self.cfg.outbound_param, self.state.visitor_id or "")
        except Exception:
            self._logger.exception("outbound click tracking failed", extra={"context": "Interaction"})
        # the send is already on its way; leaving the page does not cancel it
        self._logger.info("redirecting", extra={"context": "Interaction", "data": destination})
        self.window.location.assign(destination)

    def _report(self, href: str) -> None:
        snap = self.dispatcher.snapshot()
        click: dict[str, Any] = {
            "type": "hotmart_click",
            "visitor_id": self.state.visitor_id,
            "session_id": self.state.session_id,
            "page_view_id": self.state.page_view_id,
            "url": href,
            "fbc": snap.fbc,
            "fbp": snap.fbp,
            "user_agent": self.window.navigator.user_agent,
            "browser_info": snap.browser_info,
            "utm_data": snap.utm_data,
            "in_iframe": snap.in_iframe,
            "ip": snap.ip,
        }
        for tracking_id in list(self.state.accounts):
            self.dispatcher.dispatch_custom_event(click, tracking_id)
