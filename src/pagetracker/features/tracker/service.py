from __future__ import annotations

from collections.abc import Callable
from typing import Any

from pagetracker.core.config import TrackerConfig
from pagetracker.core.logging import get_logger
from pagetracker.core.types import PageClock
from pagetracker.features.attribution.service import parse_query
from pagetracker.features.commands.service import CommandQueue
from pagetracker.features.commands.types import (
    Command,
    EventBody,
    EventCommand,
    InitCommand,
    UnknownCommand,
)
from pagetracker.features.dispatch.service import EventDispatcher
from pagetracker.features.dispatch.types import IpResolver, Transport
from pagetracker.features.identity_store.service import IdentityStore
from pagetracker.features.outbound.service import OutboundLinkInterceptor
from pagetracker.features.page.service import COMMAND_BUFFER, registrable_domain
from pagetracker.features.page.types import Window
from pagetracker.features.sessions.service import SessionManager
from pagetracker.features.tracker.types import TrackerState
from pagetracker.features.visitor.service import VisitorIdentifier

INIT_FLAG = "__hotAPIInitialized"
VERSION = "1.0"


class Tracker:
    """
    The injected tracking script, one instance per page.

    install():
      - does nothing in a frame or when another tracker already ran here
      - starts the IP lookup
      - storage probe -> visitor id -> page view id -> URL params -> session
      - swaps the host's `_lt` list for a live CommandQueue and replays it
    """

    def __init__(
        self,
        *,
        env: Any,
        window: Window,
        clock: PageClock,
        transport: Transport,
        ip: IpResolver,
        cfg: TrackerConfig | None = None,
    ) -> None:
        self.env = env
        self.window = window
        self.clock = clock
        self.transport = transport
        self.ip = ip
        self.cfg = cfg or TrackerConfig()

        self.state = TrackerState(in_iframe=not window.is_top_level)
        self.state.domain = registrable_domain(window.location.hostname)

        self.store = IdentityStore(
            document=window.document,
            clock=clock,
            default_ttl_minutes=self.cfg.cookie_ttl_minutes,
            domain=self.state.domain if self.cfg.share_cookies_across_subdomains else None,
        )
        self.visitors = VisitorIdentifier(store=self.store)
        self.sessions = SessionManager(
            store=self.store,
            clock=clock,
            timeout_seconds=self.cfg.session_timeout_seconds,
        )
        self.dispatcher = EventDispatcher(
            env=env,
            window=window,
            state=self.state,
            store=self.store,
            clock=clock,
            ip=ip,
            transport=transport,
            cfg=self.cfg,
        )
        self.interceptor = OutboundLinkInterceptor(
            window=window,
            state=self.state,
            dispatcher=self.dispatcher,
            cfg=self.cfg,
        )
        self.queue: CommandQueue | None = None
        self.installed = False
        self._logger = get_logger(__name__)

    # ----------------------------
    # Lifecycle
    # ----------------------------
    def install(self) -> bool:
        g = self.window.globals
        if g.get(INIT_FLAG) or not self.window.is_top_level:
            self._logger.info("already initialized or inside a frame, exiting", extra={"context": "Init"})
            return False
        g[INIT_FLAG] = True
        self.installed = True

        self._step("IP", self.ip.start)
        self._init()
        return True

    def _init(self) -> None:
        self._logger.info("starting tracker", extra={"context": "Init", "data": {"version": VERSION}})
        self._logger.debug("cookie domain", extra={"context": "Init", "data": self.state.domain})
        self._step("Storage", self.store.initialize)
        self._step("VisitorID", self._resolve_visitor)

        if self.state.page_view_id is not None:
            return
        self.state.page_view_id = self.clock.now_ms()

        self._step("URL", self._read_params)
        self._step("Session", self._resolve_session)
        self._step("Command", self._bind_queue)

    def _step(self, context: str, fn: Callable[[], Any]) -> Any:
        try:
            return fn()
        except Exception:
            self._logger.exception("init step failed", extra={"context": context})
            return None

    def _resolve_visitor(self) -> None:
        self.state.visitor_id = self.visitors.get_or_create()

    def _read_params(self) -> None:
        self.state.url_params = parse_query(self.window.location.href)

    def _resolve_session(self) -> None:
        res = self.sessions.resolve(self.state.url_params)
        self.state.session_id = res.session_id
        self.state.campaign = res.record.campaign

    def _bind_queue(self) -> None:
        existing = self.window.globals.get(COMMAND_BUFFER)
        if isinstance(existing, CommandQueue):
            queue = existing
        else:
            queue = CommandQueue(existing if isinstance(existing, list) else None)
        self.window.globals[COMMAND_BUFFER] = queue
        self.queue = queue
        queue.flush_then_rebind(self.handle)

    # ----------------------------
    # Commands
    # ----------------------------
    def handle(self, command: Command) -> None:
        if isinstance(command, InitCommand):
            self._register_account(command.tracking_id)
        elif isinstance(command, EventCommand):
            self.track_event(command.event)
        elif isinstance(command, UnknownCommand):
            self._logger.debug(
                "ignoring unknown command", extra={"context": "Command", "data": command.name}
            )

    def _register_account(self, tracking_id: str) -> None:
        if tracking_id in self.state.accounts:
            self._logger.info(
                "tracking id already initialized",
                extra={"context": "Command", "tracking_id": tracking_id},
            )
            return

        self.state.accounts.append(tracking_id)
        self._logger.info("tracking id added", extra={"context": "Command", "tracking_id": tracking_id})
        if self.state.visitor_id:
            self.dispatcher.dispatch_page_view(tracking_id)
            self.interceptor.arm()

    def track_event(self, event: EventBody) -> int:
        """
        Fan one event out to every registered account. Returns sends attempted.
        """
        payload = event.as_payload()
        for tracking_id in list(self.state.accounts):
            self.dispatcher.dispatch_custom_event(payload, tracking_id)
        return len(self.state.accounts)
