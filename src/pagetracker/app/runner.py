from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import simpy
import simpy.rt

from pagetracker.core.config import AppConfig, TimelineAction, load_config
from pagetracker.core.logging import get_logger
from pagetracker.core.types import PageClock
from pagetracker.features.dispatch.ip import HttpIpResolver, StaticIpResolver
from pagetracker.features.dispatch.transport import HttpxTransport, MemoryTransport
from pagetracker.features.dispatch.types import IpResolver, Transport
from pagetracker.features.page.service import COMMAND_BUFFER, BuiltPage, PageFactory, click_anchor
from pagetracker.features.persistence.duckdb_adapter import DuckDBAdapter
from pagetracker.features.persistence.service import DuckDBTransport
from pagetracker.features.tracker.service import Tracker


@dataclass(frozen=True)
class RunResult:
    installed: bool
    visitor_id: str | None
    session_id: str | None
    events_sent: int
    transport_kind: str
    duckdb_path: str | None = None
    navigations: list[str] = field(default_factory=list)


def build_transport(cfg: AppConfig, env: Any) -> Transport:
    kind = cfg.transport.kind
    if kind == "http":
        return HttpxTransport(timeout=cfg.tracker.send_timeout_seconds)
    if kind == "duckdb":
        sink = DuckDBTransport(
            adapter=DuckDBAdapter(path=cfg.transport.duckdb_path, clean_slate=cfg.transport.clean_slate)
        )
        sink.open()
        sink.start_periodic_flush(env)
        return sink
    return MemoryTransport()


def build_ip_resolver(cfg: AppConfig) -> IpResolver:
    if cfg.run.ip or cfg.transport.kind != "http":
        return StaticIpResolver(cfg.run.ip)
    return HttpIpResolver(url=cfg.tracker.ip_lookup_url, timeout=cfg.tracker.ip_lookup_timeout_seconds)


def page_start(start_date: str | None) -> datetime:
    """
    UTC wall time of the page load. A naive ISO value is taken as UTC; one
    with an offset is converted.
    """
    if not start_date:
        return datetime.now(UTC)
    dt = datetime.fromisoformat(start_date)
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def _play(env: Any, page: BuiltPage, timeline: list[TimelineAction]):
    for action in timeline:
        delay = action.at_seconds - float(env.now)
        if delay > 0:
            yield env.timeout(delay)
        if action.action == "push":
            buf = page.window.globals.setdefault(COMMAND_BUFFER, [])
            if hasattr(buf, "push"):
                buf.push(action.command)
            else:
                buf.append(action.command)
        elif action.action == "click" and action.anchor:
            click_anchor(page, action.anchor)


def run_visit(cfg: AppConfig) -> RunResult:
    logger = get_logger("pagetracker", cfg.logging.level)

    if cfg.run.realtime:
        env: Any = simpy.rt.RealtimeEnvironment(factor=1.0, strict=False)
    else:
        env = simpy.Environment()

    clock = PageClock(env=env, start_dt_utc=page_start(cfg.run.start_date))
    page = PageFactory(clock=clock).build(cfg.page)

    transport = build_transport(cfg, env)
    ip = build_ip_resolver(cfg)
    tracker = Tracker(env=env, window=page.window, clock=clock, transport=transport, ip=ip, cfg=cfg.tracker)

    installed = False
    try:
        installed = tracker.install()
        env.process(_play(env, page, cfg.page.timeline))
        logger.info("running page", extra={"context": "Run", "data": {"until_s": cfg.run.until_seconds}})
        env.run(until=cfg.run.until_seconds)
    finally:
        transport.close()
        ip.close()

    return RunResult(
        installed=installed,
        visitor_id=tracker.state.visitor_id,
        session_id=tracker.state.session_id,
        events_sent=tracker.dispatcher.sent,
        transport_kind=cfg.transport.kind,
        duckdb_path=cfg.transport.duckdb_path if cfg.transport.kind == "duckdb" else None,
        navigations=list(page.window.location.navigations),
    )


def run(config_path: str) -> RunResult:
    cfg = load_config(config_path)
    return run_visit(cfg)
