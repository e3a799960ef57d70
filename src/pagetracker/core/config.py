from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


@dataclass(frozen=True)
class TrackerConfig:
    session_timeout_seconds: float = 1800.0
    poll_interval_seconds: float = 0.5
    poll_max_attempts: int = 10
    cookie_ttl_minutes: int = 365 * 24 * 60
    outbound_marker: str = "hotmart"
    outbound_param: str = "xcod"
    endpoint_path: str = "/api/track"
    script_marker_attribute: str = "data-tracking-id"
    ip_lookup_url: str = "https://api.ipify.org?format=json"
    ip_lookup_timeout_seconds: float = 5.0
    send_timeout_seconds: float = 10.0
    persist_synthesized_fbc: bool = False
    share_cookies_across_subdomains: bool = False


@dataclass(frozen=True)
class TimelineAction:
    at_seconds: float
    action: str  # "push" | "click"
    command: list[Any] | None = None
    anchor: str | None = None


@dataclass(frozen=True)
class PageConfig:
    url: str
    referrer: str = ""
    title: str = ""
    user_agent: str = "Mozilla/5.0 (X11; Linux x86_64)"
    platform: str = "Linux x86_64"
    language: str = "en-US"
    screen: tuple[int, int] = (1920, 1080)
    viewport: tuple[int, int] = (1280, 720)
    cookies_enabled: bool = True
    in_iframe: bool = False
    cookies: dict[str, str] = field(default_factory=dict)
    script_src: str = ""
    anchors: dict[str, str] = field(default_factory=dict)
    queued: list[list[Any]] = field(default_factory=list)
    timeline: list[TimelineAction] = field(default_factory=list)


@dataclass(frozen=True)
class TransportConfig:
    kind: str = "memory"  # "http" | "duckdb" | "memory"
    duckdb_path: str = "data/tracked_events.duckdb"
    clean_slate: bool = False


@dataclass(frozen=True)
class RunConfig:
    until_seconds: float = 10.0
    realtime: bool = False
    start_date: str | None = None
    ip: str | None = None  # fixed IP instead of a lookup


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


@dataclass(frozen=True)
class AppConfig:
    tracker: TrackerConfig
    page: PageConfig
    transport: TransportConfig
    run: RunConfig
    logging: LoggingConfig
    raw: dict[str, Any]  # original parsed YAML (for debugging)


TRANSPORT_KINDS = {"http", "duckdb", "memory"}
TIMELINE_ACTIONS = {"push", "click"}


def load_yaml(path: str | Path) -> dict[str, Any]:
    p = Path(path)
    data = yaml.safe_load(p.read_text())
    if not isinstance(data, dict):
        raise ValueError("Config YAML must parse to a dict at the top level.")
    return data


_TRUE_WORDS = {"true", "yes", "on", "1"}
_FALSE_WORDS = {"false", "no", "off", "0"}


def _as_bool(value: Any, name: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        word = value.strip().lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
    elif isinstance(value, int) and value in (0, 1):
        return bool(value)
    raise ValueError(f"{name} must be a boolean, got {value!r}")


def _as_int(value: Any, name: str) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    raise ValueError(f"{name} must be a whole number, got {value!r}")


def _as_float(value: Any, name: str) -> float:
    if not isinstance(value, bool):
        try:
            return float(value)
        except (TypeError, ValueError):
            pass
    raise ValueError(f"{name} must be a number, got {value!r}")


def _as_str(value: Any, name: str) -> str:
    if isinstance(value, str):
        return value
    raise ValueError(f"{name} must be a string, got {value!r}")


_SCALAR_PARSERS = {bool: _as_bool, int: _as_int, float: _as_float, str: _as_str}


def _pair(value: Any, name: str, default: tuple[int, int]) -> tuple[int, int]:
    if value is None:
        return default
    if isinstance(value, str) and "x" in value:
        w, h = value.lower().split("x", 1)
        return int(w), int(h)
    if isinstance(value, (list, tuple)) and len(value) == 2:
        return int(value[0]), int(value[1])
    raise ValueError(f"{name} must be 'WxH' or [w, h], got {value!r}")


def parse_tracker_config(data: dict[str, Any] | None) -> TrackerConfig:
    data = data or {}
    if not isinstance(data, dict):
        raise TypeError("tracker must be a mapping/dict")

    defaults = TrackerConfig()
    known = set(TrackerConfig.__dataclass_fields__)
    unknown = set(data) - known
    if unknown:
        raise ValueError(f"Unknown tracker config keys: {sorted(unknown)}")

    cfg = TrackerConfig(
        **{
            key: _SCALAR_PARSERS[type(getattr(defaults, key))](data[key], f"tracker.{key}")
            if key in data
            else getattr(defaults, key)
            for key in known
        }
    )
    if cfg.poll_max_attempts < 1:
        raise ValueError("tracker.poll_max_attempts must be >= 1")
    if cfg.poll_interval_seconds <= 0:
        raise ValueError("tracker.poll_interval_seconds must be > 0")
    return cfg


def _parse_timeline(raw: Any) -> list[TimelineAction]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise TypeError("page.timeline must be a list")

    out: list[TimelineAction] = []
    for i, item in enumerate(raw):
        if not isinstance(item, dict):
            raise TypeError(f"page.timeline[{i}] must be a mapping/dict")
        action = str(item.get("action", "")).strip().lower()
        if action not in TIMELINE_ACTIONS:
            raise ValueError(f"page.timeline[{i}].action must be one of {sorted(TIMELINE_ACTIONS)}")
        command = item.get("command")
        if action == "push" and not isinstance(command, list):
            raise ValueError(f"page.timeline[{i}].command must be a list like ['event', 'Lead']")
        anchor = item.get("anchor")
        if action == "click" and not anchor:
            raise ValueError(f"page.timeline[{i}].anchor is required for click actions")
        out.append(
            TimelineAction(
                at_seconds=_as_float(item.get("at", 0.0), f"page.timeline[{i}].at"),
                action=action,
                command=list(command) if command is not None else None,
                anchor=str(anchor) if anchor else None,
            )
        )
    return sorted(out, key=lambda a: a.at_seconds)


def parse_page_config(page: dict[str, Any]) -> PageConfig:
    if not isinstance(page, dict):
        raise TypeError("page must be a mapping/dict")
    if not page.get("url"):
        raise ValueError("page.url is required")

    return PageConfig(
        url=str(page["url"]),
        referrer=str(page.get("referrer", "")),
        title=str(page.get("title", "")),
        user_agent=str(page.get("user_agent", PageConfig.user_agent)),
        platform=str(page.get("platform", PageConfig.platform)),
        language=str(page.get("language", PageConfig.language)),
        screen=_pair(page.get("screen"), "page.screen", PageConfig.screen),
        viewport=_pair(page.get("viewport"), "page.viewport", PageConfig.viewport),
        cookies_enabled=_as_bool(page.get("cookies_enabled", True), "page.cookies_enabled"),
        in_iframe=_as_bool(page.get("in_iframe", False), "page.in_iframe"),
        cookies={str(k): str(v) for k, v in (page.get("cookies") or {}).items()},
        script_src=str(page.get("script_src", "")),
        anchors={str(k): str(v) for k, v in (page.get("anchors") or {}).items()},
        queued=[list(c) for c in (page.get("queued") or [])],
        timeline=_parse_timeline(page.get("timeline")),
    )


def parse_config(data: dict[str, Any]) -> AppConfig:
    for key in ["page", "logging"]:
        if key not in data:
            raise ValueError(f"Missing required top-level config section: '{key}'")

    transport = data.get("transport") or {}
    run = data.get("run") or {}
    logging_cfg = data.get("logging") or {}

    transport_cfg = TransportConfig(
        kind=str(transport.get("kind", "memory")).lower(),
        duckdb_path=str(transport.get("duckdb_path", TransportConfig.duckdb_path)),
        clean_slate=_as_bool(transport.get("clean_slate", False), "transport.clean_slate"),
    )
    if transport_cfg.kind not in TRANSPORT_KINDS:
        raise ValueError(f"transport.kind must be one of {sorted(TRANSPORT_KINDS)}")

    run_cfg = RunConfig(
        until_seconds=_as_float(run.get("until_seconds", 10.0), "run.until_seconds"),
        realtime=_as_bool(run.get("realtime", False), "run.realtime"),
        start_date=str(run["start_date"]) if run.get("start_date") else None,
        ip=str(run["ip"]) if run.get("ip") else None,
    )

    log_cfg = LoggingConfig(level=str(logging_cfg.get("level", "INFO")).upper())

    return AppConfig(
        tracker=parse_tracker_config(data.get("tracker")),
        page=parse_page_config(data["page"]),
        transport=transport_cfg,
        run=run_cfg,
        logging=log_cfg,
        raw=data,
    )


def load_config(path: str | Path) -> AppConfig:
    data = load_yaml(path)
    return parse_config(data)
