from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any
from urllib.parse import parse_qsl, urlsplit

from pagetracker.core.logging import get_logger
from pagetracker.core.types import PageClock
from pagetracker.features.identity_store.service import KeyValueStore
from pagetracker.features.page.types import Navigator

SENTINEL = "-"
FBC_KEY = "_fbc"
FBP_KEY = "_fbp"
UTM_FIELDS = ("utm_source", "utm_medium", "utm_campaign", "utm_content", "utm_term")

_logger = get_logger(__name__)


def parse_query(url: str) -> dict[str, str]:
    """
    Query parameters of `url`, decoded. Repeated keys: the first one wins,
    as with URLSearchParams.get.
    """
    params: dict[str, str] = {}
    try:
        pairs = parse_qsl(urlsplit(url).query, keep_blank_values=True)
    except ValueError:
        _logger.warning("unparseable url", extra={"context": "URL", "data": url}, exc_info=True)
        return {}
    for key, value in pairs:
        params.setdefault(key, value)
    return params


def extract_utm(params: dict[str, str]) -> dict[str, str]:
    # absent fields stay absent; the backend fills defaults
    return {f: params[f] for f in UTM_FIELDS if params.get(f)}


def synthesize_fbc(fbclid: str, now_ms: int) -> str:
    # same layout as Meta's own _fbc cookie: fb.<version>.<creation ms>.<click id>
    return f"fb.1.{now_ms}.{fbclid}"


def facebook_ids(
    store: KeyValueStore,
    params: dict[str, str],
    clock: PageClock,
    *,
    persist_synthesized: bool = False,
) -> tuple[str, str]:
    """
    Returns (fbc, fbp). Never raises; missing values are SENTINEL.
    """
    try:
        fbp = store.get(FBP_KEY) or SENTINEL
        fbc = store.get(FBC_KEY)
        if not fbc:
            fbclid = params.get("fbclid")
            if fbclid:
                fbc = synthesize_fbc(fbclid, clock.now_ms())
                _logger.debug("fbc synthesized from fbclid", extra={"context": "Facebook", "data": fbc})
                if persist_synthesized:
                    store.set(FBC_KEY, fbc)
            else:
                fbc = SENTINEL
        return fbc, fbp
    except Exception:
        _logger.exception("fbc/fbp lookup failed", extra={"context": "Facebook"})
        return SENTINEL, SENTINEL


def browser_info(navigator: Navigator) -> dict[str, Any]:
    return {
        "userAgent": navigator.user_agent,
        "platform": navigator.platform,
        "language": navigator.language,
        "cookiesEnabled": navigator.cookie_enabled,
    }


@dataclass(frozen=True)
class AttributionSnapshot:
    fbc: str
    fbp: str
    ip: str
    in_iframe: bool
    utm_data: dict[str, str] = field(default_factory=dict)
    browser_info: dict[str, Any] = field(default_factory=dict)

    def as_event_data(self) -> dict[str, Any]:
        return {
            "utm_data": dict(self.utm_data),
            "browser_info": dict(self.browser_info),
            "fbc": self.fbc,
            "fbp": self.fbp,
            "ip": self.ip,
            "in_iframe": self.in_iframe,
        }


def take_snapshot(
    *,
    store: KeyValueStore,
    params: dict[str, str],
    clock: PageClock,
    navigator: Navigator,
    ip: str | None,
    in_iframe: bool,
    persist_synthesized_fbc: bool = False,
) -> AttributionSnapshot:
    fbc, fbp = facebook_ids(store, params, clock, persist_synthesized=persist_synthesized_fbc)
    return AttributionSnapshot(
        fbc=fbc,
        fbp=fbp,
        ip=ip or SENTINEL,
        in_iframe=in_iframe,
        utm_data=extract_utm(params),
        browser_info=browser_info(navigator),
    )
