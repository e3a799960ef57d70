from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from pagetracker.core.config import PageConfig
from pagetracker.core.types import PageClock
from pagetracker.features.page.types import (
    CookieJar,
    Document,
    Element,
    Location,
    Navigator,
    Screen,
    Window,
)

COMMAND_BUFFER = "_lt"


def registrable_domain(hostname: str) -> str:
    """
    ".example.com" for "shop.example.com"; hosts with two labels or fewer
    are returned as ".host".
    """
    parts = hostname.split(".")
    if len(parts) <= 2:
        return "." + hostname
    return "." + ".".join(parts[-2:])


@dataclass(frozen=True)
class BuiltPage:
    window: Window
    anchors: dict[str, Element]


@dataclass(frozen=True)
class PageFactory:
    """
    Builds a Window from the `page:` section of the YAML config:

    page:
      url: https://shop.example.com/?utm_source=fb&fbclid=ABC
      script_src: https://tracker.example.net/track.js
      cookies: {_fbp: fb.1.1700000000000.123}
      anchors:
        buy: https://pay.hotmart.com/X123?off=a1
      queued:
        - [init, trk_1]
    """

    clock: PageClock

    def build(self, cfg: PageConfig) -> BuiltPage:
        now = self.clock.now
        location = Location(cfg.url)
        jar = CookieJar(now=now, enabled=cfg.cookies_enabled)

        # pre-existing cookies never expire within a simulated visit
        expires = (now() + timedelta(days=365)).astimezone(UTC)
        for name, value in cfg.cookies.items():
            jar.write(f"{name}={value};expires={_http_date(expires)};path=/")

        document = Document(location=location, jar=jar, referrer=cfg.referrer, title=cfg.title)

        if cfg.script_src:
            script = Element(tag="script", attrs={"src": cfg.script_src, "data-tracking-id": ""})
            document.scripts.append(script)
            document.current_script = script

        body = Element(tag="body")
        anchors = {
            name: Element(tag="a", attrs={"href": href}, parent=body)
            for name, href in cfg.anchors.items()
        }

        top: Window | None = None
        if cfg.in_iframe:
            top = _parent_window(cfg, jar)

        window = Window(
            location=location,
            document=document,
            navigator=Navigator(
                user_agent=cfg.user_agent,
                platform=cfg.platform,
                language=cfg.language,
                cookie_enabled=cfg.cookies_enabled,
            ),
            screen=Screen(width=cfg.screen[0], height=cfg.screen[1]),
            inner_width=cfg.viewport[0],
            inner_height=cfg.viewport[1],
            top=top,
        )
        window.globals[COMMAND_BUFFER] = [list(c) for c in cfg.queued]
        return BuiltPage(window=window, anchors=anchors)


def _parent_window(cfg: PageConfig, jar: CookieJar) -> Window:
    location = Location(cfg.referrer or cfg.url)
    return Window(
        location=location,
        document=Document(location=location, jar=jar),
        navigator=Navigator(cfg.user_agent, cfg.platform, cfg.language, cfg.cookies_enabled),
        screen=Screen(width=cfg.screen[0], height=cfg.screen[1]),
        inner_width=cfg.screen[0],
        inner_height=cfg.screen[1],
    )


def _http_date(dt: datetime) -> str:
    return dt.strftime("%a, %d %b %Y %H:%M:%S GMT")


def click_anchor(page: BuiltPage, name: str) -> Any:
    anchor = page.anchors.get(name)
    if anchor is None:
        raise KeyError(f"Unknown anchor {name!r}; known: {sorted(page.anchors)}")
    return page.window.document.click(anchor)
