from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any
from urllib.parse import urlsplit

# ----------------------------
# Cookies
# ----------------------------


class CookieJar:
    """
    document.cookie semantics for one origin.

    - write() takes a single "name=value; expires=...; path=/" string
    - read() returns "a=1; b=2" for all live cookies
    - enabled=False models a browser with cookies blocked: writes are
      dropped silently and reads come back empty.
    """

    def __init__(self, *, now: Callable[[], datetime], enabled: bool = True) -> None:
        self._now = now
        self.enabled = enabled
        self._values: dict[str, str] = {}
        self._expires: dict[str, datetime | None] = {}
        self.attributes: dict[str, dict[str, str]] = {}

    def write(self, cookie: str) -> None:
        if not self.enabled:
            return
        first, *attrs = [p.strip() for p in cookie.split(";")]
        if "=" not in first:
            return
        name, value = first.split("=", 1)
        name = name.strip()
        if not name:
            return

        parsed: dict[str, str] = {}
        for attr in attrs:
            if not attr:
                continue
            k, _, v = attr.partition("=")
            parsed[k.strip().lower()] = v.strip()

        expires = _parse_expires(parsed.get("expires"))
        if expires is not None and expires <= self._now():
            self._delete(name)
            return

        self._values[name] = value
        self._expires[name] = expires
        self.attributes[name] = parsed

    def read(self) -> str:
        if not self.enabled:
            return ""
        self._evict_expired()
        return "; ".join(f"{k}={v}" for k, v in self._values.items())

    def get(self, name: str) -> str | None:
        self._evict_expired()
        return self._values.get(name)

    def _delete(self, name: str) -> None:
        self._values.pop(name, None)
        self._expires.pop(name, None)
        self.attributes.pop(name, None)

    def _evict_expired(self) -> None:
        now = self._now()
        for name, exp in list(self._expires.items()):
            if exp is not None and exp <= now:
                self._delete(name)


def _parse_expires(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        dt = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


# ----------------------------
# DOM
# ----------------------------


@dataclass(eq=False)
class Element:
    tag: str
    attrs: dict[str, str] = field(default_factory=dict)
    parent: Element | None = None

    def get_attribute(self, name: str) -> str | None:
        return self.attrs.get(name)

    def has_attribute(self, name: str) -> bool:
        return name in self.attrs

    @property
    def href(self) -> str:
        return self.attrs.get("href", "")

    @property
    def src(self) -> str:
        return self.attrs.get("src", "")

    def closest(self, tag: str) -> Element | None:
        node: Element | None = self
        tag = tag.lower()
        while node is not None:
            if node.tag.lower() == tag:
                return node
            node = node.parent
        return None


@dataclass(eq=False)
class ClickEvent:
    target: Element
    default_prevented: bool = False

    def prevent_default(self) -> None:
        self.default_prevented = True


ClickListener = Callable[[ClickEvent], None]


class Location:
    def __init__(self, href: str) -> None:
        self.href = href
        self.navigations: list[str] = []

    @property
    def search(self) -> str:
        q = urlsplit(self.href).query
        return f"?{q}" if q else ""

    @property
    def hostname(self) -> str:
        return urlsplit(self.href).hostname or ""

    def assign(self, url: str) -> None:
        self.navigations.append(url)


class Document:
    def __init__(
        self,
        *,
        location: Location,
        jar: CookieJar,
        referrer: str = "",
        title: str = "",
        character_set: str = "UTF-8",
    ) -> None:
        self._location = location
        self._jar = jar
        self.referrer = referrer
        self.title = title
        self.character_set = character_set
        self.scripts: list[Element] = []
        self.current_script: Element | None = None
        self._listeners: dict[str, list[ClickListener]] = {}

    @property
    def URL(self) -> str:  # noqa: N802 - mirrors the DOM name
        return self._location.href

    @property
    def cookie(self) -> str:
        return self._jar.read()

    @cookie.setter
    def cookie(self, value: str) -> None:
        self._jar.write(value)

    def query_script(self, attribute: str) -> Element | None:
        for s in self.scripts:
            if s.has_attribute(attribute):
                return s
        return None

    def add_event_listener(self, event_type: str, listener: ClickListener) -> None:
        self._listeners.setdefault(event_type, []).append(listener)

    def listener_count(self, event_type: str) -> int:
        return len(self._listeners.get(event_type, []))

    def click(self, target: Element) -> ClickEvent:
        """
        Dispatch a click. Without preventDefault, clicking a link navigates.
        """
        event = ClickEvent(target=target)
        for listener in list(self._listeners.get("click", [])):
            listener(event)

        if not event.default_prevented:
            anchor = target.closest("a")
            if anchor is not None and anchor.href:
                self._location.assign(anchor.href)
        return event


@dataclass(frozen=True)
class Navigator:
    user_agent: str
    platform: str
    language: str
    cookie_enabled: bool


@dataclass(frozen=True)
class Screen:
    width: int
    height: int


class Window:
    """
    Top-level browsing context (or a frame when `top` is another Window).
    `globals` holds page-level names such as the `_lt` command buffer.
    """

    def __init__(
        self,
        *,
        location: Location,
        document: Document,
        navigator: Navigator,
        screen: Screen,
        inner_width: int,
        inner_height: int,
        top: Window | None = None,
    ) -> None:
        self.location = location
        self.document = document
        self.navigator = navigator
        self.screen = screen
        self.inner_width = inner_width
        self.inner_height = inner_height
        self.top = top if top is not None else self
        self.globals: dict[str, Any] = {}

    @property
    def is_top_level(self) -> bool:
        return self.top is self
