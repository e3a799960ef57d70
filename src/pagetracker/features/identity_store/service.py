from __future__ import annotations

from datetime import UTC, timedelta
from typing import Protocol

from pagetracker.core.logging import get_logger
from pagetracker.core.types import PageClock
from pagetracker.features.page.types import Document

PROBE_COOKIE = "test"
EXPIRED = "Thu, 01 Jan 1970 00:00:00 GMT"


class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None: ...
    def set(self, key: str, value: str, ttl_minutes: float | None = None) -> None: ...


class MemoryStore:
    """
    Per-page fallback. Lost on reload.
    """

    def __init__(self) -> None:
        self.data: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self.data.get(key) or None

    def set(self, key: str, value: str, ttl_minutes: float | None = None) -> None:
        self.data[key] = value


class CookieStore:
    def __init__(
        self,
        *,
        document: Document,
        clock: PageClock,
        default_ttl_minutes: int,
        domain: str | None = None,
    ) -> None:
        self.document = document
        self.clock = clock
        self.default_ttl_minutes = default_ttl_minutes
        self.domain = domain
        self._logger = get_logger(__name__)

    def get(self, key: str) -> str | None:
        try:
            prefix = key + "="
            for c in self.document.cookie.split(";"):
                c = c.strip()
                if c.startswith(prefix):
                    value = c[len(prefix) :]
                    self._logger.debug(
                        "cookie found", extra={"context": "Cookie", "data": {key: value}}
                    )
                    return value
            return None
        except Exception:
            self._logger.exception("cookie read failed", extra={"context": "Cookie"})
            return None

    def set(self, key: str, value: str, ttl_minutes: float | None = None) -> None:
        try:
            ttl = _valid_ttl(ttl_minutes, self.default_ttl_minutes)
            expires = (self.clock.now() + timedelta(minutes=ttl)).astimezone(UTC)
            cookie = f"{key}={value};expires={expires.strftime('%a, %d %b %Y %H:%M:%S GMT')};path=/;SameSite=Lax"
            if self.domain:
                cookie += f";domain={self.domain}"
            self.document.cookie = cookie
            self._logger.debug("cookie set", extra={"context": "Cookie", "data": {key: value}})
        except Exception:
            self._logger.exception("cookie write failed", extra={"context": "Cookie"})


def _valid_ttl(ttl_minutes: float | None, default: int) -> float:
    if ttl_minutes is None:
        return float(default)
    try:
        ttl = float(ttl_minutes)
    except (TypeError, ValueError):
        return float(default)
    if ttl != ttl or ttl <= 0:  # NaN or non-positive
        return float(default)
    return ttl


class IdentityStore:
    """
    Durable key/value storage for the tracker.

    initialize() probes cookies once (write marker, read back, delete) and
    selects CookieStore or MemoryStore for the rest of the page's life.
    get/set never raise.
    """

    def __init__(
        self,
        *,
        document: Document,
        clock: PageClock,
        default_ttl_minutes: int = 365 * 24 * 60,
        domain: str | None = None,
    ) -> None:
        self.document = document
        self.is_available = False
        self._cookies = CookieStore(
            document=document,
            clock=clock,
            default_ttl_minutes=default_ttl_minutes,
            domain=domain,
        )
        self._memory = MemoryStore()
        self._backend: KeyValueStore = self._memory
        self._logger = get_logger(__name__)

    @property
    def backend(self) -> KeyValueStore:
        return self._backend

    def initialize(self) -> bool:
        try:
            self.document.cookie = f"{PROBE_COOKIE}=1"
            enabled = f"{PROBE_COOKIE}=" in self.document.cookie
            self.document.cookie = f"{PROBE_COOKIE}=1; expires={EXPIRED}"
            self.is_available = enabled
        except Exception:
            self.is_available = False
            self._logger.exception("storage probe failed", extra={"context": "Storage"})

        self._backend = self._cookies if self.is_available else self._memory
        self._logger.debug(
            "storage state", extra={"context": "Storage", "data": {"cookies": self.is_available}}
        )
        return self.is_available

    def get(self, key: str) -> str | None:
        try:
            return self._backend.get(key)
        except Exception:
            self._logger.exception("storage get failed", extra={"context": "Storage"})
            return None

    def set(self, key: str, value: str, ttl_minutes: float | None = None) -> None:
        try:
            self._backend.set(key, value, ttl_minutes)
        except Exception:
            self._logger.exception("storage set failed", extra={"context": "Storage"})
