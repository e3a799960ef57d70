from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor

import httpx

from pagetracker.core.logging import get_logger

_logger = get_logger(__name__)


class HttpIpResolver:
    """
    GETs an IP-echo service ({"ip": "..."}) in the background.
    The page loop polls `ip`; nothing ever waits on the request.
    """

    def __init__(
        self,
        *,
        url: str = "https://api.ipify.org?format=json",
        timeout: float = 5.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.url = url
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout)
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="pagetracker-ip")
        self._ip: str | None = None
        self._future: Future | None = None

    @property
    def ip(self) -> str | None:
        return self._ip

    def start(self) -> Future:
        if self._future is None:
            _logger.debug("fetching client ip", extra={"context": "IP"})
            self._future = self._executor.submit(self._fetch)
            self._future.add_done_callback(self._on_done)
        return self._future

    def _fetch(self) -> str:
        resp = self._client.get(self.url)
        resp.raise_for_status()
        self._ip = str(resp.json()["ip"])
        return self._ip

    def _on_done(self, fut: Future) -> None:
        if fut.cancelled():
            return
        exc = fut.exception()
        if exc is not None:
            _logger.warning("ip lookup failed", extra={"context": "IP"}, exc_info=exc)
            return
        _logger.debug("ip resolved", extra={"context": "IP", "data": self._ip})

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
        if self._owns_client:
            self._client.close()


class StaticIpResolver:
    def __init__(self, ip: str | None) -> None:
        self._ip = ip

    @property
    def ip(self) -> str | None:
        return self._ip

    def start(self) -> None:
        return None

    def close(self) -> None:
        return None
