from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any

import httpx

from pagetracker.core.logging import get_logger

_logger = get_logger(__name__)


class HttpxTransport:
    """
    POSTs payloads on a background pool so the page loop never waits on the
    network. Requests already submitted keep running after a navigation; only
    close() waits for them.
    """

    def __init__(
        self,
        *,
        client: httpx.Client | None = None,
        timeout: float = 10.0,
        max_workers: int = 4,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout)
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="pagetracker-send")
        self.submitted = 0

    def send(self, url: str, payload: dict[str, Any]) -> Future:
        self.submitted += 1
        fut = self._executor.submit(self._post, url, payload)
        fut.add_done_callback(_log_response)
        return fut

    def _post(self, url: str, payload: dict[str, Any]) -> tuple[int, Any]:
        resp = self._client.post(url, json=payload, headers={"Content-Type": "application/json"})
        try:
            body: Any = resp.json()
        except ValueError:
            body = resp.text
        return resp.status_code, body

    def close(self) -> None:
        self._executor.shutdown(wait=True)
        if self._owns_client:
            self._client.close()


def _log_response(fut: Future) -> None:
    exc = fut.exception()
    if exc is not None:
        _logger.error("track request failed", extra={"context": "Backend"}, exc_info=exc)
        return
    status, body = fut.result()
    _logger.info("track response", extra={"context": "Backend", "data": {"status": status, "body": body}})


class MemoryTransport:
    """
    Keeps (url, payload) pairs. Dry runs and tests.
    """

    def __init__(self) -> None:
        self.sent: list[tuple[str, dict[str, Any]]] = []

    def send(self, url: str, payload: dict[str, Any]) -> None:
        self.sent.append((url, payload))

    @property
    def payloads(self) -> list[dict[str, Any]]:
        return [p for _, p in self.sent]

    def close(self) -> None:
        return None
