from __future__ import annotations

import json
from typing import Any

import duckdb

from pagetracker.core.logging import get_logger

from .duckdb_adapter import DuckDBAdapter


class DuckDBTransport:
    """
    Transport that lands payloads in a local DuckDB file instead of a backend.

    Payloads are held in memory and written in batches: when `every_n_events`
    are pending, every `or_every_seconds` of page time (once
    start_periodic_flush() ran), and on close(). A failed batch write is
    logged and the batch is dropped, like a failed POST.
    """

    def __init__(
        self,
        *,
        adapter: DuckDBAdapter,
        every_n_events: int = 50,
        or_every_seconds: float = 5.0,
    ) -> None:
        self.adapter = adapter
        self.every_n_events = int(every_n_events)
        self.or_every_seconds = float(or_every_seconds)
        self.stored = 0

        self._pending: list[tuple[str, dict[str, Any]]] = []
        self._last_seq = 0
        self._is_open = False
        self._timer_started = False
        self._logger = get_logger(__name__)

    def open(self) -> None:
        if self._is_open:
            return
        self.adapter.open()
        # continue numbering when appending to an existing file
        self._last_seq = self.adapter.next_seq() - 1
        self._is_open = True

    def send(self, url: str, payload: dict[str, Any]) -> None:
        if not self._is_open:
            raise RuntimeError("DuckDBTransport not open. Call open() first.")
        self._pending.append((url, payload))
        if 0 < self.every_n_events <= len(self._pending):
            self.flush(reason="count")

    def flush(self, *, reason: str) -> int:
        if not self._pending:
            return 0
        batch, self._pending = self._pending, []
        rows = [self._payload_to_row(url, payload) for url, payload in batch]

        try:
            result = self.adapter.write_events(rows)
        except duckdb.Error as exc:
            self._logger.error(
                "batch write failed, events dropped",
                extra={"context": "Persistence", "data": {"reason": reason, "num_events": len(rows)}},
                exc_info=exc,
            )
            return 0

        self.stored += result.num_events
        self._logger.info(
            "flush",
            extra={
                "context": "Persistence",
                "data": {
                    "reason": reason,
                    "duckdb_path": self.adapter.path,
                    "num_events": result.num_events,
                    "duration_ms": result.duration_ms,
                },
            },
        )
        return result.num_events

    def close(self) -> None:
        if not self._is_open:
            return
        self.flush(reason="shutdown")
        self.adapter.close()
        self._is_open = False

    def start_periodic_flush(self, env) -> None:
        if self._timer_started:
            return
        self._timer_started = True
        env.process(self._flush_every(env))

    def _flush_every(self, env):
        while self._is_open:
            yield env.timeout(self.or_every_seconds)
            if self._is_open:
                self.flush(reason="timer")

    def _payload_to_row(self, url: str, p: dict[str, Any]) -> tuple:
        self._last_seq += 1
        event_data = p.get("event_data")
        return (
            self._last_seq,
            url,
            str(p.get("type", "")),
            str(p.get("tracking_id", "")),
            p.get("visitor_id"),
            p.get("session_id"),
            p.get("page_view_id"),
            p.get("timestamp"),
            p.get("url"),
            p.get("referrer"),
            p.get("user_agent"),
            p.get("screen_resolution"),
            p.get("viewport_size"),
            json.dumps(event_data, separators=(",", ":"), default=str) if event_data is not None else None,
        )
