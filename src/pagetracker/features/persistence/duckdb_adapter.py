from __future__ import annotations

import json
import os
import time
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import duckdb

from .schema import EVENTS_COLUMNS, EVENTS_TABLE_NAME, create_schema

IN_MEMORY = ":memory:"


@dataclass(frozen=True)
class DuckDBWriteResult:
    num_events: int
    duration_ms: float


class DuckDBAdapter:
    """
    Owns the DuckDB connection for the tracked-events sink.
    path=":memory:" keeps everything in process (nothing touches disk).
    """

    def __init__(self, path: str, *, clean_slate: bool) -> None:
        self.path = path
        self.clean_slate = clean_slate
        self._conn: duckdb.DuckDBPyConnection | None = None

    @property
    def on_disk(self) -> bool:
        return self.path != IN_MEMORY

    def open(self) -> None:
        if self.on_disk:
            if self.clean_slate:
                for stale in (self.path, self.path + ".wal"):
                    if os.path.exists(stale):
                        os.remove(stale)
            folder = os.path.dirname(self.path)
            if folder:
                os.makedirs(folder, exist_ok=True)

        self._conn = duckdb.connect(self.path)
        create_schema(self._conn)

    @property
    def conn(self) -> duckdb.DuckDBPyConnection:
        if self._conn is None:
            raise RuntimeError("DuckDBAdapter is closed; open() it before use.")
        return self._conn

    def close(self) -> None:
        if self._conn is None:
            return
        self._conn.close()
        self._conn = None

    def next_seq(self) -> int:
        row = self.conn.execute(f"SELECT COALESCE(MAX(received_seq), 0) FROM {EVENTS_TABLE_NAME}").fetchone()
        return int(row[0]) + 1 if row else 1

    def write_events(self, rows: Sequence[tuple]) -> DuckDBWriteResult:
        if not rows:
            return DuckDBWriteResult(num_events=0, duration_ms=0.0)

        started = time.perf_counter()
        placeholders = ", ".join("?" for _ in EVENTS_COLUMNS)
        self.conn.executemany(
            f"INSERT INTO {EVENTS_TABLE_NAME} ({', '.join(EVENTS_COLUMNS)}) VALUES ({placeholders})",
            rows,
        )
        return DuckDBWriteResult(
            num_events=len(rows),
            duration_ms=(time.perf_counter() - started) * 1000.0,
        )

    def count_events(self, visitor_id: str | None = None) -> int:
        sql = f"SELECT COUNT(*) FROM {EVENTS_TABLE_NAME}"
        params: list[Any] = []
        if visitor_id is not None:
            sql += " WHERE visitor_id = ?"
            params.append(visitor_id)
        row = self.conn.execute(sql, params).fetchone()
        return int(row[0]) if row else 0

    def fetch_events(self, *, event_type: str | None = None) -> list[dict[str, Any]]:
        """
        Stored events in arrival order, event_data decoded back to a dict.
        """
        sql = f"SELECT {', '.join(EVENTS_COLUMNS)} FROM {EVENTS_TABLE_NAME}"
        params: list[Any] = []
        if event_type is not None:
            sql += " WHERE type = ?"
            params.append(event_type)
        sql += " ORDER BY received_seq"

        out = []
        for row in self.conn.execute(sql, params).fetchall():
            rec = dict(zip(EVENTS_COLUMNS, row, strict=True))
            raw = rec.pop("event_data_json")
            rec["event_data"] = json.loads(raw) if raw else None
            out.append(rec)
        return out
