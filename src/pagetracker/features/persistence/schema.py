from __future__ import annotations

EVENTS_TABLE_NAME = "tracked_events"

# insert/select order; matches DuckDBTransport._payload_to_row
EVENTS_COLUMNS = (
    "received_seq",
    "endpoint",
    "type",
    "tracking_id",
    "visitor_id",
    "session_id",
    "page_view_id",
    "ts_utc",
    "url",
    "referrer",
    "user_agent",
    "screen_resolution",
    "viewport_size",
    "event_data_json",
)

EVENTS_DDL = f"""
CREATE TABLE IF NOT EXISTS {EVENTS_TABLE_NAME} (
    received_seq BIGINT NOT NULL,
    endpoint TEXT,

    -- wire payload, one column per top-level field
    type TEXT NOT NULL,
    tracking_id TEXT NOT NULL,
    visitor_id TEXT,
    session_id TEXT,
    page_view_id BIGINT,
    ts_utc TEXT,
    url TEXT,
    referrer TEXT,
    user_agent TEXT,
    screen_resolution TEXT,
    viewport_size TEXT,

    event_data_json TEXT
);
"""

EVENTS_INDEXES = [
    f"CREATE INDEX IF NOT EXISTS idx_tracked_events_visitor ON {EVENTS_TABLE_NAME}(visitor_id);",
    f"CREATE INDEX IF NOT EXISTS idx_tracked_events_type ON {EVENTS_TABLE_NAME}(type);",
]


def create_schema(conn) -> None:
    """
    Idempotent; every open() calls it.
    """
    conn.execute(EVENTS_DDL)
    for ddl in EVENTS_INDEXES:
        conn.execute(ddl)
