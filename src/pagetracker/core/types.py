from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any


@dataclass(frozen=True)
class PageClock:
    """
    Wall clock of a page. env.now is seconds since the page loaded.
    """

    env: Any
    start_dt_utc: datetime

    def __post_init__(self) -> None:
        if self.start_dt_utc.tzinfo is None:
            object.__setattr__(self, "start_dt_utc", self.start_dt_utc.replace(tzinfo=UTC))

    def now(self) -> datetime:
        return self.start_dt_utc + timedelta(seconds=float(self.env.now))

    def now_ms(self) -> int:
        return int(self.now().timestamp() * 1000)

    def iso_now(self) -> str:
        return self.now().astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")
