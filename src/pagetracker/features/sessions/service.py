from __future__ import annotations

import base64
import json
from collections.abc import Callable, Mapping
from dataclasses import dataclass

from pagetracker.core.ids import new_session_id
from pagetracker.core.logging import get_logger
from pagetracker.core.types import PageClock
from pagetracker.features.identity_store.service import KeyValueStore

SESSION_KEY = "_ltsession"
CAMPAIGN_FIELDS = ("utm_source", "utm_medium", "utm_campaign", "utm_term", "utm_content")


def campaign_fingerprint(params: Mapping[str, str]) -> str:
    """
    base64 of the JSON object of present UTM fields, in CAMPAIGN_FIELDS order.
    Empty string when the page carries no UTM parameters.
    """
    campaign = {f: params[f] for f in CAMPAIGN_FIELDS if params.get(f)}
    if not campaign:
        return ""
    raw = json.dumps(campaign, separators=(",", ":"), ensure_ascii=True)
    return base64.b64encode(raw.encode("ascii")).decode("ascii")


@dataclass(frozen=True)
class SessionRecord:
    """
    One cookie value: "<epoch_ms>_<campaign fingerprint>_<session id>".
    The session id may itself contain "_", so parsing splits twice at most.
    """

    timestamp_ms: int
    campaign: str
    session_id: str

    def encode(self) -> str:
        return f"{self.timestamp_ms}_{self.campaign}_{self.session_id}"

    @classmethod
    def parse(cls, value: str | None) -> SessionRecord | None:
        if not value:
            return None
        parts = value.split("_", 2)
        if len(parts) != 3 or not parts[2]:
            return None
        try:
            ts = int(parts[0])
        except ValueError:
            return None
        return cls(timestamp_ms=ts, campaign=parts[1], session_id=parts[2])


@dataclass(frozen=True)
class SessionResolution:
    session_id: str
    rotated: bool
    reason: str  # "new" | "timeout" | "campaign_changed" | "continued"
    record: SessionRecord


class SessionManager:
    """
    Evaluated once per page load.

    Rotation rule:
      - no (valid) stored record -> new session
      - elapsed since last activity > timeout -> new session
      - current campaign non-empty and != stored campaign -> new session
      - otherwise reuse the stored id
    The record is rewritten on every page load, which extends the session.
    """

    def __init__(
        self,
        *,
        store: KeyValueStore,
        clock: PageClock,
        timeout_seconds: float = 1800.0,
        new_id: Callable[[], str] = new_session_id,
    ) -> None:
        self.store = store
        self.clock = clock
        self.timeout_seconds = float(timeout_seconds)
        self.new_id = new_id
        self._logger = get_logger(__name__)

    def resolve(self, params: Mapping[str, str]) -> SessionResolution:
        now_ms = self.clock.now_ms()
        current = campaign_fingerprint(params)
        stored = SessionRecord.parse(self.store.get(SESSION_KEY))

        if stored is None:
            session_id, reason = self.new_id(), "new"
        else:
            elapsed_s = (now_ms - stored.timestamp_ms) / 1000.0
            if elapsed_s > self.timeout_seconds:
                session_id, reason = self.new_id(), "timeout"
            elif current and current != stored.campaign:
                session_id, reason = self.new_id(), "campaign_changed"
            else:
                session_id, reason = stored.session_id, "continued"

        record = SessionRecord(timestamp_ms=now_ms, campaign=current, session_id=session_id)
        self.store.set(SESSION_KEY, record.encode())

        self._logger.debug(
            "session resolved",
            extra={"context": "Session", "session_id": session_id, "data": {"reason": reason}},
        )
        return SessionResolution(
            session_id=session_id,
            rotated=reason != "continued",
            reason=reason,
            record=record,
        )
