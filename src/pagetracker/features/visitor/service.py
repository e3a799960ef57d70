from __future__ import annotations

from collections.abc import Callable

from pagetracker.core.ids import fallback_visitor_id, strong_uuid4
from pagetracker.core.logging import get_logger
from pagetracker.features.identity_store.service import KeyValueStore

VISITOR_KEY = "_vid"


def generate_visitor_id(strong: Callable[[], str] = strong_uuid4) -> str:
    try:
        return strong()
    except Exception:
        get_logger(__name__).warning(
            "strong uuid unavailable, using fallback", extra={"context": "UUID"}, exc_info=True
        )
        return fallback_visitor_id()


class VisitorIdentifier:
    def __init__(
        self,
        *,
        store: KeyValueStore,
        generate: Callable[[], str] = generate_visitor_id,
    ) -> None:
        self.store = store
        self.generate = generate
        self._logger = get_logger(__name__)

    def get_or_create(self) -> str:
        """
        Returns the stored visitor id or mints and stores a new one.
        A failed write still returns the new id for this page view.
        """
        try:
            visitor_id = self.store.get(VISITOR_KEY)
        except Exception:
            self._logger.exception("visitor id read failed", extra={"context": "VisitorID"})
            visitor_id = None

        if visitor_id:
            return visitor_id

        visitor_id = self.generate()
        self._logger.debug(
            "new visitor id", extra={"context": "VisitorID", "visitor_id": visitor_id}
        )
        try:
            self.store.set(VISITOR_KEY, visitor_id)
        except Exception:
            self._logger.exception("visitor id write failed", extra={"context": "VisitorID"})
        return visitor_id
