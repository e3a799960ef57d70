from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(slots=True)
class TrackerState:
    """
    Everything the tracker learned during this page load.
    Only page_view_id is never persisted.
    """

    visitor_id: str | None = None
    session_id: str | None = None
    page_view_id: int | None = None
    url_params: dict[str, str] = field(default_factory=dict)
    campaign: str = ""
    accounts: list[str] = field(default_factory=list)
    in_iframe: bool = False
    domain: str = ""
