from __future__ import annotations

from typing import Any, Protocol


class Transport(Protocol):
    """
    Fire-and-forget delivery of one JSON payload. Implementations must not
    block the page on the network and must not raise for delivery failures.
    """

    def send(self, url: str, payload: dict[str, Any]) -> Any: ...
    def close(self) -> None: ...


class IpResolver(Protocol):
    """
    Out-of-band client IP lookup, started once at script load.
    `ip` stays None until (and unless) the lookup succeeds.
    """

    @property
    def ip(self) -> str | None: ...

    def start(self) -> Any: ...
    def close(self) -> None: ...
