from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from pagetracker.core.logging import get_logger

from .types import (
    Command,
    CommandHandler,
    EventCommand,
    InitCommand,
    NamedEvent,
    StructuredEvent,
    UnknownCommand,
)

_logger = get_logger(__name__)


def parse_command(raw: Any) -> Command:
    """
    Resolve a host-page entry like ["init", "trk_1"] or ["event", {...}]
    into a typed command. Anything else becomes UnknownCommand.
    """
    if isinstance(raw, (str, bytes)) or not isinstance(raw, Sequence) or not raw:
        return UnknownCommand(name=repr(raw))

    name = raw[0]
    value = raw[1] if len(raw) > 1 else None

    if name == "init":
        if isinstance(value, str) and value.strip():
            return InitCommand(tracking_id=value.strip())
        return UnknownCommand(name="init", value=value)

    if name == "event":
        if isinstance(value, str):
            return EventCommand(event=NamedEvent(name=value))
        if isinstance(value, Mapping):
            return EventCommand(event=StructuredEvent(payload=dict(value)))
        return UnknownCommand(name="event", value=value)

    return UnknownCommand(name=str(name), value=value)


class CommandQueue:
    """
    Host-facing `_lt` buffer.

    Before flush_then_rebind() it only buffers. Afterwards every push() is
    parsed and handed to the handler immediately. Handler errors are logged
    and never reach the host page.
    """

    def __init__(self, pending: Sequence[Any] | None = None) -> None:
        self._pending: list[Any] = list(pending or [])
        self._handler: CommandHandler | None = None

    @property
    def is_live(self) -> bool:
        return self._handler is not None

    def push(self, *raw_commands: Any) -> int:
        for raw in raw_commands:
            if self._handler is None:
                self._pending.append(raw)
            else:
                _logger.debug("new command", extra={"context": "Command", "data": raw})
                self._dispatch(raw)
        return len(self._pending)

    def drain(self) -> list[Any]:
        items, self._pending = self._pending, []
        return items

    def flush_then_rebind(self, handler: CommandHandler) -> int:
        """
        Snapshot the buffered commands, go live, then replay the snapshot in
        its original order. Returns the number of replayed commands.
        """
        snapshot = self.drain()
        _logger.debug("pending commands", extra={"context": "Init", "data": snapshot})
        self._handler = handler
        for raw in snapshot:
            self._dispatch(raw)
        return len(snapshot)

    def _dispatch(self, raw: Any) -> None:
        assert self._handler is not None
        try:
            self._handler(parse_command(raw))
        except Exception:
            _logger.exception("command failed", extra={"context": "Command", "data": raw})
