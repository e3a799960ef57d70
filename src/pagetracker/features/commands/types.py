from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass(frozen=True, slots=True)
class NamedEvent:
    name: str
    kind: str = field(default="named", init=False)

    def as_payload(self) -> dict[str, Any]:
        return {"name": self.name}


@dataclass(frozen=True, slots=True)
class StructuredEvent:
    payload: Mapping[str, Any]
    kind: str = field(default="structured", init=False)

    def as_payload(self) -> dict[str, Any]:
        return dict(self.payload)


EventBody = NamedEvent | StructuredEvent


@dataclass(frozen=True, slots=True)
class InitCommand:
    tracking_id: str


@dataclass(frozen=True, slots=True)
class EventCommand:
    event: EventBody


@dataclass(frozen=True, slots=True)
class UnknownCommand:
    name: str
    value: Any = None


Command = InitCommand | EventCommand | UnknownCommand


class CommandHandler(Protocol):
    def __call__(self, command: Command) -> None: ...
