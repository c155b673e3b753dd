"""Event and receipt models emitted by ledger and sale operations."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field


class Event(BaseModel):
    """A single emitted event, e.g. ``Transfer(from, to, value)``."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str
    args: Mapping[str, Any] = Field(default_factory=dict)

    def __getitem__(self, key: str) -> Any:
        return self.args[key]

    def to_payload(self) -> dict[str, Any]:
        return {"event": self.name, "args": _jsonable(dict(self.args))}


@dataclass(frozen=True)
class Receipt:
    operation: str
    logs: tuple[Event, ...] = ()
    result: Any = None

    @property
    def event_names(self) -> list[str]:
        return [event.name for event in self.logs]

    def to_payload(self) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "logs": [event.to_payload() for event in self.logs],
            "result": _jsonable(self.result),
        }


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.name
    if isinstance(value, Mapping):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    return value
