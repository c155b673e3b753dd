"""Call context passed to every mutating operation."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Context:
    sender: str
    value: int = 0

    def __post_init__(self) -> None:
        if not isinstance(self.sender, str) or not self.sender.strip():
            raise ValueError("Context sender must be a non-empty address")
        if self.value < 0:
            raise ValueError("Context value cannot be negative")
