"""Time-based bonus tiers for ICO purchases."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from engine.clock import format_timestamp_iso
from esr_token.models import BonusTierSettings

# 2018-10-01T00:00:00Z, 2019-01-01T00:00:00Z
DEFAULT_BONUS_20_END_AT = 1538352000
DEFAULT_BONUS_10_END_AT = 1546300800
# 2019-04-01T00:00:00Z
DEFAULT_LAST_STAGE_START_AT = 1554076800
DEFAULT_LAST_STAGE_PCT = 5


@dataclass(frozen=True)
class BonusTier:
    ends_at: int
    pct: int


@dataclass(frozen=True)
class BonusSchedule:
    """Descending bonus schedule.

    ``tiers`` apply until their (exclusive) ``ends_at``; after the last tier
    ``last_stage_pct`` applies until the sale's tunable ``last_stage_start_at``,
    and no bonus is granted from then on. ``last_stage_start_at`` wins over
    any tier, so pulling it earlier cuts the schedule short.
    """

    tiers: tuple[BonusTier, ...]
    last_stage_pct: int = DEFAULT_LAST_STAGE_PCT

    def __post_init__(self) -> None:
        previous_end: int | None = None
        for tier in self.tiers:
            if not 0 <= tier.pct <= 100:
                raise ValueError(f"Bonus percentage out of range: {tier.pct}")
            if previous_end is not None and tier.ends_at <= previous_end:
                raise ValueError("Bonus tiers must have strictly increasing end dates")
            previous_end = tier.ends_at
        if not 0 <= self.last_stage_pct <= 100:
            raise ValueError(f"Bonus percentage out of range: {self.last_stage_pct}")

    @property
    def last_tier_end(self) -> int | None:
        return self.tiers[-1].ends_at if self.tiers else None

    def bonus_pct(self, now: int, last_stage_start_at: int) -> int:
        if now >= last_stage_start_at:
            return 0
        for tier in self.tiers:
            if now < tier.ends_at:
                return tier.pct
        return self.last_stage_pct

    def to_payload(self) -> dict[str, Any]:
        return {
            "tiers": [{"ends_at": t.ends_at, "pct": t.pct} for t in self.tiers],
            "last_stage_pct": self.last_stage_pct,
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "BonusSchedule":
        return cls(
            tiers=tuple(
                BonusTier(ends_at=int(item["ends_at"]), pct=int(item["pct"]))
                for item in payload.get("tiers", [])
            ),
            last_stage_pct=int(payload.get("last_stage_pct", DEFAULT_LAST_STAGE_PCT)),
        )

    @classmethod
    def from_settings(
        cls,
        tiers: Iterable[BonusTierSettings],
        last_stage_pct: int = DEFAULT_LAST_STAGE_PCT,
    ) -> "BonusSchedule":
        return cls(
            tiers=tuple(BonusTier(ends_at=t.ends_at, pct=t.pct) for t in tiers),
            last_stage_pct=last_stage_pct,
        )


def default_schedule() -> BonusSchedule:
    return BonusSchedule(
        tiers=(
            BonusTier(ends_at=DEFAULT_BONUS_20_END_AT, pct=20),
            BonusTier(ends_at=DEFAULT_BONUS_10_END_AT, pct=10),
        ),
        last_stage_pct=DEFAULT_LAST_STAGE_PCT,
    )


def describe(schedule: BonusSchedule | None = None) -> str:
    schedule = schedule or default_schedule()
    stages = [
        f"{tier.pct}% until {format_timestamp_iso(tier.ends_at)}" for tier in schedule.tiers
    ]
    stages.append(f"{schedule.last_stage_pct}% until the last stage starts")
    return "Time-based bonus tiers: " + ", ".join(stages) + ", then 0%."
