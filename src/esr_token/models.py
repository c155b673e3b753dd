"""Shared data models for the ESRT ledger and sale.

Pydantic-based settings built from deployment config sections.
"""

from __future__ import annotations

from decimal import ROUND_DOWN, Decimal, InvalidOperation
from enum import IntEnum
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from engine.clock import parse_timestamp
from esr_token.constants import (
    DEFAULT_MINT_UNLOCK_AT,
    DEFAULT_TOKEN_UNLOCK_AT,
    ETH_TOKEN_EXCHANGE_RATIO_MULTIPLIER,
    ONE_ETHER,
    ONE_TOKEN,
    TOKEN_NAME,
    TOKEN_SYMBOL,
)


class TokenGroup(IntEnum):
    """Reserved token groups (bit flags, as in the contract ABI)."""

    PARTNERS = 0x1
    TEAM = 0x2
    BOUNTY = 0x4

    @classmethod
    def parse(cls, value: Any) -> "TokenGroup":
        if isinstance(value, TokenGroup):
            return value
        if isinstance(value, str):
            try:
                return cls[value.strip().upper()]
            except KeyError as exc:
                raise ValueError(f"Unknown token group: {value}") from exc
        return cls(int(value))


def parse_units(value: Any, unit: int) -> int:
    """Convert a human amount ("120e6", 1.5, "0.05") into integer base units."""
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError) as exc:
        raise ValueError(f"Invalid amount: {value}") from exc
    if not amount.is_finite():
        raise ValueError(f"Invalid amount: {value}")
    return int((amount * unit).to_integral_value(rounding=ROUND_DOWN))


class BonusTierSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    ends_at: int
    pct: int

    @field_validator("ends_at", mode="before")
    @classmethod
    def validate_ends_at(cls, v: Any) -> int:
        return parse_timestamp(v)

    @field_validator("pct")
    @classmethod
    def validate_pct(cls, v: int) -> int:
        if v < 0 or v > 100:
            raise ValueError("Bonus percentage must be between 0 and 100")
        return v


class TokenSettings(BaseModel):
    """Token deployment parameters, amounts in base units."""

    model_config = ConfigDict(frozen=True)

    owner: str
    exchange_ratio: int
    total_supply: int
    team_tokens: int
    bounty_tokens: int
    partners_tokens: int
    unlock_at: int = DEFAULT_TOKEN_UNLOCK_AT
    mint_unlock_at: int = DEFAULT_MINT_UNLOCK_AT
    name: str = TOKEN_NAME
    symbol: str = TOKEN_SYMBOL

    @field_validator("exchange_ratio", "total_supply")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Value must be positive")
        return v

    @field_validator("team_tokens", "bounty_tokens", "partners_tokens")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("Reserved amount cannot be negative")
        return v

    @model_validator(mode="after")
    def validate_reserves_fit(self) -> "TokenSettings":
        reserved = self.team_tokens + self.bounty_tokens + self.partners_tokens
        if reserved > self.total_supply:
            raise ValueError("Reserved tokens exceed total supply")
        return self

    @classmethod
    def from_config(cls, section: Mapping[str, Any]) -> "TokenSettings":
        values: dict[str, Any] = {
            "owner": section["owner"],
            "exchange_ratio": parse_units(
                section["exchange_ratio"], ETH_TOKEN_EXCHANGE_RATIO_MULTIPLIER
            ),
            "total_supply": parse_units(section["total_supply"], ONE_TOKEN),
            "team_tokens": parse_units(section.get("team_tokens", 0), ONE_TOKEN),
            "bounty_tokens": parse_units(section.get("bounty_tokens", 0), ONE_TOKEN),
            "partners_tokens": parse_units(
                section.get("partners_tokens", 0), ONE_TOKEN
            ),
        }
        for key in ("unlock_at", "mint_unlock_at"):
            if key in section:
                values[key] = parse_timestamp(section[key])
        for key in ("name", "symbol"):
            if key in section:
                values[key] = section[key]
        return cls(**values)


class SaleSettings(BaseModel):
    """ICO deployment parameters, amounts in base units."""

    model_config = ConfigDict(frozen=True)

    address: str
    team_wallet: str
    low_cap_tokens: int = 15 * 10**23
    hard_cap_tokens: int = 60 * 10**24
    low_cap_tx_wei: int = 5 * 10**16
    hard_cap_tx_wei: int = 10**30
    whitelist_enabled: bool = True
    bonus_tiers: tuple[BonusTierSettings, ...] | None = None
    last_stage_start_at: int | None = None
    last_stage_pct: int = 5
    bind: bool = True

    @field_validator("address", "team_wallet")
    @classmethod
    def validate_address(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Address must be a non-empty string")
        return v.strip()

    @model_validator(mode="after")
    def validate_caps(self) -> "SaleSettings":
        if self.low_cap_tokens > self.hard_cap_tokens:
            raise ValueError("low_cap_tokens must not exceed hard_cap_tokens")
        if self.low_cap_tx_wei > self.hard_cap_tx_wei:
            raise ValueError("low_cap_tx_wei must not exceed hard_cap_tx_wei")
        return self

    @classmethod
    def from_config(cls, section: Mapping[str, Any]) -> "SaleSettings":
        values: dict[str, Any] = {
            "address": section["address"],
            "team_wallet": section["team_wallet"],
        }
        if "low_cap_tokens" in section:
            values["low_cap_tokens"] = parse_units(section["low_cap_tokens"], ONE_TOKEN)
        if "hard_cap_tokens" in section:
            values["hard_cap_tokens"] = parse_units(
                section["hard_cap_tokens"], ONE_TOKEN
            )
        if "low_cap_tx_eth" in section:
            values["low_cap_tx_wei"] = parse_units(section["low_cap_tx_eth"], ONE_ETHER)
        if "hard_cap_tx_eth" in section:
            values["hard_cap_tx_wei"] = parse_units(
                section["hard_cap_tx_eth"], ONE_ETHER
            )
        if "bonus_tiers" in section:
            values["bonus_tiers"] = tuple(section["bonus_tiers"])
        if "last_stage_start_at" in section:
            values["last_stage_start_at"] = parse_timestamp(
                section["last_stage_start_at"]
            )
        for key in ("whitelist_enabled", "last_stage_pct", "bind"):
            if key in section:
                values[key] = section[key]
        return cls(**values)


class DeploymentSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    token: TokenSettings
    ico: SaleSettings | None = None
    accounts: dict[str, int] = Field(default_factory=dict)
    start_time: int | None = None

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "DeploymentSettings":
        accounts = {
            str(address): parse_units(balance, ONE_ETHER)
            for address, balance in (config.get("accounts") or {}).items()
        }
        start_time = config.get("start_time")
        return cls(
            token=TokenSettings.from_config(config["token"]),
            ico=SaleSettings.from_config(config["ico"]) if config.get("ico") else None,
            accounts=accounts,
            start_time=parse_timestamp(start_time) if start_time is not None else None,
        )
