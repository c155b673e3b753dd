"""Configuration validation utilities for ESRT deployments."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

from engine.clock import parse_timestamp


class ConfigValidationError(ValueError):
    """Raised when configuration validation fails."""


def validate_address(config: dict[str, Any], field: str, *, required: bool = True) -> None:
    """Validate that a field holds a non-empty account address."""
    if field not in config:
        if required:
            raise ConfigValidationError(f"Missing required field: {field}")
        return

    value = config[field]
    if not isinstance(value, str) or not value.strip():
        raise ConfigValidationError(f"{field} must be a non-empty string")


def _decimal(field: str, value: Any) -> Decimal:
    if isinstance(value, bool):
        raise ConfigValidationError(f"{field} must be a valid number, got: {value}")
    try:
        decimal_value = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError) as exc:
        raise ConfigValidationError(
            f"{field} must be a valid number, got: {value}"
        ) from exc
    if not decimal_value.is_finite():
        raise ConfigValidationError(f"{field} must be a valid number, got: {value}")
    return decimal_value


def validate_positive_decimal(
    config: dict[str, Any], field: str, *, required: bool = True
) -> None:
    """Validate that a field is a positive decimal value."""
    if field not in config:
        if required:
            raise ConfigValidationError(f"Missing required field: {field}")
        return

    decimal_value = _decimal(field, config[field])
    if decimal_value <= 0:
        raise ConfigValidationError(f"{field} must be positive, got: {decimal_value}")


def validate_non_negative_decimal(
    config: dict[str, Any], field: str, *, required: bool = True
) -> None:
    """Validate that a field is a non-negative decimal value."""
    if field not in config:
        if required:
            raise ConfigValidationError(f"Missing required field: {field}")
        return

    decimal_value = _decimal(field, config[field])
    if decimal_value < 0:
        raise ConfigValidationError(
            f"{field} must be non-negative, got: {decimal_value}"
        )


def validate_percentage(
    config: dict[str, Any], field: str, *, required: bool = True
) -> None:
    """Validate that a field is a whole percentage between 0 and 100."""
    if field not in config:
        if required:
            raise ConfigValidationError(f"Missing required field: {field}")
        return

    value = config[field]
    if not isinstance(value, int) or isinstance(value, bool):
        raise ConfigValidationError(
            f"{field} must be an integer, got: {type(value).__name__}"
        )
    if not 0 <= value <= 100:
        raise ConfigValidationError(f"{field} must be between 0 and 100, got: {value}")


def validate_timestamp(
    config: dict[str, Any], field: str, *, required: bool = True
) -> None:
    """Validate that a field is an ISO8601 string or a Unix timestamp."""
    if field not in config:
        if required:
            raise ConfigValidationError(f"Missing required field: {field}")
        return

    try:
        parse_timestamp(config[field])
    except ValueError as exc:
        raise ConfigValidationError(
            f"{field} must be an ISO8601 or Unix timestamp, got: {config[field]}"
        ) from exc


def validate_boolean(config: dict[str, Any], field: str) -> None:
    if field in config and not isinstance(config[field], bool):
        raise ConfigValidationError(f"{field} must be a boolean if provided.")


def validate_token_config(config: dict[str, Any]) -> None:
    """Validate the ``token`` section of a deployment config."""
    validate_address(config, "owner")
    validate_positive_decimal(config, "exchange_ratio", required=True)
    validate_positive_decimal(config, "total_supply", required=True)
    for field in ("team_tokens", "bounty_tokens", "partners_tokens"):
        validate_non_negative_decimal(config, field, required=False)
    validate_timestamp(config, "unlock_at", required=False)
    validate_timestamp(config, "mint_unlock_at", required=False)
    for field in ("name", "symbol"):
        if field in config and (
            not isinstance(config[field], str) or not config[field].strip()
        ):
            raise ConfigValidationError(f"{field} must be a non-empty string")

    reserved = sum(
        Decimal(str(config.get(field, 0)))
        for field in ("team_tokens", "bounty_tokens", "partners_tokens")
    )
    total = Decimal(str(config["total_supply"]))
    if reserved > total:
        raise ConfigValidationError(
            f"Reserved tokens ({reserved}) exceed total_supply ({total})"
        )


def validate_bonus_tiers(config: dict[str, Any]) -> None:
    if "bonus_tiers" not in config:
        return
    tiers = config["bonus_tiers"]
    if not isinstance(tiers, list):
        raise ConfigValidationError("bonus_tiers must be a list")
    previous_end: int | None = None
    for entry in tiers:
        if not isinstance(entry, dict):
            raise ConfigValidationError("Each bonus_tiers entry must be a mapping")
        validate_timestamp(entry, "ends_at", required=True)
        validate_percentage(entry, "pct", required=True)
        ends_at = parse_timestamp(entry["ends_at"])
        if previous_end is not None and ends_at <= previous_end:
            raise ConfigValidationError(
                "bonus_tiers must be ordered by strictly increasing ends_at"
            )
        previous_end = ends_at
    if previous_end is not None and "last_stage_start_at" in config:
        last_stage = parse_timestamp(config["last_stage_start_at"])
        if last_stage < previous_end:
            raise ConfigValidationError(
                "last_stage_start_at must not precede the last bonus tier end"
            )


def validate_ico_config(config: dict[str, Any]) -> None:
    """Validate the ``ico`` section of a deployment config."""
    validate_address(config, "address")
    validate_address(config, "team_wallet")
    validate_positive_decimal(config, "low_cap_tokens", required=False)
    validate_positive_decimal(config, "hard_cap_tokens", required=False)
    validate_positive_decimal(config, "low_cap_tx_eth", required=False)
    validate_positive_decimal(config, "hard_cap_tx_eth", required=False)
    validate_timestamp(config, "last_stage_start_at", required=False)
    validate_percentage(config, "last_stage_pct", required=False)
    validate_boolean(config, "whitelist_enabled")
    validate_boolean(config, "bind")
    validate_bonus_tiers(config)

    if "low_cap_tokens" in config and "hard_cap_tokens" in config:
        if Decimal(str(config["low_cap_tokens"])) > Decimal(
            str(config["hard_cap_tokens"])
        ):
            raise ConfigValidationError("low_cap_tokens must not exceed hard_cap_tokens")
    if "low_cap_tx_eth" in config and "hard_cap_tx_eth" in config:
        if Decimal(str(config["low_cap_tx_eth"])) > Decimal(
            str(config["hard_cap_tx_eth"])
        ):
            raise ConfigValidationError("low_cap_tx_eth must not exceed hard_cap_tx_eth")


def validate_accounts(config: dict[str, Any]) -> None:
    """Validate the ``accounts`` mapping of address to ETH balance."""
    accounts = config.get("accounts")
    if accounts is None:
        return
    if not isinstance(accounts, dict):
        raise ConfigValidationError("accounts must be a mapping of address to ETH")
    for address, balance in accounts.items():
        if not isinstance(address, str) or not address.strip():
            raise ConfigValidationError("accounts keys must be non-empty addresses")
        validate_non_negative_decimal({address: balance}, address)


def validate_config(config: dict[str, Any], section: str | None = None) -> None:
    """
    Validate a deployment configuration, or a single section of it.

    Args:
        config: Configuration dictionary
        section: Section name ('token', 'ico', 'accounts'), or None for all

    Raises:
        ConfigValidationError: If configuration is invalid
    """
    if not isinstance(config, dict):
        raise ConfigValidationError("Configuration must be a dictionary")

    if not config:
        raise ConfigValidationError("Configuration cannot be empty")

    if section == "token":
        validate_token_config(config)
        return
    if section == "ico":
        validate_ico_config(config)
        return
    if section == "accounts":
        validate_accounts({"accounts": config})
        return
    if section is not None:
        raise ConfigValidationError(f"Unknown configuration section: {section}")

    if "token" not in config:
        raise ConfigValidationError("Missing required field: token")
    if not isinstance(config["token"], dict):
        raise ConfigValidationError("token must be a mapping")
    validate_token_config(config["token"])
    if config.get("ico") is not None:
        if not isinstance(config["ico"], dict):
            raise ConfigValidationError("ico must be a mapping")
        validate_ico_config(config["ico"])
    validate_accounts(config)
    validate_timestamp(config, "start_time", required=False)
