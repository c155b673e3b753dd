"""CLI entry point for the ESRT ledger and ICO simulator."""

from __future__ import annotations

import argparse
import importlib.util
import json
import logging
import sys
from pathlib import Path
from typing import Any

from engine.clock import (
    ManualClock,
    format_timestamp_iso,
    parse_timestamp,
    wall_clock,
)
from engine.deployment import Deployment, build_deployment
from engine.replay import load_steps, run_script
from engine.state import DeploymentState
from esr_token.constants import ONE_ETHER, ONE_TOKEN
from esr_token.errors import LedgerError
from esr_token.models import DeploymentSettings, parse_units
from sale import bonus_describe
from utils.config_validator import ConfigValidationError, validate_config
from utils.logging_config import setup_logging

LOGGER = logging.getLogger("esr_ico.cli")

SUPPORTED_FORMATS = (".json", ".toml", ".yaml", ".yml")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="ESRT token ledger and ICO simulator")
    parser.add_argument("--version", action="version", version="esr-ico 0.1.0")
    subparsers = parser.add_subparsers(dest="command", required=True)

    simulate_parser = subparsers.add_parser(
        "simulate", help="Replay a script of operations against a deployment."
    )
    simulate_parser.add_argument(
        "--config", required=True, help="Path to JSON/TOML/YAML deployment config."
    )
    simulate_parser.add_argument(
        "--script", required=True, help="Path to JSON/TOML/YAML replay script."
    )
    simulate_parser.add_argument(
        "--state-path",
        help="Optional path to write the final deployment state as JSON.",
    )
    simulate_parser.add_argument(
        "--resume",
        help="Resume from a saved state file instead of deploying from the config.",
    )
    simulate_parser.add_argument(
        "--log-level",
        default="INFO",
        help="Logging level (DEBUG, INFO, WARNING, ERROR).",
    )
    simulate_parser.add_argument(
        "--structured-logs",
        action="store_true",
        help="Emit logs as JSON lines.",
    )
    simulate_parser.set_defaults(handler=run_simulate)

    quote_parser = subparsers.add_parser(
        "quote", help="Show the bonus and tokens an ETH purchase would receive."
    )
    quote_parser.add_argument(
        "--config", required=True, help="Path to JSON/TOML/YAML deployment config."
    )
    quote_parser.add_argument(
        "--eth", required=True, help="Amount of ETH to invest (decimal)."
    )
    quote_parser.add_argument(
        "--at",
        help="Purchase time (ISO8601 or Unix seconds); defaults to the config start_time.",
    )
    quote_parser.add_argument(
        "--log-level",
        default="WARNING",
        help="Logging level (DEBUG, INFO, WARNING, ERROR).",
    )
    quote_parser.set_defaults(handler=run_quote)
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if hasattr(args, "handler"):
        return args.handler(args)
    parser.print_help()
    return 1


def run_simulate(args: argparse.Namespace) -> int:
    configure_logging(args.log_level, structured=args.structured_logs)
    try:
        config_path = Path(args.config).expanduser()
        config = load_config(config_path)
        try:
            validate_config(config)
        except ConfigValidationError as exc:
            LOGGER.error("Configuration validation failed: %s", exc)
            return 2

        if args.resume:
            resume_path = Path(args.resume).expanduser()
            deployment = DeploymentState.load(resume_path).restore()
            LOGGER.info("Resumed deployment from %s", resume_path)
        else:
            settings = DeploymentSettings.from_config(config)
            start = settings.start_time
            deployment = build_deployment(
                settings, ManualClock(start if start is not None else wall_clock())
            )
        steps = load_steps(load_document(Path(args.script).expanduser()))

        LOGGER.info("Config file: %s", config_path)
        LOGGER.info("Script: %s (%s steps)", args.script, len(steps))
        if deployment.ico is not None:
            LOGGER.info("Bonus schedule: %s", bonus_describe(deployment.ico.schedule))
    except (FileNotFoundError, RuntimeError, ValueError, LedgerError) as exc:
        LOGGER.error(str(exc))
        return 2

    try:
        outcomes = run_script(deployment, steps)
        for outcome in outcomes:
            print(json.dumps(outcome.to_payload(), sort_keys=True))
        if args.state_path:
            state_path = Path(args.state_path).expanduser()
            DeploymentState.capture(deployment).save(state_path)
            LOGGER.info("State file: %s", state_path)
        summarize(deployment)
    except Exception as exc:  # pragma: no cover - safeguard for unexpected issues.
        LOGGER.exception("Unexpected error during replay: %s", exc)
        return 3
    return 0 if all(outcome.matched for outcome in outcomes) else 1


def run_quote(args: argparse.Namespace) -> int:
    configure_logging(args.log_level)
    try:
        config_path = Path(args.config).expanduser()
        config = load_config(config_path)
        try:
            validate_config(config)
        except ConfigValidationError as exc:
            LOGGER.error("Configuration validation failed: %s", exc)
            return 2
        settings = DeploymentSettings.from_config(config)
        if settings.ico is None:
            raise ValueError("Config has no 'ico' section to quote against.")
        at = parse_timestamp(args.at) if args.at else settings.start_time
        deployment = build_deployment(
            settings, ManualClock(at) if at is not None else None
        )
        wei = parse_units(args.eth, ONE_ETHER)
        ico = deployment.ico
        now = deployment.transactions.now
        quote = {
            "at": format_timestamp_iso(now),
            "wei": wei,
            "bonus_pct": ico.bonus_pct(now),
            "tokens": ico.quote_tokens(wei, now),
        }
        quote["tokens_display"] = format_tokens(quote["tokens"])
    except (FileNotFoundError, RuntimeError, ValueError, LedgerError) as exc:
        LOGGER.error(str(exc))
        return 2
    except Exception as exc:  # pragma: no cover - safeguard for unexpected issues.
        LOGGER.exception("Unexpected error while quoting: %s", exc)
        return 3
    print(json.dumps(quote, sort_keys=True))
    return 0


def summarize(deployment: Deployment) -> None:
    token = deployment.token
    LOGGER.info(
        "Token: available=%s circulating=%s locked=%s",
        format_tokens(token.available_supply),
        format_tokens(token.circulating_supply()),
        token.locked,
    )
    ico = deployment.ico
    if ico is not None:
        LOGGER.info(
            "Sale: status=%s collected=%s tokens / %s wei",
            ico.status.name,
            format_tokens(ico.collected_tokens),
            ico.collected_wei,
        )


def format_tokens(amount: int) -> str:
    whole, fraction = divmod(amount, ONE_TOKEN)
    if not fraction:
        return str(whole)
    return f"{whole}.{str(fraction).rjust(18, '0').rstrip('0')}"


def configure_logging(level: str, *, structured: bool = False) -> None:
    """Configure logging with sanitization and proper formatting."""
    setup_logging(level=level, sanitize=True, structured=structured)


def load_document(path: Path) -> Any:
    if not path.exists():
        raise FileNotFoundError(
            f"File not found: {path}. Ensure the path is correct and readable."
        )
    suffix = path.suffix.lower()
    if suffix not in SUPPORTED_FORMATS:
        supported = ", ".join(SUPPORTED_FORMATS)
        raise ValueError(
            f"Unsupported file format '{suffix}'. Supported formats: {supported}."
        )
    try:
        if suffix == ".json":
            return json.loads(path.read_text(encoding="utf-8"))
        if suffix == ".toml":
            return load_toml(path)
        return load_yaml(path)
    except json.JSONDecodeError as exc:
        raise ValueError(
            f"Invalid JSON in {path}: {exc}. Validate the file format."
        ) from exc
    except (RuntimeError, ValueError):
        raise
    except Exception as exc:
        raise RuntimeError(f"Failed to parse {path}: {exc}.") from exc


def load_config(config_path: Path) -> dict[str, Any]:
    data = load_document(config_path)
    if not isinstance(data, dict):
        raise ValueError(
            f"Config file {config_path} must contain a JSON/TOML/YAML object mapping."
        )
    return data


def load_toml(config_path: Path) -> dict[str, Any]:
    if sys.version_info >= (3, 11):
        import tomllib  # type: ignore[attr-defined]

        return tomllib.loads(config_path.read_text(encoding="utf-8"))
    if importlib.util.find_spec("tomli") is None:
        raise RuntimeError(
            "TOML parsing requires Python 3.11+ or the 'tomli' package. Install tomli or use JSON/YAML."
        )
    import tomli  # type: ignore[import-not-found]

    return tomli.loads(config_path.read_text(encoding="utf-8"))


def load_yaml(config_path: Path) -> Any:
    import yaml

    return yaml.safe_load(config_path.read_text(encoding="utf-8"))


if __name__ == "__main__":
    raise SystemExit(main())
