"""Replay scripted operations against a deployment.

A script is a list of steps (or a mapping with a ``steps`` list)::

    - op: ico.whitelist
      sender: "0xowner"
      args: {address: "0xinvestor"}
    - op: ico.buy_tokens
      sender: "0xinvestor"
      value: "2 eth"
      at: "2018-09-01T00:00:00Z"
      expect_error: NotWhitelisted

``at`` sets the clock, ``advance`` moves it forward by seconds, both before
the operation runs. Amounts given as strings may carry an ``eth`` or
``tokens`` suffix and are converted to base units.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator

from engine.clock import ManualClock, parse_timestamp
from engine.context import Context
from engine.deployment import Deployment
from engine.events import Receipt
from esr_token.constants import ONE_ETHER, ONE_TOKEN
from esr_token.errors import LedgerError
from esr_token.models import parse_units
from utils.logging_config import LogContext

LOGGER = logging.getLogger("esr_ico.replay")

OPERATIONS: dict[str, frozenset[str]] = {
    "token": frozenset(
        {
            "transfer",
            "transfer_from",
            "approve",
            "receive",
            "lock",
            "unlock",
            "lock_reserve",
            "unlock_reserve",
            "transfer_ownership",
            "change_ico",
            "mint_token",
            "assign_reserved",
            "sell_token",
            "update_token_exchange_ratio",
        }
    ),
    "ico": frozenset(
        {
            "start",
            "suspend",
            "resume",
            "terminate",
            "tune",
            "tune_last_stage_start_at",
            "touch",
            "buy_tokens",
            "receive",
            "whitelist",
            "blacklist",
            "enable_whitelist",
            "disable_whitelist",
            "transfer_ownership",
        }
    ),
}

# Script keys that are Python keywords or otherwise renamed.
ARG_ALIASES = {"from": "from_"}
TIMESTAMP_ARGS = {"end_at", "last_stage_start_at"}

_AMOUNT_PATTERN = re.compile(
    r"^\s*(?P<amount>[-+]?[0-9.eE+-]+)\s*(?P<unit>eth|ether|tokens?|esrt|wei)?\s*$",
    re.IGNORECASE,
)


def parse_amount(value: Any) -> Any:
    """Convert "1.5 eth" / "7200 tokens" / "1000 wei" into base units.

    Integers and strings without a recognised unit are returned unchanged.
    """
    if not isinstance(value, str):
        return value
    match = _AMOUNT_PATTERN.match(value)
    if match is None or match.group("unit") is None:
        return value
    unit = match.group("unit").lower()
    if unit in ("eth", "ether"):
        return parse_units(match.group("amount"), ONE_ETHER)
    if unit == "wei":
        return parse_units(match.group("amount"), 1)
    return parse_units(match.group("amount"), ONE_TOKEN)


class ReplayStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    op: str
    sender: str
    value: int = 0
    at: int | None = None
    advance: int = 0
    args: dict[str, Any] | list[Any] = Field(default_factory=dict)
    expect_error: str | None = None

    @field_validator("op")
    @classmethod
    def validate_op(cls, v: str) -> str:
        component, _, method = v.partition(".")
        if method not in OPERATIONS.get(component, ()):
            raise ValueError(f"Unknown operation: {v}")
        return v

    @field_validator("value", mode="before")
    @classmethod
    def validate_value(cls, v: Any) -> Any:
        return parse_amount(v)

    @field_validator("at", mode="before")
    @classmethod
    def validate_at(cls, v: Any) -> int | None:
        return None if v is None else parse_timestamp(v)

    @field_validator("advance")
    @classmethod
    def validate_advance(cls, v: int) -> int:
        if v < 0:
            raise ValueError("advance cannot be negative")
        return v


@dataclass
class StepOutcome:
    index: int
    op: str
    sender: str
    at: int
    expected_error: str | None
    receipt: Receipt | None = None
    error: LedgerError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def matched(self) -> bool:
        if self.expected_error is None:
            return self.error is None
        if self.error is None:
            return False
        return self.expected_error in (self.error.code, self.error.kind)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "step": self.index,
            "op": self.op,
            "sender": self.sender,
            "at": self.at,
            "ok": self.ok,
            "matched": self.matched,
        }
        if self.receipt is not None:
            receipt = self.receipt.to_payload()
            payload["logs"] = receipt["logs"]
            payload["result"] = receipt["result"]
        if self.error is not None:
            payload["error"] = {
                "code": self.error.code,
                "kind": self.error.kind,
                "message": self.error.message,
            }
        if self.expected_error is not None:
            payload["expect_error"] = self.expected_error
        return payload


def load_steps(script: Any) -> list[ReplayStep]:
    if isinstance(script, Mapping):
        script = script.get("steps")
    if not isinstance(script, list):
        raise ValueError("Script must be a list of steps or contain a 'steps' list")
    return [ReplayStep.model_validate(item) for item in script]


def _call_args(step: ReplayStep) -> tuple[list[Any], dict[str, Any]]:
    if isinstance(step.args, list):
        return [parse_amount(item) for item in step.args], {}
    kwargs: dict[str, Any] = {}
    for key, item in step.args.items():
        if key in TIMESTAMP_ARGS and item:
            kwargs[ARG_ALIASES.get(key, key)] = parse_timestamp(item)
        else:
            kwargs[ARG_ALIASES.get(key, key)] = parse_amount(item)
    return [], kwargs


def _move_clock(deployment: Deployment, step: ReplayStep) -> None:
    if step.at is None and not step.advance:
        return
    clock = deployment.clock
    if not isinstance(clock, ManualClock):
        raise ValueError("Steps with 'at' or 'advance' need a manual clock")
    if step.at is not None:
        clock.set(step.at)
    if step.advance:
        clock.advance(step.advance)


def apply_step(deployment: Deployment, step: ReplayStep, index: int = 0) -> StepOutcome:
    """Run one step; ledger errors are recorded, anything else propagates."""
    _move_clock(deployment, step)
    component_name, _, method_name = step.op.partition(".")
    component = deployment.component(component_name)
    method = getattr(component, method_name)
    args, kwargs = _call_args(step)
    outcome = StepOutcome(
        index=index,
        op=step.op,
        sender=step.sender,
        at=deployment.transactions.now,
        expected_error=step.expect_error,
    )
    with LogContext(step=index, operation=step.op, sender=step.sender):
        try:
            outcome.receipt = method(
                Context(sender=step.sender, value=step.value), *args, **kwargs
            )
        except LedgerError as exc:
            outcome.error = exc
    if not outcome.matched:
        LOGGER.warning(
            "Step %s (%s) did not match expectation: expected %s, got %s",
            index,
            step.op,
            step.expect_error or "success",
            outcome.error.code if outcome.error else "success",
        )
    return outcome


def run_script(deployment: Deployment, steps: Iterable[ReplayStep]) -> list[StepOutcome]:
    outcomes = [
        apply_step(deployment, step, index) for index, step in enumerate(steps, start=1)
    ]
    failed = sum(1 for outcome in outcomes if not outcome.matched)
    LOGGER.info("Replayed %s steps, %s mismatched", len(outcomes), failed)
    return outcomes
