"""Snapshot persistence for a deployment's ledger, sale and balances."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from engine.clock import Clock, ManualClock
from engine.deployment import Deployment
from engine.funds import FundsState, NativeBalances
from engine.transaction import TransactionManager
from esr_token.token import TokenLedger, TokenState
from sale.bonus import BonusSchedule
from sale.ico import ICOController, ICOState


@dataclass
class DeploymentState:
    token: TokenState
    funds: FundsState = field(default_factory=FundsState)
    ico: ICOState | None = None
    schedule: BonusSchedule | None = None
    now: int | None = None

    @classmethod
    def capture(cls, deployment: Deployment) -> "DeploymentState":
        if deployment.transactions.active:
            raise RuntimeError("Cannot capture state while a transaction is running")
        ico = deployment.ico
        return cls(
            token=deployment.token.state,
            funds=deployment.funds.state,
            ico=ico.state if ico is not None else None,
            schedule=ico.schedule if ico is not None else None,
            now=deployment.transactions.now,
        )

    def restore(self, clock: Clock | None = None) -> Deployment:
        """Rebuild live components; a manual clock resumes at the saved time."""
        if clock is None:
            clock = ManualClock(self.now or 0)
        transactions = TransactionManager(clock)
        # Round-trip through the payload so the restored objects share nothing
        # with this snapshot.
        payload = self.to_payload()
        token = TokenLedger.from_state(
            transactions, TokenState.from_payload(payload["token"])
        )
        funds = NativeBalances(transactions)
        funds.state = FundsState.from_payload(payload["funds"])
        funds.check_invariants()
        ico = None
        if payload.get("ico") is not None:
            schedule = (
                BonusSchedule.from_payload(payload["schedule"])
                if payload.get("schedule") is not None
                else None
            )
            ico = ICOController.from_state(
                token, funds, ICOState.from_payload(payload["ico"]), schedule
            )
        return Deployment(
            clock=clock, transactions=transactions, token=token, funds=funds, ico=ico
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "now": self.now,
            "token": self.token.to_payload(),
            "funds": self.funds.to_payload(),
            "ico": self.ico.to_payload() if self.ico is not None else None,
            "schedule": self.schedule.to_payload() if self.schedule is not None else None,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "DeploymentState":
        return cls(
            token=TokenState.from_payload(payload["token"]),
            funds=FundsState.from_payload(payload.get("funds", {})),
            ico=ICOState.from_payload(payload["ico"]) if payload.get("ico") else None,
            schedule=(
                BonusSchedule.from_payload(payload["schedule"])
                if payload.get("schedule")
                else None
            ),
            now=payload.get("now"),
        )

    def save(self, path: str | Path) -> None:
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        payload = self.to_payload()
        target.write_text(
            json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8"
        )

    @classmethod
    def load(cls, path: str | Path) -> "DeploymentState":
        target = Path(path)
        if not target.exists():
            raise FileNotFoundError(f"State file not found: {target}")
        payload = json.loads(target.read_text(encoding="utf-8"))
        return cls.from_payload(payload)
