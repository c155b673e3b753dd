"""Native currency (wei) balances used for investment forwarding."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from engine.transaction import TransactionManager
from esr_token.errors import InsufficientFunds, InvalidParameter, InvariantViolation


@dataclass
class FundsState:
    balances: dict[str, int] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        return {"balances": dict(self.balances)}

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "FundsState":
        return cls(
            balances={
                str(address): int(amount)
                for address, amount in payload.get("balances", {}).items()
            }
        )


class NativeBalances:
    """Wei held per address; transfers commit or roll back with the operation."""

    component = "funds"

    def __init__(
        self,
        transactions: TransactionManager,
        balances: Mapping[str, int] | None = None,
    ) -> None:
        self.transactions = transactions
        self.state = FundsState(balances=dict(balances or {}))
        transactions.register(self)

    def balance_of(self, address: str) -> int:
        return self.state.balances.get(address, 0)

    def credit(self, address: str, amount: int) -> None:
        """Add externally sourced funds (genesis allocation, faucet)."""
        if amount < 0:
            raise InvalidParameter("Credit amount cannot be negative")
        with self.transactions.atomic("funds.credit"):
            self.state.balances[address] = self.balance_of(address) + amount

    def transfer(self, sender: str, recipient: str, amount: int) -> None:
        if amount < 0:
            raise InvalidParameter("Transfer amount cannot be negative")
        with self.transactions.atomic("funds.transfer"):
            available = self.balance_of(sender)
            if available < amount:
                raise InsufficientFunds(
                    f"{sender} holds {available} wei, needs {amount}"
                )
            self.state.balances[sender] = available - amount
            self.state.balances[recipient] = self.balance_of(recipient) + amount

    def check_invariants(self) -> None:
        for address, amount in self.state.balances.items():
            if amount < 0:
                raise InvariantViolation(f"Negative native balance for {address}")
