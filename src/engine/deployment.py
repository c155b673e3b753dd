"""Wire a token ledger, native balances and an optional ICO into one deployment."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping

from engine.clock import Clock, ManualClock, wall_clock
from engine.context import Context
from engine.funds import NativeBalances
from engine.transaction import TransactionManager
from esr_token.models import DeploymentSettings
from esr_token.token import TokenLedger
from sale.ico import ICOController

LOGGER = logging.getLogger("esr_ico.deployment")


@dataclass
class Deployment:
    clock: Clock
    transactions: TransactionManager
    token: TokenLedger
    funds: NativeBalances
    ico: ICOController | None = None

    @property
    def owner(self) -> str:
        return self.token.owner

    def component(self, name: str) -> Any:
        if name == "token":
            return self.token
        if name == "funds":
            return self.funds
        if name == "ico":
            if self.ico is None:
                raise ValueError("Deployment has no ICO controller")
            return self.ico
        raise ValueError(f"Unknown component: {name}")


def build_deployment(
    settings: DeploymentSettings | Mapping[str, Any],
    clock: Clock | None = None,
) -> Deployment:
    """Create every component from settings, binding the ICO when requested.

    When no clock is supplied a ``ManualClock`` starting at ``start_time`` is
    used if the settings define one, otherwise the wall clock.
    """
    if not isinstance(settings, DeploymentSettings):
        settings = DeploymentSettings.from_config(settings)
    if clock is None:
        clock = (
            ManualClock(settings.start_time)
            if settings.start_time is not None
            else wall_clock
        )

    transactions = TransactionManager(clock)
    token = TokenLedger.from_settings(transactions, settings.token)
    funds = NativeBalances(transactions, settings.accounts)
    ico = None
    if settings.ico is not None:
        ico = ICOController.from_settings(token, funds, settings.ico, settings.token.owner)
        if settings.ico.bind:
            token.change_ico(Context(sender=token.owner), ico.address)

    LOGGER.info(
        "Deployed %s (%s) supply=%s available=%s ico=%s accounts=%s",
        token.name,
        token.symbol,
        token.total_supply,
        token.available_supply,
        ico.address if ico is not None else None,
        len(settings.accounts),
    )
    return Deployment(
        clock=clock, transactions=transactions, token=token, funds=funds, ico=ico
    )
