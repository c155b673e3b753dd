"""ICO controller admitting investor funds against the ESRT ledger."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Mapping

from engine.context import Context
from engine.funds import NativeBalances
from engine.transaction import transactional
from esr_token.access import Ownable, Whitelisted
from esr_token.errors import (
    AboveMaximum,
    BelowMinimum,
    HardCapExceeded,
    InvalidParameter,
    InvalidState,
    InvariantViolation,
)
from esr_token.exchange import wei_for
from esr_token.models import SaleSettings
from esr_token.token import TokenLedger
from sale.bonus import DEFAULT_LAST_STAGE_START_AT, BonusSchedule, default_schedule

LOGGER = logging.getLogger("esr_ico.sale")

DEFAULT_LOW_CAP_TOKENS = 15 * 10**23
DEFAULT_HARD_CAP_TOKENS = 60 * 10**24
DEFAULT_LOW_CAP_TX_WEI = 5 * 10**16
DEFAULT_HARD_CAP_TX_WEI = 10**30


class SaleState(IntEnum):
    INACTIVE = 0
    ACTIVE = 1
    SUSPENDED = 2
    TERMINATED = 3
    NOT_COMPLETED = 4
    COMPLETED = 5

    @property
    def is_terminal(self) -> bool:
        return self in (
            SaleState.TERMINATED,
            SaleState.NOT_COMPLETED,
            SaleState.COMPLETED,
        )


@dataclass
class ICOState:
    owner: str
    address: str
    team_wallet: str
    last_stage_start_at: int
    low_cap_tokens: int = DEFAULT_LOW_CAP_TOKENS
    hard_cap_tokens: int = DEFAULT_HARD_CAP_TOKENS
    low_cap_tx_wei: int = DEFAULT_LOW_CAP_TX_WEI
    hard_cap_tx_wei: int = DEFAULT_HARD_CAP_TX_WEI
    status: SaleState = SaleState.INACTIVE
    start_at: int = 0
    end_at: int = 0
    collected_wei: int = 0
    collected_tokens: int = 0
    whitelist: set[str] = field(default_factory=set)
    whitelist_enabled: bool = True

    def to_payload(self) -> dict[str, Any]:
        return {
            "owner": self.owner,
            "address": self.address,
            "team_wallet": self.team_wallet,
            "status": self.status.name,
            "start_at": self.start_at,
            "end_at": self.end_at,
            "last_stage_start_at": self.last_stage_start_at,
            "low_cap_tokens": self.low_cap_tokens,
            "hard_cap_tokens": self.hard_cap_tokens,
            "low_cap_tx_wei": self.low_cap_tx_wei,
            "hard_cap_tx_wei": self.hard_cap_tx_wei,
            "collected_wei": self.collected_wei,
            "collected_tokens": self.collected_tokens,
            "whitelist": sorted(self.whitelist),
            "whitelist_enabled": self.whitelist_enabled,
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "ICOState":
        return cls(
            owner=payload["owner"],
            address=payload["address"],
            team_wallet=payload["team_wallet"],
            status=SaleState[payload.get("status", SaleState.INACTIVE.name)],
            start_at=int(payload.get("start_at", 0)),
            end_at=int(payload.get("end_at", 0)),
            last_stage_start_at=int(payload["last_stage_start_at"]),
            low_cap_tokens=int(payload.get("low_cap_tokens", DEFAULT_LOW_CAP_TOKENS)),
            hard_cap_tokens=int(
                payload.get("hard_cap_tokens", DEFAULT_HARD_CAP_TOKENS)
            ),
            low_cap_tx_wei=int(payload.get("low_cap_tx_wei", DEFAULT_LOW_CAP_TX_WEI)),
            hard_cap_tx_wei=int(
                payload.get("hard_cap_tx_wei", DEFAULT_HARD_CAP_TX_WEI)
            ),
            collected_wei=int(payload.get("collected_wei", 0)),
            collected_tokens=int(payload.get("collected_tokens", 0)),
            whitelist=set(payload.get("whitelist", [])),
            whitelist_enabled=bool(payload.get("whitelist_enabled", True)),
        )


class ICOController:
    """Sale state machine: Inactive -> Active <-> Suspended -> terminal states.

    Purchases are converted by the token ledger at its current ratio plus the
    bonus tier in force and credited to the investor. Only the base (pre-bonus)
    tokens count towards the caps. The paid wei is forwarded to the team
    wallet last. An investment that lands exactly on the hard cap completes
    the sale in the same call; one that would overshoot it is rejected with
    ``HardCapExceeded``.
    """

    component = "ico"

    def __init__(
        self,
        token: TokenLedger,
        funds: NativeBalances,
        *,
        address: str,
        team_wallet: str,
        owner: str,
        schedule: BonusSchedule | None = None,
        last_stage_start_at: int = DEFAULT_LAST_STAGE_START_AT,
        low_cap_tokens: int = DEFAULT_LOW_CAP_TOKENS,
        hard_cap_tokens: int = DEFAULT_HARD_CAP_TOKENS,
        low_cap_tx_wei: int = DEFAULT_LOW_CAP_TX_WEI,
        hard_cap_tx_wei: int = DEFAULT_HARD_CAP_TX_WEI,
        whitelist_enabled: bool = True,
    ) -> None:
        for label, value in (("address", address), ("team_wallet", team_wallet), ("owner", owner)):
            if not isinstance(value, str) or not value.strip():
                raise InvalidParameter(f"{label} must be a non-empty address")
        state = ICOState(
            owner=owner,
            address=address,
            team_wallet=team_wallet,
            last_stage_start_at=last_stage_start_at,
            low_cap_tokens=low_cap_tokens,
            hard_cap_tokens=hard_cap_tokens,
            low_cap_tx_wei=low_cap_tx_wei,
            hard_cap_tx_wei=hard_cap_tx_wei,
            whitelist_enabled=whitelist_enabled,
        )
        self._validate_parameters(state)
        self._attach(token, funds, schedule or default_schedule(), state)

    @classmethod
    def from_settings(
        cls,
        token: TokenLedger,
        funds: NativeBalances,
        settings: SaleSettings,
        owner: str,
    ) -> "ICOController":
        schedule = (
            BonusSchedule.from_settings(settings.bonus_tiers, settings.last_stage_pct)
            if settings.bonus_tiers is not None
            else default_schedule()
        )
        return cls(
            token,
            funds,
            address=settings.address,
            team_wallet=settings.team_wallet,
            owner=owner,
            schedule=schedule,
            last_stage_start_at=(
                settings.last_stage_start_at
                if settings.last_stage_start_at is not None
                else DEFAULT_LAST_STAGE_START_AT
            ),
            low_cap_tokens=settings.low_cap_tokens,
            hard_cap_tokens=settings.hard_cap_tokens,
            low_cap_tx_wei=settings.low_cap_tx_wei,
            hard_cap_tx_wei=settings.hard_cap_tx_wei,
            whitelist_enabled=settings.whitelist_enabled,
        )

    @classmethod
    def from_state(
        cls,
        token: TokenLedger,
        funds: NativeBalances,
        state: ICOState,
        schedule: BonusSchedule | None = None,
    ) -> "ICOController":
        controller = cls.__new__(cls)
        controller._attach(token, funds, schedule or default_schedule(), state)
        controller.check_invariants()
        return controller

    def _attach(
        self,
        token: TokenLedger,
        funds: NativeBalances,
        schedule: BonusSchedule,
        state: ICOState,
    ) -> None:
        if funds.transactions is not token.transactions:
            raise ValueError("Token and funds must share one transaction manager")
        self.token = token
        self.funds = funds
        self.schedule = schedule
        self.transactions = token.transactions
        self.state = state
        self.ownable = Ownable(self)
        self.whitelisting = Whitelisted(self, self.ownable)
        self.transactions.register(self)

    # Views.

    @property
    def status(self) -> SaleState:
        return self.state.status

    @property
    def owner(self) -> str:
        return self.state.owner

    @property
    def address(self) -> str:
        return self.state.address

    @property
    def team_wallet(self) -> str:
        return self.state.team_wallet

    @property
    def start_at(self) -> int:
        return self.state.start_at

    @property
    def end_at(self) -> int:
        return self.state.end_at

    @property
    def last_stage_start_at(self) -> int:
        return self.state.last_stage_start_at

    @property
    def low_cap_tokens(self) -> int:
        return self.state.low_cap_tokens

    @property
    def hard_cap_tokens(self) -> int:
        return self.state.hard_cap_tokens

    @property
    def low_cap_tx_wei(self) -> int:
        return self.state.low_cap_tx_wei

    @property
    def hard_cap_tx_wei(self) -> int:
        return self.state.hard_cap_tx_wei

    @property
    def collected_wei(self) -> int:
        return self.state.collected_wei

    @property
    def collected_tokens(self) -> int:
        return self.state.collected_tokens

    @property
    def whitelist_enabled(self) -> bool:
        return self.state.whitelist_enabled

    def whitelisted(self, address: str) -> bool:
        return self.whitelisting.is_whitelisted(address)

    def bonus_pct(self, at: int | None = None) -> int:
        now = self.transactions.now if at is None else at
        return self.schedule.bonus_pct(now, self.state.last_stage_start_at)

    def quote_tokens(self, amount_wei: int, at: int | None = None) -> int:
        return self.token.quote_tokens(amount_wei, self.bonus_pct(at))

    def quote_wei(self, amount_tokens: int, at: int | None = None) -> int:
        return wei_for(
            amount_tokens,
            self.token.eth_token_exchange_ratio,
            self.token.ETH_TOKEN_EXCHANGE_RATIO_MULTIPLIER,
            self.bonus_pct(at),
        )

    # Ownership and whitelist.

    @transactional
    def transfer_ownership(self, ctx: Context, new_owner: str) -> None:
        self.ownable.transfer_ownership(ctx, new_owner)

    @transactional
    def whitelist(self, ctx: Context, address: str) -> None:
        self.whitelisting.whitelist(ctx, address)

    @transactional
    def blacklist(self, ctx: Context, address: str) -> None:
        self.whitelisting.blacklist(ctx, address)

    @transactional
    def enable_whitelist(self, ctx: Context) -> None:
        self.whitelisting.enable(ctx)

    @transactional
    def disable_whitelist(self, ctx: Context) -> None:
        self.whitelisting.disable(ctx)

    # Lifecycle.

    def _require_status(self, *allowed: SaleState) -> None:
        if self.state.status not in allowed:
            expected = ", ".join(status.name for status in allowed)
            raise InvalidState(
                f"Sale is {self.state.status.name}, expected one of: {expected}"
            )

    def _set_status(self, status: SaleState) -> None:
        LOGGER.info("Sale %s: %s -> %s", self.address, self.state.status.name, status.name)
        self.state.status = status

    def _emit_parameters(self, event: str) -> None:
        state = self.state
        self.transactions.emit(
            event,
            endAt=state.end_at,
            lowCapTokens=state.low_cap_tokens,
            hardCapTokens=state.hard_cap_tokens,
            lowCapTxWei=state.low_cap_tx_wei,
            hardCapTxWei=state.hard_cap_tx_wei,
        )

    @transactional
    def start(self, ctx: Context, end_at: int) -> None:
        self.ownable.require_owner(ctx)
        self._require_status(SaleState.INACTIVE)
        now = self.transactions.now
        if end_at <= now:
            raise InvalidParameter(f"End date {end_at} must be after now ({now})")
        if end_at <= self.state.last_stage_start_at:
            raise InvalidParameter(
                f"End date {end_at} must be after last stage start "
                f"{self.state.last_stage_start_at}"
            )
        if now >= self.state.last_stage_start_at:
            raise InvalidParameter(
                f"Sale cannot start at {now}, the last stage began at "
                f"{self.state.last_stage_start_at}"
            )
        self.state.start_at = now
        self.state.end_at = end_at
        self._set_status(SaleState.ACTIVE)
        self._emit_parameters("ICOStarted")

    @transactional
    def suspend(self, ctx: Context) -> None:
        self.ownable.require_owner(ctx)
        self._require_status(SaleState.ACTIVE)
        self._set_status(SaleState.SUSPENDED)
        self.transactions.emit("ICOSuspended")

    @transactional
    def resume(self, ctx: Context) -> None:
        self.ownable.require_owner(ctx)
        self._require_status(SaleState.SUSPENDED)
        self._set_status(SaleState.ACTIVE)
        self._emit_parameters("ICOResumed")

    @transactional
    def terminate(self, ctx: Context) -> None:
        self.ownable.require_owner(ctx)
        self._require_status(SaleState.ACTIVE, SaleState.SUSPENDED)
        self._set_status(SaleState.TERMINATED)
        self.transactions.emit("ICOTerminated")

    @transactional
    def tune(
        self,
        ctx: Context,
        end_at: int,
        low_cap_tokens: int,
        hard_cap_tokens: int,
        low_cap_tx_wei: int,
        hard_cap_tx_wei: int,
    ) -> None:
        """Change sale parameters while suspended; zero leaves a value unchanged."""
        self.ownable.require_owner(ctx)
        self._require_status(SaleState.SUSPENDED)
        state = self.state
        if end_at:
            state.end_at = end_at
        if low_cap_tokens:
            state.low_cap_tokens = low_cap_tokens
        if hard_cap_tokens:
            state.hard_cap_tokens = hard_cap_tokens
        if low_cap_tx_wei:
            state.low_cap_tx_wei = low_cap_tx_wei
        if hard_cap_tx_wei:
            state.hard_cap_tx_wei = hard_cap_tx_wei
        self._validate_parameters(state)
        if state.end_at <= state.last_stage_start_at:
            raise InvalidParameter("End date must stay after the last stage start")
        LOGGER.info(
            "Sale %s tuned: end_at=%s caps=%s/%s tx=%s/%s",
            self.address,
            state.end_at,
            state.low_cap_tokens,
            state.hard_cap_tokens,
            state.low_cap_tx_wei,
            state.hard_cap_tx_wei,
        )

    @transactional
    def tune_last_stage_start_at(self, ctx: Context, last_stage_start_at: int) -> None:
        self.ownable.require_owner(ctx)
        self._require_status(SaleState.SUSPENDED)
        current = self.state.last_stage_start_at
        if last_stage_start_at <= 0 or last_stage_start_at >= current:
            raise InvalidParameter(
                f"Last stage start may only move earlier than {current}, "
                f"got {last_stage_start_at}"
            )
        if last_stage_start_at <= self.state.start_at:
            raise InvalidParameter(
                f"Last stage start must stay after the sale start {self.state.start_at}"
            )
        self.state.last_stage_start_at = last_stage_start_at

    @transactional
    def touch(self, ctx: Context) -> SaleState:
        self._touch()
        return self.state.status

    def _touch(self) -> None:
        state = self.state
        if state.status != SaleState.ACTIVE:
            return
        if self.transactions.now < state.end_at:
            return
        if state.collected_tokens < state.low_cap_tokens:
            self._set_status(SaleState.NOT_COMPLETED)
            self.transactions.emit("ICONotCompleted")
        else:
            self._complete()

    def _complete(self) -> None:
        self._set_status(SaleState.COMPLETED)
        # Unsold supply only moves while the token is still bound to this sale.
        if self.token.ico == self.address:
            self.token.ico_completed(Context(sender=self.address))
        else:
            LOGGER.warning(
                "Sale %s completed but token is bound to %s; unsold supply stays put",
                self.address,
                self.token.ico,
            )
        self.transactions.emit(
            "ICOCompleted", collectedTokens=self.state.collected_tokens
        )

    # Investment.

    @transactional
    def buy_tokens(self, ctx: Context) -> int:
        self._touch()
        self._require_status(SaleState.ACTIVE)
        self.whitelisting.require_whitelisted(ctx.sender)
        state = self.state
        invested = ctx.value
        if invested < state.low_cap_tx_wei:
            raise BelowMinimum(
                f"Investment {invested} wei below minimum {state.low_cap_tx_wei}"
            )
        if invested > state.hard_cap_tx_wei:
            raise AboveMaximum(
                f"Investment {invested} wei above maximum {state.hard_cap_tx_wei}"
            )
        bonus = self.bonus_pct()
        # Caps count sale tokens only; bonus tokens come from the Bounty reserve.
        sold = self.token.quote_tokens(invested)
        headroom = state.hard_cap_tokens - state.collected_tokens
        if sold > headroom:
            raise HardCapExceeded(
                f"Investment buys {sold} tokens, only {headroom} left"
            )

        receipt = self.token.ico_investment_wei(
            Context(sender=self.address), ctx.sender, invested, bonus
        )
        credited: int = receipt.result
        state.collected_wei += invested
        state.collected_tokens += sold
        self.transactions.emit(
            "ICOInvestment",
            investor=ctx.sender,
            investedWei=invested,
            bonusPct=bonus,
            tokens=credited,
        )
        if state.collected_tokens >= state.hard_cap_tokens:
            self._complete()

        # Funds move only after all sale and ledger state is final.
        self.funds.transfer(ctx.sender, state.team_wallet, invested)
        return credited

    def receive(self, ctx: Context):
        """Direct value transfer to the sale behaves like ``buy_tokens``."""
        return self.buy_tokens(ctx)

    # Consistency.

    @staticmethod
    def _validate_parameters(state: ICOState) -> None:
        if state.low_cap_tokens > state.hard_cap_tokens:
            raise InvalidParameter("low_cap_tokens must not exceed hard_cap_tokens")
        if state.hard_cap_tokens < state.collected_tokens:
            raise InvalidParameter("hard_cap_tokens is below tokens already collected")
        if state.low_cap_tx_wei > state.hard_cap_tx_wei:
            raise InvalidParameter("low_cap_tx_wei must not exceed hard_cap_tx_wei")

    def check_invariants(self) -> None:
        state = self.state
        if state.collected_tokens < 0 or state.collected_wei < 0:
            raise InvariantViolation("Collected totals are negative")
        if state.collected_tokens > state.hard_cap_tokens:
            raise InvariantViolation(
                f"Collected {state.collected_tokens} exceeds hard cap "
                f"{state.hard_cap_tokens}"
            )
        if (
            state.status == SaleState.COMPLETED
            and state.collected_tokens < state.low_cap_tokens
        ):
            raise InvariantViolation("Sale completed below its low cap")
        if state.status == SaleState.ACTIVE and not (
            state.start_at < state.last_stage_start_at < state.end_at
        ):
            raise InvariantViolation("Active sale has inconsistent dates")
