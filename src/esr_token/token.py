"""Fixed-supply ESRT token ledger with reserves, time gates and ICO binding."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

from engine.context import Context
from engine.transaction import TransactionManager, transactional
from esr_token.access import Lockable, Ownable
from esr_token.constants import (
    DECIMALS,
    DEFAULT_MINT_UNLOCK_AT,
    DEFAULT_TOKEN_UNLOCK_AT,
    ETH_TOKEN_EXCHANGE_RATIO_MULTIPLIER,
    TOKEN_NAME,
    TOKEN_SYMBOL,
    ZERO_ADDRESS,
)
from esr_token.errors import (
    InsufficientAllowance,
    InsufficientBalance,
    InvalidParameter,
    InvariantViolation,
    NotPayable,
    NotYetAllowed,
    ReserveExhausted,
    ReserveLocked,
    SupplyExhausted,
    Unauthorized,
    UnsafeApproval,
)
from esr_token.exchange import tokens_for
from esr_token.models import TokenGroup, TokenSettings

LOGGER = logging.getLogger("esr_ico.token")


@dataclass
class ReservedPool:
    cap: int
    distributed: int = 0

    @property
    def remaining(self) -> int:
        return self.cap - self.distributed


@dataclass
class TokenState:
    owner: str
    total_supply: int
    available_supply: int
    eth_token_exchange_ratio: int
    reserved: dict[TokenGroup, ReservedPool]
    name: str = TOKEN_NAME
    symbol: str = TOKEN_SYMBOL
    decimals: int = DECIMALS
    balances: dict[str, int] = field(default_factory=dict)
    allowances: dict[str, dict[str, int]] = field(default_factory=dict)
    locked: bool = True
    unlock_at: int | None = DEFAULT_TOKEN_UNLOCK_AT
    mint_unlock_at: int | None = DEFAULT_MINT_UNLOCK_AT
    reserve_locked: bool = False
    ico: str = ZERO_ADDRESS

    def to_payload(self) -> dict[str, Any]:
        return {
            "owner": self.owner,
            "name": self.name,
            "symbol": self.symbol,
            "decimals": self.decimals,
            "total_supply": self.total_supply,
            "available_supply": self.available_supply,
            "eth_token_exchange_ratio": self.eth_token_exchange_ratio,
            "reserved": {
                group.name: {"cap": pool.cap, "distributed": pool.distributed}
                for group, pool in self.reserved.items()
            },
            "balances": dict(self.balances),
            "allowances": {
                owner: dict(spenders) for owner, spenders in self.allowances.items()
            },
            "locked": self.locked,
            "unlock_at": self.unlock_at,
            "mint_unlock_at": self.mint_unlock_at,
            "reserve_locked": self.reserve_locked,
            "ico": self.ico,
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "TokenState":
        reserved = {
            TokenGroup.parse(group): ReservedPool(
                cap=int(pool["cap"]), distributed=int(pool.get("distributed", 0))
            )
            for group, pool in payload.get("reserved", {}).items()
        }
        return cls(
            owner=payload["owner"],
            name=payload.get("name", TOKEN_NAME),
            symbol=payload.get("symbol", TOKEN_SYMBOL),
            decimals=int(payload.get("decimals", DECIMALS)),
            total_supply=int(payload["total_supply"]),
            available_supply=int(payload["available_supply"]),
            eth_token_exchange_ratio=int(payload["eth_token_exchange_ratio"]),
            reserved=reserved,
            balances={
                str(k): int(v) for k, v in payload.get("balances", {}).items()
            },
            allowances={
                str(owner): {str(s): int(v) for s, v in spenders.items()}
                for owner, spenders in payload.get("allowances", {}).items()
            },
            locked=bool(payload.get("locked", True)),
            unlock_at=payload.get("unlock_at"),
            mint_unlock_at=payload.get("mint_unlock_at"),
            reserve_locked=bool(payload.get("reserve_locked", False)),
            ico=payload.get("ico", ZERO_ADDRESS),
        )


def _require_amount(value: Any, name: str) -> int:
    if not isinstance(value, int) or isinstance(value, bool) or value < 0:
        raise InvalidParameter(f"{name} must be a non-negative integer, got {value!r}")
    return value


def _require_address(value: Any, name: str) -> str:
    if not isinstance(value, str) or not value.strip() or value == ZERO_ADDRESS:
        raise InvalidParameter(f"{name} must be a non-zero address")
    return value


class TokenLedger:
    """ERC20-style ledger distributed by an ICO controller.

    Supply accounting: every unit of ``total_supply`` sits in exactly one of
    ``available_supply`` (unissued), a reserved pool's remaining capacity, or
    some holder's balance. ``check_invariants`` verifies this after each
    operation.
    """

    component = "token"
    ETH_TOKEN_EXCHANGE_RATIO_MULTIPLIER = ETH_TOKEN_EXCHANGE_RATIO_MULTIPLIER

    def __init__(
        self,
        transactions: TransactionManager,
        *,
        owner: str,
        eth_token_exchange_ratio: int,
        total_supply: int,
        team_tokens: int,
        bounty_tokens: int,
        partners_tokens: int,
        unlock_at: int | None = DEFAULT_TOKEN_UNLOCK_AT,
        mint_unlock_at: int | None = DEFAULT_MINT_UNLOCK_AT,
        name: str = TOKEN_NAME,
        symbol: str = TOKEN_SYMBOL,
    ) -> None:
        _require_address(owner, "owner")
        for label, amount in (
            ("total_supply", total_supply),
            ("team_tokens", team_tokens),
            ("bounty_tokens", bounty_tokens),
            ("partners_tokens", partners_tokens),
        ):
            _require_amount(amount, label)
        if eth_token_exchange_ratio <= 0:
            raise InvalidParameter("eth_token_exchange_ratio must be positive")
        reserved_total = team_tokens + bounty_tokens + partners_tokens
        if reserved_total > total_supply:
            raise InvalidParameter(
                f"Reserved tokens {reserved_total} exceed total supply {total_supply}"
            )
        state = TokenState(
            owner=owner,
            name=name,
            symbol=symbol,
            total_supply=total_supply,
            available_supply=total_supply - reserved_total,
            eth_token_exchange_ratio=eth_token_exchange_ratio,
            reserved={
                TokenGroup.PARTNERS: ReservedPool(cap=partners_tokens),
                TokenGroup.TEAM: ReservedPool(cap=team_tokens),
                TokenGroup.BOUNTY: ReservedPool(cap=bounty_tokens),
            },
            unlock_at=unlock_at,
            mint_unlock_at=mint_unlock_at,
        )
        self._attach(transactions, state)

    @classmethod
    def from_settings(
        cls, transactions: TransactionManager, settings: TokenSettings
    ) -> "TokenLedger":
        return cls(
            transactions,
            owner=settings.owner,
            eth_token_exchange_ratio=settings.exchange_ratio,
            total_supply=settings.total_supply,
            team_tokens=settings.team_tokens,
            bounty_tokens=settings.bounty_tokens,
            partners_tokens=settings.partners_tokens,
            unlock_at=settings.unlock_at,
            mint_unlock_at=settings.mint_unlock_at,
            name=settings.name,
            symbol=settings.symbol,
        )

    @classmethod
    def from_state(
        cls, transactions: TransactionManager, state: TokenState
    ) -> "TokenLedger":
        ledger = cls.__new__(cls)
        ledger._attach(transactions, state)
        ledger.check_invariants()
        return ledger

    def _attach(self, transactions: TransactionManager, state: TokenState) -> None:
        self.transactions = transactions
        self.state = state
        self.ownable = Ownable(self)
        self.lockable = Lockable(self, self.ownable)
        transactions.register(self)

    # Read-only views. Always permitted, never mutate.

    @property
    def owner(self) -> str:
        return self.state.owner

    @property
    def locked(self) -> bool:
        return self.state.locked

    @property
    def total_supply(self) -> int:
        return self.state.total_supply

    @property
    def available_supply(self) -> int:
        return self.state.available_supply

    @property
    def ico(self) -> str:
        return self.state.ico

    @property
    def eth_token_exchange_ratio(self) -> int:
        return self.state.eth_token_exchange_ratio

    @property
    def reserve_locked(self) -> bool:
        return self.state.reserve_locked

    @property
    def name(self) -> str:
        return self.state.name

    @property
    def symbol(self) -> str:
        return self.state.symbol

    @property
    def decimals(self) -> int:
        return self.state.decimals

    def balance_of(self, address: str) -> int:
        return self.state.balances.get(address, 0)

    def allowance(self, owner: str, spender: str) -> int:
        return self.state.allowances.get(owner, {}).get(spender, 0)

    def get_reserved_tokens(self, group: TokenGroup | int | str) -> int:
        return self.state.reserved[TokenGroup.parse(group)].remaining

    def circulating_supply(self) -> int:
        return sum(self.state.balances.values())

    def quote_tokens(self, amount_wei: int, bonus_pct: int = 0) -> int:
        return tokens_for(
            amount_wei,
            self.state.eth_token_exchange_ratio,
            self.ETH_TOKEN_EXCHANGE_RATIO_MULTIPLIER,
            bonus_pct,
        )

    # Ownership and locking.

    @transactional
    def transfer_ownership(self, ctx: Context, new_owner: str) -> None:
        self.ownable.transfer_ownership(ctx, new_owner)

    @transactional
    def lock(self, ctx: Context) -> None:
        self.lockable.lock(ctx)

    @transactional
    def unlock(self, ctx: Context) -> None:
        self.lockable.unlock(ctx)

    @transactional
    def lock_reserve(self, ctx: Context) -> None:
        self.ownable.require_owner(ctx)
        self.state.reserve_locked = True
        self.transactions.emit("ReserveLockChanged", locked=True)

    @transactional
    def unlock_reserve(self, ctx: Context) -> None:
        self.ownable.require_owner(ctx)
        self.state.reserve_locked = False
        self.transactions.emit("ReserveLockChanged", locked=False)

    # ERC20 surface.

    @transactional
    def transfer(self, ctx: Context, to: str, value: int) -> bool:
        self.lockable.require_unlocked()
        _require_address(to, "to")
        _require_amount(value, "value")
        self._debit(ctx.sender, value)
        self._credit(to, value)
        self.transactions.emit("Transfer", **{"from": ctx.sender, "to": to, "value": value})
        return True

    @transactional
    def transfer_from(self, ctx: Context, from_: str, to: str, value: int) -> bool:
        self.lockable.require_unlocked()
        _require_address(from_, "from")
        _require_address(to, "to")
        _require_amount(value, "value")
        allowed = self.allowance(from_, ctx.sender)
        if value > allowed:
            raise InsufficientAllowance(
                f"{ctx.sender} may spend {allowed} of {from_}, requested {value}"
            )
        self._debit(from_, value)
        self._credit(to, value)
        self.state.allowances.setdefault(from_, {})[ctx.sender] = allowed - value
        self.transactions.emit("Transfer", **{"from": from_, "to": to, "value": value})
        return True

    @transactional
    def approve(self, ctx: Context, spender: str, value: int) -> bool:
        self.lockable.require_unlocked()
        _require_address(spender, "spender")
        _require_amount(value, "value")
        current = self.allowance(ctx.sender, spender)
        # Changing one non-zero allowance to another requires a reset to zero first.
        if current != 0 and value != 0 and value != current:
            raise UnsafeApproval(
                f"Allowance for {spender} is {current}; set it to 0 before changing it"
            )
        self.state.allowances.setdefault(ctx.sender, {})[spender] = value
        self.transactions.emit(
            "Approval", owner=ctx.sender, spender=spender, value=value
        )
        return True

    @transactional
    def receive(self, ctx: Context) -> None:
        raise NotPayable("Token contract does not accept native value")

    # ICO binding.

    @transactional
    def change_ico(self, ctx: Context, ico: str) -> None:
        self.ownable.require_owner(ctx)
        _require_address(ico, "ico")
        self.state.ico = ico
        self.transactions.emit("ICOChanged", address=ico)
        LOGGER.info("Token bound to ICO controller %s", ico)

    def _require_ico(self, ctx: Context) -> None:
        if self.state.ico == ZERO_ADDRESS or ctx.sender != self.state.ico:
            raise Unauthorized(f"{ctx.sender} is not the bound ICO controller")

    @transactional
    def ico_investment_wei(
        self, ctx: Context, to: str, amount_wei: int, bonus_pct: int = 0
    ) -> int:
        """Convert ``amount_wei`` at the stored ratio plus bonus and credit ``to``.

        The base amount comes out of the available supply; the bonus share is
        paid from the Bounty reserve, as with fiat sales. Returns the total
        number of tokens credited.
        """
        self._require_ico(ctx)
        _require_address(to, "to")
        _require_amount(amount_wei, "amount_wei")
        base = self.quote_tokens(amount_wei)
        amount = self.quote_tokens(amount_wei, bonus_pct)
        if base == 0:
            raise InvalidParameter(f"{amount_wei} wei converts to zero tokens")
        self._draw_available(base)
        self._draw_reserve(TokenGroup.BOUNTY, amount - base)
        self._credit(to, amount)
        return amount

    @transactional
    def ico_completed(self, ctx: Context) -> int:
        """Hand the unsold available supply to the owner once the sale completes."""
        self._require_ico(ctx)
        remainder = self.state.available_supply
        self.state.available_supply = 0
        self._credit(self.state.owner, remainder)
        LOGGER.info("Sale completed; %s unsold tokens moved to owner", remainder)
        return remainder

    # Owner-only supply management.

    @transactional
    def mint_token(self, ctx: Context, amount: int) -> int:
        self.ownable.require_owner(ctx)
        _require_amount(amount, "amount")
        mint_unlock_at = self.state.mint_unlock_at
        now = self.transactions.now
        if mint_unlock_at is not None and now < mint_unlock_at:
            raise NotYetAllowed(f"Minting allowed from {mint_unlock_at}, now {now}")
        self.state.total_supply += amount
        self._credit(self.state.owner, amount)
        self.transactions.emit(
            "TokensMinted", amount=amount, totalSupply=self.state.total_supply
        )
        LOGGER.info("Minted %s tokens, total supply %s", amount, self.state.total_supply)
        return self.state.total_supply

    @transactional
    def assign_reserved(
        self, ctx: Context, to: str, group: TokenGroup | int | str, amount: int
    ) -> None:
        self.ownable.require_owner(ctx)
        if self.state.reserve_locked:
            raise ReserveLocked("Reserved token distribution is locked")
        _require_address(to, "to")
        _require_amount(amount, "amount")
        token_group = TokenGroup.parse(group)
        self._draw_reserve(token_group, amount)
        self._credit(to, amount)
        self.transactions.emit(
            "ReservedTokensDistributed", to=to, group=token_group, amount=amount
        )

    @transactional
    def sell_token(self, ctx: Context, to: str, amount: int, bonus_amount: int) -> None:
        """Record a fiat-settled sale; the bonus always comes from the Bounty pool."""
        self.ownable.require_owner(ctx)
        _require_address(to, "to")
        _require_amount(amount, "amount")
        _require_amount(bonus_amount, "bonus_amount")
        self._draw_available(amount)
        self._draw_reserve(TokenGroup.BOUNTY, bonus_amount)
        self._credit(to, amount + bonus_amount)
        self.transactions.emit(
            "ReservedTokensDistributed",
            to=to,
            group=TokenGroup.BOUNTY,
            amount=bonus_amount,
        )
        self.transactions.emit(
            "SellToken", to=to, amount=amount, bonusAmount=bonus_amount
        )
        LOGGER.info("Fiat sale to %s: %s tokens + %s bonus", to, amount, bonus_amount)

    @transactional
    def update_token_exchange_ratio(self, ctx: Context, ratio: int) -> None:
        self.ownable.require_owner(ctx)
        if not isinstance(ratio, int) or isinstance(ratio, bool) or ratio <= 0:
            raise InvalidParameter(
                f"Exchange ratio must be a positive integer, got {ratio!r}"
            )
        self.state.eth_token_exchange_ratio = ratio
        self.transactions.emit("EthTokenExchangeRatioUpdated", ratio=ratio)
        LOGGER.info("ETH/token exchange ratio set to %s", ratio)

    # Internal accounting.

    def _credit(self, address: str, amount: int) -> None:
        self.state.balances[address] = self.balance_of(address) + amount

    def _debit(self, address: str, amount: int) -> None:
        balance = self.balance_of(address)
        if amount > balance:
            raise InsufficientBalance(f"{address} holds {balance}, needs {amount}")
        self.state.balances[address] = balance - amount

    def _draw_available(self, amount: int) -> None:
        if amount > self.state.available_supply:
            raise SupplyExhausted(
                f"Requested {amount}, available {self.state.available_supply}"
            )
        self.state.available_supply -= amount

    def _draw_reserve(self, group: TokenGroup, amount: int) -> None:
        pool = self.state.reserved[group]
        if amount > pool.remaining:
            raise ReserveExhausted(
                f"{group.name} pool has {pool.remaining} left, requested {amount}"
            )
        pool.distributed += amount

    def check_invariants(self) -> None:
        state = self.state
        if state.available_supply < 0:
            raise InvariantViolation("Available supply is negative")
        for address, balance in state.balances.items():
            if balance < 0:
                raise InvariantViolation(f"Negative balance for {address}")
        for owner, spenders in state.allowances.items():
            for spender, value in spenders.items():
                if value < 0:
                    raise InvariantViolation(f"Negative allowance {owner}->{spender}")
        reserved_remaining = 0
        for group, pool in state.reserved.items():
            if not 0 <= pool.distributed <= pool.cap:
                raise InvariantViolation(
                    f"{group.name} pool distributed {pool.distributed} of cap {pool.cap}"
                )
            reserved_remaining += pool.remaining
        accounted = state.available_supply + reserved_remaining + self.circulating_supply()
        if accounted != state.total_supply:
            raise InvariantViolation(
                f"Supply mismatch: accounted {accounted}, total {state.total_supply}"
            )
