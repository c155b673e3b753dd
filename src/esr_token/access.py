"""Access-control capabilities shared by the token and the sale.

Each capability is attached to an aggregate by composition. The aggregate
keeps the fields a capability needs on its own ``state`` record (``owner``,
``locked``/``unlock_at``, ``whitelist``/``whitelist_enabled``) and exposes the
capability operations itself, inside its own transaction.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from engine.context import Context
from engine.transaction import TransactionManager
from esr_token.constants import ZERO_ADDRESS
from esr_token.errors import (
    InvalidParameter,
    Locked,
    NotWhitelisted,
    NotYetAllowed,
    Unauthorized,
)

LOGGER = logging.getLogger("esr_ico.access")


class CapabilityHost(Protocol):
    state: Any
    transactions: TransactionManager


class Ownable:
    def __init__(self, host: CapabilityHost) -> None:
        self._host = host

    @property
    def owner(self) -> str:
        return self._host.state.owner

    def is_owner(self, address: str) -> bool:
        return address == self.owner

    def require_owner(self, ctx: Context) -> None:
        if not self.is_owner(ctx.sender):
            raise Unauthorized(f"{ctx.sender} is not the owner")

    def transfer_ownership(self, ctx: Context, new_owner: str) -> None:
        self.require_owner(ctx)
        if not new_owner or new_owner == ZERO_ADDRESS:
            raise InvalidParameter("New owner must be a non-zero address")
        previous = self.owner
        self._host.state.owner = new_owner
        self._host.transactions.emit(
            "OwnershipTransferred", previousOwner=previous, newOwner=new_owner
        )
        LOGGER.info("Ownership transferred from %s to %s", previous, new_owner)


class Lockable:
    """Boolean lock flag; unlocking may be gated by ``state.unlock_at``."""

    def __init__(self, host: CapabilityHost, ownable: Ownable) -> None:
        self._host = host
        self._ownable = ownable

    @property
    def locked(self) -> bool:
        return self._host.state.locked

    def require_unlocked(self) -> None:
        if self.locked:
            raise Locked("Token operations are locked")

    def lock(self, ctx: Context) -> None:
        self._ownable.require_owner(ctx)
        self._host.state.locked = True
        self._host.transactions.emit("Lock")

    def unlock(self, ctx: Context) -> None:
        self._ownable.require_owner(ctx)
        unlock_at = self._host.state.unlock_at
        now = self._host.transactions.now
        if unlock_at is not None and now < unlock_at:
            raise NotYetAllowed(f"Unlock allowed from {unlock_at}, now {now}")
        self._host.state.locked = False
        self._host.transactions.emit("Unlock")


class Whitelisted:
    """Owner-managed allow-set with an on/off switch."""

    def __init__(self, host: CapabilityHost, ownable: Ownable) -> None:
        self._host = host
        self._ownable = ownable

    @property
    def enabled(self) -> bool:
        return self._host.state.whitelist_enabled

    def is_whitelisted(self, address: str) -> bool:
        return address in self._host.state.whitelist

    def require_whitelisted(self, address: str) -> None:
        # A disabled whitelist is not consulted at all.
        if not self.enabled:
            return
        if not self.is_whitelisted(address):
            raise NotWhitelisted(f"{address} is not whitelisted")

    def whitelist(self, ctx: Context, address: str) -> None:
        self._ownable.require_owner(ctx)
        if not address:
            raise InvalidParameter("Address is required")
        self._host.state.whitelist.add(address)

    def blacklist(self, ctx: Context, address: str) -> None:
        self._ownable.require_owner(ctx)
        self._host.state.whitelist.discard(address)

    def enable(self, ctx: Context) -> None:
        self._ownable.require_owner(ctx)
        self._host.state.whitelist_enabled = True

    def disable(self, ctx: Context) -> None:
        self._ownable.require_owner(ctx)
        self._host.state.whitelist_enabled = False
