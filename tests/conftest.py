"""Shared fixtures: a bound token/ICO deployment on a manual clock."""

from __future__ import annotations

import copy

import pytest

from engine.clock import ManualClock
from engine.context import Context
from engine.funds import NativeBalances
from engine.transaction import TransactionManager
from esr_token.constants import ONE_ETHER, tokens
from esr_token.token import TokenLedger
from sale.ico import ICOController

OWNER = "0x00000000000000000000000000000000000000a1"
TEAM_WALLET = "0x00000000000000000000000000000000000000b2"
ICO_ADDRESS = "0x00000000000000000000000000000000000000c0"
ALICE = "0x00000000000000000000000000000000000000f1"
BOB = "0x00000000000000000000000000000000000000f2"
CAROL = "0x00000000000000000000000000000000000000f3"

# 2018-09-01T00:00:00Z, inside the 20% bonus tier
SALE_OPENS_AT = 1535760000
# 2019-06-01T00:00:00Z
SALE_ENDS_AT = 1559347200

DEPLOYMENT_CONFIG = {
    "start_time": "2018-09-01T00:00:00Z",
    "token": {
        "owner": OWNER,
        "exchange_ratio": 3000,
        "total_supply": 120000000,
        "team_tokens": 12000000,
        "bounty_tokens": 30000000,
        "partners_tokens": 18000000,
    },
    "ico": {
        "address": ICO_ADDRESS,
        "team_wallet": TEAM_WALLET,
        "low_cap_tokens": 1500000,
        "hard_cap_tokens": 60000000,
        "low_cap_tx_eth": 0.05,
        "bonus_tiers": [
            {"ends_at": "2018-10-01T00:00:00Z", "pct": 20},
            {"ends_at": "2019-01-01T00:00:00Z", "pct": 10},
        ],
        "last_stage_start_at": "2019-04-01T00:00:00Z",
    },
    "accounts": {ALICE: 100, BOB: 50},
}


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(SALE_OPENS_AT)


@pytest.fixture
def transactions(clock: ManualClock) -> TransactionManager:
    return TransactionManager(clock)


@pytest.fixture
def token(transactions: TransactionManager) -> TokenLedger:
    return TokenLedger(
        transactions,
        owner=OWNER,
        eth_token_exchange_ratio=3000 * 1000,
        total_supply=tokens(120_000_000),
        team_tokens=tokens(12_000_000),
        bounty_tokens=tokens(30_000_000),
        partners_tokens=tokens(18_000_000),
    )


@pytest.fixture
def funds(transactions: TransactionManager) -> NativeBalances:
    return NativeBalances(
        transactions,
        {ALICE: 100 * ONE_ETHER, BOB: 50 * ONE_ETHER, CAROL: ONE_ETHER},
    )


@pytest.fixture
def ico(token: TokenLedger, funds: NativeBalances) -> ICOController:
    controller = ICOController(
        token,
        funds,
        address=ICO_ADDRESS,
        team_wallet=TEAM_WALLET,
        owner=OWNER,
    )
    token.change_ico(Context(sender=OWNER), ICO_ADDRESS)
    return controller


@pytest.fixture
def owner() -> Context:
    return Context(sender=OWNER)


@pytest.fixture
def started_ico(ico: ICOController, owner: Context) -> ICOController:
    ico.start(owner, SALE_ENDS_AT)
    ico.whitelist(owner, ALICE)
    ico.whitelist(owner, BOB)
    return ico


@pytest.fixture
def deployment_config() -> dict:
    return copy.deepcopy(DEPLOYMENT_CONFIG)
