"""Tests for the ICO controller state machine and purchase path."""

from __future__ import annotations

import pytest

from engine.context import Context
from engine.funds import NativeBalances
from esr_token.constants import ONE_ETHER, tokens
from esr_token.errors import (
    AboveMaximum,
    BelowMinimum,
    HardCapExceeded,
    InsufficientFunds,
    InvalidParameter,
    InvalidState,
    NotWhitelisted,
    Unauthorized,
)
from esr_token.models import TokenGroup
from esr_token.token import TokenLedger
from sale.bonus import DEFAULT_LAST_STAGE_START_AT
from sale.ico import ICOController, ICOState, SaleState

from conftest import (
    ALICE,
    BOB,
    CAROL,
    ICO_ADDRESS,
    OWNER,
    SALE_ENDS_AT,
    SALE_OPENS_AT,
    TEAM_WALLET,
)

# 2018-11-01, 2019-02-01, 2019-04-15 (UTC midnight)
IN_10_PCT_TIER = 1541030400
IN_5_PCT_TIER = 1548979200
AFTER_LAST_STAGE = 1555286400


@pytest.fixture
def capped_ico(token: TokenLedger, funds: NativeBalances, owner: Context) -> ICOController:
    controller = ICOController(
        token,
        funds,
        address=ICO_ADDRESS,
        team_wallet=TEAM_WALLET,
        owner=OWNER,
        low_cap_tokens=tokens(3000),
        hard_cap_tokens=tokens(6000),
    )
    token.change_ico(owner, ICO_ADDRESS)
    controller.start(owner, SALE_ENDS_AT)
    controller.whitelist(owner, ALICE)
    controller.whitelist(owner, BOB)
    return controller


def test_defaults(ico: ICOController) -> None:
    assert ico.status is SaleState.INACTIVE
    assert ico.low_cap_tokens == 15 * 10**23
    assert ico.hard_cap_tokens == 60 * 10**24
    assert ico.low_cap_tx_wei == 5 * 10**16
    assert ico.hard_cap_tx_wei == 10**30
    assert ico.last_stage_start_at == DEFAULT_LAST_STAGE_START_AT
    assert ico.whitelist_enabled is True
    assert ico.team_wallet == TEAM_WALLET


def test_controller_requires_shared_transaction_manager(token: TokenLedger) -> None:
    from engine.clock import ManualClock
    from engine.transaction import TransactionManager

    other = NativeBalances(TransactionManager(ManualClock(0)))
    with pytest.raises(ValueError):
        ICOController(
            token, other, address=ICO_ADDRESS, team_wallet=TEAM_WALLET, owner=OWNER
        )


def test_start_validates_caller_state_and_dates(
    ico: ICOController, owner: Context
) -> None:
    with pytest.raises(Unauthorized):
        ico.start(Context(sender=ALICE), SALE_ENDS_AT)
    with pytest.raises(InvalidParameter):
        ico.start(owner, SALE_OPENS_AT)
    with pytest.raises(InvalidParameter):
        ico.start(owner, DEFAULT_LAST_STAGE_START_AT)

    receipt = ico.start(owner, SALE_ENDS_AT)
    assert ico.status is SaleState.ACTIVE
    assert ico.start_at == SALE_OPENS_AT
    assert ico.end_at == SALE_ENDS_AT
    assert receipt.event_names == ["ICOStarted"]
    assert receipt.logs[0]["endAt"] == SALE_ENDS_AT

    with pytest.raises(InvalidState):
        ico.start(owner, SALE_ENDS_AT)


def test_not_whitelisted_then_whitelisted(
    started_ico: ICOController, token: TokenLedger, owner: Context
) -> None:
    carol = Context(sender=CAROL, value=ONE_ETHER // 2)
    with pytest.raises(NotWhitelisted):
        started_ico.buy_tokens(carol)
    assert token.balance_of(CAROL) == 0

    started_ico.whitelist(owner, CAROL)
    receipt = started_ico.buy_tokens(carol)

    assert receipt.event_names == ["ICOInvestment"]
    assert receipt.logs[0].args == {
        "investor": CAROL,
        "investedWei": ONE_ETHER // 2,
        "bonusPct": 20,
        "tokens": tokens(1800),
    }
    assert token.balance_of(CAROL) == tokens(1800)


def test_purchase_moves_tokens_and_funds(
    started_ico: ICOController, token: TokenLedger, funds: NativeBalances
) -> None:
    receipt = started_ico.buy_tokens(Context(sender=ALICE, value=2 * ONE_ETHER))

    assert receipt.result == tokens(7200)
    assert token.balance_of(ALICE) == tokens(7200)
    assert token.available_supply == tokens(60_000_000 - 6000)
    assert token.get_reserved_tokens(TokenGroup.BOUNTY) == tokens(30_000_000 - 1200)
    assert started_ico.collected_tokens == tokens(6000)
    assert started_ico.collected_wei == 2 * ONE_ETHER
    assert funds.balance_of(ALICE) == 98 * ONE_ETHER
    assert funds.balance_of(TEAM_WALLET) == 2 * ONE_ETHER


def test_receive_is_a_purchase(started_ico: ICOController, token: TokenLedger) -> None:
    receipt = started_ico.receive(Context(sender=BOB, value=ONE_ETHER))
    assert receipt.event_names == ["ICOInvestment"]
    assert token.balance_of(BOB) == tokens(3600)


@pytest.mark.parametrize(
    "at,bonus",
    [(IN_10_PCT_TIER, 10), (IN_5_PCT_TIER, 5), (AFTER_LAST_STAGE, 0)],
)
def test_bonus_follows_the_clock(
    started_ico: ICOController, token: TokenLedger, clock, at: int, bonus: int
) -> None:
    clock.set(at)
    receipt = started_ico.buy_tokens(Context(sender=ALICE, value=ONE_ETHER))
    assert receipt.logs[0]["bonusPct"] == bonus
    assert token.balance_of(ALICE) == tokens(3000) * (100 + bonus) // 100


def test_per_transaction_bounds(started_ico: ICOController, owner: Context) -> None:
    with pytest.raises(BelowMinimum):
        started_ico.buy_tokens(Context(sender=ALICE, value=4 * 10**16))

    started_ico.suspend(owner)
    started_ico.tune(owner, 0, 0, 0, 0, ONE_ETHER)
    started_ico.resume(owner)

    with pytest.raises(AboveMaximum):
        started_ico.buy_tokens(Context(sender=ALICE, value=ONE_ETHER + 1))
    started_ico.buy_tokens(Context(sender=ALICE, value=ONE_ETHER))


def test_failed_payment_rolls_back_the_purchase(
    started_ico: ICOController, token: TokenLedger, funds: NativeBalances, owner: Context
) -> None:
    started_ico.whitelist(owner, CAROL)
    with pytest.raises(InsufficientFunds):
        started_ico.buy_tokens(Context(sender=CAROL, value=2 * ONE_ETHER))

    assert token.balance_of(CAROL) == 0
    assert token.available_supply == tokens(60_000_000)
    assert started_ico.collected_tokens == 0
    assert started_ico.collected_wei == 0
    assert funds.balance_of(CAROL) == ONE_ETHER


def test_exact_hard_cap_fill_completes_the_sale(
    capped_ico: ICOController, token: TokenLedger, funds: NativeBalances
) -> None:
    receipt = capped_ico.buy_tokens(Context(sender=ALICE, value=2 * ONE_ETHER))

    assert receipt.event_names == ["ICOInvestment", "ICOCompleted"]
    assert receipt.logs[1].args == {"collectedTokens": tokens(6000)}
    assert capped_ico.status is SaleState.COMPLETED
    assert capped_ico.collected_tokens == capped_ico.hard_cap_tokens
    # Unsold supply is handed to the owner on completion.
    assert token.available_supply == 0
    assert token.balance_of(OWNER) == tokens(60_000_000 - 6000)
    assert funds.balance_of(TEAM_WALLET) == 2 * ONE_ETHER

    with pytest.raises(InvalidState):
        capped_ico.buy_tokens(Context(sender=BOB, value=ONE_ETHER))


def test_overshooting_the_hard_cap_is_rejected(
    capped_ico: ICOController, token: TokenLedger, funds: NativeBalances
) -> None:
    capped_ico.buy_tokens(Context(sender=ALICE, value=ONE_ETHER))

    with pytest.raises(HardCapExceeded):
        capped_ico.buy_tokens(Context(sender=BOB, value=ONE_ETHER + 1))

    assert capped_ico.status is SaleState.ACTIVE
    assert capped_ico.collected_tokens == tokens(3000)
    assert token.balance_of(BOB) == 0
    assert funds.balance_of(BOB) == 50 * ONE_ETHER


def test_suspend_resume_and_terminate(
    started_ico: ICOController, owner: Context
) -> None:
    with pytest.raises(Unauthorized):
        started_ico.suspend(Context(sender=ALICE))
    with pytest.raises(InvalidState):
        started_ico.resume(owner)

    assert started_ico.suspend(owner).event_names == ["ICOSuspended"]
    with pytest.raises(InvalidState):
        started_ico.buy_tokens(Context(sender=ALICE, value=ONE_ETHER))

    started_ico.resume(owner)
    receipt = started_ico.terminate(owner)
    assert receipt.event_names == ["ICOTerminated"]
    assert started_ico.status is SaleState.TERMINATED

    for operation in (started_ico.resume, started_ico.suspend, started_ico.terminate):
        with pytest.raises(InvalidState):
            operation(owner)
    with pytest.raises(InvalidState):
        started_ico.buy_tokens(Context(sender=ALICE, value=ONE_ETHER))


def test_terminate_from_suspended(started_ico: ICOController, owner: Context) -> None:
    started_ico.suspend(owner)
    started_ico.terminate(owner)
    assert started_ico.status is SaleState.TERMINATED


def test_terminate_requires_a_running_sale(ico: ICOController, owner: Context) -> None:
    with pytest.raises(InvalidState):
        ico.terminate(owner)


def test_tune_applies_only_non_zero_values(
    started_ico: ICOController, owner: Context
) -> None:
    with pytest.raises(InvalidState):
        started_ico.tune(owner, 0, tokens(1), 0, 0, 0)

    started_ico.suspend(owner)
    with pytest.raises(Unauthorized):
        started_ico.tune(Context(sender=ALICE), 0, tokens(1), 0, 0, 0)

    started_ico.tune(owner, SALE_ENDS_AT - 3600, tokens(62_400), tokens(66_000), 0, 0)

    assert started_ico.end_at == SALE_ENDS_AT - 3600
    assert started_ico.low_cap_tokens == tokens(62_400)
    assert started_ico.hard_cap_tokens == tokens(66_000)
    assert started_ico.low_cap_tx_wei == 5 * 10**16
    assert started_ico.hard_cap_tx_wei == 10**30

    receipt = started_ico.resume(owner)
    assert receipt.logs[0].args == {
        "endAt": SALE_ENDS_AT - 3600,
        "lowCapTokens": tokens(62_400),
        "hardCapTokens": tokens(66_000),
        "lowCapTxWei": 5 * 10**16,
        "hardCapTxWei": 10**30,
    }


def test_tune_rejects_inconsistent_parameters(
    started_ico: ICOController, owner: Context
) -> None:
    started_ico.buy_tokens(Context(sender=ALICE, value=ONE_ETHER))
    started_ico.suspend(owner)

    with pytest.raises(InvalidParameter):
        started_ico.tune(owner, 0, tokens(70_000), tokens(66_000), 0, 0)
    with pytest.raises(InvalidParameter):
        started_ico.tune(owner, 0, tokens(1), tokens(2999), 0, 0)
    with pytest.raises(InvalidParameter):
        started_ico.tune(owner, 0, 0, 0, 2 * 10**30, 0)
    with pytest.raises(InvalidParameter):
        started_ico.tune(owner, DEFAULT_LAST_STAGE_START_AT, 0, 0, 0, 0)

    assert started_ico.low_cap_tokens == 15 * 10**23
    assert started_ico.end_at == SALE_ENDS_AT


def test_tune_last_stage_start_may_only_move_earlier(
    started_ico: ICOController, owner: Context, clock
) -> None:
    with pytest.raises(InvalidState):
        started_ico.tune_last_stage_start_at(owner, DEFAULT_LAST_STAGE_START_AT - 1)

    started_ico.suspend(owner)
    with pytest.raises(Unauthorized):
        started_ico.tune_last_stage_start_at(Context(sender=ALICE), 0)
    with pytest.raises(InvalidParameter):
        started_ico.tune_last_stage_start_at(owner, DEFAULT_LAST_STAGE_START_AT + 1)
    with pytest.raises(InvalidParameter):
        started_ico.tune_last_stage_start_at(owner, DEFAULT_LAST_STAGE_START_AT)
    with pytest.raises(InvalidParameter):
        started_ico.tune_last_stage_start_at(owner, 0)

    earlier = DEFAULT_LAST_STAGE_START_AT - 3600
    started_ico.tune_last_stage_start_at(owner, earlier)
    assert started_ico.last_stage_start_at == earlier

    started_ico.resume(owner)
    assert started_ico.last_stage_start_at == earlier
    clock.set(earlier - 60)
    assert started_ico.bonus_pct() == 5
    clock.set(earlier)
    assert started_ico.bonus_pct() == 0


def test_touch_before_end_changes_nothing(started_ico: ICOController) -> None:
    receipt = started_ico.touch(Context(sender=CAROL))
    assert receipt.result is SaleState.ACTIVE
    assert receipt.logs == ()


def test_touch_after_end_below_low_cap(
    started_ico: ICOController, token: TokenLedger, clock
) -> None:
    started_ico.buy_tokens(Context(sender=ALICE, value=ONE_ETHER))
    clock.set(SALE_ENDS_AT)

    receipt = started_ico.touch(Context(sender=CAROL))
    assert receipt.event_names == ["ICONotCompleted"]
    assert started_ico.status is SaleState.NOT_COMPLETED
    assert token.balance_of(OWNER) == 0

    again = started_ico.touch(Context(sender=CAROL))
    assert again.logs == ()
    assert started_ico.status is SaleState.NOT_COMPLETED


def test_touch_after_end_above_low_cap(
    capped_ico: ICOController, token: TokenLedger, clock
) -> None:
    capped_ico.buy_tokens(Context(sender=ALICE, value=ONE_ETHER))
    clock.set(SALE_ENDS_AT + 1)

    receipt = capped_ico.touch(Context(sender=BOB))
    assert receipt.event_names == ["ICOCompleted"]
    assert capped_ico.status is SaleState.COMPLETED
    assert token.available_supply == 0
    assert token.balance_of(OWNER) == tokens(60_000_000 - 3000)

    assert capped_ico.touch(Context(sender=BOB)).logs == ()


def test_purchase_after_end_fails_without_transition(
    started_ico: ICOController, clock
) -> None:
    clock.set(SALE_ENDS_AT)
    with pytest.raises(InvalidState):
        started_ico.buy_tokens(Context(sender=ALICE, value=ONE_ETHER))
    assert started_ico.status is SaleState.ACTIVE


def test_quotes(started_ico: ICOController) -> None:
    assert started_ico.bonus_pct() == 20
    assert started_ico.quote_tokens(2 * ONE_ETHER) == tokens(7200)
    assert started_ico.quote_wei(tokens(7200)) == 2 * ONE_ETHER
    assert started_ico.quote_tokens(ONE_ETHER, at=IN_10_PCT_TIER) == tokens(3300)


def test_state_payload_round_trip(started_ico: ICOController) -> None:
    started_ico.buy_tokens(Context(sender=ALICE, value=ONE_ETHER))
    payload = started_ico.state.to_payload()
    assert payload["status"] == "ACTIVE"
    assert payload["whitelist"] == sorted([ALICE, BOB])
    assert ICOState.from_payload(payload) == started_ico.state


def test_start_after_last_stage_is_rejected(
    ico: ICOController, owner: Context, clock
) -> None:
    clock.set(AFTER_LAST_STAGE)
    with pytest.raises(InvalidParameter, match="last stage"):
        ico.start(owner, SALE_ENDS_AT)
    assert ico.status is SaleState.INACTIVE


def test_last_stage_cannot_move_before_sale_start(
    started_ico: ICOController, owner: Context
) -> None:
    started_ico.suspend(owner)
    with pytest.raises(InvalidParameter, match="sale start"):
        started_ico.tune_last_stage_start_at(owner, SALE_OPENS_AT - 86400)
    with pytest.raises(InvalidParameter, match="sale start"):
        started_ico.tune_last_stage_start_at(owner, SALE_OPENS_AT)
    assert started_ico.last_stage_start_at == DEFAULT_LAST_STAGE_START_AT

    started_ico.tune_last_stage_start_at(owner, SALE_OPENS_AT + 1)
    started_ico.resume(owner)
    assert started_ico.start_at < started_ico.last_stage_start_at < started_ico.end_at


def test_zero_exchange_ratio_is_rejected(
    started_ico: ICOController, token: TokenLedger, owner: Context
) -> None:
    with pytest.raises(InvalidParameter, match="Exchange ratio"):
        token.update_token_exchange_ratio(owner, 0)
    assert token.eth_token_exchange_ratio == 3000 * 1000

    receipt = started_ico.buy_tokens(Context(sender=ALICE, value=ONE_ETHER))
    assert receipt.result == tokens(3600)


def test_completion_after_rebinding_skips_the_sweep(
    capped_ico: ICOController, token: TokenLedger, owner: Context, clock
) -> None:
    capped_ico.buy_tokens(Context(sender=ALICE, value=ONE_ETHER))
    available = token.available_supply
    token.change_ico(owner, CAROL)
    clock.set(SALE_ENDS_AT)

    receipt = capped_ico.touch(Context(sender=BOB))

    assert receipt.event_names == ["ICOCompleted"]
    assert capped_ico.status is SaleState.COMPLETED
    assert token.available_supply == available
    assert token.balance_of(OWNER) == 0
