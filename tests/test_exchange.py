"""Tests for ETH/token conversion arithmetic."""

from __future__ import annotations

import pytest

from esr_token.constants import ONE_ETHER, tokens
from esr_token.exchange import tokens_for, wei_for

RATIO = 3000 * 1000


def test_tokens_for_applies_ratio_and_bonus() -> None:
    assert tokens_for(2 * ONE_ETHER, RATIO, 1000, 20) == tokens(7200)
    assert tokens_for(ONE_ETHER, RATIO, 1000, 0) == tokens(3000)
    assert tokens_for(ONE_ETHER, RATIO) == tokens(3000)


def test_tokens_for_truncates_each_step() -> None:
    # 7 * 3 // 2 = 10, 10 * 105 // 100 = 10 (a combined fraction would give 11)
    assert tokens_for(7, 3, 2, 5) == 10
    # 1 wei at a sub-unit ratio rounds down to nothing
    assert tokens_for(1, 999, 1000, 20) == 0


def test_wei_for_is_the_truncating_inverse() -> None:
    assert wei_for(tokens(7200), RATIO, 1000, 20) == 2 * ONE_ETHER
    assert wei_for(tokens(3000), RATIO, 1000, 0) == ONE_ETHER
    # 10 * 2 // 3 = 6, 6 * 100 // 105 = 5
    assert wei_for(10, 3, 2, 5) == 5


@pytest.mark.parametrize(
    "wei,ratio,multiplier,bonus",
    [
        (1, 1, 1, 0),
        (12345, 3_000_000, 1000, 20),
        (10**18 + 7, 2_999_999, 1000, 10),
        (999, 7, 3, 5),
        (5 * 10**16, 1234, 1000, 0),
    ],
)
def test_round_trip_never_exceeds_input(
    wei: int, ratio: int, multiplier: int, bonus: int
) -> None:
    assert wei_for(tokens_for(wei, ratio, multiplier, bonus), ratio, multiplier, bonus) <= wei


def test_rejects_invalid_inputs() -> None:
    with pytest.raises(ValueError, match="ratio"):
        tokens_for(1, 0)
    with pytest.raises(ValueError, match="amount"):
        wei_for(-1, RATIO)
    with pytest.raises(ValueError, match="bonus"):
        tokens_for(1, RATIO, 1000, -5)
    with pytest.raises(ValueError, match="multiplier"):
        wei_for(1, RATIO, 0)
