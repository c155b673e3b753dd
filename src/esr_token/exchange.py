"""ETH/token conversion helpers.

Both directions use truncating integer division at every step, in the order
written, so results match the on-chain arithmetic bit for bit.
"""

from __future__ import annotations

from esr_token.constants import ETH_TOKEN_EXCHANGE_RATIO_MULTIPLIER


def _check_inputs(amount: int, ratio: int, multiplier: int, bonus_pct: int) -> None:
    if amount < 0:
        raise ValueError("amount must be non-negative")
    if ratio <= 0:
        raise ValueError("ratio must be positive")
    if multiplier <= 0:
        raise ValueError("multiplier must be positive")
    if bonus_pct < 0:
        raise ValueError("bonus_pct must be non-negative")


def tokens_for(
    wei_amount: int,
    ratio: int,
    multiplier: int = ETH_TOKEN_EXCHANGE_RATIO_MULTIPLIER,
    bonus_pct: int = 0,
) -> int:
    """Return tokens bought by ``wei_amount``.

    floor(floor(floor(wei * ratio / multiplier) * (100 + bonus)) / 100)
    """
    _check_inputs(wei_amount, ratio, multiplier, bonus_pct)
    base = wei_amount * ratio // multiplier
    return base * (100 + bonus_pct) // 100


def wei_for(
    token_amount: int,
    ratio: int,
    multiplier: int = ETH_TOKEN_EXCHANGE_RATIO_MULTIPLIER,
    bonus_pct: int = 0,
) -> int:
    """Return wei needed to buy ``token_amount`` (inverse of ``tokens_for``)."""
    _check_inputs(token_amount, ratio, multiplier, bonus_pct)
    base = token_amount * multiplier // ratio
    return base * 100 // (100 + bonus_pct)
