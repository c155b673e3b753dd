"""Shared token constants aligned with the ESRT deployment."""

# Deployment parameters: ratio x1000, 120m supply, 12m/30m/18m reserves.

TOKEN_NAME = "EsperantoToken"
TOKEN_SYMBOL = "ESRT"
DECIMALS = 18
ONE_TOKEN = 10**DECIMALS
ONE_ETHER = 10**18

ETH_TOKEN_EXCHANGE_RATIO_MULTIPLIER = 1000

ZERO_ADDRESS = "0x" + "0" * 40

# 2019-10-01T00:00:00Z
DEFAULT_TOKEN_UNLOCK_AT = 1569888000
# 2020-06-01T00:00:00Z
DEFAULT_MINT_UNLOCK_AT = 1590969600


def tokens(amount: int) -> int:
    """Return ``amount`` whole tokens expressed in the smallest unit."""
    return amount * ONE_TOKEN
