"""ICO sale controller and bonus schedule."""

from .bonus import BonusSchedule, BonusTier, default_schedule
from .bonus import describe as bonus_describe
from .ico import ICOController, ICOState, SaleState

__all__ = [
    "BonusSchedule",
    "BonusTier",
    "ICOController",
    "ICOState",
    "SaleState",
    "bonus_describe",
    "default_schedule",
]
