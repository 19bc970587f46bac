"""Weighted prize draw with fairness adjustments and atomic stock control."""

from .config import DrawConfig, load_draw_config, parse_time_factor_table
from .engine import DrawEngine
from .eligibility import AlwaysEligible, EligibilityChecker, UserEligibility
from .errors import DrawError, EmptyPoolError, IneligibleError, PersistenceError
from .fairness import FairnessAdjuster
from .history import DrawHistory, InMemoryDrawHistory, SqlDrawHistory
from .inventory import InMemoryPrizePool, PrizePool, SqlPrizePool
from .selector import select_weighted
from .types import DrawContext, DrawOutcome, PrizeSnapshot

__all__ = [
    "AlwaysEligible",
    "DrawConfig",
    "DrawContext",
    "DrawEngine",
    "DrawError",
    "DrawHistory",
    "DrawOutcome",
    "EligibilityChecker",
    "EmptyPoolError",
    "FairnessAdjuster",
    "IneligibleError",
    "InMemoryDrawHistory",
    "InMemoryPrizePool",
    "PersistenceError",
    "PrizePool",
    "PrizeSnapshot",
    "SqlDrawHistory",
    "SqlPrizePool",
    "UserEligibility",
    "load_draw_config",
    "parse_time_factor_table",
    "select_weighted",
]
