"""Weight adjustment layers applied before each draw."""

from __future__ import annotations

from typing import Iterable, Optional, Sequence

from .config import DrawConfig
from .types import DrawContext, PrizeSnapshot


class FairnessAdjuster:
    """Reshape prize weights for one user and moment.

    The layers run in a fixed order, each multiplying the previous layer's
    result:

    1. decay: winning weights shrink by ``decay_factor ** recent_win_count``,
       clamped at ``min_weight_floor``. By default the clamp also lifts weights
       declared below the floor (including zero) up to it; with
       ``floor_lifts_low_weights`` off such weights keep their declared value;
    2. time shaping: winning weights are scaled by the hour-of-day factor.

    The floor is applied before the time multiplier, so the two layers do not
    commute. The no-win prize keeps its weight in both layers.

    The guarantee is evaluated here (:meth:`guarantee_due`,
    :meth:`find_guarantee_prize`) but applied by the engine, which skips
    weighted selection altogether when it fires.
    """

    def __init__(self, config: Optional[DrawConfig] = None) -> None:
        self.config = config or DrawConfig()

    def is_no_win(self, prize: PrizeSnapshot) -> bool:
        return prize.level == self.config.no_win_level

    def adjust(
        self, prizes: Iterable[PrizeSnapshot], ctx: DrawContext
    ) -> list[PrizeSnapshot]:
        """Return a new list with decayed and time-shaped weights."""

        decayed = self.apply_decay(prizes, ctx.recent_win_count)
        return self.apply_time_factor(decayed, ctx)

    def apply_decay(
        self, prizes: Iterable[PrizeSnapshot], recent_win_count: int
    ) -> list[PrizeSnapshot]:
        if recent_win_count <= 0:
            return list(prizes)

        multiplier = self.config.decay_factor**recent_win_count
        floor = self.config.min_weight_floor
        adjusted: list[PrizeSnapshot] = []
        for prize in prizes:
            if self.is_no_win(prize):
                adjusted.append(prize)
                continue
            decayed = prize.weight * multiplier
            if self.config.floor_lifts_low_weights:
                weight = max(decayed, floor)
            else:
                weight = max(decayed, min(floor, prize.weight))
            adjusted.append(prize.with_weight(weight))
        return adjusted

    def apply_time_factor(
        self, prizes: Iterable[PrizeSnapshot], ctx: DrawContext
    ) -> list[PrizeSnapshot]:
        factor = self.config.time_factor(ctx.now)
        if factor == 1.0:
            return list(prizes)
        return [
            prize if self.is_no_win(prize) else prize.with_weight(prize.weight * factor)
            for prize in prizes
        ]

    def guarantee_due(self, ctx: DrawContext) -> bool:
        return ctx.lose_streak >= self.config.guarantee_threshold - 1

    def find_guarantee_prize(
        self, prizes: Sequence[PrizeSnapshot]
    ) -> Optional[PrizeSnapshot]:
        """Return the first in-stock prize at the guarantee level, if any."""

        for prize in prizes:
            if prize.level == self.config.guarantee_prize_level and prize.has_stock:
                return prize
        return None


__all__ = ["FairnessAdjuster"]
