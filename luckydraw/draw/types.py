"""Value objects passed through the draw pipeline."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from ..models.prize import Prize


@dataclass(frozen=True)
class PrizeSnapshot:
    """Immutable view of a prize as seen by one draw.

    Attributes
    ----------
    id : Optional[Any]
        Identifier understood by the inventory store. ``None`` only for the
        synthetic no-win prize.
    level : str
        Prize tier; compared against the configured no-win level.
    weight : float
        Current selection weight. Starts as the declared probability and is
        rewritten by :class:`~luckydraw.draw.fairness.FairnessAdjuster`.
    remaining_stock : Optional[int]
        Units left. ``None`` is the unlimited variant; stored rows use ``-1``
        for the same meaning.
    name : str
        Display name carried through to the outcome.
    prize_type : Optional[str]
        ``virtual``, ``physical``, ``coupon`` or ``points``.
    points : int
        Points credited to the user when a ``points`` prize is won.
    """

    id: Optional[Any]
    level: str
    weight: float
    remaining_stock: Optional[int] = None
    name: str = ""
    prize_type: Optional[str] = None
    points: int = 0

    @property
    def is_unlimited(self) -> bool:
        return self.remaining_stock is None

    @property
    def has_stock(self) -> bool:
        return self.remaining_stock is None or self.remaining_stock > 0

    def with_weight(self, weight: float) -> "PrizeSnapshot":
        return replace(self, weight=weight)

    @classmethod
    def from_model(
        cls, prize: "Prize", *, weight: Optional[float] = None
    ) -> "PrizeSnapshot":
        """Build a snapshot from a persisted prize, mapping ``-1`` to unlimited."""

        from ..models.prize import UNLIMITED

        remaining = prize.remaining_quantity
        return cls(
            id=prize.id,
            level=prize.level,
            weight=float(prize.probability if weight is None else weight),
            remaining_stock=None if remaining == UNLIMITED else remaining,
            name=prize.name,
            prize_type=prize.prize_type,
            points=prize.points or 0,
        )


@dataclass(frozen=True)
class DrawContext:
    """Per-request facts about the user making the draw.

    Attributes
    ----------
    user_id : Any
        Identifier of the user drawing.
    lose_streak : int
        Consecutive non-winning draws immediately preceding this one.
    recent_win_count : int
        Wins by this user within the trailing window (24h by default).
    now : datetime
        Timestamp used for time-of-day shaping and eligibility. Injected so
        the algorithm never reads the wall clock.
    """

    user_id: Any
    lose_streak: int
    recent_win_count: int
    now: datetime

    def __post_init__(self) -> None:
        if self.lose_streak < 0:
            raise ValueError("lose_streak must be non-negative")
        if self.recent_win_count < 0:
            raise ValueError("recent_win_count must be non-negative")


@dataclass(frozen=True)
class DrawOutcome:
    """Terminal result of one draw.

    Attributes
    ----------
    prize : PrizeSnapshot
        Prize handed out; may be the no-win prize.
    is_guaranteed : bool
        ``True`` when the guarantee override chose the prize.
    inventory_decremented : bool
        ``True`` when a limited unit was actually consumed.
    downgraded : bool
        ``True`` when the selected prize could not be fulfilled and the result
        fell back to no-win.
    record_id : Optional[Any]
        Identifier returned by the history store, when the draw was recorded.
    """

    prize: PrizeSnapshot
    is_guaranteed: bool = False
    inventory_decremented: bool = False
    downgraded: bool = False
    record_id: Optional[Any] = None

    @property
    def selected_prize(self) -> PrizeSnapshot:
        return self.prize


__all__ = ["DrawContext", "DrawOutcome", "PrizeSnapshot"]
