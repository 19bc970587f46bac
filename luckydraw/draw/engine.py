"""Orchestration of a single prize draw."""

from __future__ import annotations

import logging
import random
from dataclasses import replace
from typing import Any, Optional, Sequence

from .config import DrawConfig
from .eligibility import AlwaysEligible, EligibilityChecker
from .errors import EmptyPoolError, IneligibleError, PersistenceError
from .fairness import FairnessAdjuster
from .history import DrawHistory
from .inventory import PrizePool
from .selector import RandomSource, select_weighted
from .types import DrawContext, DrawOutcome, PrizeSnapshot

logger = logging.getLogger(__name__)


class DrawEngine:
    """Run draws against a prize pool.

    Each call to :meth:`draw` moves through
    ``eligibility -> {guarantee | weighted selection} -> {decrement | downgrade}``
    and always ends in a :class:`DrawOutcome` unless the user is ineligible or
    the pool is empty. The engine keeps no per-draw state, so one instance can
    serve concurrent workers; only the inventory store is shared.
    """

    def __init__(
        self,
        inventory: PrizePool,
        config: Optional[DrawConfig] = None,
        *,
        eligibility: Optional[EligibilityChecker] = None,
        history: Optional[DrawHistory] = None,
        rng: Optional[RandomSource] = None,
    ) -> None:
        """Create a draw engine.

        Parameters
        ----------
        inventory : PrizePool
            Store providing the atomic stock decrement.
        config : Optional[DrawConfig], default: None
            Fairness and guarantee parameters; defaults apply when omitted.
        eligibility : Optional[EligibilityChecker], default: None
            Collaborator deciding whether a user may draw. Everyone is
            eligible when omitted.
        history : Optional[DrawHistory], default: None
            Store receiving every finished draw. Nothing is recorded when
            omitted.
        rng : Optional[RandomSource], default: None
            Random source for weighted selection. Defaults to a fresh
            :class:`random.SystemRandom`.
        """

        self.config = config or DrawConfig()
        self.adjuster = FairnessAdjuster(self.config)
        self._inventory = inventory
        self._eligibility = eligibility or AlwaysEligible()
        self._history = history
        self._rng = rng if rng is not None else random.SystemRandom()

    def draw(
        self,
        user_id: Any,
        pool: Sequence[PrizeSnapshot],
        ctx: DrawContext,
    ) -> DrawOutcome:
        """Draw one prize for ``user_id`` from ``pool``.

        Parameters
        ----------
        user_id : Any
            User making the draw; must match ``ctx.user_id``.
        pool : Sequence[PrizeSnapshot]
            Candidate prizes in a stable order, usually from
            :meth:`PrizePool.load_available_prizes`.
        ctx : DrawContext
            Streak, recent wins and timestamp for this request.

        Returns
        -------
        DrawOutcome
            The prize handed out, possibly the no-win prize.

        Notes
        -----
        1. The eligibility collaborator is consulted first.
        2. Prizes with no stock left are dropped from ``pool``.
        3. When the lose streak reaches ``guarantee_threshold - 1`` and a prize
           at the guarantee level is in stock, it is chosen outright.
        4. Otherwise weights go through :class:`FairnessAdjuster` and one
           prize is picked by :func:`select_weighted`.
        5. A winning prize consumes one unit. If that fails, whether because
           another draw took the last unit or the store errored, the result
           becomes no-win instead of failing the request.
        6. The outcome is handed to the history store; failures there are
           logged and do not affect the returned outcome.

        Raises
        ------
        IneligibleError
            If the eligibility collaborator rejects the user.
        EmptyPoolError
            If no prize in ``pool`` has stock.
        ValueError
            If ``user_id`` and ``ctx.user_id`` differ.
        """

        if ctx.user_id != user_id:
            raise ValueError("ctx.user_id does not match the drawing user")

        ok, reason = self._eligibility.check(user_id, ctx.now)
        if not ok:
            logger.info(f"Draw rejected for user {user_id!r}: {reason}")
            raise IneligibleError(reason or "not eligible to draw")

        available = [prize for prize in pool if prize.remaining_stock != 0]
        if not available:
            logger.error("Prize pool is empty; check the prize configuration")
            raise EmptyPoolError("No prize with remaining stock is configured")

        prize, guaranteed = self._select(available, ctx)
        outcome = self._fulfil(prize, guaranteed, pool)
        outcome = self._record(outcome, ctx)

        logger.info(
            f"Draw result for user {user_id!r}: {outcome.prize.level} "
            f"(prize={outcome.prize.id!r}, guaranteed={outcome.is_guaranteed}, "
            f"downgraded={outcome.downgraded})"
        )
        return outcome

    def draw_from_pool(
        self,
        user_id: Any,
        ctx: DrawContext,
        pool_id: Optional[Any] = None,
    ) -> DrawOutcome:
        """Load the current pool from the inventory store and draw from it."""

        pool = self._inventory.load_available_prizes(pool_id, now=ctx.now)
        return self.draw(user_id, pool, ctx)

    def _select(
        self, available: Sequence[PrizeSnapshot], ctx: DrawContext
    ) -> tuple[PrizeSnapshot, bool]:
        if self.adjuster.guarantee_due(ctx):
            guaranteed = self.adjuster.find_guarantee_prize(available)
            if guaranteed is not None:
                return guaranteed, True
            logger.debug(
                f"Guarantee due for user {ctx.user_id!r} but no "
                f"'{self.config.guarantee_prize_level}' prize is in stock"
            )

        adjusted = self.adjuster.adjust(available, ctx)
        selected = select_weighted(
            [(prize, prize.weight) for prize in adjusted], rng=self._rng
        )
        return selected, False

    def _fulfil(
        self,
        prize: PrizeSnapshot,
        guaranteed: bool,
        pool: Sequence[PrizeSnapshot],
    ) -> DrawOutcome:
        if self.adjuster.is_no_win(prize):
            return DrawOutcome(prize=prize, is_guaranteed=guaranteed)

        try:
            decremented = self._inventory.try_decrement(prize.id)
        except PersistenceError:
            logger.exception(f"Stock decrement failed for prize {prize.id!r}")
            decremented = False

        if not decremented:
            logger.warning(
                f"Prize {prize.id!r} could not be fulfilled; downgrading to no-win"
            )
            return DrawOutcome(prize=self._no_win_prize(pool), downgraded=True)

        return DrawOutcome(
            prize=prize,
            is_guaranteed=guaranteed,
            inventory_decremented=not prize.is_unlimited,
        )

    def _no_win_prize(self, pool: Sequence[PrizeSnapshot]) -> PrizeSnapshot:
        for prize in pool:
            if self.adjuster.is_no_win(prize):
                return prize
        return PrizeSnapshot(
            id=None, level=self.config.no_win_level, weight=0.0, name="no win"
        )

    def _record(self, outcome: DrawOutcome, ctx: DrawContext) -> DrawOutcome:
        if self._history is None:
            return outcome
        try:
            record_id = self._history.append(outcome, ctx)
        except Exception:
            logger.exception(f"Failed to record draw for user {ctx.user_id!r}")
            return outcome
        return replace(outcome, record_id=record_id)


__all__ = ["DrawEngine"]
