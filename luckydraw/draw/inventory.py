"""Prize stock stores with an atomic "decrement only if stock remains"."""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..db.utils import as_utc
from .errors import PersistenceError
from .types import PrizeSnapshot

logger = logging.getLogger(__name__)


class PrizePool(ABC):
    """Persistence collaborator for prize definitions and stock."""

    @abstractmethod
    def load_available_prizes(
        self, pool_id: Optional[Any] = None, now: Optional[datetime] = None
    ) -> list[PrizeSnapshot]:
        """Return prizes that can currently be drawn, in a stable order."""

    @abstractmethod
    def try_decrement(self, prize_id: Any) -> bool:
        """Consume one unit of ``prize_id`` atomically.

        Returns ``True`` when a unit was taken or the prize is unlimited, and
        ``False`` when the stock was already exhausted. Concurrent callers
        never oversell: with ``k`` units left exactly ``k`` calls succeed.
        """

    @abstractmethod
    def restock(self, prize_id: Any, quantity: int) -> None:
        """Add ``quantity`` units to a limited prize."""


class InMemoryPrizePool(PrizePool):
    """Process-local pool guarded by one lock per prize.

    Draws for different prizes never contend with each other. ``pool_id`` is
    ignored: the store holds a single pool.
    """

    def __init__(self, prizes: Iterable[PrizeSnapshot]) -> None:
        self._definitions: dict[Any, PrizeSnapshot] = {}
        self._stock: dict[Any, Optional[int]] = {}
        self._locks: dict[Any, threading.Lock] = {}
        for prize in prizes:
            if prize.id is None:
                raise ValueError("prizes stored in a pool need an id")
            if prize.id in self._definitions:
                raise ValueError(f"Duplicate prize id {prize.id!r}")
            if prize.remaining_stock is not None and prize.remaining_stock < 0:
                raise ValueError("remaining_stock must be None (unlimited) or >= 0")
            self._definitions[prize.id] = prize
            self._stock[prize.id] = prize.remaining_stock
            self._locks[prize.id] = threading.Lock()

    def _lock_for(self, prize_id: Any) -> threading.Lock:
        try:
            return self._locks[prize_id]
        except KeyError as exc:
            raise KeyError(f"Unknown prize {prize_id!r}") from exc

    def stock_of(self, prize_id: Any) -> Optional[int]:
        with self._lock_for(prize_id):
            return self._stock[prize_id]

    def load_available_prizes(
        self, pool_id: Optional[Any] = None, now: Optional[datetime] = None
    ) -> list[PrizeSnapshot]:
        available: list[PrizeSnapshot] = []
        for prize_id, definition in self._definitions.items():
            stock = self.stock_of(prize_id)
            if stock == 0:
                continue
            available.append(replace(definition, remaining_stock=stock))
        return available

    def try_decrement(self, prize_id: Any) -> bool:
        with self._lock_for(prize_id):
            stock = self._stock[prize_id]
            if stock is None:
                return True
            if stock <= 0:
                return False
            self._stock[prize_id] = stock - 1
            if stock == 1:
                logger.info(f"Prize {prize_id!r} is now out of stock")
            return True

    def restock(self, prize_id: Any, quantity: int) -> None:
        if quantity <= 0:
            raise ValueError("quantity must be positive")
        with self._lock_for(prize_id):
            stock = self._stock[prize_id]
            if stock is None:
                return
            self._stock[prize_id] = stock + quantity


class SqlPrizePool(PrizePool):
    """Pool backed by the ``prizes`` table.

    The decrement is a single conditional ``UPDATE`` so the row lock taken by
    the database is the only synchronisation; contention is limited to the
    prize being awarded.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    def load_available_prizes(
        self, pool_id: Optional[Any] = None, now: Optional[datetime] = None
    ) -> list[PrizeSnapshot]:
        """Load drawable prizes, or the entries of activity ``pool_id``.

        Prizes whose ``daily_limit`` is already reached on ``now``'s day are
        left out.
        """

        from ..models.activity import Activity, ActivityPrize
        from ..models.prize import Prize

        try:
            if pool_id is None:
                prizes = Prize.get_available(self._session)
                snapshots = [PrizeSnapshot.from_model(prize) for prize in prizes]
                limited = {
                    prize.id: prize.daily_limit
                    for prize in prizes
                    if prize.daily_limit >= 0
                }
            else:
                activity = self._session.get(Activity, pool_id)
                if activity is None:
                    raise ValueError(f"Unknown activity {pool_id!r}")
                stmt = (
                    select(ActivityPrize, Prize)
                    .join(Prize, Prize.id == ActivityPrize.prize_id)
                    .where(
                        ActivityPrize.activity_id == activity.id,
                        Prize.status == "active",
                        Prize.remaining_quantity != 0,
                    )
                    .order_by(Prize.sort_order.asc(), Prize.id.asc())
                    .execution_options(populate_existing=True)
                )
                rows = self._session.execute(stmt).all()
                snapshots = [
                    PrizeSnapshot.from_model(prize, weight=entry.effective_weight)
                    for entry, prize in rows
                ]
                limited = {
                    prize.id: prize.daily_limit
                    for _, prize in rows
                    if prize.daily_limit >= 0
                }
            if limited:
                awarded = self._awarded_today(list(limited), now)
                snapshots = [
                    s
                    for s in snapshots
                    if s.id not in limited or awarded.get(s.id, 0) < limited[s.id]
                ]
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to load prizes: {exc}") from exc
        return snapshots

    def _awarded_today(
        self, prize_ids: list[Any], now: Optional[datetime]
    ) -> dict[Any, int]:
        from ..models.draw_record import DrawRecord

        current = now or datetime.now(timezone.utc)
        if current.tzinfo is None:
            current = current.replace(tzinfo=timezone.utc)
        day_start = as_utc(current.replace(hour=0, minute=0, second=0, microsecond=0))
        stmt = (
            select(DrawRecord.prize_id, func.count(DrawRecord.id))
            .where(
                DrawRecord.prize_id.in_(prize_ids),
                DrawRecord.status.in_(("awarded", "claimed")),
                DrawRecord.draw_time >= day_start,
            )
            .group_by(DrawRecord.prize_id)
        )
        return {prize_id: count for prize_id, count in self._session.execute(stmt)}

    def try_decrement(self, prize_id: Any) -> bool:
        from ..models.prize import Prize, UNLIMITED

        stmt = (
            update(Prize)
            .where(Prize.id == prize_id, Prize.remaining_quantity > 0)
            .values(
                remaining_quantity=Prize.remaining_quantity - 1,
                # SET expressions see the pre-update row.
                status=case(
                    (Prize.remaining_quantity == 1, "out_of_stock"),
                    else_=Prize.status,
                ),
            )
            .execution_options(synchronize_session=False)
        )
        try:
            with self._session.begin_nested():
                matched = self._session.execute(stmt).rowcount
                remaining = None
                if matched != 1:
                    remaining = self._session.scalar(
                        select(Prize.remaining_quantity).where(Prize.id == prize_id)
                    )
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to decrement prize {prize_id!r}: {exc}") from exc

        self._expire_cached(prize_id)
        if matched == 1:
            logger.debug(f"Decremented stock for prize {prize_id!r}")
            return True
        if remaining is None:
            logger.warning(f"Decrement requested for unknown prize {prize_id!r}")
            return False
        return remaining == UNLIMITED

    def restock(self, prize_id: Any, quantity: int) -> None:
        from ..models.prize import Prize, UNLIMITED

        if quantity <= 0:
            raise ValueError("quantity must be positive")
        stmt = (
            update(Prize)
            .where(Prize.id == prize_id, Prize.remaining_quantity != UNLIMITED)
            .values(
                remaining_quantity=Prize.remaining_quantity + quantity,
                total_quantity=Prize.total_quantity + quantity,
                status=case(
                    (Prize.status == "out_of_stock", "active"),
                    else_=Prize.status,
                ),
            )
            .execution_options(synchronize_session=False)
        )
        try:
            with self._session.begin_nested():
                self._session.execute(stmt)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to restock prize {prize_id!r}: {exc}") from exc
        self._expire_cached(prize_id)
        logger.info(f"Restocked prize {prize_id!r} with {quantity} unit(s)")

    def _expire_cached(self, prize_id: Any) -> None:
        """Drop stale stock values held by an already-loaded ``Prize``."""

        from ..models.prize import Prize

        key = self._session.identity_key(Prize, prize_id)
        instance = self._session.identity_map.get(key)
        if instance is not None:
            self._session.expire(
                instance, ["remaining_quantity", "total_quantity", "status"]
            )


__all__ = ["InMemoryPrizePool", "PrizePool", "SqlPrizePool"]
