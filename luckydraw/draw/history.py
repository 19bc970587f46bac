"""History collaborators: recording draws and deriving per-user context."""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..db.utils import as_utc
from .config import DrawConfig
from .errors import PersistenceError
from .types import DrawContext, DrawOutcome

if TYPE_CHECKING:
    from ..models.activity import Activity
    from ..models.user import User

logger = logging.getLogger(__name__)


class DrawHistory(ABC):
    @abstractmethod
    def append(self, outcome: DrawOutcome, ctx: DrawContext) -> Optional[Any]:
        """Record ``outcome`` and return an identifier for the stored entry."""


class InMemoryDrawHistory(DrawHistory):
    """Thread-safe list of ``(outcome, ctx)`` pairs, mostly for tests."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.entries: list[tuple[DrawOutcome, DrawContext]] = []

    def append(self, outcome: DrawOutcome, ctx: DrawContext) -> int:
        with self._lock:
            self.entries.append((outcome, ctx))
            return len(self.entries)


class SqlDrawHistory(DrawHistory):
    """Writes :class:`~luckydraw.models.DrawRecord` rows.

    Each append runs inside a SAVEPOINT so a failing insert leaves the rest of
    the caller's transaction (stock decrement, counters) intact.
    """

    def __init__(
        self,
        session: Session,
        *,
        config: Optional[DrawConfig] = None,
        activity: Optional["Activity"] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> None:
        self._session = session
        self._config = config or DrawConfig()
        self._activity = activity
        self._ip_address = ip_address
        self._user_agent = user_agent

    def append(self, outcome: DrawOutcome, ctx: DrawContext) -> int:
        from ..models.draw_record import DrawRecord

        prize = outcome.prize
        record = DrawRecord(
            user_id=ctx.user_id,
            prize_id=prize.id,
            prize_name=prize.name or prize.level,
            prize_level=prize.level,
            prize_type=prize.prize_type,
            activity_id=self._activity.id if self._activity is not None else None,
            draw_time=ctx.now,
            is_guaranteed=outcome.is_guaranteed,
            downgraded=outcome.downgraded,
            ip_address=self._ip_address,
            user_agent=self._user_agent,
            expire_after=timedelta(days=self._config.claim_expiry_days),
            notes="guaranteed win" if outcome.is_guaranteed else None,
        )
        if prize.level != self._config.no_win_level:
            record.award(ctx.now)
        try:
            with self._session.begin_nested():
                self._session.add(record)
                self._session.flush()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to append draw record: {exc}") from exc
        logger.debug(f"Recorded draw {record.id} for user {ctx.user_id!r}")
        return record.id

    def recent_win_count(
        self,
        user_id: Any,
        now: datetime,
        window: Optional[timedelta] = None,
    ) -> int:
        """Count the user's winning draws within ``window`` before ``now``."""

        from ..models.draw_record import DrawRecord

        window = window or timedelta(hours=self._config.recent_win_window_hours)
        since = as_utc(now) - window
        stmt = select(func.count(DrawRecord.id)).where(
            DrawRecord.user_id == user_id,
            DrawRecord.prize_level != self._config.no_win_level,
            DrawRecord.draw_time >= since,
        )
        return int(self._session.scalar(stmt) or 0)

    def lose_streak(self, user_id: Any, limit: Optional[int] = None) -> int:
        """Count consecutive no-win records from the newest backwards.

        Only the latest ``limit`` records are scanned (defaults to the
        guarantee threshold, which is all the guarantee rule needs).
        """

        from ..models.draw_record import DrawRecord

        limit = limit or self._config.guarantee_threshold
        streak = 0
        for record in DrawRecord.recent_for_user(self._session, user_id, limit=limit):
            if record.is_win(self._config.no_win_level):
                break
            streak += 1
        return streak

    def build_context(self, user: "User", now: datetime) -> DrawContext:
        """Assemble the context for ``user`` from the running streak counter."""

        if user.id is None:
            raise ValueError("User must be persisted before drawing")
        return DrawContext(
            user_id=user.id,
            lose_streak=user.lose_streak or 0,
            recent_win_count=self.recent_win_count(user.id, now),
            now=now,
        )


__all__ = ["DrawHistory", "InMemoryDrawHistory", "SqlDrawHistory"]
