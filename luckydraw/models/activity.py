"""Time-boxed promotions that carry their own prize pool and draw rules."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    select,
)
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from ..db.utils import as_utc
from .base import ID_TYPE, Base

if TYPE_CHECKING:
    from .prize import Prize


class Activity(Base):
    """A promotion window with a dedicated prize pool."""

    __tablename__ = "activities"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="upcoming")
    daily_draw_limit: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    interval_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    total_draws: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_wins: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    entries: Mapped[list["ActivityPrize"]] = relationship(
        back_populates="activity",
        cascade="all, delete-orphan",
        order_by="ActivityPrize.id",
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('upcoming','active','paused','ended')", name="status_enum"
        ),
    )

    def __init__(
        self,
        *,
        name: str,
        start_time: datetime,
        end_time: datetime,
        status: str = "upcoming",
        daily_draw_limit: int = 5,
        interval_seconds: int = 3,
        description: Optional[str] = None,
    ) -> None:
        if end_time <= start_time:
            raise ValueError("end_time must be after start_time")
        self.name = name
        self.start_time = as_utc(start_time)
        self.end_time = as_utc(end_time)
        self.status = status
        self.daily_draw_limit = daily_draw_limit
        self.interval_seconds = interval_seconds
        self.description = description
        self.total_draws = 0
        self.total_wins = 0

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return f"<Activity(id={self.id}, name='{self.name}', status='{self.status}')>"

    def is_running(self, now: datetime) -> bool:
        """Whether draws are accepted at ``now``; paused activities never run."""

        start = as_utc(self.start_time)
        end = as_utc(self.end_time)
        current = as_utc(now)
        return self.status == "active" and start <= current <= end

    def refresh_status(self, now: datetime) -> str:
        """Move the status along the schedule, leaving ``paused`` untouched."""

        current = as_utc(now)
        if current < as_utc(self.start_time):
            self.status = "upcoming"
        elif current > as_utc(self.end_time):
            self.status = "ended"
        elif self.status != "paused":
            self.status = "active"
        return self.status

    def add_prize(
        self, prize: "Prize", *, weight: Optional[float] = None
    ) -> "ActivityPrize":
        """Attach ``prize`` to the pool, optionally overriding its weight."""

        entry = ActivityPrize(prize=prize, weight=weight)
        self.entries.append(entry)
        return entry

    def entry_for(self, prize_id: int) -> Optional["ActivityPrize"]:
        for entry in self.entries:
            if entry.prize_id == prize_id:
                return entry
        return None

    @classmethod
    def get_running(cls, session: Session, now: datetime) -> list["Activity"]:
        """Return activities accepting draws at ``now`` ordered by start time."""

        current = as_utc(now)
        stmt = (
            select(cls)
            .where(
                cls.status == "active",
                cls.start_time <= current,
                cls.end_time >= current,
            )
            .order_by(cls.start_time.asc())
        )
        return list(session.scalars(stmt))


class ActivityPrize(Base):
    """Membership of a prize in an activity's pool."""

    __tablename__ = "activity_prizes"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    activity_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("activities.id", ondelete="CASCADE"), nullable=False
    )
    prize_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("prizes.id", ondelete="CASCADE"), nullable=False
    )
    weight: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    """Weight used inside this activity; ``None`` falls back to the prize's own."""

    awarded_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    activity: Mapped["Activity"] = relationship(back_populates="entries")
    prize: Mapped["Prize"] = relationship("Prize")

    __table_args__ = (
        UniqueConstraint("activity_id", "prize_id", name="uq_activity_prize"),
        CheckConstraint("weight IS NULL OR weight >= 0", name="weight_non_negative"),
    )

    def __init__(
        self,
        *,
        prize: Optional["Prize"] = None,
        prize_id: Optional[int] = None,
        weight: Optional[float] = None,
    ) -> None:
        if prize is not None:
            self.prize = prize
        if prize_id is not None:
            self.prize_id = prize_id
        self.weight = weight
        self.awarded_count = 0

    @property
    def effective_weight(self) -> float:
        if self.weight is not None:
            return self.weight
        return self.prize.probability


__all__ = ["Activity", "ActivityPrize"]
