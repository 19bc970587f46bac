"""Database model for prize definitions and their remaining stock."""

from __future__ import annotations

from typing import Any, Optional

from sqlalchemy import (
    CheckConstraint,
    Float,
    Index,
    Integer,
    String,
    Text,
    or_,
    select,
)
from sqlalchemy.orm import Mapped, Session, mapped_column

from ..db.utils import dt_iso
from .base import ID_TYPE, Base, TimestampMixin

UNLIMITED = -1
"""Stock sentinel stored in ``remaining_quantity`` for prizes that never run out."""

NO_WIN_LEVEL = "no_win"

PRIZE_LEVELS = ("grand", "first", "second", "third", "fourth", "fifth", NO_WIN_LEVEL)
"""Ordinal tiers from best to worst. ``no_win`` is the only losing level."""

PRIZE_TYPES = ("virtual", "physical", "coupon", "points")

PRIZE_STATUSES = ("active", "inactive", "out_of_stock")


class Prize(TimestampMixin, Base):
    """A prize definition with its declared draw weight and remaining stock."""

    __tablename__ = "prizes"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    level: Mapped[str] = mapped_column(String(20), nullable=False)

    probability: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    """Declared weight. Weights are relative and need not sum to 100."""

    prize_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default="virtual"
    )
    total_quantity: Mapped[int] = mapped_column(
        Integer, nullable=False, default=UNLIMITED
    )
    remaining_quantity: Mapped[int] = mapped_column(
        Integer, nullable=False, default=UNLIMITED
    )
    """Units left to award; ``-1`` means unlimited."""

    daily_limit: Mapped[int] = mapped_column(Integer, nullable=False, default=UNLIMITED)
    """Maximum awards per day; ``-1`` disables the cap."""

    value: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    image_url: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        CheckConstraint("probability >= 0", name="probability_non_negative"),
        CheckConstraint("remaining_quantity >= -1", name="remaining_quantity_range"),
        CheckConstraint(
            "level IN ('grand','first','second','third','fourth','fifth','no_win')",
            name="level_enum",
        ),
        CheckConstraint(
            "prize_type IN ('virtual','physical','coupon','points')",
            name="prize_type_enum",
        ),
        CheckConstraint(
            "status IN ('active','inactive','out_of_stock')", name="status_enum"
        ),
        Index("ix_prizes_status_sort", "status", "sort_order"),
    )

    def __init__(
        self,
        *,
        name: str,
        level: str,
        probability: float = 0.0,
        prize_type: str = "virtual",
        total_quantity: int = UNLIMITED,
        remaining_quantity: Optional[int] = None,
        daily_limit: int = UNLIMITED,
        value: float = 0.0,
        points: int = 0,
        status: str = "active",
        description: Optional[str] = None,
        image_url: Optional[str] = None,
        sort_order: int = 0,
    ) -> None:
        """Create a prize.

        Parameters
        ----------
        name : str
            Display name.
        level : str
            One of :data:`PRIZE_LEVELS`.
        probability : float, default: 0.0
            Declared weight used by the weighted draw.
        total_quantity : int, default: -1
            Initial stock; ``-1`` for unlimited.
        remaining_quantity : Optional[int], default: None
            Current stock. Defaults to ``total_quantity``.
        daily_limit : int, default: -1
            Per-day award cap; ``-1`` for none.
        """
        if level not in PRIZE_LEVELS:
            raise ValueError(f"Unknown prize level '{level}'")
        if prize_type not in PRIZE_TYPES:
            raise ValueError(f"Unknown prize type '{prize_type}'")
        if probability < 0:
            raise ValueError("probability must be non-negative")
        if total_quantity < UNLIMITED:
            raise ValueError("total_quantity must be -1 (unlimited) or >= 0")

        self.name = name
        self.level = level
        self.probability = probability
        self.prize_type = prize_type
        self.total_quantity = total_quantity
        self.remaining_quantity = (
            total_quantity if remaining_quantity is None else remaining_quantity
        )
        self.daily_limit = daily_limit
        self.value = value
        self.points = points
        self.status = status
        self.description = description
        self.image_url = image_url
        self.sort_order = sort_order

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return (
            f"<Prize(id={self.id}, name='{self.name}', level='{self.level}', "
            f"probability={self.probability}, remaining={self.remaining_quantity})>"
        )

    @property
    def is_unlimited(self) -> bool:
        return self.remaining_quantity == UNLIMITED

    def is_no_win(self, no_win_level: str = NO_WIN_LEVEL) -> bool:
        """Return whether this prize is the losing outcome under ``no_win_level``."""

        return self.level == no_win_level

    def can_award(self) -> tuple[bool, Optional[str]]:
        """Return whether the prize may be handed out, with a reason when not."""

        if self.status != "active":
            return False, "prize is not active"
        if self.remaining_quantity == 0:
            return False, "prize is out of stock"
        return True, None

    @classmethod
    def get_available(cls, session: Session) -> list["Prize"]:
        """Return active prizes with stock left, in display order.

        ``populate_existing`` refreshes rows already present in the identity
        map so a prize exhausted by another transaction is not served stale.
        """

        stmt = (
            select(cls)
            .where(
                cls.status == "active",
                or_(cls.remaining_quantity > 0, cls.remaining_quantity == UNLIMITED),
            )
            .order_by(cls.sort_order.asc(), cls.id.asc())
            .execution_options(populate_existing=True)
        )
        return list(session.scalars(stmt))

    @classmethod
    def get_by_level(cls, session: Session, level: str) -> list["Prize"]:
        """Return all prizes at ``level`` ordered by id."""

        return list(
            session.scalars(select(cls).where(cls.level == level).order_by(cls.id))
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "level": self.level,
            "probability": self.probability,
            "type": self.prize_type,
            "total_quantity": self.total_quantity,
            "remaining_quantity": self.remaining_quantity,
            "daily_limit": self.daily_limit,
            "value": self.value,
            "points": self.points,
            "status": self.status,
            "image_url": self.image_url,
            "sort_order": self.sort_order,
            "updated_at": dt_iso(self.updated_at),
        }


__all__ = [
    "NO_WIN_LEVEL",
    "PRIZE_LEVELS",
    "PRIZE_STATUSES",
    "PRIZE_TYPES",
    "Prize",
    "UNLIMITED",
]
