"""Append-only history of draws and the claim lifecycle of awarded prizes."""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    JSON,
    String,
    Text,
    UniqueConstraint,
    select,
)
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from ..db.utils import as_utc, dt_iso
from .base import ID_TYPE, Base
from .prize import NO_WIN_LEVEL

if TYPE_CHECKING:
    from .activity import Activity
    from .prize import Prize
    from .user import User


DEFAULT_CLAIM_EXPIRY = timedelta(days=30)

CLAIM_CODE_TYPES = ("physical", "coupon")
"""Prize types that need a code to be redeemed offline."""


class DrawRecord(Base):
    """One draw made by a user, winning or not."""

    __tablename__ = "draw_records"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    prize_id: Mapped[Optional[int]] = mapped_column(
        ID_TYPE, ForeignKey("prizes.id", ondelete="SET NULL"), nullable=True
    )
    """Prize awarded; ``None`` when a synthetic no-win was returned."""

    activity_id: Mapped[Optional[int]] = mapped_column(
        ID_TYPE, ForeignKey("activities.id", ondelete="SET NULL"), nullable=True
    )
    prize_name: Mapped[str] = mapped_column(String(100), nullable=False)
    prize_level: Mapped[str] = mapped_column(String(20), nullable=False)
    prize_type: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    draw_time: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    is_guaranteed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    downgraded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    award_time: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    claim_time: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    expire_time: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    claim_code: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    claim_method: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    claim_details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    user: Mapped["User"] = relationship(back_populates="draw_records")
    prize: Mapped[Optional["Prize"]] = relationship("Prize")
    activity: Mapped[Optional["Activity"]] = relationship("Activity")

    __table_args__ = (
        UniqueConstraint("claim_code", name="uq_draw_records_claim_code"),
        CheckConstraint(
            "status IN ('pending','awarded','claimed','expired','cancelled')",
            name="status_enum",
        ),
        Index("ix_draw_records_user_time", "user_id", "draw_time"),
        Index("ix_draw_records_prize_time", "prize_id", "draw_time"),
        Index("ix_draw_records_level", "prize_level"),
    )

    def __init__(
        self,
        *,
        user_id: int,
        prize_name: str,
        prize_level: str,
        prize_id: Optional[int] = None,
        prize_type: Optional[str] = None,
        activity_id: Optional[int] = None,
        draw_time: Optional[datetime] = None,
        is_guaranteed: bool = False,
        downgraded: bool = False,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        expire_after: timedelta = DEFAULT_CLAIM_EXPIRY,
        notes: Optional[str] = None,
    ) -> None:
        self.user_id = user_id
        self.prize_id = prize_id
        self.prize_name = prize_name
        self.prize_level = prize_level
        self.prize_type = prize_type
        self.activity_id = activity_id
        self.draw_time = as_utc(draw_time) or datetime.now(timezone.utc)
        self.is_guaranteed = is_guaranteed
        self.downgraded = downgraded
        self.ip_address = ip_address
        self.user_agent = user_agent
        self.status = "pending"
        self.expire_time = self.draw_time + expire_after
        self.notes = notes

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return (
            f"<DrawRecord(id={self.id}, user_id={self.user_id}, "
            f"prize_level='{self.prize_level}', status='{self.status}')>"
        )

    def is_win(self, no_win_level: str = NO_WIN_LEVEL) -> bool:
        return self.prize_level != no_win_level

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        expire_time = as_utc(self.expire_time)
        if expire_time is None:
            return False
        current = as_utc(now) or datetime.now(timezone.utc)
        return current > expire_time

    def can_claim(self, now: Optional[datetime] = None) -> bool:
        return self.status == "awarded" and not self.is_expired(now)

    def award(self, now: Optional[datetime] = None) -> None:
        """Mark the record as awarded, issuing a claim code when redeemable offline."""

        self.status = "awarded"
        self.award_time = as_utc(now) or datetime.now(timezone.utc)
        if self.prize_type in CLAIM_CODE_TYPES and self.claim_code is None:
            self.claim_code = secrets.token_hex(4).upper()

    def claim(
        self,
        method: str,
        details: Optional[dict] = None,
        now: Optional[datetime] = None,
    ) -> None:
        """Redeem an awarded prize.

        Raises
        ------
        ValueError
            If the record is not in the ``awarded`` state or has expired. An
            expired record is moved to ``expired`` before raising.
        """

        if self.status != "awarded":
            raise ValueError(f"Draw record in status '{self.status}' cannot be claimed")
        if self.is_expired(now):
            self.status = "expired"
            raise ValueError("Draw record has expired")
        self.status = "claimed"
        self.claim_time = as_utc(now) or datetime.now(timezone.utc)
        self.claim_method = method
        self.claim_details = details

    @classmethod
    def recent_for_user(
        cls, session: Session, user_id: int, limit: int = 10
    ) -> list["DrawRecord"]:
        """Return the user's most recent records, newest first."""

        stmt = (
            select(cls)
            .where(cls.user_id == user_id)
            .order_by(cls.draw_time.desc(), cls.id.desc())
            .limit(limit)
        )
        return list(session.scalars(stmt))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "prize_id": self.prize_id,
            "prize_name": self.prize_name,
            "prize_level": self.prize_level,
            "prize_type": self.prize_type,
            "draw_time": dt_iso(self.draw_time),
            "is_guaranteed": self.is_guaranteed,
            "status": self.status,
            "claim_code": self.claim_code,
            "expire_time": dt_iso(self.expire_time),
        }


__all__ = ["DrawRecord", "DEFAULT_CLAIM_EXPIRY"]
