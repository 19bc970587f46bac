from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import CheckConstraint, DateTime, Integer, String, select
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from ..db.utils import as_utc, dt_iso
from .base import ID_TYPE, Base, TimestampMixin

if TYPE_CHECKING:
    from .draw_record import DrawRecord


USER_STATUSES = ("active", "inactive", "blocked")


class User(TimestampMixin, Base):
    """A participant of the prize draw promotion."""

    def __init__(
        self,
        phone: str,
        name: str,
        email: Optional[str] = None,
        status: str = "active",
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
    ):
        """Create a new :class:`User` record.

        Parameters
        ----------
        phone : str
            Mobile phone number; the user's unique login handle.
        name : str
            Display name.
        email : str, optional
            Contact email address.
        status : str, default: "active"
            One of ``active``, ``inactive`` or ``blocked``.
        created_at : datetime, optional
            Explicit creation timestamp.
        updated_at : datetime, optional
            Explicit last update timestamp.
        """

        self.phone = phone
        self.name = name
        self.email = email
        self.status = status
        self.total_draws = 0
        self.total_wins = 0
        self.today_draws = 0
        self.lose_streak = 0
        self.points = 0
        if created_at is not None:
            self.created_at = created_at
        if updated_at is not None:
            self.updated_at = updated_at

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    phone: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")

    total_draws: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_wins: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    today_draws: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_draw_time: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    lose_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    """Consecutive no-win draws, maintained alongside each draw."""

    points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    draw_records: Mapped[list["DrawRecord"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('active','inactive','blocked')", name="status_enum"
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<User(id={self.id}, phone='{self.phone}', name='{self.name}', "
            f"status='{self.status}', total_draws={self.total_draws})>"
        )

    @classmethod
    def get_by_phone(cls, session: Session, phone: str) -> Optional["User"]:
        """Retrieve a user by phone number."""

        return session.scalar(select(cls).where(cls.phone == phone))

    @property
    def win_rate(self) -> float:
        """Percentage of draws that won something, rounded to two decimals."""

        if not self.total_draws:
            return 0.0
        return round(self.total_wins / self.total_draws * 100, 2)

    def draws_on(self, now: datetime) -> int:
        """Return the number of draws already made on ``now``'s calendar day."""

        last = as_utc(self.last_draw_time)
        if last is None:
            return 0
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        if last.astimezone(now.tzinfo).date() != now.date():
            return 0
        return self.today_draws

    def record_draw(self, now: datetime, *, won: bool, points: int = 0) -> None:
        """Apply the counters touched by one completed draw.

        ``today_draws`` restarts when ``now`` falls on a different day from the
        previous draw. ``lose_streak`` resets on any win and grows on a loss.
        """

        self.today_draws = self.draws_on(now) + 1
        self.total_draws += 1
        self.last_draw_time = as_utc(now)
        if won:
            self.total_wins += 1
            self.lose_streak = 0
        else:
            self.lose_streak += 1
        if points:
            self.points += points

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "phone": self.phone,
            "name": self.name,
            "status": self.status,
            "total_draws": self.total_draws,
            "total_wins": self.total_wins,
            "today_draws": self.today_draws,
            "win_rate": self.win_rate,
            "points": self.points,
            "last_draw_time": dt_iso(self.last_draw_time),
        }
