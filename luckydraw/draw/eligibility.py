"""Eligibility collaborators deciding whether a user may draw right now."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..db.utils import as_utc
from .config import DrawConfig

if TYPE_CHECKING:
    from ..models.activity import Activity

USER_NOT_FOUND = "user not found"
ACCOUNT_BLOCKED = "account is blocked"
ACCOUNT_INACTIVE = "account is inactive"
DAILY_LIMIT_REACHED = "daily draw limit reached"
TOO_FREQUENT = "drawing too frequently, please try again later"
ACTIVITY_NOT_RUNNING = "activity has not started or has ended"

Eligibility = tuple[bool, Optional[str]]


class EligibilityChecker(ABC):
    @abstractmethod
    def check(self, user_id: Any, now: datetime) -> Eligibility:
        """Return ``(True, None)`` or ``(False, reason)``."""


class AlwaysEligible(EligibilityChecker):
    def check(self, user_id: Any, now: datetime) -> Eligibility:
        return True, None


def _day_start_utc(now: datetime) -> datetime:
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return as_utc(now.replace(hour=0, minute=0, second=0, microsecond=0))


class UserEligibility(EligibilityChecker):
    """Per-user rules backed by the ``users`` and ``draw_records`` tables.

    A user must exist and be ``active``, stay under the daily draw limit and
    wait the minimum interval between two draws. When an activity is given it
    must be running, and its own daily limit and interval apply to draws made
    inside it.
    """

    def __init__(
        self,
        session: Session,
        *,
        activity: Optional["Activity"] = None,
        config: Optional[DrawConfig] = None,
    ) -> None:
        self._session = session
        self._activity = activity
        self._config = config or DrawConfig()

    def check(self, user_id: Any, now: datetime) -> Eligibility:
        from ..models.user import User

        user = self._session.get(User, user_id)
        if user is None:
            return False, USER_NOT_FOUND
        if user.status == "blocked":
            return False, ACCOUNT_BLOCKED
        if user.status != "active":
            return False, ACCOUNT_INACTIVE
        if user.draws_on(now) >= self._config.daily_draw_limit:
            return False, DAILY_LIMIT_REACHED

        min_interval = timedelta(seconds=self._config.min_draw_interval_seconds)
        last = as_utc(user.last_draw_time)
        if last is not None and as_utc(now) - last < min_interval:
            return False, TOO_FREQUENT

        if self._activity is not None:
            return self._check_activity(self._activity, user.id, now)
        return True, None

    def _check_activity(
        self, activity: "Activity", user_id: Any, now: datetime
    ) -> Eligibility:
        from ..models.draw_record import DrawRecord

        if not activity.is_running(now):
            return False, ACTIVITY_NOT_RUNNING

        count, last = self._session.execute(
            select(func.count(DrawRecord.id), func.max(DrawRecord.draw_time)).where(
                DrawRecord.user_id == user_id,
                DrawRecord.activity_id == activity.id,
                DrawRecord.draw_time >= _day_start_utc(now),
            )
        ).one()
        if count >= activity.daily_draw_limit:
            return False, DAILY_LIMIT_REACHED
        last = as_utc(last)
        if last is not None and as_utc(now) - last < timedelta(
            seconds=activity.interval_seconds
        ):
            return False, TOO_FREQUENT
        return True, None


__all__ = [
    "AlwaysEligible",
    "EligibilityChecker",
    "UserEligibility",
]
