import logging
import re
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy.orm import Session

from .draw.config import DrawConfig, load_draw_config
from .draw.eligibility import UserEligibility
from .draw.engine import DrawEngine
from .draw.history import SqlDrawHistory
from .draw.inventory import SqlPrizePool
from .draw.selector import RandomSource
from .draw.types import DrawOutcome, PrizeSnapshot
from .models.draw_record import DrawRecord
from .models.prize import Prize
from .models.user import User

if TYPE_CHECKING:
    from .models.activity import Activity

logger = logging.getLogger(__name__)

PHONE_PATTERN = re.compile(r"^1[3-9]\d{9}$")


def register_user(
    session: Session,
    phone: str,
    name: str,
    email: Optional[str] = None,
) -> User:
    """Create and persist a new participant.

    Parameters
    ----------
    session : Session
        Active SQLAlchemy session.
    phone : str
        Mobile number used as the login handle. Must be an 11-digit mainland
        number starting with ``1[3-9]``.
    name : str
        Display name, 2 to 50 characters after trimming.
    email : Optional[str]
        Optional contact address, stored lower-cased.

    Returns
    -------
    User
        The persisted ``User`` with a populated ``id``.

    Raises
    ------
    ValueError
        If the phone or name is malformed or the phone is already registered.
    """

    phone = phone.strip()
    if not PHONE_PATTERN.match(phone):
        raise ValueError(f"Invalid phone number '{phone}'")
    name = name.strip()
    if not 2 <= len(name) <= 50:
        raise ValueError("name must be between 2 and 50 characters")
    if User.get_by_phone(session, phone) is not None:
        raise ValueError(f"A user with phone '{phone}' is already registered")

    user = User(
        phone=phone,
        name=name,
        email=email.strip().lower() if email else None,
    )
    session.add(user)
    session.flush()
    logger.info(f"Registered user {user.id}")
    return user


def list_available_prizes(
    session: Session,
    activity: Optional["Activity"] = None,
    now: Optional[datetime] = None,
) -> list[PrizeSnapshot]:
    """Return the prizes a draw made at ``now`` could currently produce."""

    pool = SqlPrizePool(session)
    return pool.load_available_prizes(
        activity.id if activity is not None else None,
        now=now or datetime.now(timezone.utc),
    )


def run_draw(
    session: Session,
    user: User,
    *,
    activity: Optional["Activity"] = None,
    now: Optional[datetime] = None,
    config: Optional[DrawConfig] = None,
    rng: Optional[RandomSource] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> DrawOutcome:
    """Run one draw for ``user`` and persist everything it touches.

    This function wires :class:`~luckydraw.draw.engine.DrawEngine` to the
    SQL-backed collaborators.

    Parameters
    ----------
    session : Session
        Active session; the caller owns the transaction.
    user : User
        Persisted user making the draw.
    activity : Optional[Activity], default: None
        Activity whose prize pool and rules apply. The global pool of active
        prizes is used when omitted.
    now : Optional[datetime], default: None
        Draw timestamp. Defaults to the current UTC time.
    config : Optional[DrawConfig], default: None
        Draw parameters. When omitted the defaults overlaid with the stored
        ``draw_config`` document are used.
    rng : Optional[RandomSource], default: None
        Random source override, mainly for tests.
    ip_address, user_agent : Optional[str]
        Request metadata stored on the draw record.

    Returns
    -------
    DrawOutcome
        The outcome; ``record_id`` refers to the new ``DrawRecord``.

    Notes
    -----
    After the engine returns, the user's counters are updated: the daily and
    total draw counts, the win count, the running lose streak (reset by any
    win) and the points balance for ``points`` prizes. Activity statistics and
    the awarded count of the activity entry are updated as well.

    Raises
    ------
    IneligibleError
        If the user may not draw now.
    EmptyPoolError
        If the pool has no prize in stock.
    ValueError
        If the user is not persisted.
    """

    if user.id is None:
        raise ValueError("User must be persisted before drawing")

    now = now or datetime.now(timezone.utc)
    config = config or load_draw_config(session)
    history = SqlDrawHistory(
        session,
        config=config,
        activity=activity,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    engine = DrawEngine(
        SqlPrizePool(session),
        config,
        eligibility=UserEligibility(session, activity=activity, config=config),
        history=history,
        rng=rng,
    )

    ctx = history.build_context(user, now)
    outcome = engine.draw_from_pool(
        user.id, ctx, pool_id=activity.id if activity is not None else None
    )

    prize = outcome.prize
    won = prize.level != config.no_win_level
    points = prize.points if won and prize.prize_type == "points" else 0
    user.record_draw(now, won=won, points=points)

    if activity is not None:
        activity.total_draws += 1
        if won:
            activity.total_wins += 1
            entry = activity.entry_for(prize.id)
            if entry is not None:
                entry.awarded_count += 1

    session.flush()
    return outcome


def restock_prize(session: Session, prize: Prize, quantity: int) -> Prize:
    """Add ``quantity`` units to ``prize`` and return the refreshed row.

    Unlimited prizes are left untouched. An ``out_of_stock`` prize becomes
    ``active`` again.

    Raises
    ------
    ValueError
        If the prize is not persisted or ``quantity`` is not positive.
    """

    if prize.id is None:
        raise ValueError("Prize must be persisted before restocking")
    SqlPrizePool(session).restock(prize.id, quantity)
    session.refresh(prize)
    return prize


def claim_draw_record(
    session: Session,
    record: DrawRecord,
    user: User,
    method: str,
    details: Optional[dict] = None,
    now: Optional[datetime] = None,
) -> DrawRecord:
    """Redeem an awarded draw record on behalf of its owner.

    An expired record is persisted with the ``expired`` status before the
    error is raised.

    Raises
    ------
    ValueError
        If ``user`` does not own the record, the record is not awarded, or the
        claim window has passed.
    """

    if record.user_id != user.id:
        raise ValueError("Draw record does not belong to this user")
    try:
        record.claim(method, details, now=now)
    except ValueError:
        session.flush()
        raise
    session.flush()
    logger.info(f"Draw record {record.id} claimed via {method}")
    return record


def user_streak_info(
    session: Session,
    user: User,
    *,
    limit: int = 20,
    no_win_level: Optional[str] = None,
) -> dict[str, Any]:
    """Summarise win/lose streaks over the user's latest ``limit`` draws.

    Returns a mapping with ``current_streak`` (length of the run containing
    the newest draw), ``is_winning_streak`` (``None`` without draws),
    ``max_winning_streak``, ``max_losing_streak`` and ``recent_draws``.
    """

    if limit <= 0:
        raise ValueError("limit must be a positive integer")
    no_win = no_win_level or DrawConfig().no_win_level
    records = DrawRecord.recent_for_user(session, user.id, limit=limit)

    current_streak = 0
    is_winning_streak: Optional[bool] = None
    current_open = True
    run_length = 0
    run_is_win: Optional[bool] = None
    max_win = 0
    max_lose = 0
    for record in records:
        is_win = record.is_win(no_win)
        if is_win == run_is_win:
            run_length += 1
        else:
            run_is_win = is_win
            run_length = 1
        if is_win:
            max_win = max(max_win, run_length)
        else:
            max_lose = max(max_lose, run_length)

        if is_winning_streak is None:
            is_winning_streak = is_win
        if current_open and is_win == is_winning_streak:
            current_streak += 1
        else:
            current_open = False

    return {
        "current_streak": current_streak,
        "is_winning_streak": is_winning_streak,
        "max_winning_streak": max_win,
        "max_losing_streak": max_lose,
        "recent_draws": len(records),
    }
