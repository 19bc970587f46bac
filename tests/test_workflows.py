import tempfile
import threading
import unittest
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import patch

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from luckydraw.db.engine import make_engine
from luckydraw.draw.eligibility import (
    ACCOUNT_BLOCKED,
    ACTIVITY_NOT_RUNNING,
    DAILY_LIMIT_REACHED,
    TOO_FREQUENT,
)
from luckydraw.draw.errors import EmptyPoolError, IneligibleError
from luckydraw.draw.history import SqlDrawHistory
from luckydraw.draw.inventory import SqlPrizePool
from luckydraw.models import (
    Activity,
    Base,
    DrawRecord,
    Prize,
    SystemConfiguration,
    User,
)
from luckydraw.workflows import (
    claim_draw_record,
    list_available_prizes,
    register_user,
    restock_prize,
    run_draw,
    user_streak_info,
)


def noon(day: int = 1) -> datetime:
    return datetime(2024, 5, day, 12, 0, tzinfo=timezone.utc)


class FixedRandom:
    """Random source returning a fixed fraction of the requested range."""

    def __init__(self, fraction: float = 0.0) -> None:
        self.fraction = fraction

    def uniform(self, a: float, b: float) -> float:
        return a + (b - a) * self.fraction


class WorkflowTestCase(unittest.TestCase):
    def setUp(self):
        self.engine = make_engine("sqlite+pysqlite:///:memory:")
        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(
            bind=self.engine, future=True, expire_on_commit=False
        )

    def tearDown(self):
        self.engine.dispose()

    def _seed_prizes(self, session):
        # Weights total 100; FixedRandom(f) lands on cumulative weight 100 * f.
        prizes = {
            "grand": Prize(
                name="Laptop",
                level="grand",
                probability=1,
                prize_type="physical",
                total_quantity=1,
                sort_order=1,
            ),
            "third": Prize(
                name="Coffee voucher",
                level="third",
                probability=10,
                prize_type="coupon",
                total_quantity=5,
                sort_order=2,
            ),
            "points": Prize(
                name="100 points",
                level="fifth",
                probability=20,
                prize_type="points",
                points=100,
                sort_order=3,
            ),
            "no_win": Prize(
                name="Thanks for playing",
                level="no_win",
                probability=69,
                sort_order=4,
            ),
        }
        session.add_all(prizes.values())
        session.flush()
        return prizes


class RegisterUserTests(WorkflowTestCase):
    def test_register_user(self):
        with self.Session.begin() as session:
            user = register_user(
                session, " 13912345678 ", "Alice", email="Alice@Example.COM "
            )
            self.assertIsNotNone(user.id)
            self.assertEqual(user.phone, "13912345678")
            self.assertEqual(user.email, "alice@example.com")
            self.assertEqual(user.lose_streak, 0)

    def test_register_user_rejects_bad_input(self):
        with self.Session.begin() as session:
            register_user(session, "13912345678", "Alice")
            for phone, name in (
                ("12912345678", "Bob"),
                ("1391234567", "Bob"),
                ("13912345679", "B"),
                ("13912345678", "Bob"),
            ):
                with self.subTest(phone=phone, name=name):
                    with self.assertRaises(ValueError):
                        register_user(session, phone, name)


class RunDrawTests(WorkflowTestCase):
    def test_win_decrements_stock_and_records_draw(self):
        with self.Session.begin() as session:
            prizes = self._seed_prizes(session)
            user = register_user(session, "13800000001", "Winner")

            outcome = run_draw(
                session,
                user,
                now=noon(),
                rng=FixedRandom(0.0),
                ip_address="10.0.0.1",
                user_agent="pytest",
            )

            self.assertEqual(outcome.prize.id, prizes["grand"].id)
            self.assertTrue(outcome.inventory_decremented)
            self.assertEqual(prizes["grand"].remaining_quantity, 0)
            self.assertEqual(prizes["grand"].status, "out_of_stock")

            record = session.get(DrawRecord, outcome.record_id)
            self.assertEqual(record.prize_level, "grand")
            self.assertEqual(record.status, "awarded")
            self.assertEqual(len(record.claim_code), 8)
            self.assertEqual(record.ip_address, "10.0.0.1")

            self.assertEqual(user.total_draws, 1)
            self.assertEqual(user.total_wins, 1)
            self.assertEqual(user.today_draws, 1)
            self.assertEqual(user.lose_streak, 0)

    def test_no_win_grows_lose_streak(self):
        with self.Session.begin() as session:
            self._seed_prizes(session)
            user = register_user(session, "13800000002", "Loser")
            outcome = run_draw(session, user, now=noon(), rng=FixedRandom(0.99))

            self.assertEqual(outcome.prize.level, "no_win")
            record = session.get(DrawRecord, outcome.record_id)
            self.assertEqual(record.status, "pending")
            self.assertIsNone(record.claim_code)
            self.assertEqual(user.lose_streak, 1)
            self.assertEqual(user.total_wins, 0)

    def test_guarantee_after_nine_losses(self):
        with self.Session.begin() as session:
            prizes = self._seed_prizes(session)
            user = register_user(session, "13800000003", "Unlucky")
            user.lose_streak = 9

            outcome = run_draw(session, user, now=noon(), rng=FixedRandom(0.99))

            self.assertEqual(outcome.prize.id, prizes["third"].id)
            self.assertTrue(outcome.is_guaranteed)
            self.assertEqual(prizes["third"].remaining_quantity, 4)
            record = session.get(DrawRecord, outcome.record_id)
            self.assertTrue(record.is_guaranteed)
            self.assertEqual(record.notes, "guaranteed win")
            self.assertEqual(user.lose_streak, 0)

    def test_streak_of_losses_leads_to_guarantee(self):
        with self.Session.begin() as session:
            prizes = self._seed_prizes(session)
            SystemConfiguration.set_value(
                session,
                "draw_config",
                {"guarantee_threshold": 3, "min_draw_interval_seconds": 0},
            )
            user = register_user(session, "13800000004", "Patient")

            levels = []
            for i in range(3):
                outcome = run_draw(
                    session,
                    user,
                    now=noon() + timedelta(minutes=i),
                    rng=FixedRandom(0.99),
                )
                levels.append(outcome.prize.level)

            self.assertEqual(levels, ["no_win", "no_win", "third"])
            self.assertEqual(prizes["third"].remaining_quantity, 4)

    def test_points_prize_credits_user(self):
        with self.Session.begin() as session:
            self._seed_prizes(session)
            user = register_user(session, "13800000005", "Collector")
            outcome = run_draw(session, user, now=noon(), rng=FixedRandom(0.2))
            self.assertEqual(outcome.prize.prize_type, "points")
            self.assertFalse(outcome.inventory_decremented)
            self.assertEqual(user.points, 100)

    def test_rate_limits(self):
        with self.Session.begin() as session:
            self._seed_prizes(session)
            user = register_user(session, "13800000006", "Eager")
            rng = FixedRandom(0.99)

            run_draw(session, user, now=noon(), rng=rng)
            with self.assertRaises(IneligibleError) as ctx:
                run_draw(session, user, now=noon() + timedelta(seconds=1), rng=rng)
            self.assertEqual(ctx.exception.reason, TOO_FREQUENT)

            for i in range(1, 5):
                run_draw(session, user, now=noon() + timedelta(minutes=i), rng=rng)
            with self.assertRaises(IneligibleError) as ctx:
                run_draw(session, user, now=noon() + timedelta(hours=1), rng=rng)
            self.assertEqual(ctx.exception.reason, DAILY_LIMIT_REACHED)
            self.assertEqual(user.total_draws, 5)

            outcome = run_draw(session, user, now=noon(2), rng=rng)
            self.assertEqual(outcome.prize.level, "no_win")
            self.assertEqual(user.today_draws, 1)

    def test_blocked_user_cannot_draw(self):
        with self.Session.begin() as session:
            self._seed_prizes(session)
            user = register_user(session, "13800000007", "Blocked")
            user.status = "blocked"
            with self.assertRaises(IneligibleError) as ctx:
                run_draw(session, user, now=noon())
            self.assertEqual(ctx.exception.reason, ACCOUNT_BLOCKED)
            self.assertEqual(user.total_draws, 0)

    def test_empty_pool_raises(self):
        with self.Session.begin() as session:
            user = register_user(session, "13800000008", "Early")
            with self.assertRaises(EmptyPoolError):
                run_draw(session, user, now=noon())
            self.assertEqual(user.total_draws, 0)

    def test_failed_decrement_is_recorded_as_no_win(self):
        with self.Session.begin() as session:
            prizes = self._seed_prizes(session)
            user = register_user(session, "13800000009", "Raced")
            with patch.object(SqlPrizePool, "try_decrement", return_value=False):
                outcome = run_draw(session, user, now=noon(), rng=FixedRandom(0.0))

            self.assertTrue(outcome.downgraded)
            self.assertEqual(outcome.prize.id, prizes["no_win"].id)
            record = session.get(DrawRecord, outcome.record_id)
            self.assertTrue(record.downgraded)
            self.assertEqual(record.prize_level, "no_win")
            self.assertEqual(prizes["grand"].remaining_quantity, 1)
            self.assertEqual(user.lose_streak, 1)

    def test_recent_wins_come_from_history(self):
        with self.Session.begin() as session:
            self._seed_prizes(session)
            user = register_user(session, "13800000010", "Lucky")
            run_draw(session, user, now=noon(), rng=FixedRandom(0.0))

            history = SqlDrawHistory(session)
            one_hour = timedelta(hours=1)
            self.assertEqual(history.recent_win_count(user.id, noon(1) + one_hour), 1)
            self.assertEqual(history.recent_win_count(user.id, noon(2) + one_hour), 0)
            ctx = history.build_context(user, noon() + timedelta(minutes=5))
            self.assertEqual(ctx.recent_win_count, 1)
            self.assertEqual(ctx.lose_streak, 0)


class ActivityDrawTests(WorkflowTestCase):
    def _activity(self, session, prizes, **kwargs):
        activity = Activity(
            name="May promotion",
            start_time=noon(1),
            end_time=noon(10),
            status="active",
            **kwargs,
        )
        activity.add_prize(prizes["third"], weight=5)
        activity.add_prize(prizes["no_win"], weight=0)
        session.add(activity)
        session.flush()
        return activity

    def test_activity_draw_updates_statistics(self):
        with self.Session.begin() as session:
            prizes = self._seed_prizes(session)
            activity = self._activity(session, prizes)
            user = register_user(session, "13800000011", "Member")

            outcome = run_draw(
                session, user, activity=activity, now=noon(2), rng=FixedRandom(0.9)
            )

            self.assertEqual(outcome.prize.id, prizes["third"].id)
            self.assertEqual(activity.total_draws, 1)
            self.assertEqual(activity.total_wins, 1)
            self.assertEqual(activity.entry_for(prizes["third"].id).awarded_count, 1)
            record = session.get(DrawRecord, outcome.record_id)
            self.assertEqual(record.activity_id, activity.id)

    def test_activity_daily_limit(self):
        with self.Session.begin() as session:
            prizes = self._seed_prizes(session)
            activity = self._activity(session, prizes, daily_draw_limit=2)
            user = register_user(session, "13800000012", "Member")

            for i in range(2):
                run_draw(
                    session, user, activity=activity, now=noon(2) + timedelta(minutes=i)
                )
            with self.assertRaises(IneligibleError) as ctx:
                run_draw(
                    session, user, activity=activity, now=noon(2) + timedelta(minutes=5)
                )
            self.assertEqual(ctx.exception.reason, DAILY_LIMIT_REACHED)

    def test_activity_outside_its_window(self):
        with self.Session.begin() as session:
            prizes = self._seed_prizes(session)
            activity = self._activity(session, prizes)
            user = register_user(session, "13800000013", "Late")
            with self.assertRaises(IneligibleError) as ctx:
                run_draw(session, user, activity=activity, now=noon(11))
            self.assertEqual(ctx.exception.reason, ACTIVITY_NOT_RUNNING)


class ClaimAndStockTests(WorkflowTestCase):
    def _win_grand(self, session):
        prizes = self._seed_prizes(session)
        user = register_user(session, "13800000020", "Claimer")
        outcome = run_draw(session, user, now=noon(1), rng=FixedRandom(0.0))
        return prizes, user, session.get(DrawRecord, outcome.record_id)

    def test_claim_draw_record(self):
        with self.Session.begin() as session:
            _, user, record = self._win_grand(session)
            claim_draw_record(
                session, record, user, "express", {"address": "1 Main St"}, now=noon(3)
            )
            self.assertEqual(record.status, "claimed")
            self.assertEqual(record.claim_method, "express")

    def test_claim_requires_owner(self):
        with self.Session.begin() as session:
            _, _, record = self._win_grand(session)
            other = register_user(session, "13800000021", "Other")
            with self.assertRaises(ValueError):
                claim_draw_record(session, record, other, "express", now=noon(3))
            self.assertEqual(record.status, "awarded")

    def test_expired_claim_is_persisted(self):
        with self.Session.begin() as session:
            _, user, record = self._win_grand(session)
            with self.assertRaises(ValueError):
                claim_draw_record(
                    session,
                    record,
                    user,
                    "express",
                    now=noon(1) + timedelta(days=31),
                )
            status = session.scalar(
                select(DrawRecord.status).where(DrawRecord.id == record.id)
            )
            self.assertEqual(status, "expired")

    def test_restock_prize(self):
        with self.Session.begin() as session:
            prizes, _, _ = self._win_grand(session)
            grand = restock_prize(session, prizes["grand"], 2)
            self.assertEqual(grand.remaining_quantity, 2)
            self.assertEqual(grand.total_quantity, 3)
            self.assertEqual(grand.status, "active")
            with self.assertRaises(ValueError):
                restock_prize(session, prizes["grand"], 0)

    def test_list_available_prizes(self):
        with self.Session.begin() as session:
            self._win_grand(session)
            names = [p.name for p in list_available_prizes(session, now=noon(1))]
            self.assertEqual(
                names, ["Coffee voucher", "100 points", "Thanks for playing"]
            )


class StreakInfoTests(WorkflowTestCase):
    def test_user_streak_info(self):
        with self.Session.begin() as session:
            user = register_user(session, "13800000030", "Streaky")
            levels = ["third", "no_win", "no_win", "no_win", "fifth", "first"]
            for hour, level in enumerate(levels, start=1):
                session.add(
                    DrawRecord(
                        user_id=user.id,
                        prize_name=level,
                        prize_level=level,
                        draw_time=noon() + timedelta(hours=hour),
                    )
                )
            session.flush()

            info = user_streak_info(session, user)
            self.assertEqual(info["current_streak"], 2)
            self.assertTrue(info["is_winning_streak"])
            self.assertEqual(info["max_winning_streak"], 2)
            self.assertEqual(info["max_losing_streak"], 3)
            self.assertEqual(info["recent_draws"], 6)

            self.assertEqual(SqlDrawHistory(session).lose_streak(user.id), 0)

    def test_user_streak_info_without_draws(self):
        with self.Session.begin() as session:
            user = register_user(session, "13800000031", "Fresh")
            info = user_streak_info(session, user)
            self.assertEqual(info["current_streak"], 0)
            self.assertIsNone(info["is_winning_streak"])
            with self.assertRaises(ValueError):
                user_streak_info(session, user, limit=0)


class ConcurrentDrawTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(self.tmpdir.name) / "draws.db"
        self.engine = make_engine(f"sqlite+pysqlite:///{db_path}")
        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(
            bind=self.engine, future=True, expire_on_commit=False
        )

    def tearDown(self):
        self.engine.dispose()
        self.tmpdir.cleanup()

    def test_concurrent_draws_award_all_stock(self):
        workers = 6
        with self.Session.begin() as session:
            grand = Prize(
                name="Laptop",
                level="grand",
                probability=1,
                total_quantity=2,
                sort_order=1,
            )
            consolation = Prize(
                name="Thanks for playing", level="no_win", probability=1, sort_order=2
            )
            session.add_all([grand, consolation])
            session.flush()
            grand_id = grand.id
            user_ids = [
                register_user(session, f"1380000010{i}", f"Player {i}").id
                for i in range(workers)
            ]

        barrier = threading.Barrier(workers)

        def draw(user_id):
            barrier.wait()
            with self.Session.begin() as session:
                user = session.get(User, user_id)
                return run_draw(session, user, now=noon(), rng=FixedRandom(0.0))

        with ThreadPoolExecutor(max_workers=workers) as executor:
            outcomes = list(executor.map(draw, user_ids))

        levels = [outcome.prize.level for outcome in outcomes]
        self.assertEqual(levels.count("grand"), 2)
        self.assertEqual(levels.count("no_win"), workers - 2)
        self.assertFalse(any(outcome.downgraded for outcome in outcomes))

        with self.Session() as session:
            self.assertEqual(session.get(Prize, grand_id).remaining_quantity, 0)
            records = session.scalars(select(DrawRecord)).all()
            self.assertEqual(len(records), workers)
            self.assertEqual(
                sorted(record.user_id for record in records), sorted(user_ids)
            )


if __name__ == "__main__":
    unittest.main()
