import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from luckydraw.db.engine import make_engine
from luckydraw.models import (
    Activity,
    ActivityPrize,
    Base,
    DrawRecord,
    Prize,
    User,
)


def noon(day: int = 1) -> datetime:
    return datetime(2024, 5, day, 12, 0, tzinfo=timezone.utc)


class DBTestCase(unittest.TestCase):
    def setUp(self):
        # In-memory SQLite for isolation
        self.engine = make_engine("sqlite+pysqlite:///:memory:")
        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(
            bind=self.engine, future=True, expire_on_commit=False
        )

    def tearDown(self):
        self.engine.dispose()

    def _user(self, session, phone="13800000001"):
        user = User(phone=phone, name="Tester")
        session.add(user)
        session.flush()
        return user

    def test_prize_defaults_remaining_to_total(self):
        prize = Prize(name="Mug", level="fourth", total_quantity=12)
        self.assertEqual(prize.remaining_quantity, 12)
        self.assertFalse(prize.is_unlimited)
        self.assertTrue(Prize(name="Points", level="fifth").is_unlimited)

    def test_prize_rejects_invalid_arguments(self):
        with self.assertRaises(ValueError):
            Prize(name="x", level="sixth")
        with self.assertRaises(ValueError):
            Prize(name="x", level="first", prize_type="cash")
        with self.assertRaises(ValueError):
            Prize(name="x", level="first", probability=-1)
        with self.assertRaises(ValueError):
            Prize(name="x", level="first", total_quantity=-3)

    def test_prize_check_constraint_on_remaining_quantity(self):
        with self.Session() as session:
            session.add(Prize(name="bad", level="first", remaining_quantity=-5))
            with self.assertRaises(IntegrityError):
                session.commit()

    def test_prize_can_award(self):
        self.assertEqual(
            Prize(name="a", level="first", total_quantity=1).can_award(), (True, None)
        )
        ok, reason = Prize(name="a", level="first", total_quantity=0).can_award()
        self.assertFalse(ok)
        self.assertIn("stock", reason)
        ok, reason = Prize(name="a", level="first", status="inactive").can_award()
        self.assertFalse(ok)

    def test_no_win_level_is_configurable(self):
        consolation = Prize(name="Thanks", level="no_win")
        fifth = Prize(name="Sticker", level="fifth")
        self.assertTrue(consolation.is_no_win())
        self.assertFalse(fifth.is_no_win())
        self.assertTrue(fifth.is_no_win(no_win_level="fifth"))

    def test_prize_get_available_and_get_by_level(self):
        with self.Session() as session:
            session.add_all(
                [
                    Prize(name="B", level="third", total_quantity=3, sort_order=2),
                    Prize(name="A", level="third", sort_order=1),
                    Prize(name="Gone", level="third", total_quantity=0),
                    Prize(name="Off", level="first", status="inactive"),
                ]
            )
            session.commit()

            self.assertEqual(
                [p.name for p in Prize.get_available(session)], ["A", "B"]
            )
            self.assertEqual(
                [p.name for p in Prize.get_by_level(session, "third")],
                ["B", "A", "Gone"],
            )

    def test_user_record_draw_tracks_counters(self):
        user = User(phone="13800000002", name="Counter")
        user.record_draw(noon(1), won=False)
        user.record_draw(noon(1) + timedelta(minutes=1), won=False)
        self.assertEqual(user.lose_streak, 2)
        self.assertEqual(user.today_draws, 2)

        user.record_draw(noon(1) + timedelta(minutes=2), won=True, points=50)
        self.assertEqual(user.lose_streak, 0)
        self.assertEqual(user.total_wins, 1)
        self.assertEqual(user.total_draws, 3)
        self.assertEqual(user.points, 50)
        self.assertEqual(user.win_rate, 33.33)

    def test_user_daily_count_resets_on_a_new_day(self):
        user = User(phone="13800000003", name="Daily")
        user.record_draw(noon(1), won=False)
        self.assertEqual(user.draws_on(noon(1)), 1)
        self.assertEqual(user.draws_on(noon(2)), 0)
        user.record_draw(noon(2), won=False)
        self.assertEqual(user.today_draws, 1)

    def test_user_draws_on_uses_callers_timezone(self):
        user = User(phone="13800000004", name="Zone")
        user.record_draw(datetime(2024, 5, 1, 20, 0, tzinfo=timezone.utc), won=False)
        shanghai = timezone(timedelta(hours=8))
        # 20:00 UTC on May 1 is already May 2 in UTC+8.
        self.assertEqual(user.draws_on(datetime(2024, 5, 2, 9, 0, tzinfo=shanghai)), 1)
        self.assertEqual(user.draws_on(datetime(2024, 5, 1, 23, 0, tzinfo=shanghai)), 0)

    def test_user_win_rate_without_draws(self):
        self.assertEqual(User(phone="13800000005", name="New").win_rate, 0.0)

    def test_user_phone_is_unique(self):
        with self.Session() as session:
            session.add_all(
                [
                    User(phone="13800000006", name="One"),
                    User(phone="13800000006", name="Two"),
                ]
            )
            with self.assertRaises(IntegrityError):
                session.commit()

    def test_draw_record_award_issues_claim_code_for_physical_prizes(self):
        with self.Session() as session:
            user = self._user(session)
            physical = DrawRecord(
                user_id=user.id,
                prize_name="Headphones",
                prize_level="second",
                prize_type="physical",
                draw_time=noon(),
            )
            virtual = DrawRecord(
                user_id=user.id,
                prize_name="Avatar frame",
                prize_level="fifth",
                prize_type="virtual",
                draw_time=noon(),
            )
            with patch(
                "luckydraw.models.draw_record.secrets.token_hex",
                return_value="a1b2c3d4",
            ):
                physical.award(noon())
            virtual.award(noon())
            session.add_all([physical, virtual])
            session.commit()

            self.assertEqual(physical.status, "awarded")
            self.assertEqual(physical.claim_code, "A1B2C3D4")
            self.assertIsNone(virtual.claim_code)
            self.assertEqual(physical.expire_time, noon() + timedelta(days=30))

    def test_draw_record_claim_lifecycle(self):
        record = DrawRecord(
            user_id=1, prize_name="Mug", prize_level="fourth", draw_time=noon(1)
        )
        with self.assertRaises(ValueError):
            record.claim("pickup", now=noon(1))

        record.award(noon(1))
        self.assertTrue(record.can_claim(noon(2)))
        record.claim("pickup", {"store": "Main St"}, now=noon(2))
        self.assertEqual(record.status, "claimed")
        self.assertEqual(record.claim_details, {"store": "Main St"})
        with self.assertRaises(ValueError):
            record.claim("pickup", now=noon(3))

    def test_draw_record_expired_claim_marks_record(self):
        record = DrawRecord(
            user_id=1,
            prize_name="Mug",
            prize_level="fourth",
            draw_time=noon(1),
            expire_after=timedelta(days=1),
        )
        record.award(noon(1))
        later = noon(1) + timedelta(days=2)
        self.assertTrue(record.is_expired(later))
        self.assertFalse(record.can_claim(later))
        with self.assertRaises(ValueError):
            record.claim("mail", now=later)
        self.assertEqual(record.status, "expired")

    def test_draw_record_recent_for_user_newest_first(self):
        with self.Session() as session:
            user = self._user(session)
            for hour in (9, 11, 10):
                session.add(
                    DrawRecord(
                        user_id=user.id,
                        prize_name=f"h{hour}",
                        prize_level="no_win",
                        draw_time=datetime(2024, 5, 1, hour, tzinfo=timezone.utc),
                    )
                )
            session.commit()

            recent = DrawRecord.recent_for_user(session, user.id, limit=2)
            self.assertEqual([r.prize_name for r in recent], ["h11", "h10"])
            self.assertFalse(recent[0].is_win())
            self.assertTrue(recent[0].is_win(no_win_level="fifth"))

    def test_activity_rejects_inverted_window(self):
        with self.assertRaises(ValueError):
            Activity(name="Bad", start_time=noon(2), end_time=noon(1))

    def test_activity_running_and_refresh_status(self):
        activity = Activity(name="May", start_time=noon(1), end_time=noon(10))
        self.assertFalse(activity.is_running(noon(2)))
        self.assertEqual(activity.refresh_status(noon(2)), "active")
        self.assertTrue(activity.is_running(noon(2)))
        self.assertEqual(activity.refresh_status(noon(11)), "ended")

        activity.status = "paused"
        self.assertEqual(activity.refresh_status(noon(3)), "paused")
        self.assertFalse(activity.is_running(noon(3)))

    def test_activity_get_running(self):
        with self.Session() as session:
            session.add_all(
                [
                    Activity(
                        name="Live",
                        start_time=noon(1),
                        end_time=noon(5),
                        status="active",
                    ),
                    Activity(
                        name="Later",
                        start_time=noon(6),
                        end_time=noon(9),
                        status="active",
                    ),
                ]
            )
            session.commit()
            self.assertEqual(
                [a.name for a in Activity.get_running(session, noon(3))], ["Live"]
            )

    def test_activity_prize_weight_override_and_uniqueness(self):
        with self.Session() as session:
            prize = Prize(name="Mug", level="fourth", probability=4.0)
            activity = Activity(name="May", start_time=noon(1), end_time=noon(10))
            default_entry = activity.add_prize(prize)
            session.add(activity)
            session.commit()

            self.assertEqual(default_entry.effective_weight, 4.0)
            self.assertIs(activity.entry_for(prize.id), default_entry)
            default_entry.weight = 1.5
            self.assertEqual(default_entry.effective_weight, 1.5)

            activity.entries.append(ActivityPrize(prize_id=prize.id))
            with self.assertRaises(IntegrityError):
                session.commit()

    def test_metadata_contains_all_tables(self):
        self.assertEqual(
            set(Base.metadata.tables),
            {
                "prizes",
                "users",
                "draw_records",
                "activities",
                "activity_prizes",
                "system_configurations",
            },
        )


if __name__ == "__main__":
    unittest.main()
