from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import sessionmaker

from luckydraw.db.engine import make_engine
from luckydraw.draw.config import CONFIG_KEY, DrawConfig
from luckydraw.models import Activity, Base, Prize, SystemConfiguration
from luckydraw.workflows import register_user


PRIZES = [
    # name, level, weight, type, stock, extra
    ("iPhone 15 Pro", "grand", 0.5, "physical", 1, {"value": 8999}),
    ("iPad Air", "first", 2, "physical", 3, {"value": 4799}),
    ("AirPods Pro", "second", 5, "physical", 10, {"value": 1899}),
    ("Smart watch", "third", 10, "physical", 20, {"value": 999}),
    ("Bluetooth speaker", "fourth", 15, "physical", 50, {"value": 299}),
    ("Power bank", "fifth", 25, "coupon", 100, {"value": 99, "daily_limit": 20}),
    ("100 points", "fifth", 10, "points", -1, {"points": 100}),
    ("Thanks for playing", "no_win", 32.5, "virtual", -1, {}),
]


def main() -> None:
    """Reset the development database and load a playable prize pool."""
    engine = make_engine()

    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine)

    now = datetime.now(timezone.utc)

    with Session.begin() as session:
        prizes = []
        for order, (name, level, weight, prize_type, stock, extra) in enumerate(
            PRIZES, start=1
        ):
            prizes.append(
                Prize(
                    name=name,
                    level=level,
                    probability=weight,
                    prize_type=prize_type,
                    total_quantity=stock,
                    sort_order=order,
                    **extra,
                )
            )
        session.add_all(prizes)
        session.flush()

        register_user(session, "13800138001", "Test user 1", "test1@example.com")
        register_user(session, "13800138002", "Test user 2", "test2@example.com")

        # Weekend promotion: doubled odds on the third prize, no grand prize.
        activity = Activity(
            name="Weekend promotion",
            description="Better odds on smart watches all weekend",
            start_time=now,
            end_time=now + timedelta(days=7),
            status="active",
            daily_draw_limit=3,
        )
        for prize in prizes:
            if prize.level == "grand":
                continue
            weight = prize.probability * 2 if prize.level == "third" else None
            activity.add_prize(prize, weight=weight)
        session.add(activity)

        SystemConfiguration.set_value(session, CONFIG_KEY, DrawConfig().to_dict())

    print("Seeded prizes, users, one activity and the draw config.")


if __name__ == "__main__":
    main()
