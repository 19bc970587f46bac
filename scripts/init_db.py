from __future__ import annotations

from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import inspect

from luckydraw.db.engine import get_sessionmaker, make_engine
from luckydraw.draw.config import CONFIG_KEY, DrawConfig
from luckydraw.models import SystemConfiguration


def upgrade_db(target_revision: str = "head") -> None:
    """Apply Alembic migrations up to the requested revision."""
    project_root = Path(__file__).resolve().parents[1]
    alembic_cfg = Config(str(project_root / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(project_root / "alembic"))
    command.upgrade(alembic_cfg, target_revision)


def ensure_draw_config() -> None:
    """Store the draw parameters (defaults plus ``LUCKYDRAW_*`` overrides) once.

    An existing ``draw_config`` document is left as is so operator edits
    survive re-running this script.
    """
    Session = get_sessionmaker(make_engine())
    with Session.begin() as session:
        if SystemConfiguration.get_value(session, CONFIG_KEY) is None:
            SystemConfiguration.set_value(
                session, CONFIG_KEY, DrawConfig.from_env().to_dict()
            )
            print(f"Stored default '{CONFIG_KEY}'.")


def print_tables() -> None:
    """Inspect the configured database and print all table names."""
    engine = make_engine()
    insp = inspect(engine)
    print("Current tables:", ", ".join(sorted(insp.get_table_names())))


def main() -> None:
    """Apply migrations, seed the draw config and report the resulting schema."""
    upgrade_db()
    ensure_draw_config()
    print_tables()


if __name__ == "__main__":
    main()
