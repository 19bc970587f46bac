from __future__ import annotations

import argparse
import sys
from typing import Optional

from alembic.autogenerate import api as ag_api
from alembic.runtime.migration import MigrationContext

from luckydraw.db.engine import make_engine
from luckydraw.models import Base


def _print_ops(ops, indent: int = 0) -> None:
    prefix = "  " * indent
    for op in ops:
        print(f"{prefix}- {op}")
        sub_ops = getattr(op, "ops", None)
        if sub_ops:
            _print_ops(sub_ops, indent + 1)


def main(argv: Optional[list[str]] = None) -> int:
    """Compare the live schema with the ORM models.

    Exit status is 0 when they match, 1 on drift and 2 on errors.
    """
    parser = argparse.ArgumentParser(description=main.__doc__)
    parser.add_argument("--url", help="database URL (defaults to DB_URL)")
    args = parser.parse_args(argv)

    engine = make_engine(args.url)
    url_display = engine.url.render_as_string(hide_password=True)
    try:
        with engine.connect() as connection:
            context = MigrationContext.configure(
                connection=connection,
                opts={
                    "compare_type": True,
                    "render_as_batch": connection.dialect.name == "sqlite",
                },
            )
            upgrade_ops = ag_api.produce_migrations(context, Base.metadata).upgrade_ops
            if upgrade_ops is None:
                print(f"Schema drift: ERROR for {url_display}: missing upgrade ops.")
                return 2
            if upgrade_ops.is_empty():
                print(f"Schema drift: none for {url_display}.")
                return 0
            print(f"Schema drift detected for {url_display}:")
            _print_ops(upgrade_ops.ops or [])
            return 1
    except Exception as exc:
        print(f"Schema drift: ERROR for {url_display}: {exc}", file=sys.stderr)
        return 2
    finally:
        engine.dispose()


if __name__ == "__main__":
    raise SystemExit(main())
