from .base import Base

# import models so Alembic/autoloaders can discover mappers
from .prize import Prize, NO_WIN_LEVEL, PRIZE_LEVELS, UNLIMITED  # noqa: F401
from .user import User  # noqa: F401
from .activity import Activity, ActivityPrize  # noqa: F401
from .draw_record import DrawRecord  # noqa: F401
from .config import SystemConfiguration  # noqa: F401

__all__ = [
    "Base",
    "Prize",
    "NO_WIN_LEVEL",
    "PRIZE_LEVELS",
    "UNLIMITED",
    "User",
    "Activity",
    "ActivityPrize",
    "DrawRecord",
    "SystemConfiguration",
]
