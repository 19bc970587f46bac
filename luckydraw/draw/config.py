"""Tunable parameters for the fairness layers and the guarantee rule."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields, replace
from datetime import datetime
from typing import TYPE_CHECKING, Any, Mapping, Optional

from dotenv import load_dotenv

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

TimeFactorRule = tuple[int, int, float]
"""Half-open hour range ``[start, end)`` and the multiplier applied inside it."""

DEFAULT_TIME_FACTOR_TABLE: tuple[TimeFactorRule, ...] = (
    (0, 6, 1.2),  # late night boost
    (18, 24, 0.8),  # evening peak
)

ENV_PREFIX = "LUCKYDRAW_"
CONFIG_KEY = "draw_config"


@dataclass(frozen=True)
class DrawConfig:
    """Configuration consumed by the adjuster and the engine.

    Attributes
    ----------
    decay_factor : float, default: 0.5
        Per-recent-win multiplier for winning weights; must lie in (0, 1).
    min_weight_floor : float, default: 0.1
        Lowest weight decay may push a winning prize to.
    floor_lifts_low_weights : bool, default: True
        When true, decay raises every winning weight to at least
        ``min_weight_floor``, even one declared below it, so each prize stays
        drawable after a win. When false, a declared weight below the floor
        is kept as is.
    time_factor_table : tuple of (start_hour, end_hour, factor)
        Hour-of-day multipliers. The first matching range wins; hours outside
        every range use 1.0.
    guarantee_threshold : int, default: 10
        The guarantee fires once ``lose_streak >= guarantee_threshold - 1``.
    guarantee_prize_level : str, default: "third"
        Level of the prize handed out by the guarantee.
    no_win_level : str, default: "no_win"
        Level denoting "no win".
    recent_win_window_hours : int, default: 24
        Trailing window used to count recent wins.
    daily_draw_limit : int, default: 5
        Draws allowed per user per day.
    min_draw_interval_seconds : float, default: 3
        Minimum gap between two draws of the same user.
    claim_expiry_days : int, default: 30
        Days an awarded prize stays claimable.
    """

    decay_factor: float = 0.5
    min_weight_floor: float = 0.1
    floor_lifts_low_weights: bool = True
    time_factor_table: tuple[TimeFactorRule, ...] = DEFAULT_TIME_FACTOR_TABLE
    guarantee_threshold: int = 10
    guarantee_prize_level: str = "third"
    no_win_level: str = "no_win"
    recent_win_window_hours: int = 24
    daily_draw_limit: int = 5
    min_draw_interval_seconds: float = 3
    claim_expiry_days: int = 30

    def __post_init__(self) -> None:
        if not 0 < self.decay_factor < 1:
            raise ValueError("decay_factor must be in the open interval (0, 1)")
        if self.min_weight_floor < 0:
            raise ValueError("min_weight_floor must be non-negative")
        if self.guarantee_threshold < 1:
            raise ValueError("guarantee_threshold must be at least 1")
        if self.recent_win_window_hours <= 0:
            raise ValueError("recent_win_window_hours must be positive")
        if self.daily_draw_limit < 0:
            raise ValueError("daily_draw_limit must be non-negative")
        if self.min_draw_interval_seconds < 0:
            raise ValueError("min_draw_interval_seconds must be non-negative")
        table = tuple(
            (int(start), int(end), float(factor))
            for start, end, factor in self.time_factor_table
        )
        for start, end, factor in table:
            if not 0 <= start < end <= 24:
                raise ValueError(f"Invalid hour range {start}-{end} in time_factor_table")
            if factor < 0:
                raise ValueError("time factors must be non-negative")
        object.__setattr__(self, "time_factor_table", table)

    def time_factor(self, now: datetime) -> float:
        """Return the multiplier for ``now``'s hour of day."""

        hour = now.hour
        for start, end, factor in self.time_factor_table:
            if start <= hour < end:
                return factor
        return 1.0

    @classmethod
    def from_mapping(
        cls, values: Mapping[str, Any], base: Optional["DrawConfig"] = None
    ) -> "DrawConfig":
        """Overlay ``values`` on ``base`` (or the defaults).

        Unknown keys raise :class:`ValueError` so typos in stored configuration
        are not silently ignored.
        """

        known = {f.name for f in fields(cls)}
        unknown = set(values) - known
        if unknown:
            raise ValueError(f"Unknown draw config keys: {', '.join(sorted(unknown))}")
        overrides = dict(values)
        if "time_factor_table" in overrides:
            table = overrides["time_factor_table"]
            if isinstance(table, str):
                table = parse_time_factor_table(table)
            overrides["time_factor_table"] = tuple(tuple(rule) for rule in table)
        return replace(base or cls(), **overrides)

    @classmethod
    def from_env(cls) -> "DrawConfig":
        """Read ``LUCKYDRAW_*`` variables (after loading ``.env``)."""

        load_dotenv()
        casts = {
            "decay_factor": float,
            "min_weight_floor": float,
            "floor_lifts_low_weights": parse_bool,
            "time_factor_table": parse_time_factor_table,
            "guarantee_threshold": int,
            "guarantee_prize_level": str,
            "no_win_level": str,
            "recent_win_window_hours": int,
            "daily_draw_limit": int,
            "min_draw_interval_seconds": float,
            "claim_expiry_days": int,
        }
        values: dict[str, Any] = {}
        for name, cast in casts.items():
            raw = os.getenv(ENV_PREFIX + name.upper())
            if raw is None or raw.strip() == "":
                continue
            try:
                values[name] = cast(raw.strip())
            except ValueError as exc:
                raise ValueError(
                    f"Environment variable '{ENV_PREFIX + name.upper()}' is invalid: {exc}"
                ) from exc
        if values:
            logger.debug(f"Draw config overrides from environment: {sorted(values)}")
        return cls.from_mapping(values)

    def to_dict(self) -> dict[str, Any]:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["time_factor_table"] = [list(rule) for rule in self.time_factor_table]
        return data


def parse_bool(raw: str) -> bool:
    """Parse ``true``/``false`` style flags (also ``1``/``0``, ``yes``/``no``)."""

    value = raw.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"Expected a boolean, got '{raw}'")


def parse_time_factor_table(raw: str) -> tuple[TimeFactorRule, ...]:
    """Parse ``"0-6:1.2,18-24:0.8"`` into ``((0, 6, 1.2), (18, 24, 0.8))``.

    An empty string yields an empty table (every hour uses 1.0).
    """

    rules: list[TimeFactorRule] = []
    for chunk in raw.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        try:
            hours, factor = chunk.split(":")
            start, end = hours.split("-")
            rules.append((int(start), int(end), float(factor)))
        except ValueError as exc:
            raise ValueError(f"Malformed time factor rule '{chunk}'") from exc
    return tuple(rules)


def load_draw_config(
    session: "Session", base: Optional[DrawConfig] = None
) -> DrawConfig:
    """Return ``base`` overlaid with the document stored under ``draw_config``."""

    from ..models.config import SystemConfiguration

    stored = SystemConfiguration.get_value(session, CONFIG_KEY)
    if not stored:
        return base or DrawConfig()
    return DrawConfig.from_mapping(stored, base=base)


__all__ = [
    "DEFAULT_TIME_FACTOR_TABLE",
    "DrawConfig",
    "load_draw_config",
    "parse_bool",
    "parse_time_factor_table",
]
