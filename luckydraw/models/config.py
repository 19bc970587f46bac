from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import DateTime, JSON, String
from sqlalchemy.orm import Mapped, Session, mapped_column

from .base import Base


class SystemConfiguration(Base):
    """System-wide configuration settings stored as JSON documents."""

    __tablename__ = "system_configurations"

    key: Mapped[str] = mapped_column(String(50), primary_key=True)
    value: Mapped[dict] = mapped_column(JSON, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    @classmethod
    def get_value(cls, session: Session, key: str) -> Optional[dict[str, Any]]:
        """Return the stored document for ``key`` or ``None``."""

        row = session.get(cls, key)
        return None if row is None else row.value

    @classmethod
    def set_value(cls, session: Session, key: str, value: dict[str, Any]) -> "SystemConfiguration":
        """Create or replace the document stored under ``key``."""

        row = session.get(cls, key)
        if row is None:
            row = cls(key=key, value=value)
            session.add(row)
        else:
            row.value = value
        session.flush()
        return row
