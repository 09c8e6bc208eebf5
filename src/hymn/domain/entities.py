"""
Persistent entities for Hymn.

The broadcast session is stored as one opaque JSON blob per session key.
The expiry column is informational: the regeneration policy decides
validity, the store never filters on it.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from ..infra.db import Base


class BroadcastSessionRecord(Base):
    """One persisted broadcast session, keyed by a fixed session key."""

    __tablename__ = "broadcast_sessions"

    session_key: Mapped[str] = mapped_column(String(128), primary_key=True)
    session_id: Mapped[str] = mapped_column(String(128), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return (
            f"<BroadcastSessionRecord(session_key={self.session_key!r}, "
            f"session_id={self.session_id!r}, expires_at={self.expires_at!r})>"
        )
