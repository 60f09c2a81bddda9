from __future__ import annotations

import uuid

from sqlalchemy import Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin


class SessionSnapshot(TimestampMixin, Base):
    __tablename__ = "sl_session_snapshots"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    session_key: Mapped[str] = mapped_column(String(128), nullable=False)
    format_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    payload_json: Mapped[str] = mapped_column(Text, nullable=False)
    row_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __table_args__ = (
        UniqueConstraint("session_key", name="uq_sl_session_snapshot_key"),
    )


Index("ix_sl_session_snapshot_updated", SessionSnapshot.updated_at.desc())
