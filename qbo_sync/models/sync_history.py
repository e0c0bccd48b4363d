"""Sync history — append-only ledger of every completed or failed cycle."""

from datetime import datetime
from typing import Optional

from sqlalchemy import String, Text, Integer, Index
from sqlalchemy.orm import Mapped, mapped_column

from qbo_sync.database import Base, UTCDateTime, utcnow


class SyncHistory(Base):
    __tablename__ = "sync_history"
    __table_args__ = (
        Index("idx_sync_history_realm_object", "realm_id", "object_type"),
        Index("idx_sync_history_started_at", "started_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    realm_id: Mapped[str] = mapped_column(String(64), nullable=False)
    object_type: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False)

    records_synced: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    records_failed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    duration_ms: Mapped[Optional[int]] = mapped_column(Integer)

    cursor_before: Mapped[Optional[str]] = mapped_column(String(64))
    cursor_after: Mapped[Optional[str]] = mapped_column(String(64))
    error_message: Mapped[Optional[str]] = mapped_column(Text)

    started_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)

    def __repr__(self):
        return f"<SyncHistory {self.id}: {self.object_type} {self.status} ({self.records_synced})>"
