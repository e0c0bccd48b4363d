"""Sync state tracking — knows where we left off per realm and object type."""

from datetime import datetime
from typing import Optional

from sqlalchemy import String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from qbo_sync.database import Base, UTCDateTime, utcnow
from qbo_sync.models.enums import SyncStatus


class SyncState(Base):
    __tablename__ = "sync_state"
    __table_args__ = (UniqueConstraint("realm_id", "object_type", name="uq_sync_state_realm_object"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    realm_id: Mapped[str] = mapped_column(String(64), nullable=False)
    object_type: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(32), default=SyncStatus.PENDING.value, nullable=False)
    # ISO-8601 watermark of the newest LastUpdatedTime persisted; None = never fully synced
    cursor: Mapped[Optional[str]] = mapped_column(String(64))
    last_sync_attempt: Mapped[Optional[datetime]] = mapped_column(UTCDateTime)
    last_sync_success: Mapped[Optional[datetime]] = mapped_column(UTCDateTime)
    error_message: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)

    def __repr__(self):
        return f"<SyncState {self.realm_id}/{self.object_type}: {self.status} cursor={self.cursor}>"
