"""Customer model — verbatim QuickBooks payload plus a few extracted fields."""

from datetime import datetime
from typing import Optional

from sqlalchemy import String, JSON
from sqlalchemy.orm import Mapped, mapped_column

from qbo_sync.database import Base, UTCDateTime, utcnow


class Customer(Base):
    __tablename__ = "customers"

    # Remote-assigned id, not generated locally
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    realm_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    last_updated_time: Mapped[Optional[str]] = mapped_column(String(64))
    raw_data: Mapped[dict] = mapped_column(JSON, nullable=False)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)

    def __repr__(self):
        return f"<Customer {self.id} realm={self.realm_id}>"
