"""Invoice model — verbatim QuickBooks payload plus a few extracted fields."""

from datetime import datetime
from typing import Optional

from sqlalchemy import String, JSON
from sqlalchemy.orm import Mapped, mapped_column

from qbo_sync.database import Base, UTCDateTime, utcnow


class Invoice(Base):
    __tablename__ = "invoices"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    realm_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    # CustomerRef.value; not a foreign key since invoices may arrive before their customer
    customer_id: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    last_updated_time: Mapped[Optional[str]] = mapped_column(String(64))
    raw_data: Mapped[dict] = mapped_column(JSON, nullable=False)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)

    def __repr__(self):
        return f"<Invoice {self.id} customer={self.customer_id}>"
