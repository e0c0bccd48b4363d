from qbo_sync.repositories.token_store import TokenStore
from qbo_sync.repositories.entities import (
    EntityRecord,
    EntityRepository,
    CustomerRepository,
    InvoiceRepository,
)
from qbo_sync.repositories.sync_state import SyncStateStore
from qbo_sync.repositories.sync_history import SyncHistoryLog, SyncHistorySummary

__all__ = [
    "TokenStore",
    "EntityRecord",
    "EntityRepository",
    "CustomerRepository",
    "InvoiceRepository",
    "SyncStateStore",
    "SyncHistoryLog",
    "SyncHistorySummary",
]
