from qbo_sync.models.enums import ObjectType, SyncStatus, SyncHistoryStatus
from qbo_sync.models.token import Token
from qbo_sync.models.customer import Customer
from qbo_sync.models.invoice import Invoice
from qbo_sync.models.sync_state import SyncState
from qbo_sync.models.sync_history import SyncHistory

__all__ = [
    "ObjectType",
    "SyncStatus",
    "SyncHistoryStatus",
    "Token",
    "Customer",
    "Invoice",
    "SyncState",
    "SyncHistory",
]
