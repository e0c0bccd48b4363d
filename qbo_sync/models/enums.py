"""Shared enums for object types and sync status."""

from enum import Enum


class ObjectType(str, Enum):
    """QuickBooks object types that can be synced."""

    CUSTOMER = "customer"
    INVOICE = "invoice"


class SyncStatus(str, Enum):
    """Lifecycle phase of a (realm, object type) sync."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    FAILURE = "failure"


class SyncHistoryStatus(str, Enum):
    """Outcome of a completed cycle."""

    SUCCESS = "success"
    FAILURE = "failure"
