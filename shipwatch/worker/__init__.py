"""
Shipwatch Worker

Background jobs:
- Mailbox sync (batch extraction and reconciliation)
- Screenshot ingestion
- Age-based status sweep
- Manual shipment actions and summary refresh
"""

from shipwatch.worker.mailbox import DEFAULT_MAILBOX_QUERY, Mailbox, MailboxAuthError
from shipwatch.worker.sync import GenerativeThrottle, ShipmentSyncService

__all__ = [
    "DEFAULT_MAILBOX_QUERY",
    "Mailbox",
    "MailboxAuthError",
    "GenerativeThrottle",
    "ShipmentSyncService",
]
