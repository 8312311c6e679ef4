"""
Shipwatch - shipment tracking from shipping emails and screenshots.

Extracts shipment facts from mailbox messages and tracking-page screenshots
and reconciles them into per-user shipment records.
"""

__version__ = "0.1.0"
