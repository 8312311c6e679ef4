"""
Unit of Work pattern for transaction coordination.

Provides a clean way to work with multiple repositories within a single transaction.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable

from shipwatch.db.connection import DatabaseConnection
from shipwatch.db.repositories.shipment import ShipmentRepository
from shipwatch.db.repositories.source import ProcessedMessageRepository

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


class UnitOfWork:
    """
    Unit of Work for managing database transactions.

    Usage:
        with UnitOfWork() as uow:
            shipment = uow.shipments.get_by_identity(user_id, "trk:FMPC1234567890")
            uow.processed_messages.create(entry)
            uow.commit()  # Explicit commit

    Anything not committed is rolled back when the block exits with an error.
    A session factory can be passed in; otherwise DatabaseConnection is used.
    """

    def __init__(self, session_factory: Callable[[], Session] | None = None):
        self._session_factory = session_factory or DatabaseConnection.get_session
        self._session: Session | None = None
        self._shipments: ShipmentRepository | None = None
        self._processed_messages: ProcessedMessageRepository | None = None

    def __enter__(self) -> UnitOfWork:
        self._session = self._session_factory()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            self.rollback()
        self._close()
        return False  # Don't suppress exceptions

    @property
    def session(self) -> Session:
        """Get current session (raises if not in context)."""
        if self._session is None:
            raise RuntimeError("UnitOfWork must be used within a context manager")
        return self._session

    @property
    def shipments(self) -> ShipmentRepository:
        """Shipment repository for this unit of work."""
        if self._shipments is None:
            self._shipments = ShipmentRepository(self.session)
        return self._shipments

    @property
    def processed_messages(self) -> ProcessedMessageRepository:
        """Processed-message ledger for this unit of work."""
        if self._processed_messages is None:
            self._processed_messages = ProcessedMessageRepository(self.session)
        return self._processed_messages

    def commit(self):
        """Commit the current transaction."""
        self.session.commit()

    def rollback(self):
        """Rollback the current transaction."""
        self.session.rollback()

    def _close(self):
        if self._session is not None:
            self._session.close()
            self._session = None
            self._shipments = None
            self._processed_messages = None
