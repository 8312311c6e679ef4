"""
pytest configuration and fixtures.

Loads environment variables from .env file for all tests and provides an
in-memory SQLite database for repository, reconciler and worker tests.
"""

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable

import pytest
from dotenv import load_dotenv
from sqlalchemy.orm import sessionmaker

from shipwatch.config import PipelineSettings
from shipwatch.db.connection import create_url_engine
from shipwatch.db.tables import metadata
from shipwatch.db.unit_of_work import UnitOfWork
from shipwatch.models.message import RawMessage

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def pytest_configure(config):
    """Load .env file before running tests"""
    project_root = Path(__file__).parent.parent
    env_file = project_root / ".env"

    if env_file.exists():
        load_dotenv(env_file)


@pytest.fixture
def now() -> datetime:
    """Fixed reference time."""
    return NOW


@pytest.fixture
def engine():
    """Fresh in-memory SQLite database with the full schema."""
    engine = create_url_engine("sqlite://")
    metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker:
    return sessionmaker(bind=engine)


@pytest.fixture
def uow_factory(session_factory) -> Callable[[], UnitOfWork]:
    """Build UnitOfWork instances bound to the test database."""
    return lambda: UnitOfWork(session_factory)


@pytest.fixture
def fast_settings() -> PipelineSettings:
    """Settings with no throttling delays."""
    return PipelineSettings(generative_min_interval=0.0, rate_limit_cooldown=30.0)


@pytest.fixture
def make_message() -> Callable[..., RawMessage]:
    """Factory for RawMessage with sensible defaults."""

    def _make(
        message_id: str = "msg-1",
        subject: str = "Your order has been shipped",
        sender: str = "shipment-tracking@amazon.in",
        body_text: str = "",
        body_html: str | None = None,
        days_ago: float = 1,
    ) -> RawMessage:
        return RawMessage(
            message_id=message_id,
            subject=subject,
            sender=sender,
            body_text=body_text,
            body_html=body_html,
            timestamp=NOW - timedelta(days=days_ago),
        )

    return _make
