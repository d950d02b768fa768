"""
Pytest configuration and shared test fixtures.

Services are exercised against an AsyncMock session with their
repositories replaced by AsyncMocks, so no database or broker is needed.
Model instances are real ORM objects built by tests.factories.
"""

import os

os.environ.setdefault("APP_ENVIRONMENT", "test")
os.environ.setdefault("APP_CRON_SECRET", "cron-test-secret")
os.environ.setdefault("APP_PAYMENT_SIGNAL_SECRET", "payment-test-secret")

import uuid
from datetime import datetime
from typing import Callable
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from tests.factories import FIXED_NOW


@pytest.fixture
def clock() -> Callable[[], datetime]:
    """Clock frozen at FIXED_NOW."""
    return lambda: FIXED_NOW


@pytest.fixture
def mock_session() -> AsyncMock:
    """
    Create mock async database session.

    Returns:
        AsyncMock: Mock database session
    """
    session = AsyncMock(spec=AsyncSession)
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.flush = AsyncMock()
    session.add = MagicMock()
    return session


@pytest.fixture
def mock_notifier() -> AsyncMock:
    notifier = AsyncMock()
    notifier.notify_order_status_changed = AsyncMock()
    notifier.notify_admin_new_order = AsyncMock()
    notifier.notify_voucher_expiring = AsyncMock()
    return notifier


@pytest.fixture
def mock_invoice_service() -> AsyncMock:
    service = AsyncMock()
    service.create_invoice_for_order = AsyncMock()
    return service


@pytest.fixture
def user_id() -> uuid.UUID:
    return uuid.uuid4()
