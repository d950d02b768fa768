"""Fixtures for API tests with services replaced by mocks."""

from typing import AsyncIterator, Iterator
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from printshop.api import deps
from printshop.database.connection import get_db
from printshop.main import create_app


@pytest.fixture
def order_service() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def shipment_service() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def ledger_service() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def app(
    mock_session,
    mock_notifier,
    order_service,
    shipment_service,
    ledger_service,
) -> Iterator[FastAPI]:
    application = create_app()

    async def override_db() -> AsyncIterator[AsyncMock]:
        yield mock_session

    application.dependency_overrides[get_db] = override_db
    application.dependency_overrides[deps.get_order_service] = lambda: order_service
    application.dependency_overrides[deps.get_shipment_service] = lambda: shipment_service
    application.dependency_overrides[deps.get_ledger_service] = lambda: ledger_service
    application.dependency_overrides[deps.get_notifier_dependency] = lambda: mock_notifier
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def cron_headers() -> dict[str, str]:
    return {"Authorization": "Bearer cron-test-secret"}


@pytest.fixture
def payment_headers() -> dict[str, str]:
    return {"Authorization": "Bearer payment-test-secret"}
