"""
FastAPI dependencies for sessions, services and machine-caller secrets.

Services are built per request around the request's database session.
Cron and payment-gateway endpoints authenticate with shared bearer
secrets from the settings.
"""

import secrets
from typing import Annotated, Optional

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from printshop.core.cache import SettingsCache
from printshop.core.config import get_settings
from printshop.core.logging import get_logger, set_actor
from printshop.database.connection import get_db
from printshop.services.invoices.service import InvoiceService, get_invoice_service
from printshop.services.ledger.service import LedgerService
from printshop.services.notifications.service import Notifier, get_notifier
from printshop.services.orders.service import OrderService
from printshop.services.orders.state_machine import OrderStateMachine
from printshop.services.shipments.carrier_client import CarrierAPI
from printshop.services.shipments.service import ShipmentService, load_carrier_client

logger = get_logger(__name__)

security = HTTPBearer(auto_error=False)

DatabaseSession = Annotated[AsyncSession, Depends(get_db)]
BearerCredentials = Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)]


async def get_actor(
    x_actor: Annotated[Optional[str], Header(alias="X-Actor", max_length=255)] = None,
) -> Optional[str]:
    """Acting user or operator, recorded on history rows and log events."""
    actor = x_actor.strip() if x_actor else None
    set_actor(actor or None)
    return actor or None


def get_settings_cache(request: Request) -> SettingsCache:
    return request.app.state.settings_cache


def get_notifier_dependency() -> Notifier:
    return get_notifier()


def get_invoice_service_dependency() -> InvoiceService:
    return get_invoice_service()


def get_ledger_service(db: DatabaseSession) -> LedgerService:
    return LedgerService(db)


def get_state_machine(
    db: DatabaseSession,
    ledger: Annotated[LedgerService, Depends(get_ledger_service)],
    notifier: Annotated[Notifier, Depends(get_notifier_dependency)],
) -> OrderStateMachine:
    return OrderStateMachine(db, ledger, notifier)


def get_order_service(
    db: DatabaseSession,
    ledger: Annotated[LedgerService, Depends(get_ledger_service)],
    notifier: Annotated[Notifier, Depends(get_notifier_dependency)],
    invoice_service: Annotated[InvoiceService, Depends(get_invoice_service_dependency)],
    state_machine: Annotated[OrderStateMachine, Depends(get_state_machine)],
) -> OrderService:
    return OrderService(db, ledger, notifier, invoice_service, state_machine=state_machine)


async def get_carrier(
    db: DatabaseSession,
    cache: Annotated[SettingsCache, Depends(get_settings_cache)],
) -> CarrierAPI:
    """
    Carrier client built from the cached shipping settings.

    Raises:
        CarrierNotConfigured: If the carrier integration is disabled
    """
    return await load_carrier_client(db, cache)


def get_shipment_service(
    db: DatabaseSession,
    carrier: Annotated[CarrierAPI, Depends(get_carrier)],
    state_machine: Annotated[OrderStateMachine, Depends(get_state_machine)],
) -> ShipmentService:
    return ShipmentService(db, carrier, state_machine)


def _check_bearer_secret(
    credentials: Optional[HTTPAuthorizationCredentials],
    expected: Optional[str],
    caller: str,
) -> None:
    if not expected:
        logger.error("Shared secret not configured", caller=caller)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"{caller} secret is not configured",
        )

    if credentials is None or not secrets.compare_digest(
        credentials.credentials.encode(), expected.encode()
    ):
        logger.warning("Rejected machine caller", caller=caller)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing bearer token",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def verify_cron_secret(credentials: BearerCredentials) -> None:
    """
    Authenticate scheduler calls.

    Raises:
        HTTPException: 500 if no cron secret is configured, 401 if the
            token is missing or wrong
    """
    _check_bearer_secret(credentials, get_settings().cron_secret, "Cron")


async def verify_payment_secret(credentials: BearerCredentials) -> None:
    """
    Authenticate payment gateway signals.

    Raises:
        HTTPException: 500 if no payment secret is configured, 401 if the
            token is missing or wrong
    """
    _check_bearer_secret(credentials, get_settings().payment_signal_secret, "Payment")


Actor = Annotated[Optional[str], Depends(get_actor)]
LedgerServiceDep = Annotated[LedgerService, Depends(get_ledger_service)]
OrderServiceDep = Annotated[OrderService, Depends(get_order_service)]
ShipmentServiceDep = Annotated[ShipmentService, Depends(get_shipment_service)]
NotifierDep = Annotated[Notifier, Depends(get_notifier_dependency)]
