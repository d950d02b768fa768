"""Invoice generation requests, published to the invoice worker."""

import asyncio
import uuid
from typing import Any, Optional, Protocol

from celery import Celery

from printshop.core.logging import get_logger, get_request_id

logger = get_logger(__name__)

CREATE_INVOICE_TASK = "invoices.create_for_order"


class InvoiceServiceError(Exception):
    """Raised when an invoice request cannot be published."""

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.context = context


class InvoiceService(Protocol):
    async def create_invoice_for_order(self, order_id: uuid.UUID) -> None: ...


class CeleryInvoiceService:
    """Requests invoice PDFs by publishing a task per order."""

    def __init__(self, app: Celery):
        self.app = app

    async def create_invoice_for_order(self, order_id: uuid.UUID) -> None:
        try:
            await asyncio.to_thread(
                self.app.send_task,
                CREATE_INVOICE_TASK,
                kwargs={"order_id": str(order_id), "request_id": get_request_id()},
            )
        except Exception as e:
            logger.error(
                "Failed to request invoice",
                order_id=str(order_id),
                error=str(e),
            )
            raise InvoiceServiceError(
                "Failed to request invoice",
                order_id=str(order_id),
            ) from e

        logger.info("Invoice requested", order_id=str(order_id))


_invoice_service: Optional[CeleryInvoiceService] = None


def get_invoice_service() -> CeleryInvoiceService:
    global _invoice_service
    if _invoice_service is None:
        from printshop.core.celery_app import celery_app

        _invoice_service = CeleryInvoiceService(celery_app)
    return _invoice_service
