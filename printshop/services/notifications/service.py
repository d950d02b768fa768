"""
Customer and operator notifications.

Fulfillment code depends only on the Notifier protocol. The production
implementation publishes "notifications.*" messages to the Celery broker;
rendering and delivery happen in the mailer worker that consumes them.
Every call is best-effort: callers catch NotificationServiceError, log it
and carry on.
"""

import asyncio
from typing import Any, Optional, Protocol

from celery import Celery

from printshop.core.logging import get_logger, get_request_id
from printshop.database.models.order import Order
from printshop.database.models.voucher import Voucher
from printshop.services.orders.enums import OrderStatus

logger = get_logger(__name__)

STATUS_CHANGED_TASK = "notifications.order_status_changed"
ADMIN_NEW_ORDER_TASK = "notifications.admin_new_order"
VOUCHER_EXPIRING_TASK = "notifications.voucher_expiring"


class NotificationServiceError(Exception):
    """Base exception for notification service errors."""

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.context = context


class Notifier(Protocol):
    async def notify_order_status_changed(
        self, order: Order, new_status: OrderStatus
    ) -> None: ...

    async def notify_admin_new_order(self, order: Order) -> None: ...

    async def notify_voucher_expiring(self, voucher: Voucher, days_left: int) -> None: ...


def _order_payload(order: Order) -> dict[str, Any]:
    return {
        "order_id": str(order.id),
        "order_number": order.order_number,
        "user_id": str(order.user_id) if order.user_id else None,
        "customer_name": order.customer_name,
        "customer_email": order.customer_email,
        "status": order.status.value,
        "payment_status": order.payment_status.value,
        "total_price": str(order.total_price),
        "tracking_number": order.tracking_number,
    }


class CeleryNotifier:
    """
    Notifier that publishes notification messages to the task broker.

    Args:
        app: Celery application used to publish
    """

    def __init__(self, app: Celery):
        self.app = app

    async def _publish(self, task_name: str, payload: dict[str, Any]) -> None:
        payload["request_id"] = get_request_id()
        try:
            # send_task blocks on the broker connection
            await asyncio.to_thread(self.app.send_task, task_name, kwargs=payload)
        except Exception as e:
            logger.error(
                "Failed to publish notification",
                task=task_name,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise NotificationServiceError(
                "Failed to publish notification",
                task=task_name,
            ) from e

        logger.debug("Notification published", task=task_name)

    async def notify_order_status_changed(
        self,
        order: Order,
        new_status: OrderStatus,
    ) -> None:
        payload = _order_payload(order)
        payload["new_status"] = new_status.value
        await self._publish(STATUS_CHANGED_TASK, payload)

    async def notify_admin_new_order(self, order: Order) -> None:
        payload = _order_payload(order)
        payload["is_voucher_purchase"] = order.is_voucher_purchase
        await self._publish(ADMIN_NEW_ORDER_TASK, payload)

    async def notify_voucher_expiring(self, voucher: Voucher, days_left: int) -> None:
        await self._publish(
            VOUCHER_EXPIRING_TASK,
            {
                "voucher_id": str(voucher.id),
                "code": voucher.code,
                "user_id": str(voucher.user_id) if voucher.user_id else None,
                "remaining_meters": str(voucher.remaining_meters),
                "remaining_shipments": voucher.remaining_shipments,
                "expires_at": voucher.expires_at.isoformat() if voucher.expires_at else None,
                "days_left": days_left,
            },
        )


_notifier: Optional[CeleryNotifier] = None


def get_notifier() -> CeleryNotifier:
    """Get the process-wide notifier bound to the Celery app."""
    global _notifier
    if _notifier is None:
        from printshop.core.celery_app import celery_app

        _notifier = CeleryNotifier(celery_app)
    return _notifier
