"""
Celery application for scheduled fulfillment jobs and outbound messages.

The worker runs the tracking sync and voucher expiry jobs declared as
shared tasks in the service packages. Notification and invoice messages
are published by name to queues consumed by workers outside this service.
"""

from typing import Any

from celery import Celery, Task
from celery.schedules import crontab
from celery.signals import worker_process_init

from printshop.core.config import get_settings
from printshop.core.logging import (
    clear_context,
    configure_logging,
    get_logger,
    set_request_id,
)

logger = get_logger(__name__)

settings = get_settings()

celery_app = Celery(
    "printshop",
    broker=settings.broker_url,
    include=[
        "printshop.services.shipments.tasks",
        "printshop.services.ledger.tasks",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_ignore_result=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_routes={
        "notifications.*": {"queue": "notifications"},
        "invoices.*": {"queue": "invoices"},
    },
    beat_schedule={
        "sync-active-shipments": {
            "task": "shipments.sync_active",
            "schedule": float(settings.tracking_sync_interval_seconds),
        },
        "check-voucher-expiration": {
            "task": "vouchers.check_expiration",
            "schedule": crontab(hour=9, minute=0),
        },
    },
)


@worker_process_init.connect
def _configure_worker_logging(**kwargs) -> None:
    configure_logging()


class LoggedTask(Task):
    """
    Base class for scheduled jobs.

    Jobs are idempotent, so a failed run is logged and left to the next
    scheduled run instead of being retried. The task id is bound as the
    log correlation id while the job runs.
    """

    def __call__(self, *args: Any, **kwargs: Any) -> Any:
        set_request_id(self.request.id)
        try:
            return super().__call__(*args, **kwargs)
        finally:
            clear_context()

    def on_failure(
        self,
        exc: Exception,
        task_id: str,
        args: tuple,
        kwargs: dict,
        einfo: Any,
    ) -> None:
        logger.error(
            "Scheduled task failed",
            task_name=self.name,
            task_id=task_id,
            exception=str(exc),
            exc_info=einfo,
        )

    def on_success(
        self,
        retval: Any,
        task_id: str,
        args: tuple,
        kwargs: dict,
    ) -> None:
        logger.info(
            "Scheduled task completed",
            task_name=self.name,
            task_id=task_id,
            result=retval,
        )
