"""Scheduled carrier tracking sync."""

import asyncio
from typing import Any, Optional

from celery import Task, shared_task

from printshop.core.cache import SettingsCache
from printshop.core.celery_app import LoggedTask
from printshop.core.config import get_settings
from printshop.core.logging import get_logger
from printshop.database.connection import close_database_connections, get_session
from printshop.services.notifications.service import get_notifier
from printshop.services.orders.state_machine import get_order_state_machine
from printshop.services.shipments.service import ShipmentService, load_carrier_client

logger = get_logger(__name__)

# One cache per worker process
_settings_cache: Optional[SettingsCache] = None


def _get_settings_cache() -> SettingsCache:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = SettingsCache(get_settings().settings_cache_ttl_seconds)
    return _settings_cache


@shared_task(
    bind=True,
    base=LoggedTask,
    name="shipments.sync_active",
    time_limit=1800,
    soft_time_limit=1740,
)
def sync_active_shipments_task(self: Task, limit: Optional[int] = None) -> dict[str, Any]:
    """
    Refresh tracking for every shipment that can still change.

    Args:
        self: Task instance
        limit: Maximum number of shipments to check

    Returns:
        Run counters and per-shipment failures
    """
    logger.info("Processing tracking sync task", task_id=self.request.id, limit=limit)

    async def run() -> dict[str, Any]:
        try:
            async with get_session() as session:
                carrier = await load_carrier_client(session, _get_settings_cache())
                service = ShipmentService(
                    session,
                    carrier,
                    get_order_state_machine(session, get_notifier()),
                )
                result = await service.sync_active_shipments(limit)
                return result.as_dict()
        finally:
            await close_database_connections()

    return asyncio.run(run())
