"""Version 1 of the HTTP API."""

from fastapi import APIRouter

from printshop.api.v1.cron import router as cron_router
from printshop.api.v1.orders import router as orders_router
from printshop.api.v1.payments import router as payments_router
from printshop.api.v1.shipments import router as shipments_router
from printshop.api.v1.users import router as users_router

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(orders_router)
api_router.include_router(shipments_router)
api_router.include_router(users_router)
api_router.include_router(payments_router)
api_router.include_router(cron_router)

__all__ = ["api_router"]
