"""
FastAPI application entry point with health endpoints and service routing.

This module provides the application instance with CORS configuration,
request logging, domain error translation and the versioned API router.
The lifespan handler owns the per-process settings cache and the database
engine.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from printshop.api.v1 import api_router
from printshop.core.cache import SettingsCache
from printshop.core.config import get_settings
from printshop.core.logging import (
    clear_context,
    configure_logging,
    get_logger,
    get_request_id,
    log_performance,
    set_request_id,
)
from printshop.database.connection import check_database_health, close_database_connections
from printshop.services.ledger.exceptions import (
    DuplicatePointCredit,
    InsufficientBalance,
    InvalidRedemptionAmount,
    VoucherNotFoundError,
)
from printshop.services.orders.exceptions import (
    OrderNotFoundError,
    OrderValidationError,
    PaymentTransitionError,
    StateTransitionError,
)
from printshop.services.shipments.carrier_client import (
    CarrierError,
    CarrierNotConfigured,
    CarrierUnavailable,
)
from printshop.services.shipments.exceptions import (
    DuplicateShipment,
    MissingShippingAddress,
    ShipmentNotFoundError,
)

# Configure logging before application initialization
configure_logging()
logger = get_logger(__name__)

# Domain error -> (HTTP status, error label)
DOMAIN_ERROR_STATUS: dict[type[Exception], tuple[int, str]] = {
    InvalidRedemptionAmount: (status.HTTP_422_UNPROCESSABLE_ENTITY, "Invalid Redemption"),
    OrderValidationError: (status.HTTP_422_UNPROCESSABLE_ENTITY, "Invalid Order"),
    MissingShippingAddress: (status.HTTP_422_UNPROCESSABLE_ENTITY, "Missing Shipping Address"),
    DuplicateShipment: (status.HTTP_409_CONFLICT, "Duplicate Shipment"),
    DuplicatePointCredit: (status.HTTP_409_CONFLICT, "Duplicate Point Credit"),
    StateTransitionError: (status.HTTP_409_CONFLICT, "Invalid Status Transition"),
    PaymentTransitionError: (status.HTTP_409_CONFLICT, "Invalid Payment Transition"),
    OrderNotFoundError: (status.HTTP_404_NOT_FOUND, "Not Found"),
    ShipmentNotFoundError: (status.HTTP_404_NOT_FOUND, "Not Found"),
    VoucherNotFoundError: (status.HTTP_404_NOT_FOUND, "Not Found"),
    CarrierUnavailable: (status.HTTP_503_SERVICE_UNAVAILABLE, "Carrier Unavailable"),
    CarrierNotConfigured: (status.HTTP_503_SERVICE_UNAVAILABLE, "Carrier Not Configured"),
    CarrierError: (status.HTTP_502_BAD_GATEWAY, "Carrier Error"),
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Application lifespan context manager for startup and shutdown events.

    Args:
        app: FastAPI application instance

    Yields:
        None during application runtime
    """
    settings = get_settings()

    logger.info(
        "Application starting",
        environment=settings.environment,
        debug=settings.debug,
        version=settings.app_version,
    )

    with log_performance(logger, "application_startup"):
        app.state.settings_cache = SettingsCache(settings.settings_cache_ttl_seconds)

    yield

    logger.info("Application shutting down")
    with log_performance(logger, "application_shutdown"):
        await close_database_connections()


def _error_body(error: str, message: str, **extra) -> dict:
    return {
        "error": error,
        "message": message,
        "request_id": get_request_id(),
        **extra,
    }


async def insufficient_balance_handler(
    request: Request, exc: InsufficientBalance
) -> JSONResponse:
    """Tell the customer what is missing so they can top up or reduce the order."""
    logger.info(
        "Insufficient balance",
        path=request.url.path,
        resource=exc.resource,
        requested=str(exc.requested),
        available=str(exc.available),
    )
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content=_error_body(
            "Insufficient Balance",
            f"Not enough {exc.resource}: requested {exc.requested}, "
            f"available {exc.available}",
            resource=exc.resource,
            requested=str(exc.requested),
            available=str(exc.available),
        ),
    )


async def domain_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Translate a domain error using DOMAIN_ERROR_STATUS."""
    status_code, label = status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal Server Error"
    for error_type in type(exc).__mro__:
        if error_type in DOMAIN_ERROR_STATUS:
            status_code, label = DOMAIN_ERROR_STATUS[error_type]
            break

    log = logger.error if status_code >= 500 else logger.warning
    log(
        "Request failed with domain error",
        method=request.method,
        path=request.url.path,
        status_code=status_code,
        error=str(exc),
        error_type=type(exc).__name__,
    )

    context = getattr(exc, "context", None) or {}
    return JSONResponse(
        status_code=status_code,
        content=_error_body(
            label,
            str(exc),
            details={key: str(value) for key, value in context.items()},
        ),
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    logger.warning(
        "Request validation failed",
        method=request.method,
        path=request.url.path,
        errors=exc.errors(),
    )

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=_error_body(
            "Validation Error",
            "Request validation failed",
            details=jsonable_errors(exc),
        ),
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [
        {
            "loc": list(error.get("loc", ())),
            "msg": error.get("msg"),
            "type": error.get("type"),
        }
        for error in exc.errors()
    ]


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Handle unexpected exceptions with structured error response.

    Logs the error with full context and returns a generic message.
    """
    logger.error(
        "Unhandled exception",
        method=request.method,
        path=request.url.path,
        error=str(exc),
        error_type=type(exc).__name__,
        exc_info=True,
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body("Internal Server Error", "An unexpected error occurred"),
    )


def create_app() -> FastAPI:
    """Build the application with middleware, handlers and routers."""
    settings = get_settings()
    application = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Print shop ordering, prepaid balance and fulfillment API",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
        debug=settings.debug,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )

    application.middleware("http")(request_logging_middleware)

    application.add_exception_handler(InsufficientBalance, insufficient_balance_handler)
    for error_type in DOMAIN_ERROR_STATUS:
        application.add_exception_handler(error_type, domain_exception_handler)
    application.add_exception_handler(RequestValidationError, validation_exception_handler)
    application.add_exception_handler(Exception, global_exception_handler)

    application.add_api_route(
        "/health",
        health_check,
        methods=["GET"],
        tags=["Health"],
        summary="Health check endpoint",
    )
    application.add_api_route(
        "/ready",
        readiness_check,
        methods=["GET"],
        tags=["Health"],
        summary="Readiness check endpoint",
    )

    application.include_router(api_router)
    return application


async def request_logging_middleware(request: Request, call_next):
    """Bind the X-Request-ID correlation id and log the request around the handler."""
    request_id = set_request_id(request.headers.get("X-Request-ID"))

    logger.info(
        "Request received",
        method=request.method,
        path=request.url.path,
        client_host=request.client.host if request.client else None,
    )

    try:
        with log_performance(
            logger,
            "request_processing",
            method=request.method,
            path=request.url.path,
        ):
            response = await call_next(request)

        response.headers["X-Request-ID"] = request_id

        logger.info(
            "Request completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
        )
        return response
    finally:
        clear_context()


async def health_check() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "healthy",
        "service": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
    }


async def readiness_check():
    """
    Readiness check verifying database connectivity.

    Returns:
        Readiness status, or a 503 response when the database is unreachable
    """
    settings = get_settings()
    database_ready = await check_database_health(attempts=1)

    if not database_ready:
        logger.warning("Readiness check failed", database="unhealthy")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "not_ready",
                "service": settings.app_name,
                "database": "unhealthy",
            },
        )

    return {
        "status": "ready",
        "service": settings.app_name,
        "version": settings.app_version,
        "database": "healthy",
    }


app = create_app()
