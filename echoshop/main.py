"""
Echo Shop security API.

Run with:
    uvicorn echoshop.main:app
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from echoshop.api import account_routes, admin_routes, auth_routes, two_factor_routes, vendor_product_routes
from echoshop.config import Settings, get_settings
from echoshop.database import check_db_connection
from echoshop.error_handlers import register_error_handlers
from echoshop.logging_config import setup_logging, log_requests_middleware
from echoshop.metrics import metrics_router, metrics_middleware
from echoshop.middleware.rate_limit import limiter, rate_limit_handler
from echoshop.middleware.security import SecurityHeadersMiddleware, RequestSizeLimitMiddleware
from echoshop.services.encryption import INSECURE_DEFAULT_KEY, get_secret_cipher
from echoshop.services.scheduler import start_scheduler, stop_scheduler

settings = get_settings()

setup_logging(
    log_level=settings.log_level,
    log_dir=settings.log_dir or None,
    app_name="echoshop-security",
    enable_json=settings.log_json
)
logger = logging.getLogger(__name__)

API_ROUTERS = (
    auth_routes.router,
    two_factor_routes.challenge_router,
    two_factor_routes.router,
    account_routes.router,
    vendor_product_routes.router,
    admin_routes.router,
)


def check_secrets(config: Settings):
    """
    Refuse to start with an empty or placeholder signing/encryption key.

    Debug mode downgrades the refusal to a warning so tests and local
    development can run with throwaway keys.
    """
    placeholders = {
        "JWT_SECRET_KEY": (config.jwt_secret_key, {""}),
        "ENCRYPTION_KEY": (config.encryption_key, {"", INSECURE_DEFAULT_KEY}),
    }
    for name, (value, insecure) in placeholders.items():
        value = value.strip()
        if value and value not in insecure and not value.startswith("CHANGE_ME"):
            continue

        message = (
            f"{name} is missing or set to a known insecure default. "
            "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(64))\""
        )
        if not config.debug:
            raise RuntimeError(message)
        logger.warning(f"INSECURE {name}: {message} Allowed only because DEBUG is on.")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.app_name}")
    check_secrets(settings)
    # Key derivation is deliberately slow; pay for it before the first request
    get_secret_cipher()

    if settings.enable_scheduler:
        start_scheduler()

    yield

    if settings.enable_scheduler:
        stop_scheduler()
    logger.info(f"Stopped {settings.app_name}")


def create_app() -> FastAPI:
    application = FastAPI(
        title=settings.app_name,
        description="Echo Shop authentication and two-factor security API",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    # Middleware added first runs last
    application.add_middleware(
        SecurityHeadersMiddleware,
        enable_hsts=settings.enable_hsts and not settings.debug,
    )
    application.add_middleware(RequestSizeLimitMiddleware, max_content_length=settings.max_request_size)

    if settings.cors_origin_list:
        application.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origin_list,
            allow_credentials=True,
            allow_methods=["GET", "POST", "PATCH", "DELETE"],
            allow_headers=["Authorization", "Content-Type", "x-2fa-session-token"],
        )

    application.state.limiter = limiter
    application.add_exception_handler(RateLimitExceeded, rate_limit_handler)
    application.add_middleware(SlowAPIMiddleware)

    register_error_handlers(application)

    if settings.enable_request_logging:
        application.middleware("http")(log_requests_middleware)
    application.middleware("http")(metrics_middleware)

    for router in API_ROUTERS:
        application.include_router(router, prefix="/api")
    application.include_router(metrics_router)
    application.add_api_route("/health", health_check, methods=["GET"])

    return application


async def health_check():
    """Liveness plus a database round-trip"""
    db_connected = check_db_connection()
    logger.debug("Health check performed", extra={"db_connected": db_connected})

    return {
        "status": "healthy" if db_connected else "unhealthy",
        "service": settings.app_name,
        "database": "connected" if db_connected else "disconnected",
    }


app = create_app()
