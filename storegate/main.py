"""
storegate Application Factory
=============================

The trust boundary between an e-commerce platform and this app's tenants.

Routers:
    - /auth/*               : Install, load, uninstall and remove-user callbacks
    - /admin, /admin/api/*  : Admin UI entry and admin API (session resolver)
    - /webhooks/*           : Signed webhook deliveries
    - /storefront/*         : Cross-origin storefront endpoints (per-tenant CORS)
    - /health               : Health check endpoint

Environment Variables Required:
    - PLATFORM_CLIENT_ID: App client id
    - PLATFORM_CLIENT_SECRET: App client secret
    - APP_URL: Public base URL of this service
    - SESSION_SECRETS: Comma-separated cookie secrets, newest first
    See storegate/config.py for the rest.

Running the Service:
    Development:
        uvicorn storegate.main:create_app --factory --reload --port 8080

    Production:
        uvicorn storegate.main:create_app --factory --host 0.0.0.0 --port 8080 --workers 4
"""

import logging
import sys
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from .auth.cookies import SessionCookieCodec
from .auth.oauth import OAuthInstallFlow, PostInstallSetup
from .auth.resolver import SessionResolver, unauthenticated_response
from .auth.routes import admin_router, admin_ui_router, auth_router
from .auth.signed_payload import SignedPayloadVerifier
from .config import Settings, get_settings, validate_configuration
from .cors.origins import OriginAllowlistCache, origin_source_for
from .cors.routes import storefront_router
from .errors import SessionNotFoundError, TenantValidationError
from .models import ErrorResponse, HealthResponse
from .platform_api import PlatformApiClient
from .platforms import PlatformProfile, get_platform_profile
from .security_events import SecurityEventLog
from .tasks import TaskQueue
from .tenants.db import create_engine_and_sessionmaker, create_tables
from .tenants.store import TenantSessionStore
from .webhooks.routes import webhook_router
from .webhooks.verification import WebhookSignatureVerifier

logger = logging.getLogger("storegate.main")

SERVICE_NAME = "storegate"
SERVICE_VERSION = "1.0.0"


def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s", "module": "%(module)s", "function": "%(funcName)s"}',
        handlers=[logging.StreamHandler(sys.stdout)]
    )


# =============================================================================
# Service Container
# =============================================================================

@dataclass
class Services:
    """
    Shared resources for one app instance, held on ``app.state.services``.
    """
    settings: Settings
    profile: PlatformProfile
    engine: Optional[AsyncEngine]
    store: TenantSessionStore
    cookies: SessionCookieCodec
    resolver: SessionResolver
    signed_payload_verifier: SignedPayloadVerifier
    webhook_verifier: WebhookSignatureVerifier
    security_events: SecurityEventLog
    task_queue: TaskQueue
    http_client: httpx.AsyncClient
    platform_api: PlatformApiClient
    origin_cache: OriginAllowlistCache
    oauth: OAuthInstallFlow
    owns_http_client: bool = True

    async def revoke_tenant(self, tenant_id: str) -> None:
        """
        Remove everything held for a tenant. Storefront script cleanup needs
        the access token, so it runs before the session is deleted.
        """
        await self.platform_api.cleanup_storefront_scripts(tenant_id)
        await self.store.revoke(tenant_id)
        self.origin_cache.invalidate(tenant_id)


def build_services(
    settings: Settings,
    http_client: Optional[httpx.AsyncClient] = None,
    session_factory: Optional[async_sessionmaker] = None,
    engine: Optional[AsyncEngine] = None,
) -> Services:
    """
    Construct every service from settings.

    Args:
        settings: Validated settings
        http_client: Client for platform calls; created (and owned) if omitted
        session_factory: Database session factory; created from DATABASE_URL if omitted
        engine: Engine behind session_factory, when one is passed in

    Returns:
        Services container
    """
    profile = get_platform_profile(settings.PLATFORM)

    if session_factory is None:
        engine, session_factory = create_engine_and_sessionmaker(settings.DATABASE_URL)

    owns_http_client = http_client is None
    if http_client is None:
        http_client = httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS)

    store = TenantSessionStore(session_factory)
    cookies = SessionCookieCodec(
        settings.session_secrets_list,
        cookie_name=settings.SESSION_COOKIE_NAME,
        max_age_seconds=settings.SESSION_MAX_AGE_SECONDS,
    )
    security_events = SecurityEventLog()
    task_queue = TaskQueue(workers=settings.TASK_WORKERS, max_attempts=settings.TASK_MAX_ATTEMPTS)
    platform_api = PlatformApiClient(
        http_client,
        profile,
        store,
        app_url=settings.app_url_str,
        shared_header_secret=settings.WEBHOOK_SHARED_HEADER_SECRET,
    )

    return Services(
        settings=settings,
        profile=profile,
        engine=engine,
        store=store,
        cookies=cookies,
        resolver=SessionResolver(store, cookies, profile),
        signed_payload_verifier=SignedPayloadVerifier(
            settings.PLATFORM_CLIENT_ID,
            settings.PLATFORM_CLIENT_SECRET,
            profile,
            enforce_claims=settings.SIGNED_PAYLOAD_ENFORCE_CLAIMS,
        ),
        webhook_verifier=WebhookSignatureVerifier(
            settings.webhook_secret,
            tolerance_seconds=settings.WEBHOOK_TOLERANCE_SECONDS,
        ),
        security_events=security_events,
        task_queue=task_queue,
        http_client=http_client,
        platform_api=platform_api,
        origin_cache=OriginAllowlistCache(
            origin_source_for(profile, platform_api),
            ttl_seconds=settings.ORIGIN_CACHE_TTL_SECONDS,
            max_entries=settings.ORIGIN_CACHE_MAX_ENTRIES,
            dev_origins_allowed=settings.dev_origins_allowed,
            security_events=security_events,
        ),
        oauth=OAuthInstallFlow(
            http_client,
            profile,
            client_id=settings.PLATFORM_CLIENT_ID,
            client_secret=settings.PLATFORM_CLIENT_SECRET,
            redirect_uri=settings.install_callback_url,
            store=store,
            task_queue=task_queue,
            setup=PostInstallSetup(platform_api, store, profile),
        ),
        owns_http_client=owns_http_client,
    )


# =============================================================================
# Lifespan
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup tasks:
        - Configure logging and report configuration warnings
        - Create database tables
        - Start the background task queue

    Shutdown tasks:
        - Stop the task queue (short drain)
        - Close the HTTP client and dispose of the engine
    """
    services: Services = app.state.services
    settings = services.settings

    setup_logging(settings.LOG_LEVEL)

    report = validate_configuration(settings)
    for error in report["errors"]:
        logger.error(f"Configuration error: {error}")
    for warning in report["warnings"]:
        logger.warning(f"Configuration warning: {warning}")

    if services.engine is not None:
        await create_tables(services.engine)
    await services.task_queue.start()

    logger.info(
        "storegate started",
        extra={
            "service": SERVICE_NAME,
            "version": SERVICE_VERSION,
            "platform": services.profile.name,
            "environment": settings.ENVIRONMENT,
        },
    )

    yield

    logger.info("Shutting down storegate")
    await services.task_queue.stop()
    if services.owns_http_client:
        await services.http_client.aclose()
    if services.engine is not None:
        await services.engine.dispose()
    logger.info("storegate shutdown complete")


# =============================================================================
# Application Factory
# =============================================================================

def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    """
    Application factory function.

    Args:
        settings: Settings to use; loaded from the environment if omitted
        services: Prebuilt services (tests); built from settings if omitted

    Returns:
        FastAPI: Configured application instance
    """
    if services is None:
        services = build_services(settings or get_settings())
    settings = services.settings

    app = FastAPI(
        title="storegate",
        description="Tenant trust boundary for e-commerce platform integrations",
        version=SERVICE_VERSION,
        lifespan=lifespan,
        docs_url=None if settings.is_production else "/docs",
        redoc_url=None,
    )
    app.state.services = services

    app.include_router(auth_router)
    app.include_router(admin_ui_router)
    app.include_router(admin_router)
    app.include_router(webhook_router)
    app.include_router(storefront_router)

    @app.get("/health", response_model=HealthResponse, tags=["System"])
    async def health_check() -> HealthResponse:
        return HealthResponse(status="ok", service=SERVICE_NAME, platform=services.profile.name)

    @app.exception_handler(SessionNotFoundError)
    async def session_not_found_handler(request: Request, exc: SessionNotFoundError):
        return unauthenticated_response(request)

    @app.exception_handler(TenantValidationError)
    async def tenant_validation_handler(request: Request, exc: TenantValidationError) -> JSONResponse:
        logger.warning("Invalid tenant identifier", extra={"path": request.url.path})
        return JSONResponse(
            status_code=400,
            content=ErrorResponse(error="invalid_tenant", message="Invalid tenant identifier").model_dump(mode="json"),
        )

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """
        Global exception handler for unhandled errors.

        Logs the error and returns a generic error response.
        """
        logger.error(
            f"Unhandled exception: {type(exc).__name__}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "exception_type": type(exc).__name__,
            },
            exc_info=True,
        )
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                error="internal_server_error",
                message="An unexpected error occurred",
            ).model_dump(mode="json"),
        )

    return app


def run() -> None:
    """
    Direct execution entry point.

    This allows running the service with: python -m storegate.main
    However, using uvicorn command is recommended for production.
    """
    settings = get_settings()

    uvicorn.run(
        "storegate.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=8080,
        reload=not settings.is_production,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    run()
