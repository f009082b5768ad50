"""Tenant gateway FastAPI application."""

import signal
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.openapi.utils import get_openapi

from tenant_gateway.infra.config import config


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Log startup; release the upstream client, DB pool and Redis on shutdown."""
    from tenant_gateway.infra.logging import app_logger
    app_logger.info(
        "Tenant gateway starting",
        extra={
            "app_env": config.APP_ENV,
            "rate_limit_backend": config.RATE_LIMIT_BACKEND,
            "connection_store_backend": config.CONNECTION_STORE_BACKEND,
        },
    )

    yield

    app_logger.info("Tenant gateway shutting down")

    from tenant_gateway.adapters.connector_client import close_connector
    await close_connector()

    from tenant_gateway.infra.database import dispose_engine
    dispose_engine()

    from tenant_gateway.infra import rate_limiter
    if rate_limiter.redis_client is not None:
        rate_limiter.redis_client.close()

    from tenant_gateway.infra.connection_store import close_connection_store
    close_connection_store()


API_DESCRIPTION = """
Tenant authorization and social account linking for the scheduling dashboard.

## Features

- **Account Linking**: OAuth connect URLs, callback routing, and entity
  selection for Facebook, LinkedIn, Pinterest, Google Business and Snapchat
- **API Keys**: Issue and revoke the tenant's API key
- **Public API**: Rate-limited endpoints for API-key holders
- **Admin**: Manage tenant records

## Authentication

- Browser routes use the session cookie.
- Public API routes use `Authorization: Bearer tg_sk_...`.
- `X-Profile-Id` selects another external profile the tenant can act as.
"""

TAGS_METADATA = [
    {"name": "Connect", "description": "OAuth account linking and entity selection"},
    {"name": "Settings", "description": "API key management for the signed-in tenant"},
    {"name": "Public API", "description": "API-key authenticated, rate-limited endpoints"},
    {"name": "Admin", "description": "Admin console and tenant management"},
    {"name": "Health", "description": "Health check and monitoring endpoints"},
]

app = FastAPI(
    title="Tenant Gateway API",
    description=API_DESCRIPTION,
    version="1.0.0",
    lifespan=lifespan,
    tags_metadata=TAGS_METADATA,
)

# Middleware (last added runs first)
from tenant_gateway.infra.middleware import (
    RequestIDMiddleware,
    RequestLoggingMiddleware,
    RequestSizeLimitMiddleware,
    setup_cors,
)

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(RequestIDMiddleware)
app.add_middleware(RequestSizeLimitMiddleware)
setup_cors(app)

# Error handlers
from tenant_gateway.infra.error_handler import register_error_handlers

register_error_handlers(app)

# Routers
from tenant_gateway.api.routers import admin, connect, health, settings, v1

app.include_router(connect.router)
app.include_router(settings.router)
app.include_router(v1.router)
app.include_router(admin.router)
app.include_router(health.router)


def custom_openapi():
    """OpenAPI document with the bearer key and session cookie schemes declared."""
    if app.openapi_schema:
        return app.openapi_schema

    openapi_schema = get_openapi(
        title=app.title,
        version=app.version,
        description=app.description,
        routes=app.routes,
        tags=app.openapi_tags,
    )

    schemes = openapi_schema.setdefault("components", {}).setdefault("securitySchemes", {})
    schemes["BearerApiKey"] = {
        "type": "http",
        "scheme": "bearer",
        "description": "Tenant API key: `Authorization: Bearer tg_sk_<32 characters>`",
    }
    schemes["SessionCookie"] = {
        "type": "apiKey",
        "in": "cookie",
        "name": config.SESSION_COOKIE_NAME,
        "description": "Browser session issued by the dashboard login",
    }

    app.openapi_schema = openapi_schema
    return app.openapi_schema


app.openapi = custom_openapi


if __name__ == "__main__":
    import uvicorn

    def signal_handler(sig, frame):
        print("\nShutting down gracefully...")
        # Uvicorn handles shutdown automatically

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    uvicorn.run(
        app,
        host="0.0.0.0",
        port=8000,
        timeout_keep_alive=30,
        timeout_graceful_shutdown=30,
    )
