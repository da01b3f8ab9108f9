"""
ClawDeck API - Main Application
===============================

FastAPI application entry point with middleware configuration
and route registration.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import newrelic.agent

# Configure logging for the application (root logger defaults to WARNING)
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError

from app.api.v1 import admin, analytics, auth, boards, cable, comments, hooks, notifications, tasks, tokens
from app.config import settings
from app.core.errors import setup_exception_handlers
from app.db.session import close_db, init_db
from app.services.cache import close_redis, init_redis

logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"


# =============================================================================
# New Relic Transaction Enrichment Middleware (Raw ASGI)
# =============================================================================

class NewRelicTransactionMiddleware:
    """
    Raw ASGI middleware that adds custom attributes to every New Relic
    transaction: method, route pattern, status, latency, client IP and
    the authenticated user.

    Raw ASGI keeps the handler in the same task, so New Relic's
    contextvars-based child spans (Redis, DB) stay attached.
    """

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start = time.perf_counter()
        status_code = 500

        async def send_wrapper(message):
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            duration_ms = (time.perf_counter() - start) * 1000

            txn = newrelic.agent.current_transaction()
            if txn:
                route = scope.get("route")
                route_path = route.path if route else scope.get("path", "unknown")

                client = scope.get("client")
                client_ip = client[0] if client else "unknown"

                newrelic.agent.add_custom_attributes([
                    ("http.method", scope.get("method", "")),
                    ("http.route", route_path),
                    ("http.status_code", status_code),
                    ("http.duration_ms", round(duration_ms, 2)),
                    ("http.client_ip", client_ip),
                    ("environment", settings.ENVIRONMENT),
                ])

                # Set by the auth dependency
                state = scope.get("state") or {}
                user_id = state.get("user_id")
                if user_id:
                    newrelic.agent.add_custom_attribute("enduser.id", str(user_id))
                auth_source = state.get("auth_source")
                if auth_source:
                    newrelic.agent.add_custom_attribute("clawdeck.auth_source", auth_source)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Connects PostgreSQL and Redis on startup and releases them on
    shutdown. A failed connection is logged and startup continues so
    the health check still answers.
    """
    logger.info("Starting ClawDeck API (%s)", settings.ENVIRONMENT)

    try:
        await init_db()
    except (SQLAlchemyError, OSError, ValueError) as e:
        logger.error("Database connection failed: %s", e)

    try:
        await init_redis()
    except (RedisError, OSError) as e:
        logger.error("Redis connection failed: %s", e)

    if not settings.HOOKS_TOKEN:
        logger.warning("HOOKS_TOKEN is not set; every /api/v1/hooks call will be rejected")

    yield

    logger.info("Shutting down ClawDeck API")
    await close_db()
    await close_redis()


# Create FastAPI application
app = FastAPI(
    title="ClawDeck API",
    description="""
## ClawDeck

Kanban task tracking shared between people and their AI agents.

### Features
- **Authentication**: Email/password, emailed sign-in codes and GitHub OAuth
- **Agents**: API tokens, claim/complete workflow and gateway hooks
- **Boards**: Kanban columns with real-time updates over WebSockets
- **Analytics**: Token usage, cost snapshots and budgets

### Rate Limits
- Authentication: 5 requests/minute
- Creation endpoints: 30 requests/minute
- Read endpoints: 100 requests/minute
- Hooks: 30 requests/minute per IP
    """,
    version=API_VERSION,
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
    openapi_url="/openapi.json" if settings.is_development else None,
    lifespan=lifespan,
    responses={
        401: {"description": "Not authenticated"},
        403: {"description": "Admin access required"},
        404: {"description": "Resource not found"},
        409: {"description": "Resource conflict"},
        422: {"description": "Validation error"},
        429: {"description": "Rate limit exceeded"},
        500: {"description": "Internal server error"},
    },
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(NewRelicTransactionMiddleware)

setup_exception_handlers(app)


# =============================================================================
# Health Check Endpoints
# =============================================================================

@app.get("/health", tags=["Health"])
async def health_check() -> dict:
    """Liveness check."""
    return {
        "status": "healthy",
        "version": API_VERSION,
        "environment": settings.ENVIRONMENT,
    }


@app.get("/", tags=["Health"])
async def root() -> dict:
    """Root endpoint with API information."""
    return {
        "name": "ClawDeck API",
        "version": API_VERSION,
        "docs": "/docs" if settings.is_development else "Disabled in production",
    }


# =============================================================================
# API Routes
# =============================================================================

app.include_router(auth.router, prefix="/api/v1/auth", tags=["Authentication"])
app.include_router(tokens.router, prefix="/api/v1/tokens", tags=["API Tokens"])
app.include_router(boards.router, prefix="/api/v1/boards", tags=["Boards"])
app.include_router(tasks.router, prefix="/api/v1/tasks", tags=["Tasks"])
app.include_router(comments.router, prefix="/api/v1/tasks", tags=["Comments"])
app.include_router(notifications.router, prefix="/api/v1/notifications", tags=["Notifications"])
app.include_router(hooks.router, prefix="/api/v1/hooks", tags=["Hooks"])
app.include_router(analytics.router, prefix="/api/v1/analytics", tags=["Analytics"])
app.include_router(admin.router, prefix="/api/v1/admin", tags=["Admin"])

# Real-time channels (WebSocket)
app.include_router(cable.router, prefix="/api/v1/cable", tags=["Cable"])
