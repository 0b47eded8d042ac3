"""Client Portal API — FastAPI application entry point.

Invariants:
    - Routes registered explicitly (no auto-discovery)
    - Global error handlers map PortalError → structured JSON responses
    - CORS configured from settings (not hardcoded)
    - Database initialized on startup via lifespan context manager

Design Decisions:
    - Lifespan over @app.on_event: FastAPI recommended pattern, cleaner cleanup
    - Error handlers live in api/error_handlers.py to keep this module's imports small
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from portal.api.error_handlers import register_error_handlers
from portal.api.routes import (
    admin, admin_customers, admin_users, auth, health, issues, linear,
    superadmin, system, teams, user_teams,
)
from portal.config import get_settings
from portal.infrastructure.database import close_db, init_db
from portal.infrastructure.observability import setup_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle."""
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_format)
    init_db(
        settings.database_url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
    )
    logger.info(f"Client Portal API {settings.app_version} started ({settings.environment})")
    yield
    logger.info("Client Portal API shutting down")
    await close_db()


settings = get_settings()
app = FastAPI(
    title="Client Portal API", version=settings.app_version, lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(system.router)
app.include_router(auth.router)
app.include_router(admin.router)
app.include_router(admin_users.router)
app.include_router(admin_customers.router)
app.include_router(superadmin.router)
app.include_router(teams.router)
app.include_router(user_teams.router)
app.include_router(issues.router)
app.include_router(linear.router)

register_error_handlers(app)
