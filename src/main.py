"""Safeline FastAPI application entry point.

Creates the FastAPI app, configures middleware and exception handlers,
includes routers, and manages the lifecycle of the SOS services
(document store, mailer, contact registry, notification store, alert
dispatcher, location request state machine, escalation scheduler).
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from config.settings import Settings, settings
from src.api.errors import register_exception_handlers
from src.api.router import api_router
from src.services.clock import Clock, utc_now

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Structured logging configuration
# ---------------------------------------------------------------------------


def _configure_logging(app_settings: Settings) -> None:
    """Set up structlog with JSON or console rendering based on settings."""
    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if app_settings.log_format == "json":
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            app_settings.log_level,
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Application lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage startup and shutdown of all Safeline services.

    On startup:
      1. Open the document store and ensure its indexes
      2. Initialise the mailer and verify its configuration
      3. Build the registry, notification store and dispatcher
      4. Build the location request state machine and manual SOS service
      5. Start the escalation scheduler (sweep now, then every interval)
      6. Store everything on ``app.state``

    On shutdown:
      - Stop the escalation scheduler.
      - Release the sweep lock and the document store connections.
    """
    app_settings: Settings = app.state.settings
    clock: Clock = app.state.clock

    _configure_logging(app_settings)
    logger.info(
        "app.startup",
        env=app_settings.env,
        storage=app_settings.storage_backend,
        email_provider=app_settings.email_provider,
    )

    app.state.start_time = time.time()

    # -- 1. Document store ----------------------------------------------------
    from src.services.storage import build_document_store

    store = build_document_store(app_settings)
    if not await store.ping():
        logger.error("app.store_unreachable", backend=app_settings.storage_backend)
        raise RuntimeError(f"Document store ({app_settings.storage_backend}) is unreachable")
    await store.ensure_indexes()
    app.state.store = store
    logger.info("app.store_initialised", backend=app_settings.storage_backend)

    # -- 2. Mailer --------------------------------------------------------------
    from src.services.mailer import EmailService

    mailer = EmailService.from_settings(app_settings)
    # A misconfigured mailer is not fatal; per-recipient failures are reported
    await mailer.verify()
    app.state.mailer = mailer

    # -- 3. Registry, notifications, dispatcher ---------------------------------
    from src.services.contacts import ContactRegistry
    from src.services.dispatcher import AlertDispatcher
    from src.services.notifications import NotificationStore

    contacts = ContactRegistry(store, clock=clock)
    notifications = NotificationStore(store, clock=clock, poll_limit=app_settings.notification_poll_limit)
    dispatcher = AlertDispatcher(notifications, mailer)
    app.state.contacts = contacts
    app.state.notifications = notifications
    app.state.dispatcher = dispatcher

    # -- 4. State machine and manual SOS ----------------------------------------
    from src.services.location_requests import LocationRequestService
    from src.services.sos import SOSService

    location_requests = LocationRequestService(store, contacts, notifications, mailer, clock=clock)
    app.state.location_requests = location_requests
    app.state.sos = SOSService(contacts, dispatcher, clock=clock)
    logger.info("app.sos_services_initialised")

    # -- 5. Escalation ------------------------------------------------------------
    from src.services.escalation import EscalationScheduler, EscalationSweeper
    from src.services.sweep_lock import SweepLock

    sweep_lock = SweepLock(
        redis_url=app_settings.redis_url or None,
        ttl_seconds=app_settings.sweep_lock_ttl_seconds,
    )
    sweeper = EscalationSweeper(location_requests, contacts, dispatcher, lock=sweep_lock, clock=clock)
    app.state.sweeper = sweeper

    scheduler: EscalationScheduler | None = None
    if app_settings.enable_escalation_scheduler:
        scheduler = EscalationScheduler(
            sweeper,
            interval_seconds=app_settings.sweep_interval_seconds,
            clock=clock,
        )
        scheduler.start()
        logger.info("app.escalation_scheduler_started", interval_s=app_settings.sweep_interval_seconds)
    else:
        logger.info("app.escalation_scheduler_disabled")
    app.state.scheduler = scheduler

    logger.info("app.startup_complete")

    yield

    # -- Shutdown -----------------------------------------------------------
    logger.info("app.shutdown_start")

    if scheduler is not None:
        await scheduler.stop()

    await sweep_lock.close()
    await store.close()

    logger.info("app.shutdown_complete")


# ---------------------------------------------------------------------------
# FastAPI application
# ---------------------------------------------------------------------------


def create_app(app_settings: Settings | None = None, *, clock: Clock = utc_now) -> FastAPI:
    """Build the application.  Tests pass their own settings and clock."""
    app_settings = app_settings or settings

    app = FastAPI(
        title="Safeline API",
        description=(
            "Personal-safety SOS service: emergency contacts, location requests "
            "with a 30-minute response window, and automatic escalation to every "
            "emergency contact when a request goes unanswered."
        ),
        version="0.1.0",
        lifespan=lifespan,
        default_response_class=ORJSONResponse,
        docs_url="/docs" if not app_settings.is_production else None,
        redoc_url="/redoc" if not app_settings.is_production else None,
    )
    app.state.settings = app_settings
    app.state.clock = clock

    # -- CORS middleware ----------------------------------------------------
    # allow_credentials=True must not be combined with allow_origins=["*"]
    if app_settings.is_production:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=app_settings.cors_origin_list,
            allow_credentials=True,
            allow_methods=["GET", "POST"],
            allow_headers=["Content-Type", "Authorization", "X-Admin-API-Key"],
        )
    else:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=app_settings.cors_origin_list,
            allow_credentials=False,
            allow_methods=["GET", "POST", "OPTIONS", "HEAD"],
            allow_headers=["Content-Type", "Accept", "Authorization", "X-Admin-API-Key"],
        )

    register_exception_handlers(app)

    # -- Include routers -----------------------------------------------------
    app.include_router(api_router)

    return app


app = create_app()
