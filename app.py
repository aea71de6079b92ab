"""
app.py — FastAPI application factory and startup lifecycle.

This is the ASGI application object imported by uvicorn.
It wires the reservation engine, registers routers, and runs startup
initialization.

Usage (via launcher):
    python main.py

Usage (direct uvicorn):
    uvicorn app:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from parkbot.controllers.admin_controller import router as admin_router
from parkbot.controllers.reservation_controller import router as reservation_router
from parkbot.repository.data_repository import DataRepository
from parkbot.services.auth_service import AuthService
from parkbot.services.notification_service import LoggingNotifier
from parkbot.services.reservation_service import ReservationEngine
from parkbot.utils.config import get_settings
from parkbot.utils.logger import configure_logging, get_logger


logger = get_logger(__name__)


def create_app() -> FastAPI:
    """
    Build and wire the FastAPI application.

    Every dependency is created here and injected via app.state, so the
    whole object graph is traceable from this function.
    """
    settings = get_settings()
    configure_logging(settings.log_level)

    # --- Repository (single SQLite connection factory) ---
    repository = DataRepository(settings)

    # --- Services ---
    engine = ReservationEngine(
        repository=repository,
        settings=settings,
        notifier=LoggingNotifier(),
    )
    auth_service = AuthService(settings=settings, clock=engine.clock)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Run startup initialization before accepting requests."""
        _startup(app)
        yield
        _shutdown(app)

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    # --- Routers ---
    app.include_router(reservation_router)
    app.include_router(admin_router)

    # --- Inject services into app.state for dependency resolution ---
    app.state.repository = repository
    app.state.engine = engine
    app.state.auth_service = auth_service

    return app


def _startup(app: FastAPI) -> None:
    """
    Idempotent startup sequence. Safe to re-run on server restarts.

    Order matters:
      1. Schema must exist before seeding.
      2. Spot inventory is seeded only when both spot tables are empty.
      3. The engine catches up on any cutover missed while offline, then
         arms the weekly reset timer.
    """
    settings = get_settings()
    repository: DataRepository = app.state.repository
    engine: ReservationEngine = app.state.engine

    logger.info("Startup: initializing database schema")
    repository.initialize_database()

    logger.info("Startup: seeding spot inventory (skipped if spots already exist)")
    repository.seed_spots_if_empty(settings.initial_flex_spots, settings.initial_fixed_spots)

    logger.info("Startup: starting cycle reset schedule")
    engine.start()

    logger.info("Startup complete, accepting reservations")


def _shutdown(app: FastAPI) -> None:
    """Resolve pending lottery buffers and cancel timers."""
    engine: ReservationEngine = app.state.engine
    logger.info("Shutdown: resolving pending lottery queues")
    engine.shutdown()


# Module-level app object for uvicorn
app = create_app()
