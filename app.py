"""
app.py: FastAPI application factory and startup lifecycle.

This is the ASGI application object imported by uvicorn.
It wires all services, registers routers, and runs startup initialization.

Usage (via launcher):
    python main.py

Usage (direct uvicorn):
    uvicorn app:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from clinic_insights.controllers.behavior_controller import router as behavior_router
from clinic_insights.controllers.dashboard_controller import router as dashboard_router
from clinic_insights.repository.data_repository import DataRepository
from clinic_insights.services.auth_service import AuthService
from clinic_insights.services.overview_service import BehaviorOverviewService
from clinic_insights.services.profile_service import BehaviorProfileService
from clinic_insights.services.recommendation_service import RecommendationService
from clinic_insights.services.waitlist_service import WaitlistService
from clinic_insights.utils.config import Settings, get_settings
from clinic_insights.utils.logger import configure_logging, get_logger


logger = get_logger(__name__)


def create_app(settings: Optional[Settings] = None, seed: bool = True) -> FastAPI:
    """
    Build and wire the FastAPI application.

    Instantiates all services with explicit dependency injection via app.state.
    Every dependency is traceable from this function.
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    # --- Repository (SQLite connection factory) ---
    repository = DataRepository(settings)

    # --- Services ---
    profile_service = BehaviorProfileService(repository=repository, settings=settings)
    recommendation_service = RecommendationService(
        repository=repository,
        settings=settings,
        profile_service=profile_service,
    )
    waitlist_service = WaitlistService(repository=repository, settings=settings)
    overview_service = BehaviorOverviewService(
        repository=repository,
        settings=settings,
        profile_service=profile_service,
    )
    auth_service = AuthService(settings=settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Run startup initialization before accepting requests."""
        _startup(app, seed=seed)
        yield

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    # --- Routers ---
    app.include_router(dashboard_router)
    app.include_router(behavior_router)

    # --- Inject services into app.state for dependency resolution ---
    app.state.repository = repository
    app.state.profile_service = profile_service
    app.state.recommendation_service = recommendation_service
    app.state.waitlist_service = waitlist_service
    app.state.overview_service = overview_service
    app.state.auth_service = auth_service

    return app


def _startup(app: FastAPI, seed: bool = True) -> None:
    """
    Idempotent startup sequence. Safe to re-run on server restarts.

    Schema must exist before seeding; seeding is skipped when users exist.
    """
    repository: DataRepository = app.state.repository

    logger.info("Startup: initializing database schema")
    repository.initialize_database()

    if seed:
        logger.info("Startup: seeding synthetic clinic history")
        repository.seed_synthetic_data()

    logger.info("Startup complete | database=%s", repository.database_path)


# Module-level app object for uvicorn
app = create_app()
