"""FastAPI application factory for the round coordinator.

The api layer:
- Validates payloads and converts them to domain documents
- Delegates every state change to the RoundCoordinator
- Forbidden: merging or round bookkeeping of its own
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, HTTPException, Request

from tacsync.config import CoordinatorConfig
from tacsync.coordinator.flight import JsonFlightRecorder
from tacsync.coordinator.rounds import RoundCoordinator
from tacsync.db.session import init_db, session_factory
from tacsync.worker.ticker import Ticker

logger = logging.getLogger(__name__)


def get_coordinator(request: Request) -> RoundCoordinator:
    """Dependency returning the app's coordinator.

    Raises:
        HTTPException: 503 if no coordinator is configured.
    """
    coordinator = getattr(request.app.state, "coordinator", None)
    if coordinator is None:
        raise HTTPException(status_code=503, detail="Coordinator not available")
    return coordinator


def build_coordinator(config: CoordinatorConfig) -> RoundCoordinator:
    """Create a persistent coordinator from configuration."""
    engine = init_db(config.db_path)
    flight_recorder = JsonFlightRecorder(config.flight_log_dir) if config.flight_log_dir else None
    return RoundCoordinator(
        session_factory(engine),
        contributor_threshold=config.contributor_threshold,
        round_deadline=config.round_deadline,
        flight_recorder=flight_recorder,
    )


def create_app(
    coordinator: RoundCoordinator | None = None,
    config: CoordinatorConfig | None = None,
) -> FastAPI:
    """Create FastAPI application.

    Args:
        coordinator: Coordinator to serve. When omitted, one is built from
            config (or the environment) at startup and its tick timer runs
            for the lifetime of the app.
        config: Optional coordinator configuration.

    Returns:
        Configured FastAPI application.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        ticker = None
        if app.state.coordinator is None:
            settings = config or CoordinatorConfig.from_env()
            app.state.coordinator = build_coordinator(settings)
            ticker = Ticker(
                app.state.coordinator.tick,
                settings.tick_interval.total_seconds(),
                name="tacsync-round-ticker",
            )
        round_entity = app.state.coordinator.start()
        logger.info(f"Coordinator serving round {round_entity.round_number}")
        if ticker is not None:
            ticker.start()
        try:
            yield
        finally:
            if ticker is not None:
                ticker.stop()

    app = FastAPI(
        title="tacsync coordinator",
        description="Federated tactic statistics: contributions in, round snapshots out",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.coordinator = coordinator

    # Include routes
    from tacsync.api.routes import contributions, snapshots

    app.include_router(contributions.router, prefix="/api")
    app.include_router(snapshots.router, prefix="/api")

    # Health check endpoint
    @app.get("/health")
    def health_check():
        """Health check endpoint."""
        return {"status": "ok"}

    return app
