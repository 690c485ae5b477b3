"""
FastAPI Backend for the Fleet Tracker dashboard

Live fleet state (derived status), maintenance alerts and route deviation
episodes over HTTP, plus telemetry ingestion.

The maintenance monitor is started and stopped by the app lifespan.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from fleet_tracker.config_helper import create_orchestrators, create_services, create_store
from logger_config import get_logger
from routers import include_all_routers
from settings import settings
from timezone_utils import utc_now

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger("fleet_tracker.app")


def create_app(store=None, start_monitor: bool = True) -> FastAPI:
    """
    Build the API app.

    Args:
        store: Record store to serve; default is built from STORE_BACKEND
        start_monitor: Run the scheduled maintenance monitor while the app is up
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        get_logger("fleet_tracker")
        logger.info(f"Fleet Tracker API v{settings.app.version} starting...")

        for problem in settings.validate():
            logger.warning(f"[CONFIG] {problem}")

        fleet_store = store if store is not None else create_store()
        services = create_services(fleet_store)
        orchestrators = create_orchestrators(fleet_store, services)
        app.state.store = fleet_store
        app.state.orchestrators = orchestrators

        monitor = orchestrators["monitor"]
        if start_monitor:
            monitor.start()

        logger.info("API ready for connections")
        yield  # App runs here

        # Shutdown
        monitor.stop()
        logger.info("Shutting down Fleet Tracker API")

    app = FastAPI(
        title="Fleet Tracker API",
        description="Truck status, route deviation and maintenance alerting",
        version=settings.app.version,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    include_all_routers(app)

    @app.get("/health")
    def health():
        orchestrators: Optional[dict] = getattr(app.state, "orchestrators", None)
        return {
            "status": "healthy" if orchestrators else "starting",
            "version": settings.app.version,
            "store_backend": settings.app.store_backend,
            "maintenance_monitor": bool(orchestrators and orchestrators["monitor"].running),
            "timestamp": utc_now().isoformat(),
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=settings.app.debug)
