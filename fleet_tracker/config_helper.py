"""
Configuration helper for the Fleet Tracker architecture

Wires settings into the store, services and orchestrators.

Usage:
    from fleet_tracker.config_helper import setup_architecture

    store, services, orchestrators = setup_architecture()
    orchestrators["pipeline"].ingest(sample)
"""

import logging
from typing import Any, Dict, Optional

from settings import APP, DATABASE, MAINTENANCE

logger = logging.getLogger(__name__)


def get_db_config() -> Dict[str, Any]:
    """
    Get MySQL connection config in format expected by MySQLFleetStore.

    Returns:
        Dict with keys: host, port, user, password, database, charset, connect_timeout
    """
    return DATABASE.get_connection_dict()


def create_store(backend: Optional[str] = None, db_config: Optional[Dict[str, Any]] = None):
    """
    Create the record store.

    Args:
        backend: "memory" or "mysql" (default: STORE_BACKEND setting)
        db_config: Optional DB config for mysql. If None, uses get_db_config()
    """
    from fleet_tracker.repositories import InMemoryFleetStore, MySQLFleetStore

    backend = (backend or APP.store_backend).lower()
    if backend == "memory":
        logger.info("Using in-memory fleet store")
        return InMemoryFleetStore()
    if backend == "mysql":
        store = MySQLFleetStore(db_config or get_db_config())
        store.ensure_schema()
        return store
    raise ValueError(f"Unknown store backend: {backend!r} (expected 'memory' or 'mysql')")


def create_services(store) -> Dict[str, Any]:
    """
    Create all service instances bound to the store.

    Returns:
        {'classifier', 'episodes', 'alerts', 'deliveries'}
    """
    from fleet_tracker.services import (
        AlertLifecycleManager,
        DeliveryWorkflow,
        EpisodeTracker,
        StatusClassifier,
    )

    return {
        "classifier": StatusClassifier(),
        "episodes": EpisodeTracker(store),
        "alerts": AlertLifecycleManager(store),
        "deliveries": DeliveryWorkflow(store),
    }


def create_orchestrators(store, services: Dict[str, Any]) -> Dict[str, Any]:
    """
    Create the ingestion pipeline, maintenance monitor and read-side orchestrator.

    The pipeline and the monitor share one TruckLocks registry so per-truck
    writes stay serialized across both.
    """
    from fleet_tracker.orchestrators import (
        FleetOrchestrator,
        MaintenanceMonitor,
        TelemetryIngestionPipeline,
        TruckLocks,
    )

    truck_locks = TruckLocks()
    return {
        "pipeline": TelemetryIngestionPipeline(
            store,
            classifier=services["classifier"],
            episode_tracker=services["episodes"],
            truck_locks=truck_locks,
        ),
        "monitor": MaintenanceMonitor(
            store,
            lifecycle=services["alerts"],
            truck_locks=truck_locks,
            interval_minutes=MAINTENANCE.interval_minutes,
        ),
        "fleet": FleetOrchestrator(
            store,
            classifier=services["classifier"],
            episode_tracker=services["episodes"],
            lifecycle=services["alerts"],
            deliveries=services["deliveries"],
        ),
    }


# Quick setup function for convenience
def setup_architecture(backend: Optional[str] = None):
    """
    One-liner to set up entire architecture.

    Returns:
        Tuple of (store, services, orchestrators)
    """
    store = create_store(backend)
    services = create_services(store)
    orchestrators = create_orchestrators(store, services)
    return store, services, orchestrators
