"""Orchestrator layer for coordinating services and the record store."""

from .fleet_orchestrator import FleetOrchestrator
from .maintenance_monitor import MaintenanceCycleReport, MaintenanceMonitor
from .telemetry_pipeline import (
    BatchReport,
    TelemetryCycleResult,
    TelemetryIngestionPipeline,
    accrue_odometer,
)
from .truck_locks import TruckLocks

__all__ = [
    "BatchReport",
    "FleetOrchestrator",
    "MaintenanceCycleReport",
    "MaintenanceMonitor",
    "TelemetryCycleResult",
    "TelemetryIngestionPipeline",
    "TruckLocks",
    "accrue_odometer",
]
