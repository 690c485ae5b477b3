"""
Fleet Tracker - derived-state and geospatial alerting engine

Layers:
- models: records, enums and result types
- services: pure evaluators (status, deviation, maintenance) and lifecycle managers
- repositories: FleetStore interface, in-memory and MySQL stores
- orchestrators: telemetry ingestion, maintenance monitor, read-side projections
"""

__version__ = "1.0.0"
