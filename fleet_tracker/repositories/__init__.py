"""Repository layer: record store interface and its implementations."""

from .fleet_store import ChangeListener, ChangeNotifier, FleetStore
from .memory_store import InMemoryFleetStore
from .mysql_store import MySQLFleetStore

__all__ = [
    "ChangeListener",
    "ChangeNotifier",
    "FleetStore",
    "InMemoryFleetStore",
    "MySQLFleetStore",
]
