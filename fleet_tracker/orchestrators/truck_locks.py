"""Per-truck lock registry shared by telemetry ingestion and the maintenance monitor."""

from collections import defaultdict
from threading import Lock
from typing import Dict


class TruckLocks:
    """Hands out one threading.Lock per truck id (created lazily)."""

    def __init__(self):
        self._locks: Dict[str, Lock] = defaultdict(Lock)
        self._registry_lock = Lock()

    def for_truck(self, truck_id: str) -> Lock:
        with self._registry_lock:
            return self._locks[truck_id]

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._locks)
