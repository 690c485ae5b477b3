"""
Fleet Store - record store interface consumed by the derived-state engine

Concrete persistence is pluggable (in-memory for tests/local runs, MySQL for
deployments). Every write is atomic per entity, and after it commits the store
publishes a ChangeEvent so dependent views can refresh; delivering those
events further (websockets, queues) is the subscriber's job.
"""

import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from datetime import date, datetime
from threading import Lock
from typing import Callable, Dict, List, Optional, Tuple

from fleet_tracker.models import (
    AlertAction,
    AlertPlan,
    ChangeEntity,
    ChangeEvent,
    Customer,
    Delivery,
    DeliveryStatus,
    DeviationEpisode,
    EpisodePlan,
    EpisodeTransition,
    MaintenanceAlert,
    MaintenanceRule,
    PlannedRoute,
    PositionSample,
    Truck,
)

logger = logging.getLogger(__name__)

ChangeListener = Callable[[ChangeEvent], None]
EpisodeDecider = Callable[[Optional[DeviationEpisode]], EpisodePlan]
AlertDecider = Callable[[Optional[MaintenanceAlert]], AlertPlan]
DeliveryUpdater = Callable[[Delivery], Delivery]


class ChangeNotifier:
    """Per-entity listener registry. Listener failures never reach the writer."""

    def __init__(self):
        self._listeners: Dict[ChangeEntity, List[ChangeListener]] = defaultdict(list)
        self._listeners_lock = Lock()

    def subscribe(self, entity: ChangeEntity, listener: ChangeListener) -> Callable[[], None]:
        """Register a listener; returns a callable that unsubscribes it."""
        entity = ChangeEntity(entity)
        with self._listeners_lock:
            self._listeners[entity].append(listener)

        def _unsubscribe():
            with self._listeners_lock:
                if listener in self._listeners[entity]:
                    self._listeners[entity].remove(listener)

        return _unsubscribe

    def publish(self, entity: ChangeEntity, action: str, record_id: str) -> None:
        event = ChangeEvent(entity=ChangeEntity(entity), action=action, record_id=str(record_id))
        with self._listeners_lock:
            listeners = list(self._listeners[event.entity])
        for listener in listeners:
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Change listener failed for {event.entity.value}: {e}")


class FleetStore(ChangeNotifier, ABC):
    """Abstract record store"""

    # ───────────────────────────────────────────────────────────────────────
    # READS
    # ───────────────────────────────────────────────────────────────────────

    @abstractmethod
    def get_truck(self, truck_id: str) -> Optional[Truck]:
        ...

    @abstractmethod
    def list_trucks(self) -> List[Truck]:
        ...

    @abstractmethod
    def list_customers(self) -> List[Customer]:
        ...

    @abstractmethod
    def get_active_route(self, truck_id: str, route_date: date) -> Optional[PlannedRoute]:
        """The truck's route for route_date, or None"""

    @abstractmethod
    def list_rules(self, truck_id: Optional[str] = None) -> List[MaintenanceRule]:
        ...

    @abstractmethod
    def get_unresolved_alert(self, rule_id: str) -> Optional[MaintenanceAlert]:
        ...

    @abstractmethod
    def list_alerts(
        self, resolved: Optional[bool] = None, truck_id: Optional[str] = None
    ) -> List[MaintenanceAlert]:
        """Alerts newest first; resolved=None returns both"""

    @abstractmethod
    def get_open_episode(self, truck_id: str, route_id: str) -> Optional[DeviationEpisode]:
        ...

    @abstractmethod
    def list_episodes(
        self, active: Optional[bool] = None, truck_id: Optional[str] = None
    ) -> List[DeviationEpisode]:
        """Episodes newest first; active=True returns only open ones"""

    @abstractmethod
    def list_samples(self, truck_id: str, limit: int = 100) -> List[PositionSample]:
        """GPS samples newest first"""

    @abstractmethod
    def get_delivery(self, delivery_id: str) -> Optional[Delivery]:
        ...

    @abstractmethod
    def list_deliveries(
        self, truck_id: Optional[str] = None, status: Optional[DeliveryStatus] = None
    ) -> List[Delivery]:
        """Delivery stops in stop order"""

    # ───────────────────────────────────────────────────────────────────────
    # WRITES
    # ───────────────────────────────────────────────────────────────────────

    @abstractmethod
    def record_position(self, sample: PositionSample, odometer_km: float) -> Truck:
        """
        Update the truck's latest-position fields, odometer and (when the
        sample carries one) fuel counter and append the sample, as one unit.
        Raises RecordNotFoundError for unknown trucks.
        """

    @abstractmethod
    def reconcile_episode(
        self, truck_id: str, route_id: str, decide: EpisodeDecider, now: datetime
    ) -> Tuple[EpisodeTransition, Optional[DeviationEpisode]]:
        """
        Atomically read the open episode for (truck, route), ask decide() what
        to do and apply it. Returns the transition and the affected (or still
        open) episode.
        """

    @abstractmethod
    def reconcile_alert(
        self, rule_id: str, truck_id: str, decide: AlertDecider, now: datetime
    ) -> Tuple[AlertAction, Optional[MaintenanceAlert]]:
        """
        Atomic conditional upsert keyed by rule id: read the unresolved alert,
        ask decide() and create/escalate accordingly.
        """

    @abstractmethod
    def resolve_alert(self, alert_id: str, now: datetime) -> MaintenanceAlert:
        """Set resolved_ts; no-op when already resolved. RecordNotFoundError if unknown."""

    @abstractmethod
    def update_delivery(self, delivery_id: str, apply: DeliveryUpdater) -> Delivery:
        """
        Atomically read the delivery, pass a copy to apply() and store what it
        returns. Errors raised by apply() leave the record untouched.
        RecordNotFoundError if unknown.
        """
