"""
In-memory Fleet Store

Dict-backed implementation of FleetStore. One RLock guards every read and
write, which makes reconcile_episode/reconcile_alert atomic. Records are
copied on the way in and out so callers never mutate stored state.

Used by the test suite and for local runs (STORE_BACKEND=memory).
"""

import copy
import logging
import uuid
from collections import defaultdict
from datetime import date, datetime
from threading import RLock
from typing import Dict, List, Optional, Tuple

from fleet_tracker.exceptions import InvalidInputError, RecordNotFoundError
from fleet_tracker.models import (
    AlertAction,
    ChangeEntity,
    Customer,
    Delivery,
    DeliveryStatus,
    DeviationEpisode,
    EpisodeTransition,
    MaintenanceAlert,
    MaintenanceRule,
    PlannedRoute,
    PositionSample,
    Truck,
)
from fleet_tracker.repositories.fleet_store import (
    AlertDecider,
    DeliveryUpdater,
    EpisodeDecider,
    FleetStore,
)

logger = logging.getLogger(__name__)


def _new_id() -> str:
    return uuid.uuid4().hex


class InMemoryFleetStore(FleetStore):
    """FleetStore kept entirely in process memory"""

    def __init__(self):
        super().__init__()
        self._lock = RLock()
        self._trucks: Dict[str, Truck] = {}
        self._customers: Dict[str, Customer] = {}
        self._routes: Dict[str, PlannedRoute] = {}
        self._rules: Dict[str, MaintenanceRule] = {}
        self._alerts: Dict[str, MaintenanceAlert] = {}
        self._episodes: Dict[str, DeviationEpisode] = {}
        self._samples: Dict[str, List[PositionSample]] = defaultdict(list)
        self._deliveries: Dict[str, Delivery] = {}

    # ───────────────────────────────────────────────────────────────────────
    # SEEDING (reference data owned by the surrounding system)
    # ───────────────────────────────────────────────────────────────────────

    def add_truck(self, truck: Truck) -> Truck:
        with self._lock:
            self._trucks[truck.id] = copy.deepcopy(truck)
        self.publish(ChangeEntity.TRUCKS, "insert", truck.id)
        return truck

    def add_customer(self, customer: Customer) -> Customer:
        with self._lock:
            self._customers[customer.id] = copy.deepcopy(customer)
        return customer

    def add_route(self, route: PlannedRoute) -> PlannedRoute:
        with self._lock:
            for existing in self._routes.values():
                if (
                    existing.truck_id == route.truck_id
                    and existing.route_date == route.route_date
                    and existing.id != route.id
                ):
                    raise InvalidInputError(
                        f"Truck {route.truck_id} already has a route for {route.route_date}"
                    )
            self._routes[route.id] = copy.deepcopy(route)
        return route

    def add_rule(self, rule: MaintenanceRule) -> MaintenanceRule:
        with self._lock:
            self._rules[rule.id] = copy.deepcopy(rule)
        return rule

    def add_delivery(self, delivery: Delivery) -> Delivery:
        with self._lock:
            self._deliveries[delivery.id] = copy.deepcopy(delivery)
        self.publish(ChangeEntity.DELIVERIES, "insert", delivery.id)
        return delivery

    # ───────────────────────────────────────────────────────────────────────
    # READS
    # ───────────────────────────────────────────────────────────────────────

    def get_truck(self, truck_id: str) -> Optional[Truck]:
        with self._lock:
            truck = self._trucks.get(truck_id)
            return copy.deepcopy(truck) if truck else None

    def list_trucks(self) -> List[Truck]:
        with self._lock:
            trucks = sorted(self._trucks.values(), key=lambda t: (t.name, t.id))
            return copy.deepcopy(trucks)

    def list_customers(self) -> List[Customer]:
        with self._lock:
            return copy.deepcopy(sorted(self._customers.values(), key=lambda c: c.name))

    def get_active_route(self, truck_id: str, route_date: date) -> Optional[PlannedRoute]:
        with self._lock:
            for route in self._routes.values():
                if route.truck_id == truck_id and route.route_date == route_date:
                    return copy.deepcopy(route)
        return None

    def list_rules(self, truck_id: Optional[str] = None) -> List[MaintenanceRule]:
        with self._lock:
            rules = [
                r for r in self._rules.values() if truck_id is None or r.truck_id == truck_id
            ]
            return copy.deepcopy(rules)

    def get_unresolved_alert(self, rule_id: str) -> Optional[MaintenanceAlert]:
        with self._lock:
            return copy.deepcopy(self._find_unresolved(rule_id))

    def list_alerts(
        self, resolved: Optional[bool] = None, truck_id: Optional[str] = None
    ) -> List[MaintenanceAlert]:
        with self._lock:
            alerts = [
                a
                for a in self._alerts.values()
                if (resolved is None or a.is_resolved == resolved)
                and (truck_id is None or a.truck_id == truck_id)
            ]
            alerts.sort(key=lambda a: a.created_ts, reverse=True)
            return copy.deepcopy(alerts)

    def get_open_episode(self, truck_id: str, route_id: str) -> Optional[DeviationEpisode]:
        with self._lock:
            return copy.deepcopy(self._find_open_episode(truck_id, route_id))

    def list_episodes(
        self, active: Optional[bool] = None, truck_id: Optional[str] = None
    ) -> List[DeviationEpisode]:
        with self._lock:
            episodes = [
                e
                for e in self._episodes.values()
                if (active is None or e.is_open == active)
                and (truck_id is None or e.truck_id == truck_id)
            ]
            episodes.sort(key=lambda e: e.start_ts, reverse=True)
            return copy.deepcopy(episodes)

    def list_samples(self, truck_id: str, limit: int = 100) -> List[PositionSample]:
        with self._lock:
            samples = sorted(
                self._samples.get(truck_id, []), key=lambda s: s.timestamp, reverse=True
            )
            return samples[:limit]

    def get_delivery(self, delivery_id: str) -> Optional[Delivery]:
        with self._lock:
            return copy.deepcopy(self._deliveries.get(delivery_id))

    def list_deliveries(
        self, truck_id: Optional[str] = None, status: Optional[DeliveryStatus] = None
    ) -> List[Delivery]:
        with self._lock:
            deliveries = [
                d
                for d in self._deliveries.values()
                if (truck_id is None or d.truck_id == truck_id)
                and (status is None or d.status == status)
            ]
            deliveries.sort(key=lambda d: (d.stop_order, d.id))
            return copy.deepcopy(deliveries)

    # ───────────────────────────────────────────────────────────────────────
    # WRITES
    # ───────────────────────────────────────────────────────────────────────

    def record_position(self, sample: PositionSample, odometer_km: float) -> Truck:
        with self._lock:
            truck = self._trucks.get(sample.truck_id)
            if truck is None:
                raise RecordNotFoundError("truck", sample.truck_id)
            truck.last_latitude = sample.latitude
            truck.last_longitude = sample.longitude
            truck.last_speed_kmh = sample.speed_kmh
            truck.last_update = sample.timestamp
            truck.odometer_km = max(truck.odometer_km, odometer_km)
            if sample.fuel_used_l is not None:
                truck.fuel_used_l = max(truck.fuel_used_l, sample.fuel_used_l)
            self._samples[sample.truck_id].append(sample)
            updated = copy.deepcopy(truck)

        self.publish(ChangeEntity.TRUCKS, "update", sample.truck_id)
        self.publish(ChangeEntity.GPS_EVENTS, "insert", sample.truck_id)
        return updated

    def reconcile_episode(
        self, truck_id: str, route_id: str, decide: EpisodeDecider, now: datetime
    ) -> Tuple[EpisodeTransition, Optional[DeviationEpisode]]:
        with self._lock:
            open_episode = self._find_open_episode(truck_id, route_id)
            plan = decide(copy.deepcopy(open_episode))

            if plan.transition == EpisodeTransition.OPENED and open_episode is None:
                episode = DeviationEpisode(
                    id=_new_id(),
                    truck_id=truck_id,
                    route_id=route_id,
                    start_ts=now,
                    max_distance_m=plan.distance_m,
                )
                self._episodes[episode.id] = episode
                action = "insert"
            elif plan.transition == EpisodeTransition.UPDATED and open_episode is not None:
                open_episode.max_distance_m = max(open_episode.max_distance_m, plan.distance_m)
                episode = open_episode
                action = "update"
            elif plan.transition == EpisodeTransition.CLOSED and open_episode is not None:
                open_episode.end_ts = now
                episode = open_episode
                action = "update"
            else:
                return EpisodeTransition.UNCHANGED, copy.deepcopy(open_episode)

            result = copy.deepcopy(episode)

        self.publish(ChangeEntity.ROUTE_DEVIATIONS, action, result.id)
        return plan.transition, result

    def reconcile_alert(
        self, rule_id: str, truck_id: str, decide: AlertDecider, now: datetime
    ) -> Tuple[AlertAction, Optional[MaintenanceAlert]]:
        with self._lock:
            existing = self._find_unresolved(rule_id)
            plan = decide(copy.deepcopy(existing))

            if plan.action == AlertAction.CREATED and existing is None:
                alert = MaintenanceAlert(
                    id=_new_id(),
                    truck_id=truck_id,
                    rule_id=rule_id,
                    severity=plan.severity,
                    message=plan.message,
                    created_ts=now,
                )
                self._alerts[alert.id] = alert
                action = "insert"
            elif plan.action == AlertAction.ESCALATED and existing is not None:
                existing.severity = plan.severity
                existing.message = plan.message
                alert = existing
                action = "update"
            else:
                return AlertAction.UNCHANGED, copy.deepcopy(existing)

            result = copy.deepcopy(alert)

        self.publish(ChangeEntity.MAINTENANCE_ALERTS, action, result.id)
        return plan.action, result

    def resolve_alert(self, alert_id: str, now: datetime) -> MaintenanceAlert:
        with self._lock:
            alert = self._alerts.get(alert_id)
            if alert is None:
                raise RecordNotFoundError("maintenance alert", alert_id)
            if alert.is_resolved:
                return copy.deepcopy(alert)
            alert.resolved_ts = now
            result = copy.deepcopy(alert)

        self.publish(ChangeEntity.MAINTENANCE_ALERTS, "update", alert_id)
        return result

    def update_delivery(self, delivery_id: str, apply: DeliveryUpdater) -> Delivery:
        with self._lock:
            current = self._deliveries.get(delivery_id)
            if current is None:
                raise RecordNotFoundError("delivery", delivery_id)
            updated = apply(copy.deepcopy(current))
            self._deliveries[delivery_id] = copy.deepcopy(updated)

        self.publish(ChangeEntity.DELIVERIES, "update", delivery_id)
        return updated

    # ───────────────────────────────────────────────────────────────────────
    # INTERNALS (caller holds the lock)
    # ───────────────────────────────────────────────────────────────────────

    def _find_unresolved(self, rule_id: str) -> Optional[MaintenanceAlert]:
        for alert in self._alerts.values():
            if alert.rule_id == rule_id and not alert.is_resolved:
                return alert
        return None

    def _find_open_episode(self, truck_id: str, route_id: str) -> Optional[DeviationEpisode]:
        for episode in self._episodes.values():
            if episode.truck_id == truck_id and episode.route_id == route_id and episode.is_open:
                return episode
        return None
