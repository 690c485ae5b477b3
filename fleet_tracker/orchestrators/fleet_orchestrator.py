"""
Fleet Orchestrator - read-side projections for the dashboard

Coordinates the store and the pure evaluators to answer the questions the
presentation layer asks: where is every truck and what is it doing, what is
wrong with one truck, fleet KPIs, alerts, deviation episodes and delivery
stops.

Status is computed here on every read and never written back.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fleet_tracker.exceptions import RecordNotFoundError
from fleet_tracker.models import (
    Delivery,
    DeliveryStatus,
    DeviationEpisode,
    FleetStats,
    MaintenanceAlert,
    PlannedRoute,
    Truck,
    TruckStatus,
)
from fleet_tracker.services import (
    AlertLifecycleManager,
    DeliveryWorkflow,
    EpisodeTracker,
    StatusClassifier,
)
from timezone_utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)


class FleetOrchestrator:
    """
    High-level fleet read operations plus the explicit user actions (alert
    resolution, driver delivery actions).

    Dependencies are injected so tests can swap the store or tune thresholds.
    """

    def __init__(
        self,
        store,
        classifier: Optional[StatusClassifier] = None,
        episode_tracker: Optional[EpisodeTracker] = None,
        lifecycle: Optional[AlertLifecycleManager] = None,
        deliveries: Optional[DeliveryWorkflow] = None,
    ):
        self.store = store
        self.classifier = classifier or StatusClassifier()
        self.episode_tracker = episode_tracker or EpisodeTracker(store)
        self.lifecycle = lifecycle or AlertLifecycleManager(store)
        self.deliveries = deliveries or DeliveryWorkflow(store)
        logger.info("FleetOrchestrator initialized")

    # ───────────────────────────────────────────────────────────────────────
    # HELPERS
    # ───────────────────────────────────────────────────────────────────────

    def _status_for(
        self, truck: Truck, now: datetime, customers, route: Optional[PlannedRoute]
    ) -> TruckStatus:
        return self.classifier.classify(
            truck, now, customers, route.customer_ids if route else None
        )

    # ───────────────────────────────────────────────────────────────────────
    # PROJECTIONS
    # ───────────────────────────────────────────────────────────────────────

    def get_fleet_snapshot(self, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Every truck with its derived status."""
        now = ensure_utc(now) if now else utc_now()
        customers = self.store.list_customers()

        snapshot = []
        for truck in self.store.list_trucks():
            route = self.store.get_active_route(truck.id, now.date())
            entry = truck.to_dict()
            entry["status"] = self._status_for(truck, now, customers, route).value
            entry["route_id"] = route.id if route else None
            snapshot.append(entry)
        return snapshot

    def get_truck_detail(self, truck_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Everything known about one truck right now.

        Raises:
            RecordNotFoundError: unknown truck id
        """
        now = ensure_utc(now) if now else utc_now()
        truck = self.store.get_truck(truck_id)
        if truck is None:
            raise RecordNotFoundError("truck", truck_id)

        route = self.store.get_active_route(truck.id, now.date())
        status = self._status_for(truck, now, self.store.list_customers(), route)

        deviation = None
        open_episode = None
        if route is not None:
            if truck.position is not None:
                deviation = self.episode_tracker.measure(truck.position, route.path)
            open_episode = self.store.get_open_episode(truck.id, route.id)

        maintenance = []
        for rule in self.store.list_rules(truck.id):
            evaluation = self.lifecycle.evaluate(truck, rule, now)
            maintenance.append({"rule": rule.to_dict(), **evaluation.to_dict()})

        alerts = self.store.list_alerts(resolved=False, truck_id=truck.id)

        return {
            "truck": truck.to_dict(),
            "status": status.value,
            "route": route.to_dict() if route else None,
            "deviation": deviation.to_dict() if deviation else None,
            "open_episode": open_episode.to_dict() if open_episode else None,
            "maintenance": maintenance,
            "alerts": [a.to_dict() for a in alerts],
            "timestamp": now.isoformat(),
        }

    def get_fleet_stats(self, now: Optional[datetime] = None) -> FleetStats:
        """Fleet KPI counters."""
        now = ensure_utc(now) if now else utc_now()
        stats = FleetStats()
        for entry in self.get_fleet_snapshot(now):
            stats.total_trucks += 1
            status = TruckStatus(entry["status"])
            if status == TruckStatus.EN_ROUTE:
                stats.en_route += 1
            elif status == TruckStatus.STOPPED:
                stats.stopped += 1
            elif status == TruckStatus.AT_CUSTOMER:
                stats.at_customer += 1
            else:
                stats.offline += 1

        stats.maintenance_alerts = len(self.store.list_alerts(resolved=False))
        stats.active_deviations = len(self.store.list_episodes(active=True))

        today = now.date()
        for delivery in self.store.list_deliveries():
            if delivery.status == DeliveryStatus.COMPLETED:
                if delivery.completed_ts and ensure_utc(delivery.completed_ts).date() == today:
                    stats.completed_today += 1
            elif not delivery.status.is_terminal:
                if ensure_utc(delivery.created_ts).date() == today:
                    stats.pending_deliveries += 1
        return stats

    def list_alerts(
        self, resolved: Optional[bool] = None, truck_id: Optional[str] = None
    ) -> List[MaintenanceAlert]:
        return self.store.list_alerts(resolved=resolved, truck_id=truck_id)

    def list_deviations(
        self, active: Optional[bool] = None, truck_id: Optional[str] = None
    ) -> List[DeviationEpisode]:
        return self.store.list_episodes(active=active, truck_id=truck_id)

    def list_deliveries(
        self, truck_id: Optional[str] = None, status: Optional[DeliveryStatus] = None
    ) -> List[Delivery]:
        return self.store.list_deliveries(truck_id=truck_id, status=status)

    # ───────────────────────────────────────────────────────────────────────
    # ACTIONS
    # ───────────────────────────────────────────────────────────────────────

    def resolve_alert(self, alert_id: str, now: Optional[datetime] = None) -> MaintenanceAlert:
        """Mark an alert resolved (a fresh one is raised if the rule is still due)."""
        now = ensure_utc(now) if now else utc_now()
        return self.lifecycle.resolve(alert_id, now)

    def mark_delivery_arrived(self, delivery_id: str) -> Delivery:
        return self.deliveries.mark_arrived(delivery_id)

    def complete_delivery(
        self, delivery_id: str, signature_url: Optional[str] = None, now: Optional[datetime] = None
    ) -> Delivery:
        return self.deliveries.complete(delivery_id, signature_url=signature_url, now=now)

    def report_delivery_issue(
        self, delivery_id: str, category, notes: Optional[str] = None, now: Optional[datetime] = None
    ) -> Delivery:
        """Fail a stop with an issue category (and optional notes)."""
        return self.deliveries.report_issue(delivery_id, category, notes=notes, now=now)

    def add_delivery_delay(self, delivery_id: str, reason) -> Delivery:
        return self.deliveries.add_delay(delivery_id, reason)
