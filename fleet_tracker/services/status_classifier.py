"""
Truck Status Classifier

Maps a truck's latest report plus customer geofences to one of:
    offline -> at_customer -> en_route -> stopped   (evaluated in this order)

Pure and idempotent: safe to call on every read, nothing is cached or written.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional, Sequence

from fleet_tracker.models import Customer, Truck, TruckStatus
from fleet_tracker.services.geodesy import distance
from settings import TRACKING
from timezone_utils import minutes_between

logger = logging.getLogger(__name__)


@dataclass
class StatusClassifierConfig:
    """Thresholds for status derivation"""

    offline_after_minutes: float = field(
        default_factory=lambda: TRACKING.offline_after_minutes
    )
    moving_speed_kmh: float = field(default_factory=lambda: TRACKING.moving_speed_kmh)


def candidate_customers(
    customers: Iterable[Customer], route_customer_ids: Optional[Sequence[str]] = None
) -> List[Customer]:
    """Restrict to the active route's customers when a route is known."""
    if route_customer_ids is None:
        return list(customers)
    wanted = set(route_customer_ids)
    return [c for c in customers if c.id in wanted]


def classify(
    truck: Truck,
    now: datetime,
    customers: Iterable[Customer],
    route_customer_ids: Optional[Sequence[str]] = None,
    config: Optional[StatusClassifierConfig] = None,
) -> TruckStatus:
    """
    Derive the operating status of a truck.

    Args:
        truck: Truck with its latest position fields
        now: Evaluation time
        customers: All customers (geofences)
        route_customer_ids: Customer ids on today's route, or None if no route
        config: Threshold overrides

    Returns:
        TruckStatus
    """
    config = config or StatusClassifierConfig()

    position = truck.position
    if position is None or truck.last_update is None:
        return TruckStatus.OFFLINE

    if minutes_between(truck.last_update, now) > config.offline_after_minutes:
        return TruckStatus.OFFLINE

    for customer in candidate_customers(customers, route_customer_ids):
        if distance(position, customer.center) <= customer.geofence_radius_m:
            return TruckStatus.AT_CUSTOMER

    if truck.last_speed_kmh is not None and truck.last_speed_kmh > config.moving_speed_kmh:
        return TruckStatus.EN_ROUTE

    return TruckStatus.STOPPED


class StatusClassifier:
    """Holds a config so orchestrators can inject tuned thresholds."""

    def __init__(self, config: Optional[StatusClassifierConfig] = None):
        self.config = config or StatusClassifierConfig()

    def classify(
        self,
        truck: Truck,
        now: datetime,
        customers: Iterable[Customer],
        route_customer_ids: Optional[Sequence[str]] = None,
    ) -> TruckStatus:
        return classify(truck, now, customers, route_customer_ids, self.config)
