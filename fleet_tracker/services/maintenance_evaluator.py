"""
Maintenance Due Evaluator + Alert Lifecycle

evaluate() turns an odometer reading and a service rule into a due tier:

    overdue   km_remaining <= 0 OR days_remaining <= 0
    due_soon  not overdue AND (km_remaining <= 500 OR days_remaining <= 7)
    ok        otherwise

Alert reconciliation never duplicates and never downgrades:

    status     | unresolved alert | action
    -----------+------------------+-----------------------------
    ok         | any              | none (no auto-resolve)
    due_soon   | none             | create due_soon
    due_soon   | any              | none
    overdue    | due_soon         | escalate in place (same id)
    overdue    | overdue          | none
    overdue    | none             | create overdue directly
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Tuple

from fleet_tracker.models import (
    AlertAction,
    AlertPlan,
    AlertSeverity,
    MaintenanceAlert,
    MaintenanceEvaluation,
    MaintenanceRule,
    MaintenanceStatus,
    Truck,
)
from fleet_tracker.exceptions import InvalidInputError
from settings import MAINTENANCE
from timezone_utils import days_between

logger = logging.getLogger(__name__)


@dataclass
class MaintenanceConfig:
    """Due-soon windows"""

    due_soon_km: float = field(default_factory=lambda: MAINTENANCE.due_soon_km)
    due_soon_days: int = field(default_factory=lambda: MAINTENANCE.due_soon_days)


def evaluate(
    current_odometer_km: float,
    rule: MaintenanceRule,
    now: datetime,
    config: Optional[MaintenanceConfig] = None,
) -> MaintenanceEvaluation:
    """
    Evaluate one maintenance rule.

    Args:
        current_odometer_km: Truck odometer now
        rule: Service rule (interval + last service)
        now: Evaluation time
        config: Due-soon window overrides

    Returns:
        MaintenanceEvaluation(status, km_remaining, days_remaining)
    """
    config = config or MaintenanceConfig()

    if current_odometer_km is None or current_odometer_km < 0:
        raise InvalidInputError(f"Invalid odometer reading: {current_odometer_km!r}")

    km_remaining = rule.interval_km - (current_odometer_km - rule.last_service_km)
    days_remaining = rule.interval_days - days_between(rule.last_service_date, now)

    if km_remaining <= 0 or days_remaining <= 0:
        status = MaintenanceStatus.OVERDUE
    elif km_remaining <= config.due_soon_km or days_remaining <= config.due_soon_days:
        status = MaintenanceStatus.DUE_SOON
    else:
        status = MaintenanceStatus.OK

    return MaintenanceEvaluation(
        status=status, km_remaining=km_remaining, days_remaining=days_remaining
    )


def build_alert_message(truck: Truck, rule: MaintenanceRule, severity: AlertSeverity) -> str:
    """Human-readable alert text naming the truck and the service type."""
    truck_label = truck.name or truck.id
    if severity == AlertSeverity.OVERDUE:
        return f"OVERDUE: {rule.service_type.label} maintenance required for {truck_label}"
    return f"{rule.service_type.label.capitalize()} maintenance due soon for {truck_label}"


def plan_alert_action(
    existing: Optional[MaintenanceAlert],
    status: MaintenanceStatus,
    truck: Truck,
    rule: MaintenanceRule,
) -> AlertPlan:
    """Pure reconciliation decision for one rule (see module table)."""
    if status == MaintenanceStatus.OK:
        return AlertPlan(AlertAction.UNCHANGED)

    if status == MaintenanceStatus.DUE_SOON:
        if existing is None:
            return AlertPlan(
                AlertAction.CREATED,
                AlertSeverity.DUE_SOON,
                build_alert_message(truck, rule, AlertSeverity.DUE_SOON),
            )
        return AlertPlan(AlertAction.UNCHANGED)

    # overdue
    message = build_alert_message(truck, rule, AlertSeverity.OVERDUE)
    if existing is None:
        return AlertPlan(AlertAction.CREATED, AlertSeverity.OVERDUE, message)
    if existing.severity == AlertSeverity.DUE_SOON:
        return AlertPlan(AlertAction.ESCALATED, AlertSeverity.OVERDUE, message)
    return AlertPlan(AlertAction.UNCHANGED)


class AlertLifecycleManager:
    """
    Creates, escalates and resolves maintenance alerts.

    Reconciliation goes through the store's atomic conditional upsert keyed by
    rule id: the unresolved-alert lookup and the insert/escalate run as one
    operation, so a second concurrent writer sees the first writer's alert and
    its own plan becomes UNCHANGED.
    """

    def __init__(self, store, config: Optional[MaintenanceConfig] = None):
        self.store = store
        self.config = config or MaintenanceConfig()

    def evaluate(self, truck: Truck, rule: MaintenanceRule, now: datetime) -> MaintenanceEvaluation:
        return evaluate(truck.odometer_km, rule, now, self.config)

    def reconcile(
        self,
        truck: Truck,
        rule: MaintenanceRule,
        evaluation: MaintenanceEvaluation,
        now: datetime,
    ) -> Tuple[AlertAction, Optional[MaintenanceAlert]]:
        if evaluation.status == MaintenanceStatus.OK:
            return AlertAction.UNCHANGED, None

        action, alert = self.store.reconcile_alert(
            rule.id,
            truck.id,
            lambda existing: plan_alert_action(existing, evaluation.status, truck, rule),
            now,
        )

        if action == AlertAction.CREATED:
            logger.info(
                f"[ALERT] New {alert.severity.value} alert for {truck.id}: {alert.message}"
            )
        elif action == AlertAction.ESCALATED:
            logger.warning(f"[ALERT] Escalated to OVERDUE for {truck.id}: {alert.message}")

        return action, alert

    def resolve(self, alert_id: str, now: datetime) -> MaintenanceAlert:
        """Explicitly resolve an alert; resolving twice is a no-op."""
        alert = self.store.resolve_alert(alert_id, now)
        logger.info(f"[ALERT] Resolved {alert_id} for {alert.truck_id}")
        return alert
