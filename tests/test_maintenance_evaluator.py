"""
Tests for fleet_tracker/services/maintenance_evaluator.py

Tests cover:
- evaluate() tiers and boundaries (km and calendar)
- alert messages
- plan_alert_action reconciliation table
- AlertLifecycleManager create / escalate / resolve against the store
"""

import threading
from datetime import timedelta

import pytest

from fleet_tracker.exceptions import InvalidInputError, RecordNotFoundError
from fleet_tracker.models import (
    AlertAction,
    AlertSeverity,
    MaintenanceAlert,
    MaintenanceStatus,
    ServiceType,
)
from fleet_tracker.services.maintenance_evaluator import (
    AlertLifecycleManager,
    MaintenanceConfig,
    build_alert_message,
    evaluate,
    plan_alert_action,
)
from tests.fixtures.fleet_fixtures import NOW, make_rule, make_truck


# ═══════════════════════════════════════════════════════════════════════════════
# EVALUATE
# ═══════════════════════════════════════════════════════════════════════════════


class TestEvaluate:
    RULE = make_rule(interval_km=10000, interval_days=180, last_service_km=50000)

    def test_fresh_service_is_ok(self):
        result = evaluate(51000, self.RULE, NOW)
        assert result.status == MaintenanceStatus.OK
        assert result.km_remaining == 9000
        assert result.days_remaining == 170

    def test_km_boundary_zero_is_overdue(self):
        result = evaluate(60000, self.RULE, NOW)
        assert result.km_remaining == 0
        assert result.status == MaintenanceStatus.OVERDUE

    def test_within_due_soon_km(self):
        result = evaluate(59500, self.RULE, NOW)
        assert result.km_remaining == 500
        assert result.status == MaintenanceStatus.DUE_SOON

    def test_just_outside_due_soon_km(self):
        assert evaluate(59499, self.RULE, NOW).status == MaintenanceStatus.OK

    def test_past_interval_km_negative_remaining(self):
        result = evaluate(61000, self.RULE, NOW)
        assert result.km_remaining == -1000
        assert result.status == MaintenanceStatus.OVERDUE

    def test_calendar_overdue(self):
        rule = make_rule(last_service_date=NOW - timedelta(days=180))
        result = evaluate(100, rule, NOW)
        assert result.days_remaining == 0
        assert result.status == MaintenanceStatus.OVERDUE

    def test_calendar_due_soon(self):
        rule = make_rule(last_service_date=NOW - timedelta(days=173))
        result = evaluate(100, rule, NOW)
        assert result.days_remaining == 7
        assert result.status == MaintenanceStatus.DUE_SOON

    def test_partial_days_are_truncated(self):
        rule = make_rule(last_service_date=NOW - timedelta(days=172, hours=23))
        result = evaluate(100, rule, NOW)
        assert result.days_remaining == 8
        assert result.status == MaintenanceStatus.OK

    def test_date_last_service_counts_from_midnight_utc(self):
        rule = make_rule(last_service_date=(NOW - timedelta(days=10)).date())
        assert evaluate(0, rule, NOW).days_remaining == 170

    def test_custom_windows(self):
        config = MaintenanceConfig(due_soon_km=2000, due_soon_days=1)
        assert evaluate(58500, self.RULE, NOW, config).status == MaintenanceStatus.DUE_SOON

    @pytest.mark.parametrize("odometer", [None, -1])
    def test_invalid_odometer(self, odometer):
        with pytest.raises(InvalidInputError):
            evaluate(odometer, self.RULE, NOW)

    def test_rule_validation(self):
        with pytest.raises(InvalidInputError):
            make_rule(interval_km=0)
        with pytest.raises(InvalidInputError):
            make_rule(interval_days=-5)
        with pytest.raises(InvalidInputError):
            make_rule(service_type="wipers")


# ═══════════════════════════════════════════════════════════════════════════════
# MESSAGES AND PLANS
# ═══════════════════════════════════════════════════════════════════════════════


class TestAlertMessages:
    def test_overdue_message(self):
        msg = build_alert_message(make_truck(), make_rule(), AlertSeverity.OVERDUE)
        assert msg == "OVERDUE: oil maintenance required for Truck 1"

    def test_due_soon_message(self):
        rule = make_rule(service_type=ServiceType.TIRES)
        msg = build_alert_message(make_truck(), rule, AlertSeverity.DUE_SOON)
        assert msg == "Tires maintenance due soon for Truck 1"


class TestPlanAlertAction:
    TRUCK = make_truck()
    RULE = make_rule()

    def alert(self, severity):
        return MaintenanceAlert(
            id="A1",
            truck_id="T1",
            rule_id=self.RULE.id,
            severity=severity,
            message="x",
            created_ts=NOW,
        )

    def plan(self, existing, status):
        return plan_alert_action(existing, status, self.TRUCK, self.RULE)

    def test_ok_never_acts(self):
        assert self.plan(None, MaintenanceStatus.OK).action == AlertAction.UNCHANGED
        assert (
            self.plan(self.alert(AlertSeverity.OVERDUE), MaintenanceStatus.OK).action
            == AlertAction.UNCHANGED
        )

    def test_due_soon_creates_once(self):
        plan = self.plan(None, MaintenanceStatus.DUE_SOON)
        assert plan.action == AlertAction.CREATED
        assert plan.severity == AlertSeverity.DUE_SOON
        assert (
            self.plan(self.alert(AlertSeverity.DUE_SOON), MaintenanceStatus.DUE_SOON).action
            == AlertAction.UNCHANGED
        )

    def test_due_soon_never_downgrades_overdue(self):
        plan = self.plan(self.alert(AlertSeverity.OVERDUE), MaintenanceStatus.DUE_SOON)
        assert plan.action == AlertAction.UNCHANGED

    def test_overdue_escalates_due_soon(self):
        plan = self.plan(self.alert(AlertSeverity.DUE_SOON), MaintenanceStatus.OVERDUE)
        assert plan.action == AlertAction.ESCALATED
        assert plan.severity == AlertSeverity.OVERDUE
        assert plan.message.startswith("OVERDUE:")

    def test_overdue_creates_directly(self):
        plan = self.plan(None, MaintenanceStatus.OVERDUE)
        assert plan.action == AlertAction.CREATED
        assert plan.severity == AlertSeverity.OVERDUE

    def test_overdue_on_overdue_is_noop(self):
        plan = self.plan(self.alert(AlertSeverity.OVERDUE), MaintenanceStatus.OVERDUE)
        assert plan.action == AlertAction.UNCHANGED


# ═══════════════════════════════════════════════════════════════════════════════
# LIFECYCLE
# ═══════════════════════════════════════════════════════════════════════════════


class TestAlertLifecycleManager:
    @pytest.fixture
    def manager(self, seeded_store):
        return AlertLifecycleManager(seeded_store)

    @pytest.fixture
    def rule(self):
        return make_rule("R-OIL-T1", "T1", interval_km=10000, last_service_km=0)

    def run(self, manager, odometer, rule, when=NOW):
        truck = make_truck(odometer_km=odometer)
        evaluation = manager.evaluate(truck, rule, when)
        return manager.reconcile(truck, rule, evaluation, when)

    def test_two_due_soon_then_overdue_keeps_one_record(self, manager, rule, seeded_store):
        first_action, first = self.run(manager, 9600, rule)
        second_action, _ = self.run(manager, 9700, rule, NOW + timedelta(hours=1))
        third_action, escalated = self.run(manager, 10100, rule, NOW + timedelta(hours=2))

        assert (first_action, second_action, third_action) == (
            AlertAction.CREATED,
            AlertAction.UNCHANGED,
            AlertAction.ESCALATED,
        )
        alerts = seeded_store.list_alerts()
        assert len(alerts) == 1
        assert escalated.id == first.id
        assert alerts[0].severity == AlertSeverity.OVERDUE
        assert alerts[0].created_ts == NOW
        assert "OVERDUE" in alerts[0].message

    def test_ok_does_not_touch_store(self, manager, rule, seeded_store):
        action, alert = self.run(manager, 100, rule)
        assert action == AlertAction.UNCHANGED
        assert alert is None
        assert seeded_store.list_alerts() == []

    def test_ok_does_not_auto_resolve(self, manager, rule, seeded_store):
        self.run(manager, 9600, rule)
        self.run(manager, 100, rule)
        assert len(seeded_store.list_alerts(resolved=False)) == 1

    def test_resolve_then_reevaluate_creates_new_alert(self, manager, rule, seeded_store):
        _, first = self.run(manager, 9600, rule)
        resolved = manager.resolve(first.id, NOW + timedelta(hours=1))
        assert resolved.resolved_ts == NOW + timedelta(hours=1)

        action, second = self.run(manager, 9600, rule, NOW + timedelta(hours=2))
        assert action == AlertAction.CREATED
        assert second.id != first.id
        assert len(seeded_store.list_alerts()) == 2

    def test_resolve_twice_is_noop(self, manager, rule):
        _, alert = self.run(manager, 9600, rule)
        first = manager.resolve(alert.id, NOW)
        second = manager.resolve(alert.id, NOW + timedelta(days=1))
        assert second.resolved_ts == first.resolved_ts

    def test_resolve_unknown_alert(self, manager):
        with pytest.raises(RecordNotFoundError):
            manager.resolve("missing", NOW)

    def test_concurrent_reconcilers_create_single_alert(self, manager, rule, seeded_store):
        barrier = threading.Barrier(8)
        actions = []

        def worker():
            barrier.wait()
            actions.append(self.run(manager, 9600, rule)[0])

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert actions.count(AlertAction.CREATED) == 1
        assert len(seeded_store.list_alerts()) == 1
