"""
Tests for fleet_tracker/orchestrators/maintenance_monitor.py and the
maintenance_scheduler.py CLI
"""

import threading
from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

import maintenance_scheduler
from fleet_tracker.exceptions import StoreError
from fleet_tracker.models import AlertSeverity
from fleet_tracker.orchestrators.maintenance_monitor import JOB_ID, MaintenanceMonitor
from fleet_tracker.repositories import InMemoryFleetStore
from tests.fixtures.fleet_fixtures import NOW, make_rule, make_sample, make_truck


def set_odometer(store, truck_id, km, ts=NOW):
    store.record_position(make_sample(truck_id=truck_id, ts=ts, odometer=km), km)


@pytest.fixture
def monitor(seeded_store):
    return MaintenanceMonitor(seeded_store, interval_minutes=15)


class RulesOutageStore(InMemoryFleetStore):
    """Rule reads fail for one truck"""

    def __init__(self, failing_truck):
        super().__init__()
        self.failing_truck = failing_truck

    def list_rules(self, truck_id=None):
        if truck_id == self.failing_truck:
            raise StoreError("rules table unavailable")
        return super().list_rules(truck_id)


# ═══════════════════════════════════════════════════════════════════════════════
# RUN ONCE
# ═══════════════════════════════════════════════════════════════════════════════


class TestRunOnce:
    def test_ok_fleet_raises_nothing(self, monitor, seeded_store):
        report = monitor.run_once(NOW)
        assert report.trucks_evaluated == 2
        assert report.rules_evaluated == 2
        assert report.created == []
        assert seeded_store.list_alerts() == []

    def test_due_soon_created_once(self, monitor, seeded_store):
        set_odometer(seeded_store, "T1", 9600)

        first = monitor.run_once(NOW)
        second = monitor.run_once(NOW + timedelta(hours=1))

        assert len(first.created) == 1
        assert first.created[0].severity == AlertSeverity.DUE_SOON
        assert second.created == []
        assert len(seeded_store.list_alerts()) == 1

    def test_escalates_same_alert(self, monitor, seeded_store):
        set_odometer(seeded_store, "T1", 9600)
        created = monitor.run_once(NOW).created[0]

        set_odometer(seeded_store, "T1", 10050, ts=NOW + timedelta(minutes=5))
        report = monitor.run_once(NOW + timedelta(hours=1))

        assert [a.id for a in report.escalated] == [created.id]
        assert seeded_store.list_alerts()[0].severity == AlertSeverity.OVERDUE

    def test_calendar_overdue_without_driving(self, seeded_store):
        seeded_store.add_rule(
            make_rule("R-INSP-T2", "T2", service_type="inspection",
                      interval_days=30, last_service_date=NOW - timedelta(days=45))
        )
        report = MaintenanceMonitor(seeded_store).run_once(NOW)

        assert [(a.rule_id, a.severity) for a in report.created] == [
            ("R-INSP-T2", AlertSeverity.OVERDUE)
        ]
        assert report.created[0].message == "OVERDUE: inspection maintenance required for Truck 2"

    def test_failing_truck_is_skipped(self):
        store = RulesOutageStore("T1")
        store.add_truck(make_truck("T1", "Truck 1", odometer_km=9900))
        store.add_truck(make_truck("T2", "Truck 2", odometer_km=9900))
        store.add_rule(make_rule("R-OIL-T1", "T1"))
        store.add_rule(make_rule("R-OIL-T2", "T2"))

        report = MaintenanceMonitor(store).run_once(NOW)

        assert report.skipped == {"T1": "rules table unavailable"}
        assert [a.truck_id for a in report.created] == ["T2"]
        assert report.to_dict()["trucks_evaluated"] == 1

    def test_guarded_run_logs_crash(self, monitor):
        monitor.run_once = MagicMock(side_effect=RuntimeError("boom"))
        with patch("fleet_tracker.orchestrators.maintenance_monitor.crash_logger") as crash:
            assert monitor.run_guarded() is None
        crash.log_crash.assert_called_once()


# ═══════════════════════════════════════════════════════════════════════════════
# LIFECYCLE
# ═══════════════════════════════════════════════════════════════════════════════


class TestLifecycle:
    def test_start_schedules_single_job(self, monitor):
        monitor.start(run_immediately=False)
        try:
            assert monitor.running
            job = monitor._scheduler.get_job(JOB_ID)
            assert job is not None
            assert job.max_instances == 1
            assert job.coalesce is True
            assert isinstance(job.trigger, IntervalTrigger)
        finally:
            monitor.stop()

    def test_stop_is_idempotent(self, monitor):
        monitor.start(run_immediately=False)
        monitor.stop()
        monitor.stop()
        assert not monitor.running
        assert monitor._scheduler is None

    def test_stop_before_start(self, monitor):
        monitor.stop()
        assert not monitor.running

    def test_start_twice_keeps_one_scheduler(self, monitor):
        monitor.start(run_immediately=False)
        scheduler = monitor._scheduler
        monitor.start(run_immediately=False)
        try:
            assert monitor._scheduler is scheduler
        finally:
            monitor.stop()

    def test_runs_immediately_in_background(self, monitor):
        ran = threading.Event()
        monitor.run_once = MagicMock(side_effect=lambda: ran.set())

        monitor.start()
        try:
            assert ran.wait(timeout=5)
        finally:
            monitor.stop()


# ═══════════════════════════════════════════════════════════════════════════════
# CLI
# ═══════════════════════════════════════════════════════════════════════════════


class TestSchedulerCli:
    def test_hourly_uses_cron(self):
        scheduler = maintenance_scheduler.build_scheduler(MagicMock(), 60)
        job = scheduler.get_jobs()[0]
        assert isinstance(job.trigger, CronTrigger)
        assert job.id == "maintenance_check"

    def test_custom_interval(self):
        scheduler = maintenance_scheduler.build_scheduler(MagicMock(), 15)
        job = scheduler.get_jobs()[0]
        assert isinstance(job.trigger, IntervalTrigger)
        assert job.trigger.interval == timedelta(minutes=15)

    def test_once_with_memory_backend(self):
        assert maintenance_scheduler.main(["--once", "--backend", "memory"]) == 0

    def test_once_reports_skipped_trucks(self):
        monitor = MagicMock()
        monitor.run_once.return_value.skipped = {"T1": "down"}
        with patch.object(maintenance_scheduler, "build_monitor", return_value=monitor):
            assert maintenance_scheduler.main(["--once"]) == 1

    def test_rejects_non_positive_interval(self):
        with pytest.raises(SystemExit):
            maintenance_scheduler.main(["--interval", "0"])

    def test_jobs_run_guarded_check(self):
        monitor = MagicMock()
        for interval in (60, 15):
            job = maintenance_scheduler.build_scheduler(monitor, interval).get_jobs()[0]
            assert job.func is monitor.run_guarded

    def test_once_store_outage_exits_nonzero(self):
        monitor = MagicMock()
        monitor.run_once.side_effect = StoreError("trucks table unavailable")
        with patch.object(maintenance_scheduler, "build_monitor", return_value=monitor):
            assert maintenance_scheduler.main(["--once"]) == 1

    def test_daemon_survives_failing_startup_run(self):
        store = MagicMock()
        store.list_trucks.side_effect = StoreError("trucks table unavailable")
        monitor = MaintenanceMonitor(store, interval_minutes=15)
        scheduler = MagicMock()

        with patch.object(maintenance_scheduler, "build_monitor", return_value=monitor), patch.object(
            maintenance_scheduler, "build_scheduler", return_value=scheduler
        ), patch("fleet_tracker.orchestrators.maintenance_monitor.crash_logger") as crash:
            assert maintenance_scheduler.main([]) == 0

        crash.log_crash.assert_called_once()
        scheduler.start.assert_called_once()
