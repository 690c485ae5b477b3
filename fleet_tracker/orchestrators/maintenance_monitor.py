"""
Maintenance Monitor - periodic re-evaluation of every truck's service rules

Runs independently of telemetry arrival as an APScheduler interval job with an
explicit start()/stop() lifecycle:
- max_instances=1 and coalesce=True: a slow run never overlaps the next one
- stop() stops scheduling and waits for an in-flight run to finish, so a
  cycle never leaves a half-written alert behind

Per truck, evaluation holds the same lock the telemetry pipeline uses.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from apscheduler.schedulers.background import BackgroundScheduler

from fleet_tracker.exceptions import FleetTrackerError
from fleet_tracker.models import AlertAction, MaintenanceAlert, Truck
from fleet_tracker.orchestrators.truck_locks import TruckLocks
from fleet_tracker.services import AlertLifecycleManager
from logger_config import crash_logger
from settings import MAINTENANCE
from timezone_utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)

JOB_ID = "maintenance_check"


@dataclass
class MaintenanceCycleReport:
    """Summary of one monitor run"""

    started_at: datetime
    trucks_evaluated: int = 0
    rules_evaluated: int = 0
    created: List[MaintenanceAlert] = field(default_factory=list)
    escalated: List[MaintenanceAlert] = field(default_factory=list)
    skipped: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "trucks_evaluated": self.trucks_evaluated,
            "rules_evaluated": self.rules_evaluated,
            "created": [a.to_dict() for a in self.created],
            "escalated": [a.to_dict() for a in self.escalated],
            "skipped": dict(self.skipped),
        }


class MaintenanceMonitor:
    """Scheduled maintenance evaluation over the whole fleet"""

    def __init__(
        self,
        store,
        lifecycle: Optional[AlertLifecycleManager] = None,
        truck_locks: Optional[TruckLocks] = None,
        interval_minutes: Optional[int] = None,
    ):
        self.store = store
        self.lifecycle = lifecycle or AlertLifecycleManager(store)
        self.truck_locks = truck_locks if truck_locks is not None else TruckLocks()
        self.interval_minutes = interval_minutes or MAINTENANCE.interval_minutes
        self._scheduler: Optional[BackgroundScheduler] = None

    # ───────────────────────────────────────────────────────────────────────
    # EVALUATION
    # ───────────────────────────────────────────────────────────────────────

    def evaluate_truck(self, truck: Truck, now: datetime, report: MaintenanceCycleReport) -> None:
        """Evaluate and reconcile every rule of one truck (caller handles errors)."""
        with self.truck_locks.for_truck(truck.id):
            # Re-read under the lock so the odometer reflects the latest sample
            current = self.store.get_truck(truck.id) or truck
            for rule in self.store.list_rules(truck.id):
                evaluation = self.lifecycle.evaluate(current, rule, now)
                action, alert = self.lifecycle.reconcile(current, rule, evaluation, now)
                report.rules_evaluated += 1
                if action == AlertAction.CREATED:
                    report.created.append(alert)
                elif action == AlertAction.ESCALATED:
                    report.escalated.append(alert)

    def run_once(self, now: Optional[datetime] = None) -> MaintenanceCycleReport:
        """
        One pass over the fleet. A failure for one truck is logged and that
        truck is skipped until the next run.
        """
        now = ensure_utc(now) if now else utc_now()
        report = MaintenanceCycleReport(started_at=now)

        for truck in self.store.list_trucks():
            try:
                self.evaluate_truck(truck, now, report)
                report.trucks_evaluated += 1
            except FleetTrackerError as e:
                logger.error(f"[MAINTENANCE] Skipping {truck.id} this run: {e}")
                report.skipped[truck.id] = str(e)

        logger.info(
            f"[MAINTENANCE] Evaluated {report.rules_evaluated} rules on "
            f"{report.trucks_evaluated} trucks | created: {len(report.created)} | "
            f"escalated: {len(report.escalated)} | skipped: {len(report.skipped)}"
        )
        return report

    def run_guarded(self) -> Optional[MaintenanceCycleReport]:
        """
        run_once for schedulers: anything escaping it is logged and written to
        crashes.log, and None is returned so the next run still happens.
        """
        try:
            return self.run_once()
        except Exception as e:
            logger.error(f"[ERROR] Maintenance check failed: {e}", exc_info=True)
            crash_logger.log_crash(e, context="maintenance monitor")
            return None

    # ───────────────────────────────────────────────────────────────────────
    # LIFECYCLE
    # ───────────────────────────────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self, run_immediately: bool = True) -> None:
        """Schedule run_once every interval_minutes. No-op when already running."""
        if self.running:
            return

        scheduler = BackgroundScheduler(timezone="UTC")
        job_kwargs = {"next_run_time": utc_now()} if run_immediately else {}
        scheduler.add_job(
            self.run_guarded,
            "interval",
            minutes=self.interval_minutes,
            id=JOB_ID,
            name=f"Maintenance Check (every {self.interval_minutes}m)",
            max_instances=1,
            coalesce=True,
            **job_kwargs,
        )
        scheduler.start()
        self._scheduler = scheduler
        logger.info(f"[START] Maintenance monitor running every {self.interval_minutes} minutes")

    def stop(self) -> None:
        """Stop scheduling; waits for an in-flight run. Safe to call repeatedly."""
        if self._scheduler is None:
            return
        scheduler, self._scheduler = self._scheduler, None
        if scheduler.running:
            scheduler.shutdown(wait=True)
        logger.info("[STOP] Maintenance monitor stopped")
