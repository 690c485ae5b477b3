"""
╔═══════════════════════════════════════════════════════════════════════════════╗
║              MAINTENANCE ALERT SCHEDULER v1.0                                  ║
║                         Fleet Tracker                                          ║
╠═══════════════════════════════════════════════════════════════════════════════╣
║  Purpose: Periodic maintenance evaluation with alert persistence              ║
║                                                                                ║
║  Architecture:                                                                 ║
║  - Runs every hour via APScheduler (or a custom interval)                     ║
║  - Reads trucks and service rules from the fleet store                        ║
║  - Evaluates odometer / calendar intervals per rule                           ║
║  - Creates due_soon alerts, escalates to overdue in place (no duplicates)     ║
║                                                                                ║
║  Usage:                                                                        ║
║    python maintenance_scheduler.py              # Run as daemon               ║
║    python maintenance_scheduler.py --once       # Run once (for testing)      ║
╚═══════════════════════════════════════════════════════════════════════════════╝
"""

import argparse
import logging
from typing import List, Optional

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger

# Load .env file for credentials
from dotenv import load_dotenv

load_dotenv()

from fleet_tracker.config_helper import create_orchestrators, create_services, create_store
from fleet_tracker.exceptions import FleetTrackerError
from logger_config import get_logger
from settings import MAINTENANCE

logger = logging.getLogger("maintenance_scheduler")


# ═══════════════════════════════════════════════════════════════════════════════
# SCHEDULER SETUP
# ═══════════════════════════════════════════════════════════════════════════════


def build_monitor(backend: Optional[str] = None):
    """Maintenance monitor wired to the configured store."""
    store = create_store(backend)
    services = create_services(store)
    return create_orchestrators(store, services)["monitor"]


def build_scheduler(monitor, interval: int) -> BlockingScheduler:
    """Blocking scheduler running the monitor's guarded check every `interval` minutes."""
    scheduler = BlockingScheduler(timezone="UTC")

    if interval == 60:
        # Every hour at :00
        scheduler.add_job(
            monitor.run_guarded,
            CronTrigger(minute=0, timezone="UTC"),
            id="maintenance_check",
            name="Hourly Maintenance Check",
            max_instances=1,
            coalesce=True,
        )
    else:
        scheduler.add_job(
            monitor.run_guarded,
            "interval",
            minutes=interval,
            id="maintenance_check",
            name=f"Maintenance Check (every {interval}m)",
            max_instances=1,
            coalesce=True,
        )
    return scheduler


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    parser = argparse.ArgumentParser(description="Fleet Maintenance Alert Scheduler")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run once and exit (for testing)",
    )
    parser.add_argument(
        "--interval",
        type=int,
        default=MAINTENANCE.interval_minutes,
        help=f"Run interval in minutes (default: {MAINTENANCE.interval_minutes})",
    )
    parser.add_argument(
        "--backend",
        choices=["memory", "mysql"],
        default=None,
        help="Record store backend (default: STORE_BACKEND)",
    )
    args = parser.parse_args(argv)

    if args.interval <= 0:
        parser.error("--interval must be a positive number of minutes")

    get_logger("fleet_tracker")
    get_logger("maintenance_scheduler")

    monitor = build_monitor(args.backend)

    if args.once:
        # Single run mode (for testing)
        logger.info("Running single maintenance check...")
        try:
            report = monitor.run_once()
        except FleetTrackerError as e:
            logger.error(f"[ERROR] Maintenance check failed: {e}")
            return 1
        return 1 if report.skipped else 0

    # Daemon mode with APScheduler
    logger.info("[DAEMON] Starting Maintenance Scheduler daemon")
    logger.info(f"   Interval: every {args.interval} minutes")

    scheduler = build_scheduler(monitor, args.interval)

    # Run immediately on startup; a failure here is logged and the daemon keeps going
    monitor.run_guarded()

    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Scheduler stopped")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
