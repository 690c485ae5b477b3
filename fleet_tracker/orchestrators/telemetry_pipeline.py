"""
Telemetry Ingestion Pipeline

Each arriving GPS sample triggers one telemetry cycle for its truck:

    1. record the sample (latest position fields + odometer, one store unit)
    2. classify status (customers restricted to the sample day's route when one exists)
    3. close episodes left open on any other route
    4. measure deviation against the day's route and apply the episode transition

Samples stamped more than MAX_CLOCK_SKEW_SECONDS past server time are rejected
before anything is read or written.

All writes for one truck happen under that truck's lock. Different trucks are
independent, so ingest_batch() fans them out over a thread pool.
"""

import logging
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from fleet_tracker.exceptions import FleetTrackerError, InvalidInputError, RecordNotFoundError
from fleet_tracker.models import (
    DeviationEpisode,
    DeviationResult,
    EpisodeTransition,
    PositionSample,
    Truck,
    TruckStatus,
)
from fleet_tracker.orchestrators.truck_locks import TruckLocks
from fleet_tracker.services import EpisodeTracker, StatusClassifier, distance
from settings import TRACKING
from timezone_utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# RESULT TYPES
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass
class TelemetryCycleResult:
    """Outcome of one telemetry cycle for one sample"""

    truck_id: str
    status: Optional[TruckStatus] = None
    odometer_km: Optional[float] = None
    deviation: Optional[DeviationResult] = None
    transition: EpisodeTransition = EpisodeTransition.UNCHANGED
    episode: Optional[DeviationEpisode] = None
    skipped: bool = False
    reason: Optional[str] = None
    closed_episodes: List[DeviationEpisode] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "truck_id": self.truck_id,
            "status": self.status.value if self.status else None,
            "odometer_km": self.odometer_km,
            "deviation": self.deviation.to_dict() if self.deviation else None,
            "transition": self.transition.value,
            "episode": self.episode.to_dict() if self.episode else None,
            "skipped": self.skipped,
            "reason": self.reason,
            "closed_episodes": [e.to_dict() for e in self.closed_episodes],
        }


@dataclass
class BatchReport:
    """Results of ingest_batch(); skipped maps truck id -> error text"""

    results: List[TelemetryCycleResult] = field(default_factory=list)
    skipped: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processed": len(self.results),
            "results": [r.to_dict() for r in self.results],
            "skipped": dict(self.skipped),
        }


def accrue_odometer(truck: Truck, sample: PositionSample) -> float:
    """
    Odometer after this sample. A reported reading wins but never moves the
    odometer backwards; otherwise the great-circle hop from the previous
    position is added.
    """
    if sample.odometer_km is not None:
        return max(truck.odometer_km, sample.odometer_km)

    previous = truck.position
    if previous is None:
        return truck.odometer_km
    return truck.odometer_km + distance(previous, sample.position) / 1000.0


# ═══════════════════════════════════════════════════════════════════════════════
# PIPELINE
# ═══════════════════════════════════════════════════════════════════════════════


class TelemetryIngestionPipeline:
    """Event-driven replacement for a fixed-interval polling loop."""

    def __init__(
        self,
        store,
        classifier: Optional[StatusClassifier] = None,
        episode_tracker: Optional[EpisodeTracker] = None,
        truck_locks: Optional[TruckLocks] = None,
        max_workers: Optional[int] = None,
        max_clock_skew_seconds: Optional[float] = None,
    ):
        self.store = store
        self.classifier = classifier or StatusClassifier()
        self.episode_tracker = episode_tracker or EpisodeTracker(store)
        self.truck_locks = truck_locks if truck_locks is not None else TruckLocks()
        self.max_workers = max_workers or TRACKING.ingest_workers
        self.max_clock_skew_seconds = (
            TRACKING.max_clock_skew_seconds
            if max_clock_skew_seconds is None
            else max_clock_skew_seconds
        )

    def ingest(self, sample: PositionSample, now: Optional[datetime] = None) -> TelemetryCycleResult:
        """
        Run one telemetry cycle for sample.truck_id.

        Raises:
            InvalidInputError: sample stamped too far in the future
            RecordNotFoundError: unknown truck
            StoreError: store read/write failed (nothing after the failure is written)
        """
        now = ensure_utc(now) if now else utc_now()

        skew = (sample.timestamp - now).total_seconds()
        if skew > self.max_clock_skew_seconds:
            raise InvalidInputError(
                f"Sample for {sample.truck_id} is {skew:.0f}s ahead of server time "
                f"({sample.timestamp.isoformat()})"
            )

        # Unknown ids never get a lock
        if self.store.get_truck(sample.truck_id) is None:
            raise RecordNotFoundError("truck", sample.truck_id)

        with self.truck_locks.for_truck(sample.truck_id):
            truck = self.store.get_truck(sample.truck_id)
            if truck is None:
                raise RecordNotFoundError("truck", sample.truck_id)

            if truck.last_update is not None and sample.timestamp < ensure_utc(truck.last_update):
                logger.warning(
                    f"[TELEMETRY] Stale sample for {truck.id}: "
                    f"{sample.timestamp.isoformat()} < {truck.last_update.isoformat()}"
                )
                return TelemetryCycleResult(
                    truck_id=truck.id,
                    odometer_km=truck.odometer_km,
                    skipped=True,
                    reason="stale sample",
                )

            truck = self.store.record_position(sample, accrue_odometer(truck, sample))

            route = self.store.get_active_route(truck.id, sample.timestamp.date())
            customers = self.store.list_customers()
            status = self.classifier.classify(
                truck, now, customers, route.customer_ids if route else None
            )

            result = TelemetryCycleResult(
                truck_id=truck.id, status=status, odometer_km=truck.odometer_km
            )
            result.closed_episodes = self.episode_tracker.close_stale(
                truck.id, route.id if route else None, now
            )
            if route is None:
                return result

            result.deviation = self.episode_tracker.measure(sample.position, route.path)
            result.transition, result.episode = self.episode_tracker.track(
                truck.id, route.id, result.deviation, now
            )

        logger.debug(
            f"[TELEMETRY] {truck.id} {status.value} "
            f"({result.deviation.distance_from_route_m:.0f} m from route)"
        )
        return result

    def _ingest_truck(
        self, truck_id: str, samples: List[PositionSample], now: Optional[datetime]
    ) -> Tuple[List[TelemetryCycleResult], Optional[str]]:
        results = []
        for sample in samples:
            try:
                results.append(self.ingest(sample, now))
            except InvalidInputError as e:
                # Only this sample is bad; later ones for the truck still count
                logger.warning(f"[TELEMETRY] Rejected sample for {truck_id}: {e}")
                results.append(TelemetryCycleResult(truck_id=truck_id, skipped=True, reason=str(e)))
            except FleetTrackerError as e:
                logger.error(f"[TELEMETRY] Skipping {truck_id} this cycle: {e}")
                return results, str(e)
        return results, None

    def ingest_batch(
        self, samples: Iterable[PositionSample], now: Optional[datetime] = None
    ) -> BatchReport:
        """
        Ingest many samples. Each truck's samples run in timestamp order; trucks
        run in parallel. A store failure skips the rest of that truck's samples
        for this batch and is reported, other trucks are unaffected.
        """
        by_truck: Dict[str, List[PositionSample]] = defaultdict(list)
        for sample in samples:
            by_truck[sample.truck_id].append(sample)

        report = BatchReport()
        if not by_truck:
            return report

        with ThreadPoolExecutor(
            max_workers=min(self.max_workers, len(by_truck)),
            thread_name_prefix="telemetry",
        ) as executor:
            futures = {
                truck_id: executor.submit(
                    self._ingest_truck,
                    truck_id,
                    sorted(truck_samples, key=lambda s: s.timestamp),
                    now,
                )
                for truck_id, truck_samples in by_truck.items()
            }

            for truck_id, future in futures.items():
                results, error = future.result()
                report.results.extend(results)
                if error is not None:
                    report.skipped[truck_id] = error

        logger.info(
            f"[TELEMETRY] Batch done: {len(report.results)} samples, "
            f"{len(report.skipped)} trucks skipped"
        )
        return report
