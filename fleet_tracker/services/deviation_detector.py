"""
Route Deviation Detector + Episode Tracker

measure_deviation() answers "how far is this position from the planned path":
the minimum over the distance to every checkpoint and to every segment
between consecutive checkpoints.

Episodes follow a two-state machine per (truck, route):

    not deviating --(distance > threshold)--> deviating (open episode)
    deviating     --(distance <= threshold)--> not deviating (episode closed)

An episode belongs to one route. When the truck's active route changes (or it
has none), episodes still open on other routes are closed.

While deviating, the episode keeps the maximum distance observed; it never
decreases and is not touched on close.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from fleet_tracker.models import (
    DeviationEpisode,
    DeviationResult,
    EpisodePlan,
    EpisodeTransition,
    Position,
)
from fleet_tracker.services.geodesy import distance, point_to_segment_distance
from settings import TRACKING

logger = logging.getLogger(__name__)


@dataclass
class DeviationConfig:
    threshold_m: float = field(default_factory=lambda: TRACKING.deviation_threshold_m)


def measure_deviation(
    position: Position,
    planned_path: Sequence[Position],
    threshold_m: Optional[float] = None,
) -> DeviationResult:
    """
    Measure distance from the planned path and flag a deviation.

    Args:
        position: Current truck position
        planned_path: Checkpoint positions in route order
        threshold_m: Deviation threshold (default from settings, 500 m)

    Returns:
        DeviationResult; an empty path is never deviating (distance 0)
    """
    if threshold_m is None:
        threshold_m = TRACKING.deviation_threshold_m

    if not planned_path:
        return DeviationResult(is_deviating=False, distance_from_route_m=0.0)

    min_distance = float("inf")
    for i, checkpoint in enumerate(planned_path):
        min_distance = min(min_distance, distance(position, checkpoint))
        if i < len(planned_path) - 1:
            min_distance = min(
                min_distance,
                point_to_segment_distance(position, checkpoint, planned_path[i + 1]),
            )

    return DeviationResult(
        is_deviating=min_distance > threshold_m,
        distance_from_route_m=min_distance,
    )


def plan_episode_change(
    open_episode: Optional[DeviationEpisode], result: DeviationResult
) -> EpisodePlan:
    """Pure transition of the episode state machine."""
    if open_episode is None:
        if result.is_deviating:
            return EpisodePlan(EpisodeTransition.OPENED, result.distance_from_route_m)
        return EpisodePlan(EpisodeTransition.UNCHANGED)

    if result.is_deviating:
        if result.distance_from_route_m > open_episode.max_distance_m:
            return EpisodePlan(EpisodeTransition.UPDATED, result.distance_from_route_m)
        return EpisodePlan(EpisodeTransition.UNCHANGED)

    return EpisodePlan(EpisodeTransition.CLOSED)


class EpisodeTracker:
    """
    Applies deviation results to persisted episodes.

    The open-episode read and the write happen inside a single store call
    (reconcile_episode), so the at-most-one-open-episode invariant holds even
    if two writers race on the same (truck, route).
    """

    def __init__(self, store, config: Optional[DeviationConfig] = None):
        self.store = store
        self.config = config or DeviationConfig()

    def measure(self, position: Position, planned_path: Sequence[Position]) -> DeviationResult:
        return measure_deviation(position, planned_path, self.config.threshold_m)

    def track(
        self, truck_id: str, route_id: str, result: DeviationResult, now: datetime
    ) -> Tuple[EpisodeTransition, Optional[DeviationEpisode]]:
        transition, episode = self.store.reconcile_episode(
            truck_id,
            route_id,
            lambda open_episode: plan_episode_change(open_episode, result),
            now,
        )

        if transition == EpisodeTransition.OPENED:
            logger.warning(
                f"[DEVIATION] {truck_id} left route {route_id}: "
                f"{result.distance_from_route_m:.0f} m from path"
            )
        elif transition == EpisodeTransition.CLOSED:
            logger.info(
                f"[DEVIATION] {truck_id} back on route {route_id} "
                f"(max {episode.max_distance_m:.0f} m)"
            )
        elif transition == EpisodeTransition.UPDATED:
            logger.debug(
                f"[DEVIATION] {truck_id} new max {result.distance_from_route_m:.0f} m"
            )

        return transition, episode

    def close_stale(
        self, truck_id: str, active_route_id: Optional[str], now: datetime
    ) -> List[DeviationEpisode]:
        """
        Close the truck's open episodes on routes other than active_route_id
        (all of them when the truck has no active route).
        """
        closed = []
        for episode in self.store.list_episodes(active=True, truck_id=truck_id):
            if episode.route_id == active_route_id:
                continue
            transition, result = self.store.reconcile_episode(
                truck_id,
                episode.route_id,
                lambda open_episode: EpisodePlan(EpisodeTransition.CLOSED),
                now,
            )
            if transition == EpisodeTransition.CLOSED:
                logger.info(
                    f"[DEVIATION] {truck_id} closed episode on inactive route {episode.route_id} "
                    f"(max {result.max_distance_m:.0f} m)"
                )
                closed.append(result)
        return closed
