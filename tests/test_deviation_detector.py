"""
Tests for fleet_tracker/services/deviation_detector.py

Tests cover:
- measure_deviation over checkpoints and segments
- plan_episode_change state machine
- EpisodeTracker against the in-memory store
"""

from datetime import timedelta

import pytest

from fleet_tracker.models import (
    DeviationEpisode,
    DeviationResult,
    EpisodeTransition,
    Position,
)
from fleet_tracker.services.deviation_detector import (
    DeviationConfig,
    EpisodeTracker,
    measure_deviation,
    plan_episode_change,
)
from tests.fixtures.fleet_fixtures import METERS_PER_DEG_LAT, NOW

PATH = [Position(37.77, -122.42), Position(37.78, -122.43)]


def deviating(meters):
    return DeviationResult(is_deviating=True, distance_from_route_m=meters)


ON_ROUTE = DeviationResult(is_deviating=False, distance_from_route_m=20.0)


# ═══════════════════════════════════════════════════════════════════════════════
# MEASUREMENT
# ═══════════════════════════════════════════════════════════════════════════════


class TestMeasureDeviation:
    def test_empty_path_never_deviates(self):
        result = measure_deviation(Position(10.0, 10.0), [])
        assert result.is_deviating is False
        assert result.distance_from_route_m == 0.0

    def test_far_from_path_is_deviating(self):
        result = measure_deviation(Position(37.90, -122.50), PATH)
        assert result.is_deviating is True
        assert result.distance_from_route_m > 10_000

    def test_on_segment_is_not_deviating(self):
        result = measure_deviation(Position(37.775, -122.425), PATH)
        assert result.is_deviating is False
        assert result.distance_from_route_m == pytest.approx(0.0, abs=1e-6)

    def test_single_checkpoint_path(self):
        offset = 300 / METERS_PER_DEG_LAT
        result = measure_deviation(Position(37.77 + offset, -122.42), PATH[:1])
        assert result.distance_from_route_m == pytest.approx(300, rel=1e-6)
        assert result.is_deviating is False

    def test_threshold_is_exclusive(self):
        offset = 500 / METERS_PER_DEG_LAT
        point = Position(37.77 + offset, -122.42)
        exact = measure_deviation(point, PATH[:1]).distance_from_route_m
        assert measure_deviation(point, PATH[:1], threshold_m=exact).is_deviating is False
        assert measure_deviation(point, PATH[:1], threshold_m=exact - 0.01).is_deviating is True

    def test_custom_threshold(self):
        offset = 300 / METERS_PER_DEG_LAT
        result = measure_deviation(Position(37.77 + offset, -122.42), PATH[:1], threshold_m=200)
        assert result.is_deviating is True


# ═══════════════════════════════════════════════════════════════════════════════
# STATE MACHINE
# ═══════════════════════════════════════════════════════════════════════════════


class TestPlanEpisodeChange:
    EPISODE = DeviationEpisode(
        id="E1", truck_id="T1", route_id="ROUTE-T1", start_ts=NOW, max_distance_m=800.0
    )

    def test_open_when_deviating(self):
        plan = plan_episode_change(None, deviating(600))
        assert plan.transition == EpisodeTransition.OPENED
        assert plan.distance_m == 600

    def test_nothing_when_on_route(self):
        assert plan_episode_change(None, ON_ROUTE).transition == EpisodeTransition.UNCHANGED

    def test_update_only_when_larger(self):
        assert plan_episode_change(self.EPISODE, deviating(900)).transition == EpisodeTransition.UPDATED
        assert plan_episode_change(self.EPISODE, deviating(700)).transition == EpisodeTransition.UNCHANGED

    def test_close_when_back_on_route(self):
        assert plan_episode_change(self.EPISODE, ON_ROUTE).transition == EpisodeTransition.CLOSED


# ═══════════════════════════════════════════════════════════════════════════════
# EPISODE TRACKER
# ═══════════════════════════════════════════════════════════════════════════════


class TestEpisodeTracker:
    @pytest.fixture
    def tracker(self, seeded_store):
        return EpisodeTracker(seeded_store, DeviationConfig(threshold_m=500))

    def test_deviate_then_return_closes_one_episode(self, tracker, seeded_store):
        tracker.track("T1", "ROUTE-T1", deviating(650), NOW)
        transition, episode = tracker.track(
            "T1", "ROUTE-T1", ON_ROUTE, NOW + timedelta(minutes=2)
        )

        assert transition == EpisodeTransition.CLOSED
        episodes = seeded_store.list_episodes()
        assert len(episodes) == 1
        assert episodes[0].start_ts == NOW
        assert episodes[0].end_ts == NOW + timedelta(minutes=2)
        assert episodes[0].max_distance_m >= 650

    def test_max_distance_keeps_the_peak(self, tracker, seeded_store):
        """Distances [600, 900, 700] -> one open episode with max 900"""
        transitions = [
            tracker.track("T1", "ROUTE-T1", deviating(d), NOW + timedelta(minutes=i))[0]
            for i, d in enumerate([600, 900, 700])
        ]

        assert transitions == [
            EpisodeTransition.OPENED,
            EpisodeTransition.UPDATED,
            EpisodeTransition.UNCHANGED,
        ]
        open_episodes = seeded_store.list_episodes(active=True)
        assert len(open_episodes) == 1
        assert open_episodes[0].max_distance_m == 900
        assert open_episodes[0].start_ts == NOW

    def test_close_does_not_touch_max(self, tracker, seeded_store):
        tracker.track("T1", "ROUTE-T1", deviating(750), NOW)
        _, closed = tracker.track("T1", "ROUTE-T1", ON_ROUTE, NOW + timedelta(minutes=1))
        assert closed.max_distance_m == 750

    def test_on_route_without_episode_is_noop(self, tracker, seeded_store):
        transition, episode = tracker.track("T1", "ROUTE-T1", ON_ROUTE, NOW)
        assert transition == EpisodeTransition.UNCHANGED
        assert episode is None
        assert seeded_store.list_episodes() == []

    def test_new_episode_after_close(self, tracker, seeded_store):
        tracker.track("T1", "ROUTE-T1", deviating(600), NOW)
        tracker.track("T1", "ROUTE-T1", ON_ROUTE, NOW + timedelta(minutes=1))
        tracker.track("T1", "ROUTE-T1", deviating(550), NOW + timedelta(minutes=2))

        assert len(seeded_store.list_episodes()) == 2
        assert len(seeded_store.list_episodes(active=True)) == 1

    def test_measure_uses_configured_threshold(self, seeded_store):
        tracker = EpisodeTracker(seeded_store, DeviationConfig(threshold_m=100_000))
        assert tracker.measure(Position(37.90, -122.50), PATH).is_deviating is False
