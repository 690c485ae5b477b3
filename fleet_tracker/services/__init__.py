"""Service layer: pure evaluators and the lifecycle managers built on them."""

from .delivery_workflow import (
    DeliveryWorkflow,
    apply_arrival,
    apply_completion,
    apply_delay,
    apply_issue,
)
from .deviation_detector import (
    DeviationConfig,
    EpisodeTracker,
    measure_deviation,
    plan_episode_change,
)
from .geodesy import EARTH_RADIUS_M, distance, point_to_segment_distance
from .maintenance_evaluator import (
    AlertLifecycleManager,
    MaintenanceConfig,
    build_alert_message,
    evaluate,
    plan_alert_action,
)
from .status_classifier import StatusClassifier, StatusClassifierConfig, classify

__all__ = [
    "AlertLifecycleManager",
    "DeliveryWorkflow",
    "DeviationConfig",
    "EARTH_RADIUS_M",
    "EpisodeTracker",
    "MaintenanceConfig",
    "StatusClassifier",
    "StatusClassifierConfig",
    "apply_arrival",
    "apply_completion",
    "apply_delay",
    "apply_issue",
    "build_alert_message",
    "classify",
    "distance",
    "evaluate",
    "measure_deviation",
    "plan_alert_action",
    "plan_episode_change",
    "point_to_segment_distance",
]
