"""Dataclasses and enums for type safety and validation."""

from .tracking_models import (
    AlertAction,
    AlertPlan,
    AlertSeverity,
    ChangeEntity,
    ChangeEvent,
    Checkpoint,
    Customer,
    DelayReason,
    Delivery,
    DeliveryStatus,
    DeviationEpisode,
    DeviationResult,
    EpisodePlan,
    EpisodeTransition,
    FleetStats,
    IssueCategory,
    MaintenanceAlert,
    MaintenanceEvaluation,
    MaintenanceRule,
    MaintenanceStatus,
    PlannedRoute,
    Position,
    PositionSample,
    ServiceType,
    Truck,
    TruckStatus,
    validate_coordinates,
)

__all__ = [
    "AlertAction",
    "AlertPlan",
    "AlertSeverity",
    "ChangeEntity",
    "ChangeEvent",
    "Checkpoint",
    "Customer",
    "DelayReason",
    "Delivery",
    "DeliveryStatus",
    "DeviationEpisode",
    "DeviationResult",
    "EpisodePlan",
    "EpisodeTransition",
    "FleetStats",
    "IssueCategory",
    "MaintenanceAlert",
    "MaintenanceEvaluation",
    "MaintenanceRule",
    "MaintenanceStatus",
    "PlannedRoute",
    "Position",
    "PositionSample",
    "ServiceType",
    "Truck",
    "TruckStatus",
    "validate_coordinates",
]
