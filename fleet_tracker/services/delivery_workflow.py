"""
Delivery Stop Workflow

Driver actions on a delivery stop:

    action        | from                  | to
    --------------+-----------------------+------------------------------
    arrive        | pending, in_progress  | in_progress
    complete      | pending, in_progress  | completed (+ completed_ts, signature)
    report_issue  | pending, in_progress  | failed (+ completed_ts, category, notes)
    add_delay     | pending, in_progress  | unchanged status, delay_reason set

completed and failed are terminal: every action on them raises
InvalidTransitionError and the stored record is left as it was.
"""

import logging
from datetime import datetime
from typing import Optional

from fleet_tracker.exceptions import InvalidInputError, InvalidTransitionError
from fleet_tracker.models import DelayReason, Delivery, DeliveryStatus, IssueCategory
from timezone_utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)


def _require_open(delivery: Delivery, action: str) -> None:
    if delivery.status.is_terminal:
        raise InvalidTransitionError(
            f"Cannot {action} delivery {delivery.id}: already {delivery.status.value}"
        )


def _parse(enum_cls, value, name: str):
    if value is None:
        raise InvalidInputError(f"{name} is required")
    try:
        return enum_cls(value)
    except ValueError:
        raise InvalidInputError(f"Unknown {name}: {value!r}")


def apply_arrival(delivery: Delivery) -> Delivery:
    _require_open(delivery, "arrive at")
    delivery.status = DeliveryStatus.IN_PROGRESS
    return delivery


def apply_completion(
    delivery: Delivery, now: datetime, signature_url: Optional[str] = None
) -> Delivery:
    _require_open(delivery, "complete")
    delivery.status = DeliveryStatus.COMPLETED
    delivery.completed_ts = now
    delivery.signature_url = signature_url
    return delivery


def apply_issue(
    delivery: Delivery, now: datetime, category: IssueCategory, notes: Optional[str] = None
) -> Delivery:
    _require_open(delivery, "report an issue on")
    delivery.status = DeliveryStatus.FAILED
    delivery.completed_ts = now
    delivery.issue_category = category
    delivery.issue_notes = notes
    return delivery


def apply_delay(delivery: Delivery, reason: DelayReason) -> Delivery:
    _require_open(delivery, "delay")
    delivery.delay_reason = reason
    return delivery


class DeliveryWorkflow:
    """Runs driver actions through the store's atomic delivery update."""

    def __init__(self, store):
        self.store = store

    def mark_arrived(self, delivery_id: str) -> Delivery:
        delivery = self.store.update_delivery(delivery_id, apply_arrival)
        logger.info(f"[DELIVERY] {delivery.truck_id} arrived at stop {delivery_id}")
        return delivery

    def complete(
        self,
        delivery_id: str,
        signature_url: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Delivery:
        now = ensure_utc(now) if now else utc_now()
        delivery = self.store.update_delivery(
            delivery_id, lambda d: apply_completion(d, now, signature_url)
        )
        logger.info(f"[DELIVERY] {delivery.truck_id} completed stop {delivery_id}")
        return delivery

    def report_issue(
        self,
        delivery_id: str,
        category,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Delivery:
        """Fail the stop. category is required (damage, refused, missing_items, other)."""
        category = _parse(IssueCategory, category, "issue category")
        now = ensure_utc(now) if now else utc_now()
        delivery = self.store.update_delivery(
            delivery_id, lambda d: apply_issue(d, now, category, notes)
        )
        logger.warning(
            f"[DELIVERY] {delivery.truck_id} failed stop {delivery_id}: {category.value}"
        )
        return delivery

    def add_delay(self, delivery_id: str, reason) -> Delivery:
        reason = _parse(DelayReason, reason, "delay reason")
        delivery = self.store.update_delivery(delivery_id, lambda d: apply_delay(d, reason))
        logger.info(f"[DELIVERY] {delivery.truck_id} delayed at stop {delivery_id}: {reason.value}")
        return delivery
