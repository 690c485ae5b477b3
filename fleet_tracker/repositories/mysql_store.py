"""
MySQL Fleet Store - pymysql implementation of FleetStore

Atomicity:
- record_position updates the truck row and inserts the GPS event in one
  transaction.
- reconcile_alert locks the maintenance rule row (SELECT ... FOR UPDATE)
  before reading the unresolved alert, so concurrent reconcilers for the same
  rule are serialized and the second one sees the first one's alert.
- reconcile_episode does the same on the route row.
- update_delivery locks the delivery row while the workflow decides the change.

All timestamps are stored as naive UTC DATETIMEs and returned timezone-aware.
pymysql errors are wrapped in StoreError.
"""

import json
import logging
import uuid
from contextlib import contextmanager
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import pymysql
from pymysql import cursors

from fleet_tracker.exceptions import RecordNotFoundError, StoreError
from fleet_tracker.models import (
    AlertAction,
    AlertSeverity,
    ChangeEntity,
    Checkpoint,
    Customer,
    Delivery,
    DeliveryStatus,
    DeviationEpisode,
    EpisodeTransition,
    MaintenanceAlert,
    MaintenanceRule,
    PlannedRoute,
    PositionSample,
    Truck,
)
from fleet_tracker.repositories.fleet_store import (
    AlertDecider,
    DeliveryUpdater,
    EpisodeDecider,
    FleetStore,
)
from timezone_utils import ensure_utc

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# DATABASE SCHEMA
# ═══════════════════════════════════════════════════════════════════════════════

SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS trucks (
        id VARCHAR(64) PRIMARY KEY,
        name VARCHAR(200) NOT NULL,
        plate VARCHAR(32) NOT NULL DEFAULT '',
        driver_id VARCHAR(64) NULL,
        last_lat DOUBLE NULL,
        last_lng DOUBLE NULL,
        last_speed DOUBLE NULL,
        last_update_ts DATETIME(3) NULL,
        odometer_km DOUBLE NOT NULL DEFAULT 0,
        fuel_used_l DOUBLE NOT NULL DEFAULT 0
    ) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4
    """,
    """
    CREATE TABLE IF NOT EXISTS customers (
        id VARCHAR(64) PRIMARY KEY,
        name VARCHAR(200) NOT NULL,
        address VARCHAR(500) NULL,
        lat DOUBLE NOT NULL,
        lng DOUBLE NOT NULL,
        geofence_radius_m DOUBLE NOT NULL DEFAULT 100
    ) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4
    """,
    """
    CREATE TABLE IF NOT EXISTS routes (
        id VARCHAR(64) PRIMARY KEY,
        truck_id VARCHAR(64) NOT NULL,
        date DATE NOT NULL,
        planned_path JSON NOT NULL,
        UNIQUE KEY uq_route_truck_date (truck_id, date)
    ) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4
    """,
    """
    CREATE TABLE IF NOT EXISTS gps_events (
        id BIGINT AUTO_INCREMENT PRIMARY KEY,
        truck_id VARCHAR(64) NOT NULL,
        ts DATETIME(3) NOT NULL,
        lat DOUBLE NOT NULL,
        lng DOUBLE NOT NULL,
        speed DOUBLE NOT NULL,
        odometer_km DOUBLE NULL,
        INDEX idx_gps_truck_ts (truck_id, ts)
    ) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4
    """,
    """
    CREATE TABLE IF NOT EXISTS route_deviation_events (
        id VARCHAR(64) PRIMARY KEY,
        truck_id VARCHAR(64) NOT NULL,
        route_id VARCHAR(64) NOT NULL,
        start_ts DATETIME(3) NOT NULL,
        end_ts DATETIME(3) NULL,
        max_distance_m DOUBLE NOT NULL,
        notes TEXT NULL,
        INDEX idx_dev_open (truck_id, route_id, end_ts)
    ) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4
    """,
    """
    CREATE TABLE IF NOT EXISTS maintenance_rules (
        id VARCHAR(64) PRIMARY KEY,
        truck_id VARCHAR(64) NOT NULL,
        type VARCHAR(32) NOT NULL,
        interval_km DOUBLE NOT NULL,
        interval_days INT NOT NULL,
        last_service_km DOUBLE NOT NULL,
        last_service_date DATE NOT NULL,
        INDEX idx_rules_truck (truck_id)
    ) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4
    """,
    """
    CREATE TABLE IF NOT EXISTS maintenance_alerts (
        id VARCHAR(64) PRIMARY KEY,
        truck_id VARCHAR(64) NOT NULL,
        rule_id VARCHAR(64) NOT NULL,
        severity ENUM('due_soon', 'overdue') NOT NULL,
        message TEXT NOT NULL,
        created_ts DATETIME(3) NOT NULL,
        resolved_ts DATETIME(3) NULL,
        INDEX idx_alert_rule_unresolved (rule_id, resolved_ts),
        INDEX idx_alert_created (created_ts)
    ) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4
    """,
    """
    CREATE TABLE IF NOT EXISTS deliveries (
        id VARCHAR(64) PRIMARY KEY,
        route_id VARCHAR(64) NOT NULL,
        customer_id VARCHAR(64) NOT NULL,
        truck_id VARCHAR(64) NOT NULL,
        driver_id VARCHAR(64) NULL,
        status ENUM('pending', 'in_progress', 'completed', 'failed') NOT NULL DEFAULT 'pending',
        stop_order INT NOT NULL,
        created_at DATETIME(3) NOT NULL,
        completed_ts DATETIME(3) NULL,
        signature_url VARCHAR(500) NULL,
        issue_category ENUM('damage', 'refused', 'missing_items', 'other') NULL,
        issue_notes TEXT NULL,
        delay_reason ENUM('traffic', 'queue', 'loading', 'roadwork', 'other') NULL,
        INDEX idx_delivery_truck (truck_id, stop_order),
        INDEX idx_delivery_status (status, created_at)
    ) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4
    """,
]


def _to_db_ts(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return ensure_utc(value).replace(tzinfo=None)


def _from_db_ts(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc)


# ═══════════════════════════════════════════════════════════════════════════════
# ROW MAPPERS
# ═══════════════════════════════════════════════════════════════════════════════


def _truck_from_row(row: Dict[str, Any]) -> Truck:
    return Truck(
        id=row["id"],
        name=row["name"],
        plate=row.get("plate") or "",
        driver_id=row.get("driver_id"),
        last_latitude=row.get("last_lat"),
        last_longitude=row.get("last_lng"),
        last_speed_kmh=row.get("last_speed"),
        last_update=_from_db_ts(row.get("last_update_ts")),
        odometer_km=float(row.get("odometer_km") or 0),
        fuel_used_l=float(row.get("fuel_used_l") or 0),
    )


def _customer_from_row(row: Dict[str, Any]) -> Customer:
    return Customer(
        id=row["id"],
        name=row["name"],
        latitude=row["lat"],
        longitude=row["lng"],
        geofence_radius_m=float(row["geofence_radius_m"]),
        address=row.get("address"),
    )


def _route_from_row(row: Dict[str, Any]) -> PlannedRoute:
    path = row["planned_path"]
    if isinstance(path, (str, bytes)):
        path = json.loads(path)
    checkpoints = [
        Checkpoint(
            latitude=cp["lat"],
            longitude=cp["lng"],
            order=cp.get("order", i),
            customer_id=cp.get("customer_id"),
        )
        for i, cp in enumerate(path or [])
    ]
    return PlannedRoute(
        id=row["id"], truck_id=row["truck_id"], route_date=row["date"], checkpoints=checkpoints
    )


def _rule_from_row(row: Dict[str, Any]) -> MaintenanceRule:
    return MaintenanceRule(
        id=row["id"],
        truck_id=row["truck_id"],
        service_type=row["type"],
        interval_km=float(row["interval_km"]),
        interval_days=int(row["interval_days"]),
        last_service_km=float(row["last_service_km"]),
        last_service_date=row["last_service_date"],
    )


def _alert_from_row(row: Dict[str, Any]) -> MaintenanceAlert:
    return MaintenanceAlert(
        id=row["id"],
        truck_id=row["truck_id"],
        rule_id=row["rule_id"],
        severity=AlertSeverity(row["severity"]),
        message=row["message"],
        created_ts=_from_db_ts(row["created_ts"]),
        resolved_ts=_from_db_ts(row.get("resolved_ts")),
    )


def _episode_from_row(row: Dict[str, Any]) -> DeviationEpisode:
    return DeviationEpisode(
        id=row["id"],
        truck_id=row["truck_id"],
        route_id=row["route_id"],
        start_ts=_from_db_ts(row["start_ts"]),
        end_ts=_from_db_ts(row.get("end_ts")),
        max_distance_m=float(row["max_distance_m"]),
        notes=row.get("notes"),
    )


def _sample_from_row(row: Dict[str, Any]) -> PositionSample:
    return PositionSample(
        truck_id=row["truck_id"],
        latitude=row["lat"],
        longitude=row["lng"],
        speed_kmh=float(row["speed"]),
        timestamp=_from_db_ts(row["ts"]),
        odometer_km=row.get("odometer_km"),
    )


def _delivery_from_row(row: Dict[str, Any]) -> Delivery:
    return Delivery(
        id=row["id"],
        route_id=row["route_id"],
        customer_id=row["customer_id"],
        truck_id=row["truck_id"],
        driver_id=row.get("driver_id"),
        status=row["status"],
        stop_order=int(row["stop_order"]),
        created_ts=_from_db_ts(row["created_at"]),
        completed_ts=_from_db_ts(row.get("completed_ts")),
        signature_url=row.get("signature_url"),
        issue_category=row.get("issue_category"),
        issue_notes=row.get("issue_notes"),
        delay_reason=row.get("delay_reason"),
    )


# ═══════════════════════════════════════════════════════════════════════════════
# STORE
# ═══════════════════════════════════════════════════════════════════════════════


class MySQLFleetStore(FleetStore):
    """FleetStore backed by MySQL through pymysql"""

    def __init__(self, db_config: Dict[str, Any]):
        super().__init__()
        self.db_config = db_config
        logger.info(f"MySQLFleetStore initialized for DB: {db_config.get('database')}")

    def _get_connection(self):
        """Get database connection (transactions are committed explicitly)."""
        return pymysql.connect(
            **self.db_config, cursorclass=cursors.DictCursor, autocommit=False
        )

    @contextmanager
    def _transaction(self):
        """Yield a cursor; commit on success, roll back and wrap errors otherwise."""
        try:
            conn = self._get_connection()
        except pymysql.MySQLError as e:
            raise StoreError(f"Cannot connect to fleet database: {e}") from e
        try:
            with conn.cursor() as cursor:
                yield cursor
            conn.commit()
        except pymysql.MySQLError as e:
            conn.rollback()
            raise StoreError(f"Fleet database error: {e}") from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _fetch_all(self, query: str, params: tuple = ()) -> List[Dict[str, Any]]:
        with self._transaction() as cursor:
            cursor.execute(query, params)
            return list(cursor.fetchall())

    def _fetch_one(self, query: str, params: tuple = ()) -> Optional[Dict[str, Any]]:
        with self._transaction() as cursor:
            cursor.execute(query, params)
            return cursor.fetchone()

    def ensure_schema(self) -> None:
        """Create tables if they don't exist"""
        with self._transaction() as cursor:
            for statement in SCHEMA_STATEMENTS:
                cursor.execute(statement)
        logger.info("[OK] Fleet tables verified")

    # ───────────────────────────────────────────────────────────────────────
    # READS
    # ───────────────────────────────────────────────────────────────────────

    def get_truck(self, truck_id: str) -> Optional[Truck]:
        row = self._fetch_one("SELECT * FROM trucks WHERE id = %s", (truck_id,))
        return _truck_from_row(row) if row else None

    def list_trucks(self) -> List[Truck]:
        rows = self._fetch_all("SELECT * FROM trucks ORDER BY name, id")
        return [_truck_from_row(r) for r in rows]

    def list_customers(self) -> List[Customer]:
        rows = self._fetch_all("SELECT * FROM customers ORDER BY name")
        return [_customer_from_row(r) for r in rows]

    def get_active_route(self, truck_id: str, route_date: date) -> Optional[PlannedRoute]:
        row = self._fetch_one(
            "SELECT * FROM routes WHERE truck_id = %s AND date = %s", (truck_id, route_date)
        )
        return _route_from_row(row) if row else None

    def list_rules(self, truck_id: Optional[str] = None) -> List[MaintenanceRule]:
        if truck_id is None:
            rows = self._fetch_all("SELECT * FROM maintenance_rules ORDER BY truck_id, id")
        else:
            rows = self._fetch_all(
                "SELECT * FROM maintenance_rules WHERE truck_id = %s ORDER BY id", (truck_id,)
            )
        return [_rule_from_row(r) for r in rows]

    def get_unresolved_alert(self, rule_id: str) -> Optional[MaintenanceAlert]:
        row = self._fetch_one(
            """
            SELECT * FROM maintenance_alerts
            WHERE rule_id = %s AND resolved_ts IS NULL
            ORDER BY created_ts DESC
            LIMIT 1
            """,
            (rule_id,),
        )
        return _alert_from_row(row) if row else None

    def list_alerts(
        self, resolved: Optional[bool] = None, truck_id: Optional[str] = None
    ) -> List[MaintenanceAlert]:
        clauses, params = [], []
        if resolved is True:
            clauses.append("resolved_ts IS NOT NULL")
        elif resolved is False:
            clauses.append("resolved_ts IS NULL")
        if truck_id is not None:
            clauses.append("truck_id = %s")
            params.append(truck_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._fetch_all(
            f"SELECT * FROM maintenance_alerts {where} ORDER BY created_ts DESC", tuple(params)
        )
        return [_alert_from_row(r) for r in rows]

    def get_open_episode(self, truck_id: str, route_id: str) -> Optional[DeviationEpisode]:
        row = self._fetch_one(
            """
            SELECT * FROM route_deviation_events
            WHERE truck_id = %s AND route_id = %s AND end_ts IS NULL
            LIMIT 1
            """,
            (truck_id, route_id),
        )
        return _episode_from_row(row) if row else None

    def list_episodes(
        self, active: Optional[bool] = None, truck_id: Optional[str] = None
    ) -> List[DeviationEpisode]:
        clauses, params = [], []
        if active is True:
            clauses.append("end_ts IS NULL")
        elif active is False:
            clauses.append("end_ts IS NOT NULL")
        if truck_id is not None:
            clauses.append("truck_id = %s")
            params.append(truck_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._fetch_all(
            f"SELECT * FROM route_deviation_events {where} ORDER BY start_ts DESC",
            tuple(params),
        )
        return [_episode_from_row(r) for r in rows]

    def list_samples(self, truck_id: str, limit: int = 100) -> List[PositionSample]:
        rows = self._fetch_all(
            "SELECT * FROM gps_events WHERE truck_id = %s ORDER BY ts DESC LIMIT %s",
            (truck_id, int(limit)),
        )
        return [_sample_from_row(r) for r in rows]

    def get_delivery(self, delivery_id: str) -> Optional[Delivery]:
        row = self._fetch_one("SELECT * FROM deliveries WHERE id = %s", (delivery_id,))
        return _delivery_from_row(row) if row else None

    def list_deliveries(
        self, truck_id: Optional[str] = None, status: Optional[DeliveryStatus] = None
    ) -> List[Delivery]:
        clauses, params = [], []
        if truck_id is not None:
            clauses.append("truck_id = %s")
            params.append(truck_id)
        if status is not None:
            clauses.append("status = %s")
            params.append(DeliveryStatus(status).value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._fetch_all(
            f"SELECT * FROM deliveries {where} ORDER BY stop_order, id", tuple(params)
        )
        return [_delivery_from_row(r) for r in rows]

    # ───────────────────────────────────────────────────────────────────────
    # WRITES
    # ───────────────────────────────────────────────────────────────────────

    def record_position(self, sample: PositionSample, odometer_km: float) -> Truck:
        with self._transaction() as cursor:
            cursor.execute(
                """
                UPDATE trucks
                SET last_lat = %s, last_lng = %s, last_speed = %s,
                    last_update_ts = %s, odometer_km = GREATEST(odometer_km, %s),
                    fuel_used_l = GREATEST(fuel_used_l, COALESCE(%s, fuel_used_l))
                WHERE id = %s
                """,
                (
                    sample.latitude,
                    sample.longitude,
                    sample.speed_kmh,
                    _to_db_ts(sample.timestamp),
                    odometer_km,
                    sample.fuel_used_l,
                    sample.truck_id,
                ),
            )
            cursor.execute("SELECT * FROM trucks WHERE id = %s", (sample.truck_id,))
            row = cursor.fetchone()
            if row is None:
                raise RecordNotFoundError("truck", sample.truck_id)
            cursor.execute(
                """
                INSERT INTO gps_events (truck_id, ts, lat, lng, speed, odometer_km)
                VALUES (%s, %s, %s, %s, %s, %s)
                """,
                (
                    sample.truck_id,
                    _to_db_ts(sample.timestamp),
                    sample.latitude,
                    sample.longitude,
                    sample.speed_kmh,
                    sample.odometer_km,
                ),
            )

        self.publish(ChangeEntity.TRUCKS, "update", sample.truck_id)
        self.publish(ChangeEntity.GPS_EVENTS, "insert", sample.truck_id)
        return _truck_from_row(row)

    def reconcile_episode(
        self, truck_id: str, route_id: str, decide: EpisodeDecider, now: datetime
    ) -> Tuple[EpisodeTransition, Optional[DeviationEpisode]]:
        with self._transaction() as cursor:
            # Serialize writers for this route
            cursor.execute("SELECT id FROM routes WHERE id = %s FOR UPDATE", (route_id,))
            cursor.execute(
                """
                SELECT * FROM route_deviation_events
                WHERE truck_id = %s AND route_id = %s AND end_ts IS NULL
                LIMIT 1
                """,
                (truck_id, route_id),
            )
            row = cursor.fetchone()
            open_episode = _episode_from_row(row) if row else None
            plan = decide(open_episode)

            if plan.transition == EpisodeTransition.OPENED and open_episode is None:
                episode = DeviationEpisode(
                    id=uuid.uuid4().hex,
                    truck_id=truck_id,
                    route_id=route_id,
                    start_ts=now,
                    max_distance_m=plan.distance_m,
                )
                cursor.execute(
                    """
                    INSERT INTO route_deviation_events
                        (id, truck_id, route_id, start_ts, max_distance_m)
                    VALUES (%s, %s, %s, %s, %s)
                    """,
                    (episode.id, truck_id, route_id, _to_db_ts(now), plan.distance_m),
                )
                action = "insert"
            elif plan.transition == EpisodeTransition.UPDATED and open_episode is not None:
                open_episode.max_distance_m = max(open_episode.max_distance_m, plan.distance_m)
                cursor.execute(
                    "UPDATE route_deviation_events SET max_distance_m = %s WHERE id = %s",
                    (open_episode.max_distance_m, open_episode.id),
                )
                episode = open_episode
                action = "update"
            elif plan.transition == EpisodeTransition.CLOSED and open_episode is not None:
                open_episode.end_ts = ensure_utc(now)
                cursor.execute(
                    "UPDATE route_deviation_events SET end_ts = %s WHERE id = %s",
                    (_to_db_ts(now), open_episode.id),
                )
                episode = open_episode
                action = "update"
            else:
                return EpisodeTransition.UNCHANGED, open_episode

        self.publish(ChangeEntity.ROUTE_DEVIATIONS, action, episode.id)
        return plan.transition, episode

    def reconcile_alert(
        self, rule_id: str, truck_id: str, decide: AlertDecider, now: datetime
    ) -> Tuple[AlertAction, Optional[MaintenanceAlert]]:
        with self._transaction() as cursor:
            # Row lock on the rule makes check-then-write atomic per rule id
            cursor.execute("SELECT id FROM maintenance_rules WHERE id = %s FOR UPDATE", (rule_id,))
            cursor.execute(
                """
                SELECT * FROM maintenance_alerts
                WHERE rule_id = %s AND resolved_ts IS NULL
                ORDER BY created_ts DESC
                LIMIT 1
                """,
                (rule_id,),
            )
            row = cursor.fetchone()
            existing = _alert_from_row(row) if row else None
            plan = decide(existing)

            if plan.action == AlertAction.CREATED and existing is None:
                alert = MaintenanceAlert(
                    id=uuid.uuid4().hex,
                    truck_id=truck_id,
                    rule_id=rule_id,
                    severity=plan.severity,
                    message=plan.message,
                    created_ts=ensure_utc(now),
                )
                cursor.execute(
                    """
                    INSERT INTO maintenance_alerts
                        (id, truck_id, rule_id, severity, message, created_ts)
                    VALUES (%s, %s, %s, %s, %s, %s)
                    """,
                    (
                        alert.id,
                        truck_id,
                        rule_id,
                        AlertSeverity(plan.severity).value,
                        plan.message,
                        _to_db_ts(now),
                    ),
                )
                action = "insert"
            elif plan.action == AlertAction.ESCALATED and existing is not None:
                existing.severity = AlertSeverity(plan.severity)
                existing.message = plan.message
                cursor.execute(
                    "UPDATE maintenance_alerts SET severity = %s, message = %s WHERE id = %s",
                    (existing.severity.value, plan.message, existing.id),
                )
                alert = existing
                action = "update"
            else:
                return AlertAction.UNCHANGED, existing

        self.publish(ChangeEntity.MAINTENANCE_ALERTS, action, alert.id)
        return plan.action, alert

    def resolve_alert(self, alert_id: str, now: datetime) -> MaintenanceAlert:
        with self._transaction() as cursor:
            cursor.execute(
                "SELECT * FROM maintenance_alerts WHERE id = %s FOR UPDATE", (alert_id,)
            )
            row = cursor.fetchone()
            if row is None:
                raise RecordNotFoundError("maintenance alert", alert_id)
            alert = _alert_from_row(row)
            if alert.is_resolved:
                return alert
            cursor.execute(
                "UPDATE maintenance_alerts SET resolved_ts = %s WHERE id = %s",
                (_to_db_ts(now), alert_id),
            )
            alert.resolved_ts = ensure_utc(now)

        self.publish(ChangeEntity.MAINTENANCE_ALERTS, "update", alert_id)
        return alert

    def update_delivery(self, delivery_id: str, apply: DeliveryUpdater) -> Delivery:
        with self._transaction() as cursor:
            cursor.execute("SELECT * FROM deliveries WHERE id = %s FOR UPDATE", (delivery_id,))
            row = cursor.fetchone()
            if row is None:
                raise RecordNotFoundError("delivery", delivery_id)
            delivery = apply(_delivery_from_row(row))
            cursor.execute(
                """
                UPDATE deliveries
                SET status = %s, driver_id = %s, completed_ts = %s, signature_url = %s,
                    issue_category = %s, issue_notes = %s, delay_reason = %s
                WHERE id = %s
                """,
                (
                    delivery.status.value,
                    delivery.driver_id,
                    _to_db_ts(delivery.completed_ts),
                    delivery.signature_url,
                    delivery.issue_category.value if delivery.issue_category else None,
                    delivery.issue_notes,
                    delivery.delay_reason.value if delivery.delay_reason else None,
                    delivery_id,
                ),
            )

        self.publish(ChangeEntity.DELIVERIES, "update", delivery_id)
        return delivery
