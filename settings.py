"""
Fleet Tracker Settings
Centralized configuration from environment variables

All thresholds used by the derived-state engine live here so they can be
tuned per deployment without code changes. Secrets MUST come from the
environment (or a local .env file).
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _get_env(key: str, default: str = "", required: bool = False) -> str:
    """Get environment variable with optional requirement enforcement."""
    value = os.getenv(key, default)
    if required and not value:
        raise ValueError(f"Required environment variable {key} is not set!")
    return value


def _get_env_int(key: str, default: int) -> int:
    """Get integer environment variable."""
    return int(os.getenv(key, str(default)))


def _get_env_float(key: str, default: float) -> float:
    """Get float environment variable."""
    return float(os.getenv(key, str(default)))


def _get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean environment variable."""
    return os.getenv(key, str(default)).lower() in ("true", "1", "yes")


# =============================================================================
# DATABASE SETTINGS
# =============================================================================
@dataclass
class DatabaseSettings:
    """MySQL record store configuration - ALL from environment."""

    host: str = field(default_factory=lambda: _get_env("MYSQL_HOST", "localhost"))
    port: int = field(default_factory=lambda: _get_env_int("MYSQL_PORT", 3306))
    user: str = field(default_factory=lambda: _get_env("MYSQL_USER", "fleet_admin"))
    password: str = field(default_factory=lambda: _get_env("MYSQL_PASSWORD", ""))
    database: str = field(
        default_factory=lambda: _get_env("MYSQL_DATABASE", "fleet_tracker")
    )
    charset: str = "utf8mb4"
    connect_timeout: int = field(
        default_factory=lambda: _get_env_int("MYSQL_CONNECT_TIMEOUT", 10)
    )

    def get_connection_dict(self) -> Dict:
        """Return connection dictionary for pymysql."""
        return {
            "host": self.host,
            "port": self.port,
            "user": self.user,
            "password": self.password,
            "database": self.database,
            "charset": self.charset,
            "connect_timeout": self.connect_timeout,
        }


# =============================================================================
# TRACKING SETTINGS
# =============================================================================
@dataclass
class TrackingSettings:
    """Truck status and route deviation thresholds."""

    # A truck whose last report is older than this is offline
    offline_after_minutes: float = field(
        default_factory=lambda: _get_env_float("OFFLINE_AFTER_MINUTES", 5.0)
    )
    # Strictly above this speed a truck is en route
    moving_speed_kmh: float = field(
        default_factory=lambda: _get_env_float("MOVING_SPEED_KMH", 5.0)
    )
    deviation_threshold_m: float = field(
        default_factory=lambda: _get_env_float("DEVIATION_THRESHOLD_M", 500.0)
    )
    # Samples stamped further than this past server time are rejected
    max_clock_skew_seconds: float = field(
        default_factory=lambda: _get_env_float("MAX_CLOCK_SKEW_SECONDS", 120.0)
    )
    # Parallel trucks per ingestion batch
    ingest_workers: int = field(
        default_factory=lambda: _get_env_int("INGEST_WORKERS", 4)
    )


# =============================================================================
# MAINTENANCE SETTINGS
# =============================================================================
@dataclass
class MaintenanceSettings:
    """Maintenance due windows and evaluation cadence."""

    due_soon_km: float = field(
        default_factory=lambda: _get_env_float("DUE_SOON_KM", 500.0)
    )
    due_soon_days: int = field(
        default_factory=lambda: _get_env_int("DUE_SOON_DAYS", 7)
    )
    interval_minutes: int = field(
        default_factory=lambda: _get_env_int("MAINTENANCE_INTERVAL_MINUTES", 60)
    )


# =============================================================================
# APPLICATION SETTINGS
# =============================================================================
@dataclass
class AppSettings:
    """General application settings."""

    debug: bool = field(default_factory=lambda: _get_env_bool("DEBUG", False))
    log_level: str = field(default_factory=lambda: _get_env("LOG_LEVEL", "INFO"))
    log_dir: Path = field(
        default_factory=lambda: Path(
            _get_env("LOG_DIR", str(Path(__file__).parent / "logs"))
        )
    )
    # memory | mysql
    store_backend: str = field(
        default_factory=lambda: _get_env("STORE_BACKEND", "memory").lower()
    )
    version: str = "1.0.0"


# =============================================================================
# GLOBAL SETTINGS INSTANCE
# =============================================================================
class Settings:
    """Global settings container - singleton pattern."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialize()
        return cls._instance

    def _initialize(self):
        """Initialize all settings."""
        self.database = DatabaseSettings()
        self.tracking = TrackingSettings()
        self.maintenance = MaintenanceSettings()
        self.app = AppSettings()

    def validate(self) -> List[str]:
        """Validate settings and return list of warnings."""
        warnings = []

        if self.app.store_backend not in ("memory", "mysql"):
            warnings.append(
                f"Unknown STORE_BACKEND '{self.app.store_backend}' (expected memory or mysql)"
            )

        if self.app.store_backend == "mysql" and not self.database.password:
            warnings.append("MYSQL_PASSWORD not set")

        if self.tracking.offline_after_minutes <= 0:
            warnings.append("OFFLINE_AFTER_MINUTES must be positive")

        if self.tracking.deviation_threshold_m <= 0:
            warnings.append("DEVIATION_THRESHOLD_M must be positive")

        if self.tracking.max_clock_skew_seconds < 0:
            warnings.append("MAX_CLOCK_SKEW_SECONDS must not be negative")

        if self.app.store_backend == "memory":
            warnings.append("In-memory store - data is lost on restart")

        return warnings

    def to_dict(self) -> Dict:
        """Export settings as dictionary (for debugging, excludes secrets)."""
        return {
            "version": self.app.version,
            "debug": self.app.debug,
            "store_backend": self.app.store_backend,
            "database_host": self.database.host,
            "offline_after_minutes": self.tracking.offline_after_minutes,
            "moving_speed_kmh": self.tracking.moving_speed_kmh,
            "deviation_threshold_m": self.tracking.deviation_threshold_m,
            "max_clock_skew_seconds": self.tracking.max_clock_skew_seconds,
            "due_soon_km": self.maintenance.due_soon_km,
            "due_soon_days": self.maintenance.due_soon_days,
            "maintenance_interval_minutes": self.maintenance.interval_minutes,
        }


# Create global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get global settings instance."""
    return settings


# Export commonly used settings
DATABASE = settings.database
TRACKING = settings.tracking
MAINTENANCE = settings.maintenance
APP = settings.app
