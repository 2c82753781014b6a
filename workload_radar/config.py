"""
Application configuration management.
"""
import os
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional, Tuple


def _default_data_dir() -> Path:
    env_dir = os.getenv("DATA_DIR")
    if env_dir:
        return Path(env_dir)
    return Path("./data")


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


ACTIVE_EMPLOYEE_STATUS = 2


def _env_optional_int(name: str, default: str = "") -> Optional[int]:
    raw = os.getenv(name, default).strip()
    if not raw or raw.lower() == "all":
        return None
    return int(raw)


def _env_int_tuple(name: str, default: str) -> Tuple[int, ...]:
    raw = os.getenv(name, default)
    return tuple(int(part) for part in raw.split(",") if part.strip())


@dataclass
class AppConfig:
    """Application configuration with environment overrides."""

    # Paths
    data_dir: Path = field(default_factory=_default_data_dir)

    # Environment
    app_env: str = field(default_factory=lambda: os.getenv("APP_ENV", "dev"))

    # Origin-system tag every join is scoped to
    source_system: str = field(default_factory=lambda: os.getenv("SOURCE_SYSTEM", "mantis"))

    # Optional SQL store (takes priority over files when set)
    database_url: str = field(default_factory=lambda: os.getenv("DATABASE_URL", ""))

    # Logging
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    log_json: bool = field(default_factory=lambda: _env_bool("LOG_JSON", "false"))

    # Custom field designations
    eta_field_id: int = field(default_factory=lambda: int(os.getenv("ETA_FIELD_ID", "4")))
    task_type_field_ids: Tuple[int, ...] = field(
        default_factory=lambda: _env_int_tuple("TASK_TYPE_FIELD_IDS", "40,54")
    )

    # Only employees with this employment status are in scope; 2 is active
    # in the HRMS, EMPLOYEE_STATUS_FILTER=all (or empty) disables the filter
    employee_status_filter: Optional[int] = field(
        default_factory=lambda: _env_optional_int("EMPLOYEE_STATUS_FILTER", str(ACTIVE_EMPLOYEE_STATUS))
    )

    # Capacity model
    hours_per_day: float = field(default_factory=lambda: float(os.getenv("HOURS_PER_DAY", "8")))
    standard_weekly_hours: float = 40.0

    @property
    def processed_dir(self) -> Path:
        return self.data_dir / "processed"

    @property
    def marts_dir(self) -> Path:
        return self.data_dir / "marts"

    @property
    def alerts_dir(self) -> Path:
        return self.data_dir / "alerts"

    @property
    def is_prod(self) -> bool:
        return self.app_env.lower() == "prod"


# Global config instance
config = AppConfig()


# Mart file names
MART_FILES = {
    "workload_snapshots": "workload_snapshots",
}

ALERTS_FILE = "risk_alerts"
