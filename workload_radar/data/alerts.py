"""
Risk alert persistence.

Every store answers the same three calls: ``find_unresolved`` for the
dedup check, ``insert`` returning the new alert id, and ``list_alerts``.
Resolving an alert is someone else's job; ``resolve`` exists for the
operators and tools that do it.
"""
from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import pandas as pd
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    select,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from workload_radar.config import ALERTS_FILE, AppConfig, config as default_config
from workload_radar.data.loader import normalise_database_url
from workload_radar.data.schema import DataAccessError

logger = logging.getLogger("workload-radar.alerts")

ALERT_TYPES = (
    "eta_inflation",
    "silent_overrun",
    "phantom_bandwidth",
    "load_concentration",
    "project_sinkhole",
)
SEVERITIES = ("low", "medium", "high", "critical")
ENTITY_TYPES = ("task", "employee", "project", "team")

ALERT_COLUMNS = [
    "alert_id",
    "alert_type",
    "severity",
    "entity_type",
    "entity_id",
    "title",
    "description",
    "metadata",
    "detected_at",
    "is_resolved",
]


@dataclass
class RiskAlert:
    """One detected risk, before persistence."""
    alert_type: str
    severity: str
    entity_type: str
    entity_id: str
    title: str
    description: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.alert_type not in ALERT_TYPES:
            raise ValueError(f"Unknown alert type: {self.alert_type}")
        if self.severity not in SEVERITIES:
            raise ValueError(f"Unknown severity: {self.severity}")
        if self.entity_type not in ENTITY_TYPES:
            raise ValueError(f"Unknown entity type: {self.entity_type}")
        self.entity_id = str(self.entity_id)

    @property
    def key(self):
        return (self.alert_type, self.entity_type, self.entity_id)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _encode_metadata(metadata: Dict[str, Any]) -> str:
    return json.dumps(metadata, default=str, sort_keys=True)


def _decode_metadata(value: Any) -> Dict[str, Any]:
    if isinstance(value, dict):
        return value
    if value is None or (isinstance(value, float) and pd.isna(value)) or value == "":
        return {}
    return json.loads(value)


class AlertStore:
    """Base alert store."""

    def find_unresolved(self, alert_type: str, entity_type: str, entity_id: str) -> Optional[int]:
        """Id of an unresolved alert with the same key, or None."""
        raise NotImplementedError

    def insert(self, alert: RiskAlert) -> int:
        raise NotImplementedError

    def resolve(self, alert_id: int) -> bool:
        raise NotImplementedError

    def list_alerts(self, include_resolved: bool = True) -> pd.DataFrame:
        raise NotImplementedError

    def describe(self) -> str:
        return type(self).__name__


# =============================================================================
# IN-MEMORY
# =============================================================================

class InMemoryAlertStore(AlertStore):
    def __init__(self):
        self._rows: List[Dict[str, Any]] = []

    def find_unresolved(self, alert_type: str, entity_type: str, entity_id: str) -> Optional[int]:
        for row in self._rows:
            if (
                not row["is_resolved"]
                and row["alert_type"] == alert_type
                and row["entity_type"] == entity_type
                and row["entity_id"] == str(entity_id)
            ):
                return row["alert_id"]
        return None

    def insert(self, alert: RiskAlert) -> int:
        alert_id = len(self._rows) + 1
        row = alert.to_dict()
        row.update({"alert_id": alert_id, "detected_at": _now(), "is_resolved": False})
        self._rows.append(row)
        return alert_id

    def resolve(self, alert_id: int) -> bool:
        for row in self._rows:
            if row["alert_id"] == alert_id and not row["is_resolved"]:
                row["is_resolved"] = True
                return True
        return False

    def list_alerts(self, include_resolved: bool = True) -> pd.DataFrame:
        rows = [row for row in self._rows if include_resolved or not row["is_resolved"]]
        return pd.DataFrame(rows, columns=ALERT_COLUMNS)


# =============================================================================
# FILE (CSV)
# =============================================================================

class FileAlertStore(AlertStore):
    """Alerts in one CSV file; metadata is stored as JSON text."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    @classmethod
    def from_config(cls, app_config: Optional[AppConfig] = None) -> "FileAlertStore":
        cfg = app_config or default_config
        return cls(cfg.alerts_dir / f"{ALERTS_FILE}.csv")

    def _read(self) -> pd.DataFrame:
        if not self.path.exists():
            return pd.DataFrame(columns=ALERT_COLUMNS).astype({"alert_id": "int64", "is_resolved": bool})
        try:
            df = pd.read_csv(self.path, dtype={"entity_id": str})
        except (OSError, ValueError, pd.errors.ParserError) as exc:
            raise DataAccessError(f"Failed to read alerts from {self.path}: {exc}") from exc
        df["is_resolved"] = df["is_resolved"].astype(str).str.lower().isin(["true", "1"])
        return df

    def _write(self, df: pd.DataFrame) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            df[ALERT_COLUMNS].to_csv(self.path, index=False)
        except OSError as exc:
            raise DataAccessError(f"Failed to write alerts to {self.path}: {exc}") from exc

    def find_unresolved(self, alert_type: str, entity_type: str, entity_id: str) -> Optional[int]:
        df = self._read()
        match = df[
            ~df["is_resolved"]
            & (df["alert_type"] == alert_type)
            & (df["entity_type"] == entity_type)
            & (df["entity_id"] == str(entity_id))
        ]
        return int(match["alert_id"].iloc[0]) if len(match) else None

    def insert(self, alert: RiskAlert) -> int:
        df = self._read()
        alert_id = int(df["alert_id"].max()) + 1 if len(df) else 1
        row = alert.to_dict()
        row.update({
            "alert_id": alert_id,
            "metadata": _encode_metadata(alert.metadata),
            "detected_at": _now().isoformat(),
            "is_resolved": False,
        })
        self._write(pd.concat([df, pd.DataFrame([row])], ignore_index=True))
        logger.debug("Stored alert %d %s in %s", alert_id, alert.key, self.path)
        return alert_id

    def resolve(self, alert_id: int) -> bool:
        df = self._read()
        mask = (df["alert_id"] == alert_id) & ~df["is_resolved"]
        if not mask.any():
            return False
        df.loc[mask, "is_resolved"] = True
        self._write(df)
        return True

    def list_alerts(self, include_resolved: bool = True) -> pd.DataFrame:
        df = self._read()
        if not include_resolved:
            df = df[~df["is_resolved"]]
        df = df.copy()
        df["metadata"] = df["metadata"].map(_decode_metadata)
        return df[ALERT_COLUMNS].reset_index(drop=True)

    def describe(self) -> str:
        return f"FileAlertStore({self.path})"


# =============================================================================
# SQL
# =============================================================================

_metadata = MetaData()

risk_alerts = Table(
    "risk_alerts",
    _metadata,
    Column("alert_id", Integer, primary_key=True, autoincrement=True),
    Column("alert_type", String(50), nullable=False),
    Column("severity", String(20), nullable=False),
    Column("entity_type", String(20), nullable=False),
    Column("entity_id", String(64), nullable=False),
    Column("title", String(255), nullable=False),
    Column("description", Text),
    Column("metadata", Text),
    Column("detected_at", DateTime(timezone=True)),
    Column("is_resolved", Boolean, nullable=False, default=False),
)


class SqlAlertStore(AlertStore):
    """Alerts in the ``risk_alerts`` table (created on first use)."""

    def __init__(self, engine: Union[Engine, str]):
        if isinstance(engine, str):
            engine = create_engine(normalise_database_url(engine), pool_pre_ping=True)
        self.engine = engine
        self._ready = False

    def _ensure_table(self) -> None:
        if self._ready:
            return
        try:
            _metadata.create_all(self.engine, tables=[risk_alerts], checkfirst=True)
        except SQLAlchemyError as exc:
            raise DataAccessError(f"Cannot create risk_alerts: {exc}") from exc
        self._ready = True

    def find_unresolved(self, alert_type: str, entity_type: str, entity_id: str) -> Optional[int]:
        self._ensure_table()
        query = (
            select(risk_alerts.c.alert_id)
            .where(risk_alerts.c.alert_type == alert_type)
            .where(risk_alerts.c.entity_type == entity_type)
            .where(risk_alerts.c.entity_id == str(entity_id))
            .where(risk_alerts.c.is_resolved.is_(False))
            .limit(1)
        )
        try:
            with self.engine.connect() as conn:
                found = conn.execute(query).scalar()
        except SQLAlchemyError as exc:
            raise DataAccessError(f"Alert lookup failed: {exc}") from exc
        return int(found) if found is not None else None

    def insert(self, alert: RiskAlert) -> int:
        self._ensure_table()
        values = alert.to_dict()
        values.update({
            "metadata": _encode_metadata(alert.metadata),
            "detected_at": _now(),
            "is_resolved": False,
        })
        try:
            with self.engine.begin() as conn:
                result = conn.execute(risk_alerts.insert().values(**values))
        except SQLAlchemyError as exc:
            raise DataAccessError(f"Alert insert failed: {exc}") from exc
        alert_id = int(result.inserted_primary_key[0])
        logger.debug("Stored alert %d %s in risk_alerts", alert_id, alert.key)
        return alert_id

    def resolve(self, alert_id: int) -> bool:
        self._ensure_table()
        statement = (
            update(risk_alerts)
            .where(risk_alerts.c.alert_id == alert_id)
            .where(risk_alerts.c.is_resolved.is_(False))
            .values(is_resolved=True)
        )
        try:
            with self.engine.begin() as conn:
                result = conn.execute(statement)
        except SQLAlchemyError as exc:
            raise DataAccessError(f"Alert resolve failed: {exc}") from exc
        return result.rowcount > 0

    def list_alerts(self, include_resolved: bool = True) -> pd.DataFrame:
        self._ensure_table()
        query = select(risk_alerts).order_by(risk_alerts.c.alert_id)
        if not include_resolved:
            query = query.where(risk_alerts.c.is_resolved.is_(False))
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(query).mappings().all()
        except SQLAlchemyError as exc:
            raise DataAccessError(f"Alert listing failed: {exc}") from exc
        df = pd.DataFrame([dict(row) for row in rows], columns=ALERT_COLUMNS)
        df["metadata"] = df["metadata"].map(_decode_metadata)
        return df

    def describe(self) -> str:
        return f"SqlAlertStore({self.engine.url.render_as_string(hide_password=True)})"


def build_alert_store(app_config: Optional[AppConfig] = None) -> AlertStore:
    """SQL store when DATABASE_URL is set, CSV under the alerts dir otherwise."""
    cfg = app_config or default_config
    if cfg.database_url:
        return SqlAlertStore(cfg.database_url)
    return FileAlertStore.from_config(cfg)
