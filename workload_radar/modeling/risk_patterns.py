"""
Risk pattern detection.

Five independent detectors over the configured origin:

- eta_inflation: current estimate grew past 130% of the original
- silent_overrun: Confirmed/Assigned task already past its ETA
- phantom_bandwidth: high availability but little work being closed
- load_concentration: top three people carry most of the remaining ETA
- project_sinkhole: hours keep going in, tasks do not come out

``detect_all`` runs each detector in isolation, then persists the merged
alerts, skipping any whose (type, entity_type, entity_id) already has an
unresolved alert in the store.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

import pandas as pd

from workload_radar.config import AppConfig, config as default_config
from workload_radar.data.alerts import AlertStore, RiskAlert
from workload_radar.data.loader import WorkloadSource
from workload_radar.data.semantic import (
    coerce_number,
    filter_ids,
    format_number,
    resolve_assignees,
    round_int,
    scope_to_source,
    task_eta_hours,
    task_minutes,
)
from workload_radar.data.status_codes import (
    CURRENT_STATUS_CODES,
    active_status_mask,
    closed_status_mask,
)
from workload_radar.logging_config import log_scan_summary
from workload_radar.metrics.concentration import compute_load_concentration
from workload_radar.metrics.estimation import final_mask
from workload_radar.metrics.projects import compute_projects_summary
from workload_radar.metrics.working_hours import DateLike, to_timestamp
from workload_radar.metrics.workload import WorkloadEngine

logger = logging.getLogger("workload-radar.risk")

ETA_INFLATION_FACTOR = 1.3
PHANTOM_AVAILABILITY = 60.0
PHANTOM_CLOSURE = 50.0
CLOSURE_WINDOW_DAYS = 30
SINKHOLE_HOURS = 40.0
SINKHOLE_COMPLETION = 30
HOURS_PER_TASK_DAY = 8.0

Detector = Callable[[], List[RiskAlert]]


@dataclass
class RiskScanResult:
    """Alerts found by one scan and what happened to them."""
    alerts: List[RiskAlert] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)
    inserted: int = 0
    skipped: int = 0

    @property
    def ok(self) -> bool:
        return not self.failures


def overrun_severity(pct: int) -> str:
    """Shared by ETA inflation and silent overrun."""
    if pct > 100:
        return "critical"
    if pct > 50:
        return "high"
    return "medium"


def _text(value, default: str = "Unknown") -> str:
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return default
    text = str(value)
    return text if text.strip() else default


class RiskDetector:
    """Risk detectors over an injected source, persisting to an injected alert store."""

    def __init__(self,
                 source: WorkloadSource,
                 alert_store: AlertStore,
                 engine: Optional[WorkloadEngine] = None,
                 app_config: Optional[AppConfig] = None):
        self.source = source
        self.alert_store = alert_store
        self.config = app_config or (engine.config if engine is not None else default_config)
        self.engine = engine or WorkloadEngine(source, self.config)

    @property
    def source_system(self) -> str:
        return self.config.source_system

    def detectors(self, reference_date: Optional[DateLike] = None) -> List[Tuple[str, Detector]]:
        """Detectors in run order; alerts are merged in this order."""
        return [
            ("eta_inflation", self.detect_eta_inflation),
            ("silent_overrun", self.detect_silent_overruns),
            ("phantom_bandwidth", lambda: self.detect_phantom_bandwidth(reference_date)),
            ("load_concentration", lambda: self.detect_load_concentration(reference_date)),
            ("project_sinkhole", self.detect_project_sinkholes),
        ]

    # =========================================================================
    # ORCHESTRATION
    # =========================================================================

    def detect_all(self, reference_date: Optional[DateLike] = None) -> RiskScanResult:
        """
        Run every detector, then persist new alerts.

        A detector that raises contributes no alerts and is reported in
        ``failures``; the others still run. Store errors propagate.
        """
        result = RiskScanResult()
        for name, detect in self.detectors(reference_date):
            try:
                found = detect()
            except Exception as exc:
                logger.exception(
                    "Risk detector %s failed", name,
                    extra={"detector": name, "source_system": self.source_system},
                )
                result.failures[name] = f"{type(exc).__name__}: {exc}"
                continue
            logger.info("Detector %s found %d alert(s)", name, len(found), extra={"detector": name})
            result.alerts.extend(found)

        result.inserted, result.skipped = self.save_alerts(result.alerts)
        log_scan_summary(logger, result)
        return result

    def save_alerts(self, alerts: List[RiskAlert]) -> Tuple[int, int]:
        """Insert alerts that have no unresolved twin; returns (inserted, skipped)."""
        inserted = skipped = 0
        for alert in alerts:
            existing = self.alert_store.find_unresolved(alert.alert_type, alert.entity_type, alert.entity_id)
            if existing is not None:
                skipped += 1
                continue
            self.alert_store.insert(alert)
            inserted += 1
        return inserted, skipped

    # =========================================================================
    # DETECTORS
    # =========================================================================

    def detect_eta_inflation(self) -> List[RiskAlert]:
        history = self.source.load_table("estimation_history")
        history = history[history["source_system"].isin([self.source_system, ""])]
        history = history[history["is_final"].notna() & ~final_mask(history["is_final"])]

        original = coerce_number(history["eta_at_creation"])
        current = coerce_number(history["eta_current"])
        inflated = history[(original > 0) & (current > original * ETA_INFLATION_FACTOR)]
        if len(inflated) == 0:
            return []

        tasks = scope_to_source(self.source.load_table("tasks"), self.source_system)
        summaries = tasks.drop_duplicates("task_id").set_index("task_id")["summary"]

        alerts = []
        for row in inflated.to_dict("records"):
            task_id = int(row["task_id"])
            orig, cur = float(row["eta_at_creation"]), float(row["eta_current"])
            pct = round_int((cur - orig) / orig * 100)
            summary = _text(summaries.get(task_id))
            alerts.append(RiskAlert(
                alert_type="eta_inflation",
                severity=overrun_severity(pct),
                entity_type="task",
                entity_id=str(task_id),
                title=f"ETA inflated by {pct}%",
                description=(
                    f'Task "{summary}" ETA increased from {format_number(orig)}h '
                    f"to {format_number(cur)}h without scope change"
                ),
                metadata={"original_eta": orig, "current_eta": cur, "inflation_pct": pct},
            ))
        return alerts

    def detect_silent_overruns(self) -> List[RiskAlert]:
        tables = self.source.load_tables(("tasks", "custom_fields", "time_logs"))
        tasks = scope_to_source(tables["tasks"], self.source_system)
        tasks = tasks[filter_ids(tasks["status"], CURRENT_STATUS_CODES)]
        if len(tasks) == 0:
            return []

        tasks = tasks.assign(
            eta=task_eta_hours(tasks, tables["custom_fields"], self.config.eta_field_id, self.source_system),
            time_spent=task_minutes(tasks, tables["time_logs"], self.source_system) / 60.0,
        )
        overrun = tasks[(tasks["eta"] > 0) & (tasks["time_spent"] > tasks["eta"])]

        alerts = []
        for row in overrun.to_dict("records"):
            eta, spent = float(row["eta"]), float(row["time_spent"])
            pct = round_int((spent - eta) / eta * 100)
            alerts.append(RiskAlert(
                alert_type="silent_overrun",
                severity=overrun_severity(pct),
                entity_type="task",
                entity_id=str(int(row["task_id"])),
                title=f"Silent overrun: {pct}% over ETA",
                description=(
                    f'Task "{_text(row.get("summary"))}" has spent {spent:.1f}h against '
                    f"{format_number(eta)}h ETA but remains in active status"
                ),
                metadata={"eta": eta, "time_spent": spent, "overrun_pct": pct, "status": int(row["status"])},
            ))
        return alerts

    def detect_phantom_bandwidth(self, reference_date: Optional[DateLike] = None) -> List[RiskAlert]:
        metrics = self.engine.compute_resource_metrics_frame("month", reference_date=reference_date)
        candidates = metrics[metrics["availability_pct"] > PHANTOM_AVAILABILITY]
        if len(candidates) == 0:
            return []

        tables = self.source.load_tables(("employees", "users", "tasks"))
        employees = tables["employees"][filter_ids(tables["employees"]["employee_id"], candidates["employee_id"])]
        linked = resolve_assignees(employees, tables["users"], self.source_system)
        handler_by_employee = linked.dropna(subset=["user_id"]).drop_duplicates("employee_id").set_index(
            "employee_id"
        )["user_id"]

        tasks = scope_to_source(tables["tasks"], self.source_system)
        anchor = to_timestamp(reference_date)
        window_start = anchor - pd.Timedelta(days=CLOSURE_WINDOW_DAYS)

        alerts = []
        for row in candidates.to_dict("records"):
            handler_id = handler_by_employee.get(int(row["employee_id"]))
            if handler_id is None:
                continue
            own = tasks[filter_ids(tasks["handler_id"], [handler_id])]
            closed = int((closed_status_mask(own["status"]) & (own["last_updated"] >= window_start)).sum())
            active = int(active_status_mask(own["status"]).sum())
            closure_rate = closed / (closed + active) * 100 if (closed + active) > 0 else 0.0

            if closure_rate >= PHANTOM_CLOSURE:
                continue
            availability = float(row["availability_pct"])
            alerts.append(RiskAlert(
                alert_type="phantom_bandwidth",
                severity="high" if closure_rate < 20 else "medium",
                entity_type="employee",
                entity_id=str(int(row["employee_id"])),
                title="Phantom bandwidth detected",
                description=(
                    f"{row['employee_name']} shows {round_int(availability)}% availability "
                    f"but only {round_int(closure_rate)}% closure rate"
                ),
                metadata={
                    "availability": availability,
                    "closure_rate": closure_rate,
                    "active_task_count": active,
                    "closed_count": closed,
                },
            ))
        return alerts

    def detect_load_concentration(self, reference_date: Optional[DateLike] = None) -> List[RiskAlert]:
        concentration = compute_load_concentration(self.engine, reference_date=reference_date)
        if not concentration["is_concentrated"]:
            return []

        share = concentration["top3_concentration"]
        distribution = concentration["distribution"]
        top_names = ", ".join(distribution["name"].head(3).astype(str))
        return [RiskAlert(
            alert_type="load_concentration",
            severity="high" if share > 80 else "medium",
            entity_type="team",
            entity_id="org",
            title=f"Load concentration at {round_int(share)}%",
            description=f"{top_names} are carrying {round_int(share)}% of the remaining workload",
            metadata={
                "top3_concentration": share,
                "distribution": distribution[["name", "eta", "percentage"]].head(5).to_dict("records"),
                "total_eta": concentration["total_eta"],
            },
        )]

    def detect_project_sinkholes(self) -> List[RiskAlert]:
        summary = compute_projects_summary(self.source, self.config)
        sinkholes = summary[
            (summary["total_time_spent"] > SINKHOLE_HOURS)
            & (summary["completion_rate"] < SINKHOLE_COMPLETION)
        ]

        alerts = []
        for row in sinkholes.to_dict("records"):
            time_spent = float(row["total_time_spent"])
            completion = int(row["completion_rate"])
            efficiency = row["completed_tasks"] / (time_spent / HOURS_PER_TASK_DAY) if time_spent > 0 else 0.0
            alerts.append(RiskAlert(
                alert_type="project_sinkhole",
                severity="critical" if completion < 15 else "high",
                entity_type="project",
                entity_id=str(int(row["project_id"])),
                title=f"Project sinkhole: {row['project_name']}",
                description=f"{round_int(time_spent)}h spent but only {completion}% completion rate",
                metadata={
                    "project_name": row["project_name"],
                    "time_spent": time_spent,
                    "completion_rate": completion,
                    "active_tasks": int(row["active_tasks"]),
                    "completed_tasks": int(row["completed_tasks"]),
                    "efficiency": float(efficiency),
                },
            ))
        return alerts
