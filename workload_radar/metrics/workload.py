"""
Workload metrics pack.

Single source of truth for: per-resource ETA, time spent, yet-to-spend,
bandwidth, availability and over/under-ETA percentages.

Every number is rounded (half-up, 2 decimals) where it is aggregated, and
every missing or malformed input degrades to 0 instead of failing the call.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import date
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from workload_radar.config import AppConfig, config as default_config
from workload_radar.data.loader import WorkloadSource
from workload_radar.data.semantic import (
    custom_field_values,
    employee_display_name,
    filter_ids,
    origin_merge,
    resolve_assignees,
    round2,
    scope_to_source,
    task_eta_hours,
    task_minutes,
)
from workload_radar.data.status_codes import (
    active_status_mask,
    label_resolutions,
    label_statuses,
)
from workload_radar.metrics.working_hours import DateLike, period_range, working_hours
from workload_radar.modeling.workload_states import STATES, classify_frame

logger = logging.getLogger("workload-radar.engine")

OVER_ETA = "Over ETA"
WITHIN_ETA = "Within ETA"

RESOURCE_METRIC_COLUMNS = [
    "employee_id",
    "employee_name",
    "email",
    "role",
    "total_eta",
    "time_spent",
    "yet_to_spend",
    "total_working_hours",
    "bandwidth",
    "availability_pct",
    "active_task_count",
    "over_eta_pct",
    "under_eta_pct",
    "remarks",
]

TASK_LIST_COLUMNS = [
    "task_id",
    "summary",
    "status_code",
    "status_label",
    "resolution_code",
    "resolution_label",
    "project_id",
    "project_name",
    "eta",
    "eta_hours",
    "task_type",
    "due_date",
    "last_updated",
]


@dataclass
class ResourceMetrics:
    """Workload snapshot for one employee over one period."""
    employee_id: int
    employee_name: str
    email: str
    role: str
    total_eta: float
    time_spent: float
    yet_to_spend: float
    total_working_hours: float
    bandwidth: float
    availability_pct: float
    active_task_count: int
    over_eta_pct: float
    under_eta_pct: float
    remarks: str

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def from_row(cls, row: pd.Series) -> "ResourceMetrics":
        return cls(
            employee_id=int(row["employee_id"]),
            employee_name=str(row["employee_name"]),
            email=str(row["email"]),
            role=str(row["role"]),
            total_eta=float(row["total_eta"]),
            time_spent=float(row["time_spent"]),
            yet_to_spend=float(row["yet_to_spend"]),
            total_working_hours=float(row["total_working_hours"]),
            bandwidth=float(row["bandwidth"]),
            availability_pct=float(row["availability_pct"]),
            active_task_count=int(row["active_task_count"]),
            over_eta_pct=float(row["over_eta_pct"]),
            under_eta_pct=float(row["under_eta_pct"]),
            remarks=str(row["remarks"]),
        )


def empty_resource_metrics() -> pd.DataFrame:
    return pd.DataFrame(columns=RESOURCE_METRIC_COLUMNS)


# =============================================================================
# PURE FRAME COMPUTATIONS
# =============================================================================

def select_active_tasks(tasks: pd.DataFrame,
                        source_system: str,
                        handler_ids: Optional[List[int]] = None,
                        project_id: Optional[int] = None) -> pd.DataFrame:
    """Active (not Resolved/Closed) tasks of one origin, optionally by handler/project."""
    scoped = scope_to_source(tasks, source_system)
    scoped = scoped[active_status_mask(scoped["status"])]
    if handler_ids is not None:
        scoped = scoped[filter_ids(scoped["handler_id"], handler_ids)]
    if project_id is not None:
        scoped = scoped[filter_ids(scoped["project_id"], [project_id])]
    return scoped


def aggregate_task_load(tasks: pd.DataFrame,
                        custom_fields: pd.DataFrame,
                        time_logs: pd.DataFrame,
                        eta_field_id: int,
                        source_system: str,
                        group_key: str = "handler_id") -> pd.DataFrame:
    """
    Sum ETA hours and logged minutes per group.

    Returns group_key, eta_sum, minutes_sum, active_task_count (unrounded).
    """
    if len(tasks) == 0:
        return pd.DataFrame(columns=[group_key, "eta_sum", "minutes_sum", "active_task_count"])

    work = tasks[[group_key, "task_id"]].copy()
    work["eta_hours"] = task_eta_hours(tasks, custom_fields, eta_field_id, source_system)
    work["minutes"] = task_minutes(tasks, time_logs, source_system)

    return work.groupby(group_key, as_index=False).agg(
        eta_sum=("eta_hours", "sum"),
        minutes_sum=("minutes", "sum"),
        active_task_count=("task_id", "count"),
    )


def derive_workload_columns(df: pd.DataFrame, total_working_hours: float) -> pd.DataFrame:
    """
    Apply the workload formulas to rows holding eta_sum / minutes_sum.

    - total_eta = round2(eta_sum)
    - time_spent = round2(minutes_sum / 60)
    - yet_to_spend = round2(total_eta - time_spent), may be negative
    - bandwidth = max(0, round2(total_working_hours - yet_to_spend))
    - availability_pct = max(0, round2(bandwidth / total_working_hours * 100)), 0 when no hours
    - over_eta_pct = round2((spent - eta) / eta * 100); 100 if eta is 0 and spent > 0; else 0
    - under_eta_pct = round2((eta - spent) / eta * 100); 0 if eta is 0
    - remarks = Over ETA when spent > eta
    """
    df = df.copy()
    total_working_hours = float(total_working_hours)

    df["total_eta"] = round2(df["eta_sum"].fillna(0))
    df["time_spent"] = round2(df["minutes_sum"].fillna(0) / 60.0)
    df["yet_to_spend"] = round2(df["total_eta"] - df["time_spent"])
    df["total_working_hours"] = total_working_hours
    df["bandwidth"] = round2(total_working_hours - df["yet_to_spend"]).clip(lower=0)

    if total_working_hours > 0:
        df["availability_pct"] = round2(df["bandwidth"] / total_working_hours * 100).clip(lower=0)
    else:
        df["availability_pct"] = 0.0

    eta = df["total_eta"]
    spent = df["time_spent"]
    safe_eta = eta.where(eta > 0)

    df["over_eta_pct"] = np.where(
        eta > 0,
        round2((spent - eta) / safe_eta * 100),
        np.where(spent > 0, 100.0, 0.0),
    )
    df["under_eta_pct"] = np.where(
        eta > 0,
        round2((eta - spent) / safe_eta * 100),
        0.0,
    )
    df["remarks"] = np.where(spent > eta, OVER_ETA, WITHIN_ETA)
    df["active_task_count"] = df["active_task_count"].fillna(0).astype(int)

    return df


def compute_resource_metrics_from_tables(tables: Dict[str, pd.DataFrame],
                                         total_working_hours: float,
                                         source_system: str,
                                         eta_field_id: int,
                                         employee_id: Optional[int] = None,
                                         project_id: Optional[int] = None,
                                         employee_status: Optional[int] = None) -> pd.DataFrame:
    """
    Compute ResourceMetrics rows from canonical tables.

    Employees with no assignee of the origin are skipped, not errors.
    """
    employees = tables["employees"]
    if employee_id is not None:
        employees = employees[filter_ids(employees["employee_id"], [employee_id])]
    if employee_status is not None and "employment_status" in employees.columns:
        employees = employees[filter_ids(employees["employment_status"], [employee_status])]

    if len(employees) == 0:
        return empty_resource_metrics()

    linked = resolve_assignees(employees, tables["users"], source_system)
    unmatched = linked["user_id"].isna()
    if unmatched.any():
        logger.debug("%d employee(s) have no %s assignee; skipped", int(unmatched.sum()), source_system)
    linked = linked[~unmatched].copy()
    if len(linked) == 0:
        return empty_resource_metrics()

    handler_ids = linked["user_id"].astype(int).unique().tolist()
    active = select_active_tasks(tables["tasks"], source_system, handler_ids, project_id)
    load = aggregate_task_load(
        active, tables["custom_fields"], tables["time_logs"], eta_field_id, source_system
    )

    linked["_handler"] = linked["user_id"].astype(float)
    load["_handler"] = pd.to_numeric(load["handler_id"], errors="coerce").astype(float)
    merged = linked.merge(load.drop(columns=["handler_id"]), on="_handler", how="left")
    merged["eta_sum"] = merged["eta_sum"].fillna(0.0)
    merged["minutes_sum"] = merged["minutes_sum"].fillna(0.0)

    merged = derive_workload_columns(merged, total_working_hours)

    merged["employee_name"] = employee_display_name(merged)
    merged["email"] = merged["work_email"].fillna("").astype(str)
    merged["role"] = _job_titles(merged, tables.get("job_titles"))
    merged["employee_id"] = merged["employee_id"].astype(int)

    result = merged[RESOURCE_METRIC_COLUMNS].sort_values("employee_id").reset_index(drop=True)
    return result


def _job_titles(employees: pd.DataFrame, job_titles: Optional[pd.DataFrame]) -> pd.Series:
    if job_titles is None or len(job_titles) == 0 or "job_title_id" not in employees.columns:
        return pd.Series("Unknown", index=employees.index)
    titles = job_titles.drop_duplicates("job_title_id").set_index("job_title_id")["job_title"]
    mapped = pd.to_numeric(employees["job_title_id"], errors="coerce").map(titles)
    return mapped.where(mapped.notna() & (mapped.astype(str).str.strip() != ""), "Unknown").astype(str)


def summarise_resource_metrics(metrics: pd.DataFrame) -> Dict[str, float]:
    """
    Roll per-resource metrics up to one line (project or team level).

    Sums hours and tasks, re-derives percentages from the summed hours.
    """
    if len(metrics) == 0:
        return {
            "resource_count": 0,
            "total_eta": 0.0,
            "time_spent": 0.0,
            "yet_to_spend": 0.0,
            "total_working_hours": 0.0,
            "bandwidth": 0.0,
            "availability_pct": 0.0,
            "active_task_count": 0,
        }

    total_hours = float(round2(pd.Series([metrics["total_working_hours"].sum()])).iloc[0])
    bandwidth = float(round2(pd.Series([metrics["bandwidth"].sum()])).iloc[0])
    return {
        "resource_count": int(len(metrics)),
        "total_eta": float(round2(pd.Series([metrics["total_eta"].sum()])).iloc[0]),
        "time_spent": float(round2(pd.Series([metrics["time_spent"].sum()])).iloc[0]),
        "yet_to_spend": float(round2(pd.Series([metrics["yet_to_spend"].sum()])).iloc[0]),
        "total_working_hours": total_hours,
        "bandwidth": bandwidth,
        "availability_pct": float(round2(pd.Series([bandwidth / total_hours * 100])).iloc[0])
        if total_hours > 0 else 0.0,
        "active_task_count": int(metrics["active_task_count"].sum()),
    }


# =============================================================================
# ENGINE (data access injected)
# =============================================================================

class WorkloadEngine:
    """
    Workload metrics over an injected data-access collaborator.

    Each call re-reads the tables it needs; nothing is cached between calls.
    """

    METRIC_TABLES = ("employees", "job_titles", "users", "tasks", "custom_fields", "time_logs")

    def __init__(self, source: WorkloadSource, app_config: Optional[AppConfig] = None):
        self.source = source
        self.config = app_config or default_config

    @property
    def source_system(self) -> str:
        return self.config.source_system

    def period_hours(self, period: str,
                     reference_date: Optional[DateLike] = None) -> Tuple[date, date, float]:
        """Resolve the period and its available working hours (holidays from the source)."""
        start, end = period_range(period, reference_date)
        holidays = self.source.load_table("holidays")["holiday_date"]
        hours = working_hours(start, end, holidays, hours_per_day=self.config.hours_per_day)
        return start, end, hours

    def compute_resource_metrics_frame(self,
                                       period: str = "week",
                                       employee_id: Optional[int] = None,
                                       project_id: Optional[int] = None,
                                       reference_date: Optional[DateLike] = None) -> pd.DataFrame:
        """ResourceMetrics as a DataFrame, one row per linked employee."""
        start, end, total_hours = self.period_hours(period, reference_date)
        tables = self.source.load_tables(self.METRIC_TABLES)

        result = compute_resource_metrics_from_tables(
            tables,
            total_working_hours=total_hours,
            source_system=self.source_system,
            eta_field_id=self.config.eta_field_id,
            employee_id=employee_id,
            project_id=project_id,
            employee_status=self.config.employee_status_filter,
        )
        logger.info(
            "Computed workload metrics for %d resource(s), period=%s %s..%s, %.0fh available",
            len(result), period, start, end, total_hours,
        )
        return result

    def compute_resource_metrics(self,
                                 period: str = "week",
                                 employee_id: Optional[int] = None,
                                 project_id: Optional[int] = None,
                                 reference_date: Optional[DateLike] = None) -> List[ResourceMetrics]:
        frame = self.compute_resource_metrics_frame(period, employee_id, project_id, reference_date)
        return [ResourceMetrics.from_row(row) for _, row in frame.iterrows()]

    def get_project_workload_metrics(self,
                                     project_id: int,
                                     period: str = "week",
                                     reference_date: Optional[DateLike] = None) -> pd.DataFrame:
        return self.compute_resource_metrics_frame(period, project_id=project_id,
                                                   reference_date=reference_date)

    def compute_workload_overview(self,
                                  period: str = "week",
                                  reference_date: Optional[DateLike] = None) -> Dict:
        """Classified resource metrics with team totals and a state breakdown."""
        metrics = classify_frame(self.compute_resource_metrics_frame(period, reference_date=reference_date))
        count = len(metrics)
        breakdown = {state: int((metrics["workload_state"] == state).sum()) for state in STATES}
        return {
            "total_active_task_count": int(metrics["active_task_count"].sum()) if count else 0,
            "average_bandwidth": float(metrics["bandwidth"].mean()) if count else 0.0,
            "average_availability": float(metrics["availability_pct"].mean()) if count else 0.0,
            "state_breakdown": breakdown,
            "resources": metrics,
        }

    def get_resource_tasks(self,
                           employee_id: int,
                           active_only: bool = True,
                           limit: int = 50) -> pd.DataFrame:
        """Tasks assigned to one employee, most recently updated first, with labels."""
        tables = self.source.load_tables(
            ("employees", "users", "tasks", "custom_fields", "projects")
        )
        employees = tables["employees"]
        employees = employees[filter_ids(employees["employee_id"], [employee_id])]
        if len(employees) == 0:
            return pd.DataFrame(columns=TASK_LIST_COLUMNS)

        linked = resolve_assignees(employees.head(1), tables["users"], self.source_system)
        if linked["user_id"].isna().all():
            return pd.DataFrame(columns=TASK_LIST_COLUMNS)
        user_id = int(linked["user_id"].iloc[0])

        tasks = scope_to_source(tables["tasks"], self.source_system)
        tasks = tasks[filter_ids(tasks["handler_id"], [user_id])]
        if active_only:
            tasks = tasks[active_status_mask(tasks["status"])]
        tasks = tasks.sort_values("last_updated", ascending=False, na_position="last").head(limit)

        return build_task_list(tasks, tables["custom_fields"], tables["projects"],
                               self.config, self.source_system)


def build_task_list(tasks: pd.DataFrame,
                    custom_fields: pd.DataFrame,
                    projects: pd.DataFrame,
                    app_config: AppConfig,
                    source_system: str) -> pd.DataFrame:
    """Decorate task rows with labels, project name, ETA text and task type."""
    if len(tasks) == 0:
        return pd.DataFrame(columns=TASK_LIST_COLUMNS)

    out = tasks.copy()
    out["eta_hours"] = task_eta_hours(out, custom_fields, app_config.eta_field_id, source_system)

    eta_text = custom_field_values(custom_fields, [app_config.eta_field_id], source_system)
    out = origin_merge(out, eta_text.rename(columns={"value": "eta"}), "task_id", "task_id")

    task_type = custom_field_values(custom_fields, app_config.task_type_field_ids, source_system)
    out = origin_merge(out, task_type.rename(columns={"value": "task_type"}), "task_id", "task_id")

    project_names = scope_to_source(projects, source_system)[["project_id", "source_system", "project_name"]]
    project_names = project_names.drop_duplicates(["project_id", "source_system"])
    out = origin_merge(out, project_names, "project_id", "project_id")

    out["status_code"] = out["status"]
    out["status_label"] = label_statuses(out["status"])
    out["resolution_code"] = out["resolution"]
    out["resolution_label"] = label_resolutions(out["resolution"])

    return out[TASK_LIST_COLUMNS].reset_index(drop=True)
