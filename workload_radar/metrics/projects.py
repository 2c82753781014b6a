"""
Project metrics pack.

Task counts, completion, ETA burn and team allocation per project. All
tables are scoped to the configured origin; ETA comes from the ETA custom
field only.
"""
from __future__ import annotations

import logging
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from workload_radar.config import AppConfig, config as default_config
from workload_radar.data.loader import WorkloadSource
from workload_radar.data.semantic import (
    filter_ids,
    origin_merge,
    round2,
    round_int,
    scope_to_source,
    task_eta_hours,
    task_minutes,
)
from workload_radar.data.status_codes import active_status_mask, closed_status_mask
from workload_radar.metrics.workload import TASK_LIST_COLUMNS, build_task_list

logger = logging.getLogger("workload-radar.engine")

PROJECT_METRIC_COLUMNS = [
    "project_id",
    "total_tasks",
    "active_tasks",
    "completed_tasks",
    "completion_rate",
    "total_eta",
    "total_time_spent",
    "burn_rate",
]


def _empty_metrics(project_id: int) -> Dict:
    return {
        "project_id": project_id,
        "total_tasks": 0,
        "active_tasks": 0,
        "completed_tasks": 0,
        "completion_rate": 0,
        "total_eta": 0.0,
        "total_time_spent": 0.0,
        "burn_rate": 0,
    }


def project_metrics_frame(tasks: pd.DataFrame,
                          custom_fields: pd.DataFrame,
                          time_logs: pd.DataFrame,
                          source_system: str,
                          eta_field_id: int,
                          project_ids: Optional[List[int]] = None) -> pd.DataFrame:
    """
    One row per project of the origin.

    - completion_rate = round(completed / total * 100), 0 without tasks
    - total_time_spent = round2(minutes / 60) over every task of the project
    - burn_rate = round(time_spent / total_eta * 100), 0 without ETA
    """
    scoped = scope_to_source(tasks, source_system)
    if project_ids is not None:
        scoped = scoped[filter_ids(scoped["project_id"], project_ids)]
    if len(scoped) == 0:
        return pd.DataFrame(columns=PROJECT_METRIC_COLUMNS)

    work = scoped[["project_id", "task_id"]].copy()
    work["is_active"] = active_status_mask(scoped["status"]).astype(int)
    work["is_completed"] = closed_status_mask(scoped["status"]).astype(int)
    work["eta_hours"] = task_eta_hours(scoped, custom_fields, eta_field_id, source_system)
    work["minutes"] = task_minutes(scoped, time_logs, source_system)

    agg = work.groupby("project_id", as_index=False).agg(
        total_tasks=("task_id", "count"),
        active_tasks=("is_active", "sum"),
        completed_tasks=("is_completed", "sum"),
        eta_sum=("eta_hours", "sum"),
        minutes_sum=("minutes", "sum"),
    )

    agg["total_eta"] = round2(agg["eta_sum"])
    time_spent = agg["minutes_sum"] / 60.0
    agg["total_time_spent"] = round2(time_spent)
    agg["completion_rate"] = np.floor(agg["completed_tasks"] / agg["total_tasks"] * 100 + 0.5).astype(int)

    safe_eta = agg["eta_sum"].where(agg["eta_sum"] > 0)
    agg["burn_rate"] = np.where(
        agg["eta_sum"] > 0,
        np.floor(time_spent / safe_eta * 100 + 0.5),
        0,
    ).astype(int)

    agg["project_id"] = agg["project_id"].astype(int)
    return agg[PROJECT_METRIC_COLUMNS]


def _load(source: WorkloadSource, names) -> Dict[str, pd.DataFrame]:
    return source.load_tables(names)


def compute_project_metrics(source: WorkloadSource,
                            project_id: int,
                            app_config: Optional[AppConfig] = None) -> Dict:
    """Metrics for one project; a project with no tasks gets all zeros."""
    cfg = app_config or default_config
    tables = _load(source, ("tasks", "custom_fields", "time_logs"))
    frame = project_metrics_frame(
        tables["tasks"], tables["custom_fields"], tables["time_logs"],
        cfg.source_system, cfg.eta_field_id, project_ids=[project_id],
    )
    if len(frame) == 0:
        return _empty_metrics(project_id)
    row = frame.iloc[0]
    metrics = {col: int(row[col]) for col in PROJECT_METRIC_COLUMNS if col not in ("total_eta", "total_time_spent")}
    metrics["total_eta"] = float(row["total_eta"])
    metrics["total_time_spent"] = float(row["total_time_spent"])
    return metrics


def score_project_health(metrics: Dict) -> Dict:
    """
    Health score out of 100.

    - completion: completion_rate * 0.4 (up to 40)
    - burn: 30 - |100 - burn_rate| * 0.3, floored at 0 (up to 30)
    - closed ratio: (1 - active / total) * 30 (up to 30; 30 with no tasks)

    Grade A >= 80, B >= 60, C >= 40, else D, on the unrounded score.
    """
    total = metrics["total_tasks"]
    score = metrics["completion_rate"] * 0.4

    burn_deviation = abs(100 - metrics["burn_rate"])
    score += max(0.0, 30 - burn_deviation * 0.3)

    active_ratio = metrics["active_tasks"] / total if total > 0 else 0.0
    score += (1 - active_ratio) * 30

    if score >= 80:
        grade = "A"
    elif score >= 60:
        grade = "B"
    elif score >= 40:
        grade = "C"
    else:
        grade = "D"

    return {
        "score": round_int(score),
        "grade": grade,
        "metrics": metrics,
        "factors": {
            "completion_rate": metrics["completion_rate"],
            "burn_rate": metrics["burn_rate"],
            "active_task_ratio": round_int(active_ratio * 100),
        },
    }


def compute_project_health_score(source: WorkloadSource,
                                 project_id: int,
                                 app_config: Optional[AppConfig] = None) -> Dict:
    return score_project_health(compute_project_metrics(source, project_id, app_config))


def compute_project_team_allocation(source: WorkloadSource,
                                    project_id: int,
                                    app_config: Optional[AppConfig] = None) -> pd.DataFrame:
    """Active ETA and task count per assignee on one project, heaviest first."""
    cfg = app_config or default_config
    tables = _load(source, ("tasks", "custom_fields", "users"))
    columns = ["handler_id", "name", "email", "eta", "task_count"]

    tasks = scope_to_source(tables["tasks"], cfg.source_system)
    tasks = tasks[filter_ids(tasks["project_id"], [project_id]) & active_status_mask(tasks["status"])]
    if len(tasks) == 0:
        return pd.DataFrame(columns=columns)

    work = tasks[["task_id", "handler_id", "source_system"]].copy()
    work["eta"] = task_eta_hours(tasks, tables["custom_fields"], cfg.eta_field_id, cfg.source_system)

    users = tables["users"][["user_id", "source_system", "realname", "email"]].drop_duplicates(
        ["user_id", "source_system"]
    )
    work = origin_merge(work, users, "handler_id", "user_id")
    work["name"] = work["realname"].where(
        work["realname"].notna() & (work["realname"].astype(str).str.strip() != ""), "Unknown"
    )
    work["email"] = work["email"].fillna("")

    allocation = work.groupby("handler_id", as_index=False, dropna=False).agg(
        name=("name", "first"),
        email=("email", "first"),
        eta=("eta", "sum"),
        task_count=("task_id", "count"),
    )
    allocation["eta"] = round2(allocation["eta"])
    return allocation[columns].sort_values(
        ["eta", "handler_id"], ascending=[False, True]
    ).reset_index(drop=True)


def get_project_tasks(source: WorkloadSource,
                      project_id: int,
                      limit: int = 100,
                      app_config: Optional[AppConfig] = None) -> pd.DataFrame:
    """Every task of a project, most recently updated first, with the assignee's name."""
    cfg = app_config or default_config
    tables = _load(source, ("tasks", "custom_fields", "projects", "users"))

    tasks = scope_to_source(tables["tasks"], cfg.source_system)
    tasks = tasks[filter_ids(tasks["project_id"], [project_id])]
    tasks = tasks.sort_values("last_updated", ascending=False, na_position="last").head(limit)
    if len(tasks) == 0:
        return pd.DataFrame(columns=TASK_LIST_COLUMNS + ["handler_id", "handler_name"])

    listed = build_task_list(tasks, tables["custom_fields"], tables["projects"], cfg, cfg.source_system)
    users = scope_to_source(tables["users"], cfg.source_system).drop_duplicates("user_id")
    names = users.set_index("user_id")["realname"]
    listed["handler_id"] = tasks["handler_id"].to_numpy()
    listed["handler_name"] = listed["handler_id"].map(names).fillna("Unknown")
    return listed


def compute_projects_summary(source: WorkloadSource,
                             app_config: Optional[AppConfig] = None) -> pd.DataFrame:
    """Metrics for every enabled project of the origin."""
    cfg = app_config or default_config
    tables = _load(source, ("projects", "tasks", "custom_fields", "time_logs"))

    projects = scope_to_source(tables["projects"], cfg.source_system)
    projects = projects[pd.to_numeric(projects["enabled"], errors="coerce") == 1]
    projects = projects.drop_duplicates("project_id")
    if len(projects) == 0:
        return pd.DataFrame(columns=["project_id", "project_name"] + PROJECT_METRIC_COLUMNS[1:])

    metrics = project_metrics_frame(
        tables["tasks"], tables["custom_fields"], tables["time_logs"],
        cfg.source_system, cfg.eta_field_id,
        project_ids=projects["project_id"].dropna().astype(int).tolist(),
    )

    summary = projects[["project_id", "project_name"]].copy()
    summary["project_id"] = summary["project_id"].astype(int)
    summary = summary.merge(metrics, on="project_id", how="left")

    for col in ("total_tasks", "active_tasks", "completed_tasks", "completion_rate", "burn_rate"):
        summary[col] = summary[col].fillna(0).astype(int)
    for col in ("total_eta", "total_time_spent"):
        summary[col] = summary[col].fillna(0.0).astype(float)

    logger.info("Summarised %d enabled project(s)", len(summary))
    return summary.reset_index(drop=True)
