"""
Forward-looking workload signals.

- Bandwidth forecast: linear roll-forward of one resource's burn rate
- Velocity trends: closed tasks and closed ETA per trailing week
- Load stability index: variability of snapshots over a window
"""
from __future__ import annotations

import logging
from typing import Dict, Optional

import numpy as np
import pandas as pd

from workload_radar.config import AppConfig, config as default_config
from workload_radar.data.loader import WorkloadSource
from workload_radar.data.semantic import filter_ids, round_half_up, scope_to_source, task_eta_hours
from workload_radar.data.status_codes import closed_status_mask
from workload_radar.metrics.working_hours import DateLike, to_timestamp
from workload_radar.metrics.workload import ResourceMetrics, WorkloadEngine

logger = logging.getLogger("workload-radar.engine")

WORK_DAYS_PER_WEEK = 5

LSI_WEIGHTS = {"eta_variance": 0.4, "bandwidth_variance": 0.4, "churn": 0.2}


# =============================================================================
# BANDWIDTH FORECAST
# =============================================================================

def project_bandwidth(time_spent: float,
                      yet_to_spend: float,
                      weeks: int,
                      weekly_hours: float = 40.0) -> pd.DataFrame:
    """
    Weekly projection of remaining ETA and free bandwidth.

    The daily burn is time_spent / 7, spent over five working days a week.
    """
    daily_burn = time_spent / 7
    weekly_spend = daily_burn * WORK_DAYS_PER_WEEK
    remaining = yet_to_spend

    rows = []
    for week in range(1, weeks + 1):
        remaining = max(0.0, remaining - weekly_spend)
        bandwidth = max(0.0, weekly_hours - remaining)
        availability = bandwidth / weekly_hours * 100 if weekly_hours > 0 else 0.0
        rows.append({
            "week": week,
            "remaining_eta": round_half_up(remaining),
            "projected_bandwidth": round_half_up(bandwidth),
            "projected_availability": round_half_up(availability),
            "is_overloaded": remaining > weekly_hours,
        })

    return pd.DataFrame(
        rows,
        columns=["week", "remaining_eta", "projected_bandwidth", "projected_availability", "is_overloaded"],
    )


def compute_bandwidth_forecast(engine: WorkloadEngine,
                               employee_id: int,
                               weeks: int = 4,
                               reference_date: Optional[DateLike] = None) -> Dict:
    """Forecast for one employee from this week's metrics; empty when unlinked."""
    metrics = engine.compute_resource_metrics(
        "week", employee_id=employee_id, reference_date=reference_date
    )
    if not metrics:
        return {"current_state": None, "forecast": project_bandwidth(0.0, 0.0, 0)}

    current: ResourceMetrics = metrics[0]
    forecast = project_bandwidth(
        current.time_spent, current.yet_to_spend, weeks,
        weekly_hours=engine.config.standard_weekly_hours,
    )
    return {"current_state": current, "forecast": forecast}


# =============================================================================
# VELOCITY TRENDS
# =============================================================================

def compute_velocity_trends(source: WorkloadSource,
                            weeks: int = 8,
                            project_id: Optional[int] = None,
                            reference_date: Optional[DateLike] = None,
                            app_config: Optional[AppConfig] = None) -> pd.DataFrame:
    """
    Closed (Resolved/Closed) tasks per trailing week, oldest week first.

    A task counts in the week whose [start, end) window holds its
    last_updated timestamp.
    """
    cfg = app_config or default_config
    tables = source.load_tables(("tasks", "custom_fields"))

    tasks = scope_to_source(tables["tasks"], cfg.source_system)
    tasks = tasks[closed_status_mask(tasks["status"])]
    if project_id is not None:
        tasks = tasks[filter_ids(tasks["project_id"], [project_id])]
    tasks = tasks.assign(
        eta_hours=task_eta_hours(tasks, tables["custom_fields"], cfg.eta_field_id, cfg.source_system)
    )

    anchor = to_timestamp(reference_date)
    rows = []
    for week in range(weeks - 1, -1, -1):
        week_end = anchor - pd.Timedelta(days=7 * week)
        week_start = week_end - pd.Timedelta(days=7)
        in_week = tasks[(tasks["last_updated"] >= week_start) & (tasks["last_updated"] < week_end)]
        rows.append({
            "week_start": week_start.date(),
            "week_end": week_end.date(),
            "tasks_completed": int(len(in_week)),
            "eta_completed": round_half_up(float(in_week["eta_hours"].sum())),
        })

    return pd.DataFrame(rows, columns=["week_start", "week_end", "tasks_completed", "eta_completed"])


# =============================================================================
# LOAD STABILITY INDEX
# =============================================================================

def _population_variance(values: pd.Series) -> float:
    values = values.astype(float).fillna(0.0)
    if len(values) == 0:
        return 0.0
    return float(np.var(values.to_numpy()))


def state_churn(snapshots: pd.DataFrame) -> int:
    """State changes between consecutive snapshots of the same employee."""
    ordered = snapshots.sort_values(["employee_id", "snapshot_date"])
    previous = ordered.groupby("employee_id")["workload_state"].shift()
    return int((previous.notna() & (previous != ordered["workload_state"])).sum())


def interpret_lsi(lsi: float) -> str:
    if lsi < 50:
        return "Stable - Planning mode"
    if lsi < 100:
        return "Moderate variability"
    return "High variability - Firefighting mode"


def summarise_load_stability(snapshots: pd.DataFrame, days: int) -> Dict:
    """
    LSI = 0.4 * var(total_eta) + 0.4 * var(bandwidth) + 0.2 * churn_rate * 100

    Variances are population variances; churn_rate is state changes over the
    number of snapshots. Fewer than two snapshots gives lsi = None.
    """
    if len(snapshots) < 2:
        return {
            "lsi": None,
            "message": "Insufficient historical data for LSI calculation",
            "sample_size": int(len(snapshots)),
            "period": f"{days} days",
        }

    eta_variance = _population_variance(snapshots["total_eta"])
    bandwidth_variance = _population_variance(snapshots["bandwidth"])
    churn_rate = state_churn(snapshots) / len(snapshots)

    lsi = (
        LSI_WEIGHTS["eta_variance"] * eta_variance
        + LSI_WEIGHTS["bandwidth_variance"] * bandwidth_variance
        + LSI_WEIGHTS["churn"] * churn_rate * 100
    )

    return {
        "lsi": round_half_up(lsi),
        "interpretation": interpret_lsi(lsi),
        "components": {
            "eta_variance": round_half_up(eta_variance),
            "bandwidth_variance": round_half_up(bandwidth_variance),
            "churn_rate": round_half_up(churn_rate),
        },
        "sample_size": int(len(snapshots)),
        "period": f"{days} days",
    }


def compute_load_stability_index(source: WorkloadSource,
                                 days: int = 30,
                                 reference_date: Optional[DateLike] = None,
                                 app_config: Optional[AppConfig] = None) -> Dict:
    """LSI over workload snapshots taken in the last ``days`` days."""
    cfg = app_config or default_config
    snapshots = source.load_table("workload_snapshots")

    # Snapshots written without an origin tag are kept
    snapshots = snapshots[snapshots["source_system"].isin([cfg.source_system, ""])]

    anchor = to_timestamp(reference_date)
    window_start = anchor.normalize() - pd.Timedelta(days=days)
    snapshots = snapshots[snapshots["snapshot_date"] >= window_start]

    logger.debug("LSI over %d snapshot(s) since %s", len(snapshots), window_start.date())
    return summarise_load_stability(snapshots, days)
