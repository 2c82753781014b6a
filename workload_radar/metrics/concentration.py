"""
Load concentration and obligation flow.

How much of the team's remaining ETA sits on a few people, and how the
remaining obligation drains week by week against weekly capacity.
"""
from __future__ import annotations

from datetime import date, timedelta
from typing import Dict, Optional

import numpy as np
import pandas as pd

from workload_radar.data.semantic import round2, round_half_up, round_int
from workload_radar.metrics.working_hours import DateLike, to_date
from workload_radar.metrics.workload import WorkloadEngine

TOP_N = 3
CONCENTRATION_THRESHOLD = 60.0
WEEKLY_BURN_HOURS = 20.0


def summarise_load_concentration(metrics: pd.DataFrame, top_n: int = TOP_N) -> Dict:
    """
    Share of remaining ETA carried by the ``top_n`` most loaded resources.

    Shares are taken of the raw remaining ETA, so a resource that has logged
    more than its ETA lowers the total and the share can exceed 100.
    """
    if len(metrics) == 0:
        return {
            "total_eta": 0.0,
            "resource_count": 0,
            "top3_concentration": 0.0,
            "is_concentrated": False,
            "distribution": pd.DataFrame(columns=["employee_id", "name", "eta", "percentage"]),
        }

    df = metrics[["employee_id", "employee_name", "yet_to_spend"]].copy()
    df["eta"] = df["yet_to_spend"].astype(float)
    df = df.sort_values(["eta", "employee_id"], ascending=[False, True])

    total = float(df["eta"].sum())
    top = float(df["eta"].head(top_n).sum())
    concentration = top / total * 100 if total > 0 else 0.0

    df["percentage"] = round2(df["eta"] / total * 100) if total > 0 else 0.0
    distribution = df.rename(columns={"employee_name": "name"})[["employee_id", "name", "eta", "percentage"]]

    return {
        "total_eta": round_half_up(total),
        "resource_count": int(len(df)),
        "top3_concentration": round_half_up(concentration),
        "is_concentrated": bool(concentration > CONCENTRATION_THRESHOLD),
        "distribution": distribution.reset_index(drop=True),
    }


def compute_load_concentration(engine: WorkloadEngine,
                               project_id: Optional[int] = None,
                               reference_date: Optional[DateLike] = None) -> Dict:
    """Load concentration over this week's resource metrics."""
    metrics = engine.compute_resource_metrics_frame(
        "week", project_id=project_id, reference_date=reference_date
    )
    return summarise_load_concentration(metrics)


def project_obligation_flow(yet_to_spend: pd.Series,
                            weeks: int,
                            start: date,
                            weekly_hours: float = 40.0,
                            weekly_burn: float = WEEKLY_BURN_HOURS) -> Dict:
    """
    Roll remaining ETA forward assuming each resource burns ``weekly_burn`` hours a week.

    Week n (0-based) holds sum(max(0, yet - n * weekly_burn)) against
    resource_count * weekly_hours.
    """
    remaining = yet_to_spend.astype(float).to_numpy()
    available = float(len(remaining) * weekly_hours)

    rows = []
    for week in range(weeks):
        week_remaining = float(np.maximum(0.0, remaining - week * weekly_burn).sum())
        rows.append({
            "week": week + 1,
            "week_start": start + timedelta(days=7 * week),
            "remaining_eta": round_half_up(week_remaining),
            "available_hours": available,
            "utilization_pct": round_int(week_remaining / available * 100) if available > 0 else 0,
            "is_overloaded": week_remaining > available,
        })

    flow = pd.DataFrame(
        rows,
        columns=["week", "week_start", "remaining_eta", "available_hours", "utilization_pct", "is_overloaded"],
    )
    overloaded = flow[flow["is_overloaded"]]
    return {
        "weeks": flow,
        "overload_week": int(overloaded["week"].iloc[0]) if len(overloaded) else None,
    }


def compute_obligation_flow(engine: WorkloadEngine,
                            weeks: int = 4,
                            project_id: Optional[int] = None,
                            reference_date: Optional[DateLike] = None) -> Dict:
    """Obligation flow over this month's resource metrics."""
    metrics = engine.compute_resource_metrics_frame(
        "month", project_id=project_id, reference_date=reference_date
    )
    start = to_date(reference_date) if reference_date is not None else date.today()
    yet = metrics["yet_to_spend"] if len(metrics) else pd.Series(dtype=float)
    return project_obligation_flow(
        yet, weeks, start, weekly_hours=engine.config.standard_weekly_hours
    )
