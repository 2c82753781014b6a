"""
Mart builders for precomputed workload history.
"""
import logging
from datetime import date
from pathlib import Path
from typing import Dict, Optional

import pandas as pd

from workload_radar.config import MART_FILES, config
from workload_radar.data.loader import load_file
from workload_radar.data.schema import ensure_column_types, get_table_spec
from workload_radar.metrics.working_hours import DateLike, to_date
from workload_radar.metrics.workload import WorkloadEngine
from workload_radar.modeling.workload_states import classify_frame

logger = logging.getLogger("workload-radar.data")


def build_workload_snapshot(engine: WorkloadEngine,
                            period: str = "week",
                            snapshot_date: Optional[DateLike] = None) -> pd.DataFrame:
    """
    Classified resource metrics for one day.

    Grain: employee_id x snapshot_date
    """
    snapshot_day = to_date(snapshot_date) if snapshot_date is not None else date.today()
    metrics = classify_frame(engine.compute_resource_metrics_frame(period, reference_date=snapshot_day))

    snapshot = pd.DataFrame({
        "employee_id": metrics["employee_id"],
        "snapshot_date": pd.Timestamp(snapshot_day),
        "total_eta": metrics["total_eta"],
        "time_spent": metrics["time_spent"],
        "yet_to_spend": metrics["yet_to_spend"],
        "available_hours": metrics["total_working_hours"],
        "bandwidth": metrics["bandwidth"],
        "availability_pct": metrics["availability_pct"],
        "active_task_count": metrics["active_task_count"],
        "workload_state": metrics["workload_state"],
        "source_system": engine.source_system,
    })
    return ensure_column_types(snapshot[get_table_spec("workload_snapshots").columns], "workload_snapshots")


def append_workload_snapshot(snapshot: pd.DataFrame, output_dir: Optional[Path] = None) -> pd.DataFrame:
    """
    Merge a snapshot into the stored history and write it back.

    Rows for the same employee, day and origin are replaced, so re-running a
    day is safe.
    """
    if output_dir is None:
        output_dir = config.marts_dir
    output_dir.mkdir(parents=True, exist_ok=True)

    filepath = output_dir / MART_FILES["workload_snapshots"]
    existing = load_file(filepath)
    key = ["employee_id", "snapshot_date", "source_system"]

    if existing is not None and len(existing) > 0:
        existing = ensure_column_types(existing, "workload_snapshots")
        history = pd.concat([existing, snapshot], ignore_index=True)
        history = history.drop_duplicates(subset=key, keep="last")
    else:
        history = snapshot.copy()

    history = history.sort_values(["snapshot_date", "employee_id"]).reset_index(drop=True)
    history.to_parquet(filepath.with_suffix(".parquet"), index=False)
    logger.info("Saved workload_snapshots: %d rows (%d new)", len(history), len(snapshot))
    return history


def build_all_marts(engine: WorkloadEngine,
                    output_dir: Optional[Path] = None,
                    period: str = "week",
                    snapshot_date: Optional[DateLike] = None) -> Dict[str, pd.DataFrame]:
    """
    Build all marts and save to disk.

    Returns dict of mart DataFrames.
    """
    marts = {}

    logger.info("Building workload_snapshots...")
    snapshot = build_workload_snapshot(engine, period, snapshot_date)
    marts["workload_snapshots"] = append_workload_snapshot(snapshot, output_dir)

    return marts
