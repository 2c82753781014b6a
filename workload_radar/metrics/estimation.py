"""
Estimation accuracy metrics over final estimation-history rows.

Bias is time_spent_final - eta_at_creation: positive means the resource
underestimates, negative means it overestimates.
"""
from __future__ import annotations

from typing import Dict, Optional

import numpy as np
import pandas as pd

from workload_radar.config import AppConfig, config as default_config
from workload_radar.data.loader import WorkloadSource
from workload_radar.data.semantic import coerce_number, employee_display_name, filter_ids, round_half_up

ACCURACY_SAMPLE = 50
PATTERN_SAMPLE = 200
RECENT_HISTORY = 10
BIAS_BAND_HOURS = 2.0
TOP_ESTIMATORS = 5

_TRUE_TEXT = {"1", "true", "t", "yes", "y"}


def final_mask(values: pd.Series) -> pd.Series:
    """True for rows flagged final (bool, 1/0 or text)."""
    def is_true(value) -> bool:
        if value is None or (isinstance(value, float) and np.isnan(value)):
            return False
        if isinstance(value, (bool, np.bool_)):
            return bool(value)
        if isinstance(value, (int, float, np.integer, np.floating)):
            return value == 1
        return str(value).strip().lower() in _TRUE_TEXT

    return values.map(is_true).astype(bool)


def final_history(history: pd.DataFrame, source_system: str) -> pd.DataFrame:
    """Final rows of the origin (untagged rows kept), newest first."""
    df = history[final_mask(history["is_final"])]
    df = df[df["source_system"].isin([source_system, ""])]
    return df.sort_values("recorded_at", ascending=False, na_position="last")


def _with_bias(df: pd.DataFrame) -> pd.DataFrame:
    df = df.copy()
    df["accuracy"] = coerce_number(df["accuracy_score"])
    df["bias"] = coerce_number(df["time_spent_final"]) - coerce_number(df["eta_at_creation"])
    return df


def consistency_band(variance: float) -> str:
    if variance < 100:
        return "consistent"
    if variance < 400:
        return "moderate"
    return "inconsistent"


def bias_direction(bias: float, band: float = 0.0) -> str:
    if bias > band:
        return "underestimates"
    if bias < -band:
        return "overestimates"
    return "accurate"


def summarise_estimation_accuracy(records: pd.DataFrame) -> Dict:
    """Accuracy summary for one resource's final history rows (newest first)."""
    if len(records) == 0:
        return {"has_data": False, "message": "No completed tasks with estimation data"}

    df = _with_bias(records)
    avg_accuracy = float(df["accuracy"].mean())
    avg_bias = float(df["bias"].mean())
    variance = float(np.var(df["accuracy"].to_numpy()))

    df["task_type"] = df["task_type"].where(
        df["task_type"].notna() & (df["task_type"].astype(str).str.strip() != ""), "Unknown"
    )
    by_type = df.groupby("task_type", sort=False).agg(
        avg_accuracy=("accuracy", "mean"),
        sample_size=("accuracy", "size"),
    ).reset_index()
    by_type["avg_accuracy"] = by_type["avg_accuracy"].map(round_half_up)

    return {
        "has_data": True,
        "sample_size": int(len(df)),
        "avg_accuracy": round_half_up(avg_accuracy),
        "estimation_bias": round_half_up(avg_bias),
        "bias_direction": bias_direction(avg_bias),
        "variance": round_half_up(variance),
        "consistency": consistency_band(variance),
        "by_task_type": by_type,
        "recent_history": records.head(RECENT_HISTORY).reset_index(drop=True),
    }


def compute_estimation_accuracy(source: WorkloadSource,
                                employee_id: int,
                                app_config: Optional[AppConfig] = None) -> Dict:
    """Accuracy over the employee's last 50 final estimates."""
    cfg = app_config or default_config
    history = final_history(source.load_table("estimation_history"), cfg.source_system)
    records = history[filter_ids(history["resource_id"], [employee_id])].head(ACCURACY_SAMPLE)
    return summarise_estimation_accuracy(records)


def summarise_estimation_patterns(history: pd.DataFrame, employees: pd.DataFrame) -> Dict:
    """Per-resource bias, sorted by absolute bias, with the top under/over estimators."""
    columns = ["resource_id", "resource_name", "sample_size", "avg_accuracy", "avg_bias", "bias_direction"]
    if len(history) == 0:
        empty = pd.DataFrame(columns=columns)
        return {"patterns": empty, "top_underestimators": empty, "top_overestimators": empty}

    df = _with_bias(history)
    df = df[df["resource_id"].notna()]
    patterns = df.groupby("resource_id").agg(
        sample_size=("bias", "size"),
        avg_accuracy=("accuracy", "mean"),
        avg_bias=("bias", "mean"),
    ).reset_index()

    patterns["bias_direction"] = patterns["avg_bias"].map(lambda b: bias_direction(b, BIAS_BAND_HOURS))
    patterns["avg_accuracy"] = patterns["avg_accuracy"].map(round_half_up)
    patterns["avg_bias"] = patterns["avg_bias"].map(round_half_up)

    names = employees.drop_duplicates("employee_id").copy()
    names["resource_name"] = employee_display_name(names)
    names = names.set_index("employee_id")["resource_name"]
    patterns["resource_name"] = patterns["resource_id"].map(names).fillna("Unknown")
    patterns["resource_id"] = patterns["resource_id"].astype(int)

    patterns = patterns.assign(_abs=patterns["avg_bias"].abs())
    patterns = patterns.sort_values(["_abs", "resource_id"], ascending=[False, True])
    patterns = patterns[columns].reset_index(drop=True)

    return {
        "patterns": patterns,
        "top_underestimators": patterns[patterns["bias_direction"] == "underestimates"]
        .head(TOP_ESTIMATORS).reset_index(drop=True),
        "top_overestimators": patterns[patterns["bias_direction"] == "overestimates"]
        .head(TOP_ESTIMATORS).reset_index(drop=True),
    }


def compute_estimation_patterns(source: WorkloadSource,
                                app_config: Optional[AppConfig] = None) -> Dict:
    """Org-wide estimation patterns over the 200 most recent final estimates."""
    cfg = app_config or default_config
    history = final_history(source.load_table("estimation_history"), cfg.source_system)
    return summarise_estimation_patterns(history.head(PATTERN_SAMPLE), source.load_table("employees"))
