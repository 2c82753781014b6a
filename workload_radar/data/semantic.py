"""
Semantic layer: rounding, parse-default policies and origin-scoped joins.

CRITICAL: All aggregations must use these helpers to ensure consistency.
Hours are rounded at the point of aggregation, never only at display time.
"""
import math
import re
from typing import Any, Iterable, Optional, Union

import numpy as np
import pandas as pd


# =============================================================================
# ROUNDING
# =============================================================================
# Half-up on the scaled value: floor(x * 10^d + 0.5) / 10^d.
# Python's round() is half-even and would drift from stored history.

Number = Union[int, float]


def round_half_up(value: Number, digits: int = 2) -> float:
    """Round a scalar half-up to ``digits`` decimals."""
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return 0.0
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def round_int(value: Number) -> int:
    """Round a scalar half-up to the nearest integer."""
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return 0
    return int(math.floor(value + 0.5))


def round2(values: pd.Series) -> pd.Series:
    """Vectorised two-decimal half-up rounding."""
    return np.floor(values.astype(float) * 100 + 0.5) / 100


# =============================================================================
# PARSE POLICIES
# =============================================================================
# Every field has an explicit default-on-failure. Nothing here raises.

_LEADING_DECIMAL = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")


def parse_hours(value: Any) -> float:
    """
    Parse an hours value stored as text.

    Takes the leading decimal of the text ("12.5h" -> 12.5). Missing, empty or
    unparsable values (and non-finite results) are 0.
    """
    if value is None or value is pd.NA:
        return 0.0
    if isinstance(value, (int, float, np.integer, np.floating)) and not isinstance(value, bool):
        number = float(value)
        return number if math.isfinite(number) else 0.0
    match = _LEADING_DECIMAL.match(str(value).strip())
    if not match:
        return 0.0
    number = float(match.group(0))
    return number if math.isfinite(number) else 0.0


def _parse_hours_series(values: pd.Series) -> pd.Series:
    return values.map(parse_hours).astype(float)


def coerce_minutes(values: pd.Series) -> pd.Series:
    """Logged minutes; null or non-numeric entries count as 0."""
    return pd.to_numeric(values, errors="coerce").fillna(0).astype(float)


def coerce_number(values: pd.Series, default: float = 0.0) -> pd.Series:
    return pd.to_numeric(values, errors="coerce").fillna(default).astype(float)


def normalise_email(values: pd.Series) -> pd.Series:
    """Trimmed, lower-cased join key; missing emails become empty strings."""
    return values.fillna("").astype(str).str.strip().str.lower()


# =============================================================================
# ORIGIN-SCOPED ACCESS
# =============================================================================

def scope_to_source(df: pd.DataFrame, source_system: str) -> pd.DataFrame:
    """Rows belonging to one origin system."""
    if "source_system" not in df.columns:
        return df.iloc[0:0].copy()
    return df[df["source_system"] == source_system].copy()


def origin_merge(left: pd.DataFrame,
                 right: pd.DataFrame,
                 left_on: str,
                 right_on: str,
                 how: str = "left",
                 suffixes=("", "_right")) -> pd.DataFrame:
    """
    Join two origin-tagged tables on key AND source_system.

    A cross-origin pair can never be produced by this join.
    """
    for frame, key in ((left, left_on), (right, right_on)):
        if "source_system" not in frame.columns:
            raise KeyError(f"origin_merge needs source_system alongside {key}")
    return left.merge(
        right,
        left_on=[left_on, "source_system"],
        right_on=[right_on, "source_system"],
        how=how,
        suffixes=suffixes,
    )


def filter_ids(values: pd.Series, ids: Optional[Iterable[int]]) -> pd.Series:
    """Boolean mask for membership, tolerant of float-typed id columns."""
    if ids is None:
        return pd.Series(True, index=values.index)
    wanted = {float(i) for i in ids}
    return pd.to_numeric(values, errors="coerce").isin(wanted)


# =============================================================================
# EMPLOYEE <-> ASSIGNEE LINK
# =============================================================================

def resolve_assignees(employees: pd.DataFrame,
                      users: pd.DataFrame,
                      source_system: str) -> pd.DataFrame:
    """
    Attach the matching assignee (bug-tracker user) to each employee.

    Match is trimmed, case-insensitive email equality against users of one
    origin. When several users share an email the lowest user_id wins.
    Employees without a match keep ``user_id`` = NaN.
    """
    emp = employees.copy()
    emp["_email_key"] = normalise_email(emp["work_email"])

    scoped = scope_to_source(users, source_system)
    scoped["_email_key"] = normalise_email(scoped["email"])
    scoped = scoped[scoped["_email_key"] != ""]
    scoped = scoped.sort_values("user_id").drop_duplicates("_email_key", keep="first")

    keep = ["_email_key", "user_id", "source_system"]
    if "realname" in scoped.columns:
        keep.append("realname")
    merged = emp.drop(columns=["source_system"], errors="ignore").merge(
        scoped[keep], on="_email_key", how="left"
    )
    return merged.drop(columns=["_email_key"])


def employee_display_name(employees: pd.DataFrame) -> pd.Series:
    first = employees.get("first_name", pd.Series("", index=employees.index)).fillna("").astype(str)
    last = employees.get("last_name", pd.Series("", index=employees.index)).fillna("").astype(str)
    return (first + " " + last).str.strip()


# =============================================================================
# TASK-LEVEL AGGREGATES
# =============================================================================

def custom_field_values(custom_fields: pd.DataFrame,
                        field_ids: Iterable[int],
                        source_system: str) -> pd.DataFrame:
    """
    First value per task for the given field id(s), scoped to one origin.

    Returns task_id, source_system, value.
    """
    scoped = scope_to_source(custom_fields, source_system)
    scoped = scoped[filter_ids(scoped["field_id"], list(field_ids))]
    scoped = scoped.drop_duplicates(subset=["task_id", "source_system"], keep="first")
    return scoped[["task_id", "source_system", "value"]]


def task_eta_hours(tasks: pd.DataFrame,
                   custom_fields: pd.DataFrame,
                   eta_field_id: int,
                   source_system: str) -> pd.Series:
    """Parsed ETA (hours) per task row, aligned to ``tasks.index``; missing -> 0."""
    if len(tasks) == 0:
        return pd.Series(dtype=float, index=tasks.index)
    eta = custom_field_values(custom_fields, [eta_field_id], source_system)
    merged = origin_merge(
        tasks[["task_id", "source_system"]].assign(_row=tasks.index),
        eta,
        left_on="task_id",
        right_on="task_id",
    ).set_index("_row")
    return _parse_hours_series(merged["value"]).reindex(tasks.index).fillna(0.0)


def task_minutes(tasks: pd.DataFrame,
                 time_logs: pd.DataFrame,
                 source_system: str) -> pd.Series:
    """Total logged minutes per task row, aligned to ``tasks.index``; none logged -> 0."""
    if len(tasks) == 0:
        return pd.Series(dtype=float, index=tasks.index)
    logs = scope_to_source(time_logs, source_system)
    logs["minutes"] = coerce_minutes(logs["minutes"])
    per_task = logs.groupby(["task_id", "source_system"], as_index=False)["minutes"].sum()
    merged = origin_merge(
        tasks[["task_id", "source_system"]].assign(_row=tasks.index),
        per_task,
        left_on="task_id",
        right_on="task_id",
    ).set_index("_row")
    return merged["minutes"].reindex(tasks.index).fillna(0.0).astype(float)


def format_number(value: Number) -> str:
    """Whole numbers without a trailing .0 (20.0 -> "20", 12.5 -> "12.5")."""
    number = float(value)
    return str(int(number)) if number.is_integer() else str(number)
