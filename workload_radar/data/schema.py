"""
Schema validation and column alias mapping.

TABLE_SPECS is the one place where physical bug-tracker / HRMS table and
column names are translated into the canonical names the rest of the package
uses. Nothing downstream should know a physical name.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Tuple

import pandas as pd


class DataAccessError(Exception):
    """Raised when the underlying store cannot be read (fatal for the call)."""
    pass


class SchemaValidationError(DataAccessError):
    """Raised when required columns are missing."""
    pass


class TableNotFoundError(DataAccessError):
    """Raised when no configured location holds the requested table."""
    pass


@dataclass(frozen=True)
class TableSpec:
    """Physical-to-canonical mapping for one logical table."""
    name: str
    physical_name: str
    aliases: Dict[str, str] = field(default_factory=dict)
    required: Tuple[str, ...] = ()
    optional_columns: Tuple[str, ...] = ()
    date_columns: Tuple[str, ...] = ()
    numeric_columns: Tuple[str, ...] = ()
    optional: bool = False

    @property
    def columns(self) -> List[str]:
        return list(dict.fromkeys(self.required + self.optional_columns))


TABLE_SPECS: Dict[str, TableSpec] = {
    "employees": TableSpec(
        name="employees",
        physical_name="hs_hr_employee",
        aliases={
            "emp_number": "employee_id",
            "emp_firstname": "first_name",
            "emp_lastname": "last_name",
            "emp_status": "employment_status",
            "job_title_code": "job_title_id",
            "emp_work_email": "work_email",
        },
        required=("employee_id", "work_email"),
        optional_columns=("first_name", "last_name", "employment_status", "job_title_id"),
        numeric_columns=("employee_id", "employment_status", "job_title_id"),
    ),
    "job_titles": TableSpec(
        name="job_titles",
        physical_name="ohrm_job_title",
        aliases={"id": "job_title_id"},
        required=("job_title_id", "job_title"),
        numeric_columns=("job_title_id",),
        optional=True,
    ),
    "users": TableSpec(
        name="users",
        physical_name="mantis_user_table",
        aliases={"id": "user_id"},
        required=("user_id", "email", "source_system"),
        optional_columns=("username", "realname", "enabled"),
        numeric_columns=("user_id", "enabled"),
    ),
    "projects": TableSpec(
        name="projects",
        physical_name="mantis_project_table",
        aliases={"id": "project_id", "name": "project_name", "status": "project_status"},
        required=("project_id", "project_name", "source_system"),
        optional_columns=("enabled", "project_status"),
        numeric_columns=("project_id", "enabled", "project_status"),
    ),
    "tasks": TableSpec(
        name="tasks",
        physical_name="mantis_bug_table",
        aliases={"id": "task_id"},
        required=("task_id", "project_id", "handler_id", "status", "source_system"),
        optional_columns=(
            "reporter_id", "resolution", "summary",
            "date_submitted", "due_date", "last_updated",
        ),
        date_columns=("date_submitted", "due_date", "last_updated"),
        numeric_columns=("task_id", "project_id", "handler_id", "reporter_id", "status", "resolution"),
    ),
    "custom_fields": TableSpec(
        name="custom_fields",
        physical_name="mantis_custom_field_string_table",
        aliases={"bug_id": "task_id"},
        required=("task_id", "field_id", "value", "source_system"),
        numeric_columns=("task_id", "field_id"),
    ),
    "time_logs": TableSpec(
        name="time_logs",
        physical_name="mantis_bugnote_table",
        aliases={
            "id": "note_id",
            "bug_id": "task_id",
            "time_tracking": "minutes",
            "date_submitted": "logged_at",
        },
        required=("task_id", "minutes", "source_system"),
        optional_columns=("note_id", "reporter_id", "logged_at"),
        date_columns=("logged_at",),
        numeric_columns=("task_id", "reporter_id"),
    ),
    "holidays": TableSpec(
        name="holidays",
        physical_name="ohrm_holiday",
        aliases={"date": "holiday_date"},
        required=("holiday_date",),
        optional_columns=("description",),
        date_columns=("holiday_date",),
        optional=True,
    ),
    "estimation_history": TableSpec(
        name="estimation_history",
        physical_name="estimation_history",
        required=("task_id", "resource_id", "eta_at_creation", "eta_current", "is_final"),
        optional_columns=(
            "time_spent_final", "accuracy_score", "task_type",
            "project_id", "recorded_at", "source_system",
        ),
        date_columns=("recorded_at",),
        numeric_columns=(
            "task_id", "resource_id", "eta_at_creation", "eta_current",
            "time_spent_final", "accuracy_score", "project_id",
        ),
        optional=True,
    ),
    "task_dependencies": TableSpec(
        name="task_dependencies",
        physical_name="task_dependencies",
        required=("parent_task_id", "child_task_id"),
        optional_columns=("dependency_type", "source_system"),
        numeric_columns=("parent_task_id", "child_task_id"),
        optional=True,
    ),
    "workload_snapshots": TableSpec(
        name="workload_snapshots",
        physical_name="workload_snapshots",
        required=("employee_id", "snapshot_date", "total_eta", "bandwidth", "workload_state"),
        optional_columns=(
            "time_spent", "yet_to_spend", "available_hours", "availability_pct",
            "active_task_count", "source_system",
        ),
        date_columns=("snapshot_date",),
        numeric_columns=(
            "employee_id", "total_eta", "time_spent", "yet_to_spend",
            "available_hours", "bandwidth", "availability_pct", "active_task_count",
        ),
        optional=True,
    ),
}


def get_table_spec(table_name: str) -> TableSpec:
    if table_name not in TABLE_SPECS:
        raise KeyError(f"Unknown table: {table_name}")
    return TABLE_SPECS[table_name]


def empty_table(table_name: str) -> pd.DataFrame:
    """Empty frame with the canonical columns of a table."""
    spec = get_table_spec(table_name)
    return pd.DataFrame({col: pd.Series(dtype="object") for col in spec.columns})


def canonicalise_columns(df: pd.DataFrame, table_name: str) -> pd.DataFrame:
    """Rename physical columns to canonical names (already-canonical columns pass through)."""
    spec = get_table_spec(table_name)
    renames = {
        physical: canonical
        for physical, canonical in spec.aliases.items()
        if physical in df.columns and canonical not in df.columns
    }
    return df.rename(columns=renames)


def validate_required_columns(df: pd.DataFrame, table_name: str) -> Tuple[bool, List[str]]:
    """
    Validate that required columns exist in dataframe.
    Returns (is_valid, missing_columns).
    """
    if table_name not in TABLE_SPECS:
        return True, []

    required = TABLE_SPECS[table_name].required
    missing = [col for col in required if col not in df.columns]

    return len(missing) == 0, missing


def check_optional_columns(df: pd.DataFrame, table_name: str) -> List[str]:
    """
    Check which optional columns are missing.
    Returns list of missing optional columns.
    """
    if table_name not in TABLE_SPECS:
        return []

    optional = TABLE_SPECS[table_name].optional_columns
    return [col for col in optional if col not in df.columns]


def validate_schema(df: pd.DataFrame, table_name: str, strict: bool = True) -> Dict:
    """
    Full schema validation.

    Args:
        df: DataFrame to validate (canonical column names)
        table_name: Logical table name for the TABLE_SPECS lookup
        strict: If True, raise error on missing required columns

    Returns:
        Dict with validation results
    """
    is_valid, missing_required = validate_required_columns(df, table_name)
    missing_optional = check_optional_columns(df, table_name)

    result = {
        "is_valid": is_valid,
        "missing_required": missing_required,
        "missing_optional": missing_optional,
        "total_columns": len(df.columns),
        "total_rows": len(df),
    }

    if strict and not is_valid:
        raise SchemaValidationError(
            f"Missing required columns in {table_name}: {missing_required}"
        )

    return result


def to_naive_utc(values: pd.Series) -> pd.Series:
    """
    Parse dates onto a naive UTC clock.

    Offset-carrying values (``...Z``, ``+02:00``) are converted to UTC, naive
    values are taken as UTC already, and unparsable values become NaT.
    """
    parsed = pd.to_datetime(values, errors="coerce", utc=True, format="mixed")
    return parsed.dt.tz_localize(None)


def ensure_column_types(df: pd.DataFrame, table_name: str) -> pd.DataFrame:
    """
    Coerce numeric and date columns; unparsable values become NaN/NaT.

    Optional columns that are absent are added as all-null so downstream code
    can degrade instead of branching on presence.
    """
    spec = get_table_spec(table_name)
    df = df.copy()

    for col in spec.optional_columns:
        if col not in df.columns:
            df[col] = pd.NaT if col in spec.date_columns else None

    for col in spec.numeric_columns:
        if col in df.columns:
            df[col] = pd.to_numeric(df[col], errors="coerce")

    for col in spec.date_columns:
        if col in df.columns:
            df[col] = to_naive_utc(df[col])

    if "source_system" in df.columns:
        df["source_system"] = df["source_system"].fillna("").astype(str).str.strip()

    return df


def prepare_table(df: pd.DataFrame, table_name: str) -> pd.DataFrame:
    """Canonicalise, validate (strict) and type a raw table."""
    df = canonicalise_columns(df, table_name)
    validate_schema(df, table_name, strict=True)
    return ensure_column_types(df, table_name)
