"""
Status and resolution code tables.

Every helper here is total: bulk task data routinely carries nulls and junk
codes, so nothing in this module raises.
"""
import math
from typing import Any, Dict, List, Optional

import pandas as pd


STATUS_NEW = 10
STATUS_CONFIRMED = 40
STATUS_ASSIGNED = 50
STATUS_RESOLVED = 80
STATUS_CLOSED = 90

RESOLUTION_OPEN = 10

CLOSED_STATUS_CODES = (STATUS_RESOLVED, STATUS_CLOSED)
CURRENT_STATUS_CODES = (STATUS_CONFIRMED, STATUS_ASSIGNED)

STATUS_LABELS: Dict[int, str] = {
    10: "New",
    20: "Feedback",
    30: "Acknowledged",
    40: "Confirmed",
    50: "Assigned",
    60: "Movedout",
    70: "Deferred",
    80: "Resolved",
    90: "Closed",
    100: "Reopen",
}

RESOLUTION_LABELS: Dict[int, str] = {
    10: "Open",
    20: "Fixed",
    30: "Reopened",
    40: "Unable to Reproduce",
    50: "Duplicate",
    60: "No Change Required",
    70: "Not Fixable",
    80: "Suspended",
    90: "Won't Fix",
}


def coerce_code(code: Any) -> Optional[int]:
    """Integer code, or None when the value is missing or not numeric."""
    if code is None:
        return None
    if isinstance(code, bool):
        return None
    try:
        value = float(code)
    except (TypeError, ValueError):
        return None
    if math.isnan(value) or math.isinf(value):
        return None
    return int(value)


def _is_missing(code: Any) -> bool:
    if code is None or code is pd.NA or code is pd.NaT:
        return True
    return isinstance(code, float) and math.isnan(code)


def status_label(code: Any) -> str:
    """Human label for a status code."""
    value = coerce_code(code)
    if value is None:
        return "Unknown" if _is_missing(code) else f"Unknown ({code})"
    return STATUS_LABELS.get(value, f"Unknown ({value})")


def resolution_label(code: Any) -> str:
    """Human label for a resolution code; a missing code means still open."""
    value = coerce_code(code)
    if value is None:
        return "Open" if _is_missing(code) else f"Unknown ({code})"
    return RESOLUTION_LABELS.get(value, f"Unknown ({value})")


def is_active_status(code: Any) -> bool:
    """Active means anything except Resolved/Closed; a missing code is not active."""
    value = coerce_code(code)
    if value is None:
        return False
    return value not in CLOSED_STATUS_CODES


def is_current_task(status_code: Any, resolution_code: Any) -> bool:
    """Confirmed/Assigned and still open (resolution missing or Open)."""
    if not is_active_status(status_code):
        return False
    resolution = coerce_code(resolution_code)
    return coerce_code(status_code) in CURRENT_STATUS_CODES and resolution in (None, RESOLUTION_OPEN)


def active_status_codes() -> List[int]:
    return [code for code in STATUS_LABELS if is_active_status(code)]


# =============================================================================
# VECTORISED FORMS
# =============================================================================

def active_status_mask(status: pd.Series) -> pd.Series:
    """True where the status is present and not Resolved/Closed."""
    codes = pd.to_numeric(status, errors="coerce")
    return codes.notna() & ~codes.isin(CLOSED_STATUS_CODES)


def closed_status_mask(status: pd.Series) -> pd.Series:
    codes = pd.to_numeric(status, errors="coerce")
    return codes.isin(CLOSED_STATUS_CODES)


def label_statuses(status: pd.Series) -> pd.Series:
    return status.map(status_label)


def label_resolutions(resolution: pd.Series) -> pd.Series:
    return resolution.map(resolution_label)
