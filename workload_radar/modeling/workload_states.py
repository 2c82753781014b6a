"""
Workload state classifier.

Ordered, first-match rules over one ResourceMetrics snapshot:

1. overloaded     yet_to_spend > total_working_hours
2. at_risk        availability_pct < 20 and yet_to_spend > 0
3. idle_drift     active_task_count > 0 and total_eta < 8
4. underutilized  availability_pct > 80 and yet_to_spend < 8
5. balanced       everything else

The order is the tie-break: a resource matching several rules takes the
first. States are recomputed on every call and never stored on the metrics.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping

import numpy as np
import pandas as pd

from workload_radar.data.semantic import format_number, round_int

OVERLOADED = "overloaded"
AT_RISK = "at_risk"
BALANCED = "balanced"
UNDERUTILIZED = "underutilized"
IDLE_DRIFT = "idle_drift"

STATES = (OVERLOADED, AT_RISK, BALANCED, UNDERUTILIZED, IDLE_DRIFT)

STATE_DISPLAY: Dict[str, Dict[str, str]] = {
    OVERLOADED: {"label": "Overloaded", "color": "red", "icon": "🔴"},
    AT_RISK: {"label": "At Risk", "color": "orange", "icon": "🟠"},
    BALANCED: {"label": "Balanced", "color": "green", "icon": "🟢"},
    UNDERUTILIZED: {"label": "Underutilized", "color": "blue", "icon": "🔵"},
    IDLE_DRIFT: {"label": "Idle Drift", "color": "gray", "icon": "⚪"},
}

STATE_PRIORITY: Dict[str, int] = {
    OVERLOADED: 1,
    AT_RISK: 2,
    IDLE_DRIFT: 3,
    UNDERUTILIZED: 4,
    BALANCED: 5,
}

HEALTH_WEIGHTS: Dict[str, int] = {
    BALANCED: 100,
    UNDERUTILIZED: 60,
    IDLE_DRIFT: 40,
    AT_RISK: 30,
    OVERLOADED: 0,
}

AT_RISK_AVAILABILITY = 20.0
UNDERUTILIZED_AVAILABILITY = 80.0
LOW_ETA_HOURS = 8.0


@dataclass
class WorkloadClassification:
    state: str
    confidence: float
    reasons: List[str] = field(default_factory=list)


@dataclass
class TeamHealth:
    health_score: int
    distribution: Dict[str, int]
    alerts: List[str] = field(default_factory=list)


def _metric(metrics: Any, name: str) -> float:
    """Read a metric from a dataclass/object or a mapping; missing -> 0."""
    if isinstance(metrics, Mapping):
        value = metrics.get(name, 0)
    else:
        value = getattr(metrics, name, 0)
    if value is None:
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return 0.0 if np.isnan(number) else number


def classify(metrics: Any) -> str:
    """Return the workload state for one ResourceMetrics snapshot."""
    yet_to_spend = _metric(metrics, "yet_to_spend")
    total_working_hours = _metric(metrics, "total_working_hours")
    availability_pct = _metric(metrics, "availability_pct")
    total_eta = _metric(metrics, "total_eta")
    active_task_count = _metric(metrics, "active_task_count")

    if yet_to_spend > total_working_hours:
        return OVERLOADED
    if availability_pct < AT_RISK_AVAILABILITY and yet_to_spend > 0:
        return AT_RISK
    if active_task_count > 0 and total_eta < LOW_ETA_HOURS:
        return IDLE_DRIFT
    if availability_pct > UNDERUTILIZED_AVAILABILITY and yet_to_spend < LOW_ETA_HOURS:
        return UNDERUTILIZED
    return BALANCED


def classify_with_reasoning(metrics: Any) -> WorkloadClassification:
    """
    Classify with an advisory confidence and two reason strings.

    The state always equals ``classify(metrics)``.
    """
    state = classify(metrics)
    yet_to_spend = _metric(metrics, "yet_to_spend")
    hours = _metric(metrics, "total_working_hours")
    availability = _metric(metrics, "availability_pct")
    total_eta = _metric(metrics, "total_eta")
    task_count = int(_metric(metrics, "active_task_count"))

    if state == OVERLOADED:
        if hours > 0:
            excess = yet_to_spend / hours - 1
            confidence = min(0.95, 0.7 + excess * 0.25)
            extra = f"Would need {round_int(excess * 100)}% more time to complete"
        else:
            confidence = 0.95
            extra = "No working hours are available in this period"
        reasons = [
            f"Remaining obligation ({format_number(yet_to_spend)}h) exceeds "
            f"available hours ({format_number(hours)}h)",
            extra,
        ]
    elif state == AT_RISK:
        confidence = 0.85
        reasons = [
            f"Availability at {format_number(availability)}% is critically low",
            f"{format_number(yet_to_spend)}h of work remaining with limited capacity",
        ]
    elif state == IDLE_DRIFT:
        confidence = 0.7
        reasons = [
            f"{task_count} active tasks but only {format_number(total_eta)}h of ETA assigned",
            "Tasks may lack proper estimation or be stagnant",
        ]
    elif state == UNDERUTILIZED:
        confidence = 0.85
        reasons = [
            f"{format_number(availability)}% availability indicates excess capacity",
            f"Only {format_number(yet_to_spend)}h of remaining work",
        ]
    else:
        confidence = 0.9
        reasons = [
            f"Healthy availability at {format_number(availability)}%",
            "Workload and capacity are well-matched",
        ]

    return WorkloadClassification(state=state, confidence=confidence, reasons=reasons)


def state_display(state: str) -> Dict[str, str]:
    """Label, colour and icon for a state."""
    return dict(STATE_DISPLAY[state])


def state_priority(state: str) -> int:
    """Sort/alert priority, 1 = most urgent."""
    return STATE_PRIORITY[state]


def team_health(states: Iterable[str]) -> TeamHealth:
    """
    Weighted health score and alerts for a list of member states.

    Score is the mean of per-state weights, rounded half-up; 0 for an empty
    team. The four alert checks are independent.
    """
    states = list(states)
    distribution = {state: 0 for state in STATES}
    for state in states:
        if state not in distribution:
            raise ValueError(f"Unknown workload state: {state!r}")
        distribution[state] += 1

    total = len(states)
    if total > 0:
        weighted = sum(HEALTH_WEIGHTS[state] * count for state, count in distribution.items())
        health_score = round_int(weighted / total)
    else:
        health_score = 0

    alerts: List[str] = []
    if distribution[OVERLOADED] > 0:
        alerts.append(f"{distribution[OVERLOADED]} team member(s) are overloaded")
    if distribution[AT_RISK] > total * 0.3:
        alerts.append("Over 30% of team is at risk")
    if distribution[IDLE_DRIFT] > total * 0.2:
        alerts.append(
            f"{distribution[IDLE_DRIFT]} team member(s) showing idle drift - check task assignments"
        )
    if distribution[UNDERUTILIZED] > total * 0.4:
        alerts.append("High underutilization - consider redistributing work")

    return TeamHealth(health_score=health_score, distribution=distribution, alerts=alerts)


# =============================================================================
# FRAME HELPERS
# =============================================================================

def classify_frame(metrics: pd.DataFrame) -> pd.DataFrame:
    """Add workload_state and state_priority columns to a resource-metrics frame."""
    df = metrics.copy()
    if len(df) == 0:
        df["workload_state"] = pd.Series(dtype="object")
        df["state_priority"] = pd.Series(dtype="int64")
        return df
    df["workload_state"] = [classify(row) for row in df.to_dict("records")]
    df["state_priority"] = df["workload_state"].map(STATE_PRIORITY).astype(int)
    return df
