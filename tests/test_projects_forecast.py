"""
Tests for project metrics, load concentration, obligation flow and forecasts.
"""
import sys
from datetime import date
from pathlib import Path

import pandas as pd
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from workload_radar.metrics.concentration import (
    compute_load_concentration,
    compute_obligation_flow,
    project_obligation_flow,
    summarise_load_concentration,
)
from workload_radar.metrics.forecast import (
    compute_bandwidth_forecast,
    compute_load_stability_index,
    compute_velocity_trends,
    interpret_lsi,
    project_bandwidth,
    state_churn,
    summarise_load_stability,
)
from workload_radar.metrics.projects import (
    compute_project_health_score,
    compute_project_metrics,
    compute_project_team_allocation,
    compute_projects_summary,
    get_project_tasks,
    score_project_health,
)
from workload_radar.metrics.workload import WorkloadEngine

REFERENCE_DATE = "2024-03-04"


def portal(world):
    world.person(1, 101, "Alice").person(2, 102, "Bob").project(1, "Portal")
    world.task(1, 101, eta="10", minutes=[300], last_updated="2024-03-01")
    world.task(2, 101, status=90, eta="6", minutes=[420], last_updated="2024-02-20")
    world.task(3, 102, status=80, last_updated="2024-02-26")
    return world


# =============================================================================
# PROJECT METRICS
# =============================================================================

class TestProjectMetrics:

    def test_counts_and_rates(self, world, app_config):
        metrics = compute_project_metrics(portal(world).source(), 1, app_config)

        assert metrics == {
            "project_id": 1,
            "total_tasks": 3,
            "active_tasks": 1,
            "completed_tasks": 2,
            "completion_rate": 67,
            "total_eta": 16.0,
            "total_time_spent": 12.0,
            "burn_rate": 75,
        }

    def test_project_without_tasks(self, world, app_config):
        metrics = compute_project_metrics(portal(world).source(), 99, app_config)

        assert metrics["total_tasks"] == 0
        assert metrics["completion_rate"] == 0
        assert metrics["burn_rate"] == 0
        assert metrics["total_eta"] == 0.0

    def test_burn_without_eta(self, world, app_config):
        world.task(1, 101, minutes=[600])

        assert compute_project_metrics(world.source(), 1, app_config)["burn_rate"] == 0

    def test_other_origin_excluded(self, world, app_config):
        portal(world).task(4, 101, project_id=1, source_system="jira")

        assert compute_project_metrics(world.source(), 1, app_config)["total_tasks"] == 3


class TestProjectHealth:

    def test_score_and_grade(self, world, app_config):
        health = compute_project_health_score(portal(world).source(), 1, app_config)

        # 67 * 0.4 + (30 - 25 * 0.3) + (1 - 1/3) * 30 = 69.3
        assert health["score"] == 69
        assert health["grade"] == "B"
        assert health["factors"] == {"completion_rate": 67, "burn_rate": 75, "active_task_ratio": 33}

    def test_empty_project(self):
        health = score_project_health({
            "project_id": 5, "total_tasks": 0, "active_tasks": 0, "completed_tasks": 0,
            "completion_rate": 0, "total_eta": 0.0, "total_time_spent": 0.0, "burn_rate": 0,
        })
        assert health["score"] == 30
        assert health["grade"] == "D"

    def test_perfect_project(self):
        health = score_project_health({
            "project_id": 5, "total_tasks": 4, "active_tasks": 0, "completed_tasks": 4,
            "completion_rate": 100, "total_eta": 10.0, "total_time_spent": 10.0, "burn_rate": 100,
        })
        assert health["score"] == 100
        assert health["grade"] == "A"


class TestProjectListings:

    def test_team_allocation(self, world, app_config):
        world.person(1, 101, "Alice").person(2, 102, "Bob")
        world.task(1, 101, eta="10").task(2, 101, eta="4")
        world.task(3, 102, eta="20")
        world.task(4, 999, eta="1")
        world.task(5, 102, status=90, eta="50")

        allocation = compute_project_team_allocation(world.source(), 1, app_config)

        assert allocation["handler_id"].astype(int).tolist() == [102, 101, 999]
        assert allocation["name"].tolist() == ["Bob Doe", "Alice Doe", "Unknown"]
        assert allocation["eta"].tolist() == [20.0, 14.0, 1.0]
        assert allocation["task_count"].tolist() == [1, 2, 1]
        assert allocation["email"].iloc[2] == ""

    def test_project_tasks(self, world, app_config):
        tasks = get_project_tasks(portal(world).source(), 1, app_config=app_config)

        assert tasks["task_id"].tolist() == [1, 3, 2]
        assert tasks["handler_name"].tolist() == ["Alice Doe", "Bob Doe", "Alice Doe"]
        assert tasks["project_name"].tolist() == ["Portal"] * 3

    def test_project_tasks_limit(self, world, app_config):
        tasks = get_project_tasks(portal(world).source(), 1, limit=1, app_config=app_config)
        assert len(tasks) == 1

    def test_summary_covers_enabled_projects(self, world, app_config):
        portal(world).project(2, "Idle").project(3, "Retired", enabled=0)
        world.task(9, 101, project_id=3)

        summary = compute_projects_summary(world.source(), app_config)

        assert summary["project_name"].tolist() == ["Portal", "Idle"]
        idle = summary.iloc[1]
        assert idle["total_tasks"] == 0
        assert idle["total_time_spent"] == 0.0


# =============================================================================
# LOAD CONCENTRATION / OBLIGATION FLOW
# =============================================================================

class TestLoadConcentration:

    def test_negative_remaining_lowers_total(self):
        metrics = pd.DataFrame({
            "employee_id": [1, 2, 3, 4, 5],
            "employee_name": ["A", "B", "C", "D", "E"],
            "yet_to_spend": [20.0, 10.0, 10.0, 10.0, -30.0],
        })

        result = summarise_load_concentration(metrics)

        assert result["total_eta"] == 20.0
        assert result["top3_concentration"] == 200.0
        assert result["is_concentrated"] is True
        assert result["distribution"]["name"].tolist() == ["A", "B", "C", "D", "E"]
        assert result["distribution"]["percentage"].tolist() == [100.0, 50.0, 50.0, 50.0, -150.0]

    def test_negative_total_is_not_concentrated(self):
        metrics = pd.DataFrame({
            "employee_id": [1, 2],
            "employee_name": ["A", "B"],
            "yet_to_spend": [5.0, -15.0],
        })

        result = summarise_load_concentration(metrics)

        assert result["total_eta"] == -10.0
        assert result["top3_concentration"] == 0.0
        assert result["is_concentrated"] is False

    def test_no_remaining_work(self):
        metrics = pd.DataFrame({"employee_id": [1], "employee_name": ["A"], "yet_to_spend": [0.0]})
        result = summarise_load_concentration(metrics)
        assert result["top3_concentration"] == 0.0
        assert result["is_concentrated"] is False

    def test_empty(self):
        result = summarise_load_concentration(pd.DataFrame())
        assert result["resource_count"] == 0
        assert len(result["distribution"]) == 0

    def test_from_engine(self, world, app_config):
        world.person(1, 101, "Alice").task(1, 101, eta="12")
        engine = WorkloadEngine(world.source(), app_config)

        result = compute_load_concentration(engine, reference_date=REFERENCE_DATE)

        assert result["total_eta"] == 12.0
        assert result["resource_count"] == 1


class TestObligationFlow:

    def test_drains_weekly(self):
        flow = project_obligation_flow(pd.Series([50.0, 10.0]), 3, date(2024, 3, 4))

        weeks = flow["weeks"]
        assert weeks["remaining_eta"].tolist() == [60.0, 30.0, 10.0]
        assert weeks["utilization_pct"].tolist() == [75, 38, 13]
        assert weeks["week_start"].tolist() == [date(2024, 3, 4), date(2024, 3, 11), date(2024, 3, 18)]
        assert flow["overload_week"] is None

    def test_first_overloaded_week(self):
        flow = project_obligation_flow(pd.Series([100.0, 100.0]), 2, date(2024, 3, 4))
        assert flow["overload_week"] == 1
        assert flow["weeks"]["is_overloaded"].tolist() == [True, True]

    def test_no_resources(self):
        flow = project_obligation_flow(pd.Series(dtype=float), 2, date(2024, 3, 4))
        assert flow["weeks"]["utilization_pct"].tolist() == [0, 0]

    def test_from_engine(self, world, app_config):
        world.person(1, 101, "Alice").task(1, 101, eta="90")
        engine = WorkloadEngine(world.source(), app_config)

        flow = compute_obligation_flow(engine, weeks=2, reference_date=REFERENCE_DATE)

        assert flow["weeks"]["remaining_eta"].tolist() == [90.0, 70.0]
        assert flow["overload_week"] == 1


# =============================================================================
# FORECASTS
# =============================================================================

class TestBandwidthForecast:

    def test_linear_roll_forward(self):
        forecast = project_bandwidth(time_spent=14.0, yet_to_spend=40.0, weeks=3)

        assert forecast["remaining_eta"].tolist() == [30.0, 20.0, 10.0]
        assert forecast["projected_bandwidth"].tolist() == [10.0, 20.0, 30.0]
        assert forecast["projected_availability"].tolist() == [25.0, 50.0, 75.0]
        assert not forecast["is_overloaded"].any()

    def test_overloaded_weeks(self):
        forecast = project_bandwidth(time_spent=7.0, yet_to_spend=100.0, weeks=2)
        assert forecast["remaining_eta"].tolist() == [95.0, 90.0]
        assert forecast["projected_bandwidth"].tolist() == [0.0, 0.0]
        assert forecast["is_overloaded"].all()

    def test_for_employee(self, world, app_config):
        world.person(1, 101, "Alice").task(1, 101, eta="40", minutes=[840])
        engine = WorkloadEngine(world.source(), app_config)

        result = compute_bandwidth_forecast(engine, 1, weeks=2, reference_date=REFERENCE_DATE)

        assert result["current_state"].employee_id == 1
        assert result["forecast"]["remaining_eta"].tolist() == [16.0, 6.0]

    def test_unlinked_employee(self, world, app_config):
        world.employee(1, "ghost@example.com", "Ghost")
        engine = WorkloadEngine(world.source(), app_config)

        result = compute_bandwidth_forecast(engine, 1, reference_date=REFERENCE_DATE)

        assert result["current_state"] is None
        assert len(result["forecast"]) == 0


class TestVelocityTrends:

    def test_weekly_windows(self, world, app_config):
        world.task(1, 101, status=90, eta="5", last_updated="2024-02-20")
        world.task(2, 101, status=80, eta="3", last_updated="2024-02-26")
        world.task(3, 101, status=90, eta="7", last_updated="2024-03-04")
        world.task(4, 101, status=50, eta="9", last_updated="2024-02-28")

        trends = compute_velocity_trends(world.source(), weeks=2, reference_date=REFERENCE_DATE,
                                         app_config=app_config)

        assert trends["week_start"].tolist() == [date(2024, 2, 19), date(2024, 2, 26)]
        assert trends["week_end"].tolist() == [date(2024, 2, 26), date(2024, 3, 4)]
        assert trends["tasks_completed"].tolist() == [1, 1]
        assert trends["eta_completed"].tolist() == [5.0, 3.0]

    def test_project_filter(self, world, app_config):
        world.task(1, 101, status=90, project_id=2, last_updated="2024-03-01")

        trends = compute_velocity_trends(world.source(), weeks=1, project_id=1,
                                         reference_date=REFERENCE_DATE, app_config=app_config)

        assert trends["tasks_completed"].tolist() == [0]


class TestLoadStability:

    def test_state_churn(self):
        snapshots = pd.DataFrame({
            "employee_id": [1, 2, 1, 2, 1],
            "snapshot_date": pd.to_datetime(
                ["2024-03-01", "2024-03-01", "2024-03-02", "2024-03-02", "2024-03-03"]
            ),
            "workload_state": ["balanced", "overloaded", "at_risk", "balanced", "at_risk"],
        })
        assert state_churn(snapshots) == 2

    def test_lsi_components(self, world, app_config):
        world.snapshot(1, "2024-03-01", total_eta=10, bandwidth=30, state="balanced")
        world.snapshot(1, "2024-03-02", total_eta=20, bandwidth=20, state="at_risk")
        world.snapshot(1, "2024-01-01", total_eta=500, bandwidth=0, state="overloaded")

        result = compute_load_stability_index(world.source(), days=30, reference_date=REFERENCE_DATE,
                                              app_config=app_config)

        assert result["sample_size"] == 2
        assert result["components"] == {"eta_variance": 25.0, "bandwidth_variance": 25.0, "churn_rate": 0.5}
        assert result["lsi"] == 30.0
        assert result["interpretation"] == "Stable - Planning mode"
        assert result["period"] == "30 days"

    def test_insufficient_history(self):
        snapshots = pd.DataFrame({
            "employee_id": [1], "snapshot_date": pd.to_datetime(["2024-03-01"]),
            "total_eta": [1.0], "bandwidth": [1.0], "workload_state": ["balanced"],
        })
        result = summarise_load_stability(snapshots, 7)
        assert result["lsi"] is None
        assert result["sample_size"] == 1

    @pytest.mark.parametrize("lsi,label", [
        (0, "Stable - Planning mode"),
        (50, "Moderate variability"),
        (99.9, "Moderate variability"),
        (100, "High variability - Firefighting mode"),
    ])
    def test_interpretation(self, lsi, label):
        assert interpret_lsi(lsi) == label
