"""
Tests for risk pattern detection and alert persistence through the detector.
"""
import sys
from pathlib import Path

import pandas as pd
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from workload_radar.data.alerts import InMemoryAlertStore, RiskAlert
from workload_radar.data.loader import FrameWorkloadSource
from workload_radar.data.schema import DataAccessError
from workload_radar.modeling.risk_patterns import RiskDetector, overrun_severity

REFERENCE_DATE = "2024-03-04"


def detector_for(world, app_config, store=None):
    return RiskDetector(world.source(), store or InMemoryAlertStore(), app_config=app_config)


class BrokenHistorySource(FrameWorkloadSource):
    """Estimation history store is down; every other table loads."""

    def load_table(self, table_name: str) -> pd.DataFrame:
        if table_name == "estimation_history":
            raise DataAccessError("history store offline")
        return super().load_table(table_name)


@pytest.mark.parametrize("pct,severity", [
    (31, "medium"), (50, "medium"), (51, "high"), (100, "high"), (101, "critical"),
])
def test_overrun_severity(pct, severity):
    assert overrun_severity(pct) == severity


class TestEtaInflation:

    def test_inflated_estimate(self, world, app_config):
        world.task(1, None, summary="Login page")
        world.history(1, 1, eta_at_creation=20, eta_current=30)

        [alert] = detector_for(world, app_config).detect_eta_inflation()

        assert alert.alert_type == "eta_inflation"
        assert alert.severity == "medium"
        assert alert.entity_type == "task"
        assert alert.entity_id == "1"
        assert alert.title == "ETA inflated by 50%"
        assert alert.description == 'Task "Login page" ETA increased from 20h to 30h without scope change'
        assert alert.metadata == {"original_eta": 20.0, "current_eta": 30.0, "inflation_pct": 50}

    def test_ignored_rows(self, world, app_config):
        world.history(2, 1, eta_at_creation=10, eta_current=40, is_final=True)
        world.history(3, 1, eta_at_creation=0, eta_current=10)
        world.history(4, 1, eta_at_creation=10, eta_current=13)
        world.history(5, 1, eta_at_creation=10, eta_current=50, is_final=None)
        world.history(7, 1, eta_at_creation=10, eta_current=50, source_system="jira")

        assert detector_for(world, app_config).detect_eta_inflation() == []

    def test_severity_and_unknown_task(self, world, app_config):
        world.history(6, 1, eta_at_creation=10, eta_current=25)

        [alert] = detector_for(world, app_config).detect_eta_inflation()

        assert alert.severity == "critical"
        assert alert.description.startswith('Task "Unknown"')


class TestSilentOverrun:

    def test_overruns_in_current_statuses_only(self, world, app_config):
        world.task(1, 101, status=50, eta="10", minutes=[900])
        world.task(2, 101, status=40, eta="2", minutes=[300])
        world.task(3, 101, status=10, eta="1", minutes=[600])
        world.task(4, 101, status=50, eta=None, minutes=[600])
        world.task(5, 101, status=50, eta="10", minutes=[600])

        alerts = detector_for(world, app_config).detect_silent_overruns()

        assert [a.entity_id for a in alerts] == ["1", "2"]
        first, second = alerts
        assert first.severity == "medium"
        assert first.title == "Silent overrun: 50% over ETA"
        assert first.description == (
            'Task "Task 1 summary" has spent 15.0h against 10h ETA but remains in active status'
        )
        assert first.metadata["status"] == 50
        assert second.severity == "critical"
        assert second.metadata["overrun_pct"] == 150


class TestPhantomBandwidth:

    def test_available_but_not_closing(self, world, app_config):
        # Alice: idle capacity, her only closed task is outside the window
        world.person(1, 101, "Alice")
        world.task(1, 101, eta="8")
        world.task(2, 101, status=90, last_updated="2024-01-10")
        # Bob: closes most of his work
        world.person(2, 102, "Bob")
        world.task(3, 102, eta="8")
        world.task(4, 102, status=80, last_updated="2024-02-20")
        world.task(5, 102, status=90, last_updated="2024-02-20")
        # Carol: one in four closed
        world.person(3, 103, "Carol")
        world.task(6, 103, eta="8")
        world.task(7, 103, status=90, last_updated="2024-03-01")
        world.task(8, 103)
        world.task(9, 103)
        # Dan: fully booked
        world.person(4, 104, "Dan")
        world.task(10, 104, eta="150")

        alerts = detector_for(world, app_config).detect_phantom_bandwidth(REFERENCE_DATE)

        assert [a.entity_id for a in alerts] == ["1", "3"]
        alice, carol = alerts
        assert alice.severity == "high"
        assert alice.entity_type == "employee"
        assert alice.description == "Alice Doe shows 95% availability but only 0% closure rate"
        assert carol.severity == "medium"
        assert carol.metadata["closure_rate"] == 25.0
        assert carol.metadata["closed_count"] == 1
        assert carol.metadata["active_task_count"] == 3

    def test_offset_timestamps(self, world, app_config):
        world.person(1, 101, "Alice")
        world.task(1, 101, eta="8", last_updated="2024-03-01T10:00:00Z")
        world.task(2, 101, last_updated="2024-03-01T10:00:00Z")
        world.task(3, 101, status=90, last_updated="2024-03-01T10:00:00Z")

        result = detector_for(world, app_config).detect_all(reference_date=REFERENCE_DATE)

        assert "phantom_bandwidth" not in result.failures
        [alert] = [a for a in result.alerts if a.alert_type == "phantom_bandwidth"]
        assert alert.metadata["closed_count"] == 1
        assert alert.metadata["active_task_count"] == 2
        assert alert.severity == "medium"

    def test_no_tasks_at_all(self, world, app_config):
        world.person(1, 101, "Alice")

        [alert] = detector_for(world, app_config).detect_phantom_bandwidth(REFERENCE_DATE)

        assert alert.metadata["closure_rate"] == 0.0
        assert alert.severity == "high"


class TestLoadConcentration:

    def test_concentrated_team(self, world, app_config):
        for i, (name, eta) in enumerate([("Alice", 40), ("Bob", 30), ("Carol", 20), ("Dan", 10)], start=1):
            world.person(i, 100 + i, name).task(i, 100 + i, eta=str(eta))

        [alert] = detector_for(world, app_config).detect_load_concentration(REFERENCE_DATE)

        assert alert.entity_type == "team"
        assert alert.entity_id == "org"
        assert alert.severity == "high"
        assert alert.title == "Load concentration at 90%"
        assert alert.description == "Alice Doe, Bob Doe, Carol Doe are carrying 90% of the remaining workload"
        assert len(alert.metadata["distribution"]) == 4
        assert alert.metadata["distribution"][0]["name"] == "Alice Doe"

    def test_even_team(self, world, app_config):
        for i, name in enumerate(["Ann", "Ben", "Cat", "Dee", "Eve", "Fay"], start=1):
            world.person(i, 100 + i, name).task(i, 100 + i, eta="10")

        assert detector_for(world, app_config).detect_load_concentration(REFERENCE_DATE) == []

    def test_over_eta_resource_lowers_total(self, world, app_config):
        for i, (name, eta) in enumerate([("Alice", 20), ("Bob", 10), ("Carol", 10), ("Dan", 10)], start=1):
            world.person(i, 100 + i, name).task(i, 100 + i, eta=str(eta))
        # Eve has logged 40h against a 10h ETA
        world.person(5, 105, "Eve").task(5, 105, eta="10", minutes=[2400])

        [alert] = detector_for(world, app_config).detect_load_concentration(REFERENCE_DATE)

        assert alert.severity == "high"
        assert alert.title == "Load concentration at 200%"
        assert alert.metadata["total_eta"] == 20.0
        assert alert.metadata["distribution"][-1] == {"name": "Eve Doe", "eta": -30.0, "percentage": -150.0}


class TestProjectSinkhole:

    def test_hours_in_nothing_out(self, world, app_config):
        world.project(1, "Portal").project(2, "Healthy").project(3, "Archive", enabled=0).project(4, "Slow")
        world.task(1, 101, project_id=1, minutes=[3000])
        for task_id in (2, 3, 4):
            world.task(task_id, 101, project_id=1)
        world.task(5, 101, project_id=2, status=90, minutes=[3000])
        world.task(6, 101, project_id=2)
        world.task(7, 101, project_id=3, minutes=[3000])
        world.task(8, 101, project_id=4, status=90)
        world.task(9, 101, project_id=4, minutes=[2460])
        for task_id in (10, 11, 12):
            world.task(task_id, 101, project_id=4)

        alerts = detector_for(world, app_config).detect_project_sinkholes()

        assert [a.entity_id for a in alerts] == ["1", "4"]
        portal, slow = alerts
        assert portal.severity == "critical"
        assert portal.title == "Project sinkhole: Portal"
        assert portal.description == "50h spent but only 0% completion rate"
        assert portal.metadata["efficiency"] == 0.0
        assert slow.severity == "high"
        assert slow.metadata["completion_rate"] == 20
        assert slow.metadata["efficiency"] == pytest.approx(1 / (41 / 8))


def overrunning_world(world):
    world.person(1, 101, "Alice").project(1, "Portal")
    world.task(1, 101, eta="10", minutes=[900])
    world.task(2, 101, eta="4", minutes=[600])
    return world


class TestDetectAll:

    def test_second_run_inserts_nothing(self, world, app_config):
        store = InMemoryAlertStore()
        detector = detector_for(overrunning_world(world), app_config, store)

        first = detector.detect_all(REFERENCE_DATE)
        second = detector.detect_all(REFERENCE_DATE)

        assert first.ok
        assert first.inserted == len(first.alerts) > 0
        assert first.skipped == 0
        assert second.inserted == 0
        assert second.skipped == len(second.alerts)
        assert len(store.list_alerts()) == first.inserted

    def test_resolved_alert_is_raised_again(self, world, app_config):
        store = InMemoryAlertStore()
        detector = detector_for(overrunning_world(world), app_config, store)
        detector.detect_all(REFERENCE_DATE)

        assert store.resolve(1) is True
        again = detector.detect_all(REFERENCE_DATE)

        assert again.inserted == 1

    def test_merge_order_follows_detectors(self, world, app_config):
        result = detector_for(overrunning_world(world), app_config).detect_all(REFERENCE_DATE)

        types = [a.alert_type for a in result.alerts]
        assert types == sorted(types, key=[
            "eta_inflation", "silent_overrun", "phantom_bandwidth",
            "load_concentration", "project_sinkhole",
        ].index)
        assert "silent_overrun" in types

    def test_failing_detector_is_isolated(self, world, app_config):
        source = BrokenHistorySource(overrunning_world(world).tables())
        detector = RiskDetector(source, InMemoryAlertStore(), app_config=app_config)

        result = detector.detect_all(REFERENCE_DATE)

        assert not result.ok
        assert result.failures == {"eta_inflation": "DataAccessError: history store offline"}
        assert "silent_overrun" in {a.alert_type for a in result.alerts}
        assert result.inserted == len(result.alerts)

    def test_existing_unresolved_alert_skipped(self, world, app_config):
        store = InMemoryAlertStore()
        store.insert(RiskAlert(
            alert_type="silent_overrun", severity="low", entity_type="task",
            entity_id="1", title="older", description="",
        ))
        detector = detector_for(overrunning_world(world), app_config, store)

        result = detector.detect_all(REFERENCE_DATE)

        assert result.skipped == 1
        overruns = store.list_alerts()
        overruns = overruns[overruns["alert_type"] == "silent_overrun"]
        assert overruns["entity_id"].tolist() == ["1", "2"]
        assert overruns["title"].iloc[0] == "older"
