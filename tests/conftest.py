"""
Shared fixtures: a small builder for synthetic tracker / HRMS tables.
"""
import sys
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from workload_radar.config import AppConfig
from workload_radar.data.loader import FrameWorkloadSource
from workload_radar.data.schema import TABLE_SPECS

# Monday; the week period covers exactly five working days (40h)
REFERENCE_DATE = "2024-03-04"


class World:
    """Rows for every canonical table, built up one entity at a time."""

    def __init__(self, source_system: str = "mantis"):
        self.source_system = source_system
        self.rows: Dict[str, List[dict]] = {name: [] for name in TABLE_SPECS}
        self._note_id = 0

    def employee(self, employee_id: int, email: str, first: str = "", last: str = "",
                 job_title_id: Optional[int] = None, status: int = 1) -> "World":
        self.rows["employees"].append({
            "employee_id": employee_id,
            "work_email": email,
            "first_name": first,
            "last_name": last,
            "employment_status": status,
            "job_title_id": job_title_id,
        })
        return self

    def job_title(self, job_title_id: int, title: str) -> "World":
        self.rows["job_titles"].append({"job_title_id": job_title_id, "job_title": title})
        return self

    def user(self, user_id: int, email: str, realname: str = "",
             source_system: Optional[str] = None) -> "World":
        self.rows["users"].append({
            "user_id": user_id,
            "email": email,
            "source_system": source_system or self.source_system,
            "username": email.split("@")[0],
            "realname": realname,
            "enabled": 1,
        })
        return self

    def person(self, employee_id: int, user_id: int, first: str, last: str = "Doe") -> "World":
        """Employee plus the matching tracker user."""
        email = f"{first.lower()}@example.com"
        self.employee(employee_id, email, first, last)
        return self.user(user_id, email, realname=f"{first} {last}")

    def project(self, project_id: int, name: str, enabled: int = 1,
                source_system: Optional[str] = None) -> "World":
        self.rows["projects"].append({
            "project_id": project_id,
            "project_name": name,
            "source_system": source_system or self.source_system,
            "enabled": enabled,
            "project_status": 10,
        })
        return self

    def task(self, task_id: int, handler_id: Optional[int], status: int = 50,
             project_id: int = 1, eta=None, minutes=(), summary: Optional[str] = None,
             last_updated: str = "2024-03-01", resolution: int = 10,
             task_type: Optional[str] = None, source_system: Optional[str] = None) -> "World":
        origin = source_system or self.source_system
        self.rows["tasks"].append({
            "task_id": task_id,
            "project_id": project_id,
            "handler_id": handler_id,
            "status": status,
            "source_system": origin,
            "reporter_id": None,
            "resolution": resolution,
            "summary": summary if summary is not None else f"Task {task_id} summary",
            "date_submitted": "2024-02-01",
            "due_date": None,
            "last_updated": last_updated,
        })
        if eta is not None:
            self.custom_field(task_id, 4, eta, origin)
        if task_type is not None:
            self.custom_field(task_id, 40, task_type, origin)
        for value in minutes:
            self.time_log(task_id, value, origin)
        return self

    def custom_field(self, task_id: int, field_id: int, value, source_system: Optional[str] = None) -> "World":
        self.rows["custom_fields"].append({
            "task_id": task_id,
            "field_id": field_id,
            "value": str(value),
            "source_system": source_system or self.source_system,
        })
        return self

    def time_log(self, task_id: int, minutes, source_system: Optional[str] = None) -> "World":
        self._note_id += 1
        self.rows["time_logs"].append({
            "note_id": self._note_id,
            "task_id": task_id,
            "minutes": minutes,
            "source_system": source_system or self.source_system,
            "reporter_id": None,
            "logged_at": "2024-03-01",
        })
        return self

    def holiday(self, day: str, description: str = "Holiday") -> "World":
        self.rows["holidays"].append({"holiday_date": day, "description": description})
        return self

    def history(self, task_id: int, resource_id: int, eta_at_creation, eta_current,
                is_final: bool = False, time_spent_final=None, accuracy_score=None,
                task_type: Optional[str] = None, recorded_at: str = "2024-03-01",
                source_system: Optional[str] = None) -> "World":
        self.rows["estimation_history"].append({
            "task_id": task_id,
            "resource_id": resource_id,
            "eta_at_creation": eta_at_creation,
            "eta_current": eta_current,
            "is_final": is_final,
            "time_spent_final": time_spent_final,
            "accuracy_score": accuracy_score,
            "task_type": task_type,
            "project_id": 1,
            "recorded_at": recorded_at,
            "source_system": source_system or self.source_system,
        })
        return self

    def dependency(self, parent: int, child: int, dependency_type: str = "blocks") -> "World":
        self.rows["task_dependencies"].append({
            "parent_task_id": parent,
            "child_task_id": child,
            "dependency_type": dependency_type,
            "source_system": self.source_system,
        })
        return self

    def snapshot(self, employee_id: int, day: str, total_eta: float, bandwidth: float,
                 state: str) -> "World":
        self.rows["workload_snapshots"].append({
            "employee_id": employee_id,
            "snapshot_date": day,
            "total_eta": total_eta,
            "bandwidth": bandwidth,
            "workload_state": state,
            "source_system": self.source_system,
        })
        return self

    def tables(self) -> Dict[str, pd.DataFrame]:
        return {
            name: pd.DataFrame(rows, columns=TABLE_SPECS[name].columns) if rows
            else pd.DataFrame(columns=TABLE_SPECS[name].columns)
            for name, rows in self.rows.items()
        }

    def source(self) -> FrameWorkloadSource:
        return FrameWorkloadSource(self.tables())


@pytest.fixture
def world() -> World:
    return World()


@pytest.fixture
def app_config(tmp_path) -> AppConfig:
    return AppConfig(
        data_dir=tmp_path,
        app_env="test",
        source_system="mantis",
        database_url="",
        employee_status_filter=None,
        eta_field_id=4,
        task_type_field_ids=(40, 54),
        hours_per_day=8.0,
    )
