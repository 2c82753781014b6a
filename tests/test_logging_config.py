"""
Tests for the structured logging setup and the risk scan summary line.
"""
import json
import logging
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from workload_radar.config import AppConfig
from workload_radar.logging_config import (
    ContextFormatter,
    JSONFormatter,
    log_scan_summary,
    setup_logging,
)
from workload_radar.modeling.risk_patterns import RiskScanResult


def make_record(message="Detector %s found %d alert(s)", args=("silent_overrun", 2), **context):
    record = logging.LogRecord("workload-radar.risk", logging.INFO, __file__, 10, message, args, None)
    for key, value in context.items():
        setattr(record, key, value)
    return record


@pytest.fixture
def restore_root_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers = handlers
    root.setLevel(level)


class TestFormatters:

    def test_json_carries_service_origin_and_context(self):
        line = JSONFormatter("mantis").format(make_record(detector="silent_overrun", inserted=2))
        entry = json.loads(line)

        assert entry["service"] == "workload-radar"
        assert entry["message"] == "Detector silent_overrun found 2 alert(s)"
        assert entry["source_system"] == "mantis"
        assert entry["detector"] == "silent_overrun"
        assert entry["inserted"] == 2
        assert "failures" not in entry

    def test_json_record_origin_overrides_default(self):
        entry = json.loads(JSONFormatter("mantis").format(make_record(source_system="jira")))
        assert entry["source_system"] == "jira"

    def test_text_appends_context_pairs(self):
        line = ContextFormatter().format(make_record(detector="silent_overrun", skipped=1))
        assert line.endswith("Detector silent_overrun found 2 alert(s) [detector=silent_overrun skipped=1]")

    def test_text_without_context(self):
        line = ContextFormatter().format(make_record("Loaded tasks", ()))
        assert line.endswith("INFO: Loaded tasks")


class TestSetupLogging:

    def test_defaults_from_config(self, restore_root_logging):
        logger = setup_logging(app_config=AppConfig(log_level="WARNING", log_json=True))

        root = logging.getLogger()
        assert logger.name == "workload-radar"
        assert root.level == logging.WARNING
        assert isinstance(root.handlers[0].formatter, JSONFormatter)
        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING

    def test_arguments_win(self, restore_root_logging):
        setup_logging("DEBUG", json_output=False, app_config=AppConfig(log_level="WARNING", log_json=True))

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert isinstance(root.handlers[0].formatter, ContextFormatter)


class TestScanSummary:

    def test_clean_scan_is_info(self, caplog):
        result = RiskScanResult(inserted=0, skipped=0)
        with caplog.at_level(logging.INFO, logger="workload-radar.risk"):
            log_scan_summary(logging.getLogger("workload-radar.risk"), result)

        [record] = caplog.records
        assert record.levelno == logging.INFO
        assert record.getMessage() == "Risk scan complete: 0 alert(s), 0 new, 0 already open"
        assert record.failures == []

    def test_failed_detectors_are_named(self, caplog):
        result = RiskScanResult(
            failures={"phantom_bandwidth": "TypeError: boom", "eta_inflation": "DataAccessError: offline"},
            inserted=1,
        )
        with caplog.at_level(logging.INFO, logger="workload-radar.risk"):
            log_scan_summary(logging.getLogger("workload-radar.risk"), result)

        [record] = caplog.records
        assert record.levelno == logging.WARNING
        assert record.getMessage() == "Risk scan finished with 2 failed detector(s): eta_inflation, phantom_bandwidth"
        assert record.failures == ["eta_inflation", "phantom_bandwidth"]
        assert record.inserted == 1
