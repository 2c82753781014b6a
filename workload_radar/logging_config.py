"""Structured logging for Workload Radar scans and mart builds."""
import json
import logging
import sys
from datetime import datetime, timezone
from typing import Dict, Optional

from workload_radar.config import AppConfig, config as default_config

SERVICE_NAME = "workload-radar"

# Context passed through ``extra=`` by the engine, the detectors and the stores
CONTEXT_FIELDS = ("detector", "source_system", "table", "period", "alert_count",
                  "inserted", "skipped", "failures")

NOISY_LOGGERS = ("sqlalchemy.engine", "sqlalchemy.pool", "pyarrow")


def record_context(record: logging.LogRecord) -> Dict:
    """The workload context attached to a record, in a stable order."""
    return {name: getattr(record, name) for name in CONTEXT_FIELDS if hasattr(record, name)}


class JSONFormatter(logging.Formatter):
    """One JSON object per line, tagged with the origin the scan ran against."""

    def __init__(self, source_system: str = ""):
        super().__init__()
        self.source_system = source_system

    def format(self, record):
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "service": SERVICE_NAME,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "line": record.lineno,
        }
        if self.source_system:
            log_entry["source_system"] = self.source_system
        log_entry.update(record_context(record))
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


class ContextFormatter(logging.Formatter):
    """Plain text with the record's context appended as key=value pairs."""

    def __init__(self):
        super().__init__("%(asctime)s [%(name)s] %(levelname)s: %(message)s")

    def format(self, record):
        line = super().format(record)
        context = record_context(record)
        if not context:
            return line
        pairs = " ".join(f"{key}={value}" for key, value in context.items())
        first, _, rest = line.partition("\n")
        return f"{first} [{pairs}]" + (f"\n{rest}" if rest else "")


def setup_logging(level: Optional[str] = None,
                  json_output: Optional[bool] = None,
                  app_config: Optional[AppConfig] = None) -> logging.Logger:
    """
    Configure root logging from the app config; explicit arguments win.

    Returns the ``workload-radar`` logger.
    """
    cfg = app_config or default_config
    level = level or cfg.log_level
    json_output = cfg.log_json if json_output is None else json_output

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter(cfg.source_system) if json_output else ContextFormatter())
    root.handlers = [handler]

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return logging.getLogger(SERVICE_NAME)


def log_scan_summary(logger: logging.Logger, result) -> None:
    """
    One summary line for a risk scan.

    Failed detectors are listed by name and the line is a warning whenever
    any detector failed.
    """
    context = {
        "alert_count": len(result.alerts),
        "inserted": result.inserted,
        "skipped": result.skipped,
        "failures": sorted(result.failures),
    }
    if result.failures:
        logger.warning(
            "Risk scan finished with %d failed detector(s): %s",
            len(result.failures), ", ".join(sorted(result.failures)), extra=context,
        )
    else:
        logger.info(
            "Risk scan complete: %d alert(s), %d new, %d already open",
            len(result.alerts), result.inserted, result.skipped, extra=context,
        )
