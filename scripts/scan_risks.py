#!/usr/bin/env python
"""
Run every risk detector and persist new alerts.

Exit codes: 0 all detectors ran, 1 data could not be read, 2 at least one
detector failed (alerts from the others are still saved).

Usage:
    python scripts/scan_risks.py
    python scripts/scan_risks.py --data-dir /path/to/data --date 2024-03-04
"""
import argparse
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from workload_radar.config import AppConfig, config
from workload_radar.data.alerts import build_alert_store
from workload_radar.data.loader import build_source
from workload_radar.data.schema import DataAccessError
from workload_radar.logging_config import setup_logging
from workload_radar.modeling.risk_patterns import RiskDetector


def main():
    parser = argparse.ArgumentParser(description="Scan for workload risk patterns")
    parser.add_argument(
        "--data-dir",
        type=str,
        default=None,
        help="Override data directory"
    )
    parser.add_argument(
        "--date",
        type=str,
        default=None,
        help="Reference date (YYYY-MM-DD), defaults to today"
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Verbose output"
    )

    args = parser.parse_args()

    app_config = AppConfig(data_dir=Path(args.data_dir)) if args.data_dir else config
    setup_logging("DEBUG" if args.verbose else None, app_config=app_config)

    source = build_source(app_config)
    store = build_alert_store(app_config)
    detector = RiskDetector(source, store, app_config=app_config)

    print("=" * 60)
    print("Risk Scan")
    print("=" * 60)
    print(f"Source: {source.describe()}")
    print(f"Alerts: {store.describe()}")
    print(f"Origin: {app_config.source_system}")
    print()

    try:
        result = detector.detect_all(reference_date=args.date)
    except DataAccessError as e:
        print(f"✗ Could not read or write data: {e}")
        sys.exit(1)

    by_type = {}
    for alert in result.alerts:
        by_type.setdefault(alert.alert_type, []).append(alert)

    for alert_type, alerts in by_type.items():
        print(f"{alert_type}: {len(alerts)}")
        for alert in alerts:
            print(f"  [{alert.severity}] {alert.title}")

    print()
    print(f"Detected: {len(result.alerts)}  New: {result.inserted}  Already open: {result.skipped}")

    if result.failures:
        print()
        for name, message in result.failures.items():
            print(f"✗ Detector {name} failed: {message}")
        sys.exit(2)

    print("✓ Scan complete")


if __name__ == "__main__":
    main()
