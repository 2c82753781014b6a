#!/usr/bin/env python
"""
Build the workload snapshot mart (one classified row per employee per day).

Usage:
    python scripts/build_marts.py
    python scripts/build_marts.py --data-dir /path/to/data --period month
    python scripts/build_marts.py --date 2024-03-04
"""
import argparse
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from workload_radar.config import AppConfig, config
from workload_radar.data.loader import build_source
from workload_radar.data.marts import build_all_marts
from workload_radar.data.schema import DataAccessError
from workload_radar.logging_config import setup_logging
from workload_radar.metrics.working_hours import PERIODS
from workload_radar.metrics.workload import WorkloadEngine


def main():
    parser = argparse.ArgumentParser(description="Build precomputed workload marts")
    parser.add_argument(
        "--data-dir",
        type=str,
        default=None,
        help="Override data directory"
    )
    parser.add_argument(
        "--period",
        choices=PERIODS,
        default="week",
        help="Metrics period for the snapshot"
    )
    parser.add_argument(
        "--date",
        type=str,
        default=None,
        help="Snapshot date (YYYY-MM-DD), defaults to today"
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
    engine = WorkloadEngine(source, app_config)

    print("Building marts...")
    print(f"  Source: {source.describe()}")
    print(f"  Output: {app_config.marts_dir}")
    print()

    try:
        marts = build_all_marts(
            engine,
            output_dir=app_config.marts_dir,
            period=args.period,
            snapshot_date=args.date,
        )
    except (DataAccessError, ValueError) as e:
        print(f"ERROR building marts: {e}")
        if args.verbose:
            import traceback
            traceback.print_exc()
        sys.exit(1)

    print()
    print("✓ All marts built successfully!")
    print()
    print("Summary:")
    for name, mart_df in marts.items():
        print(f"  {name}: {len(mart_df):,} rows")


if __name__ == "__main__":
    main()
