#!/usr/bin/env python
"""
Validate exported tables against the table mapping.

Usage:
    python scripts/validate_inputs.py
    python scripts/validate_inputs.py --data-dir /path/to/data
"""
import argparse
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from workload_radar.config import config
from workload_radar.data.loader import file_strategies
from workload_radar.data.schema import (
    DataAccessError,
    TABLE_SPECS,
    TableNotFoundError,
    TableSpec,
    canonicalise_columns,
    validate_schema,
)
from workload_radar.data.strategies import first_fetched


def validate_file(filepath: Path, spec: TableSpec) -> dict:
    """Validate a single exported table."""
    result = {
        "exists": False,
        "format": None,
        "rows": 0,
        "columns": 0,
        "valid": False,
        "missing_required": [],
        "missing_optional": [],
        "errors": []
    }

    try:
        fetched = first_fetched(file_strategies(filepath), what=spec.name)
    except TableNotFoundError:
        result["errors"].append(f"File not found: {filepath}.(parquet|csv)")
        return result
    except DataAccessError as e:
        result["exists"] = True
        result["errors"].append(f"Failed to load: {e}")
        return result

    df = canonicalise_columns(fetched.value, spec.name)
    result["exists"] = True
    result["format"] = fetched.strategy.rsplit(".", 1)[-1]
    result["rows"] = len(df)
    result["columns"] = len(df.columns)

    schema_result = validate_schema(df, spec.name, strict=False)
    result["valid"] = schema_result["is_valid"]
    result["missing_required"] = schema_result["missing_required"]
    result["missing_optional"] = schema_result["missing_optional"]

    return result


def main():
    parser = argparse.ArgumentParser(description="Validate exported input tables")
    parser.add_argument(
        "--data-dir",
        type=str,
        default=None,
        help="Override data directory"
    )

    args = parser.parse_args()

    data_dir = Path(args.data_dir) if args.data_dir else config.data_dir
    processed_dir = data_dir / "processed"

    print("=" * 60)
    print("Data Input Validation")
    print("=" * 60)
    print(f"Source directory: {processed_dir}")
    print()

    all_valid = True

    for table_name, spec in TABLE_SPECS.items():
        print(f"Validating: {table_name} ({spec.physical_name})")
        print("-" * 40)

        result = validate_file(processed_dir / spec.physical_name, spec)

        if result["exists"] and not result["errors"]:
            print(f"  ✓ Found: {spec.physical_name}.{result['format']}")
            print(f"    Rows: {result['rows']:,}")
            print(f"    Columns: {result['columns']}")

            if result["valid"]:
                print("  ✓ Schema valid")
            else:
                print("  ✗ Schema invalid")
                print(f"    Missing required: {result['missing_required']}")
                all_valid = False

            if result["missing_optional"]:
                print(f"  ⚠ Missing optional: {result['missing_optional']}")
        elif not result["exists"]:
            print(f"  ✗ Not found: {spec.physical_name}")
            if spec.optional:
                print("    (optional)")
            else:
                print("    (REQUIRED)")
                all_valid = False

        if result["exists"] and result["errors"]:
            for err in result["errors"]:
                print(f"  ✗ Error: {err}")
            all_valid = False

        print()

    print("=" * 60)
    if all_valid:
        print("✓ All validations passed")
        sys.exit(0)
    else:
        print("✗ Validation failed - see errors above")
        sys.exit(1)


if __name__ == "__main__":
    main()
