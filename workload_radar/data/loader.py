"""
Data-access collaborators.

Every source exposes a prioritised list of retrieval strategies per table;
``WorkloadSource.load_table`` composes them with ``first_fetched`` and hands
back a canonical, validated frame. Sources hold no cache: each call re-reads.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

import pandas as pd
from sqlalchemy import inspect
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from workload_radar.config import AppConfig, config as default_config
from workload_radar.data.schema import (
    DataAccessError,
    TABLE_SPECS,
    TableNotFoundError,
    empty_table,
    ensure_column_types,
    get_table_spec,
    prepare_table,
)
from workload_radar.data.strategies import Failed, Fetched, Strategy, attempt, first_fetched

logger = logging.getLogger("workload-radar.data")


def _normalise_column_selection(columns: Optional[Sequence[str]]) -> Optional[list[str]]:
    """Deduplicate and normalise a requested column list."""
    if not columns:
        return None
    return list(dict.fromkeys(str(col) for col in columns))


def _read_parquet(path: Path, columns: Optional[Sequence[str]] = None) -> pd.DataFrame:
    selected_cols = _normalise_column_selection(columns)
    if selected_cols:
        df = pd.read_parquet(path)
        keep_cols = [col for col in selected_cols if col in df.columns]
        return df[keep_cols]
    return pd.read_parquet(path)


def _read_csv(path: Path, columns: Optional[Sequence[str]] = None) -> pd.DataFrame:
    selected_cols = _normalise_column_selection(columns)
    if selected_cols:
        try:
            return pd.read_csv(path, usecols=selected_cols)
        except ValueError:
            df = pd.read_csv(path)
            keep_cols = [col for col in selected_cols if col in df.columns]
            return df[keep_cols]
    return pd.read_csv(path)


def file_strategies(filepath: Path, columns: Optional[Sequence[str]] = None) -> List[Strategy]:
    """Parquet first, then CSV, for one extension-less file path."""

    def from_file(suffix: str, reader) -> Strategy:
        path = filepath.with_suffix(suffix)

        def run():
            if not path.exists():
                return Failed(f"file:{path.name}", f"{path} does not exist", missing=True)
            return attempt(f"file:{path.name}", lambda: _read_or_raise(reader, path, columns))

        return (f"file:{path.name}", run)

    return [from_file(".parquet", _read_parquet), from_file(".csv", _read_csv)]


def _read_or_raise(reader, path: Path, columns: Optional[Sequence[str]]) -> pd.DataFrame:
    try:
        return reader(path, columns)
    except (ValueError, ImportError, pd.errors.ParserError) as exc:
        raise DataAccessError(f"Failed to read {path}: {exc}") from exc


def load_file(filepath: Path, columns: Optional[Sequence[str]] = None) -> Optional[pd.DataFrame]:
    """Load a single file (parquet or csv); None when neither exists."""
    try:
        return first_fetched(file_strategies(filepath, columns), what=str(filepath)).value
    except TableNotFoundError:
        return None


# =============================================================================
# SOURCES
# =============================================================================

class WorkloadSource:
    """Base data-access collaborator handed to engines and detectors."""

    def strategies(self, table_name: str) -> List[Strategy]:
        raise NotImplementedError

    def describe(self) -> str:
        return type(self).__name__

    def load_table(self, table_name: str) -> pd.DataFrame:
        """
        Load one logical table with canonical columns.

        Optional tables that no strategy can find come back empty; anything
        else that fails raises DataAccessError.
        """
        spec = get_table_spec(table_name)
        try:
            fetched = first_fetched(self.strategies(table_name), what=table_name)
        except TableNotFoundError:
            if spec.optional:
                logger.debug("Optional table %s not found in %s", table_name, self.describe())
                return ensure_column_types(empty_table(table_name), table_name)
            raise

        df = prepare_table(fetched.value, table_name)
        logger.debug("Loaded %s (%d rows) via %s", table_name, len(df), fetched.strategy)
        return df

    def load_tables(self, table_names: Sequence[str]) -> Dict[str, pd.DataFrame]:
        return {name: self.load_table(name) for name in table_names}


class FrameWorkloadSource(WorkloadSource):
    """In-memory frames keyed by logical or physical table name."""

    def __init__(self, tables: Dict[str, pd.DataFrame]):
        self._tables = dict(tables)

    def strategies(self, table_name: str) -> List[Strategy]:
        spec = get_table_spec(table_name)

        def run():
            for key in (spec.name, spec.physical_name):
                if key in self._tables:
                    return Fetched(f"frame:{key}", self._tables[key].copy())
            return Failed(f"frame:{table_name}", "no frame supplied", missing=True)

        return [(f"frame:{table_name}", run)]

    def describe(self) -> str:
        return f"FrameWorkloadSource({len(self._tables)} tables)"


class FileWorkloadSource(WorkloadSource):
    """Parquet/CSV exports named after the physical tables."""

    def __init__(self, processed_dir: Union[str, Path]):
        self.processed_dir = Path(processed_dir)

    def strategies(self, table_name: str) -> List[Strategy]:
        spec = get_table_spec(table_name)
        return file_strategies(self.processed_dir / spec.physical_name)

    def describe(self) -> str:
        return f"FileWorkloadSource({self.processed_dir})"


def normalise_database_url(url: str) -> str:
    """Accept the bare postgres:// scheme some providers hand out."""
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql://", 1)
    return url


class SqlWorkloadSource(WorkloadSource):
    """Tables read straight from a SQL store through SQLAlchemy."""

    def __init__(self, engine: Union[Engine, str]):
        if isinstance(engine, str):
            from sqlalchemy import create_engine
            engine = create_engine(normalise_database_url(engine), pool_pre_ping=True)
        self.engine = engine

    def strategies(self, table_name: str) -> List[Strategy]:
        spec = get_table_spec(table_name)
        name = f"sql:{spec.physical_name}"

        def run():
            try:
                exists = inspect(self.engine).has_table(spec.physical_name)
            except SQLAlchemyError as exc:
                return Failed(name, f"store unreachable: {exc}", exc)
            if not exists:
                return Failed(name, f"table {spec.physical_name} does not exist", missing=True)
            return attempt(name, lambda: self._read(spec.physical_name))

        return [(name, run)]

    def _read(self, physical_name: str) -> pd.DataFrame:
        try:
            return pd.read_sql_table(physical_name, self.engine)
        except (SQLAlchemyError, ValueError) as exc:
            raise DataAccessError(f"Query on {physical_name} failed: {exc}") from exc

    def describe(self) -> str:
        return f"SqlWorkloadSource({self.engine.url.render_as_string(hide_password=True)})"


class LayeredWorkloadSource(WorkloadSource):
    """Sources tried in priority order, table by table."""

    def __init__(self, sources: Sequence[WorkloadSource]):
        if not sources:
            raise ValueError("LayeredWorkloadSource needs at least one source")
        self.sources = list(sources)

    def strategies(self, table_name: str) -> List[Strategy]:
        combined: List[Strategy] = []
        for source in self.sources:
            combined.extend(source.strategies(table_name))
        return combined

    def describe(self) -> str:
        return " -> ".join(source.describe() for source in self.sources)


def build_source(app_config: Optional[AppConfig] = None) -> WorkloadSource:
    """
    SQL first when DATABASE_URL is set, then processed exports, then marts.

    Marts only hold derived tables (workload snapshots), so they come last.
    """
    cfg = app_config or default_config
    sources: List[WorkloadSource] = []
    if cfg.database_url:
        sources.append(SqlWorkloadSource(cfg.database_url))
    sources.append(FileWorkloadSource(cfg.processed_dir))
    sources.append(FileWorkloadSource(cfg.marts_dir))
    return LayeredWorkloadSource(sources)


def get_data_status(source: WorkloadSource) -> Dict[str, Dict[str, object]]:
    """Which tables each source can serve, without raising."""
    status: Dict[str, Dict[str, object]] = {}
    for table_name, spec in TABLE_SPECS.items():
        try:
            df = source.load_table(table_name)
            status[table_name] = {"ok": True, "rows": len(df), "optional": spec.optional, "error": None}
        except DataAccessError as exc:
            status[table_name] = {"ok": False, "rows": 0, "optional": spec.optional, "error": str(exc)}
    return status
