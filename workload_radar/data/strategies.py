"""
Prioritised retrieval strategies.

A strategy is a named callable that returns either ``Fetched`` or ``Failed``.
``first_fetched`` walks them in order and returns the first value; it raises
DataAccessError only when every strategy failed, listing all the reasons;
when every failure was a plain "not there" the error is TableNotFoundError.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence, Tuple, Union

from workload_radar.data.schema import DataAccessError, TableNotFoundError

logger = logging.getLogger("workload-radar.data")


@dataclass(frozen=True)
class Fetched:
    """Successful retrieval."""
    strategy: str
    value: Any


@dataclass(frozen=True)
class Failed:
    """Failed retrieval; ``missing`` means the location simply does not hold the data."""
    strategy: str
    reason: str
    error: Optional[BaseException] = None
    missing: bool = False


StrategyResult = Union[Fetched, Failed]
Strategy = Tuple[str, Callable[[], StrategyResult]]


def attempt(name: str, fn: Callable[[], Any]) -> StrategyResult:
    """
    Run ``fn`` and wrap its outcome.

    DataAccessError and OSError become ``Failed``; anything else propagates,
    since it indicates a bug rather than an unavailable store.
    """
    try:
        return Fetched(name, fn())
    except (DataAccessError, OSError) as exc:
        return Failed(name, str(exc), exc, missing=isinstance(exc, (TableNotFoundError, FileNotFoundError)))


def first_fetched(strategies: Sequence[Strategy], what: str = "data") -> Fetched:
    """Return the first successful strategy result in priority order."""
    failures: List[Failed] = []
    for name, run in strategies:
        result = run()
        if isinstance(result, Fetched):
            if failures:
                logger.info(
                    "Loaded %s via %s after %d failed strategies", what, name, len(failures)
                )
            return result
        logger.debug("Strategy %s failed for %s: %s", name, what, result.reason)
        failures.append(result)

    if not failures:
        raise DataAccessError(f"No retrieval strategies configured for {what}")

    detail = "; ".join(f"{f.strategy}: {f.reason}" for f in failures)
    if all(f.missing for f in failures):
        raise TableNotFoundError(f"{what} not found ({detail})")
    raise DataAccessError(f"Could not load {what} ({detail})") from failures[-1].error
