"""
memory_manager.py

Memory and wall-clock guards for long population runs.
Provides context managers and a paging iterator so unbounded tables are
processed one page at a time.
"""
import gc
import logging
import resource
import threading
import time
from contextlib import contextmanager
from typing import Any, Iterator, List, Optional

from sqlalchemy.orm import Session

from recommender.core.exceptions import PopulationCancelled, PopulationTimeout

logger = logging.getLogger(__name__)


@contextmanager
def managed_memory(operation_name: str = "operation"):
    """
    Context manager that ensures garbage collection and logs memory cleanup.
    Use around large operations to ensure proper cleanup.

    Usage:
        with managed_memory("populate activity"):
            # heavy operation
            pass
    """
    try:
        yield
    finally:
        collected = gc.collect()
        logger.debug(f"[MemoryManager] {operation_name}: collected {collected} objects")


def memory_usage_mb() -> float:
    """Peak resident set size of this process in Mb (Linux reports Kb)."""
    return round(resource.getrusage(resource.RUSAGE_SELF).ru_maxrss / 1024, 2)


class PageWatchdog:
    """Wall-clock budget for a single page of work.

    ``reset()`` marks the start of a page. ``check()`` runs before the next
    page and raises PopulationTimeout once the previous page has run past its
    budget, or PopulationCancelled once ``cancel_event`` is set.
    """

    def __init__(self, timeout_seconds: float = 60, cancel_event: Optional[threading.Event] = None):
        self.timeout_seconds = timeout_seconds
        self.cancel_event = cancel_event
        self._started_at = time.monotonic()

    def reset(self) -> None:
        self._started_at = time.monotonic()

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self._started_at

    def check_cancelled(self, label: str = "page") -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise PopulationCancelled(f"Population cancelled before {label}")

    def check(self, label: str = "page") -> None:
        self.check_cancelled(label)
        if self.timeout_seconds and self.elapsed > self.timeout_seconds:
            raise PopulationTimeout(
                f"{label} took {self.elapsed:.1f}s, budget is {self.timeout_seconds}s"
            )


def batch_query_iterator(
    session: Session,
    query,
    batch_size: int = 50,
    total: Optional[int] = None,
    expunge: bool = True
) -> Iterator[List[Any]]:
    """
    Iterate over query results in batches to avoid loading entire result set into memory.
    Automatically expunges objects from session to free memory if expunge=True.

    Args:
        session: SQLAlchemy session
        query: SQLAlchemy query object (not yet executed), already ordered
        batch_size: Number of rows per batch
        total: Stop once this many rows have been offered (row count taken up front)
        expunge: If True, expunge objects from session after yielding to free memory

    Yields:
        Lists of at most batch_size rows
    """
    offset = 0
    while total is None or offset < total:
        limit = batch_size if total is None else min(batch_size, total - offset)
        batch = query.offset(offset).limit(limit).all()
        if not batch:
            break

        yield batch

        if expunge:
            session.expunge_all()

        offset += batch_size

        # Hint to garbage collector
        if offset % (batch_size * 10) == 0:
            gc.collect(generation=0)
