"""Per-segment fan-out over a worker pool."""

from __future__ import annotations

import logging
from concurrent.futures import Executor, as_completed
from typing import Callable, Iterable, Optional, TypeVar

from ..errors import NotFoundError
from ..models import Actor, BatchResult, ReputationChange
from ..state import ReputationState
from ..telemetry import TelemetryCollector

logger = logging.getLogger(__name__)

T = TypeVar("T")


def require_actor(state: ReputationState, actor_id: str) -> Actor:
    actor = state.get_actor(actor_id)
    if actor is None:
        raise NotFoundError(f"Actor {actor_id} not found")
    return actor


class BatchRunner:
    """Runs one record update per item and gathers the outcome.

    A failing item is logged, counted in telemetry and reported in
    ``BatchResult.failed_segments``; the rest of the batch still runs.
    """

    def __init__(self, executor: Executor, telemetry: Optional[TelemetryCollector] = None) -> None:
        self._executor = executor
        self._telemetry = telemetry

    def run(
        self,
        operation: str,
        items: Iterable[T],
        apply_one: Callable[[T], Optional[ReputationChange]],
        *,
        label: Callable[[T], str],
        actor_id: Optional[str] = None,
        turn: Optional[int] = None,
    ) -> BatchResult:
        result = BatchResult()
        futures = {self._executor.submit(apply_one, item): label(item) for item in items}
        for future in as_completed(futures):
            key = futures[future]
            try:
                change = future.result()
            except Exception as exc:
                logger.exception("%s failed for %s", operation, key)
                result.failed_segments.append(key)
                if self._telemetry:
                    self._telemetry.track_error(
                        type(exc).__name__,
                        operation=operation,
                        segment_id=key,
                        error_details=str(exc),
                    )
                continue
            if change is None:
                result.skipped += 1
            else:
                result.changes.append(change)

        result.changes.sort(key=lambda change: change.id or 0)
        result.failed_segments.sort()
        if result.failed_segments:
            logger.warning(
                "%s: %d applied, %d failed", operation, len(result.changes), len(result.failed_segments)
            )
        if self._telemetry:
            self._telemetry.track_batch(
                operation,
                applied=len(result.changes),
                failed=len(result.failed_segments),
                skipped=result.skipped,
                actor_id=actor_id,
                turn=turn,
            )
        return result


__all__ = ["BatchRunner", "require_actor"]
