"""Audit log queries and rolling history compaction."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, List, Optional

from .errors import ValidationError
from .models import ApprovalDataPoint, ChangeSource, ReputationChange

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .state import ReputationState

logger = logging.getLogger(__name__)

COMPACTION_ON_WRITE = "on_write"
COMPACTION_BATCHED = "batched"


def describe_change(source: ChangeSource, delta: float) -> str:
    """Human readable reason stored with each history point."""

    direction = "increased" if delta >= 0 else "decreased"
    amount = f"{abs(delta):.1f}"
    if source is ChangeSource.POLICY_PROPOSAL:
        return f"Proposed policy ({direction} by {amount})"
    if source is ChangeSource.POLICY_VOTE_YES:
        return f"Voted YES on policy ({direction} by {amount})"
    if source is ChangeSource.POLICY_VOTE_NO:
        return f"Voted NO on policy ({direction} by {amount})"
    if source is ChangeSource.CAMPAIGN:
        return f"Campaign effect (+{amount})"
    if source is ChangeSource.ENDORSEMENT:
        return f"Received endorsement ({direction} by {amount})"
    if source is ChangeSource.NEWS:
        return f"News coverage ({direction} by {amount})"
    if source is ChangeSource.DECAY:
        return f"Drift toward neutral ({direction} by {amount})"
    return f"Approval {direction} by {amount}"


class HistoryManager:
    """Reads the audit log and keeps per-score history within capacity.

    With ``on_write`` compaction the store trims inside each write and
    :meth:`compact` has nothing to do in steady state. With ``batched``
    compaction history rows accumulate until :meth:`compact` runs every
    ``interval_turns`` turns; reads are capped either way.
    """

    def __init__(
        self,
        state: "ReputationState",
        *,
        mode: str = COMPACTION_ON_WRITE,
        interval_turns: int = 3,
    ) -> None:
        if mode not in (COMPACTION_ON_WRITE, COMPACTION_BATCHED):
            raise ValueError(f"Unknown history compaction mode {mode!r}")
        self._state = state
        self.mode = mode
        self.interval_turns = max(1, int(interval_turns))

    @property
    def capacity(self) -> int:
        return self._state.history_capacity

    def should_compact(self, turn: int) -> bool:
        return self.mode == COMPACTION_BATCHED and turn % self.interval_turns == 0

    def compact(self) -> int:
        removed = self._state.trim_history()
        if removed:
            logger.info("History compaction removed %d rows", removed)
        else:
            logger.debug("History compaction found nothing to trim")
        return removed

    def history(self, actor_id: str, segment_id: str) -> List[ApprovalDataPoint]:
        return self._state.get_history(actor_id, segment_id)

    def query(
        self,
        *,
        actor_id: Optional[str] = None,
        segment_id: Optional[str] = None,
        turn: Optional[int] = None,
        source: Optional[ChangeSource] = None,
        since_turn: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[ReputationChange]:
        if limit is not None and limit < 0:
            raise ValidationError("limit must be non-negative")
        return self._state.query_changes(
            actor_id=actor_id,
            segment_id=segment_id,
            turn=turn,
            source=source,
            since_turn=since_turn,
            limit=limit,
        )


__all__ = [
    "COMPACTION_BATCHED",
    "COMPACTION_ON_WRITE",
    "HistoryManager",
    "describe_change",
]
