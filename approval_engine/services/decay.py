"""Per-turn drift of every score toward neutral."""

from __future__ import annotations

import logging
from typing import Optional, Tuple

from ..config import Settings
from ..errors import ValidationError
from ..models import BatchResult, ChangeSource, ReputationScore
from ..state import ReputationState
from .batch import BatchRunner

logger = logging.getLogger(__name__)


class DecayEngine:
    """Moves each stored score a fraction ``rate`` of the way back to neutral.

    Each score remembers the last turn it decayed in, so running the same turn
    twice is harmless. Records that fail keep their old marker and are picked
    up again when the turn is re-run.
    """

    def __init__(self, state: ReputationState, settings: Settings, runner: BatchRunner) -> None:
        self._state = state
        self._settings = settings
        self._runner = runner

    def apply(self, turn: int, rate: Optional[float] = None) -> BatchResult:
        rate = self._settings.decay_rate if rate is None else rate
        if isinstance(rate, bool) or not isinstance(rate, (int, float)) or not 0 < rate < 1:
            raise ValidationError(f"Decay rate must be in (0, 1), got {rate!r}")
        neutral = self._state.neutral_approval

        def delta_for(score: ReputationScore) -> Optional[float]:
            delta = (neutral - score.approval) * rate
            return delta if delta != 0 else None

        def apply_one(key: Tuple[str, str]):
            actor_id, segment_id = key
            return self._state.apply_change(
                actor_id,
                segment_id,
                delta_for,
                source=ChangeSource.DECAY,
                turn=turn,
                metadata={"rate": rate},
                decay_turn=turn,
            )

        pending = self._state.pending_decay(turn)
        if not pending:
            logger.debug("Decay for turn %d already applied", turn)
        result = self._runner.run(
            "decay",
            pending,
            apply_one,
            label=lambda key: f"{key[0]}/{key[1]}",
            turn=turn,
        )
        logger.info(
            "Decay turn %d: %d changed, %d unchanged, %d failed",
            turn,
            result.segments_touched,
            result.skipped,
            len(result.failed_segments),
        )
        return result


__all__ = ["DecayEngine"]
