"""News coverage nudges approval toward or away from an outlet's owner."""

from __future__ import annotations

import logging
import math
from typing import Optional

from ..alignment import alignment_breakdown
from ..config import Settings
from ..errors import ValidationError
from ..models import BatchResult, ChangeSource, NewsOutlet, PopulationSegment, Scope
from ..segments import SegmentRegistry
from ..state import ReputationState
from .batch import BatchRunner, require_actor

logger = logging.getLogger(__name__)


class NewsImpactEngine:
    def __init__(
        self,
        state: ReputationState,
        segments: SegmentRegistry,
        settings: Settings,
        runner: BatchRunner,
    ) -> None:
        self._state = state
        self._segments = segments
        self._settings = settings
        self._runner = runner

    def apply(
        self,
        outlet: NewsOutlet,
        reach: Scope,
        turn: int,
        base_magnitude: Optional[float] = None,
        actor_id: Optional[str] = None,
    ) -> BatchResult:
        """Apply ``alignment * base_magnitude`` to every segment in ``reach``.

        The change lands on ``actor_id``, or on the outlet's owner by default.
        """

        target = actor_id or outlet.owner_id
        magnitude = self._settings.news_base_magnitude if base_magnitude is None else base_magnitude
        if isinstance(magnitude, bool) or not isinstance(magnitude, (int, float)) \
                or not math.isfinite(magnitude) or magnitude < 0:
            raise ValidationError(f"base_magnitude must be a non-negative number, got {magnitude!r}")
        require_actor(self._state, target)
        settings = self._settings
        scope = reach.describe()

        def apply_one(segment: PopulationSegment):
            breakdown = alignment_breakdown(
                outlet.position,
                segment.default_position,
                segment.salience,
                issue_weight=settings.issue_weight,
                cube_weight=settings.cube_weight,
                neutral_issue=settings.neutral_issue_alignment,
            )
            delta = breakdown.signed * magnitude
            return self._state.apply_change(
                target,
                segment.id,
                lambda _score: delta,
                source=ChangeSource.NEWS,
                turn=turn,
                metadata={
                    "outlet_id": outlet.outlet_id,
                    "owner_id": outlet.owner_id,
                    "scope": scope,
                    "base_magnitude": magnitude,
                    "alignment": breakdown.summary(),
                },
            )

        result = self._runner.run(
            "news",
            self._segments.select(reach),
            apply_one,
            label=lambda segment: segment.id,
            actor_id=target,
            turn=turn,
        )
        logger.info(
            "Outlet %s reached %d segments (%s) for %s",
            outlet.outlet_id,
            result.segments_touched,
            scope,
            target,
        )
        return result


__all__ = ["NewsImpactEngine"]
