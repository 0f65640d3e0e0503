"""Endorsements transfer part of one actor's standing to another."""

from __future__ import annotations

import logging
import sqlite3
from typing import Dict, List, Optional

from ..config import EndorsementTier, Settings
from ..errors import NotFoundError, ValidationError
from ..models import (
    ChangeSource,
    Endorsement,
    EndorsementImpact,
    EndorsementPreview,
    PopulationSegment,
    SegmentTransfer,
)
from ..rng import DeterministicRNG
from ..segments import SegmentRegistry
from ..state import ReputationState
from .batch import BatchRunner, require_actor

logger = logging.getLogger(__name__)

ROLE_GIVEN = "given"
ROLE_RECEIVED = "received"
PREVIEW_LIMIT = 20


def _by_impact(transfer: SegmentTransfer):
    return (-abs(transfer.impact), transfer.segment_id)


class EndorsementEngine:
    def __init__(
        self,
        state: ReputationState,
        segments: SegmentRegistry,
        settings: Settings,
        runner: BatchRunner,
        rng: DeterministicRNG,
    ) -> None:
        self._state = state
        self._segments = segments
        self._settings = settings
        self._runner = runner
        self._rng = rng

    def representative_approval(self, actor_id: str) -> float:
        """Population-weighted approval of ``actor_id`` across all segments."""

        return self._representative(self._state.get_approvals(actor_id))

    def _representative(self, approvals: Dict[str, float]) -> float:
        neutral = self._state.neutral_approval
        total = 0
        weighted = 0.0
        for segment in self._segments:
            total += segment.population
            weighted += approvals.get(segment.id, neutral) * segment.population
        if total == 0:
            return neutral
        return weighted / total

    def tier_for(self, approval: float) -> EndorsementTier:
        for tier in self._settings.endorsement_tiers:
            if tier.contains(approval):
                return tier
        return self._settings.endorsement_tiers[-1]

    def _check_pair(self, endorser_id: str, endorsed_id: str) -> None:
        if endorser_id == endorsed_id:
            raise ValidationError(f"{endorser_id} cannot endorse themselves")
        require_actor(self._state, endorser_id)
        require_actor(self._state, endorsed_id)

    def _stream(self, endorser_id: str, endorsed_id: str, turn: int) -> DeterministicRNG:
        return self._rng.derive("endorsement", endorser_id, endorsed_id, turn)

    @staticmethod
    def _draw(stream: DeterministicRNG, tier: EndorsementTier, segment: PopulationSegment) -> int:
        return stream.derive(segment.id).randint(tier.transfer_min, tier.transfer_max)

    def endorse(self, endorser_id: str, endorsed_id: str, turn: int) -> Endorsement:
        self._check_pair(endorser_id, endorsed_id)

        approvals = self._state.get_approvals(endorser_id)
        neutral = self._state.neutral_approval
        representative = self._representative(approvals)
        tier = self.tier_for(representative)
        endorsement = Endorsement(
            endorser_id=endorser_id,
            endorsed_id=endorsed_id,
            turn=turn,
            tier=tier.name,
            representative_approval=representative,
        )
        # Reserving first makes a duplicate endorsement fail before any transfer.
        self._state.reserve_endorsement(endorsement)
        stream = self._stream(endorser_id, endorsed_id, turn)

        def apply_one(segment: PopulationSegment):
            transfer = self._draw(stream, tier, segment)
            return self._state.apply_change(
                endorsed_id,
                segment.id,
                lambda _score: float(transfer),
                source=ChangeSource.ENDORSEMENT,
                turn=turn,
                metadata={
                    "endorsement_id": endorsement.id,
                    "endorser_id": endorser_id,
                    "tier": tier.name,
                    "transfer": transfer,
                    "endorser_approval": round(approvals.get(segment.id, neutral), 4),
                    "representative_approval": round(representative, 4),
                },
            )

        try:
            result = self._runner.run(
                "endorsement",
                self._segments.select(),
                apply_one,
                label=lambda segment: segment.id,
                actor_id=endorsed_id,
                turn=turn,
            )
            transfers = [change.delta for change in result.changes]
            endorsement.segments_affected = len(transfers)
            endorsement.average_transfer = sum(transfers) / len(transfers) if transfers else 0.0
            endorsement.positive_transfers = sum(1 for value in transfers if value > 0)
            endorsement.negative_transfers = sum(1 for value in transfers if value < 0)
            endorsement.failed_segments = list(result.failed_segments)
            self._state.finalize_endorsement(endorsement)
        except Exception:
            logger.exception(
                "Endorsement %s by %s at turn %d did not complete; releasing it",
                endorsement.id,
                endorser_id,
                turn,
            )
            self._release(endorsement)
            raise
        logger.info(
            "%s endorsed %s at turn %d (%s tier, average transfer %.2f over %d segments)",
            endorser_id,
            endorsed_id,
            turn,
            tier.name,
            endorsement.average_transfer,
            endorsement.segments_affected,
        )
        return endorsement

    def _release(self, endorsement: Endorsement) -> None:
        try:
            self._state.release_endorsement(endorsement.id)
        except sqlite3.Error:
            logger.exception("Could not release endorsement %s", endorsement.id)

    def preview(
        self, endorser_id: str, endorsed_id: str, turn: int, limit: Optional[int] = PREVIEW_LIMIT
    ) -> EndorsementPreview:
        """What ``endorse`` would transfer at ``turn``, without writing anything.

        Transfers come from the same per-segment streams ``endorse`` draws
        from, so the preview matches as long as the endorser's approval does
        not change first. The list is ordered by population-weighted impact.
        """

        self._check_pair(endorser_id, endorsed_id)
        approvals = self._state.get_approvals(endorser_id)
        neutral = self._state.neutral_approval
        representative = self._representative(approvals)
        tier = self.tier_for(representative)
        stream = self._stream(endorser_id, endorsed_id, turn)

        transfers = sorted(
            (
                SegmentTransfer(
                    segment_id=segment.id,
                    region=segment.region,
                    population=segment.population,
                    can_vote=segment.can_vote,
                    transfer=float(self._draw(stream, tier, segment)),
                    endorser_approval=approvals.get(segment.id, neutral),
                )
                for segment in self._segments
            ),
            key=_by_impact,
        )
        values = [item.transfer for item in transfers]
        return EndorsementPreview(
            endorser_id=endorser_id,
            endorsed_id=endorsed_id,
            turn=turn,
            tier=tier.name,
            representative_approval=representative,
            transfers=transfers if limit is None else transfers[:limit],
            total_segments=len(values),
            average_transfer=sum(values) / len(values) if values else 0.0,
            positive_transfers=sum(1 for value in values if value > 0),
            negative_transfers=sum(1 for value in values if value < 0),
            neutral_transfers=sum(1 for value in values if value == 0),
        )

    def impact(self, endorsement_id: int) -> EndorsementImpact:
        """Per-segment transfers of a stored endorsement, largest impact first."""

        endorsement = self._state.get_endorsement(endorsement_id)
        if endorsement is None:
            raise NotFoundError(f"Endorsement {endorsement_id} not found")
        entries = self._state.query_changes(
            actor_id=endorsement.endorsed_id,
            turn=endorsement.turn,
            source=ChangeSource.ENDORSEMENT,
        )
        transfers: List[SegmentTransfer] = []
        for entry in entries:
            if entry.metadata.get("endorsement_id") != endorsement_id:
                continue
            segment = self._segments.get(entry.segment_id) if entry.segment_id in self._segments else None
            transfers.append(
                SegmentTransfer(
                    segment_id=entry.segment_id,
                    region=segment.region if segment else "",
                    population=segment.population if segment else 0,
                    can_vote=segment.can_vote if segment else False,
                    transfer=entry.delta,
                    endorser_approval=entry.metadata.get("endorser_approval"),
                )
            )
        transfers.sort(key=_by_impact)
        return EndorsementImpact(endorsement=endorsement, transfers=transfers)

    def history(self, actor_id: str, role: Optional[str] = None) -> List[Endorsement]:
        require_actor(self._state, actor_id)
        if role is None:
            return self._state.list_endorsements(involving=actor_id)
        if role == ROLE_GIVEN:
            return self._state.list_endorsements(endorser_id=actor_id)
        if role == ROLE_RECEIVED:
            return self._state.list_endorsements(endorsed_id=actor_id)
        raise ValidationError(f"role must be '{ROLE_GIVEN}' or '{ROLE_RECEIVED}', got {role!r}")

    def for_turn(self, turn: int) -> List[Endorsement]:
        return self._state.list_endorsements(turn=turn)


__all__ = ["EndorsementEngine", "ROLE_GIVEN", "ROLE_RECEIVED"]
