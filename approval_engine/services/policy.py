"""Policy impact: approval shifts from proposing or voting on a policy."""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Tuple

from ..alignment import AlignmentBreakdown, alignment_breakdown
from ..config import Settings
from ..errors import ValidationError
from ..models import (
    ROLE_SOURCES,
    BatchResult,
    Policy,
    PolicyImpactPrediction,
    PolicyRole,
    PolicyVoteResult,
    PoliticalPosition,
    PopulationSegment,
)
from ..segments import SegmentRegistry
from ..state import ReputationState
from .batch import BatchRunner, require_actor

logger = logging.getLogger(__name__)


class PolicyImpactEngine:
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

    def role_weight(self, role: PolicyRole) -> float:
        return float(self._settings.role_weights.get(role.value, 0.0))

    @staticmethod
    def _role(role: PolicyRole | str) -> PolicyRole:
        try:
            return PolicyRole(role)
        except ValueError:
            raise ValidationError(f"Unknown policy role {role!r}") from None

    def _segment_delta(
        self, policy: Policy, segment: PopulationSegment, weight: float
    ) -> Tuple[AlignmentBreakdown, float]:
        settings = self._settings
        breakdown = alignment_breakdown(
            policy.position,
            segment.default_position,
            segment.salience,
            issue_weight=settings.issue_weight,
            cube_weight=settings.cube_weight,
            neutral_issue=settings.neutral_issue_alignment,
        )
        return breakdown, breakdown.signed * weight * settings.max_policy_impact

    def apply(
        self,
        actor_id: str,
        policy: Policy,
        role: PolicyRole | str,
        turn: int,
        actor_position: Optional[PoliticalPosition] = None,
    ) -> BatchResult:
        """Shift ``actor_id``'s approval in every segment by policy alignment.

        ``delta = alignment(policy, segment default) * role weight * max impact``.
        Abstaining writes nothing.
        """

        role = self._role(role)
        require_actor(self._state, actor_id)
        weight = self.role_weight(role)
        if role is PolicyRole.ABSTAIN or weight == 0:
            logger.debug("%s abstains on %s; no approval change", actor_id, policy.policy_id)
            return BatchResult()

        source = ROLE_SOURCES[role]

        def apply_one(segment: PopulationSegment):
            breakdown, delta = self._segment_delta(policy, segment, weight)
            metadata = {
                "policy_id": policy.policy_id,
                "role": role.value,
                "role_weight": weight,
                "alignment": breakdown.summary(),
            }
            if actor_position is not None:
                metadata["actor_position"] = actor_position.to_dict()
            return self._state.apply_change(
                actor_id,
                segment.id,
                lambda _score: delta,
                source=source,
                turn=turn,
                metadata=metadata,
            )

        result = self._runner.run(
            f"policy.{role.value}",
            self._segments.select(),
            apply_one,
            label=lambda segment: segment.id,
            actor_id=actor_id,
            turn=turn,
        )
        logger.info(
            "Policy %s (%s by %s) moved %d segments",
            policy.policy_id,
            role.value,
            actor_id,
            result.segments_touched,
        )
        return result

    def predict(
        self,
        actor_id: str,
        policy: Policy,
        role: PolicyRole | str,
        limit: Optional[int] = 20,
    ) -> List[PolicyImpactPrediction]:
        """Projected approval shift in the largest voting segments; read-only."""

        role = self._role(role)
        require_actor(self._state, actor_id)
        weight = self.role_weight(role)
        approvals = self._state.get_approvals(actor_id)
        neutral = self._state.neutral_approval
        voters = sorted(
            (segment for segment in self._segments if segment.can_vote),
            key=lambda segment: (-segment.population, segment.id),
        )
        if limit is not None:
            voters = voters[:limit]

        predictions: List[PolicyImpactPrediction] = []
        for segment in voters:
            _breakdown, delta = self._segment_delta(policy, segment, weight)
            current = approvals.get(segment.id, neutral)
            predictions.append(
                PolicyImpactPrediction(
                    segment_id=segment.id,
                    region=segment.region,
                    population=segment.population,
                    predicted_delta=delta,
                    current_approval=current,
                    new_approval=self._settings.clamp_approval(current + delta),
                )
            )
        return predictions

    def apply_vote(
        self,
        policy: Policy,
        turn: int,
        *,
        proposer_id: Optional[str] = None,
        yes: Iterable[str] = (),
        no: Iterable[str] = (),
        abstain: Iterable[str] = (),
    ) -> PolicyVoteResult:
        """Apply the policy impact for every participant of a vote."""

        participants = []
        if proposer_id is not None:
            participants.append((proposer_id, PolicyRole.PROPOSER))
        participants.extend((actor_id, PolicyRole.YES) for actor_id in yes)
        participants.extend((actor_id, PolicyRole.NO) for actor_id in no)
        participants.extend((actor_id, PolicyRole.ABSTAIN) for actor_id in abstain)

        seen = set()
        for actor_id, _role in participants:
            if actor_id in seen:
                raise ValidationError(f"{actor_id} appears more than once in vote on {policy.policy_id}")
            seen.add(actor_id)
            require_actor(self._state, actor_id)

        outcome = PolicyVoteResult(policy_id=policy.policy_id, turn=turn)
        for actor_id, role in participants:
            outcome.results[actor_id] = self.apply(actor_id, policy, role, turn)
        return outcome


__all__ = ["PolicyImpactEngine"]
