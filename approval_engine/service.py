"""High-level approval service used by the turn orchestrator and callers."""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from .config import Settings, get_settings
from .errors import ValidationError
from .history import COMPACTION_BATCHED, HistoryManager
from .models import (
    Actor,
    ApprovalDataPoint,
    ApprovalSummary,
    BatchResult,
    Campaign,
    CampaignStatus,
    ChangeSource,
    Endorsement,
    EndorsementImpact,
    EndorsementPreview,
    NewsOutlet,
    Policy,
    PolicyImpactPrediction,
    PolicyRole,
    PolicyVoteResult,
    PoliticalPosition,
    PopulationSegment,
    ReputationChange,
    Scope,
)
from .rng import DeterministicRNG
from .segments import SegmentRegistry
from .services import (
    BatchRunner,
    CampaignEngine,
    DecayEngine,
    EndorsementEngine,
    NewsImpactEngine,
    PolicyImpactEngine,
    require_actor,
)
from .state import ReputationState
from .telemetry import TelemetryCollector, get_telemetry, track_duration

logger = logging.getLogger(__name__)


@dataclass
class TurnReport:
    """What ``advance_turn`` did for one turn."""

    turn: int
    completed_campaigns: List[ReputationChange] = field(default_factory=list)
    decay: BatchResult = field(default_factory=BatchResult)
    compacted_rows: Optional[int] = None


class ReputationService:
    """Coordinates the score store, effect engines and worker pool."""

    def __init__(
        self,
        db_path: Path,
        segments: SegmentRegistry | Iterable[PopulationSegment],
        settings: Settings | None = None,
        telemetry: TelemetryCollector | None = None,
        seed: Optional[int] = None,
        state: ReputationState | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.segments = segments if isinstance(segments, SegmentRegistry) else SegmentRegistry(segments)
        self.state = state or ReputationState(
            db_path,
            neutral_approval=self.settings.neutral_approval,
            approval_bounds=(self.settings.min_approval, self.settings.max_approval),
            history_capacity=self.settings.history_capacity,
            trim_on_write=self.settings.history_compaction != COMPACTION_BATCHED,
        )
        self.history = HistoryManager(
            self.state,
            mode=self.settings.history_compaction,
            interval_turns=self.settings.compaction_interval_turns,
        )
        self._telemetry = telemetry or get_telemetry()
        self._rng = DeterministicRNG(self.settings.rng_seed if seed is None else seed)
        self._executor = ThreadPoolExecutor(
            max_workers=self.settings.max_workers, thread_name_prefix="approval"
        )
        runner = BatchRunner(self._executor, self._telemetry)
        self.policies = PolicyImpactEngine(self.state, self.segments, self.settings, runner)
        self.campaigns = CampaignEngine(
            self.state, self.segments, self.settings, self._rng, self._telemetry
        )
        self.endorsements = EndorsementEngine(
            self.state, self.segments, self.settings, runner, self._rng
        )
        self.news = NewsImpactEngine(self.state, self.segments, self.settings, runner)
        self.decay = DecayEngine(self.state, self.settings, runner)

    def close(self) -> None:
        self._executor.shutdown(wait=True)
        self._telemetry.flush()

    def __enter__(self) -> "ReputationService":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # Actors ------------------------------------------------------------
    def register_actor(
        self,
        actor_id: str,
        display_name: Optional[str] = None,
        position: Optional[PoliticalPosition] = None,
        *,
        seed_scores: bool = True,
    ) -> Actor:
        """Register an actor, creating neutral scores for every segment by default."""

        if not actor_id:
            raise ValidationError("actor_id is required")
        actor = Actor(id=actor_id, display_name=display_name or actor_id, position=position)
        self.state.upsert_actor(actor)
        if seed_scores:
            created = self.state.ensure_scores(actor_id, self.segments.ids())
            logger.info("Registered %s with %d neutral scores", actor_id, created)
        return actor

    def get_actor(self, actor_id: str) -> Actor:
        return require_actor(self.state, actor_id)

    # Reads -------------------------------------------------------------
    def get_approval(self, actor_id: str, segment_id: str) -> float:
        require_actor(self.state, actor_id)
        self.segments.get(segment_id)
        score = self.state.get_score(actor_id, segment_id)
        return score.approval if score else self.state.neutral_approval

    def get_approval_summary(self, actor_id: str, scope: Optional[Scope] = None) -> ApprovalSummary:
        """Population-weighted approval over ``scope`` with a per-region split."""

        require_actor(self.state, actor_id)
        scope = scope or Scope.all()
        approvals = self.state.get_approvals(actor_id)
        neutral = self.state.neutral_approval
        selected = self.segments.select(scope)

        total_population = 0
        weighted = 0.0
        region_weighted: Dict[str, float] = {}
        region_population: Dict[str, int] = {}
        for segment in selected:
            approval = approvals.get(segment.id, neutral)
            total_population += segment.population
            weighted += approval * segment.population
            region_weighted[segment.region] = region_weighted.get(segment.region, 0.0) + approval * segment.population
            region_population[segment.region] = region_population.get(segment.region, 0) + segment.population

        by_region = {
            region: (region_weighted[region] / population if population else neutral)
            for region, population in sorted(region_population.items())
        }
        return ApprovalSummary(
            actor_id=actor_id,
            scope=scope.describe(),
            overall=weighted / total_population if total_population else neutral,
            total_population=total_population,
            segment_count=len(selected),
            by_region=by_region,
        )

    def get_history(self, actor_id: str, segment_id: str) -> List[ApprovalDataPoint]:
        require_actor(self.state, actor_id)
        self.segments.get(segment_id)
        return self.history.history(actor_id, segment_id)

    def query_audit(
        self,
        actor_id: Optional[str] = None,
        segment_id: Optional[str] = None,
        turn: Optional[int] = None,
        source: Optional[ChangeSource | str] = None,
        since_turn: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[ReputationChange]:
        return self.history.query(
            actor_id=actor_id,
            segment_id=segment_id,
            turn=turn,
            source=ChangeSource(source) if source is not None else None,
            since_turn=since_turn,
            limit=limit,
        )

    # Policy ------------------------------------------------------------
    def apply_policy_impact(
        self,
        actor_id: str,
        policy: Policy,
        role: PolicyRole | str,
        turn: int,
        actor_position: Optional[PoliticalPosition] = None,
    ) -> BatchResult:
        with track_duration("policy_impact", telemetry=self._telemetry):
            return self.policies.apply(actor_id, policy, role, turn, actor_position)

    def predict_policy_impact(
        self,
        actor_id: str,
        policy: Policy,
        role: PolicyRole | str,
        limit: Optional[int] = 20,
    ) -> List[PolicyImpactPrediction]:
        return self.policies.predict(actor_id, policy, role, limit)

    def apply_policy_vote(
        self,
        policy: Policy,
        turn: int,
        *,
        proposer_id: Optional[str] = None,
        yes: Iterable[str] = (),
        no: Iterable[str] = (),
        abstain: Iterable[str] = (),
    ) -> PolicyVoteResult:
        with track_duration("policy_vote", telemetry=self._telemetry):
            return self.policies.apply_vote(
                policy, turn, proposer_id=proposer_id, yes=yes, no=no, abstain=abstain
            )

    # Campaigns ---------------------------------------------------------
    def start_campaign(
        self, actor_id: str, segment_id: str, turn: int, boost: Optional[int] = None
    ) -> Campaign:
        return self.campaigns.start(actor_id, segment_id, turn, boost)

    def complete_campaign(self, campaign_id: int, turn: int) -> Optional[ReputationChange]:
        return self.campaigns.complete(campaign_id, turn)

    def complete_due_campaigns(self, turn: int) -> List[ReputationChange]:
        changes = self.campaigns.complete_due(turn)
        self._telemetry.track_turn_step("campaigns", turn, len(changes))
        return changes

    def cancel_campaign(self, campaign_id: int, turn: int) -> Campaign:
        return self.campaigns.cancel(campaign_id, turn)

    def list_campaigns(
        self, actor_id: str, status: Optional[CampaignStatus | str] = None
    ) -> List[Campaign]:
        return self.campaigns.list_campaigns(actor_id, CampaignStatus(status) if status else None)

    def available_campaign_targets(
        self, actor_id: str, scope: Optional[Scope] = None
    ) -> List[PopulationSegment]:
        return self.campaigns.available_targets(actor_id, scope)

    # Endorsements ------------------------------------------------------
    def endorse(self, endorser_id: str, endorsed_id: str, turn: int) -> Endorsement:
        with track_duration("endorsement", telemetry=self._telemetry):
            return self.endorsements.endorse(endorser_id, endorsed_id, turn)

    def preview_endorsement(
        self, endorser_id: str, endorsed_id: str, turn: int, limit: Optional[int] = 20
    ) -> EndorsementPreview:
        return self.endorsements.preview(endorser_id, endorsed_id, turn, limit)

    def endorsement_impact(self, endorsement_id: int) -> EndorsementImpact:
        return self.endorsements.impact(endorsement_id)

    def endorsement_history(self, actor_id: str, role: Optional[str] = None) -> List[Endorsement]:
        return self.endorsements.history(actor_id, role)

    def endorsements_for_turn(self, turn: int) -> List[Endorsement]:
        return self.endorsements.for_turn(turn)

    # News --------------------------------------------------------------
    def apply_news_impact(
        self,
        outlet: NewsOutlet,
        reach: Optional[Scope],
        turn: int,
        base_magnitude: Optional[float] = None,
        actor_id: Optional[str] = None,
    ) -> BatchResult:
        with track_duration("news_impact", telemetry=self._telemetry):
            return self.news.apply(outlet, reach or Scope.all(), turn, base_magnitude, actor_id)

    # Turn boundary -----------------------------------------------------
    def apply_turn_decay(self, turn: int, rate: Optional[float] = None) -> BatchResult:
        with track_duration("decay", telemetry=self._telemetry):
            result = self.decay.apply(turn, rate)
        self._telemetry.track_turn_step("decay", turn, result.segments_touched)
        return result

    def compact_history(self) -> int:
        return self.history.compact()

    def advance_turn(self, turn: int) -> TurnReport:
        """Run the turn-boundary steps: campaign completions, decay, compaction."""

        logger.info("Advancing approvals to turn %d", turn)
        report = TurnReport(turn=turn)
        report.completed_campaigns = self.complete_due_campaigns(turn)
        report.decay = self.apply_turn_decay(turn)
        if self.history.should_compact(turn):
            report.compacted_rows = self.compact_history()
            self._telemetry.track_turn_step("compaction", turn, report.compacted_rows)
        self._telemetry.flush()
        return report


__all__ = ["ReputationService", "TurnReport"]
