"""Core data models for the approval engine."""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple

from .errors import ConflictError, PartialBatchFailure, ValidationError

AXIS_MIN = -10.0
AXIS_MAX = 10.0
MAX_SALIENCE_TOTAL = 10.0

ISSUES: Tuple[str, ...] = (
    # Governance & sovereignty
    "sovereignty",
    "responsible_government",
    "centralization",
    # Property & land
    "property_rights",
    "eminent_domain",
    "land_sales",
    # Economy & trade
    "taxes",
    "protectionism",
    "economic_intervention",
    "business_regulation",
    "privatization",
    # Labour
    "worker_rights",
    "minimum_wage",
    # Welfare
    "welfare_state",
    "healthcare",
    "universal_income",
    # Rights & suffrage
    "property_suffrage",
    "womens_suffrage",
    "indigenous_rights",
    "gay_rights",
    "trans_rights",
    # Indigenous issues
    "kingitanga",
    "water_rights",
    "immigration",
    "education_rights",
    # Justice
    "death_penalty",
    "justice",
    "police_reform",
    # Foreign policy
    "interventionism",
    "globalism",
    # Social
    "privacy_rights",
    "animal_rights",
    "reproductive_rights",
    "environmental_regulation",
    "equity",
)
ISSUE_SET: FrozenSet[str] = frozenset(ISSUES)


def _scale_value(label: str, value: Any) -> float:
    """Coerce ``value`` to a float inside the political scale or raise."""

    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{label} must be a number, got {value!r}")
    number = float(value)
    if not math.isfinite(number) or not AXIS_MIN <= number <= AXIS_MAX:
        raise ValidationError(f"{label} must lie in [{AXIS_MIN:g}, {AXIS_MAX:g}], got {value!r}")
    return number


def _check_issue(issue: str) -> None:
    if issue not in ISSUE_SET:
        raise ValidationError(f"Unknown issue '{issue}'")


@dataclass(frozen=True)
class PoliticalCube:
    economic: float = 0.0
    authority: float = 0.0
    social: float = 0.0

    def __post_init__(self) -> None:
        for axis in ("economic", "authority", "social"):
            object.__setattr__(self, axis, _scale_value(f"cube.{axis}", getattr(self, axis)))

    def as_tuple(self) -> Tuple[float, float, float]:
        return (self.economic, self.authority, self.social)


@dataclass(frozen=True)
class PoliticalPosition:
    """A point on the political cube plus a sparse set of issue stances."""

    cube: PoliticalCube = field(default_factory=PoliticalCube)
    issues: Mapping[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not isinstance(self.cube, PoliticalCube):
            raise ValidationError("cube must be a PoliticalCube")
        if not isinstance(self.issues, Mapping):
            raise ValidationError("issues must be a mapping of issue id to value")
        cleaned: Dict[str, float] = {}
        for issue, value in self.issues.items():
            _check_issue(issue)
            cleaned[issue] = _scale_value(f"issues.{issue}", value)
        object.__setattr__(self, "issues", cleaned)

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> "PoliticalPosition":
        if not isinstance(data, Mapping):
            raise ValidationError(f"Malformed political position: {data!r}")
        cube_data = data.get("cube") or {}
        if not isinstance(cube_data, Mapping):
            raise ValidationError(f"Malformed political cube: {cube_data!r}")
        unknown = set(cube_data) - {"economic", "authority", "social"}
        if unknown:
            raise ValidationError(f"Unknown cube axes: {sorted(unknown)}")
        return PoliticalPosition(
            cube=PoliticalCube(**cube_data),
            issues=dict(data.get("issues") or {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cube": {
                "economic": self.cube.economic,
                "authority": self.cube.authority,
                "social": self.cube.social,
            },
            "issues": dict(self.issues),
        }


@dataclass(frozen=True)
class SalienceWeights:
    """How much each issue matters to a segment; total weight is capped at 10."""

    weights: Mapping[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not isinstance(self.weights, Mapping):
            raise ValidationError("salience must be a mapping of issue id to weight")
        cleaned: Dict[str, float] = {}
        for issue, weight in self.weights.items():
            _check_issue(issue)
            if isinstance(weight, bool) or not isinstance(weight, (int, float)):
                raise ValidationError(f"salience.{issue} must be a number, got {weight!r}")
            value = float(weight)
            if not math.isfinite(value) or value < 0:
                raise ValidationError(f"salience.{issue} must be non-negative, got {weight!r}")
            cleaned[issue] = value
        total = sum(cleaned.values())
        if total > MAX_SALIENCE_TOTAL + 1e-9:
            raise ValidationError(
                f"salience weights sum to {total:.3f}, exceeding {MAX_SALIENCE_TOTAL:g}"
            )
        object.__setattr__(self, "weights", cleaned)

    @property
    def total(self) -> float:
        return sum(self.weights.values())

    def weight(self, issue: str) -> float:
        return self.weights.get(issue, 0.0)


@dataclass(frozen=True)
class Location:
    region: str
    settlement: str
    urban_center: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.region:
            raise ValidationError("location.region is required")
        if self.settlement not in ("urban", "rural"):
            raise ValidationError(
                f"location.settlement must be 'urban' or 'rural', got {self.settlement!r}"
            )


@dataclass(frozen=True)
class EconomicProfile:
    occupation: str
    class_tier: str
    gender: str
    property_ownership: Optional[str] = None


@dataclass(frozen=True)
class CulturalProfile:
    ethnicity: str
    religion: str
    indigenous: bool = False
    mixed: bool = False


@dataclass(frozen=True)
class PopulationSegment:
    """A population slice with its own default stance and issue salience."""

    id: str
    population: int
    location: Location
    economic: EconomicProfile
    cultural: CulturalProfile
    can_vote: bool
    default_position: PoliticalPosition
    salience: SalienceWeights = field(default_factory=SalienceWeights)
    special_interests: Mapping[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.id:
            raise ValidationError("segment id is required")
        if isinstance(self.population, bool) or not isinstance(self.population, int):
            raise ValidationError(f"segment {self.id}: population must be an integer")
        if self.population < 0:
            raise ValidationError(f"segment {self.id}: population must be >= 0")
        if not isinstance(self.special_interests, Mapping):
            raise ValidationError(f"segment {self.id}: special_interests must be a mapping")
        for interest, weight in self.special_interests.items():
            if isinstance(weight, bool) or not isinstance(weight, (int, float)):
                raise ValidationError(
                    f"segment {self.id}: special interest '{interest}' salience must be a number, got {weight!r}"
                )
            if not 0.0 <= float(weight) <= 1.0:
                raise ValidationError(
                    f"segment {self.id}: special interest '{interest}' salience must be in [0, 1]"
                )

    @property
    def region(self) -> str:
        return self.location.region


@dataclass(frozen=True)
class Policy:
    policy_id: str
    position: PoliticalPosition
    title: str = ""

    def __post_init__(self) -> None:
        if not self.policy_id:
            raise ValidationError("policy_id is required")
        if not isinstance(self.position, PoliticalPosition):
            raise ValidationError(f"policy {self.policy_id}: position must be a PoliticalPosition")


@dataclass(frozen=True)
class NewsOutlet:
    outlet_id: str
    owner_id: str
    position: PoliticalPosition
    name: str = ""

    def __post_init__(self) -> None:
        if not self.outlet_id:
            raise ValidationError("outlet_id is required")
        if not isinstance(self.position, PoliticalPosition):
            raise ValidationError(f"outlet {self.outlet_id}: position must be a PoliticalPosition")


@dataclass
class Actor:
    id: str
    display_name: str
    position: Optional[PoliticalPosition] = None


class PolicyRole(str, Enum):
    PROPOSER = "proposer"
    YES = "yes"
    NO = "no"
    ABSTAIN = "abstain"


class ChangeSource(str, Enum):
    POLICY_PROPOSAL = "policy_proposal"
    POLICY_VOTE_YES = "policy_vote_yes"
    POLICY_VOTE_NO = "policy_vote_no"
    CAMPAIGN = "campaign"
    ENDORSEMENT = "endorsement"
    NEWS = "news"
    DECAY = "decay"


ROLE_SOURCES: Dict[PolicyRole, ChangeSource] = {
    PolicyRole.PROPOSER: ChangeSource.POLICY_PROPOSAL,
    PolicyRole.YES: ChangeSource.POLICY_VOTE_YES,
    PolicyRole.NO: ChangeSource.POLICY_VOTE_NO,
}


@dataclass
class ApprovalDataPoint:
    turn: int
    approval: float
    change: float
    reason: str = ""


@dataclass
class ReputationScore:
    actor_id: str
    segment_id: str
    approval: float
    history: List[ApprovalDataPoint] = field(default_factory=list)
    last_decay_turn: Optional[int] = None
    updated_turn: Optional[int] = None


@dataclass(frozen=True)
class ReputationChange:
    """Audit entry describing one applied mutation."""

    actor_id: str
    segment_id: str
    delta: float
    approval: float
    source: ChangeSource
    turn: int
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: Optional[int] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class CampaignStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


_CAMPAIGN_TRANSITIONS: Dict[CampaignStatus, Tuple[CampaignStatus, ...]] = {
    CampaignStatus.PENDING: (CampaignStatus.ACTIVE, CampaignStatus.CANCELLED),
    CampaignStatus.ACTIVE: (CampaignStatus.COMPLETED, CampaignStatus.CANCELLED),
    CampaignStatus.COMPLETED: (),
    CampaignStatus.CANCELLED: (),
}


@dataclass
class Campaign:
    actor_id: str
    segment_id: str
    start_turn: int
    end_turn: int
    boost: int
    status: CampaignStatus = CampaignStatus.PENDING
    region: Optional[str] = None
    id: Optional[int] = None
    resolved_turn: Optional[int] = None

    @property
    def is_terminal(self) -> bool:
        return not _CAMPAIGN_TRANSITIONS[self.status]

    def transition(self, new_status: CampaignStatus) -> None:
        """Move to ``new_status`` or raise if the state machine forbids it."""

        if new_status not in _CAMPAIGN_TRANSITIONS[self.status]:
            raise ConflictError(
                f"Campaign {self.id} cannot move from {self.status.value} to {new_status.value}"
            )
        self.status = new_status

    def turns_remaining(self, turn: int) -> int:
        return max(0, self.end_turn - turn)


@dataclass
class Endorsement:
    endorser_id: str
    endorsed_id: str
    turn: int
    tier: str
    representative_approval: float
    segments_affected: int = 0
    average_transfer: float = 0.0
    positive_transfers: int = 0
    negative_transfers: int = 0
    failed_segments: List[str] = field(default_factory=list)
    id: Optional[int] = None


@dataclass(frozen=True)
class Scope:
    """Selects a subset of segments by region, settlement and voting rights."""

    regions: Tuple[str, ...] = ()
    settlement: Optional[str] = None
    voters_only: bool = False

    def __post_init__(self) -> None:
        regions = self.regions
        if isinstance(regions, str):
            regions = (regions,)
        elif regions is None:
            regions = ()
        object.__setattr__(self, "regions", tuple(regions))
        if self.settlement not in (None, "urban", "rural"):
            raise ValidationError(
                f"scope settlement must be 'urban' or 'rural', got {self.settlement!r}"
            )

    @staticmethod
    def all() -> "Scope":
        return Scope()

    @staticmethod
    def for_region(region: str) -> "Scope":
        return Scope(regions=(region,))

    def matches(self, segment: PopulationSegment) -> bool:
        if self.regions and segment.location.region not in self.regions:
            return False
        if self.settlement and segment.location.settlement != self.settlement:
            return False
        if self.voters_only and not segment.can_vote:
            return False
        return True

    def describe(self) -> str:
        parts = [",".join(self.regions) if self.regions else "all"]
        if self.settlement:
            parts.append(self.settlement)
        if self.voters_only:
            parts.append("voters")
        return "/".join(parts)


@dataclass
class BatchResult:
    """Outcome of one fan-out across segments."""

    changes: List[ReputationChange] = field(default_factory=list)
    failed_segments: List[str] = field(default_factory=list)
    skipped: int = 0

    @property
    def ok(self) -> bool:
        return not self.failed_segments

    @property
    def segments_touched(self) -> int:
        return len(self.changes)

    def raise_for_failures(self) -> None:
        if self.failed_segments:
            raise PartialBatchFailure(self.failed_segments)


@dataclass
class ApprovalSummary:
    actor_id: str
    scope: str
    overall: float
    total_population: int
    segment_count: int
    by_region: Dict[str, float] = field(default_factory=dict)


@dataclass
class PolicyVoteResult:
    policy_id: str
    turn: int
    results: Dict[str, BatchResult] = field(default_factory=dict)

    @property
    def failed_segments(self) -> Dict[str, List[str]]:
        return {
            actor_id: result.failed_segments
            for actor_id, result in self.results.items()
            if result.failed_segments
        }


@dataclass(frozen=True)
class PolicyImpactPrediction:
    """Projected effect of a policy on one segment; nothing is written."""

    segment_id: str
    region: str
    population: int
    predicted_delta: float
    current_approval: float
    new_approval: float


@dataclass(frozen=True)
class SegmentTransfer:
    segment_id: str
    region: str
    population: int
    can_vote: bool
    transfer: float
    endorser_approval: Optional[float] = None

    @property
    def impact(self) -> float:
        return self.population * self.transfer


@dataclass
class EndorsementPreview:
    endorser_id: str
    endorsed_id: str
    turn: int
    tier: str
    representative_approval: float
    transfers: List[SegmentTransfer] = field(default_factory=list)
    total_segments: int = 0
    average_transfer: float = 0.0
    positive_transfers: int = 0
    negative_transfers: int = 0
    neutral_transfers: int = 0


@dataclass
class EndorsementImpact:
    endorsement: Endorsement
    transfers: List[SegmentTransfer] = field(default_factory=list)

    @property
    def average_transfer(self) -> float:
        if not self.transfers:
            return 0.0
        return sum(item.transfer for item in self.transfers) / len(self.transfers)

    @property
    def total_population_impact(self) -> float:
        return sum(abs(item.impact) for item in self.transfers)
