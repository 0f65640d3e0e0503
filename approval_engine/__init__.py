"""Per-actor, per-segment approval tracking for turn-based political simulations."""

from .alignment import alignment, alignment_breakdown
from .config import Settings, SettingsLoader, get_settings
from .errors import (
    ApprovalError,
    ConflictError,
    NotFoundError,
    PartialBatchFailure,
    ValidationError,
)
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
    PoliticalCube,
    PoliticalPosition,
    PopulationSegment,
    ReputationChange,
    ReputationScore,
    SalienceWeights,
    Scope,
    SegmentTransfer,
)
from .segments import SegmentRegistry
from .service import ReputationService, TurnReport

__all__ = [
    "Actor",
    "ApprovalDataPoint",
    "ApprovalError",
    "ApprovalSummary",
    "BatchResult",
    "Campaign",
    "CampaignStatus",
    "ChangeSource",
    "ConflictError",
    "Endorsement",
    "EndorsementImpact",
    "EndorsementPreview",
    "NewsOutlet",
    "NotFoundError",
    "PartialBatchFailure",
    "Policy",
    "PolicyImpactPrediction",
    "PolicyRole",
    "PolicyVoteResult",
    "PoliticalCube",
    "PoliticalPosition",
    "PopulationSegment",
    "ReputationChange",
    "ReputationScore",
    "ReputationService",
    "SalienceWeights",
    "Scope",
    "SegmentRegistry",
    "SegmentTransfer",
    "Settings",
    "SettingsLoader",
    "TurnReport",
    "ValidationError",
    "alignment",
    "alignment_breakdown",
    "get_settings",
]
