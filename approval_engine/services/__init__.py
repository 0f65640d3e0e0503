"""Effect engines that mutate approval scores.

Each engine owns one kind of change and writes through ``ReputationState``;
``approval_engine.service.ReputationService`` wires them together.
"""

from .batch import BatchRunner, require_actor
from .campaigns import CampaignEngine
from .decay import DecayEngine
from .endorsements import EndorsementEngine
from .news import NewsImpactEngine
from .policy import PolicyImpactEngine

__all__ = [
    "BatchRunner",
    "CampaignEngine",
    "DecayEngine",
    "EndorsementEngine",
    "NewsImpactEngine",
    "PolicyImpactEngine",
    "require_actor",
]
