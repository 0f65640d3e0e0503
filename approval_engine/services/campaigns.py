"""Timed campaigns that boost one segment's approval on completion."""

from __future__ import annotations

import logging
import sqlite3
from typing import List, Optional

from ..config import Settings
from ..errors import ApprovalError, ConflictError, NotFoundError, ValidationError
from ..models import (
    Campaign,
    CampaignStatus,
    ChangeSource,
    PopulationSegment,
    ReputationChange,
    Scope,
)
from ..rng import DeterministicRNG
from ..segments import SegmentRegistry
from ..state import ReputationState
from ..telemetry import TelemetryCollector
from .batch import require_actor

logger = logging.getLogger(__name__)


class CampaignEngine:
    """Starts, completes and cancels campaigns.

    The store's partial unique index keeps at most one active campaign per
    (actor, segment). Completion flips the status and applies the boost in the
    same transaction, so a repeated completion never boosts twice.
    """

    def __init__(
        self,
        state: ReputationState,
        segments: SegmentRegistry,
        settings: Settings,
        rng: DeterministicRNG,
        telemetry: Optional[TelemetryCollector] = None,
    ) -> None:
        self._state = state
        self._segments = segments
        self._settings = settings
        self._rng = rng
        self._telemetry = telemetry

    def _require(self, campaign_id: int) -> Campaign:
        campaign = self._state.get_campaign(campaign_id)
        if campaign is None:
            raise NotFoundError(f"Campaign {campaign_id} not found")
        return campaign

    def start(self, actor_id: str, segment_id: str, turn: int, boost: Optional[int] = None) -> Campaign:
        require_actor(self._state, actor_id)
        segment = self._segments.get(segment_id)
        low, high = self._settings.campaign_boost_min, self._settings.campaign_boost_max
        if boost is None:
            boost = self._rng.derive("campaign", actor_id, segment_id, turn).randint(low, high)
        elif isinstance(boost, bool) or not isinstance(boost, int) or not low <= boost <= high:
            raise ValidationError(f"Campaign boost must be an integer in [{low}, {high}], got {boost!r}")

        campaign = Campaign(
            actor_id=actor_id,
            segment_id=segment_id,
            start_turn=turn,
            end_turn=turn + self._settings.campaign_duration_turns,
            boost=boost,
            region=segment.region,
        )
        campaign.transition(CampaignStatus.ACTIVE)
        self._state.insert_campaign(campaign)
        logger.info(
            "Campaign %s started: %s -> %s (boost %d, ends turn %d)",
            campaign.id,
            actor_id,
            segment_id,
            boost,
            campaign.end_turn,
        )
        if self._telemetry:
            self._telemetry.track_campaign("started", actor_id, segment_id, boost)
        return campaign

    def complete(self, campaign_id: int, turn: int) -> Optional[ReputationChange]:
        campaign = self._require(campaign_id)
        if campaign.status is CampaignStatus.COMPLETED:
            logger.debug("Campaign %s already completed", campaign_id)
            return None
        if campaign.status is not CampaignStatus.ACTIVE:
            raise ConflictError(f"Campaign {campaign_id} is {campaign.status.value} and cannot complete")
        if campaign.end_turn > turn:
            raise ConflictError(
                f"Campaign {campaign_id} ends at turn {campaign.end_turn}, "
                f"{campaign.turns_remaining(turn)} turn(s) after turn {turn}"
            )

        def claim(conn: sqlite3.Connection) -> bool:
            return self._state.set_campaign_status(
                campaign_id,
                expected=CampaignStatus.ACTIVE,
                status=CampaignStatus.COMPLETED,
                turn=turn,
                conn=conn,
            )

        change = self._state.apply_change(
            campaign.actor_id,
            campaign.segment_id,
            lambda _score: float(campaign.boost),
            source=ChangeSource.CAMPAIGN,
            turn=turn,
            metadata={
                "campaign_id": campaign_id,
                "boost": campaign.boost,
                "start_turn": campaign.start_turn,
                "end_turn": campaign.end_turn,
                "region": campaign.region,
            },
            claim=claim,
        )
        if change is None:
            logger.debug("Campaign %s was completed concurrently", campaign_id)
            return None
        campaign.transition(CampaignStatus.COMPLETED)
        campaign.resolved_turn = turn
        if self._telemetry:
            self._telemetry.track_campaign(
                "completed", campaign.actor_id, campaign.segment_id, campaign.boost
            )
        return change

    def complete_due(self, turn: int) -> List[ReputationChange]:
        due = sorted(
            self._state.list_campaigns(status=CampaignStatus.ACTIVE, due_by_turn=turn),
            key=lambda campaign: campaign.id,
        )
        changes: List[ReputationChange] = []
        for campaign in due:
            try:
                change = self.complete(campaign.id, turn)
            except (ApprovalError, sqlite3.Error) as exc:
                logger.exception("Failed to complete campaign %s", campaign.id)
                if self._telemetry:
                    self._telemetry.track_error(
                        type(exc).__name__,
                        operation="campaign.complete",
                        segment_id=campaign.segment_id,
                        error_details=str(exc),
                    )
                continue
            if change is not None:
                changes.append(change)
        if due:
            logger.info("Completed %d of %d due campaigns at turn %d", len(changes), len(due), turn)
        return changes

    def cancel(self, campaign_id: int, turn: int) -> Campaign:
        campaign = self._require(campaign_id)
        if campaign.is_terminal:
            raise ConflictError(f"Campaign {campaign_id} is {campaign.status.value} and cannot be cancelled")
        if not self._state.set_campaign_status(
            campaign_id,
            expected=CampaignStatus.ACTIVE,
            status=CampaignStatus.CANCELLED,
            turn=turn,
        ):
            raise ConflictError(f"Campaign {campaign_id} changed state while cancelling")
        campaign.transition(CampaignStatus.CANCELLED)
        campaign.resolved_turn = turn
        logger.info("Campaign %s cancelled at turn %d", campaign_id, turn)
        if self._telemetry:
            self._telemetry.track_campaign("cancelled", campaign.actor_id, campaign.segment_id)
        return campaign

    def list_campaigns(self, actor_id: str, status: Optional[CampaignStatus] = None) -> List[Campaign]:
        require_actor(self._state, actor_id)
        return self._state.list_campaigns(
            actor_id=actor_id,
            status=CampaignStatus(status) if status is not None else None,
        )

    def available_targets(self, actor_id: str, scope: Optional[Scope] = None) -> List[PopulationSegment]:
        """Segments in ``scope`` the actor is not already campaigning in."""

        require_actor(self._state, actor_id)
        busy = {
            campaign.segment_id
            for campaign in self._state.list_campaigns(actor_id=actor_id, status=CampaignStatus.ACTIVE)
        }
        targets = [segment for segment in self._segments.select(scope) if segment.id not in busy]
        targets.sort(key=lambda segment: (-segment.population, segment.id))
        return targets


__all__ = ["CampaignEngine"]
