"""Tests for campaign lifecycle and exclusivity."""
from __future__ import annotations

import dataclasses

import pytest

from approval_engine.errors import ConflictError, NotFoundError, ValidationError
from approval_engine.models import CampaignStatus, ChangeSource, Scope
from approval_engine.service import ReputationService


def test_start_campaign_sets_end_turn_and_boost(service):
    campaign = service.start_campaign("alice", "akl-urban", turn=3)

    assert campaign.status is CampaignStatus.ACTIVE
    assert campaign.end_turn == 15
    assert 1 <= campaign.boost <= 5
    assert campaign.region == "Auckland"
    assert campaign.id is not None


def test_second_active_campaign_for_pair_conflicts(service):
    """Only one active campaign per actor and segment; other segments stay free."""
    first = service.start_campaign("alice", "akl-urban", turn=1, boost=2)

    with pytest.raises(ConflictError):
        service.start_campaign("alice", "akl-urban", turn=2)

    other = service.start_campaign("alice", "wlg-urban", turn=2)
    rival = service.start_campaign("bob", "akl-urban", turn=2)
    assert other.status is CampaignStatus.ACTIVE
    assert rival.status is CampaignStatus.ACTIVE
    stored = service.state.get_campaign(first.id)
    assert stored.status is CampaignStatus.ACTIVE
    assert stored.boost == 2


def test_start_campaign_rejects_unknown_ids_and_bad_boost(service):
    with pytest.raises(NotFoundError):
        service.start_campaign("mallory", "akl-urban", turn=1)
    with pytest.raises(NotFoundError):
        service.start_campaign("alice", "atlantis", turn=1)
    with pytest.raises(ValidationError):
        service.start_campaign("alice", "akl-urban", turn=1, boost=9)
    assert service.list_campaigns("alice") == []


def test_complete_campaign_applies_boost_once(service):
    campaign = service.start_campaign("alice", "otago", turn=0, boost=4)

    with pytest.raises(ConflictError):
        service.complete_campaign(campaign.id, turn=11)

    change = service.complete_campaign(campaign.id, turn=12)
    assert change.source is ChangeSource.CAMPAIGN
    assert change.delta == pytest.approx(4.0)
    assert change.metadata["campaign_id"] == campaign.id
    assert service.get_approval("alice", "otago") == pytest.approx(54.0)

    assert service.complete_campaign(campaign.id, turn=13) is None
    assert service.get_approval("alice", "otago") == pytest.approx(54.0)
    stored = service.state.get_campaign(campaign.id)
    assert stored.status is CampaignStatus.COMPLETED
    assert stored.resolved_turn == 12


def test_cancelled_campaign_never_boosts(service):
    campaign = service.start_campaign("bob", "wlg-rural", turn=0, boost=5)

    cancelled = service.cancel_campaign(campaign.id, turn=4)
    assert cancelled.status is CampaignStatus.CANCELLED

    with pytest.raises(ConflictError):
        service.complete_campaign(campaign.id, turn=12)
    with pytest.raises(ConflictError):
        service.cancel_campaign(campaign.id, turn=5)
    assert service.complete_due_campaigns(12) == []
    assert service.get_approval("bob", "wlg-rural") == 50.0

    # A cancelled campaign frees the pair for a new one.
    service.start_campaign("bob", "wlg-rural", turn=5)


def test_unknown_campaign_id(service):
    with pytest.raises(NotFoundError):
        service.complete_campaign(999, turn=1)
    with pytest.raises(NotFoundError):
        service.cancel_campaign(999, turn=1)


def test_complete_due_campaigns_is_idempotent(service):
    due = service.start_campaign("alice", "akl-rural", turn=0, boost=3)
    later = service.start_campaign("alice", "akl-urban", turn=5, boost=3)

    changes = service.complete_due_campaigns(12)
    assert [change.metadata["campaign_id"] for change in changes] == [due.id]
    assert service.complete_due_campaigns(12) == []
    assert service.state.get_campaign(later.id).status is CampaignStatus.ACTIVE
    assert len(service.query_audit(source=ChangeSource.CAMPAIGN)) == 1


def test_campaign_then_decay_scenario(tmp_path, segments, settings, telemetry):
    """A +4 campaign completing at turn 2 then decaying through turn 12 lands near 53.2."""
    short = dataclasses.replace(settings, campaign_duration_turns=2)
    with ReputationService(tmp_path / "scenario.db", segments, settings=short, telemetry=telemetry) as svc:
        svc.register_actor("alice")
        svc.start_campaign("alice", "akl-urban", turn=0, boost=4)

        svc.advance_turn(1)
        report = svc.advance_turn(2)
        assert len(report.completed_campaigns) == 1
        for turn in range(3, 13):
            svc.advance_turn(turn)

        assert svc.get_approval("alice", "akl-urban") == pytest.approx(53.2, abs=0.05)
        assert svc.get_approval("alice", "akl-rural") == pytest.approx(50.0)


def test_list_campaigns_and_available_targets(service):
    service.start_campaign("alice", "akl-urban", turn=1)
    done = service.start_campaign("alice", "otago", turn=1, boost=1)
    service.cancel_campaign(done.id, turn=2)

    assert len(service.list_campaigns("alice")) == 2
    active = service.list_campaigns("alice", status="active")
    assert [campaign.segment_id for campaign in active] == ["akl-urban"]

    targets = service.available_campaign_targets("alice", Scope.for_region("Auckland"))
    assert [segment.id for segment in targets] == ["akl-rural"]

    everywhere = service.available_campaign_targets("alice")
    populations = [segment.population for segment in everywhere]
    assert populations == sorted(populations, reverse=True)
    assert "akl-urban" not in {segment.id for segment in everywhere}
