"""Tests for the service facade read API and turn orchestration."""
from __future__ import annotations

import pytest

from approval_engine.errors import NotFoundError, ValidationError
from approval_engine.models import ChangeSource, Scope


def test_register_actor_seeds_neutral_scores(service, segments):
    actor = service.register_actor("carol", "Carol Cho")

    assert actor.display_name == "Carol Cho"
    assert service.state.get_approvals("carol") == {segment_id: 50.0 for segment_id in segments.ids()}
    assert service.get_actor("carol").id == "carol"


def test_register_actor_requires_an_id(service):
    with pytest.raises(ValidationError):
        service.register_actor("")


def test_lazy_registration_reads_neutral(service):
    service.register_actor("dave", seed_scores=False)
    assert service.state.get_approvals("dave") == {}
    assert service.get_approval("dave", "otago") == 50.0


def test_unknown_ids_raise_not_found(service):
    with pytest.raises(NotFoundError):
        service.get_approval("mallory", "otago")
    with pytest.raises(NotFoundError):
        service.get_approval("alice", "atlantis")
    with pytest.raises(NotFoundError):
        service.get_history("alice", "atlantis")
    with pytest.raises(NotFoundError):
        service.get_approval_summary("mallory")


def test_summary_is_population_weighted(service):
    """Overall and per-region approval weight each segment by its population."""
    service.state.apply_change("alice", "akl-urban", lambda _s: 30.0, source=ChangeSource.NEWS, turn=1)
    service.state.apply_change("alice", "wlg-urban", lambda _s: -20.0, source=ChangeSource.NEWS, turn=1)

    summary = service.get_approval_summary("alice")

    assert summary.total_population == 10000
    assert summary.segment_count == 5
    # (80*4000 + 50*1000 + 30*3000 + 50*1500 + 50*500) / 10000
    assert summary.overall == pytest.approx(56.0)
    assert summary.by_region["Auckland"] == pytest.approx((80 * 4000 + 50 * 1000) / 5000)
    assert summary.by_region["Wellington"] == pytest.approx((30 * 3000 + 50 * 1500) / 4500)
    assert summary.by_region["Otago"] == pytest.approx(50.0)


def test_summary_for_scope_and_empty_scope(service):
    service.state.apply_change("alice", "otago", lambda _s: 10.0, source=ChangeSource.NEWS, turn=1)

    otago = service.get_approval_summary("alice", Scope.for_region("Otago"))
    assert otago.overall == pytest.approx(60.0)
    assert otago.scope == "Otago"

    empty = service.get_approval_summary("alice", Scope.for_region("Nowhere"))
    assert empty.overall == 50.0
    assert empty.total_population == 0
    assert empty.by_region == {}


def test_approval_stays_in_bounds_across_operations(service):
    for turn in range(1, 6):
        service.state.apply_change("alice", "otago", lambda _s: 40.0, source=ChangeSource.NEWS, turn=turn)
        service.advance_turn(turn)
    assert service.get_approval("alice", "otago") <= 100.0
    assert all(0.0 <= value <= 100.0 for value in service.state.get_approvals("alice").values())


def test_advance_turn_runs_campaigns_before_decay(service):
    campaign = service.start_campaign("alice", "otago", turn=0, boost=5)

    report = service.advance_turn(campaign.end_turn)

    assert [change.source for change in report.completed_campaigns] == [ChangeSource.CAMPAIGN]
    decay_change = [c for c in report.decay.changes if c.segment_id == "otago"][0]
    assert decay_change.approval == pytest.approx(55.0 - 5.0 * 0.02)
    assert report.compacted_rows is None
