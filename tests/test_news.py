"""Tests for news coverage impact."""
from __future__ import annotations

import pytest

from approval_engine.alignment import alignment
from approval_engine.errors import NotFoundError, ValidationError
from approval_engine.models import ChangeSource, NewsOutlet, Scope

from conftest import make_position


@pytest.fixture
def outlet():
    return NewsOutlet(
        outlet_id="herald",
        owner_id="alice",
        position=make_position((1, 1, 0), {"taxes": 2, "welfare_state": 5}),
        name="The Herald",
    )


def test_news_defaults_to_outlet_owner_and_scales_by_magnitude(service, outlet, segments):
    result = service.apply_news_impact(outlet, Scope.all(), turn=2)

    assert len(result.changes) == len(segments)
    for change in result.changes:
        segment = segments.get(change.segment_id)
        expected = alignment(outlet.position, segment.default_position, segment.salience) * 5
        assert change.actor_id == "alice"
        assert change.source is ChangeSource.NEWS
        assert change.delta == pytest.approx(expected)
        assert change.metadata["outlet_id"] == "herald"
        assert change.metadata["scope"] == "all"


def test_news_reach_limits_segments(service, outlet):
    result = service.apply_news_impact(outlet, Scope.for_region("Wellington"), turn=2)

    assert sorted(change.segment_id for change in result.changes) == ["wlg-rural", "wlg-urban"]
    assert service.get_approval("alice", "akl-urban") == 50.0


def test_news_voter_scope_skips_non_voters(service, outlet):
    result = service.apply_news_impact(outlet, Scope(regions=("Wellington",), voters_only=True), turn=2)
    assert [change.segment_id for change in result.changes] == ["wlg-urban"]


def test_news_can_target_another_actor_with_custom_magnitude(service, outlet, segments):
    result = service.apply_news_impact(outlet, Scope.for_region("Otago"), turn=3,
                                       base_magnitude=10, actor_id="bob")

    change = result.changes[0]
    segment = segments.get("otago")
    assert change.actor_id == "bob"
    assert change.delta == pytest.approx(
        alignment(outlet.position, segment.default_position, segment.salience) * 10
    )
    assert service.query_audit(actor_id="alice") == []


def test_news_rejects_unknown_owner_and_bad_magnitude(service, outlet):
    orphan = NewsOutlet(outlet_id="rag", owner_id="nobody", position=outlet.position)
    with pytest.raises(NotFoundError):
        service.apply_news_impact(orphan, Scope.all(), turn=1)
    with pytest.raises(ValidationError):
        service.apply_news_impact(outlet, Scope.all(), turn=1, base_magnitude=-1)
    assert service.query_audit() == []
