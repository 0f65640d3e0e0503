"""Tests for data model validation."""
from __future__ import annotations

import math

import pytest

from approval_engine.errors import ConflictError, PartialBatchFailure, ValidationError
from approval_engine.models import (
    ISSUES,
    BatchResult,
    Campaign,
    CampaignStatus,
    Location,
    NewsOutlet,
    Policy,
    PoliticalCube,
    PoliticalPosition,
    SalienceWeights,
    Scope,
)

from conftest import make_position, make_segment


def test_issue_catalogue_has_thirty_five_unique_entries():
    """The issue catalogue is fixed and duplicate free."""
    assert len(ISSUES) == 35
    assert len(set(ISSUES)) == 35


def test_salience_sum_over_ten_is_rejected():
    """Salience weights summing past 10 cannot be constructed."""
    with pytest.raises(ValidationError):
        SalienceWeights({"taxes": 6.0, "healthcare": 4.5})


def test_salience_sum_of_exactly_ten_is_accepted():
    weights = SalienceWeights({"taxes": 6.0, "healthcare": 4.0})
    assert weights.total == pytest.approx(10.0)
    assert weights.weight("immigration") == 0.0


@pytest.mark.parametrize("weights", [{"taxes": -1.0}, {"taxes": math.nan}, {"taxes": "high"}])
def test_salience_rejects_bad_weights(weights):
    with pytest.raises(ValidationError):
        SalienceWeights(weights)


@pytest.mark.parametrize("value", [10.5, -10.01, math.inf, math.nan])
def test_cube_axis_outside_range_is_rejected(value):
    """Cube axes must be finite and within [-10, 10]."""
    with pytest.raises(ValidationError):
        PoliticalCube(economic=value)


def test_issue_value_outside_range_is_rejected():
    with pytest.raises(ValidationError):
        make_position(issues={"taxes": 11})


def test_unknown_issue_is_rejected():
    with pytest.raises(ValidationError):
        make_position(issues={"space_program": 1})
    with pytest.raises(ValidationError):
        SalienceWeights({"space_program": 1})


def test_position_round_trips_through_dict():
    """from_dict accepts the shape produced by to_dict."""
    position = make_position((1, -2, 3), {"healthcare": 4})
    assert PoliticalPosition.from_dict(position.to_dict()) == position


def test_position_from_dict_rejects_unknown_axis():
    with pytest.raises(ValidationError):
        PoliticalPosition.from_dict({"cube": {"economic": 1, "religious": 2}})


def test_location_requires_known_settlement():
    with pytest.raises(ValidationError):
        Location(region="Auckland", settlement="suburban")


def test_segment_rejects_negative_population():
    with pytest.raises(ValidationError):
        make_segment("bad", population=-1)


def test_policy_and_outlet_require_ids():
    with pytest.raises(ValidationError):
        Policy(policy_id="", position=make_position())
    with pytest.raises(ValidationError):
        NewsOutlet(outlet_id="", owner_id="alice", position=make_position())


def test_campaign_state_machine():
    """Campaigns move pending -> active -> completed or cancelled, then stop."""
    campaign = Campaign(actor_id="alice", segment_id="s1", start_turn=0, end_turn=12, boost=3)
    assert campaign.status is CampaignStatus.PENDING
    campaign.transition(CampaignStatus.ACTIVE)
    campaign.transition(CampaignStatus.COMPLETED)
    assert campaign.is_terminal
    with pytest.raises(ConflictError):
        campaign.transition(CampaignStatus.CANCELLED)


def test_campaign_cannot_complete_from_pending():
    campaign = Campaign(actor_id="alice", segment_id="s1", start_turn=0, end_turn=12, boost=3)
    with pytest.raises(ConflictError):
        campaign.transition(CampaignStatus.COMPLETED)
    assert campaign.turns_remaining(5) == 7
    assert campaign.turns_remaining(20) == 0


def test_scope_matching():
    urban = make_segment("a", region="Auckland")
    rural_non_voter = make_segment("b", region="Otago", settlement="rural", can_vote=False)

    assert Scope.all().matches(urban) and Scope.all().matches(rural_non_voter)
    assert Scope.for_region("Otago").matches(rural_non_voter)
    assert not Scope.for_region("Otago").matches(urban)
    assert not Scope(voters_only=True).matches(rural_non_voter)
    assert not Scope(settlement="urban").matches(rural_non_voter)
    assert Scope(regions=("Otago",), settlement="rural").describe() == "Otago/rural"


def test_scope_accepts_a_single_region_string():
    """A bare region name selects that region exactly, not by substring."""
    scope = Scope(regions="Wellington")

    assert scope.regions == ("Wellington",)
    assert scope.matches(make_segment("w", region="Wellington"))
    assert not scope.matches(make_segment("x", region="Well"))
    assert Scope(regions=["Otago", "Auckland"]).regions == ("Otago", "Auckland")
    with pytest.raises(ValidationError):
        Scope(settlement="suburban")


def test_batch_result_raises_on_failures():
    result = BatchResult(failed_segments=["b", "a"])
    assert not result.ok
    with pytest.raises(PartialBatchFailure) as excinfo:
        result.raise_for_failures()
    assert excinfo.value.failed_segments == ["a", "b"]
    BatchResult().raise_for_failures()
