"""Tests for per-turn decay toward neutral."""
from __future__ import annotations

import pytest

from approval_engine.errors import ValidationError
from approval_engine.models import ChangeSource
from approval_engine.service import ReputationService
from approval_engine.state import ReputationState


def _set(service, actor_id, segment_id, value):
    service.state.apply_change(
        actor_id, segment_id, lambda score: value - score.approval, source=ChangeSource.NEWS, turn=0
    )


def test_decay_from_54_after_ten_turns(service):
    _set(service, "alice", "otago", 54.0)

    for turn in range(1, 11):
        service.apply_turn_decay(turn)

    assert service.get_approval("alice", "otago") == pytest.approx(53.268, abs=0.001)


def test_decay_is_monotonic_without_overshoot(service):
    _set(service, "alice", "akl-urban", 90.0)
    _set(service, "alice", "akl-rural", 5.0)
    high, low = [], []

    for turn in range(1, 40):
        service.apply_turn_decay(turn, rate=0.3)
        high.append(service.get_approval("alice", "akl-urban"))
        low.append(service.get_approval("alice", "akl-rural"))

    assert all(a >= b >= 50.0 for a, b in zip(high, high[1:]))
    assert all(a <= b <= 50.0 for a, b in zip(low, low[1:]))


def test_decay_same_turn_twice_is_a_noop(service):
    """Re-running decay for a processed turn changes nothing."""
    _set(service, "bob", "wlg-urban", 70.0)

    first = service.apply_turn_decay(5)
    after_first = service.get_approval("bob", "wlg-urban")
    audit_count = len(service.query_audit(source=ChangeSource.DECAY))

    second = service.apply_turn_decay(5)

    assert len(first.changes) == 1
    assert second.changes == []
    assert service.get_approval("bob", "wlg-urban") == after_first
    assert len(service.query_audit(source=ChangeSource.DECAY)) == audit_count


def test_neutral_scores_are_marked_without_audit(service):
    result = service.apply_turn_decay(1)

    assert result.changes == []
    assert result.skipped == 10
    assert service.query_audit(source=ChangeSource.DECAY) == []
    assert service.state.get_score("alice", "otago").last_decay_turn == 1


@pytest.mark.parametrize("rate", [0, 1, -0.1, 1.5])
def test_decay_rate_must_be_inside_unit_interval(service, rate):
    with pytest.raises(ValidationError):
        service.apply_turn_decay(1, rate=rate)


def test_decay_audit_records_rate(service):
    _set(service, "alice", "otago", 60.0)
    change = service.apply_turn_decay(1, rate=0.5).changes[0]
    assert change.delta == pytest.approx(-5.0)
    assert change.approval == pytest.approx(55.0)
    assert change.metadata == {"rate": 0.5}


class FlakyState(ReputationState):
    """Fails decay writes for selected segments until told otherwise."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.broken = set()

    def apply_change(self, actor_id, segment_id, delta_fn, **kwargs):
        if segment_id in self.broken and kwargs.get("source") is ChangeSource.DECAY:
            raise RuntimeError(f"disk hiccup on {segment_id}")
        return super().apply_change(actor_id, segment_id, delta_fn, **kwargs)


def test_failed_decay_records_are_retried(tmp_path, segments, settings, telemetry):
    """Records that failed keep their old marker and decay on a re-run of the same turn."""
    state = FlakyState(tmp_path / "flaky.db")
    with ReputationService(tmp_path / "flaky.db", segments, settings=settings,
                           telemetry=telemetry, state=state) as svc:
        svc.register_actor("alice")
        _set(svc, "alice", "otago", 60.0)
        _set(svc, "alice", "akl-urban", 60.0)
        state.broken = {"otago"}

        first = svc.apply_turn_decay(1)
        assert first.failed_segments == ["alice/otago"]
        assert svc.get_approval("alice", "otago") == 60.0
        assert svc.get_approval("alice", "akl-urban") == pytest.approx(59.8)

        state.broken = set()
        retry = svc.apply_turn_decay(1)
        assert [change.segment_id for change in retry.changes] == ["otago"]
        assert svc.get_approval("alice", "otago") == pytest.approx(59.8)
        assert svc.get_approval("alice", "akl-urban") == pytest.approx(59.8)
