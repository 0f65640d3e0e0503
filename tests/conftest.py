"""Shared fixtures for approval engine tests."""
from __future__ import annotations

from typing import Dict, Optional, Tuple

import pytest

from approval_engine.config import get_settings
from approval_engine.models import (
    CulturalProfile,
    EconomicProfile,
    Location,
    PoliticalCube,
    PoliticalPosition,
    PopulationSegment,
    SalienceWeights,
)
from approval_engine.segments import SegmentRegistry
from approval_engine.service import ReputationService
from approval_engine.telemetry import TelemetryCollector


def make_position(
    cube: Tuple[float, float, float] = (0.0, 0.0, 0.0),
    issues: Optional[Dict[str, float]] = None,
) -> PoliticalPosition:
    return PoliticalPosition(cube=PoliticalCube(*cube), issues=dict(issues or {}))


def make_segment(
    segment_id: str,
    *,
    population: int = 1000,
    region: str = "Auckland",
    settlement: str = "urban",
    can_vote: bool = True,
    cube: Tuple[float, float, float] = (0.0, 0.0, 0.0),
    issues: Optional[Dict[str, float]] = None,
    salience: Optional[Dict[str, float]] = None,
) -> PopulationSegment:
    return PopulationSegment(
        id=segment_id,
        population=population,
        location=Location(region=region, settlement=settlement),
        economic=EconomicProfile(occupation="farmer", class_tier="middle", gender="any"),
        cultural=CulturalProfile(ethnicity="pakeha", religion="anglican"),
        can_vote=can_vote,
        default_position=make_position(cube, issues if issues is not None else {"taxes": 2.0}),
        salience=SalienceWeights(salience if salience is not None else {"taxes": 3.0}),
    )


@pytest.fixture
def segments() -> SegmentRegistry:
    """Five segments over two regions with differing stances."""
    return SegmentRegistry(
        [
            make_segment("akl-urban", population=4000, region="Auckland", cube=(2, 1, -1)),
            make_segment("akl-rural", population=1000, region="Auckland", settlement="rural",
                         cube=(-3, 2, 4), issues={"taxes": -5.0}),
            make_segment("wlg-urban", population=3000, region="Wellington", cube=(0, 0, 0),
                         issues={"taxes": 1.0, "welfare_state": 6.0},
                         salience={"taxes": 2.0, "welfare_state": 4.0}),
            make_segment("wlg-rural", population=1500, region="Wellington", settlement="rural",
                         can_vote=False, cube=(5, -2, 3), issues={"taxes": 8.0}),
            make_segment("otago", population=500, region="Otago", cube=(-6, -4, -2),
                         issues={"taxes": -8.0, "property_rights": 4.0},
                         salience={"taxes": 5.0, "property_rights": 5.0}),
        ]
    )


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def telemetry(tmp_path) -> TelemetryCollector:
    return TelemetryCollector(tmp_path / "telemetry.db")


@pytest.fixture
def service(tmp_path, segments, settings, telemetry):
    """Service with two registered actors, ``alice`` and ``bob``."""
    svc = ReputationService(
        tmp_path / "approval.db",
        segments,
        settings=settings,
        telemetry=telemetry,
    )
    svc.register_actor("alice", "Alice Aroha")
    svc.register_actor("bob", "Bob Bell")
    yield svc
    svc.close()
