"""Alignment scoring between two political positions.

The score blends two views of agreement:

* issue alignment: for each issue the segment cares about (salience > 0) and
  both positions take a stance on, ``1 - |a - b| / 20``, averaged with the
  salience as weights. With no shared issue the issue alignment is neutral (0.5).
* cube alignment: one minus the Euclidean distance on the political cube,
  normalised by the cube's diagonal and clamped to [0, 1].

``combined = 0.7 * issue + 0.3 * cube`` lies in [0, 1] and is mapped onto the
signed range [-1, 1] so that 0 means no net effect.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List

from .models import AXIS_MAX, AXIS_MIN, PoliticalPosition, SalienceWeights

SCALE_SPAN = AXIS_MAX - AXIS_MIN
MAX_CUBE_DISTANCE = math.sqrt(3 * SCALE_SPAN ** 2)

DEFAULT_ISSUE_WEIGHT = 0.7
DEFAULT_CUBE_WEIGHT = 0.3
NEUTRAL_ISSUE_ALIGNMENT = 0.5


@dataclass(frozen=True)
class IssueMatch:
    issue: str
    value_a: float
    value_b: float
    salience: float
    alignment: float


@dataclass(frozen=True)
class AlignmentBreakdown:
    issue_alignment: float
    cube_distance: float
    cube_alignment: float
    combined: float
    signed: float
    issue_matches: List[IssueMatch] = field(default_factory=list)

    def summary(self) -> Dict[str, Any]:
        """Compact, JSON-friendly form stored with audit entries."""

        return {
            "signed": round(self.signed, 6),
            "issue_alignment": round(self.issue_alignment, 6),
            "cube_alignment": round(self.cube_alignment, 6),
            "issues_matched": len(self.issue_matches),
        }


def _clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))


def issue_alignment(
    position_a: PoliticalPosition,
    position_b: PoliticalPosition,
    salience: SalienceWeights,
    *,
    neutral: float = NEUTRAL_ISSUE_ALIGNMENT,
) -> tuple[float, List[IssueMatch]]:
    matches: List[IssueMatch] = []
    weighted = 0.0
    total_weight = 0.0
    for issue, weight in salience.weights.items():
        if weight <= 0:
            continue
        if issue not in position_a.issues or issue not in position_b.issues:
            continue
        a = position_a.issues[issue]
        b = position_b.issues[issue]
        score = 1.0 - abs(a - b) / SCALE_SPAN
        matches.append(IssueMatch(issue, a, b, weight, score))
        weighted += score * weight
        total_weight += weight
    if total_weight == 0:
        return neutral, matches
    return weighted / total_weight, matches


def cube_alignment(position_a: PoliticalPosition, position_b: PoliticalPosition) -> tuple[float, float]:
    """Return ``(alignment, distance)`` on the political cube."""

    distance = math.dist(position_a.cube.as_tuple(), position_b.cube.as_tuple())
    return _clamp(1.0 - distance / MAX_CUBE_DISTANCE, 0.0, 1.0), distance


def alignment_breakdown(
    position_a: PoliticalPosition,
    position_b: PoliticalPosition,
    salience: SalienceWeights,
    *,
    issue_weight: float = DEFAULT_ISSUE_WEIGHT,
    cube_weight: float = DEFAULT_CUBE_WEIGHT,
    neutral_issue: float = NEUTRAL_ISSUE_ALIGNMENT,
) -> AlignmentBreakdown:
    issues, matches = issue_alignment(position_a, position_b, salience, neutral=neutral_issue)
    cube, distance = cube_alignment(position_a, position_b)
    combined = _clamp(issue_weight * issues + cube_weight * cube, 0.0, 1.0)
    signed = _clamp((combined - 0.5) * 2.0, -1.0, 1.0)
    return AlignmentBreakdown(
        issue_alignment=issues,
        cube_distance=distance,
        cube_alignment=cube,
        combined=combined,
        signed=signed,
        issue_matches=matches,
    )


def alignment(
    position_a: PoliticalPosition,
    position_b: PoliticalPosition,
    salience: SalienceWeights,
    **weights: float,
) -> float:
    """Signed alignment in [-1, 1] between two positions."""

    return alignment_breakdown(position_a, position_b, salience, **weights).signed


__all__ = [
    "AlignmentBreakdown",
    "IssueMatch",
    "MAX_CUBE_DISTANCE",
    "alignment",
    "alignment_breakdown",
    "cube_alignment",
    "issue_alignment",
]
