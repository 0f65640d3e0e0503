"""Population segment registry."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping

import yaml

from .errors import NotFoundError, ValidationError
from .models import (
    CulturalProfile,
    EconomicProfile,
    Location,
    PoliticalPosition,
    PopulationSegment,
    SalienceWeights,
    Scope,
)

logger = logging.getLogger(__name__)


class SegmentRegistry:
    """Holds the session's population segments, read-only once loaded."""

    def __init__(self, segments: Iterable[PopulationSegment] = ()) -> None:
        self._segments: Dict[str, PopulationSegment] = {}
        for segment in segments:
            if segment.id in self._segments:
                raise ValidationError(f"Duplicate segment id '{segment.id}'")
            self._segments[segment.id] = segment

    @classmethod
    def from_records(cls, records: Iterable[Mapping[str, Any]]) -> "SegmentRegistry":
        return cls(cls.from_dict(record) for record in records)

    @classmethod
    def load(cls, path: Path) -> "SegmentRegistry":
        """Load segments from a YAML (or JSON) document.

        The document is either a list of segment records or a mapping with a
        ``segments`` key.
        """

        with Path(path).open("r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
        if isinstance(data, Mapping):
            data = data.get("segments")
        if not isinstance(data, list):
            raise ValidationError(f"{path}: expected a list of segment records")
        registry = cls.from_records(data)
        logger.info("Loaded %d segments from %s", len(registry), path)
        return registry

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> PopulationSegment:
        if not isinstance(data, Mapping):
            raise ValidationError(f"Malformed segment record: {data!r}")
        try:
            location = data["location"]
            economic = data["economic"]
            cultural = data["cultural"]
            return PopulationSegment(
                id=str(data["id"]),
                population=data["population"],
                location=Location(
                    region=location["region"],
                    settlement=location["settlement"],
                    urban_center=location.get("urban_center"),
                ),
                economic=EconomicProfile(
                    occupation=economic["occupation"],
                    class_tier=economic["class_tier"],
                    gender=economic["gender"],
                    property_ownership=economic.get("property_ownership"),
                ),
                cultural=CulturalProfile(
                    ethnicity=cultural["ethnicity"],
                    religion=cultural["religion"],
                    indigenous=bool(cultural.get("indigenous", False)),
                    mixed=bool(cultural.get("mixed", False)),
                ),
                can_vote=bool(data.get("can_vote", False)),
                default_position=PoliticalPosition.from_dict(data.get("default_position") or {}),
                salience=SalienceWeights(dict(data.get("salience") or {})),
                special_interests=dict(data.get("special_interests") or {}),
            )
        except ValidationError:
            raise
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise ValidationError(
                f"Malformed segment record {data.get('id', '?')!r}: {exc}"
            ) from exc

    def __len__(self) -> int:
        return len(self._segments)

    def __iter__(self) -> Iterator[PopulationSegment]:
        return iter(self._segments.values())

    def __contains__(self, segment_id: object) -> bool:
        return segment_id in self._segments

    def get(self, segment_id: str) -> PopulationSegment:
        try:
            return self._segments[segment_id]
        except KeyError:
            raise NotFoundError(f"Segment {segment_id} not found") from None

    def ids(self) -> List[str]:
        return list(self._segments)

    def select(self, scope: Scope | None = None) -> List[PopulationSegment]:
        if scope is None:
            return list(self._segments.values())
        return [segment for segment in self._segments.values() if scope.matches(segment)]

    def total_population(self, scope: Scope | None = None) -> int:
        return sum(segment.population for segment in self.select(scope))


__all__ = ["SegmentRegistry"]
