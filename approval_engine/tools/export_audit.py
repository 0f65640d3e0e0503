"""Export approval audit entries as JSON for offline analysis."""

from __future__ import annotations

import argparse
import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from ..models import ChangeSource, ReputationChange
from ..state import ReputationState


def _serialize(change: ReputationChange) -> Dict[str, Any]:
    return {
        "id": change.id,
        "actor_id": change.actor_id,
        "segment_id": change.segment_id,
        "delta": change.delta,
        "approval": change.approval,
        "source": change.source.value,
        "turn": change.turn,
        "metadata": change.metadata,
        "created_at": change.created_at.isoformat(),
    }


def export_audit(
    db_path: Path,
    *,
    actor_id: Optional[str] = None,
    segment_id: Optional[str] = None,
    turn: Optional[int] = None,
    source: Optional[str] = None,
    since_turn: Optional[int] = None,
    limit: Optional[int] = None,
) -> Dict[str, Any]:
    """Gather matching audit entries into a JSON-ready payload."""

    if not Path(db_path).exists():
        raise FileNotFoundError(f"No approval database at {db_path}")
    state = ReputationState(Path(db_path))
    entries: List[ReputationChange] = state.query_changes(
        actor_id=actor_id,
        segment_id=segment_id,
        turn=turn,
        source=ChangeSource(source) if source else None,
        since_turn=since_turn,
        limit=limit,
    )
    filters = {
        "actor_id": actor_id,
        "segment_id": segment_id,
        "turn": turn,
        "source": source,
        "since_turn": since_turn,
        "limit": limit,
    }
    return {
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "database": str(db_path),
        "filters": {key: value for key, value in filters.items() if value is not None},
        "count": len(entries),
        "total_delta": sum(entry.delta for entry in entries),
        "entries": [_serialize(entry) for entry in entries],
    }


def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Export approval audit entries as JSON.")
    parser.add_argument("db", type=Path, help="Path to the approval SQLite database")
    parser.add_argument("--actor", dest="actor_id", help="Only entries for this actor")
    parser.add_argument("--segment", dest="segment_id", help="Only entries for this segment")
    parser.add_argument("--turn", type=int, help="Only entries from this turn")
    parser.add_argument("--since-turn", type=int, help="Only entries from this turn onward")
    parser.add_argument(
        "--source",
        choices=[source.value for source in ChangeSource],
        help="Only entries with this change source",
    )
    parser.add_argument("--limit", type=int, help="Maximum number of entries")
    parser.add_argument(
        "--output",
        type=Path,
        help="Write to this file instead of stdout",
    )
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _parse_args(argv)
    payload = export_audit(
        args.db,
        actor_id=args.actor_id,
        segment_id=args.segment_id,
        turn=args.turn,
        source=args.source,
        since_turn=args.since_turn,
        limit=args.limit,
    )
    text = json.dumps(payload, indent=2, default=str)
    if args.output:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_text(text, encoding="utf-8")
        print(f"Wrote {payload['count']} audit entries to {args.output}")
    else:
        sys.stdout.write(text + "\n")
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI tool
    raise SystemExit(main())
