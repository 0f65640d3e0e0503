"""Tests for the audit export tool."""
from __future__ import annotations

import json

import pytest

from approval_engine.models import NewsOutlet, Scope
from approval_engine.tools.export_audit import export_audit, main

from conftest import make_position


@pytest.fixture
def populated(service, tmp_path):
    outlet = NewsOutlet("herald", "alice", make_position((1, 0, 0), {"taxes": 1}))
    service.apply_news_impact(outlet, Scope.for_region("Auckland"), turn=1)
    service.endorse("bob", "alice", turn=2)
    return tmp_path / "approval.db"


def test_export_filters_entries(populated):
    payload = export_audit(populated, actor_id="alice", source="news")

    assert payload["count"] == 2
    assert payload["filters"] == {"actor_id": "alice", "source": "news"}
    assert {entry["segment_id"] for entry in payload["entries"]} == {"akl-urban", "akl-rural"}
    assert all(entry["source"] == "news" for entry in payload["entries"])


def test_export_missing_database(tmp_path):
    with pytest.raises(FileNotFoundError):
        export_audit(tmp_path / "missing.db")


def test_cli_writes_json_file(populated, tmp_path, capsys):
    output = tmp_path / "out" / "audit.json"

    assert main([str(populated), "--turn", "2", "--output", str(output)]) == 0

    data = json.loads(output.read_text(encoding="utf-8"))
    assert data["count"] == 5
    assert all(entry["source"] == "endorsement" for entry in data["entries"])
    assert "Wrote 5 audit entries" in capsys.readouterr().out


def test_cli_prints_to_stdout(populated, capsys):
    main([str(populated), "--actor", "alice", "--limit", "1"])
    data = json.loads(capsys.readouterr().out)
    assert data["count"] == 1
