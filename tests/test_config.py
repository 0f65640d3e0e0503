"""Tests for settings loading."""
from __future__ import annotations

import pytest

from approval_engine.config import DEFAULT_SETTINGS_PATH, Settings, SettingsLoader


def test_packaged_settings_match_engine_defaults():
    """The bundled YAML loads into the documented defaults."""
    settings = SettingsLoader(DEFAULT_SETTINGS_PATH).load()

    assert settings.neutral_approval == 50
    assert (settings.min_approval, settings.max_approval) == (0, 100)
    assert settings.history_capacity == 50
    assert settings.history_compaction == "on_write"
    assert settings.role_weights == {"proposer": 1.0, "yes": 0.4, "no": -0.2, "abstain": 0.0}
    assert settings.campaign_duration_turns == 12
    assert (settings.campaign_boost_min, settings.campaign_boost_max) == (1, 5)
    assert [tier.name for tier in settings.endorsement_tiers] == ["low", "mid", "high"]
    assert settings.decay_rate == pytest.approx(0.02)
    assert settings.news_base_magnitude == 5


def test_empty_document_falls_back_to_defaults():
    settings = Settings.from_dict({})
    assert settings == Settings.from_dict(None)
    assert settings.issue_weight == pytest.approx(0.7)
    assert settings.endorsement_tiers[0].transfer_min == -7
    assert settings.endorsement_tiers[-1].below is None


def test_tiers_partition_the_approval_range():
    tiers = Settings.from_dict({}).endorsement_tiers
    assert tiers[0].contains(39.9) and not tiers[0].contains(40)
    assert tiers[1].contains(59.9) and not tiers[1].contains(60)
    assert tiers[2].contains(100)


def test_invalid_compaction_mode_is_rejected():
    with pytest.raises(ValueError):
        Settings.from_dict({"history": {"compaction": "weekly"}})


def test_loader_honours_environment_override(tmp_path, monkeypatch):
    path = tmp_path / "custom.yaml"
    path.write_text("decay:\n  rate: 0.1\nconcurrency:\n  max_workers: 0\n", encoding="utf-8")
    monkeypatch.setenv("APPROVAL_ENGINE_SETTINGS", str(path))

    loader = SettingsLoader()
    settings = loader.load()

    assert loader.path == path
    assert settings.decay_rate == pytest.approx(0.1)
    assert settings.max_workers == 1
    assert loader.load() is settings


def test_clamp_approval():
    settings = Settings.from_dict({})
    assert settings.clamp_approval(120) == 100
    assert settings.clamp_approval(-3) == 0
    assert settings.clamp_approval(42.5) == 42.5
