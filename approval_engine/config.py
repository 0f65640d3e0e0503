"""Configuration loading utilities for the approval engine."""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml


DEFAULT_SETTINGS_PATH = Path(__file__).parent / "data" / "settings.yaml"
SETTINGS_ENV_VAR = "APPROVAL_ENGINE_SETTINGS"

_COMPACTION_MODES = ("on_write", "batched")


@dataclass(frozen=True)
class EndorsementTier:
    """Approval bracket and the transfer range it samples from."""

    name: str
    below: Optional[float]
    transfer_min: int
    transfer_max: int

    def contains(self, approval: float) -> bool:
        return self.below is None or approval < self.below


@dataclass(frozen=True)
class Settings:
    """Typed view over the settings YAML file."""

    neutral_approval: float
    min_approval: float
    max_approval: float
    history_capacity: int
    history_compaction: str
    compaction_interval_turns: int
    issue_weight: float
    cube_weight: float
    neutral_issue_alignment: float
    max_policy_impact: float
    role_weights: Dict[str, float]
    campaign_duration_turns: int
    campaign_boost_min: int
    campaign_boost_max: int
    endorsement_tiers: Tuple[EndorsementTier, ...]
    news_base_magnitude: float
    decay_rate: float
    max_workers: int
    rng_seed: int

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "Settings":
        data = data or {}
        approval_cfg = data.get("approval", {})
        history_cfg = data.get("history", {})
        alignment_cfg = data.get("alignment", {})
        policy_cfg = data.get("policy", {})
        campaign_cfg = data.get("campaign", {})
        boost_cfg = campaign_cfg.get("boost", {})
        endorsement_cfg = data.get("endorsement", {})
        role_weights = {
            "proposer": 1.0,
            "yes": 0.4,
            "no": -0.2,
            "abstain": 0.0,
        }
        role_weights.update(
            {str(k): float(v) for k, v in policy_cfg.get("role_weights", {}).items()}
        )
        tiers_cfg = endorsement_cfg.get("tiers") or [
            {"name": "low", "below": 40, "transfer": [-7, 1]},
            {"name": "mid", "below": 60, "transfer": [-5, 5]},
            {"name": "high", "below": None, "transfer": [-1, 7]},
        ]
        tiers = tuple(
            EndorsementTier(
                name=str(tier["name"]),
                below=float(tier["below"]) if tier.get("below") is not None else None,
                transfer_min=int(tier["transfer"][0]),
                transfer_max=int(tier["transfer"][1]),
            )
            for tier in tiers_cfg
        )
        compaction = str(history_cfg.get("compaction", "on_write"))
        if compaction not in _COMPACTION_MODES:
            raise ValueError(
                f"history.compaction must be one of {_COMPACTION_MODES}, got {compaction!r}"
            )
        return Settings(
            neutral_approval=float(approval_cfg.get("neutral", 50)),
            min_approval=float(approval_cfg.get("minimum", 0)),
            max_approval=float(approval_cfg.get("maximum", 100)),
            history_capacity=int(history_cfg.get("capacity", 50)),
            history_compaction=compaction,
            compaction_interval_turns=int(history_cfg.get("interval_turns", 3)),
            issue_weight=float(alignment_cfg.get("issue_weight", 0.7)),
            cube_weight=float(alignment_cfg.get("cube_weight", 0.3)),
            neutral_issue_alignment=float(alignment_cfg.get("neutral_issue_alignment", 0.5)),
            max_policy_impact=float(policy_cfg.get("max_impact", 100)),
            role_weights=role_weights,
            campaign_duration_turns=int(campaign_cfg.get("duration_turns", 12)),
            campaign_boost_min=int(boost_cfg.get("min", 1)),
            campaign_boost_max=int(boost_cfg.get("max", 5)),
            endorsement_tiers=tiers,
            news_base_magnitude=float(data.get("news", {}).get("base_magnitude", 5)),
            decay_rate=float(data.get("decay", {}).get("rate", 0.02)),
            max_workers=max(1, int(data.get("concurrency", {}).get("max_workers", 4))),
            rng_seed=int(data.get("rng", {}).get("seed", 42)),
        )

    def clamp_approval(self, value: float) -> float:
        return max(self.min_approval, min(self.max_approval, value))


class SettingsLoader:
    """Loads and caches settings from YAML configuration files."""

    def __init__(self, path: Path | None = None) -> None:
        env_path = os.getenv(SETTINGS_ENV_VAR)
        self._path = path or (Path(env_path) if env_path else DEFAULT_SETTINGS_PATH)
        self._cache: Settings | None = None

    @property
    def path(self) -> Path:
        return self._path

    def load(self, force: bool = False) -> Settings:
        if self._cache is not None and not force:
            return self._cache
        with self._path.open("r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
        self._cache = Settings.from_dict(data)
        return self._cache


def get_settings() -> Settings:
    """Convenience accessor for default settings."""

    return SettingsLoader().load()


__all__ = ["EndorsementTier", "Settings", "SettingsLoader", "get_settings"]
