"""Engine configuration."""

from __future__ import annotations

import re
from dataclasses import dataclass, fields, replace

import yaml


@dataclass(frozen=True)
class EngineConfig:
    """All tunables of the engine. Every field can be overridden."""

    decay_factor: float = 0.95
    history_cap: int = 30
    window_days: int = 30
    deferral_threshold_generic: int = 3
    deferral_threshold_special: int = 2
    impact_high_threshold: int = 4
    correlation_threshold_generic: float = 60.0
    correlation_threshold_paired: float = 70.0
    synthesis_marker: str = "(Loom Type:"
    loss_log_folder: str = "40 Reflections/Labyrinth"
    monthly_review_folder: str = "00 Meta/Monthly Reviews"
    monthly_grace_days: int = 3
    monthly_top_n: int = 3
    failure_tag_field: str = "failureTags"
    status_field: str = "labyrinthStatus"
    enable_source_highlight: bool = True
    principle_archive_days: int = 30
    principle_archive_confidence: int = 4
    streak_milestone_days: int = 21

    def __post_init__(self) -> None:
        if not 0.0 < self.decay_factor < 1.0:
            raise ValueError("decay_factor must be strictly between 0 and 1")
        for name in ("history_cap", "window_days", "deferral_threshold_generic", "deferral_threshold_special"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be at least 1")
        for name in ("correlation_threshold_generic", "correlation_threshold_paired"):
            if not 0.0 <= getattr(self, name) <= 100.0:
                raise ValueError(f"{name} must be between 0 and 100")
        if not 1 <= self.impact_high_threshold <= 5:
            raise ValueError("impact_high_threshold must be between 1 and 5")


_FIELD_NAMES = {f.name for f in fields(EngineConfig)}


def _snake_case(key: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", key).lower()


def config_from_mapping(payload: dict, base: EngineConfig | None = None) -> EngineConfig:
    """Apply camelCase or snake_case overrides on top of ``base``."""

    overrides = {}
    for key, value in (payload or {}).items():
        name = _snake_case(str(key))
        if name not in _FIELD_NAMES:
            raise ValueError(f"unknown configuration key {key!r}")
        overrides[name] = value
    return replace(base or EngineConfig(), **overrides)


def load_config(file_path: str) -> EngineConfig:
    """Load an ``EngineConfig`` from a YAML mapping file."""

    with open(file_path, encoding="utf-8") as handle:
        payload = yaml.safe_load(handle)

    if payload is None:
        return EngineConfig()
    if not isinstance(payload, dict):
        raise ValueError("configuration file must contain a mapping")
    return config_from_mapping(payload)
