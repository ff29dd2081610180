from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any, Dict

import yaml


@dataclass
class RuntimeConfig:
    frame: Dict[str, Any]
    mediapipe: Dict[str, Any]
    scoring: Dict[str, Any]
    movement: Dict[str, Any]
    disambiguation: Dict[str, Any]
    observer: Dict[str, Any]
    session: Dict[str, Any]
    archive: Dict[str, Any]
    display: Dict[str, Any]
    logging: Dict[str, Any]


def load_runtime_config(path: str) -> RuntimeConfig:
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    return RuntimeConfig(
        frame=data.get("frame", {}),
        mediapipe=data.get("mediapipe", {}),
        scoring=data.get("scoring", {}),
        movement=data.get("movement", {}),
        disambiguation=data.get("disambiguation", {}),
        observer=data.get("observer", {}),
        session=data.get("session", {}),
        archive=data.get("archive", {}),
        display=data.get("display", {}),
        logging=data.get("logging", {}),
    )


@dataclass
class EngineConfig:
    """Tunable constants shared by the gate, scorer, disambiguator and accumulator."""

    visibility_threshold: float = 0.5
    draw_visibility_threshold: float = 0.1
    similarity_falloff: float = 0.2
    movement_threshold: float = 0.02
    duplicate_threshold: float = 0.15
    min_torso_keypoints: int = 2
    full_body_min_keypoints: int = 6
    points_scale: int = 10
    target_score: int = 1000
    capped: bool = False
    observer_timeout: float = 0.5
    region_detection: bool = True

    @classmethod
    def from_runtime(cls, runtime_cfg: RuntimeConfig) -> "EngineConfig":
        merged: Dict[str, Any] = {}
        for section in (
            runtime_cfg.scoring,
            runtime_cfg.movement,
            runtime_cfg.disambiguation,
            runtime_cfg.observer,
        ):
            merged.update(section or {})
        defaults = cls()
        values: Dict[str, Any] = {}
        for f in fields(cls):
            if merged.get(f.name) is None:
                continue
            values[f.name] = type(getattr(defaults, f.name))(merged[f.name])
        return cls(**values)
