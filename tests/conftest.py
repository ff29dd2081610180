from __future__ import annotations

from typing import Dict, Iterable, Optional, Tuple

import numpy as np
import pytest

from src.logic.geometry import POSE_LANDMARKS
from src.server import database
from src.utils.structures import NUM_KEYPOINTS, Pose


def base_landmarks(confidence: float = 1.0) -> np.ndarray:
    """A plausible standing body: points spread over the frame, depth 0."""
    idx = np.arange(NUM_KEYPOINTS, dtype=np.float64)
    landmarks = np.zeros((NUM_KEYPOINTS, 4), dtype=np.float64)
    landmarks[:, 0] = 0.3 + 0.4 * idx / (NUM_KEYPOINTS - 1)
    landmarks[:, 1] = 0.1 + 0.8 * idx / (NUM_KEYPOINTS - 1)
    landmarks[:, 3] = confidence
    return landmarks


def make_pose(
    dx: float = 0.0,
    dy: float = 0.0,
    confidence: float = 1.0,
    moves: Optional[Dict[str, Tuple[float, float]]] = None,
    visible: Optional[Iterable[str]] = None,
) -> Pose:
    landmarks = base_landmarks(confidence)
    landmarks[:, 0] += dx
    landmarks[:, 1] += dy
    for name, (mx, my) in (moves or {}).items():
        landmarks[POSE_LANDMARKS[name], 0] += mx
        landmarks[POSE_LANDMARKS[name], 1] += my
    if visible is not None:
        landmarks[:, 3] = 0.2
        for name in visible:
            landmarks[POSE_LANDMARKS[name], 3] = 1.0
    return Pose(landmarks)


def body_at(center_x: float, width: float = 0.1, shoulders: bool = True) -> Pose:
    """Body whose shoulder midpoint sits at ``center_x``."""
    landmarks = base_landmarks()
    landmarks[:, 0] = landmarks[:, 0] - 0.5 + center_x
    for side, offset in (("left", -width / 2), ("right", width / 2)):
        landmarks[POSE_LANDMARKS[f"{side}_shoulder"], 0] = center_x + offset
        landmarks[POSE_LANDMARKS[f"{side}_hip"], 0] = center_x + offset
    if not shoulders:
        landmarks[POSE_LANDMARKS["left_shoulder"], 3] = 0.0
        landmarks[POSE_LANDMARKS["right_shoulder"], 3] = 0.0
    return Pose(landmarks)


@pytest.fixture
def db(tmp_path, monkeypatch):
    monkeypatch.setenv(database.DATABASE_URL_ENV, f"sqlite:///{tmp_path / 'test.db'}")
    monkeypatch.setattr(database, "_ENGINE", None)
    database.init_db()
    yield tmp_path
    engine = database._ENGINE
    if engine is not None:
        engine.dispose()
