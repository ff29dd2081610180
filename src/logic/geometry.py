from __future__ import annotations

from typing import Optional, Sequence, Tuple

import numpy as np


POSE_LANDMARKS = {
    "nose": 0,
    "left_eye_inner": 1,
    "left_eye": 2,
    "left_eye_outer": 3,
    "right_eye_inner": 4,
    "right_eye": 5,
    "right_eye_outer": 6,
    "left_ear": 7,
    "right_ear": 8,
    "mouth_left": 9,
    "mouth_right": 10,
    "left_shoulder": 11,
    "right_shoulder": 12,
    "left_elbow": 13,
    "right_elbow": 14,
    "left_wrist": 15,
    "right_wrist": 16,
    "left_pinky": 17,
    "right_pinky": 18,
    "left_index": 19,
    "right_index": 20,
    "left_thumb": 21,
    "right_thumb": 22,
    "left_hip": 23,
    "right_hip": 24,
    "left_knee": 25,
    "right_knee": 26,
    "left_ankle": 27,
    "right_ankle": 28,
    "left_heel": 29,
    "right_heel": 30,
    "left_foot_index": 31,
    "right_foot_index": 32,
}

LIMB_POINTS = (
    "left_shoulder",
    "right_shoulder",
    "left_elbow",
    "right_elbow",
    "left_wrist",
    "right_wrist",
    "left_hip",
    "right_hip",
    "left_knee",
    "right_knee",
    "left_ankle",
    "right_ankle",
)
SIMILARITY_POINTS = ("nose", "left_eye", "right_eye") + LIMB_POINTS
TORSO_POINTS = ("left_shoulder", "right_shoulder", "left_hip", "right_hip")


def _indexes(names: Sequence[str]) -> Tuple[int, ...]:
    return tuple(POSE_LANDMARKS[name] for name in names)


LIMB_INDEXES = _indexes(LIMB_POINTS)
SIMILARITY_INDEXES = _indexes(SIMILARITY_POINTS)
TORSO_INDEXES = _indexes(TORSO_POINTS)
SHOULDER_INDEXES = _indexes(("left_shoulder", "right_shoulder"))


def visible_mask(landmarks: np.ndarray, indexes: Sequence[int], threshold: float) -> np.ndarray:
    points = landmarks[list(indexes)]
    finite = np.all(np.isfinite(points[:, :2]), axis=1)
    return finite & (np.nan_to_num(points[:, 3], nan=0.0) > threshold)


def count_visible(landmarks: np.ndarray, indexes: Sequence[int], threshold: float) -> int:
    return int(np.count_nonzero(visible_mask(landmarks, indexes, threshold)))


def mean_visible_distance(
    a: np.ndarray,
    b: np.ndarray,
    indexes: Sequence[int],
    threshold: float,
) -> Optional[float]:
    """Mean planar distance over ``indexes`` visible in both poses, or None if none qualify."""
    mask = visible_mask(a, indexes, threshold) & visible_mask(b, indexes, threshold)
    if not np.any(mask):
        return None
    selected = np.asarray(indexes)[mask]
    distances = np.linalg.norm(a[selected, :2] - b[selected, :2], axis=1)
    return float(distances.mean())


def shoulder_midpoint_x(landmarks: np.ndarray, threshold: float, default: float = 0.5) -> float:
    mask = visible_mask(landmarks, SHOULDER_INDEXES, threshold)
    if not np.any(mask):
        return default
    xs = landmarks[np.asarray(SHOULDER_INDEXES)[mask], 0]
    return float(xs.mean())

