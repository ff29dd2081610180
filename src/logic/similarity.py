from __future__ import annotations

import math
from typing import Any, Mapping, Optional, Sequence, Union

import numpy as np

from src.logic.geometry import LIMB_INDEXES, SIMILARITY_INDEXES, count_visible, mean_visible_distance
from src.utils.structures import Pose

PoseLike = Union[Pose, np.ndarray, Sequence[Any]]

_MIN_LENGTH = max(SIMILARITY_INDEXES) + 1
# Guards floor() against 0.9 * 10 landing on 8.999999.
_QUANTIZE_EPSILON = 1e-9


def as_landmarks(pose: Optional[PoseLike]) -> Optional[np.ndarray]:
    """Coerce a Pose, (N, 4) array or list of keypoint records; None if it cannot be read."""
    if pose is None:
        return None
    if isinstance(pose, Pose):
        return pose.landmarks
    try:
        if len(pose) and isinstance(pose[0], Mapping):
            rows = [
                [kp.get("x"), kp.get("y"), kp.get("z") or 0.0, kp.get("confidence", kp.get("visibility", 0.0))]
                for kp in pose
            ]
            array = np.asarray(rows, dtype=np.float64)
        else:
            array = np.asarray(pose, dtype=np.float64)
    except (TypeError, ValueError, AttributeError):
        return None
    if array.ndim != 2 or array.shape[1] < 4:
        return None
    return array


class SimilarityScorer:
    """Bounded [0, 1] closeness between an observed and a reference pose.

    Mean planar distance over 15 body keypoints (nose, eyes, limbs) visible in
    both poses, mapped linearly so that ``falloff`` or more of the frame extent
    scores 0 and perfect overlap scores 1. Poses are compared in raw normalized
    image space without any registration.
    """

    def __init__(
        self,
        falloff: float = 0.2,
        visibility_threshold: float = 0.5,
        points_scale: int = 10,
        full_body_min_keypoints: int = 6,
    ) -> None:
        if falloff <= 0:
            raise ValueError("falloff must be positive")
        self.falloff = falloff
        self.visibility_threshold = visibility_threshold
        self.points_scale = points_scale
        self.full_body_min_keypoints = full_body_min_keypoints

    def similarity(self, observed: Optional[PoseLike], reference: Optional[PoseLike]) -> float:
        a = as_landmarks(observed)
        b = as_landmarks(reference)
        if a is None or b is None:
            return 0.0
        if a.shape != b.shape or a.shape[0] < _MIN_LENGTH:
            return 0.0
        mean_distance = mean_visible_distance(a, b, SIMILARITY_INDEXES, self.visibility_threshold)
        if mean_distance is None or not math.isfinite(mean_distance):
            return 0.0
        return float(min(1.0, max(0.0, 1.0 - mean_distance / self.falloff)))

    def points_for(self, similarity: float) -> int:
        if not math.isfinite(similarity):
            return 0
        clipped = min(1.0, max(0.0, similarity))
        return int(math.floor(clipped * self.points_scale + _QUANTIZE_EPSILON))

    def has_full_body(self, pose: Optional[PoseLike]) -> bool:
        """True when enough limb keypoints are visible to play (readiness check)."""
        landmarks = as_landmarks(pose)
        if landmarks is None or landmarks.shape[0] < _MIN_LENGTH:
            return False
        visible = count_visible(landmarks, LIMB_INDEXES, self.visibility_threshold)
        return visible >= self.full_body_min_keypoints
