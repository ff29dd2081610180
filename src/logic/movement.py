from __future__ import annotations

from typing import Optional

from src.logic.geometry import LIMB_INDEXES, mean_visible_distance
from src.utils.structures import Frame, Pose, frame_bodies


class MovementGate:
    """Suppresses scoring while the reference routine holds a static pose.

    A transition counts as movement when the mean limb displacement between two
    consecutive reference frames exceeds ``threshold`` (normalized frame units).
    Face points are ignored. With several reference bodies the routine is active
    as soon as one of them moves.
    """

    def __init__(self, threshold: float = 0.02, visibility_threshold: float = 0.5) -> None:
        self.threshold = threshold
        self.visibility_threshold = visibility_threshold

    def displacement(self, previous: Pose, current: Pose) -> Optional[float]:
        return mean_visible_distance(
            previous.landmarks,
            current.landmarks,
            LIMB_INDEXES,
            self.visibility_threshold,
        )

    def body_moved(self, previous: Pose, current: Pose) -> bool:
        moved = self.displacement(previous, current)
        if moved is None:
            return False
        return moved > self.threshold

    def has_movement(self, previous: Optional[Frame], current: Optional[Frame]) -> bool:
        previous_bodies = frame_bodies(previous)
        current_bodies = frame_bodies(current)
        # Bodies are matched by track label; a body without a counterpart cannot move.
        for prev_pose, cur_pose in zip(previous_bodies, current_bodies):
            if self.body_moved(prev_pose, cur_pose):
                return True
        return False
