from __future__ import annotations

import time
from typing import List, Optional, Sequence, Tuple

import cv2
import numpy as np

from src.logic.geometry import POSE_LANDMARKS
from src.utils.structures import Frame, Pose, ScoreState, TickResult, frame_bodies


POSE_CONNECTIONS = [
    ("left_shoulder", "right_shoulder"),
    ("left_shoulder", "left_elbow"),
    ("left_elbow", "left_wrist"),
    ("right_shoulder", "right_elbow"),
    ("right_elbow", "right_wrist"),
    ("left_shoulder", "left_hip"),
    ("right_shoulder", "right_hip"),
    ("left_hip", "right_hip"),
    ("left_hip", "left_knee"),
    ("left_knee", "left_ankle"),
    ("right_hip", "right_knee"),
    ("right_knee", "right_ankle"),
]

POSE_CONNECTION_INDEXES = [(POSE_LANDMARKS[a], POSE_LANDMARKS[b]) for a, b in POSE_CONNECTIONS]

# (line, dot) in BGR, one entry per player track.
PLAYER_COLORS: List[Tuple[Tuple[int, int, int], Tuple[int, int, int]]] = [
    ((0, 255, 0), (0, 0, 255)),
    ((255, 255, 0), (255, 0, 255)),
    ((0, 200, 255), (255, 128, 0)),
]
REFERENCE_COLOR = (170, 170, 170)

__all__ = [
    "FrameOverlay",
    "PLAYER_COLORS",
    "POSE_CONNECTION_INDEXES",
]


class FrameOverlay:
    def __init__(
        self,
        font_scale: float = 0.6,
        margin: int = 16,
        thickness: int = 2,
        draw_visibility_threshold: float = 0.1,
        goal_banner_seconds: float = 2.0,
    ) -> None:
        self.font = cv2.FONT_HERSHEY_SIMPLEX
        self.font_scale = font_scale
        self.margin = margin
        self.thickness = max(1, thickness)
        self.draw_visibility_threshold = draw_visibility_threshold
        self.goal_banner_seconds = goal_banner_seconds
        self._goal_shown_at: Optional[float] = None

    def notify_goal(self) -> None:
        self._goal_shown_at = time.perf_counter()

    def draw(
        self,
        frame: np.ndarray,
        live_poses: Sequence[Pose],
        reference: Optional[Frame],
        score: ScoreState,
        result: Optional[TickResult] = None,
        player_totals: Optional[dict] = None,
    ) -> np.ndarray:
        annotated = frame.copy()
        for pose in frame_bodies(reference):
            self._draw_skeleton(annotated, pose, REFERENCE_COLOR, REFERENCE_COLOR, 1)
        for idx, pose in enumerate(live_poses):
            line_color, dot_color = PLAYER_COLORS[idx % len(PLAYER_COLORS)]
            self._draw_skeleton(annotated, pose, line_color, dot_color, self.thickness)
        self._draw_hud(annotated, score, result, player_totals or {})
        self._draw_goal_banner(annotated)
        return annotated

    def _draw_skeleton(
        self,
        frame: np.ndarray,
        pose: Pose,
        line_color: Tuple[int, int, int],
        dot_color: Tuple[int, int, int],
        thickness: int,
    ) -> None:
        h, w = frame.shape[:2]
        landmarks = pose.landmarks
        threshold = self.draw_visibility_threshold

        def to_px(point: np.ndarray) -> Tuple[int, int]:
            return int(point[0] * w), int(point[1] * h)

        for start_idx, end_idx in POSE_CONNECTION_INDEXES:
            start = landmarks[start_idx]
            end = landmarks[end_idx]
            if start[3] <= threshold or end[3] <= threshold:
                continue
            cv2.line(frame, to_px(start), to_px(end), line_color, thickness, cv2.LINE_AA)
        for point in landmarks:
            if point[3] <= threshold or not np.all(np.isfinite(point[:2])):
                continue
            cv2.circle(frame, to_px(point), 3 + thickness // 2, dot_color, -1)

    def _draw_hud(self, frame: np.ndarray, score: ScoreState, result: Optional[TickResult], player_totals: dict) -> None:
        lines = [f"Score: {score.total} / {score.target}"]
        for player, total in sorted(player_totals.items()):
            lines.append(f"Player {int(player) + 1}: {total}")
        if result is not None:
            if not result.moving:
                lines.append("Hold")
            elif result.similarities:
                best = max(result.similarities.values())
                lines.append(f"Match: {best * 100:.0f}%")
        line_height = max(18, int(26 * self.font_scale))
        width = max(cv2.getTextSize(line, self.font, self.font_scale, 2)[0][0] for line in lines)
        top, left = self.margin, self.margin
        bottom = top + line_height * len(lines) + 12
        bg = frame.copy()
        cv2.rectangle(bg, (left - 12, top - 8), (left + width + 24, bottom), (10, 16, 30), -1)
        cv2.addWeighted(bg, 0.45, frame, 0.55, 0, frame)
        for idx, line in enumerate(lines):
            baseline = top + 12 + idx * line_height
            cv2.putText(frame, line, (left, baseline), self.font, self.font_scale, (255, 255, 255), 2, cv2.LINE_AA)

    def _draw_goal_banner(self, frame: np.ndarray) -> None:
        if self._goal_shown_at is None:
            return
        if time.perf_counter() - self._goal_shown_at > self.goal_banner_seconds:
            self._goal_shown_at = None
            return
        text = "GOAL REACHED!"
        scale = self.font_scale * 2.5
        (text_w, text_h), _ = cv2.getTextSize(text, self.font, scale, 4)
        h, w = frame.shape[:2]
        origin = ((w - text_w) // 2, (h + text_h) // 2)
        cv2.putText(frame, text, origin, self.font, scale, (0, 0, 0), 8, cv2.LINE_AA)
        cv2.putText(frame, text, origin, self.font, scale, (80, 255, 120), 4, cv2.LINE_AA)
