from __future__ import annotations

from typing import Optional

import cv2
import numpy as np
import mediapipe as mp

from src.utils.structures import Pose


class MediaPipePoseEstimator:
    """Single-body Pose Observer backed by MediaPipe Pose (33 landmarks)."""

    def __init__(
        self,
        model_complexity: int = 1,
        smooth_landmarks: bool = True,
        enable_segmentation: bool = False,
        min_detection_confidence: float = 0.5,
        min_tracking_confidence: float = 0.5,
        static_image_mode: bool = False,
    ) -> None:
        self.pose = mp.solutions.pose.Pose(
            static_image_mode=static_image_mode,
            model_complexity=model_complexity,
            smooth_landmarks=smooth_landmarks,
            enable_segmentation=enable_segmentation,
            min_detection_confidence=min_detection_confidence,
            min_tracking_confidence=min_tracking_confidence,
        )

    @classmethod
    def from_config(cls, mediapipe_cfg: dict, static_image_mode: bool = False) -> "MediaPipePoseEstimator":
        return cls(
            model_complexity=int(mediapipe_cfg.get("model_complexity", 1)),
            smooth_landmarks=bool(mediapipe_cfg.get("smooth_landmarks", True)),
            enable_segmentation=bool(mediapipe_cfg.get("enable_segmentation", False)),
            min_detection_confidence=float(mediapipe_cfg.get("min_detection_confidence", 0.5)),
            min_tracking_confidence=float(mediapipe_cfg.get("min_tracking_confidence", 0.5)),
            static_image_mode=static_image_mode,
        )

    def detect(self, frame: np.ndarray) -> Optional[Pose]:
        rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        result = self.pose.process(rgb)
        if not result.pose_landmarks:
            return None
        landmarks = np.array(
            [[lm.x, lm.y, lm.z, lm.visibility] for lm in result.pose_landmarks.landmark],
            dtype=np.float64,
        )
        return Pose(landmarks)

    def close(self) -> None:
        self.pose.close()
