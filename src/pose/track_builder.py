from __future__ import annotations

import math
from pathlib import Path
from typing import Callable, List, Optional

import cv2
from loguru import logger

from src.logic.disambiguation import label_reference_frame
from src.pose.observer import AsyncPoseObserver, ObserverError
from src.utils.structures import Frame, Pose, ReferenceTrack

DEFAULT_SAMPLE_FPS = 30.0

ProgressCallback = Callable[[int, int], None]


def _empty_frame(bodies: int) -> Frame:
    if bodies <= 1:
        return Pose.empty()
    return tuple(Pose.empty() for _ in range(bodies))


async def analyze_video(
    video_path: Path | str,
    observer: AsyncPoseObserver,
    sample_fps: float = DEFAULT_SAMPLE_FPS,
    bodies: int = 1,
    progress: Optional[ProgressCallback] = None,
) -> ReferenceTrack:
    """Build a ReferenceTrack by sampling a routine video at ``sample_fps``.

    Every sample yields exactly one Frame so frame density stays uniform over
    the duration; samples without a detected body become all-absent poses.
    Multi-body frames are labeled left to right.
    """
    cap = cv2.VideoCapture(str(video_path))
    if not cap.isOpened():
        raise FileNotFoundError(f"Unable to open reference video '{video_path}'")
    try:
        native_fps = float(cap.get(cv2.CAP_PROP_FPS)) or DEFAULT_SAMPLE_FPS
        frame_count = int(cap.get(cv2.CAP_PROP_FRAME_COUNT))
        duration = frame_count / native_fps if frame_count > 0 else 0.0
        if duration <= 0:
            raise ValueError(f"Reference video '{video_path}' has no measurable duration")
        total_samples = max(1, math.ceil(duration * sample_fps))
        frames: List[Frame] = []
        detected = 0
        native_index = 0
        while len(frames) < total_samples:
            ret, image = cap.read()
            if not ret:
                break
            timestamp = native_index / native_fps
            native_index += 1
            if timestamp + 1e-9 < len(frames) / sample_fps:
                continue
            frame = await _analyze_image(observer, image, bodies)
            if frame is None:
                frame = _empty_frame(bodies)
            else:
                detected += 1
            frames.append(frame)
            if progress:
                progress(len(frames), total_samples)
        while len(frames) < total_samples:
            frames.append(_empty_frame(bodies))
    finally:
        cap.release()
    logger.info(
        "Analyzed {} | duration={:.2f}s samples={} detected={}",
        video_path,
        duration,
        len(frames),
        detected,
    )
    return ReferenceTrack(frames=tuple(frames), duration=duration)


async def _analyze_image(observer: AsyncPoseObserver, image, bodies: int) -> Optional[Frame]:
    try:
        poses = await observer.observe(image, expected_bodies=bodies)
    except ObserverError as exc:
        logger.warning("Pose detection failed during analysis: {}", exc)
        return None
    if not poses:
        return None
    if bodies <= 1:
        return poses[0]
    poses = list(poses[:bodies])
    poses.extend(Pose.empty() for _ in range(bodies - len(poses)))
    return label_reference_frame(tuple(poses))
