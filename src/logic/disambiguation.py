from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

import numpy as np
from loguru import logger

from src.logic.geometry import TORSO_INDEXES, count_visible, mean_visible_distance, shoulder_midpoint_x
from src.utils.structures import Frame, PlayerAssignment, Pose, frame_bodies, is_multi_body


@dataclass(frozen=True)
class Region:
    """Crop window in normalized frame coordinates."""

    name: str
    left: float
    top: float
    right: float
    bottom: float

    @property
    def width(self) -> float:
        return self.right - self.left

    @property
    def height(self) -> float:
        return self.bottom - self.top


DETECTION_REGIONS: Tuple[Region, ...] = (
    Region("full", 0.0, 0.0, 1.0, 1.0),
    Region("left", 0.0, 0.0, 0.5, 1.0),
    Region("right", 0.5, 0.0, 1.0, 1.0),
    Region("top", 0.0, 0.0, 1.0, 0.5),
    Region("bottom", 0.0, 0.5, 1.0, 1.0),
)

RegionDetectFn = Callable[[np.ndarray], Awaitable[Optional[Pose]]]


def body_center_x(pose: Pose, visibility_threshold: float = 0.5) -> float:
    """Shoulder-midpoint x; bodies without visible shoulders sit at the center (0.5)."""
    return shoulder_midpoint_x(pose.landmarks, visibility_threshold)


def order_bodies(poses: Sequence[Pose], visibility_threshold: float = 0.5) -> List[Pose]:
    """Sort bodies left to right; ties keep their input order."""
    return sorted(poses, key=lambda pose: body_center_x(pose, visibility_threshold))


def label_reference_frame(frame: Frame, visibility_threshold: float = 0.5) -> Frame:
    """Assign reference track labels: leftmost body becomes track 0."""
    if not is_multi_body(frame):
        return frame
    return tuple(order_bodies(frame_bodies(frame), visibility_threshold))


def assign_players(
    observation: Sequence[Pose],
    reference: Frame,
    visibility_threshold: float = 0.5,
) -> PlayerAssignment:
    """Pair observed bodies with reference bodies for one tick.

    With as many observations as reference bodies, the i-th observed body from
    the left is paired with reference track i. Otherwise the closest
    horizontal centers are paired greedily and the surplus on either side is
    left unassigned.
    """
    references = frame_bodies(reference)
    if not observation or not references:
        return PlayerAssignment()
    observed_x = [body_center_x(pose, visibility_threshold) for pose in observation]
    ordered = sorted(range(len(observation)), key=lambda idx: observed_x[idx])
    if len(observation) == len(references):
        return PlayerAssignment(pairs={obs_idx: ref_idx for ref_idx, obs_idx in enumerate(ordered)})

    reference_x = [body_center_x(pose, visibility_threshold) for pose in references]
    candidates = sorted(
        (abs(observed_x[obs_idx] - reference_x[ref_idx]), rank, ref_idx, obs_idx)
        for rank, obs_idx in enumerate(ordered)
        for ref_idx in range(len(references))
    )
    pairs = {}
    used_refs = set()
    for _, _, ref_idx, obs_idx in candidates:
        if obs_idx in pairs or ref_idx in used_refs:
            continue
        pairs[obs_idx] = ref_idx
        used_refs.add(ref_idx)
    return PlayerAssignment(pairs=pairs)


def is_valid_pose(pose: Optional[Pose], visibility_threshold: float = 0.5, min_torso_keypoints: int = 2) -> bool:
    if pose is None:
        return False
    return count_visible(pose.landmarks, TORSO_INDEXES, visibility_threshold) >= min_torso_keypoints


def is_duplicate_pose(a: Pose, b: Pose, threshold: float = 0.15, visibility_threshold: float = 0.5) -> bool:
    distance = mean_visible_distance(a.landmarks, b.landmarks, TORSO_INDEXES, visibility_threshold)
    return distance is not None and distance < threshold


def crop_region(image: np.ndarray, region: Region) -> np.ndarray:
    h, w = image.shape[:2]
    x0, x1 = int(round(region.left * w)), int(round(region.right * w))
    y0, y1 = int(round(region.top * h)), int(round(region.bottom * h))
    return image[y0:y1, x0:x1]


def remap_to_frame(pose: Pose, region: Region) -> Pose:
    """Convert crop-local normalized coordinates back to full-frame normalized space."""
    landmarks = np.array(pose.landmarks, copy=True)
    landmarks[:, 0] = region.left + landmarks[:, 0] * region.width
    landmarks[:, 1] = region.top + landmarks[:, 1] * region.height
    landmarks[:, 2] = landmarks[:, 2] * region.width
    return Pose(landmarks)


async def detect_by_regions(
    detect: RegionDetectFn,
    image: np.ndarray,
    regions: Sequence[Region] = DETECTION_REGIONS,
    duplicate_threshold: float = 0.15,
    visibility_threshold: float = 0.5,
    min_torso_keypoints: int = 2,
) -> List[Pose]:
    """Split the image into overlapping crops to find several bodies with a single-body observer.

    ``detect`` is awaited once per region, in order; it returns None for
    crops with no body or whose call failed or timed out. Results are remapped
    to full-frame space, noise is dropped and near-duplicates of an already
    kept body are skipped. The returned bodies are ordered left to right.
    """
    kept: List[Pose] = []
    for region in regions:
        crop = crop_region(image, region)
        if crop.size == 0:
            continue
        local = await detect(crop)
        if local is None:
            continue
        candidate = remap_to_frame(local, region)
        if not is_valid_pose(candidate, visibility_threshold, min_torso_keypoints):
            logger.debug("Discarding {} region detection: torso not visible", region.name)
            continue
        if any(is_duplicate_pose(candidate, body, duplicate_threshold, visibility_threshold) for body in kept):
            continue
        kept.append(candidate)
    return order_bodies(kept, visibility_threshold)
