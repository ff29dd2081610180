from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

NUM_KEYPOINTS = 33
KEYPOINT_FIELDS = ("x", "y", "z", "confidence")


@dataclass(frozen=True)
class Keypoint:
    x: float
    y: float
    z: Optional[float]
    confidence: float

    def is_visible(self, threshold: float) -> bool:
        return self.confidence > threshold


@dataclass(frozen=True, eq=False)
class Pose:
    """Immutable set of 33 keypoints for one body.

    ``landmarks`` has shape (33, 4) holding x, y, z, confidence with x/y
    normalized to the frame size. A missing depth estimate is stored as NaN.
    """

    landmarks: np.ndarray  # shape: (33, 4) -> x, y, z, confidence

    def __post_init__(self) -> None:
        array = np.array(self.landmarks, dtype=np.float64)
        if array.shape != (NUM_KEYPOINTS, 4):
            raise ValueError(f"Pose requires shape ({NUM_KEYPOINTS}, 4), got {array.shape}")
        array.flags.writeable = False
        object.__setattr__(self, "landmarks", array)

    def __len__(self) -> int:
        return NUM_KEYPOINTS

    def keypoint(self, idx: int) -> Keypoint:
        x, y, z, confidence = self.landmarks[idx]
        return Keypoint(float(x), float(y), None if np.isnan(z) else float(z), float(confidence))

    def keypoints(self) -> List[Keypoint]:
        return [self.keypoint(idx) for idx in range(NUM_KEYPOINTS)]

    @property
    def xy(self) -> np.ndarray:
        return self.landmarks[:, :2]

    @property
    def confidence(self) -> np.ndarray:
        return self.landmarks[:, 3]

    @classmethod
    def empty(cls) -> "Pose":
        """A pose with every keypoint absent (confidence 0)."""
        landmarks = np.zeros((NUM_KEYPOINTS, 4), dtype=np.float64)
        landmarks[:, 2] = np.nan
        return cls(landmarks)

    @classmethod
    def from_records(cls, records: Sequence[Mapping[str, Any]]) -> "Pose":
        # MediaPipe exports name the confidence field "visibility".
        rows = []
        for record in records:
            confidence = record.get("confidence", record.get("visibility", 0.0))
            z = record.get("z")
            rows.append(
                [
                    float(record["x"]),
                    float(record["y"]),
                    np.nan if z is None else float(z),
                    float(confidence if confidence is not None else 0.0),
                ]
            )
        return cls(np.array(rows, dtype=np.float64).reshape(-1, 4))

    def to_records(self) -> List[Dict[str, Optional[float]]]:
        return [
            {"x": kp.x, "y": kp.y, "z": kp.z, "confidence": kp.confidence}
            for kp in self.keypoints()
        ]


Frame = Union[Pose, Sequence[Pose]]


def is_multi_body(frame: Frame) -> bool:
    return not isinstance(frame, Pose) and len(frame) > 0


def frame_bodies(frame: Optional[Frame]) -> List[Pose]:
    if frame is None:
        return []
    if isinstance(frame, Pose):
        return [frame]
    return list(frame)


def frame_to_records(frame: Frame) -> List[Any]:
    if isinstance(frame, Pose):
        return frame.to_records()
    return [pose.to_records() for pose in frame]


def frame_from_records(records: Sequence[Any]) -> Frame:
    if records and isinstance(records[0], (list, tuple)):
        return tuple(Pose.from_records(body) for body in records)
    return Pose.from_records(records)


@dataclass(frozen=True)
class ReferenceTrack:
    """Precomputed routine: one Frame per uniformly spaced sample of ``duration`` seconds."""

    frames: Tuple[Frame, ...]
    duration: float

    def __post_init__(self) -> None:
        frozen = tuple(frame if isinstance(frame, Pose) else tuple(frame) for frame in self.frames)
        object.__setattr__(self, "frames", frozen)

    def __len__(self) -> int:
        return len(self.frames)

    def __getitem__(self, idx: int) -> Frame:
        return self.frames[idx]

    def __iter__(self) -> Iterator[Frame]:
        return iter(self.frames)

    @property
    def is_multi_body(self) -> bool:
        return any(is_multi_body(frame) for frame in self.frames)

    def body_count(self) -> int:
        return max((len(frame_bodies(frame)) for frame in self.frames), default=0)

    def to_records(self) -> List[Any]:
        return [frame_to_records(frame) for frame in self.frames]

    @classmethod
    def from_records(cls, records: Sequence[Any], duration: float) -> "ReferenceTrack":
        return cls(frames=tuple(frame_from_records(frame) for frame in records), duration=float(duration))


@dataclass
class PlayerAssignment:
    """Observation index -> reference body index, valid for a single tick."""

    pairs: Dict[int, int] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.pairs)

    def items(self) -> List[Tuple[int, int]]:
        return sorted(self.pairs.items(), key=lambda item: item[1])

    def unassigned_references(self, reference_count: int) -> List[int]:
        assigned = set(self.pairs.values())
        return [idx for idx in range(reference_count) if idx not in assigned]


@dataclass
class ScoreState:
    total: int = 0
    target: int = 1000
    has_triggered: bool = False


@dataclass
class TickResult:
    frame_index: int
    moving: bool
    assignment: PlayerAssignment = field(default_factory=PlayerAssignment)
    similarities: Dict[int, float] = field(default_factory=dict)
    points: Dict[int, int] = field(default_factory=dict)
    total: int = 0
    threshold_reached: bool = False

    @property
    def awarded(self) -> int:
        return sum(self.points.values())
