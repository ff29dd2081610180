import asyncio

import cv2
import numpy as np
import pytest

from conftest import body_at, make_pose
from src.logic.disambiguation import body_center_x
from src.pose import track_builder
from src.pose.observer import AsyncPoseObserver
from src.utils.structures import Pose


class FakeVideo:
    """cv2.VideoCapture stand-in whose frames carry their own index in pixel (0, 0)."""

    def __init__(self, frames, fps, opened=True):
        self.frames = frames
        self.fps = fps
        self.opened = opened
        self.position = 0

    def isOpened(self):
        return self.opened

    def get(self, prop):
        if prop == cv2.CAP_PROP_FPS:
            return self.fps
        if prop == cv2.CAP_PROP_FRAME_COUNT:
            return self.frames
        return 0.0

    def read(self):
        if self.position >= self.frames:
            return False, None
        image = np.zeros((8, 8, 3), dtype=np.uint8)
        image[0, 0, 0] = self.position
        self.position += 1
        return True, image

    def release(self):
        pass


class IndexObserver:
    """Returns a pose shifted by the frame index; frames in ``missing`` have no body."""

    def __init__(self, missing=()):
        self.missing = set(missing)
        self.seen = []

    def detect(self, image):
        index = int(image[0, 0, 0])
        self.seen.append(index)
        if index in self.missing:
            return None
        return make_pose(dx=0.001 * index)


@pytest.fixture
def video(monkeypatch):
    def install(frames, fps, opened=True):
        fake = FakeVideo(frames, fps, opened)
        monkeypatch.setattr(track_builder.cv2, "VideoCapture", lambda path: fake)
        return fake

    return install


def test_samples_uniformly_at_target_rate(video):
    video(frames=60, fps=60.0)
    observer = IndexObserver()
    progress = []
    track = asyncio.run(
        track_builder.analyze_video(
            "routine.mp4",
            AsyncPoseObserver(observer),
            sample_fps=30.0,
            progress=lambda done, total: progress.append((done, total)),
        )
    )
    assert track.duration == pytest.approx(1.0)
    assert len(track) == 30
    assert observer.seen == list(range(0, 60, 2))
    assert progress[-1] == (30, 30)


def test_missing_detections_keep_frame_density(video):
    video(frames=10, fps=10.0)
    track = asyncio.run(
        track_builder.analyze_video("routine.mp4", AsyncPoseObserver(IndexObserver(missing={3})), sample_fps=10.0)
    )
    assert len(track) == 10
    assert not track[3].confidence.any()
    assert track[4].confidence.all()


def test_short_stream_is_padded(video):
    fake = video(frames=10, fps=10.0)
    real_read = fake.read

    def truncated_read():
        if fake.position >= 6:
            return False, None
        return real_read()

    fake.read = truncated_read
    track = asyncio.run(track_builder.analyze_video("routine.mp4", AsyncPoseObserver(IndexObserver()), 10.0))
    assert len(track) == 10
    assert track[9].confidence.sum() == 0


def test_multi_body_frames_are_labeled_and_padded(video):
    video(frames=2, fps=2.0)

    class PairObserver:
        def detect_many(self, image):
            if int(image[0, 0, 0]) == 0:
                return [body_at(0.8), body_at(0.2)]
            return [body_at(0.4)]

        def detect(self, image):
            return None

    track = asyncio.run(
        track_builder.analyze_video("duet.mp4", AsyncPoseObserver(PairObserver()), sample_fps=2.0, bodies=2)
    )
    assert len(track) == 2
    first, second = track[0], track[1]
    assert [round(body_center_x(p), 3) for p in first] == [0.2, 0.8]
    assert len(second) == 2
    assert isinstance(second[0], Pose)
    assert track.body_count() == 2


def test_unopenable_video(video):
    video(frames=0, fps=0.0, opened=False)
    with pytest.raises(FileNotFoundError):
        asyncio.run(track_builder.analyze_video("missing.mp4", AsyncPoseObserver(IndexObserver())))


def test_zero_length_video(video):
    video(frames=0, fps=30.0)
    with pytest.raises(ValueError):
        asyncio.run(track_builder.analyze_video("empty.mp4", AsyncPoseObserver(IndexObserver())))
