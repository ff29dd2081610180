import math

import numpy as np
import pytest

from conftest import base_landmarks, body_at, make_pose
from src.utils.structures import (
    PlayerAssignment,
    Pose,
    ReferenceTrack,
    frame_bodies,
    is_multi_body,
)


def test_pose_requires_33_keypoints():
    with pytest.raises(ValueError):
        Pose(np.zeros((17, 4)))


def test_pose_is_immutable():
    pose = make_pose()
    with pytest.raises(ValueError):
        pose.landmarks[0, 0] = 0.9


def test_pose_copies_source_array():
    landmarks = base_landmarks()
    pose = Pose(landmarks)
    landmarks[0, 0] = 0.99
    assert pose.landmarks[0, 0] != 0.99


def test_keypoint_accessors():
    pose = make_pose()
    nose = pose.keypoint(0)
    assert nose.x == pytest.approx(0.3)
    assert nose.confidence == 1.0
    assert nose.is_visible(0.5)
    assert not Pose.empty().keypoint(0).is_visible(0.1)
    assert Pose.empty().keypoint(0).z is None


def test_records_accept_visibility_alias_and_missing_depth():
    records = [{"x": 0.1, "y": 0.2, "visibility": 0.7} for _ in range(33)]
    pose = Pose.from_records(records)
    assert pose.confidence[0] == pytest.approx(0.7)
    assert math.isnan(pose.landmarks[0, 2])
    assert pose.to_records()[0] == {"x": 0.1, "y": 0.2, "z": None, "confidence": 0.7}


def test_multi_body_frames():
    single = make_pose()
    pair = (body_at(0.2), body_at(0.8))
    assert not is_multi_body(single)
    assert is_multi_body(pair)
    assert not is_multi_body(())
    assert frame_bodies(single) == [single]
    assert frame_bodies(None) == []
    assert len(frame_bodies(pair)) == 2


def test_reference_track_serialization_shape():
    track = ReferenceTrack(frames=[make_pose(), [body_at(0.2), body_at(0.8)]], duration=2.0)
    assert isinstance(track.frames, tuple)
    assert track.is_multi_body
    assert track.body_count() == 2

    records = track.to_records()
    assert len(records[0]) == 33 and isinstance(records[0][0], dict)
    assert len(records[1]) == 2 and len(records[1][0]) == 33

    restored = ReferenceTrack.from_records(records, duration=2.0)
    assert len(restored) == 2
    assert isinstance(restored[0], Pose)
    assert np.allclose(restored[1][1].xy, track[1][1].xy)


def test_player_assignment_helpers():
    assignment = PlayerAssignment(pairs={1: 0, 0: 2})
    assert len(assignment) == 2
    assert assignment.items() == [(1, 0), (0, 2)]
    assert assignment.unassigned_references(3) == [1]
