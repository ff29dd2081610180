import pytest

from conftest import body_at, make_pose
from src.logic.movement import MovementGate

WRISTS = ("left_wrist", "right_wrist")


@pytest.fixture
def gate():
    return MovementGate(threshold=0.02, visibility_threshold=0.5)


def test_wrist_shift_above_threshold_is_movement(gate):
    previous = make_pose(visible=WRISTS)
    current = make_pose(moves={w: (0.03, 0.0) for w in WRISTS}, visible=WRISTS)
    assert gate.displacement(previous, current) == pytest.approx(0.03)
    assert gate.has_movement(previous, current)


def test_wrist_shift_below_threshold_is_hold(gate):
    previous = make_pose(visible=WRISTS)
    current = make_pose(moves={w: (0.005, 0.0) for w in WRISTS}, visible=WRISTS)
    assert not gate.has_movement(previous, current)


def test_displacement_is_averaged_over_all_visible_limbs(gate):
    previous = make_pose()
    current = make_pose(moves={w: (0.03, 0.0) for w in WRISTS})
    # Two of twelve limb points moved 0.03 -> mean 0.005.
    assert gate.displacement(previous, current) == pytest.approx(0.005)
    assert not gate.has_movement(previous, current)


def test_face_points_are_ignored(gate):
    previous = make_pose()
    current = make_pose(moves={"nose": (0.3, 0.3), "left_ear": (0.3, 0.0)})
    assert not gate.has_movement(previous, current)


def test_no_shared_visible_limbs_fails_closed(gate):
    previous = make_pose(confidence=0.3)
    current = make_pose(dx=0.2, confidence=0.3)
    assert gate.displacement(previous, current) is None
    assert not gate.has_movement(previous, current)


def test_same_frame_twice_is_hold(gate):
    pose = make_pose()
    assert not gate.has_movement(pose, pose)


def test_missing_frames_are_hold(gate):
    assert not gate.has_movement(None, make_pose())


def test_multi_body_moves_if_any_body_moves(gate):
    still_left = body_at(0.2)
    previous = (still_left, body_at(0.8))
    current = (still_left, body_at(0.85))
    assert gate.has_movement(previous, current)
    assert not gate.has_movement(previous, previous)
