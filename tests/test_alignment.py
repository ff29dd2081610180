import pytest

from conftest import make_pose
from src.logic.alignment import aligned_frame_index, reference_window
from src.utils.structures import ReferenceTrack


def test_index_is_monotonic_in_playback_time():
    duration, count = 7.3, 41
    times = [i * 0.01 for i in range(730)]
    indexes = [aligned_frame_index(t, duration, count) for t in times]
    assert all(a <= b for a, b in zip(indexes, indexes[1:]))
    assert indexes[0] == 0


@pytest.mark.parametrize("count", [1, 2, 7, 100])
def test_last_instant_maps_to_last_frame(count):
    assert aligned_frame_index(10.0 - 1e-9, 10.0, count) == count - 1


def test_index_is_floored_never_rounded():
    # 0.299s into a 1s routine with 10 frames is still frame 2.
    assert aligned_frame_index(0.299, 1.0, 10) == 2
    assert aligned_frame_index(0.3, 1.0, 10) == 3


def test_out_of_range_times_are_clamped():
    assert aligned_frame_index(-1.0, 10.0, 100) == 0
    assert aligned_frame_index(25.0, 10.0, 100) == 99


@pytest.mark.parametrize(
    "time, duration, count",
    [(1.0, 0.0, 10), (1.0, -2.0, 10), (1.0, 10.0, 0), (float("nan"), 10.0, 10), (1.0, float("inf"), 10)],
)
def test_no_selectable_frame(time, duration, count):
    assert aligned_frame_index(time, duration, count) is None


def test_playback_example_selects_frame_50():
    assert aligned_frame_index(5.0, 10.0, 100) == 50


def test_reference_window_pairs_previous_frame():
    frames = [make_pose(dx=0.01 * i) for i in range(4)]
    track = ReferenceTrack(frames=frames, duration=4.0)
    index, previous, current = reference_window(track, 2.5)
    assert index == 2
    assert previous is frames[1]
    assert current is frames[2]

    index, previous, current = reference_window(track, 0.0)
    assert index == 0
    assert previous is current is frames[0]


def test_reference_window_empty_track():
    assert reference_window(ReferenceTrack(frames=(), duration=3.0), 1.0) is None
