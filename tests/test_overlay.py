import numpy as np

from conftest import body_at, make_pose
from src.ui.overlay import FrameOverlay
from src.utils.structures import PlayerAssignment, Pose, ScoreState, TickResult


def test_draw_leaves_source_frame_untouched():
    frame = np.zeros((240, 320, 3), dtype=np.uint8)
    overlay = FrameOverlay()
    result = TickResult(frame_index=3, moving=True, assignment=PlayerAssignment({0: 0}), similarities={0: 0.8})

    annotated = overlay.draw(frame, [make_pose()], make_pose(dx=0.05), ScoreState(total=42), result)

    assert annotated.shape == frame.shape
    assert annotated.any()
    assert not frame.any()


def test_hidden_keypoints_are_not_drawn():
    frame = np.zeros((120, 160, 3), dtype=np.uint8)
    overlay = FrameOverlay(margin=0)
    plain = overlay.draw(frame, [], None, ScoreState())
    hidden = overlay.draw(frame, [Pose.empty()], None, ScoreState())
    assert np.array_equal(plain, hidden)


def test_goal_banner_and_player_totals():
    frame = np.zeros((240, 320, 3), dtype=np.uint8)
    overlay = FrameOverlay(goal_banner_seconds=60.0)
    before = overlay.draw(frame, [body_at(0.3), body_at(0.7)], None, ScoreState(total=1000), player_totals={0: 600, 1: 400})
    overlay.notify_goal()
    after = overlay.draw(frame, [body_at(0.3), body_at(0.7)], None, ScoreState(total=1000), player_totals={0: 600, 1: 400})
    assert not np.array_equal(before, after)
