from __future__ import annotations

import math
from typing import Optional, Tuple

from src.utils.structures import Frame, ReferenceTrack


def aligned_frame_index(playback_time: float, duration: float, frame_count: int) -> Optional[int]:
    """Map a playback position to the reference frame already played.

    Frames are assumed evenly spread over ``duration``; the index is floored so
    a performer is never scored against choreography that has not played yet.
    Returns None when no frame is selectable (routine not loaded, zero
    duration or a non-finite clock).
    """
    if frame_count <= 0 or not duration > 0:
        return None
    if not math.isfinite(playback_time) or not math.isfinite(duration):
        return None
    index = math.floor(playback_time / duration * frame_count)
    return min(max(index, 0), frame_count - 1)


def reference_window(track: ReferenceTrack, playback_time: float) -> Optional[Tuple[int, Frame, Frame]]:
    """Return (index, previous frame, current frame); index 0 pairs the first frame with itself."""
    index = aligned_frame_index(playback_time, track.duration, len(track))
    if index is None:
        return None
    previous = track[index - 1] if index > 0 else track[index]
    return index, previous, track[index]
