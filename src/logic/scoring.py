from __future__ import annotations

from typing import Callable, Optional

from loguru import logger

from src.utils.structures import ScoreState

ScoreUpdateCallback = Callable[[int, int], None]
ThresholdCallback = Callable[[], None]


class ScoreAccumulator:
    """Folds per-tick points into a session total with a one-shot goal event.

    Uncapped mode keeps counting past the target; capped mode clamps the total
    at the target and ignores further points. In both modes the threshold
    callback fires exactly once until ``reset``.
    """

    def __init__(
        self,
        target: int = 1000,
        capped: bool = False,
        on_score_update: Optional[ScoreUpdateCallback] = None,
        on_threshold_reached: Optional[ThresholdCallback] = None,
    ) -> None:
        if target <= 0:
            raise ValueError("target must be positive")
        self.state = ScoreState(total=0, target=int(target), has_triggered=False)
        self.capped = capped
        self.on_score_update = on_score_update
        self.on_threshold_reached = on_threshold_reached

    @property
    def total(self) -> int:
        return self.state.total

    @property
    def target(self) -> int:
        return self.state.target

    @property
    def has_triggered(self) -> bool:
        return self.state.has_triggered

    def add_points(self, points: int) -> bool:
        """Add ``points``; returns True when this call crossed the target for the first time."""
        if points < 0:
            raise ValueError("points must be non-negative")
        state = self.state
        if self.capped:
            state.total = min(state.total + int(points), state.target)
        else:
            state.total += int(points)
        self._notify_update()
        if state.total >= state.target and not state.has_triggered:
            state.has_triggered = True
            logger.info("Score target {} reached (total={})", state.target, state.total)
            if self.on_threshold_reached:
                self.on_threshold_reached()
            return True
        return False

    def set_target(self, target: int) -> None:
        if target <= 0:
            raise ValueError("target must be positive")
        self.state.target = int(target)
        self._notify_update()

    def reset(self) -> None:
        self.state.total = 0
        self.state.has_triggered = False
        self._notify_update()

    def _notify_update(self) -> None:
        if self.on_score_update:
            self.on_score_update(self.state.total, self.state.target)
