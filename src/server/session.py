from __future__ import annotations

import asyncio
import contextlib
import datetime as dt
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncGenerator, Callable, Dict, List, Optional, Sequence

import cv2
import numpy as np
from loguru import logger

from src.logic.alignment import reference_window
from src.logic.disambiguation import assign_players
from src.logic.movement import MovementGate
from src.logic.scoring import ScoreAccumulator, ScoreUpdateCallback, ThresholdCallback
from src.logic.similarity import SimilarityScorer
from src.pose.observer import AsyncPoseObserver, ObserverError, PoseObserver
from src.utils.config import EngineConfig, RuntimeConfig, load_runtime_config
from src.utils.profiler import TickMeter
from src.utils.structures import Pose, ReferenceTrack, TickResult, frame_bodies

from .database import PoseArchive, record_session

DEFAULT_RUNTIME_CONFIG = Path("configs/runtime.yaml")


@dataclass
class SessionConfig:
    track_id: str
    target_score: Optional[int] = None
    capped: Optional[bool] = None
    players: Optional[int] = None
    camera_index: int = 0
    camera_source: Optional[str] = None
    wait_for_players: bool = True


@dataclass
class SessionState:
    """Everything one play session mutates; owned by the caller and passed into each tick."""

    track: ReferenceTrack
    accumulator: ScoreAccumulator
    players: int = 1
    running: bool = True
    ticks: int = 0
    scored_ticks: int = 0
    ready_streak: int = 0
    player_totals: Dict[int, int] = field(default_factory=dict)
    last_result: Optional[TickResult] = None
    started_at: dt.datetime = field(default_factory=lambda: dt.datetime.now(dt.timezone.utc))
    ended_at: Optional[dt.datetime] = None

    @property
    def total(self) -> int:
        return self.accumulator.total

    def stop(self) -> None:
        if self.running:
            self.running = False
            self.ended_at = dt.datetime.now(dt.timezone.utc)


class SessionAlreadyRunningError(RuntimeError):
    pass


class SessionNotRunningError(RuntimeError):
    pass


class TrackNotFoundError(LookupError):
    pass


class MatchEngine:
    """Per-tick pipeline: align, gate, observe, pair bodies, score, accumulate."""

    def __init__(self, config: Optional[EngineConfig] = None, observer: Optional[AsyncPoseObserver] = None) -> None:
        self.config = config or EngineConfig()
        self.observer = observer
        self.gate = MovementGate(self.config.movement_threshold, self.config.visibility_threshold)
        self.scorer = SimilarityScorer(
            falloff=self.config.similarity_falloff,
            visibility_threshold=self.config.visibility_threshold,
            points_scale=self.config.points_scale,
            full_body_min_keypoints=self.config.full_body_min_keypoints,
        )

    def new_state(
        self,
        track: ReferenceTrack,
        target: Optional[int] = None,
        capped: Optional[bool] = None,
        players: Optional[int] = None,
        on_score_update: Optional[ScoreUpdateCallback] = None,
        on_threshold_reached: Optional[ThresholdCallback] = None,
    ) -> SessionState:
        accumulator = ScoreAccumulator(
            target=target if target is not None else self.config.target_score,
            capped=self.config.capped if capped is None else capped,
            on_score_update=on_score_update,
            on_threshold_reached=on_threshold_reached,
        )
        return SessionState(track=track, accumulator=accumulator, players=players or max(1, track.body_count()))

    async def observe(self, state: SessionState, image: np.ndarray) -> Optional[List[Pose]]:
        """LiveObservation for this tick, or None when the observer failed."""
        if self.observer is None:
            return None
        try:
            return await self.observer.observe(image, expected_bodies=state.players)
        except ObserverError as exc:
            logger.warning("Tick skipped: {}", exc)
            return None

    def update_readiness(self, state: SessionState, observation: Sequence[Pose], required: int) -> bool:
        """Track consecutive ticks where every expected player shows a full body."""
        full_bodies = sum(1 for pose in observation if self.scorer.has_full_body(pose))
        if full_bodies >= state.players:
            state.ready_streak += 1
        else:
            state.ready_streak = 0
        return state.ready_streak >= required

    async def tick(
        self,
        state: SessionState,
        playback_time: float,
        image: Optional[np.ndarray] = None,
        observation: Optional[Sequence[Pose]] = None,
    ) -> Optional[TickResult]:
        """Run one comparison tick.

        Returns None when the tick produced no result: the session is stopped,
        no reference frame is selectable, or the observer failed. Otherwise
        returns a TickResult; points are only awarded on ticks where the
        reference routine is moving.
        """
        if not state.running:
            return None
        window = reference_window(state.track, playback_time)
        if window is None:
            return None
        index, previous, current = window
        if not self.gate.has_movement(previous, current):
            result = TickResult(frame_index=index, moving=False, total=state.total)
            state.ticks += 1
            state.last_result = result
            return result

        if observation is None:
            if image is None:
                return None
            observation = await self.observe(state, image)
            if observation is None:
                return None
            if not state.running:
                logger.debug("Dropping tick at frame {}: session stopped", index)
                return None

        references = frame_bodies(current)
        assignment = assign_players(observation, current, self.config.visibility_threshold)
        result = TickResult(frame_index=index, moving=True, assignment=assignment)
        for obs_idx, ref_idx in assignment.items():
            similarity = self.scorer.similarity(observation[obs_idx], references[ref_idx])
            result.similarities[ref_idx] = similarity
            result.points[ref_idx] = self.scorer.points_for(similarity)

        for ref_idx, points in sorted(result.points.items()):
            if points <= 0:
                continue
            state.player_totals[ref_idx] = state.player_totals.get(ref_idx, 0) + points
            if state.accumulator.add_points(points):
                result.threshold_reached = True
        result.total = state.total
        state.ticks += 1
        state.scored_ticks += 1
        state.last_result = result
        return result


ObserverFactory = Callable[[RuntimeConfig, bool], PoseObserver]
CaptureFactory = Callable[[object], cv2.VideoCapture]


def _default_observer(runtime_cfg: RuntimeConfig, static_image_mode: bool) -> PoseObserver:
    from src.pose.mediapipe_pose import MediaPipePoseEstimator

    return MediaPipePoseEstimator.from_config(runtime_cfg.mediapipe, static_image_mode=static_image_mode)


class GameSession:
    """Async manager that runs the camera comparison loop and streams score events via an asyncio queue."""

    def __init__(
        self,
        runtime_config_path: Path | str = DEFAULT_RUNTIME_CONFIG,
        archive: Optional[PoseArchive] = None,
        observer_factory: ObserverFactory = _default_observer,
        capture_factory: CaptureFactory = cv2.VideoCapture,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.runtime_config_path = Path(runtime_config_path)
        self.archive = archive or PoseArchive()
        self.observer_factory = observer_factory
        self.capture_factory = capture_factory
        self.clock = clock
        self._async_lock = asyncio.Lock()
        self._task: Optional[asyncio.Task[None]] = None
        self._state: Optional[SessionState] = None
        self._config: Optional[SessionConfig] = None
        self._observer: Optional[AsyncPoseObserver] = None
        self._event_queue: Optional[asyncio.Queue[Dict[str, object]]] = None
        self._meter = TickMeter()
        self._status: Dict[str, object] = {"running": False, "message": "idle"}

    @property
    def state(self) -> Optional[SessionState]:
        return self._state

    async def start(self, config: SessionConfig) -> SessionState:
        async with self._async_lock:
            if self._state is not None and self._state.running:
                raise SessionAlreadyRunningError("A session is already running")
            runtime_cfg = load_runtime_config(str(self.runtime_config_path))
            engine_cfg = EngineConfig.from_runtime(runtime_cfg)
            track = await asyncio.to_thread(self.archive.load, config.track_id)
            if track is None or len(track) == 0:
                raise TrackNotFoundError(f"No reference track '{config.track_id}'; run the analysis first")
            queue_size = int(runtime_cfg.session.get("score_queue_size", 8))
            self._event_queue = asyncio.Queue(maxsize=max(1, queue_size))
            players = config.players or max(1, track.body_count())
            observer = self.observer_factory(runtime_cfg, players > 1)
            self._observer = AsyncPoseObserver.from_config(observer, engine_cfg)
            engine = MatchEngine(engine_cfg, self._observer)
            state = engine.new_state(
                track,
                target=config.target_score,
                capped=config.capped,
                players=players,
                on_score_update=self._on_score_update,
                on_threshold_reached=self._on_threshold_reached,
            )
            self._state = state
            self._config = config
            self._meter = TickMeter()
            self._status = {
                "running": True,
                "message": "waiting for players" if config.wait_for_players else "session running",
                "trackId": config.track_id,
                "players": players,
                "total": 0,
                "target": state.accumulator.target,
            }
            self._task = asyncio.create_task(
                self._run_loop(engine, state, config, runtime_cfg),
                name="match-session",
            )
            logger.info(
                "Session started for track {} | frames={} players={} target={} capped={}",
                config.track_id,
                len(track),
                players,
                state.accumulator.target,
                state.accumulator.capped,
            )
            return state

    async def stop(self) -> bool:
        """Stop the active session; returns False when nothing was running. Safe to call repeatedly."""
        async with self._async_lock:
            state = self._state
            task = self._task
            if state is None or not state.running:
                self._task = None
                return False
            state.stop()
            if task is not None and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
            self._task = None
            logger.info("Session stop requested for track {}", self._config.track_id if self._config else "?")
            return True

    def is_running(self) -> bool:
        return self._state is not None and self._state.running

    def get_status(self) -> Dict[str, object]:
        status = dict(self._status)
        state = self._state
        if state is not None:
            status["total"] = state.total
            status["target"] = state.accumulator.target
            status["thresholdReached"] = state.accumulator.has_triggered
            status["playerTotals"] = {str(k): v for k, v in sorted(state.player_totals.items())}
            status["ticks"] = state.ticks
        status["tickRate"] = self._meter.get_rate()
        status["observerLatencyMs"] = self._meter.get_latency_ms()
        return status

    async def score_events(self) -> AsyncGenerator[Dict[str, object], None]:
        if self._event_queue is None or not self.is_running():
            raise SessionNotRunningError("No active session")
        queue = self._event_queue
        while True:
            payload = await queue.get()
            yield payload
            if not payload.get("running", True):
                break

    def _on_score_update(self, total: int, target: int) -> None:
        self._publish({"type": "score", "running": True, "total": total, "target": target})

    def _on_threshold_reached(self) -> None:
        self._publish({"type": "threshold", "running": True})

    def _publish(self, payload: Dict[str, object]) -> None:
        queue = self._event_queue
        if queue is None:
            return
        if queue.full():
            with contextlib.suppress(asyncio.QueueEmpty):
                queue.get_nowait()
        queue.put_nowait(payload)

    def _now(self) -> float:
        if self.clock is not None:
            return self.clock()
        return asyncio.get_running_loop().time()

    async def _run_loop(
        self,
        engine: MatchEngine,
        state: SessionState,
        config: SessionConfig,
        runtime_cfg: RuntimeConfig,
    ) -> None:
        cap: Optional[cv2.VideoCapture] = None
        try:
            camera_target: int | str = config.camera_source or os.getenv("CAMERA_SOURCE") or config.camera_index
            cap = await asyncio.to_thread(self.capture_factory, camera_target)
            if not cap.isOpened():
                raise RuntimeError(f"Failed to open camera source '{camera_target}'")
            required = int(runtime_cfg.session.get("required_consecutive_detections", 10))
            ready = not config.wait_for_players
            started = self._now()
            while state.running:
                ret, image = await asyncio.to_thread(cap.read)
                if not ret:
                    logger.warning("Camera stream ended")
                    break
                image = self._prepare_frame(image, runtime_cfg.frame)
                if not ready:
                    observation = await engine.observe(state, image)
                    if observation is not None and engine.update_readiness(state, observation, required):
                        ready = True
                        started = self._now()
                        self._status["message"] = "session running"
                        logger.info("All {} player(s) detected, routine clock started", state.players)
                    continue
                playback_time = self._now() - started
                if playback_time >= state.track.duration:
                    logger.info("Routine finished after {:.1f}s", playback_time)
                    break
                tick_started = self._now()
                result = await engine.tick(state, playback_time, image=image)
                self._meter.observe_latency(self._now() - tick_started)
                self._meter.tick()
                if result is not None:
                    logger.debug(
                        "frame={} moving={} points={} total={}",
                        result.frame_index,
                        result.moving,
                        result.points,
                        result.total,
                    )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Session loop error: {}", exc)
            self._status["message"] = f"error: {exc}"
        finally:
            if cap is not None:
                cap.release()
            if self._observer is not None:
                await asyncio.to_thread(self._observer.close)
            state.stop()
            self._finish(state, config)

    def _finish(self, state: SessionState, config: SessionConfig) -> None:
        message = self._status.get("message", "session finished")
        if message in {"session running", "waiting for players"}:
            message = "session finished"
        self._status.update({"running": False, "message": message, "total": state.total})
        self._publish({"type": "end", "running": False, "total": state.total, "message": message})
        logger.info(
            "Session loop completed for track {} | total={} target={} ticks={}",
            config.track_id,
            state.total,
            state.accumulator.target,
            state.ticks,
        )
        if state.total > 0:
            try:
                record_session(
                    track_id=config.track_id,
                    total=state.total,
                    target=state.accumulator.target,
                    capped=state.accumulator.capped,
                    threshold_reached=state.accumulator.has_triggered,
                    ticks=state.ticks,
                    started_at=state.started_at,
                    ended_at=state.ended_at or dt.datetime.now(dt.timezone.utc),
                    session_metadata={"players": state.players, "player_totals": dict(state.player_totals)},
                )
            except Exception as exc:  # pragma: no cover - safety net
                logger.exception("Failed to persist session summary: {}", exc)

    @staticmethod
    def _prepare_frame(image: np.ndarray, frame_cfg: Dict[str, object]) -> np.ndarray:
        if frame_cfg.get("flip", False):
            image = cv2.flip(image, 1)
        target_width = int(frame_cfg.get("target_width", 0) or 0)
        if target_width and image.shape[1] != target_width:
            scale = target_width / image.shape[1]
            image = cv2.resize(image, (target_width, int(image.shape[0] * scale)))
        return image


session_manager = GameSession()
