from __future__ import annotations

import argparse
import asyncio
import os
import time
import warnings
from pathlib import Path
from typing import List, Optional

os.environ.setdefault("TF_CPP_MIN_LOG_LEVEL", "2")
warnings.filterwarnings("ignore", message=r"SymbolDatabase\.GetPrototype\(\) is deprecated", category=UserWarning)

import cv2
import numpy as np
from loguru import logger

from src.logic.alignment import reference_window
from src.pose.mediapipe_pose import MediaPipePoseEstimator
from src.pose.observer import AsyncPoseObserver
from src.pose.track_builder import DEFAULT_SAMPLE_FPS, analyze_video
from src.server.database import PoseArchive, init_db
from src.server.logging_utils import configure_from_settings
from src.server.session import MatchEngine, SessionState
from src.ui.overlay import FrameOverlay
from src.utils.config import EngineConfig, RuntimeConfig, load_runtime_config
from src.utils.profiler import TickMeter
from src.utils.structures import Pose, ReferenceTrack

WINDOW_NAME = "Dance Match"
INSTRUCTIONS = "Q to quit - R to restart"


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Real-time movement matching game")
    parser.add_argument("--runtime-config", type=Path, default=Path("configs/runtime.yaml"), help="Runtime configuration")
    sub = parser.add_subparsers(dest="command", required=True)

    analyze = sub.add_parser("analyze", help="Build a reference track from a routine video and archive it")
    analyze.add_argument("--video", type=Path, required=True, help="Reference routine video")
    analyze.add_argument("--track-id", type=str, default=None, help="Archive key (defaults to the video file name)")
    analyze.add_argument("--players", type=int, default=1, help="Number of performers in the routine")
    analyze.add_argument("--sample-fps", type=float, default=DEFAULT_SAMPLE_FPS, help="Analysis sample rate")

    play = sub.add_parser("play", help="Play a routine against the camera in a local window")
    play.add_argument("--track-id", type=str, required=True, help="Archived reference track")
    play.add_argument("--video", type=Path, default=None, help="Reference video shown alongside and analyzed if missing")
    play.add_argument("--camera", type=int, default=0, help="Camera index")
    play.add_argument("--players", type=int, default=None, help="Override player count")
    play.add_argument("--target", type=int, default=None, help="Override target score")
    play.add_argument("--capped", action="store_true", help="Clamp the score at the target")
    return parser.parse_args(argv)


def build_observer(runtime_cfg: RuntimeConfig, engine_cfg: EngineConfig, players: int) -> AsyncPoseObserver:
    estimator = MediaPipePoseEstimator.from_config(runtime_cfg.mediapipe, static_image_mode=players > 1)
    return AsyncPoseObserver.from_config(estimator, engine_cfg)


async def run_analysis(args: argparse.Namespace, runtime_cfg: RuntimeConfig, archive: PoseArchive) -> ReferenceTrack:
    engine_cfg = EngineConfig.from_runtime(runtime_cfg)
    observer = build_observer(runtime_cfg, engine_cfg, args.players)
    track_id = args.track_id or args.video.stem
    last_report = [0]

    def report(done: int, total: int) -> None:
        pct = int(done / total * 100)
        if pct >= last_report[0] + 10:
            last_report[0] = pct
            logger.info("Analyzing {}: {}%", track_id, pct)

    try:
        track = await analyze_video(args.video, observer, sample_fps=args.sample_fps, bodies=args.players, progress=report)
    finally:
        observer.close()
    if not archive.save(track_id, track):
        raise RuntimeError(f"Unable to archive track '{track_id}'")
    return track


async def run_game(args: argparse.Namespace, runtime_cfg: RuntimeConfig, archive: PoseArchive) -> None:
    track = archive.load(args.track_id)
    if track is None:
        if args.video is None:
            raise SystemExit(f"No archived track '{args.track_id}'. Run 'analyze' or pass --video.")
        logger.info("Track {} not archived yet; analyzing {}", args.track_id, args.video)
        analysis_args = argparse.Namespace(video=args.video, track_id=args.track_id, players=args.players or 1, sample_fps=DEFAULT_SAMPLE_FPS)
        track = await run_analysis(analysis_args, runtime_cfg, archive)

    engine_cfg = EngineConfig.from_runtime(runtime_cfg)
    players = args.players or max(1, track.body_count())
    observer = build_observer(runtime_cfg, engine_cfg, players)
    engine = MatchEngine(engine_cfg, observer)
    display_cfg = runtime_cfg.display or {}
    overlay = FrameOverlay(
        font_scale=float(display_cfg.get("font_scale", 0.6)),
        margin=int(display_cfg.get("hud_margin", 16)),
        thickness=int(display_cfg.get("skeleton_thickness", 2)),
        draw_visibility_threshold=float(display_cfg.get("draw_visibility_threshold", engine_cfg.draw_visibility_threshold)),
        goal_banner_seconds=float(display_cfg.get("goal_banner_seconds", 2.0)),
    )
    state: SessionState = engine.new_state(
        track,
        target=args.target,
        capped=True if args.capped else None,
        players=players,
        on_threshold_reached=overlay.notify_goal,
    )
    meter = TickMeter()
    cap = cv2.VideoCapture(args.camera)
    ref_cap = cv2.VideoCapture(str(args.video)) if args.video else None
    if not cap.isOpened():
        raise RuntimeError(f"Failed to open camera {args.camera}")
    ref_image: Optional[np.ndarray] = None
    ref_pos = 0.0
    started = time.perf_counter()
    try:
        while state.running:
            ret, frame = cap.read()
            if not ret:
                break
            if runtime_cfg.frame.get("flip", False):
                frame = cv2.flip(frame, 1)
            playback_time = time.perf_counter() - started
            if playback_time >= track.duration:
                logger.info("Routine finished | total={} target={}", state.total, state.accumulator.target)
                break
            if ref_cap is not None:
                while ref_pos <= playback_time:
                    ok, next_image = ref_cap.read()
                    if not ok:
                        break
                    ref_image = next_image
                    ref_pos = ref_cap.get(cv2.CAP_PROP_POS_MSEC) / 1000.0

            observation: List[Pose] = await engine.observe(state, frame) or []
            result = await engine.tick(state, playback_time, observation=observation)
            meter.tick()
            window = reference_window(track, playback_time)
            annotated = overlay.draw(
                frame,
                observation,
                window[2] if window else None,
                state.accumulator.state,
                result,
                player_totals=state.player_totals if players > 1 else None,
            )
            cv2.putText(
                annotated,
                f"{INSTRUCTIONS} | {meter.get_rate():.0f} ticks/s",
                (16, annotated.shape[0] - 16),
                cv2.FONT_HERSHEY_SIMPLEX,
                0.5,
                (200, 200, 200),
                1,
                cv2.LINE_AA,
            )
            if ref_image is not None:
                h = annotated.shape[0]
                scale = h / ref_image.shape[0]
                ref_view = cv2.resize(ref_image, (int(ref_image.shape[1] * scale), h))
                annotated = np.hstack([ref_view, annotated])
            cv2.imshow(WINDOW_NAME, annotated)
            key = cv2.waitKey(1) & 0xFF
            if key in (ord("q"), 27):
                state.stop()
            elif key == ord("r"):
                state.accumulator.reset()
                state.player_totals.clear()
                started = time.perf_counter()
                ref_pos = 0.0
                if ref_cap is not None:
                    ref_cap.set(cv2.CAP_PROP_POS_FRAMES, 0)
    finally:
        state.stop()
        cap.release()
        if ref_cap is not None:
            ref_cap.release()
        observer.close()
        cv2.destroyAllWindows()
    logger.info("Final score {} / {}", state.total, state.accumulator.target)


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    runtime_cfg = load_runtime_config(str(args.runtime_config))
    configure_from_settings(runtime_cfg.logging)
    init_db()
    archive_cfg = runtime_cfg.archive or {}
    archive = PoseArchive(archive_cfg.get("directory"), export_json=bool(archive_cfg.get("export_json", False)))
    if args.command == "analyze":
        track = asyncio.run(run_analysis(args, runtime_cfg, archive))
        logger.info("Archived {} frames ({:.1f}s)", len(track), track.duration)
    else:
        asyncio.run(run_game(args, runtime_cfg, archive))


if __name__ == "__main__":
    main()
