from __future__ import annotations

import asyncio

from fastapi import FastAPI, HTTPException, Response, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from src.server.database import init_db, list_sessions
from src.server.logging_utils import configure_from_settings
from src.server.models.schemas import (
    MessageResponse,
    ScoreEvent,
    SessionListResponse,
    SessionStartResponse,
    SessionStatusResponse,
    SessionStopResponse,
    StartSessionRequest,
    TrackListResponse,
    TrackResponse,
    TrackSummary,
    TrackUpload,
)
from src.server.session import (
    SessionAlreadyRunningError,
    SessionConfig,
    SessionNotRunningError,
    TrackNotFoundError,
    session_manager,
)
from src.utils.config import load_runtime_config
from src.utils.structures import ReferenceTrack

app = FastAPI(title="Dance Match Engine", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def on_startup() -> None:
    log_cfg = None
    if session_manager.runtime_config_path.is_file():
        log_cfg = load_runtime_config(str(session_manager.runtime_config_path)).logging
    configure_from_settings(log_cfg)
    init_db()


@app.get("/api/tracks", response_model=TrackListResponse)
async def list_tracks() -> TrackListResponse:
    tracks = await asyncio.to_thread(session_manager.archive.list_tracks)
    return TrackListResponse(tracks=[TrackSummary(**track) for track in tracks])


@app.get("/api/tracks/{track_id}", response_model=TrackResponse)
async def read_track(track_id: str) -> TrackResponse:
    track = await asyncio.to_thread(session_manager.archive.load, track_id)
    if track is None:
        raise HTTPException(status_code=404, detail="Pose data not found")
    return TrackResponse(track_id=track_id, duration=track.duration, frame_count=len(track), frames=track.to_records())


@app.head("/api/tracks/{track_id}")
async def track_exists(track_id: str) -> Response:
    exists = await asyncio.to_thread(session_manager.archive.exists, track_id)
    return Response(status_code=200 if exists else 404)


@app.put("/api/tracks/{track_id}", response_model=MessageResponse)
async def save_track(track_id: str, payload: TrackUpload) -> MessageResponse:
    try:
        track = ReferenceTrack.from_records(payload.frames, payload.duration)
    except (ValueError, KeyError, TypeError, AttributeError) as exc:
        raise HTTPException(status_code=422, detail=f"Invalid pose data: {exc}") from exc
    saved = await asyncio.to_thread(session_manager.archive.save, track_id, track)
    if not saved:
        raise HTTPException(status_code=500, detail="Failed to save pose data")
    return MessageResponse(message=f"Saved {len(track)} frames")


@app.post("/api/session/start", response_model=SessionStartResponse)
async def start_session(request: StartSessionRequest) -> SessionStartResponse:
    config = SessionConfig(
        track_id=request.track_id,
        target_score=request.target_score,
        capped=request.capped,
        players=request.players,
        camera_index=request.camera_index,
        camera_source=request.camera_source,
        wait_for_players=request.wait_for_players,
    )
    try:
        state = await session_manager.start(config)
    except SessionAlreadyRunningError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except TrackNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return SessionStartResponse(
        status="running",
        track_id=config.track_id,
        target=state.accumulator.target,
        players=state.players,
        capped=state.accumulator.capped,
    )


@app.post("/api/session/stop", response_model=SessionStopResponse)
async def stop_session() -> SessionStopResponse:
    stopped = await session_manager.stop()
    return SessionStopResponse(status="stopped" if stopped else "idle")


@app.get("/api/session/status", response_model=SessionStatusResponse)
async def session_status() -> SessionStatusResponse:
    return SessionStatusResponse(**session_manager.get_status())


@app.get("/api/sessions/history", response_model=SessionListResponse)
async def session_history(limit: int = 20) -> SessionListResponse:
    sessions = await asyncio.to_thread(list_sessions, limit)
    return SessionListResponse(sessions=sessions)


@app.websocket("/ws/score")
async def stream_score(websocket: WebSocket) -> None:
    await websocket.accept()
    try:
        async for event in session_manager.score_events():
            await websocket.send_json(ScoreEvent(**event).model_dump(exclude_none=True))
    except SessionNotRunningError:
        await websocket.send_json({"running": False})
    except WebSocketDisconnect:  # pragma: no cover - client initiated
        return
    except Exception as exc:  # pragma: no cover - runtime guard
        await websocket.send_json({"running": False, "error": str(exc)})
