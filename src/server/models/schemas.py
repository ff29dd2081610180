from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class TrackUpload(BaseModel):
    duration: float = Field(gt=0)
    frames: List[List[Any]] = Field(min_length=1)


class TrackSummary(BaseModel):
    track_id: str
    duration: Optional[float] = None
    frame_count: Optional[int] = None
    body_count: Optional[int] = None


class TrackResponse(BaseModel):
    track_id: str
    duration: float
    frame_count: int
    frames: List[Any]


class TrackListResponse(BaseModel):
    tracks: List[TrackSummary]


class MessageResponse(BaseModel):
    message: str


class StartSessionRequest(BaseModel):
    track_id: str = Field(min_length=1, max_length=128, pattern=r"^[A-Za-z0-9_.-]+$")
    target_score: Optional[int] = Field(default=None, ge=1)
    capped: Optional[bool] = None
    players: Optional[int] = Field(default=None, ge=1, le=4)
    camera_index: int = Field(default=0, ge=0)
    camera_source: Optional[str] = Field(default=None, max_length=512)
    wait_for_players: bool = True


class SessionStartResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    status: str
    track_id: str
    target: int
    players: int
    capped: bool


class SessionStatusResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    running: bool
    message: str
    trackId: Optional[str] = None
    players: Optional[int] = None
    total: Optional[int] = None
    target: Optional[int] = None
    thresholdReached: Optional[bool] = None
    playerTotals: Optional[Dict[str, int]] = None
    ticks: Optional[int] = None
    tickRate: Optional[float] = None
    observerLatencyMs: Optional[float] = None


class SessionStopResponse(BaseModel):
    status: str


class SessionListResponse(BaseModel):
    sessions: List[dict]


class ScoreEvent(BaseModel):
    type: str = "score"
    running: bool
    total: Optional[int] = None
    target: Optional[int] = None
    message: Optional[str] = None
