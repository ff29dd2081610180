from __future__ import annotations

import datetime as dt
import json
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from loguru import logger
from sqlalchemy import Column, JSON
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Field, Session, SQLModel, create_engine, select

from src.utils.structures import ReferenceTrack

DATA_DIR = Path("data")
DB_PATH = DATA_DIR / "app.db"
DEFAULT_ARCHIVE_DIR = Path("poses")
_ENGINE = None
DATABASE_URL_ENV = "DATABASE_URL"
ARCHIVE_DIR_ENV = "POSE_ARCHIVE_DIR"


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class ReferenceTrackRecord(SQLModel, table=True):
    track_id: str = Field(primary_key=True, index=True)
    duration: float
    frame_count: int
    body_count: int = Field(default=1)
    frames: List[Any] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    created_at: dt.datetime = Field(default_factory=_utcnow)
    updated_at: dt.datetime = Field(default_factory=_utcnow)


class SessionRecord(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    track_id: str = Field(index=True)
    total: int
    target: int
    capped: bool = Field(default=False)
    threshold_reached: bool = Field(default=False)
    ticks: int = Field(default=0)
    started_at: dt.datetime
    ended_at: dt.datetime
    session_metadata: Dict[str, object] = Field(default_factory=dict, sa_column=Column(JSON, default=dict))


def _normalize_database_url(url: str) -> str:
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg://", 1)
    if url.startswith("postgresql://") and "+" not in url:
        return url.replace("postgresql://", "postgresql+psycopg://", 1)
    return url


def _get_engine():
    global _ENGINE
    if _ENGINE is None:
        database_url = os.getenv(DATABASE_URL_ENV)
        if database_url:
            normalized = _normalize_database_url(database_url)
            _ENGINE = create_engine(normalized, echo=False, pool_pre_ping=True)
        else:
            DATA_DIR.mkdir(parents=True, exist_ok=True)
            connect_args = {"check_same_thread": False}
            _ENGINE = create_engine(f"sqlite:///{DB_PATH}", echo=False, connect_args=connect_args)
    return _ENGINE


def init_db() -> None:
    engine = _get_engine()
    SQLModel.metadata.create_all(engine)
    if os.getenv(DATABASE_URL_ENV):
        logger.info("Database initialized using {}", DATABASE_URL_ENV)
    else:
        logger.info("Database initialized at {}", DB_PATH.resolve())


@contextmanager
def session_scope() -> Iterator[Session]:
    engine = _get_engine()
    with Session(engine) as session:
        yield session


class PoseArchive:
    """Read/write store for precomputed ReferenceTracks.

    ``load`` looks for ``<directory>/<track_id>.json`` first and falls back to
    the database. A missing track is a normal condition and yields None; read
    or write failures are logged and reported as None / False.
    """

    def __init__(self, directory: Optional[Path | str] = None, export_json: bool = False) -> None:
        self.directory = Path(directory or os.getenv(ARCHIVE_DIR_ENV) or DEFAULT_ARCHIVE_DIR)
        self.export_json = export_json

    def _track_path(self, track_id: str) -> Path:
        safe_id = "".join(ch for ch in track_id if ch.isalnum() or ch in {"-", "_", "."}).strip(".")
        if not safe_id:
            raise ValueError(f"Invalid track id: {track_id!r}")
        return self.directory / f"{safe_id}.json"

    def load(self, track_id: str) -> Optional[ReferenceTrack]:
        track = self._load_file(track_id)
        if track is not None:
            return track
        try:
            with session_scope() as session:
                record = session.get(ReferenceTrackRecord, track_id)
                if record is None:
                    logger.info("No archived track {}; analysis required", track_id)
                    return None
                track = ReferenceTrack.from_records(record.frames, record.duration)
        except (SQLAlchemyError, ValueError, KeyError, TypeError, AttributeError) as exc:
            logger.warning("Failed to load track {} from database: {}", track_id, exc)
            return None
        logger.info("Loaded track {} from database ({} frames)", track_id, len(track))
        return track

    def _load_file(self, track_id: str) -> Optional[ReferenceTrack]:
        try:
            path = self._track_path(track_id)
        except ValueError as exc:
            logger.warning("{}", exc)
            return None
        if not path.is_file():
            return None
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
            track = ReferenceTrack.from_records(payload["frames"], payload["duration"])
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as exc:
            logger.warning("Ignoring unreadable track file {}: {}", path, exc)
            return None
        if len(track) == 0:
            return None
        logger.info("Loaded track {} from {} ({} frames)", track_id, path, len(track))
        return track

    def save(self, track_id: str, track: ReferenceTrack) -> bool:
        frames = track.to_records()
        now = _utcnow()
        try:
            with session_scope() as session:
                record = session.get(ReferenceTrackRecord, track_id)
                if record is None:
                    record = ReferenceTrackRecord(
                        track_id=track_id,
                        duration=track.duration,
                        frame_count=len(track),
                        body_count=track.body_count(),
                        frames=frames,
                    )
                else:
                    record.duration = track.duration
                    record.frame_count = len(track)
                    record.body_count = track.body_count()
                    record.frames = frames
                    record.updated_at = now
                session.add(record)
                session.commit()
        except SQLAlchemyError as exc:
            logger.warning("Failed to save track {}: {}", track_id, exc)
            return False
        logger.info("Saved track {} ({} frames, {:.2f}s)", track_id, len(track), track.duration)
        if self.export_json:
            return self.export(track_id, track)
        return True

    def export(self, track_id: str, track: ReferenceTrack) -> bool:
        try:
            path = self._track_path(track_id)
            path.parent.mkdir(parents=True, exist_ok=True)
            payload = {"duration": track.duration, "frames": track.to_records()}
            path.write_text(json.dumps(payload), encoding="utf-8")
        except (OSError, ValueError) as exc:
            logger.warning("Failed to export track {}: {}", track_id, exc)
            return False
        return True

    def exists(self, track_id: str) -> bool:
        try:
            if self._track_path(track_id).is_file():
                return True
        except ValueError:
            return False
        try:
            with session_scope() as session:
                return session.get(ReferenceTrackRecord, track_id) is not None
        except SQLAlchemyError as exc:
            logger.warning("Failed to look up track {} in database: {}", track_id, exc)
            return False

    def list_tracks(self) -> List[Dict[str, object]]:
        tracks: Dict[str, Dict[str, object]] = {}
        try:
            with session_scope() as session:
                records = session.exec(select(ReferenceTrackRecord).order_by(ReferenceTrackRecord.track_id)).all()
                tracks = {
                    record.track_id: {
                        "track_id": record.track_id,
                        "duration": record.duration,
                        "frame_count": record.frame_count,
                        "body_count": record.body_count,
                    }
                    for record in records
                }
        except SQLAlchemyError as exc:
            logger.warning("Failed to list archived tracks from database: {}", exc)
        if self.directory.is_dir():
            for path in sorted(self.directory.glob("*.json")):
                tracks.setdefault(path.stem, {"track_id": path.stem, "duration": None, "frame_count": None, "body_count": None})
        return [tracks[key] for key in sorted(tracks)]


def record_session(
    track_id: str,
    total: int,
    target: int,
    capped: bool,
    threshold_reached: bool,
    ticks: int,
    started_at: dt.datetime,
    ended_at: dt.datetime,
    session_metadata: Optional[Dict[str, object]] = None,
) -> SessionRecord:
    record = SessionRecord(
        track_id=track_id,
        total=total,
        target=target,
        capped=capped,
        threshold_reached=threshold_reached,
        ticks=ticks,
        started_at=started_at,
        ended_at=ended_at,
        session_metadata=session_metadata or {},
    )
    with session_scope() as session:
        session.add(record)
        session.commit()
        session.refresh(record)
    logger.info("Recorded session for track {} total={} target={}", track_id, total, target)
    return record


def list_sessions(limit: int = 20) -> List[Dict[str, object]]:
    with session_scope() as session:
        records = session.exec(
            select(SessionRecord).order_by(SessionRecord.started_at.desc()).limit(limit)
        ).all()
        return [
            {
                "id": record.id,
                "track_id": record.track_id,
                "total": record.total,
                "target": record.target,
                "capped": record.capped,
                "threshold_reached": record.threshold_reached,
                "ticks": record.ticks,
                "started_at": record.started_at.isoformat(),
                "ended_at": record.ended_at.isoformat(),
            }
            for record in records
        ]
