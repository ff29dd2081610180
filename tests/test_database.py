import datetime as dt
import json
from contextlib import contextmanager

import numpy as np
from sqlalchemy.exc import OperationalError

from conftest import body_at, make_pose
from src.server import database
from src.server.database import PoseArchive, list_sessions, record_session
from src.utils.structures import Pose, ReferenceTrack


def sample_track():
    return ReferenceTrack(frames=[make_pose(dx=0.01 * i) for i in range(5)], duration=2.5)


def test_save_and_load_from_database(db):
    archive = PoseArchive(directory=db / "poses")
    assert archive.save("warmup", sample_track())

    loaded = archive.load("warmup")
    assert len(loaded) == 5
    assert loaded.duration == 2.5
    assert isinstance(loaded[0], Pose)
    assert np.allclose(loaded[4].xy, sample_track()[4].xy)
    assert not (db / "poses" / "warmup.json").exists()


def test_save_overwrites_existing_track(db):
    archive = PoseArchive(directory=db / "poses")
    archive.save("warmup", sample_track())
    pair = ReferenceTrack(frames=[(body_at(0.2), body_at(0.8))], duration=1.0)
    archive.save("warmup", pair)

    loaded = archive.load("warmup")
    assert len(loaded) == 1
    assert loaded.is_multi_body
    assert archive.list_tracks() == [{"track_id": "warmup", "duration": 1.0, "frame_count": 1, "body_count": 2}]


def test_missing_track_returns_none(db):
    archive = PoseArchive(directory=db / "poses")
    assert archive.load("nobody-danced-this") is None
    assert not archive.exists("nobody-danced-this")


def test_file_archive_takes_precedence(db):
    directory = db / "poses"
    directory.mkdir()
    archive = PoseArchive(directory=directory)
    archive.save("routine", sample_track())
    file_track = ReferenceTrack(frames=[make_pose()] * 3, duration=9.0)
    (directory / "routine.json").write_text(
        json.dumps({"duration": 9.0, "frames": file_track.to_records()}),
        encoding="utf-8",
    )

    loaded = archive.load("routine")
    assert len(loaded) == 3
    assert loaded.duration == 9.0


def test_unreadable_file_falls_back_to_database(db):
    directory = db / "poses"
    directory.mkdir()
    (directory / "routine.json").write_text("{not json", encoding="utf-8")
    archive = PoseArchive(directory=directory)
    assert archive.load("routine") is None

    archive.save("routine", sample_track())
    assert len(archive.load("routine")) == 5


def test_export_writes_json_file(db):
    directory = db / "exports"
    archive = PoseArchive(directory=directory, export_json=True)
    assert archive.save("solo", sample_track())

    payload = json.loads((directory / "solo.json").read_text(encoding="utf-8"))
    assert payload["duration"] == 2.5
    assert len(payload["frames"]) == 5
    assert payload["frames"][0][0] == {"x": 0.3, "y": 0.1, "z": 0.0, "confidence": 1.0}
    assert archive.exists("solo")


def test_list_tracks_includes_file_only_entries(db):
    directory = db / "poses"
    directory.mkdir()
    archive = PoseArchive(directory=directory)
    archive.save("b-side", sample_track())
    (directory / "a-side.json").write_text(
        json.dumps({"duration": 1.0, "frames": [make_pose().to_records()]}),
        encoding="utf-8",
    )

    tracks = archive.list_tracks()
    assert [track["track_id"] for track in tracks] == ["a-side", "b-side"]
    assert tracks[0]["frame_count"] is None
    assert tracks[1]["frame_count"] == 5


def test_database_outage_degrades_to_file_archive(db, monkeypatch):
    directory = db / "poses"
    directory.mkdir()
    archive = PoseArchive(directory=directory, export_json=True)
    archive.save("on-disk", sample_track())

    @contextmanager
    def unavailable():
        raise OperationalError("SELECT 1", {}, Exception("database is down"))
        yield

    monkeypatch.setattr(database, "session_scope", unavailable)

    assert archive.exists("on-disk")
    assert not archive.exists("db-only")
    assert archive.list_tracks() == [
        {"track_id": "on-disk", "duration": None, "frame_count": None, "body_count": None}
    ]
    assert archive.load("db-only") is None
    assert not archive.save("db-only", sample_track())


def test_track_ids_cannot_escape_directory(db):
    archive = PoseArchive(directory=db / "poses")
    assert archive.load("...") is None
    assert archive._track_path("../../etc/passwd").parent == db / "poses"


def test_session_history(db):
    start = dt.datetime(2024, 5, 1, 12, 0, tzinfo=dt.timezone.utc)
    for offset, total in enumerate((120, 980)):
        record_session(
            track_id="warmup",
            total=total,
            target=1000,
            capped=False,
            threshold_reached=False,
            ticks=40,
            started_at=start + dt.timedelta(minutes=offset),
            ended_at=start + dt.timedelta(minutes=offset, seconds=30),
            session_metadata={"players": 1},
        )

    sessions = list_sessions(limit=5)
    assert [s["total"] for s in sessions] == [980, 120]
    assert sessions[0]["track_id"] == "warmup"
    assert len(list_sessions(limit=1)) == 1
