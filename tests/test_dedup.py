import sqlite3
import threading
from pathlib import Path

import pytest

from axis_motion_publisher.dedup import DedupStoreError, Deduplicator


KEY = "/media/cameras/AXIS-ACCC8E5E7513/2024/06/01/rec1/b1"


def _metadata(**overrides) -> dict:
    data = {
        "recordingId": 1,
        "mediaId": "AXIS__ACCC8E5E7513__2024__06__01__rec1__b1__blk1",
        "cameraId": "AXIS-ACCC8E5E7513",
        "recordingStartTime": "2024-06-01T10:00:00.123",
        "recordingStopTime": "2024-06-01T10:00:30.456",
    }
    data.update(overrides)
    return data


def test_unknown_key_does_not_exist(tmp_path: Path):
    assert not Deduplicator(tmp_path / "uploads.db").exists(KEY)


def test_recorded_key_exists(tmp_path: Path):
    dedup = Deduplicator(tmp_path / "uploads.db")
    record = dedup.record(KEY, _metadata())

    assert dedup.exists(KEY)
    assert record.recording_id == 1
    assert record.uploaded_at.endswith("Z")


def test_records_survive_restart(tmp_path: Path):
    Deduplicator(tmp_path / "uploads.db").record(KEY, _metadata())
    reopened = Deduplicator(tmp_path / "uploads.db")
    assert reopened.exists(KEY)
    assert [r.recording_path for r in reopened.records()] == [KEY]


def test_recording_twice_keeps_one_row(tmp_path: Path):
    dedup = Deduplicator(tmp_path / "uploads.db")
    dedup.record(KEY, _metadata())
    dedup.record(KEY, _metadata())
    assert len(dedup.records()) == 1


def test_records_filter_and_limit(tmp_path: Path):
    dedup = Deduplicator(tmp_path / "uploads.db")
    dedup.record("a", _metadata(recordingId=1, recordingUploadTime="2024-06-01T10:00:00Z"))
    dedup.record("b", _metadata(recordingId=2, recordingUploadTime="2024-06-01T11:00:00Z"))
    dedup.record("c", _metadata(recordingId=3, cameraId="AXIS-OTHER", recordingUploadTime="2024-06-01T12:00:00Z"))

    assert [r.recording_path for r in dedup.records()] == ["c", "b", "a"]
    assert [r.recording_path for r in dedup.records(camera_id="AXIS-ACCC8E5E7513")] == ["b", "a"]
    assert [r.recording_path for r in dedup.records(limit=1)] == ["c"]


def test_concurrent_readers(tmp_path: Path):
    dedup = Deduplicator(tmp_path / "uploads.db")
    dedup.record(KEY, _metadata())
    results = []

    def reader():
        results.append(dedup.exists(KEY))

    threads = [threading.Thread(target=reader) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert results == [True] * 8


def test_broken_store_raises(tmp_path: Path):
    dedup = Deduplicator(tmp_path / "uploads.db")
    with sqlite3.connect(tmp_path / "uploads.db") as conn:
        conn.execute("DROP TABLE uploads")
    conn.close()

    with pytest.raises(DedupStoreError):
        dedup.exists(KEY)


def test_unopenable_store(tmp_path: Path):
    blocker = tmp_path / "file"
    blocker.write_text("not a folder")
    with pytest.raises(DedupStoreError):
        Deduplicator(blocker / "uploads.db")
