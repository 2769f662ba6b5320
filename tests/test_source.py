from pathlib import Path

from axis_motion_publisher.source import RecordingSource

from conftest import create_index_db, recording_row


def test_completed_recordings_newest_first(tmp_path: Path, camera):
    create_index_db(tmp_path, camera, [recording_row(1), recording_row(2), recording_row(3)])
    source = RecordingSource(tmp_path)

    recordings = source.poll(camera)

    assert [r.id for r in recordings] == [3, 2, 1]
    first = recordings[-1]
    assert first.camera == camera
    assert first.recording_path == "2024/06/01"
    assert first.source_file == tmp_path / camera.manufacturer_id / "2024/06/01/rec1/b1/blk1.mkv"
    assert first.start_time == "2024-06-01T10:00:00.123"
    assert first.stop_time == "2024-06-01T10:00:30.456"
    assert source.high_water_mark(camera) == 3


def test_nothing_new_after_high_water_mark(tmp_path: Path, camera):
    create_index_db(tmp_path, camera, [recording_row(1)])
    source = RecordingSource(tmp_path)
    assert len(source.poll(camera)) == 1
    assert source.poll(camera) == []


def test_only_newer_recordings_are_returned(tmp_path: Path, camera):
    create_index_db(tmp_path, camera, [recording_row(1)])
    source = RecordingSource(tmp_path)
    source.poll(camera)

    create_index_db(tmp_path, camera, [recording_row(2)])
    assert [r.id for r in source.poll(camera)] == [2]


def test_in_progress_recording_is_reconsidered(tmp_path: Path, camera):
    create_index_db(tmp_path, camera, [recording_row(1), recording_row(2, stop=None)])
    source = RecordingSource(tmp_path)

    assert [r.id for r in source.poll(camera)] == [1]

    create_index_db(tmp_path, camera, [recording_row(2)])
    assert [r.id for r in source.poll(camera)] == [2]


def test_query_window_is_bounded(tmp_path: Path, camera):
    create_index_db(tmp_path, camera, [recording_row(i) for i in range(1, 6)])
    source = RecordingSource(tmp_path, query_limit=2)
    assert [r.id for r in source.poll(camera)] == [5, 4]


def test_cameras_have_independent_marks(tmp_path: Path, camera, other_camera):
    create_index_db(tmp_path, camera, [recording_row(10)])
    create_index_db(tmp_path, other_camera, [recording_row(2)])
    source = RecordingSource(tmp_path)

    assert [r.id for r in source.poll(camera)] == [10]
    assert [r.id for r in source.poll(other_camera)] == [2]
    assert source.high_water_mark(camera) == 10
    assert source.high_water_mark(other_camera) == 2


def test_missing_database_is_nothing_new(tmp_path: Path, camera):
    assert RecordingSource(tmp_path).poll(camera) == []


def test_unreadable_database_is_nothing_new(tmp_path: Path, camera):
    folder = tmp_path / camera.manufacturer_id
    folder.mkdir()
    (folder / "index.db").write_bytes(b"this is not sqlite")
    source = RecordingSource(tmp_path)

    assert source.poll(camera) == []
    assert source.high_water_mark(camera) == 0


def test_database_is_not_modified(tmp_path: Path, camera):
    db_path = create_index_db(tmp_path, camera, [recording_row(1)])
    before = db_path.read_bytes()
    RecordingSource(tmp_path).poll(camera)
    assert db_path.read_bytes() == before
