import json
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional, Union

import pytest
import requests

from axis_motion_publisher.models import Camera
from axis_motion_publisher.transcoder import CommandResult


NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeResponse:
    def __init__(self, status_code: int, body: Union[dict, str] = "", headers: Optional[dict] = None):
        self.status_code = status_code
        self.text = json.dumps(body) if isinstance(body, dict) else body
        self.headers = headers or {"Content-Type": "application/json"}


class FakeSession:
    """Stands in for requests.Session; routes POSTs by URL."""

    def __init__(self):
        self.posts = []
        self.routes: dict[str, Callable[[dict], FakeResponse]] = {}
        self._lock = threading.Lock()
        self.closed = False

    def route(self, url: str, handler: Union[FakeResponse, Callable[[dict], FakeResponse]]) -> None:
        self.routes[url] = handler if callable(handler) else (lambda call, response=handler: response)

    def post(self, url, headers=None, data=None, timeout=None):
        call = {"url": url, "headers": headers, "data": data, "timeout": timeout}
        with self._lock:
            self.posts.append(call)
        handler = self.routes.get(url)
        if handler is None:
            raise requests.ConnectionError(f"no route to {url}")
        return handler(call)

    def posts_to(self, url: str) -> list:
        return [call for call in self.posts if call["url"] == url]

    def close(self):
        self.closed = True


class FakeRunner:
    """Stands in for run_command; behaviour chosen per source file."""

    def __init__(self):
        self.calls = []
        self.stderr_for: dict[str, str] = {}
        self.before_run: dict[str, Callable[[], None]] = {}
        self._lock = threading.Lock()

    def __call__(self, command, args, timeout=None):
        source, output = Path(args[args.index("-i") + 1]), Path(args[-1])
        with self._lock:
            self.calls.append((command, list(args)))
        hook = self.before_run.get(source.name)
        if hook:
            hook()
        stderr = self.stderr_for.get(source.name, "")
        if not stderr:
            output.write_bytes(source.read_bytes())
        return CommandResult(exit_code=1 if stderr else 0, stdout="", stderr=stderr)


@pytest.fixture
def camera() -> Camera:
    return Camera(friendly_name="Front Porch", manufacturer_id="AXIS-ACCC8E5E7513", endpoint_id="camera-1")


@pytest.fixture
def other_camera() -> Camera:
    return Camera(friendly_name="Garage", manufacturer_id="AXIS-B8A44F000001", endpoint_id="camera-2")


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


def create_index_db(base_path: Path, camera: Camera, rows: list[dict], touch_files: bool = True) -> Path:
    """Build an AXIS style index.db holding the given recordings."""
    folder = base_path / camera.manufacturer_id
    folder.mkdir(parents=True, exist_ok=True)
    db_path = folder / "index.db"
    with sqlite3.connect(db_path) as conn:
        conn.execute(
            "CREATE TABLE IF NOT EXISTS recordings (id INTEGER PRIMARY KEY, filename TEXT, path TEXT, "
            "starttime TEXT, stoptime TEXT)"
        )
        conn.execute(
            "CREATE TABLE IF NOT EXISTS blocks (id INTEGER PRIMARY KEY AUTOINCREMENT, recording_id INTEGER, "
            "filename TEXT, path TEXT)"
        )
        for row in rows:
            conn.execute(
                "INSERT OR REPLACE INTO recordings (id, filename, path, starttime, stoptime) VALUES (?, ?, ?, ?, ?)",
                (row["id"], row["filename"], row["path"], row["start"], row.get("stop")),
            )
            if not conn.execute("SELECT 1 FROM blocks WHERE recording_id = ?", (row["id"],)).fetchone():
                conn.execute(
                    "INSERT INTO blocks (recording_id, filename, path) VALUES (?, ?, ?)",
                    (row["id"], row["block_file"], row["block_path"]),
                )
            if touch_files:
                block_dir = folder / row["path"] / row["filename"] / row["block_path"]
                block_dir.mkdir(parents=True, exist_ok=True)
                (block_dir / f"{row['block_file']}.mkv").write_bytes(b"mkv-data")
    conn.close()
    return db_path


def recording_row(recording_id: int, stop: Optional[str] = "2024-06-01T10:00:30.456", **overrides) -> dict:
    row = {
        "id": recording_id,
        "filename": f"rec{recording_id}",
        "path": "2024/06/01",
        "block_path": "b1",
        "block_file": "blk1",
        "start": "2024-06-01T10:00:00.123",
        "stop": stop,
    }
    row.update(overrides)
    return row
