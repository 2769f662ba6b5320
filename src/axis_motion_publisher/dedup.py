"""Durable record of recordings already announced to the gateway."""

import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Mapping, Optional, Union

from .models import DedupRecord


class DedupStoreError(Exception):
    """Raised when the upload database cannot be read or written."""
    pass


class Deduplicator:
    """SQLite-backed set of uploaded recording paths.
    
    Every call opens its own connection, so pipeline threads can check the
    store concurrently. A row is only written after the gateway accepted the
    event for that recording.
    """
    
    def __init__(self, db_path: Union[str, Path], timeout: float = 30.0):
        self._db_path = Path(db_path)
        self._timeout = timeout
        self._ensure_schema()
    
    @property
    def db_path(self) -> Path:
        return self._db_path
    
    def exists(self, key: str) -> bool:
        """Check whether the recording at key was already uploaded."""
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT 1 FROM uploads WHERE recording_path = ?",
                    (key,),
                ).fetchone()
        except sqlite3.Error as e:
            raise DedupStoreError(f"Upload lookup failed for {key}: {e}") from e
        return row is not None
    
    def record(self, key: str, metadata: Mapping[str, object]) -> DedupRecord:
        """
        Mark the recording at key as uploaded.
        
        Args:
            key: Canonical recording path
            metadata: recordingId, mediaId, cameraId, recordingStartTime,
                recordingStopTime and optionally recordingUploadTime
        
        Returns:
            The stored record
        """
        uploaded_at = metadata.get("recordingUploadTime") or (
            datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
        )
        record = DedupRecord(
            recording_path=key,
            recording_id=int(metadata["recordingId"]),
            media_id=str(metadata.get("mediaId", "")),
            camera_id=str(metadata.get("cameraId", "")),
            start_time=str(metadata.get("recordingStartTime", "")),
            stop_time=_optional_str(metadata.get("recordingStopTime")),
            uploaded_at=str(uploaded_at),
        )
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT OR REPLACE INTO uploads (
                        recording_path, recording_id, media_id, camera_id,
                        start_time, stop_time, uploaded_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        record.recording_path,
                        record.recording_id,
                        record.media_id,
                        record.camera_id,
                        record.start_time,
                        record.stop_time,
                        record.uploaded_at,
                    ),
                )
        except sqlite3.Error as e:
            raise DedupStoreError(f"Could not record upload of {key}: {e}") from e
        return record
    
    def records(self, camera_id: Optional[str] = None, limit: Optional[int] = None) -> list[DedupRecord]:
        """List uploads, newest first."""
        query = "SELECT * FROM uploads"
        params: list = []
        if camera_id:
            query += " WHERE camera_id = ?"
            params.append(camera_id)
        query += " ORDER BY uploaded_at DESC, recording_id DESC"
        if limit:
            query += " LIMIT ?"
            params.append(int(limit))
        try:
            with self._connect() as conn:
                rows = conn.execute(query, params).fetchall()
        except sqlite3.Error as e:
            raise DedupStoreError(f"Could not list uploads: {e}") from e
        return [self._row_to_record(row) for row in rows]
    
    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, timeout=self._timeout)
        conn.row_factory = sqlite3.Row
        return conn
    
    def _ensure_schema(self) -> None:
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            with self._connect() as conn:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS uploads (
                        recording_path TEXT PRIMARY KEY,
                        recording_id INTEGER NOT NULL,
                        media_id TEXT NOT NULL,
                        camera_id TEXT NOT NULL,
                        start_time TEXT NOT NULL,
                        stop_time TEXT,
                        uploaded_at TEXT NOT NULL
                    )
                    """
                )
                conn.execute("CREATE INDEX IF NOT EXISTS idx_uploads_camera ON uploads(camera_id)")
        except (OSError, sqlite3.Error) as e:
            raise DedupStoreError(f"Cannot open upload database {self._db_path}: {e}") from e
    
    def _row_to_record(self, row: sqlite3.Row) -> DedupRecord:
        return DedupRecord(
            recording_path=str(row["recording_path"]),
            recording_id=int(row["recording_id"]),
            media_id=str(row["media_id"]),
            camera_id=str(row["camera_id"]),
            start_time=str(row["start_time"]),
            stop_time=row["stop_time"],
            uploaded_at=str(row["uploaded_at"]),
        )


def _optional_str(value: object) -> Optional[str]:
    return None if value is None else str(value)
