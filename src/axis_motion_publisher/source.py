"""Discovery of completed recordings in AXIS camera storage."""

import sqlite3
import threading
from pathlib import Path
from typing import Union

from .debug import log_debug, log_error, log_info
from .models import Camera, Recording


# AXIS cameras keep one sqlite index per storage folder. The vendor guards
# the file against writes, so it is only ever opened read-only.
RECORDINGS_QUERY = """
    SELECT recordings.id AS recordingId,
        recordings.filename AS recordingFileName,
        recordings.path AS recordingPath,
        blocks.filename AS blockFileName,
        blocks.path AS blockPath,
        recordings.starttime AS startTime,
        recordings.stoptime AS stopTime
    FROM recordings
    INNER JOIN blocks ON blocks.recording_id = recordings.id
    ORDER BY recordingId DESC LIMIT ?
"""

INDEX_DB_NAME = "index.db"


class RecordingSource:
    """Finds recordings the cameras finished writing since the last poll.
    
    Each camera has its own high-water mark: the highest recording id handed
    out so far. Only completed recordings above the mark are returned.
    """
    
    def __init__(self, base_path: Union[str, Path], query_limit: int = 3):
        """
        Initialize source.
        
        Args:
            base_path: Folder holding one sub-folder per camera manufacturer id
            query_limit: How many of the newest recordings to look at per poll
        """
        self.base_path = Path(base_path)
        self.query_limit = query_limit
        self._high_water: dict[str, int] = {}
        self._lock = threading.Lock()
    
    def database_path(self, camera: Camera) -> Path:
        return self.base_path / camera.manufacturer_id / INDEX_DB_NAME
    
    def high_water_mark(self, camera: Camera) -> int:
        with self._lock:
            return self._high_water.get(camera.manufacturer_id, 0)
    
    def poll(self, camera: Camera) -> list[Recording]:
        """
        Return newly completed recordings for a camera, newest first.
        
        Database problems are logged and reported as nothing new.
        """
        log_info(f"Checking for new recordings on camera {camera.friendly_name}.")
        
        rows = self._query(camera)
        if not rows:
            log_debug("No database records found.")
            return []
        
        mark = self.high_water_mark(camera)
        found = []
        for row in rows:
            log_debug(
                f"db row: {row['recordingId']} {row['recordingFileName']} {row['recordingPath']} "
                f"{row['blockFileName']} {row['blockPath']} {row['startTime']} {row['stopTime']}"
            )
            if int(row["recordingId"]) <= mark:
                continue
            # stopTime is null while the camera is still writing
            if row["stopTime"] is None:
                log_info(f"Recording {row['recordingId']} in progress.")
                continue
            found.append(self._row_to_recording(camera, row))
        
        if found:
            with self._lock:
                current = self._high_water.get(camera.manufacturer_id, 0)
                self._high_water[camera.manufacturer_id] = max(current, max(r.id for r in found))
        return found
    
    def _query(self, camera: Camera) -> list[sqlite3.Row]:
        db_path = self.database_path(camera)
        if not db_path.exists():
            log_error(f"Camera database not found: {db_path}")
            return []
        
        try:
            conn = sqlite3.connect(f"{db_path.resolve().as_uri()}?mode=ro", uri=True)
        except sqlite3.Error as e:
            log_error(f"Cannot open {db_path}", e)
            return []
        try:
            conn.row_factory = sqlite3.Row
            return conn.execute(RECORDINGS_QUERY, (self.query_limit,)).fetchall()
        except sqlite3.Error as e:
            log_error(f"Database error on {camera.friendly_name}", e)
            return []
        finally:
            conn.close()
    
    def _row_to_recording(self, camera: Camera, row: sqlite3.Row) -> Recording:
        return Recording(
            id=int(row["recordingId"]),
            camera=camera,
            base_path=self.base_path,
            recording_file_name=str(row["recordingFileName"]),
            recording_path=str(row["recordingPath"]),
            block_file_name=str(row["blockFileName"]),
            block_path=str(row["blockPath"]),
            start_time=str(row["startTime"]),
            stop_time=str(row["stopTime"]),
        )
