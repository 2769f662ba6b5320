"""Data models for cameras, recordings and gateway events."""

import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


MEDIA_ID_SEPARATOR = "__"
MEDIA_ID_MAX_LENGTH = 255

_COMPONENT_PATTERN = re.compile(r"^[A-Za-z0-9]+(?:_[A-Za-z0-9]+)*$")


@dataclass(frozen=True)
class Camera:
    """Represents a camera writing recordings to local storage."""
    
    friendly_name: str
    manufacturer_id: str  # e.g. "AXIS-ACCC8E5E7513", also the storage folder name
    endpoint_id: str
    video_codec: str = "H264"
    audio_codec: str = "NONE"
    
    def __str__(self) -> str:
        return f"{self.friendly_name} ({self.manufacturer_id})"


@dataclass(frozen=True)
class Recording:
    """Represents one recording block found in a camera's index database."""
    
    id: int
    camera: Camera
    base_path: Path
    recording_file_name: str
    recording_path: str
    block_file_name: str
    block_path: str
    start_time: str
    stop_time: Optional[str] = None
    container: str = "mkv"
    
    @property
    def is_complete(self) -> bool:
        """A recording is complete once the camera has set its stop time."""
        return self.stop_time is not None
    
    @property
    def directory(self) -> Path:
        """Folder holding the block file and the artifacts derived from it."""
        return (
            self.base_path / self.camera.manufacturer_id / self.recording_path
            / self.recording_file_name / self.block_path
        )
    
    @property
    def source_file(self) -> Path:
        return self.directory / f"{self.block_file_name}.{self.container}"
    
    @property
    def output_file(self) -> Path:
        return self.directory / f"{self.block_file_name}.mp4"
    
    @property
    def payload_file(self) -> Path:
        return self.directory / "payload.json"
    
    @property
    def dedup_key(self) -> str:
        """Canonical recording path used as the idempotency key."""
        return self.directory.as_posix()
    
    @property
    def media_id(self) -> str:
        return MediaIdentity.from_recording(self).value
    
    def __str__(self) -> str:
        return f"Recording {self.id} on {self.camera.friendly_name} ({self.recording_path}/{self.recording_file_name})"


@dataclass(frozen=True)
class MediaIdentity:
    """External media id derived from camera and recording path components.
    
    The id is the components joined with ``__``. Components may only hold
    letters, digits and single inner underscores, so splitting on the
    separator gives the components back.
    """
    
    vendor: str
    serial: str
    path_parts: tuple[str, ...]
    recording_file_name: str
    block_path: str
    block_file_name: str
    
    @classmethod
    def from_components(
        cls,
        manufacturer_id: str,
        recording_path: str,
        recording_file_name: str,
        block_path: str,
        block_file_name: str,
    ) -> "MediaIdentity":
        """
        Build an identity from raw camera and index database values.
        
        Raises:
            ValueError: If a component cannot be represented
        """
        vendor, sep, serial = manufacturer_id.partition("-")
        if not sep:
            raise ValueError(f"Manufacturer id must look like VENDOR-SERIAL: {manufacturer_id!r}")
        path_parts = tuple(part for part in recording_path.split("/") if part)
        identity = cls(vendor, serial, path_parts, recording_file_name, block_path, block_file_name)
        identity.validate()
        return identity
    
    @classmethod
    def from_recording(cls, recording: Recording) -> "MediaIdentity":
        return cls.from_components(
            recording.camera.manufacturer_id,
            recording.recording_path,
            recording.recording_file_name,
            recording.block_path,
            recording.block_file_name,
        )
    
    @classmethod
    def parse(cls, value: str) -> "MediaIdentity":
        """
        Split a media id back into its components.
        
        Raises:
            ValueError: If value is not a media id
        """
        parts = value.split(MEDIA_ID_SEPARATOR)
        if len(parts) < 6:
            raise ValueError(f"Not a media id: {value!r}")
        identity = cls(
            vendor=parts[0],
            serial=parts[1],
            path_parts=tuple(parts[2:-3]),
            recording_file_name=parts[-3],
            block_path=parts[-2],
            block_file_name=parts[-1],
        )
        identity.validate()
        return identity
    
    @property
    def components(self) -> list[str]:
        return [
            self.vendor,
            self.serial,
            *self.path_parts,
            self.recording_file_name,
            self.block_path,
            self.block_file_name,
        ]
    
    @property
    def manufacturer_id(self) -> str:
        return f"{self.vendor}-{self.serial}"
    
    @property
    def recording_path(self) -> str:
        return "/".join(self.path_parts)
    
    @property
    def value(self) -> str:
        return MEDIA_ID_SEPARATOR.join(self.components)
    
    def validate(self) -> None:
        if not self.path_parts:
            raise ValueError("Recording path is empty")
        for component in self.components:
            if not _COMPONENT_PATTERN.match(component):
                raise ValueError(f"Invalid media id component: {component!r}")
        if len(self.value) > MEDIA_ID_MAX_LENGTH:
            raise ValueError(f"Media id longer than {MEDIA_ID_MAX_LENGTH} characters")
    
    def __str__(self) -> str:
        return self.value


def format_event_time(value: str) -> str:
    """Truncate a database timestamp to whole seconds and mark it as UTC.
    
    ``2024-06-01 10:00:00.123`` becomes ``2024-06-01T10:00:00Z``.
    """
    value = value.strip().rstrip("Z").replace(" ", "T")
    return value.split(".")[0] + "Z"


def format_utc(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass(frozen=True)
class MediaEvent:
    """Alexa.MediaMetadata event announcing one converted recording."""
    
    media_id: str
    endpoint_id: str
    name: str
    start_time: str
    end_time: str
    video_codec: str
    audio_codec: str
    uri: str
    uri_expire_time: str
    cause: str = "MOTION_DETECTED"
    
    NAMESPACE = "Alexa.MediaMetadata"
    NAME = "MediaCreatedOrUpdated"
    PAYLOAD_VERSION = "3"
    
    @classmethod
    def for_recording(
        cls,
        recording: Recording,
        video_uri_base: str,
        expires_at: datetime,
    ) -> "MediaEvent":
        """Build the event for a converted recording."""
        camera = recording.camera
        return cls(
            media_id=recording.media_id,
            endpoint_id=camera.endpoint_id,
            name=camera.friendly_name,
            start_time=format_event_time(recording.start_time),
            end_time=format_event_time(recording.stop_time or recording.start_time),
            video_codec=camera.video_codec,
            audio_codec=camera.audio_codec,
            uri=video_uri_base + recording.output_file.as_posix(),
            uri_expire_time=format_utc(expires_at),
        )
    
    def payload(self) -> dict:
        return {
            "media": {
                "id": self.media_id,
                "cause": self.cause,
                "recording": {
                    "name": self.name,
                    "startTime": self.start_time,
                    "endTime": self.end_time,
                    "videoCodec": self.video_codec,
                    "audioCodec": self.audio_codec,
                    "uri": {
                        "value": self.uri,
                        "expireTime": self.uri_expire_time,
                    },
                },
            },
        }
    
    def to_message(self, token: str, message_id: Optional[str] = None) -> dict:
        """Render the gateway request body."""
        return {
            "event": {
                "header": {
                    "namespace": self.NAMESPACE,
                    "name": self.NAME,
                    "messageId": message_id or str(uuid.uuid4()),
                    "payloadVersion": self.PAYLOAD_VERSION,
                },
                "endpoint": {
                    "scope": {
                        "type": "BearerToken",
                        "token": token,
                    },
                    "endpointId": self.endpoint_id,
                },
                "payload": self.payload(),
            },
        }


@dataclass(frozen=True)
class DedupRecord:
    """Proof that a recording's event was accepted by the gateway."""
    
    recording_path: str
    recording_id: int
    media_id: str
    camera_id: str
    start_time: str
    stop_time: Optional[str]
    uploaded_at: str
    
    def __str__(self) -> str:
        return f"{self.uploaded_at}  #{self.recording_id}  {self.media_id}"
