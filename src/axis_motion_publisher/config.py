"""Configuration file loading."""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Union

from .models import Camera


DEFAULT_CONFIG_PATH = "config.json"


class ConfigError(Exception):
    """Raised when the configuration file is missing or invalid."""
    pass


@dataclass(frozen=True)
class RecordingSettings:
    """Where recordings live and how often to look for new ones."""
    
    base_path: Path
    video_uri_base: str
    check_interval_ms: int = 30000
    query_limit: int = 3
    uri_ttl_seconds: int = 600
    ffmpeg_path: str = "/usr/bin/ffmpeg"
    transcode_timeout_seconds: float = 300.0
    
    @property
    def check_interval_seconds(self) -> float:
        return self.check_interval_ms / 1000


@dataclass(frozen=True)
class AmazonSettings:
    """Login with Amazon and Event Gateway settings."""
    
    client_id: str
    client_secret: str
    grant_code: str
    lwa_host: str = "api.amazon.com"
    lwa_path: str = "/auth/o2/token"
    event_gateway_host: str = "api.amazonalexa.com"
    event_gateway_path: str = "/v3/events"
    preemptive_refresh_seconds: int = 60
    http_timeout_seconds: float = 30.0


@dataclass(frozen=True)
class StateSettings:
    """Files the publisher owns."""
    
    token_file: Path = Path("tokens.json")
    dedup_database: Path = Path("uploads.db")


@dataclass(frozen=True)
class PipelineSettings:
    max_workers: int = 8
    max_attempts: int = 3


@dataclass(frozen=True)
class Settings:
    """Complete publisher configuration."""
    
    cameras: tuple[Camera, ...]
    recordings: RecordingSettings
    amazon: AmazonSettings
    state: StateSettings = field(default_factory=StateSettings)
    pipeline: PipelineSettings = field(default_factory=PipelineSettings)
    
    @classmethod
    def from_dict(cls, data: dict) -> "Settings":
        """
        Build settings from the parsed JSON document.
        
        Raises:
            ConfigError: If a required key is missing or has the wrong type
        """
        if not isinstance(data, dict):
            raise ConfigError("Configuration must be a JSON object")
        
        cameras_data = data.get("cameras") or []
        if not isinstance(cameras_data, list) or not cameras_data:
            raise ConfigError("At least one camera must be configured")
        cameras = tuple(_parse_camera(item, index) for index, item in enumerate(cameras_data))
        
        rec = _section(data, "recordings")
        recordings = RecordingSettings(
            base_path=Path(_require(rec, "recordingsBasePath", str, "recordings")),
            video_uri_base=_require(rec, "videoUriBase", str, "recordings"),
            check_interval_ms=_optional(rec, "checkRecordingsInterval", int, 30000, "recordings"),
            query_limit=_optional(rec, "queryLimit", int, 3, "recordings"),
            uri_ttl_seconds=_optional(rec, "uriTtlSeconds", int, 600, "recordings"),
            ffmpeg_path=_optional(rec, "ffmpegPath", str, "/usr/bin/ffmpeg", "recordings"),
            transcode_timeout_seconds=float(
                _optional(rec, "transcodeTimeoutSeconds", (int, float), 300, "recordings")
            ),
        )
        if recordings.check_interval_ms <= 0:
            raise ConfigError("recordings.checkRecordingsInterval must be positive")
        if recordings.query_limit <= 0:
            raise ConfigError("recordings.queryLimit must be positive")
        
        amzn = _section(data, "amzn")
        amazon = AmazonSettings(
            client_id=_require(amzn, "clientId", str, "amzn"),
            client_secret=_require(amzn, "clientSecret", str, "amzn"),
            grant_code=_optional(amzn, "grantCode", str, "", "amzn"),
            lwa_host=_optional(amzn, "lwaHost", str, "api.amazon.com", "amzn"),
            lwa_path=_optional(amzn, "lwaPath", str, "/auth/o2/token", "amzn"),
            event_gateway_host=_optional(amzn, "eventGatewayHost", str, "api.amazonalexa.com", "amzn"),
            event_gateway_path=_optional(amzn, "eventGatewayPath", str, "/v3/events", "amzn"),
            preemptive_refresh_seconds=_optional(amzn, "preemptiveRefreshTime", int, 60, "amzn"),
            http_timeout_seconds=float(_optional(amzn, "httpTimeoutSeconds", (int, float), 30, "amzn")),
        )
        
        state_data = data.get("state") or {}
        state = StateSettings(
            token_file=Path(_optional(state_data, "tokenFile", str, "tokens.json", "state")),
            dedup_database=Path(_optional(state_data, "dedupDatabase", str, "uploads.db", "state")),
        )
        
        pipe = data.get("pipeline") or {}
        pipeline = PipelineSettings(
            max_workers=_optional(pipe, "maxWorkers", int, 8, "pipeline"),
            max_attempts=_optional(pipe, "maxAttempts", int, 3, "pipeline"),
        )
        if pipeline.max_workers < 1 or pipeline.max_attempts < 1:
            raise ConfigError("pipeline.maxWorkers and pipeline.maxAttempts must be at least 1")
        
        return cls(cameras=cameras, recordings=recordings, amazon=amazon, state=state, pipeline=pipeline)


def _section(data: dict, name: str) -> dict:
    section = data.get(name)
    if not isinstance(section, dict):
        raise ConfigError(f"Missing configuration section: {name}")
    return section


def _require(section: dict, key: str, kind: Any, where: str) -> Any:
    if key not in section:
        raise ConfigError(f"Missing configuration key: {where}.{key}")
    return _check(section[key], key, kind, where)


def _optional(section: dict, key: str, kind: Any, default: Any, where: str) -> Any:
    if section.get(key) is None:
        return default
    return _check(section[key], key, kind, where)


def _check(value: Any, key: str, kind: Any, where: str) -> Any:
    # bool is an int subclass; never accept it for numeric settings
    if isinstance(value, bool) or not isinstance(value, kind):
        raise ConfigError(f"Invalid value for {where}.{key}: {value!r}")
    return value


def _parse_camera(item: Any, index: int) -> Camera:
    where = f"cameras[{index}]"
    if not isinstance(item, dict):
        raise ConfigError(f"{where} must be an object")
    return Camera(
        friendly_name=_require(item, "friendlyName", str, where),
        manufacturer_id=_require(item, "manufacturerId", str, where),
        endpoint_id=_require(item, "endpointId", str, where),
        video_codec=_optional(item, "videoCodec", str, "H264", where),
        audio_codec=_optional(item, "audioCodec", str, "NONE", where),
    )


def load_settings(path: Union[str, Path] = DEFAULT_CONFIG_PATH) -> Settings:
    """
    Load settings from a JSON file.
    
    Args:
        path: Configuration file path
    
    Returns:
        Parsed Settings
    
    Raises:
        ConfigError: If the file cannot be read or is invalid
    """
    config_path = Path(path)
    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise ConfigError(f"Configuration file not found: {config_path}") from e
    except (OSError, ValueError) as e:
        raise ConfigError(f"Cannot read configuration {config_path}: {e}") from e
    return Settings.from_dict(data)
