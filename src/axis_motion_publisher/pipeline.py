"""Per-recording pipeline and the pollers that feed it."""

import json
import threading
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Iterable, Optional, Sequence

from .auth import TokenExchangeError, TokenManager, TokenStore, utc_now
from .config import Settings
from .debug import log_debug, log_error, log_info, logger
from .dedup import DedupStoreError, Deduplicator
from .gateway import EventPublisher, GatewayError
from .models import Camera, MediaEvent, Recording
from .source import RecordingSource
from .transcoder import TranscodeError, Transcoder


class Stage(str, Enum):
    """Steps of one recording's pipeline, in execution order."""
    
    DEDUP_CHECK = "dedup-check"
    TRANSCODE = "transcode"
    DELETE_SOURCE = "delete-source"
    TOKEN = "token"
    BUILD_EVENT = "build-event"
    STORE_PAYLOAD = "store-payload"
    PUBLISH = "publish"
    RECORD = "record"


class Status(str, Enum):
    PUBLISHED = "published"
    ALREADY_UPLOADED = "already-uploaded"
    ABANDONED = "abandoned"


# Failures that may clear up by themselves on a later poll
RETRYABLE_ERRORS = (TranscodeError, TokenExchangeError, GatewayError, DedupStoreError)


@dataclass(frozen=True)
class PipelineOutcome:
    """Terminal state of one pipeline run."""
    
    recording: Recording
    status: Status
    stage: Optional[Stage] = None
    error: Optional[BaseException] = None
    attempt: int = 1
    event: Optional[MediaEvent] = None
    
    @property
    def retryable(self) -> bool:
        return self.status is Status.ABANDONED and isinstance(self.error, RETRYABLE_ERRORS)
    
    def __str__(self) -> str:
        text = f"{self.recording}: {self.status.value}"
        if self.status is Status.ABANDONED:
            text += f" at {self.stage.value if self.stage else '?'} ({self.error})"
        return text


class Orchestrator:
    """Runs dedup → transcode → token → publish → record for each recording.
    
    Every discovered recording gets its own run on a thread pool, so a slow
    transcode never holds up other recordings. A timer thread per camera
    drives discovery. A recording key is never submitted while a run for the
    same key is still going.
    
    Runs abandoned for a retryable reason are queued and submitted again on
    the camera's next poll, up to ``max_attempts`` runs in total.
    """
    
    def __init__(
        self,
        cameras: Sequence[Camera],
        source: RecordingSource,
        dedup: Deduplicator,
        transcoder: Transcoder,
        tokens: TokenManager,
        publisher: EventPublisher,
        video_uri_base: str,
        uri_ttl_seconds: int = 600,
        check_interval_seconds: float = 30.0,
        max_workers: int = 8,
        max_attempts: int = 3,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.cameras = tuple(cameras)
        self.source = source
        self.dedup = dedup
        self.transcoder = transcoder
        self.tokens = tokens
        self.publisher = publisher
        self.video_uri_base = video_uri_base
        self.uri_ttl_seconds = uri_ttl_seconds
        self.check_interval_seconds = check_interval_seconds
        self.max_attempts = max_attempts
        self._clock = clock
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="pipeline")
        self._closed = False
        self._lock = threading.Lock()
        self._in_flight: set[str] = set()
        self._retries: dict[str, dict[str, tuple[Recording, int]]] = {}
        self._pollers: list[threading.Thread] = []
    
    @classmethod
    def from_settings(cls, settings: Settings) -> "Orchestrator":
        """Wire up every component from configuration."""
        rec = settings.recordings
        amzn = settings.amazon
        tokens = TokenManager(
            TokenStore(settings.state.token_file),
            client_id=amzn.client_id,
            client_secret=amzn.client_secret,
            grant_code=amzn.grant_code,
            lwa_host=amzn.lwa_host,
            lwa_path=amzn.lwa_path,
            preemptive_refresh_seconds=amzn.preemptive_refresh_seconds,
            timeout=amzn.http_timeout_seconds,
        )
        publisher = EventPublisher(
            amzn.event_gateway_host,
            amzn.event_gateway_path,
            timeout=amzn.http_timeout_seconds,
        )
        return cls(
            cameras=settings.cameras,
            source=RecordingSource(rec.base_path, rec.query_limit),
            dedup=Deduplicator(settings.state.dedup_database),
            transcoder=Transcoder(rec.ffmpeg_path, rec.transcode_timeout_seconds),
            tokens=tokens,
            publisher=publisher,
            video_uri_base=rec.video_uri_base,
            uri_ttl_seconds=rec.uri_ttl_seconds,
            check_interval_seconds=rec.check_interval_seconds,
            max_workers=settings.pipeline.max_workers,
            max_attempts=settings.pipeline.max_attempts,
        )
    
    # ------------------------------------------------------------------
    # One recording
    # ------------------------------------------------------------------
    def process(self, recording: Recording, attempt: int = 1) -> PipelineOutcome:
        """
        Run the full pipeline for one recording.
        
        Never raises; failures are logged and folded into the outcome.
        """
        key = recording.dedup_key
        camera = recording.camera
        stage = Stage.DEDUP_CHECK
        event = None
        try:
            if self.dedup.exists(key):
                log_debug(f"Recording exists: {key}")
                return PipelineOutcome(recording, Status.ALREADY_UPLOADED, stage, attempt=attempt)
            
            stage = Stage.TRANSCODE
            self.transcoder.convert(recording.source_file, recording.output_file)
            
            stage = Stage.DELETE_SOURCE
            self.transcoder.delete_source(recording.source_file)
            
            stage = Stage.TOKEN
            token = self.tokens.get_token()
            
            stage = Stage.BUILD_EVENT
            expires_at = self._clock() + timedelta(seconds=self.uri_ttl_seconds)
            event = MediaEvent.for_recording(recording, self.video_uri_base, expires_at)
            log_debug(f"videoUri: {event.uri}")
            
            stage = Stage.STORE_PAYLOAD
            recording.payload_file.write_text(json.dumps(event.payload(), indent=2), encoding="utf-8")
            
            stage = Stage.PUBLISH
            self.publisher.publish(event, token)
            
            stage = Stage.RECORD
            self.dedup.record(key, {
                "recordingId": recording.id,
                "mediaId": event.media_id,
                "cameraId": camera.manufacturer_id,
                "recordingStartTime": recording.start_time,
                "recordingStopTime": recording.stop_time,
            })
        except GatewayError as e:
            log_error(f"Gateway POST error for recording {recording.id} on {camera}: {e.describe()}")
            return PipelineOutcome(recording, Status.ABANDONED, stage, e, attempt, event)
        except (TranscodeError, TokenExchangeError, DedupStoreError, OSError, ValueError) as e:
            log_error(f"Recording {recording.id} on {camera} failed at {stage.value}", e)
            return PipelineOutcome(recording, Status.ABANDONED, stage, e, attempt, event)
        except Exception as e:
            logger.exception(f"Unexpected error for recording {recording.id} on {camera} at {stage.value}")
            return PipelineOutcome(recording, Status.ABANDONED, stage, e, attempt, event)
        
        return PipelineOutcome(recording, Status.PUBLISHED, stage, attempt=attempt, event=event)
    
    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------
    def poll_camera(self, camera: Camera) -> list[Future]:
        """Discover new recordings for one camera and submit their runs."""
        candidates = [(recording, 1) for recording in self.source.poll(camera)]
        with self._lock:
            candidates.extend(self._retries.pop(camera.manufacturer_id, {}).values())
        
        futures = []
        for recording, attempt in candidates:
            key = recording.dedup_key
            with self._lock:
                if key in self._in_flight:
                    log_debug(f"{key} is already being processed")
                    continue
                self._in_flight.add(key)
            if attempt > 1:
                log_info(f"Retrying recording {recording.id} on {camera} (attempt {attempt}/{self.max_attempts})")
            futures.append(self._executor.submit(self._run, recording, attempt))
        return futures
    
    def _run(self, recording: Recording, attempt: int) -> PipelineOutcome:
        outcome = None
        try:
            outcome = self.process(recording, attempt)
            return outcome
        finally:
            key = recording.dedup_key
            with self._lock:
                self._in_flight.discard(key)
                if outcome is not None and outcome.retryable and attempt < self.max_attempts:
                    queue = self._retries.setdefault(recording.camera.manufacturer_id, {})
                    queue[key] = (recording, attempt + 1)
    
    def pending_retries(self, camera: Optional[Camera] = None) -> list[Recording]:
        with self._lock:
            queues: Iterable[dict] = (
                [self._retries.get(camera.manufacturer_id, {})] if camera else self._retries.values()
            )
            return [recording for queue in queues for recording, _ in queue.values()]
    
    def start_cycle(self) -> list[Future]:
        """Poll every camera once; returns the submitted runs."""
        futures = []
        for camera in self.cameras:
            futures.extend(self.poll_camera(camera))
        return futures
    
    def run_once(self) -> list[PipelineOutcome]:
        """Poll every camera once and wait for all resulting runs."""
        return [future.result() for future in as_completed(self.start_cycle())]
    
    def run(self, stop_event: threading.Event) -> None:
        """
        Poll every camera on its own timer until stop_event is set.
        
        Blocks; in-flight runs finish before it returns.
        """
        self._pollers = [
            threading.Thread(
                target=self._poll_loop,
                args=(camera, stop_event),
                name=f"poll-{camera.manufacturer_id}",
                daemon=True,
            )
            for camera in self.cameras
        ]
        for poller in self._pollers:
            poller.start()
        log_info(f"Watching {len(self.cameras)} camera(s) every {self.check_interval_seconds:g}s")
        
        stop_event.wait()
        for poller in self._pollers:
            poller.join()
        self.close()
    
    def _poll_loop(self, camera: Camera, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            try:
                self.poll_camera(camera)
            except Exception as e:
                if self._closed:
                    log_debug(f"Stopped polling {camera}: {e}")
                    return
                logger.exception(f"Polling {camera} failed")
            stop_event.wait(self.check_interval_seconds)
    
    def close(self) -> None:
        """Wait for running pipelines and release resources."""
        self._closed = True
        self._executor.shutdown(wait=True)
        self.publisher.close()
        self.tokens.close()
    
    def __enter__(self) -> "Orchestrator":
        return self
    
    def __exit__(self, *args) -> None:
        self.close()
