"""Matroska to MP4 repackaging with ffmpeg."""

import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Sequence

from .debug import log_debug, log_warning


@dataclass(frozen=True)
class CommandResult:
    """Outcome of an external command."""
    
    exit_code: int
    stdout: str
    stderr: str


def run_command(command: str, args: Sequence[str], timeout: Optional[float] = None) -> CommandResult:
    """
    Run an external command and capture its output.
    
    Raises:
        OSError: If the command cannot be started
        subprocess.TimeoutExpired: If it runs longer than timeout
    """
    result = subprocess.run(
        [command, *args],
        stdin=subprocess.DEVNULL,
        capture_output=True,
        text=True,
        timeout=timeout,
    )
    return CommandResult(exit_code=result.returncode, stdout=result.stdout, stderr=result.stderr)


Runner = Callable[[str, Sequence[str], Optional[float]], CommandResult]


class TranscodeError(Exception):
    """Raised when ffmpeg cannot be run to completion."""
    pass


class RecordingNotReadyError(TranscodeError):
    """Raised when ffmpeg reports a problem with the source file.
    
    The camera may still be finalising the block, so the recording can be
    tried again later.
    """
    pass


class Transcoder:
    """Repackages a recording into MP4 without re-encoding.
    
    ffmpeg runs with ``-loglevel error``, so anything on stderr is a real
    problem. stderr, not the exit code, decides success: exit codes are not
    reliable for media that is still being written.
    """
    
    def __init__(
        self,
        ffmpeg_path: str = "/usr/bin/ffmpeg",
        timeout: Optional[float] = 300.0,
        runner: Runner = run_command,
    ):
        self.ffmpeg_path = ffmpeg_path
        self.timeout = timeout
        self._run = runner
    
    def build_args(self, source: Path, output: Path) -> list[str]:
        return [
            "-hide_banner",
            "-loglevel", "error",
            "-nostdin",
            "-n",
            "-i", str(source),
            "-codec", "copy",
            str(output),
        ]
    
    def convert(self, source: Path, output: Path) -> None:
        """
        Convert source into output with a container copy.
        
        Args:
            source: Recording file written by the camera
            output: MP4 file to create
        
        Raises:
            RecordingNotReadyError: If ffmpeg wrote diagnostics
            TranscodeError: If ffmpeg could not be run
        """
        if output.exists() and not source.exists():
            log_debug(f"{output} already converted by an earlier attempt")
            return
        # -n refuses to overwrite; drop what a failed run left behind
        self._discard(output)
        
        try:
            result = self._run(self.ffmpeg_path, self.build_args(source, output), self.timeout)
        except subprocess.TimeoutExpired as e:
            raise TranscodeError(f"ffmpeg timed out after {self.timeout}s on {source}") from e
        except OSError as e:
            raise TranscodeError(f"Cannot run {self.ffmpeg_path}: {e}") from e
        
        log_debug(f"ffmpeg exit code for {source.name}: {result.exit_code}")
        if result.stderr.strip():
            log_debug(f"ffmpeg stderr: {result.stderr.strip()}")
            self._discard(output)
            raise RecordingNotReadyError(f"No recording found at {source}: {result.stderr.strip()[:200]}")
        if result.stdout:
            log_debug(f"ffmpeg stdout: {result.stdout.strip()}")
    
    def _discard(self, output: Path) -> None:
        try:
            output.unlink()
        except FileNotFoundError:
            return
        except OSError as e:
            log_warning(f"Could not remove partial output {output}: {e}")
            return
        log_debug(f"Removed partial output {output}")
    
    def delete_source(self, source: Path) -> bool:
        """
        Remove the original recording after a successful conversion.
        
        Returns:
            True if the file was removed; failures are only logged
        """
        try:
            source.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            log_warning(f"Could not delete {source}: {e}")
            return False
        log_debug(f"Deleted {source}")
        return True
