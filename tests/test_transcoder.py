import subprocess
from pathlib import Path

import pytest

from axis_motion_publisher.transcoder import (
    CommandResult,
    RecordingNotReadyError,
    TranscodeError,
    Transcoder,
    run_command,
)


def _source(tmp_path: Path) -> Path:
    source = tmp_path / "blk1.mkv"
    source.write_bytes(b"mkv-data")
    return source


def test_container_copy_arguments(tmp_path, fake_runner):
    source = _source(tmp_path)
    output = tmp_path / "blk1.mp4"
    Transcoder("/opt/ffmpeg", runner=fake_runner).convert(source, output)

    command, args = fake_runner.calls[0]
    assert command == "/opt/ffmpeg"
    assert args == [
        "-hide_banner", "-loglevel", "error", "-nostdin", "-n",
        "-i", str(source), "-codec", "copy", str(output),
    ]
    assert output.exists()


def test_diagnostic_output_means_not_ready(tmp_path, fake_runner):
    source = _source(tmp_path)
    fake_runner.stderr_for["blk1.mkv"] = "blk1.mkv: Invalid data found when processing input\n"

    with pytest.raises(RecordingNotReadyError, match="Invalid data"):
        Transcoder(runner=fake_runner).convert(source, tmp_path / "blk1.mp4")
    assert source.exists()


def test_stderr_wins_over_exit_code(tmp_path):
    def runner(command, args, timeout):
        return CommandResult(exit_code=0, stdout="", stderr="moov atom not found")

    with pytest.raises(RecordingNotReadyError):
        Transcoder(runner=runner).convert(_source(tmp_path), tmp_path / "out.mp4")


def test_clean_exit_with_nonzero_code_is_success(tmp_path):
    def runner(command, args, timeout):
        return CommandResult(exit_code=1, stdout="", stderr="")

    Transcoder(runner=runner).convert(_source(tmp_path), tmp_path / "out.mp4")


def test_missing_executable(tmp_path):
    def runner(command, args, timeout):
        raise FileNotFoundError(command)

    with pytest.raises(TranscodeError) as excinfo:
        Transcoder("/nope/ffmpeg", runner=runner).convert(_source(tmp_path), tmp_path / "out.mp4")
    assert not isinstance(excinfo.value, RecordingNotReadyError)


def test_timeout_is_reported(tmp_path):
    def runner(command, args, timeout):
        raise subprocess.TimeoutExpired(command, timeout)

    with pytest.raises(TranscodeError, match="timed out"):
        Transcoder(timeout=1, runner=runner).convert(_source(tmp_path), tmp_path / "out.mp4")


def test_already_converted_output_is_kept(tmp_path, fake_runner):
    output = tmp_path / "blk1.mp4"
    output.write_bytes(b"mp4-data")

    Transcoder(runner=fake_runner).convert(tmp_path / "blk1.mkv", output)

    assert fake_runner.calls == []
    assert output.read_bytes() == b"mp4-data"


def test_partial_output_does_not_block_retry(tmp_path):
    source = _source(tmp_path)
    output = tmp_path / "blk1.mp4"
    replies = []

    def runner(command, args, timeout):
        # behaves like ffmpeg -n
        if output.exists():
            return CommandResult(exit_code=1, stdout="", stderr=f"File '{output}' already exists. Exiting.")
        output.write_bytes(b"half-an-mp4")
        return replies.pop(0)

    replies.append(CommandResult(exit_code=1, stdout="", stderr="Truncating packet of size 1024"))
    transcoder = Transcoder(runner=runner)
    with pytest.raises(RecordingNotReadyError, match="Truncating"):
        transcoder.convert(source, output)
    assert not output.exists()

    replies.append(CommandResult(exit_code=0, stdout="", stderr=""))
    transcoder.convert(source, output)
    assert output.read_bytes() == b"half-an-mp4"


def test_leftover_output_is_replaced_while_source_remains(tmp_path, fake_runner):
    source = _source(tmp_path)
    output = tmp_path / "blk1.mp4"
    output.write_bytes(b"stale")

    Transcoder(runner=fake_runner).convert(source, output)

    assert len(fake_runner.calls) == 1
    assert output.read_bytes() == b"mkv-data"


def test_delete_source(tmp_path):
    source = _source(tmp_path)
    transcoder = Transcoder()
    assert transcoder.delete_source(source) is True
    assert not source.exists()
    assert transcoder.delete_source(source) is False


def test_delete_failure_is_not_raised(tmp_path, monkeypatch):
    source = _source(tmp_path)

    def refuse(self, missing_ok=False):
        raise PermissionError("read-only storage")

    monkeypatch.setattr(Path, "unlink", refuse)
    assert Transcoder().delete_source(source) is False


def test_run_command_captures_streams(monkeypatch):
    seen = {}

    def fake_run(cmd, **kwargs):
        seen["cmd"] = cmd
        seen.update(kwargs)
        return subprocess.CompletedProcess(cmd, 0, stdout="out", stderr="")

    monkeypatch.setattr(subprocess, "run", fake_run)
    result = run_command("/usr/bin/ffmpeg", ["-version"], timeout=3)

    assert result == CommandResult(exit_code=0, stdout="out", stderr="")
    assert seen["cmd"] == ["/usr/bin/ffmpeg", "-version"]
    assert seen["timeout"] == 3
    assert seen["stdin"] is subprocess.DEVNULL
