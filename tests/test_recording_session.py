from __future__ import annotations

import signal
import threading
from datetime import datetime
from pathlib import Path

import pytest

from deck.recording_session import (
    CaptureSettings,
    InvalidTransitionError,
    RecordingError,
    RecordingSessionManager,
    RecordingStatus,
    recording_filename,
)


class FakeHandle:
    def __init__(self, pid: int) -> None:
        self.pid = pid
        self.reaped = False

    def terminate_and_reap(self, timeout: float = 5.0):
        self.reaped = True
        return 0


class FakeSpawner:
    def __init__(self) -> None:
        self.calls: list[list[str]] = []
        self.handles: list[FakeHandle] = []
        self.fail: OSError | None = None

    def __call__(self, argv):
        if self.fail is not None:
            raise self.fail
        self.calls.append(list(argv))
        handle = FakeHandle(4000 + len(self.handles))
        self.handles.append(handle)
        return handle


class FakeTranscriber:
    def __init__(self, text: str = "hello world") -> None:
        self.text = text
        self.error: Exception | None = None
        self.seen: list[Path] = []

    def transcribe(self, audio_path):
        self.seen.append(audio_path)
        if self.error is not None:
            raise self.error
        return self.text


@pytest.fixture
def home(tmp_path, monkeypatch):
    monkeypatch.setenv("HOME", str(tmp_path))
    return tmp_path


def _manager(transcriber=None, spawner=None, signals=None):
    ticks = iter(
        [
            datetime(2024, 6, 10, 9, 13, 20),
            datetime(2024, 6, 10, 9, 20, 5),
            datetime(2024, 6, 10, 9, 30, 0),
        ]
    )
    sent = signals if signals is not None else []
    return RecordingSessionManager(
        transcriber or FakeTranscriber(),
        settings=CaptureSettings(),
        spawn=spawner or FakeSpawner(),
        signal_pid=lambda pid, signum: sent.append((pid, signum)),
        clock=lambda: next(ticks),
    )


def test_recording_filename_format():
    assert recording_filename(datetime(2024, 1, 2, 3, 4, 5)) == "recording_20240102_030405.wav"


def test_capture_command_uses_arecord_defaults(tmp_path):
    dest = tmp_path / "x.wav"
    assert CaptureSettings().capture_command(dest) == [
        "arecord", "-f", "S16_LE", "-r", "48000", "-c", "1", str(dest),
    ]


def test_start_spawns_capture_into_speech_dir(home):
    spawner = FakeSpawner()
    manager = _manager(spawner=spawner)

    path = manager.start()

    assert path == home / "Music" / "SpeechToText" / "recording_20240610_091320.wav"
    assert path.parent.is_dir()
    assert spawner.calls[0][-1] == str(path)
    snapshot = manager.snapshot()
    assert snapshot["status"] == "recording"
    assert snapshot["pid"] == 4000
    assert snapshot["current_file"] == str(path)


def test_second_start_is_rejected_without_touching_session(home):
    spawner = FakeSpawner()
    manager = _manager(spawner=spawner)
    first = manager.start()

    with pytest.raises(InvalidTransitionError, match="already in progress"):
        manager.start()

    assert len(spawner.calls) == 1
    snapshot = manager.snapshot()
    assert snapshot["pid"] == 4000
    assert snapshot["current_file"] == str(first)


def test_pause_and_resume_signal_the_pid(home):
    sent = []
    manager = _manager(signals=sent)
    manager.start()

    manager.pause()
    assert manager.get_status() is RecordingStatus.PAUSED
    manager.resume()
    assert manager.get_status() is RecordingStatus.RECORDING

    assert sent == [(4000, signal.SIGSTOP), (4000, signal.SIGCONT)]


def test_illegal_transitions_leave_state_alone(home):
    manager = _manager()

    with pytest.raises(InvalidTransitionError):
        manager.pause()
    with pytest.raises(InvalidTransitionError):
        manager.resume()
    with pytest.raises(InvalidTransitionError, match="No recording in progress"):
        manager.stop_and_transcribe()
    assert manager.get_status() is RecordingStatus.IDLE

    manager.start()
    with pytest.raises(InvalidTransitionError):
        manager.resume()
    assert manager.get_status() is RecordingStatus.RECORDING


def test_signal_failure_keeps_status(home):
    def _fail(pid, signum):
        raise ProcessLookupError("gone")

    manager = RecordingSessionManager(
        FakeTranscriber(),
        spawn=FakeSpawner(),
        signal_pid=_fail,
    )
    manager.start()

    with pytest.raises(RecordingError, match="Failed to pause"):
        manager.pause()
    assert manager.get_status() is RecordingStatus.RECORDING


def test_stop_reaps_and_returns_transcript(home):
    spawner = FakeSpawner()
    transcriber = FakeTranscriber("meeting notes")
    manager = _manager(transcriber=transcriber, spawner=spawner)
    path = manager.start()
    manager.pause()

    text = manager.stop_and_transcribe()

    assert text == "meeting notes"
    assert spawner.handles[0].reaped
    assert transcriber.seen == [path]
    snapshot = manager.snapshot()
    assert snapshot["status"] == "idle"
    assert snapshot["pid"] is None
    assert snapshot["current_file"] is None


def test_failed_transcription_stays_processing_and_recovers(home):
    transcriber = FakeTranscriber()
    transcriber.error = RuntimeError("whisper not found")
    manager = _manager(transcriber=transcriber)
    first = manager.start()

    with pytest.raises(RuntimeError):
        manager.stop_and_transcribe()

    snapshot = manager.snapshot()
    assert snapshot["status"] == "processing"
    assert snapshot["pid"] is None
    assert snapshot["last_error"] == "whisper not found"

    # Retrying transcribes the same file.
    transcriber.error = None
    assert manager.stop_and_transcribe() == "hello world"
    assert transcriber.seen == [first, first]
    assert manager.get_status() is RecordingStatus.IDLE


def test_start_allowed_after_failed_transcription(home):
    transcriber = FakeTranscriber()
    transcriber.error = RuntimeError("boom")
    manager = _manager(transcriber=transcriber)
    manager.start()
    with pytest.raises(RuntimeError):
        manager.stop_and_transcribe()

    second = manager.start()

    assert second.name == "recording_20240610_092005.wav"
    assert manager.get_status() is RecordingStatus.RECORDING
    assert manager.snapshot()["last_error"] is None


def test_start_rejected_while_transcription_runs(home):
    entered = threading.Event()
    release = threading.Event()

    class SlowTranscriber:
        def transcribe(self, audio_path):
            entered.set()
            release.wait(5)
            return "done"

    manager = _manager(transcriber=SlowTranscriber())
    manager.start()
    results = []
    worker = threading.Thread(target=lambda: results.append(manager.stop_and_transcribe()))
    worker.start()
    assert entered.wait(5)

    # Queries stay responsive while the engine runs.
    assert manager.get_status() is RecordingStatus.PROCESSING
    with pytest.raises(InvalidTransitionError):
        manager.start()
    with pytest.raises(InvalidTransitionError):
        manager.stop_and_transcribe()

    release.set()
    worker.join(5)
    assert results == ["done"]
    assert manager.get_status() is RecordingStatus.IDLE


def test_spawn_failure_leaves_idle(home):
    spawner = FakeSpawner()
    spawner.fail = FileNotFoundError(2, "No such file or directory", "arecord")
    manager = _manager(spawner=spawner)

    with pytest.raises(RecordingError, match="Failed to start recording"):
        manager.start()
    assert manager.get_status() is RecordingStatus.IDLE


def test_missing_home_is_reported(monkeypatch):
    monkeypatch.delenv("HOME", raising=False)
    manager = _manager()

    with pytest.raises(RecordingError, match="HOME environment variable is not set"):
        manager.start()
    assert manager.get_status() is RecordingStatus.IDLE


def test_shutdown_reaps_live_process(home):
    spawner = FakeSpawner()
    manager = _manager(spawner=spawner)
    manager.start()

    manager.shutdown()

    assert spawner.handles[0].reaped
    assert manager.snapshot()["pid"] is None
