"""Recording session state machine.

One capture process at a time moves through::

    IDLE -> RECORDING <-> PAUSED -> PROCESSING -> IDLE

Every transition runs under the manager lock. ``stop_and_transcribe`` drops
the lock while the transcription engine runs so status queries stay fast,
then takes it again to commit the result. A failed transcription leaves the
session in PROCESSING with ``last_error`` set; ``start`` may begin a fresh
session from there, and ``stop_and_transcribe`` retries the same file.
"""
from __future__ import annotations

import enum
import logging
import os
import signal
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Protocol, Sequence

from deck.config import section
from deck.process_handle import ProcessHandle, send_signal

_LOG = logging.getLogger("recording")


class RecordingError(Exception):
    """Raised when a recording operation fails."""


class InvalidTransitionError(RecordingError):
    """Raised when an operation is not legal in the current state."""


class RecordingStatus(str, enum.Enum):
    IDLE = "idle"
    RECORDING = "recording"
    PAUSED = "paused"
    PROCESSING = "processing"


class Transcriber(Protocol):
    def transcribe(self, audio_path: Path) -> str: ...


@dataclass
class RecordingSession:
    status: RecordingStatus = RecordingStatus.IDLE
    process: ProcessHandle | None = None
    pid: int | None = None
    current_file: Path | None = None
    transcribing: bool = False
    last_error: str | None = None


@dataclass(frozen=True)
class CaptureSettings:
    media_root: str = "Music"
    subdir: str = "SpeechToText"
    recorder: str = "arecord"
    sample_format: str = "S16_LE"
    sample_rate: int = 48000
    channels: int = 1

    @classmethod
    def from_cfg(cls, cfg: dict[str, Any] | None = None) -> "CaptureSettings":
        cfg = cfg if cfg is not None else section("recording")
        defaults = cls()
        return cls(
            media_root=str(cfg.get("media_root") or defaults.media_root),
            subdir=str(cfg.get("subdir") or defaults.subdir),
            recorder=str(cfg.get("recorder") or defaults.recorder),
            sample_format=str(cfg.get("sample_format") or defaults.sample_format),
            sample_rate=int(cfg.get("sample_rate") or defaults.sample_rate),
            channels=int(cfg.get("channels") or defaults.channels),
        )

    def capture_command(self, destination: Path) -> list[str]:
        return [
            self.recorder,
            "-f", self.sample_format,
            "-r", str(self.sample_rate),
            "-c", str(self.channels),
            str(destination),
        ]


def recording_filename(now: datetime | None = None) -> str:
    stamp = (now or datetime.now()).strftime("%Y%m%d_%H%M%S")
    return f"recording_{stamp}.wav"


SpawnFn = Callable[[Sequence[str]], ProcessHandle]
SignalFn = Callable[[int, int], None]


class RecordingSessionManager:
    """Owns the single recording session and its capture process."""

    def __init__(
        self,
        transcriber: Transcriber,
        *,
        settings: CaptureSettings | None = None,
        spawn: SpawnFn = ProcessHandle.spawn,
        signal_pid: SignalFn = send_signal,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._transcriber = transcriber
        self._settings = settings or CaptureSettings()
        self._spawn = spawn
        self._signal_pid = signal_pid
        self._clock = clock
        self._lock = threading.Lock()
        self._session = RecordingSession()

    # --- queries ---
    def get_status(self) -> RecordingStatus:
        with self._lock:
            return self._session.status

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            session = self._session
            return {
                "status": session.status.value,
                "pid": session.pid,
                "current_file": str(session.current_file) if session.current_file else None,
                "transcribing": session.transcribing,
                "last_error": session.last_error,
            }

    # --- transitions ---
    def recording_dir(self) -> Path:
        home = os.environ.get("HOME")
        if not home:
            raise RecordingError("HOME environment variable is not set")
        return Path(home) / self._settings.media_root / self._settings.subdir

    def start(self) -> Path:
        with self._lock:
            session = self._session
            if session.status in (RecordingStatus.RECORDING, RecordingStatus.PAUSED):
                raise InvalidTransitionError("Recording already in progress")
            if session.status is RecordingStatus.PROCESSING and (
                session.transcribing or session.last_error is None
            ):
                raise InvalidTransitionError(
                    "Recording already in progress (transcription running)"
                )

            directory = self.recording_dir()
            try:
                directory.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise RecordingError(
                    f"Failed to create recording directory {directory}: {exc}"
                ) from exc

            destination = (directory / recording_filename(self._clock())).absolute()
            try:
                handle = self._spawn(self._settings.capture_command(destination))
            except OSError as exc:
                raise RecordingError(f"Failed to start recording: {exc}") from exc

            session.status = RecordingStatus.RECORDING
            session.process = handle
            session.pid = handle.pid
            session.current_file = destination
            session.last_error = None
            _LOG.info("Recording started (pid %s): %s", handle.pid, destination)
            return destination

    def pause(self) -> None:
        with self._lock:
            session = self._session
            if session.status is not RecordingStatus.RECORDING:
                raise InvalidTransitionError(
                    f"Cannot pause while {session.status.value}"
                )
            self._deliver(session, signal.SIGSTOP, "pause")
            session.status = RecordingStatus.PAUSED
            _LOG.info("Recording paused (pid %s)", session.pid)

    def resume(self) -> None:
        with self._lock:
            session = self._session
            if session.status is not RecordingStatus.PAUSED:
                raise InvalidTransitionError(
                    f"Cannot resume while {session.status.value}"
                )
            self._deliver(session, signal.SIGCONT, "resume")
            session.status = RecordingStatus.RECORDING
            _LOG.info("Recording resumed (pid %s)", session.pid)

    def _deliver(self, session: RecordingSession, signum: int, action: str) -> None:
        if session.pid is None:
            raise RecordingError(f"Cannot {action}: no recording process")
        try:
            self._signal_pid(session.pid, signum)
        except OSError as exc:
            raise RecordingError(f"Failed to {action} recording: {exc}") from exc

    def stop_and_transcribe(self) -> str:
        with self._lock:
            session = self._session
            if session.status is RecordingStatus.IDLE:
                raise InvalidTransitionError("No recording in progress")
            if session.transcribing:
                raise InvalidTransitionError("Transcription already in progress")

            audio_path = session.current_file
            if audio_path is None:
                raise RecordingError("No recording file to transcribe")

            handle = session.process
            if handle is not None:
                code = handle.terminate_and_reap()
                _LOG.info("Recording stopped (pid %s, exit %s)", handle.pid, code)
            session.process = None
            session.pid = None
            session.status = RecordingStatus.PROCESSING
            session.transcribing = True
            session.last_error = None

        try:
            text = self._transcriber.transcribe(audio_path)
        except Exception as exc:
            with self._lock:
                self._session.transcribing = False
                self._session.last_error = str(exc)
            _LOG.error("Transcription of %s failed: %s", audio_path, exc)
            raise

        with self._lock:
            session = self._session
            session.status = RecordingStatus.IDLE
            session.transcribing = False
            session.pid = None
            session.current_file = None
        return text

    def shutdown(self) -> None:
        """Terminate and reap any live capture process."""
        with self._lock:
            handle = self._session.process
            if handle is None:
                return
            handle.terminate_and_reap()
            self._session.process = None
            self._session.pid = None
            self._session.status = (
                RecordingStatus.PROCESSING
                if self._session.current_file is not None
                else RecordingStatus.IDLE
            )
            self._session.last_error = "Recording interrupted by shutdown"
