#!/usr/bin/env python3
"""Speech-to-text for finished recordings, ending on the clipboard."""

from __future__ import annotations

import argparse
import logging
import subprocess
import sys
from pathlib import Path
from typing import Any, Sequence

from deck.config import section
from deck.desktop import Clipboard, ClipboardError, play_sound
from deck.text_normalization import normalize_transcript

_LOG = logging.getLogger("transcription")

__all__ = [
    "TranscriptionError",
    "TranscriptionOrchestrator",
    "transcript_path_for",
]


class TranscriptionError(Exception):
    """Raised when transcription should be treated as a failure."""


def _bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on", "enabled"}
    return False


def transcript_path_for(audio_path: Path, scratch_dir: Path) -> Path:
    """Return where the engine writes the transcript for ``audio_path``."""
    name = audio_path.name
    if not name or name in {".", ".."}:
        raise TranscriptionError(f"Cannot determine transcript name for {audio_path}")
    return scratch_dir / Path(name).with_suffix(".txt").name


class TranscriptionOrchestrator:
    def __init__(
        self,
        *,
        command: str = "whisper",
        model: str = "base",
        use_gpu: bool = True,
        scratch_dir: Path | str = "/tmp/deck-transcripts",
        clipboard: Clipboard | None = None,
        completion_sound: str | None = None,
        sound_player: str = "paplay",
    ) -> None:
        self.command = command
        self.model = model
        self.use_gpu = use_gpu
        self.scratch_dir = Path(scratch_dir)
        self.clipboard = clipboard or Clipboard()
        self.completion_sound = completion_sound
        self.sound_player = sound_player

    @classmethod
    def from_cfg(cls, cfg: dict[str, Any] | None = None) -> "TranscriptionOrchestrator":
        cfg = cfg if cfg is not None else section("transcription")
        return cls(
            command=str(cfg.get("command") or "whisper"),
            model=str(cfg.get("model") or "base"),
            use_gpu=_bool(cfg.get("use_gpu", True)),
            scratch_dir=str(cfg.get("scratch_dir") or "/tmp/deck-transcripts"),
            clipboard=Clipboard.from_cfg(),
            completion_sound=cfg.get("completion_sound") or None,
            sound_player=str(cfg.get("sound_player") or "paplay"),
        )

    def build_command(self, audio_path: Path) -> list[str]:
        return [
            self.command,
            str(audio_path),
            "--model",
            self.model,
            "--device",
            "cuda" if self.use_gpu else "cpu",
            "--output_format",
            "txt",
            "--output_dir",
            str(self.scratch_dir),
        ]

    def run_engine(self, audio_path: Path) -> Path:
        try:
            self.scratch_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise TranscriptionError(
                f"Failed to create transcript directory {self.scratch_dir}: {exc}"
            ) from exc

        args = self.build_command(audio_path)
        _LOG.info("Transcribing %s with model %s", audio_path, self.model)
        try:
            proc = subprocess.run(
                args,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as exc:
            raise TranscriptionError(f"{self.command} not found") from exc
        except OSError as exc:
            raise TranscriptionError(f"Failed to run {self.command}: {exc}") from exc

        if proc.returncode != 0:
            stderr = (proc.stderr or "").strip()
            raise TranscriptionError(
                f"{self.command} exited with {proc.returncode}: {stderr}"
            )
        return transcript_path_for(audio_path, self.scratch_dir)

    def transcribe(self, audio_path: Path | str) -> str:
        source = Path(audio_path)
        transcript_path = self.run_engine(source)
        try:
            raw = transcript_path.read_text(encoding="utf-8")
        except OSError as exc:
            raise TranscriptionError(
                f"Failed to read transcript {transcript_path}: {exc}"
            ) from exc

        text = normalize_transcript(raw)
        try:
            self.clipboard.copy(text)
        except ClipboardError as exc:
            raise TranscriptionError(str(exc)) from exc
        _LOG.info("Transcript copied to clipboard (%d chars)", len(text))
        play_sound(self.completion_sound, self.sound_player)
        return text


def _parse_cli_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Transcribe a recording to the clipboard")
    parser.add_argument("source", help="Path to the source WAV file")
    parser.add_argument("--model", help="Override the configured model tier")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_cli_args(argv)
    orchestrator = TranscriptionOrchestrator.from_cfg()
    if args.model:
        orchestrator.model = args.model
    try:
        text = orchestrator.transcribe(args.source)
    except TranscriptionError as exc:
        print(f"[transcription] ERROR: {exc}", flush=True)
        return 1
    print(text, flush=True)
    return 0


if __name__ == "__main__":
    sys.exit(main())
