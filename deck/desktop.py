"""Clipboard and sound helpers backed by desktop command-line tools."""
from __future__ import annotations

import logging
import shutil
import subprocess
from pathlib import Path
from typing import Any, Sequence

from deck.config import section

_LOG = logging.getLogger("transcription")

DEFAULT_CLIPBOARD_BACKENDS: tuple[tuple[str, ...], ...] = (
    ("wl-copy",),
    ("xclip", "-selection", "clipboard"),
)


class ClipboardError(Exception):
    """Raised when no clipboard tool is usable or the write fails."""


def _normalise_backends(raw: Any) -> tuple[tuple[str, ...], ...]:
    backends: list[tuple[str, ...]] = []
    if isinstance(raw, (list, tuple)):
        for entry in raw:
            if isinstance(entry, str) and entry.strip():
                backends.append(tuple(entry.split()))
            elif isinstance(entry, (list, tuple)) and entry:
                backends.append(tuple(str(token) for token in entry))
    return tuple(backends) or DEFAULT_CLIPBOARD_BACKENDS


class Clipboard:
    """Pipe text into the first clipboard tool found on PATH."""

    def __init__(self, backends: Sequence[Sequence[str]] | None = None) -> None:
        self.backends = _normalise_backends(backends) if backends else DEFAULT_CLIPBOARD_BACKENDS

    @classmethod
    def from_cfg(cls, cfg: dict[str, Any] | None = None) -> "Clipboard":
        cfg = cfg if cfg is not None else section("clipboard")
        return cls(_normalise_backends(cfg.get("backends")))

    def resolve(self) -> list[str] | None:
        for argv in self.backends:
            executable = shutil.which(argv[0])
            if executable:
                return [executable, *argv[1:]]
        return None

    def copy(self, text: str) -> None:
        argv = self.resolve()
        if argv is None:
            names = ", ".join(entry[0] for entry in self.backends)
            raise ClipboardError(f"No clipboard tool available (tried {names})")
        try:
            result = subprocess.run(
                argv,
                input=text.encode("utf-8"),
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                check=False,
            )
        except OSError as exc:
            raise ClipboardError(f"Failed to run {argv[0]}: {exc}") from exc
        if result.returncode != 0:
            stderr = (result.stderr or b"").decode("utf-8", errors="replace").strip()
            raise ClipboardError(
                f"{Path(argv[0]).name} exited with {result.returncode}: {stderr}"
            )


def play_sound(sound_file: str | None, player: str = "paplay") -> None:
    """Play a sound file without waiting; every failure is ignored."""
    if not sound_file or not Path(sound_file).exists():
        return
    try:
        subprocess.Popen(
            [player, sound_file],
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )
    except OSError as exc:
        _LOG.debug("completion cue skipped: %s", exc)
