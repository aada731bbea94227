"""Owning wrapper around a spawned capture process."""
from __future__ import annotations

import logging
import os
import signal
import subprocess
from typing import Sequence

_LOG = logging.getLogger("recording")

TERMINATE_TIMEOUT_SECONDS = 5.0


class ProcessHandle:
    """Exclusive owner of one child process.

    The handle is the only object allowed to reap the child. Signal-based
    suspend/resume only needs the pid, so callers may keep that separately.
    """

    def __init__(self, proc: subprocess.Popen) -> None:
        self._proc = proc

    @classmethod
    def spawn(
        cls,
        argv: Sequence[str],
        *,
        cwd: str | None = None,
        new_session: bool = False,
    ) -> "ProcessHandle":
        proc = subprocess.Popen(
            list(argv),
            cwd=cwd,
            start_new_session=new_session,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )
        return cls(proc)

    @property
    def pid(self) -> int:
        return self._proc.pid

    def running(self) -> bool:
        return self._proc.poll() is None

    def terminate_and_reap(self, timeout: float = TERMINATE_TIMEOUT_SECONDS) -> int | None:
        """Terminate the child and wait for it so no zombie is left behind."""
        proc = self._proc
        if proc.poll() is None:
            # A stopped child cannot act on SIGTERM until it is continued.
            try:
                os.kill(proc.pid, signal.SIGCONT)
            except ProcessLookupError:
                pass
            proc.terminate()
            try:
                proc.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                _LOG.warning("pid %s ignored SIGTERM; killing", proc.pid)
                proc.kill()
                proc.wait()
        return proc.returncode


def send_signal(pid: int, signum: int) -> None:
    os.kill(pid, signum)
