from __future__ import annotations
import logging
import subprocess
import threading
from contextlib import contextmanager
from typing import Iterator, List

log = logging.getLogger(__name__)


class ExternalProcessRegistry:
    """Live external processes that a user cancellation must be able to kill."""

    def __init__(self):
        # reentrant: cancel_all() can run from a signal handler on the holding thread
        self._lock = threading.RLock()
        self._procs: List[subprocess.Popen] = []

    def register(self, proc: subprocess.Popen) -> None:
        if proc is None:
            return
        with self._lock:
            if not any(p is proc for p in self._procs):
                self._procs.append(proc)

    def unregister(self, proc: subprocess.Popen) -> None:
        if proc is None:
            return
        with self._lock:
            self._procs = [p for p in self._procs if p is not proc]

    @contextmanager
    def track(self, proc: subprocess.Popen) -> Iterator[subprocess.Popen]:
        self.register(proc)
        try:
            yield proc
        finally:
            self.unregister(proc)

    def __len__(self) -> int:
        with self._lock:
            return len(self._procs)

    def __contains__(self, proc: object) -> bool:
        with self._lock:
            return any(p is proc for p in self._procs)

    def cancel_all(self) -> int:
        killed = 0
        with self._lock:
            for proc in list(self._procs):
                try:
                    if proc.poll() is None:
                        proc.kill()
                        killed += 1
                except Exception as exc:
                    # already gone or not ours to kill; nothing left to do
                    log.debug("Could not kill pid %s: %r", getattr(proc, "pid", "?"), exc)
            self._procs.clear()
        log.info("External processes cancelled by user (%d killed)", killed)
        return killed
