from __future__ import annotations
import logging
import threading
from typing import Any, Callable

log = logging.getLogger(__name__)


class Scheduler:
    """Background refresh; runs ``job`` every ``interval_sec`` until stopped."""
    def __init__(self, job: Callable[[], Any], interval_sec: float = 600.0):
        self.job = job
        self.interval = max(1.0, float(interval_sec))
        self.runs = 0
        self.last_result: Any = None
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._t: threading.Thread | None = None

    def run_pass(self) -> None:
        try:
            result = self.job()
            with self._lock:
                self.last_result = result
        except Exception:
            # keep running; the next pass may succeed
            log.exception("Radar refresh pass failed")
        with self._lock:
            self.runs += 1

    def start(self):
        def loop():
            while not self._stop.is_set():
                self.run_pass()
                self._stop.wait(self.interval)
        self._t = threading.Thread(target=loop, name="radarloop-scheduler", daemon=True)
        self._t.start()

    def stop(self, timeout: float = 1.0):
        self._stop.set()
        if self._t:
            self._t.join(timeout=timeout)

    @property
    def running(self) -> bool:
        return self._t is not None and self._t.is_alive()

