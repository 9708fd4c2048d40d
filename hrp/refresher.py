from __future__ import annotations

from threading import Event, Thread

from .directory import ServiceDirectory


class Refresher:
    """Periodically refreshes the directory through its single-flight path."""

    def __init__(self, directory: ServiceDirectory, interval_s: float):
        self.directory = directory
        self.interval_s = max(0.05, float(interval_s))
        self._stop = Event()
        self._thr: Thread | None = None

    def start(self) -> None:
        if self._thr and self._thr.is_alive():
            return
        self._stop.clear()
        self._thr = Thread(target=self._loop, name="hrp-refresher", daemon=True)
        self._thr.start()

    def stop(self, timeout_s: float = 5.0) -> None:
        self._stop.set()
        if self._thr is not None:
            self._thr.join(timeout_s)

    def _loop(self) -> None:
        events = self.directory.events
        events.log("INFO", f"Refresher started (every {self.interval_s}s)")
        while not self._stop.wait(self.interval_s):
            try:
                self.directory.ensure_fresh()
            except Exception as e:
                events.log("ERROR", f"Periodic refresh failed: {type(e).__name__}: {e}")
