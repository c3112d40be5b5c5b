from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict, Hashable, Optional, Tuple

logger = logging.getLogger(__name__)


class ItemCache:
    """
    Time-bounded lookup cache for catalog entries.

    Entries expire ``ttl_seconds`` after they were stored. Expired entries are
    dropped lazily on ``get`` and in bulk by ``sweep``; ``start`` runs the
    sweep on a daemon thread until ``stop`` is called.

    The cache lives in one process. Several API workers each hold their own
    copy, so a catalog edit may stay invisible to the others for up to one TTL.
    """

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        sweep_interval_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.sweep_interval_seconds = sweep_interval_seconds
        self._clock = clock
        self._entries: Dict[Hashable, Tuple[Any, float]] = {}
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def get(self, key: Hashable) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, stored_at = entry
            if self._clock() - stored_at > self.ttl_seconds:
                del self._entries[key]
                return None
            return value

    def set(self, key: Hashable, value: Any) -> None:
        with self._lock:
            self._entries[key] = (value, self._clock())

    def delete(self, key: Hashable) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def sweep(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [key for key, (_, stored_at) in self._entries.items() if now - stored_at > self.ttl_seconds]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="item-cache-sweep", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop_event.set()
        thread = self._thread
        if thread is not None:
            thread.join(timeout=timeout)
        self._thread = None

    def _run(self) -> None:
        while not self._stop_event.wait(self.sweep_interval_seconds):
            try:
                removed = self.sweep()
            except Exception:
                logger.exception("Item cache sweep failed")
                continue
            if removed:
                logger.debug("Item cache sweep removed %s entries", removed)
