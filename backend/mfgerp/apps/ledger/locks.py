from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Tuple


class _Entry:
    __slots__ = ("lock", "holders")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.holders = 0


class BatchLockRegistry:
    """
    Process-local mutexes keyed by ``(ledger, batch)``.

    Writes to one batch are serialized from validation through commit. An
    entry lives only while some thread holds or waits on it. The registry does
    not coordinate separate worker processes.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: Dict[Tuple[str, str], _Entry] = {}

    def _checkout(self, key: Tuple[str, str]) -> _Entry:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = _Entry()
                self._entries[key] = entry
            entry.holders += 1
            return entry

    def _checkin(self, key: Tuple[str, str], entry: _Entry) -> None:
        with self._guard:
            entry.holders -= 1
            if entry.holders == 0 and self._entries.get(key) is entry:
                del self._entries[key]

    @contextmanager
    def hold(self, ledger: str, *batches: str) -> Iterator[None]:
        # Sorted acquisition keeps two-batch updates from deadlocking each other.
        keys = [(ledger, batch) for batch in sorted({batch for batch in batches if batch})]
        acquired: List[Tuple[Tuple[str, str], _Entry]] = []
        try:
            for key in keys:
                entry = self._checkout(key)
                try:
                    entry.lock.acquire()
                except BaseException:
                    self._checkin(key, entry)
                    raise
                acquired.append((key, entry))
            yield
        finally:
            for key, entry in reversed(acquired):
                entry.lock.release()
                self._checkin(key, entry)

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)


default_registry = BatchLockRegistry()
