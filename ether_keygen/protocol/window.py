# MIT License © 2025 Motohiro Suzuki
"""
protocol/window.py

KeyWindow: bounded, time-ordered key set.

    index 0            newest (installed last)
    index ahead        DEFAULT key (used for new encrypt/sign)
    index len-1        oldest
    capacity = ahead + 1 + behind

Implementation rules:
  - install() is the ONLY place where the key set changes (plus clear() on reset)
  - an evicted key is wiped BEFORE it is dropped
  - one lock guards every operation; it is held only for in-memory mutation
    or copying, never across I/O (announcement / encoding / reply)
"""

from __future__ import annotations

import threading
from typing import List, Optional

from ether_keygen.protocol.key import Key
from ether_keygen.protocol.snapshot import Snapshot


class KeyWindow:
    def __init__(self, ahead: int, behind: int) -> None:
        if int(ahead) < 0 or int(behind) < 0:
            raise ValueError(f"ahead/behind must be >= 0 (ahead={ahead}, behind={behind})")
        self.ahead = int(ahead)
        self.behind = int(behind)
        self._keys: List[Key] = []
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self.ahead + 1 + self.behind

    def install(self, key: Key) -> Optional[bytes]:
        """
        Prepend key as the newest entry.

        Returns the evicted key's name when the window overflowed, else None.
        The evicted key's material is zeroed before this returns.
        """
        evicted: Optional[Key] = None
        with self._lock:
            self._keys.insert(0, key)
            if len(self._keys) > self.capacity:
                evicted = self._keys.pop()
                evicted.wipe()
        return None if evicted is None else evicted.name

    def default(self) -> Optional[Key]:
        """Key at index `ahead`, or None while the window is not yet populated."""
        with self._lock:
            if len(self._keys) <= self.ahead:
                return None
            return self._keys[self.ahead]

    @property
    def is_ready(self) -> bool:
        return self.default() is not None

    def snapshot(self) -> Snapshot:
        with self._lock:
            entries = tuple((k.name, k.material.bytes()) for k in self._keys)
            default = self._keys[self.ahead].name if len(self._keys) > self.ahead else None
        return Snapshot(default=default, entries=entries)

    def names(self) -> List[bytes]:
        with self._lock:
            return [k.name for k in self._keys]

    def clear(self) -> List[bytes]:
        """Wipe and drop every key (reset). Returns the dropped names, newest first."""
        with self._lock:
            dropped, self._keys = self._keys, []
        for k in dropped:
            k.wipe()
        return [k.name for k in dropped]

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)

    def __repr__(self) -> str:
        return f"KeyWindow(ahead={self.ahead}, behind={self.behind}, len={len(self)})"
