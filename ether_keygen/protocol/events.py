# MIT License © 2025 Motohiro Suzuki
"""
protocol/events.py

Cluster bus event kinds and their prefixed wire names.

| event           | payload            |
|-----------------|--------------------|
| install-key     | name || material   |
| remove-key      | name               |
| set-default-key | name               |
| wipe-keys       | empty, coalesced   |

Query: <prefix>retrieve-keys -> msgpack snapshot (see protocol/snapshot.py)
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

DEFAULT_PREFIX = "ether:"


class EventKind(str, Enum):
    INSTALL_KEY = "install-key"
    REMOVE_KEY = "remove-key"
    SET_DEFAULT_KEY = "set-default-key"
    WIPE_KEYS = "wipe-keys"


RETRIEVE_KEYS_QUERY = "retrieve-keys"


@dataclass(frozen=True)
class EventNames:
    prefix: str = DEFAULT_PREFIX

    def event(self, kind: EventKind) -> str:
        return self.prefix + kind.value

    @property
    def retrieve_keys(self) -> str:
        return self.prefix + RETRIEVE_KEYS_QUERY

    def kind_of(self, name: str) -> Optional[EventKind]:
        """Map an inbound prefixed event name back to its kind (None if foreign)."""
        if not name.startswith(self.prefix):
            return None
        try:
            return EventKind(name[len(self.prefix):])
        except ValueError:
            return None
