# MIT License © 2025 Motohiro Suzuki
from __future__ import annotations

from typing import Callable, List, Optional, Tuple

import pytest

from ether_keygen.audit.sink import AuditSink
from ether_keygen.keysources.base import KeySource
from ether_keygen.protocol.errors import PublishError
from ether_keygen.protocol.key import Key
from ether_keygen.transport.bus import EventPublisher, QueryReplier


class RecordingBus(EventPublisher, QueryReplier):
    """In-memory cluster bus: records broadcasts and replies in order."""

    def __init__(self, fail_when: Optional[Callable[[str, bytes], bool]] = None) -> None:
        self.events: List[Tuple[str, bytes, bool]] = []
        self.replies: List[Tuple[int, bytes]] = []
        self.fail_when = fail_when

    async def publish(self, name: str, payload: bytes, coalesce: bool = False) -> None:
        if self.fail_when is not None and self.fail_when(name, payload):
            raise PublishError(f"bus refused {name}")
        self.events.append((name, bytes(payload), coalesce))

    async def respond(self, query_id: int, payload: bytes) -> None:
        self.replies.append((query_id, bytes(payload)))

    def names(self) -> List[str]:
        return [n for n, _, _ in self.events]


class MemoryAuditSink(AuditSink):
    def __init__(self) -> None:
        self.lines: List[str] = []

    def record(self, line: str) -> None:
        self.lines.append(line)


class CountingKeySource(KeySource):
    """Deterministic keys: name = counter (16 bytes), material = counter byte repeated."""

    name = "counting"

    def __init__(self, material_len: int = 16) -> None:
        self.material_len = material_len
        self.issued = 0

    def generate(self) -> Key:
        self.issued += 1
        return Key.from_parts(self.issued.to_bytes(16, "big"), bytes([self.issued % 256]) * self.material_len)


class SleepRecorder:
    def __init__(self) -> None:
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def bus() -> RecordingBus:
    return RecordingBus()


@pytest.fixture
def audit() -> MemoryAuditSink:
    return MemoryAuditSink()


@pytest.fixture
def key_source() -> CountingKeySource:
    return CountingKeySource()


@pytest.fixture
def no_sleep() -> SleepRecorder:
    return SleepRecorder()
