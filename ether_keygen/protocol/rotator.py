# MIT License © 2025 Motohiro Suzuki
"""
protocol/rotator.py

Rotator: the only writer of the KeyWindow.

    BOOTSTRAP --(reset, ahead+1 installs, settle, set-default)--> STEADY --(tick forever)
        any fatal failure ------------------------------------------------> STOPPED

Tick order (must not change):
    1) generate key (CSPRNG)
    2) announce + audit install-key   (name || material)
    3) window.install(); on eviction announce + audit remove-key (name only)
    4) announce + audit set-default-key (window.default())

The window lock covers step 3's in-memory mutation only; announcements run
after it is released so concurrent snapshot readers never wait on the bus.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

from ether_keygen.audit.sink import AuditSink
from ether_keygen.keysources.base import KeySource
from ether_keygen.protocol.errors import (
    Failure,
    FailureCode,
    FailurePhase,
    KeySourceError,
    PublishError,
    RotationError,
)
from ether_keygen.protocol.events import EventKind, EventNames
from ether_keygen.protocol.key import Key
from ether_keygen.protocol.window import KeyWindow
from ether_keygen.transport.bus import EventPublisher

logger = logging.getLogger(__name__)


class RotatorPhase(str, Enum):
    BOOTSTRAP = "BOOTSTRAP"
    STEADY = "STEADY"
    STOPPED = "STOPPED"


@dataclass(frozen=True)
class TickResult:
    installed: bytes
    evicted: Optional[bytes]
    default: bytes


class Rotator:
    def __init__(
        self,
        window: KeyWindow,
        key_source: KeySource,
        publisher: EventPublisher,
        audit: AuditSink,
        *,
        names: EventNames = EventNames(),
        tick_interval: float = 15 * 60.0,
        settle_interval: float = 15.0,
        wipe_settle_interval: float = 30.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if tick_interval <= 0:
            raise ValueError("tick_interval must be > 0")
        self.window = window
        self.key_source = key_source
        self.publisher = publisher
        self.audit = audit
        self.names = names
        self.tick_interval = float(tick_interval)
        self.settle_interval = float(settle_interval)
        self.wipe_settle_interval = float(wipe_settle_interval)
        self._sleep = sleep

        self.phase = RotatorPhase.BOOTSTRAP
        self.ticks = 0

    # -------------------------
    # Phases
    # -------------------------
    async def reset(self) -> None:
        """Broadcast wipe-keys (coalesced) and give the bus time to spread it."""
        self._require(RotatorPhase.BOOTSTRAP, "reset")
        dropped = self.window.clear()
        if dropped:
            logger.info("reset: wiped %d local keys", len(dropped))
        await self._announce(FailurePhase.RESET, EventKind.WIPE_KEYS, b"", key_name=None, coalesce=True)
        await self._sleep(self.wipe_settle_interval)

    async def bootstrap(self) -> None:
        """Install ahead+1 keys, wait for them to propagate, then announce the default."""
        self._require(RotatorPhase.BOOTSTRAP, "bootstrap")

        for _ in range(self.window.ahead + 1):
            key = self._generate(FailurePhase.BOOTSTRAP)
            await self._announce(FailurePhase.BOOTSTRAP, EventKind.INSTALL_KEY, key.full(), key_name=key.name_hex)
            self.window.install(key)

        await self._sleep(self.settle_interval)

        default = self._default(FailurePhase.BOOTSTRAP)
        await self._announce(FailurePhase.BOOTSTRAP, EventKind.SET_DEFAULT_KEY, default.name, key_name=default.name_hex)

        self.phase = RotatorPhase.STEADY
        logger.info("bootstrap done: %d keys installed, default=%s", len(self.window), default.name_hex)

    async def tick(self) -> TickResult:
        self._require(RotatorPhase.STEADY, "tick")

        key = self._generate(FailurePhase.TICK)
        await self._announce(FailurePhase.TICK, EventKind.INSTALL_KEY, key.full(), key_name=key.name_hex)

        evicted = self.window.install(key)
        if evicted is not None:
            await self._announce(FailurePhase.TICK, EventKind.REMOVE_KEY, evicted, key_name=evicted.hex())

        default = self._default(FailurePhase.TICK)
        await self._announce(FailurePhase.TICK, EventKind.SET_DEFAULT_KEY, default.name, key_name=default.name_hex)

        self.ticks += 1
        logger.debug(
            "tick %d: installed=%s evicted=%s default=%s",
            self.ticks, key.name_hex, None if evicted is None else evicted.hex(), default.name_hex,
        )
        return TickResult(installed=key.name, evicted=evicted, default=default.name)

    async def run(self, *, ticks: Optional[int] = None) -> None:
        """reset -> bootstrap -> tick on a fixed cadence (forever unless `ticks` is given)."""
        await self.reset()
        await self.bootstrap()

        loop = asyncio.get_running_loop()
        deadline = loop.time()
        done = 0
        while ticks is None or done < ticks:
            deadline += self.tick_interval
            now = loop.time()
            if deadline < now:
                logger.warning("tick overran by %.3fs; skipping missed ticks", now - deadline)
                deadline = now
            await self._sleep(deadline - now)
            await self.tick()
            done += 1

    # -------------------------
    # Helpers
    # -------------------------
    def _require(self, phase: RotatorPhase, op: str) -> None:
        if self.phase is not phase:
            raise RuntimeError(f"{op} not allowed in phase {self.phase.value}")

    def _generate(self, phase: FailurePhase) -> Key:
        try:
            return self.key_source.generate()
        except KeySourceError as e:
            self._fail(phase, FailureCode.ERR_KEY_SOURCE, event=None, key_name=None, cause=e)

    def _default(self, phase: FailurePhase) -> Key:
        default = self.window.default()
        if default is None:
            # only reachable if something other than the rotator emptied the window
            self._fail(phase, FailureCode.ERR_NOT_READY, event=None, key_name=None, cause=None)
        return default

    async def _announce(
        self,
        phase: FailurePhase,
        kind: EventKind,
        payload: bytes,
        *,
        key_name: Optional[str],
        coalesce: bool = False,
    ) -> None:
        name = self.names.event(kind)
        self._record(name if key_name is None else f"{name} {key_name}")
        try:
            await self.publisher.publish(name, payload, coalesce)
        except (PublishError, OSError, asyncio.TimeoutError) as e:
            self._fail(phase, FailureCode.ERR_PUBLISH, event=name, key_name=key_name, cause=e)
        except Exception as e:
            self._fail(phase, FailureCode.ERR_INTERNAL, event=name, key_name=key_name, cause=e)

    def _record(self, line: str) -> None:
        try:
            self.audit.record(line)
        except Exception:
            # audit is best-effort: surface it, keep rotating
            logger.exception("audit record failed: %s", line)

    def _fail(
        self,
        phase: FailurePhase,
        code: FailureCode,
        *,
        event: Optional[str],
        key_name: Optional[str],
        cause: Optional[BaseException],
    ) -> None:
        failure = Failure(
            phase=phase,
            code=code,
            fatal=True,
            event=event,
            key_name=key_name,
            detail=None if cause is None else f"{type(cause).__name__}: {cause}",
        )
        self.phase = RotatorPhase.STOPPED
        logger.error("rotation stopped: %s", failure.describe())
        raise RotationError(failure) from cause
