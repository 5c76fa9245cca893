# MIT License © 2025 Motohiro Suzuki
"""
protocol/errors.py

Error taxonomy:
  - startup (fatal before serving): ConfigError, AuditError, RPC connect failures
  - runtime (fatal for the daemon): KeySourceError, PublishError, SnapshotCodecError
    -> surfaced by the rotator / responder as RotationError / ResponderError
  - "window not ready" is NOT an error: KeyWindow.default() returns None
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class KeygenError(Exception):
    pass


class ConfigError(KeygenError):
    pass


class AuditError(KeygenError):
    pass


class KeySourceError(KeygenError):
    pass


class PublishError(KeygenError):
    pass


class RPCError(PublishError):
    """Serf RPC level failure (agent error string, timeout, connection loss)."""

    def __init__(self, command: str, message: str) -> None:
        self.command = command
        self.message = message
        super().__init__(f"[{command}] {message}")


class SnapshotCodecError(KeygenError):
    pass


class KeyRingError(KeygenError):
    pass


class FailurePhase(str, Enum):
    STARTUP = "startup"
    RESET = "reset"
    BOOTSTRAP = "bootstrap"
    TICK = "tick"
    QUERY = "query"


class FailureCode(str, Enum):
    ERR_KEY_SOURCE = "ERR_KEY_SOURCE"
    ERR_PUBLISH = "ERR_PUBLISH"
    ERR_ENCODE = "ERR_ENCODE"
    ERR_REPLY = "ERR_REPLY"
    ERR_NOT_READY = "ERR_NOT_READY"
    ERR_INTERNAL = "ERR_INTERNAL"


@dataclass(frozen=True)
class Failure:
    """
    Context logged before a fatal stop.
    Carries key NAMES only; material never goes into a Failure.
    """
    phase: FailurePhase
    code: FailureCode
    fatal: bool
    event: Optional[str] = None
    key_name: Optional[str] = None
    detail: Optional[str] = None

    def describe(self) -> str:
        parts = [f"phase={self.phase.value}", f"code={self.code.value}", f"fatal={self.fatal}"]
        if self.event:
            parts.append(f"event={self.event}")
        if self.key_name:
            parts.append(f"key={self.key_name}")
        if self.detail:
            parts.append(f"detail={self.detail}")
        return " ".join(parts)


class RotationError(KeygenError):
    def __init__(self, failure: Failure) -> None:
        self.failure = failure
        super().__init__(failure.describe())


class ResponderError(KeygenError):
    def __init__(self, failure: Failure) -> None:
        self.failure = failure
        super().__init__(failure.describe())
