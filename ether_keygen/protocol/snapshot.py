# MIT License © 2025 Motohiro Suzuki
"""
protocol/snapshot.py

Snapshot = point-in-time copy of the window (newest first) + default key name.

Wire form (retrieve-keys reply), msgpack map:
    {"Default": <name bytes | nil>, "Keys": [<name || material>, ...]}
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

import msgpack

from ether_keygen.protocol.errors import SnapshotCodecError
from ether_keygen.protocol.key import DEFAULT_NAME_LEN


@dataclass(frozen=True)
class Snapshot:
    default: Optional[bytes]
    entries: Tuple[Tuple[bytes, bytes], ...] = ()

    def keys(self) -> list[bytes]:
        return [name + material for name, material in self.entries]

    def names(self) -> list[bytes]:
        return [name for name, _ in self.entries]

    def material_for(self, name: bytes) -> Optional[bytes]:
        for n, m in self.entries:
            if n == name:
                return m
        return None

    def __len__(self) -> int:
        return len(self.entries)

    def __repr__(self) -> str:
        d = None if self.default is None else self.default.hex()
        return f"Snapshot(default={d}, keys={len(self.entries)})"


def encode_snapshot(snapshot: Snapshot) -> bytes:
    body = {
        "Default": snapshot.default,
        "Keys": snapshot.keys(),
    }
    try:
        return msgpack.packb(body, use_bin_type=True)
    except (TypeError, ValueError, OverflowError) as e:
        raise SnapshotCodecError(f"snapshot encode failed: {e}") from e


def decode_snapshot(blob: bytes, name_len: int = DEFAULT_NAME_LEN) -> Snapshot:
    try:
        body = msgpack.unpackb(bytes(blob), raw=False)
    except (msgpack.UnpackException, ValueError, TypeError) as e:
        raise SnapshotCodecError(f"snapshot decode failed: {e}") from e

    if not isinstance(body, dict):
        raise SnapshotCodecError("snapshot body must be a map")

    default = body.get("Default")
    keys = body.get("Keys") or []

    if default is not None and not isinstance(default, bytes):
        raise SnapshotCodecError("snapshot Default must be bytes or nil")
    if default == b"":
        default = None
    if not isinstance(keys, list):
        raise SnapshotCodecError("snapshot Keys must be a list")

    entries = []
    for k in keys:
        if not isinstance(k, bytes) or len(k) <= name_len:
            raise SnapshotCodecError("snapshot key entry malformed")
        entries.append((k[:name_len], k[name_len:]))

    if default is not None and all(n != default for n, _ in entries):
        raise SnapshotCodecError(f"snapshot default {default.hex()} not among keys")

    return Snapshot(default=default, entries=tuple(entries))
