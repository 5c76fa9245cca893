# MIT License © 2025 Motohiro Suzuki
"""
crypto/zeroize.py

Best-effort secret zeroization utilities.

Reality check (Python):
- 'bytes' is immutable; cannot guarantee in-place wiping of the original object.
- 'bytearray' can be wiped in-place.

Key material held by the window is always a bytearray so eviction can
overwrite it before the slot is dropped. Copies handed out in snapshots are
plain bytes and are not covered.
"""

from __future__ import annotations

import ctypes


def wipe_bytearray(b: bytearray) -> None:
    """In-place wipe for mutable buffer."""
    n = len(b)
    if n == 0:
        return
    # memset through ctypes is an opaque call; a plain slice assignment is the fallback
    # for buffers ctypes cannot address.
    try:
        ctypes.memset((ctypes.c_char * n).from_buffer(b), 0, n)
    except (TypeError, BufferError):
        b[:] = bytes(n)


def is_zeroed(b: bytes | bytearray | memoryview) -> bool:
    return not any(bytes(b))


class SecretBox:
    """
    Holds a bytearray so it can be wiped in-place.

    Use when you WANT a clearly wipeable container.
    """
    __slots__ = ("_buf",)

    def __init__(self, data: bytes | bytearray) -> None:
        # a bytearray is adopted, not copied: the caller hands over ownership
        self._buf = data if isinstance(data, bytearray) else bytearray(data)

    def bytes(self) -> bytes:
        return bytes(self._buf)

    def wipe(self) -> None:
        wipe_bytearray(self._buf)

    @property
    def wiped(self) -> bool:
        return is_zeroed(self._buf)

    def __len__(self) -> int:
        return len(self._buf)

    def __repr__(self) -> str:
        return f"SecretBox(<{len(self._buf)} bytes>)"
