# MIT License © 2025 Motohiro Suzuki
"""
keysources/random_source.py

CSPRNG key source. Name and material are drawn from the OS random source in one
read, as name || material, and split.

Fail-closed: any OS-level failure raises KeySourceError (fatal for the rotator).
"""

from __future__ import annotations

import secrets

from ether_keygen.keysources.base import KeySource
from ether_keygen.protocol.errors import KeySourceError
from ether_keygen.protocol.key import DEFAULT_MATERIAL_LEN, DEFAULT_NAME_LEN, Key


class RandomKeySource(KeySource):
    name = "os-random"

    def __init__(self, *, name_len: int = DEFAULT_NAME_LEN, material_len: int = DEFAULT_MATERIAL_LEN) -> None:
        if int(name_len) <= 0:
            raise ValueError("name_len must be > 0")
        if int(material_len) <= 0:
            raise ValueError("material_len must be > 0")
        self.name_len = int(name_len)
        self.material_len = int(material_len)

    @classmethod
    def from_bits(cls, key_bits: int, *, name_len: int = DEFAULT_NAME_LEN) -> "RandomKeySource":
        if key_bits <= 0 or key_bits % 8 != 0:
            raise ValueError(f"key size must be a positive multiple of 8 bits, got {key_bits}")
        return cls(name_len=name_len, material_len=key_bits // 8)

    def generate(self) -> Key:
        try:
            raw = bytearray(secrets.token_bytes(self.name_len + self.material_len))
        except OSError as e:
            raise KeySourceError(f"random source failed: {e}") from e

        try:
            return Key.from_parts(bytes(raw[: self.name_len]), raw[self.name_len :])
        finally:
            raw[:] = bytes(len(raw))
