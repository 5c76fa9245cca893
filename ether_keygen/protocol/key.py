# MIT License © 2025 Motohiro Suzuki
"""
protocol/key.py

Key = public name + secret material.

- name: fixed-length opaque identifier, safe to broadcast and log (hex).
- material: secret bytes, held in a SecretBox so it can be wiped in place.
- full(): name || material, the install-key payload and snapshot entry.
"""

from __future__ import annotations

from dataclasses import dataclass

from ether_keygen.crypto.zeroize import SecretBox

DEFAULT_NAME_LEN = 16
DEFAULT_MATERIAL_LEN = 16


@dataclass(frozen=True, eq=False)
class Key:
    name: bytes
    material: SecretBox

    @classmethod
    def from_parts(cls, name: bytes, material: bytes | bytearray) -> "Key":
        if not name:
            raise ValueError("key name must not be empty")
        return cls(name=bytes(name), material=SecretBox(material))

    @classmethod
    def split(cls, blob: bytes, name_len: int = DEFAULT_NAME_LEN) -> "Key":
        """Rebuild a key from its name || material wire form."""
        b = bytes(blob)
        if len(b) <= name_len:
            raise ValueError(f"key blob too short: {len(b)} bytes (name_len={name_len})")
        return cls.from_parts(b[:name_len], b[name_len:])

    @property
    def name_hex(self) -> str:
        return self.name.hex()

    def full(self) -> bytes:
        return self.name + self.material.bytes()

    def wipe(self) -> None:
        self.material.wipe()

    @property
    def wiped(self) -> bool:
        return self.material.wiped

    def __len__(self) -> int:
        return len(self.name) + len(self.material)

    def __repr__(self) -> str:
        return f"Key(name={self.name_hex}, material=<{len(self.material)} bytes>)"
