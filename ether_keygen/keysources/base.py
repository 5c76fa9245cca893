# MIT License © 2025 Motohiro Suzuki
from __future__ import annotations

from ether_keygen.protocol.key import Key


class KeySource:
    name: str

    def generate(self) -> Key:
        raise NotImplementedError
