# MIT License © 2025 Motohiro Suzuki
"""
crypto/keyring.py

MemberKeyRing: what a cluster member builds from the keygen broadcasts.
Member-facing API; the daemon itself never holds a key ring.

Events are applied idempotently (the bus is at-least-once and may reorder
coalesced events):
  - install-key     : add name -> material (duplicate install is a no-op,
                      install of a retired name is ignored)
  - remove-key      : wipe + drop + retire the name (unknown name is a no-op;
                      a removed default is cleared)
  - set-default-key : switch default (retired name is ignored; unknown name
                      -> KeyRingError, state unchanged)
  - wipe-keys       : wipe + drop everything, forget retired names

Retired names are remembered up to RETIRED_LIMIT entries, oldest dropped first.

seal()/open() use AES-GCM with the material as the key:
    sealed = name || nonce(12) || ciphertext+tag
"""

from __future__ import annotations

import logging
import os
from collections import OrderedDict
from typing import Dict, List, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ether_keygen.crypto.zeroize import SecretBox
from ether_keygen.protocol.errors import KeyRingError
from ether_keygen.protocol.events import EventKind
from ether_keygen.protocol.key import DEFAULT_NAME_LEN, Key
from ether_keygen.protocol.snapshot import Snapshot

logger = logging.getLogger(__name__)

NONCE_LEN = 12
RETIRED_LIMIT = 1024
_AES_KEY_LENS = (16, 24, 32)


def _check_material(key: Key) -> None:
    if len(key.material) not in _AES_KEY_LENS:
        raise KeyRingError(f"unsupported key material length: {len(key.material)}")


class MemberKeyRing:
    def __init__(self, name_len: int = DEFAULT_NAME_LEN, *, retired_limit: int = RETIRED_LIMIT) -> None:
        if retired_limit < 1:
            raise ValueError("retired_limit must be >= 1")
        self.name_len = int(name_len)
        self.retired_limit = int(retired_limit)
        self._keys: Dict[bytes, Key] = {}
        self._default: Optional[bytes] = None
        self._retired: "OrderedDict[bytes, None]" = OrderedDict()

    # -------------------------
    # Event application
    # -------------------------
    def apply(self, kind: EventKind, payload: bytes) -> None:
        if kind is EventKind.INSTALL_KEY:
            self.install(payload)
        elif kind is EventKind.REMOVE_KEY:
            self.remove(payload)
        elif kind is EventKind.SET_DEFAULT_KEY:
            self.set_default(payload)
        elif kind is EventKind.WIPE_KEYS:
            self.wipe()
        else:
            raise KeyRingError(f"unknown event kind: {kind!r}")

    def install(self, blob: bytes) -> None:
        try:
            key = Key.split(blob, self.name_len)
        except ValueError as e:
            raise KeyRingError(str(e)) from e
        _check_material(key)
        if key.name in self._retired:
            logger.debug("install of retired key %s ignored", key.name_hex)
            key.wipe()
            return
        if key.name in self._keys:
            key.wipe()
            return
        self._keys[key.name] = key

    def remove(self, name: bytes) -> None:
        n = bytes(name)
        self._retire(n)
        key = self._keys.pop(n, None)
        if key is None:
            return
        key.wipe()
        if self._default == key.name:
            self._default = None

    def set_default(self, name: bytes) -> None:
        n = bytes(name)
        if n in self._retired:
            logger.debug("set-default for retired key %s ignored", n.hex())
            return
        if n not in self._keys:
            raise KeyRingError(f"set-default for unknown key {n.hex()}")
        self._default = n

    def wipe(self) -> None:
        for key in self._keys.values():
            key.wipe()
        self._keys.clear()
        self._default = None
        self._retired.clear()

    def load_snapshot(self, snapshot: Snapshot) -> None:
        """Replace local state with a retrieve-keys reply."""
        keys = [Key(name=name, material=SecretBox(material)) for name, material in snapshot.entries]
        try:
            for key in keys:
                _check_material(key)
        except KeyRingError:
            for key in keys:
                key.wipe()
            raise
        self.wipe()
        for key in keys:
            self._keys[key.name] = key
        self._default = snapshot.default

    def _retire(self, name: bytes) -> None:
        self._retired[name] = None
        self._retired.move_to_end(name)
        while len(self._retired) > self.retired_limit:
            self._retired.popitem(last=False)

    # -------------------------
    # Views
    # -------------------------
    @property
    def default(self) -> Optional[bytes]:
        return self._default

    def names(self) -> List[bytes]:
        return list(self._keys)

    def __contains__(self, name: object) -> bool:
        return name in self._keys

    def __len__(self) -> int:
        return len(self._keys)

    # -------------------------
    # AEAD
    # -------------------------
    def seal(self, plaintext: bytes, aad: bytes = b"") -> bytes:
        if self._default is None:
            raise KeyRingError("no default key")
        key = self._keys[self._default]
        nonce = os.urandom(NONCE_LEN)
        ct = AESGCM(key.material.bytes()).encrypt(nonce, bytes(plaintext), bytes(aad))
        return key.name + nonce + ct

    def open(self, sealed: bytes, aad: bytes = b"") -> bytes:
        b = bytes(sealed)
        if len(b) < self.name_len + NONCE_LEN + 16:
            raise KeyRingError("sealed message too short")
        name = b[: self.name_len]
        nonce = b[self.name_len : self.name_len + NONCE_LEN]
        key = self._keys.get(name)
        if key is None:
            raise KeyRingError(f"unknown key {name.hex()}")
        try:
            return AESGCM(key.material.bytes()).decrypt(nonce, b[self.name_len + NONCE_LEN :], bytes(aad))
        except InvalidTag as e:
            raise KeyRingError("authentication failed") from e
