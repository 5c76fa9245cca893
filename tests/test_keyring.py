# MIT License © 2025 Motohiro Suzuki
"""
Member side: replay what the rotator broadcasts into a MemberKeyRing and check
that traffic sealed under any announced default stays readable while its key
is still in the window.
"""

import pytest

from conftest import CountingKeySource
from ether_keygen.crypto.keyring import MemberKeyRing
from ether_keygen.protocol.errors import KeyRingError
from ether_keygen.protocol.events import EventKind, EventNames
from ether_keygen.protocol.key import Key
from ether_keygen.protocol.rotator import Rotator
from ether_keygen.protocol.snapshot import Snapshot
from ether_keygen.protocol.window import KeyWindow

NAMES = EventNames("ether:")


def _key(i: int) -> Key:
    return Key.from_parts(i.to_bytes(16, "big"), bytes([i]) * 16)


def _replay(ring: MemberKeyRing, events) -> None:
    for name, payload, _ in events:
        kind = NAMES.kind_of(name)
        assert kind is not None
        ring.apply(kind, payload)


def test_install_is_idempotent():
    ring = MemberKeyRing()
    k = _key(1)
    ring.install(k.full())
    ring.install(k.full())
    assert ring.names() == [k.name]


def test_remove_unknown_is_noop_and_removing_default_clears_it():
    ring = MemberKeyRing()
    ring.remove(b"\x09" * 16)

    k = _key(1)
    ring.install(k.full())
    ring.set_default(k.name)
    ring.remove(k.name)
    ring.remove(k.name)
    assert ring.default is None
    assert len(ring) == 0


def test_set_default_for_unknown_key_rejected():
    ring = MemberKeyRing()
    ring.install(_key(1).full())
    ring.set_default(_key(1).name)
    with pytest.raises(KeyRingError):
        ring.set_default(_key(2).name)
    assert ring.default == _key(1).name


def test_bad_install_payloads_rejected():
    ring = MemberKeyRing()
    with pytest.raises(KeyRingError):
        ring.install(b"\x01" * 16)
    with pytest.raises(KeyRingError):
        ring.install(b"\x01" * 16 + b"\x02" * 5)


def test_seal_open_roundtrip_and_tamper_detection():
    ring = MemberKeyRing()
    ring.install(_key(3).full())
    ring.set_default(_key(3).name)

    sealed = ring.seal(b"hello cluster", aad=b"hdr")
    assert sealed.startswith(_key(3).name)
    assert ring.open(sealed, aad=b"hdr") == b"hello cluster"

    tampered = sealed[:-1] + bytes([sealed[-1] ^ 1])
    with pytest.raises(KeyRingError):
        ring.open(tampered, aad=b"hdr")
    with pytest.raises(KeyRingError):
        ring.open(sealed, aad=b"other")
    with pytest.raises(KeyRingError):
        ring.open(b"short")


def test_seal_without_default_rejected():
    with pytest.raises(KeyRingError):
        MemberKeyRing().seal(b"x")


def test_wipe_event_drops_everything():
    ring = MemberKeyRing()
    ring.install(_key(1).full())
    ring.set_default(_key(1).name)
    ring.apply(EventKind.WIPE_KEYS, b"")
    assert len(ring) == 0
    assert ring.default is None


@pytest.mark.asyncio
async def test_member_follows_rotation(bus, audit, no_sleep):
    window = KeyWindow(1, 2)
    rotator = Rotator(window, CountingKeySource(), bus, audit, names=NAMES, sleep=no_sleep)
    ring = MemberKeyRing()

    await rotator.reset()
    await rotator.bootstrap()
    _replay(ring, bus.events)
    bus.events.clear()

    assert ring.default == window.default().name
    old = ring.seal(b"sealed before rotation")

    for _ in range(2):
        await rotator.tick()
        _replay(ring, bus.events)
        bus.events.clear()
        assert sorted(ring.names()) == sorted(window.names())
        assert ring.default == window.default().name

    # the key `old` was sealed with is still inside the window (behind)
    assert ring.open(old) == b"sealed before rotation"

    await rotator.tick()
    _replay(ring, bus.events)
    # and is gone once the window evicts it
    with pytest.raises(KeyRingError):
        ring.open(old)


def test_load_snapshot_replaces_state():
    window = KeyWindow(0, 1)
    window.install(_key(1))
    window.install(_key(2))

    ring = MemberKeyRing()
    ring.install(_key(9).full())
    ring.load_snapshot(window.snapshot())

    assert sorted(ring.names()) == sorted([_key(1).name, _key(2).name])
    assert ring.default == _key(2).name
    assert _key(9).name not in ring


def test_redelivered_install_after_remove_stays_retired():
    ring = MemberKeyRing()
    k = _key(1)
    ring.install(k.full())
    ring.remove(k.name)

    ring.install(k.full())
    assert k.name not in ring
    # a late set-default for the retired key is dropped, not an error
    ring.set_default(k.name)
    assert ring.default is None


def test_retired_names_are_bounded():
    ring = MemberKeyRing(retired_limit=2)
    for i in (1, 2, 3):
        ring.remove(_key(i).name)

    # the oldest retirement fell out of the record
    ring.install(_key(1).full())
    ring.install(_key(3).full())
    assert ring.names() == [_key(1).name]


def test_wipe_and_snapshot_forget_retired_names():
    ring = MemberKeyRing()
    ring.install(_key(1).full())
    ring.remove(_key(1).name)
    ring.apply(EventKind.WIPE_KEYS, b"")
    ring.install(_key(1).full())
    assert _key(1).name in ring

    ring.remove(_key(1).name)
    window = KeyWindow(0, 0)
    window.install(_key(1))
    ring.load_snapshot(window.snapshot())
    assert ring.default == _key(1).name


def test_load_snapshot_rejects_unusable_material():
    ring = MemberKeyRing()
    ring.install(_key(4).full())
    ring.set_default(_key(4).name)

    bad = Snapshot(default=_key(5).name, entries=((_key(5).name, b"\x01" * 8),))
    with pytest.raises(KeyRingError):
        ring.load_snapshot(bad)
    # previous state untouched
    assert ring.default == _key(4).name
    assert ring.open(ring.seal(b"still here")) == b"still here"
