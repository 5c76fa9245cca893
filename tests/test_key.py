# MIT License © 2025 Motohiro Suzuki
import pytest

from ether_keygen.crypto.zeroize import SecretBox, is_zeroed, wipe_bytearray
from ether_keygen.keysources.random_source import RandomKeySource
from ether_keygen.protocol.key import Key


def test_secretbox_adopts_and_wipes_in_place():
    buf = bytearray(b"\x11" * 16)
    box = SecretBox(buf)
    box.wipe()
    assert box.wiped
    assert is_zeroed(buf)
    assert "11" not in repr(box)


def test_wipe_bytearray_zeroes_in_place():
    buf = bytearray(b"\x22" * 4)
    alias = memoryview(buf)
    wipe_bytearray(buf)
    assert is_zeroed(alias)
    wipe_bytearray(bytearray())


def test_key_split_and_full():
    blob = b"\x01" * 16 + b"\xaa" * 32
    k = Key.split(blob)
    assert k.name == b"\x01" * 16
    assert len(k.material) == 32
    assert k.full() == blob
    assert len(k) == 48


def test_key_split_too_short():
    with pytest.raises(ValueError):
        Key.split(b"\x01" * 16)


def test_key_repr_shows_name_not_material():
    k = Key.from_parts(b"\x0f" * 16, b"\xee" * 16)
    assert k.name_hex in repr(k)
    assert "ee" * 16 not in repr(k)


def test_random_source_lengths_and_uniqueness():
    src = RandomKeySource.from_bits(256, name_len=16)
    keys = [src.generate() for _ in range(32)]
    assert all(len(k.name) == 16 and len(k.material) == 32 for k in keys)
    assert len({k.name for k in keys}) == 32


@pytest.mark.parametrize("bits", [0, -8, 100])
def test_random_source_rejects_bad_bit_sizes(bits):
    with pytest.raises(ValueError):
        RandomKeySource.from_bits(bits)
