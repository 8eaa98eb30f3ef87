"""
Hashing functions for Topkapi sketches.

Pure Python, no external dependencies. The sketch needs a deterministic
64-bit digest per key which it splits into two 32-bit halves for double
hashing; ``murmurhash3_64`` is the default, ``fnv1a_64`` is a cheaper
alternative. None of these are suitable for cryptographic use.
"""

import struct
from typing import Any

_MASK_32 = 0xFFFFFFFF
_MASK_64 = 0xFFFFFFFFFFFFFFFF

# MurmurHash3 block multipliers
_C1 = 0xCC9E2D51
_C2 = 0x1B873593

# Seed perturbation for the high half of murmurhash3_64
_HIGH_SEED_SALT = 0x9747B28C


def _to_bytes(key: Any) -> bytes:
    """
    Convert a key to the byte string that gets hashed.

    ``str`` is UTF-8 encoded, ``bytes`` is used as is and anything else goes
    through ``repr()``. Equal values with different reprs (``1`` and ``1.0``)
    therefore hash differently.
    """
    if isinstance(key, str):
        return key.encode("utf-8")
    if isinstance(key, bytes):
        return key
    return repr(key).encode("utf-8")


def _rotl32(x: int, r: int) -> int:
    return ((x << r) | (x >> (32 - r))) & _MASK_32


def _scramble(k: int) -> int:
    k = (k * _C1) & _MASK_32
    k = _rotl32(k, 15)
    return (k * _C2) & _MASK_32


def _fmix32(h: int) -> int:
    """Final avalanche of the 32-bit MurmurHash3 state."""
    h ^= h >> 16
    h = (h * 0x85EBCA6B) & _MASK_32
    h ^= h >> 13
    h = (h * 0xC2B2AE35) & _MASK_32
    return h ^ (h >> 16)


def murmurhash3_32(key: Any, seed: int = 0) -> int:
    """
    MurmurHash3 x86 32-bit, in pure Python.

    Args:
        key: The key to hash (converted to bytes if not already).
        seed: Optional seed for the hash.

    Returns:
        Unsigned 32-bit hash value.
    """
    data = _to_bytes(key)
    nblocks, tail_len = divmod(len(data), 4)
    h = seed & _MASK_32

    for block in struct.unpack_from(f"<{nblocks}I", data):
        h = _rotl32(h ^ _scramble(block), 13)
        h = (h * 5 + 0xE6546B64) & _MASK_32

    if tail_len:
        h ^= _scramble(int.from_bytes(data[nblocks * 4 :], "little"))

    return _fmix32(h ^ len(data))


def murmurhash3_64(key: Any, seed: int = 0) -> int:
    """
    64-bit digest built from two independently seeded MurmurHash3 passes.

    The low 32 bits are ``murmurhash3_32(key, seed)`` and the high 32 bits
    are ``murmurhash3_32(key, seed ^ 0x9747B28C)``, so both halves are usable
    as independent hash values for double hashing.

    Args:
        key: The key to hash.
        seed: Optional seed for the hash.

    Returns:
        Unsigned 64-bit hash value.
    """
    low = murmurhash3_32(key, seed)
    high = murmurhash3_32(key, seed ^ _HIGH_SEED_SALT)
    return (high << 32) | low


def fnv1a_64(key: Any, seed: int = 0) -> int:
    """
    Pure Python implementation of FNV-1a (64-bit variant).

    Faster than ``murmurhash3_64`` but with a weaker avalanche on short keys.
    With ``seed=0`` the output matches the reference FNV-1a 64 values.

    Args:
        key: The key to hash.
        seed: Optional seed value, mixed into the offset basis.

    Returns:
        Unsigned 64-bit hash value.
    """
    FNV_PRIME = 0x100000001B3
    FNV_OFFSET_BASIS = 0xCBF29CE484222325

    h = (FNV_OFFSET_BASIS ^ seed) & _MASK_64

    for byte in _to_bytes(key):
        h ^= byte
        h = (h * FNV_PRIME) & _MASK_64

    return h
