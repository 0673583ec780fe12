"""
Deterministic bucketing for experiment and feature-flag decisions.

A 32-bit rolling hash over the key. No seed or salt, so the same key maps to
the same bucket in every process.
"""

BUCKET_SPACE = 2 ** 31


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value >= 0x80000000 else value


def bucket(key: str) -> int:
    """
    Map a key to a stable integer in [0, 2**31).

    Hashes UTF-16 code units so keys outside the BMP hash the same way as in
    clients that iterate strings by code unit.
    """
    data = key.encode("utf-16-le")
    h = 0
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        h = _to_int32((h << 5) - h + unit)
    return abs(h) % BUCKET_SPACE


def fraction(key: str) -> float:
    """Uniform-ish draw in [0, 1) with two decimal places of resolution."""
    return (bucket(key) % 100) / 100.0
