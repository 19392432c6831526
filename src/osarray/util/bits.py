"""
Bit-level helpers shared by the behavioral models and the host bus model.

The RTL truncates arithmetic to its register widths; the behavioral models
use these helpers to reproduce that wrap-around exactly.
"""


def wrap_signed(value: int, bits: int) -> int:
    """Wrap an integer into the two's-complement range of a signed field."""
    mask = (1 << bits) - 1
    value &= mask
    if value >> (bits - 1):
        value -= 1 << bits
    return value


def pack_fields(values, bits: int) -> int:
    """Pack signed values LSB-first into fixed-width fields of a bus word."""
    word = 0
    mask = (1 << bits) - 1
    for i, value in enumerate(values):
        word |= (int(value) & mask) << (i * bits)
    return word


def unpack_fields(word: int, count: int, bits: int) -> list[int]:
    """Inverse of pack_fields: split a bus word into signed fields."""
    mask = (1 << bits) - 1
    return [wrap_signed((word >> (i * bits)) & mask, bits) for i in range(count)]
