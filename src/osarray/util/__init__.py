"""Utility modules for the osarray accelerator."""

from .bits import pack_fields, unpack_fields, wrap_signed
from .host import (
    HostMemory,
    LoadBeat,
    pack_load_word,
    pack_unload_word,
    unpack_load_word,
    unpack_unload_word,
)

__all__ = [
    "HostMemory",
    "LoadBeat",
    "pack_load_word",
    "unpack_load_word",
    "pack_unload_word",
    "unpack_unload_word",
    "pack_fields",
    "unpack_fields",
    "wrap_signed",
]
