"""
Local storage for a core.

- Storage: Register-file rows used for operand memories and output buffers
- StorageSim: Behavioral model of a Storage unit
"""

from .storage import Storage, StorageOp, StorageSim

__all__ = ["Storage", "StorageOp", "StorageSim"]
