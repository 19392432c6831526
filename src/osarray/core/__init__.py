"""
Compute building blocks of a core.

- PE: Processing Element (gated MAC with a drain relay)
- PESim: Behavioral model of a PE
"""

from .pe import PE, PEMode, PESim

__all__ = ["PE", "PEMode", "PESim"]
