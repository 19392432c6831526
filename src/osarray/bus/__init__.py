"""
Shared main-memory bus.

- Arbiter: Burst-oriented arbiter granting the bus to one core at a time
- ArbiterSim: Behavioral model of the Arbiter
"""

from .arbiter import (
    Arbiter,
    ArbiterOutputs,
    ArbiterPhase,
    ArbiterSim,
    BurstKind,
    BurstRequest,
    search_order,
)

__all__ = [
    "Arbiter",
    "ArbiterOutputs",
    "ArbiterPhase",
    "ArbiterSim",
    "BurstKind",
    "BurstRequest",
    "search_order",
]
