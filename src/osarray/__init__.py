"""
osarray - Cycle-accurate dataflow core for a multi-core systolic accelerator.

This package provides configurable hardware generation, using Amaranth HDL,
for a set of output-stationary N x N systolic cores that share one
main-memory bus, together with behavioral models of the same design.
"""

from .config import (
    DEFAULT_CONFIG,
    ROUND_ROBIN_CONFIG,
    SMALL_CONFIG,
    AcceleratorConfig,
    ArbitrationPolicy,
)
from .top import Accelerator, AcceleratorSim, Core, CoreSim

__version__ = "0.1.0"
__all__ = [
    "AcceleratorConfig",
    "ArbitrationPolicy",
    "DEFAULT_CONFIG",
    "SMALL_CONFIG",
    "ROUND_ROBIN_CONFIG",
    "Accelerator",
    "AcceleratorSim",
    "Core",
    "CoreSim",
    "__version__",
]
