"""
osarray Configuration Module

This module defines the configuration dataclass for the output-stationary
systolic dataflow core. All hardware parameters are specified here and
propagate through the design, both the Amaranth RTL and the behavioral
simulation models.

Configuration is purely structural: it is fixed when the hardware is
elaborated, never changed at runtime.
"""

import math
from dataclasses import dataclass
from enum import Enum


class ArbitrationPolicy(Enum):
    """
    Selection policy used by the bus arbiter when several cores are pending.

    - FIXED_PRIORITY: Highest core index always wins (can starve low indices)
    - ROUND_ROBIN: Search starts just below the most recently granted core
    """

    FIXED_PRIORITY = 0
    ROUND_ROBIN = 1


@dataclass
class AcceleratorConfig:
    """
    Configuration for the multi-core systolic accelerator.

    Example:
        >>> config = AcceleratorConfig(grid_dim=2, num_cores=2)
        >>> print(config.burst_write_len)  # 3 (header + 2 rows)
        >>> print(config.load_word_bits)  # 32 (2 weights + 2 inputs, 8 bits each)
    """

    # =========================================================================
    # Grid and Core Count
    # =========================================================================
    grid_dim: int = 4
    """PE grid dimension N (the grid is N x N)."""

    num_cores: int = 4
    """Number of cores sharing the main-memory bus."""

    # =========================================================================
    # Data Types (bit widths)
    # =========================================================================
    operand_bits: int = 8
    """Bit width of signed weights and inputs."""

    acc_bits: int = 22
    """Bit width of signed accumulators and output-buffer rows."""

    # =========================================================================
    # Local Storage
    # =========================================================================
    mem_rows: int = 64
    """Depth of each weight/input memory unit (max payload rows per load)."""

    # =========================================================================
    # Bus Bursts
    # =========================================================================
    burst_write_len: int = 0
    """
    Load burst length in beats, header beat included.

    Beat 0 carries metadata (the payload row count); beats 1.. carry one
    operand row each. 0 selects the default of grid_dim + 1.
    """

    burst_read_len: int = 0
    """
    Unload burst length in beats, header beat included.

    At most grid_dim + 1, since the output buffer holds grid_dim rows.
    0 selects the default of grid_dim + 1.
    """

    arbitration: ArbitrationPolicy = ArbitrationPolicy.FIXED_PRIORITY
    """Tie-break between pending cores."""

    # =========================================================================
    # Verification
    # =========================================================================
    debug_checks: bool = True
    """Emit HDL assertions and behavioral precondition checks."""

    # =========================================================================
    # Computed Properties
    # =========================================================================
    @property
    def glb_rows(self) -> int:
        """Depth of each output buffer (one row per PE row)."""
        return self.grid_dim

    @property
    def total_pes(self) -> int:
        """Processing elements per core."""
        return self.grid_dim * self.grid_dim

    @property
    def load_payload_rows(self) -> int:
        """Operand rows carried by one load burst (K of the matmul)."""
        return self.burst_write_len - 1

    @property
    def unload_payload_rows(self) -> int:
        """Result rows carried by one unload burst."""
        return self.burst_read_len - 1

    @property
    def max_burst_len(self) -> int:
        return max(self.burst_write_len, self.burst_read_len)

    @property
    def burst_bits(self) -> int:
        """Bits needed for the announced burst length."""
        return max(1, self.max_burst_len.bit_length())

    @property
    def bus_addr_bits(self) -> int:
        """Bits needed for the bus beat address."""
        return max(1, (self.max_burst_len - 1).bit_length())

    @property
    def mem_addr_bits(self) -> int:
        """Bits needed to address a weight/input memory row."""
        return max(1, (self.mem_rows - 1).bit_length())

    @property
    def glb_addr_bits(self) -> int:
        """Bits needed to address an output-buffer row."""
        return max(1, (self.glb_rows - 1).bit_length())

    @property
    def unit_addr_bits(self) -> int:
        """Bits for a memory address register that must also hold mem_rows."""
        return self.mem_rows.bit_length()

    @property
    def count_bits(self) -> int:
        """Bits for the controller's phase counter."""
        return (max(self.mem_rows, 4 * self.grid_dim, self.max_burst_len) + 2).bit_length()

    @property
    def load_word_bits(self) -> int:
        """Load payload word: N weights followed by N inputs."""
        return 2 * self.grid_dim * self.operand_bits

    @property
    def unload_word_bits(self) -> int:
        """Unload payload word: one accumulator per output buffer."""
        return self.grid_dim * self.acc_bits

    @property
    def core_bits(self) -> int:
        """Bits needed for a core index."""
        return max(1, (self.num_cores - 1).bit_length())

    def __post_init__(self):
        """Apply defaults and validate configuration parameters."""
        if self.burst_write_len == 0:
            self.burst_write_len = self.grid_dim + 1
        if self.burst_read_len == 0:
            self.burst_read_len = self.grid_dim + 1

        assert self.grid_dim > 0, "grid_dim must be positive"
        assert self.num_cores > 0, "num_cores must be positive"
        assert self.operand_bits > 0, "operand_bits must be positive"
        assert self.mem_rows > 0, "mem_rows must be positive"
        assert self.burst_write_len >= 2, "burst_write_len must cover a header and one row"
        assert self.burst_write_len - 1 <= self.mem_rows, (
            "burst_write_len payload must fit in mem_rows"
        )
        assert self.burst_read_len >= 2, "burst_read_len must cover a header and one row"
        assert self.burst_read_len - 1 <= self.glb_rows, (
            "burst_read_len payload must fit in the output buffer"
        )
        assert self.acc_bits >= 2 * self.operand_bits + math.ceil(math.log2(self.mem_rows)), (
            "acc_bits should be >= 2 * operand_bits + log2(mem_rows) to avoid overflow"
        )
        assert self.unload_word_bits >= self.burst_bits, "unload word must carry the header"


# Pre-defined configurations
DEFAULT_CONFIG = AcceleratorConfig()
"""Default configuration: 4 cores of 4x4 PEs, INT8 operands, 22-bit accumulators."""

SMALL_CONFIG = AcceleratorConfig(
    grid_dim=2,
    num_cores=2,
    mem_rows=4,
    burst_write_len=2,
    burst_read_len=3,
)
"""Two cores of 2x2 PEs with single-row loads, for fast simulation."""

ROUND_ROBIN_CONFIG = AcceleratorConfig(arbitration=ArbitrationPolicy.ROUND_ROBIN)
"""Default geometry with round-robin arbitration."""
