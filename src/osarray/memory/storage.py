"""
Storage - Addressable row storage used for operand memories and output buffers.

Each core owns 3N Storage units:
    - N weight memories (one per PE column)
    - N input memories (one per PE row)
    - N output buffers, or GLBs (one per PE column)

A unit performs exactly one operation per cycle, chosen by its controller:

    CLEAR       every row <= 0, read port invalid ("ready" deasserted)
    STALL       nothing happens, read port invalid ("ready" but inert)
    READ        read port <= row[addr], valid on the next cycle
    WRITE       row[addr] <= data_in
    ACCUMULATE  row[addr] <= row[addr] + data_in

Rows are held in a register file rather than an amaranth.lib.memory.Memory.
A Memory writes one row per write port each cycle, so zeroing it takes
depth cycles, while CLEAR must leave every row readable as zero on the very next
cycle. The cost is depth x width flip-flops plus a depth-way read mux, which
stays small at the few rows a core holds. Address sequencing is the
controller's job; the unit never increments addresses by itself.
"""

from dataclasses import dataclass, field
from enum import IntEnum

from amaranth import Array, Module, Mux, Signal, signed
from amaranth.lib.wiring import Component, In, Out

from ..util.bits import wrap_signed


class StorageOp(IntEnum):
    """Operation selected for a Storage unit in one cycle."""

    CLEAR = 0
    STALL = 1
    READ = 2
    WRITE = 3
    ACCUMULATE = 4


class Storage(Component):
    """
    Register-file row storage with a registered read port.

    Ports:
        op: StorageOp for this cycle
        addr: Row address
        data_in: Write / accumulate data
        data_out: Row read on the previous cycle (0 when invalid)
        data_valid: data_out holds a row read on the previous cycle

    Parameters:
        width: Signed row width in bits
        depth: Number of rows
    """

    def __init__(self, width: int, depth: int):
        self.width = width
        self.depth = depth
        self.addr_bits = max(1, (depth - 1).bit_length())

        super().__init__(
            {
                "op": In(3),
                "addr": In(self.addr_bits),
                "data_in": In(signed(width)),
                "data_out": Out(signed(width)),
                "data_valid": Out(1),
            }
        )

        self.rows = Array(Signal(signed(width), name=f"row_{i}") for i in range(depth))

    def elaborate(self, _platform):
        m = Module()

        read_data = Signal(signed(self.width), name="read_data")
        read_valid = Signal(name="read_valid")

        m.d.comb += [
            self.data_out.eq(Mux(read_valid, read_data, 0)),
            self.data_valid.eq(read_valid),
        ]

        m.d.sync += read_valid.eq(0)

        with m.Switch(self.op):
            with m.Case(StorageOp.CLEAR):
                m.d.sync += [row.eq(0) for row in self.rows]
                m.d.sync += read_data.eq(0)

            with m.Case(StorageOp.READ):
                m.d.sync += [
                    read_data.eq(self.rows[self.addr]),
                    read_valid.eq(1),
                ]

            with m.Case(StorageOp.WRITE):
                m.d.sync += self.rows[self.addr].eq(self.data_in)

            with m.Case(StorageOp.ACCUMULATE):
                m.d.sync += self.rows[self.addr].eq(self.rows[self.addr] + self.data_in)

        return m


# =============================================================================
# Simulation Model
# =============================================================================


@dataclass
class StorageSim:
    """Behavioral model of a Storage unit."""

    width: int
    depth: int
    rows: list[int] = field(default_factory=list)
    read_data: int | None = None

    def __post_init__(self) -> None:
        if not self.rows:
            self.rows = [0] * self.depth

    def read(self, address: int) -> int:
        return self.rows[address]

    def write(self, address: int, value: int) -> None:
        self.rows[address] = wrap_signed(value, self.width)

    def write_accumulate(self, address: int, value: int) -> None:
        self.rows[address] = wrap_signed(self.rows[address] + value, self.width)

    def clear_all(self) -> None:
        self.rows = [0] * self.depth
        self.read_data = None

    def output(self) -> int | None:
        """Registered read port: the row read on the previous cycle, or None."""
        return self.read_data

    def step(self, op: StorageOp, address: int = 0, data_in: int = 0) -> int | None:
        """
        Advance one cycle.

        Returns:
            The read port value seen during this cycle (None when invalid)
        """
        out = self.read_data
        self.read_data = None

        if op == StorageOp.CLEAR:
            self.clear_all()
        elif op == StorageOp.READ:
            self.read_data = self.read(address)
        elif op == StorageOp.WRITE:
            self.write(address, data_in)
        elif op == StorageOp.ACCUMULATE:
            self.write_accumulate(address, data_in)
        return out
