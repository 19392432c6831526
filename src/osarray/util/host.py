"""
Host-side model of main memory as seen over the shared bus.

Each core owns a load image and an unload image in main memory:

    load image (burst_write_len beats)      unload image (burst_read_len beats)
    addr 0   header: K (payload rows)       addr 0   header: rows announced
    addr 1   weights B[0, :], inputs A[:, 0]   addr 1   result row C[0, :]
    ...                                      ...
    addr K   weights B[K-1,:], inputs A[:,K-1] addr R  result row C[R-1, :]

so that a single compute pass leaves C = A @ B in the core's output buffers.

Bus word layout (LSB first):

    load word    | w_0 | w_1 | ... | w_N-1 | x_0 | x_1 | ... | x_N-1 |   operand_bits each
    unload word  | c_0 | c_1 | ... | c_N-1 |                             acc_bits each

Header beats carry the row count as a plain unsigned integer.
"""

from dataclasses import dataclass, field

import numpy as np

from ..bus.arbiter import BurstKind
from ..config import AcceleratorConfig
from .bits import pack_fields, unpack_fields


@dataclass(frozen=True)
class LoadBeat:
    """One load payload row: the weight and input for each memory unit."""

    weights: tuple[int, ...]
    inputs: tuple[int, ...]


def pack_load_word(beat: LoadBeat, config: AcceleratorConfig) -> int:
    return pack_fields(list(beat.weights) + list(beat.inputs), config.operand_bits)


def unpack_load_word(word: int, config: AcceleratorConfig) -> LoadBeat:
    n = config.grid_dim
    fields = unpack_fields(word, 2 * n, config.operand_bits)
    return LoadBeat(tuple(fields[:n]), tuple(fields[n:]))


def pack_unload_word(row, config: AcceleratorConfig) -> int:
    return pack_fields(row, config.acc_bits)


def unpack_unload_word(word: int, config: AcceleratorConfig) -> tuple[int, ...]:
    return tuple(unpack_fields(word, config.grid_dim, config.acc_bits))


@dataclass
class HostMemory:
    """
    Main-memory images for every core, plus the results unloaded so far.

    Example:
        >>> host = HostMemory(SMALL_CONFIG)
        >>> host.stage_matmul(0, a=[[3], [4]], b=[[1, 2]])
        >>> host.read_beat(0, 0)
        1
    """

    config: AcceleratorConfig
    operands: dict[int, tuple[np.ndarray, np.ndarray]] = field(default_factory=dict)
    images: dict[int, list[int | LoadBeat]] = field(default_factory=dict)
    headers: dict[int, int] = field(default_factory=dict)
    results: dict[int, dict[int, tuple[int, ...]]] = field(default_factory=dict)

    def stage_matmul(self, core_id: int, a, b) -> None:
        """
        Build the load image for C = A @ B on one core.

        Args:
            core_id: Target core
            a: N x K input matrix (row r streams through PE row r)
            b: K x N weight matrix (column c streams through PE column c)
        """
        cfg = self.config
        n, k = cfg.grid_dim, cfg.load_payload_rows
        a = np.asarray(a, dtype=np.int64)
        b = np.asarray(b, dtype=np.int64)
        assert 0 <= core_id < cfg.num_cores, f"no core {core_id}"
        assert a.shape == (n, k), f"A must be {n}x{k}, got {a.shape}"
        assert b.shape == (k, n), f"B must be {k}x{n}, got {b.shape}"
        limit = 1 << (cfg.operand_bits - 1)
        assert np.all((a >= -limit) & (a < limit)), "A does not fit operand_bits"
        assert np.all((b >= -limit) & (b < limit)), "B does not fit operand_bits"

        self.operands[core_id] = (a, b)
        self.images[core_id] = [k] + [
            LoadBeat(tuple(int(w) for w in b[i, :]), tuple(int(x) for x in a[:, i]))
            for i in range(k)
        ]
        self.headers.pop(core_id, None)
        self.results.pop(core_id, None)

    @property
    def staged(self) -> list[int]:
        return sorted(self.images)

    # =========================================================================
    # Bus side
    # =========================================================================

    def read_beat(self, core_id: int, addr: int) -> int | LoadBeat:
        """Value the host drives for beat `addr` of a load burst."""
        return self.images[core_id][addr]

    def read_word(self, core_id: int, addr: int) -> int:
        """read_beat() packed into a raw bus word."""
        beat = self.read_beat(core_id, addr)
        if isinstance(beat, LoadBeat):
            return pack_load_word(beat, self.config)
        return beat

    def write_beat(self, core_id: int, addr: int, value) -> None:
        """Capture beat `addr` of an unload burst (header int or result row)."""
        if addr == 0:
            self.headers[core_id] = int(value)
            self.results[core_id] = {}
        else:
            self.results.setdefault(core_id, {})[addr - 1] = tuple(int(v) for v in value)

    def write_word(self, core_id: int, addr: int, word: int) -> None:
        """write_beat() from a raw bus word."""
        if addr == 0:
            self.write_beat(core_id, 0, word)
        else:
            self.write_beat(core_id, addr, unpack_unload_word(word, self.config))

    def transfer(self, kind: BurstKind, core_id: int, addr: int, value=None):
        """Service one beat in either direction."""
        if kind == BurstKind.LOAD:
            return self.read_beat(core_id, addr)
        self.write_beat(core_id, addr, value)
        return None

    # =========================================================================
    # Results
    # =========================================================================

    def complete(self, core_id: int) -> bool:
        """True once a full unload burst has been captured for the core."""
        rows = self.results.get(core_id, {})
        return core_id in self.headers and all(
            r in rows for r in range(self.config.unload_payload_rows)
        )

    def all_complete(self) -> bool:
        return all(self.complete(core_id) for core_id in self.staged)

    def result(self, core_id: int) -> np.ndarray:
        """Unloaded rows as a (rows x N) matrix."""
        rows = self.results[core_id]
        return np.array([rows[r] for r in sorted(rows)], dtype=np.int64)

    def expected(self, core_id: int) -> np.ndarray:
        """Golden result rows computed with numpy."""
        a, b = self.operands[core_id]
        return (a @ b)[: self.config.unload_payload_rows]

    # =========================================================================
    # Amaranth testbench driver
    # =========================================================================

    async def serve(self, ctx, top, max_cycles: int = 10_000) -> int:
        """
        Act as main memory for an Accelerator inside an Amaranth testbench.

        Drives `host_data` for load beats and captures `core_data` for unload
        beats, one clock at a time, until every staged core has unloaded.

        Returns:
            The number of cycles simulated
        """
        for cycle in range(max_cycles):
            word = 0
            if ctx.get(top.bus_valid):
                core_id = ctx.get(top.bus_core)
                addr = ctx.get(top.bus_addr)
                if ctx.get(top.bus_rw) == BurstKind.LOAD:
                    word = self.read_word(core_id, addr)
                elif ctx.get(top.core_data_valid):
                    self.write_word(core_id, addr, ctx.get(top.core_data))
            ctx.set(top.host_data, word)
            if self.all_complete():
                return cycle
            await ctx.tick()
        return max_cycles
