"""
DataflowController - Per-core sequencer for the output-stationary pipeline.

Each core runs a linear six-phase cycle:

    RESET -> LOAD -> DISTRIBUTE -> COMPUTE -> CLEANUP -> UNLOAD -> RESET

    RESET       Clear every PE and Storage unit, then request the bus.
    LOAD        On grant, capture the announced row count from the header
                beat and write that many operand rows into the weight and
                input memories.
    DISTRIBUTE  Start row memory j at tick j and activate PE (r, c) at
                tick r + c, so operands meet on the diagonal wavefront.
    COMPUTE     Keep every PE accumulating until row memory 0 has streamed
                all of its rows.
    CLEANUP     Reverse wavefront: delay groups drain into the output buffers
                in order, two capture ticks per group (one at either edge),
                with values relayed one hop per tick toward row 0.
    UNLOAD      Request the bus again and stream the output buffers out,
                header beat first.

Every phase ends with a one-shot `transfer_done` pulse: the completion
condition sets it, and on the following tick the phase advances and the
pulse clears.

Bus timeline for a load of K rows (beats are arbiter TRANSFER cycles):

    tick      RESET  SELECT  beat 0   beat 1 .. beat K   done   DISTRIBUTE
    req       0  1   1       1        1                  1      0
    grant     0  0   1       1        1                  0      0
    mem op    CLEAR  CLEAR   STALL    WRITE              STALL
    expected  -      -       <=burst  K                  K

Wiring expected by this controller (see Core):
    - mem_op_j / mem_addr_j drive both the weight memory and the input memory
      of unit j; weight memory j feeds PE (0, j), input memory j feeds PE (j, 0).
    - glb_op_c / glb_addr_c drive output buffer c, whose data input is the
      upward output of PE (0, c).
"""

import logging
from dataclasses import dataclass, field
from enum import IntEnum

from amaranth import Module, Signal
from amaranth.hdl import Assert
from amaranth.lib.wiring import Component, In, Out

from ..config import AcceleratorConfig
from ..core.pe import PEMode
from ..memory.storage import StorageOp
from . import wavefront

logger = logging.getLogger(__name__)


class Phase(IntEnum):
    """Controller pipeline phases."""

    RESET = 0
    LOAD = 1
    DISTRIBUTE = 2
    COMPUTE = 3
    CLEANUP = 4
    UNLOAD = 5


_ADVANCING_OPS = (StorageOp.READ, StorageOp.WRITE, StorageOp.ACCUMULATE)


class DataflowController(Component):
    """
    Six-phase dataflow controller for one core.

    Ports:
        Control:
            enable: Active-high enable; low forces RESET immediately

        Arbiter Interface:
            req: Bus request
            grant: Bus grant for this core
            burst: Payload row count announced on the header beat
            burst_valid: burst is valid this cycle; headers are captured only then

        Storage Interface (per unit j / output buffer c):
            mem_op_j, mem_addr_j: Weight and input memory j
            glb_op_c, glb_addr_c: Output buffer c

        PE Interface (per grid position):
            pe_mode_r_c: PEMode for PE (r, c)

        Unload Interface:
            bus_drive: This core drives an unload beat on the bus
            bus_header: The beat is the header (drive `burst`, not buffer data)

        Status:
            phase: Current Phase
            transfer_done: One-shot completion pulse of the current phase

    Parameters:
        config: AcceleratorConfig with grid dimension and burst lengths
    """

    def __init__(self, config: AcceleratorConfig):
        self.config = config
        n = config.grid_dim

        ports = {
            # Control
            "enable": In(1),
            # Arbiter interface
            "req": Out(1),
            "grant": In(1),
            "burst": In(config.burst_bits),
            "burst_valid": In(1),
            # Unload interface
            "bus_drive": Out(1),
            "bus_header": Out(1),
            # Status
            "phase": Out(3),
            "transfer_done": Out(1),
        }

        for j in range(n):
            ports[f"mem_op_{j}"] = Out(3)
            ports[f"mem_addr_{j}"] = Out(config.mem_addr_bits)
            ports[f"glb_op_{j}"] = Out(3)
            ports[f"glb_addr_{j}"] = Out(config.glb_addr_bits)

        for r in range(n):
            for c in range(n):
                ports[f"pe_mode_{r}_{c}"] = Out(2)

        super().__init__(ports)

    def elaborate(self, _platform):
        m = Module()
        cfg = self.config
        n = cfg.grid_dim
        grid = list(wavefront.positions(n))

        mem_op = [getattr(self, f"mem_op_{j}") for j in range(n)]
        mem_addr = [getattr(self, f"mem_addr_{j}") for j in range(n)]
        glb_op = [getattr(self, f"glb_op_{c}") for c in range(n)]
        glb_addr = [getattr(self, f"glb_addr_{c}") for c in range(n)]
        pe_mode = {(r, c): getattr(self, f"pe_mode_{r}_{c}") for r, c in grid}

        # =================================================================
        # Registers
        # =================================================================

        phase = Signal(3, init=Phase.RESET, name="ctl_phase")
        count = Signal(cfg.count_bits, name="count")
        done = Signal(name="done")
        req = Signal(name="req_reg")
        granted = Signal(name="granted")
        expected = Signal(cfg.burst_bits, name="expected")
        unit_addr = [Signal(cfg.unit_addr_bits, name=f"unit_addr_{j}") for j in range(n)]
        buf_addr = [Signal(n.bit_length(), name=f"buf_addr_{c}") for c in range(n)]

        def advance(next_phase):
            return [phase.eq(next_phase), count.eq(0), done.eq(0)]

        def clear_registers():
            return (
                [count.eq(0), done.eq(0), granted.eq(0), expected.eq(0)]
                + [a.eq(0) for a in unit_addr]
                + [a.eq(0) for a in buf_addr]
            )

        # Default outputs
        m.d.comb += [
            self.req.eq(req),
            self.transfer_done.eq(done),
            self.phase.eq(phase),
            self.bus_drive.eq(0),
            self.bus_header.eq(0),
        ]
        for j in range(n):
            m.d.comb += [
                mem_op[j].eq(StorageOp.STALL),
                mem_addr[j].eq(unit_addr[j]),
                glb_op[j].eq(StorageOp.STALL),
                glb_addr[j].eq(buf_addr[j]),
            ]
        for pos in grid:
            m.d.comb += pe_mode[pos].eq(PEMode.CLEAR)

        def stream_units(started=None):
            """Read each started unit until it has delivered `expected` rows."""
            for j in range(n):
                cond = unit_addr[j] < expected
                if started is not None:
                    cond = cond & started(j)
                with m.If(cond):
                    m.d.comb += mem_op[j].eq(StorageOp.READ)
                    m.d.sync += unit_addr[j].eq(unit_addr[j] + 1)

        # =================================================================
        # Phase state machine
        # =================================================================

        with m.Switch(phase):
            with m.Case(Phase.RESET):
                for j in range(n):
                    m.d.comb += [
                        mem_op[j].eq(StorageOp.CLEAR),
                        glb_op[j].eq(StorageOp.CLEAR),
                    ]
                m.d.sync += clear_registers()
                m.d.sync += req.eq(1)
                with m.If(req & self.grant):
                    m.d.sync += phase.eq(Phase.LOAD)

            with m.Case(Phase.LOAD):
                # count is the beat index; beat 0 is the header
                m.d.sync += count.eq(count + 1)
                with m.If((count == 0) & self.burst_valid):
                    m.d.sync += expected.eq(self.burst)
                with m.If((count != 0) & (count <= expected) & ~done):
                    for j in range(n):
                        m.d.comb += mem_op[j].eq(StorageOp.WRITE)
                        m.d.sync += unit_addr[j].eq(unit_addr[j] + 1)
                with m.If(~done & (count != 0) & (count == expected)):
                    m.d.sync += done.eq(1)
                with m.If(done):
                    m.d.sync += advance(Phase.DISTRIBUTE)
                    m.d.sync += req.eq(0)
                    m.d.sync += [a.eq(0) for a in unit_addr]

            with m.Case(Phase.DISTRIBUTE):
                m.d.sync += count.eq(count + 1)
                stream_units(started=lambda j: count >= j)
                for r, c in grid:
                    with m.If(count >= wavefront.delay_group(r, c)):
                        m.d.comb += pe_mode[r, c].eq(PEMode.ACCUMULATE)
                with m.If(~done & (count == wavefront.distribute_last_tick(n))):
                    m.d.sync += done.eq(1)
                with m.If(done):
                    m.d.sync += advance(Phase.COMPUTE)

            with m.Case(Phase.COMPUTE):
                m.d.sync += count.eq(count + 1)
                stream_units()
                for pos in grid:
                    m.d.comb += pe_mode[pos].eq(PEMode.ACCUMULATE)
                # Only unit 0 is watched; the others must never outlast it
                with m.If(~done & (unit_addr[0] == expected)):
                    m.d.sync += done.eq(1)
                with m.If(done):
                    m.d.sync += advance(Phase.CLEANUP)
                if cfg.debug_checks:
                    for j in range(1, n):
                        m.d.sync += Assert(
                            (unit_addr[j] != expected) | (unit_addr[0] == expected),
                            f"row unit {j} finished before row unit 0",
                        )

            with m.Case(Phase.CLEANUP):
                m.d.sync += count.eq(count + 1)
                stream_units()
                for r, c in grid:
                    emit = wavefront.emit_tick(r, c)
                    with m.If(count < emit):
                        m.d.comb += pe_mode[r, c].eq(PEMode.ACCUMULATE)
                    with m.Elif(count == emit):
                        m.d.comb += pe_mode[r, c].eq(PEMode.EMIT)
                    with m.Elif(count <= wavefront.relay_end(r, c, n)):
                        m.d.comb += pe_mode[r, c].eq(PEMode.RELAY)
                for c in range(n):
                    # Buffer c captures row a at tick f(0, c) + 2a
                    first = wavefront.capture_tick(0, c)
                    with m.If((buf_addr[c] < n) & (count == (buf_addr[c] << 1) + first)):
                        m.d.comb += glb_op[c].eq(StorageOp.WRITE)
                        m.d.sync += buf_addr[c].eq(buf_addr[c] + 1)
                with m.If(~done & (count == wavefront.cleanup_last_tick(n))):
                    m.d.sync += done.eq(1)
                with m.If(done):
                    m.d.sync += advance(Phase.UNLOAD)
                    m.d.sync += [req.eq(1), granted.eq(0)]
                    m.d.sync += [a.eq(0) for a in buf_addr]

            with m.Case(Phase.UNLOAD):
                with m.If(~granted):
                    with m.If(self.grant):
                        m.d.sync += [granted.eq(1), count.eq(0)]
                with m.Else():
                    # Rows still to read: announced count on the header beat
                    rows = Signal(cfg.burst_bits, name="unload_rows")
                    m.d.comb += rows.eq(expected)
                    m.d.sync += count.eq(count + 1)
                    with m.If(count == 0):
                        m.d.comb += [rows.eq(0), self.bus_header.eq(1)]
                        with m.If(self.burst_valid):
                            m.d.comb += rows.eq(self.burst)
                            m.d.sync += expected.eq(self.burst)
                    m.d.comb += self.bus_drive.eq(~done & ((count == 0) | (count <= expected)))
                    for c in range(n):
                        with m.If(buf_addr[c] < rows):
                            m.d.comb += glb_op[c].eq(StorageOp.READ)
                            m.d.sync += buf_addr[c].eq(buf_addr[c] + 1)
                    with m.If(~done & (count != 0) & (count == expected)):
                        m.d.sync += done.eq(1)
                    with m.If(done):
                        m.d.sync += advance(Phase.RESET)
                        m.d.sync += [req.eq(0), granted.eq(0)]

        # Hard abort: overrides everything above
        with m.If(~self.enable):
            m.d.comb += [
                self.phase.eq(Phase.RESET),
                self.req.eq(0),
                self.transfer_done.eq(0),
                self.bus_drive.eq(0),
                self.bus_header.eq(0),
            ]
            for j in range(n):
                m.d.comb += [
                    mem_op[j].eq(StorageOp.CLEAR),
                    glb_op[j].eq(StorageOp.CLEAR),
                ]
            for pos in grid:
                m.d.comb += pe_mode[pos].eq(PEMode.CLEAR)
            m.d.sync += clear_registers()
            m.d.sync += [phase.eq(Phase.RESET), req.eq(0)]

        return m


# =============================================================================
# Simulation Model
# =============================================================================


@dataclass
class ControllerOutputs:
    """Signals driven by a controller in one cycle."""

    phase: Phase
    req: bool
    transfer_done: bool
    mem_ops: list[tuple[StorageOp, int]]
    glb_ops: list[tuple[StorageOp, int]]
    pe_modes: list[list[PEMode]]
    bus_drive: bool = False
    bus_header: bool = False

    @classmethod
    def aborted(cls, dim: int) -> "ControllerOutputs":
        """Outputs while enable is low: everything cleared, nothing requested."""
        return cls(
            phase=Phase.RESET,
            req=False,
            transfer_done=False,
            mem_ops=[(StorageOp.CLEAR, 0)] * dim,
            glb_ops=[(StorageOp.CLEAR, 0)] * dim,
            pe_modes=[[PEMode.CLEAR] * dim for _ in range(dim)],
        )


@dataclass
class DataflowControllerSim:
    """
    Behavioral model of the DataflowController.

    Register names and timing follow the RTL one for one. outputs() is the
    combinational half; step() evaluates it, then commits the next state.
    """

    config: AcceleratorConfig
    core_id: int = 0
    phase: Phase = Phase.RESET
    count: int = 0
    done: bool = False
    req: bool = False
    granted: bool = False
    expected: int = 0
    unit_addr: list[int] = field(default_factory=list)
    buf_addr: list[int] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        """Hard abort: every register cleared, phase RESET."""
        self._clear_registers()
        self.phase = Phase.RESET
        self.req = False

    def _clear_registers(self) -> None:
        n = self.config.grid_dim
        self.count = 0
        self.done = False
        self.granted = False
        self.expected = 0
        self.unit_addr = [0] * n
        self.buf_addr = [0] * n

    def _advance(self, next_phase: Phase) -> None:
        logger.debug("core %d: %s -> %s", self.core_id, self.phase.name, next_phase.name)
        self.phase = next_phase
        self.count = 0
        self.done = False

    def outputs(self, grant: bool, burst: int | None = None) -> ControllerOutputs:
        """Combinational outputs for this cycle."""
        n = self.config.grid_dim
        t = self.count
        out = ControllerOutputs(
            phase=self.phase,
            req=self.req,
            transfer_done=self.done,
            mem_ops=[(StorageOp.STALL, a) for a in self.unit_addr],
            glb_ops=[(StorageOp.STALL, a) for a in self.buf_addr],
            pe_modes=[[PEMode.CLEAR] * n for _ in range(n)],
        )

        def stream_units(started=lambda j: True):
            for j, addr in enumerate(self.unit_addr):
                if started(j) and addr < self.expected:
                    out.mem_ops[j] = (StorageOp.READ, addr)

        if self.phase == Phase.RESET:
            out.mem_ops = [(StorageOp.CLEAR, a) for a in self.unit_addr]
            out.glb_ops = [(StorageOp.CLEAR, a) for a in self.buf_addr]

        elif self.phase == Phase.LOAD:
            if t != 0 and t <= self.expected and not self.done:
                out.mem_ops = [(StorageOp.WRITE, a) for a in self.unit_addr]

        elif self.phase == Phase.DISTRIBUTE:
            stream_units(lambda j: wavefront.unit_started(j, t))
            out.pe_modes = wavefront.distribute_modes(n, t)

        elif self.phase == Phase.COMPUTE:
            stream_units()
            out.pe_modes = [[PEMode.ACCUMULATE] * n for _ in range(n)]

        elif self.phase == Phase.CLEANUP:
            stream_units()
            out.pe_modes = wavefront.cleanup_modes(n, t)
            for c, addr in enumerate(self.buf_addr):
                if addr < n and t == wavefront.capture_tick(addr, c):
                    out.glb_ops[c] = (StorageOp.WRITE, addr)

        elif self.phase == Phase.UNLOAD and self.granted:
            rows = (burst or 0) if t == 0 else self.expected
            out.bus_header = t == 0
            out.bus_drive = not self.done and (t == 0 or t <= self.expected)
            for c, addr in enumerate(self.buf_addr):
                if addr < rows:
                    out.glb_ops[c] = (StorageOp.READ, addr)

        return out

    def step(self, grant: bool, burst: int | None = None, enable: bool = True) -> ControllerOutputs:
        """
        Advance one cycle.

        Args:
            grant: This core's grant line
            burst: Announced payload row count (None unless on a header beat)
            enable: Low forces RESET

        Returns:
            Outputs driven during this cycle
        """
        if not enable:
            self.reset()
            return ControllerOutputs.aborted(self.config.grid_dim)

        cfg = self.config
        n = cfg.grid_dim
        out = self.outputs(grant, burst)
        t = self.count
        was_done = self.done
        unit_addr = list(self.unit_addr)

        if cfg.debug_checks and grant and self.phase in (Phase.RESET, Phase.UNLOAD):
            assert self.req, f"core {self.core_id}: grant without request"

        for j, (op, _) in enumerate(out.mem_ops):
            if op in _ADVANCING_OPS:
                self.unit_addr[j] += 1
        for c, (op, _) in enumerate(out.glb_ops):
            if op in _ADVANCING_OPS:
                if cfg.debug_checks and self.phase == Phase.CLEANUP:
                    assert wavefront.capture_row(c, t, n) == self.buf_addr[c]
                self.buf_addr[c] += 1

        if self.phase == Phase.RESET:
            accept = self.req and grant
            self._clear_registers()
            self.req = True
            if accept:
                self._advance(Phase.LOAD)

        elif self.phase == Phase.LOAD:
            self.count += 1
            if t == 0:
                if cfg.debug_checks:
                    assert burst is not None and 1 <= burst <= cfg.mem_rows, (
                        f"core {self.core_id}: bad load header {burst}"
                    )
                if burst is not None:
                    self.expected = burst
            elif not was_done and t == self.expected:
                self.done = True
            if was_done:
                self._advance(Phase.DISTRIBUTE)
                self.req = False
                self.unit_addr = [0] * n

        elif self.phase == Phase.DISTRIBUTE:
            self.count += 1
            if not was_done and t == wavefront.distribute_last_tick(n):
                self.done = True
            if was_done:
                self._advance(Phase.COMPUTE)

        elif self.phase == Phase.COMPUTE:
            if cfg.debug_checks:
                for j in range(1, n):
                    assert unit_addr[j] != self.expected or unit_addr[0] == self.expected, (
                        f"core {self.core_id}: row unit {j} finished before row unit 0"
                    )
            self.count += 1
            if not was_done and unit_addr[0] == self.expected:
                self.done = True
            if was_done:
                self._advance(Phase.CLEANUP)

        elif self.phase == Phase.CLEANUP:
            self.count += 1
            if not was_done and t == wavefront.cleanup_last_tick(n):
                self.done = True
            if was_done:
                self._advance(Phase.UNLOAD)
                self.req = True
                self.granted = False
                self.buf_addr = [0] * n

        elif self.phase == Phase.UNLOAD:
            if not self.granted:
                if grant:
                    self.granted = True
                    self.count = 0
            else:
                self.count += 1
                if t == 0:
                    if cfg.debug_checks:
                        assert burst is not None and 1 <= burst <= cfg.glb_rows, (
                            f"core {self.core_id}: bad unload header {burst}"
                        )
                    if burst is not None:
                        self.expected = burst
                elif not was_done and t == self.expected:
                    self.done = True
                if was_done:
                    self._advance(Phase.RESET)
                    self.req = False
                    self.granted = False

        return out
