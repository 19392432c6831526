"""
Top-level integration: cores, the shared bus and the behavioral driver.

Architecture:

    ┌──────────────────────────────────────────────────────────────────┐
    │                          Accelerator                             │
    │                                                                  │
    │   host_data ──┬──────────────┬──────────────┐                    │
    │               v              v              v                    │
    │          ┌─────────┐    ┌─────────┐    ┌─────────┐               │
    │          │ Core 0  │    │ Core 1  │ .. │ Core n-1│               │
    │          └─┬───▲───┘    └─┬───▲───┘    └─┬───▲───┘               │
    │        req │   │ grant    │   │          │   │                   │
    │            v   │          v   │          v   │                   │
    │          ┌─────┴──────────────┴──────────────┴─┐                 │
    │          │               Arbiter               │                 │
    │          └─────────────────────────────────────┘──> bus_addr,    │
    │                                                     bus_rw, ...  │
    │   core_data <── output of the granted core                       │
    └──────────────────────────────────────────────────────────────────┘

    Core (N = 2 shown):

        wmem_0     wmem_1            glb_0   glb_1
          |          |                 ^       ^
          v          v                 |       |
    imem_0 -> PE(0,0) -> PE(0,1)     PE(0,0) PE(0,1)   (upward drain)
                |          |           ^       ^
                v          v           |       |
    imem_1 -> PE(1,0) -> PE(1,1)     PE(1,0) PE(1,1)

Both an Amaranth RTL version (Core, Accelerator) and a behavioral version
(CoreSim, AcceleratorSim) are provided. The behavioral driver runs every
component's step once per cycle in a fixed order:

    1. arbiter     outputs from its registers; request lines are the values
                   registered at the start of the cycle
    2. host        drives the load beat addressed by the arbiter
    3. cores       controller, storage and PE outputs, then all commits
    4. host        captures the unload beat driven by the granted core
"""

import logging
from dataclasses import dataclass, field

from amaranth import Cat, Module
from amaranth.lib.wiring import Component, In, Out

from .bus.arbiter import Arbiter, ArbiterSim, BurstKind
from .config import AcceleratorConfig
from .controller.dataflow import ControllerOutputs, DataflowController, DataflowControllerSim, Phase
from .core.pe import PE, PESim
from .memory.storage import Storage, StorageSim
from .util.host import HostMemory, LoadBeat

logger = logging.getLogger(__name__)


class Core(Component):
    """
    One core: controller, 3N Storage units and an N x N PE grid.

    Ports:
        enable: Active-high enable; low forces RESET
        grant: Bus grant for this core
        burst: Announced payload row count (header beat)
        burst_valid: burst is valid
        bus_data_in: Load word from main memory

        req: Bus request
        phase: Controller Phase (debug)
        transfer_done: Controller completion pulse (debug)
        bus_data_out: Unload word (header or one output-buffer row)
        bus_data_valid: bus_data_out is driven

    Parameters:
        config: AcceleratorConfig
    """

    def __init__(self, config: AcceleratorConfig):
        self.config = config

        super().__init__(
            {
                "enable": In(1),
                "grant": In(1),
                "burst": In(config.burst_bits),
                "burst_valid": In(1),
                "bus_data_in": In(config.load_word_bits),
                "req": Out(1),
                "phase": Out(3),
                "transfer_done": Out(1),
                "bus_data_out": Out(config.unload_word_bits),
                "bus_data_valid": Out(1),
            }
        )

    def elaborate(self, _platform):
        m = Module()
        cfg = self.config
        n = cfg.grid_dim
        ob = cfg.operand_bits

        m.submodules.controller = ctl = DataflowController(cfg)

        wmem = []
        imem = []
        glb = []
        for j in range(n):
            wmem.append(Storage(ob, cfg.mem_rows))
            imem.append(Storage(ob, cfg.mem_rows))
            glb.append(Storage(cfg.acc_bits, cfg.glb_rows))
            m.submodules[f"wmem_{j}"] = wmem[j]
            m.submodules[f"imem_{j}"] = imem[j]
            m.submodules[f"glb_{j}"] = glb[j]

        pes = {}
        for r in range(n):
            for c in range(n):
                pes[r, c] = PE(cfg)
                m.submodules[f"pe_{r}_{c}"] = pes[r, c]

        # =================================================================
        # Controller
        # =================================================================

        m.d.comb += [
            ctl.enable.eq(self.enable),
            ctl.grant.eq(self.grant),
            ctl.burst.eq(self.burst),
            ctl.burst_valid.eq(self.burst_valid),
            self.req.eq(ctl.req),
            self.phase.eq(ctl.phase),
            self.transfer_done.eq(ctl.transfer_done),
        ]

        # =================================================================
        # Storage
        # =================================================================

        for j in range(n):
            mem_op = getattr(ctl, f"mem_op_{j}")
            mem_addr = getattr(ctl, f"mem_addr_{j}")
            m.d.comb += [
                wmem[j].op.eq(mem_op),
                wmem[j].addr.eq(mem_addr),
                wmem[j].data_in.eq(self.bus_data_in[j * ob : (j + 1) * ob].as_signed()),
                imem[j].op.eq(mem_op),
                imem[j].addr.eq(mem_addr),
                imem[j].data_in.eq(self.bus_data_in[(n + j) * ob : (n + j + 1) * ob].as_signed()),
                glb[j].op.eq(getattr(ctl, f"glb_op_{j}")),
                glb[j].addr.eq(getattr(ctl, f"glb_addr_{j}")),
                glb[j].data_in.eq(pes[0, j].out),
            ]

        # =================================================================
        # PE grid
        # =================================================================

        for (r, c), pe in pes.items():
            m.d.comb += [
                pe.mode.eq(getattr(ctl, f"pe_mode_{r}_{c}")),
                pe.in_weight.eq(wmem[c].data_out if r == 0 else pes[r - 1, c].out_weight),
                pe.in_input.eq(imem[r].data_out if c == 0 else pes[r, c - 1].out_input),
            ]
            if r < n - 1:
                m.d.comb += pe.in_forward.eq(pes[r + 1, c].out)

        # =================================================================
        # Unload path
        # =================================================================

        with m.If(ctl.bus_header):
            m.d.comb += self.bus_data_out.eq(self.burst)
        with m.Else():
            m.d.comb += self.bus_data_out.eq(Cat(*(g.data_out for g in glb)))
        m.d.comb += self.bus_data_valid.eq(ctl.bus_drive)

        return m


class Accelerator(Component):
    """
    NumCores cores sharing one main-memory bus through the Arbiter.

    Ports:
        enable: Global active-high enable; low resets everything
        host_data: Load word driven by main memory for the current beat

        req: Request lines of all cores (debug)
        grant: Grant lines of all cores
        burst, burst_valid: Header beat announcement
        bus_addr, bus_rw, bus_valid, bus_core: Current beat
        core_data: Unload word from the granted core
        core_data_valid: core_data is driven
        phase_i: Controller Phase of core i (debug)

    Parameters:
        config: AcceleratorConfig
    """

    def __init__(self, config: AcceleratorConfig):
        self.config = config
        num = config.num_cores

        ports = {
            "enable": In(1),
            "host_data": In(config.load_word_bits),
            "req": Out(num),
            "grant": Out(num),
            "burst": Out(config.burst_bits),
            "burst_valid": Out(1),
            "bus_addr": Out(config.bus_addr_bits),
            "bus_rw": Out(1),
            "bus_valid": Out(1),
            "bus_core": Out(config.core_bits),
            "core_data": Out(config.unload_word_bits),
            "core_data_valid": Out(1),
        }
        for i in range(num):
            ports[f"phase_{i}"] = Out(3)

        super().__init__(ports)

    def elaborate(self, _platform):
        m = Module()
        cfg = self.config

        m.submodules.arbiter = arb = Arbiter(cfg)
        cores = []
        for i in range(cfg.num_cores):
            core = Core(cfg)
            m.submodules[f"core_{i}"] = core
            cores.append(core)

        m.d.comb += [
            arb.enable.eq(self.enable),
            arb.req.eq(Cat(*(core.req for core in cores))),
            self.req.eq(arb.req),
            self.grant.eq(arb.grant),
            self.burst.eq(arb.burst),
            self.burst_valid.eq(arb.burst_valid),
            self.bus_addr.eq(arb.bus_addr),
            self.bus_rw.eq(arb.bus_rw),
            self.bus_valid.eq(arb.bus_valid),
            self.bus_core.eq(arb.bus_core),
            self.core_data.eq(0),
            self.core_data_valid.eq(0),
        ]

        for i, core in enumerate(cores):
            m.d.comb += [
                core.enable.eq(self.enable),
                core.grant.eq(arb.grant[i]),
                core.burst.eq(arb.burst),
                core.burst_valid.eq(arb.burst_valid),
                core.bus_data_in.eq(self.host_data),
                getattr(self, f"phase_{i}").eq(core.phase),
            ]
            with m.If(arb.grant[i]):
                m.d.comb += [
                    self.core_data.eq(core.bus_data_out),
                    self.core_data_valid.eq(core.bus_data_valid),
                ]

        return m


# =============================================================================
# Simulation Model
# =============================================================================


@dataclass
class CoreOutputs:
    """Per-cycle outputs of a core."""

    req: bool
    phase: Phase
    transfer_done: bool
    bus_data: int | tuple[int, ...] | None = None


@dataclass
class CoreSim:
    """
    Behavioral model of one core.

    Storage units and PEs are stepped with the operations chosen by the
    controller in the same cycle; all of them see each other's outputs as
    they stood at the start of the cycle.
    """

    config: AcceleratorConfig
    core_id: int = 0

    # Components (initialized in __post_init__, not passed to __init__)
    controller: DataflowControllerSim = field(init=False)
    weight_mems: list[StorageSim] = field(init=False)
    input_mems: list[StorageSim] = field(init=False)
    buffers: list[StorageSim] = field(init=False)
    pes: list[list[PESim]] = field(init=False)

    def __post_init__(self) -> None:
        cfg = self.config
        n = cfg.grid_dim
        self.controller = DataflowControllerSim(cfg, self.core_id)
        self.weight_mems = [StorageSim(cfg.operand_bits, cfg.mem_rows) for _ in range(n)]
        self.input_mems = [StorageSim(cfg.operand_bits, cfg.mem_rows) for _ in range(n)]
        self.buffers = [StorageSim(cfg.acc_bits, cfg.glb_rows) for _ in range(n)]
        self.pes = [[PESim(cfg) for _ in range(n)] for _ in range(n)]

    @property
    def phase(self) -> Phase:
        return self.controller.phase

    @property
    def req(self) -> bool:
        return self.controller.req

    def accumulators(self) -> list[list[int]]:
        return [[pe.accumulator for pe in row] for row in self.pes]

    def buffer_contents(self) -> list[list[int]]:
        """Output-buffer rows: entry [r][c] is row r of buffer c."""
        return [[buf.rows[r] for buf in self.buffers] for r in range(self.config.glb_rows)]

    def step(
        self,
        grant: bool,
        burst: int | None = None,
        bus_data: int | LoadBeat | None = None,
        enable: bool = True,
    ) -> CoreOutputs:
        """
        Advance one cycle.

        Args:
            grant: This core's grant line
            burst: Announced payload row count (header beat only)
            bus_data: Load beat driven by the host, if any
            enable: Low forces RESET

        Returns:
            Outputs driven during this cycle
        """
        n = self.config.grid_dim

        # Outputs of registered components, before anything commits
        wmem_out = [mem.output() for mem in self.weight_mems]
        imem_out = [mem.output() for mem in self.input_mems]
        glb_out = [buf.output() for buf in self.buffers]

        ctl: ControllerOutputs = self.controller.step(grant, burst, enable)

        pe_out = [
            [pe.output(ctl.pe_modes[r][c]) for c, pe in enumerate(row)]
            for r, row in enumerate(self.pes)
        ]
        weights = [[pe.weight for pe in row] for row in self.pes]
        inputs = [[pe.input for pe in row] for row in self.pes]

        bus_out = None
        if ctl.bus_drive:
            if ctl.bus_header:
                bus_out = burst
            else:
                bus_out = tuple(v if v is not None else 0 for v in glb_out)

        # Commit storage
        beat = bus_data if isinstance(bus_data, LoadBeat) else None
        for j in range(n):
            op, addr = ctl.mem_ops[j]
            self.weight_mems[j].step(op, addr, beat.weights[j] if beat else 0)
            self.input_mems[j].step(op, addr, beat.inputs[j] if beat else 0)
            op, addr = ctl.glb_ops[j]
            self.buffers[j].step(op, addr, pe_out[0][j] or 0)

        # Commit PEs
        for r, row in enumerate(self.pes):
            for c, pe in enumerate(row):
                in_weight = (wmem_out[c] or 0) if r == 0 else weights[r - 1][c]
                in_input = (imem_out[r] or 0) if c == 0 else inputs[r][c - 1]
                in_forward = (pe_out[r + 1][c] or 0) if r < n - 1 else 0
                pe.step(ctl.pe_modes[r][c], in_weight, in_input, in_forward)

        return CoreOutputs(
            req=ctl.req,
            phase=ctl.phase,
            transfer_done=ctl.transfer_done,
            bus_data=bus_out,
        )


@dataclass
class TickRecord:
    """Bus-level summary of one simulated cycle."""

    cycle: int
    grant: int
    burst: int | None
    bus_addr: int | None
    bus_rw: BurstKind | None
    bus_core: int | None
    bus_data: int | LoadBeat | tuple[int, ...] | None
    phases: tuple[Phase, ...]
    reqs: int


class AcceleratorSim:
    """
    Behavioral model of the whole accelerator: arbiter, cores and host.

    Example:
        >>> sim = AcceleratorSim(SMALL_CONFIG)
        >>> sim.host.stage_matmul(0, [[3], [4]], [[1, 2]])
        >>> sim.host.stage_matmul(1, [[7], [8]], [[5, 6]])
        >>> sim.run_until_complete()
        >>> sim.host.result(0)
        array([[3, 6],
               [4, 8]])
    """

    def __init__(self, config: AcceleratorConfig, host: HostMemory | None = None):
        self.config = config
        self.host = host if host is not None else HostMemory(config)
        self.arbiter = ArbiterSim(config)
        self.cores = [CoreSim(config, i) for i in range(config.num_cores)]
        self.cycle = 0
        self.history: list[TickRecord] = []

    @property
    def req_lines(self) -> int:
        """Request lines as registered at the start of the current cycle."""
        return sum(int(core.req) << i for i, core in enumerate(self.cores))

    def tick(self, enable: bool = True) -> TickRecord:
        """Advance every component by one cycle."""
        cfg = self.config
        reqs = self.req_lines if enable else 0

        arb = self.arbiter.step(reqs, enable)
        if cfg.debug_checks:
            assert arb.grant & (arb.grant - 1) == 0, f"cycle {self.cycle}: grant not one-hot"

        load_data = None
        if arb.rw == BurstKind.LOAD:
            load_data = self.host.read_beat(arb.core, arb.addr)

        bus_data = load_data
        phases = []
        for i, core in enumerate(self.cores):
            owns_bus = arb.core == i
            out = core.step(
                arb.granted(i),
                arb.burst,
                load_data if owns_bus else None,
                enable,
            )
            phases.append(out.phase)
            if owns_bus and arb.rw == BurstKind.UNLOAD and out.bus_data is not None:
                self.host.write_beat(i, arb.addr, out.bus_data)
                bus_data = out.bus_data

        record = TickRecord(
            cycle=self.cycle,
            grant=arb.grant,
            burst=arb.burst,
            bus_addr=arb.addr,
            bus_rw=arb.rw,
            bus_core=arb.core,
            bus_data=bus_data,
            phases=tuple(phases),
            reqs=reqs,
        )
        self.history.append(record)
        self.cycle += 1
        return record

    def reset(self) -> TickRecord:
        """Hold enable low for one cycle."""
        logger.debug("cycle %d: global reset", self.cycle)
        return self.tick(enable=False)

    def run(self, cycles: int) -> list[TickRecord]:
        return [self.tick() for _ in range(cycles)]

    def run_until_complete(self, max_cycles: int = 10_000) -> int:
        """
        Run until every staged core has unloaded its results.

        Returns:
            Cycles simulated by this call

        Raises:
            ValueError: A core has no staged operands
            TimeoutError: Results did not arrive within max_cycles
        """
        missing = sorted(set(range(self.config.num_cores)) - set(self.host.staged))
        if missing:
            raise ValueError(f"no operands staged for cores {missing}")
        for cycles in range(max_cycles):
            if self.host.all_complete():
                return cycles
            self.tick()
        raise TimeoutError(f"results not unloaded within {max_cycles} cycles")
