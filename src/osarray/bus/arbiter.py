"""
Bus Arbiter - Serializes main-memory bursts across cores.

All cores share one bus. The arbiter grants it to one core at a time for a
fixed-length burst, and remembers per core whether the next burst is a load
(operands into the core) or an unload (results out of the core).

State Machine:

    RESET --> IDLE --> LOCK --> SELECT --> TRANSFER --+--> SELECT  (more pending)
               ^         |        ^                   |
               |         |        +-------------------+
               +---------+                            +--> LOCK    (none pending)

    RESET     Clear load_mask and pending. Entered whenever enable
              is low; leaves on the first enabled cycle.
    IDLE      Wait for any request, then sample all request lines into
              `pending` in one cycle.
    LOCK      Go on to SELECT while anything sampled is still pending;
              otherwise return to IDLE once the core served last has dropped
              its request (it holds it for one completion cycle).
    SELECT    Pick one pending core and drive its grant for this cycle.
              Its load_mask bit decides the burst kind and length, then
              toggles.
    TRANSFER  Drive `length` beats at bus addresses 0, 1, ... length-1.
              Beat 0 is a header: `burst` announces the payload row count.
              On the last beat the core leaves `pending`.

Bursts are never interleaved: a core requesting during another core's
transfer either joins the current round (if it was sampled) or waits for
the next IDLE sample.

Timing (one core, load burst of 3 beats):

    cycle   phase      grant  bus_addr  burst
    0       IDLE       0      -         -
    1       LOCK       0      -         -
    2       SELECT     1      -         -
    3       TRANSFER   1      0         2
    4       TRANSFER   1      1         -
    5       TRANSFER   1      2         -
    6       LOCK       0      -         -
"""

import logging
from dataclasses import dataclass
from enum import IntEnum

from amaranth import Module, Signal
from amaranth.hdl import Assert
from amaranth.lib.wiring import Component, In, Out

from ..config import AcceleratorConfig, ArbitrationPolicy

logger = logging.getLogger(__name__)


class ArbiterPhase(IntEnum):
    """Arbiter state machine states."""

    RESET = 0
    IDLE = 1
    LOCK = 2
    SELECT = 3
    TRANSFER = 4


class BurstKind(IntEnum):
    """Burst direction, as driven on bus_rw."""

    UNLOAD = 0  # core -> main memory
    LOAD = 1  # main memory -> core


@dataclass(frozen=True)
class BurstRequest:
    """One granted burst: which core, which direction, how many beats."""

    core_id: int
    kind: BurstKind
    length: int


def search_order(config: AcceleratorConfig, last: int = 0) -> list[int]:
    """
    Order in which pending cores are considered, highest priority first.

    Fixed priority always prefers the highest index. Round-robin starts just
    below the most recently granted core and wraps around, so with last=0
    both policies agree.
    """
    n = config.num_cores
    if config.arbitration == ArbitrationPolicy.FIXED_PRIORITY:
        return list(range(n - 1, -1, -1))
    return [(last - k) % n for k in range(1, n + 1)]


class Arbiter(Component):
    """
    Burst-oriented bus arbiter.

    Ports:
        enable: Active-high enable; low forces RESET
        req: Request lines, one bit per core

        grant: One-hot bus ownership (SELECT and TRANSFER)
        burst: Payload row count announced with the header beat
        burst_valid: burst is valid (header beat only)
        bus_addr: Beat address within the burst
        bus_rw: BurstKind of the active burst
        bus_valid: A beat is on the bus this cycle
        bus_core: Index of the owning core
        phase: ArbiterPhase (debug)
        load_mask: Per-core loaded flags (debug)

    Parameters:
        config: AcceleratorConfig with core count, burst lengths and policy
    """

    def __init__(self, config: AcceleratorConfig):
        self.config = config
        n = config.num_cores

        super().__init__(
            {
                "enable": In(1),
                "req": In(n),
                "grant": Out(n),
                "burst": Out(config.burst_bits),
                "burst_valid": Out(1),
                "bus_addr": Out(config.bus_addr_bits),
                "bus_rw": Out(1),
                "bus_valid": Out(1),
                "bus_core": Out(config.core_bits),
                "phase": Out(3),
                "load_mask": Out(n),
            }
        )

    def elaborate(self, _platform):
        m = Module()
        cfg = self.config
        n = cfg.num_cores

        phase = Signal(3, init=ArbiterPhase.RESET, name="arb_phase")
        load_mask = Signal(n, name="load_mask")
        pending = Signal(n, name="pending")
        sel = Signal(cfg.core_bits, name="sel")
        last = Signal(cfg.core_bits, name="last")
        kind = Signal(name="kind")
        length = Signal(cfg.burst_bits, name="length")
        count = Signal(cfg.burst_bits, name="count")

        # =================================================================
        # Selection logic
        # =================================================================

        choice = Signal(cfg.core_bits, name="choice")
        if cfg.arbitration == ArbitrationPolicy.FIXED_PRIORITY:
            # Later assignments win, so list the preferred core last
            for i in reversed(search_order(cfg)):
                with m.If(pending[i]):
                    m.d.comb += choice.eq(i)
        else:
            with m.Switch(last):
                for start in range(n):
                    with m.Case(start):
                        for i in reversed(search_order(cfg, start)):
                            with m.If(pending[i]):
                                m.d.comb += choice.eq(i)

        sel_mask = Signal(n, name="sel_mask")
        remaining = Signal(n, name="remaining")
        for i in range(n):
            m.d.comb += [
                sel_mask[i].eq(sel == i),
                remaining[i].eq(pending[i] & (sel != i)),
            ]

        # Default outputs
        m.d.comb += [
            self.grant.eq(0),
            self.burst.eq(0),
            self.burst_valid.eq(0),
            self.bus_addr.eq(0),
            self.bus_rw.eq(0),
            self.bus_valid.eq(0),
            self.bus_core.eq(0),
            self.phase.eq(phase),
            self.load_mask.eq(load_mask),
        ]

        # =================================================================
        # State machine
        # =================================================================

        with m.Switch(phase):
            with m.Case(ArbiterPhase.RESET):
                m.d.sync += [
                    load_mask.eq(0),
                    pending.eq(0),
                    sel.eq(0),
                    last.eq(0),
                    count.eq(0),
                    phase.eq(ArbiterPhase.IDLE),
                ]

            with m.Case(ArbiterPhase.IDLE):
                with m.If(self.req != 0):
                    m.d.sync += [
                        pending.eq(self.req),
                        phase.eq(ArbiterPhase.LOCK),
                    ]

            with m.Case(ArbiterPhase.LOCK):
                with m.If(pending != 0):
                    m.d.sync += phase.eq(ArbiterPhase.SELECT)
                with m.Elif((self.req & sel_mask) == 0):
                    m.d.sync += phase.eq(ArbiterPhase.IDLE)

            with m.Case(ArbiterPhase.SELECT):
                for i in range(n):
                    m.d.comb += self.grant[i].eq(choice == i)
                m.d.sync += [
                    sel.eq(choice),
                    last.eq(choice),
                    count.eq(0),
                    phase.eq(ArbiterPhase.TRANSFER),
                ]
                for i in range(n):
                    with m.If(choice == i):
                        m.d.sync += load_mask[i].eq(~load_mask[i])
                        with m.If(load_mask[i]):
                            m.d.sync += [
                                kind.eq(BurstKind.UNLOAD),
                                length.eq(cfg.burst_read_len),
                            ]
                        with m.Else():
                            m.d.sync += [
                                kind.eq(BurstKind.LOAD),
                                length.eq(cfg.burst_write_len),
                            ]

            with m.Case(ArbiterPhase.TRANSFER):
                m.d.comb += [
                    self.grant.eq(sel_mask),
                    self.bus_valid.eq(1),
                    self.bus_addr.eq(count),
                    self.bus_rw.eq(kind),
                    self.bus_core.eq(sel),
                ]
                with m.If(count == 0):
                    m.d.comb += [
                        self.burst.eq(length - 1),
                        self.burst_valid.eq(1),
                    ]

                m.d.sync += count.eq(count + 1)
                with m.If(count == length - 1):
                    m.d.sync += pending.eq(remaining)
                    with m.If(remaining != 0):
                        m.d.sync += phase.eq(ArbiterPhase.SELECT)
                    with m.Else():
                        m.d.sync += phase.eq(ArbiterPhase.LOCK)

        # Hard abort: overrides everything above
        with m.If(~self.enable):
            m.d.comb += [
                self.grant.eq(0),
                self.burst_valid.eq(0),
                self.bus_valid.eq(0),
            ]
            m.d.sync += [
                phase.eq(ArbiterPhase.RESET),
                load_mask.eq(0),
                pending.eq(0),
                count.eq(0),
            ]

        if cfg.debug_checks:
            m.d.sync += Assert((self.grant & (self.grant - 1)) == 0, "grant must be one-hot")

        return m


# =============================================================================
# Simulation Model
# =============================================================================


@dataclass
class ArbiterOutputs:
    """Signals driven by the arbiter in one cycle. None means undriven."""

    grant: int = 0
    burst: int | None = None
    addr: int | None = None
    rw: BurstKind | None = None
    core: int | None = None

    def granted(self, core_id: int) -> bool:
        return bool((self.grant >> core_id) & 1)


@dataclass
class ArbiterSim:
    """
    Behavioral model of the Arbiter.

    Same cycle timing as the RTL. The active burst is held as a
    BurstRequest while TRANSFER is in progress.
    """

    config: AcceleratorConfig
    phase: ArbiterPhase = ArbiterPhase.RESET
    load_mask: int = 0
    pending: int = 0
    request: BurstRequest | None = None
    count: int = 0
    last: int = 0

    def reset(self) -> None:
        """Clear all state and return to RESET."""
        self.phase = ArbiterPhase.RESET
        self.load_mask = 0
        self.pending = 0
        self.request = None
        self.count = 0
        self.last = 0

    def choose(self) -> int | None:
        """Pending core that SELECT would grant, or None."""
        for core_id in search_order(self.config, self.last):
            if (self.pending >> core_id) & 1:
                return core_id
        return None

    def is_loaded(self, core_id: int) -> bool:
        return bool((self.load_mask >> core_id) & 1)

    def outputs(self) -> ArbiterOutputs:
        """Signals driven this cycle, from the current state only."""
        if self.phase == ArbiterPhase.SELECT:
            return ArbiterOutputs(grant=1 << self.choose())

        if self.phase == ArbiterPhase.TRANSFER:
            req = self.request
            return ArbiterOutputs(
                grant=1 << req.core_id,
                burst=req.length - 1 if self.count == 0 else None,
                addr=self.count,
                rw=req.kind,
                core=req.core_id,
            )

        return ArbiterOutputs()

    def step(self, req: int, enable: bool = True) -> ArbiterOutputs:
        """
        Advance one cycle.

        Args:
            req: Request lines sampled at the start of the cycle
            enable: Low forces RESET

        Returns:
            Outputs driven during this cycle
        """
        if not enable:
            self.reset()
            return ArbiterOutputs()

        out = self.outputs()

        if self.phase == ArbiterPhase.RESET:
            self.reset()
            self.phase = ArbiterPhase.IDLE

        elif self.phase == ArbiterPhase.IDLE:
            if req:
                self.pending = req
                self.phase = ArbiterPhase.LOCK

        elif self.phase == ArbiterPhase.LOCK:
            if self.pending:
                self.phase = ArbiterPhase.SELECT
            elif not (req >> self.last) & 1:
                self.phase = ArbiterPhase.IDLE

        elif self.phase == ArbiterPhase.SELECT:
            core_id = self.choose()
            if self.is_loaded(core_id):
                self.request = BurstRequest(core_id, BurstKind.UNLOAD, self.config.burst_read_len)
            else:
                self.request = BurstRequest(core_id, BurstKind.LOAD, self.config.burst_write_len)
            self.load_mask ^= 1 << core_id
            self.last = core_id
            self.count = 0
            self.phase = ArbiterPhase.TRANSFER
            logger.debug(
                "grant core %d: %s burst of %d beats",
                core_id,
                self.request.kind.name,
                self.request.length,
            )

        elif self.phase == ArbiterPhase.TRANSFER:
            if self.count == self.request.length - 1:
                self.pending &= ~(1 << self.request.core_id)
                self.request = None
                self.count = 0
                self.phase = ArbiterPhase.SELECT if self.pending else ArbiterPhase.LOCK
            else:
                self.count += 1

        return out
