"""
Processing Element (PE) - The compute cell of the output-stationary grid.

Each PE holds four registers:
    weight:      Most recently latched weight (flows down)
    input:       Most recently latched input (flows right)
    accumulator: Running sum of weight * input products (stays in place)
    forward:     Relay register used only while draining

The controller selects one mode per PE per cycle:

    CLEAR       all registers <= 0, output undriven
    ACCUMULATE  latch operands; accumulator += weight * input
    EMIT        latch operands; output <= accumulator
    RELAY       latch operands; forward <= value from the PE below,
                output <= previous forward

Data flows:
                 in_weight
                     |
                     v
    in_input --> [ weight ] --> out_input   (to PE on right)
                 [ input  ]
                 [  acc   ] --> out         (to PE above, while draining)
                 [  fwd   ] <-- in_forward  (from PE below)
                     |
                     v
                 out_weight                 (to PE below)

The multiply uses the operands latched on the previous cycle, so a value
entering the grid at PE (0,0) reaches PE (r,c) after r + c cycles and
pairs up with its partner operand there.

Accumulation is gated: when either latched operand is zero the accumulator
is left untouched.
"""

from dataclasses import dataclass
from enum import IntEnum

from amaranth import Module, Signal, signed
from amaranth.lib.wiring import Component, In, Out

from ..config import AcceleratorConfig
from ..util.bits import wrap_signed


class PEMode(IntEnum):
    """Per-cycle operating mode of a PE."""

    CLEAR = 0
    ACCUMULATE = 1
    EMIT = 2
    RELAY = 3


class PE(Component):
    """
    Processing Element for the output-stationary grid.

    Ports:
        mode: PEMode for this cycle (from the dataflow controller)
        in_weight: Weight from the PE above (or the column's weight memory)
        in_input: Input from the PE on the left (or the row's input memory)
        in_forward: Drained value from the PE below

        out_weight: Registered weight (to PE below)
        out_input: Registered input (to PE on right)
        out: Emitted or relayed value (to PE above)
        out_valid: out is driven this cycle

    Parameters:
        config: AcceleratorConfig with operand and accumulator widths
    """

    def __init__(self, config: AcceleratorConfig):
        self.config = config
        operand_width = config.operand_bits
        acc_width = config.acc_bits

        super().__init__(
            {
                # Inputs
                "mode": In(2),
                "in_weight": In(signed(operand_width)),
                "in_input": In(signed(operand_width)),
                "in_forward": In(signed(acc_width)),
                # Outputs
                "out_weight": Out(signed(operand_width)),
                "out_input": Out(signed(operand_width)),
                "out": Out(signed(acc_width)),
                "out_valid": Out(1),
            }
        )

        # Internal state, exposed for testbenches
        self.weight = Signal(signed(operand_width), name="weight")
        self.input = Signal(signed(operand_width), name="input")
        self.accumulator = Signal(signed(acc_width), name="accumulator")
        self.forward = Signal(signed(acc_width), name="forward")

    def elaborate(self, _platform):
        m = Module()
        cfg = self.config

        product = Signal(signed(2 * cfg.operand_bits), name="product")
        m.d.comb += product.eq(self.weight * self.input)

        # Default outputs
        m.d.comb += [
            self.out_weight.eq(self.weight),
            self.out_input.eq(self.input),
            self.out.eq(0),
            self.out_valid.eq(0),
        ]

        # Every mode but CLEAR keeps operands flowing through the grid
        latch = [
            self.weight.eq(self.in_weight),
            self.input.eq(self.in_input),
        ]

        with m.Switch(self.mode):
            with m.Case(PEMode.CLEAR):
                m.d.sync += [
                    self.weight.eq(0),
                    self.input.eq(0),
                    self.accumulator.eq(0),
                    self.forward.eq(0),
                ]

            with m.Case(PEMode.ACCUMULATE):
                m.d.sync += latch
                with m.If((self.weight != 0) & (self.input != 0)):
                    m.d.sync += self.accumulator.eq(self.accumulator + product)

            with m.Case(PEMode.EMIT):
                m.d.sync += latch
                m.d.comb += [
                    self.out.eq(self.accumulator),
                    self.out_valid.eq(1),
                ]

            with m.Case(PEMode.RELAY):
                m.d.sync += latch
                m.d.sync += self.forward.eq(self.in_forward)
                m.d.comb += [
                    self.out.eq(self.forward),
                    self.out_valid.eq(1),
                ]

        return m


# =============================================================================
# Simulation Model
# =============================================================================


@dataclass
class PESim:
    """
    Behavioral model of a PE.

    The primitive operations (configure, accumulate, emit, relay, clear) act
    on the registers directly. step() composes them into one clock cycle with
    the same timing as the RTL: outputs are computed from the registers as
    they stood at the start of the cycle, then the registers are updated.
    """

    config: AcceleratorConfig
    weight: int = 0
    input: int = 0
    accumulator: int = 0
    forward: int = 0

    def configure(self, weight: int, input: int) -> None:
        """Latch new operands."""
        self.weight = wrap_signed(weight, self.config.operand_bits)
        self.input = wrap_signed(input, self.config.operand_bits)

    def accumulate(self) -> None:
        """Add weight * input into the accumulator unless an operand is zero."""
        if self.weight == 0 or self.input == 0:
            return
        self.accumulator = wrap_signed(
            self.accumulator + self.weight * self.input, self.config.acc_bits
        )

    def emit(self) -> int:
        return self.accumulator

    def relay(self, incoming: int) -> int:
        """Capture incoming; return the value captured on the previous relay."""
        outgoing = self.forward
        self.forward = wrap_signed(incoming, self.config.acc_bits)
        return outgoing

    def clear(self) -> None:
        self.weight = 0
        self.input = 0
        self.accumulator = 0
        self.forward = 0

    def output(self, mode: PEMode) -> int | None:
        """Value driven toward the PE above this cycle, None when undriven."""
        if mode == PEMode.EMIT:
            return self.accumulator
        if mode == PEMode.RELAY:
            return self.forward
        return None

    def step(self, mode: PEMode, in_weight: int, in_input: int, in_forward: int) -> int | None:
        """
        Advance one cycle.

        Args:
            mode: Operating mode chosen by the controller
            in_weight: Weight arriving from above
            in_input: Input arriving from the left
            in_forward: Value arriving from the PE below

        Returns:
            The value driven this cycle (None when undriven)
        """
        out = self.output(mode)

        if mode == PEMode.CLEAR:
            self.clear()
            return out

        if mode == PEMode.ACCUMULATE:
            self.accumulate()
        elif mode == PEMode.RELAY:
            self.relay(in_forward)
        self.configure(in_weight, in_input)
        return out
