#!/usr/bin/env python3
"""
Animated Dataflow Wavefront Demo.

This example animates one core of the accelerator, cycle by cycle, through
a full phase cycle:

- DISTRIBUTE: PEs switch on along diagonals (PE (r, c) at tick r + c)
- COMPUTE:    every PE accumulates while the operand rows stream in
- CLEANUP:    the diagonals drain in order, two ticks each, their
              accumulators hopping upward one row per tick into the
              output buffers
- UNLOAD:     the output buffers stream out over the bus

Each PE cell shows its mode (CLR, ACC, EMT, RLY) and accumulator.

Usage:
    python 02_animated_wavefront.py [--grid N] [--rows K] [--delay MS] [--fast] [--step]
"""

import argparse
import os
import sys
import time

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import numpy as np  # noqa: E402
from common.cli import (  # noqa: E402
    add_accelerator_args,
    add_animation_args,
    add_logging_args,
    config_from_args,
    get_effective_delay,
    setup_logging,
)

from osarray import AcceleratorSim  # noqa: E402
from osarray.controller.dataflow import Phase  # noqa: E402
from osarray.core.pe import PEMode  # noqa: E402

# =============================================================================
# ANSI Color Codes for Terminal Output
# =============================================================================


class Colors:
    """ANSI color codes for terminal output."""

    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    CYAN = "\033[96m"

    BG_GREEN = "\033[42m"
    BG_YELLOW = "\033[43m"
    BG_BLUE = "\033[44m"

    @classmethod
    def disable(cls):
        """Disable all colors."""
        for attr in dir(cls):
            if not attr.startswith("_") and attr != "disable":
                setattr(cls, attr, "")


MODE_LABELS = {
    PEMode.CLEAR: "CLR",
    PEMode.ACCUMULATE: "ACC",
    PEMode.EMIT: "EMT",
    PEMode.RELAY: "RLY",
}


def clear_screen():
    """Clear the terminal screen."""
    os.system("cls" if os.name == "nt" else "clear")


# =============================================================================
# Visualization
# =============================================================================


def mode_color(mode: PEMode) -> str:
    c = Colors
    return {
        PEMode.ACCUMULATE: c.BG_GREEN,
        PEMode.EMIT: c.BG_YELLOW,
        PEMode.RELAY: c.BG_BLUE,
    }.get(mode, "")


def visualize_core(sim: AcceleratorSim, core_id: int = 0):
    """Print phase, PE modes and accumulators, and output buffers of one core."""
    c = Colors
    core = sim.cores[core_id]
    ctl = core.controller
    n = sim.config.grid_dim
    modes = ctl.outputs(grant=False).pe_modes
    acc = core.accumulators()
    col_width = 10

    status = f"Cycle {sim.cycle}   core {core_id}: {ctl.phase.name} (tick {ctl.count})"
    print(f"\n{c.BOLD}{status}{c.RESET}")
    print("=" * 60)

    for r in range(n):
        print("  [", end="")
        for col in range(n):
            mode = PEMode(modes[r][col])
            cell = f"{MODE_LABELS[mode]} {acc[r][col]}"
            print(f"{mode_color(mode)}{cell:^{col_width}}{c.RESET}", end="")
            if col < n - 1:
                print(" ", end="")
        print("]")

    print(f"\n  {c.GREEN}Output buffers (row r of buffer c):{c.RESET}")
    for row in core.buffer_contents():
        print("  [" + " ".join(f"{v:^{col_width}}" for v in row) + "]")

    unit_addr = ", ".join(str(a) for a in ctl.unit_addr)
    print(f"\n  {c.DIM}row memory addresses: {unit_addr}   req={int(ctl.req)}{c.RESET}")


# =============================================================================
# Main Demo
# =============================================================================


def run_demo(args) -> bool:
    if args.no_color:
        Colors.disable()

    config = config_from_args(args)
    sim = AcceleratorSim(config)
    rng = np.random.default_rng(42)
    n, k = config.grid_dim, config.load_payload_rows
    for core_id in range(config.num_cores):
        sim.host.stage_matmul(
            core_id,
            rng.integers(1, 5, size=(n, k)),
            rng.integers(1, 5, size=(k, n)),
        )

    delay = get_effective_delay(args)
    try:
        while not sim.host.all_complete() and sim.cycle < args.max_cycles:
            if not args.step:
                clear_screen()
            visualize_core(sim)
            sim.tick()
            if args.step:
                if input("Press Enter for next cycle (q to finish): ").lower() == "q":
                    break
            elif sim.cores[0].phase != Phase.RESET:
                time.sleep(delay / 1000.0)
    except (KeyboardInterrupt, EOFError):
        print("\nAnimation interrupted.")

    sim.run_until_complete(max_cycles=args.max_cycles)

    c = Colors
    ok = True
    for core_id in range(config.num_cores):
        match = np.array_equal(sim.host.result(core_id), sim.host.expected(core_id))
        ok &= match
        status = f"{c.GREEN}PASS{c.RESET}" if match else "FAIL"
        print(f"\nCore {core_id}: {status}")
        print(sim.host.result(core_id))
    return ok


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Animated wavefront of one accelerator core",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    add_accelerator_args(parser, default_grid=4, default_cores=1, default_rows=4)
    add_animation_args(parser)
    add_logging_args(parser)
    args = parser.parse_args()
    setup_logging(args)

    sys.exit(0 if run_demo(args) else 1)


if __name__ == "__main__":
    main()
