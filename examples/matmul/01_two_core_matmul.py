#!/usr/bin/env python3
"""
Two-Core Matrix Multiply Demo.

This example runs complete phase cycles on every core of the accelerator
and checks the unloaded results against NumPy. It shows:

1. Problem Setup
   - Stage C = A @ B on each core (A is N x K, B is K x N)
   - With the default 2 x 2 grid and 2 cores, core 0 computes
     [3, 4] x [1, 2] and core 1 computes [7, 8] x [5, 6]

2. Bus Timeline
   - Each core requests the bus, loads its operands, computes, and
     requests the bus again to unload
   - The arbiter serves one burst at a time, highest core first

3. Verification
   - Results captured from the unload bursts are compared with NumPy

Usage:
    python 01_two_core_matmul.py [--grid N] [--cores C] [--rows K] [--rtl] [--vcd FILE]

    --rtl        Run the Amaranth RTL instead of the behavioral model
    --vcd FILE   Dump an RTL waveform (implies --rtl)
    --verbose    Log phase transitions and bus grants (behavioral model)
"""

import argparse
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import numpy as np  # noqa: E402
from amaranth.sim import Simulator  # noqa: E402
from common.cli import (  # noqa: E402
    add_accelerator_args,
    add_logging_args,
    config_from_args,
    setup_logging,
)

from osarray import Accelerator, AcceleratorSim  # noqa: E402
from osarray.bus.arbiter import BurstKind  # noqa: E402
from osarray.util.host import HostMemory  # noqa: E402


def stage_operands(host: HostMemory, seed: int = 42) -> None:
    """Stage the classic two-core example, or random operands for other shapes."""
    cfg = host.config
    if (cfg.grid_dim, cfg.num_cores, cfg.load_payload_rows) == (2, 2, 1):
        host.stage_matmul(0, a=[[3], [4]], b=[[1, 2]])
        host.stage_matmul(1, a=[[7], [8]], b=[[5, 6]])
        return

    rng = np.random.default_rng(seed)
    n, k = cfg.grid_dim, cfg.load_payload_rows
    for core_id in range(cfg.num_cores):
        host.stage_matmul(
            core_id,
            rng.integers(-8, 8, size=(n, k)),
            rng.integers(-8, 8, size=(k, n)),
        )


def print_timeline(sim: AcceleratorSim) -> None:
    """Print one line per bus beat."""
    print(f"\n{'cycle':>5}  {'core':>4}  {'kind':<6}  {'addr':>4}  data")
    print("-" * 60)
    for rec in sim.history:
        if rec.bus_addr is None:
            continue
        kind = BurstKind(rec.bus_rw).name
        print(f"{rec.cycle:>5}  {rec.bus_core:>4}  {kind:<6}  {rec.bus_addr:>4}  {rec.bus_data}")


def run_behavioral(config) -> HostMemory:
    sim = AcceleratorSim(config)
    stage_operands(sim.host)
    cycles = sim.run_until_complete()
    print_timeline(sim)
    print(f"\nAll cores unloaded after {cycles} cycles")
    return sim.host


def run_rtl(config, vcd_path: str | None = None) -> HostMemory:
    top = Accelerator(config)
    host = HostMemory(config)
    stage_operands(host)
    cycles = []

    async def testbench(ctx):
        ctx.set(top.enable, 1)
        cycles.append(await host.serve(ctx, top))

    sim = Simulator(top)
    sim.add_clock(1e-6)
    sim.add_testbench(testbench)
    if vcd_path:
        with sim.write_vcd(vcd_path):
            sim.run()
        print(f"Waveform written to {vcd_path}")
    else:
        sim.run()

    print(f"\nAll cores unloaded after {cycles[0]} cycles (RTL)")
    return host


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Multi-core matrix multiply on the output-stationary accelerator",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    add_accelerator_args(parser)
    add_logging_args(parser)
    parser.add_argument("--rtl", action="store_true", help="Simulate the Amaranth RTL")
    parser.add_argument("--vcd", type=str, default=None, metavar="FILE", help="Write a VCD")
    args = parser.parse_args()

    setup_logging(args)
    config = config_from_args(args)

    print("=" * 60)
    print(
        f"{config.num_cores} cores, {config.grid_dim}x{config.grid_dim} PEs, "
        f"K={config.load_payload_rows}, {config.arbitration.name.lower()} arbitration"
    )
    print("=" * 60)

    if args.rtl or args.vcd:
        host = run_rtl(config, args.vcd)
    else:
        host = run_behavioral(config)

    ok = True
    for core_id in host.staged:
        result = host.result(core_id)
        expected = host.expected(core_id)
        match = np.array_equal(result, expected)
        ok &= match
        print(f"\nCore {core_id}: {'PASS' if match else 'FAIL'}")
        print(result)

    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
