#!/usr/bin/env python3
"""
Phase Timeline Plot.

This script runs the behavioral accelerator until every core has unloaded
its results, then draws one lane per core showing its controller phase on
every cycle, plus a bus lane showing which core owns each beat.

Usage:
    python 03_phase_timeline.py [--grid N] [--cores C] [--rows K] [--output FILE]

    --output FILE Output image (default: phase_timeline.png)
    --dpi N       Image resolution (default: 100)
    --show        Show the plot in a window instead of saving

Requirements:
    pip install matplotlib

Example:
    python 03_phase_timeline.py --cores 4 --policy round-robin --output rr.png
"""

import argparse
import os
import sys
from pathlib import Path

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import matplotlib.patches as patches  # noqa: E402
import matplotlib.pyplot as plt  # noqa: E402
import numpy as np  # noqa: E402
from common.cli import add_accelerator_args, config_from_args  # noqa: E402

from osarray import AcceleratorSim  # noqa: E402
from osarray.bus.arbiter import BurstKind  # noqa: E402
from osarray.controller.dataflow import Phase  # noqa: E402

PHASE_COLORS = {
    Phase.RESET: "#D3D3D3",
    Phase.LOAD: "#FFD700",
    Phase.DISTRIBUTE: "#87CEEB",
    Phase.COMPUTE: "#32CD32",
    Phase.CLEANUP: "#FF8C00",
    Phase.UNLOAD: "#BA55D3",
}

BURST_COLORS = {
    BurstKind.LOAD: "#FFD700",
    BurstKind.UNLOAD: "#BA55D3",
}


def runs(values):
    """Collapse a per-cycle sequence into (start, length, value) runs."""
    start = 0
    for i in range(1, len(values) + 1):
        if i == len(values) or values[i] != values[start]:
            yield start, i - start, values[start]
            start = i


def plot_timeline(sim: AcceleratorSim, dpi: int = 100):
    """Draw core phase lanes and the bus ownership lane from sim.history."""
    history = sim.history
    num_cores = sim.config.num_cores

    fig, ax = plt.subplots(figsize=(max(8, len(history) / 8), 1 + 0.6 * num_cores), dpi=dpi)
    fig.suptitle("Core Phases and Bus Ownership", fontsize=13, fontweight="bold")

    for core_id in range(num_cores):
        lane = num_cores - core_id
        phases = [rec.phases[core_id] for rec in history]
        for start, length, phase in runs(phases):
            ax.add_patch(
                patches.Rectangle(
                    (start, lane - 0.4),
                    length,
                    0.8,
                    facecolor=PHASE_COLORS[phase],
                    edgecolor="black",
                    linewidth=0.5,
                )
            )

    owners = [
        (rec.bus_core, rec.bus_rw) if rec.bus_addr is not None else None for rec in history
    ]
    for start, length, owner in runs(owners):
        if owner is None:
            continue
        core_id, kind = owner
        ax.add_patch(
            patches.Rectangle(
                (start, -0.4),
                length,
                0.8,
                facecolor=BURST_COLORS[kind],
                edgecolor="black",
                linewidth=0.5,
            )
        )
        ax.text(start + length / 2, 0, str(core_id), ha="center", va="center", fontsize=8)

    ax.set_xlim(0, len(history))
    ax.set_ylim(-0.6, num_cores + 0.6)
    ax.set_yticks(np.arange(num_cores + 1))
    ax.set_yticklabels(["bus"] + [f"core {i}" for i in reversed(range(num_cores))])
    ax.set_xlabel("cycle")

    handles = [
        patches.Patch(color=color, label=phase.name) for phase, color in PHASE_COLORS.items()
    ]
    ax.legend(handles=handles, loc="upper center", bbox_to_anchor=(0.5, -0.25), ncol=6, fontsize=8)
    fig.tight_layout()
    return fig


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Plot per-core phases and bus ownership over time",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    add_accelerator_args(parser)
    parser.add_argument(
        "--output",
        type=str,
        default="phase_timeline.png",
        help="Output filename (default: phase_timeline.png)",
    )
    parser.add_argument("--dpi", type=int, default=100, help="Image resolution (default: 100)")
    parser.add_argument(
        "--show", action="store_true", help="Show plot in a window instead of saving"
    )
    args = parser.parse_args()

    config = config_from_args(args)
    sim = AcceleratorSim(config)
    rng = np.random.default_rng(0)
    n, k = config.grid_dim, config.load_payload_rows
    for core_id in range(config.num_cores):
        sim.host.stage_matmul(
            core_id,
            rng.integers(-8, 8, size=(n, k)),
            rng.integers(-8, 8, size=(k, n)),
        )
    cycles = sim.run_until_complete()
    print(f"Simulated {cycles} cycles")

    fig = plot_timeline(sim, dpi=args.dpi)
    if args.show:
        plt.show()
    else:
        output_path = Path(args.output)
        fig.savefig(output_path)
        print(f"Saved: {output_path}")


if __name__ == "__main__":
    main()
