"""
Common CLI argument definitions for the accelerator examples.

This module provides shared argument groups so every demo script exposes
the same accelerator geometry, animation and logging switches.

Usage:
    from common.cli import add_accelerator_args, add_animation_args, config_from_args

    parser = argparse.ArgumentParser()
    add_accelerator_args(parser)  # Adds --grid, --cores, --rows, --policy
    add_animation_args(parser)    # Adds --delay, --fast, --step, --no-color
    add_logging_args(parser)      # Adds --verbose
    args = parser.parse_args()

    config = config_from_args(args)
"""

import logging
from argparse import ArgumentParser, Namespace

from osarray.config import AcceleratorConfig, ArbitrationPolicy


def add_accelerator_args(
    parser: ArgumentParser,
    *,
    default_grid: int = 2,
    default_cores: int = 2,
    default_rows: int = 1,
) -> None:
    """
    Add accelerator geometry arguments to a parser.

    Args:
        parser: ArgumentParser to add arguments to
        default_grid: Default grid dimension N (default: 2)
        default_cores: Default number of cores (default: 2)
        default_rows: Default operand rows per load, K (default: 1)

    Adds these arguments:
        --grid N        PE grid dimension
        --cores C       Number of cores on the bus
        --rows K        Operand rows per load burst (inner dimension of the matmul)
        --policy P      Arbitration policy: fixed or round-robin
    """
    group = parser.add_argument_group("Accelerator Configuration")

    group.add_argument(
        "--grid",
        type=int,
        default=default_grid,
        metavar="N",
        help=f"PE grid dimension (default: {default_grid})",
    )

    group.add_argument(
        "--cores",
        type=int,
        default=default_cores,
        metavar="C",
        help=f"Number of cores sharing the bus (default: {default_cores})",
    )

    group.add_argument(
        "--rows",
        type=int,
        default=default_rows,
        metavar="K",
        help=f"Operand rows per load burst (default: {default_rows})",
    )

    group.add_argument(
        "--policy",
        type=str,
        default="fixed",
        choices=["fixed", "round-robin"],
        help="Arbitration policy (default: fixed)",
    )


def config_from_args(args: Namespace) -> AcceleratorConfig:
    """Build an AcceleratorConfig from add_accelerator_args() options."""
    policy = (
        ArbitrationPolicy.ROUND_ROBIN
        if args.policy == "round-robin"
        else ArbitrationPolicy.FIXED_PRIORITY
    )
    return AcceleratorConfig(
        grid_dim=args.grid,
        num_cores=args.cores,
        mem_rows=max(4, args.rows),
        burst_write_len=args.rows + 1,
        arbitration=policy,
    )


def add_animation_args(
    parser: ArgumentParser,
    *,
    default_delay: int = 500,
    default_max_cycles: int = 1000,
) -> None:
    """
    Add common animation control arguments to a parser.

    Adds these arguments:
        --delay MS      Delay between frames in milliseconds
        --fast          Fast mode (no animation delay)
        --step          Step mode (press Enter to advance each cycle)
        --no-color      Disable colored output
        --max-cycles N  Maximum cycles to run before stopping
    """
    group = parser.add_argument_group("Animation Control")

    group.add_argument(
        "--delay",
        type=int,
        default=default_delay,
        metavar="MS",
        help=f"Delay between frames in milliseconds (default: {default_delay})",
    )

    group.add_argument(
        "--fast",
        action="store_true",
        help="Fast mode (no animation delay)",
    )

    group.add_argument(
        "--step",
        action="store_true",
        help="Step mode (press Enter to advance each cycle)",
    )

    group.add_argument(
        "--no-color",
        action="store_true",
        help="Disable colored output",
    )

    group.add_argument(
        "--max-cycles",
        type=int,
        default=default_max_cycles,
        metavar="N",
        help=f"Maximum cycles to run before stopping (default: {default_max_cycles})",
    )


def add_logging_args(parser: ArgumentParser) -> None:
    """
    Add logging arguments to a parser.

    Adds these arguments:
        -v, --verbose   Log phase transitions and bus grants
    """
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log phase transitions and bus grants",
    )


def setup_logging(args: Namespace) -> None:
    """Configure the root logger from add_logging_args() options."""
    logging.basicConfig(
        level=logging.DEBUG if getattr(args, "verbose", False) else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def get_effective_delay(args: Namespace) -> int:
    """
    Get the effective animation delay from parsed args.

    Returns 0 if --fast is set, otherwise returns args.delay.
    """
    if getattr(args, "fast", False):
        return 0
    return getattr(args, "delay", 200)
