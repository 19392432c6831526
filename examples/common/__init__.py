"""
Common utilities for osarray examples.

This module provides shared command-line options for the demonstration
scripts: accelerator geometry, animation control and logging.
"""

from .cli import (
    add_accelerator_args,
    add_animation_args,
    add_logging_args,
    config_from_args,
    get_effective_delay,
    setup_logging,
)

__all__ = [
    "add_accelerator_args",
    "add_animation_args",
    "add_logging_args",
    "config_from_args",
    "get_effective_delay",
    "setup_logging",
]
