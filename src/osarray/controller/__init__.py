"""
Per-core sequencing.

- DataflowController: Six-phase pipeline controller
- DataflowControllerSim: Behavioral model of the controller
- wavefront: Diagonal schedule shared by both
"""

from . import wavefront
from .dataflow import ControllerOutputs, DataflowController, DataflowControllerSim, Phase
from .wavefront import WavefrontSchedule

__all__ = [
    "ControllerOutputs",
    "DataflowController",
    "DataflowControllerSim",
    "Phase",
    "WavefrontSchedule",
    "wavefront",
]
