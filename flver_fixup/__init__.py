"""Structural repair passes for FLVER model assets."""

from .errors import DecodeError, EncodeError, FlverFixupError, RepairError
from .repair import MeshSelection, RepairOptions, RepairResult, repair_model

__version__ = "0.1.0"

__all__ = [
    "DecodeError",
    "EncodeError",
    "FlverFixupError",
    "MeshSelection",
    "RepairError",
    "RepairOptions",
    "RepairResult",
    "repair_model",
]
