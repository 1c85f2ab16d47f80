"""Wet surface simulation: engine, droplets and support maps."""
from .wetness_engine import WetnessEngine, SurfaceNotReadyError
from .configs import SimParams
from .droplets import DropletState, DropletSystem
from .support_maps import SupportMaps, SupportMapError

__all__ = [
    "WetnessEngine",
    "SurfaceNotReadyError",
    "SimParams",
    "DropletState",
    "DropletSystem",
    "SupportMaps",
    "SupportMapError",
]
