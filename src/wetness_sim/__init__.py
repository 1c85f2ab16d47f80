"""
Wet Surface Sim.

Copyright (c) 2026 Shuoqi Chen
SPDX-License-Identifier: MIT OR Apache-2.0
"""
from .surface.wetness_engine import WetnessEngine, SurfaceNotReadyError
from .surface.configs import SimParams
from .surface.support_maps import SupportMaps, SupportMapError, build_support_maps, synthesize_base_texture
from .viewer import launch_viewer

__version__ = "1.0.0"
__author__ = "Shuoqi Chen"
__license__ = "MIT"
__all__ = [
    "WetnessEngine",
    "SurfaceNotReadyError",
    "SimParams",
    "SupportMaps",
    "SupportMapError",
    "build_support_maps",
    "synthesize_base_texture",
    "launch_viewer",
]
