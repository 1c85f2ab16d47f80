"""
Static per-pixel inputs of the wetness engine.

`SupportMaps` is the contract: three coefficient grids and a base colour
image, all indexed `[x, y]` with shape `(width, height)`. The helpers below
build a concrete slab procedurally so the engine can run without assets.
"""
from dataclasses import dataclass
from typing import Optional

import numpy as np

from .configs import SimParams


class SupportMapError(ValueError):
    """Raised when coefficient grids are missing or do not match the surface."""


@dataclass
class SupportMaps:
    absorption: np.ndarray
    highlight: np.ndarray
    evaporation_bias: np.ndarray
    base_rgba: np.ndarray

    def validate(self, width: int, height: int):
        expected = (int(width), int(height))
        for name in ("absorption", "highlight", "evaporation_bias"):
            grid = getattr(self, name)
            if grid is None:
                raise SupportMapError(f"{name} map is missing")
            if tuple(np.shape(grid)) != expected:
                raise SupportMapError(f"{name} map has shape {np.shape(grid)}, expected {expected}")
            if not np.all(np.isfinite(grid)):
                raise SupportMapError(f"{name} map contains non-finite values")
        # Negative coefficients would let deposits dry and evaporation wet
        for name in ("absorption", "evaporation_bias"):
            if np.any(np.asarray(getattr(self, name)) < 0.0):
                raise SupportMapError(f"{name} map contains negative values")
        if self.base_rgba is None:
            raise SupportMapError("base colour image is missing")
        if tuple(np.shape(self.base_rgba)) != expected + (4,):
            raise SupportMapError(f"base colour image has shape {np.shape(self.base_rgba)}, expected {expected + (4,)}")

    @classmethod
    def uniform(cls, width: int, height: int, absorption: float = 1.0, highlight: float = 0.0,
                evaporation: float = 0.0, color=(128, 128, 128, 255)) -> "SupportMaps":
        """Constant maps, handy for calibration and tests."""
        shape = (int(width), int(height))
        base = np.empty(shape + (4,), dtype=np.uint8)
        base[...] = np.asarray(color, dtype=np.uint8)
        return cls(
            absorption=np.full(shape, absorption, dtype=np.float32),
            highlight=np.full(shape, highlight, dtype=np.float32),
            evaporation_bias=np.full(shape, evaporation, dtype=np.float32),
            base_rgba=base,
        )


def _hash(x: np.ndarray, y: np.ndarray) -> np.ndarray:
    v = np.sin(x * 127.1 + y * 311.7) * 43758.5453
    return v - np.floor(v)


def _grid(width: int, height: int):
    return np.meshgrid(np.arange(width, dtype=np.float64), np.arange(height, dtype=np.float64), indexing="ij")


def _overlay(base: np.ndarray, top: np.ndarray) -> np.ndarray:
    """Photoshop-style overlay of two 0..255 colour arrays."""
    low = 2.0 * base * top / 255.0
    high = 255.0 - 2.0 * (255.0 - base) * (255.0 - top) / 255.0
    return np.where(base < 128.0, low, high)


def load_photo(path: str, width: int, height: int) -> np.ndarray:
    """Loads an image, scales it to cover the surface and centre-crops it to `(width, height, 4)`."""
    from PIL import Image

    with Image.open(path) as img:
        img = img.convert("RGBA")
        scale = max(width / img.width, height / img.height)
        size = (max(width, int(np.ceil(img.width * scale))), max(height, int(np.ceil(img.height * scale))))
        img = img.resize(size, Image.BILINEAR)
        left = (size[0] - width) // 2
        top = (size[1] - height) // 2
        img = img.crop((left, top, left + width, top + height))
        # PIL arrays are (rows, cols); the engine indexes [x, y]
        return np.ascontiguousarray(np.asarray(img, dtype=np.uint8).transpose(1, 0, 2))


def _draw_cracks(rgb: np.ndarray, rng: np.random.Generator):
    width, height = rgb.shape[:2]
    fall_scale = max(width, height)
    line = max(1.0, fall_scale * 0.0012)
    mask = np.zeros((width, height), dtype=bool)
    offsets = np.arange(-(line - 1) / 2, (line - 1) / 2 + 1e-6, 1.0) if line > 1 else np.zeros(1)

    crack_count = int(18 + np.sqrt(fall_scale) * 0.12)
    for _ in range(crack_count):
        length = rng.uniform(fall_scale * 0.18, fall_scale * 0.42)
        x = rng.uniform(width * 0.08, width * 0.92)
        y = rng.uniform(height * 0.08, height * 0.92)
        angle = rng.uniform(0.0, 2.0 * np.pi)
        segments = 5 + int(rng.integers(0, 6))
        for _ in range(segments):
            angle += rng.uniform(-np.pi / 12, np.pi / 12)
            nx = x + np.cos(angle) * (length / segments)
            ny = y + np.sin(angle) * (length / segments)
            steps = max(2, int(np.ceil(length / segments * 2)))
            xs = np.linspace(x, nx, steps)
            ys = np.linspace(y, ny, steps)
            for off in offsets:
                ix = np.round(xs + off * np.sin(angle)).astype(int)
                iy = np.round(ys - off * np.cos(angle)).astype(int)
                ok = (ix >= 0) & (ix < width) & (iy >= 0) & (iy < height)
                mask[ix[ok], iy[ok]] = True
            x, y = nx, ny

    crack = np.array([18.0, 20.0, 24.0])
    alpha = 0.35
    rgb[mask] = rgb[mask] * (1.0 - alpha + alpha * crack / 255.0)


def synthesize_base_texture(width: int, height: int, seed: int = 0, photo: Optional[np.ndarray] = None) -> np.ndarray:
    """Procedural concrete slab: gradient, optional photo, grain, cracks and a vignette."""
    width, height = int(width), int(height)
    rng = np.random.default_rng(seed)
    x, y = _grid(width, height)
    fall_scale = float(max(width, height))

    # Linear gradient from the top-left towards (0.6w, 0.8h)
    gx, gy = width * 0.6, height * 0.8
    t = np.clip((x * gx + y * gy) / (gx * gx + gy * gy), 0.0, 1.0)[..., None]
    start = np.array([0x6D, 0x70, 0x76], dtype=np.float64)
    end = np.array([0x4A, 0x4D, 0x52], dtype=np.float64)
    rgb = start * (1.0 - t) + end * t

    if photo is not None:
        rgb = rgb * 0.28 + _overlay(rgb, photo[..., :3].astype(np.float64)) * 0.72

    grain = (_hash(x * 0.9, y * 1.1) - 0.5) * 32.0
    shade = (_hash(y * 1.7, x * 0.6) - 0.5) * 24.0
    rgb[..., 0] += grain + shade * 0.6
    rgb[..., 1] += grain * 0.9 + shade * 0.5
    rgb[..., 2] += grain * 0.8 - shade * 0.35
    rgb = np.clip(rgb, 0.0, 255.0)

    _draw_cracks(rgb, rng)

    # Radial vignette, overlay-blended
    r = np.hypot(x - width * 0.5, y - height * 0.5)
    rt = np.clip((r - fall_scale * 0.05) / (fall_scale * 0.65), 0.0, 1.0)
    stops = [0.0, 0.45, 1.0]
    v_col = np.stack([np.interp(rt, stops, [255.0, 200.0, 0.0]),
                      np.interp(rt, stops, [255.0, 205.0, 0.0]),
                      np.interp(rt, stops, [255.0, 210.0, 0.0])], axis=-1)
    v_alpha = np.interp(rt, stops, [0.08, 0.02, 0.45])[..., None]
    rgb = rgb * (1.0 - v_alpha) + _overlay(rgb, v_col) * v_alpha

    out = np.empty((width, height, 4), dtype=np.uint8)
    out[..., :3] = np.clip(rgb, 0.0, 255.0).astype(np.uint8)
    out[..., 3] = 255
    return out


def build_support_maps(base_rgba: np.ndarray, params: SimParams) -> SupportMaps:
    """Derives absorption, highlight and evaporation bias from the base colour and slab geometry."""
    width, height = base_rgba.shape[:2]
    x, y = _grid(width, height)
    fall_scale = float(max(width, height))

    nx = (x + 0.5) / width
    ny = (y + 0.5) / height
    edge = np.maximum(np.abs(nx - 0.5), np.abs(ny - 0.5))
    radial = np.hypot(x - width * 0.5, y - height * 0.5) / fall_scale
    tonal = base_rgba[..., :3].astype(np.float64).sum(axis=-1) / (255.0 * 3.0)
    micro_channel = np.abs(np.sin(x * 0.015) + np.cos(y * 0.02))
    slope = np.hypot(width * params.drain_x - x, height * params.drain_y - y) / fall_scale

    highlight = np.clip(
        params.ambient_lift + (1.0 - edge) * 0.35 + (1.0 - radial * 1.2) * 0.28 + tonal * 0.18,
        0.0, 1.0,
    )
    absorption = (0.55 + tonal * 0.35 + micro_channel * params.micro_channel_strength) * (0.9 + (1.0 - edge) * 0.25)

    base_evap = params.evaporation_base_rate + params.evaporation_variance * (0.3 + tonal * 0.7)
    bias = params.evaporation_base_rate * (edge * params.edge_darken + slope * 0.55)
    evaporation = (base_evap + bias) * 0.55

    return SupportMaps(
        absorption=absorption.astype(np.float32),
        highlight=highlight.astype(np.float32),
        evaporation_bias=evaporation.astype(np.float32),
        base_rgba=np.ascontiguousarray(base_rgba, dtype=np.uint8),
    )
