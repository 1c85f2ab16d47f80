"""
This engine is a stylized, realtime wet-surface simulator.

High-level approach:
- One Eulerian grid of wetness, clamped to a saturation cap
- Droplet particles (falling rain, or wall/floor runs) feed it through an
  elliptical deposition kernel weighted by per-pixel absorption
- Sparse stochastic capillary transfers, biased towards a drain, spread it
- A full-grid evaporation pass with a slow heat cycle dries it
- A shading pass darkens, cools and adds sheen to a static base colour,
  then droplet streaks and impact glows are multiplied on top

The static inputs (absorption, highlight, evaporation bias, base colour)
come from `SupportMaps` and are read-only for the lifetime of a surface.
"""


import math
import time
from dataclasses import replace
from typing import Optional

import numpy as np
import taichi as ti

from .configs import SimParams
from .droplets import (
    DropletSystem,
    ImpactFlash,
    OVERLAY_CAP,
    OVERLAY_GLOW,
    OVERLAY_STREAK,
)
from .support_maps import SupportMapError, SupportMaps

# =============================================================================
# GLOBAL CONSTANTS
# =============================================================================
DRAIN_NONE = 0
DRAIN_POINT = 1
DRAIN_DIRECTION = 2
_DRAIN_MODES = {"none": DRAIN_NONE, "point": DRAIN_POINT, "direction": DRAIN_DIRECTION}

TRANSFER_COLUMNS = 5  # executed, source_before, neighbour_before, removed, added

_GLOBAL_TAICHI_INITIALIZED = False


class SurfaceNotReadyError(RuntimeError):
    """Raised when the engine is asked to tick or render without a valid surface."""


def _initialize_taichi_backend(arch: str, use_profiler: bool = False):
    """Initializes the Taichi runtime with the best available backend."""
    global _GLOBAL_TAICHI_INITIALIZED
    if _GLOBAL_TAICHI_INITIALIZED:
        return

    init_kwargs = {
        "offline_cache": True,
        "kernel_profiler": use_profiler,
    }

    ti_arch = ti.cpu
    if arch == "gpu":
        if ti.core.with_cuda():
            ti_arch = ti.cuda
        elif ti.core.with_metal():
            ti_arch = ti.metal
        elif ti.core.with_vulkan():
            ti_arch = ti.vulkan
    elif arch == "vulkan":
        ti_arch = ti.vulkan
    elif arch == "metal":
        ti_arch = ti.metal
    elif arch == "cuda":
        ti_arch = ti.cuda

    print(f"[WetnessEngine] Initializing Taichi with backend: {ti_arch}")
    ti.init(arch=ti_arch, **init_kwargs)

    print(f"[WetnessEngine] Taichi initialized. Backend: {ti.cfg.arch} | Profiler: {use_profiler}")
    _GLOBAL_TAICHI_INITIALIZED = True


@ti.func
def _clamp(x: ti.f32, lo: ti.f32, hi: ti.f32) -> ti.f32:
    return ti.min(hi, ti.max(lo, x))


@ti.data_oriented
class WetnessEngine:
    """Taichi wetness field simulation for one surface at a time.

    Fields on grid (shape `(width, height)`, indexed `[x, y]`, y downward):
    - W: wetness [0, saturation_cap]
    - absorption / highlight / evaporation_bias: static coefficients
    - boost: deposit multiplier (1 on a flat slab, pooling near a corner)
    - base: base colour RGBA in 0..255
    - _frame / _img_u8: render targets

    Call `configure` before `tick`/`render`; it is also the reset barrier.
    """

    def __init__(self, params: Optional[SimParams] = None, seed: int = 0, arch: str = "cpu",
                 rng: Optional[np.random.Generator] = None, use_profiler: bool = False):
        try:
            _initialize_taichi_backend(arch, use_profiler=use_profiler)
        except Exception as e:
            print(f"[WetnessEngine] {arch} init failed: {e}. Falling back to CPU.")
            _initialize_taichi_backend("cpu", use_profiler=use_profiler)

        self.p = params if params is not None else SimParams()
        self.p.validate()
        self.seed = int(seed)
        self.rng = rng if rng is not None else np.random.default_rng(self.seed)

        self.timing_mode = False
        self.width = 0
        self.height = 0
        self._ready = False
        self._snode_tree = None
        self._droplets: Optional[DropletSystem] = None
        self._pending = []
        self._frame_count = 0

        self.rain_intensity = 0.0
        self.heat_time = 0.0
        self.last_transfer_log = np.zeros((0, TRANSFER_COLUMNS), dtype=np.float32)

    # ------------------------------------------------------------------
    # Surface lifecycle
    # ------------------------------------------------------------------

    @property
    def is_ready(self) -> bool:
        return self._ready

    @property
    def droplets(self) -> DropletSystem:
        self._require_ready()
        return self._droplets

    def _require_ready(self):
        if not self._ready:
            raise SurfaceNotReadyError("No valid surface configured; call configure() first")

    def configure(self, width: int, height: int, maps: SupportMaps):
        """Allocates every field for a `width x height` surface and resets the simulation.

        On invalid maps the engine is left unready and `SupportMapError` is raised.
        """
        self._ready = False
        self._droplets = None
        self._pending = []

        width, height = int(width), int(height)
        if width <= 0 or height <= 0:
            raise SupportMapError(f"Surface size must be positive, got {width}x{height}")
        if maps is None:
            raise SupportMapError("Support maps are missing")
        maps.validate(width, height)

        if self._snode_tree is not None:
            self._snode_tree.destroy()
            self._snode_tree = None

        fb = ti.FieldsBuilder()
        self.W = ti.field(dtype=ti.f32)
        self.absorption = ti.field(dtype=ti.f32)
        self.highlight = ti.field(dtype=ti.f32)
        self.evaporation_bias = ti.field(dtype=ti.f32)
        self.boost = ti.field(dtype=ti.f32)
        self.base = ti.Vector.field(4, dtype=ti.f32)
        self._frame = ti.Vector.field(4, dtype=ti.f32)
        self._img_u8 = ti.Vector.field(4, dtype=ti.u8)
        fb.dense(ti.ij, (width, height)).place(
            self.W, self.absorption, self.highlight, self.evaporation_bias, self.boost,
            self.base, self._frame, self._img_u8,
        )
        self._snode_tree = fb.finalize()

        self.width = width
        self.height = height
        self.W.fill(0.0)
        self.absorption.from_numpy(np.ascontiguousarray(maps.absorption, dtype=np.float32))
        self.highlight.from_numpy(np.ascontiguousarray(maps.highlight, dtype=np.float32))
        self.evaporation_bias.from_numpy(np.ascontiguousarray(maps.evaporation_bias, dtype=np.float32))
        self.base.from_numpy(np.ascontiguousarray(maps.base_rgba, dtype=np.float32))
        self._upload_boost()

        self._droplets = DropletSystem(self.p, width, height, self.rng)
        self.rain_intensity = 0.0
        self.heat_time = 0.0
        self._frame_count = 0
        self.last_transfer_log = np.zeros((0, TRANSFER_COLUMNS), dtype=np.float32)
        self._ready = True
        print(f"[WetnessEngine] Surface configured: {width}x{height} | Topology: {self.p.topology}")

    def _upload_boost(self):
        """Builds the deposit multiplier that models pooling at the wall/floor seam."""
        if self.p.topology != "corner":
            self.boost.fill(1.0)
            return
        x, y = np.meshgrid(np.arange(self.width, dtype=np.float64), np.arange(self.height, dtype=np.float64), indexing="ij")
        cx = self.p.corner_x * self.width
        cy = self.p.wall_fraction * self.height
        reach = max(self.p.corner_boost_radius * max(self.width, self.height), 1e-6)
        s = np.clip(1.0 - np.hypot(x - cx, y - cy) / reach, 0.0, 1.0)
        smooth = s * s * (3.0 - 2.0 * s)
        self.boost.from_numpy((1.0 + (self.p.corner_boost_peak - 1.0) * smooth).astype(np.float32))

    def set_params(self, params: SimParams):
        params.validate()
        self.p = params
        self._params_changed(rebuild=True)

    def update_params(self, **kwargs):
        rebuild_keys = {"topology", "max_droplets", "wall_fraction", "corner_x", "corner_boost_peak", "corner_boost_radius"}
        for k in kwargs:
            if not hasattr(self.p, k):
                raise AttributeError(f"SimParams has no parameter {k!r}")
        candidate = replace(self.p, **kwargs)
        candidate.validate()

        rebuild = any(k in rebuild_keys and getattr(self.p, k) != v for k, v in kwargs.items())
        self.p = candidate
        self._params_changed(rebuild=rebuild)

    def _params_changed(self, rebuild: bool):
        if not self._ready:
            return
        # A lower cap must hold for moisture already on the surface
        self._clamp_field(self.W, self.p.saturation_cap)
        if rebuild:
            # Droplet state machines and pool size depend on these; start them over
            self._upload_boost()
            self._droplets = DropletSystem(self.p, self.width, self.height, self.rng)
        else:
            self._droplets.p = self.p

    def clear(self):
        """Dries the surface and restarts the rain from zero intensity."""
        self._require_ready()
        self.W.fill(0.0)
        self._droplets.clear()
        self._pending = []
        self.rain_intensity = 0.0
        self.heat_time = 0.0

    def wetness(self) -> np.ndarray:
        self._require_ready()
        return self.W.to_numpy()

    def set_wetness(self, values: np.ndarray):
        self._require_ready()
        values = np.asarray(values, dtype=np.float32)
        if values.shape != (self.width, self.height):
            raise SupportMapError(f"Wetness has shape {values.shape}, expected {(self.width, self.height)}")
        self.W.from_numpy(np.ascontiguousarray(np.clip(values, 0.0, self.p.saturation_cap), dtype=np.float32))

    # ------------------------------------------------------------------
    # Simulation
    # ------------------------------------------------------------------

    def _clamp_delta(self, delta_ms) -> float:
        if delta_ms is None or not math.isfinite(delta_ms) or delta_ms <= 0.0:
            return float(self.p.fallback_delta_ms)
        return min(float(delta_ms), float(self.p.max_delta_ms))

    def tick(self, delta_ms: float) -> float:
        """Advances the whole simulation by one frame and returns the step actually used."""
        self._require_ready()
        dt = self._clamp_delta(delta_ms)
        t0 = time.perf_counter() if self.timing_mode else 0

        self.rain_intensity = min(1.0, self.rain_intensity + dt / self.p.intensity_ramp_ms)
        self._droplets.spawn(dt, self.rain_intensity)
        self._droplets.update(dt, self._queue_deposit)
        self._flush_deposits()

        t1 = time.perf_counter() if self.timing_mode else 0

        self.evaporate(dt)
        self.diffuse()
        self._droplets.update_flashes(dt)
        self._frame_count += 1

        if self.timing_mode and self._frame_count % 30 == 0:
            ti.sync()
            t2 = time.perf_counter()
            print(f"[WetnessEngine] Tick: {(t1-t0)*1000:4.1f}ms (droplets) + {(t2-t1)*1000:4.1f}ms (field) | Live: {len(self._droplets.live)}")
        return dt

    def deposit(self, cx: float, cy: float, radius: float, intensity: float,
                stretch_x: float = 1.0, stretch_y: float = 1.0):
        """Adds moisture inside an ellipse centred on (cx, cy). Degenerate requests do nothing."""
        self._require_ready()
        self._queue_deposit(cx, cy, radius, intensity, stretch_x, stretch_y)
        self._flush_deposits()

    def _queue_deposit(self, cx, cy, radius, intensity, stretch_x=1.0, stretch_y=1.0):
        if radius <= 0.0 or intensity <= 0.0 or stretch_x <= 0.0 or stretch_y <= 0.0:
            return
        rx, ry = radius * stretch_x, radius * stretch_y
        if cx + rx < 0.0 or cy + ry < 0.0 or cx - rx > self.width - 1 or cy - ry > self.height - 1:
            return
        self._pending.append((cx, cy, radius, intensity, stretch_x, stretch_y))

    def _flush_deposits(self):
        if not self._pending:
            return
        batch = np.ascontiguousarray(self._pending, dtype=np.float32)
        self._pending = []
        p = self.p
        self._deposit_batch(self.W, self.absorption, self.boost, batch, batch.shape[0],
                            p.saturation_cap, p.deposit_scale, p.ring_mix, p.ring_falloff)

    def evaporate(self, delta_ms: float) -> float:
        """Dries every pixel by its own rate plus the heat pulse; returns the pulse used."""
        self._require_ready()
        p = self.p
        self.heat_time += delta_ms
        phase = (self.heat_time % p.heat_pulse_period_ms) / p.heat_pulse_period_ms
        heat = p.heat_pulse_amplitude * (math.sin(phase * math.pi * 2.0) * 0.5 + 0.5)
        self._evaporate(self.W, self.evaporation_bias, heat, delta_ms)
        return heat

    def diffusion_budget(self) -> int:
        return int(math.floor(self.p.diffusion_samples * self.rain_intensity))

    def diffuse(self, iterations: Optional[int] = None) -> int:
        """Runs the capillary transfers for this tick and returns how many moved moisture.

        Every attempt is recorded in `last_transfer_log`.
        """
        self._require_ready()
        n = self.diffusion_budget() if iterations is None else int(iterations)
        if n < 1:
            self.last_transfer_log = np.zeros((0, TRANSFER_COLUMNS), dtype=np.float32)
            return 0

        p = self.p
        picks = self.rng.integers(0, self.width * self.height, size=n, dtype=np.int32)
        u_pick = self.rng.random(n, dtype=np.float32)
        u_amount = self.rng.random(n, dtype=np.float32)
        log = np.zeros((n, TRANSFER_COLUMNS), dtype=np.float32)

        mode = _DRAIN_MODES[p.drain_mode]
        if mode == DRAIN_POINT:
            tx, ty = p.drain_x * self.width, p.drain_y * self.height
        elif mode == DRAIN_DIRECTION:
            dx, dy = p.drain_direction
            length = math.hypot(dx, dy) or 1.0
            tx, ty = dx / length, dy / length
        else:
            tx, ty = 0.0, 0.0

        self._diffuse(self.W, picks, u_pick, u_amount, log, n,
                      p.diffusion_threshold, p.diffusion_base_fraction, p.diffusion_rate,
                      p.diffusion_retention, p.saturation_cap, p.diffusion_baseline, p.drain_bias,
                      mode, tx, ty)
        self.last_transfer_log = log
        return int(np.count_nonzero(log[:, 0]))

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def render(self) -> np.ndarray:
        """Composites the field and overlay and returns a `(width, height, 4)` uint8 RGBA array."""
        self._require_ready()
        t0 = time.perf_counter() if self.timing_mode else 0
        p = self.p
        self._composite(self.W, self.highlight, self.base, self._frame,
                        p.saturation_cap, p.darkening, p.green_weight, p.blue_weight,
                        p.cold_tint, p.specular, p.ambient_lift)

        prims = self._droplets.overlay_primitives()
        if prims.shape[0] > 0:
            self._draw_overlay(self._frame, np.ascontiguousarray(prims), prims.shape[0])

        self._pack_frame(self._frame, self._img_u8)
        out = self._img_u8.to_numpy()

        if self.timing_mode and self._frame_count % 30 == 0:
            t1 = time.perf_counter()
            print(f"[WetnessEngine] Render: {(t1-t0)*1000:4.1f}ms | Overlay shapes: {prims.shape[0]}")
        return out

    def warmup(self):
        """Trigger JIT compilation of all kernels by running a small dummy simulation."""
        self._require_ready()
        self.clear()
        self.deposit(self.width * 0.5, self.height * 0.5, 4.0, 0.5)
        self.evaporate(self.p.fallback_delta_ms)
        self.diffuse(iterations=8)
        self._droplets.spawn_droplet()
        self._droplets.flashes.append(ImpactFlash(
            x=self.width * 0.5, y=self.height * 0.5, radius=4.0, strength=1.0, life=self.p.flash_life_ms))
        self.render()
        self.clear()
        ti.sync()
        print("[WetnessEngine] Warmup complete.")

    def test_integrity(self, ticks: int = 60) -> bool:
        """Verifies simulation state for stability (NaN and range checks)."""
        self._require_ready()
        self.clear()
        self.rain_intensity = 1.0
        self.deposit(self.width * 0.5, self.height * 0.5, max(2.0, min(self.width, self.height) * 0.1), 1.0)
        for _ in range(int(ticks)):
            self.tick(self.p.fallback_delta_ms)

        w = self.W.to_numpy()
        ok = True
        if np.any(np.isnan(w)):
            print("[WetnessEngine] INTEGRITY ERROR: NaN detected in wetness field!")
            ok = False
        if np.any((w < 0.0) | (w > self.p.saturation_cap + 1e-5)):
            print(f"[WetnessEngine] INTEGRITY ERROR: Wetness out of range: [{w.min()}, {w.max()}]")
            ok = False
        if ok:
            print("[WetnessEngine] Integrity test passed.")
        self.clear()
        return ok

    # ===============================
    # Taichi kernels
    # ===============================

    @ti.kernel
    def _deposit_batch(self, wet: ti.template(), absorption: ti.template(), boost: ti.template(),
                       deposits: ti.types.ndarray(dtype=ti.f32, ndim=2), count: ti.i32,
                       cap: ti.f32, scale: ti.f32, ring_mix: ti.f32, ring_falloff: ti.f32):
        """Splats queued elliptical deposits in submission order."""
        w = wet.shape[0]
        h = wet.shape[1]
        ti.loop_config(serialize=True)
        for k in range(count):
            cx = deposits[k, 0]
            cy = deposits[k, 1]
            r = deposits[k, 2]
            strength = deposits[k, 3]
            rx = r * deposits[k, 4]
            ry = r * deposits[k, 5]
            if r > 0.0 and strength > 0.0 and rx > 0.0 and ry > 0.0:
                x0 = ti.max(0, ti.cast(ti.floor(cx - rx), ti.i32))
                x1 = ti.min(w - 1, ti.cast(ti.ceil(cx + rx), ti.i32))
                y0 = ti.max(0, ti.cast(ti.floor(cy - ry), ti.i32))
                y1 = ti.min(h - 1, ti.cast(ti.ceil(cy + ry), ti.i32))
                for x in range(x0, x1 + 1):
                    dx = (ti.cast(x, ti.f32) - cx) / rx
                    for y in range(y0, y1 + 1):
                        dy = (ti.cast(y, ti.f32) - cy) / ry
                        d2 = dx * dx + dy * dy
                        if d2 < 1.0:
                            d = ti.sqrt(d2)
                            # Linear falloff, softened towards the rim by a power-law ring
                            ring = ti.pow(d, ring_falloff)
                            profile = (1.0 - d) * ((1.0 - ring_mix) + (1.0 - ring) * ring_mix)
                            add = profile * strength * scale * absorption[x, y] * boost[x, y]
                            wet[x, y] = ti.min(cap, wet[x, y] + ti.max(0.0, add))

    @ti.kernel
    def _clamp_field(self, wet: ti.template(), cap: ti.f32):
        for x, y in wet:
            wet[x, y] = _clamp(wet[x, y], 0.0, cap)

    @ti.kernel
    def _evaporate(self, wet: ti.template(), bias: ti.template(), heat: ti.f32, dt: ti.f32):
        for x, y in wet:
            wet[x, y] = ti.max(0.0, wet[x, y] - (bias[x, y] + heat) * dt)

    @ti.kernel
    def _diffuse(self, wet: ti.template(),
                 picks: ti.types.ndarray(dtype=ti.i32, ndim=1),
                 u_pick: ti.types.ndarray(dtype=ti.f32, ndim=1),
                 u_amount: ti.types.ndarray(dtype=ti.f32, ndim=1),
                 log: ti.types.ndarray(dtype=ti.f32, ndim=2),
                 count: ti.i32, threshold: ti.f32, base_fraction: ti.f32, rate: ti.f32,
                 retention: ti.f32, cap: ti.f32, baseline: ti.f32, bias: ti.f32,
                 mode: ti.i32, tx: ti.f32, ty: ti.f32):
        """Capillary relaxation: random wet pixels hand moisture to a drain-biased neighbour.

        Serialized because each step reads and writes two pixels chosen at runtime.
        """
        w = wet.shape[0]
        h = wet.shape[1]
        ti.loop_config(serialize=True)
        for k in range(count):
            x = picks[k] // h
            y = picks[k] % h
            src = wet[x, y]
            log[k, 1] = src
            if src >= threshold:
                nx = 0.0
                ny = 0.0
                if mode == DRAIN_POINT:
                    dx = tx - ti.cast(x, ti.f32)
                    dy = ty - ti.cast(y, ti.f32)
                    length = ti.sqrt(dx * dx + dy * dy)
                    if length < 1e-6:
                        length = 1.0
                    nx = dx / length
                    ny = dy / length
                elif mode == DRAIN_DIRECTION:
                    nx = tx
                    ny = ty

                # Left, right, up, down; out-of-bounds neighbours get no weight
                wl = 0.0
                wr = 0.0
                wu = 0.0
                wd = 0.0
                if x > 0:
                    wl = baseline + ti.max(0.0, -nx) * bias
                if x < w - 1:
                    wr = baseline + ti.max(0.0, nx) * bias
                if y > 0:
                    wu = baseline + ti.max(0.0, -ny) * bias
                if y < h - 1:
                    wd = baseline + ti.max(0.0, ny) * bias
                total = wl + wr + wu + wd

                if total > 0.0:
                    r = u_pick[k] * total
                    qx = x
                    qy = y + 1
                    if r < wl:
                        qx = x - 1
                        qy = y
                    elif r < wl + wr:
                        qx = x + 1
                        qy = y
                    elif r < wl + wr + wu:
                        qy = y - 1

                    if qx >= 0 and qx < w and qy >= 0 and qy < h:
                        nbr = wet[qx, qy]
                        log[k, 2] = nbr
                        diff = src - nbr
                        if diff > 0.0:
                            # Never more than half the gap, so the pair cannot invert
                            fraction = ti.min(0.5, base_fraction + rate * u_amount[k])
                            removed = diff * fraction
                            added = removed * retention
                            room = ti.max(0.0, cap - nbr)
                            if added > room:
                                added = room
                                removed = room / retention
                            if removed > 0.0:
                                wet[x, y] = src - removed
                                wet[qx, qy] = nbr + added
                                log[k, 0] = 1.0
                                log[k, 3] = removed
                                log[k, 4] = added

    @ti.kernel
    def _composite(self, wet: ti.template(), highlight: ti.template(), base: ti.template(), frame: ti.template(),
                   cap: ti.f32, darkening: ti.f32, green_weight: ti.f32, blue_weight: ti.f32,
                   cold_tint: ti.f32, specular: ti.f32, ambient_lift: ti.f32):
        """Shades the base colour by wetness: darken, cool, then add sheen."""
        for x, y in wet:
            ratio = ti.min(cap, wet[x, y]) / cap
            hl = highlight[x, y] * (ambient_lift + ratio * specular)
            c = base[x, y]

            darken = 1.0 - ratio * darkening
            r = c[0] * darken
            g = c[1] * darken * (1.0 - ratio * green_weight)
            b = c[2] * darken * (1.0 - ratio * blue_weight)

            tint = ratio * cold_tint
            r -= tint * 16.0
            g -= tint * 8.0
            b += tint * 42.0

            r += hl * 110.0
            g += hl * 140.0
            b += hl * 170.0

            frame[x, y] = ti.Vector([_clamp(r, 0.0, 255.0), _clamp(g, 0.0, 255.0), _clamp(b, 0.0, 255.0), c[3]])

    @ti.kernel
    def _draw_overlay(self, frame: ti.template(), prims: ti.types.ndarray(dtype=ti.f32, ndim=2), count: ti.i32):
        """Multiplies streaks, droplet caps and impact glows onto the composited frame."""
        w = frame.shape[0]
        h = frame.shape[1]
        ti.loop_config(serialize=True)
        for k in range(count):
            kind = ti.cast(prims[k, 0], ti.i32)
            px = prims[k, 1]
            py = prims[k, 2]
            size = prims[k, 3]
            half = prims[k, 4]
            alpha = prims[k, 5]

            ext_x = size + 1.0
            top = py - size - 1.0
            bottom = py + size + 1.0
            if kind == OVERLAY_STREAK:
                ext_x = half + 1.0
                bottom = py + half + 1.0
                top = py - size - half - 1.0

            x0 = ti.max(0, ti.cast(ti.floor(px - ext_x), ti.i32))
            x1 = ti.min(w - 1, ti.cast(ti.ceil(px + ext_x), ti.i32))
            y0 = ti.max(0, ti.cast(ti.floor(top), ti.i32))
            y1 = ti.min(h - 1, ti.cast(ti.ceil(bottom), ti.i32))

            for x in range(x0, x1 + 1):
                for y in range(y0, y1 + 1):
                    fx = ti.cast(x, ti.f32)
                    fy = ti.cast(y, ti.f32)
                    col = ti.Vector([prims[k, 6], prims[k, 7], prims[k, 8]])
                    a = 0.0
                    if kind == OVERLAY_STREAK:
                        sy = _clamp(fy, py - size, py)
                        d = ti.sqrt((fx - px) * (fx - px) + (fy - sy) * (fy - sy))
                        a = alpha * _clamp(half + 0.5 - d, 0.0, 1.0)
                    elif kind == OVERLAY_CAP:
                        d = ti.sqrt((fx - px) * (fx - px) + (fy - py) * (fy - py))
                        a = alpha * _clamp(size + 0.5 - d, 0.0, 1.0)
                    elif kind == OVERLAY_GLOW:
                        d = ti.sqrt((fx - px) * (fx - px) + (fy - py) * (fy - py))
                        if d < size:
                            # Radial gradient from 0.2*size: stops at 0, 0.7 and 1
                            s = _clamp((d - 0.2 * size) / (0.8 * size + 1e-6), 0.0, 1.0)
                            if s < 0.7:
                                t = s / 0.7
                                col = ti.Vector([20.0, 24.0, 28.0]) * (1.0 - t) + ti.Vector([35.0, 38.0, 42.0]) * t
                                a = alpha * (0.8 * (1.0 - t) + 0.5 * t)
                            else:
                                t = (s - 0.7) / 0.3
                                col = ti.Vector([35.0, 38.0, 42.0]) * (1.0 - t) + ti.Vector([60.0, 62.0, 65.0]) * t
                                a = alpha * 0.5 * (1.0 - t)
                    if a > 0.0:
                        c = frame[x, y]
                        m = 1.0 - a + a * col / 255.0
                        frame[x, y] = ti.Vector([c[0] * m[0], c[1] * m[1], c[2] * m[2], c[3]])

    @ti.kernel
    def _pack_frame(self, frame: ti.template(), img_u8: ti.template()):
        for x, y in frame:
            c = frame[x, y]
            img_u8[x, y] = ti.cast(ti.min(255.0, ti.max(0.0, c) + 0.5), ti.u8)
