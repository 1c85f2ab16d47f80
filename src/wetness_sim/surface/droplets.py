"""
Droplet particles that feed moisture into the wetness field.

Two topologies share one particle record:
- flat:   droplets fall from a height above a slab and splash once on impact
- corner: droplets slide down a wall, pool at the junction and run across the floor

Droplets never touch the field directly. Every deposit goes through the
callable handed to `DropletSystem.update`, which the engine batches into a
single kernel launch per tick.
"""
from collections import Counter
from dataclasses import dataclass
from enum import IntEnum
from typing import Callable, Dict, List, Optional

import numpy as np

from .configs import SimParams

REFERENCE_FRAME_MS = 16.0  # Continuous deposits are tuned per 16 ms frame

# Overlay primitive kinds, consumed by the engine's overlay kernel
OVERLAY_STREAK = 0
OVERLAY_CAP = 1
OVERLAY_GLOW = 2
OVERLAY_COLUMNS = 9  # kind, x, y, size, width, alpha, r, g, b

DepositFn = Callable[..., None]


class DropletState(IntEnum):
    FALLING = 0
    WALL_SLIDING = 1
    FLOOR_FLOWING = 2


@dataclass
class Droplet:
    """One pooled particle slot.

    The envelope (position, radius, strength, life) is shared by every state.
    `height`, `vz` and the wind drift belong to FALLING; `vx`, `vy` and
    `terminal_deposited` belong to the corner states.
    """
    slot: int
    state: DropletState = DropletState.FALLING
    x: float = 0.0
    y: float = 0.0
    radius: float = 1.0
    strength: float = 1.0
    life: float = 0.0
    height: float = 0.0
    vz: float = 0.0
    wind_x: float = 0.0
    wind_y: float = 0.0
    vx: float = 0.0
    vy: float = 0.0
    terminal_deposited: bool = False
    active: bool = False


@dataclass
class ImpactFlash:
    x: float
    y: float
    radius: float
    strength: float
    life: float


class DropletPool:
    """Fixed-capacity arena of droplet slots with a free-list."""

    def __init__(self, capacity: int):
        self.capacity = int(capacity)
        self._slots = [Droplet(slot=i) for i in range(self.capacity)]
        # Reversed so slot 0 is handed out first
        self._free = list(range(self.capacity - 1, -1, -1))

    @property
    def available(self) -> int:
        return len(self._free)

    def acquire(self) -> Optional[Droplet]:
        if not self._free:
            return None
        droplet = self._slots[self._free.pop()]
        droplet.active = True
        return droplet

    def release(self, droplet: Droplet):
        if not droplet.active:
            return
        droplet.active = False
        droplet.terminal_deposited = False
        self._free.append(droplet.slot)


class DropletSystem:
    """Spawns, integrates and retires droplets for one configured surface."""

    def __init__(self, params: SimParams, width: int, height: int, rng: np.random.Generator):
        self.p = params
        self.width = int(width)
        self.height = int(height)
        self.rng = rng
        self.fall_scale = float(max(self.width, self.height))

        self.pool = DropletPool(params.max_droplets)
        self.live: List[Droplet] = []
        self.flashes: List[ImpactFlash] = []
        self.accumulator = 0.0
        self.spawned_total = 0
        self.deposit_counts: Counter = Counter()

        self._steps: Dict[DropletState, Callable[[Droplet, float, DepositFn], bool]] = {
            DropletState.FALLING: self._step_falling,
            DropletState.WALL_SLIDING: self._step_wall,
            DropletState.FLOOR_FLOWING: self._step_floor,
        }

    # ------------------------------------------------------------------
    # Geometry
    # ------------------------------------------------------------------

    @property
    def junction_y(self) -> float:
        return self.p.wall_fraction * self.height

    @property
    def handoff_y(self) -> float:
        return self.junction_y - self.p.handoff_margin * self.height

    def _inside(self, x: float, y: float, margin: float = 0.0) -> bool:
        return -margin <= x <= self.width - 1 + margin and -margin <= y <= self.height - 1 + margin

    # ------------------------------------------------------------------
    # Spawning
    # ------------------------------------------------------------------

    def clear(self):
        for droplet in self.live:
            self.pool.release(droplet)
        self.live = []
        self.flashes = []
        self.accumulator = 0.0

    def spawn(self, dt: float, intensity: float) -> int:
        """Spawns this tick's share of `base_density * intensity * dt` droplets.

        The fractional remainder carries over to the next tick so the long-run
        rate does not depend on frame timing.
        """
        self.accumulator += self.p.base_density * intensity * dt
        count = int(np.floor(self.accumulator))
        self.accumulator -= count

        spawned = 0
        for _ in range(count):
            if len(self.live) >= self.p.max_droplets:
                break
            if self.spawn_droplet() is None:
                break
            spawned += 1
        return spawned

    def spawn_droplet(self, state: Optional[DropletState] = None) -> Optional[Droplet]:
        """Spawns one droplet, picking its start from the topology unless `state` is given."""
        if len(self.live) >= self.p.max_droplets:
            return None
        droplet = self.pool.acquire()
        if droplet is None:
            return None

        if state is None:
            if self.p.topology == "corner":
                u = self.rng.random()
                state = DropletState.WALL_SLIDING if u < self.p.wall_spawn_weight else DropletState.FLOOR_FLOWING
            else:
                state = DropletState.FALLING

        if state == DropletState.FALLING:
            self._init_falling(droplet)
        elif state == DropletState.WALL_SLIDING:
            self._init_wall(droplet)
        else:
            self._init_floor(droplet)

        self.live.append(droplet)
        self.spawned_total += 1
        return droplet

    def _init_common(self, d: Droplet, state: DropletState):
        p = self.p
        d.state = state
        d.radius = self.rng.uniform(p.radius_min, p.radius_max)
        d.strength = self.rng.uniform(0.65, 1.25)
        d.terminal_deposited = False
        d.height = d.vz = d.wind_x = d.wind_y = 0.0
        d.vx = d.vy = 0.0

    def _init_falling(self, d: Droplet):
        p = self.p
        self._init_common(d, DropletState.FALLING)
        pad_x, pad_y = self.width * 0.05, self.height * 0.05
        d.x = self.rng.uniform(pad_x, self.width - pad_x)
        d.y = self.rng.uniform(pad_y, self.height - pad_y)
        d.height = self.rng.uniform(p.spawn_height_min, p.spawn_height_max) * self.fall_scale
        d.life = d.height
        d.vz = self.rng.uniform(p.initial_speed_min, p.initial_speed_max) * self.fall_scale
        d.wind_x = (self.rng.random() - 0.5) * p.wind_variance * self.width
        d.wind_y = (self.rng.random() - 0.5) * p.wind_variance * self.height

    def _init_wall(self, d: Droplet):
        self._init_common(d, DropletState.WALL_SLIDING)
        pad_x = self.width * 0.05
        d.x = self.rng.uniform(pad_x, self.width - pad_x)
        d.y = self.rng.uniform(self.height * 0.02, max(self.height * 0.02, self.junction_y * 0.5))
        d.life = self.p.wall_life_ms

    def _init_floor(self, d: Droplet):
        p = self.p
        self._init_common(d, DropletState.FLOOR_FLOWING)
        pad_x = self.width * 0.05
        d.x = self.rng.uniform(pad_x, self.width - pad_x)
        d.y = self.rng.uniform(self.junction_y, self.junction_y + (self.height - self.junction_y) * 0.5)
        d.vx = (self.rng.random() - 0.5) * 2.0 * p.floor_spread
        d.vy = self.rng.uniform(p.floor_speed_min, p.floor_speed_max)
        d.life = self.rng.uniform(p.floor_life_min_ms, p.floor_life_max_ms)

    # ------------------------------------------------------------------
    # Integration
    # ------------------------------------------------------------------

    def update(self, dt: float, deposit: DepositFn):
        """Advances every live droplet by `dt` and retires the finished ones."""
        survivors = []
        for droplet in self.live:
            if self._steps[droplet.state](droplet, dt, deposit):
                self.pool.release(droplet)
            else:
                survivors.append(droplet)
        self.live = survivors

    def update_flashes(self, dt: float):
        for flash in self.flashes:
            flash.life -= dt
        self.flashes = [f for f in self.flashes if f.life > 0.0]

    def _emit(self, deposit: DepositFn, kind: str, *args):
        self.deposit_counts[kind] += 1
        deposit(*args)

    def _step_falling(self, d: Droplet, dt: float, deposit: DepositFn) -> bool:
        p = self.p
        d.x += d.wind_x * dt
        d.y += d.wind_y * dt
        d.vz += p.gravity * self.fall_scale * dt
        d.height -= d.vz * dt
        d.life = max(0.0, d.height)

        if not self._inside(d.x, d.y, p.out_of_bounds_margin):
            return True

        if d.height <= 0.0:
            hit_x = min(max(d.x, 0.0), self.width - 1.0)
            hit_y = min(max(d.y, 0.0), self.height - 1.0)
            splash = d.radius * self.rng.uniform(p.splash_radius_min, p.splash_radius_max)
            self._emit(deposit, "impact", hit_x, hit_y, splash, d.strength)
            self.flashes.append(ImpactFlash(
                x=hit_x,
                y=hit_y,
                radius=splash * p.flash_radius_ratio,
                strength=min(max(d.strength, 0.0), 1.0),
                life=p.flash_life_ms,
            ))
            return True
        return False

    def _step_wall(self, d: Droplet, dt: float, deposit: DepositFn) -> bool:
        p = self.p
        d.life = max(0.0, d.life - dt)
        d.vy = min(d.vy + p.wall_gravity * dt, p.wall_max_speed)
        d.y += d.vy * dt

        # Trailing streak: the head and a thinner smear just above it
        streak = p.wall_streak_intensity * d.strength * dt / REFERENCE_FRAME_MS
        self._emit(deposit, "streak", d.x, d.y, d.radius * 0.6, streak, 0.7, 1.6)
        self._emit(deposit, "streak", d.x, d.y - d.radius * 1.2, d.radius * 0.45, streak * 0.6, 0.6, 1.8)

        if d.y >= self.handoff_y:
            d.state = DropletState.FLOOR_FLOWING
            d.vx = (self.rng.random() - 0.5) * 2.0 * p.floor_spread
            d.vy = self.rng.uniform(p.floor_speed_min, p.floor_speed_max)
            d.radius *= self.rng.uniform(p.pool_growth_min, p.pool_growth_max)
            d.life = self.rng.uniform(p.floor_life_min_ms, p.floor_life_max_ms)
            self._emit(deposit, "pool", d.x, d.y, d.radius * 1.5, d.strength * p.pool_intensity, 1.4, 0.8)
            d.terminal_deposited = True
            return False

        return d.life <= 0.0 or not self._inside(d.x, d.y)

    def _step_floor(self, d: Droplet, dt: float, deposit: DepositFn) -> bool:
        p = self.p
        d.life = max(0.0, d.life - dt)
        d.vx *= p.floor_drag
        d.vx += (self.rng.random() - 0.5) * p.floor_jitter
        d.x += d.vx * dt
        d.y += d.vy * dt

        flow = p.floor_flow_intensity * d.strength * dt / REFERENCE_FRAME_MS
        self._emit(deposit, "flow", d.x, d.y, d.radius * 0.7, flow, 1.2, 0.9)

        if d.life > 0.0 and self._inside(d.x, d.y):
            return False

        if not d.terminal_deposited:
            end_x = min(max(d.x, 0.0), self.width - 1.0)
            end_y = min(max(d.y, 0.0), self.height - 1.0)
            self._emit(deposit, "final", end_x, end_y, d.radius * 1.6, d.strength * p.pool_intensity, 1.3, 0.9)
            d.terminal_deposited = True
        return True

    # ------------------------------------------------------------------
    # Overlay
    # ------------------------------------------------------------------

    def overlay_primitives(self) -> np.ndarray:
        """Returns one row per overlay shape: kind, x, y, size, width, alpha, r, g, b."""
        p = self.p
        rows = []
        max_tail = self.fall_scale * p.tail_max_ratio
        line_half = 0.55

        for d in self.live:
            if d.state == DropletState.FALLING:
                height_ratio = min(max(d.height / (self.fall_scale * p.spawn_height_max + 1e-6), 0.0), 1.0)
                alpha = p.droplet_alpha * (0.25 + height_ratio)
                if alpha <= 0.02:
                    continue
                tail = min(max(d.height * 0.65, d.radius * 1.2), max_tail)
                rows.append((OVERLAY_STREAK, d.x, d.y, tail, line_half, min(alpha * 1.35, 1.0), 25, 28, 34))
                rows.append((OVERLAY_CAP, d.x, d.y, max(0.8, d.radius * 0.38), 0.0, min(alpha * 1.6, 1.0), 12, 14, 18))
            elif d.state == DropletState.WALL_SLIDING:
                tail = min(max(d.vy * 120.0, d.radius * 1.2), max_tail)
                rows.append((OVERLAY_STREAK, d.x, d.y, tail, max(line_half, d.radius * 0.3), p.droplet_alpha * 0.8, 25, 28, 34))
                rows.append((OVERLAY_CAP, d.x, d.y, max(0.8, d.radius * 0.5), 0.0, p.droplet_alpha, 12, 14, 18))
            else:
                rows.append((OVERLAY_CAP, d.x, d.y, max(0.8, d.radius * 0.6), 0.0, p.droplet_alpha * 0.6, 18, 20, 26))

        flash_life = max(p.flash_life_ms, 1e-6)
        for flash in self.flashes:
            t = min(max(flash.life / flash_life, 0.0), 1.0)
            alpha = t * flash.strength * 0.4
            if alpha <= 0.01:
                continue
            radius = flash.radius * (1.2 - t * 0.6)
            rows.append((OVERLAY_GLOW, flash.x, flash.y, radius, 0.0, alpha, 20, 24, 28))

        if not rows:
            return np.zeros((0, OVERLAY_COLUMNS), dtype=np.float32)
        return np.asarray(rows, dtype=np.float32)
