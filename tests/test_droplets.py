import numpy as np
import pytest

from wetness_sim.surface.configs import SimParams
from wetness_sim.surface.droplets import (
    DropletPool,
    DropletState,
    DropletSystem,
    ImpactFlash,
    OVERLAY_CAP,
    OVERLAY_COLUMNS,
    OVERLAY_GLOW,
    OVERLAY_STREAK,
)


def _system(params, width=200, height=150, seed=0):
    return DropletSystem(params, width, height, np.random.default_rng(seed))


def test_pool_hands_out_every_slot_once():
    pool = DropletPool(3)
    taken = [pool.acquire() for _ in range(3)]
    assert pool.acquire() is None
    assert sorted(d.slot for d in taken) == [0, 1, 2]
    pool.release(taken[1])
    pool.release(taken[1])
    assert pool.available == 1
    again = pool.acquire()
    assert again is taken[1]
    assert again.active


@pytest.mark.parametrize("density,intensity,dt", [(0.05, 0.6, 16.7), (1.8, 0.25, 9.0), (0.013, 1.0, 33.3)])
def test_spawn_rate_matches_target_within_one_droplet(density, intensity, dt):
    system = _system(SimParams(base_density=density, max_droplets=20000))
    ticks = 500
    for _ in range(ticks):
        system.spawn(dt, intensity)
    expected = density * intensity * ticks * dt
    assert abs(system.spawned_total - expected) < 1.0
    assert 0.0 <= system.accumulator < 1.0


def test_live_droplets_never_exceed_cap(recorder):
    params = SimParams(base_density=5.0, max_droplets=25)
    system = _system(params)
    for _ in range(60):
        system.spawn(16.0, 1.0)
        assert len(system.live) <= 25
        system.update(16.0, recorder)
        assert len(system.live) <= 25
        assert system.pool.available + len(system.live) == 25


def test_zero_intensity_spawns_nothing():
    system = _system(SimParams())
    for _ in range(100):
        system.spawn(16.0, 0.0)
    assert system.spawned_total == 0


def test_falling_droplet_splashes_once_and_leaves_a_flash(recorder):
    params = SimParams()
    system = _system(params)
    droplet = system.spawn_droplet(DropletState.FALLING)
    droplet.x, droplet.y = 50.0, 60.0
    droplet.wind_x = droplet.wind_y = 0.0
    droplet.height = 1.0
    radius = droplet.radius

    system.update(16.0, recorder)

    assert len(recorder.calls) == 1
    cx, cy, splash, strength, sx, sy = recorder.calls[0]
    assert (cx, cy) == (50.0, 60.0)
    assert radius * params.splash_radius_min <= splash <= radius * params.splash_radius_max
    assert (sx, sy) == (1.0, 1.0)
    assert system.deposit_counts["impact"] == 1
    assert len(system.flashes) == 1
    assert system.flashes[0].radius == pytest.approx(splash * params.flash_radius_ratio)
    assert system.live == []
    assert system.pool.available == params.max_droplets


def test_falling_droplet_accelerates_until_impact(recorder):
    system = _system(SimParams())
    droplet = system.spawn_droplet(DropletState.FALLING)
    droplet.height = 1e9
    speeds = []
    for _ in range(5):
        system.update(16.0, recorder)
        speeds.append(droplet.vz)
    assert all(b > a for a, b in zip(speeds, speeds[1:]))
    assert recorder.calls == []


def test_droplet_drifting_off_surface_retires_silently(recorder):
    system = _system(SimParams())
    droplet = system.spawn_droplet(DropletState.FALLING)
    droplet.x = -1000.0
    droplet.height = 0.0
    system.update(16.0, recorder)
    assert recorder.calls == []
    assert system.flashes == []
    assert system.live == []


def test_impact_point_is_clamped_to_surface(recorder):
    system = _system(SimParams(), width=100, height=80)
    droplet = system.spawn_droplet(DropletState.FALLING)
    droplet.x, droplet.y = 105.0, -4.0
    droplet.wind_x = droplet.wind_y = 0.0
    droplet.height = 0.5
    system.update(16.0, recorder)
    cx, cy = recorder.calls[0][:2]
    assert (cx, cy) == (99.0, 0.0)


def test_flashes_age_and_expire():
    system = _system(SimParams(flash_life_ms=100.0))
    system.flashes.append(ImpactFlash(x=1.0, y=1.0, radius=5.0, strength=1.0, life=100.0))
    system.update_flashes(60.0)
    assert system.flashes[0].life == pytest.approx(40.0)
    system.update_flashes(60.0)
    assert system.flashes == []


def test_corner_spawn_follows_wall_weight():
    wall_only = _system(SimParams.corner(wall_spawn_weight=1.0, max_droplets=50))
    floor_only = _system(SimParams.corner(wall_spawn_weight=0.0, max_droplets=50))
    for _ in range(20):
        wall_only.spawn_droplet()
        floor_only.spawn_droplet()
    assert all(d.state == DropletState.WALL_SLIDING for d in wall_only.live)
    assert all(d.state == DropletState.FLOOR_FLOWING for d in floor_only.live)
    assert all(d.y < wall_only.junction_y for d in wall_only.live)
    assert all(d.y >= floor_only.junction_y for d in floor_only.live)


def test_wall_slide_is_capped_and_leaves_a_streak(recorder):
    params = SimParams.corner()
    system = _system(params, width=200, height=4000)
    droplet = system.spawn_droplet(DropletState.WALL_SLIDING)
    droplet.y = 10.0
    for _ in range(100):
        system.update(16.0, recorder)
        assert droplet.state == DropletState.WALL_SLIDING
        assert droplet.vy <= params.wall_max_speed
    assert droplet.vy == pytest.approx(params.wall_max_speed)
    assert system.deposit_counts["streak"] == 200
    assert all(call[5] > call[4] for call in recorder.calls)


def test_wall_droplet_converts_once_with_one_terminal_deposit(recorder):
    params = SimParams.corner()
    system = _system(params, width=200, height=200)
    droplet = system.spawn_droplet(DropletState.WALL_SLIDING)
    droplet.y = system.handoff_y - 0.5
    droplet.vy = 0.1
    radius = droplet.radius

    states = []
    for _ in range(2000):
        if not system.live:
            break
        states.append(droplet.state)
        system.update(16.0, recorder)
    assert system.live == []

    transitions = sum(
        1 for a, b in zip(states, states[1:])
        if a == DropletState.WALL_SLIDING and b == DropletState.FLOOR_FLOWING
    )
    assert transitions == 1
    assert system.deposit_counts["pool"] == 1
    assert system.deposit_counts["final"] == 0
    assert system.deposit_counts["flow"] >= 1

    pool_call = next(call for call in recorder.calls if call[2] > radius * params.pool_growth_min)
    assert pool_call[3] == pytest.approx(droplet.strength * params.pool_intensity)


def test_floor_droplet_fires_final_deposit_when_it_retires(recorder):
    params = SimParams.corner()
    system = _system(params, width=200, height=200)
    droplet = system.spawn_droplet(DropletState.FLOOR_FLOWING)
    assert not droplet.terminal_deposited
    for _ in range(2000):
        if not system.live:
            break
        system.update(16.0, recorder)
    assert system.live == []
    assert system.deposit_counts["final"] == 1
    assert system.deposit_counts["pool"] == 0


def test_floor_flow_drag_slows_sideways_motion(recorder):
    params = SimParams.corner(floor_jitter=0.0, floor_drag=0.5)
    system = _system(params, width=400, height=4000)
    droplet = system.spawn_droplet(DropletState.FLOOR_FLOWING)
    droplet.vx = 0.4
    droplet.life = 1e9
    system.update(16.0, recorder)
    assert droplet.vx == pytest.approx(0.2)


def test_clear_returns_every_slot():
    system = _system(SimParams(max_droplets=10))
    for _ in range(10):
        system.spawn_droplet()
    system.flashes.append(ImpactFlash(x=0.0, y=0.0, radius=1.0, strength=1.0, life=10.0))
    system.clear()
    assert system.live == []
    assert system.flashes == []
    assert system.pool.available == 10


def test_overlay_rows_describe_droplets_and_flashes():
    system = _system(SimParams())
    assert system.overlay_primitives().shape == (0, OVERLAY_COLUMNS)

    droplet = system.spawn_droplet(DropletState.FALLING)
    droplet.height = system.fall_scale * 0.1
    system.flashes.append(ImpactFlash(x=5.0, y=5.0, radius=8.0, strength=1.0, life=system.p.flash_life_ms))
    rows = system.overlay_primitives()
    kinds = list(rows[:, 0].astype(int))
    assert kinds == [OVERLAY_STREAK, OVERLAY_CAP, OVERLAY_GLOW]
    assert np.all((rows[:, 5] > 0.0) & (rows[:, 5] <= 1.0))
