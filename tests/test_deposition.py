import numpy as np

from wetness_sim.surface import SimParams, SupportMaps


def test_center_splash_peaks_at_center_and_stays_inside_radius(make_engine):
    engine = make_engine(41, 41, params=SimParams(deposit_scale=1.0), absorption=1.0)
    engine.deposit(20.0, 20.0, 10.0, 1.0)
    w = engine.wetness()

    x, y = np.meshgrid(np.arange(41), np.arange(41), indexing="ij")
    dist = np.hypot(x - 20, y - 20)

    assert w[20, 20] > 0.0
    assert np.all(w[dist >= 10.0] == 0.0)
    assert w[20, 20] > w[dist >= 10.0].max()
    assert np.isclose(w[20, 20], 1.0, atol=1e-5)
    assert np.all(w[dist < 9.0] > 0.0)


def test_profile_falls_off_with_distance(make_engine):
    engine = make_engine(41, 41, params=SimParams(deposit_scale=1.0))
    engine.deposit(20.0, 20.0, 10.0, 1.0)
    w = engine.wetness()
    row = w[20:31, 20]
    assert np.all(np.diff(row) <= 0.0)


def test_degenerate_deposits_leave_field_unchanged(make_engine):
    engine = make_engine(24, 24)
    engine.deposit(12.0, 12.0, 0.0, 1.0)
    engine.deposit(12.0, 12.0, 5.0, 0.0)
    engine.deposit(12.0, 12.0, -3.0, 1.0)
    engine.deposit(12.0, 12.0, 5.0, -1.0)
    engine.deposit(-100.0, -100.0, 5.0, 1.0)
    engine.deposit(500.0, 12.0, 5.0, 1.0)
    assert np.all(engine.wetness() == 0.0)


def test_repeated_deposits_respect_saturation_cap(make_engine):
    params = SimParams(deposit_scale=1.0, saturation_cap=1.4)
    engine = make_engine(24, 24, params=params)
    for _ in range(20):
        engine.deposit(12.0, 12.0, 6.0, 1.0)
    w = engine.wetness()
    assert w.max() <= 1.4 + 1e-6
    assert np.isclose(w[12, 12], 1.4, atol=1e-5)
    assert w.min() >= 0.0


def test_stretch_makes_an_ellipse(make_engine):
    engine = make_engine(41, 41, params=SimParams(deposit_scale=1.0))
    engine.deposit(20.0, 20.0, 5.0, 1.0, stretch_x=2.0, stretch_y=1.0)
    w = engine.wetness()
    assert w[28, 20] > 0.0
    assert w[20, 28] == 0.0
    assert w[20, 24] > 0.0


def test_absorption_weights_the_deposit(make_engine):
    maps = SupportMaps.uniform(41, 41, absorption=1.0)
    maps.absorption[:20, :] = 0.0
    engine = make_engine(41, 41, params=SimParams(deposit_scale=1.0), maps=maps)
    engine.deposit(20.0, 20.0, 8.0, 1.0)
    w = engine.wetness()
    assert np.all(w[:20, :] == 0.0)
    assert w[24, 20] > 0.0


def test_partially_offscreen_deposit_is_clipped(make_engine):
    engine = make_engine(24, 24, params=SimParams(deposit_scale=1.0))
    engine.deposit(0.0, 0.0, 6.0, 1.0)
    w = engine.wetness()
    assert np.isclose(w[0, 0], 1.0, atol=1e-5)
    assert w[10, 10] == 0.0


def test_corner_boost_pools_moisture_at_the_seam(make_engine):
    params = SimParams.corner(deposit_scale=1.0)
    engine = make_engine(64, 64, params=params)
    engine.deposit(32.0, 35.0, 4.0, 0.2)
    engine.deposit(8.0, 8.0, 4.0, 0.2)
    w = engine.wetness()
    assert np.isclose(w[8, 8], 0.2, atol=1e-5)
    assert w[32, 35] > w[8, 8] * 1.5
    assert w[32, 35] <= 0.2 * params.corner_boost_peak + 1e-5
