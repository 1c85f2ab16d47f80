from dataclasses import dataclass, field, replace
from typing import Tuple

TOPOLOGIES = ("flat", "corner")
DRAIN_MODES = ("point", "direction", "none")

# (min, max) pairs that must stay ordered
RANGE_FIELDS = (
    ("spawn_height_min", "spawn_height_max"),
    ("radius_min", "radius_max"),
    ("initial_speed_min", "initial_speed_max"),
    ("splash_radius_min", "splash_radius_max"),
    ("floor_speed_min", "floor_speed_max"),
    ("pool_growth_min", "pool_growth_max"),
    ("floor_life_min_ms", "floor_life_max_ms"),
)


@dataclass
class SimParams:
    """User-adjustable parameters for the wet surface simulation.

    Time is in milliseconds and distances in pixels unless a field says it is
    a fraction of the surface size.
    """

    # --- [NORMAL] Rain ---
    topology: str = field(default="flat", metadata={"help": "Surface geometry: 'flat' plane or 'corner' (wall + floor).", "category": "Geometry"})
    base_density: float = field(default=1.8, metadata={"help": "Droplets spawned per millisecond at full intensity.", "category": "Normal", "min": 0.0, "max": 5.0})
    intensity_ramp_ms: float = field(default=48000.0, metadata={"help": "Time for the rain to build from dry to full intensity.", "category": "Normal", "min": 1000.0, "max": 300000.0})
    max_droplets: int = field(default=420, metadata={"help": "Hard cap on live droplets.", "category": "Advanced", "min": 1, "max": 4000})

    # --- [NORMAL] Wetting ---
    deposit_scale: float = field(default=0.92, metadata={"help": "Moisture deposited per impact.", "category": "Normal", "min": 0.0, "max": 3.0})
    saturation_cap: float = field(default=1.4, metadata={"help": "Maximum wetness of any pixel.", "category": "Advanced", "min": 0.1, "max": 4.0})
    diffusion_samples: int = field(default=1400, metadata={"help": "Capillary transfers attempted per tick at full intensity.", "category": "Normal", "min": 0, "max": 20000})
    diffusion_rate: float = field(default=0.18, metadata={"help": "Randomised share of the wetness difference moved per transfer.", "category": "Normal", "min": 0.0, "max": 0.9})
    diffusion_base_fraction: float = field(default=0.08, metadata={"help": "Fixed share of the wetness difference moved per transfer.", "category": "Advanced", "min": 0.0, "max": 0.5})
    diffusion_threshold: float = field(default=0.08, metadata={"help": "Pixels drier than this never spread.", "category": "Advanced", "min": 0.0, "max": 1.0})
    diffusion_baseline: float = field(default=0.25, metadata={"help": "Neighbour weight every direction gets regardless of drain.", "category": "Advanced", "min": 0.01, "max": 2.0})
    diffusion_retention: float = field(default=1.0, metadata={"help": "Share of a transfer that arrives at the neighbour.", "category": "Advanced", "min": 0.5, "max": 1.0})
    ring_mix: float = field(default=0.3, metadata={"help": "Weight of the power-law ring term in the splash profile.", "category": "Advanced", "min": 0.0, "max": 1.0})
    ring_falloff: float = field(default=0.55, metadata={"help": "Exponent of the splash ring term.", "category": "Advanced", "min": 0.05, "max": 4.0})
    micro_channel_strength: float = field(default=0.35, metadata={"help": "Absorption variation along surface micro channels.", "category": "Advanced", "min": 0.0, "max": 1.0})

    # --- [NORMAL] Drain ---
    drain_mode: str = field(default="point", metadata={"help": "Capillary bias: 'point', 'direction' or 'none'.", "category": "Geometry"})
    drain_x: float = field(default=0.78, metadata={"help": "Drain position as a fraction of width.", "category": "Advanced", "min": 0.0, "max": 1.0})
    drain_y: float = field(default=0.84, metadata={"help": "Drain position as a fraction of height.", "category": "Advanced", "min": 0.0, "max": 1.0})
    drain_dx: float = field(default=0.0, metadata={"help": "Drain direction x (used by 'direction').", "category": "Advanced", "min": -1.0, "max": 1.0})
    drain_dy: float = field(default=1.0, metadata={"help": "Drain direction y (used by 'direction').", "category": "Advanced", "min": -1.0, "max": 1.0})
    drain_bias: float = field(default=0.55, metadata={"help": "Extra weight for neighbours facing the drain.", "category": "Normal", "min": 0.0, "max": 4.0})

    # --- [NORMAL] Evaporation ---
    evaporation_base_rate: float = field(default=0.00002, metadata={"help": "Base wetness lost per millisecond.", "category": "Advanced", "min": 0.0, "max": 0.001})
    evaporation_variance: float = field(default=0.00005, metadata={"help": "Tonal variation of the evaporation rate.", "category": "Advanced", "min": 0.0, "max": 0.001})
    heat_pulse_amplitude: float = field(default=0.000012, metadata={"help": "Peak extra evaporation of the heat cycle.", "category": "Advanced", "min": 0.0, "max": 0.001})
    heat_pulse_period_ms: float = field(default=32000.0, metadata={"help": "Length of one heat cycle.", "category": "Normal", "min": 1000.0, "max": 120000.0})

    # --- [ADVANCED] Falling droplets (flat) ---
    spawn_height_min: float = field(default=0.06, metadata={"help": "Minimum fall height (fraction of surface size).", "category": "Advanced", "min": 0.0, "max": 1.0})
    spawn_height_max: float = field(default=0.2, metadata={"help": "Maximum fall height (fraction of surface size).", "category": "Advanced", "min": 0.0, "max": 1.0})
    radius_min: float = field(default=2.2, metadata={"help": "Smallest droplet radius.", "category": "Advanced", "min": 0.5, "max": 20.0})
    radius_max: float = field(default=5.2, metadata={"help": "Largest droplet radius.", "category": "Advanced", "min": 0.5, "max": 40.0})
    initial_speed_min: float = field(default=0.16, metadata={"help": "Minimum initial fall speed (fraction of surface size per ms).", "category": "Advanced", "min": 0.0, "max": 1.0})
    initial_speed_max: float = field(default=0.28, metadata={"help": "Maximum initial fall speed (fraction of surface size per ms).", "category": "Advanced", "min": 0.0, "max": 1.0})
    gravity: float = field(default=0.0032, metadata={"help": "Fall acceleration (fraction of surface size per ms^2).", "category": "Normal", "min": 0.0, "max": 0.05})
    wind_variance: float = field(default=0.0003, metadata={"help": "Spread of the horizontal drift.", "category": "Advanced", "min": 0.0, "max": 0.01})
    splash_radius_min: float = field(default=2.6, metadata={"help": "Minimum splash radius multiplier.", "category": "Advanced", "min": 1.0, "max": 8.0})
    splash_radius_max: float = field(default=3.4, metadata={"help": "Maximum splash radius multiplier.", "category": "Advanced", "min": 1.0, "max": 8.0})
    out_of_bounds_margin: float = field(default=20.0, metadata={"help": "Drift allowed beyond the edge before a droplet is dropped.", "category": "Advanced", "min": 0.0, "max": 200.0})

    # --- [ADVANCED] Corner (wall + floor) ---
    wall_fraction: float = field(default=0.55, metadata={"help": "Height of the wall/floor junction (fraction of height).", "category": "Advanced", "min": 0.1, "max": 0.9})
    corner_x: float = field(default=0.5, metadata={"help": "Corner point position along the junction (fraction of width).", "category": "Advanced", "min": 0.0, "max": 1.0})
    handoff_margin: float = field(default=0.01, metadata={"help": "Distance above the junction where slides turn into floor flow.", "category": "Advanced", "min": 0.0, "max": 0.2})
    wall_spawn_weight: float = field(default=0.6, metadata={"help": "Probability a new droplet starts on the wall.", "category": "Normal", "min": 0.0, "max": 1.0})
    wall_gravity: float = field(default=0.0004, metadata={"help": "Slide acceleration along the wall (px per ms^2).", "category": "Advanced", "min": 0.0, "max": 0.01})
    wall_max_speed: float = field(default=0.35, metadata={"help": "Maximum slide speed (px per ms).", "category": "Advanced", "min": 0.01, "max": 2.0})
    wall_streak_intensity: float = field(default=0.05, metadata={"help": "Moisture left behind per sliding tick.", "category": "Advanced", "min": 0.0, "max": 1.0})
    floor_speed_min: float = field(default=0.04, metadata={"help": "Minimum forward flow speed (px per ms).", "category": "Advanced", "min": 0.0, "max": 1.0})
    floor_speed_max: float = field(default=0.12, metadata={"help": "Maximum forward flow speed (px per ms).", "category": "Advanced", "min": 0.0, "max": 1.0})
    floor_spread: float = field(default=0.05, metadata={"help": "Spread of the sideways flow speed (px per ms).", "category": "Advanced", "min": 0.0, "max": 1.0})
    floor_drag: float = field(default=0.96, metadata={"help": "Sideways velocity kept per tick.", "category": "Advanced", "min": 0.0, "max": 1.0})
    floor_jitter: float = field(default=0.02, metadata={"help": "Random sideways kick per tick (px per ms).", "category": "Advanced", "min": 0.0, "max": 0.5})
    floor_flow_intensity: float = field(default=0.04, metadata={"help": "Moisture left behind per flowing tick.", "category": "Advanced", "min": 0.0, "max": 1.0})
    pool_growth_min: float = field(default=1.4, metadata={"help": "Minimum radius growth when a slide pools on the floor.", "category": "Advanced", "min": 1.0, "max": 4.0})
    pool_growth_max: float = field(default=2.2, metadata={"help": "Maximum radius growth when a slide pools on the floor.", "category": "Advanced", "min": 1.0, "max": 4.0})
    pool_intensity: float = field(default=0.9, metadata={"help": "Strength of the pooling deposit.", "category": "Advanced", "min": 0.0, "max": 2.0})
    wall_life_ms: float = field(default=6000.0, metadata={"help": "Lifetime of a wall droplet before it runs dry.", "category": "Advanced", "min": 100.0, "max": 30000.0})
    floor_life_min_ms: float = field(default=900.0, metadata={"help": "Minimum floor flow lifetime.", "category": "Advanced", "min": 50.0, "max": 20000.0})
    floor_life_max_ms: float = field(default=2400.0, metadata={"help": "Maximum floor flow lifetime.", "category": "Advanced", "min": 50.0, "max": 20000.0})
    corner_boost_peak: float = field(default=1.8, metadata={"help": "Deposit multiplier at the corner point.", "category": "Advanced", "min": 1.0, "max": 5.0})
    corner_boost_radius: float = field(default=0.25, metadata={"help": "Reach of the corner pooling boost (fraction of surface size).", "category": "Advanced", "min": 0.01, "max": 1.0})

    # --- [NORMAL] Shading ---
    darkening: float = field(default=0.58, metadata={"help": "How much wet areas darken.", "category": "Normal", "min": 0.0, "max": 1.0})
    green_weight: float = field(default=0.06, metadata={"help": "Extra darkening of the green channel when wet.", "category": "Advanced", "min": 0.0, "max": 1.0})
    blue_weight: float = field(default=0.12, metadata={"help": "Extra darkening of the blue channel when wet.", "category": "Advanced", "min": 0.0, "max": 1.0})
    cold_tint: float = field(default=0.18, metadata={"help": "Cool colour shift of wet areas.", "category": "Normal", "min": 0.0, "max": 1.0})
    specular: float = field(default=0.55, metadata={"help": "Sheen of wet areas.", "category": "Normal", "min": 0.0, "max": 2.0})
    ambient_lift: float = field(default=0.08, metadata={"help": "Sheen applied to dry areas.", "category": "Advanced", "min": 0.0, "max": 0.5})
    edge_darken: float = field(default=0.22, metadata={"help": "Extra evaporation towards the edges.", "category": "Advanced", "min": 0.0, "max": 1.0})

    # --- [ADVANCED] Overlay ---
    droplet_alpha: float = field(default=0.42, metadata={"help": "Opacity of falling droplet streaks.", "category": "Advanced", "min": 0.0, "max": 1.0})
    tail_max_ratio: float = field(default=0.14, metadata={"help": "Longest streak (fraction of surface size).", "category": "Advanced", "min": 0.0, "max": 0.5})
    flash_life_ms: float = field(default=520.0, metadata={"help": "Lifetime of impact flashes.", "category": "Advanced", "min": 0.0, "max": 5000.0})
    flash_radius_ratio: float = field(default=2.4, metadata={"help": "Flash radius relative to the splash.", "category": "Advanced", "min": 0.5, "max": 6.0})

    # --- [ADVANCED] Timing ---
    max_delta_ms: float = field(default=48.0, metadata={"help": "Largest step accepted from the frame clock.", "category": "Advanced", "min": 1.0, "max": 500.0})
    fallback_delta_ms: float = field(default=16.0, metadata={"help": "Step used when the frame clock reports nothing.", "category": "Advanced", "min": 1.0, "max": 100.0})

    @classmethod
    def flat(cls, **overrides) -> "SimParams":
        """Top-down rain on a flat slab draining towards a point."""
        return replace(cls(), **overrides)

    @classmethod
    def corner(cls, **overrides) -> "SimParams":
        """Streaks running down a wall and spreading across the floor."""
        base = cls(
            topology="corner",
            base_density=0.08,
            max_droplets=160,
            radius_min=1.6,
            radius_max=3.4,
            drain_mode="none",
            ring_mix=0.0,
        )
        return replace(base, **overrides)

    def validate(self) -> None:
        if self.topology not in TOPOLOGIES:
            raise ValueError(f"Unknown topology {self.topology!r}, expected one of {TOPOLOGIES}")
        if self.drain_mode not in DRAIN_MODES:
            raise ValueError(f"Unknown drain mode {self.drain_mode!r}, expected one of {DRAIN_MODES}")
        if self.saturation_cap <= 0.0:
            raise ValueError("saturation_cap must be positive")
        if self.max_droplets < 0:
            raise ValueError("max_droplets must not be negative")
        if self.intensity_ramp_ms <= 0.0 or self.heat_pulse_period_ms <= 0.0:
            raise ValueError("intensity_ramp_ms and heat_pulse_period_ms must be positive")
        if self.radius_min <= 0.0:
            raise ValueError("radius_min must be positive")
        for lo, hi in RANGE_FIELDS:
            if getattr(self, lo) > getattr(self, hi):
                raise ValueError(f"{lo} must not exceed {hi}")

    @property
    def drain_direction(self) -> Tuple[float, float]:
        return (self.drain_dx, self.drain_dy)
