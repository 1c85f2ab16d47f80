"""
Wet Surface Sim.

Copyright (c) 2026 Shuoqi Chen
SPDX-License-Identifier: MIT OR Apache-2.0
"""
import argparse
import time
from dataclasses import fields, replace

import numpy as np
import taichi as ti

from .surface import WetnessEngine, SimParams
from .surface.support_maps import SupportMaps, build_support_maps, load_photo, synthesize_base_texture


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Wet Surface Simulator: rain soaking into concrete")
    parser.add_argument("--width", type=int, default=960, help="Surface width in pixels (default: 960)")
    parser.add_argument("--height", type=int, default=600, help="Surface height in pixels (default: 600)")
    parser.add_argument("-f", "--fps", type=int, default=60, help="Target FPS cap (default: 60)")
    parser.add_argument("-p", "--preset", choices=["flat", "corner"], default="flat", help="Starting scene (default: flat)")
    parser.add_argument("-t", "--texture", type=str, default=None, help="Optional photo blended into the slab")
    parser.add_argument("--seed", type=int, default=0, help="Random seed for texture and rain (default: 0)")
    parser.add_argument("--arch", type=str, default="gpu", help="Taichi backend: gpu, cpu, cuda, vulkan, metal")

    # Add SimParams as arguments automatically; unset flags keep the preset's value
    for f in fields(SimParams):
        arg_name = f.name.replace('_', '-')
        arg_type = type(f.default) if f.default is not None else float
        parser.add_argument(f"--{arg_name}", type=arg_type, default=None, help=f.metadata.get('help', ''))
    return parser


def params_from_args(args: argparse.Namespace, preset: str = None) -> SimParams:
    """Builds the preset named by `preset` (default: `--preset`) with every CLI override applied."""
    preset = preset or args.preset
    params = SimParams.corner() if preset == "corner" else SimParams.flat()
    overrides = {}
    for f in fields(SimParams):
        value = getattr(args, f.name, None)
        if value is not None:
            overrides[f.name] = value
    params = replace(params, **overrides)
    params.validate()
    return params


def build_surface(width: int, height: int, params: SimParams, seed: int = 0, texture: str = None) -> SupportMaps:
    photo = load_photo(texture, width, height) if texture else None
    base = synthesize_base_texture(width, height, seed=seed, photo=photo)
    return build_support_maps(base, params)


def _to_display(frame: np.ndarray) -> np.ndarray:
    # The simulation grows y downward; GGUI puts the origin bottom-left
    return np.ascontiguousarray(frame[:, ::-1, :3], dtype=np.float32) / 255.0


def _save_screenshot(frame: np.ndarray):
    import PIL.Image
    path = f"render_{int(time.time())}.png"
    PIL.Image.fromarray(np.ascontiguousarray(frame.transpose(1, 0, 2))).save(path)
    print(f"Saved screenshot: {path}")


def launch_viewer(argv=None):
    args = build_arg_parser().parse_args(argv)
    W, H = args.width, args.height

    print(f"\n[WetSurface] Starting Wet Surface Sim")
    print(f" - Surface:  {W}x{H}")
    print(f" - Backend:  {args.arch.upper()}")
    print(f" - Preset:   {args.preset}")
    print(f" - FPS Cap:  {args.fps}")
    print(f"--------------------------------")

    params = params_from_args(args)
    engine = WetnessEngine(params=params, seed=args.seed, arch=args.arch)
    engine.configure(W, H, build_surface(W, H, params, seed=args.seed, texture=args.texture))
    engine.warmup()

    window = ti.ui.Window("Wet Surface: rain on concrete", (W, H))
    canvas = window.get_canvas()
    gui = window.get_gui()
    display = ti.Vector.field(3, dtype=ti.f32, shape=(W, H))

    splash_radius = 14.0
    last_splash_time = 0.0
    splash_interval = 1.0 / 30.0

    total_splashes = 0
    last_stat_time = time.time()
    show_ui = True
    fps_limit = args.fps

    print("\n[Controls]")
    print(" - Mouse Left (LMB): Splash water")
    print(" - Space: Dry the surface")
    print(" - T: Toggle flat slab / wall corner")
    print(" - S: Save Screenshot")
    print(" - Tab: Toggle the 'Controls' panel")

    last_frame = time.perf_counter()
    frame = engine.render()

    while window.running:
        frame_start = time.perf_counter()
        delta_ms = (frame_start - last_frame) * 1000.0
        last_frame = frame_start

        for e in window.get_events(ti.ui.PRESS):
            if e.key == ti.ui.SPACE:
                engine.clear()
            elif e.key == 't':
                preset = "flat" if engine.p.topology == "corner" else "corner"
                params = replace(params_from_args(args, preset=preset), topology=preset)
                engine.set_params(params)
                engine.configure(W, H, build_surface(W, H, params, seed=args.seed, texture=args.texture))
                print(f"Topology: {preset}")
            elif e.key == 's':
                _save_screenshot(frame)
            elif e.key == ti.ui.TAB:
                show_ui = not show_ui
            elif e.key == ti.ui.ESCAPE:
                window.running = False

        if window.is_pressed(ti.ui.LMB) and frame_start - last_splash_time > splash_interval:
            mx, my = window.get_cursor_pos()
            engine.deposit(mx * W, (1.0 - my) * H, splash_radius, 1.0)
            last_splash_time = frame_start
            total_splashes += 1

        if show_ui:
            with gui.sub_window("Controls", 0.02, 0.02, 0.3, 0.7):
                gui.text(f"Topology: {engine.p.topology} [T]")
                gui.text(f"Rain intensity: {engine.rain_intensity:.2f}")
                if gui.button("Dry Surface"):
                    engine.clear()
                splash_radius = gui.slider_float("Splash Radius", splash_radius, 2.0, 60.0)

                updates = {}
                for f in fields(SimParams):
                    if f.metadata.get("category") != "Normal":
                        continue
                    display_name = f.name.replace("_", " ").title()
                    val = getattr(engine.p, f.name)
                    lo, hi = f.metadata.get("min", 0.0), f.metadata.get("max", 1.0)
                    if isinstance(f.default, int):
                        new_val = gui.slider_int(display_name, val, int(lo), int(hi))
                    else:
                        new_val = gui.slider_float(display_name, val, lo, hi)
                    if new_val != val:
                        updates[f.name] = new_val
                if updates:
                    engine.update_params(**updates)

                if gui.button("Save Screenshot"):
                    _save_screenshot(frame)

        engine.tick(delta_ms)
        frame = engine.render()
        display.from_numpy(_to_display(frame))
        canvas.set_image(display)
        window.show()

        # Performance stats monitor
        now = time.time()
        if now - last_stat_time > 2.0:
            fps_val = 1000.0 / delta_ms if delta_ms > 0 else 0
            print(f"[Stats] FPS: {fps_val:.1f} | Droplets: {len(engine.droplets.live)} | "
                  f"Intensity: {engine.rain_intensity:.2f} | Splashes: {total_splashes}")
            total_splashes = 0
            last_stat_time = now

        # Enforce FPS cap to prevent resource hogging
        elapsed = time.perf_counter() - frame_start
        if elapsed < 1.0 / fps_limit:
            time.sleep(1.0 / fps_limit - elapsed)


if __name__ == "__main__":
    launch_viewer()
