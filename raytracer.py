"""
raytracer.py

Renders a vertical stack of Phong-shaded spheres over a checkerboard and
writes the image as plain-text PPM (P3). All shading math is carried in
single precision (np.float32) so pixels match a float32 build of the same
formulas.

Run without arguments it renders the default 1024x1024, 10-sphere scene
sequentially to stdout. The flags below are optional overrides used by
run_experiments.py; they are not needed for the reference image.

Usage examples:
  python raytracer.py > out.ppm
  python raytracer.py --width 800 --height 600 --spheres 10 --threads 8 --tile 16 --outfile results/out_par.ppm

Prints to stderr:
  MODE: <sequential|parallel>
  RESOLUTION: <w>x<h>
  SPHERES: <n>
  RENDER_TIME_MS: <ms>
  CPU_AVG: <percent>
  CPU_MAX: <percent>
"""
import os
import sys
import math
import argparse
import time
import threading
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass

import numpy as np
import psutil
from PIL import Image

F = np.float32

# -------------------------
# Configuration
# -------------------------
WIDTH = 1024
HEIGHT = 1024
N_SPHERES = 10
TILE = 16

ZERO = F(0.0)
AMBIENT = F(0.1)
SHININESS = F(32.0)
SPHERE_RADIUS = F(0.75)
BYTE_SCALE = F(255.999)

# -------------------------
# Math utilities
# -------------------------
@dataclass(frozen=True)
class Vec3:
    x: float
    y: float
    z: float

    # let numpy scalars on the left defer to __rmul__
    __array_ufunc__ = None

    def __post_init__(self):
        for name in ('x', 'y', 'z'):
            object.__setattr__(self, name, F(getattr(self, name)))

    # vector ops
    def __add__(self, other): return Vec3(self.x+other.x, self.y+other.y, self.z+other.z)
    def __sub__(self, other): return Vec3(self.x-other.x, self.y-other.y, self.z-other.z)
    def __mul__(self, s):
        s = F(s)
        return Vec3(self.x*s, self.y*s, self.z*s)
    __rmul__ = __mul__
    def __neg__(self): return Vec3(-self.x, -self.y, -self.z)
    def __truediv__(self, s):
        s = F(s)
        return Vec3(self.x/s, self.y/s, self.z/s)
    def dot(self, other): return self.x*other.x + self.y*other.y + self.z*other.z
    def length(self): return np.sqrt(self.dot(self))
    def normalize(self):
        # zero stays zero instead of producing NaNs
        l = self.length()
        if l == 0: return Vec3(ZERO, ZERO, ZERO)
        return self / l


def powf(x, y):
    """Single-precision power: evaluated in double, rounded once to float32."""
    return F(float(x) ** float(y))


LIGHT = Vec3(-5.0, -5.0, 10.0)
ORIGIN = Vec3(0.0, 0.0, 2.0)
KS = Vec3(1.0, 1.0, 1.0)
LIGHT_GRAY = Vec3(0.9, 0.9, 0.9)
DARK_GRAY = Vec3(0.1, 0.1, 0.1)


def quantize(c):
    """
    Map color channels to bytes: clamp to [0, 1], scale by 255.999 and
    round down. Works on a single channel or a whole framebuffer.
    """
    c = np.asarray(c, dtype=np.float32)
    return np.floor(np.clip(c, ZERO, F(1.0)) * BYTE_SCALE).astype(np.uint8)

# -------------------------
# Scene primitives
# -------------------------
@dataclass(frozen=True)
class Ray:
    origin: Vec3
    direction: Vec3  # unit length

    def at(self, t): return self.origin + self.direction * t

@dataclass(frozen=True)
class Sphere:
    center: Vec3
    radius: float
    color: Vec3

    def __post_init__(self):
        object.__setattr__(self, 'radius', F(self.radius))

    def intersect(self, ray: Ray):
        """
        Near-root hit distance along `ray`, or None.
        Only the near root is considered, so a ray starting inside the
        sphere (near root <= 0) is a miss.
        """
        oc = ray.origin - self.center
        b = oc.dot(ray.direction)
        c = oc.dot(oc) - self.radius*self.radius
        disc = b*b - c
        if disc < ZERO:
            return None
        t = -b - np.sqrt(disc)
        return t if t > ZERO else None


def validate_resolution(width, height):
    # screen mapping divides by width-1 and height-1
    if width < 2 or height < 2:
        raise ValueError(f"resolution must be at least 2x2, got {width}x{height}")

def validate_config(width, height, n_spheres, tile=TILE, threads=1):
    validate_resolution(width, height)
    if n_spheres < 2:
        raise ValueError(f"need at least 2 spheres, got {n_spheres}")
    if tile < 1:
        raise ValueError(f"tile size must be positive, got {tile}")
    if threads < 1:
        raise ValueError(f"threads must be positive, got {threads}")

# -------------------------
# Scene builder
# -------------------------
def make_sphere(i, n):
    y = F(-1.0) + F(i) * (F(2.0) / F(n - 1))
    z = F(-2.0) - F(i) * F(0.5)
    t = F(n - i) / F(n)
    return Sphere(center=Vec3(ZERO, y, z), radius=SPHERE_RADIUS, color=Vec3(t, F(0.5), F(1.0) - t))

def build_scene(n=N_SPHERES):
    """Vertical stack of `n` spheres, bottom to top, each one further from the camera than the last."""
    if n < 2:
        raise ValueError(f"need at least 2 spheres, got {n}")
    return tuple(make_sphere(i, n) for i in range(n))

# -------------------------
# Shading
# -------------------------
def phong_shade(P, N, V, light_pos, kd, ks=KS, shininess=SHININESS):
    ambient = kd * AMBIENT
    L = (light_pos - P).normalize()
    n_dot_l = N.dot(L)
    diffuse = kd * max(n_dot_l, ZERO)
    R = (N * (F(2.0) * n_dot_l) - L).normalize()
    specular = ks * powf(max(R.dot(V), ZERO), shininess)
    # left unclamped, quantize() handles overflow
    return ambient + diffuse + specular

def background(u, v):
    ix = int(np.floor((F(u) + F(1.0)) * F(5.0)))
    iy = int(np.floor((F(v) + F(1.0)) * F(5.0)))
    return LIGHT_GRAY if (ix + iy) % 2 == 0 else DARK_GRAY

# -------------------------
# Tracing
# -------------------------
def screen_coords(x, y, width, height):
    u = F(-1.0) + F(2.0) * F(x) / F(width - 1)
    v = F(-1.0) + F(2.0) * F(y) / F(height - 1)
    return u, v

def camera_ray(u, v):
    return Ray(ORIGIN, (Vec3(u, v, ZERO) - ORIGIN).normalize())

def closest_hit(ray, spheres):
    # strict < keeps the first sphere on ties
    nearest_t = math.inf
    hit_obj = None
    for s in spheres:
        t = s.intersect(ray)
        if t is not None and t < nearest_t:
            nearest_t = t
            hit_obj = s
    return hit_obj, nearest_t

def trace(ray, spheres, u, v):
    hit_obj, t = closest_hit(ray, spheres)
    if hit_obj is None:
        return background(u, v)
    P = ray.at(t)
    N = (P - hit_obj.center).normalize()
    V = (ray.origin - P).normalize()
    return phong_shade(P, N, V, LIGHT, hit_obj.color)

def pixel_color(x, y, spheres, width, height):
    u, v = screen_coords(x, y, width, height)
    return trace(camera_ray(u, v), spheres, u, v)

# -------------------------
# Renderer (sequential)
# -------------------------
def render_sequential(spheres, width, height):
    validate_resolution(width, height)
    buf = np.zeros((height, width, 3), dtype=np.float32)
    for y in range(height - 1, -1, -1):
        for x in range(width):
            c = pixel_color(x, y, spheres, width, height)
            buf[y, x] = (c.x, c.y, c.z)
    return buf

# -------------------------
# Tile worker for parallel
# -------------------------
def render_tile_worker(args):
    # Runs in a worker process; one call per tile.
    (x0, y0, tile, spheres, width, height) = args
    block = np.zeros((min(tile, height - y0), min(tile, width - x0), 3), dtype=np.float32)
    for j in range(tile):
        for i in range(tile):
            x, y = x0 + i, y0 + j
            if x >= width or y >= height:
                continue
            c = pixel_color(x, y, spheres, width, height)
            block[j, i] = (c.x, c.y, c.z)
    return (x0, y0, block)

def make_grid(width, height, tile):
    blocks_x = (width + tile - 1) // tile
    blocks_y = (height + tile - 1) // tile
    return [(bx * tile, by * tile) for by in range(blocks_y) for bx in range(blocks_x)]

# -------------------------
# Renderer (parallel)
# -------------------------
def render_parallel(spheres, width, height, threads=4, tile=TILE):
    validate_resolution(width, height)
    if tile < 1 or threads < 1:
        raise ValueError(f"tile and threads must be positive, got tile={tile} threads={threads}")
    buf = np.zeros((height, width, 3), dtype=np.float32)
    with ProcessPoolExecutor(max_workers=threads) as exe:
        futures = [exe.submit(render_tile_worker, (x0, y0, tile, spheres, width, height))
                   for (x0, y0) in make_grid(width, height, tile)]
        for f in as_completed(futures):
            x0, y0, block = f.result()
            h, w = block.shape[:2]
            buf[y0:y0+h, x0:x0+w, :] = block
    return buf

RENDERERS = {
    'sequential': render_sequential,
    'parallel': render_parallel,
}

def render(spheres, width, height, mode='sequential', **options):
    """Render with the named strategy; extra options go to the strategy (threads, tile)."""
    try:
        renderer = RENDERERS[mode]
    except KeyError:
        raise ValueError(f"unknown render mode {mode!r}") from None
    return renderer(spheres, width, height, **options)

# -------------------------
# CPU monitoring utilities
# -------------------------
def start_cpu_monitor(interval=0.1):
    """
    Start a background thread sampling psutil.cpu_percent(percpu=True).
    Returns (cpu_samples_list, stop_function).
    """
    cpu_samples = []
    stop_event = threading.Event()

    def monitor():
        # first call only establishes the baseline
        psutil.cpu_percent(interval=None, percpu=True)
        while not stop_event.is_set():
            cpu_samples.append(psutil.cpu_percent(interval=None, percpu=True))
            stop_event.wait(interval)

    t = threading.Thread(target=monitor, daemon=True)
    t.start()

    def stop():
        stop_event.set()
        t.join(timeout=1.0)

    return cpu_samples, stop

def summarize_cpu(cpu_samples):
    """(avg, max) over per-core averages, in percent."""
    if not cpu_samples:
        per_core_avg = list(psutil.cpu_percent(interval=None, percpu=True))
    else:
        per_core_avg = [sum(core)/len(core) for core in zip(*cpu_samples)]
    if not per_core_avg:
        return 0.0, 0.0
    return sum(per_core_avg)/len(per_core_avg), max(per_core_avg)

# -------------------------
# Output
# -------------------------
def to_bytes(buf):
    """Quantize a framebuffer to uint8, flipped so the top image row comes first."""
    return quantize(buf)[::-1]

def write_ppm(buf, stream):
    height, width = buf.shape[:2]
    pixels = to_bytes(buf)
    stream.write(f"P3\n{width} {height}\n255\n")
    stream.write("".join(f"{r} {g} {b}\n" for r, g, b in pixels.reshape(-1, 3).tolist()))

def read_ppm(path):
    with open(path, 'r') as f:
        tokens = f.read().split()
    if not tokens or tokens[0] != 'P3':
        raise ValueError(f"{path}: not a plain PPM (P3) file")
    width, height, maxval = int(tokens[1]), int(tokens[2]), int(tokens[3])
    if maxval != 255:
        raise ValueError(f"{path}: unsupported max value {maxval}")
    values = np.array(tokens[4:], dtype=np.int64)
    if values.size != width * height * 3:
        raise ValueError(f"{path}: expected {width*height} pixels, found {values.size / 3:g}")
    if values.min() < 0 or values.max() > 255:
        raise ValueError(f"{path}: channel value out of range")
    return values.astype(np.uint8).reshape(height, width, 3)

def save_png(pixels, path):
    img = Image.fromarray(np.ascontiguousarray(pixels))
    os.makedirs(os.path.dirname(path) or '.', exist_ok=True)
    img.save(path)

# -------------------------
# CLI
# -------------------------
def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Phong-shaded sphere stack, written as P3 PPM")
    p.add_argument('--width', type=int, default=WIDTH)
    p.add_argument('--height', type=int, default=HEIGHT)
    p.add_argument('--spheres', type=int, default=N_SPHERES)
    p.add_argument('--threads', type=int, default=1)
    p.add_argument('--tile', type=int, default=TILE)
    p.add_argument('--outfile', type=str, default=None, help='PPM path (default: stdout)')
    p.add_argument('--png', type=str, default=None, help='also save a PNG preview here')
    p.add_argument('--mode', choices=['auto','sequential','parallel'], default='auto', help='auto picks sequential if threads==1')
    args = p.parse_args(argv)
    try:
        validate_config(args.width, args.height, args.spheres, args.tile, args.threads)
    except ValueError as e:
        p.error(str(e))
    return args

def main(argv=None):
    args = parse_args(argv)
    spheres = build_scene(args.spheres)

    mode = args.mode
    if mode == 'auto':
        mode = 'sequential' if args.threads == 1 else 'parallel'
    options = {} if mode == 'sequential' else {'threads': args.threads, 'tile': args.tile}

    cpu_samples, stop_cpu = start_cpu_monitor(interval=0.1)
    t0 = time.perf_counter()
    buf = render(spheres, args.width, args.height, mode, **options)
    ms = (time.perf_counter() - t0) * 1000.0
    stop_cpu()
    cpu_avg, cpu_max = summarize_cpu(cpu_samples)

    if args.outfile:
        os.makedirs(os.path.dirname(args.outfile) or '.', exist_ok=True)
        with open(args.outfile, 'w') as f:
            write_ppm(buf, f)
    else:
        write_ppm(buf, sys.stdout)
        sys.stdout.flush()
    if args.png:
        save_png(to_bytes(buf), args.png)

    print(f"MODE: {mode}", file=sys.stderr)
    print(f"RESOLUTION: {args.width}x{args.height}", file=sys.stderr)
    print(f"SPHERES: {args.spheres}", file=sys.stderr)
    print(f"RENDER_TIME_MS: {ms:.3f}", file=sys.stderr)
    print(f"CPU_AVG: {cpu_avg:.2f}", file=sys.stderr)
    print(f"CPU_MAX: {cpu_max:.2f}", file=sys.stderr)
    return 0

if __name__ == '__main__':
    sys.exit(main())
