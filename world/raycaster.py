"""Ray marching of the TSDF into per-pixel vertex and normal maps."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable, Literal, NamedTuple, Optional, Protocol

import numpy as np

from world.camera import Camera
from world.voxel_grid import VoxelGrid

StrategyName = Literal["fixed", "adaptive"]

# Step policy: (sampled distances, observed mask) -> step lengths
StepPolicy = Callable[[np.ndarray, np.ndarray], np.ndarray]


class RaycastResult(NamedTuple):
    """(H, W, 3) arrays. NaN in every component marks "no surface" / "no normal"."""

    vertices: np.ndarray
    normals: np.ndarray

    @property
    def vertex_mask(self) -> np.ndarray:
        return np.all(np.isfinite(self.vertices), axis=-1)

    @property
    def normal_mask(self) -> np.ndarray:
        return np.all(np.isfinite(self.normals), axis=-1)


class Raycaster(Protocol):
    def raycast(self, grid: VoxelGrid, camera: Camera, width: int, height: int) -> RaycastResult:
        ...


@dataclass
class RaycastConfig:
    strategy: StrategyName = "fixed"
    # Base step as a fraction of the smallest voxel edge.
    step_factor: float = 0.5
    min_depth: float = 0.0
    max_depth: Optional[float] = None
    # Adaptive march: step = clip(distance * adaptive_scale, base step, truncation * adaptive_scale).
    adaptive_scale: float = 0.8
    gradient_eps: float = 1e-6


def ray_box_intersection(
    origin: np.ndarray,
    dirs: np.ndarray,
    box_min: np.ndarray,
    box_max: np.ndarray,
) -> tuple[np.ndarray, np.ndarray]:
    """Slab test. Returns (t_near, t_far); the ray misses the box where t_near > t_far."""
    o = np.asarray(origin, dtype=np.float64).reshape(1, 3)
    d = np.asarray(dirs, dtype=np.float64).reshape(-1, 3)
    lo = np.asarray(box_min, dtype=np.float64).reshape(1, 3)
    hi = np.asarray(box_max, dtype=np.float64).reshape(1, 3)

    parallel = np.abs(d) < 1e-12
    safe = np.where(parallel, 1.0, d)
    t1 = (lo - o) / safe
    t2 = (hi - o) / safe
    tmin = np.minimum(t1, t2)
    tmax = np.maximum(t1, t2)

    inside_slab = (o >= lo) & (o <= hi)
    tmin = np.where(parallel, np.where(inside_slab, -np.inf, np.inf), tmin)
    tmax = np.where(parallel, np.where(inside_slab, np.inf, -np.inf), tmax)

    t_near = np.max(tmin, axis=1)
    t_far = np.min(tmax, axis=1)
    return t_near, t_far


def _march(
    grid: VoxelGrid,
    camera: Camera,
    width: int,
    height: int,
    cfg: RaycastConfig,
    step_policy: StepPolicy,
    min_step: float,
) -> RaycastResult:
    w = int(width)
    h = int(height)
    if w <= 0 or h <= 0:
        raise ValueError("raycast size must be positive")

    dirs = camera.pixel_rays(w, h).reshape(-1, 3)
    origin = camera.position
    n = dirs.shape[0]

    t_near, t_far = ray_box_intersection(origin, dirs, grid.box_min, grid.box_max)
    t_start = np.maximum(t_near, max(0.0, float(cfg.min_depth)))
    t_end = t_far if cfg.max_depth is None else np.minimum(t_far, float(cfg.max_depth))

    # Rays that never enter the box are settled here, before any sampling.
    active = np.isfinite(t_start) & np.isfinite(t_end) & (t_start <= t_end)

    t = np.where(active, t_start, 0.0)
    prev_t = t.copy()
    prev_val = np.full(n, np.nan, dtype=np.float64)
    prev_valid = np.zeros(n, dtype=bool)
    hit_t = np.full(n, np.nan, dtype=np.float64)

    span = float(np.max(t_end[active] - t_start[active])) if np.any(active) else 0.0
    max_iter = int(math.ceil(span / min_step)) + 2

    for _ in range(max_iter):
        idx = np.flatnonzero(active)
        if idx.size == 0:
            break
        pts = origin + dirs[idx] * t[idx, None]
        vals, ok = grid.interpolate(pts)

        crossing = ok & prev_valid[idx] & (prev_val[idx] > 0.0) & (vals <= 0.0)
        if np.any(crossing):
            ci = idx[crossing]
            pv = prev_val[ci]
            cv = vals[crossing]
            hit_t[ci] = prev_t[ci] + (t[ci] - prev_t[ci]) * (pv / (pv - cv))
            active[ci] = False

        rest = ~crossing
        ri = idx[rest]
        prev_val[ri] = vals[rest]
        prev_valid[ri] = ok[rest]
        prev_t[ri] = t[ri]

        t_cur = t[ri]
        t_next = t_cur + step_policy(vals[rest], ok[rest])
        # Always take one last sample exactly at the exit point.
        t_next = np.where((t_cur < t_end[ri]) & (t_next > t_end[ri]), t_end[ri], t_next)
        t[ri] = t_next
        active[ri] = t_next <= t_end[ri]

    vertices = np.full((n, 3), np.nan, dtype=np.float64)
    normals = np.full((n, 3), np.nan, dtype=np.float64)
    hit = np.isfinite(hit_t)
    if np.any(hit):
        pts = origin + dirs[hit] * hit_t[hit, None]
        vertices[hit] = pts
        normals[hit] = surface_normals(grid, pts, eps=float(cfg.gradient_eps))

    return RaycastResult(vertices.reshape(h, w, 3), normals.reshape(h, w, 3))


def surface_normals(grid: VoxelGrid, points: np.ndarray, *, eps: float = 1e-6) -> np.ndarray:
    """
    Normalised distance-field gradient by central differences at one voxel
    offset per axis. The gradient points toward free space (increasing
    distance). Rows with an unobserved sample or a near-zero gradient are NaN.
    """
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    grad = np.zeros_like(pts)
    ok = np.ones(pts.shape[0], dtype=bool)
    for axis in range(3):
        off = np.zeros(3, dtype=np.float64)
        off[axis] = float(grid.voxel_size[axis])
        vp, okp = grid.interpolate(pts + off)
        vm, okm = grid.interpolate(pts - off)
        ok &= okp & okm
        grad[:, axis] = (vp - vm) / (2.0 * off[axis])

    out = np.full_like(pts, np.nan)
    mag = np.linalg.norm(np.where(ok[:, None], grad, 0.0), axis=1)
    good = ok & (mag > float(eps))
    out[good] = grad[good] / mag[good, None]
    return out


@dataclass
class FixedStepRaycaster:
    config: RaycastConfig

    def raycast(self, grid: VoxelGrid, camera: Camera, width: int, height: int) -> RaycastResult:
        step = float(self.config.step_factor) * float(np.min(grid.voxel_size))
        if step <= 0.0:
            raise ValueError("step_factor must be > 0")

        def _fixed(vals: np.ndarray, ok: np.ndarray) -> np.ndarray:
            return np.full(vals.shape, step, dtype=np.float64)

        return _march(grid, camera, width, height, self.config, _fixed, step)


@dataclass
class AdaptiveStepRaycaster:
    config: RaycastConfig

    def raycast(self, grid: VoxelGrid, camera: Camera, width: int, height: int) -> RaycastResult:
        step = float(self.config.step_factor) * float(np.min(grid.voxel_size))
        if step <= 0.0:
            raise ValueError("step_factor must be > 0")
        scale = float(self.config.adaptive_scale)
        max_step = max(step, grid.truncation * scale)

        def _adaptive(vals: np.ndarray, ok: np.ndarray) -> np.ndarray:
            out = np.full(vals.shape, step, dtype=np.float64)
            far = ok & (vals > 0.0)
            out[far] = np.clip(vals[far] * scale, step, max_step)
            return out

        return _march(grid, camera, width, height, self.config, _adaptive, step)


def make_raycaster(config: Optional[RaycastConfig] = None) -> Raycaster:
    cfg = config or RaycastConfig()
    if cfg.strategy == "fixed":
        return FixedStepRaycaster(cfg)
    if cfg.strategy == "adaptive":
        return AdaptiveStepRaycaster(cfg)
    raise ValueError(f"unknown raycast strategy: {cfg.strategy}")
