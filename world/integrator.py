"""Projective TSDF fusion of depth frames into a VoxelGrid."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Literal, Optional

import numpy as np

from imaging.depth_filter import bilateral_filter
from world.camera import Camera
from world.voxel_grid import VoxelGrid

logger = logging.getLogger(__name__)

WeightingName = Literal["constant", "inverse_square_depth"]


@dataclass
class IntegrationConfig:
    obs_weight: float = 1.0
    weight_cap: float = 100.0
    weighting: WeightingName = "constant"
    # Depth at which inverse_square_depth weighting stops boosting closer returns.
    reference_depth: float = 1.0
    workers: int = 1
    # Bilateral pre-filter on the scaled depth frame; radius 0 disables it.
    bilateral_radius: int = 0
    bilateral_sigma_space: float = 1.5
    bilateral_sigma_depth: float = 30.0


def make_weighting(cfg: IntegrationConfig) -> Callable[[np.ndarray], np.ndarray]:
    base = float(cfg.obs_weight)
    if base <= 0.0:
        raise ValueError("obs_weight must be > 0")

    if cfg.weighting == "constant":
        return lambda depth: np.full(depth.shape, base, dtype=np.float64)

    if cfg.weighting == "inverse_square_depth":
        ref = float(cfg.reference_depth)
        if ref <= 0.0:
            raise ValueError("reference_depth must be > 0")

        def _inv_sq(depth: np.ndarray) -> np.ndarray:
            ratio = ref / np.maximum(depth, 1e-9)
            return base * np.minimum(1.0, ratio * ratio)

        return _inv_sq

    raise ValueError(f"unknown weighting: {cfg.weighting}")


def as_depth_image(depth, width: Optional[int] = None, height: Optional[int] = None) -> np.ndarray:
    """Accept (H, W) arrays or flat row-major buffers with explicit width/height."""
    arr = np.asarray(depth)
    if arr.ndim == 1:
        if width is None or height is None:
            raise ValueError("flat depth buffer needs width and height")
        if arr.size != int(width) * int(height):
            raise ValueError(f"depth buffer has {arr.size} samples, expected {int(width) * int(height)}")
        arr = arr.reshape(int(height), int(width))
    if arr.ndim != 2:
        raise ValueError(f"depth frame must be 2-D, got shape {arr.shape}")
    if width is not None and int(width) != arr.shape[1]:
        raise ValueError(f"depth width {arr.shape[1]} != {width}")
    if height is not None and int(height) != arr.shape[0]:
        raise ValueError(f"depth height {arr.shape[0]} != {height}")
    return arr


class TSDFIntegrator:
    def __init__(self, config: Optional[IntegrationConfig] = None) -> None:
        self.config = config or IntegrationConfig()
        if float(self.config.weight_cap) <= 0.0:
            raise ValueError("weight_cap must be > 0")
        self._weighting = make_weighting(self.config)

    def integrate(self, grid: VoxelGrid, depth: np.ndarray, camera: Camera, *, depth_scale: float = 1.0) -> int:
        """
        Fuse one depth frame (H, W) into the grid. Depth samples are multiplied
        by depth_scale to reach world units; zero or non-finite samples are
        "no return". Returns the number of voxels updated.
        """
        depth_img = np.asarray(depth, dtype=np.float64) * float(depth_scale)
        if int(self.config.bilateral_radius) > 0:
            depth_img = bilateral_filter(
                depth_img,
                radius=int(self.config.bilateral_radius),
                sigma_space=float(self.config.bilateral_sigma_space),
                sigma_depth=float(self.config.bilateral_sigma_depth),
            )
        nz = grid.dims[2]
        workers = max(1, int(self.config.workers))

        if workers == 1 or nz == 1:
            return int(sum(self._integrate_slab(grid, depth_img, camera, iz) for iz in range(nz)))

        # Slabs touch disjoint voxels, so the pool join is the only barrier needed.
        with ThreadPoolExecutor(max_workers=workers) as pool:
            counts = list(pool.map(lambda iz: self._integrate_slab(grid, depth_img, camera, iz), range(nz)))
        return int(sum(counts))

    def _integrate_slab(self, grid: VoxelGrid, depth_img: np.ndarray, camera: Camera, iz: int) -> int:
        h, w = depth_img.shape
        trunc = grid.truncation
        centers = grid.slab_centers(iz).reshape(-1, 3)

        u, v, z_cam = camera.project(centers)
        in_front = z_cam > 0.0
        px = np.full(u.shape, -1, dtype=np.int64)
        py = np.full(v.shape, -1, dtype=np.int64)
        px[in_front] = np.floor(u[in_front] + 0.5).astype(np.int64)
        py[in_front] = np.floor(v[in_front] + 0.5).astype(np.int64)
        ok = in_front & (px >= 0) & (px < w) & (py >= 0) & (py < h)
        if not np.any(ok):
            return 0

        measured = np.zeros(u.shape, dtype=np.float64)
        measured[ok] = depth_img[py[ok], px[ok]]
        ok &= np.isfinite(measured) & (measured > 0.0)

        sdf = measured - z_cam
        ok &= sdf >= -trunc
        if not np.any(ok):
            return 0

        sdf = np.clip(sdf[ok], -trunc, trunc)
        obs_w = self._weighting(measured[ok])

        slab_d = grid.distance[:, :, iz].reshape(-1)
        slab_w = grid.weight[:, :, iz].reshape(-1)
        old_d = slab_d[ok].astype(np.float64)
        old_w = slab_w[ok].astype(np.float64)

        total = old_w + obs_w
        slab_d[ok] = ((old_d * old_w + sdf * obs_w) / total).astype(np.float32)
        slab_w[ok] = np.minimum(total, float(self.config.weight_cap)).astype(np.float32)

        nx, ny, _ = grid.dims
        grid.distance[:, :, iz] = slab_d.reshape(nx, ny)
        grid.weight[:, :, iz] = slab_w.reshape(nx, ny)
        return int(np.count_nonzero(ok))
