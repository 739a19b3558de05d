from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from scipy.ndimage import map_coordinates

from world.errors import VolumeConstructionError, VoxelBoundsError


@dataclass(frozen=True)
class Sample:
    distance: float
    weight: float

    @property
    def observed(self) -> bool:
        return self.weight > 0.0


class VoxelGrid:
    """
    Dense TSDF storage.

    - distance[ix, iy, iz]: truncated projective signed distance (world units)
    - weight[ix, iy, iz]: fusion confidence, 0 == unobserved
    Voxel (ix, iy, iz) is centred at origin + (i + 0.5) * voxel_size.
    """

    def __init__(
        self,
        dims: tuple[int, int, int],
        extent: tuple[float, float, float],
        *,
        truncation: float,
        origin: tuple[float, float, float] = (0.0, 0.0, 0.0),
    ) -> None:
        dims_i = tuple(int(d) for d in dims)
        extent_f = tuple(float(e) for e in extent)
        if len(dims_i) != 3 or any(d <= 0 for d in dims_i):
            raise VolumeConstructionError(f"grid dimensions must be positive, got {dims}")
        if len(extent_f) != 3 or any(not np.isfinite(e) or e <= 0.0 for e in extent_f):
            raise VolumeConstructionError(f"physical extent must be positive, got {extent}")
        if not np.isfinite(truncation) or float(truncation) <= 0.0:
            raise VolumeConstructionError(f"truncation must be positive, got {truncation}")

        self.dims = dims_i
        self.extent = np.asarray(extent_f, dtype=np.float64)
        self.origin = np.asarray(origin, dtype=np.float64).reshape(3)
        self.voxel_size = self.extent / np.asarray(dims_i, dtype=np.float64)
        # float32-representable, so stored distances never round past it
        self.truncation = float(np.float32(truncation))

        self.distance = np.full(dims_i, self.truncation, dtype=np.float32)
        self.weight = np.zeros(dims_i, dtype=np.float32)

    @property
    def box_min(self) -> np.ndarray:
        return self.origin.copy()

    @property
    def box_max(self) -> np.ndarray:
        return self.origin + self.extent

    @property
    def num_voxels(self) -> int:
        return int(self.dims[0] * self.dims[1] * self.dims[2])

    def reset(self) -> None:
        self.distance.fill(self.truncation)
        self.weight.fill(0.0)

    # --- index mapping ------------------------------------------------------

    def in_bounds(self, ix: int, iy: int, iz: int) -> bool:
        nx, ny, nz = self.dims
        return 0 <= ix < nx and 0 <= iy < ny and 0 <= iz < nz

    def _checked(self, ix, iy, iz) -> tuple[int, int, int]:
        idx = (int(ix), int(iy), int(iz))
        if not self.in_bounds(*idx):
            raise VoxelBoundsError(idx, self.dims)
        return idx

    def value_at(self, ix: int, iy: int, iz: int) -> Sample:
        i = self._checked(ix, iy, iz)
        return Sample(distance=float(self.distance[i]), weight=float(self.weight[i]))

    def set(self, ix: int, iy: int, iz: int, sample: Sample) -> None:
        i = self._checked(ix, iy, iz)
        if float(sample.weight) < 0.0:
            raise ValueError("sample weight must be >= 0")
        d = float(np.clip(float(sample.distance), -self.truncation, self.truncation))
        self.distance[i] = np.float32(d)
        self.weight[i] = np.float32(sample.weight)

    def index_to_world(self, ix: int, iy: int, iz: int) -> np.ndarray:
        i = self._checked(ix, iy, iz)
        return self.origin + (np.asarray(i, dtype=np.float64) + 0.5) * self.voxel_size

    def world_to_index(self, point) -> tuple[int, int, int]:
        p = np.asarray(point, dtype=np.float64).reshape(3)
        idx = np.floor((p - self.origin) / self.voxel_size).astype(np.int64)
        return self._checked(idx[0], idx[1], idx[2])

    def contains_point(self, point) -> bool:
        p = np.asarray(point, dtype=np.float64).reshape(3)
        return bool(np.all(p >= self.box_min) and np.all(p < self.box_max))

    def slab_centers(self, iz: int) -> np.ndarray:
        """World-space centres of the z-slab iz, shape (nx, ny, 3)."""
        nx, ny, _ = self.dims
        xs = self.origin[0] + (np.arange(nx, dtype=np.float64) + 0.5) * self.voxel_size[0]
        ys = self.origin[1] + (np.arange(ny, dtype=np.float64) + 0.5) * self.voxel_size[1]
        z = self.origin[2] + (float(iz) + 0.5) * self.voxel_size[2]
        gx, gy = np.meshgrid(xs, ys, indexing="ij")
        return np.stack([gx, gy, np.full_like(gx, z)], axis=-1)

    # --- sampling -----------------------------------------------------------

    def interpolate(self, points: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """
        Trilinear distance at world points (N, 3).

        Returns (values, valid). A point is valid only if all 8 surrounding
        voxel centres exist and are observed; invalid values are NaN.
        """
        pts = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        n = pts.shape[0]
        values = np.full(n, np.nan, dtype=np.float64)
        if n == 0:
            return values, np.zeros(0, dtype=bool)

        dims = np.asarray(self.dims, dtype=np.int64)
        g = (pts - self.origin) / self.voxel_size - 0.5
        valid = np.all(np.isfinite(g), axis=1) & np.all(g >= 0.0, axis=1) & np.all(g <= (dims - 1), axis=1)

        g_safe = np.where(np.isfinite(g), g, 0.0)
        i0 = np.clip(np.floor(g_safe).astype(np.int64), 0, np.maximum(dims - 2, 0))
        i1 = np.minimum(i0 + 1, dims - 1)
        w = self.weight
        for cx in (i0[:, 0], i1[:, 0]):
            for cy in (i0[:, 1], i1[:, 1]):
                for cz in (i0[:, 2], i1[:, 2]):
                    valid &= w[cx, cy, cz] > 0.0

        if np.any(valid):
            coords = g[valid].T
            values[valid] = map_coordinates(self.distance, coords, order=1, mode="nearest", output=np.float64)
        return values, valid
