from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import Any, Optional

import numpy as np

from observability import metrics
from world.camera import Camera
from world.errors import VolumeConstructionError, VolumePersistenceError
from world.integrator import IntegrationConfig, TSDFIntegrator, as_depth_image
from world.quality_metrics import compute_quality_metrics
from world.raycaster import RaycastConfig, RaycastResult, Raycaster, make_raycaster
from world.voxel_grid import Sample, VoxelGrid

logger = logging.getLogger(__name__)

FILE_MAGIC = b"TSDFVOL\x00"
FILE_VERSION = 1

# Little-endian header; samples follow as float32 (distance, weight) pairs,
# z-major, then y, then x (x varies fastest).
HEADER_DTYPE = np.dtype(
    [
        ("magic", "S8"),
        ("version", "<u4"),
        ("dims", "<i4", (3,)),
        ("extent", "<f8", (3,)),
        ("origin", "<f8", (3,)),
        ("truncation", "<f8"),
    ]
)
SAMPLE_DTYPE = np.dtype("<f4")


class TSDFVolume:
    """
    Voxel grid + integrator + raycaster behind one lock.

    Build it with construct_volume() or load_from_file(); integrate() and
    raycast() are serialised so a raycast never observes a half-fused frame.
    """

    def __init__(
        self,
        grid: VoxelGrid,
        *,
        integrator: Optional[TSDFIntegrator] = None,
        raycaster: Optional[Raycaster] = None,
    ) -> None:
        self.grid = grid
        self.integrator = integrator or TSDFIntegrator()
        self.raycaster = raycaster or make_raycaster()
        self.frames_integrated = 0
        self._lock = threading.RLock()

    @property
    def dims(self) -> tuple[int, int, int]:
        return self.grid.dims

    @property
    def voxel_size(self) -> np.ndarray:
        return self.grid.voxel_size.copy()

    @property
    def truncation(self) -> float:
        return self.grid.truncation

    # --- direct grid access ---------------------------------------------------

    def value_at(self, ix: int, iy: int, iz: int) -> Sample:
        with self._lock:
            return self.grid.value_at(ix, iy, iz)

    def set(self, ix: int, iy: int, iz: int, sample: Sample) -> None:
        with self._lock:
            self.grid.set(ix, iy, iz, sample)

    def world_to_index(self, point) -> tuple[int, int, int]:
        return self.grid.world_to_index(point)

    def index_to_world(self, ix: int, iy: int, iz: int) -> np.ndarray:
        return self.grid.index_to_world(ix, iy, iz)

    # --- fusion / rendering ---------------------------------------------------

    def integrate(
        self,
        depth,
        camera: Camera,
        *,
        width: Optional[int] = None,
        height: Optional[int] = None,
        depth_scale: float = 1.0,
    ) -> int:
        depth_img = as_depth_image(depth, width, height)
        t0 = time.perf_counter()
        with self._lock:
            updated = self.integrator.integrate(self.grid, depth_img, camera, depth_scale=depth_scale)
            self.frames_integrated += 1
        dt = max(0.0, float(time.perf_counter() - t0))
        metrics.record_integrate(dt, updated)
        logger.debug("Integrated frame %d: %d voxels updated in %.1fms", self.frames_integrated, updated, dt * 1000.0)
        return updated

    def raycast(self, camera: Camera, width: Optional[int] = None, height: Optional[int] = None) -> RaycastResult:
        w = int(camera.intrinsics.width if width is None else width)
        h = int(camera.intrinsics.height if height is None else height)
        t0 = time.perf_counter()
        with self._lock:
            result = self.raycaster.raycast(self.grid, camera, w, h)
        dt = max(0.0, float(time.perf_counter() - t0))
        hits = int(np.count_nonzero(result.vertex_mask))
        metrics.record_raycast(dt, hits, w * h)
        logger.debug("Raycast %dx%d: %d hits in %.1fms", w, h, hits, dt * 1000.0)
        return result

    def interpolate(self, points) -> tuple[np.ndarray, np.ndarray]:
        with self._lock:
            return self.grid.interpolate(points)

    def reset(self) -> None:
        with self._lock:
            self.grid.reset()
            self.frames_integrated = 0

    def stats(self) -> dict[str, Any]:
        with self._lock:
            out = compute_quality_metrics(self.grid, weight_cap=float(self.integrator.config.weight_cap)).to_dict()
        out["frames_integrated"] = int(self.frames_integrated)
        out["dims"] = [int(d) for d in self.grid.dims]
        out["num_voxels"] = self.grid.num_voxels
        out["extent"] = [float(e) for e in self.grid.extent]
        out["voxel_size"] = [float(v) for v in self.grid.voxel_size]
        out["truncation"] = float(self.grid.truncation)
        return out

    # --- persistence ------------------------------------------------------------

    def to_bytes(self) -> bytes:
        with self._lock:
            g = self.grid
            header = np.zeros(1, dtype=HEADER_DTYPE)
            header["magic"] = FILE_MAGIC
            header["version"] = FILE_VERSION
            header["dims"] = g.dims
            header["extent"] = g.extent
            header["origin"] = g.origin
            header["truncation"] = g.truncation
            # (nx, ny, nz) -> (nz, ny, nx, 2) so x varies fastest on disk.
            samples = np.stack([g.distance.transpose(2, 1, 0), g.weight.transpose(2, 1, 0)], axis=-1)
            return header.tobytes() + np.ascontiguousarray(samples, dtype=SAMPLE_DTYPE).tobytes()

    def save_to_file(self, path: str | Path) -> Path:
        p = Path(path)
        payload = self.to_bytes()
        tmp = p.with_name(p.name + ".tmp")
        try:
            p.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_bytes(payload)
            tmp.replace(p)
        except OSError as exc:
            if tmp.exists():
                tmp.unlink()
            raise VolumePersistenceError(f"cannot write volume to {p}: {exc}") from exc
        logger.info("Saved TSDF volume %s (%d bytes) to %s", self.grid.dims, len(payload), p)
        return p

    @classmethod
    def from_bytes(
        cls,
        raw: bytes,
        *,
        integration: Optional[IntegrationConfig] = None,
        raycast: Optional[RaycastConfig] = None,
    ) -> "TSDFVolume":
        if len(raw) < HEADER_DTYPE.itemsize:
            raise VolumePersistenceError("volume file truncated: missing header")
        header = np.frombuffer(raw, dtype=HEADER_DTYPE, count=1)[0]
        if bytes(header["magic"]) != FILE_MAGIC.rstrip(b"\x00"):
            raise VolumePersistenceError("not a TSDF volume file")
        version = int(header["version"])
        if version != FILE_VERSION:
            raise VolumePersistenceError(f"unsupported volume file version {version}")

        nx, ny, nz = (int(d) for d in header["dims"])
        if min(nx, ny, nz) <= 0:
            raise VolumePersistenceError(f"corrupt volume header: dims {(nx, ny, nz)}")
        # Body size is checked before the grid is allocated.
        expected = nx * ny * nz * 2
        if (len(raw) - HEADER_DTYPE.itemsize) % SAMPLE_DTYPE.itemsize != 0:
            raise VolumePersistenceError("volume file truncated: partial sample")
        n_values = (len(raw) - HEADER_DTYPE.itemsize) // SAMPLE_DTYPE.itemsize
        if n_values != expected:
            raise VolumePersistenceError(f"volume file has {n_values} sample values, expected {expected}")

        wx, wy, wz = (float(e) for e in header["extent"])
        try:
            volume, _, _, _ = construct_volume(
                nx,
                ny,
                nz,
                wx,
                wy,
                wz,
                truncation=float(header["truncation"]),
                origin=tuple(float(o) for o in header["origin"]),
                integration=integration,
                raycast=raycast,
            )
        except VolumeConstructionError as exc:
            raise VolumePersistenceError(f"corrupt volume header: {exc}") from exc

        body = np.frombuffer(raw, dtype=SAMPLE_DTYPE, offset=HEADER_DTYPE.itemsize)
        samples = body.reshape(nz, ny, nx, 2)
        volume.grid.distance[...] = samples[..., 0].transpose(2, 1, 0)
        volume.grid.weight[...] = samples[..., 1].transpose(2, 1, 0)
        return volume


def construct_volume(
    nx: int,
    ny: int,
    nz: int,
    wx: float,
    wy: float,
    wz: float,
    *,
    truncation: Optional[float] = None,
    origin: tuple[float, float, float] = (0.0, 0.0, 0.0),
    integration: Optional[IntegrationConfig] = None,
    raycast: Optional[RaycastConfig] = None,
) -> tuple[TSDFVolume, float, float, float]:
    """
    Build an empty volume of nx*ny*nz voxels spanning wx*wy*wz world units
    with its minimum corner at origin. Returns the volume and voxel
    width/height/depth. truncation defaults to three times the largest voxel edge.
    """
    dims = (nx, ny, nz)
    extent = (wx, wy, wz)
    for name, vals in (("dimensions", dims), ("extents", extent)):
        for v in vals:
            if not isinstance(v, (int, float, np.integer, np.floating)) or not np.isfinite(v) or v <= 0:
                raise VolumeConstructionError(f"volume {name} must be positive, got {vals}")
    if any(float(d) != int(d) for d in dims):
        raise VolumeConstructionError(f"volume dimensions must be integers, got {dims}")

    voxel = np.asarray(extent, dtype=np.float64) / np.asarray(dims, dtype=np.float64)
    trunc = 3.0 * float(np.max(voxel)) if truncation is None else float(truncation)
    grid = VoxelGrid((int(nx), int(ny), int(nz)), extent, truncation=trunc, origin=origin)
    volume = TSDFVolume(
        grid,
        integrator=TSDFIntegrator(integration),
        raycaster=make_raycaster(raycast),
    )
    logger.info("Constructed TSDF volume dims=%s extent=%s truncation=%.4f", grid.dims, tuple(extent), grid.truncation)
    return volume, float(voxel[0]), float(voxel[1]), float(voxel[2])


def load_from_file(
    path: str | Path,
    *,
    integration: Optional[IntegrationConfig] = None,
    raycast: Optional[RaycastConfig] = None,
) -> TSDFVolume:
    p = Path(path)
    try:
        raw = p.read_bytes()
    except OSError as exc:
        raise VolumePersistenceError(f"cannot read volume from {p}: {exc}") from exc
    volume = TSDFVolume.from_bytes(raw, integration=integration, raycast=raycast)
    logger.info("Loaded TSDF volume %s from %s", volume.dims, p)
    return volume
