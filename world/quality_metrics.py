from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import numpy as np

from world.voxel_grid import VoxelGrid


@dataclass(frozen=True)
class QualityMetrics:
    observed_ratio: float
    unknown_ratio: float
    near_surface_ratio: float
    saturated_ratio: float
    voxel_weight_histogram: dict[str, Any]
    mean_weight: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "observed_ratio": float(self.observed_ratio),
            "unknown_ratio": float(self.unknown_ratio),
            "near_surface_ratio": float(self.near_surface_ratio),
            "saturated_ratio": float(self.saturated_ratio),
            "mean_weight": None if self.mean_weight is None else float(self.mean_weight),
            "voxel_weight_histogram": self.voxel_weight_histogram,
        }


def compute_quality_metrics(
    grid: VoxelGrid,
    *,
    weight_cap: float | None = None,
    near_surface_fraction: float = 0.5,
    bins: tuple[float, ...] = (0, 1, 2, 4, 8, 16, 32, 64),
) -> QualityMetrics:
    """
    Coverage summary of a TSDF grid.
    near_surface: observed voxels with |distance| below near_surface_fraction * truncation.
    saturated: observed voxels whose weight reached weight_cap (0 when no cap given).
    """
    w = grid.weight.reshape(-1)
    d = grid.distance.reshape(-1)
    total = float(grid.num_voxels)

    observed = w > 0.0
    n_obs = int(np.count_nonzero(observed))
    if total <= 0:
        observed_ratio = 0.0
    else:
        observed_ratio = max(0.0, min(1.0, float(n_obs) / total))

    near = observed & (np.abs(d) < float(near_surface_fraction) * float(grid.truncation))
    near_ratio = float(np.count_nonzero(near)) / total if total > 0 else 0.0

    saturated_ratio = 0.0
    if weight_cap is not None and total > 0:
        saturated_ratio = float(np.count_nonzero(observed & (w >= float(weight_cap)))) / total

    hist: dict[str, Any] = {"bins": [float(b) for b in bins], "counts": []}
    edges = np.asarray(bins, dtype=np.float64)
    counts = []
    for i in range(len(edges) - 1):
        lo = float(edges[i])
        hi = float(edges[i + 1])
        counts.append(int(np.sum((w >= lo) & (w < hi))))
    counts.append(int(np.sum(w >= float(edges[-1]))))
    hist["counts"] = counts

    mean_w = float(np.mean(w[observed])) if n_obs > 0 else None

    return QualityMetrics(
        observed_ratio=observed_ratio,
        unknown_ratio=1.0 - observed_ratio,
        near_surface_ratio=near_ratio,
        saturated_ratio=saturated_ratio,
        voxel_weight_histogram=hist,
        mean_weight=mean_w,
    )
