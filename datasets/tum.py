"""
TUM RGB-D sequence reader.

Layout under the sequence root (as distributed by TUM):
  depth.txt        "timestamp relative/path.png" per line
  groundtruth.txt  "timestamp tx ty tz qx qy qz qw" per line (camera->world, metres)
Lines starting with '#' are comments.
"""

from __future__ import annotations

import bisect
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

import numpy as np

from imaging.depth_io import depth_to_world_units, read_depth_png
from world.transform import pose_to_matrix

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TUMFrame:
    timestamp: float
    depth_path: Path
    depth: np.ndarray
    pose: np.ndarray


def _read_table(path: Path) -> list[list[str]]:
    rows: list[list[str]] = []
    with path.open("r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            rows.append(line.split())
    return rows


class TUMSequence:
    def __init__(
        self,
        root: str | Path,
        *,
        depth_scale: float = 0.2,
        translation_scale: float = 1000.0,
        max_time_diff: float = 0.02,
    ) -> None:
        """
        depth_scale: world units per raw PNG unit (TUM stores 5000 units per metre).
        translation_scale: world units per metre for ground-truth positions.
        """
        self.root = Path(root)
        if not self.root.is_dir():
            raise FileNotFoundError(f"TUM sequence root not found: {self.root}")
        self.depth_scale = float(depth_scale)
        self.translation_scale = float(translation_scale)
        self.max_time_diff = float(max_time_diff)

        self._depth = [(float(r[0]), r[1]) for r in _read_table(self.root / "depth.txt") if len(r) >= 2]
        gt_rows = [r for r in _read_table(self.root / "groundtruth.txt") if len(r) >= 8]
        gt_rows.sort(key=lambda r: float(r[0]))
        self._gt_times = [float(r[0]) for r in gt_rows]
        self._gt_vals = [[float(x) for x in r[1:8]] for r in gt_rows]

    def __len__(self) -> int:
        return len(self.associations())

    def pose_at(self, timestamp: float) -> np.ndarray | None:
        """Nearest ground-truth pose within max_time_diff, scaled to world units."""
        if not self._gt_times:
            return None
        i = bisect.bisect_left(self._gt_times, float(timestamp))
        best = None
        for j in (i - 1, i):
            if 0 <= j < len(self._gt_times):
                dt = abs(self._gt_times[j] - float(timestamp))
                if dt <= self.max_time_diff and (best is None or dt < best[0]):
                    best = (dt, j)
        if best is None:
            return None
        tx, ty, tz, qx, qy, qz, qw = self._gt_vals[best[1]]
        s = self.translation_scale
        return pose_to_matrix({"position": [tx * s, ty * s, tz * s], "quaternion": [qx, qy, qz, qw]})

    def associations(self) -> list[tuple[float, str, np.ndarray]]:
        out = []
        for ts, rel in self._depth:
            pose = self.pose_at(ts)
            if pose is None:
                continue
            out.append((ts, rel, pose))
        return out

    def frames(self, *, limit: int | None = None, stride: int = 1) -> Iterator[TUMFrame]:
        all_assoc = self.associations()
        skipped = len(self._depth) - len(all_assoc)
        if skipped:
            logger.warning("%d depth frames in %s have no ground-truth pose within %.3fs", skipped, self.root, self.max_time_diff)
        assoc = all_assoc[:: max(1, int(stride))]
        if limit is not None:
            assoc = assoc[: max(0, int(limit))]
        for ts, rel, pose in assoc:
            p = self.root / rel
            raw = read_depth_png(p)
            yield TUMFrame(timestamp=ts, depth_path=p, depth=depth_to_world_units(raw, self.depth_scale), pose=pose)
