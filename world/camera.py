from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from world.transform import invert_rigid, look_at_rotation, matrix_to_pose, pose_to_matrix


@dataclass(frozen=True)
class PinholeIntrinsics:
    fx: float
    fy: float
    cx: float
    cy: float
    width: int
    height: int

    def __post_init__(self) -> None:
        if not (float(self.fx) > 0.0 and float(self.fy) > 0.0):
            raise ValueError("focal lengths must be > 0")
        if int(self.width) <= 0 or int(self.height) <= 0:
            raise ValueError("image size must be > 0")

    def to_dict(self) -> dict:
        return {
            "fx": float(self.fx),
            "fy": float(self.fy),
            "cx": float(self.cx),
            "cy": float(self.cy),
            "width": int(self.width),
            "height": int(self.height),
        }


class Camera:
    """
    Pinhole depth camera.

    The pose is stored camera->world. Camera space uses x right, y down,
    z forward, so a point in front of the camera has positive z.
    """

    def __init__(self, intrinsics: PinholeIntrinsics, pose: np.ndarray | None = None) -> None:
        self.intrinsics = intrinsics
        self._T_cw = np.eye(4, dtype=np.float64) if pose is None else np.asarray(pose, dtype=np.float64).reshape(4, 4).copy()

    @classmethod
    def from_intrinsics(cls, fx: float, fy: float, cx: float, cy: float, width: int, height: int) -> "Camera":
        return cls(PinholeIntrinsics(float(fx), float(fy), float(cx), float(cy), int(width), int(height)))

    @classmethod
    def from_dicts(cls, intrinsics: dict, pose: dict | None = None) -> "Camera":
        cam = cls.from_intrinsics(
            intrinsics["fx"],
            intrinsics["fy"],
            intrinsics["cx"],
            intrinsics["cy"],
            intrinsics["width"],
            intrinsics["height"],
        )
        if pose is not None:
            cam.set_pose(pose_to_matrix(pose))
        return cam

    def copy(self) -> "Camera":
        return Camera(self.intrinsics, self._T_cw)

    # --- pose -------------------------------------------------------------

    def pose(self) -> np.ndarray:
        return self._T_cw.copy()

    def pose_dict(self) -> dict:
        return matrix_to_pose(self._T_cw)

    def set_pose(self, T_cw: np.ndarray) -> None:
        T = np.asarray(T_cw, dtype=np.float64).reshape(4, 4)
        R = T[:3, :3]
        if not np.allclose(R.T @ R, np.eye(3), atol=1e-6):
            raise ValueError("pose rotation is not orthonormal")
        self._T_cw = T.copy()

    @property
    def position(self) -> np.ndarray:
        return self._T_cw[:3, 3].copy()

    @property
    def rotation(self) -> np.ndarray:
        return self._T_cw[:3, :3].copy()

    def move_to(self, x: float, y: float, z: float) -> None:
        self._T_cw[:3, 3] = [float(x), float(y), float(z)]

    def look_at(self, x: float, y: float, z: float) -> None:
        self._T_cw[:3, :3] = look_at_rotation(self._T_cw[:3, 3], [float(x), float(y), float(z)])

    # --- coordinate transforms ---------------------------------------------

    def world_to_camera(self, points: np.ndarray) -> np.ndarray:
        pts = np.asarray(points, dtype=np.float64)
        T_wc = invert_rigid(self._T_cw)
        return pts @ T_wc[:3, :3].T + T_wc[:3, 3]

    def camera_to_world(self, points: np.ndarray) -> np.ndarray:
        pts = np.asarray(points, dtype=np.float64)
        return pts @ self._T_cw[:3, :3].T + self._T_cw[:3, 3]

    def project(self, points: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """World points (..., 3) -> continuous pixel coords (u, v) and camera depth."""
        pc = self.world_to_camera(points)
        z = pc[..., 2]
        intr = self.intrinsics
        with np.errstate(divide="ignore", invalid="ignore"):
            u = float(intr.fx) * pc[..., 0] / z + float(intr.cx)
            v = float(intr.fy) * pc[..., 1] / z + float(intr.cy)
        return u, v, z

    def unproject(self, u, v, depth) -> np.ndarray:
        """Pixel coords plus camera depth -> world points."""
        intr = self.intrinsics
        z = np.asarray(depth, dtype=np.float64)
        x = (np.asarray(u, dtype=np.float64) - float(intr.cx)) * z / float(intr.fx)
        y = (np.asarray(v, dtype=np.float64) - float(intr.cy)) * z / float(intr.fy)
        return self.camera_to_world(np.stack([x, y, z], axis=-1))

    def pixel_rays(self, width: int | None = None, height: int | None = None) -> np.ndarray:
        """Unit world-space ray directions, shape (height, width, 3)."""
        intr = self.intrinsics
        w = int(intr.width if width is None else width)
        h = int(intr.height if height is None else height)
        # Render size differing from the sensor size rescales the principal point and focal length.
        sx = float(w) / float(intr.width)
        sy = float(h) / float(intr.height)
        vv, uu = np.meshgrid(np.arange(h, dtype=np.float64), np.arange(w, dtype=np.float64), indexing="ij")
        dx = (uu - float(intr.cx) * sx) / (float(intr.fx) * sx)
        dy = (vv - float(intr.cy) * sy) / (float(intr.fy) * sy)
        d_cam = np.stack([dx, dy, np.ones_like(dx)], axis=-1)
        d_cam /= np.linalg.norm(d_cam, axis=-1, keepdims=True)
        return d_cam @ self._T_cw[:3, :3].T


def make_kinect() -> Camera:
    return Camera.from_intrinsics(525.0, 525.0, 319.5, 239.5, 640, 480)
