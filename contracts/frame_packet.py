from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _is_finite(x: float) -> bool:
    try:
        import math

        return isinstance(x, (int, float)) and math.isfinite(float(x))
    except Exception:
        return False


class Intrinsics(BaseModel):
    model_config = ConfigDict(extra="forbid")

    fx: float
    fy: float
    cx: float
    cy: float
    width: int
    height: int

    @field_validator("fx", "fy", "cx", "cy")
    @classmethod
    def _finite(cls, v):
        if not _is_finite(v):
            raise ValueError("must be finite")
        return float(v)

    @field_validator("fx", "fy")
    @classmethod
    def _positive_focal(cls, v):
        v = float(v)
        if v <= 0.0:
            raise ValueError("must be > 0")
        return v

    @field_validator("width", "height")
    @classmethod
    def _positive_int(cls, v):
        if not isinstance(v, int):
            v = int(v)
        if v <= 0:
            raise ValueError("must be > 0")
        return v


class Pose(BaseModel):
    """Camera->world pose; quaternion is xyzw."""

    model_config = ConfigDict(extra="forbid")

    position: list[float]
    quaternion: list[float]

    @field_validator("position")
    @classmethod
    def _pos_len3_finite(cls, v):
        if not isinstance(v, (list, tuple)) or len(v) != 3:
            raise ValueError("position must be length-3 list")
        out = []
        for x in v:
            if not _is_finite(x):
                raise ValueError("position must be finite")
            out.append(float(x))
        return out

    @field_validator("quaternion")
    @classmethod
    def _quat_len4_finite(cls, v):
        # Zero-norm quaternions are rejected by validate_frame_meta with a structured error.
        if not isinstance(v, (list, tuple)) or len(v) != 4:
            raise ValueError("quaternion must be length-4 list")
        out = []
        for x in v:
            if not _is_finite(x):
                raise ValueError("quaternion must be finite")
            out.append(float(x))
        return out


class DepthMeta(BaseModel):
    model_config = ConfigDict(extra="forbid")

    # World units per raw depth unit.
    scale_per_unit: float
    width: int
    height: int
    # uint16: raw little-endian row-major buffer; png: 16-bit single-channel PNG.
    encoding: Literal["uint16", "png"] = "uint16"

    @field_validator("scale_per_unit")
    @classmethod
    def _scale_pos(cls, v):
        if not _is_finite(v):
            raise ValueError("scale_per_unit must be finite")
        v = float(v)
        if v <= 0.0:
            raise ValueError("scale_per_unit must be > 0")
        return v

    @field_validator("width", "height")
    @classmethod
    def _wh_pos(cls, v):
        if not isinstance(v, int):
            v = int(v)
        if v <= 0:
            raise ValueError("must be > 0")
        return v


class FramePacketMeta(BaseModel):
    model_config = ConfigDict(extra="forbid")

    version: str = Field(default="1.0", description="FramePacket contract version")

    frame_id: str
    timestamp: float

    intrinsics: Intrinsics
    pose: Pose
    depth_meta: DepthMeta

    @field_validator("timestamp")
    @classmethod
    def _ts_nonneg_finite(cls, v):
        if not _is_finite(v):
            raise ValueError("timestamp must be finite")
        v = float(v)
        if v < 0.0:
            raise ValueError("timestamp must be >= 0")
        return v


class RaycastRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    intrinsics: Intrinsics
    pose: Pose
    # Output size; defaults to the intrinsics image size.
    width: Optional[int] = Field(default=None, gt=0, le=4096)
    height: Optional[int] = Field(default=None, gt=0, le=4096)
    format: Literal["npz", "normals_png", "shaded_png"] = "npz"
    light: Optional[list[float]] = None

    @field_validator("light")
    @classmethod
    def _light3(cls, v):
        if v is None:
            return v
        if len(v) != 3 or not all(_is_finite(x) for x in v):
            raise ValueError("light must be a finite [x,y,z]")
        return [float(x) for x in v]


class VolumeFilePayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, max_length=128, pattern=r"^[A-Za-z0-9_.-]+$")

    @field_validator("name")
    @classmethod
    def _no_dot_prefix(cls, v):
        if v.startswith("."):
            raise ValueError("name must not start with '.'")
        return v
