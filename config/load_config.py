from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from world.integrator import IntegrationConfig
from world.raycaster import RaycastConfig


class ServerCfg(BaseModel):
    host: str = "127.0.0.1"
    port: int = 8000


class VolumeCfg(BaseModel):
    dims: tuple[int, int, int] = (256, 256, 256)
    # World units; the defaults assume millimetres (6.4m cube).
    extent: tuple[float, float, float] = (6400.0, 6400.0, 6400.0)
    origin: tuple[float, float, float] = (-3200.0, -3200.0, 0.0)
    truncation: float | None = None

    @field_validator("dims")
    @classmethod
    def _positive_dims(cls, v):
        if any(int(d) <= 0 for d in v):
            raise ValueError("dims must be > 0")
        return v

    @field_validator("extent")
    @classmethod
    def _positive_extent(cls, v):
        if any(float(e) <= 0.0 for e in v):
            raise ValueError("extent must be > 0")
        return v

    @field_validator("truncation")
    @classmethod
    def _positive_trunc(cls, v):
        if v is not None and float(v) <= 0.0:
            raise ValueError("truncation must be > 0")
        return v


class IntegrationCfg(BaseModel):
    obs_weight: float = Field(default=1.0, gt=0.0)
    weight_cap: float = Field(default=100.0, gt=0.0)
    weighting: Literal["constant", "inverse_square_depth"] = "constant"
    reference_depth: float = Field(default=1000.0, gt=0.0)
    workers: int = Field(default=1, ge=1)
    bilateral_radius: int = Field(default=0, ge=0, le=8)
    bilateral_sigma_space: float = Field(default=1.5, gt=0.0)
    # World units; the default suits millimetre depth.
    bilateral_sigma_depth: float = Field(default=30.0, gt=0.0)

    def to_runtime(self) -> IntegrationConfig:
        return IntegrationConfig(**self.model_dump())


class RaycastCfg(BaseModel):
    strategy: Literal["fixed", "adaptive"] = "adaptive"
    step_factor: float = Field(default=0.5, gt=0.0)
    min_depth: float = Field(default=0.0, ge=0.0)
    max_depth: float | None = None
    adaptive_scale: float = Field(default=0.8, gt=0.0, le=1.0)
    gradient_eps: float = Field(default=1e-6, gt=0.0)

    @model_validator(mode="after")
    def _depth_range(self):
        if self.max_depth is not None and self.max_depth <= self.min_depth:
            raise ValueError("max_depth must exceed min_depth")
        return self

    def to_runtime(self) -> RaycastConfig:
        return RaycastConfig(**self.model_dump())


class CameraCfg(BaseModel):
    fx: float = Field(default=525.0, gt=0.0)
    fy: float = Field(default=525.0, gt=0.0)
    cx: float = 319.5
    cy: float = 239.5
    width: int = Field(default=640, gt=0)
    height: int = Field(default=480, gt=0)
    # World units per raw depth unit (TUM PNGs: 1/5000 m, i.e. 0.2 mm).
    depth_scale: float = Field(default=0.2, gt=0.0)


class StorageCfg(BaseModel):
    volumes_root: str = "volumes"


class ObservabilityCfg(BaseModel):
    json_logs: bool = True
    log_level: str = "INFO"
    metrics_enabled: bool = True


class AppConfig(BaseModel):
    server: ServerCfg = Field(default_factory=ServerCfg)
    volume: VolumeCfg = Field(default_factory=VolumeCfg)
    integration: IntegrationCfg = Field(default_factory=IntegrationCfg)
    raycast: RaycastCfg = Field(default_factory=RaycastCfg)
    camera: CameraCfg = Field(default_factory=CameraCfg)
    storage: StorageCfg = Field(default_factory=StorageCfg)
    observability: ObservabilityCfg = Field(default_factory=ObservabilityCfg)


def load_app_config(path: Path) -> AppConfig:
    raw = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"Config YAML must be a mapping, got {type(raw).__name__}")
    return AppConfig(**raw)


def find_default_config() -> Path | None:
    env = os.getenv("TSDF_CONFIG")
    if env:
        p = Path(env)
        if not p.is_file():
            raise FileNotFoundError(f"TSDF_CONFIG points to missing file: {p}")
        return p
    candidates = [
        Path("config") / "default.yaml",
        Path(__file__).with_name("default.yaml"),
    ]
    for p in candidates:
        if p.exists() and p.is_file():
            return p
    return None
