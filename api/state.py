from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from config.load_config import AppConfig, find_default_config, load_app_config
from world.tsdf_volume import TSDFVolume, construct_volume


def build_volume(config: AppConfig) -> TSDFVolume:
    v = config.volume
    volume, _, _, _ = construct_volume(
        *v.dims,
        *v.extent,
        truncation=v.truncation,
        origin=tuple(v.origin),
        integration=config.integration.to_runtime(),
        raycast=config.raycast.to_runtime(),
    )
    return volume


@dataclass
class RuntimeState:
    config: AppConfig = field(default_factory=AppConfig)
    config_source: str | None = None
    volume: TSDFVolume | None = None

    # Monotonic frame timestamps across /volume/frame calls.
    last_timestamp: float | None = None

    @classmethod
    def build(cls, config: AppConfig | None = None) -> "RuntimeState":
        config_source = None
        if config is None:
            cfg_path = find_default_config()
            if cfg_path is not None:
                config = load_app_config(cfg_path)
                config_source = str(cfg_path).replace("\\", "/")
            else:
                config = AppConfig()
        Path(config.storage.volumes_root).mkdir(parents=True, exist_ok=True)
        return cls(config=config, config_source=config_source, volume=build_volume(config))

    def get_volume(self) -> TSDFVolume:
        if self.volume is None:
            self.volume = build_volume(self.config)
        return self.volume

    def volume_path(self, name: str) -> Path:
        root = Path(self.config.storage.volumes_root)
        p = root / name
        if not p.suffix:
            p = p.with_suffix(".tsdf")
        return p

    def status(self) -> dict:
        return {"config": {"source": self.config_source, "config": self.config.model_dump()}}
