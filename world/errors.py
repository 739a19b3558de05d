from __future__ import annotations


class VolumeError(Exception):
    """Base class for TSDF volume failures."""


class VolumeConstructionError(VolumeError, ValueError):
    pass


class VoxelBoundsError(VolumeError, IndexError):
    def __init__(self, index, dims) -> None:
        self.index = tuple(index)
        self.dims = tuple(int(d) for d in dims)
        super().__init__(f"voxel index {self.index} outside grid {self.dims}")


class VolumePersistenceError(VolumeError, OSError):
    pass
