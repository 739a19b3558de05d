"""Test configuration.

Ensure the project root is on sys.path so tests can import `world.*`,
`api.*` and `main` when executed from different working directories.
"""

import os
import sys

import numpy as np
import pytest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)


@pytest.fixture
def plane_volume():
    """8^3 unit voxels spanning x,y in [-4, 4], z in [0, 8]; truncation 2."""
    from world.tsdf_volume import construct_volume

    volume, _, _, _ = construct_volume(8, 8, 8, 8.0, 8.0, 8.0, truncation=2.0, origin=(-4.0, -4.0, 0.0))
    return volume


@pytest.fixture
def small_camera():
    """32x32 pinhole at the origin looking down +z."""
    from world.camera import Camera

    return Camera.from_intrinsics(8.0, 8.0, 15.5, 15.5, 32, 32)


@pytest.fixture
def plane_depth():
    return np.full((32, 32), 5.0, dtype=np.float32)
