import numpy as np
import pytest
from pydantic import ValidationError

from config.load_config import IntegrationCfg
from imaging.depth_filter import bilateral_filter
from world.integrator import IntegrationConfig
from world.tsdf_volume import construct_volume


def test_constant_frame_is_unchanged():
    depth = np.full((10, 12), 1000.0)
    out = bilateral_filter(depth, radius=2)
    assert out.shape == depth.shape
    np.testing.assert_allclose(out, 1000.0)


def test_holes_stay_holes_and_do_not_pull_neighbours():
    depth = np.full((9, 9), 1000.0)
    depth[4, 4] = 0.0
    depth[0, 0] = np.nan
    out = bilateral_filter(depth, radius=2)
    assert out[4, 4] == 0.0
    assert out[0, 0] == 0.0
    np.testing.assert_allclose(out[3:6, 3], 1000.0)
    assert np.isfinite(out).all()


def test_depth_edge_is_preserved():
    depth = np.full((8, 8), 1000.0)
    depth[:, 4:] = 3000.0
    out = bilateral_filter(depth, radius=2, sigma_depth=30.0)
    np.testing.assert_allclose(out[:, :4], 1000.0, atol=1e-6)
    np.testing.assert_allclose(out[:, 4:], 3000.0, atol=1e-6)


def test_small_spike_is_smoothed():
    depth = np.full((9, 9), 1000.0)
    depth[4, 4] = 1010.0
    out = bilateral_filter(depth, radius=2, sigma_space=1.5, sigma_depth=30.0)
    assert abs(out[4, 4] - 1000.0) < 5.0
    assert out[4, 4] > 1000.0


def test_radius_zero_returns_a_copy():
    depth = np.arange(12, dtype=np.float64).reshape(3, 4)
    out = bilateral_filter(depth, radius=0)
    np.testing.assert_array_equal(out, depth)
    out[0, 0] = -1.0
    assert depth[0, 0] == 0.0


@pytest.mark.parametrize("kwargs", [{"sigma_space": 0.0}, {"sigma_depth": -1.0}])
def test_bad_sigmas_raise(kwargs):
    with pytest.raises(ValueError):
        bilateral_filter(np.ones((4, 4)), radius=1, **kwargs)


def test_non_2d_input_raises():
    with pytest.raises(ValueError):
        bilateral_filter(np.ones((2, 4, 4)))


def test_filtered_integration_of_flat_plane_matches_unfiltered(small_camera, plane_depth):
    plain, _, _, _ = construct_volume(8, 8, 8, 8.0, 8.0, 8.0, truncation=2.0, origin=(-4.0, -4.0, 0.0))
    smoothed, _, _, _ = construct_volume(
        8,
        8,
        8,
        8.0,
        8.0,
        8.0,
        truncation=2.0,
        origin=(-4.0, -4.0, 0.0),
        integration=IntegrationConfig(bilateral_radius=2, bilateral_sigma_depth=1.0),
    )
    plain.integrate(plane_depth, small_camera)
    smoothed.integrate(plane_depth, small_camera)
    np.testing.assert_allclose(smoothed.grid.distance, plain.grid.distance, atol=1e-5)
    np.testing.assert_array_equal(smoothed.grid.weight, plain.grid.weight)


def test_filter_settings_flow_from_config():
    runtime = IntegrationCfg(bilateral_radius=3, bilateral_sigma_depth=12.0).to_runtime()
    assert runtime.bilateral_radius == 3
    assert runtime.bilateral_sigma_depth == pytest.approx(12.0)
    assert IntegrationCfg().to_runtime().bilateral_radius == 0
    with pytest.raises(ValidationError):
        IntegrationCfg(bilateral_radius=9)
