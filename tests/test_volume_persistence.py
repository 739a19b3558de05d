import numpy as np
import pytest

from world.errors import VolumePersistenceError
from world.tsdf_volume import FILE_MAGIC, HEADER_DTYPE, TSDFVolume, construct_volume, load_from_file
from world.voxel_grid import Sample


def test_save_load_roundtrip_preserves_grid_and_raycast(tmp_path, plane_volume, small_camera, plane_depth):
    plane_volume.integrate(plane_depth, small_camera)
    plane_volume.set(0, 1, 2, Sample(-0.75, 9.0))
    path = plane_volume.save_to_file(tmp_path / "vols" / "plane.tsdf")
    assert path.is_file()
    assert not (tmp_path / "vols" / "plane.tsdf.tmp").exists()

    loaded = load_from_file(path)
    assert loaded.dims == plane_volume.dims
    assert loaded.truncation == plane_volume.truncation
    np.testing.assert_array_equal(loaded.voxel_size, plane_volume.voxel_size)
    np.testing.assert_array_equal(loaded.grid.origin, plane_volume.grid.origin)
    np.testing.assert_array_equal(loaded.grid.distance, plane_volume.grid.distance)
    np.testing.assert_array_equal(loaded.grid.weight, plane_volume.grid.weight)
    assert loaded.value_at(0, 1, 2) == Sample(-0.75, 9.0)

    a = plane_volume.raycast(small_camera)
    b = loaded.raycast(small_camera)
    assert np.array_equal(a.vertices, b.vertices, equal_nan=True)
    assert np.array_equal(a.normals, b.normals, equal_nan=True)


def test_file_layout_is_header_then_x_fastest_samples():
    volume, _, _, _ = construct_volume(2, 3, 4, 2.0, 3.0, 4.0, truncation=1.0)
    volume.set(1, 0, 0, Sample(0.25, 2.0))
    raw = volume.to_bytes()
    assert raw.startswith(FILE_MAGIC)
    assert len(raw) == HEADER_DTYPE.itemsize + 2 * 3 * 4 * 2 * 4
    body = np.frombuffer(raw, dtype="<f4", offset=HEADER_DTYPE.itemsize)
    # Second (distance, weight) pair is voxel (1, 0, 0).
    assert body[2] == pytest.approx(0.25)
    assert body[3] == pytest.approx(2.0)


def test_bad_magic_is_rejected(tmp_path):
    volume, _, _, _ = construct_volume(2, 2, 2, 1.0, 1.0, 1.0)
    raw = bytearray(volume.to_bytes())
    raw[:8] = b"NOTAVOL\x00"
    p = tmp_path / "bad.tsdf"
    p.write_bytes(bytes(raw))
    with pytest.raises(VolumePersistenceError):
        load_from_file(p)


def test_unsupported_version_is_rejected():
    volume, _, _, _ = construct_volume(2, 2, 2, 1.0, 1.0, 1.0)
    raw = bytearray(volume.to_bytes())
    raw[8:12] = (99).to_bytes(4, "little")
    with pytest.raises(VolumePersistenceError):
        TSDFVolume.from_bytes(bytes(raw))


@pytest.mark.parametrize("cut", [1, 4, 10])
def test_truncated_body_is_rejected(cut):
    volume, _, _, _ = construct_volume(2, 2, 2, 1.0, 1.0, 1.0)
    raw = volume.to_bytes()
    with pytest.raises(VolumePersistenceError):
        TSDFVolume.from_bytes(raw[:-cut])


def test_truncated_header_is_rejected():
    with pytest.raises(VolumePersistenceError):
        TSDFVolume.from_bytes(FILE_MAGIC + b"\x01")


def test_missing_file_raises_persistence_error(tmp_path):
    with pytest.raises(VolumePersistenceError):
        load_from_file(tmp_path / "nope.tsdf")
    # Callers treating it as an I/O failure still catch it.
    with pytest.raises(OSError):
        load_from_file(tmp_path / "nope.tsdf")


def test_unwritable_destination_raises_persistence_error(tmp_path):
    volume, _, _, _ = construct_volume(2, 2, 2, 1.0, 1.0, 1.0)
    blocker = tmp_path / "file"
    blocker.write_text("x")
    with pytest.raises(VolumePersistenceError):
        volume.save_to_file(blocker / "sub" / "v.tsdf")


def test_stats_track_coverage(plane_volume, small_camera, plane_depth):
    s0 = plane_volume.stats()
    assert s0["observed_ratio"] == 0.0
    assert s0["frames_integrated"] == 0
    assert s0["mean_weight"] is None

    plane_volume.integrate(plane_depth, small_camera)
    s1 = plane_volume.stats()
    assert 0.0 < s1["observed_ratio"] < 1.0
    assert s1["unknown_ratio"] == pytest.approx(1.0 - s1["observed_ratio"])
    assert s1["mean_weight"] == pytest.approx(1.0)
    assert s1["dims"] == [8, 8, 8]
    assert s1["num_voxels"] == 8 * 8 * 8
    assert s1["truncation"] == pytest.approx(2.0)
    assert sum(s1["voxel_weight_histogram"]["counts"]) == 8 * 8 * 8


def _with_dims(raw: bytes, dims) -> bytes:
    header = np.frombuffer(raw, dtype=HEADER_DTYPE, count=1).copy()
    header["dims"] = dims
    return header.tobytes() + raw[HEADER_DTYPE.itemsize :]


def test_oversized_header_dims_fail_before_allocation():
    volume, _, _, _ = construct_volume(2, 2, 2, 1.0, 1.0, 1.0)
    raw = _with_dims(volume.to_bytes(), (100000, 100000, 100000))
    with pytest.raises(VolumePersistenceError):
        TSDFVolume.from_bytes(raw)


def test_non_positive_header_dims_are_rejected():
    volume, _, _, _ = construct_volume(2, 2, 2, 1.0, 1.0, 1.0)
    raw = _with_dims(volume.to_bytes(), (2, -2, -2))
    with pytest.raises(VolumePersistenceError):
        TSDFVolume.from_bytes(raw)
