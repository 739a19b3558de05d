import io
import json

import numpy as np
import pytest
from fastapi.testclient import TestClient
from PIL import Image

from config.load_config import AppConfig
from imaging.depth_io import write_depth_png
from main import create_app

INTR = {"fx": 8.0, "fy": 8.0, "cx": 15.5, "cy": 15.5, "width": 32, "height": 32}
POSE = {"position": [0.0, 0.0, 0.0], "quaternion": [0.0, 0.0, 0.0, 1.0]}


@pytest.fixture
def client(tmp_path):
    cfg = AppConfig(
        volume={"dims": [8, 8, 8], "extent": [8.0, 8.0, 8.0], "origin": [-4.0, -4.0, 0.0], "truncation": 2.0},
        raycast={"strategy": "fixed"},
        storage={"volumes_root": str(tmp_path / "volumes")},
        observability={"json_logs": False, "log_level": "WARNING"},
    )
    return TestClient(create_app(cfg))


def _meta(frame_id: str = "f1", timestamp: float = 1.0, **depth_meta) -> dict:
    dm = {"scale_per_unit": 0.001, "width": 32, "height": 32}
    dm.update(depth_meta)
    return {"frame_id": frame_id, "timestamp": timestamp, "intrinsics": INTR, "pose": POSE, "depth_meta": dm}


def _files(meta: dict, depth: bytes | None = None):
    if depth is None:
        depth = np.full((32, 32), 5000, dtype="<u2").tobytes()
    return {
        "meta": ("meta.json", json.dumps(meta), "application/json"),
        "depth": ("depth.u16", depth, "application/octet-stream"),
    }


def test_health_reports_volume(client):
    res = client.get("/health")
    assert res.status_code == 200
    body = res.json()
    assert body["status"] == "ok"
    assert body["volume"]["dims"] == [8, 8, 8]


def test_frame_then_raycast_npz(client):
    res = client.post("/volume/frame", files=_files(_meta()))
    assert res.status_code == 200
    body = res.json()
    assert body["status"] == "ok"
    assert body["frames"] == 1
    assert body["voxels_updated"] > 0

    res = client.post("/volume/raycast", json={"intrinsics": INTR, "pose": POSE})
    assert res.status_code == 200
    with np.load(io.BytesIO(res.content)) as data:
        vertices = data["vertices"]
        normals = data["normals"]
    assert vertices.shape == (32, 32, 3)
    assert vertices[15, 15, 2] == pytest.approx(5.0, abs=1e-3)
    np.testing.assert_allclose(normals[15, 15], [0.0, 0.0, -1.0], atol=1e-3)


@pytest.mark.parametrize("fmt", ["normals_png", "shaded_png"])
def test_raycast_png_formats(client, fmt):
    assert client.post("/volume/frame", files=_files(_meta())).status_code == 200
    res = client.post("/volume/raycast", json={"intrinsics": INTR, "pose": POSE, "format": fmt, "width": 16, "height": 16})
    assert res.status_code == 200
    assert res.headers["content-type"] == "image/png"
    assert res.content.startswith(b"\x89PNG")


def test_png_encoded_depth_is_accepted(client, tmp_path):
    p = write_depth_png(tmp_path / "d.png", np.full((32, 32), 5000, dtype=np.uint16))
    res = client.post("/volume/frame", files=_files(_meta(encoding="png"), depth=p.read_bytes()))
    assert res.status_code == 200
    assert res.json()["voxels_updated"] > 0


def test_undecodable_png_depth_is_rejected(client):
    res = client.post("/volume/frame", files=_files(_meta(encoding="png"), depth=b"not a png"))
    assert res.status_code == 400
    assert res.json()["detail"]["status"] == "INVALID_DEPTH"


def test_missing_pose_is_invalid_meta(client):
    meta = _meta()
    del meta["pose"]
    res = client.post("/volume/frame", files=_files(meta))
    assert res.status_code == 400
    assert res.json()["detail"]["status"] == "INVALID_META"


def test_wrong_depth_size_is_rejected(client):
    res = client.post("/volume/frame", files=_files(_meta(), depth=b"\x00\x00" * 10))
    assert res.status_code == 400
    detail = res.json()["detail"]
    assert detail["status"] == "INVALID_FRAMEPACKET"
    assert any(e["code"] == "SIZE" for e in detail["errors"])


def test_non_monotonic_timestamp_is_rejected(client):
    assert client.post("/volume/frame", files=_files(_meta("f1", 2.0))).status_code == 200
    res = client.post("/volume/frame", files=_files(_meta("f2", 1.0)))
    assert res.status_code == 400
    assert any(e["code"] == "NON_MONOTONIC" for e in res.json()["detail"]["errors"])


def test_stats_reset_save_load(client, tmp_path):
    assert client.post("/volume/frame", files=_files(_meta())).status_code == 200
    observed = client.get("/volume/stats").json()["observed_ratio"]
    assert observed > 0.0

    res = client.post("/volume/save", json={"name": "plane"})
    assert res.status_code == 200
    assert (tmp_path / "volumes" / "plane.tsdf").is_file()

    assert client.post("/volume/reset").json()["status"] == "ok"
    stats = client.get("/volume/stats").json()
    assert stats["observed_ratio"] == 0.0
    assert stats["frames_integrated"] == 0

    res = client.post("/volume/load", json={"name": "plane"})
    assert res.status_code == 200
    assert res.json()["dims"] == [8, 8, 8]
    assert client.get("/volume/stats").json()["observed_ratio"] == pytest.approx(observed)


def test_load_unknown_volume_is_404(client):
    res = client.post("/volume/load", json={"name": "missing"})
    assert res.status_code == 404
    assert res.json()["detail"]["status"] == "NOT_FOUND"


def test_volume_names_cannot_escape_storage_root(client):
    res = client.post("/volume/save", json={"name": "../escape"})
    assert res.status_code == 422


def test_corrupt_volume_file_is_load_failed(client, tmp_path):
    (tmp_path / "volumes" / "junk.tsdf").write_bytes(b"garbage")
    res = client.post("/volume/load", json={"name": "junk"})
    assert res.status_code == 500
    assert res.json()["detail"]["status"] == "LOAD_FAILED"


def test_metrics_and_config_status(client):
    client.post("/volume/frame", files=_files(_meta()))
    res = client.get("/metrics")
    assert res.status_code == 200
    assert "tsdf_frames_integrated_total" in res.text

    status = client.get("/config/status").json()
    assert status["config"]["config"]["volume"]["dims"] == [8, 8, 8]


def test_raycast_rejects_zero_quaternion(client):
    pose = {"position": [0.0, 0.0, 0.0], "quaternion": [0.0, 0.0, 0.0, 0.0]}
    res = client.post("/volume/raycast", json={"intrinsics": INTR, "pose": pose})
    assert res.status_code == 400
    assert res.json()["detail"]["status"] == "INVALID_POSE"


def test_raycast_normalizes_scaled_quaternion(client):
    assert client.post("/volume/frame", files=_files(_meta())).status_code == 200
    pose = {"position": [0.0, 0.0, 0.0], "quaternion": [0.0, 0.0, 0.0, 3.0]}
    res = client.post("/volume/raycast", json={"intrinsics": INTR, "pose": pose})
    assert res.status_code == 200
    with np.load(io.BytesIO(res.content)) as data:
        assert data["vertices"][15, 15, 2] == pytest.approx(5.0, abs=1e-3)


def test_eight_bit_png_depth_is_rejected(client):
    buf = io.BytesIO()
    Image.fromarray(np.full((32, 32), 200, dtype=np.uint8)).save(buf, format="PNG")
    res = client.post("/volume/frame", files=_files(_meta(encoding="png"), depth=buf.getvalue()))
    assert res.status_code == 400
    assert res.json()["detail"]["status"] == "INVALID_DEPTH"
