from __future__ import annotations

import math
from typing import Any, Dict, List, Tuple


def normalize_quat_xyzw(q: list[float]) -> tuple[list[float] | None, str | None]:
    x, y, z, w = q
    n2 = x * x + y * y + z * z + w * w
    if not math.isfinite(n2) or n2 <= 1e-12:
        return None, "pose.quaternion has zero/invalid norm"
    n = math.sqrt(n2)
    return [x / n, y / n, z / n, w / n], None


def validate_frame_meta(
    meta: Dict[str, Any],
    *,
    depth_bytes: bytes | None = None,
    last_timestamp: float | None = None,
) -> Tuple[Dict[str, Any] | None, List[Dict[str, Any]]]:
    """
    Cross-field checks on a schema-valid FramePacketMeta dump.
    Returns (normalized_meta, errors). On errors, normalized_meta is None.
    """
    errs: List[Dict[str, Any]] = []
    out: Dict[str, Any] = dict(meta)

    ts = float(meta["timestamp"])
    if last_timestamp is not None and ts < float(last_timestamp) - 1e-6:
        errs.append(
            {
                "field": "timestamp",
                "code": "NON_MONOTONIC",
                "msg": f"timestamp must be monotonic (last={float(last_timestamp):.6f})",
            }
        )

    intr = meta["intrinsics"]
    w = int(intr["width"])
    h = int(intr["height"])
    if w > 16384 or h > 16384:
        errs.append({"field": "intrinsics", "code": "INVALID", "msg": "image size must be <= 16384"})
    if float(intr["cx"]) < -1.0 or float(intr["cx"]) > float(w) + 1.0:
        errs.append({"field": "intrinsics.cx", "code": "INVALID", "msg": "cx out of bounds"})
    if float(intr["cy"]) < -1.0 or float(intr["cy"]) > float(h) + 1.0:
        errs.append({"field": "intrinsics.cy", "code": "INVALID", "msg": "cy out of bounds"})

    pose = meta["pose"]
    qn, qerr = normalize_quat_xyzw([float(x) for x in pose["quaternion"]])
    if qn is None:
        errs.append({"field": "pose.quaternion", "code": "INVALID", "msg": qerr or "invalid quaternion"})
    else:
        out["pose"] = {"position": [float(x) for x in pose["position"]], "quaternion": qn}

    dm = meta["depth_meta"]
    if int(dm["width"]) != w or int(dm["height"]) != h:
        errs.append({"field": "depth_meta", "code": "MISMATCH", "msg": "depth size must match intrinsics"})
    if depth_bytes is not None and dm.get("encoding", "uint16") == "uint16":
        expected = int(dm["width"]) * int(dm["height"]) * 2
        if len(depth_bytes) != expected:
            errs.append(
                {
                    "field": "depth",
                    "code": "SIZE",
                    "msg": f"depth buffer has {len(depth_bytes)} bytes, expected {expected}",
                }
            )

    if errs:
        return None, errs
    return out, []
