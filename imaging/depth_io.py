from __future__ import annotations

import io
from pathlib import Path

import numpy as np
from PIL import Image

# 16-bit single-channel modes Pillow opens depth PNGs as.
DEPTH_MODES = ("I;16", "I;16B", "I;16L", "I")


def read_depth_png(path: str | Path) -> np.ndarray:
    """16-bit single-channel PNG -> (H, W) uint16 raw depth units (0 == no return)."""
    with Image.open(Path(path)) as img:
        if img.mode not in DEPTH_MODES:
            raise ValueError(f"{path}: expected a 16-bit depth PNG, got mode {img.mode}")
        arr = np.asarray(img)
    if arr.ndim != 2:
        raise ValueError(f"{path}: depth image must be single channel")
    return arr.astype(np.uint16)


def read_depth_png_bytes(data: bytes) -> np.ndarray:
    with Image.open(io.BytesIO(data)) as img:
        if img.mode not in DEPTH_MODES:
            raise ValueError(f"expected a 16-bit depth PNG, got mode {img.mode}")
        arr = np.asarray(img)
    if arr.ndim != 2:
        raise ValueError("depth image must be single channel")
    return arr.astype(np.uint16)


def decode_depth_u16(data: bytes, width: int, height: int) -> np.ndarray:
    """Raw little-endian uint16 buffer, row-major -> (H, W)."""
    expected = int(width) * int(height) * 2
    if len(data) != expected:
        raise ValueError(f"depth buffer has {len(data)} bytes, expected {expected}")
    return np.frombuffer(data, dtype="<u2").reshape(int(height), int(width)).astype(np.uint16)


def depth_to_world_units(depth_raw: np.ndarray, depth_scale: float) -> np.ndarray:
    """Scale raw depth to world units; zero (no return) maps to zero."""
    raw = np.asarray(depth_raw)
    out = raw.astype(np.float32) * np.float32(depth_scale)
    return out


def write_depth_png(path: str | Path, depth_raw: np.ndarray) -> Path:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    arr = np.ascontiguousarray(np.asarray(depth_raw, dtype=np.uint16))
    Image.fromarray(arr).save(p)
    return p
