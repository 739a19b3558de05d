"""Turn raycast vertex/normal maps into viewable images."""

from __future__ import annotations

import io
from pathlib import Path

import numpy as np
from PIL import Image


def _valid(arr: np.ndarray) -> np.ndarray:
    return np.all(np.isfinite(arr), axis=-1)


def normals_to_rgb(normals: np.ndarray) -> np.ndarray:
    """Map unit normals to RGB ([-1,1] -> [0,255]); pixels without a normal are black."""
    n = np.asarray(normals, dtype=np.float64)
    ok = _valid(n)
    rgb = np.zeros(n.shape[:2] + (3,), dtype=np.uint8)
    rgb[ok] = np.clip((n[ok] + 1.0) * 127.5, 0.0, 255.0).astype(np.uint8)
    return rgb


def shade_lambertian(
    vertices: np.ndarray,
    normals: np.ndarray,
    light_position,
    *,
    ambient: float = 0.1,
) -> np.ndarray:
    """Grey-level Lambertian shading against a point light; (H, W) uint8."""
    v = np.asarray(vertices, dtype=np.float64)
    n = np.asarray(normals, dtype=np.float64)
    ok = _valid(v) & _valid(n)
    out = np.zeros(v.shape[:2], dtype=np.uint8)
    if not np.any(ok):
        return out

    light = np.asarray(light_position, dtype=np.float64).reshape(1, 3)
    to_light = light - v[ok]
    dist = np.linalg.norm(to_light, axis=1, keepdims=True)
    to_light = to_light / np.maximum(dist, 1e-12)
    diffuse = np.clip(np.sum(n[ok] * to_light, axis=1), 0.0, 1.0)
    a = float(np.clip(ambient, 0.0, 1.0))
    out[ok] = np.clip((a + (1.0 - a) * diffuse) * 255.0, 0.0, 255.0).astype(np.uint8)
    return out


def png_bytes(image: np.ndarray) -> bytes:
    buf = io.BytesIO()
    Image.fromarray(np.ascontiguousarray(image)).save(buf, format="PNG")
    return buf.getvalue()


def save_normals_as_colour_png(path: str | Path, normals: np.ndarray) -> Path:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    Image.fromarray(normals_to_rgb(normals)).save(p, format="PNG")
    return p


def save_rendered_scene_as_png(path: str | Path, vertices: np.ndarray, normals: np.ndarray, light_position) -> Path:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    Image.fromarray(shade_lambertian(vertices, normals, light_position)).save(p, format="PNG")
    return p
