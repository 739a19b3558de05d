"""Edge-preserving smoothing of depth frames before fusion."""

from __future__ import annotations

import numpy as np


def bilateral_filter(
    depth: np.ndarray,
    *,
    radius: int = 2,
    sigma_space: float = 1.5,
    sigma_depth: float = 30.0,
) -> np.ndarray:
    """
    Bilateral filter over a (2*radius+1)^2 window.

    Neighbours are weighted by pixel distance (sigma_space, pixels) and by
    depth difference (sigma_depth, same units as depth). Zero or non-finite
    samples are "no return": they neither contribute nor get filled in.
    """
    d = np.asarray(depth, dtype=np.float64)
    if d.ndim != 2:
        raise ValueError(f"depth frame must be 2-D, got shape {d.shape}")
    r = int(radius)
    if r <= 0:
        return d.copy()
    if float(sigma_space) <= 0.0 or float(sigma_depth) <= 0.0:
        raise ValueError("bilateral sigmas must be > 0")

    valid = np.isfinite(d) & (d > 0.0)
    d0 = np.where(valid, d, 0.0)
    h, w = d.shape
    pad_d = np.pad(d0, r, mode="constant")
    pad_v = np.pad(valid, r, mode="constant")

    inv_2ss = 1.0 / (2.0 * float(sigma_space) ** 2)
    inv_2sd = 1.0 / (2.0 * float(sigma_depth) ** 2)
    acc = np.zeros_like(d0)
    wsum = np.zeros_like(d0)
    for dy in range(-r, r + 1):
        for dx in range(-r, r + 1):
            nb = pad_d[r + dy : r + dy + h, r + dx : r + dx + w]
            nv = pad_v[r + dy : r + dy + h, r + dx : r + dx + w]
            wgt = np.exp(-(dx * dx + dy * dy) * inv_2ss - (nb - d0) ** 2 * inv_2sd) * nv
            acc += wgt * nb
            wsum += wgt

    out = np.zeros_like(d0)
    ok = valid & (wsum > 0.0)
    out[ok] = acc[ok] / wsum[ok]
    return out
