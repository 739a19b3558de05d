from __future__ import annotations

import time
from typing import Callable

from fastapi import Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest

REQUESTS_TOTAL = None
REQUEST_LATENCY = None
FRAMES_TOTAL = None
VOXELS_UPDATED_TOTAL = None
INTEGRATE_LATENCY = None
RAYCAST_LATENCY = None
RAYCAST_HIT_RATIO = None


def setup_metrics() -> None:
    global REQUESTS_TOTAL, REQUEST_LATENCY, FRAMES_TOTAL, VOXELS_UPDATED_TOTAL
    global INTEGRATE_LATENCY, RAYCAST_LATENCY, RAYCAST_HIT_RATIO

    if REQUESTS_TOTAL is None:
        REQUESTS_TOTAL = Counter(
            "http_requests_total", "Total HTTP requests", ["method", "path", "status"]
        )

    if REQUEST_LATENCY is None:
        REQUEST_LATENCY = Histogram(
            "http_request_duration_seconds", "HTTP request latency", ["method", "path"]
        )

    if FRAMES_TOTAL is None:
        FRAMES_TOTAL = Counter("tsdf_frames_integrated_total", "Depth frames fused into the volume")

    if VOXELS_UPDATED_TOTAL is None:
        VOXELS_UPDATED_TOTAL = Counter("tsdf_voxels_updated_total", "Voxel samples updated by integration")

    if INTEGRATE_LATENCY is None:
        INTEGRATE_LATENCY = Histogram("tsdf_integrate_duration_seconds", "Time to fuse one depth frame")

    if RAYCAST_LATENCY is None:
        RAYCAST_LATENCY = Histogram("tsdf_raycast_duration_seconds", "Time to raycast one view")

    if RAYCAST_HIT_RATIO is None:
        RAYCAST_HIT_RATIO = Gauge("tsdf_raycast_hit_ratio", "Fraction of pixels with a surface in the last raycast")


def record_integrate(seconds: float, voxels_updated: int) -> None:
    if FRAMES_TOTAL is not None:
        FRAMES_TOTAL.inc()
    if VOXELS_UPDATED_TOTAL is not None:
        VOXELS_UPDATED_TOTAL.inc(max(0, int(voxels_updated)))
    if INTEGRATE_LATENCY is not None:
        INTEGRATE_LATENCY.observe(max(0.0, float(seconds)))


def record_raycast(seconds: float, hits: int, pixels: int) -> None:
    if RAYCAST_LATENCY is not None:
        RAYCAST_LATENCY.observe(max(0.0, float(seconds)))
    if RAYCAST_HIT_RATIO is not None and pixels > 0:
        RAYCAST_HIT_RATIO.set(float(hits) / float(pixels))


async def metrics_middleware(request: Request, call_next: Callable) -> Response:
    t0 = time.perf_counter()
    response = await call_next(request)
    dt = max(0.0, float(time.perf_counter() - t0))

    if REQUESTS_TOTAL is not None:
        REQUESTS_TOTAL.labels(request.method, request.url.path, str(response.status_code)).inc()

    if REQUEST_LATENCY is not None:
        REQUEST_LATENCY.labels(request.method, request.url.path).observe(dt)

    return response


def metrics_response() -> Response:
    payload = generate_latest()
    return Response(content=payload, media_type=CONTENT_TYPE_LATEST)
