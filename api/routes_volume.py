from __future__ import annotations

import io
import logging

import numpy as np
from fastapi import APIRouter, File, HTTPException, Request, Response, UploadFile
from pydantic import ValidationError

from contracts.frame_packet import FramePacketMeta, RaycastRequest, VolumeFilePayload
from imaging.depth_io import decode_depth_u16, read_depth_png_bytes
from imaging.render import normals_to_rgb, png_bytes, shade_lambertian
from validation.frame_validation import normalize_quat_xyzw, validate_frame_meta
from world.camera import Camera
from world.errors import VolumePersistenceError
from world.tsdf_volume import load_from_file

logger = logging.getLogger(__name__)

router = APIRouter(tags=["volume"])


@router.post("/volume/frame")
async def post_frame(
    request: Request,
    meta: UploadFile = File(...),
    depth: UploadFile = File(...),
) -> dict:
    state = request.app.state.runtime
    try:
        meta_payload = FramePacketMeta.model_validate_json(await meta.read())
    except ValidationError as exc:
        raise HTTPException(
            status_code=400,
            detail={"status": "INVALID_META", "errors": exc.errors(include_url=False, include_context=False)},
        ) from exc

    depth_bytes = await depth.read()
    validated, errors = validate_frame_meta(
        meta_payload.model_dump(),
        depth_bytes=depth_bytes,
        last_timestamp=state.last_timestamp,
    )
    if errors:
        raise HTTPException(status_code=400, detail={"status": "INVALID_FRAMEPACKET", "errors": errors})

    dm = validated["depth_meta"]
    try:
        if dm.get("encoding") == "png":
            depth_raw = read_depth_png_bytes(depth_bytes)
        else:
            depth_raw = decode_depth_u16(depth_bytes, dm["width"], dm["height"])
    except (OSError, ValueError) as exc:
        raise HTTPException(status_code=400, detail={"status": "INVALID_DEPTH", "msg": str(exc)}) from exc
    if depth_raw.shape != (int(dm["height"]), int(dm["width"])):
        raise HTTPException(
            status_code=400,
            detail={"status": "INVALID_DEPTH", "msg": f"depth image is {depth_raw.shape[1]}x{depth_raw.shape[0]}"},
        )
    camera = Camera.from_dicts(validated["intrinsics"], validated["pose"])

    volume = state.get_volume()
    updated = volume.integrate(depth_raw, camera, depth_scale=float(dm["scale_per_unit"]))
    state.last_timestamp = float(validated["timestamp"])
    logger.info("Frame %s integrated", meta_payload.frame_id, extra={"fields": {"voxels_updated": updated}})
    return {
        "status": "ok",
        "frame_id": meta_payload.frame_id,
        "frames": int(volume.frames_integrated),
        "voxels_updated": int(updated),
    }


@router.post("/volume/raycast")
def post_raycast(request: Request, payload: RaycastRequest) -> Response:
    state = request.app.state.runtime
    qn, qerr = normalize_quat_xyzw(payload.pose.quaternion)
    if qn is None:
        raise HTTPException(status_code=400, detail={"status": "INVALID_POSE", "msg": qerr})
    try:
        camera = Camera.from_dicts(payload.intrinsics.model_dump(), {"position": payload.pose.position, "quaternion": qn})
    except ValueError as exc:
        raise HTTPException(status_code=400, detail={"status": "INVALID_POSE", "msg": str(exc)}) from exc

    result = state.get_volume().raycast(camera, payload.width, payload.height)

    if payload.format == "normals_png":
        return Response(content=png_bytes(normals_to_rgb(result.normals)), media_type="image/png")
    if payload.format == "shaded_png":
        light = payload.light if payload.light is not None else camera.position.tolist()
        return Response(content=png_bytes(shade_lambertian(result.vertices, result.normals, light)), media_type="image/png")

    buf = io.BytesIO()
    np.savez_compressed(buf, vertices=result.vertices.astype(np.float32), normals=result.normals.astype(np.float32))
    return Response(content=buf.getvalue(), media_type="application/octet-stream")


@router.get("/volume/stats")
def volume_stats(request: Request) -> dict:
    return request.app.state.runtime.get_volume().stats()


@router.post("/volume/reset")
def volume_reset(request: Request) -> dict:
    state = request.app.state.runtime
    state.get_volume().reset()
    state.last_timestamp = None
    return {"status": "ok"}


@router.post("/volume/save")
def volume_save(request: Request, payload: VolumeFilePayload) -> dict:
    state = request.app.state.runtime
    path = state.volume_path(payload.name)
    try:
        state.get_volume().save_to_file(path)
    except VolumePersistenceError as exc:
        raise HTTPException(status_code=500, detail={"status": "SAVE_FAILED", "msg": str(exc)}) from exc
    return {"status": "ok", "path": str(path).replace("\\", "/")}


@router.post("/volume/load")
def volume_load(request: Request, payload: VolumeFilePayload) -> dict:
    state = request.app.state.runtime
    path = state.volume_path(payload.name)
    if not path.is_file():
        raise HTTPException(status_code=404, detail={"status": "NOT_FOUND", "name": payload.name})
    try:
        volume = load_from_file(
            path,
            integration=state.config.integration.to_runtime(),
            raycast=state.config.raycast.to_runtime(),
        )
    except VolumePersistenceError as exc:
        raise HTTPException(status_code=500, detail={"status": "LOAD_FAILED", "msg": str(exc)}) from exc
    state.volume = volume
    state.last_timestamp = None
    return {"status": "ok", "dims": [int(d) for d in volume.dims]}


@router.get("/config/status")
def config_status(request: Request) -> dict:
    return request.app.state.runtime.status()
