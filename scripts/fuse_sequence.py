#!/usr/bin/env python3
"""Fuse a TUM RGB-D depth sequence into a TSDF volume, save it, optionally render a view."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from api.state import build_volume  # noqa: E402
from config.load_config import AppConfig, find_default_config, load_app_config  # noqa: E402
from datasets.tum import TUMSequence  # noqa: E402
from imaging.render import save_normals_as_colour_png, save_rendered_scene_as_png  # noqa: E402
from observability.logging import setup_logging  # noqa: E402
from world.camera import Camera  # noqa: E402

logger = logging.getLogger("fuse_sequence")


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description=__doc__)
    p.add_argument("dataset", type=Path, help="TUM sequence root (contains depth.txt, groundtruth.txt)")
    p.add_argument("--config", type=Path, default=None, help="YAML config (default: TSDF_CONFIG or config/default.yaml)")
    p.add_argument("--out", type=Path, required=True, help="output volume file")
    p.add_argument("--limit", type=int, default=None)
    p.add_argument("--stride", type=int, default=1)
    p.add_argument("--translation-scale", type=float, default=1000.0, help="world units per metre")
    p.add_argument("--render-dir", type=Path, default=None, help="write normals/shaded PNGs of the first pose here")
    p.add_argument("--light", type=float, nargs=3, default=None, metavar=("X", "Y", "Z"))
    return p.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)

    cfg_path = args.config or find_default_config()
    config = load_app_config(cfg_path) if cfg_path is not None else AppConfig()
    setup_logging(level=config.observability.log_level, json_logs=config.observability.json_logs)

    cam_cfg = config.camera
    seq = TUMSequence(args.dataset, depth_scale=cam_cfg.depth_scale, translation_scale=args.translation_scale)
    volume = build_volume(config)
    camera = Camera.from_intrinsics(cam_cfg.fx, cam_cfg.fy, cam_cfg.cx, cam_cfg.cy, cam_cfg.width, cam_cfg.height)

    logger.info("Fusing %d associated frames from %s", len(seq), args.dataset)
    first_pose = None
    n = 0
    for frame in seq.frames(limit=args.limit, stride=args.stride):
        camera.set_pose(frame.pose)
        if first_pose is None:
            first_pose = frame.pose
        updated = volume.integrate(frame.depth, camera)
        n += 1
        logger.info("Integrated %s (%d voxels)", frame.depth_path.name, updated)

    if n == 0:
        logger.error("No frames with ground truth found in %s", args.dataset)
        return 2

    volume.save_to_file(args.out)

    if args.render_dir is not None and first_pose is not None:
        camera.set_pose(first_pose)
        vertices, normals = volume.raycast(camera)
        light = args.light if args.light is not None else camera.position.tolist()
        save_normals_as_colour_png(args.render_dir / "normals.png", normals)
        save_rendered_scene_as_png(args.render_dir / "render.png", vertices, normals, light)

    logger.info("Fused %d frames into %s", n, args.out)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
