from __future__ import annotations

import argparse
import json
import logging
import os
from pathlib import Path
from typing import Optional, Sequence

from tileset.elevation import DEFAULT_ELEVATION_URL
from tileset.fetch import HttpxFetcher
from tileset.resolver import DEFAULT_ROOT_URL
from voxelizer.wire import VOXEL_RECORD_SIZE

from .config import VoxelPipelineConfig, get_voxel_pipeline_config
from .pipeline import VoxelPipeline, VoxelQuery

API_KEY_ENV = "EARTH_VOXELS_TILES_API_KEY"


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m voxel_jobs",
        description="Voxelize the 3D tiles around a geographic point.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Run one voxel query and write the voxel buffer")
    run.add_argument("--lat", type=float, required=True, help="Latitude in degrees")
    run.add_argument("--lon", type=float, required=True, help="Longitude in degrees")
    run.add_argument("--radius", type=float, required=True, help="Query radius in metres")
    run.add_argument(
        "--resolution",
        type=int,
        default=None,
        help="Voxels along the longest axis of each payload (default: from config)",
    )
    run.add_argument(
        "--key",
        default=None,
        help=f"Tiles API key (default: ${API_KEY_ENV})",
    )
    run.add_argument(
        "--root-url",
        default=DEFAULT_ROOT_URL,
        help=f"Root tileset URL (default: {DEFAULT_ROOT_URL})",
    )
    run.add_argument(
        "--config",
        default=None,
        help="Path to voxel-pipeline.yaml (default: config dir, defaults if absent)",
    )
    run.add_argument(
        "--elevation",
        action=argparse.BooleanOptionalAction,
        default=False,
        help="Lift the query sphere onto the terrain height (default: disabled)",
    )
    run.add_argument("--out", required=True, help="File to write the voxel records into")
    run.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser


def _load_config(path: Optional[str]) -> VoxelPipelineConfig:
    try:
        return get_voxel_pipeline_config(path)
    except FileNotFoundError:
        if path is not None:
            raise
        return VoxelPipelineConfig()


def _run(args: argparse.Namespace) -> int:
    config = _load_config(args.config)
    resolution = args.resolution or config.voxelizer.default_resolution
    credential_key = args.key if args.key is not None else os.environ.get(API_KEY_ENV, "")

    query = VoxelQuery(
        latitude=args.lat,
        longitude=args.lon,
        radius_m=args.radius,
        resolution=resolution,
        credential_key=credential_key,
        root_url=args.root_url,
    )

    with HttpxFetcher(timeout_s=config.fetch.timeout_s) as fetcher:
        pipeline = VoxelPipeline(
            fetcher,
            config=config,
            use_elevation=bool(args.elevation),
            elevation_url=DEFAULT_ELEVATION_URL,
        )
        result = pipeline.run(query)

    out_path = Path(args.out)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_bytes(result.data)

    payload = {
        "schema_version": 1,
        "out": str(out_path),
        "bytes": len(result.data),
        "record_size": VOXEL_RECORD_SIZE,
        "voxels": result.voxel_count,
        "stats": result.stats.as_dict(),
    }
    print(json.dumps(payload, ensure_ascii=True, separators=(",", ":"), sort_keys=True))
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if getattr(args, "verbose", False) else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    try:
        if args.command == "run":
            return _run(args)
    except ValueError as exc:
        parser.error(str(exc))
    return 2
