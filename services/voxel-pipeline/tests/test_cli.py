from __future__ import annotations

import json
from pathlib import Path

import pytest

from glb_fixtures import EARTH_RADIUS, build_glb, square_facing_world_y
from tile_fakes import FakeFetcher

BASE = "https://tiles.example/v1"
ROOT_URL = f"{BASE}/root.json"


@pytest.fixture
def fake_fetcher(monkeypatch: pytest.MonkeyPatch) -> FakeFetcher:
    positions, indices = square_facing_world_y(1.0)
    fetcher = FakeFetcher(
        {
            ROOT_URL: {
                "root": {
                    "boundingVolume": {
                        "box": [0, EARTH_RADIUS, 0, 50, 0, 0, 0, 50, 0, 0, 0, 50]
                    },
                    "content": {"uri": "square.glb"},
                }
            },
            f"{BASE}/square.glb": build_glb(positions, indices=indices),
        }
    )
    monkeypatch.setattr("voxel_jobs.cli.HttpxFetcher", lambda **kwargs: fetcher)
    return fetcher


@pytest.fixture
def config_path(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    path = tmp_path / "voxel-pipeline.yaml"
    path.write_text("voxelizer:\n  default_resolution: 10\n", encoding="utf-8")
    monkeypatch.delenv("EARTH_VOXELS_TILES_API_KEY", raising=False)

    from voxel_jobs.config import get_voxel_pipeline_config

    get_voxel_pipeline_config.cache_clear()
    return path


def test_run_writes_voxel_buffer(
    fake_fetcher: FakeFetcher,
    config_path: Path,
    tmp_path: Path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    from voxel_jobs.cli import main

    out = tmp_path / "out" / "voxels.bin"
    code = main(
        [
            "run",
            "--lat", "0",
            "--lon", "90",
            "--radius", "100",
            "--key", "K",
            "--root-url", ROOT_URL,
            "--config", str(config_path),
            "--out", str(out),
        ]
    )

    assert code == 0
    assert out.stat().st_size == 200 * 16
    summary = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
    assert summary["voxels"] == 200
    assert summary["bytes"] == 3200
    assert summary["record_size"] == 16
    assert summary["stats"]["payloads_ok"] == 1
    assert fake_fetcher.requested(f"{BASE}/square.glb") == [f"{BASE}/square.glb?key=K"]


def test_run_reads_key_from_env(
    fake_fetcher: FakeFetcher,
    config_path: Path,
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    from voxel_jobs.cli import main

    monkeypatch.setenv("EARTH_VOXELS_TILES_API_KEY", "ENVKEY")
    out = tmp_path / "voxels.bin"
    main(
        [
            "run",
            "--lat", "0",
            "--lon", "90",
            "--radius", "100",
            "--root-url", ROOT_URL,
            "--config", str(config_path),
            "--resolution", "5",
            "--out", str(out),
        ]
    )

    assert fake_fetcher.requests[0] == f"{ROOT_URL}?key=ENVKEY"
    assert out.stat().st_size > 0


def test_run_rejects_invalid_query(
    fake_fetcher: FakeFetcher, config_path: Path, tmp_path: Path
) -> None:
    from voxel_jobs.cli import main

    with pytest.raises(SystemExit) as excinfo:
        main(
            [
                "run",
                "--lat", "91",
                "--lon", "0",
                "--radius", "100",
                "--key", "K",
                "--config", str(config_path),
                "--out", str(tmp_path / "voxels.bin"),
            ]
        )
    assert excinfo.value.code == 2
    assert fake_fetcher.requests == []


def test_run_requires_out() -> None:
    from voxel_jobs.cli import main

    with pytest.raises(SystemExit):
        main(["run", "--lat", "0", "--lon", "0", "--radius", "1"])
