from __future__ import annotations

import threading

import pytest


def _query():
    from voxel_jobs.pipeline import VoxelQuery

    return VoxelQuery(latitude=1.0, longitude=2.0, radius_m=50.0, resolution=8, credential_key="K")


def _result(voxels: int):
    from voxel_jobs.pipeline import PipelineResult, PipelineStats
    from voxelizer.wire import VOXEL_RECORD_SIZE

    data = bytes(range(256)) * (voxels * VOXEL_RECORD_SIZE // 256 + 1)
    return PipelineResult(data=data[: voxels * VOXEL_RECORD_SIZE], stats=PipelineStats(voxels=voxels))


def test_job_lifecycle() -> None:
    from voxel_jobs.coordinator import JobCoordinator, JobStatus

    gate = threading.Event()

    def runner(query):
        gate.wait(timeout=5)
        return _result(10)

    with JobCoordinator(runner, max_workers=1) as coordinator:
        job_id = coordinator.submit(_query())
        assert coordinator.poll(job_id) == JobStatus.RUNNING
        assert coordinator.result_size(job_id) == 0
        assert coordinator.copy_result(job_id, bytearray(16), 16) == 0

        gate.set()
        assert coordinator.wait(job_id, timeout=5) == JobStatus.DONE
        assert coordinator.result_size(job_id) == 160

        dest = bytearray(200)
        assert coordinator.copy_result(job_id, dest, 40) == 40
        assert bytes(dest[:40]) == coordinator.read_result(job_id, 0, 40)
        assert coordinator.copy_result(job_id, dest, 200, offset=150) == 10
        assert coordinator.copy_result(job_id, bytearray(8), 100) == 8

        snapshot = coordinator.snapshot(job_id)
        assert snapshot.status == JobStatus.DONE
        assert snapshot.stats["voxels"] == 10
        assert snapshot.finished_at is not None

        assert coordinator.release(job_id) is True
        assert coordinator.poll(job_id) == JobStatus.UNKNOWN
        assert coordinator.release(job_id) is False


def test_failed_job_reports_error(caplog: pytest.LogCaptureFixture) -> None:
    from voxel_jobs.coordinator import JobCoordinator, JobStatus

    def runner(query):
        raise RuntimeError("tile tree exploded")

    caplog.set_level("INFO")
    with JobCoordinator(runner) as coordinator:
        job_id = coordinator.submit(_query())
        assert coordinator.wait(job_id, timeout=5) == JobStatus.FAILED
        snapshot = coordinator.snapshot(job_id)
        assert snapshot.error == "tile tree exploded"
        assert coordinator.result_size(job_id) == 0
        assert coordinator.read_result(job_id) == b""

    record = next(r for r in caplog.records if r.getMessage() == "voxel_job_failed")
    assert record.job_id == job_id


def test_unknown_ids_and_ids_are_fresh() -> None:
    from voxel_jobs.coordinator import JobCoordinator, JobStatus

    with JobCoordinator(lambda q: _result(1)) as coordinator:
        assert coordinator.poll(999) == JobStatus.UNKNOWN
        assert coordinator.snapshot(999) is None
        first = coordinator.submit(_query())
        second = coordinator.submit(_query())
        assert first != second
        coordinator.wait(first, timeout=5)
        coordinator.wait(second, timeout=5)


def test_released_running_job_discards_its_result() -> None:
    from voxel_jobs.coordinator import JobCoordinator, JobStatus

    gate = threading.Event()

    def runner(query):
        gate.wait(timeout=5)
        return _result(3)

    coordinator = JobCoordinator(runner, max_workers=1)
    job_id = coordinator.submit(_query())
    assert coordinator.release(job_id)
    gate.set()
    coordinator.shutdown()
    assert coordinator.poll(job_id) == JobStatus.UNKNOWN


def test_status_codes_match_the_query_surface() -> None:
    from voxel_jobs.coordinator import JobStatus

    assert [int(s) for s in JobStatus] == [0, 1, -1, -2]
