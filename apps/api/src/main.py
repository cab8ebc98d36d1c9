from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import get_settings
from observability import (
    TraceIdMiddleware,
    configure_logging,
    register_exception_handlers,
)
from routers.voxel_jobs import router as voxel_jobs_router
from tileset.fetch import Fetcher, HttpxFetcher
from voxel_jobs.config import VoxelPipelineConfig, get_voxel_pipeline_config
from voxel_jobs.coordinator import JobCoordinator
from voxel_jobs.pipeline import VoxelPipeline


def _load_pipeline_config() -> VoxelPipelineConfig:
    try:
        return get_voxel_pipeline_config()
    except FileNotFoundError:
        return VoxelPipelineConfig()


def create_app(
    *,
    fetcher: Optional[Fetcher] = None,
    pipeline_config: Optional[VoxelPipelineConfig] = None,
) -> FastAPI:
    settings = get_settings()
    configure_logging(debug=settings.api.debug)

    pipeline_config = pipeline_config or _load_pipeline_config()
    owned_fetcher: Optional[HttpxFetcher] = None
    if fetcher is None:
        owned_fetcher = HttpxFetcher(
            timeout_s=settings.tiles.timeout_s,
            user_agent=settings.tiles.user_agent,
        )
        fetcher = owned_fetcher

    pipeline = VoxelPipeline(
        fetcher,
        config=pipeline_config,
        use_elevation=settings.tiles.use_elevation,
        elevation_url=settings.tiles.elevation_url,
    )
    coordinator = JobCoordinator(pipeline.run, max_workers=pipeline_config.jobs.max_workers)

    app = FastAPI(title="Earth Voxels API", debug=settings.api.debug)
    app.state.settings = settings
    app.state.pipeline_config = pipeline_config
    app.state.voxel_jobs = coordinator

    app.add_middleware(TraceIdMiddleware)

    @app.on_event("shutdown")
    def _shutdown_voxel_jobs() -> None:
        coordinator.shutdown(wait=False)
        if owned_fetcher is not None:
            owned_fetcher.close()

    if settings.api.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.api.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    register_exception_handlers(app)

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    api_v1 = APIRouter(prefix="/api/v1")
    api_v1.include_router(voxel_jobs_router)
    app.include_router(api_v1)

    return app


app = create_app()
