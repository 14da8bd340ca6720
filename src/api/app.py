from __future__ import annotations

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from core.pdf_images.config import AppConfig, load_config
from core.pdf_images.core import ConversionService
from core.pdf_images.lifecycle import CleanupScheduler, sweep_orphans
from core.pdf_images.log_utils import configure_logging, logger
from core.settings import Settings, get_settings

from .routers import convert, health
from .utils import conversion_limiter


def create_app(
    config: AppConfig | None = None,
    *,
    service: ConversionService | None = None,
) -> FastAPI:
    config = config or _prepare_config(get_settings())
    if not config.runtime.enable_api:
        raise RuntimeError("API is disabled. Enable it via configuration or environment.")
    runtime = config.runtime
    configure_logging(
        level=runtime.log_level,
        file_path=runtime.log_dir / runtime.service_log_file if runtime.service_log_file else None,
        force=True,
    )

    if service is None:
        scheduler = CleanupScheduler(runtime.cleanup)
        service = ConversionService(config, scheduler=scheduler)

    app = FastAPI(title="PDF Page Image Service", version=health.VERSION)
    app.state.config = config
    app.state.service = service

    app.include_router(health.router)
    app.include_router(convert.router)

    runtime.output_dir.mkdir(parents=True, exist_ok=True)
    app.mount(
        "/" + runtime.public_prefix.strip("/"),
        StaticFiles(directory=runtime.output_dir),
        name="images",
    )

    @app.on_event("startup")
    async def _startup() -> None:  # pragma: no cover - FastAPI lifecycle
        if runtime.cleanup.sweep_on_startup:
            reports = sweep_orphans(
                runtime.output_dir,
                runtime.temp_dir,
                older_than_s=runtime.cleanup.retention_s,
            )
            if reports:
                logger.info(f"Removed {len(reports)} orphaned session(s) from a previous run")
        app.state.limiter = conversion_limiter(runtime.max_inflight_requests)
        service.scheduler.start()

    @app.on_event("shutdown")
    async def _shutdown() -> None:  # pragma: no cover - FastAPI lifecycle
        service.scheduler.stop(flush=True)
        service.close()

    return app


def _prepare_config(settings: Settings) -> AppConfig:
    config = load_config(settings.config_path)
    if settings.enable_api is not None:
        config.runtime.enable_api = settings.enable_api
    if settings.output_dir is not None:
        config.runtime.output_dir = settings.output_dir
    if settings.host is not None:
        config.api.host = settings.host
    if settings.port is not None:
        config.api.port = settings.port
    return config


__all__ = ["create_app"]
