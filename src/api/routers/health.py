from __future__ import annotations

from fastapi import APIRouter, Depends

from api.dependencies import get_service
from core.pdf_images.core import ConversionService
from models.schemas import HealthStatus

router = APIRouter(tags=["health"])

VERSION = "0.1.0"


@router.get("/health", summary="Health check", response_model=HealthStatus)
def health(service: ConversionService = Depends(get_service)) -> HealthStatus:
    scheduler = service.scheduler
    return HealthStatus(
        status="ok",
        version=VERSION,
        pending_cleanups=len(scheduler),
        cleanup_running=scheduler.running,
    )


__all__ = ["router"]
