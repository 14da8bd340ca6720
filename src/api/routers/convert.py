from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request

from api.dependencies import get_service
from api.utils import get_limiter, run_sync
from core.pdf_images.core import ConversionError, ConversionService
from core.pdf_images.log_utils import logger
from models.schemas import ConvertRequest, ConvertResponse, ErrorResponse

router = APIRouter(tags=["conversion"])

_ERROR_RESPONSES = {
    status: {"model": ErrorResponse} for status in (400, 422, 500, 502, 503)
}


@router.post(
    "/convert",
    summary="Render a page range of a remote PDF to images",
    response_model=ConvertResponse,
    responses=_ERROR_RESPONSES,
)
async def convert_document(
    payload: ConvertRequest,
    request: Request,
    service: ConversionService = Depends(get_service),
) -> ConvertResponse:
    base_url = str(request.base_url).rstrip("/")
    try:
        result = await run_sync(
            service.convert,
            payload.to_domain(),
            base_url=base_url,
            limiter=get_limiter(request),
        )
    except ConversionError as exc:
        raise HTTPException(
            status_code=exc.http_status,
            detail={"code": exc.code, "message": str(exc)},
        ) from exc
    except Exception as exc:
        logger.exception("Conversion request failed")
        raise HTTPException(
            status_code=500,
            detail={"code": "INTERNAL_ERROR", "message": "An error occurred while processing the PDF"},
        ) from exc
    return ConvertResponse(links=result.links, metadata=result.metadata)


__all__ = ["router"]
