from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from core.pdf_images.models import ConversionRequest


class ConvertRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    pdf_url: str | None = Field(None, alias="pdfUrl")
    first_page: int | None = Field(None, alias="firstPage")
    last_page: int | None = Field(None, alias="lastPage")
    total_pages: int | None = Field(None, alias="totalPages")
    scale_page_to: int | None = Field(None, alias="scalePageTo", ge=16, le=10000)

    def to_domain(self) -> ConversionRequest:
        return ConversionRequest(
            source=self.pdf_url,
            first_page=self.first_page,
            last_page=self.last_page,
            total_pages=self.total_pages,
            scale_hint=self.scale_page_to,
        )


class ConvertResponse(BaseModel):
    links: list[str]
    metadata: dict[str, Any]


class ErrorDetail(BaseModel):
    code: str
    message: str


class HealthStatus(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: str
    version: str
    pending_cleanups: int = Field(0, alias="pendingCleanups")
    cleanup_running: bool = Field(False, alias="cleanupRunning")


class ErrorResponse(BaseModel):
    detail: ErrorDetail
