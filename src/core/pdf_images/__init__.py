"""Render PDF page ranges to images served from short-lived sessions."""

from .config import AppConfig, load_config
from .core import ConversionService
from .errors import ConversionError
from .lifecycle import CleanupScheduler
from .models import ConversionRequest, ConversionResult

__all__ = [
    "AppConfig",
    "CleanupScheduler",
    "ConversionError",
    "ConversionRequest",
    "ConversionResult",
    "ConversionService",
    "load_config",
]
