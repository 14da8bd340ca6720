from .executors import conversion_limiter, get_limiter, run_sync

__all__ = ["conversion_limiter", "get_limiter", "run_sync"]
