"""Service layer — durable stores built on the DAOs."""

from watchman.services.dedup_service import DedupService
from watchman.services.watermark_service import WatermarkService

__all__ = ["DedupService", "WatermarkService"]
