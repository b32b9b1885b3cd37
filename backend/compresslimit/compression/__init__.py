from .models import CompressionError, CompressionResult, DocumentAsset, MediaKind, RasterAsset, TaskStatus
from .orchestrator import CompressionOrchestrator

__all__ = [
    "CompressionOrchestrator",
    "CompressionError",
    "CompressionResult",
    "DocumentAsset",
    "MediaKind",
    "RasterAsset",
    "TaskStatus",
]
