"""Compression inputs, outcomes and task state."""
from dataclasses import dataclass
from enum import Enum
from pathlib import PurePath
from typing import Callable, Optional, Union

LOAD_IMAGE_FAILED = "Failed to load image. File may be corrupted."
BUDGET_UNREACHABLE = "Could not compress image to target size. Try a larger target."
LOAD_PDF_FAILED = "Could not load PDF. The file may be corrupted or password-protected."
GENERIC_FAILURE = "Compression failed."


class MediaKind(str, Enum):
    JPEG = "image/jpeg"
    PNG = "image/png"
    PDF = "application/pdf"

    @property
    def is_image(self) -> bool:
        return self in (MediaKind.JPEG, MediaKind.PNG)


class TaskStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class CompressionError(Exception):
    """Compression of one file failed; str(error) is shown to the user."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class OrchestratorBusyError(RuntimeError):
    """Operation is not allowed while a run is in progress."""


@dataclass(frozen=True)
class RasterAsset:
    name: str
    data: bytes
    media_kind: MediaKind

    def __post_init__(self):
        if not self.media_kind.is_image:
            raise ValueError(f"RasterAsset needs an image kind, got {self.media_kind.value}")

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def base_name(self) -> str:
        return PurePath(self.name).stem


@dataclass(frozen=True)
class DocumentAsset:
    name: str
    data: bytes

    @property
    def media_kind(self) -> MediaKind:
        return MediaKind.PDF

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def base_name(self) -> str:
        return PurePath(self.name).stem


Asset = Union[RasterAsset, DocumentAsset]


@dataclass(frozen=True)
class ProgressEvent:
    percent: int
    step: str


ProgressSink = Callable[[ProgressEvent], None]

INITIAL_PROGRESS = ProgressEvent(0, "Initializing…")


@dataclass(frozen=True)
class CompressionResult:
    data: bytes
    media_kind: MediaKind
    met_within_budget: bool

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class TaskSnapshot:
    """Read-only view of a task for display; carries no output bytes."""

    task_id: str
    filename: str
    media_kind: MediaKind
    status: TaskStatus
    percent: int
    step: str
    original_size: int
    compressed_size: Optional[int]
    reduction_percent: Optional[float]
    met_within_budget: Optional[bool]
    download_name: Optional[str]
    has_preview: bool
    error: Optional[str]

    def to_dict(self) -> dict:
        return {
            "task_id": self.task_id,
            "filename": self.filename,
            "media_kind": self.media_kind.value,
            "status": self.status.value,
            "progress": {"percent": self.percent, "step": self.step},
            "original_size": self.original_size,
            "compressed_size": self.compressed_size,
            "reduction_percent": self.reduction_percent,
            "met_within_budget": self.met_within_budget,
            "download_name": self.download_name,
            "has_preview": self.has_preview,
            "error": self.error,
        }


@dataclass(frozen=True)
class CompressionStats:
    completed: int
    total_original_size: int
    total_compressed_size: int
    mean_reduction_percent: float
    all_within_budget: bool

    def to_dict(self) -> dict:
        return {
            "completed": self.completed,
            "total_original_size": self.total_original_size,
            "total_compressed_size": self.total_compressed_size,
            "mean_reduction_percent": self.mean_reduction_percent,
            "all_within_budget": self.all_within_budget,
        }


class Task:
    """In-memory state of one queued file. Mutated only by the orchestrator."""

    def __init__(self, task_id: str, asset: Asset):
        self.task_id = task_id
        self.asset = asset
        self.status = TaskStatus.QUEUED
        self.progress: ProgressEvent = INITIAL_PROGRESS
        self.result: Optional[CompressionResult] = None
        self.error: Optional[str] = None
        self.preview_handle: Optional[str] = None

    @property
    def original_size(self) -> int:
        return self.asset.size

    @property
    def compressed_size(self) -> Optional[int]:
        return self.result.size if self.result else None

    @property
    def reduction_percent(self) -> Optional[float]:
        if self.result is None or self.original_size == 0:
            return None
        return (1.0 - self.result.size / self.original_size) * 100.0

    @property
    def download_name(self) -> Optional[str]:
        """<base>_compressed.<ext>; JPEG output is always .jpg."""
        if self.result is None:
            return None
        if self.result.media_kind == MediaKind.JPEG:
            ext = "jpg"
        else:
            ext = PurePath(self.asset.name).suffix.lstrip(".") or "jpg"
        return f"{self.asset.base_name}_compressed.{ext}"

    def snapshot(self) -> TaskSnapshot:
        reduction = self.reduction_percent
        return TaskSnapshot(
            task_id=self.task_id,
            filename=self.asset.name,
            media_kind=self.asset.media_kind,
            status=self.status,
            percent=self.progress.percent,
            step=self.progress.step,
            original_size=self.original_size,
            compressed_size=self.compressed_size,
            reduction_percent=round(reduction, 1) if reduction is not None else None,
            met_within_budget=self.result.met_within_budget if self.result else None,
            download_name=self.download_name,
            has_preview=self.preview_handle is not None,
            error=self.error,
        )


@dataclass(frozen=True)
class Notification:
    """Side-channel message for the user; never changes task state."""

    level: str  # "success" | "warning" | "error"
    message: str
    task_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {"level": self.level, "message": self.message, "task_id": self.task_id}
