"""Sequential compression of a queue of files with per-task state, progress and previews."""
import logging
import threading
import uuid
from typing import Callable, Iterable, Optional

from compresslimit.analytics import AnalyticsSink, NullAnalytics
from compresslimit.compression.document import DocumentReviser
from compresslimit.compression.image import ImageSearchEngine
from compresslimit.compression.models import (
    GENERIC_FAILURE,
    INITIAL_PROGRESS,
    Asset,
    CompressionError,
    CompressionResult,
    CompressionStats,
    DocumentAsset,
    Notification,
    OrchestratorBusyError,
    ProgressEvent,
    RasterAsset,
    Task,
    TaskSnapshot,
    TaskStatus,
)
from compresslimit.compression.previews import PreviewRegistry

logger = logging.getLogger("compresslimit.orchestrator")

RUNNABLE = (TaskStatus.QUEUED, TaskStatus.FAILED)
FINISHED = (TaskStatus.COMPLETED, TaskStatus.FAILED)


class CompressionOrchestrator:
    """Owns the task queue and runs one compression at a time.

    The orchestrator is the only writer of task state. Readers (the HTTP layer,
    listeners) get immutable snapshots. ``on_change`` receives a fresh snapshot
    after every state transition and progress event; ``on_notify`` receives
    warnings and errors that do not change task state themselves.
    """

    def __init__(
        self,
        image_engine: Optional[ImageSearchEngine] = None,
        document_reviser: Optional[DocumentReviser] = None,
        analytics: Optional[AnalyticsSink] = None,
        previews: Optional[PreviewRegistry] = None,
        on_change: Optional[Callable[[list[TaskSnapshot]], None]] = None,
        on_notify: Optional[Callable[[Notification], None]] = None,
    ):
        self.image_engine = image_engine or ImageSearchEngine()
        self.document_reviser = document_reviser or DocumentReviser()
        self.analytics = analytics or NullAnalytics()
        self.previews = previews or PreviewRegistry()
        self.on_change = on_change
        self.on_notify = on_notify
        self._tasks: dict[str, Task] = {}
        self._lock = threading.RLock()
        self._running = False

    # --- queries -------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._running

    def snapshot(self) -> list[TaskSnapshot]:
        with self._lock:
            return [t.snapshot() for t in self._tasks.values()]

    def get_task(self, task_id: str) -> Optional[TaskSnapshot]:
        with self._lock:
            task = self._tasks.get(task_id)
            return task.snapshot() if task else None

    def __len__(self) -> int:
        return len(self._tasks)

    def get_preview(self, task_id: str) -> Optional[bytes]:
        with self._lock:
            task = self._require(task_id)
            if task.preview_handle is None:
                return None
            return self.previews.get(task.preview_handle)

    def stats(self) -> CompressionStats:
        with self._lock:
            done = [t for t in self._tasks.values() if t.status == TaskStatus.COMPLETED and t.result]
        if not done:
            return CompressionStats(0, 0, 0, 0.0, False)
        return CompressionStats(
            completed=len(done),
            total_original_size=sum(t.original_size for t in done),
            total_compressed_size=sum(t.result.size for t in done),
            mean_reduction_percent=round(sum(t.reduction_percent for t in done) / len(done), 1),
            all_within_budget=all(t.result.met_within_budget for t in done),
        )

    def completed_outputs(self) -> list[tuple[str, bytes]]:
        with self._lock:
            return [
                (t.download_name, t.result.data)
                for t in self._tasks.values()
                if t.status == TaskStatus.COMPLETED and t.result
            ]

    def download(self, task_id: str) -> tuple[bytes, str]:
        """Return output bytes and the suggested file name for a completed task."""
        with self._lock:
            task = self._require(task_id)
            if task.status != TaskStatus.COMPLETED or task.result is None:
                raise LookupError(f"Task {task_id} has no compressed output")
            result, name, reduction = task.result, task.download_name, task.reduction_percent
        self.analytics.file_downloaded(result.media_kind, result.size, reduction or 0.0)
        return result.data, name

    # --- queue management ----------------------------------------------------

    def enqueue(self, assets: Iterable[Asset]) -> list[str]:
        task_ids = []
        with self._lock:
            for asset in assets:
                task = Task(uuid.uuid4().hex, asset)
                self._tasks[task.task_id] = task
                task_ids.append(task.task_id)
        for task_id in task_ids:
            asset = self._tasks[task_id].asset
            self.analytics.file_accepted(asset.media_kind, asset.size)
        if task_ids:
            logger.info("Queued %d file(s)", len(task_ids))
            self._changed()
        return task_ids

    def remove(self, task_id: str) -> None:
        with self._lock:
            self._ensure_idle("remove files")
            task = self._require(task_id)
            del self._tasks[task_id]
            self._release_preview(task)
        self.analytics.file_removed()
        self._changed()

    def clear(self) -> int:
        with self._lock:
            self._ensure_idle("clear the queue")
            tasks = list(self._tasks.values())
            self._tasks.clear()
            for task in tasks:
                self._release_preview(task)
        if tasks:
            self._changed()
        return len(tasks)

    def reset(self, task_id: str) -> bool:
        """Put a finished task back in the queue. Returns False if it was not finished."""
        with self._lock:
            self._ensure_idle("re-compress")
            task = self._require(task_id)
            if task.status not in FINISHED:
                return False
            self._reset_task(task)
        self.analytics.recompress_requested()
        self._changed()
        return True

    def recompress_all(self) -> int:
        with self._lock:
            self._ensure_idle("re-compress")
            finished = [t for t in self._tasks.values() if t.status in FINISHED]
            for task in finished:
                self._reset_task(task)
        self.analytics.recompress_requested()
        if finished:
            self._changed()
        return len(finished)

    # --- running -------------------------------------------------------------

    def run_all(self, budget: int) -> list[TaskSnapshot]:
        """Compress every queued or failed task in submission order, one at a time."""
        if budget <= 0:
            raise ValueError(f"Budget must be positive, got {budget}")
        with self._lock:
            if self._running:
                raise OrchestratorBusyError("A compression run is already in progress")
            pending = [t for t in self._tasks.values() if t.status in RUNNABLE]
            self._running = True
        logger.info("Run started: %d file(s), budget=%d bytes", len(pending), budget)
        completed = 0
        try:
            for task in pending:
                if self._run_one(task, budget):
                    completed += 1
        finally:
            with self._lock:
                self._running = False
        logger.info("Run finished: %d of %d file(s) compressed", completed, len(pending))
        if completed:
            self._notify(Notification("success", f"{completed} file(s) compressed!"))
        return self.snapshot()

    def _run_one(self, task: Task, budget: int) -> bool:
        asset = task.asset
        with self._lock:
            task.status = TaskStatus.RUNNING
            task.progress = INITIAL_PROGRESS
            task.result = None
            task.error = None
        self._changed()
        self.analytics.compression_started(asset.media_kind, asset.size, budget)

        def on_progress(event: ProgressEvent) -> None:
            with self._lock:
                task.progress = event
            self._changed()

        try:
            result = self._dispatch(asset, budget, on_progress)
            preview = self.previews.mint(result.data) if result.media_kind.is_image else None
        except CompressionError as e:
            self._fail(task, e.reason)
            return False
        except Exception:
            logger.exception("Unexpected failure compressing %s", asset.name)
            self._fail(task, GENERIC_FAILURE)
            return False
        self._complete(task, result, preview)
        return True

    def _dispatch(self, asset: Asset, budget: int, on_progress) -> CompressionResult:
        if isinstance(asset, RasterAsset):
            return self.image_engine.compress(asset, budget, on_progress)
        if isinstance(asset, DocumentAsset):
            return self.document_reviser.compress(asset, budget, on_progress)
        raise TypeError(f"Unsupported asset type: {type(asset).__name__}")

    def _complete(self, task: Task, result: CompressionResult, preview: Optional[str]) -> None:
        with self._lock:
            self._release_preview(task)
            task.preview_handle = preview
            task.result = result
            task.status = TaskStatus.COMPLETED
            task.progress = ProgressEvent(100, "Compression complete.")
            reduction = task.reduction_percent
        self._changed()
        self.analytics.compression_succeeded(
            task.asset.media_kind, task.original_size, result.size, reduction or 0.0, result.met_within_budget
        )
        if not result.met_within_budget:
            self._notify(Notification(
                "warning",
                f'"{task.asset.name}": PDF compressed best-effort, still above target.',
                task.task_id,
            ))

    def _fail(self, task: Task, reason: str) -> None:
        logger.info("Compression failed for %s: %s", task.asset.name, reason)
        with self._lock:
            task.status = TaskStatus.FAILED
            task.error = reason
        self._changed()
        self.analytics.compression_failed(task.asset.media_kind, reason)
        self._notify(Notification("error", f'"{task.asset.name}": {reason}', task.task_id))

    # --- helpers -------------------------------------------------------------

    def _require(self, task_id: str) -> Task:
        task = self._tasks.get(task_id)
        if task is None:
            raise KeyError(task_id)
        return task

    def _ensure_idle(self, action: str) -> None:
        if self._running:
            raise OrchestratorBusyError(f"Cannot {action} while compression is running")

    def _reset_task(self, task: Task) -> None:
        self._release_preview(task)
        task.status = TaskStatus.QUEUED
        task.progress = INITIAL_PROGRESS
        task.result = None
        task.error = None

    def _release_preview(self, task: Task) -> None:
        if task.preview_handle is not None:
            self.previews.release(task.preview_handle)
            task.preview_handle = None

    def _changed(self) -> None:
        if self.on_change:
            self.on_change(self.snapshot())

    def _notify(self, notification: Notification) -> None:
        if self.on_notify:
            self.on_notify(notification)
