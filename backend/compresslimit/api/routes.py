"""API routes for upload, compression and download."""
import asyncio
import logging
import uuid
from pathlib import PurePath

from fastapi import APIRouter, BackgroundTasks, Body, Depends, File, HTTPException, Request, UploadFile
from fastapi.responses import Response

from compresslimit import db
from compresslimit.archive import ARCHIVE_NAME, build_zip
from compresslimit.compression.models import OrchestratorBusyError, TaskStatus
from compresslimit.compression.orchestrator import CompressionOrchestrator
from compresslimit.config import (
    ALLOWED_CONTENT_TYPES,
    DEFAULT_TARGET_MB,
    MAX_FILE_SIZE_BYTES,
    MAX_FILE_SIZE_MB,
    MAX_FILES,
    MIN_TARGET_MB,
)
from compresslimit.intake import IncomingFile, Rejection, accept_files
from compresslimit.sessions import drop_session, get_session
from compresslimit.sizes import mb_to_bytes

logger = logging.getLogger("compresslimit.api")
router = APIRouter(prefix="/api", tags=["compress"])

_EXT_TO_MIME = {".jpg": "image/jpeg", ".jpeg": "image/jpeg", ".png": "image/png", ".pdf": "application/pdf"}


def get_or_create_session_id(request: Request) -> str:
    """Use X-Session-ID header or generate and attach to request for response header."""
    sid = (request.headers.get("X-Session-ID") or "").strip()
    if sid:
        return sid
    sid = str(uuid.uuid4())
    request.state.session_id = sid
    return sid


def get_orchestrator(session_id: str = Depends(get_or_create_session_id)) -> CompressionOrchestrator:
    return get_session(session_id).orchestrator


def _attachment(data: bytes, filename: str) -> Response:
    media_type = _EXT_TO_MIME.get(PurePath(filename).suffix.lower(), "application/octet-stream")
    return Response(
        content=data,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/limits")
def get_limits():
    """Return intake limits and target bounds for the client."""
    return {
        "max_files": MAX_FILES,
        "max_file_size_mb": MAX_FILE_SIZE_MB,
        "max_file_size_bytes": MAX_FILE_SIZE_BYTES,
        "allowed_types": sorted(ALLOWED_CONTENT_TYPES),
        "min_target_mb": MIN_TARGET_MB,
        "default_target_mb": DEFAULT_TARGET_MB,
    }


@router.post("/files")
async def upload_files(
    files: list[UploadFile] = File(...),
    orchestrator: CompressionOrchestrator = Depends(get_orchestrator),
):
    """Accept files into the session queue. Nothing is compressed until /compress is called."""
    incoming: list[IncomingFile] = []
    oversized: list[Rejection] = []
    for file in files:
        name = file.filename or "file"
        chunks = []
        total = 0
        while chunk := await file.read(1024 * 1024):
            total += len(chunk)
            if total > MAX_FILE_SIZE_BYTES:
                oversized.append(Rejection(name, f"exceeds {MAX_FILE_SIZE_MB} MB limit."))
                break
            chunks.append(chunk)
        else:
            incoming.append(IncomingFile(name=name, data=b"".join(chunks), content_type=file.content_type))

    intake = accept_files(incoming, current_count=len(orchestrator))
    task_ids = orchestrator.enqueue(intake.assets)
    return {
        "tasks": [orchestrator.get_task(tid).to_dict() for tid in task_ids],
        "rejected": [r.to_dict() for r in oversized + intake.rejections],
    }


@router.get("/tasks")
def list_tasks(orchestrator: CompressionOrchestrator = Depends(get_orchestrator)):
    return {
        "running": orchestrator.is_running,
        "tasks": [t.to_dict() for t in orchestrator.snapshot()],
    }


@router.get("/tasks/{task_id}")
def get_task_status(task_id: str, orchestrator: CompressionOrchestrator = Depends(get_orchestrator)):
    task = orchestrator.get_task(task_id)
    if not task:
        raise HTTPException(404, "Task not found")
    return task.to_dict()


@router.delete("/tasks/{task_id}")
def remove_task(task_id: str, orchestrator: CompressionOrchestrator = Depends(get_orchestrator)):
    try:
        orchestrator.remove(task_id)
    except KeyError:
        raise HTTPException(404, "Task not found")
    except OrchestratorBusyError as e:
        raise HTTPException(409, str(e))
    return {"ok": True}


@router.delete("/tasks")
def clear_tasks(orchestrator: CompressionOrchestrator = Depends(get_orchestrator)):
    try:
        removed = orchestrator.clear()
    except OrchestratorBusyError as e:
        raise HTTPException(409, str(e))
    return {"ok": True, "removed": removed}


@router.post("/compress")
async def start_compression(
    background_tasks: BackgroundTasks,
    target_mb: float = Body(..., embed=True, gt=0),
    orchestrator: CompressionOrchestrator = Depends(get_orchestrator),
):
    """Compress every queued or failed file to at most target_mb, one file at a time, in the background."""
    if target_mb < MIN_TARGET_MB:
        raise HTTPException(400, f"Minimum is {MIN_TARGET_MB} MB.")
    if orchestrator.is_running:
        raise HTTPException(409, "Compression already running")
    pending = [t for t in orchestrator.snapshot() if t.status in (TaskStatus.QUEUED, TaskStatus.FAILED)]
    if not pending:
        raise HTTPException(400, "No files waiting for compression")
    budget = mb_to_bytes(target_mb)

    async def run_async():
        try:
            await asyncio.to_thread(orchestrator.run_all, budget)
        except OrchestratorBusyError:
            logger.warning("Skipped duplicate compression request")

    background_tasks.add_task(run_async)
    return {
        "status": "started",
        "pending": len(pending),
        "target_bytes": budget,
        "message": "Compression started. Poll /api/tasks for progress.",
    }


@router.post("/recompress")
def recompress(orchestrator: CompressionOrchestrator = Depends(get_orchestrator)):
    """Reset finished files so the next /compress run processes them again."""
    try:
        count = orchestrator.recompress_all()
    except OrchestratorBusyError as e:
        raise HTTPException(409, str(e))
    return {"ok": True, "reset": count}


@router.get("/tasks/{task_id}/download")
def download_task(task_id: str, orchestrator: CompressionOrchestrator = Depends(get_orchestrator)):
    try:
        data, filename = orchestrator.download(task_id)
    except KeyError:
        raise HTTPException(404, "Task not found")
    except LookupError:
        raise HTTPException(409, "Task has no compressed output yet")
    return _attachment(data, filename)


@router.get("/tasks/{task_id}/preview")
def task_preview(task_id: str, orchestrator: CompressionOrchestrator = Depends(get_orchestrator)):
    try:
        thumb = orchestrator.get_preview(task_id)
    except KeyError:
        raise HTTPException(404, "Task not found")
    if thumb is None:
        raise HTTPException(404, "No preview for this task")
    return Response(content=thumb, media_type="image/jpeg")


@router.get("/download-all")
def download_all(orchestrator: CompressionOrchestrator = Depends(get_orchestrator)):
    """Single file when only one is done, otherwise a zip of every compressed file."""
    done = [t for t in orchestrator.snapshot() if t.status == TaskStatus.COMPLETED]
    if not done:
        raise HTTPException(404, "No compressed files yet")
    if len(done) == 1:
        data, filename = orchestrator.download(done[0].task_id)
        return _attachment(data, filename)
    return _attachment(build_zip(orchestrator.completed_outputs()), ARCHIVE_NAME)


@router.get("/stats")
def stats(orchestrator: CompressionOrchestrator = Depends(get_orchestrator)):
    return orchestrator.stats().to_dict()


@router.get("/notifications")
def notifications(session_id: str = Depends(get_or_create_session_id)):
    """Warnings, errors and run summaries since the last call."""
    state = get_session(session_id)
    return {"notifications": [n.to_dict() for n in state.drain_notifications()]}


@router.get("/session/events")
def session_events(limit: int = 100, session_id: str = Depends(get_or_create_session_id)):
    """Recent analytics events for this session, newest first, with per-event counts."""
    if not db.is_ready():
        return {"events": [], "counts": {}}
    return {
        "events": db.get_session_events(session_id, limit=max(1, min(limit, 500))),
        "counts": db.get_event_counts(session_id),
    }


@router.delete("/session")
def delete_session(session_id: str = Depends(get_or_create_session_id)):
    """Drop the session queue (releasing previews) and its analytics events."""
    try:
        drop_session(session_id)
    except OrchestratorBusyError as e:
        raise HTTPException(409, str(e))
    if db.is_ready():
        db.delete_session_events(session_id)
    return {"ok": True, "message": "Session data cleared"}
