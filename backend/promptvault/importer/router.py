"""Import API routes."""

import json
from collections.abc import AsyncIterator

from fastapi import APIRouter, Depends, Header, HTTPException, Query, UploadFile
from fastapi.responses import StreamingResponse

from promptvault.importer.errors import ErrorClassifier, PromptImportError
from promptvault.importer.schemas import (
    ClassifyErrorRequest,
    ClassifyErrorResponse,
    ImportStartedResponse,
)
from promptvault.importer.service import ImportOptions, ImportService
from promptvault.models import ImportReport, ImportSession, RawFile, SourceKind
from promptvault.progress import ProgressTracker

router = APIRouter(prefix="/api/import", tags=["import"])


def get_import_service() -> ImportService:
    """Replaced through app.dependency_overrides in the lifespan."""
    raise RuntimeError("ImportService not configured")


def get_progress_tracker() -> ProgressTracker:
    """Replaced through app.dependency_overrides in the lifespan."""
    raise RuntimeError("ProgressTracker not configured")


def get_error_classifier() -> ErrorClassifier:
    return ErrorClassifier()


@router.post("")
async def import_prompts(
    files: list[UploadFile],
    platform: SourceKind | None = Query(None),
    background: bool = Query(False),
    skip_ai: bool = Query(False),
    skip_duplicates: bool = Query(True),
    folder: str | None = Query(None),
    x_user_id: str = Header(...),
    service: ImportService = Depends(get_import_service),
) -> ImportReport | ImportStartedResponse:
    """Import prompts from uploaded export files.

    With background=true the import runs as a task and the response carries
    the session id to follow on /progress/{session_id}.
    """
    if not files:
        raise HTTPException(status_code=422, detail="No files uploaded")

    raw_files = [
        RawFile(path=upload.filename or f"upload-{i}", content=await upload.read())
        for i, upload in enumerate(files)
    ]
    options = ImportOptions(
        skip_duplicates=skip_duplicates, skip_ai=skip_ai, target_folder=folder
    )

    if background:
        session_id = service.start_background(x_user_id, platform, raw_files, options)
        return ImportStartedResponse(session_id=session_id)

    try:
        return await service.import_files(x_user_id, platform, raw_files, options)
    except PromptImportError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e


async def _stream_sse(tracker: ProgressTracker, session_id: str) -> AsyncIterator[str]:
    """Format session snapshots as SSE events, ending after the terminal one."""
    async for snapshot in tracker.stream_progress(session_id):
        data = json.dumps(snapshot.model_dump(mode="json"))
        event = "progress" if not snapshot.status.is_terminal else snapshot.status.value
        yield f"event: {event}\ndata: {data}\n\n"


@router.get("/progress/{session_id}")
async def stream_progress(
    session_id: str,
    tracker: ProgressTracker = Depends(get_progress_tracker),
) -> StreamingResponse:
    if tracker.get_progress(session_id) is None:
        raise HTTPException(status_code=404, detail=f"Import session {session_id} not found")
    return StreamingResponse(
        _stream_sse(tracker, session_id),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get("/session/{session_id}")
async def get_session(
    session_id: str,
    tracker: ProgressTracker = Depends(get_progress_tracker),
) -> ImportSession:
    session = tracker.get_progress(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Import session {session_id} not found")
    return session


@router.post("/errors/classify")
async def classify_error(
    request: ClassifyErrorRequest,
    classifier: ErrorClassifier = Depends(get_error_classifier),
) -> ClassifyErrorResponse:
    """Classify an import error message and suggest recovery actions."""
    error = classifier.classify(request.message, file=request.file, line=request.line)
    return ClassifyErrorResponse(
        error=error,
        user_message=classifier.format_for_user(error),
        actions=classifier.get_recovery_actions(error),
    )
