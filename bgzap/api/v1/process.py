"""
Process Endpoint - Background Removal

POST /api/v1/process         - Remove the background from an uploaded image
GET  /api/v1/process/result  - Current request/result state
POST /api/v1/process/reset   - Cancel in-flight work and clear state
PUT  /api/v1/process/method  - Select the backend for later requests
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Response, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from bgzap.api.dependencies import get_orchestrator
from bgzap.core.config import settings
from bgzap.core.logging import LogContext, get_logger
from bgzap.modules.processing.models import ProcessingMethod, ProcessingRequest
from bgzap.pipeline.orchestrator import ProcessingOrchestrator

MAX_IMAGE_SIZE_BYTES = settings.MAX_IMAGE_SIZE_BYTES
MAX_IMAGE_SIZE_MB = MAX_IMAGE_SIZE_BYTES / (1024 * 1024)

logger = get_logger(__name__)
router = APIRouter()


# =============================================================================
# Request/Response Schemas
# =============================================================================

class MethodSelection(BaseModel):
    method: ProcessingMethod


class ProcessingState(BaseModel):
    """Snapshot of the orchestrator state."""
    status: str  # idle, processing, succeeded, failed
    method: ProcessingMethod
    request_id: Optional[str] = None
    result: Optional[Dict[str, Any]] = None


# =============================================================================
# Endpoints
# =============================================================================

@router.post("")
async def process_image(
    file: Optional[UploadFile] = File(None),
    method: Optional[ProcessingMethod] = Form(None),
    orchestrator: ProcessingOrchestrator = Depends(get_orchestrator)
):
    """
    Remove the background from an uploaded image.

    Uses the given method, or the currently selected one. Classified errors
    are returned with their own status code; a request superseded by a newer
    one or by a reset returns 204 with no body.
    """
    if file is not None and file.content_type and not file.content_type.startswith("image/"):
        raise HTTPException(
            status_code=415,
            detail=f"Unsupported file type '{file.content_type}'. Please upload an image file."
        )

    image_bytes = await file.read() if file is not None else None

    if image_bytes and len(image_bytes) > MAX_IMAGE_SIZE_BYTES:
        actual_size_mb = len(image_bytes) / (1024 * 1024)
        raise HTTPException(
            status_code=413,
            detail=(
                f"Image size ({actual_size_mb:.2f}MB) exceeds maximum allowed size "
                f"({MAX_IMAGE_SIZE_MB:.0f}MB). Please compress or resize your image."
            )
        )

    request = ProcessingRequest(
        image_bytes=image_bytes,
        method=method or orchestrator.selected_method,
        filename=file.filename if file is not None else None,
        content_type=file.content_type if file is not None else None
    )

    with LogContext(request_id=request.request_id):
        logger.info(
            "process_request_received",
            method=request.method.value,
            image_size=len(image_bytes) if image_bytes else 0
        )
        result = await orchestrator.process(request)

    if result is None:
        return Response(status_code=204)

    if result.error is not None:
        return JSONResponse(status_code=result.error.status_code, content=result.to_response_dict())
    return result.to_response_dict()


@router.get("/result", response_model=ProcessingState)
async def get_result(orchestrator: ProcessingOrchestrator = Depends(get_orchestrator)):
    """Return the current processing state."""
    result = orchestrator.result
    if orchestrator.is_processing:
        status = "processing"
    elif result is None:
        status = "idle"
    else:
        status = "succeeded" if result.succeeded else "failed"

    request = orchestrator.request
    return ProcessingState(
        status=status,
        method=orchestrator.selected_method,
        request_id=request.request_id if request else None,
        result=result.to_response_dict() if result else None
    )


@router.post("/reset", status_code=204)
async def reset(orchestrator: ProcessingOrchestrator = Depends(get_orchestrator)):
    """Cancel any in-flight operation and clear the result. Keeps the method."""
    orchestrator.reset()
    return Response(status_code=204)


@router.put("/method", response_model=MethodSelection)
async def select_method(
    body: MethodSelection,
    orchestrator: ProcessingOrchestrator = Depends(get_orchestrator)
):
    """Select the backend used when a request does not name one."""
    if orchestrator.is_processing:
        raise HTTPException(status_code=409, detail="Cannot change method while processing")
    orchestrator.select_method(body.method)
    return MethodSelection(method=orchestrator.selected_method)
