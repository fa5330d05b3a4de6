"""
Processing Request and Result Models

A ProcessingRequest is created per user action and never mutated. Each
request that is not superseded ends in exactly one ProcessingResult that
carries either an image reference or a classified error.
"""

import uuid
from enum import Enum
from typing import Any, Dict, Optional
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from bgzap.core.exceptions import BGZapBaseException, ErrorKind


class ProcessingMethod(str, Enum):
    """Backend used to remove the background."""
    LOCAL = "local"
    REMOTE = "remote"


class ProcessingRequest(BaseModel):
    """Immutable request to remove the background from one image."""
    model_config = ConfigDict(frozen=True)

    image_bytes: Optional[bytes] = None
    method: ProcessingMethod = ProcessingMethod.LOCAL
    filename: Optional[str] = None
    content_type: Optional[str] = None
    request_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def has_image(self) -> bool:
        return bool(self.image_bytes)


class ProcessingErrorDTO(BaseModel):
    """Classified error as reported to the presenter."""
    kind: ErrorKind
    message: str
    status_code: int
    details: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_exception(cls, exc: BGZapBaseException) -> "ProcessingErrorDTO":
        return cls(kind=exc.kind, message=exc.message, status_code=exc.code, details=exc.details)


class ProcessingResult(BaseModel):
    """Terminal outcome of one ProcessingRequest."""
    model_config = ConfigDict(frozen=True)

    request_id: str
    method: ProcessingMethod
    image_ref: Optional[str] = None
    error: Optional[ProcessingErrorDTO] = None
    duration_ms: int = 0
    completed_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.image_ref is not None

    @classmethod
    def success(cls, request: ProcessingRequest, image_ref: str, duration_ms: int = 0) -> "ProcessingResult":
        return cls(
            request_id=request.request_id,
            method=request.method,
            image_ref=image_ref,
            duration_ms=duration_ms
        )

    @classmethod
    def failure(
        cls,
        request: ProcessingRequest,
        exc: BGZapBaseException,
        duration_ms: int = 0
    ) -> "ProcessingResult":
        return cls(
            request_id=request.request_id,
            method=request.method,
            error=ProcessingErrorDTO.from_exception(exc),
            duration_ms=duration_ms
        )

    def to_response_dict(self) -> Dict[str, Any]:
        """Convert to API response format."""
        return {
            "request_id": self.request_id,
            "method": self.method.value,
            "status": "succeeded" if self.succeeded else "failed",
            "image_ref": self.image_ref,
            "error": self.error.model_dump(mode="json") if self.error else None,
            "duration_ms": self.duration_ms,
            "completed_at": self.completed_at.isoformat()
        }
