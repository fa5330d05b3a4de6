"""
Error Taxonomy and Global Exception Handling

Every backend failure is re-classified into one of the exceptions below
before it reaches the caller of the orchestrator. Each classified error
has a kind, an HTTP status code for the API layer and a distinct
human-readable message for the presenter.
"""

import traceback
from enum import Enum
from typing import Optional, Dict, Any
from datetime import datetime
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from bgzap.core.logging import get_logger, request_id_var

logger = get_logger(__name__)


class ErrorKind(str, Enum):
    """Classified error kinds surfaced in a ProcessingResult."""
    NO_INPUT = "no_input"
    MISSING_CREDENTIAL = "missing_credential"
    AUTH_ERROR = "auth_error"
    RATE_LIMITED = "rate_limited"
    API_ERROR = "api_error"
    NETWORK_ERROR = "network_error"
    PREDICTION_FAILED = "prediction_failed"
    POLL_TIMEOUT = "poll_timeout"
    LOCAL_ENGINE_ERROR = "local_engine_error"
    CANCELED = "canceled"  # internal only, never reported


USER_MESSAGES: Dict[ErrorKind, str] = {
    ErrorKind.NO_INPUT: "Please upload an image first.",
    ErrorKind.MISSING_CREDENTIAL: "An API token is needed for cloud processing.",
    ErrorKind.AUTH_ERROR: "The API token was rejected. Check or replace it.",
    ErrorKind.RATE_LIMITED: "Too many requests to the prediction service. Wait a moment and try again.",
    ErrorKind.API_ERROR: "The prediction service returned an error (HTTP {status}).",
    ErrorKind.NETWORK_ERROR: "Could not reach the prediction service.",
    ErrorKind.PREDICTION_FAILED: "Background removal failed: {reason}",
    ErrorKind.POLL_TIMEOUT: "The prediction did not finish in time.",
    ErrorKind.LOCAL_ENGINE_ERROR: "Local background removal failed.",
}


def user_message(kind: ErrorKind, **params: Any) -> Optional[str]:
    """Return the presenter message for an error kind (None for CANCELED)."""
    template = USER_MESSAGES.get(kind)
    if template is None:
        return None
    return template.format(**params)


# =============================================================================
# Custom Exceptions
# =============================================================================

class BGZapBaseException(Exception):
    """Base exception for BGZap."""

    kind: ErrorKind = ErrorKind.API_ERROR

    def __init__(
        self,
        message: str,
        code: int = 500,
        request_id: Optional[str] = None,
        stage: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.request_id = request_id or request_id_var.get()
        self.stage = stage
        self.details = details or {}
        super().__init__(self.message)


class NoInputError(BGZapBaseException):
    """Raised when a request carries no image."""

    kind = ErrorKind.NO_INPUT

    def __init__(self, message: Optional[str] = None, **kwargs):
        super().__init__(message or user_message(self.kind), code=400, **kwargs)


class MissingCredentialError(BGZapBaseException):
    """Raised when the remote method is chosen and no API token is stored."""

    kind = ErrorKind.MISSING_CREDENTIAL

    def __init__(self, message: Optional[str] = None, **kwargs):
        super().__init__(message or user_message(self.kind), code=401, stage="remote", **kwargs)


class PredictionServiceError(BGZapBaseException):
    """Base for errors raised while talking to the prediction service."""

    def __init__(self, message: str, code: int, http_status: Optional[int] = None, **kwargs):
        super().__init__(message, code=code, stage="remote", **kwargs)
        self.http_status = http_status
        self.details["http_status"] = http_status


class AuthError(PredictionServiceError):
    """Raised when the prediction service rejects the credential."""

    kind = ErrorKind.AUTH_ERROR

    def __init__(self, http_status: int = 401, **kwargs):
        super().__init__(user_message(self.kind), code=401, http_status=http_status, **kwargs)


class RateLimitedError(PredictionServiceError):
    """Raised when the prediction service throttles the client."""

    kind = ErrorKind.RATE_LIMITED

    def __init__(self, retry_after: Optional[str] = None, **kwargs):
        super().__init__(user_message(self.kind), code=429, http_status=429, **kwargs)
        self.details["retry_after"] = retry_after


class ApiError(PredictionServiceError):
    """Raised for any other non-success HTTP status from the prediction service."""

    kind = ErrorKind.API_ERROR

    def __init__(self, status: int, body: Optional[str] = None, **kwargs):
        super().__init__(user_message(self.kind, status=status), code=502, http_status=status, **kwargs)
        self.status = status
        if body:
            self.details["body"] = body[:500]


class NetworkError(PredictionServiceError):
    """Raised when the prediction service cannot be reached."""

    kind = ErrorKind.NETWORK_ERROR

    def __init__(self, cause: Optional[str] = None, **kwargs):
        super().__init__(user_message(self.kind), code=503, **kwargs)
        self.details["cause"] = cause


class PredictionFailedError(PredictionServiceError):
    """Raised when the remote job reports status failed."""

    kind = ErrorKind.PREDICTION_FAILED

    def __init__(self, reason: str, prediction_id: Optional[str] = None, **kwargs):
        super().__init__(user_message(self.kind, reason=reason), code=502, **kwargs)
        self.reason = reason
        self.details["prediction_id"] = prediction_id


class PollTimeoutError(PredictionServiceError):
    """Raised when the poll ceiling is reached without a terminal state."""

    kind = ErrorKind.POLL_TIMEOUT

    def __init__(self, prediction_id: Optional[str] = None, attempts: int = 0, **kwargs):
        super().__init__(user_message(self.kind), code=504, **kwargs)
        self.details["prediction_id"] = prediction_id
        self.details["attempts"] = attempts


class LocalEngineError(BGZapBaseException):
    """Raised when the in-process inference engine fails."""

    kind = ErrorKind.LOCAL_ENGINE_ERROR

    def __init__(self, cause: Optional[str] = None, **kwargs):
        super().__init__(user_message(self.kind), code=500, stage="local", **kwargs)
        self.details["cause"] = cause


# =============================================================================
# Exception Handlers
# =============================================================================

def _error_body(exc: BGZapBaseException) -> Dict[str, Any]:
    return {
        "error": exc.message,
        "request_id": exc.request_id or request_id_var.get(),
        "code": exc.code,
        "kind": exc.kind.value,
        "stage": exc.stage,
        "details": exc.details,
        "timestamp": datetime.utcnow().isoformat() + "Z"
    }


def register_exception_handlers(app: FastAPI):
    """Register custom exception handlers with FastAPI app."""

    @app.exception_handler(BGZapBaseException)
    async def bgzap_exception_handler(request: Request, exc: BGZapBaseException):
        logger.error(
            "bgzap_exception",
            error=exc.message,
            kind=exc.kind.value,
            code=exc.code,
            stage=exc.stage,
            details=exc.details
        )
        return JSONResponse(status_code=exc.code, content=_error_body(exc))

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        logger.error(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=str(request.url.path),
            traceback=traceback.format_exc()
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "request_id": request_id_var.get(),
                "code": 500,
                "timestamp": datetime.utcnow().isoformat() + "Z"
            }
        )
