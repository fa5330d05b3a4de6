"""
Remote Prediction Client

Drives a background-removal job on a Replicate-compatible predictions API:

1. create_job  - POST /v1/predictions with the image as a data URI
2. poll_job    - GET /v1/predictions/{id} every POLL_INTERVAL_SECONDS until
                 a terminal status or POLL_MAX_ATTEMPTS queries

Transport and HTTP failures are classified into the error taxonomy in
bgzap.core.exceptions. Nothing here retries: a failed query ends the poll
loop immediately. The wait between polls is asyncio.sleep, so cancelling
the calling task stops polling at the next await.
"""

import io
import base64
import asyncio
from typing import Any, Dict, Optional

import httpx
from PIL import Image

from bgzap.core.config import settings
from bgzap.core.logging import get_logger
from bgzap.core.metrics import record_prediction_call, record_poll
from bgzap.core.exceptions import (
    ApiError,
    AuthError,
    NetworkError,
    RateLimitedError,
)
from bgzap.engines.prediction.schemas import (
    CreatePredictionRequest,
    JobHandle,
    PredictionInput,
    PredictionResponse,
    PredictionStatus,
    TerminalJobState,
)

logger = get_logger(__name__)

PREDICTIONS_PATH = "/v1/predictions"


def _sniff_mime_type(image_bytes: bytes) -> Optional[str]:
    try:
        with Image.open(io.BytesIO(image_bytes)) as image:
            return Image.MIME.get(image.format)
    except Exception as e:
        # Best effort only; includes DecompressionBombError for huge inputs
        logger.debug("mime_sniff_failed", error=str(e), error_type=type(e).__name__)
        return None


def encode_data_uri(image_bytes: bytes, content_type: Optional[str] = None) -> str:
    """Encode raw image bytes as a self-contained base64 data URI."""
    mime_type = _sniff_mime_type(image_bytes) or content_type or "application/octet-stream"
    encoded = base64.b64encode(image_bytes).decode("ascii")
    return f"data:{mime_type};base64,{encoded}"


class PredictionClient:
    """Async client for the remote predictions API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        model_version: Optional[str] = None,
        poll_interval: Optional[float] = None,
        max_attempts: Optional[int] = None,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = (base_url or settings.REPLICATE_API_URL).rstrip("/")
        self.model_version = model_version or settings.REPLICATE_MODEL_VERSION
        self.poll_interval = settings.POLL_INTERVAL_SECONDS if poll_interval is None else poll_interval
        self.max_attempts = settings.POLL_MAX_ATTEMPTS if max_attempts is None else max_attempts
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=settings.HTTP_TIMEOUT_SECONDS if timeout is None else timeout
        )

    async def __aenter__(self) -> "PredictionClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self):
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()

    # =========================================================================
    # HTTP plumbing
    # =========================================================================

    @staticmethod
    def _headers(api_token: str, with_body: bool = False) -> Dict[str, str]:
        headers = {"Authorization": f"Token {api_token}"}
        if with_body:
            headers["Content-Type"] = "application/json"
        return headers

    @staticmethod
    def _raise_for_status(response: httpx.Response):
        if response.is_success:
            return
        status = response.status_code
        if status in (401, 403):
            raise AuthError(http_status=status)
        if status == 429:
            raise RateLimitedError(retry_after=response.headers.get("Retry-After"))
        raise ApiError(status, body=response.text)

    async def _send(
        self,
        method: str,
        path: str,
        api_token: str,
        endpoint: str,
        body: Optional[Dict[str, Any]] = None,
    ) -> PredictionResponse:
        try:
            response = await self._client.request(
                method,
                f"{self.base_url}{path}",
                headers=self._headers(api_token, with_body=body is not None),
                json=body,
            )
        except httpx.TransportError as exc:
            logger.warning(
                "prediction_transport_error",
                endpoint=endpoint,
                error=str(exc),
                error_type=type(exc).__name__
            )
            raise NetworkError(cause=str(exc) or type(exc).__name__) from exc

        record_prediction_call(endpoint, response.status_code)
        self._raise_for_status(response)

        try:
            return PredictionResponse.model_validate(response.json())
        except ValueError as exc:
            # Malformed JSON or an unexpected shape is a service error
            logger.error("prediction_response_invalid", endpoint=endpoint, error=str(exc))
            raise ApiError(response.status_code, body=response.text) from exc

    # =========================================================================
    # Operations
    # =========================================================================

    async def create_job(
        self,
        image_bytes: bytes,
        api_token: str,
        model_version: Optional[str] = None,
        content_type: Optional[str] = None,
    ) -> JobHandle:
        """
        Create a prediction for the given image.

        Raises:
            AuthError: the service rejected the token (401/403).
            RateLimitedError: the service throttled the request (429).
            ApiError: any other non-2xx status or an unreadable body.
            NetworkError: the service could not be reached.
        """
        version = model_version or self.model_version
        payload = CreatePredictionRequest(
            version=version,
            input=PredictionInput(image=encode_data_uri(image_bytes, content_type)),
        )

        logger.info("prediction_creating", input_size=len(image_bytes), model_version=version)
        prediction = await self._send(
            "POST", PREDICTIONS_PATH, api_token, endpoint="create", body=payload.model_dump()
        )
        logger.info("prediction_created", prediction_id=prediction.id, status=prediction.status.value)

        return JobHandle(id=prediction.id, status=prediction.status, model_version=version)

    async def poll_job(self, handle: JobHandle, api_token: str) -> TerminalJobState:
        """
        Poll a prediction until it reaches a terminal state or the ceiling.

        Returns a TerminalJobState whose outcome is succeeded (first time the
        status is succeeded with an output present), failed (status failed
        or canceled) or timed_out (max_attempts queries without either).
        Query failures propagate immediately as classified exceptions.
        """
        path = f"{PREDICTIONS_PATH}/{handle.id}"

        for attempt in range(1, self.max_attempts + 1):
            prediction = await self._send("GET", path, api_token, endpoint="poll")
            record_poll(prediction.status.value)
            logger.info(
                "prediction_polled",
                prediction_id=handle.id,
                status=prediction.status.value,
                terminal=prediction.status.is_terminal,
                attempt=attempt
            )

            if prediction.status == PredictionStatus.SUCCEEDED:
                output = prediction.first_output()
                if output:
                    return TerminalJobState.succeeded(handle.id, output, attempt)
            elif prediction.status == PredictionStatus.FAILED:
                return TerminalJobState.failed(handle.id, prediction.error or "Unknown error", attempt)
            elif prediction.status == PredictionStatus.CANCELED:
                return TerminalJobState.failed(handle.id, "Prediction was canceled", attempt)

            if attempt < self.max_attempts:
                await asyncio.sleep(self.poll_interval)

        logger.warning("prediction_timed_out", prediction_id=handle.id, attempts=self.max_attempts)
        return TerminalJobState.timed_out(handle.id, self.max_attempts)

    async def remove_background(
        self,
        image_bytes: bytes,
        api_token: str,
        model_version: Optional[str] = None,
        content_type: Optional[str] = None,
    ) -> TerminalJobState:
        """Create a prediction and poll it to a terminal state."""
        handle = await self.create_job(image_bytes, api_token, model_version, content_type)
        return await self.poll_job(handle, api_token)
