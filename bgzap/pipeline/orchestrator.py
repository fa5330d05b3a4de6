"""
Processing Orchestrator

Runs one background-removal request end to end on the selected backend and
turns whatever happens into a single ProcessingResult.

Single-flight policy is cancel-and-replace: calling process() while an
operation is outstanding cancels that operation, waits for it to unwind and
only then starts the new one. reset() cancels without replacing. Every
operation is tagged with a generation number; a result is applied only if
its generation is still current, so a late response from a superseded
operation can never overwrite newer state. Superseded operations end
silently: their process() call returns None.
"""

import asyncio
from datetime import datetime
from typing import Optional, Set

from bgzap.core.exceptions import (
    BGZapBaseException,
    ErrorKind,
    LocalEngineError,
    MissingCredentialError,
    NoInputError,
    PollTimeoutError,
    PredictionFailedError,
)
from bgzap.core.logging import LogContext, get_logger
from bgzap.core.metrics import record_processing_outcome, track_processing_latency
from bgzap.core.storage import IStorage
from bgzap.engines.local.engine import LocalInferenceEngine
from bgzap.engines.prediction.client import PredictionClient
from bgzap.engines.prediction.schemas import PollOutcome
from bgzap.modules.credentials.store import CredentialStore
from bgzap.modules.processing.models import (
    ProcessingMethod,
    ProcessingRequest,
    ProcessingResult,
)

logger = get_logger(__name__)


class ProcessingOrchestrator:
    """Drives one request at a time across the local and remote backends."""

    def __init__(
        self,
        local_engine: LocalInferenceEngine,
        prediction_client: PredictionClient,
        credential_store: CredentialStore,
        storage: IStorage,
        default_method: ProcessingMethod = ProcessingMethod.LOCAL,
    ):
        self.local_engine = local_engine
        self.prediction_client = prediction_client
        self.credential_store = credential_store
        self.storage = storage

        self._selected_method = ProcessingMethod(default_method)
        self._generation = 0
        self._task: Optional[asyncio.Task] = None
        self._unwinding: Set[asyncio.Task] = set()
        self._request: Optional[ProcessingRequest] = None
        self._result: Optional[ProcessingResult] = None

    # =========================================================================
    # State accessors
    # =========================================================================

    @property
    def selected_method(self) -> ProcessingMethod:
        return self._selected_method

    def select_method(self, method: ProcessingMethod):
        """Choose the backend for later requests. Kept across reset()."""
        self._selected_method = ProcessingMethod(method)

    @property
    def request(self) -> Optional[ProcessingRequest]:
        return self._request

    @property
    def result(self) -> Optional[ProcessingResult]:
        return self._result

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def is_processing(self) -> bool:
        return self._task is not None and not self._task.done()

    # =========================================================================
    # Public operations
    # =========================================================================

    async def process(self, request: ProcessingRequest) -> Optional[ProcessingResult]:
        """
        Run a request to completion.

        Returns the ProcessingResult, or None if this operation was superseded
        by reset() or a newer process() call before it finished.
        """
        previous = self._task
        self._generation += 1
        generation = self._generation
        self._selected_method = request.method
        self._request = request
        self._result = None

        if previous is not None and not previous.done():
            logger.info("operation_superseded", request_id=request.request_id, generation=generation)
            self._cancel(previous)

        # Cancelled work can outlive cancel() inside a worker thread
        if self._unwinding:
            await asyncio.wait(set(self._unwinding))

        if generation != self._generation:
            # Replaced again while the previous operation was unwinding
            return None

        task = asyncio.create_task(self._execute(request))
        self._task = task

        try:
            result = await task
        except asyncio.CancelledError:
            if generation != self._generation:
                record_processing_outcome(request.method.value, ErrorKind.CANCELED.value)
                return None
            raise

        if generation != self._generation:
            logger.info("stale_result_discarded", request_id=request.request_id, generation=generation)
            record_processing_outcome(request.method.value, ErrorKind.CANCELED.value)
            return None

        self._result = result
        self._task = None
        return result

    def reset(self):
        """Clear request/result state and cancel anything in flight."""
        self._generation += 1
        task, self._task = self._task, None
        if task is not None and not task.done():
            logger.info("operation_reset", generation=self._generation)
            self._cancel(task)
        self._request = None
        self._result = None

    async def aclose(self):
        """Cancel any in-flight operation and wait for it to unwind."""
        self.reset()
        if self._unwinding:
            await asyncio.wait(set(self._unwinding))

    def _cancel(self, task: asyncio.Task):
        task.cancel()
        self._unwinding.add(task)
        task.add_done_callback(self._unwinding.discard)

    # =========================================================================
    # Backends
    # =========================================================================

    async def _execute(self, request: ProcessingRequest) -> ProcessingResult:
        start_time = datetime.utcnow()
        method = request.method

        with LogContext(request_id=request.request_id, stage=method.value):
            logger.info("processing_started", method=method.value, filename=request.filename)
            try:
                with track_processing_latency(method.value):
                    image_ref = await self._dispatch(request)
            except BGZapBaseException as exc:
                duration_ms = int((datetime.utcnow() - start_time).total_seconds() * 1000)
                logger.warning(
                    "processing_failed",
                    method=method.value,
                    kind=exc.kind.value,
                    error=exc.message,
                    duration_ms=duration_ms
                )
                record_processing_outcome(method.value, exc.kind.value)
                return ProcessingResult.failure(request, exc, duration_ms)

            duration_ms = int((datetime.utcnow() - start_time).total_seconds() * 1000)
            logger.info("processing_succeeded", method=method.value, duration_ms=duration_ms)
            record_processing_outcome(method.value, "succeeded")
            return ProcessingResult.success(request, image_ref, duration_ms)

    async def _dispatch(self, request: ProcessingRequest) -> str:
        if not request.has_image:
            raise NoInputError(request_id=request.request_id)

        if request.method == ProcessingMethod.REMOTE:
            api_token = await self.credential_store.get()
            if not api_token:
                raise MissingCredentialError(request_id=request.request_id)
            return await self._run_remote(request, api_token)

        return await self._run_local(request)

    async def _run_local(self, request: ProcessingRequest) -> str:
        handle = await self.local_engine.decode_image(request.image_bytes)
        png_bytes = await self.local_engine.remove_background(handle)

        try:
            storage_key = await self.storage.upload(
                png_bytes,
                f"{request.request_id}.png",
                folder="cutouts",
                content_type="image/png"
            )
            return await self.storage.get_url(storage_key)
        except OSError as e:
            raise LocalEngineError(cause=f"Could not store result: {e}", request_id=request.request_id) from e

    async def _run_remote(self, request: ProcessingRequest, api_token: str) -> str:
        handle = await self.prediction_client.create_job(
            request.image_bytes,
            api_token,
            content_type=request.content_type
        )
        state = await self.prediction_client.poll_job(handle, api_token)

        if state.outcome == PollOutcome.SUCCEEDED:
            return state.output
        if state.outcome == PollOutcome.FAILED:
            raise PredictionFailedError(state.reason, prediction_id=state.job_id, request_id=request.request_id)
        raise PollTimeoutError(prediction_id=state.job_id, attempts=state.attempts, request_id=request.request_id)
