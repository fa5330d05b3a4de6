"""
FastAPI Dependencies

Provides dependency injection for:
- ProcessingOrchestrator (one per application, held on app.state)
- CredentialStore (process-wide singleton)
"""

from typing import Optional

from fastapi import Request

from bgzap.core.config import settings
from bgzap.core.logging import get_logger
from bgzap.core.storage import IStorage, get_storage
from bgzap.engines.local.engine import LocalInferenceEngine, RembgEngine
from bgzap.engines.prediction.client import PredictionClient
from bgzap.modules.credentials.store import CredentialStore, get_credential_store
from bgzap.modules.processing.models import ProcessingMethod
from bgzap.pipeline.orchestrator import ProcessingOrchestrator

logger = get_logger(__name__)


async def build_orchestrator(
    local_engine: Optional[LocalInferenceEngine] = None,
    prediction_client: Optional[PredictionClient] = None,
    credential_store: Optional[CredentialStore] = None,
    storage: Optional[IStorage] = None,
) -> ProcessingOrchestrator:
    """Wire an orchestrator from settings, overriding any collaborator given."""
    orchestrator = ProcessingOrchestrator(
        local_engine=local_engine or RembgEngine(),
        prediction_client=prediction_client or PredictionClient(),
        credential_store=credential_store or await get_credential_store(),
        storage=storage or get_storage(),
        default_method=ProcessingMethod(settings.DEFAULT_PROCESSING_METHOD),
    )
    logger.info(
        "orchestrator_ready",
        default_method=orchestrator.selected_method.value,
        poll_interval=orchestrator.prediction_client.poll_interval,
        poll_max_attempts=orchestrator.prediction_client.max_attempts
    )
    return orchestrator


def get_orchestrator(request: Request) -> ProcessingOrchestrator:
    """Return the application's orchestrator - ready for FastAPI Depends()."""
    return request.app.state.orchestrator


def get_credentials(request: Request) -> CredentialStore:
    """Return the credential store the orchestrator uses."""
    return request.app.state.orchestrator.credential_store
