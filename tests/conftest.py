import io
from typing import Any, Callable, List, Optional

import httpx
from httpx import ASGITransport, AsyncClient
import pytest
from PIL import Image

from bgzap.core.exceptions import LocalEngineError
from bgzap.core.storage import LocalStorage
from bgzap.engines.local.engine import ImageHandle, LocalInferenceEngine
from bgzap.engines.prediction.client import PredictionClient
from bgzap.modules.credentials.store import InMemoryCredentialStore
from bgzap.pipeline.orchestrator import ProcessingOrchestrator

API_URL = "https://api.test"
TOKEN = "r8_test_token"


@pytest.fixture(scope="session")
def png_bytes() -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (8, 8), (200, 30, 30)).save(buffer, format="PNG")
    return buffer.getvalue()


class FakePredictionService:
    """
    Scripted stand-in for the predictions API, used as an httpx.MockTransport
    handler.

    Each poll entry is a dict (JSON body, HTTP 200), a (status, body) tuple,
    an exception instance to raise, or a coroutine function returning one of
    those. The last entry repeats once the script runs out.
    """

    def __init__(self, create: Any = None, polls: Optional[List[Any]] = None):
        self.create = create if create is not None else (201, {"id": "pred-1", "status": "starting"})
        self.polls = list(polls or [{"id": "pred-1", "status": "processing"}])
        self.create_requests: List[httpx.Request] = []
        self.poll_requests: List[httpx.Request] = []

    @staticmethod
    def _respond(entry: Any) -> httpx.Response:
        if isinstance(entry, Exception):
            raise entry
        if isinstance(entry, tuple):
            status, body = entry
        else:
            status, body = 200, entry
        if isinstance(body, str):
            return httpx.Response(status, text=body)
        return httpx.Response(status, json=body)

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            self.create_requests.append(request)
            entry = self.create
        else:
            self.poll_requests.append(request)
            index = min(len(self.poll_requests), len(self.polls)) - 1
            entry = self.polls[index]
        if callable(entry):
            entry = await entry()
        return self._respond(entry)


class FakeEngine(LocalInferenceEngine):
    """Local engine double that records calls."""

    def __init__(self, output: bytes = b"\x89PNG-cutout", fail: bool = False):
        self.output = output
        self.fail = fail
        self.decoded: List[bytes] = []
        self.removed = 0

    async def decode_image(self, image_bytes: bytes) -> ImageHandle:
        self.decoded.append(image_bytes)
        if self.fail:
            raise LocalEngineError(cause="Invalid image data")
        return ImageHandle(image=None, size=(8, 8), input_size=len(image_bytes))

    async def remove_background(self, handle: ImageHandle) -> bytes:
        self.removed += 1
        return self.output


@pytest.fixture
def prediction_service() -> FakePredictionService:
    return FakePredictionService()


@pytest.fixture
def make_client() -> Callable[..., PredictionClient]:
    clients: List[PredictionClient] = []

    def _make(service: FakePredictionService, max_attempts: int = 60, poll_interval: float = 0) -> PredictionClient:
        client = PredictionClient(
            base_url=API_URL,
            model_version="test-version",
            poll_interval=poll_interval,
            max_attempts=max_attempts,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(service)),
        )
        clients.append(client)
        return client

    return _make


@pytest.fixture
def credential_store() -> InMemoryCredentialStore:
    return InMemoryCredentialStore(TOKEN)


@pytest.fixture
def storage(tmp_path) -> LocalStorage:
    return LocalStorage(base_path=str(tmp_path / "storage"))


@pytest.fixture
def fake_engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def make_orchestrator(make_client, credential_store, storage, fake_engine):
    def _make(service: FakePredictionService, engine: Optional[LocalInferenceEngine] = None, **client_kwargs):
        return ProcessingOrchestrator(
            local_engine=engine or fake_engine,
            prediction_client=make_client(service, **client_kwargs),
            credential_store=credential_store,
            storage=storage,
        )

    return _make



@pytest.fixture
def api_service() -> FakePredictionService:
    return FakePredictionService(polls=[
        {"id": "pred-1", "status": "processing"},
        {"id": "pred-1", "status": "succeeded", "output": ["https://replicate.delivery/out.png"]},
    ])


@pytest.fixture
async def client(make_orchestrator, api_service):
    """HTTP client against the app with an injected orchestrator."""
    from bgzap.main import app

    app.state.orchestrator = make_orchestrator(api_service)
    async with app.router.lifespan_context(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac
    app.state.orchestrator = None
