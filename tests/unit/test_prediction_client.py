import json
import base64
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from bgzap.core.exceptions import ApiError, AuthError, NetworkError, RateLimitedError
from bgzap.engines.prediction.client import PredictionClient, encode_data_uri
from bgzap.engines.prediction.schemas import JobHandle, PollOutcome, PredictionStatus
from tests.conftest import TOKEN, FakePredictionService

HANDLE = JobHandle(id="pred-1", status=PredictionStatus.STARTING, model_version="test-version")


def processing():
    return {"id": "pred-1", "status": "processing"}


def succeeded(output="https://x/y.png"):
    return {"id": "pred-1", "status": "succeeded", "output": output}


# =============================================================================
# Data URI encoding
# =============================================================================

def test_encode_data_uri_sniffs_png(png_bytes):
    uri = encode_data_uri(png_bytes, content_type="image/jpeg")

    assert uri.startswith("data:image/png;base64,")
    assert base64.b64decode(uri.split(",", 1)[1]) == png_bytes


def test_encode_data_uri_falls_back_to_declared_type():
    assert encode_data_uri(b"not an image", "image/webp").startswith("data:image/webp;base64,")
    assert encode_data_uri(b"not an image").startswith("data:application/octet-stream;base64,")


def test_client_rejects_zero_attempts():
    with pytest.raises(ValueError):
        PredictionClient(base_url="https://api.test", max_attempts=0, http_client=httpx.AsyncClient())


# =============================================================================
# create_job
# =============================================================================

@pytest.mark.asyncio
async def test_create_job_sends_version_and_data_uri(make_client, png_bytes):
    service = FakePredictionService()
    client = make_client(service)

    handle = await client.create_job(png_bytes, TOKEN)

    assert handle.id == "pred-1"
    assert handle.status == PredictionStatus.STARTING
    assert handle.model_version == "test-version"

    request = service.create_requests[0]
    assert request.url == "https://api.test/v1/predictions"
    assert request.headers["Authorization"] == f"Token {TOKEN}"
    assert request.headers["Content-Type"] == "application/json"
    body = json.loads(request.content)
    assert body["version"] == "test-version"
    assert body["input"]["image"].startswith("data:image/png;base64,")


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [401, 403])
async def test_create_job_auth_rejected(make_client, png_bytes, status):
    client = make_client(FakePredictionService(create=(status, {"detail": "Invalid token."})))

    with pytest.raises(AuthError) as exc_info:
        await client.create_job(png_bytes, TOKEN)

    assert exc_info.value.http_status == status


@pytest.mark.asyncio
async def test_create_job_rate_limited(make_client, png_bytes):
    client = make_client(FakePredictionService(create=(429, {"detail": "slow down"})))

    with pytest.raises(RateLimitedError):
        await client.create_job(png_bytes, TOKEN)


@pytest.mark.asyncio
async def test_create_job_server_error_keeps_status(make_client, png_bytes):
    client = make_client(FakePredictionService(create=(500, "Internal Server Error")))

    with pytest.raises(ApiError) as exc_info:
        await client.create_job(png_bytes, TOKEN)

    assert exc_info.value.status == 500
    assert "500" in exc_info.value.message


@pytest.mark.asyncio
async def test_create_job_unreadable_body_is_api_error(make_client, png_bytes):
    client = make_client(FakePredictionService(create=(201, "<html>oops</html>")))

    with pytest.raises(ApiError):
        await client.create_job(png_bytes, TOKEN)


@pytest.mark.asyncio
async def test_create_job_transport_failure_is_network_error(make_client, png_bytes):
    client = make_client(FakePredictionService(create=httpx.ConnectError("connection refused")))

    with pytest.raises(NetworkError):
        await client.create_job(png_bytes, TOKEN)


# =============================================================================
# poll_job
# =============================================================================

@pytest.mark.asyncio
async def test_poll_succeeds_on_sixth_query(make_client):
    service = FakePredictionService(polls=[processing()] * 5 + [succeeded()])
    client = make_client(service)

    state = await client.poll_job(HANDLE, TOKEN)

    assert state.outcome == PollOutcome.SUCCEEDED
    assert state.output == "https://x/y.png"
    assert state.attempts == 6
    assert len(service.poll_requests) == 6
    assert service.poll_requests[0].url == "https://api.test/v1/predictions/pred-1"
    assert service.poll_requests[0].headers["Authorization"] == f"Token {TOKEN}"


@pytest.mark.asyncio
async def test_poll_times_out_after_max_attempts(make_client):
    service = FakePredictionService(polls=[processing()])
    client = make_client(service)

    state = await client.poll_job(HANDLE, TOKEN)

    assert state.outcome == PollOutcome.TIMED_OUT
    assert state.attempts == 60
    assert len(service.poll_requests) == 60


@pytest.mark.asyncio
async def test_poll_waits_between_queries_but_not_after_last(make_client):
    service = FakePredictionService(polls=[processing()])
    client = make_client(service, max_attempts=3, poll_interval=5.0)

    with patch("bgzap.engines.prediction.client.asyncio.sleep", new_callable=AsyncMock) as sleep:
        state = await client.poll_job(HANDLE, TOKEN)

    assert state.outcome == PollOutcome.TIMED_OUT
    assert sleep.await_count == 2
    sleep.assert_awaited_with(5.0)


@pytest.mark.asyncio
async def test_poll_failed_reports_reason(make_client):
    service = FakePredictionService(polls=[
        processing(),
        {"id": "pred-1", "status": "failed", "error": "CUDA out of memory"},
    ])
    client = make_client(service)

    state = await client.poll_job(HANDLE, TOKEN)

    assert state.outcome == PollOutcome.FAILED
    assert state.reason == "CUDA out of memory"
    assert len(service.poll_requests) == 2


@pytest.mark.asyncio
async def test_poll_failed_without_reason(make_client):
    client = make_client(FakePredictionService(polls=[{"id": "pred-1", "status": "failed"}]))

    state = await client.poll_job(HANDLE, TOKEN)

    assert state.outcome == PollOutcome.FAILED
    assert state.reason == "Unknown error"


@pytest.mark.asyncio
async def test_poll_canceled_is_failure(make_client):
    client = make_client(FakePredictionService(polls=[{"id": "pred-1", "status": "canceled"}]))

    state = await client.poll_job(HANDLE, TOKEN)

    assert state.outcome == PollOutcome.FAILED
    assert state.reason == "Prediction was canceled"


@pytest.mark.asyncio
async def test_poll_keeps_going_until_output_present(make_client):
    service = FakePredictionService(polls=[
        {"id": "pred-1", "status": "succeeded", "output": None},
        succeeded(["https://x/first.png", "https://x/second.png"]),
    ])
    client = make_client(service)

    state = await client.poll_job(HANDLE, TOKEN)

    assert state.outcome == PollOutcome.SUCCEEDED
    assert state.output == "https://x/first.png"
    assert len(service.poll_requests) == 2


@pytest.mark.asyncio
async def test_poll_error_ends_loop_immediately(make_client):
    service = FakePredictionService(polls=[processing(), (500, "boom"), succeeded()])
    client = make_client(service)

    with pytest.raises(ApiError):
        await client.poll_job(HANDLE, TOKEN)

    assert len(service.poll_requests) == 2


@pytest.mark.asyncio
async def test_poll_transport_failure_is_network_error(make_client):
    service = FakePredictionService(polls=[httpx.ReadTimeout("timed out")])
    client = make_client(service)

    with pytest.raises(NetworkError):
        await client.poll_job(HANDLE, TOKEN)

    assert len(service.poll_requests) == 1


@pytest.mark.asyncio
async def test_remove_background_creates_then_polls(make_client, png_bytes):
    service = FakePredictionService(polls=[processing(), succeeded()])
    client = make_client(service)

    state = await client.remove_background(png_bytes, TOKEN)

    assert state.outcome == PollOutcome.SUCCEEDED
    assert len(service.create_requests) == 1
    assert len(service.poll_requests) == 2


def test_encode_data_uri_survives_decompression_bomb_check(png_bytes, monkeypatch):
    monkeypatch.setattr("PIL.Image.MAX_IMAGE_PIXELS", 16)

    assert encode_data_uri(png_bytes, "image/png").startswith("data:image/png;base64,")
    assert encode_data_uri(png_bytes).startswith("data:application/octet-stream;base64,")
