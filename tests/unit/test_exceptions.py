import pytest

from bgzap.core.exceptions import (
    USER_MESSAGES,
    ApiError,
    AuthError,
    ErrorKind,
    LocalEngineError,
    MissingCredentialError,
    NetworkError,
    NoInputError,
    PollTimeoutError,
    PredictionFailedError,
    RateLimitedError,
    user_message,
)
from bgzap.modules.processing.models import ProcessingMethod, ProcessingRequest, ProcessingResult


def test_every_reported_kind_has_a_distinct_message():
    reported = [kind for kind in ErrorKind if kind != ErrorKind.CANCELED]

    assert set(USER_MESSAGES) == set(reported)
    assert len(set(USER_MESSAGES.values())) == len(reported)


def test_canceled_has_no_message():
    assert user_message(ErrorKind.CANCELED) is None


@pytest.mark.parametrize(
    "exc, kind, code",
    [
        (NoInputError(), ErrorKind.NO_INPUT, 400),
        (MissingCredentialError(), ErrorKind.MISSING_CREDENTIAL, 401),
        (AuthError(http_status=403), ErrorKind.AUTH_ERROR, 401),
        (RateLimitedError(), ErrorKind.RATE_LIMITED, 429),
        (ApiError(500), ErrorKind.API_ERROR, 502),
        (NetworkError(), ErrorKind.NETWORK_ERROR, 503),
        (PredictionFailedError("nsfw"), ErrorKind.PREDICTION_FAILED, 502),
        (PollTimeoutError(), ErrorKind.POLL_TIMEOUT, 504),
        (LocalEngineError(), ErrorKind.LOCAL_ENGINE_ERROR, 500),
    ],
)
def test_exception_kind_and_code(exc, kind, code):
    assert exc.kind == kind
    assert exc.code == code
    assert exc.message


def test_api_error_message_includes_status():
    assert ApiError(418, body="teapot").message == "The prediction service returned an error (HTTP 418)."


def test_prediction_failed_message_includes_reason():
    assert PredictionFailedError("CUDA out of memory").message == "Background removal failed: CUDA out of memory"


def test_failure_result_response_dict():
    request = ProcessingRequest(image_bytes=b"img", method=ProcessingMethod.REMOTE)

    result = ProcessingResult.failure(request, PollTimeoutError(prediction_id="p1", attempts=60), 42)
    body = result.to_response_dict()

    assert not result.succeeded
    assert body["status"] == "failed"
    assert body["image_ref"] is None
    assert body["error"]["kind"] == "poll_timeout"
    assert body["error"]["details"]["attempts"] == 60
    assert body["duration_ms"] == 42
