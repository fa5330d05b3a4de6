"""
Prediction Service Schemas

Wire models for the /v1/predictions API and the client-side terminal
states produced by the poll loop.
"""

from enum import Enum
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class PredictionStatus(str, Enum):
    """Server-reported job status."""
    STARTING = "starting"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in (PredictionStatus.SUCCEEDED, PredictionStatus.FAILED, PredictionStatus.CANCELED)


class PredictionInput(BaseModel):
    image: str  # data URI


class CreatePredictionRequest(BaseModel):
    """Body of POST /v1/predictions."""
    version: str
    input: PredictionInput


class PredictionResponse(BaseModel):
    """Body returned by both create and get prediction calls."""
    model_config = ConfigDict(extra="ignore")

    id: str
    status: PredictionStatus
    output: Optional[Union[List[Optional[str]], str]] = None
    error: Optional[str] = None

    def first_output(self) -> Optional[str]:
        """First output reference, or None when no usable output is present."""
        if isinstance(self.output, str):
            return self.output or None
        if self.output:
            return self.output[0] or None
        return None


class JobHandle(BaseModel):
    """Reference to a created remote job. Never carries the credential."""
    model_config = ConfigDict(frozen=True)

    id: str
    status: PredictionStatus = PredictionStatus.STARTING
    model_version: str


class PollOutcome(str, Enum):
    """Client-side terminal outcome of the poll loop."""
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class TerminalJobState(BaseModel):
    """Result of poll_job: exactly one terminal outcome."""
    model_config = ConfigDict(frozen=True)

    job_id: str
    outcome: PollOutcome
    output: Optional[str] = None
    reason: Optional[str] = None
    attempts: int = Field(..., ge=0)

    @classmethod
    def succeeded(cls, job_id: str, output: str, attempts: int) -> "TerminalJobState":
        return cls(job_id=job_id, outcome=PollOutcome.SUCCEEDED, output=output, attempts=attempts)

    @classmethod
    def failed(cls, job_id: str, reason: str, attempts: int) -> "TerminalJobState":
        return cls(job_id=job_id, outcome=PollOutcome.FAILED, reason=reason, attempts=attempts)

    @classmethod
    def timed_out(cls, job_id: str, attempts: int) -> "TerminalJobState":
        return cls(job_id=job_id, outcome=PollOutcome.TIMED_OUT, attempts=attempts)
