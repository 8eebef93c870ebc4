"""
Generation request and job value types.

A GenerationJob lives for the duration of one pipeline run; its durable
mirror is the JobLedgerRecord in the storage layer.
"""

import math
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Tuple

from .errors import GenerationError


class JobStatus(Enum):
    """Job lifecycle states."""
    SUBMITTED = "submitted"
    POLLING = "polling"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.TIMED_OUT)


@dataclass(frozen=True)
class PollingPolicy:
    """Polling budget for one job: wait interval and attempt cap."""
    interval_seconds: float = 10.0
    max_attempts: int = 60

    def __post_init__(self):
        if self.interval_seconds < 0:
            raise ValueError("interval_seconds must be >= 0")
        if self.max_attempts <= 0:
            raise ValueError("max_attempts must be > 0")

    @property
    def budget_seconds(self) -> float:
        return self.interval_seconds * self.max_attempts

    def clamped_to(self, ceiling_seconds: Optional[float]) -> "PollingPolicy":
        """Shrink max_attempts so the whole budget fits under a request ceiling."""
        if ceiling_seconds is None or self.interval_seconds == 0:
            return self
        if self.budget_seconds <= ceiling_seconds:
            return self
        attempts = max(1, math.floor(ceiling_seconds / self.interval_seconds))
        return PollingPolicy(interval_seconds=self.interval_seconds, max_attempts=attempts)


@dataclass(frozen=True)
class InputAsset:
    """An input image or video, either raw bytes or an already hosted URL."""
    mime_type: str
    data: bytes = b""
    url: Optional[str] = None
    name: Optional[str] = None

    @property
    def size_bytes(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class StoryboardShot:
    """One scene of a storyboard generation."""
    prompt: str
    duration: str


@dataclass(frozen=True)
class GenerationParams:
    """Caller-supplied parameters for a generation request."""
    prompt: str = ""
    negative_prompt: Optional[str] = None
    resolution: Optional[str] = None
    duration: Optional[str] = None
    aspect_ratio: Optional[str] = None
    images: Tuple[InputAsset, ...] = ()
    videos: Tuple[InputAsset, ...] = ()
    continuation_task_id: Optional[str] = None
    shots: Tuple[StoryboardShot, ...] = ()
    seeds: Optional[int] = None
    watermark: Optional[str] = None
    output_format: Optional[str] = None


def strip_seconds(duration: str) -> str:
    """'10s' -> '10'. Values without a unit pass through."""
    return duration[:-1] if duration.endswith("s") else duration


def new_job_id() -> str:
    """Unique job identifier. Identical inputs never share an id."""
    return uuid.uuid4().hex


@dataclass
class GenerationJob:
    """Mutable, pipeline-scoped job state."""
    user_id: str
    model_id: str
    variant_id: str
    provider: str
    api_model: str
    price: Decimal
    params: GenerationParams
    id: str = field(default_factory=new_job_id)
    image_urls: List[str] = field(default_factory=list)
    video_urls: List[str] = field(default_factory=list)
    provider_task_id: Optional[str] = None
    status: JobStatus = JobStatus.SUBMITTED
    result_url: Optional[str] = None
    error: Optional[GenerationError] = None
    poll_attempts: int = 0
    artifact_data_url: Optional[str] = None
    charged: bool = False
    needs_materialization_retry: bool = False
    needs_billing_reconciliation: bool = False

    def start_polling(self, provider_task_id: str) -> None:
        self.provider_task_id = provider_task_id
        self.status = JobStatus.POLLING

    def succeed(self, result_url: str) -> None:
        self._require_polling()
        self.status = JobStatus.SUCCEEDED
        self.result_url = result_url

    def fail(self, error: GenerationError, status: JobStatus = JobStatus.FAILED) -> None:
        if self.status.is_terminal:
            raise ValueError(f"Job {self.id} is already terminal ({self.status.value})")
        self.status = status
        self.error = error

    def flag(self, error: GenerationError) -> None:
        """Attach a settlement problem to a succeeded job without changing its status."""
        if self.status is not JobStatus.SUCCEEDED:
            raise ValueError(f"Job {self.id} has not succeeded ({self.status.value})")
        self.error = error

    def _require_polling(self) -> None:
        if self.status is not JobStatus.POLLING:
            raise ValueError(f"Job {self.id} is not polling ({self.status.value})")
