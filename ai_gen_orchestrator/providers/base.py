"""
Provider adapter contract.

Every generation back-end is wrapped by one ProviderAdapter. Adapters own all
provider field names and error bodies; callers only see the types below.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from ai_gen_orchestrator.core.jobs import InputAsset, StoryboardShot

# Codes for which the same request may succeed later
TRANSIENT_CODES = frozenset({"network", "invalid_response", "408", "429"})


class ProviderStatus(Enum):
    """Normalized provider task states."""
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"


class ProviderError(Exception):
    """Single error shape for every provider failure."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code

    @property
    def transient(self) -> bool:
        """True for failures worth retrying: transport errors, 5xx, 408 and 429.

        Other HTTP statuses and non-200 envelope codes are permanent. An error
        without a code is treated as transient.
        """
        if self.code is None or self.code in TRANSIENT_CODES:
            return True
        return self.code.isdigit() and self.code.startswith("5")


@dataclass(frozen=True)
class StatusResult:
    """Outcome of one status check."""
    status: ProviderStatus
    result_urls: Tuple[str, ...] = ()
    error_message: Optional[str] = None
    error_code: Optional[str] = None


@dataclass(frozen=True)
class ProviderRequest:
    """Provider-neutral submission built by the orchestrator."""
    api_model: str
    variant_id: str
    prompt: str
    negative_prompt: Optional[str] = None
    resolution: Optional[str] = None
    duration: Optional[str] = None
    aspect_ratio: Optional[str] = None
    image_urls: Tuple[str, ...] = ()
    video_urls: Tuple[str, ...] = ()
    continuation_task_id: Optional[str] = None
    shots: Tuple[StoryboardShot, ...] = ()
    seeds: Optional[int] = None
    watermark: Optional[str] = None
    output_format: Optional[str] = None
    metadata: dict = field(default_factory=dict)


class ProviderAdapter(ABC):
    """Submit, poll and upload against one generation back-end."""

    name: str = "provider"

    @abstractmethod
    def submit(self, request: ProviderRequest) -> str:
        """Submit a job and return the provider task id.

        Raises:
            ProviderError: If the provider rejects the request
        """
        raise NotImplementedError

    @abstractmethod
    def check_status(self, provider_task_id: str) -> StatusResult:
        """Fetch the current status of a submitted task.

        Raises:
            ProviderError: If the status cannot be retrieved
        """
        raise NotImplementedError

    @abstractmethod
    def upload_asset(self, data: bytes, mime_type: str) -> str:
        """Host an input asset and return its retrievable URL.

        Raises:
            ProviderError: If the upload is rejected
        """
        raise NotImplementedError

    def upload_assets(self, assets: Sequence[InputAsset]) -> List[str]:
        """Resolve assets to URLs, uploading the ones that carry raw bytes."""
        urls = []
        for asset in assets:
            if asset.url:
                urls.append(asset.url)
            else:
                urls.append(self.upload_asset(asset.data, asset.mime_type))
        return urls

    def close(self) -> None:
        pass
