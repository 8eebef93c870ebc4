"""
Artifact download and inline encoding.

Downloads are attempted once. A failed download after a successful
generation must not trigger another generation, so retries are left to the
caller.
"""

import base64
import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from .errors import DownloadFailed

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "video/mp4"


def to_data_url(data: bytes, mime_type: str) -> str:
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:{mime_type};base64,{encoded}"


@dataclass(frozen=True)
class Artifact:
    """Downloaded generation output."""
    data: bytes
    mime_type: str
    source_url: str

    @property
    def size_bytes(self) -> int:
        return len(self.data)

    def to_data_url(self) -> str:
        return to_data_url(self.data, self.mime_type)


class ResultMaterializer:
    """Fetches finished artifacts from provider URLs."""

    def __init__(
        self,
        client: Optional[httpx.Client] = None,
        timeout_seconds: float = 120.0,
        default_mime_type: str = DEFAULT_MIME_TYPE
    ):
        self._owns_client = client is None
        self.client = client or httpx.Client(timeout=timeout_seconds, follow_redirects=True)
        self.default_mime_type = default_mime_type

    def fetch_artifact(self, result_url: str, default_mime_type: Optional[str] = None) -> Artifact:
        """Download an artifact.

        Args:
            result_url: URL reported by the provider
            default_mime_type: Used when the response has no content type

        Returns:
            Artifact with bytes and MIME type

        Raises:
            DownloadFailed: On a non-success HTTP status or transport failure
        """
        logger.info("Downloading artifact from %s", result_url)
        try:
            response = self.client.get(result_url)
        except httpx.InvalidURL as exc:
            raise DownloadFailed(f"Unusable artifact URL {result_url!r}: {exc}", code="invalid_url") from exc
        except httpx.RequestError as exc:
            raise DownloadFailed(f"Failed to download artifact: {exc}", code="network") from exc

        if not response.is_success:
            raise DownloadFailed(
                f"Failed to download artifact: {response.status_code} {response.reason_phrase}",
                code=str(response.status_code),
                status_code=response.status_code,
            )

        content_type = response.headers.get("content-type", "").split(";")[0].strip()
        if content_type in ("", "application/octet-stream"):
            mime_type = default_mime_type or self.default_mime_type
        else:
            mime_type = content_type
        logger.info("Artifact downloaded, size: %d bytes", len(response.content))
        return Artifact(data=response.content, mime_type=mime_type, source_url=result_url)

    def materialize(self, result_url: str, default_mime_type: Optional[str] = None) -> str:
        """Download an artifact and return it as a base64 data URL."""
        return self.fetch_artifact(result_url, default_mime_type).to_data_url()

    def close(self) -> None:
        if self._owns_client:
            self.client.close()
