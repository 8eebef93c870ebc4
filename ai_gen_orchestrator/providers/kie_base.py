"""
Shared HTTP plumbing for Kie-hosted generation APIs.

Handles bearer auth, the {code, msg, data} envelope, error translation and
the base64 file upload endpoint used to pre-host input assets.
"""

import base64
import logging
from typing import Any, Dict, Optional

import httpx

from .base import ProviderAdapter, ProviderError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.kie.ai/api/v1"
DEFAULT_UPLOAD_BASE_URL = "https://kieai.redpandaai.co"
UPLOAD_ENDPOINT = "/api/file-base64-upload"


def _error_text(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:500] or response.reason_phrase
    if isinstance(payload, dict):
        for key in ("msg", "message", "error"):
            if payload.get(key):
                return str(payload[key])
    return response.text[:500]


class KieAdapter(ProviderAdapter):
    """Base adapter for APIs behind a Kie API key."""

    name = "kie"
    upload_root = "videos"

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        upload_base_url: str = DEFAULT_UPLOAD_BASE_URL,
        timeout_seconds: float = 30.0,
        client: Optional[httpx.Client] = None
    ):
        if not api_key or not api_key.strip():
            raise ValueError("api_key is required and cannot be empty")
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.upload_base_url = upload_base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._owns_client = client is None
        self.client = client or httpx.Client(timeout=timeout_seconds)

    @property
    def headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    def _request(self, method: str, url: str, **kwargs: Any) -> Dict[str, Any]:
        try:
            response = self.client.request(method, url, headers=self.headers, **kwargs)
        except httpx.RequestError as exc:
            raise ProviderError(f"{self.name} request failed: {exc}", code="network") from exc

        if not response.is_success:
            raise ProviderError(
                f"{self.name} API error: {response.status_code} - {_error_text(response)}",
                code=str(response.status_code),
            )
        try:
            payload = response.json()
        except ValueError:
            raise ProviderError(f"{self.name} returned a non-JSON response", code="invalid_response")
        if not isinstance(payload, dict):
            raise ProviderError(f"{self.name} returned an unexpected response body", code="invalid_response")
        return payload

    def _post(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", self.base_url + path, json=body)

    def _get(self, path: str, params: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        return self._request("GET", self.base_url + path, params=params)

    def _unwrap(self, payload: Dict[str, Any], action: str) -> Dict[str, Any]:
        """Return the data block, treating any non-200 code as a failure."""
        code = payload.get("code")
        if code is not None and code != 200:
            message = payload.get("msg") or payload.get("message") or "Unknown error"
            raise ProviderError(f"{self.name} {action} failed: {message}", code=str(code))
        data = payload.get("data")
        return data if isinstance(data, dict) else {}

    def upload_asset(self, data: bytes, mime_type: str) -> str:
        kind = "videos" if mime_type.startswith("video/") else "images"
        encoded = base64.b64encode(data).decode("ascii")
        body = {
            "base64Data": f"data:{mime_type};base64,{encoded}",
            "uploadPath": f"{self.upload_root}/{kind}",
        }
        payload = self._request("POST", self.upload_base_url + UPLOAD_ENDPOINT, json=body)

        download_url = (payload.get("data") or {}).get("downloadUrl")
        if not payload.get("success") or not download_url:
            raise ProviderError(
                f"File upload failed: {payload.get('msg') or 'Unknown error'}",
                code=str(payload.get("code")) if payload.get("code") is not None else None,
            )
        logger.debug("Uploaded %s asset (%d bytes) to %s", mime_type, len(data), download_url)
        return download_url

    def close(self) -> None:
        if self._owns_client:
            self.client.close()
