"""
Veo 3 adapter (Kie /veo endpoints).
"""

import logging
from typing import Any, Dict, List

from .base import ProviderError, ProviderRequest, ProviderStatus, StatusResult
from .kie_base import KieAdapter

logger = logging.getLogger(__name__)

GENERATION_TYPES = {
    "text-to-video": "TEXT_2_VIDEO",
    "frames-to-video": "FIRST_AND_LAST_FRAMES_2_VIDEO",
    "references-to-video": "REFERENCE_2_VIDEO",
}

ASPECT_RATIOS = {"16:9": "16:9", "9:16": "9:16", "auto": "Auto"}

_STATUS_STRINGS = {
    "pending": ProviderStatus.PENDING,
    "waiting": ProviderStatus.PENDING,
    "processing": ProviderStatus.PROCESSING,
    "generating": ProviderStatus.PROCESSING,
    "success": ProviderStatus.SUCCESS,
    "failed": ProviderStatus.FAILED,
    "fail": ProviderStatus.FAILED,
}

# successFlag: 0 processing, 1 success, 2 failed, 3 created but failed
_SUCCESS_FLAGS = {
    0: ProviderStatus.PROCESSING,
    1: ProviderStatus.SUCCESS,
    2: ProviderStatus.FAILED,
    3: ProviderStatus.FAILED,
}


class VeoAdapter(KieAdapter):
    """Veo 3 text/frames/references generation and video extension.

    The endpoint takes no duration or resolution; both are dropped here.
    """

    name = "veo"

    def build_payload(self, request: ProviderRequest) -> Dict[str, Any]:
        if request.variant_id == "extend-video":
            payload: Dict[str, Any] = {
                "taskId": request.continuation_task_id,
                "prompt": request.prompt,
            }
        else:
            generation_type = GENERATION_TYPES.get(request.variant_id)
            if generation_type is None:
                raise ProviderError(f"Veo does not support variant '{request.variant_id}'", code="unsupported")
            payload = {
                "prompt": request.prompt,
                "model": request.api_model,
                "generationType": generation_type,
                "aspectRatio": ASPECT_RATIOS.get((request.aspect_ratio or "16:9").lower(), "16:9"),
                "enableTranslation": request.metadata.get("enable_translation", True),
            }
            if request.image_urls:
                payload["imageUrls"] = list(request.image_urls)
        if request.seeds:
            payload["seeds"] = request.seeds
        if request.watermark:
            payload["watermark"] = request.watermark
        return payload

    def submit(self, request: ProviderRequest) -> str:
        path = "/veo/extend" if request.variant_id == "extend-video" else "/veo/generate"
        data = self._unwrap(self._post(path, self.build_payload(request)), "generation")
        task_id = data.get("taskId")
        if not task_id:
            raise ProviderError("Veo generation failed: no task id returned", code="invalid_response")
        logger.info("Veo task created: %s", task_id)
        return str(task_id)

    def check_status(self, provider_task_id: str) -> StatusResult:
        data = self._unwrap(self._get(f"/veo/task/{provider_task_id}"), "status check")
        return parse_status(data)


def _result_urls(data: Dict[str, Any]) -> List[str]:
    urls = data.get("resultUrls")
    if urls is None and isinstance(data.get("response"), dict):
        urls = data["response"].get("resultUrls")
    return [url for url in (urls or []) if url]


def parse_status(data: Dict[str, Any]) -> StatusResult:
    """Translate a Veo task payload into a StatusResult."""
    raw_status = data.get("status")
    if isinstance(raw_status, str) and raw_status.lower() in _STATUS_STRINGS:
        status = _STATUS_STRINGS[raw_status.lower()]
    elif data.get("successFlag") in _SUCCESS_FLAGS:
        status = _SUCCESS_FLAGS[data["successFlag"]]
    else:
        status = ProviderStatus.PENDING

    error_code = data.get("errorCode")
    return StatusResult(
        status=status,
        result_urls=tuple(_result_urls(data)),
        error_message=data.get("errorMessage") or None,
        error_code=str(error_code) if error_code is not None else None,
    )
