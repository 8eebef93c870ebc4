"""
Adapters for models served through the Kie jobs API (createTask/recordInfo).

All models share the envelope and status vocabulary; each adapter only
differs in how it encodes the model input block.
"""

import json
import logging
from abc import abstractmethod
from typing import Any, Dict, List

from ai_gen_orchestrator.core.jobs import strip_seconds

from .base import ProviderError, ProviderRequest, ProviderStatus, StatusResult
from .kie_base import KieAdapter

logger = logging.getLogger(__name__)

_STATES = {
    "waiting": ProviderStatus.PENDING,
    "queuing": ProviderStatus.PENDING,
    "generating": ProviderStatus.PROCESSING,
    "success": ProviderStatus.SUCCESS,
    "fail": ProviderStatus.FAILED,
}


def parse_result_urls(result_json: Any) -> List[str]:
    """Extract resultUrls from resultJson, which may arrive as a JSON string."""
    if not result_json:
        return []
    if isinstance(result_json, str):
        try:
            result_json = json.loads(result_json)
        except ValueError:
            raise ProviderError("Failed to parse result data", code="invalid_response")
    if not isinstance(result_json, dict):
        return []
    return [url for url in (result_json.get("resultUrls") or []) if url]


class MarketAdapter(KieAdapter):
    """Common createTask/recordInfo handling."""

    name = "market"

    @abstractmethod
    def build_input(self, request: ProviderRequest) -> Dict[str, Any]:
        """Encode the provider-specific input block."""
        raise NotImplementedError

    def build_payload(self, request: ProviderRequest) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"model": request.api_model, "input": self.build_input(request)}
        callback_url = request.metadata.get("callback_url")
        if callback_url:
            payload["callBackUrl"] = callback_url
        return payload

    def submit(self, request: ProviderRequest) -> str:
        payload = self._post("/jobs/createTask", self.build_payload(request))
        data = self._unwrap(payload, "generation")
        task_id = data.get("taskId") or payload.get("taskId")
        if not task_id:
            message = payload.get("failMsg") or "No task ID returned"
            raise ProviderError(f"{self.name} generation failed: {message}", code="invalid_response")
        logger.info("%s task created: %s", self.name, task_id)
        return str(task_id)

    def check_status(self, provider_task_id: str) -> StatusResult:
        payload = self._get("/jobs/recordInfo", params={"taskId": provider_task_id})
        data = self._unwrap(payload, "status check") or payload
        status = _STATES.get(str(data.get("state") or "waiting").lower(), ProviderStatus.PENDING)

        result_urls = parse_result_urls(data.get("resultJson")) if status is ProviderStatus.SUCCESS else []
        fail_code = data.get("failCode")
        return StatusResult(
            status=status,
            result_urls=tuple(result_urls),
            error_message=data.get("failMsg") or None,
            error_code=str(fail_code) if fail_code else None,
        )


class WanAdapter(MarketAdapter):
    """Wan 2.6 text/image/video-to-video. Durations are bare seconds: "5"."""

    name = "wan"

    def build_input(self, request: ProviderRequest) -> Dict[str, Any]:
        data: Dict[str, Any] = {"prompt": request.prompt}
        if request.duration:
            data["duration"] = strip_seconds(request.duration)
        if request.resolution:
            data["resolution"] = request.resolution
        if request.image_urls:
            data["image_urls"] = list(request.image_urls)
        if request.video_urls:
            data["video_urls"] = list(request.video_urls)
        return data


class SoraAdapter(MarketAdapter):
    """Sora 2 Pro. Duration maps to n_frames, resolution to size."""

    name = "sora"

    def build_input(self, request: ProviderRequest) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        if request.duration:
            data["n_frames"] = strip_seconds(request.duration)
        if request.aspect_ratio:
            data["aspect_ratio"] = request.aspect_ratio
        if request.image_urls:
            data["image_urls"] = list(request.image_urls)

        if request.variant_id == "storyboard":
            shots = request.shots
            if shots:
                data["shots"] = [
                    {"Scene": shot.prompt, "duration": float(strip_seconds(shot.duration))}
                    for shot in shots
                ]
            else:
                data["shots"] = [{
                    "Scene": request.prompt,
                    "duration": float(strip_seconds(request.duration or "10")),
                }]
        else:
            data["prompt"] = request.prompt
            if request.resolution:
                data["size"] = request.resolution
        if request.watermark is None:
            data["remove_watermark"] = True
        return data


class NanoBananaAdapter(MarketAdapter):
    """Nano Banana Pro image generation. Resolutions are sent upper-case: "1K"."""

    name = "nano-banana"

    def build_input(self, request: ProviderRequest) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "prompt": request.prompt,
            "aspect_ratio": request.aspect_ratio or "1:1",
            "resolution": (request.resolution or "1k").upper(),
            "output_format": (request.output_format or "png").lower(),
        }
        if request.image_urls:
            data["image_input"] = list(request.image_urls)
        return data
