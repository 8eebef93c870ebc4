"""
Capability registry for generation models.

Static description of every model, its variants and the inputs each variant
accepts. Lookups never raise; request validation does.
"""

from dataclasses import dataclass, field, replace
from typing import Dict, Optional, Tuple

from .errors import ValidationError
from .jobs import GenerationParams, InputAsset, PollingPolicy, strip_seconds

IMAGE_FORMATS = ("image/jpeg", "image/png", "image/webp")
VIDEO_FORMATS = ("video/mp4", "video/quicktime", "video/x-matroska")


@dataclass(frozen=True)
class TextRequirement:
    required: bool
    min_length: int = 0
    max_length: Optional[int] = None


@dataclass(frozen=True)
class AssetRequirement:
    required: bool
    min_count: int = 0
    max_count: Optional[int] = None
    formats: Tuple[str, ...] = ()
    max_size_mb: Optional[float] = None


@dataclass(frozen=True)
class InputContract:
    """Inputs a variant requires or accepts."""
    prompt: TextRequirement
    negative_prompt: Optional[TextRequirement] = None
    images: Optional[AssetRequirement] = None
    videos: Optional[AssetRequirement] = None
    continuation_task_id: bool = False
    accepts_shots: bool = False


@dataclass(frozen=True)
class VariantDescriptor:
    """A generation mode of a model and its legal parameters."""
    id: str
    name: str
    api_model: str
    durations: Tuple[str, ...]
    resolutions: Tuple[str, ...]
    inputs: InputContract
    aspect_ratios: Tuple[str, ...] = ()
    polling: PollingPolicy = field(default_factory=PollingPolicy)


@dataclass(frozen=True)
class ModelDescriptor:
    """A generation model exposed by one provider adapter."""
    id: str
    display_name: str
    provider: str
    variants: Tuple[VariantDescriptor, ...]
    kind: str = "video"
    description: str = ""

    def variant(self, variant_id: str) -> Optional[VariantDescriptor]:
        for variant in self.variants:
            if variant.id == variant_id:
                return variant
        return None


_VEO_DURATIONS = ("4s", "6s", "8s")
_VEO_RESOLUTIONS = ("720p", "1080p")
_VEO_ASPECT_RATIOS = ("16:9", "9:16")
_VEO_POLLING = PollingPolicy(interval_seconds=10, max_attempts=60)
_LONG_POLLING = PollingPolicy(interval_seconds=10, max_attempts=120)


def _veo_variants(api_model: str) -> Tuple[VariantDescriptor, ...]:
    prompt = TextRequirement(required=True, min_length=1, max_length=2000)

    def variant(variant_id, name, inputs):
        return VariantDescriptor(
            id=variant_id,
            name=name,
            api_model=api_model,
            durations=_VEO_DURATIONS,
            resolutions=_VEO_RESOLUTIONS,
            aspect_ratios=_VEO_ASPECT_RATIOS,
            inputs=inputs,
            polling=_VEO_POLLING,
        )

    return (
        variant("text-to-video", "Text to Video", InputContract(prompt=prompt)),
        variant("frames-to-video", "Frames to Video", InputContract(
            prompt=prompt,
            images=AssetRequirement(required=True, min_count=1, max_count=2,
                                    formats=IMAGE_FORMATS, max_size_mb=30),
        )),
        variant("references-to-video", "References to Video", InputContract(
            prompt=prompt,
            images=AssetRequirement(required=True, min_count=1, max_count=10,
                                    formats=IMAGE_FORMATS, max_size_mb=30),
        )),
        variant("extend-video", "Extend Video", InputContract(
            prompt=TextRequirement(required=False, max_length=2000),
            continuation_task_id=True,
        )),
    )


_WAN_PROMPT = TextRequirement(required=True, min_length=2, max_length=5000)

_SORA_RESOLUTIONS = ("standard", "high")
_SORA_ASPECT_RATIOS = ("portrait", "landscape")

MODELS: Tuple[ModelDescriptor, ...] = (
    ModelDescriptor(
        id="veo-fast",
        display_name="Veo 3 Fast",
        provider="kie-veo",
        description="Faster version of Veo 3 for quick video generation",
        variants=_veo_variants("veo3_fast"),
    ),
    ModelDescriptor(
        id="veo",
        display_name="Veo 3",
        provider="kie-veo",
        description="Google's Veo 3 model for high-quality video generation",
        variants=_veo_variants("veo3"),
    ),
    ModelDescriptor(
        id="wan-2-6",
        display_name="Wan 2.6",
        provider="kie-wan",
        description="Wan 2.6 model for versatile video generation",
        variants=(
            VariantDescriptor(
                id="text-to-video",
                name="Text to Video",
                api_model="wan/2-6-text-to-video",
                durations=("5", "10", "15"),
                resolutions=("720p", "1080p"),
                inputs=InputContract(prompt=TextRequirement(required=True, min_length=1, max_length=5000)),
                polling=_LONG_POLLING,
            ),
            VariantDescriptor(
                id="image-to-video",
                name="Image to Video",
                api_model="wan/2-6-image-to-video",
                durations=("5", "10", "15"),
                resolutions=("720p", "1080p"),
                inputs=InputContract(
                    prompt=_WAN_PROMPT,
                    images=AssetRequirement(required=True, min_count=1, max_count=10,
                                            formats=IMAGE_FORMATS, max_size_mb=10),
                ),
                polling=_LONG_POLLING,
            ),
            VariantDescriptor(
                id="video-to-video",
                name="Video to Video",
                api_model="wan/2-6-video-to-video",
                durations=("5", "10"),
                resolutions=("720p", "1080p"),
                inputs=InputContract(
                    prompt=_WAN_PROMPT,
                    videos=AssetRequirement(required=True, min_count=1, max_count=10,
                                            formats=VIDEO_FORMATS, max_size_mb=10),
                ),
                polling=_LONG_POLLING,
            ),
        ),
    ),
    ModelDescriptor(
        id="sora-2-pro",
        display_name="Sora 2 Pro",
        provider="kie-sora",
        description="OpenAI's Sora 2 Pro model for high-quality video generation",
        variants=(
            VariantDescriptor(
                id="text-to-video",
                name="Text to Video",
                api_model="sora-2-pro-text-to-video",
                durations=("10", "15"),
                resolutions=_SORA_RESOLUTIONS,
                aspect_ratios=_SORA_ASPECT_RATIOS,
                inputs=InputContract(prompt=TextRequirement(required=True, min_length=1, max_length=10000)),
                polling=_LONG_POLLING,
            ),
            VariantDescriptor(
                id="image-to-video",
                name="Image to Video",
                api_model="sora-2-pro-image-to-video",
                durations=("10", "15"),
                resolutions=_SORA_RESOLUTIONS,
                aspect_ratios=_SORA_ASPECT_RATIOS,
                inputs=InputContract(
                    prompt=TextRequirement(required=True, min_length=1, max_length=10000),
                    images=AssetRequirement(required=True, min_count=1, max_count=1,
                                            formats=IMAGE_FORMATS, max_size_mb=10),
                ),
                polling=_LONG_POLLING,
            ),
            VariantDescriptor(
                id="storyboard",
                name="Storyboard",
                api_model="sora-2-pro-storyboard",
                durations=("10s", "15s", "25s"),
                resolutions=_SORA_RESOLUTIONS,
                aspect_ratios=_SORA_ASPECT_RATIOS,
                inputs=InputContract(
                    prompt=TextRequirement(required=True, min_length=1, max_length=20000),
                    images=AssetRequirement(required=False, min_count=0, max_count=1,
                                            formats=IMAGE_FORMATS, max_size_mb=10),
                    accepts_shots=True,
                ),
                polling=_LONG_POLLING,
            ),
        ),
    ),
    ModelDescriptor(
        id="nano-banana-pro",
        display_name="Nano Banana Pro",
        provider="kie-nano-banana",
        kind="image",
        description="Image generation and editing",
        variants=(
            VariantDescriptor(
                id="text-to-image",
                name="Text to Image",
                api_model="nano-banana-pro",
                durations=(),
                resolutions=("1k", "2k", "4k"),
                aspect_ratios=("1:1", "16:9", "9:16", "4:3", "3:4"),
                inputs=InputContract(prompt=TextRequirement(required=True, min_length=1, max_length=10000)),
                polling=PollingPolicy(interval_seconds=2, max_attempts=180),
            ),
            VariantDescriptor(
                id="image-editing",
                name="Image Editing",
                api_model="nano-banana-pro",
                durations=(),
                resolutions=("1k", "2k", "4k"),
                aspect_ratios=("1:1", "16:9", "9:16", "4:3", "3:4"),
                inputs=InputContract(
                    prompt=TextRequirement(required=True, min_length=1, max_length=10000),
                    images=AssetRequirement(required=True, min_count=1, max_count=2,
                                            formats=IMAGE_FORMATS + ("image/gif",), max_size_mb=30),
                ),
                polling=PollingPolicy(interval_seconds=2, max_attempts=180),
            ),
        ),
    ),
)

_MODELS_BY_ID: Dict[str, ModelDescriptor] = {model.id: model for model in MODELS}


def list_models(kind: Optional[str] = None) -> Tuple[ModelDescriptor, ...]:
    if kind is None:
        return MODELS
    return tuple(model for model in MODELS if model.kind == kind)


def describe_model(model_id: str) -> Optional[ModelDescriptor]:
    """Look up a model. Unknown ids return None."""
    return _MODELS_BY_ID.get(model_id)


def describe_variant(model_id: str, variant_id: str) -> Optional[VariantDescriptor]:
    """Look up a variant within a model. Unknown ids return None."""
    model = describe_model(model_id)
    if model is None:
        return None
    return model.variant(variant_id)


def is_supported(model_id: str, variant_id: str) -> bool:
    return describe_variant(model_id, variant_id) is not None


def default_options(model_id: str, variant_id: str) -> Dict[str, Optional[str]]:
    """Default duration, resolution and aspect ratio for a variant.

    Used when a caller switches variant and needs legal starting values.
    Unknown ids return an empty dictionary.
    """
    variant = describe_variant(model_id, variant_id)
    if variant is None:
        return {}
    return _variant_defaults(variant)


def _variant_defaults(variant: VariantDescriptor) -> Dict[str, Optional[str]]:
    return {
        "duration": variant.durations[0] if variant.durations else None,
        "resolution": variant.resolutions[0] if variant.resolutions else None,
        "aspect_ratio": variant.aspect_ratios[0] if variant.aspect_ratios else None,
    }


def _check_text(value: Optional[str], requirement: Optional[TextRequirement], label: str) -> None:
    text = (value or "").strip()
    if requirement is None:
        if text:
            raise ValidationError(f"{label} is not accepted by this variant")
        return
    if not text:
        if requirement.required:
            raise ValidationError(f"{label} is required")
        return
    if len(text) < requirement.min_length:
        raise ValidationError(f"{label} too short. Minimum {requirement.min_length} characters required.")
    if requirement.max_length is not None and len(text) > requirement.max_length:
        raise ValidationError(f"{label} too long. Maximum {requirement.max_length} characters allowed.")


def _check_assets(
    assets: Tuple[InputAsset, ...],
    requirement: Optional[AssetRequirement],
    label: str
) -> None:
    if requirement is None:
        if assets:
            raise ValidationError(f"{label} are not accepted by this variant")
        return
    if not assets:
        if requirement.required:
            raise ValidationError(f"At least {max(requirement.min_count, 1)} {label.lower()} required")
        return
    if len(assets) < requirement.min_count:
        raise ValidationError(f"At least {requirement.min_count} {label.lower()} required")
    if requirement.max_count is not None and len(assets) > requirement.max_count:
        raise ValidationError(f"At most {requirement.max_count} {label.lower()} allowed")

    for index, asset in enumerate(assets):
        if not asset.data and not asset.url:
            raise ValidationError(f"{label} #{index + 1} is empty")
        if requirement.formats and asset.mime_type not in requirement.formats:
            raise ValidationError(
                f"{label} #{index + 1} has unsupported format '{asset.mime_type}'. "
                f"Allowed: {', '.join(requirement.formats)}"
            )
        if requirement.max_size_mb is not None and asset.size_bytes > requirement.max_size_mb * 1024 * 1024:
            raise ValidationError(f"{label} #{index + 1} too large. Maximum {requirement.max_size_mb:g}MB allowed.")


def _check_option(value: Optional[str], allowed: Tuple[str, ...], label: str) -> None:
    if value is None:
        return
    if not allowed:
        raise ValidationError(f"{label} is not configurable for this variant")
    if value not in allowed:
        raise ValidationError(f"Invalid {label.lower()} '{value}'. Must be one of: {', '.join(allowed)}")


def _lookup(model_id: str, variant_id: str) -> Tuple[ModelDescriptor, VariantDescriptor]:
    model = describe_model(model_id)
    if model is None:
        raise ValidationError(f"Unknown model: {model_id}")
    variant = model.variant(variant_id)
    if variant is None:
        raise ValidationError(f"Model '{model_id}' does not support variant '{variant_id}'")
    return model, variant


def _resolve_options(
    variant: VariantDescriptor,
    duration: Optional[str],
    resolution: Optional[str],
    aspect_ratio: Optional[str]
) -> Dict[str, Optional[str]]:
    _check_option(duration, variant.durations, "Duration")
    _check_option(resolution, variant.resolutions, "Resolution")
    _check_option(aspect_ratio, variant.aspect_ratios, "Aspect ratio")
    defaults = _variant_defaults(variant)
    return {
        "duration": duration or defaults["duration"],
        "resolution": resolution or defaults["resolution"],
        "aspect_ratio": aspect_ratio or defaults["aspect_ratio"],
    }


def resolve_options(
    model_id: str,
    variant_id: str,
    duration: Optional[str] = None,
    resolution: Optional[str] = None,
    aspect_ratio: Optional[str] = None
) -> Tuple[ModelDescriptor, VariantDescriptor, Dict[str, Optional[str]]]:
    """Check option values for a variant and fill the missing ones with defaults.

    Prompts and input assets are not checked, so a price can be quoted for
    variants that need images, videos or a continuation task.

    Raises:
        ValidationError: If the model/variant is unknown or an option is not offered
    """
    model, variant = _lookup(model_id, variant_id)
    return model, variant, _resolve_options(variant, duration, resolution, aspect_ratio)


def validate_request(
    model_id: str,
    variant_id: str,
    params: GenerationParams
) -> Tuple[ModelDescriptor, VariantDescriptor, GenerationParams]:
    """Validate a request against the registry and fill default options.

    Args:
        model_id: Model identifier
        variant_id: Variant identifier within the model
        params: Caller-supplied parameters

    Returns:
        The model, the variant and params with defaults applied

    Raises:
        ValidationError: If the model/variant is unknown or any input is out of bounds
    """
    model, variant = _lookup(model_id, variant_id)

    contract = variant.inputs
    _check_text(params.prompt, contract.prompt, "Prompt")
    _check_text(params.negative_prompt, contract.negative_prompt, "Negative prompt")
    _check_assets(params.images, contract.images, "Images")
    _check_assets(params.videos, contract.videos, "Videos")

    if contract.continuation_task_id and not (params.continuation_task_id or "").strip():
        raise ValidationError("Task ID from a previously generated video is required")
    if params.continuation_task_id and not contract.continuation_task_id:
        raise ValidationError("Continuation task ID is not accepted by this variant")
    if params.shots and not contract.accepts_shots:
        raise ValidationError("Storyboard shots are not accepted by this variant")
    for index, shot in enumerate(params.shots, start=1):
        if not shot.prompt.strip():
            raise ValidationError(f"Shot {index} requires a prompt")
        try:
            seconds = float(strip_seconds(str(shot.duration)))
        except ValueError:
            raise ValidationError(f"Shot {index} has an invalid duration: {shot.duration}")
        if seconds <= 0:
            raise ValidationError(f"Shot {index} duration must be positive")

    options = _resolve_options(variant, params.duration, params.resolution, params.aspect_ratio)
    return model, variant, replace(params, **options)
