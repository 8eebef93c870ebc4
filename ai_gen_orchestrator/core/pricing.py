"""
Credit pricing policy and cost resolution.

Prices are resolved from a CostPolicy passed in by the caller; nothing here
reads stored settings, so every resolver is a pure function.
"""

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Mapping, Optional, Union


@dataclass(frozen=True)
class DetailedCostConfig:
    """Per-model override table keyed by composite option keys.

    Keys look like "720p:5s", "storyboard:standard:10" or a single option
    value. The "default" entry is mandatory.
    """
    prices: Mapping[str, Decimal]

    def __post_init__(self):
        if "default" not in self.prices:
            raise ValueError("DetailedCostConfig requires a 'default' entry")

    @property
    def default(self) -> Decimal:
        return self.prices["default"]

    def get(self, key: str) -> Optional[Decimal]:
        return self.prices.get(key)


ModelCost = Union[Decimal, DetailedCostConfig]


@dataclass(frozen=True)
class CostBucket:
    """Default price plus per-model entries for one generation kind."""
    default: Decimal
    models: Mapping[str, ModelCost] = field(default_factory=dict)


@dataclass(frozen=True)
class CostPolicy:
    """Complete pricing policy for video, image and prompt enhancement."""
    video: CostBucket
    image: CostBucket
    prompt_enhancement: Decimal = Decimal("1")


@dataclass(frozen=True)
class CostOptions:
    """Option tuple used to pick an override key. Any field may be absent."""
    variant: Optional[str] = None
    resolution: Optional[str] = None
    duration: Optional[str] = None


def _detailed(prices: Dict[str, Any]) -> DetailedCostConfig:
    return DetailedCostConfig({key: Decimal(str(value)) for key, value in prices.items()})


_VEO_FAST = {
    "default": 60,
    "text-to-video": 60,
    "image-to-video": 60,
    "reference-to-video": 60,
    "frames-to-video": 60,
    "references-to-video": 60,
    "extend-video": 60,
    "1080p": 5,
    "4k": 120,
}

_VEO = {
    "default": 250,
    "text-to-video": 250,
    "image-to-video": 250,
    "reference-to-video": 250,
    "frames-to-video": 250,
    "references-to-video": 250,
    "extend-video": 60,
    "extend-video-quality": 250,
    "fallback": 100,
    "1080p": 5,
    "4k": 120,
}

# Compiled-in policy used when the settings store is empty or unreachable
DEFAULT_COST_POLICY = CostPolicy(
    video=CostBucket(
        default=Decimal("60"),
        models={
            "veo-fast": _detailed(_VEO_FAST),
            "veo3_fast": _detailed(_VEO_FAST),
            "veo": _detailed(_VEO),
            "veo3": _detailed({k: v for k, v in _VEO.items() if k != "fallback"}),
            "wan-2-6": _detailed({
                "default": 70,
                "720p:5s": 70,
                "720p:5": 70,
                "720p:10s": 140,
                "720p:10": 140,
                "720p:15s": 210,
                "720p:15": 210,
                "1080p:5s": 105,
                "1080p:5": 105,
                "1080p:10s": 210,
                "1080p:10": 210,
                "1080p:15s": 315,
                "1080p:15": 315,
            }),
            "sora-2-pro": _detailed({
                "default": 150,
                "standard:10": 150,
                "standard:15": 270,
                "high:10": 330,
                "high:15": 630,
                "storyboard:standard:10": 150,
                "storyboard:standard:15": 270,
                "storyboard:standard:25": 270,
                "storyboard:standard:10s": 150,
                "storyboard:standard:15s": 270,
                "storyboard:standard:25s": 270,
            }),
        },
    ),
    image=CostBucket(
        default=Decimal("5"),
        models={
            "nano-banana-pro": _detailed({
                "default": 18,
                "1k": 18,
                "2k": 18,
                "4k": 24,
            }),
            "z-image": _detailed({
                "default": "0.8",
                "1": "0.8",
                "2": "1.6",
                "3": "2.4",
                "4": "3.2",
            }),
        },
    ),
    prompt_enhancement=Decimal("1"),
)


def candidate_keys(options: Optional[CostOptions]) -> List[str]:
    """Override keys to try, most specific first.

    A composite key is only produced when every option it names is present.
    """
    if options is None:
        return []
    variant, resolution, duration = options.variant, options.resolution, options.duration
    keys = []
    if variant and resolution and duration:
        keys.append(f"{variant}:{resolution}:{duration}")
    if resolution and duration:
        keys.append(f"{resolution}:{duration}")
    if variant and resolution:
        keys.append(f"{variant}:{resolution}")
    for single in (variant, resolution, duration):
        if single:
            keys.append(single)
    return keys


def _resolve(bucket: CostBucket, model_id: Optional[str], options: Optional[CostOptions]) -> Decimal:
    if not model_id or model_id not in bucket.models:
        return bucket.default

    entry = bucket.models[model_id]
    if not isinstance(entry, DetailedCostConfig):
        return entry

    for key in candidate_keys(options):
        price = entry.get(key)
        if price is not None:
            return price

    price = entry.get("default")
    return price if price is not None else bucket.default


def resolve_video_cost(
    policy: CostPolicy,
    model_id: Optional[str],
    options: Optional[CostOptions] = None
) -> Decimal:
    """Resolve the credit price of a video job.

    Args:
        policy: Pricing policy to resolve against
        model_id: Model identifier (may be unknown)
        options: Variant, resolution and duration, any of which may be absent

    Returns:
        Price in credits
    """
    return _resolve(policy.video, model_id, options)


def resolve_image_cost(
    policy: CostPolicy,
    model_id: Optional[str],
    options: Optional[CostOptions] = None
) -> Decimal:
    """Resolve the credit price of an image job. Same cascade as video."""
    return _resolve(policy.image, model_id, options)


def resolve_cost(
    policy: CostPolicy,
    kind: str,
    model_id: Optional[str],
    options: Optional[CostOptions] = None
) -> Decimal:
    """Resolve against the image bucket for image models, the video bucket otherwise."""
    if kind == "image":
        return resolve_image_cost(policy, model_id, options)
    return resolve_video_cost(policy, model_id, options)


def resolve_prompt_enhancement_cost(policy: CostPolicy) -> Decimal:
    return policy.prompt_enhancement


def _parse_price(value: Any, path: str) -> Decimal:
    if isinstance(value, bool) or not isinstance(value, (int, float, str, Decimal)):
        raise ValueError(f"'{path}' must be a number")
    try:
        price = Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"'{path}' must be a number")
    if not price.is_finite() or price < 0:
        raise ValueError(f"'{path}' must be >= 0")
    return price


def _parse_bucket(data: Any, path: str) -> CostBucket:
    if not isinstance(data, dict):
        raise ValueError(f"'{path}' must be a dictionary")
    unknown_keys = set(data.keys()) - {"DEFAULT", "MODELS"}
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")
    if "DEFAULT" not in data:
        raise ValueError(f"Missing required 'DEFAULT' in {path}")

    models_data = data.get("MODELS", {})
    if not isinstance(models_data, dict):
        raise ValueError(f"'{path}.MODELS' must be a dictionary")

    models: Dict[str, ModelCost] = {}
    for model_id, entry in models_data.items():
        entry_path = f"{path}.MODELS.{model_id}"
        if isinstance(entry, dict):
            if "default" not in entry:
                raise ValueError(f"Missing required 'default' in {entry_path}")
            models[model_id] = DetailedCostConfig({
                key: _parse_price(value, f"{entry_path}.{key}") for key, value in entry.items()
            })
        else:
            models[model_id] = _parse_price(entry, entry_path)

    return CostBucket(default=_parse_price(data["DEFAULT"], f"{path}.DEFAULT"), models=models)


def parse_cost_policy(data: Any) -> CostPolicy:
    """Build a CostPolicy from its persisted dictionary form.

    Args:
        data: Dictionary with VIDEO, IMAGE and optional PROMPT_ENHANCEMENT

    Returns:
        Validated CostPolicy

    Raises:
        ValueError: If the structure or any price is invalid
    """
    if not isinstance(data, dict):
        raise ValueError("Cost policy must be a dictionary")
    unknown_keys = set(data.keys()) - {"VIDEO", "IMAGE", "PROMPT_ENHANCEMENT"}
    if unknown_keys:
        raise ValueError(f"Unknown cost policy keys: {unknown_keys}")
    for section in ("VIDEO", "IMAGE"):
        if section not in data:
            raise ValueError(f"Missing required '{section}' section")

    prompt_enhancement = DEFAULT_COST_POLICY.prompt_enhancement
    if "PROMPT_ENHANCEMENT" in data:
        prompt_enhancement = _parse_price(data["PROMPT_ENHANCEMENT"], "PROMPT_ENHANCEMENT")

    return CostPolicy(
        video=_parse_bucket(data["VIDEO"], "VIDEO"),
        image=_parse_bucket(data["IMAGE"], "IMAGE"),
        prompt_enhancement=prompt_enhancement,
    )


def _price_to_json(price: Decimal) -> Union[int, float]:
    return int(price) if price == price.to_integral_value() else float(price)


def _bucket_to_dict(bucket: CostBucket) -> Dict[str, Any]:
    models: Dict[str, Any] = {}
    for model_id, entry in bucket.models.items():
        if isinstance(entry, DetailedCostConfig):
            models[model_id] = {key: _price_to_json(value) for key, value in entry.prices.items()}
        else:
            models[model_id] = _price_to_json(entry)
    return {"DEFAULT": _price_to_json(bucket.default), "MODELS": models}


def cost_policy_to_dict(policy: CostPolicy) -> Dict[str, Any]:
    """Serialize a CostPolicy to the JSON-compatible persisted form."""
    return {
        "VIDEO": _bucket_to_dict(policy.video),
        "IMAGE": _bucket_to_dict(policy.image),
        "PROMPT_ENHANCEMENT": _price_to_json(policy.prompt_enhancement),
    }
