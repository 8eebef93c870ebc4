"""
Unit tests for the capability registry.
"""

import pytest

from ai_gen_orchestrator.core.errors import ValidationError
from ai_gen_orchestrator.core.jobs import GenerationParams, InputAsset, StoryboardShot
from ai_gen_orchestrator.core.registry import (
    default_options,
    describe_model,
    describe_variant,
    is_supported,
    list_models,
    resolve_options,
    validate_request,
)

PNG = InputAsset(mime_type="image/png", data=b"\x89PNG")


class TestLookups:
    """Pure registry lookups."""

    def test_describe_known_model(self):
        model = describe_model("veo-fast")
        assert model is not None
        assert model.provider == "kie-veo"
        assert model.kind == "video"
        assert [v.id for v in model.variants] == [
            "text-to-video", "frames-to-video", "references-to-video", "extend-video"
        ]

    def test_unknown_ids_return_none(self):
        """Unknown ids never raise."""
        assert describe_model("nope") is None
        assert describe_variant("veo", "nope") is None
        assert describe_variant("nope", "text-to-video") is None
        assert is_supported("nope", "text-to-video") is False
        assert default_options("nope", "x") == {}

    def test_is_supported(self):
        assert is_supported("sora-2-pro", "storyboard")
        assert not is_supported("wan-2-6", "storyboard")

    def test_default_options_are_first_allowed_values(self):
        """Defaults are the first duration, resolution and aspect ratio."""
        assert default_options("sora-2-pro", "text-to-video") == {
            "duration": "10",
            "resolution": "standard",
            "aspect_ratio": "portrait",
        }
        assert default_options("wan-2-6", "text-to-video")["aspect_ratio"] is None

    def test_list_models_by_kind(self):
        assert [m.id for m in list_models("image")] == ["nano-banana-pro"]
        assert {"veo", "veo-fast", "wan-2-6", "sora-2-pro"} <= {m.id for m in list_models("video")}
        assert len(list_models()) == len(list_models("video")) + len(list_models("image"))

    def test_wan_video_to_video_durations(self):
        variant = describe_variant("wan-2-6", "video-to-video")
        assert variant.durations == ("5", "10")

    def test_resolve_options_ignores_input_contract(self):
        """Options resolve for variants whose inputs are not supplied."""
        model, variant, options = resolve_options("veo", "extend-video")
        assert variant.inputs.continuation_task_id
        assert options == {"duration": "4s", "resolution": "720p", "aspect_ratio": "16:9"}

        _, _, options = resolve_options("wan-2-6", "image-to-video", duration="15", resolution="1080p")
        assert options["duration"] == "15"
        assert options["resolution"] == "1080p"

    def test_resolve_options_checks_values(self):
        with pytest.raises(ValidationError, match="Invalid resolution '4k'"):
            resolve_options("veo", "frames-to-video", resolution="4k")
        with pytest.raises(ValidationError, match="Unknown model"):
            resolve_options("nope", "text-to-video")


class TestValidateRequest:
    """Request validation against variant contracts."""

    def test_valid_request_gets_defaults(self):
        model, variant, params = validate_request(
            "wan-2-6", "text-to-video", GenerationParams(prompt="a cat on a skateboard")
        )
        assert model.id == "wan-2-6"
        assert variant.api_model == "wan/2-6-text-to-video"
        assert params.duration == "5"
        assert params.resolution == "720p"

    def test_explicit_options_are_kept(self):
        _, _, params = validate_request(
            "wan-2-6", "text-to-video",
            GenerationParams(prompt="waves", duration="15", resolution="1080p"),
        )
        assert (params.resolution, params.duration) == ("1080p", "15")

    def test_unknown_model(self):
        with pytest.raises(ValidationError, match="Unknown model"):
            validate_request("nope", "text-to-video", GenerationParams(prompt="x"))

    def test_unknown_variant(self):
        with pytest.raises(ValidationError, match="does not support variant"):
            validate_request("veo", "storyboard", GenerationParams(prompt="x"))

    def test_missing_prompt(self):
        with pytest.raises(ValidationError, match="Prompt is required"):
            validate_request("veo", "text-to-video", GenerationParams(prompt="   "))

    def test_prompt_too_long(self):
        with pytest.raises(ValidationError, match="too long"):
            validate_request("veo", "text-to-video", GenerationParams(prompt="x" * 2001))

    def test_prompt_too_short(self):
        with pytest.raises(ValidationError, match="too short"):
            validate_request("wan-2-6", "image-to-video", GenerationParams(prompt="x", images=(PNG,)))

    def test_negative_prompt_not_accepted(self):
        with pytest.raises(ValidationError, match="Negative prompt is not accepted"):
            validate_request("wan-2-6", "text-to-video", GenerationParams(prompt="x", negative_prompt="blur"))

    def test_veo_rejects_negative_prompt(self):
        """Veo payloads have no negative prompt field, so one is refused up front."""
        with pytest.raises(ValidationError, match="Negative prompt is not accepted"):
            validate_request("veo", "text-to-video", GenerationParams(prompt="x", negative_prompt="blur"))

    def test_required_images_missing(self):
        with pytest.raises(ValidationError, match="images required"):
            validate_request("veo", "frames-to-video", GenerationParams(prompt="x"))

    def test_too_many_images(self):
        with pytest.raises(ValidationError, match="At most 2 images"):
            validate_request("veo", "frames-to-video", GenerationParams(prompt="x", images=(PNG,) * 3))

    def test_unsupported_image_format(self):
        bmp = InputAsset(mime_type="image/bmp", data=b"BM")
        with pytest.raises(ValidationError, match="unsupported format"):
            validate_request("veo", "frames-to-video", GenerationParams(prompt="x", images=(bmp,)))

    def test_image_too_large(self):
        big = InputAsset(mime_type="image/png", data=b"0" * (10 * 1024 * 1024 + 1))
        with pytest.raises(ValidationError, match="too large"):
            validate_request("sora-2-pro", "image-to-video", GenerationParams(prompt="x", images=(big,)))

    def test_hosted_asset_url_accepted(self):
        hosted = InputAsset(mime_type="image/png", url="https://example.com/a.png")
        _, _, params = validate_request("veo", "frames-to-video", GenerationParams(prompt="x", images=(hosted,)))
        assert params.images == (hosted,)

    def test_images_not_accepted(self):
        with pytest.raises(ValidationError, match="Images are not accepted"):
            validate_request("veo", "text-to-video", GenerationParams(prompt="x", images=(PNG,)))

    def test_invalid_duration(self):
        with pytest.raises(ValidationError, match="Invalid duration '15'"):
            validate_request("wan-2-6", "video-to-video", GenerationParams(
                prompt="xx", duration="15", videos=(InputAsset(mime_type="video/mp4", data=b"v"),)
            ))

    def test_invalid_aspect_ratio(self):
        with pytest.raises(ValidationError, match="Invalid aspect ratio"):
            validate_request("veo", "text-to-video", GenerationParams(prompt="x", aspect_ratio="4:3"))

    def test_aspect_ratio_not_configurable(self):
        with pytest.raises(ValidationError, match="not configurable"):
            validate_request("wan-2-6", "text-to-video", GenerationParams(prompt="x", aspect_ratio="16:9"))

    def test_extend_requires_task_id(self):
        with pytest.raises(ValidationError, match="Task ID"):
            validate_request("veo", "extend-video", GenerationParams(prompt="more"))
        _, _, params = validate_request(
            "veo", "extend-video", GenerationParams(prompt="more", continuation_task_id="veo_123")
        )
        assert params.continuation_task_id == "veo_123"

    def test_task_id_rejected_elsewhere(self):
        with pytest.raises(ValidationError, match="Continuation task ID"):
            validate_request("veo", "text-to-video", GenerationParams(prompt="x", continuation_task_id="t"))

    def test_storyboard_shots(self):
        shots = (StoryboardShot("a door opens", "5"), StoryboardShot("a cat walks in", "5s"))
        _, variant, params = validate_request(
            "sora-2-pro", "storyboard", GenerationParams(prompt="story", shots=shots)
        )
        assert variant.inputs.accepts_shots
        assert params.duration == "10s"

    def test_storyboard_shot_needs_prompt(self):
        shots = (StoryboardShot("  ", "5"),)
        with pytest.raises(ValidationError, match="Shot 1 requires a prompt"):
            validate_request("sora-2-pro", "storyboard", GenerationParams(prompt="story", shots=shots))

    def test_storyboard_shot_bad_duration(self):
        shots = (StoryboardShot("ok", "long"),)
        with pytest.raises(ValidationError, match="invalid duration"):
            validate_request("sora-2-pro", "storyboard", GenerationParams(prompt="story", shots=shots))

    def test_storyboard_shot_duration_with_repeated_unit(self):
        shots = (StoryboardShot("ok", "10ss"),)
        with pytest.raises(ValidationError, match="invalid duration"):
            validate_request("sora-2-pro", "storyboard", GenerationParams(prompt="story", shots=shots))

    def test_shots_rejected_elsewhere(self):
        shots = (StoryboardShot("ok", "5"),)
        with pytest.raises(ValidationError, match="shots are not accepted"):
            validate_request("sora-2-pro", "text-to-video", GenerationParams(prompt="x", shots=shots))

    def test_image_editing_accepts_gif(self):
        gif = InputAsset(mime_type="image/gif", data=b"GIF89a")
        model, _, params = validate_request(
            "nano-banana-pro", "image-editing", GenerationParams(prompt="make it blue", images=(gif,))
        )
        assert model.kind == "image"
        assert params.resolution == "1k"
        assert params.duration is None
