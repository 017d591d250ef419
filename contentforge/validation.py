"""
Input validation for contentforge.

Rejects malformed generation requests before any sub-request starts.
"""

from typing import Any

from contentforge.errors import ValidationError
from contentforge.schemas import (
    ContentType,
    GenerationOptions,
    GenerationRequest,
    ImageStyle,
    Language,
    PlanTier,
    VoiceStyle,
    VALID_VIDEO_DURATIONS,
)


MAX_DESCRIPTION_LENGTH = 1000


def validate_description(description: Any) -> None:
    """
    Validate the product description.

    Args:
        description: Free-text product description

    Raises:
        ValidationError: If description is empty or too long
    """
    if not isinstance(description, str):
        raise ValidationError(
            f"product_description must be a string, got {type(description).__name__}"
        )

    if not description.strip():
        raise ValidationError("product_description cannot be empty or whitespace-only")

    if len(description.strip()) > MAX_DESCRIPTION_LENGTH:
        raise ValidationError(
            f"product_description too long: {len(description.strip()):,} characters "
            f"(max: {MAX_DESCRIPTION_LENGTH:,})"
        )


def validate_options(options: Any) -> None:
    """
    Validate generation options.

    Raises:
        ValidationError: If any option is outside its allowed set
    """
    if not isinstance(options, GenerationOptions):
        raise ValidationError(
            f"options must be GenerationOptions, got {type(options).__name__}"
        )

    if not isinstance(options.image_style, ImageStyle):
        raise ValidationError(f"Unsupported image_style: {options.image_style!r}")

    if not isinstance(options.voice_style, VoiceStyle):
        raise ValidationError(f"Unsupported voice_style: {options.voice_style!r}")

    if not isinstance(options.language, Language):
        raise ValidationError(f"Unsupported language: {options.language!r}")

    duration = options.video_duration_seconds
    if isinstance(duration, bool) or duration not in VALID_VIDEO_DURATIONS:
        raise ValidationError(
            f"video_duration_seconds must be one of {VALID_VIDEO_DURATIONS}, got {duration!r}"
        )


def validate_requester(requester_id: Any) -> None:
    if not isinstance(requester_id, str) or not requester_id.strip():
        raise ValidationError("requester_id must be a non-empty string")


def validate_content_types(content_types: Any) -> None:
    """
    Validate the requested content type subset.

    Raises:
        ValidationError: If empty, duplicated or unknown
    """
    if not content_types:
        raise ValidationError("At least one content type must be requested")

    seen = set()
    for content_type in content_types:
        if not isinstance(content_type, ContentType):
            raise ValidationError(f"Unknown content type: {content_type!r}")
        if content_type in seen:
            raise ValidationError(f"Duplicate content type: {content_type.value}")
        seen.add(content_type)


def validate_request(request: GenerationRequest) -> None:
    """
    Validate all request parameters.

    Args:
        request: The generation request

    Raises:
        ValidationError: If any parameter is invalid
    """
    if not isinstance(request, GenerationRequest):
        raise ValidationError(
            f"request must be a GenerationRequest, got {type(request).__name__}"
        )
    validate_description(request.product_description)
    validate_options(request.options)
    validate_requester(request.requester_id)
    if not isinstance(request.plan_tier, PlanTier):
        raise ValidationError(f"Unsupported plan_tier: {request.plan_tier!r}")
    validate_content_types(request.content_types)


def parse_options(
    image_style: str = "modern",
    video_duration_seconds: int = 30,
    voice_style: str = "professional",
    language: str = "ko",
) -> GenerationOptions:
    """
    Build GenerationOptions from raw strings, as received from a form or CLI.

    Raises:
        ValidationError: If a value is not in its allowed set
    """
    try:
        options = GenerationOptions(
            image_style=ImageStyle(image_style),
            video_duration_seconds=int(video_duration_seconds),
            voice_style=VoiceStyle(voice_style),
            language=Language(language),
        )
    except (ValueError, TypeError) as exc:
        raise ValidationError(str(exc)) from exc

    validate_options(options)
    return options
