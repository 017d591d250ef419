"""Stable fingerprints for cacheable units of work."""

import hashlib
import json
import re

from contentforge.schemas import ContentType, GenerationOptions


FINGERPRINT_VERSION = 1

_WHITESPACE = re.compile(r"\s+")
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")


def normalize_description(description: str) -> str:
    """Strip control characters, collapse whitespace and casefold."""
    text = _CONTROL_CHARS.sub("", description)
    text = _WHITESPACE.sub(" ", text).strip()
    return text.casefold()


def relevant_options(content_type: ContentType, options: GenerationOptions) -> dict:
    """Options that change the artifact for a given content type."""
    if content_type == ContentType.BLOG:
        return {"language": options.language.value}
    if content_type == ContentType.IMAGE:
        return {"image_style": options.image_style.value}
    if content_type == ContentType.VIDEO:
        return {
            "video_duration_seconds": options.video_duration_seconds,
            "language": options.language.value,
        }
    return {
        "voice_style": options.voice_style.value,
        "language": options.language.value,
    }


def compute_fingerprint(
    content_type: ContentType,
    description: str,
    options: GenerationOptions,
) -> str:
    """
    Hash (content type, normalized description, relevant options).

    Two requests differing only in options irrelevant to the content type
    share a fingerprint for that type.
    """
    payload = {
        "v": FINGERPRINT_VERSION,
        "content_type": content_type.value,
        "description": normalize_description(description),
        "options": relevant_options(content_type, options),
    }
    raw = json.dumps(payload, sort_keys=True, ensure_ascii=False)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()
