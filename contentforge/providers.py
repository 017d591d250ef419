"""
Provider adapters for contentforge.

Every backend sits behind the same capability interface. Adapters must be
safe to call from several threads and must not block past the deadline in
the CallContext they are given.
"""

import json
import logging
import random
import threading
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Iterable, Optional

import anthropic
import httpx
import openai

from contentforge.context import CallContext
from contentforge.errors import ProviderCancelledError, ProviderError, ProviderTimeoutError
from contentforge.prompts import (
    PLACEHOLDER_AUDIO_URL,
    PLACEHOLDER_IMAGE_URL,
    PLACEHOLDER_VIDEO_URL,
    analyze_product,
    blog_body,
    blog_prompt,
    blog_title,
    image_prompt,
    podcast_script,
    reading_time_minutes,
    spoken_duration_seconds,
    video_prompt,
    voice_requirements,
)
from contentforge.schemas import (
    ArtifactContent,
    ArtifactResult,
    BlogContent,
    Capabilities,
    ContentType,
    ImageContent,
    PodcastContent,
    SubRequest,
    VideoContent,
    FALLBACK_PRODUCER,
)


logger = logging.getLogger(__name__)


class ProviderAdapter(ABC):
    """Abstract base class for generation backends."""

    name: str

    @abstractmethod
    def generate(self, sub_request: SubRequest, ctx: CallContext) -> ArtifactResult:
        """
        Produce one artifact for the sub-request.

        Raises:
            ProviderTimeoutError: If the call exceeds ctx.deadline
            ProviderCancelledError: If ctx.token is cancelled before the call
            ProviderError: On any other backend failure
        """
        pass

    @abstractmethod
    def capabilities(self) -> Capabilities:
        """Content types served, cost per call and quality score."""
        pass

    def _check_ctx(self, ctx: CallContext) -> float:
        """Fail fast on a cancelled or expired context. Returns the remaining seconds."""
        if ctx.token.is_cancelled:
            raise ProviderCancelledError(f"{self.name}: call cancelled", provider=self.name)
        remaining = ctx.remaining()
        if remaining <= 0:
            raise ProviderTimeoutError(f"{self.name}: deadline already passed", provider=self.name)
        return remaining

    def _result(self, sub_request: SubRequest, content: ArtifactContent, started: float) -> ArtifactResult:
        return ArtifactResult(
            content_type=sub_request.content_type,
            content=content,
            produced_by=self.name,
            cache_hit=False,
            latency_ms=int((time.monotonic() - started) * 1000),
        )


# =============================================================================
# Deterministic fallback
# =============================================================================

class PlaceholderProvider(ProviderAdapter):
    """
    Deterministic placeholder content.

    A pure function of the sub-request: no network, never fails, never
    times out. Used by the fallback handler only, never by routing.
    """

    name = FALLBACK_PRODUCER

    def capabilities(self) -> Capabilities:
        return Capabilities(
            content_types=frozenset(ContentType),
            cost_per_call=0.0,
            quality_score=0.0,
        )

    def generate(self, sub_request: SubRequest, ctx: Optional[CallContext] = None) -> ArtifactResult:
        return ArtifactResult(
            content_type=sub_request.content_type,
            content=self.placeholder(sub_request),
            produced_by=FALLBACK_PRODUCER,
        )

    def placeholder(self, sub_request: SubRequest) -> ArtifactContent:
        description = sub_request.product_description.strip()
        options = sub_request.options
        analysis = analyze_product(description, options.language)

        if sub_request.content_type == ContentType.BLOG:
            body = blog_body(description, analysis, options.language)
            return BlogContent(
                title=f"{blog_title(description, analysis, options.language)} (placeholder)",
                body=body,
                tags=tuple(analysis.keywords + [analysis.category]),
                seo_keywords=tuple(analysis.keywords),
                reading_time_minutes=reading_time_minutes(body),
            )

        if sub_request.content_type == ContentType.IMAGE:
            return ImageContent(
                url=PLACEHOLDER_IMAGE_URL,
                description=f"{options.image_style.value} social media graphic (placeholder)",
                dimensions="1080x1080",
                prompt=image_prompt(description, analysis, options),
            )

        if sub_request.content_type == ContentType.VIDEO:
            return VideoContent(
                url=PLACEHOLDER_VIDEO_URL,
                duration_seconds=options.video_duration_seconds,
                description=f"{options.video_duration_seconds}s promotional video (placeholder)",
                thumbnail_url=None,
                prompt=video_prompt(description, options),
            )

        script = podcast_script(description, analysis, options.language)
        return PodcastContent(
            script=script,
            audio_url=PLACEHOLDER_AUDIO_URL,
            duration_seconds=spoken_duration_seconds(script),
            description=f"{options.voice_style.value} podcast audio (placeholder)",
        )


# =============================================================================
# Simulated backend
# =============================================================================

class SimulatedProvider(ProviderAdapter):
    """
    Simulated backend for testing and demos.

    Waits `latency_ms` on the cancel token, so cancellation is observed
    promptly, then fails with `failure_rate` probability or for the first
    `fail_first` calls. Counts every call it receives.
    """

    def __init__(
        self,
        name: str,
        content_types: Iterable[ContentType] = tuple(ContentType),
        latency_ms: int = 50,
        failure_rate: float = 0.0,
        fail_first: int = 0,
        cost_per_call: float = 0.01,
        quality_score: float = 0.8,
        seed: Optional[int] = None,
    ):
        self.name = name
        self.content_types = frozenset(content_types)
        self.latency_ms = latency_ms
        self.failure_rate = failure_rate
        self.fail_first = fail_first
        self.cost_per_call = cost_per_call
        self.quality_score = quality_score
        self._random = random.Random(seed)
        self._lock = threading.Lock()
        self.call_count = 0
        self._placeholder = PlaceholderProvider()

    def capabilities(self) -> Capabilities:
        return Capabilities(
            content_types=self.content_types,
            cost_per_call=self.cost_per_call,
            quality_score=self.quality_score,
        )

    def generate(self, sub_request: SubRequest, ctx: CallContext) -> ArtifactResult:
        with self._lock:
            self.call_count += 1
            call_number = self.call_count
            fail = call_number <= self.fail_first or self._random.random() < self.failure_rate

        started = time.monotonic()
        self._check_ctx(ctx)

        delay = self.latency_ms / 1000
        if delay > ctx.remaining():
            ctx.token.wait(ctx.remaining())
            if ctx.token.is_cancelled:
                raise ProviderCancelledError(f"{self.name}: cancelled", provider=self.name)
            raise ProviderTimeoutError(f"{self.name}: exceeded deadline", provider=self.name)
        if ctx.token.wait(delay):
            raise ProviderCancelledError(f"{self.name}: cancelled", provider=self.name)

        if fail:
            raise ProviderError(f"{self.name}: simulated failure", provider=self.name)

        content = self._placeholder.placeholder(sub_request)
        content = _relabel(content, self.name, sub_request.fingerprint)
        return self._result(sub_request, content, started)


def _relabel(content: ArtifactContent, provider: str, fingerprint: str) -> ArtifactContent:
    """Turn placeholder content into simulated 'generated' content."""
    token = fingerprint[:12]
    if isinstance(content, BlogContent):
        return BlogContent(
            title=content.title.replace(" (placeholder)", ""),
            body=content.body,
            tags=content.tags,
            seo_keywords=content.seo_keywords,
            reading_time_minutes=content.reading_time_minutes,
        )
    if isinstance(content, ImageContent):
        return ImageContent(
            url=f"/static/generated/{provider}/image-{token}.jpg",
            description=content.description.replace(" (placeholder)", ""),
            dimensions=content.dimensions,
            prompt=content.prompt,
        )
    if isinstance(content, VideoContent):
        return VideoContent(
            url=f"/static/generated/{provider}/video-{token}.mp4",
            duration_seconds=content.duration_seconds,
            description=content.description.replace(" (placeholder)", ""),
            thumbnail_url=f"/static/generated/{provider}/thumb-{token}.jpg",
            prompt=content.prompt,
        )
    return PodcastContent(
        script=content.script,
        audio_url=f"/static/generated/{provider}/audio-{token}.mp3",
        duration_seconds=content.duration_seconds,
        description=content.description.replace(" (placeholder)", ""),
    )


# =============================================================================
# OpenAI
# =============================================================================

class OpenAIProvider(ProviderAdapter):
    """
    OpenAI backend: blog text, images and podcast audio.

    Requires OPENAI_API_KEY (passed in already validated).
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        name: str = "openai",
        text_model: str = "gpt-4o-mini",
        image_model: str = "dall-e-3",
        tts_model: str = "tts-1",
        media_dir: str = "generated_media",
        cost_per_call: float = 0.04,
        quality_score: float = 0.85,
        client: Any = None,
    ):
        self.api_key = api_key
        self.name = name
        self.text_model = text_model
        self.image_model = image_model
        self.tts_model = tts_model
        self.media_dir = Path(media_dir)
        self.cost_per_call = cost_per_call
        self.quality_score = quality_score
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = openai.OpenAI(api_key=self.api_key, max_retries=0)
        return self._client

    def capabilities(self) -> Capabilities:
        return Capabilities(
            content_types=frozenset({ContentType.BLOG, ContentType.IMAGE, ContentType.PODCAST}),
            cost_per_call=self.cost_per_call,
            quality_score=self.quality_score,
        )

    def generate(self, sub_request: SubRequest, ctx: CallContext) -> ArtifactResult:
        started = time.monotonic()
        remaining = self._check_ctx(ctx)

        try:
            if sub_request.content_type == ContentType.BLOG:
                content = self._generate_blog(sub_request, remaining)
            elif sub_request.content_type == ContentType.IMAGE:
                content = self._generate_image(sub_request, remaining)
            elif sub_request.content_type == ContentType.PODCAST:
                content = self._generate_podcast(sub_request, ctx)
            else:
                raise ProviderError(
                    f"{self.name}: '{sub_request.content_type.value}' not supported",
                    provider=self.name,
                )
        except openai.APITimeoutError as exc:
            raise ProviderTimeoutError(f"{self.name}: {exc}", provider=self.name) from exc
        except openai.OpenAIError as exc:
            raise ProviderError(f"{self.name}: {exc}", provider=self.name) from exc

        return self._result(sub_request, content, started)

    def _generate_blog(self, sub_request: SubRequest, timeout: float) -> BlogContent:
        response = self.client.chat.completions.create(
            model=self.text_model,
            messages=[{"role": "user", "content": blog_prompt(sub_request.product_description, sub_request.options)}],
            response_format={"type": "json_object"},
            timeout=timeout,
        )
        return parse_blog_payload(response.choices[0].message.content or "", provider=self.name)

    def _generate_image(self, sub_request: SubRequest, timeout: float) -> ImageContent:
        analysis = analyze_product(sub_request.product_description, sub_request.options.language)
        prompt = image_prompt(sub_request.product_description, analysis, sub_request.options)
        response = self.client.images.generate(
            model=self.image_model,
            prompt=prompt,
            size="1024x1024",
            n=1,
            timeout=timeout,
        )
        url = response.data[0].url if response.data else None
        if not url:
            raise ProviderError(f"{self.name}: image response had no url", provider=self.name)
        return ImageContent(
            url=url,
            description=f"{sub_request.options.image_style.value} social media graphic",
            dimensions="1024x1024",
            prompt=prompt,
        )

    def _generate_podcast(self, sub_request: SubRequest, ctx: CallContext) -> PodcastContent:
        options = sub_request.options
        analysis = analyze_product(sub_request.product_description, options.language)
        script = podcast_script(sub_request.product_description, analysis, options.language)

        voice = {"professional": "onyx", "friendly": "nova", "energetic": "shimmer"}[options.voice_style.value]
        response = self.client.audio.speech.create(
            model=self.tts_model,
            voice=voice,
            input=script,
            timeout=self._check_ctx(ctx),
        )

        self.media_dir.mkdir(parents=True, exist_ok=True)
        path = self.media_dir / f"podcast-{sub_request.fingerprint[:16]}.mp3"
        path.write_bytes(response.content)

        return PodcastContent(
            script=script,
            audio_url=path.as_posix(),
            duration_seconds=spoken_duration_seconds(script),
            description=f"{options.voice_style.value} podcast audio",
        )


# =============================================================================
# Anthropic
# =============================================================================

class AnthropicProvider(ProviderAdapter):
    """
    Anthropic backend: blog text only.

    Requires ANTHROPIC_API_KEY (passed in already validated).
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        name: str = "anthropic",
        model: str = "claude-3-5-haiku-latest",
        max_tokens: int = 2048,
        cost_per_call: float = 0.02,
        quality_score: float = 0.85,
        client: Any = None,
    ):
        self.api_key = api_key
        self.name = name
        self.model = model
        self.max_tokens = max_tokens
        self.cost_per_call = cost_per_call
        self.quality_score = quality_score
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = anthropic.Anthropic(api_key=self.api_key, max_retries=0)
        return self._client

    def capabilities(self) -> Capabilities:
        return Capabilities(
            content_types=frozenset({ContentType.BLOG}),
            cost_per_call=self.cost_per_call,
            quality_score=self.quality_score,
        )

    def generate(self, sub_request: SubRequest, ctx: CallContext) -> ArtifactResult:
        started = time.monotonic()
        remaining = self._check_ctx(ctx)

        if sub_request.content_type != ContentType.BLOG:
            raise ProviderError(
                f"{self.name}: '{sub_request.content_type.value}' not supported",
                provider=self.name,
            )

        try:
            response = self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                messages=[{"role": "user", "content": blog_prompt(sub_request.product_description, sub_request.options)}],
                timeout=remaining,
            )
        except anthropic.APITimeoutError as exc:
            raise ProviderTimeoutError(f"{self.name}: {exc}", provider=self.name) from exc
        except anthropic.AnthropicError as exc:
            raise ProviderError(f"{self.name}: {exc}", provider=self.name) from exc

        text = response.content[0].text if response.content else ""
        return self._result(sub_request, parse_blog_payload(text, provider=self.name), started)


# =============================================================================
# HTTP media generation service
# =============================================================================

class MediaAPIProvider(ProviderAdapter):
    """
    Generic HTTP media generation service for images, videos and podcasts.

    POSTs to `{base_url}/generate/{kind}` and expects a JSON reply with a
    `url` (and optionally `thumbnail`).
    """

    DEFAULT_MODELS = {
        ContentType.IMAGE: "flux-pro/ultra",
        ContentType.VIDEO: "kling/v2.5-turbo/pro",
        ContentType.PODCAST: "google/gemini-2.5-pro-preview-tts",
    }

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        name: str = "media-api",
        content_types: Iterable[ContentType] = (ContentType.IMAGE, ContentType.VIDEO, ContentType.PODCAST),
        cost_per_call: float = 0.08,
        quality_score: float = 0.8,
        models: Optional[dict[ContentType, str]] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.name = name
        self.content_types = frozenset(content_types)
        self.cost_per_call = cost_per_call
        self.quality_score = quality_score
        self.models = {**self.DEFAULT_MODELS, **(models or {})}
        self._transport = transport

    def capabilities(self) -> Capabilities:
        return Capabilities(
            content_types=self.content_types,
            cost_per_call=self.cost_per_call,
            quality_score=self.quality_score,
        )

    def generate(self, sub_request: SubRequest, ctx: CallContext) -> ArtifactResult:
        started = time.monotonic()
        remaining = self._check_ctx(ctx)

        if sub_request.content_type not in self.content_types:
            raise ProviderError(
                f"{self.name}: '{sub_request.content_type.value}' not supported",
                provider=self.name,
            )

        kind, payload, extras = self._build_payload(sub_request)
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}

        try:
            with httpx.Client(timeout=httpx.Timeout(remaining), transport=self._transport) as client:
                response = client.post(f"{self.base_url}/generate/{kind}", json=payload, headers=headers)
                response.raise_for_status()
                data = response.json()
        except httpx.TimeoutException as exc:
            raise ProviderTimeoutError(f"{self.name}: {exc}", provider=self.name) from exc
        except (httpx.HTTPError, json.JSONDecodeError) as exc:
            raise ProviderError(f"{self.name}: {exc}", provider=self.name) from exc

        url = data.get("url") if isinstance(data, dict) else None
        if not url:
            raise ProviderError(f"{self.name}: response had no url", provider=self.name)

        return self._result(sub_request, self._build_content(sub_request, data, extras), started)

    def _build_payload(self, sub_request: SubRequest) -> tuple[str, dict, dict]:
        description = sub_request.product_description
        options = sub_request.options
        analysis = analyze_product(description, options.language)
        model = self.models[sub_request.content_type]

        if sub_request.content_type == ContentType.IMAGE:
            prompt = image_prompt(description, analysis, options)
            return "image", {
                "query": prompt,
                "image_urls": [],
                "model": model,
                "aspect_ratio": "1:1",
                "task_summary": f"Generate social media graphic for {description}",
            }, {"prompt": prompt}

        if sub_request.content_type == ContentType.VIDEO:
            prompt = video_prompt(description, options)
            return "video", {
                "query": prompt,
                "model": model,
                "image_urls": [],
                "aspect_ratio": "16:9",
                "duration": options.video_duration_seconds,
                "task_summary": f"Generate promotional video for {description}",
            }, {"prompt": prompt}

        script = podcast_script(description, analysis, options.language)
        return "audio", {
            "model": model,
            "query": script,
            "requirements": voice_requirements(options),
            "task_summary": f"Generate podcast audio for {description}",
        }, {"script": script}

    def _build_content(self, sub_request: SubRequest, data: dict, extras: dict) -> ArtifactContent:
        options = sub_request.options
        if sub_request.content_type == ContentType.IMAGE:
            return ImageContent(
                url=data["url"],
                description=f"{options.image_style.value} social media graphic",
                dimensions=data.get("dimensions", "1080x1080"),
                prompt=extras["prompt"],
            )
        if sub_request.content_type == ContentType.VIDEO:
            return VideoContent(
                url=data["url"],
                duration_seconds=int(data.get("duration", options.video_duration_seconds)),
                description=f"{options.video_duration_seconds}s promotional video",
                thumbnail_url=data.get("thumbnail"),
                prompt=extras["prompt"],
            )
        script = extras["script"]
        return PodcastContent(
            script=script,
            audio_url=data["url"],
            duration_seconds=int(data.get("duration", spoken_duration_seconds(script))),
            description=f"{options.voice_style.value} podcast audio",
        )


def parse_blog_payload(text: str, provider: str) -> BlogContent:
    """
    Parse a JSON blog reply, tolerating surrounding prose.

    Raises:
        ProviderError: If no usable JSON object with title and body is found
    """
    payload = _load_json_object(text)
    if payload is None:
        raise ProviderError(f"{provider}: blog reply was not a JSON object", provider=provider)

    title = payload.get("title")
    body = payload.get("body")
    if not isinstance(title, str) or not isinstance(body, str) or not body.strip():
        raise ProviderError(f"{provider}: blog reply missing title/body", provider=provider)

    tags = [str(tag) for tag in payload.get("tags") or [] if isinstance(tag, (str, int))]
    seo = [str(word) for word in payload.get("seo_keywords") or [] if isinstance(word, (str, int))]
    return BlogContent(
        title=title.strip(),
        body=body.strip(),
        tags=tuple(tags),
        seo_keywords=tuple(seo),
        reading_time_minutes=reading_time_minutes(body),
    )


def _load_json_object(text: str) -> Optional[dict]:
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        start = text.find("{")
        end = text.rfind("}")
        if start == -1 or end <= start:
            return None
        try:
            parsed = json.loads(text[start:end + 1])
        except json.JSONDecodeError:
            return None
    return parsed if isinstance(parsed, dict) else None

