"""Tests for the fallback handler and placeholder content."""

import time

from contentforge.fallback import FallbackHandler
from contentforge.metrics import MetricsCollector
from contentforge.prompts import (
    PLACEHOLDER_AUDIO_URL,
    PLACEHOLDER_IMAGE_URL,
    PLACEHOLDER_VIDEO_URL,
)
from contentforge.providers import PlaceholderProvider
from contentforge.schemas import (
    BlogContent,
    ContentType,
    DegradationCause,
    GenerationOptions,
    ImageContent,
    Language,
    PodcastContent,
    QualityTier,
    SubRequest,
    VideoContent,
)


def make_sub_request(content_type: ContentType, language: Language = Language.EN) -> SubRequest:
    return SubRequest(
        content_type=content_type,
        fingerprint="f" * 64,
        quality_tier=QualityTier.DRAFT,
        budget_ceiling=1.0,
        deadline=time.monotonic() + 30,
        request_id="req-1",
        requester_id="user",
        product_description="Smart watch with health tracking",
        options=GenerationOptions(language=language, video_duration_seconds=15),
    )


class TestFallbackHandler:
    """Test suite for FallbackHandler."""

    def setup_method(self):
        """Set up test fixtures."""
        self.metrics = MetricsCollector()
        self.handler = FallbackHandler(metrics=self.metrics)
        self.events = []
        self.handler.add_listener(self.events.append)

    def test_degrade_labels_artifact(self):
        """Test degraded artifacts are tagged fallback with a cause."""
        artifact = self.handler.degrade(
            make_sub_request(ContentType.IMAGE),
            DegradationCause.PROVIDER_ERROR,
            provider_attempted="media-api",
        )

        assert artifact.produced_by == "fallback"
        assert artifact.is_degraded is True
        assert artifact.cause == DegradationCause.PROVIDER_ERROR
        assert artifact.provider_attempted == "media-api"
        assert artifact.cache_hit is False

    def test_emits_failure_event(self):
        """Test a structured event reaches listeners and metrics."""
        self.handler.degrade(
            make_sub_request(ContentType.VIDEO),
            DegradationCause.TIMEOUT,
            provider_attempted="media-api",
            detail="no result within 2.00s",
        )

        assert len(self.events) == 1
        event = self.events[0]
        assert event.content_type == ContentType.VIDEO
        assert event.cause == DegradationCause.TIMEOUT
        assert event.provider_attempted == "media-api"
        assert event.request_id == "req-1"

        counters = self.metrics.get_stats()["counters"]
        assert counters["degradations_timeout"] == 1
        assert counters["provider_failures_media-api"] == 1

    def test_listener_errors_do_not_propagate(self):
        """Test degrade always succeeds even if a listener raises."""
        def broken(event):
            raise RuntimeError("listener down")

        self.handler.add_listener(broken)
        artifact = self.handler.degrade(make_sub_request(ContentType.BLOG), DegradationCause.NO_PROVIDER)

        assert artifact.produced_by == "fallback"
        assert len(self.events) == 1

    def test_every_content_type_has_a_placeholder(self):
        """Test every content type degrades to the matching content shape."""
        expected = {
            ContentType.BLOG: BlogContent,
            ContentType.IMAGE: ImageContent,
            ContentType.VIDEO: VideoContent,
            ContentType.PODCAST: PodcastContent,
        }
        for content_type, shape in expected.items():
            artifact = self.handler.degrade(make_sub_request(content_type), DegradationCause.QUOTA_EXCEEDED)
            assert isinstance(artifact.content, shape)
            assert artifact.content_type == content_type


class TestPlaceholderProvider:
    """Test deterministic placeholder content."""

    def setup_method(self):
        self.provider = PlaceholderProvider()

    def test_deterministic(self):
        """Test the same sub-request always yields identical content."""
        sub_request = make_sub_request(ContentType.BLOG)
        assert self.provider.placeholder(sub_request) == self.provider.placeholder(sub_request)

    def test_placeholder_urls(self):
        assert self.provider.placeholder(make_sub_request(ContentType.IMAGE)).url == PLACEHOLDER_IMAGE_URL
        assert self.provider.placeholder(make_sub_request(ContentType.VIDEO)).url == PLACEHOLDER_VIDEO_URL
        assert self.provider.placeholder(make_sub_request(ContentType.PODCAST)).audio_url == PLACEHOLDER_AUDIO_URL

    def test_video_keeps_requested_duration(self):
        content = self.provider.placeholder(make_sub_request(ContentType.VIDEO))
        assert content.duration_seconds == 15

    def test_blog_is_labelled(self):
        """Test placeholder blog titles are visibly marked."""
        content = self.provider.placeholder(make_sub_request(ContentType.BLOG))
        assert "(placeholder)" in content.title
        assert "Smart watch with health tracking" in content.body
        assert "health" in content.seo_keywords

    def test_language_aware(self):
        """Test Korean placeholders use Korean copy."""
        content = self.provider.placeholder(make_sub_request(ContentType.PODCAST, Language.KO))
        assert "안녕하세요" in content.script
