"""
Provider registry for contentforge.

Adding a backend means registering it here; the coordinator only ever
sees descriptors and adapters looked up by name.
"""

import logging
from threading import Lock
from typing import Optional

from contentforge.config import OrchestratorConfig
from contentforge.providers import (
    AnthropicProvider,
    MediaAPIProvider,
    OpenAIProvider,
    ProviderAdapter,
    SimulatedProvider,
)
from contentforge.schemas import ContentType, ProviderDescriptor, FALLBACK_PRODUCER


logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Name-keyed store of provider descriptors and their adapters."""

    def __init__(self):
        self._descriptors: dict[str, ProviderDescriptor] = {}
        self._adapters: dict[str, ProviderAdapter] = {}
        self._lock = Lock()

    def register(
        self,
        adapter: ProviderAdapter,
        descriptor: Optional[ProviderDescriptor] = None,
        average_latency_ms: float = 1000.0,
    ) -> ProviderDescriptor:
        """
        Register an adapter. The descriptor is derived from the adapter's
        capabilities unless one is given.

        Raises:
            ValueError: If the name is taken or reserved
        """
        if descriptor is None:
            caps = adapter.capabilities()
            descriptor = ProviderDescriptor(
                name=adapter.name,
                supported_types=frozenset(caps.content_types),
                cost_per_call=caps.cost_per_call,
                quality_score=caps.quality_score,
                average_latency_ms=average_latency_ms,
            )

        if descriptor.name == FALLBACK_PRODUCER:
            raise ValueError(f"Provider name '{FALLBACK_PRODUCER}' is reserved")

        with self._lock:
            if descriptor.name in self._descriptors:
                raise ValueError(f"Provider '{descriptor.name}' already registered")
            self._descriptors[descriptor.name] = descriptor
            self._adapters[descriptor.name] = adapter

        logger.info(
            "Registered provider %s for %s",
            descriptor.name,
            ",".join(sorted(ct.value for ct in descriptor.supported_types)),
        )
        return descriptor

    def unregister(self, name: str) -> bool:
        with self._lock:
            self._adapters.pop(name, None)
            return self._descriptors.pop(name, None) is not None

    def descriptors(self) -> list[ProviderDescriptor]:
        with self._lock:
            return sorted(self._descriptors.values(), key=lambda d: d.name)

    def adapter(self, name: str) -> ProviderAdapter:
        with self._lock:
            return self._adapters[name]

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._descriptors

    def __len__(self) -> int:
        with self._lock:
            return len(self._descriptors)


def build_default_registry(
    config: Optional[OrchestratorConfig] = None,
    simulate: bool = False,
) -> ProviderRegistry:
    """
    Registry of the backends for which configuration is present.

    With `simulate=True`, or when no credentials are configured at all,
    registers simulated providers for every content type instead.
    """
    config = config or OrchestratorConfig.from_env()
    registry = ProviderRegistry()

    if not simulate:
        if config.openai_api_key:
            registry.register(
                OpenAIProvider(api_key=config.openai_api_key, media_dir=config.media_output_dir),
                average_latency_ms=4000.0,
            )
        if config.anthropic_api_key:
            registry.register(AnthropicProvider(api_key=config.anthropic_api_key), average_latency_ms=3000.0)
        if config.media_api_url:
            registry.register(
                MediaAPIProvider(base_url=config.media_api_url, api_key=config.media_api_key),
                average_latency_ms=20000.0,
            )

    if len(registry) == 0:
        if not simulate:
            logger.warning("No provider credentials configured; using simulated providers")
        registry.register(
            SimulatedProvider("sim-text", content_types=[ContentType.BLOG], latency_ms=300, cost_per_call=0.002),
            average_latency_ms=300.0,
        )
        registry.register(
            SimulatedProvider(
                "sim-media",
                content_types=[ContentType.IMAGE, ContentType.VIDEO, ContentType.PODCAST],
                latency_ms=800,
                cost_per_call=0.05,
            ),
            average_latency_ms=800.0,
        )

    return registry
