"""
Command-line interface for contentforge.

Provides commands for:
- Generating all four assets for a product description
- Inspecting registered providers and their health
"""

import argparse
import json
import logging
import sys

from contentforge.config import OrchestratorConfig
from contentforge.coordinator import GenerationCoordinator
from contentforge.errors import ValidationError
from contentforge.schemas import (
    ALL_CONTENT_TYPES,
    BlogContent,
    ContentType,
    GenerationRequest,
    ImageContent,
    PlanTier,
    PodcastContent,
    VideoContent,
)
from contentforge.validation import parse_options


def configure_logging(verbose: bool = False) -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(
        logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    )
    root = logging.getLogger("contentforge")
    root.handlers[:] = [handler]
    root.setLevel(logging.DEBUG if verbose else logging.WARNING)


def _summary(artifact) -> str:
    content = artifact.content
    if isinstance(content, BlogContent):
        return content.title
    if isinstance(content, (ImageContent, VideoContent)):
        return content.url
    if isinstance(content, PodcastContent):
        return content.audio_url
    return ""


def cmd_generate(args) -> int:
    """Generate content for a product description."""
    try:
        options = parse_options(
            image_style=args.image_style,
            video_duration_seconds=args.video_duration,
            voice_style=args.voice_style,
            language=args.language,
        )
        content_types = (
            tuple(ContentType(value) for value in args.types) if args.types else ALL_CONTENT_TYPES
        )
    except (ValidationError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2

    request = GenerationRequest(
        product_description=args.description,
        requester_id=args.user,
        options=options,
        plan_tier=PlanTier(args.plan),
        content_types=content_types,
    )

    def progress(content_type, artifact):
        if not args.json:
            print(f"  ✓ {content_type.value:<8} {artifact.produced_by}")

    config = OrchestratorConfig.from_env()
    with GenerationCoordinator.from_config(config, simulate=args.simulate) as coordinator:
        try:
            result = coordinator.generate(request, on_finalized=progress)
        except ValidationError as exc:
            print(f"Error: {exc}", file=sys.stderr)
            return 2

    if args.json:
        print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
        return 0

    print("\n" + "=" * 60)
    print("CONTENTFORGE RESULT")
    print("=" * 60)
    print(f"Request: {result.request_id}")
    print(f"Total Latency: {result.total_latency_ms}ms")
    print(f"Real / Fallback / Failed: "
          f"{result.real_provider_count} / {result.fallback_count} / {result.failed_count}")
    print("-" * 60)
    for content_type, artifact in result.artifacts.items():
        flags = []
        if artifact.cache_hit:
            flags.append("cached")
        if artifact.cause:
            flags.append(artifact.cause.value)
        suffix = f" [{', '.join(flags)}]" if flags else ""
        print(f"{content_type.value:<8} {artifact.produced_by:<12} {_summary(artifact)}{suffix}")
    print("=" * 60)
    return 0


def cmd_providers(args) -> int:
    """List registered providers."""
    config = OrchestratorConfig.from_env()
    with GenerationCoordinator.from_config(config, simulate=args.simulate) as coordinator:
        descriptors = coordinator.registry.descriptors()

    if args.json:
        print(json.dumps([
            {
                "name": d.name,
                "content_types": sorted(ct.value for ct in d.supported_types),
                "cost_per_call": d.cost_per_call,
                "quality_score": d.quality_score,
                "average_latency_ms": d.average_latency_ms,
            }
            for d in descriptors
        ], indent=2))
        return 0

    print(f"{'NAME':<14} {'TYPES':<24} {'COST':>8} {'QUALITY':>8}")
    for d in descriptors:
        types = ",".join(sorted(ct.value for ct in d.supported_types))
        print(f"{d.name:<14} {types:<24} {d.cost_per_call:>8.4f} {d.quality_score:>8.2f}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="contentforge",
        description="Generate a blog post, image, video and podcast for a product",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Generate everything with simulated providers
  contentforge generate "Wireless earbuds with noise cancellation" --simulate

  # Only blog and image, English, as JSON
  contentforge generate "Smart watch" --types blog image --language en --json

  # List configured providers
  contentforge providers
""",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    gen_parser = subparsers.add_parser("generate", help="Generate content for a product")
    gen_parser.add_argument("description", help="Product description")
    gen_parser.add_argument("--user", "-u", default="cli-user", help="Requester id")
    gen_parser.add_argument("--plan", default="free", choices=[p.value for p in PlanTier],
                            help="Plan tier for quota and quality")
    gen_parser.add_argument("--types", nargs="+", choices=[ct.value for ct in ContentType],
                            help="Content types to generate (default: all)")
    gen_parser.add_argument("--image-style", default="modern",
                            choices=["modern", "minimal", "vibrant", "professional"])
    gen_parser.add_argument("--video-duration", type=int, default=30, choices=[15, 30, 60])
    gen_parser.add_argument("--voice-style", default="professional",
                            choices=["professional", "friendly", "energetic"])
    gen_parser.add_argument("--language", "-l", default="ko", choices=["ko", "en", "ja"])
    gen_parser.add_argument("--simulate", action="store_true",
                            help="Use simulated providers instead of real backends")
    gen_parser.add_argument("--json", action="store_true", help="Print the result as JSON")

    prov_parser = subparsers.add_parser("providers", help="List registered providers")
    prov_parser.add_argument("--simulate", action="store_true")
    prov_parser.add_argument("--json", action="store_true")

    return parser


def main(argv=None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    commands = {
        "generate": cmd_generate,
        "providers": cmd_providers,
    }

    handler = commands.get(args.command)
    if handler:
        sys.exit(handler(args))
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
