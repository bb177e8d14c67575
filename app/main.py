"""Command-line entry point for batch image generation."""

import argparse
import logging
import signal
import sys
from typing import Optional, List

from app.config import settings, Settings
from genpipe.backends.feedback_store import (
    HeuristicModelSelector,
    RestFeedbackRecorder,
    RestModelSelector,
)
from genpipe.backends.pollinations import PollinationsClient
from genpipe.core.cancellation import CancellationToken
from genpipe.core.models import BatchConfig, BatchSummary, DuplicatePolicy, OutputFormat
from genpipe.core.orchestrator import BatchOrchestrator
from genpipe.utils.image_utils import DirectoryGallery
from genpipe.utils.prompts import DELIMITERS, parse_prompts, surprise_prompt

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def create_orchestrator(config: Settings, output_dir: str) -> BatchOrchestrator:
    """Wire the endpoint client, collaborators and gallery from settings.

    Args:
        config: Application settings
        output_dir: Directory accepted images are written to

    Returns:
        Ready-to-run BatchOrchestrator

    Raises:
        ValueError: If required configuration is missing
    """
    config.validate_required_keys()

    client = PollinationsClient(
        base_url=config.endpoint_base_url,
        timeout=config.fetch_timeout,
        attempts=config.fetch_attempts,
        backoff=config.fetch_backoff,
        jitter=config.fetch_jitter,
    )

    if config.feedback_enabled:
        selector = RestModelSelector(
            config.feedback_url, config.feedback_api_key, timeout=config.feedback_timeout
        )
        feedback = RestFeedbackRecorder(
            config.feedback_url, config.feedback_api_key, timeout=config.feedback_timeout
        )
    else:
        selector = HeuristicModelSelector()
        feedback = None

    return BatchOrchestrator(
        client=client,
        gallery=DirectoryGallery(output_dir),
        model_selector=selector,
        feedback=feedback,
        default_model=config.default_model,
        progress=lambda done, total: logger.info(f"Progress: {done}/{total}"),
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="genpipe",
        description="Generate, enhance and de-duplicate a batch of images from text prompts.",
    )
    parser.add_argument("prompt", nargs="?", help="Prompt text (several with --multi)")
    parser.add_argument("--surprise", action="store_true", help="Use a random sample prompt")
    parser.add_argument("--multi", action="store_true", help="Split the prompt into several")
    parser.add_argument("--delimiter", choices=sorted(DELIMITERS), default="newline")
    parser.add_argument("-n", "--count", type=int, default=1, help="Images per prompt")
    parser.add_argument("--width", type=int, default=1024)
    parser.add_argument("--aspect", default="1/1", help='Aspect ratio as "W/H"')
    parser.add_argument("--height", type=int, help="Explicit height (disables the aspect lock)")
    parser.add_argument("--format", choices=[f.value for f in OutputFormat], default="png")
    parser.add_argument("--seed", type=int, help="Seed of the first image")
    parser.add_argument("--allow-logo", action="store_true", help="Do not ask for watermark removal")
    parser.add_argument("--quality-gate", action="store_true", help="Skip flat or malformed images")
    parser.add_argument("--quality-retries", type=int, default=0)
    parser.add_argument("--unique", action="store_true", help="Avoid near-duplicate images")
    parser.add_argument("--unique-retries", type=int, default=0)
    parser.add_argument(
        "--on-duplicate-exhausted",
        choices=[p.value for p in DuplicatePolicy],
        default=DuplicatePolicy.ACCEPT_ON_EXHAUSTION.value,
    )
    parser.add_argument("--no-gpu", action="store_true", help="Always resample on the CPU")
    parser.add_argument("-o", "--output-dir", default=None)
    parser.add_argument("--log-level", default=None)
    return parser


def config_from_args(args: argparse.Namespace) -> BatchConfig:
    return BatchConfig(
        count=args.count,
        output_format=OutputFormat(args.format),
        width=args.width,
        aspect=args.aspect,
        height=args.height,
        lock_aspect=args.height is None,
        seed_base=args.seed,
        suppress_watermark=not args.allow_logo,
        quality_gate=args.quality_gate,
        use_gpu=settings.enable_gpu and not args.no_gpu,
        unique=args.unique,
        quality_retries=args.quality_retries,
        duplicate_retries=args.unique_retries,
        duplicate_policy=DuplicatePolicy(args.on_duplicate_exhausted),
    )


def print_summary(summary: BatchSummary) -> None:
    print(f"Completed: {summary.completed}/{summary.total_units}")
    print(f"Skipped: {summary.skipped}")
    for failure in summary.failures:
        print(f"  - #{failure.index} '{failure.prompt[:60]}': {failure.reason}")
    if summary.canceled:
        print("Canceled")


def main(argv: Optional[List[str]] = None) -> int:
    """Run one batch from the command line.

    Returns:
        Process exit code: 0 on success, 1 when nothing was produced, 2 on
        invalid input, 130 when canceled
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level or settings.log_level)

    raw = surprise_prompt() if args.surprise else args.prompt
    prompts = parse_prompts(raw, multi=args.multi, delimiter=args.delimiter)
    if not prompts:
        parser.error("a prompt is required (or use --surprise)")

    try:
        batch_config = config_from_args(args)
        orchestrator = create_orchestrator(settings, args.output_dir or settings.output_dir)
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        return 2

    token = CancellationToken()
    previous_handler = signal.signal(signal.SIGINT, lambda *_: token.cancel())
    try:
        summary = orchestrator.run(prompts, batch_config, cancel_token=token)
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    print_summary(summary)
    if summary.canceled:
        return 130
    if summary.total_units and summary.completed == 0:
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
