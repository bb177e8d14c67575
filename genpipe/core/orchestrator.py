"""Batch orchestrator: drives every output unit through the pipeline."""

import logging
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable, List, Optional, Set

from genpipe.core.cancellation import CancellationToken
from genpipe.core.collaborators import FeedbackRecorder, GallerySink, ModelSelector
from genpipe.core.errors import (
    BatchAlreadyRunningError,
    Canceled,
    DuplicateRejected,
    QualityRejected,
)
from genpipe.core.models import (
    AttemptResult,
    BatchConfig,
    BatchSummary,
    DuplicatePolicy,
    GalleryItem,
    UnitFailure,
)
from genpipe.core.request_builder import base_seed_for_unit, build_request, jitter_seed
from genpipe.backends.pollinations import PollinationsClient
from genpipe.imaging.decoder import decode_image
from genpipe.imaging.filters import apply_post_filters
from genpipe.imaging.fingerprint import Fingerprint, average_hash, find_duplicate
from genpipe.imaging.pixels import PixelBuffer
from genpipe.imaging.quality import check_quality, nearly_equal_ratio
from genpipe.imaging.resample import Resampler, create_resampler
from genpipe.utils.image_utils import encode_buffer

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "flux"

# Decoded images within this ratio of the (possibly swapped) target keep that orientation
ORIENTATION_TOLERANCE = 0.06


class UnitState(str, Enum):
    """States an output unit moves through."""
    BUILDING = "building"
    FETCHING = "fetching"
    DECODING = "decoding"
    QUALITY_CHECK = "quality_check"
    RESAMPLING = "resampling"
    FILTERING = "filtering"
    FINGERPRINTING = "fingerprinting"
    ACCEPTED = "accepted"
    RETRY_QUALITY = "retry_quality"
    RETRY_DUPLICATE = "retry_duplicate"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (UnitState.ACCEPTED, UnitState.FAILED)


@dataclass
class RetryBudget:
    """Extra attempts left for one output unit."""
    quality_retries_remaining: int = 0
    duplicate_retries_remaining: int = 0

    @classmethod
    def from_config(cls, config: BatchConfig) -> "RetryBudget":
        return cls(
            quality_retries_remaining=config.quality_retries,
            duplicate_retries_remaining=config.duplicate_retries,
        )

    def consume_quality(self) -> bool:
        """Use one quality retry; False when none are left."""
        if self.quality_retries_remaining <= 0:
            return False
        self.quality_retries_remaining -= 1
        return True

    def consume_duplicate(self) -> bool:
        """Use one duplicate retry; False when none are left."""
        if self.duplicate_retries_remaining <= 0:
            return False
        self.duplicate_retries_remaining -= 1
        return True


@dataclass
class BatchState:
    """Mutable state of one batch run, owned by the orchestrator."""
    total_units: int
    completed: int = 0
    skipped_count: int = 0
    seen_fingerprints: Set[Fingerprint] = field(default_factory=set)
    cancel_requested: bool = False
    failures: List[UnitFailure] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return self.completed + self.skipped_count

    def record_failure(self, prompt: str, index: int, reason: str) -> None:
        self.skipped_count += 1
        self.failures.append(UnitFailure(prompt=prompt, index=index, reason=reason))

    def summary(self) -> BatchSummary:
        return BatchSummary(
            total_units=self.total_units,
            completed=self.completed,
            skipped=self.skipped_count,
            canceled=self.cancel_requested,
            failures=list(self.failures),
        )


def effective_target(buffer: PixelBuffer, width: int, height: int) -> tuple[int, int]:
    """Swap the target when the decoded image came back in the other orientation."""
    got = buffer.aspect_ratio
    if nearly_equal_ratio(got, width / height, ORIENTATION_TOLERANCE):
        return width, height
    if nearly_equal_ratio(got, height / width, ORIENTATION_TOLERANCE):
        return height, width
    return width, height


def _describe_failure(error: Exception) -> str:
    return str(error) or error.__class__.__name__


class BatchOrchestrator:
    """Runs batches of (prompt x count) output units, strictly one at a time.

    For every unit a request is built, fetched, decoded, optionally quality
    gated, resampled to the exact target, filtered, fingerprinted and either
    accepted, retried with a jittered seed, or failed. Failed units are
    recorded as skipped and the batch moves on; only cancellation stops it.

    Attributes:
        client: Generation endpoint client
        gallery: Receives accepted images
        model_selector: Chooses a model per prompt (None uses the default model)
        feedback: Records votes on delivered images (optional)
        default_model: Model used when selection is unavailable or fails
        state: State of the current (or most recent) batch
    """

    def __init__(
        self,
        client: PollinationsClient,
        gallery: GallerySink,
        model_selector: Optional[ModelSelector] = None,
        feedback: Optional[FeedbackRecorder] = None,
        default_model: str = DEFAULT_MODEL,
        resampler_factory: Callable[[bool], Resampler] = create_resampler,
        decoder: Callable[[bytes], PixelBuffer] = decode_image,
        rng: Optional[random.Random] = None,
        yield_hook: Optional[Callable[[], None]] = None,
        progress: Optional[Callable[[int, int], None]] = None,
        on_transition: Optional[Callable[[str, int, UnitState], None]] = None
    ):
        """Initialize the orchestrator.

        Args:
            client: Generation endpoint client
            gallery: Receives accepted images
            model_selector: Chooses a model per prompt
            feedback: Records votes on delivered images
            default_model: Fallback model identifier
            resampler_factory: Builds the resampler at batch start from the GPU flag
            decoder: Turns fetched bytes into a PixelBuffer
            rng: Random source for seeds and jitter
            yield_hook: Called between units to hand control back to the host
            progress: Called with (processed, total) as units finish
            on_transition: Called with (prompt, index, state) on every state change
        """
        self.client = client
        self.gallery = gallery
        self.model_selector = model_selector
        self.feedback = feedback
        self.default_model = default_model
        self.resampler_factory = resampler_factory
        self.decoder = decoder
        self.rng = rng or random.Random()
        self.yield_hook = yield_hook
        self.progress = progress
        self.on_transition = on_transition

        self.state: Optional[BatchState] = None
        self._running = False
        self._token: Optional[CancellationToken] = None

        logger.info(
            f"Initialized BatchOrchestrator with endpoint: {client.name}, "
            f"model selector: {model_selector.name if model_selector else 'none'}"
        )

    @property
    def is_running(self) -> bool:
        return self._running

    def cancel(self) -> None:
        """Cancel the running batch, if any. In-flight fetches are aborted."""
        if self._token is not None:
            self._token.cancel()

    def run(
        self,
        prompts: Iterable[str],
        config: BatchConfig,
        cancel_token: Optional[CancellationToken] = None
    ) -> BatchSummary:
        """Run one batch to completion or cancellation.

        Args:
            prompts: Prompts to render; each produces ``config.count`` units
            config: Batch options
            cancel_token: External token; a fresh one is created when None

        Returns:
            BatchSummary with completed and skipped counts

        Raises:
            BatchAlreadyRunningError: If another batch is running on this orchestrator
        """
        if self._running:
            raise BatchAlreadyRunningError("A batch is already running")

        prompt_list = [p.strip() for p in prompts if p and p.strip()]
        self._running = True
        self._token = cancel_token or CancellationToken()
        self.state = BatchState(total_units=len(prompt_list) * config.count)

        try:
            return self._run_batch(prompt_list, config, self.state, self._token)
        finally:
            self._running = False
            self._token = None

    def record_vote(self, item: GalleryItem, up: bool) -> bool:
        """Forward a vote to the feedback collaborator; never raises."""
        if self.feedback is None:
            return False
        try:
            return bool(self.feedback.record_vote(item.prompt, item.model_id, item.seed, up))
        except Exception as e:
            logger.warning(f"Recording vote failed: {e}")
            return False

    def _run_batch(
        self,
        prompts: List[str],
        config: BatchConfig,
        state: BatchState,
        token: CancellationToken
    ) -> BatchSummary:
        target = config.target_size()
        resampler = self.resampler_factory(config.use_gpu)
        logger.info(
            f"Starting batch: {len(prompts)} prompt(s) x {config.count} = {state.total_units} "
            f"unit(s) at {target[0]}x{target[1]} using {resampler!r}"
        )
        self._report_progress(state)

        for prompt in prompts:
            if token.cancelled:
                state.cancel_requested = True
                break

            model_id = self._choose_model(prompt)

            for index in range(1, config.count + 1):
                if token.cancelled:
                    state.cancel_requested = True
                    break

                try:
                    self._run_unit(prompt, index, model_id, config, target, state, token, resampler)
                    state.completed += 1
                except Canceled:
                    state.cancel_requested = True
                    logger.info(f"Batch canceled after {state.processed}/{state.total_units} unit(s)")
                    break
                except Exception as e:
                    reason = _describe_failure(e)
                    state.record_failure(prompt, index, reason)
                    logger.error(f"Skipped image {index} for prompt '{prompt[:50]}': {reason}")

                self._report_progress(state)
                if self.yield_hook is not None:
                    self.yield_hook()

            if state.cancel_requested:
                break

        summary = state.summary()
        logger.info(
            f"Batch finished: {summary.completed} completed, {summary.skipped} skipped"
            f"{' (canceled)' if summary.canceled else ''}"
        )
        return summary

    def _choose_model(self, prompt: str) -> str:
        if self.model_selector is None:
            return self.default_model
        try:
            model_id = self.model_selector.choose_model(prompt)
        except Exception as e:
            logger.warning(f"Model selection failed, using {self.default_model}: {e}")
            return self.default_model
        return model_id or self.default_model

    def _run_unit(
        self,
        prompt: str,
        index: int,
        model_id: str,
        config: BatchConfig,
        target: tuple[int, int],
        state: BatchState,
        token: CancellationToken,
        resampler: Resampler
    ) -> AttemptResult:
        token.raise_if_cancelled()

        budget = RetryBudget.from_config(config)
        base_seed = base_seed_for_unit(config.seed_base, index, self.rng)
        attempt = 0

        while True:
            seed = jitter_seed(base_seed, attempt, self.rng)
            try:
                result = self._attempt(
                    prompt, index, model_id, seed, attempt, config, target, token, resampler
                )
            except QualityRejected as e:
                if not budget.consume_quality():
                    self._transition(prompt, index, UnitState.FAILED)
                    raise
                logger.warning(
                    f"Quality rejected ({e}); retrying with a new seed "
                    f"({budget.quality_retries_remaining} retries left)"
                )
                self._transition(prompt, index, UnitState.RETRY_QUALITY, token)
                attempt += 1
                continue
            except Canceled:
                raise
            except Exception:
                self._transition(prompt, index, UnitState.FAILED)
                raise

            if config.unique:
                duplicate_of = find_duplicate(result.fingerprint, state.seen_fingerprints)
                if duplicate_of is not None:
                    if budget.consume_duplicate():
                        logger.warning(
                            f"Near-duplicate of {duplicate_of}; retrying with a new seed "
                            f"({budget.duplicate_retries_remaining} retries left)"
                        )
                        self._transition(prompt, index, UnitState.RETRY_DUPLICATE, token)
                        attempt += 1
                        continue
                    if config.duplicate_policy == DuplicatePolicy.FAIL_ON_EXHAUSTION:
                        self._transition(prompt, index, UnitState.FAILED)
                        raise DuplicateRejected(
                            f"Still a near-duplicate of {duplicate_of} after all retries"
                        )
                    logger.warning(f"Duplicate retries exhausted; accepting near-duplicate of {duplicate_of}")

            self._deliver(prompt, index, model_id, result)
            state.seen_fingerprints.add(result.fingerprint)
            self._transition(prompt, index, UnitState.ACCEPTED)
            return result

    def _attempt(
        self,
        prompt: str,
        index: int,
        model_id: str,
        seed: int,
        attempt: int,
        config: BatchConfig,
        target: tuple[int, int],
        token: CancellationToken,
        resampler: Resampler
    ) -> AttemptResult:
        width, height = target

        self._transition(prompt, index, UnitState.BUILDING, token)
        request = build_request(
            prompt,
            model_id,
            width,
            height,
            seed=seed,
            suppress_watermark=config.suppress_watermark,
            attempt=attempt,
            rng=self.rng,
        )

        def decode(content: bytes) -> PixelBuffer:
            self._transition(prompt, index, UnitState.DECODING, token)
            return self.decoder(content)

        # Undecodable bodies are refetched within the client's attempt budget
        self._transition(prompt, index, UnitState.FETCHING, token)
        decoded = self.client.fetch(request, token, decode=decode).image
        token.raise_if_cancelled()

        target_w, target_h = effective_target(decoded, width, height)

        if config.quality_gate:
            self._transition(prompt, index, UnitState.QUALITY_CHECK, token)
            check_quality(decoded, target_w, target_h)

        self._transition(prompt, index, UnitState.RESAMPLING, token)
        resized = resampler.resample(decoded, target_w, target_h)
        strategy = getattr(resampler, "last_strategy", resampler.name)

        self._transition(prompt, index, UnitState.FILTERING, token)
        finished = apply_post_filters(resized)

        self._transition(prompt, index, UnitState.FINGERPRINTING, token)
        fingerprint = average_hash(finished)
        encoded = encode_buffer(
            finished,
            config.output_format,
            {
                "prompt": prompt,
                "model": model_id,
                "seed": seed,
                "width": finished.width,
                "height": finished.height,
            },
        )

        return AttemptResult(
            image=finished,
            encoded_bytes=encoded,
            seed_used=seed,
            fingerprint=fingerprint,
            format=config.output_format,
            strategy=strategy,
        )

    def _deliver(self, prompt: str, index: int, model_id: str, result: AttemptResult) -> None:
        label = f"{'GPU' if result.strategy == 'gpu' else 'CPU'} • {model_id} • auto"
        self.gallery.add(GalleryItem(
            image_bytes=result.encoded_bytes,
            format=result.format,
            width=result.image.width,
            height=result.image.height,
            prompt=prompt,
            model_id=model_id,
            model_label=label,
            seed=result.seed_used,
            index=index,
            fingerprint=str(result.fingerprint),
        ))
        logger.info(f"Accepted image {index} for prompt '{prompt[:50]}' (seed={result.seed_used})")

    def _transition(
        self,
        prompt: str,
        index: int,
        new_state: UnitState,
        token: Optional[CancellationToken] = None
    ) -> None:
        logger.debug(f"Unit {index} of '{prompt[:30]}': -> {new_state.value}")
        if self.on_transition is not None:
            self.on_transition(prompt, index, new_state)
        if token is not None:
            token.raise_if_cancelled()

    def _report_progress(self, state: BatchState) -> None:
        if self.progress is not None:
            self.progress(state.processed, state.total_units)
