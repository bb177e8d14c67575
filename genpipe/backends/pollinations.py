"""HTTP client for the Pollinations-style image generation endpoint."""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional
from urllib.parse import quote, urlencode

import requests
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
    wait_random,
)

from genpipe.core.cancellation import CancellationToken
from genpipe.core.errors import (
    Canceled,
    FetchConnectionError,
    FetchTimeout,
    HttpStatusError,
    ContentInvalid,
    NetworkTransient,
    NonImageContentError,
    PipelineError,
)
from genpipe.core.models import GenerationRequest

logger = logging.getLogger(__name__)

RETRYABLE_ERRORS = (NetworkTransient, ContentInvalid)


@dataclass
class FetchResult:
    """Raw bytes returned by a successful fetch.

    Attributes:
        content: Response body
        content_type: Declared content type, lowercased
        url: URL of the attempt that succeeded (including the cache buster)
        attempts: Number of attempts it took
        image: Output of the decode hook, when one was given
    """
    content: bytes
    content_type: str
    url: str
    attempts: int
    image: Any = None


class PollinationsClient:
    """Fetches generated images with timeout, cache busting and bounded retry.

    The client validates the HTTP status and the declared content-type prefix.
    Anything deeper is left to an optional decode hook run inside the same
    retry loop, so a body that fails to decode costs one attempt.

    Attributes:
        base_url: Endpoint root; images live under ``<base_url>/prompt/<prompt>``
        timeout: Wall-clock budget of a single attempt, in seconds
        attempts: Total attempts per fetch
        backoff: Fixed wait between attempts, in seconds
        jitter: Upper bound of the random wait added to ``backoff``
        session: requests Session used for all calls
    """

    DEFAULT_BASE_URL = "https://image.pollinations.ai"
    CHUNK_SIZE = 64 * 1024

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: float = 15.0,
        attempts: int = 3,
        backoff: float = 0.6,
        jitter: float = 0.4,
        session: Optional[requests.Session] = None
    ):
        if attempts < 1:
            raise ValueError("attempts must be at least 1")

        self.base_url = (base_url or self.DEFAULT_BASE_URL).rstrip("/")
        self.timeout = timeout
        self.attempts = attempts
        self.backoff = backoff
        self.jitter = jitter
        self.session = session or requests.Session()
        logger.info(f"Initialized endpoint client for {self.base_url}")

    @property
    def name(self) -> str:
        return "Pollinations"

    def build_url(self, request: GenerationRequest) -> str:
        """Build the endpoint URL for a request (without the cache buster)."""
        params = {}
        if request.model_id and request.model_id != "any":
            params["model"] = request.model_id
        params["width"] = str(request.target_width)
        params["height"] = str(request.target_height)
        if request.suppress_watermark:
            params["nologo"] = "true"
        if request.seed is not None:
            params["seed"] = str(request.seed)
        if request.quality_tag:
            params["q"] = request.quality_tag

        return f"{self.base_url}/prompt/{quote(request.prompt, safe='')}?{urlencode(params)}"

    @staticmethod
    def bust_cache(url: str) -> str:
        """Append a millisecond timestamp so no intermediate cache answers the attempt."""
        separator = "&" if "?" in url else "?"
        return f"{url}{separator}ts={int(time.time() * 1000)}"

    def fetch(
        self,
        request: GenerationRequest,
        cancel_token: Optional[CancellationToken] = None,
        decode: Optional[Callable[[bytes], Any]] = None
    ) -> FetchResult:
        """Fetch the image for a request.

        Retries timeouts, dropped connections, 429, 5xx, non-image responses
        and bodies the decode hook rejects with ``ContentInvalid``, up to
        ``attempts`` times in total. Cancellation is never retried and also
        interrupts the wait between attempts.

        Args:
            request: The generation request
            cancel_token: Token checked before each attempt and while reading
            decode: Called with each body; its result becomes ``FetchResult.image``

        Returns:
            FetchResult with the body and content type

        Raises:
            Canceled: If the token was canceled
            FetchTimeout: If the last attempt timed out
            FetchConnectionError: If the last attempt could not connect
            HttpStatusError: On a non-retryable status or the last retryable one
            NonImageContentError: If the last response was not an image
            DecodeError: If the decode hook rejected the last body
        """
        token = cancel_token or CancellationToken()
        url = self.build_url(request)
        logger.info(f"Fetching image for prompt: {request.prompt[:50]}... (seed={request.seed})")

        retrying = Retrying(
            stop=stop_after_attempt(self.attempts),
            wait=wait_fixed(self.backoff) + wait_random(0, self.jitter),
            retry=retry_if_exception_type(RETRYABLE_ERRORS),
            sleep=self._cancellable_sleep(token),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

        for attempt in retrying:
            with attempt:
                token.raise_if_cancelled()
                content, content_type, attempt_url = self._fetch_once(url, token)
                image = decode(content) if decode is not None else None

        attempts_used = attempt.retry_state.attempt_number
        logger.info(f"Fetched {len(content)} bytes ({content_type}) in {attempts_used} attempt(s)")
        return FetchResult(
            content=content,
            content_type=content_type,
            url=attempt_url,
            attempts=attempts_used,
            image=image,
        )

    @staticmethod
    def _cancellable_sleep(token: CancellationToken) -> Callable[[float], None]:
        def sleep(seconds: float) -> None:
            if token.wait(seconds):
                raise Canceled("Canceled while waiting to retry")
        return sleep

    def _fetch_once(self, url: str, token: CancellationToken) -> tuple[bytes, str, str]:
        attempt_url = self.bust_cache(url)
        deadline = time.monotonic() + self.timeout
        logger.debug(f"GET {attempt_url}")

        try:
            response = self.session.get(attempt_url, timeout=self.timeout, stream=True)
        except requests.exceptions.Timeout as e:
            token.raise_if_cancelled()
            raise FetchTimeout(f"Timed out after {self.timeout}s") from e
        except requests.exceptions.RequestException as e:
            token.raise_if_cancelled()
            raise FetchConnectionError(f"Failed to fetch: {e}") from e

        unregister = token.register(response.close)
        try:
            status = response.status_code
            if not 200 <= status < 300:
                raise HttpStatusError.for_status(status)

            content_type = (response.headers.get("content-type") or "").lower()
            if not content_type.startswith("image/"):
                raise NonImageContentError(content_type)

            return self._read_body(response, token, deadline), content_type, attempt_url
        finally:
            unregister()
            response.close()

    def _read_body(
        self,
        response: requests.Response,
        token: CancellationToken,
        deadline: float
    ) -> bytes:
        chunks = []
        try:
            for chunk in response.iter_content(chunk_size=self.CHUNK_SIZE):
                token.raise_if_cancelled()
                if time.monotonic() > deadline:
                    raise FetchTimeout(f"Timed out after {self.timeout}s while reading")
                if chunk:
                    chunks.append(chunk)
        except PipelineError:
            raise
        except requests.exceptions.Timeout as e:
            token.raise_if_cancelled()
            raise FetchTimeout(f"Timed out after {self.timeout}s while reading") from e
        except Exception as e:
            # Closing the response from a cancel callback surfaces here as an I/O error
            token.raise_if_cancelled()
            raise FetchConnectionError(f"Failed to read response: {e}") from e

        return b"".join(chunks)

    def __repr__(self) -> str:
        return f"PollinationsClient(base_url='{self.base_url}')"
