"""Error taxonomy for the acquisition-and-enhancement pipeline.

Every stage raises a subclass of ``PipelineError``. Only ``Canceled`` is allowed
to abort a whole batch; everything else is scoped to a single output unit.
"""

from typing import Optional


class PipelineError(Exception):
    """Base class for all pipeline errors."""


class Canceled(PipelineError):
    """Raised when the batch has been canceled. Never retried."""


class BatchAlreadyRunningError(RuntimeError):
    """Raised when a batch is started while another one is still running."""


class NetworkTransient(PipelineError):
    """Transient network failure (timeout, dropped connection, 429, 5xx)."""


class FetchTimeout(NetworkTransient):
    """A single fetch attempt exceeded its wall-clock budget."""


class FetchConnectionError(NetworkTransient):
    """The connection to the generation endpoint failed."""


class HttpStatusError(PipelineError):
    """The generation endpoint answered with a non-2xx status.

    Attributes:
        status_code: HTTP status code returned by the endpoint
    """

    def __init__(self, status_code: int, message: Optional[str] = None):
        self.status_code = status_code
        super().__init__(message or f"HTTP {status_code}")

    @staticmethod
    def is_transient_status(status_code: int) -> bool:
        """Return True for statuses worth retrying (429 and any 5xx)."""
        return status_code == 429 or 500 <= status_code < 600

    @classmethod
    def for_status(cls, status_code: int) -> "HttpStatusError":
        """Build the right error class for a status code."""
        if cls.is_transient_status(status_code):
            return TransientHttpError(status_code)
        return cls(status_code)


class TransientHttpError(HttpStatusError, NetworkTransient):
    """Non-2xx status that should be retried (429 or 5xx)."""


class ContentInvalid(PipelineError):
    """The endpoint returned something that is not a usable image."""


class NonImageContentError(ContentInvalid):
    """The response declared a content type that is not ``image/*``."""

    def __init__(self, content_type: str):
        self.content_type = content_type
        super().__init__(f"Non-image ({content_type})")


class DecodeError(ContentInvalid):
    """Bytes could not be interpreted as a supported raster format."""


class QualityRejected(PipelineError):
    """The quality gate rejected a decoded image."""


class DuplicateRejected(PipelineError):
    """The finished image is too similar to one already accepted in the batch."""


class ResourceExhausted(PipelineError):
    """An accelerated resource (GPU context or memory) is unavailable.

    Only used inside the resampler; it is never surfaced past that stage.
    """
