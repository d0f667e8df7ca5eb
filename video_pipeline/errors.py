"""
Failure taxonomy for the download pipeline.

Every error carries a `kind` (used to pick the user-facing message) and a
`retryable` flag separating transient failures from permanent ones.
"""


class MediaError(Exception):
    """Base class for all pipeline failures."""

    kind = "unknown"
    retryable = False

    def __init__(self, message: str = "", *, cause: Exception | None = None):
        super().__init__(message or self.__class__.__name__)
        self.cause = cause


class InvalidUrl(MediaError):
    """URL is not a recognizable video URL for its platform."""
    kind = "invalid_url"


class NoDownloadableMedia(MediaError):
    """Content is private, removed, or has no downloadable media."""
    kind = "no_media"


class TransientError(MediaError):
    """Network blip or upstream hiccup; retrying may succeed."""
    kind = "transient"
    retryable = True


class PipelineTimeout(TransientError):
    kind = "timeout"


class FetchFailed(MediaError):
    """Writing the downloaded stream to disk failed."""
    kind = "fetch_failed"


class MediaTooLarge(MediaError):
    kind = "too_large"


class MergeFailed(MediaError):
    kind = "merge_failed"


class StaleChoice(MediaError):
    """A choice token that is expired, consumed, superseded or not ours."""
    kind = "stale_choice"


__all__ = [
    'MediaError',
    'InvalidUrl',
    'NoDownloadableMedia',
    'TransientError',
    'PipelineTimeout',
    'FetchFailed',
    'MediaTooLarge',
    'MergeFailed',
    'StaleChoice',
]
