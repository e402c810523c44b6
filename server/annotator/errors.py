"""Error taxonomy for the lyrics annotation pipeline.

Everything except ValidationError and LyricsNotFoundError is recoverable:
callers degrade to a smaller result (fallback format, zero candidates,
back-filled annotations) instead of failing the request.
"""


class AnnotatorError(Exception):
    """Base class for all pipeline errors."""


class DecodeError(AnnotatorError):
    """A lyrics payload could not be decoded (bad base64, UTF-8, or container)."""


class UpstreamError(AnnotatorError):
    """The lyrics catalog failed, timed out, or returned an unreadable response."""


class GenerationTimeout(AnnotatorError):
    """The generation stream ran past its wall-clock limit."""


class GenerationAbort(AnnotatorError):
    """The generation stream was cancelled by the caller."""


class ValidationError(AnnotatorError):
    """Caller-supplied input has an invalid shape. Fatal to that request only."""


class LyricsNotFoundError(AnnotatorError):
    """No lyrics source could be resolved or fetched for a song."""
