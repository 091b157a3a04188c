"""Error taxonomy for the extraction bridge."""

from __future__ import annotations


class BridgeError(Exception):
    """Base class for failures reported to the host application."""

    code = "BRIDGE_ERROR"
    retryable = False


class InvalidArgumentError(BridgeError):
    """A required argument was missing or malformed."""

    code = "INVALID_ARGUMENT"


class InitializationError(BridgeError):
    """The yt-dlp runtime or one of the extractor handles failed to start."""

    code = "INITIALIZATION_ERROR"


class NotReadyError(BridgeError):
    """An extractor handle was requested before the pool was initialized."""

    code = "NOT_READY"


class ExtractionError(BridgeError):
    """The platform returned no usable data for the request."""

    code = "EXTRACTION_ERROR"
    retryable = True


class ExtractionTimeoutError(BridgeError):
    """Network I/O exceeded the configured socket timeout."""

    code = "TIMEOUT"
    retryable = True
