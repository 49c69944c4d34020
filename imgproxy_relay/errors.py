"""
Relay Errors

Error taxonomy for the imgproxy relay. Every per-request error carries the
HTTP status it maps to at the relay boundary:

- InvalidSourceError      -> 400 (malformed or multi-valued `src`)
- ForbiddenNamespaceError -> 400 (bucket not whitelisted)
- UpstreamTransportError  -> 500 (connect / reset / timeout)

Statuses returned by the transform service are never errors; they are
forwarded verbatim.
"""

from typing import Optional


class RelayError(Exception):
    """Base class for all relay errors."""

    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(RelayError):
    """Raised at startup when the relay configuration is unusable."""


# ============================================
# Source rejections (client errors)
# ============================================

class SourceRejectedError(RelayError):
    """The requested source was refused before any upstream call."""

    status_code = 400


class InvalidSourceError(SourceRejectedError):
    """`src` is missing, multi-valued or does not match the grammar."""

    def __init__(self, message: str, src: object = None):
        super().__init__(message)
        self.src = src


class ForbiddenNamespaceError(SourceRejectedError):
    """The bucket of `src` is not in the configured whitelist."""

    def __init__(self, namespace: str):
        super().__init__(f"Bucket is not whitelisted: {namespace}")
        self.namespace = namespace


# ============================================
# Upstream failures
# ============================================

class UpstreamTransportError(RelayError):
    """The transform service could not be reached or the stream broke."""

    status_code = 500

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


# ============================================
# Contract violations
# ============================================

class SinkClosedError(RelayError):
    """Write attempted on a response sink that has already ended."""


class RelayStateError(RelayError):
    """Illegal transition in the relay state machine."""
