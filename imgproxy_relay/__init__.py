"""
Imgproxy Relay Module

Serves images from an imgproxy instance without exposing it to clients.

Features:
- Strict `src` validation and optional bucket whitelist
- Optional HMAC-SHA256 signed imgproxy paths
- Optional bearer token for the imgproxy call
- Streaming relay with allow-listed header forwarding
"""

__version__ = "0.1.0"

from .config import PathAssemblyMode, RelayConfig, RelaySettings, SigningCredential
from .errors import (
    ConfigurationError,
    ForbiddenNamespaceError,
    InvalidSourceError,
    RelayError,
    UpstreamTransportError,
)
from .path_builder import build_path
from .relay import InboundQuery, RelayHandler, RelayOutcome, RelayState
from .signer import sign
from .sinks import BufferedSink, ChannelSink, ResponseSink
from .source_validator import ObjectReference, validate_source
from .url_builder import build_proxy_image_path

__all__ = [
    "PathAssemblyMode",
    "RelayConfig",
    "RelaySettings",
    "SigningCredential",
    "ConfigurationError",
    "ForbiddenNamespaceError",
    "InvalidSourceError",
    "RelayError",
    "UpstreamTransportError",
    "build_path",
    "InboundQuery",
    "RelayHandler",
    "RelayOutcome",
    "RelayState",
    "sign",
    "BufferedSink",
    "ChannelSink",
    "ResponseSink",
    "ObjectReference",
    "validate_source",
    "build_proxy_image_path",
]
