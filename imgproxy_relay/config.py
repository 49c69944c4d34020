"""
Relay Configuration

Immutable configuration values for the imgproxy relay:
- SigningCredential: hex key/salt pair used to sign upstream paths
- RelayConfig: per-process relay behaviour, injected into every relay call
- RelaySettings: everything needed to boot the service, read from env
"""

import os
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, Optional, Tuple

import httpx

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

# ============================================
# Defaults
# ============================================

DEFAULT_ENDPOINT = "/_next/imgproxy"
DEFAULT_BASE_URL = "http://localhost:8080"

FORWARDED_HEADERS: Tuple[str, ...] = (
    "date",
    "expires",
    "content-type",
    "content-length",
    "cache-control",
    "content-disposition",
    "content-dpr",
)

# imgproxy signs with the full SHA-256 digest unless told otherwise
MAX_SIGNATURE_SIZE = 32


class PathAssemblyMode(str, Enum):
    """How the transform token is placed into the upstream path."""
    LEGACY = "legacy"        # token is a literal path segment
    MODIFIER = "modifier"    # token is a processing modifier (needs ':')


@dataclass(frozen=True)
class SigningCredential:
    """Key/salt pair (hex encoded) for imgproxy URL signatures."""
    key: str
    salt: str
    signature_size: int = MAX_SIGNATURE_SIZE

    def __post_init__(self):
        for name in ("key", "salt"):
            value = getattr(self, name)
            if not value:
                raise ConfigurationError(f"Signing {name} must not be empty")
            try:
                bytes.fromhex(value)
            except ValueError:
                raise ConfigurationError(f"Signing {name} is not valid hex")
        if not 1 <= self.signature_size <= MAX_SIGNATURE_SIZE:
            raise ConfigurationError(
                f"Signature size must be between 1 and {MAX_SIGNATURE_SIZE}, "
                f"got {self.signature_size}"
            )

    @property
    def key_bytes(self) -> bytes:
        return bytes.fromhex(self.key)

    @property
    def salt_bytes(self) -> bytes:
        return bytes.fromhex(self.salt)

    def __repr__(self) -> str:
        return f"SigningCredential(key=***, salt=***, signature_size={self.signature_size})"


@dataclass(frozen=True)
class RelayConfig:
    """
    Relay behaviour shared by all requests.

    Constructed once at startup and never mutated afterwards.
    """
    signature: Optional[SigningCredential] = None
    auth_token: Optional[str] = field(default=None, repr=False)
    bucket_whitelist: Optional[FrozenSet[str]] = None
    forwarded_headers: Optional[Tuple[str, ...]] = None
    path_mode: PathAssemblyMode = PathAssemblyMode.LEGACY

    # Abort the upstream request when the client goes away early
    abort_on_disconnect: bool = True
    timeout: float = 30.0
    stream_buffer_chunks: int = 16

    def __post_init__(self):
        # Accept any iterable from callers, store canonical immutable forms
        for name in ("bucket_whitelist", "forwarded_headers"):
            if isinstance(getattr(self, name), str):
                raise ConfigurationError(f"{name} must be a collection of names, not a string")
        if self.bucket_whitelist is not None:
            object.__setattr__(self, "bucket_whitelist", frozenset(self.bucket_whitelist))
        if self.forwarded_headers is not None:
            object.__setattr__(
                self,
                "forwarded_headers",
                tuple(h.strip().lower() for h in self.forwarded_headers if h.strip()),
            )
        if not isinstance(self.path_mode, PathAssemblyMode):
            object.__setattr__(self, "path_mode", parse_path_mode(self.path_mode))
        if self.timeout <= 0:
            raise ConfigurationError("Timeout must be positive")
        if self.stream_buffer_chunks < 1:
            raise ConfigurationError("Stream buffer must hold at least one chunk")

    @property
    def headers_to_forward(self) -> Tuple[str, ...]:
        """Configured header allow-list, or the default one."""
        if self.forwarded_headers is None:
            return FORWARDED_HEADERS
        return self.forwarded_headers

    def summary(self) -> dict:
        """Non-secret view of the configuration (for health output)."""
        return {
            "signing_enabled": self.signature is not None,
            "auth_token_set": bool(self.auth_token),
            "bucket_whitelist_size": len(self.bucket_whitelist or ()),
            "forwarded_headers": list(self.headers_to_forward),
            "path_mode": self.path_mode.value,
            "abort_on_disconnect": self.abort_on_disconnect,
            "timeout_seconds": self.timeout,
        }


# ============================================
# Environment loading
# ============================================

def parse_path_mode(value: str) -> PathAssemblyMode:
    try:
        return PathAssemblyMode(str(value).strip().lower())
    except ValueError:
        choices = ", ".join(m.value for m in PathAssemblyMode)
        raise ConfigurationError(f"Unknown path mode: {value!r} (use: {choices})")


def _split_csv(value: Optional[str]) -> Optional[Tuple[str, ...]]:
    if value is None:
        return None
    return tuple(item.strip() for item in value.split(",") if item.strip())


def _parse_bool(name: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ConfigurationError(f"{name} must be a boolean, got {value!r}")


def _parse_number(name: str, value: str, kind=int):
    try:
        return kind(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {value!r}")


@dataclass(frozen=True)
class RelaySettings:
    """Process settings: where imgproxy lives, where we listen, how we relay."""
    base_url: httpx.URL
    relay: RelayConfig
    endpoint_path: str = DEFAULT_ENDPOINT
    log_level: str = "INFO"

    def __post_init__(self):
        base_url = httpx.URL(str(self.base_url))
        if base_url.scheme not in ("http", "https") or not base_url.host:
            raise ConfigurationError(f"Invalid imgproxy base URL: {self.base_url}")
        object.__setattr__(self, "base_url", base_url)
        if not self.endpoint_path.startswith("/"):
            object.__setattr__(self, "endpoint_path", "/" + self.endpoint_path)
        if logging.getLevelName(self.log_level.upper()) not in (
            logging.DEBUG, logging.INFO, logging.WARNING, logging.ERROR, logging.CRITICAL
        ):
            raise ConfigurationError(f"Unknown log level: {self.log_level}")

    @classmethod
    def from_env(cls, environ=None) -> "RelaySettings":
        """
        Build settings from IMGPROXY_* environment variables.

        Raises:
            ConfigurationError: if a variable is present but unusable.
        """
        env = os.environ if environ is None else environ

        key = env.get("IMGPROXY_KEY")
        salt = env.get("IMGPROXY_SALT")
        signature = None
        if key or salt:
            if not (key and salt):
                raise ConfigurationError("IMGPROXY_KEY and IMGPROXY_SALT must be set together")
            signature = SigningCredential(
                key=key,
                salt=salt,
                signature_size=_parse_number(
                    "IMGPROXY_SIGNATURE_SIZE",
                    env.get("IMGPROXY_SIGNATURE_SIZE", str(MAX_SIGNATURE_SIZE)),
                ),
            )

        whitelist = _split_csv(env.get("IMGPROXY_BUCKET_WHITELIST"))

        relay = RelayConfig(
            signature=signature,
            auth_token=env.get("IMGPROXY_AUTH_TOKEN") or None,
            bucket_whitelist=frozenset(whitelist) if whitelist else None,
            forwarded_headers=_split_csv(env.get("IMGPROXY_FORWARDED_HEADERS")),
            path_mode=parse_path_mode(env.get("IMGPROXY_PATH_MODE", PathAssemblyMode.LEGACY.value)),
            abort_on_disconnect=_parse_bool(
                "IMGPROXY_ABORT_ON_DISCONNECT", env.get("IMGPROXY_ABORT_ON_DISCONNECT", "true")
            ),
            timeout=_parse_number("IMGPROXY_TIMEOUT_SECONDS", env.get("IMGPROXY_TIMEOUT_SECONDS", "30"), float),
            stream_buffer_chunks=_parse_number(
                "IMGPROXY_STREAM_BUFFER_CHUNKS", env.get("IMGPROXY_STREAM_BUFFER_CHUNKS", "16")
            ),
        )

        settings = cls(
            base_url=env.get("IMGPROXY_URL", DEFAULT_BASE_URL),
            relay=relay,
            endpoint_path=env.get("IMGPROXY_ENDPOINT", DEFAULT_ENDPOINT),
            log_level=env.get("IMGPROXY_LOG_LEVEL", "INFO"),
        )
        logger.info(
            f"[ImgproxyRelay] Settings loaded: upstream={settings.base_url.host}, "
            f"endpoint={settings.endpoint_path}, signing={'on' if signature else 'off'}"
        )
        return settings

