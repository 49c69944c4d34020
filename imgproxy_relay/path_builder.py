"""
Upstream Path Builder

Assembles the imgproxy request path for a validated source:

    /<signature>/<transform token>/plain/s3://<bucket>/<path>

Two assembly conventions are supported (see PathAssemblyMode):
- LEGACY: any non-empty token is inserted as a literal segment
- MODIFIER: the token is treated as an imgproxy processing modifier and is
  only used when it looks like one ("name:args")

The path is percent-encoded here, before signing, and is sent as-is.
imgproxy checks the signature against the escaped request path.
"""

from typing import Callable, Dict, List, Optional
from urllib.parse import quote

from .config import PathAssemblyMode, SigningCredential
from .signer import sign
from .source_validator import ObjectReference

# "s3://" is what imgproxy expects, whatever the actual storage is
SOURCE_PROTOCOL = "s3://"

# Sub-delimiters plus ":@/"; unreserved characters are always kept by quote()
PATH_SAFE = "!$&'()*+,;=:@/"


def _escape_reference(ref: ObjectReference) -> str:
    # Object keys are raw, so a literal "%" is escaped too
    return quote(str(ref), safe=PATH_SAFE)


def _escape_token(token: str) -> str:
    # Tokens arrive pre-escaped; keep their %XX sequences
    return quote(token, safe=PATH_SAFE + "%")


def _source_segment(ref: ObjectReference) -> str:
    return f"plain/{SOURCE_PROTOCOL}{_escape_reference(ref)}"


def _assemble_legacy(ref: ObjectReference, token: Optional[str]) -> str:
    if token:
        return f"/{_escape_token(token)}/{_source_segment(ref)}"
    return f"/{_source_segment(ref)}"


def _assemble_modifier(ref: ObjectReference, token: Optional[str]) -> str:
    modifiers: List[str] = []
    if token and ":" in token:
        modifiers.append(_escape_token(token))
    return "/" + "/".join(modifiers + [_source_segment(ref)])


ASSEMBLERS: Dict[PathAssemblyMode, Callable[[ObjectReference, Optional[str]], str]] = {
    PathAssemblyMode.LEGACY: _assemble_legacy,
    PathAssemblyMode.MODIFIER: _assemble_modifier,
}


def build_unsigned_path(
    ref: ObjectReference,
    token: Optional[str] = None,
    mode: PathAssemblyMode = PathAssemblyMode.LEGACY,
) -> str:
    """Escaped candidate path, i.e. the part that gets signed."""
    return ASSEMBLERS[mode](ref, token)


def build_path(
    ref: ObjectReference,
    token: Optional[str] = None,
    credential: Optional[SigningCredential] = None,
    mode: PathAssemblyMode = PathAssemblyMode.LEGACY,
) -> str:
    """
    Build the final upstream path.

    Args:
        ref: Validated source reference
        token: Opaque, pre-escaped transform token
        credential: Signing key/salt; unsigned path when None
        mode: Path assembly convention

    Returns:
        Path to request from imgproxy, starting with "/".
    """
    candidate = build_unsigned_path(ref, token, mode)
    if credential is None:
        return candidate
    return f"/{sign(credential, candidate)}{candidate}"
