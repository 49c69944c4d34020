"""
Source Validation

Checks the `src` query value before anything is sent upstream:
- exactly one value
- shape `<bucket>/<path>` (no '.' or '/' in the bucket, path not ending in '/')
- bucket allowed by the whitelist, if one is configured
"""

import re
from dataclasses import dataclass
from typing import AbstractSet, Optional, Sequence, Union

from .errors import ForbiddenNamespaceError, InvalidSourceError

SRC_PATTERN = re.compile(r"[^/.]+/.+[^/]")

SourceValue = Union[str, Sequence[str], None]


@dataclass(frozen=True)
class ObjectReference:
    """A validated `<bucket>/<path>` reference into backing storage."""
    namespace: str
    path: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.path}"


def _single_value(src: SourceValue) -> Optional[str]:
    """Collapse a query value to one string; None if absent or repeated."""
    if src is None or isinstance(src, str):
        return src
    values = list(src)
    if len(values) != 1:
        return None
    return values[0]


def validate_source(
    src: SourceValue,
    whitelist: Optional[AbstractSet[str]] = None,
) -> ObjectReference:
    """
    Validate a requested source.

    Args:
        src: Raw `src` query value (a string, or every value if repeated)
        whitelist: Allowed buckets; None or empty means unrestricted

    Returns:
        The parsed ObjectReference.

    Raises:
        InvalidSourceError: missing, repeated or malformed source
        ForbiddenNamespaceError: bucket not whitelisted
    """
    value = _single_value(src)
    if not value or SRC_PATTERN.fullmatch(value) is None:
        raise InvalidSourceError("Source failed validation check", src=src)

    namespace, _, path = value.partition("/")
    if whitelist and namespace not in whitelist:
        raise ForbiddenNamespaceError(namespace)

    return ObjectReference(namespace=namespace, path=path)
