"""
imgproxy URL Signer

signature = urlsafe_b64(HMAC-SHA256(key, salt + path))[:size], unpadded.
"""

import base64
import hashlib
import hmac

from .config import SigningCredential


def _digest(credential: SigningCredential, candidate_path: str) -> bytes:
    mac = hmac.new(credential.key_bytes, digestmod=hashlib.sha256)
    mac.update(credential.salt_bytes)
    mac.update(candidate_path.encode("utf-8"))
    return mac.digest()[:credential.signature_size]


def sign(credential: SigningCredential, candidate_path: str) -> str:
    """
    Sign an upstream path.

    Args:
        credential: Hex key/salt pair
        candidate_path: Unsigned path, starting with "/"

    Returns:
        URL-safe base64 signature without "=" padding.
    """
    digest = _digest(credential, candidate_path)
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def verify(credential: SigningCredential, candidate_path: str, signature: str) -> bool:
    """Check a signature in constant time."""
    expected = sign(credential, candidate_path)
    return hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8"))
