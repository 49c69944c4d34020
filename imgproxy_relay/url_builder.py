"""
Inbound URL Builder

Builds the relay URL a page uses to display an image, e.g. as a CSS
background:

    /_next/imgproxy?src=bucket%2Fimage.png&params=...
"""

from typing import List, Optional, Tuple
from urllib.parse import urlencode

from .config import DEFAULT_ENDPOINT


def build_proxy_image_path(
    file: str,
    proxy_params: Optional[str] = None,
    endpoint: Optional[str] = None,
    width: Optional[int] = None,
) -> str:
    """
    Build the relay URL for an image.

    Args:
        file: Source reference (`<bucket>/<path>`)
        proxy_params: Opaque transform token
        endpoint: Relay endpoint path (defaults to /_next/imgproxy)
        width: Display width hint; ignored by the relay, used by image
            loaders that require a width in the URL

    Returns:
        Endpoint path with a form-encoded query string.
    """
    query: List[Tuple[str, str]] = [("src", file)]
    if proxy_params:
        query.append(("params", proxy_params))
    if width:
        query.append(("width", str(width)))
    return f"{endpoint or DEFAULT_ENDPOINT}?{urlencode(query)}"
