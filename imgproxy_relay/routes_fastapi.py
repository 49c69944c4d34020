"""
Imgproxy Relay API Routes

Provides endpoints for:
- Relaying image requests to imgproxy (streamed)
- Health check with a non-secret config summary
"""

from typing import Any, Dict

from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from .config import DEFAULT_ENDPOINT
from .relay import InboundQuery, RelayHandler, RelayStream


# ============================================
# Response Models
# ============================================


class RelayHealthResponse(BaseModel):
    """Response model for the health endpoint."""
    status: str
    service: str
    upstream_host: str
    active_relays: int
    config: Dict[str, Any]


# ============================================
# Streaming response
# ============================================

class RelayResponse(StreamingResponse):
    """Streams a RelayStream and releases it however the response ends."""

    def __init__(self, stream: RelayStream):
        super().__init__(stream, status_code=stream.status_code, headers=stream.headers)
        self.relay_stream = stream

    async def __call__(self, scope, receive, send):
        try:
            await super().__call__(scope, receive, send)
        finally:
            # The body may be dropped before its first chunk was requested
            await self.relay_stream.aclose()


# ============================================
# Router
# ============================================

def create_router(handler: RelayHandler, endpoint_path: str = DEFAULT_ENDPOINT) -> APIRouter:
    """
    Build the relay router around a configured handler.

    Args:
        handler: RelayHandler owning config and HTTP client
        endpoint_path: Path the relay is served on
    """
    router = APIRouter(tags=["Imgproxy Relay"])

    @router.get(endpoint_path)
    async def relay_image(request: Request):
        """
        Relay an image from imgproxy.

        Example:
            GET /_next/imgproxy?src=bucket/image.png&params=rs:fit:300:300

        Invalid or non-whitelisted sources get an empty 400. imgproxy's own
        status code is passed through; transport failures become 500.
        """
        query = InboundQuery.from_multi_items(request.query_params.multi_items())
        stream = await handler.open_stream(query)
        return RelayResponse(stream)

    @router.get(f"{endpoint_path.rstrip('/')}/health", response_model=RelayHealthResponse)
    async def health_check():
        """Health check endpoint."""
        return RelayHealthResponse(
            status="healthy",
            service="imgproxy-relay",
            upstream_host=handler.base_url.host,
            active_relays=handler.active_relays,
            config=handler.config.summary(),
        )

    return router
