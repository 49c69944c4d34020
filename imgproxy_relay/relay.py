"""
Imgproxy Relay Handler

Relays one inbound image request to imgproxy:
1. Validates `src` (and the bucket whitelist)
2. Builds the (optionally signed) imgproxy path
3. Sends exactly one GET to imgproxy
4. Copies allow-listed headers and the status code
5. Streams the body into a ResponseSink

Every failure is mapped to a status code here; nothing is raised to the
caller.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Dict, Iterable, List, Optional, Set, Tuple, Union

import httpx

from .config import RelayConfig
from .errors import RelayError, RelayStateError, SourceRejectedError, UpstreamTransportError
from .path_builder import build_path
from .sinks import ChannelSink, ResponseSink
from .source_validator import SourceValue, validate_source

logger = logging.getLogger(__name__)


# ============================================
# Relay state machine
# ============================================

class RelayState(str, Enum):
    """Lifecycle of one relay attempt."""
    RECEIVED = "received"
    VALIDATING = "validating"
    REJECTED = "rejected"
    PATH_BUILT = "path_built"
    DISPATCHED = "dispatched"
    HEADERS_RECEIVED = "headers_received"
    STREAMING = "streaming"
    ENDED = "ended"
    ERRORED = "errored"

    @property
    def is_terminal(self) -> bool:
        return self in (RelayState.REJECTED, RelayState.ENDED, RelayState.ERRORED)


_TRANSITIONS: Dict[RelayState, Set[RelayState]] = {
    RelayState.RECEIVED: {RelayState.VALIDATING},
    RelayState.VALIDATING: {RelayState.REJECTED, RelayState.PATH_BUILT},
    RelayState.PATH_BUILT: {RelayState.DISPATCHED},
    RelayState.DISPATCHED: {RelayState.HEADERS_RECEIVED},
    RelayState.HEADERS_RECEIVED: {RelayState.STREAMING},
    RelayState.STREAMING: {RelayState.ENDED},
}


class RelayAttempt:
    """Tracks the state of one relay; terminal states are final."""

    def __init__(self):
        self.state = RelayState.RECEIVED
        self.history: List[RelayState] = [RelayState.RECEIVED]

    def advance(self, new_state: RelayState) -> None:
        if self.state.is_terminal:
            raise RelayStateError(f"Relay already {self.state.value}, cannot move to {new_state.value}")
        # Any live state may fail
        allowed = _TRANSITIONS.get(self.state, set()) | {RelayState.ERRORED}
        if new_state not in allowed:
            raise RelayStateError(f"Illegal relay transition: {self.state.value} -> {new_state.value}")
        self.state = new_state
        self.history.append(new_state)


# ============================================
# Inputs / outputs
# ============================================

@dataclass(frozen=True)
class InboundQuery:
    """The relay-relevant part of the inbound query string."""
    src: SourceValue = None
    params: Optional[str] = None

    @classmethod
    def from_multi_items(cls, items: Iterable[Tuple[str, str]]) -> "InboundQuery":
        """
        Build from (key, value) pairs, keeping repeated `src` values so they
        can be rejected. For repeated `params` the first value wins.
        """
        sources: List[str] = []
        params: List[str] = []
        for key, value in items:
            if key == "src":
                sources.append(value)
            elif key == "params":
                params.append(value)

        src: SourceValue = None
        if len(sources) == 1:
            src = sources[0]
        elif sources:
            src = tuple(sources)
        return cls(src=src, params=params[0] if params else None)


@dataclass
class RelayOutcome:
    """Terminal result of one relay."""
    state: RelayState
    status_code: int
    upstream_path: Optional[str] = None
    bytes_relayed: int = 0
    error: Optional[RelayError] = None

    @property
    def ok(self) -> bool:
        return self.state == RelayState.ENDED


# ============================================
# Relay
# ============================================

def _copy_headers(
    response: httpx.Response,
    sink: ResponseSink,
    header_names: Iterable[str],
    upstream_path: str,
) -> None:
    for name in header_names:
        value = response.headers.get(name)
        if value:
            logger.debug(f"[ImgproxyRelay] Forwarding header {name}: {upstream_path}")
            sink.set_header(name, value)


def _outcome(
    attempt: RelayAttempt,
    sink: ResponseSink,
    upstream_path: Optional[str],
    error: Optional[RelayError] = None,
) -> RelayOutcome:
    return RelayOutcome(
        state=attempt.state,
        status_code=sink.status_code,
        upstream_path=upstream_path,
        bytes_relayed=sink.bytes_written,
        error=error,
    )


async def _fail(
    attempt: RelayAttempt,
    sink: ResponseSink,
    upstream_path: Optional[str],
    error: RelayError,
) -> RelayOutcome:
    """Move to ERRORED and end the sink, with the error status if still possible."""
    logger.error(f"[ImgproxyRelay] Stream error: path={upstream_path}, error={error.message}")
    if not attempt.state.is_terminal:
        attempt.advance(RelayState.ERRORED)
    if not sink.ended:
        if not sink.committed:
            sink.clear_headers()
            sink.set_status(error.status_code)
        await sink.end()
    return _outcome(attempt, sink, upstream_path, error)


async def _forward(
    attempt: RelayAttempt,
    base_url: httpx.URL,
    upstream_path: str,
    sink: ResponseSink,
    config: RelayConfig,
    client: httpx.AsyncClient,
) -> RelayOutcome:
    # Only scheme, host and port of the base URL are used. The path is
    # already escaped and signed, so it goes out as raw bytes.
    url = base_url.copy_with(raw_path=upstream_path.encode("ascii"), fragment=None)
    headers = {"Accept-Encoding": "identity"}
    if config.auth_token:
        headers["Authorization"] = f"Bearer {config.auth_token}"

    request = client.build_request("GET", url, headers=headers, timeout=config.timeout)
    attempt.advance(RelayState.DISPATCHED)

    try:
        response = await client.send(request, stream=True)
    except httpx.HTTPError as e:
        return await _fail(
            attempt, sink, upstream_path,
            UpstreamTransportError(f"Request to imgproxy failed: {e!r}", cause=e),
        )

    try:
        attempt.advance(RelayState.HEADERS_RECEIVED)
        _copy_headers(response, sink, config.headers_to_forward, upstream_path)
        logger.debug(f"[ImgproxyRelay] Received status code {response.status_code}: {upstream_path}")
        sink.set_status(response.status_code)

        attempt.advance(RelayState.STREAMING)
        async for chunk in response.aiter_raw():
            await sink.write(chunk)
    except httpx.HTTPError as e:
        return await _fail(
            attempt, sink, upstream_path,
            UpstreamTransportError(f"Stream from imgproxy broke: {e!r}", cause=e),
        )
    finally:
        await response.aclose()

    attempt.advance(RelayState.ENDED)
    await sink.end()
    logger.debug(f"[ImgproxyRelay] Stream ended: {upstream_path} ({sink.bytes_written} bytes)")
    return _outcome(attempt, sink, upstream_path)


async def relay(
    base_url: httpx.URL,
    query: InboundQuery,
    sink: ResponseSink,
    config: RelayConfig,
    *,
    client: httpx.AsyncClient,
) -> RelayOutcome:
    """
    Relay one image request to imgproxy.

    Args:
        base_url: imgproxy base URL (scheme picks http or https)
        query: `src` / `params` from the inbound request
        sink: Where status, headers and body are written
        config: Relay configuration
        client: Shared HTTP client for the outbound call

    Returns:
        The terminal RelayOutcome. The sink is always ended.
    """
    attempt = RelayAttempt()
    upstream_path: Optional[str] = None
    logger.debug(f"[ImgproxyRelay] Processing query: src={query.src!r}, params={query.params!r}")

    try:
        attempt.advance(RelayState.VALIDATING)
        try:
            ref = validate_source(query.src, config.bucket_whitelist)
        except SourceRejectedError as e:
            logger.error(f"[ImgproxyRelay] {e.message}: {query.src!r}")
            attempt.advance(RelayState.REJECTED)
            sink.set_status(e.status_code)
            await sink.end()
            return _outcome(attempt, sink, None, e)

        upstream_path = build_path(ref, query.params, config.signature, config.path_mode)
        attempt.advance(RelayState.PATH_BUILT)
        logger.debug(f"[ImgproxyRelay] Built imgproxy path: {upstream_path}")

        return await _forward(attempt, base_url, upstream_path, sink, config, client)

    except Exception as e:
        logger.exception(f"[ImgproxyRelay] Unexpected relay failure: {upstream_path}")
        return await _fail(attempt, sink, upstream_path, RelayError(f"Unexpected relay failure: {e!r}"))


# ============================================
# Handler
# ============================================

class RelayStream:
    """
    A relay running in the background, feeding a ChannelSink.

    status_code and headers are final once open_stream() returns. The
    stream itself is an async iterator over the response body. Closing it
    before the body ended releases the relay, whether or not iteration
    ever started.
    """

    def __init__(
        self,
        sink: ChannelSink,
        task: "asyncio.Task[RelayOutcome]",
        abort_on_disconnect: bool = True,
    ):
        self.status_code = sink.status_code
        self.headers: Dict[str, str] = {}
        self.sink = sink
        self.task = task
        self.abort_on_disconnect = abort_on_disconnect
        self.finished = False
        self._released = False
        self._chunks: Optional[AsyncIterator[bytes]] = None

    def body(self) -> "RelayStream":
        return self

    def __aiter__(self) -> "RelayStream":
        return self

    async def __anext__(self) -> bytes:
        if self.finished or self._released:
            raise StopAsyncIteration
        if self._chunks is None:
            self._chunks = self.sink.iter_chunks()
        try:
            return await self._chunks.__anext__()
        except StopAsyncIteration:
            self.finished = True
            raise
        except asyncio.CancelledError:
            self.release()
            raise

    async def aclose(self) -> None:
        if self._chunks is not None:
            await self._chunks.aclose()
        self.release()

    def release(self) -> None:
        """The consumer went away before the body ended."""
        if self.finished or self._released or self.task.done():
            return
        self._released = True
        self.sink.detach()
        if self.abort_on_disconnect:
            logger.info("[ImgproxyRelay] Client disconnected, aborting imgproxy request")
            self.task.cancel()
        else:
            logger.info("[ImgproxyRelay] Client disconnected, draining imgproxy response")


class RelayHandler:
    """
    Binds the imgproxy base URL, the relay config and one HTTP client.

    Usage:
        handler = RelayHandler("http://imgproxy:8080", RelayConfig())
        outcome = await handler.relay(InboundQuery(src="bucket/a.png"), sink)
        await handler.aclose()
    """

    def __init__(
        self,
        base_url: Union[str, httpx.URL],
        config: Optional[RelayConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = httpx.URL(str(base_url))
        self.config = config or RelayConfig()
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=self.config.timeout)
        self._tasks: Set[asyncio.Task] = set()

    async def relay(self, query: InboundQuery, sink: ResponseSink) -> RelayOutcome:
        return await relay(self.base_url, query, sink, self.config, client=self.client)

    async def open_stream(self, query: InboundQuery) -> RelayStream:
        """
        Start a relay in the background and wait until its status and
        headers are known.
        """
        sink = ChannelSink(max_chunks=self.config.stream_buffer_chunks)
        task = asyncio.create_task(self.relay(query, sink))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        stream = RelayStream(sink, task, abort_on_disconnect=self.config.abort_on_disconnect)
        committed = asyncio.ensure_future(sink.wait_committed())
        try:
            await asyncio.wait({committed, task}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            committed.cancel()
            stream.release()
            raise
        committed.cancel()

        if not sink.committed:
            # Relay was cancelled before producing a response
            sink.set_status(500)
            await sink.end()

        stream.status_code = sink.status_code
        stream.headers = dict(sink.headers)
        return stream

    @property
    def active_relays(self) -> int:
        return len(self._tasks)

    async def aclose(self) -> None:
        """Cancel background relays and close the owned HTTP client."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        if self._owns_client:
            await self.client.aclose()
