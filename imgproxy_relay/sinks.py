"""
Response Sinks

Write-once destinations for a relayed response. A sink collects a status
code and headers, then receives the body chunk by chunk, then ends. Once
the first chunk is written the status and headers are committed; once
ended the sink accepts nothing more.

- BufferedSink: keeps the body in memory
- ChannelSink: bounded queue between the relay and the HTTP response, so a
  slow client throttles the upstream read
"""

import asyncio
from typing import AsyncIterator, Dict

from .errors import SinkClosedError

_EOF = object()


class ResponseSink:
    """Base sink. Subclasses implement _write() and _close()."""

    def __init__(self):
        self.status_code: int = 200
        self.headers: Dict[str, str] = {}
        self.committed = False
        self.bytes_written = 0
        self._ended = False

    @property
    def ended(self) -> bool:
        return self._ended

    def _check_writable(self) -> None:
        if self._ended:
            raise SinkClosedError("Response already ended")

    def _check_uncommitted(self) -> None:
        self._check_writable()
        if self.committed:
            raise SinkClosedError("Status and headers already sent")

    def set_status(self, status_code: int) -> None:
        self._check_uncommitted()
        self.status_code = status_code

    def set_header(self, name: str, value: str) -> None:
        self._check_uncommitted()
        self.headers[name] = value

    def clear_headers(self) -> None:
        self._check_uncommitted()
        self.headers.clear()

    def _commit(self) -> None:
        self.committed = True

    async def write(self, chunk: bytes) -> None:
        self._check_writable()
        if not chunk:
            return
        if not self.committed:
            self._commit()
        self.bytes_written += len(chunk)
        await self._write(chunk)

    async def end(self) -> bool:
        """
        End the response.

        Returns:
            True if this call ended the sink, False if it was already ended.
        """
        if self._ended:
            return False
        self._ended = True
        if not self.committed:
            self._commit()
        await self._close()
        return True

    async def _write(self, chunk: bytes) -> None:
        raise NotImplementedError

    async def _close(self) -> None:
        raise NotImplementedError


class BufferedSink(ResponseSink):
    """Collects the whole body in memory."""

    def __init__(self):
        super().__init__()
        self._body = bytearray()

    @property
    def body(self) -> bytes:
        return bytes(self._body)

    async def _write(self, chunk: bytes) -> None:
        self._body.extend(chunk)

    async def _close(self) -> None:
        pass


class ChannelSink(ResponseSink):
    """
    Flow-controlled pipe to a consumer.

    write() blocks once `max_chunks` chunks are waiting. The consumer reads
    with iter_chunks(); when it stops early the sink is detached and later
    writes are dropped instead of blocking forever.
    """

    def __init__(self, max_chunks: int = 16):
        super().__init__()
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_chunks)
        self._committed_event = asyncio.Event()
        self.detached = False

    def _commit(self) -> None:
        super()._commit()
        self._committed_event.set()

    async def wait_committed(self) -> None:
        """Wait until status and headers are final."""
        await self._committed_event.wait()

    async def _write(self, chunk: bytes) -> None:
        if self.detached:
            return
        await self._queue.put(chunk)

    async def _close(self) -> None:
        if self.detached:
            return
        await self._queue.put(_EOF)

    def detach(self) -> None:
        """Stop delivering chunks; wakes a writer blocked on a full queue."""
        self.detached = True
        while not self._queue.empty():
            self._queue.get_nowait()

    async def iter_chunks(self) -> AsyncIterator[bytes]:
        try:
            while True:
                chunk = await self._queue.get()
                if chunk is _EOF:
                    break
                yield chunk
        finally:
            self.detach()
