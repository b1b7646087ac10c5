import asyncio
import logging
from typing import AsyncIterator, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class Sink(Protocol):
    """Append-only byte destination. Writes may fail; a sink is never rewound."""

    async def write(self, data: bytes) -> None:
        ...


class QueueSink:
    """
    Sink that hands chunks to a consumer iterating it (e.g. a streaming HTTP body).

    Once the consumer side goes away (``close()``, or the iterator being
    closed or cancelled) every further ``write`` raises ``ConnectionResetError``.
    """

    def __init__(self, maxsize: int = 64) -> None:
        self._queue: asyncio.Queue[bytes | None] = asyncio.Queue(maxsize)
        self._closed = False
        self._finished = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def write(self, data: bytes) -> None:
        if self._closed:
            raise ConnectionResetError("Sink consumer is gone")
        await self._queue.put(data)
        if self._closed:
            # The consumer left while we were waiting for room; the chunk was discarded.
            raise ConnectionResetError("Sink consumer is gone")

    async def finish(self) -> None:
        """Signal end of stream to the consumer."""
        if self._closed or self._finished:
            return
        self._finished = True
        await self._queue.put(None)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        # Discard pending chunks so blocked writers wake up and notice.
        while not self._queue.empty():
            self._queue.get_nowait()
        logger.debug("Sink closed by consumer")

    async def __aiter__(self) -> AsyncIterator[bytes]:
        try:
            while True:
                chunk = await self._queue.get()
                if chunk is None:
                    break
                yield chunk
        finally:
            self.close()
