"""
Stream relay.

Copies the growing intermediate store of a ``TranscodeSession`` into a sink
while the encoder is still writing it. The encoder is usually slower than
the sink, so the relay regularly reaches end-of-file before the transcode is
done; it keeps polling while the session is alive, and once the session has
died it keeps going until everything the encoder wrote has been forwarded.
The relay only ever reads forward, never re-reading forwarded bytes.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import BinaryIO, Optional

from tqdm.asyncio import tqdm as tqdm_asyncio

from hmo_relay.configs import Settings, settings as default_settings
from hmo_relay.schemas import EncodingProfile
from hmo_relay.transcoder.encoder import Encoder, TranscodeError
from hmo_relay.transcoder.session import SessionStatus, TranscodeSession
from hmo_relay.transcoder.sinks import Sink

logger = logging.getLogger(__name__)


class SinkWriteFailure(TranscodeError):
    """The sink rejected a write; the session has been halted."""

    def __init__(self, message: str, bytes_forwarded: int, session: TranscodeSession):
        self.bytes_forwarded = bytes_forwarded
        self.session = session
        super().__init__(message)


class RelayStalled(TranscodeError):
    """The intermediate store stopped growing for longer than the configured stall timeout."""

    def __init__(self, message: str, bytes_forwarded: int, session: TranscodeSession):
        self.bytes_forwarded = bytes_forwarded
        self.session = session
        super().__init__(message)


@dataclass
class RelayResult:
    """Outcome of a relay that ran until its session finished."""

    bytes_forwarded: int
    status: SessionStatus
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.status is SessionStatus.COMPLETED

    def raise_for_status(self) -> None:
        """Raise the session's ``EncodeFailure`` or ``Halted``, if any."""
        if not self.ok and self.error is not None:
            raise self.error


class StreamRelay:
    """Drains one session's intermediate store into one sink."""

    def __init__(self, session: TranscodeSession, sink: Sink, settings: Optional[Settings] = None) -> None:
        settings = settings or default_settings
        self.session = session
        self.sink = sink
        self.poll_interval = settings.relay_poll_interval
        self.chunk_size = settings.relay_chunk_size
        self.stall_timeout = settings.relay_stall_timeout
        self.show_progress = settings.enable_streaming_progress
        self._bytes_forwarded = 0
        self._progress_bar = None
        self._last_size = 0
        self._last_growth = 0.0

    @property
    def bytes_forwarded(self) -> int:
        return self._bytes_forwarded

    async def run(self) -> RelayResult:
        """
        Forward bytes until the session is dead and nothing unread remains.

        Returns:
            RelayResult: bytes forwarded and the session's terminal status.

        Raises:
            SinkWriteFailure: If the sink rejects a write (the session is halted first).
            RelayStalled: If a stall timeout is configured and exceeded.
        """
        store = self.session.store
        logger.info("Starting stream copy from: %s", store.path)
        loop = asyncio.get_running_loop()
        self._last_growth = loop.time()

        reader = store.open_reader()
        if self.show_progress:
            self._progress_bar = tqdm_asyncio(
                unit="B",
                unit_scale=True,
                unit_divisor=1024,
                desc="Relaying",
                ncols=100,
                mininterval=1,
            )
        try:
            # Alive first: once the session is seen dead, the size read after it is final.
            while self.session.is_alive() or self._bytes_forwarded < store.size():
                await asyncio.sleep(self.poll_interval)
                await self._drain(reader)
                self._check_stall(loop.time())
        except asyncio.CancelledError:
            logger.info("Stream copy cancelled after %d bytes", self._bytes_forwarded)
            self.session.halt()
            raise
        finally:
            reader.close()
            if self._progress_bar is not None:
                self._progress_bar.close()

        result = RelayResult(self._bytes_forwarded, self.session.status, self.session.error)
        logger.info(
            "Stream copy completed, %d bytes copied, transcode %s", result.bytes_forwarded, result.status.value
        )
        return result

    async def _drain(self, reader: BinaryIO) -> None:
        while True:
            chunk = reader.read(self.chunk_size)
            if not chunk:
                return
            try:
                await self.sink.write(chunk)
            except Exception as e:
                logger.error("Stream copy failed after %d bytes: %s", self._bytes_forwarded, e)
                self.session.halt()
                raise SinkWriteFailure(
                    f"Sink write failed after {self._bytes_forwarded} bytes: {e}",
                    self._bytes_forwarded,
                    self.session,
                ) from e
            self._bytes_forwarded += len(chunk)
            if self._progress_bar is not None:
                self._progress_bar.update(len(chunk))

    def _check_stall(self, now: float) -> None:
        if self.stall_timeout is None or not self.session.is_alive():
            return
        size = self.session.store.size()
        if size != self._last_size:
            self._last_size = size
            self._last_growth = now
            return
        if now - self._last_growth >= self.stall_timeout:
            logger.error(
                "Transcode of %s stalled for %.1fs at %d bytes", self.session.display_name, now - self._last_growth, size
            )
            self.session.halt()
            raise RelayStalled(
                f"No transcode output for {self.stall_timeout}s", self._bytes_forwarded, self.session
            )


async def relay(session: TranscodeSession, sink: Sink, settings: Optional[Settings] = None) -> RelayResult:
    return await StreamRelay(session, sink, settings).run()


async def stream_transcode(
    source_identifier: str,
    sink: Sink,
    *,
    encoder: Encoder,
    profile: Optional[EncodingProfile] = None,
    settings: Optional[Settings] = None,
) -> RelayResult:
    """
    Transcode a source and relay it to a sink, releasing the intermediate store afterwards.

    Sink failures propagate as ``SinkWriteFailure``; encoder failures are
    reported in the returned ``RelayResult``.
    """
    settings = settings or default_settings
    session = TranscodeSession.start(source_identifier, profile, encoder=encoder, settings=settings)
    try:
        # Give the encoder a chance to start before copying from it.
        await asyncio.sleep(settings.transcode_startup_delay)
        return await relay(session, sink, settings)
    finally:
        session.release()
