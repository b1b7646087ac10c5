"""
Transcode sessions.

A session runs one encoder invocation in the background and exposes its
progress through explicit accessors. The encoder is blocking, so it runs in a
worker thread driven by an asyncio task; the task never raises, it records a
terminal status instead. Cancellation is cooperative: ``halt()`` sets a
``threading.Event`` that the encoder polls at its checkpoints.

Status only moves forward::

    pending -> running -> completed | failed | halted
    pending -> failed | halted

A finished session is never restarted; start a new one instead.
"""

import asyncio
import logging
import threading
import time
from enum import Enum
from typing import Optional

from hmo_relay.configs import Settings, settings as default_settings
from hmo_relay.schemas import EncodingProfile
from hmo_relay.transcoder.encoder import EncodeFailure, Encoder, Halted, ProgressCallback, TranscodeError
from hmo_relay.transcoder.store import IntermediateStore
from hmo_relay.utils.http_utils import redact_url

logger = logging.getLogger(__name__)


class SessionStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    HALTED = "halted"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL


_TERMINAL = frozenset({SessionStatus.COMPLETED, SessionStatus.FAILED, SessionStatus.HALTED})

_TRANSITIONS = {
    SessionStatus.PENDING: frozenset({SessionStatus.RUNNING, SessionStatus.FAILED, SessionStatus.HALTED}),
    SessionStatus.RUNNING: _TERMINAL,
    SessionStatus.COMPLETED: frozenset(),
    SessionStatus.FAILED: frozenset(),
    SessionStatus.HALTED: frozenset(),
}


class TranscodeSession:
    """Handle on one background encode into an intermediate store."""

    def __init__(
        self,
        source_identifier: str,
        profile: EncodingProfile,
        encoder: Encoder,
        store: IntermediateStore,
        on_progress: Optional[ProgressCallback] = None,
    ) -> None:
        self.source_identifier = source_identifier
        self.display_name = redact_url(source_identifier)
        self.profile = profile
        self.encoder = encoder
        self.store = store
        self.progress = 0.0
        self.error: Optional[TranscodeError] = None
        self._on_progress = on_progress
        self._status = SessionStatus.PENDING
        self._halt = threading.Event()
        self._task: Optional[asyncio.Task] = None
        self._last_logged = 0.0

    def __repr__(self) -> str:
        return f"<TranscodeSession {self.display_name!r} {self._status.value}>"

    @classmethod
    def start(
        cls,
        source_identifier: str,
        profile: Optional[EncodingProfile] = None,
        *,
        encoder: Encoder,
        settings: Optional[Settings] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> "TranscodeSession":
        """
        Create a session and schedule its encode on the running event loop.

        Returns immediately; the encode proceeds in the background.
        """
        settings = settings or default_settings
        profile = profile or settings.default_profile
        store = IntermediateStore(settings.transcode_temp_dir, suffix=f".{profile.container_format}")
        session = cls(source_identifier, profile, encoder, store, on_progress=on_progress)
        session._task = asyncio.create_task(session._run(), name=f"transcode:{session.display_name}")
        return session

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def halted(self) -> bool:
        """Whether a halt has been requested (not necessarily observed yet)."""
        return self._halt.is_set()

    def is_alive(self) -> bool:
        return self._task is not None and not self._task.done()

    def halt(self) -> None:
        """Request cooperative cancellation. Safe to call any number of times."""
        if not self._halt.is_set():
            logger.info("Halting transcode of %s", self.display_name)
            self._halt.set()

    async def wait(self) -> SessionStatus:
        if self._task is not None:
            await asyncio.shield(self._task)
        return self._status

    def release(self) -> None:
        """Delete the intermediate store. Halts the encoder first if it is still running."""
        if self.is_alive():
            self.halt()
        self.store.release()

    def _set_status(self, status: SessionStatus) -> None:
        if status not in _TRANSITIONS[self._status]:
            raise RuntimeError(f"Invalid transcode status transition {self._status.value} -> {status.value}")
        self._status = status

    def _report_progress(self, fraction: float) -> None:
        self.progress = fraction
        if self._on_progress is not None:
            self._on_progress(fraction)
        now = time.monotonic()
        if now - self._last_logged >= 5 or fraction >= 1.0:
            self._last_logged = now
            logger.info("Transcoding %s: %.1f%%", self.display_name, fraction * 100)

    async def _run(self) -> None:
        if self._halt.is_set():
            self._set_status(SessionStatus.HALTED)
            self.error = Halted(f"Transcode of {self.display_name} halted before start")
            return

        self._set_status(SessionStatus.RUNNING)
        logger.info("Starting transcode of %s to: %s", self.display_name, self.store.path)
        try:
            await asyncio.to_thread(
                self.encoder.encode,
                self.source_identifier,
                self.store.path,
                self.profile,
                self._report_progress,
                self._halt,
            )
        except Halted as e:
            logger.info("Transcode of %s halted at %d bytes", self.display_name, self.store.size())
            self.error = e
            self._set_status(SessionStatus.HALTED)
        except asyncio.CancelledError:
            # The worker thread cannot be interrupted; make it stop at its next checkpoint.
            self.halt()
            self.error = Halted(f"Transcode of {self.display_name} cancelled")
            self._set_status(SessionStatus.HALTED)
            raise
        except Exception as e:
            logger.error("Transcode of %s failed: %s", self.display_name, redact_url(e))
            self.error = e if isinstance(e, EncodeFailure) else EncodeFailure(redact_url(e))
            if self.error is not e:
                self.error.__cause__ = e
            self._set_status(SessionStatus.FAILED)
        else:
            logger.info(
                "Transcoding of %s completed, transcoded file size: %d", self.display_name, self.store.size()
            )
            self._set_status(SessionStatus.COMPLETED)
