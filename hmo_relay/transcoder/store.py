import logging
import os
import tempfile
from typing import BinaryIO, Optional

logger = logging.getLogger(__name__)


class IntermediateStore:
    """
    Transient append-only file the encoder writes into and the relay reads from.

    The encoder only ever appends through its own handle on ``path``; readers
    open independent handles, so there is no shared in-memory buffer.
    """

    def __init__(self, directory: Optional[str] = None, prefix: str = "hmo_transcode_", suffix: str = ""):
        fd, self.path = tempfile.mkstemp(prefix=prefix, suffix=suffix, dir=directory)
        os.close(fd)
        self._released = False

    def __repr__(self) -> str:
        return f"IntermediateStore({self.path!r})"

    @property
    def released(self) -> bool:
        return self._released

    def size(self) -> int:
        """Current size in bytes; 0 once released."""
        try:
            return os.path.getsize(self.path)
        except FileNotFoundError:
            return 0

    def open_reader(self) -> BinaryIO:
        # Unbuffered so a read after a transient end-of-file sees newly appended bytes.
        return open(self.path, "rb", buffering=0)

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        try:
            os.unlink(self.path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Could not remove intermediate file %s: %s", self.path, e)
