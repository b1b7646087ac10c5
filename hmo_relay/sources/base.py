import hashlib
from abc import ABC, abstractmethod
from typing import Any, Sequence

from hmo_relay.library.classifier import ClassifierRegistry


class SourceError(Exception):
    """Base exception for all backing sources."""
    pass


class BaseSource(ABC):
    """
    Base class for backing sources.

    A source belongs to one container and knows how to list the raw entries
    under it. Entries are opaque to the tree; the source's ``registry`` turns
    them into nodes.
    """

    registry: ClassifierRegistry

    @abstractmethod
    async def list_entries(self) -> Sequence[Any]:
        """Return the raw entries of this container, in display order."""
        pass


def make_identity(*parts: Any) -> str:
    """Derive a short, stable node identity from source-specific parts."""
    raw = ":".join(str(part) for part in parts)
    return hashlib.sha256(raw.encode()).hexdigest()[:16]
