"""
Content tree nodes.

A node is either an ``Item`` (one playable media resource) or a ``Container``
(a grouping of items and sub-containers). Containers backed by a source
populate their children lazily, exactly once, the first time they are asked
for them.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Optional

from hmo_relay.const import CONTAINER_CONTENT_TYPE, ITEM_CONTENT_TYPE
from hmo_relay.schemas import ContentNodeSchema

if TYPE_CHECKING:
    from hmo_relay.library.classifier import ClassifierRegistry
    from hmo_relay.sources.base import BaseSource

logger = logging.getLogger(__name__)


class LibraryError(Exception):
    """Base exception for content tree failures."""


class NotFound(LibraryError):
    """No node exists at the requested path or identity."""


class SourceUnavailable(LibraryError):
    """The backing source of a container could not be listed."""

    def __init__(self, container: "Container", message: str):
        self.container = container
        super().__init__(message)


class NodeKind(str, Enum):
    ITEM = "item"
    CONTAINER = "container"


class ContentNode:
    kind: NodeKind

    def __init__(
        self,
        identity: str,
        title: str,
        *,
        content_type: str,
        created_at: Optional[datetime] = None,
        modified_at: Optional[datetime] = None,
    ) -> None:
        self.identity = identity
        self.title = title
        self.content_type = content_type
        self.created_at = created_at
        self.modified_at = modified_at
        self.populated = False
        self._parent: Optional[weakref.ref[Container]] = None
        self._children: list[ContentNode] = []

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.identity!r} {self.title!r}>"

    @property
    def parent(self) -> Optional["Container"]:
        """The owning container, or None for a root (or when the tree is gone)."""
        return self._parent() if self._parent is not None else None

    @property
    def is_item(self) -> bool:
        return self.kind is NodeKind.ITEM

    @property
    def is_container(self) -> bool:
        return self.kind is NodeKind.CONTAINER

    def ancestors(self) -> list[ContentNode]:
        """Nodes from the root down to (and including) this node."""
        chain = []
        node: Optional[ContentNode] = self
        while node is not None:
            chain.append(node)
            node = node.parent
        chain.reverse()
        return chain

    @property
    def path(self) -> tuple[str, ...]:
        """Titles from just below the root down to this node; empty for the root."""
        return tuple(node.title for node in self.ancestors()[1:])

    @property
    def title_path(self) -> str:
        return "/".join(node.title for node in self.ancestors())

    @property
    def loaded_children(self) -> list[ContentNode]:
        """Children populated so far, without touching the backing source."""
        return list(self._children)

    async def get_children(self) -> list[ContentNode]:
        return list(self._children)

    def to_schema(self) -> ContentNodeSchema:
        return ContentNodeSchema(
            identity=self.identity,
            kind=self.kind.value,
            title=self.title,
            content_type=self.content_type,
            created_at=self.created_at,
            modified_at=self.modified_at,
            path=list(self.path),
            populated=self.populated,
            child_count=len(self._children) if self.populated and self.is_container else None,
        )


class Item(ContentNode):
    """A leaf node that can be handed to a transcoder."""

    kind = NodeKind.ITEM

    def __init__(
        self,
        identity: str,
        title: str,
        source_identifier: str,
        *,
        content_type: str = ITEM_CONTENT_TYPE,
        created_at: Optional[datetime] = None,
        modified_at: Optional[datetime] = None,
        description: Optional[str] = None,
        duration: Optional[int] = None,
        source_size: Optional[int] = None,
    ) -> None:
        super().__init__(
            identity,
            title,
            content_type=content_type,
            created_at=created_at,
            modified_at=modified_at,
        )
        self.source_identifier = source_identifier
        self.description = description
        self.duration = duration  # milliseconds
        self.source_size = source_size
        # Items never have children, so there is nothing to populate.
        self.populated = True

    def to_schema(self) -> ContentNodeSchema:
        schema = super().to_schema()
        return schema.model_copy(
            update={
                "description": self.description,
                "duration": self.duration,
                "source_size": self.source_size,
            }
        )


class Container(ContentNode):
    """
    A grouping node.

    Containers created with a ``source`` start unpopulated and fetch their
    children on first access. Containers without a source (the root, static
    groupings) are populated from construction and filled with ``add_child``.
    """

    kind = NodeKind.CONTAINER

    def __init__(
        self,
        identity: str,
        title: str,
        *,
        source: Optional["BaseSource"] = None,
        registry: Optional["ClassifierRegistry"] = None,
        content_type: str = CONTAINER_CONTENT_TYPE,
        created_at: Optional[datetime] = None,
        modified_at: Optional[datetime] = None,
    ) -> None:
        super().__init__(
            identity,
            title,
            content_type=content_type,
            created_at=created_at,
            modified_at=modified_at,
        )
        if source is not None and registry is None:
            raise ValueError("A container backed by a source needs a classifier registry")
        self.source = source
        self.registry = registry
        self.populated = source is None
        self._lock = asyncio.Lock()

    def add_child(self, node: ContentNode) -> ContentNode:
        node._parent = weakref.ref(self)
        self._children.append(node)
        return node

    async def get_children(self) -> list[ContentNode]:
        if self.populated:
            return list(self._children)

        async with self._lock:
            # Another caller may have finished populating while we waited.
            if not self.populated:
                await self._populate()

        return list(self._children)

    async def _populate(self) -> None:
        logger.debug("Loading children for %s", self.title_path)
        try:
            entries = await self.source.list_entries()
        except Exception as e:
            logger.error("Failed to list %s: %s", self.title_path, e)
            raise SourceUnavailable(self, f"Unable to list entries for {self.title_path}: {e}") from e

        children = []
        for entry in entries:
            try:
                node = self.registry.build(entry)
            except Exception as e:
                logger.warning("Skipping malformed entry %r in %s: %s", entry, self.title_path, e)
                continue
            if node is None:
                logger.warning("Unknown type for %r in %s", entry, self.title_path)
                continue
            children.append(node)

        for node in children:
            self.add_child(node)
        self.populated = True
        logger.debug("Loaded %d children for %s", len(children), self.title_path)
