import logging
from collections import deque
from typing import Iterable, Optional, Sequence

from hmo_relay.const import SERVER_CONTENT_TYPE
from hmo_relay.library.nodes import Container, ContentNode, NotFound, SourceUnavailable

logger = logging.getLogger(__name__)


class ContainerTree:
    """
    Root of the library hierarchy.

    Lookups walk the tree by title path or by identity. Children are loaded
    through each container's own lock, so unrelated subtrees populate
    concurrently and a given container is only ever listed once.
    """

    def __init__(self, title: str = "hmo-relay", root: Optional[Container] = None):
        self.root = root or Container("root", title, content_type=SERVER_CONTENT_TYPE)

    def add_application(self, container: Container) -> Container:
        self.root.add_child(container)
        return container

    async def children(self, node: ContentNode) -> list[ContentNode]:
        return await node.get_children()

    async def resolve(self, path: Sequence[str] | str) -> ContentNode:
        """
        Find a node by the titles leading to it from the root.

        Raises:
            NotFound: If any segment has no matching child.
            SourceUnavailable: If a container on the way cannot be listed.
        """
        segments = _split_path(path)
        node: ContentNode = self.root
        for depth, title in enumerate(segments):
            children = await self.children(node)
            match = next((child for child in children if child.title == title), None)
            if match is None:
                walked = "/".join(segments[: depth + 1])
                raise NotFound(f"No node at {walked!r} under {self.root.title!r}")
            node = match
        return node

    def find(self, identity: str) -> ContentNode:
        """Breadth-first search of already populated nodes, never loading anything."""
        for node in self.walk_loaded():
            if node.identity == identity:
                return node
        raise NotFound(f"No loaded node with identity {identity!r}")

    def walk_loaded(self) -> Iterable[ContentNode]:
        queue = deque([self.root])
        while queue:
            node = queue.popleft()
            yield node
            queue.extend(node.loaded_children)

    async def preload(self) -> int:
        """
        Populate every container in the tree.

        Containers whose source fails are logged and skipped. Returns the
        number of containers that were loaded.
        """
        logger.info("Preloading lazily cached containers")
        loaded = 0
        queue = deque([self.root])
        while queue:
            node = queue.popleft()
            if not node.is_container:
                continue
            logger.debug("Loading children for %s", node.title_path)
            try:
                children = await self.children(node)
            except SourceUnavailable as e:
                logger.warning("Skipping %s during preload: %s", node.title_path, e)
                continue
            loaded += 1
            queue.extend(children)
        logger.info("Preload complete, %d containers loaded", loaded)
        return loaded


def _split_path(path: Sequence[str] | str) -> list[str]:
    if isinstance(path, str):
        return [segment for segment in path.split("/") if segment]
    return list(path)
