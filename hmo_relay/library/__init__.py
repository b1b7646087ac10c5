"""
Lazy hierarchical content tree.

- nodes: ContentNode, Item and Container, plus the library exceptions
- classifier: predicate registry mapping raw source entries to nodes
- tree: ContainerTree with path/identity lookup and preloading
"""

from hmo_relay.library.classifier import ClassifierRegistry, EntryKind, UnclassifiedEntry
from hmo_relay.library.nodes import (
    Container,
    ContentNode,
    Item,
    LibraryError,
    NodeKind,
    NotFound,
    SourceUnavailable,
)
from hmo_relay.library.tree import ContainerTree

__all__ = [
    "ClassifierRegistry",
    "Container",
    "ContainerTree",
    "ContentNode",
    "EntryKind",
    "Item",
    "LibraryError",
    "NodeKind",
    "NotFound",
    "SourceUnavailable",
    "UnclassifiedEntry",
]
