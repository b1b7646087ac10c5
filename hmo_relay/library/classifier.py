"""
Entry classification.

Backing sources hand back opaque entries (paths, catalog records, ...). A
``ClassifierRegistry`` maps each entry onto the closed variant
``{ITEM, CONTAINER, UNKNOWN}`` by trying registered predicates in a fixed
order; the first rule whose predicate matches supplies the constructor for
the node. New source kinds register rules instead of touching the tree code.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional

from hmo_relay.library.nodes import ContentNode, LibraryError, NodeKind

logger = logging.getLogger(__name__)

Predicate = Callable[[Any], bool]
NodeFactory = Callable[[Any], ContentNode]


class EntryKind(str, Enum):
    ITEM = "item"
    CONTAINER = "container"
    UNKNOWN = "unknown"


class UnclassifiedEntry(LibraryError):
    """An entry did not match any registered rule where one was required."""

    def __init__(self, entry: Any, expected: Optional[EntryKind] = None):
        self.entry = entry
        self.expected = expected
        detail = f" as {expected.value}" if expected else ""
        super().__init__(f"Entry {entry!r} could not be classified{detail}")


@dataclass(frozen=True)
class ClassifierRule:
    kind: EntryKind
    predicate: Predicate
    factory: NodeFactory
    name: str


@dataclass(frozen=True)
class Classification:
    kind: EntryKind
    rule: Optional[ClassifierRule] = None

    @property
    def is_known(self) -> bool:
        return self.kind is not EntryKind.UNKNOWN


UNKNOWN = Classification(EntryKind.UNKNOWN)


class ClassifierRegistry:
    """Ordered table of predicate -> node constructor rules."""

    def __init__(self) -> None:
        self._rules: List[ClassifierRule] = []

    def __len__(self) -> int:
        return len(self._rules)

    @property
    def rules(self) -> List[ClassifierRule]:
        return list(self._rules)

    def register(
        self,
        kind: EntryKind,
        predicate: Predicate,
        factory: NodeFactory,
        name: Optional[str] = None,
    ) -> ClassifierRule:
        """Append a rule. Rules are tried in registration order."""
        if kind is EntryKind.UNKNOWN:
            raise ValueError("Rules must classify entries as ITEM or CONTAINER")
        rule = ClassifierRule(kind, predicate, factory, name or getattr(predicate, "__name__", repr(predicate)))
        self._rules.append(rule)
        return rule

    def classify(self, entry: Any) -> Classification:
        for rule in self._rules:
            try:
                matched = rule.predicate(entry)
            except Exception as e:
                logger.debug("Predicate %s failed on %r: %s", rule.name, entry, e)
                continue
            if matched:
                return Classification(rule.kind, rule)
        return UNKNOWN

    def build(self, entry: Any) -> Optional[ContentNode]:
        """Construct the node for an entry, or None when it is unknown."""
        classification = self.classify(entry)
        if not classification.is_known:
            return None
        node = classification.rule.factory(entry)
        _check_kind(node, classification.kind, classification.rule)
        return node

    def require(self, entry: Any, kind: EntryKind) -> ContentNode:
        """Like ``build`` but the entry must classify as ``kind``."""
        classification = self.classify(entry)
        if classification.kind is not kind:
            raise UnclassifiedEntry(entry, kind)
        node = classification.rule.factory(entry)
        _check_kind(node, kind, classification.rule)
        return node


def _check_kind(node: ContentNode, kind: EntryKind, rule: ClassifierRule) -> None:
    expected = NodeKind.ITEM if kind is EntryKind.ITEM else NodeKind.CONTAINER
    if node.kind is not expected:
        raise TypeError(f"Rule {rule.name} registered as {kind.value} built a {node.kind.value}")
