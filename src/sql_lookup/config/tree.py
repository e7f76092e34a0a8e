"""
Typed, nested view of dotted configuration keys.

Configuration arrives as flat ``.properties`` keys
(``query.user.column.status.data-type=TEXT``) or as nested YAML mappings.
``ConfigNode`` folds both into one tree so the query compiler can walk
``query -> <id> -> column -> <name>`` instead of scanning key prefixes.

Manifesto:
    - **One shape:** Flat keys, nested mappings and mixes of both produce the
      same tree
    - **Value and children:** A node can carry a value and still have
      children (``a.b=1`` alongside ``a.b.c=2``)
    - **Strings only:** Leaf values are strings, as in a properties file;
      YAML scalars are converted on the way in

Examples:
    >>> tree = ConfigNode.from_mapping({
    ...     "query.user.sql": "SELECT status FROM users WHERE id = ?",
    ...     "query": {"user": {"search-data-type": "NUMBER"}},
    ... })
    >>> tree.value_of("query.user.search-data-type")
    'NUMBER'
    >>> sorted(tree.child("query.user").children)
    ['search-data-type', 'sql']
    >>> tree.flatten()["query.user.sql"]
    'SELECT status FROM users WHERE id = ?'

Tags:
    configuration, config-tree, properties, yaml, sql-lookup

Doc-Types:
    - API Reference
    - Configuration Guide
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from types import MappingProxyType
from typing import Any


def _to_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class ConfigNode:
    """A configuration key with an optional value and named children."""

    __slots__ = ("name", "value", "_children")

    def __init__(self, name: str = "", value: str | None = None):
        self.name = name
        self.value = value
        self._children: dict[str, ConfigNode] = {}

    # ── Construction ─────────────────────────────────────────────

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> ConfigNode:
        """Build a tree from flat dotted keys, nested mappings or a mix."""
        root = cls()
        root.merge(mapping)
        return root

    def merge(self, mapping: Mapping[str, Any], prefix: str = "") -> None:
        """Merge ``mapping`` into this tree; later values replace earlier ones."""
        for key, value in mapping.items():
            path = f"{prefix}.{_to_text(key)}" if prefix else _to_text(key)
            if isinstance(value, Mapping):
                self.merge(value, path)
            elif value is None:
                self._node_for(path)
            else:
                self.set(path, _to_text(value))

    def set(self, dotted_key: str, value: str) -> None:
        self._node_for(dotted_key).value = value

    def _node_for(self, dotted_key: str) -> ConfigNode:
        node = self
        for part in dotted_key.split("."):
            if not part:
                continue
            child = node._children.get(part)
            if child is None:
                child = ConfigNode(part)
                node._children[part] = child
            node = child
        return node

    # ── Access ───────────────────────────────────────────────────

    @property
    def children(self) -> Mapping[str, ConfigNode]:
        return MappingProxyType(self._children)

    def child(self, path: str) -> ConfigNode | None:
        """Descend along a dotted ``path``; None if any segment is missing."""
        node: ConfigNode | None = self
        for part in path.split("."):
            if node is None:
                return None
            if part:
                node = node._children.get(part)
        return node

    def value_of(self, path: str, default: str | None = None) -> str | None:
        node = self.child(path)
        if node is None or node.value is None:
            return default
        return node.value

    def __contains__(self, path: object) -> bool:
        return isinstance(path, str) and self.child(path) is not None

    def __iter__(self) -> Iterator[str]:
        return iter(self._children)

    # ── Views ────────────────────────────────────────────────────

    def flatten(self, prefix: str = "") -> dict[str, str]:
        """Return the flat dotted view of every node that has a value."""
        flat: dict[str, str] = {}
        if self.value is not None and prefix:
            flat[prefix] = self.value
        for name, node in self._children.items():
            flat.update(node.flatten(f"{prefix}.{name}" if prefix else name))
        return flat

    def __repr__(self) -> str:
        return f"ConfigNode({self.name!r}, value={self.value!r}, children={sorted(self._children)})"
