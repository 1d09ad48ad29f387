"""Structural interning of IR nodes.

Identity is structural: two nodes that compare equal (metadata excluded)
get the same id. One Interner lives on each run Context; there is no
process-wide table.
"""

from __future__ import annotations

from typing import Hashable

from .ir import Module, Type, walk_types


class Interner:
    """Dict-backed table from structural key to stable id.

    Invariants:
    - intern(a) == intern(b) iff a == b
    - ids are dense, assigned in first-seen order, starting at 0
    - canonical(x) returns the first instance interned for x's key
    """

    def __init__(self) -> None:
        self._ids: dict[Hashable, int] = {}
        self._nodes: list[Hashable] = []

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node: object) -> bool:
        try:
            return node in self._ids
        except TypeError:
            return False

    def intern(self, node: Hashable) -> int:
        """Stable id for node. Types also register every nested type."""
        if isinstance(node, Type):
            for nested in walk_types(node):
                self._register(nested)
            return self._ids[node]
        return self._register(node)

    def _register(self, node: Hashable) -> int:
        found = self._ids.get(node)
        if found is not None:
            return found
        new_id = len(self._nodes)
        self._ids[node] = new_id
        self._nodes.append(node)
        return new_id

    def get(self, node_id: int) -> Hashable:
        return self._nodes[node_id]

    def canonical(self, node: Hashable) -> Hashable:
        """The stored instance equal to node, interning it first if new."""
        return self._nodes[self.intern(node)]

    def share(self, typ: Type) -> Type:
        """Canonical instance for typ when sharing cannot lose information.

        Metadata is excluded from identity, so a type carrying docs or
        provenance is interned but returned as-is.
        """
        canon = self.canonical(typ)
        if typ.metadata.is_empty() and isinstance(canon, Type) and canon.metadata.is_empty():
            return canon
        return typ

    def intern_module(self, module: Module) -> int:
        """Intern every type reachable from a module's items; returns the count added."""
        before = len(self._nodes)
        for _, mod in module.walk():
            for item in mod.items:
                for typ in item.types():
                    self.intern(typ)
        return len(self._nodes) - before
