"""
sealevel_lints/alias_analysis.py
════════════════════════════════

Function-local, syntactic alias tracking over access paths.

An *access path* is a root local followed by projections: field names,
``*`` for a dereference and ``[]`` for an element.  Two expressions that
evaluate to the same access path (after alias expansion) name the same
storage.

The tracker makes one pass over the blocks in reverse post-order and
records, for every *simple* assignment::

    x = y            x = y.field          x = &y
    x = y.clone()    x = y.to_account_info()

the mapping ``x → path(y ...)``.  The first simple assignment to a local
wins.  Queries expand roots through the mapping transitively, so after
``a = b; c = a`` the locals ``c`` and ``b`` are equivalent.

Deliberately not handled: stores through heap places, generic calls,
re-assignment along back edges, anything across function boundaries.
Those are a controlled source of false negatives.

License: MIT — same as sealevel-lints.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterator, Optional, Tuple

from sealevel_lints.ctrlflow_analysis import reverse_postorder
from sealevel_lints.program_model import ExprKind, FunctionModel, StmtKind

_log = logging.getLogger(__name__)

DEREF = "*"
ELEMENT = "[]"

# Method calls that re-view the same storage.
SAFE_CONVERSIONS: FrozenSet[str] = frozenset({
    "to_account_info", "clone", "as_ref", "as_mut", "borrow", "borrow_mut",
    "try_borrow", "try_borrow_mut", "deref", "deref_mut", "to_owned",
    "into", "unwrap", "expect",
})

# Method calls that behave like a projection of their receiver.
PROJECTION_METHODS: Dict[str, str] = {
    "key": "key",
    "try_borrow_data": "data",
    "try_borrow_mut_data": "data",
    "data": "data",
    "try_borrow_lamports": "lamports",
    "try_borrow_mut_lamports": "lamports",
    "lamports": "lamports",
    "iter": ELEMENT,
    "iter_mut": ELEMENT,
    "get": ELEMENT,
    "get_mut": ELEMENT,
    "next": ELEMENT,
}


@dataclass(frozen=True)
class AccessPath:
    root: str
    projections: Tuple[str, ...] = ()

    def extend(self, *projections: str) -> "AccessPath":
        return AccessPath(self.root, self.projections + projections)

    def canonical(self) -> "AccessPath":
        """Drop dereference projections (auto-deref)."""
        if DEREF not in self.projections:
            return self
        return AccessPath(self.root, tuple(p for p in self.projections if p != DEREF))

    def parent(self) -> Optional["AccessPath"]:
        if not self.projections:
            return None
        return AccessPath(self.root, self.projections[:-1])

    @property
    def last(self) -> Optional[str]:
        return self.projections[-1] if self.projections else None

    def startswith(self, prefix: "AccessPath") -> bool:
        n = len(prefix.projections)
        return self.root == prefix.root and self.projections[:n] == prefix.projections

    def __str__(self) -> str:
        return ".".join((self.root,) + self.projections)


def raw_path(fn: FunctionModel, expr_id: int) -> Optional[AccessPath]:
    """Access path of an expression, before alias expansion.

    Returns None for expressions that do not denote storage (literals,
    comparisons, calls other than the known conversions, constructors).
    """
    e = fn.expr(expr_id)
    if e.kind is ExprKind.LOCAL:
        return AccessPath(e.local) if e.local else None
    if e.receiver is None:
        return None
    if e.kind is ExprKind.REF:
        return raw_path(fn, e.receiver)
    if e.kind is ExprKind.CALL:
        if e.name in SAFE_CONVERSIONS:
            return raw_path(fn, e.receiver)
        proj = PROJECTION_METHODS.get(e.name or "")
        if proj is None:
            return None
        base = raw_path(fn, e.receiver)
        return base.extend(proj) if base is not None else None
    base = raw_path(fn, e.receiver)
    if base is None:
        return None
    if e.kind is ExprKind.FIELD:
        return base.extend(e.name or "")
    if e.kind is ExprKind.DEREF:
        return base.extend(DEREF)
    if e.kind is ExprKind.INDEX:
        return base.extend(ELEMENT)
    return None


class AliasSet:
    """Result of :class:`AliasTracker`: local → access path it aliases."""

    def __init__(self, fn: FunctionModel, mapping: Dict[str, AccessPath],
                 definitions: Dict[str, int]):
        self.fn = fn
        self._map = mapping
        self._defs = definitions

    def canonical(self, path: AccessPath) -> AccessPath:
        """Expand alias roots transitively, then drop dereferences."""
        seen = set()
        while path.root in self._map and path.root not in seen:
            seen.add(path.root)
            src = self._map[path.root]
            path = AccessPath(src.root, src.projections + path.projections)
        return path.canonical()

    def path_of(self, expr_id: int) -> Optional[AccessPath]:
        raw = raw_path(self.fn, expr_id)
        return self.canonical(raw) if raw is not None else None

    def same_storage(self, a: int, b: int) -> bool:
        pa, pb = self.path_of(a), self.path_of(b)
        return pa is not None and pa == pb

    def definition_of(self, local: str) -> Optional[int]:
        """Value expression of the first assignment to *local*."""
        return self._defs.get(local)

    def origin_chain(self, expr_id: int) -> Iterator[int]:
        """Follow borrows, conversions and local definitions backwards.

        Yields *expr_id* first, then each expression it was derived from.
        """
        seen = set()
        cur: Optional[int] = expr_id
        while cur is not None and cur not in seen:
            seen.add(cur)
            yield cur
            e = self.fn.expr(cur)
            if e.kind in (ExprKind.REF, ExprKind.DEREF):
                cur = e.receiver
            elif e.kind is ExprKind.CALL and e.name in SAFE_CONVERSIONS:
                cur = e.receiver
            elif e.kind is ExprKind.LOCAL and e.local is not None:
                cur = self._defs.get(e.local)
            else:
                cur = None

    @property
    def aliases(self) -> Dict[str, AccessPath]:
        return {name: self.canonical(AccessPath(name)) for name in self._map}


class AliasTracker:
    """One pass over the function's blocks in reverse post-order."""

    def __init__(self, fn: FunctionModel):
        self.fn = fn

    def run(self) -> AliasSet:
        mapping: Dict[str, AccessPath] = {}
        definitions: Dict[str, int] = {}
        for block_id in reverse_postorder(self.fn):
            for stmt in self.fn.block(block_id).statements:
                if stmt.kind is not StmtKind.ASSIGN or stmt.target is None:
                    continue
                target = self.fn.expr(stmt.target)
                if target.kind is not ExprKind.LOCAL or not target.local:
                    continue
                name = target.local
                definitions.setdefault(name, stmt.value)
                src = raw_path(self.fn, stmt.value)
                if src is None or name in mapping or src.root == name:
                    continue
                mapping[name] = src
        _log.debug("%s: %d aliases, %d definitions",
                   self.fn.name, len(mapping), len(definitions))
        return AliasSet(self.fn, mapping, definitions)


__all__ = [
    "AccessPath",
    "AliasSet",
    "AliasTracker",
    "DEREF",
    "ELEMENT",
    "PROJECTION_METHODS",
    "SAFE_CONVERSIONS",
    "raw_path",
]
