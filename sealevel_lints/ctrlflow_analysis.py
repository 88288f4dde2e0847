# sealevel_lints/ctrlflow_analysis.py
"""
Control-flow analysis over a function's basic-block graph.

Principal analyses
------------------
- DominatorTree     -- block dominance, immediate dominators, set dominance
- back edges and natural loops (derived from dominance)
- reverse_postorder -- block visiting order for single-pass analyses

Dominance is decided by removal-reachability: block *a* dominates block *b*
iff *b* cannot be reached from the entry once *a* is removed from the graph.
That needs one bounded breadth-first search per block, O(n·(n+e)) in total,
and no iterative fixpoint.  Set dominance ("every entry→b path meets some
block of G") falls out of the same search with all of G removed at once.

Convention: a block that is unreachable from the entry is dominated by
every block (vacuously true: there is no entry→b path to contradict it).

References
----------
[1] Aho, Lam, Sethi, Ullman – "Compilers: Principles, Techniques, &
    Tools", 2e, §9.6 (natural loops), §9.7 (dominators).
"""

from __future__ import annotations

import logging
from collections import deque
from typing import (
    Dict,
    FrozenSet,
    Iterable,
    List,
    Optional,
    Set,
    Tuple,
)

from sealevel_lints.program_model import FunctionModel

_log = logging.getLogger(__name__)

Edge = Tuple[int, int]


def _successors(fn: FunctionModel) -> Dict[int, Tuple[int, ...]]:
    return {b.id: b.successors for b in fn.blocks}


def _predecessors(fn: FunctionModel) -> Dict[int, List[int]]:
    preds: Dict[int, List[int]] = {b.id: [] for b in fn.blocks}
    for b in fn.blocks:
        for s in b.successors:
            preds[s].append(b.id)
    return preds


def reachable_blocks(
    succ: Dict[int, Tuple[int, ...]],
    entry: int,
    removed: Iterable[int] = (),
) -> Set[int]:
    """Blocks reachable from *entry* without passing through *removed*.

    If the entry itself is removed nothing is reachable.
    """
    blocked = set(removed)
    if entry in blocked:
        return set()
    seen = {entry}
    work = deque([entry])
    while work:
        n = work.popleft()
        for s in succ.get(n, ()):
            if s not in seen and s not in blocked:
                seen.add(s)
                work.append(s)
    return seen


def reverse_postorder(fn: FunctionModel) -> List[int]:
    """Reachable blocks in reverse post-order, then unreachable ones by id."""
    if not fn.blocks:
        return []
    succ = _successors(fn)
    order: List[int] = []
    visited: Set[int] = {fn.entry}
    stack: List[Tuple[int, int]] = [(fn.entry, 0)]
    while stack:
        node, i = stack[-1]
        children = succ[node]
        if i < len(children):
            stack[-1] = (node, i + 1)
            child = children[i]
            if child not in visited:
                visited.add(child)
                stack.append((child, 0))
        else:
            stack.pop()
            order.append(node)
    order.reverse()
    order.extend(b.id for b in fn.blocks if b.id not in visited)
    return order


class DominatorTree:
    """
    Dominance oracle for one function.

    Attributes after .compute():
        dominators_of : Dict[block_id, FrozenSet[block_id]] -- every block
                        dominating the key, the key included
        idom          : Dict[block_id, block_id] -- immediate dominator
        reachable     : Set[block_id] -- blocks reachable from the entry

    Root convention
    ---------------
    The entry block's immediate dominator is set to *itself*
    (``self.idom[entry] == entry``).  Unreachable blocks have no entry in
    ``idom``.
    """

    def __init__(self, fn: FunctionModel):
        self.fn = fn
        self.entry = fn.entry
        self._succ = _successors(fn)
        self._pred = _predecessors(fn)
        self.dominators_of: Dict[int, FrozenSet[int]] = {}
        self.idom: Dict[int, int] = {}
        self.reachable: Set[int] = set()
        self._all: FrozenSet[int] = frozenset(self._succ)
        self._computed = False

    # ---- public API --------------------------------------------------

    def compute(self) -> "DominatorTree":
        """Compute dominator sets and immediate dominators."""
        if self._computed:
            return self
        if not self._succ:
            self._computed = True
            return self
        self.reachable = reachable_blocks(self._succ, self.entry)
        doms: Dict[int, Set[int]] = {b: set() for b in self.reachable}
        for a in self.reachable:
            if a == self.entry:
                cut_off = self.reachable
            else:
                cut_off = self.reachable - reachable_blocks(
                    self._succ, self.entry, removed=(a,))
            for b in cut_off:
                doms[b].add(a)
        self.dominators_of = {b: frozenset(d) for b, d in doms.items()}
        for b, d in self.dominators_of.items():
            if b == self.entry:
                self.idom[b] = b
                continue
            strict = d - {b}
            # The closest strict dominator is the one with the most dominators.
            self.idom[b] = max(strict, key=lambda x: len(self.dominators_of[x]))
        self._computed = True
        _log.debug("%s: dominance over %d blocks (%d reachable)",
                   self.fn.name, len(self._succ), len(self.reachable))
        return self

    def is_reachable(self, block_id: int) -> bool:
        self.compute()
        return block_id in self.reachable

    def dominates(self, a_id: int, b_id: int) -> bool:
        """Return True if *a* dominates *b* (a dom b).

        A block dominates itself; the entry dominates every block; every
        block dominates an unreachable one.
        """
        self.compute()
        if a_id == b_id:
            return True
        if b_id not in self.reachable:
            return True
        return a_id in self.dominators_of[b_id]

    def strictly_dominates(self, a_id: int, b_id: int) -> bool:
        """Return True if *a* strictly dominates *b*: a dom b and a ≠ b."""
        return a_id != b_id and self.dominates(a_id, b_id)

    def all_dominators(self, block_id: int) -> FrozenSet[int]:
        """Return every block that dominates *block_id* (including itself)."""
        self.compute()
        if block_id not in self.reachable:
            return self._all
        return self.dominators_of[block_id]

    def immediate_dominator(self, block_id: int) -> Optional[int]:
        self.compute()
        return self.idom.get(block_id)

    def set_dominates(self, blocks: Iterable[int], b_id: int) -> bool:
        """Return True if every entry→*b* path passes through one of *blocks*.

        With a single block this coincides with :meth:`dominates`.  With
        no blocks it holds only for unreachable *b*.
        """
        self.compute()
        group = set(blocks)
        if b_id in group or b_id not in self.reachable:
            return True
        if not group:
            return False
        return b_id not in reachable_blocks(self._succ, self.entry, removed=group)

    # ---- loops ---------------------------------------------------------

    def back_edges(self) -> List[Edge]:
        """Edges whose destination dominates their source."""
        self.compute()
        return [
            (src, dst)
            for src in sorted(self.reachable)
            for dst in self._succ[src]
            if self.dominates(dst, src)
        ]

    def natural_loops(self) -> Dict[Edge, FrozenSet[int]]:
        """Map each back edge to the blocks of its natural loop."""
        result: Dict[Edge, FrozenSet[int]] = {}
        for src, dst in self.back_edges():
            body = {dst}
            stack = [src]
            while stack:
                m = stack.pop()
                if m not in body:
                    body.add(m)
                    stack.extend(self._pred[m])
            result[(src, dst)] = frozenset(body)
        return result

    def loop_blocks(self) -> FrozenSet[int]:
        """Every block that belongs to some natural loop."""
        out: Set[int] = set()
        for body in self.natural_loops().values():
            out |= body
        return frozenset(out)


__all__ = [
    "DominatorTree",
    "reachable_blocks",
    "reverse_postorder",
]
