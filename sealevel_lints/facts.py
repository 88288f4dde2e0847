"""
Per-function analysis facts shared by the guard detector, the sink
classifier and the verdict engine.

A :class:`FunctionFacts` is built once per function: alias set, dominator
tree, and the block every expression is evaluated in.  All of it is
immutable after construction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import cached_property
from typing import Dict, FrozenSet, Iterator, Optional, Tuple

from sealevel_lints.alias_analysis import AccessPath, AliasSet, AliasTracker
from sealevel_lints.ctrlflow_analysis import DominatorTree
from sealevel_lints.program_model import (
    Expr,
    ExprKind,
    FunctionModel,
    ProgramModel,
    Statement,
    TypeDescriptor,
)

_log = logging.getLogger(__name__)


@dataclass
class FunctionFacts:
    program: ProgramModel
    fn: FunctionModel
    aliases: AliasSet
    domtree: DominatorTree
    expr_block: Dict[int, int]

    @classmethod
    def build(cls, program: ProgramModel, fn: FunctionModel) -> "FunctionFacts":
        fn.validate()
        expr_block: Dict[int, int] = {}
        for block_id, stmt in fn.statement_roots():
            for root in (stmt.target, stmt.value):
                if root is None:
                    continue
                for e in fn.walk(root):
                    expr_block.setdefault(e.id, block_id)
        return cls(
            program=program,
            fn=fn,
            aliases=AliasTracker(fn).run(),
            domtree=DominatorTree(fn).compute(),
            expr_block=expr_block,
        )

    # ---- iteration -----------------------------------------------------

    def located_exprs(self) -> Iterator[Tuple[int, Expr]]:
        """``(block_id, expr)`` for every expression some statement evaluates."""
        for expr_id in sorted(self.expr_block):
            yield self.expr_block[expr_id], self.fn.expr(expr_id)

    def statements(self) -> Iterator[Tuple[int, Statement]]:
        return self.fn.statement_roots()

    @cached_property
    def loop_blocks(self) -> FrozenSet[int]:
        return self.domtree.loop_blocks()

    # ---- queries -------------------------------------------------------

    def type_of(self, expr_id: Optional[int]) -> Optional[TypeDescriptor]:
        if expr_id is None:
            return None
        return self.program.type(self.fn.expr(expr_id).type_id)

    def path_of(self, expr_id: Optional[int]) -> Optional[AccessPath]:
        if expr_id is None:
            return None
        return self.aliases.path_of(expr_id)

    def is_zero_literal(self, expr_id: int) -> bool:
        e = self.fn.expr(expr_id)
        if e.kind is not ExprKind.LITERAL:
            return False
        return (type(e.value) is int and e.value == 0) or e.value == "0"


__all__ = ["FunctionFacts"]
