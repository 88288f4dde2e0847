# tests/conftest.py
"""
Shared builders for the sealevel-lints test-suite.

``Solana`` registers the well-known Solana / Anchor types on a
ProgramBuilder so each test only declares its own program types.
"""

from __future__ import annotations

from typing import Optional, Sequence

import pytest

from sealevel_lints.checkers import LintRunner
from sealevel_lints.config import AnalysisConfig
from sealevel_lints.model_builder import ProgramBuilder
from sealevel_lints.program_model import (
    FACT_ACCOUNTS_STRUCT,
    FieldDef,
    ProgramModel,
    SourceLocation,
)
from sealevel_lints.rules import (
    ACCOUNT_INFO,
    ANCHOR_ACCOUNT,
    ANCHOR_CONTEXT,
    ANCHOR_PROGRAM,
    ANCHOR_SIGNER,
    ANCHOR_SYSVAR,
    Category,
)


class Solana:
    """Well-known types registered on one ProgramBuilder."""

    def __init__(self, pb: ProgramBuilder):
        self.pb = pb
        self.pubkey = pb.opaque("solana_program::pubkey::Pubkey")
        self.u8 = pb.primitive("u8")
        self.u64 = pb.primitive("u64")
        self.account_info = pb.opaque(ACCOUNT_INFO)
        self.token = pb.struct("anchor_spl::token::Token")
        self.program_token = pb.opaque(ANCHOR_PROGRAM, self.token)
        self.signer = pb.opaque(ANCHOR_SIGNER)
        self.clock = pb.struct("solana_program::clock::Clock")
        self.rent = pb.struct("solana_program::rent::Rent")
        self.slot_hashes = pb.opaque("solana_program::slot_hashes::SlotHashes")
        self.byte_array8 = pb.array(self.u8, 8)

    def result(self, type_id: int) -> int:
        return self.pb.opaque("core::result::Result", type_id)

    def account(self, inner: int) -> int:
        """``Account<'info, inner>``"""
        return self.pb.opaque(ANCHOR_ACCOUNT, inner)

    def sysvar(self, inner: int) -> int:
        return self.pb.opaque(ANCHOR_SYSVAR, inner)

    def accounts(self, name: str, fields: Sequence, line: int = 1) -> int:
        """An Anchor ``#[derive(Accounts)]`` struct."""
        return self.pb.struct(
            name, fields=fields, attributes=(FACT_ACCOUNTS_STRUCT,),
            location=SourceLocation("lib.rs", line),
        )

    def context(self, accounts: int) -> int:
        """``Context<accounts>``: exposes ``ctx.accounts``."""
        return self.pb.struct(ANCHOR_CONTEXT, fields=[("accounts", accounts)],
                              generic_args=(accounts,))


def field(name: str, type_id: Optional[int], *constraints: str,
          distinct: Sequence[str] = (), line: int = 0) -> FieldDef:
    return FieldDef(
        name=name,
        type_id=type_id,
        constraints=frozenset(constraints),
        distinct_from=frozenset(distinct),
        location=SourceLocation("lib.rs", line) if line else SourceLocation(),
    )


def run(program: ProgramModel, *categories: Category, jobs: int = 1):
    """Run only *categories* (all when empty) and return the diagnostics."""
    config = AnalysisConfig(enabled=frozenset(categories), jobs=jobs)
    return LintRunner(config=config).run(program).diagnostics


@pytest.fixture
def pb() -> ProgramBuilder:
    return ProgramBuilder()


@pytest.fixture
def sol(pb: ProgramBuilder) -> Solana:
    return Solana(pb)
