# tests/test_checkers.py
"""
End-to-end tests for sealevel_lints.checkers: every rule category run
through LintRunner on small hand-built program models, plus the runner's
ordering, skipping and parallelism guarantees.
"""

import pytest

from sealevel_lints.checkers import LintRunner, VerdictEngine, analyse
from sealevel_lints.config import AnalysisConfig
from sealevel_lints.diagnostics import Confidence, DiagnosticSeverity
from sealevel_lints.errors import ModelError
from sealevel_lints.program_model import (
    BasicBlock,
    Expr,
    ExprKind,
    FunctionModel,
    ProgramModel,
    SourceLocation,
    Statement,
    StmtKind,
)
from sealevel_lints.rules import INSTRUCTION, Category, RuleRegistry
from sealevel_lints.sinks import BUMP_FROM_ANCHOR_ACCOUNT, BUMP_FROM_STRUCT
from tests.conftest import field, run


def account_field(fb, name):
    """``ctx.accounts.<name>``"""
    return fb.field(fb.field(fb.var("ctx"), "accounts"), name)


# ═════════════════════════════════════════════════════════════════════════
#  arbitrary-cpi
# ═════════════════════════════════════════════════════════════════════════

class TestArbitraryCpi:

    def _instruction(self, pb, sol):
        return pb.struct(INSTRUCTION, [("program_id", sol.pubkey)])

    def _invoke(self, fb, ix_type):
        program_id = fb.method(fb.var("token_program"), "key")
        fb.let("ix", fb.construct(ix_type, program_id=program_id))
        fb.eval(fb.call("solana_program::program::invoke", fb.ref(fb.var("ix"))))

    def _key_check(self, fb):
        fb.eval(fb.compare("!=", fb.method(fb.var("token_program"), "key"),
                           fb.call("spl_token::id")))

    def test_unchecked_program_id(self, pb, sol):
        ix = self._instruction(pb, sol)
        fb = pb.function("cpi", "lib.rs", 1).param("token_program", sol.account_info)
        fb.at(12)
        self._invoke(fb, ix)
        diags = run(pb.add(fb).build(), Category.ARBITRARY_CPI)
        assert len(diags) == 1
        d = diags[0]
        assert d.error_id == "arbitraryCpi"
        assert d.message == "program_id may not be checked"
        assert d.severity is DiagnosticSeverity.ERROR
        assert d.location == SourceLocation("lib.rs", 12)
        assert d.function == "cpi"
        assert d.evidence["paths"] == ["token_program.key"]

    def test_checked_before_invoke(self, pb, sol):
        ix = self._instruction(pb, sol)
        fb = pb.function("cpi", "lib.rs").param("token_program", sol.account_info)
        self._key_check(fb)
        self._invoke(fb, ix)
        assert run(pb.add(fb).build(), Category.ARBITRARY_CPI) == []

    def test_require_keys_eq_counts_as_check(self, pb, sol):
        ix = self._instruction(pb, sol)
        fb = pb.function("cpi", "lib.rs").param("token_program", sol.account_info)
        fb.eval(fb.call("require_keys_eq",
                        fb.method(fb.var("token_program"), "key"),
                        fb.call("spl_token::ID")))
        self._invoke(fb, ix)
        assert run(pb.add(fb).build(), Category.ARBITRARY_CPI) == []

    def test_check_on_one_branch_only(self, pb, sol):
        ix = self._instruction(pb, sol)
        fb = pb.function("cpi", "lib.rs").param("token_program", sol.account_info)
        then_b = fb.block()
        self._key_check(fb)
        else_b = fb.block()
        join = fb.block()
        self._invoke(fb, ix)
        fb.edges((0, then_b), (0, else_b), (then_b, join), (else_b, join))
        diags = run(pb.add(fb).build(), Category.ARBITRARY_CPI)
        assert len(diags) == 1
        assert diags[0].confidence is Confidence.MEDIUM

    def test_check_on_both_branches(self, pb, sol):
        ix = self._instruction(pb, sol)
        fb = pb.function("cpi", "lib.rs").param("token_program", sol.account_info)
        then_b = fb.block()
        self._key_check(fb)
        else_b = fb.block()
        self._key_check(fb)
        join = fb.block()
        self._invoke(fb, ix)
        fb.edges((0, then_b), (0, else_b), (then_b, join), (else_b, join))
        assert run(pb.add(fb).build(), Category.ARBITRARY_CPI) == []

    def test_failing_branch_returns_early(self, pb, sol):
        ix = self._instruction(pb, sol)
        fb = pb.function("cpi", "lib.rs").param("token_program", sol.account_info)
        ok = fb.block()
        self._key_check(fb)
        fb.block()  # error return, no successor
        join = fb.block()
        self._invoke(fb, ix)
        fb.edges((0, ok), (0, 2), (ok, join))
        assert run(pb.add(fb).build(), Category.ARBITRARY_CPI) == []

    def test_check_after_invoke_does_not_count(self, pb, sol):
        ix = self._instruction(pb, sol)
        fb = pb.function("cpi", "lib.rs").param("token_program", sol.account_info)
        self._invoke(fb, ix)
        after = fb.block()
        self._key_check(fb)
        fb.edge(0, after)
        assert len(run(pb.add(fb).build(), Category.ARBITRARY_CPI)) == 1

    def test_check_through_alias(self, pb, sol):
        ix = self._instruction(pb, sol)
        fb = pb.function("cpi", "lib.rs").param("token_program", sol.account_info)
        fb.let("prog", fb.method(fb.var("token_program"), "clone"))
        fb.eval(fb.compare("==", fb.method(fb.var("prog"), "key"),
                           fb.call("spl_token::id")))
        self._invoke(fb, ix)
        assert run(pb.add(fb).build(), Category.ARBITRARY_CPI) == []

    def test_cpi_context_with_program_wrapper(self, pb, sol):
        accts = sol.accounts("crate::Transfer", [field("token_program", sol.program_token)])
        fb = pb.function("transfer", "lib.rs").param("ctx", sol.context(accts))
        cpi_program = fb.method(account_field(fb, "token_program"), "to_account_info")
        fb.eval(fb.call("CpiContext::new", cpi_program, fb.var("cpi_accounts")))
        assert run(pb.add(fb).build(), Category.ARBITRARY_CPI) == []

    def test_cpi_context_with_unchecked_account(self, pb, sol):
        accts = sol.accounts("crate::Transfer", [field("token_program", sol.account_info)])
        fb = pb.function("transfer", "lib.rs").param("ctx", sol.context(accts))
        fb.at(30)
        cpi_program = fb.method(account_field(fb, "token_program"), "to_account_info")
        fb.eval(fb.call("CpiContext::new_with_signer", cpi_program,
                        fb.var("cpi_accounts"), fb.var("seeds")))
        diags = run(pb.add(fb).build(), Category.ARBITRARY_CPI)
        assert len(diags) == 1
        assert diags[0].evidence["paths"] == ["ctx.accounts.token_program"]
        assert "ctx.accounts.token_program" in diags[0].hint

    def test_address_constraint(self, pb, sol):
        accts = sol.accounts("crate::Transfer", [
            field("token_program", sol.account_info, "address")])
        fb = pb.function("transfer", "lib.rs").param("ctx", sol.context(accts))
        cpi_program = fb.method(account_field(fb, "token_program"), "to_account_info")
        fb.eval(fb.call("CpiContext::new", cpi_program, fb.var("cpi_accounts")))
        assert run(pb.add(fb).build(), Category.ARBITRARY_CPI) == []


# ═════════════════════════════════════════════════════════════════════════
#  insecure-account-close
# ═════════════════════════════════════════════════════════════════════════

class TestInsecureAccountClose:

    def _close(self, fb, name="account"):
        lamports = fb.deref(fb.deref(
            fb.method(fb.field(fb.var(name), "lamports"), "borrow_mut")))
        fb.assign(lamports, fb.literal(0))

    def test_lamports_zeroed_without_clearing_data(self, pb, sol):
        fb = pb.function("close", "lib.rs").param("account", sol.account_info)
        fb.at(20)
        self._close(fb)
        diags = run(pb.add(fb).build(), Category.INSECURE_ACCOUNT_CLOSE)
        assert len(diags) == 1
        assert diags[0].message == (
            "attempt to close an account without also clearing its data")
        assert diags[0].location.line == 20
        assert diags[0].hint.startswith("zero `account.data`")

    def test_data_zeroed_in_loop(self, pb, sol):
        fb = pb.function("close", "lib.rs").param("account", sol.account_info)
        self._close(fb)
        fb.let("data", fb.method(fb.var("account"), "try_borrow_mut_data"))
        header = fb.block()
        body = fb.block()
        fb.assign(fb.index(fb.var("data"), fb.var("i")), fb.literal(0))
        exit_b = fb.block()
        fb.edges((0, header), (header, body), (body, header), (header, exit_b))
        assert run(pb.add(fb).build(), Category.INSECURE_ACCOUNT_CLOSE) == []

    def test_zero_store_outside_loop_is_not_a_clear(self, pb, sol):
        fb = pb.function("close", "lib.rs").param("account", sol.account_info)
        self._close(fb)
        fb.let("data", fb.method(fb.var("account"), "try_borrow_mut_data"))
        fb.assign(fb.index(fb.var("data"), fb.literal(0)), fb.literal(0))
        assert len(run(pb.add(fb).build(), Category.INSECURE_ACCOUNT_CLOSE)) == 1

    @pytest.mark.parametrize("value", [False, 0.0])
    def test_non_integer_zero_does_not_close(self, pb, sol, value):
        fb = pb.function("close", "lib.rs").param("account", sol.account_info)
        lamports = fb.deref(fb.deref(
            fb.method(fb.field(fb.var("account"), "lamports"), "borrow_mut")))
        fb.assign(lamports, fb.literal(value))
        assert run(pb.add(fb).build(), Category.INSECURE_ACCOUNT_CLOSE) == []

    @pytest.mark.parametrize("value", [False, 0.0])
    def test_non_integer_zero_store_is_not_a_clear(self, pb, sol, value):
        fb = pb.function("close", "lib.rs").param("account", sol.account_info)
        self._close(fb)
        fb.let("data", fb.method(fb.var("account"), "try_borrow_mut_data"))
        header = fb.block()
        body = fb.block()
        fb.assign(fb.index(fb.var("data"), fb.var("i")), fb.literal(value))
        exit_b = fb.block()
        fb.edges((0, header), (header, body), (body, header), (header, exit_b))
        assert len(run(pb.add(fb).build(), Category.INSECURE_ACCOUNT_CLOSE)) == 1

    def test_data_filled_with_zero(self, pb, sol):
        fb = pb.function("close", "lib.rs").param("account", sol.account_info)
        self._close(fb)
        data = fb.method(fb.var("account"), "try_borrow_mut_data")
        fb.eval(fb.method(fb.deref(data), "fill", fb.literal(0)))
        assert run(pb.add(fb).build(), Category.INSECURE_ACCOUNT_CLOSE) == []

    def test_clearing_another_account_does_not_count(self, pb, sol):
        fb = pb.function("close", "lib.rs")
        fb.param("account", sol.account_info).param("other", sol.account_info)
        self._close(fb)
        data = fb.method(fb.var("other"), "try_borrow_mut_data")
        fb.eval(fb.method(data, "fill", fb.literal(0)))
        assert len(run(pb.add(fb).build(), Category.INSECURE_ACCOUNT_CLOSE)) == 1

    def test_closed_account_discriminator(self, pb, sol):
        fb = pb.function("force_defund", "lib.rs").param("account", sol.account_info)
        fb.local("CLOSED_ACCOUNT_DISCRIMINATOR", sol.byte_array8)
        fb.let("data", fb.method(fb.var("account"), "try_borrow_mut_data"))
        fb.eval(fb.compare("!=", fb.var("discriminator"),
                           fb.var("CLOSED_ACCOUNT_DISCRIMINATOR")))
        fb.eval(fb.method(fb.index(fb.var("data")), "copy_from_slice",
                          fb.ref(fb.var("CLOSED_ACCOUNT_DISCRIMINATOR"))))
        self._close(fb)
        assert run(pb.add(fb).build(), Category.INSECURE_ACCOUNT_CLOSE) == []


# ═════════════════════════════════════════════════════════════════════════
#  missing-owner-check
# ═════════════════════════════════════════════════════════════════════════

class TestMissingOwnerCheck:

    def _read_vault(self, fb):
        fb.let("data", fb.method(account_field(fb, "vault"), "try_borrow_data"))

    def test_unchecked_account_info(self, pb, sol):
        accts = sol.accounts("crate::Withdraw", [field("vault", sol.account_info)])
        fb = pb.function("withdraw", "lib.rs").param("ctx", sol.context(accts))
        fb.at(40)
        self._read_vault(fb)
        diags = run(pb.add(fb).build(), Category.MISSING_OWNER_CHECK)
        assert len(diags) == 1
        assert diags[0].message == (
            "this Account struct is used but there is no check on its owner field")
        assert diags[0].location.line == 40
        assert diags[0].cwe == 283

    def test_repeated_uses_are_reported_once(self, pb, sol):
        accts = sol.accounts("crate::Withdraw", [field("vault", sol.account_info)])
        fb = pb.function("withdraw", "lib.rs").param("ctx", sol.context(accts))
        self._read_vault(fb)
        self._read_vault(fb)
        assert len(run(pb.add(fb).build(), Category.MISSING_OWNER_CHECK)) == 1

    def test_owner_field_read(self, pb, sol):
        accts = sol.accounts("crate::Withdraw", [field("vault", sol.account_info)])
        fb = pb.function("withdraw", "lib.rs").param("ctx", sol.context(accts))
        fb.eval(fb.compare("==", fb.field(account_field(fb, "vault"), "owner"),
                           fb.var("program_id")))
        self._read_vault(fb)
        assert run(pb.add(fb).build(), Category.MISSING_OWNER_CHECK) == []

    def test_owner_constraint(self, pb, sol):
        accts = sol.accounts("crate::Withdraw", [
            field("vault", sol.account_info, "owner")])
        fb = pb.function("withdraw", "lib.rs").param("ctx", sol.context(accts))
        self._read_vault(fb)
        assert run(pb.add(fb).build(), Category.MISSING_OWNER_CHECK) == []

    def test_owner_of_other_account_does_not_count(self, pb, sol):
        accts = sol.accounts("crate::Withdraw", [
            field("vault", sol.account_info), field("other", sol.account_info)])
        fb = pb.function("withdraw", "lib.rs").param("ctx", sol.context(accts))
        fb.eval(fb.field(account_field(fb, "other"), "owner"))
        self._read_vault(fb)
        diags = run(pb.add(fb).build(), Category.MISSING_OWNER_CHECK)
        assert [d.evidence["paths"] for d in diags] == [["ctx.accounts.vault"]]

    def test_anchor_account_converted(self, pb, sol):
        vault = pb.struct("crate::Vault", [("amount", sol.u64)])
        accts = sol.accounts("crate::Withdraw", [field("vault", sol.account(vault))])
        fb = pb.function("withdraw", "lib.rs").param("ctx", sol.context(accts))
        info = fb.method(account_field(fb, "vault"), "to_account_info")
        fb.eval(fb.method(info, "try_borrow_data"))
        assert run(pb.add(fb).build(), Category.MISSING_OWNER_CHECK) == []


# ═════════════════════════════════════════════════════════════════════════
#  missing-signer-check
# ═════════════════════════════════════════════════════════════════════════

class TestMissingSignerCheck:

    def _handler(self, pb, sol, *fields):
        accts = sol.accounts("crate::Update", list(fields))
        fb = pb.function("update", "lib.rs", 50).param("ctx", sol.context(accts))
        fb.eval(fb.field(account_field(fb, "authority"), "key"))
        return fb

    def test_no_signer(self, pb, sol):
        fb = self._handler(pb, sol, field("authority", sol.account_info))
        diags = run(pb.add(fb).build(), Category.MISSING_SIGNER_CHECK)
        assert len(diags) == 1
        assert diags[0].message == "this function lacks a use of `is_signer`"
        assert diags[0].location == SourceLocation("lib.rs", 50)

    def test_signer_account_type(self, pb, sol):
        fb = self._handler(pb, sol, field("authority", sol.signer))
        assert run(pb.add(fb).build(), Category.MISSING_SIGNER_CHECK) == []

    def test_signer_constraint(self, pb, sol):
        fb = self._handler(pb, sol, field("authority", sol.account_info, "signer"))
        assert run(pb.add(fb).build(), Category.MISSING_SIGNER_CHECK) == []

    def test_is_signer_read(self, pb, sol):
        fb = self._handler(pb, sol, field("authority", sol.account_info))
        fb.eval(fb.field(account_field(fb, "authority"), "is_signer"))
        assert run(pb.add(fb).build(), Category.MISSING_SIGNER_CHECK) == []

    def test_function_without_context(self, pb, sol):
        fb = pb.function("helper", "lib.rs").param("account", sol.account_info)
        fb.eval(fb.field(fb.var("account"), "key"))
        assert run(pb.add(fb).build(), Category.MISSING_SIGNER_CHECK) == []


# ═════════════════════════════════════════════════════════════════════════
#  bump-seed-canonicalization
# ═════════════════════════════════════════════════════════════════════════

class TestBumpSeedCanonicalization:

    def _derive(self, fb, bump):
        seeds = fb.array_literal(fb.literal(b"vault"), fb.array_literal(bump))
        fb.eval(fb.call("Pubkey::create_program_address", fb.ref(seeds),
                        fb.var("program_id")))

    def test_bump_from_parameter(self, pb, sol):
        fb = pb.function("derive", "lib.rs").param("bump", sol.u8)
        self._derive(fb, fb.var("bump"))
        diags = run(pb.add(fb).build(), Category.BUMP_SEED_CANONICALIZATION)
        assert len(diags) == 1
        assert diags[0].message.startswith("Bump seed may not be constrained.")

    def test_bump_compared(self, pb, sol):
        fb = pb.function("derive", "lib.rs").param("bump", sol.u8)
        fb.eval(fb.compare("==", fb.var("bump"), fb.var("canonical_bump")))
        self._derive(fb, fb.var("bump"))
        assert run(pb.add(fb).build(), Category.BUMP_SEED_CANONICALIZATION) == []

    def test_seeds_bound_to_local(self, pb, sol):
        fb = pb.function("derive", "lib.rs").param("bump", sol.u8)
        fb.let("seeds", fb.array_literal(fb.literal(b"vault"),
                                         fb.array_literal(fb.var("bump"))))
        fb.eval(fb.call("Pubkey::create_program_address", fb.ref(fb.var("seeds")),
                        fb.var("program_id")))
        diags = run(pb.add(fb).build(), Category.BUMP_SEED_CANONICALIZATION)
        assert diags[0].evidence["paths"] == ["bump"]

    def test_bump_from_anchor_account(self, pb, sol):
        vault = pb.struct("crate::Vault", [("bump", sol.u8)])
        accts = sol.accounts("crate::Derive", [field("vault", sol.account(vault))])
        fb = pb.function("derive", "lib.rs").param("ctx", sol.context(accts))
        bump = fb.field(account_field(fb, "vault"), "bump")
        fb.eval(fb.compare("==", fb.field(account_field(fb, "vault"), "bump"),
                           fb.var("canonical_bump")))
        self._derive(fb, bump)
        diags = run(pb.add(fb).build(), Category.BUMP_SEED_CANONICALIZATION)
        assert [d.message for d in diags] == [BUMP_FROM_ANCHOR_ACCOUNT]

    def test_bump_of_account_declared_with_bump(self, pb, sol):
        vault = pb.struct("crate::Vault", [("bump", sol.u8)])
        accts = sol.accounts("crate::Derive", [
            field("vault", sol.account(vault), "seeds", "bump")])
        fb = pb.function("derive", "lib.rs").param("ctx", sol.context(accts))
        self._derive(fb, fb.field(account_field(fb, "vault"), "bump"))
        assert run(pb.add(fb).build(), Category.BUMP_SEED_CANONICALIZATION) == []

    def test_bump_from_plain_struct(self, pb, sol):
        state = pb.struct("crate::State", [("bump", sol.u8)])
        fb = pb.function("derive", "lib.rs").param("state", state)
        self._derive(fb, fb.field(fb.var("state"), "bump"))
        diags = run(pb.add(fb).build(), Category.BUMP_SEED_CANONICALIZATION)
        assert [d.message for d in diags] == [BUMP_FROM_STRUCT]

    def test_opaque_seeds_argument(self, pb, sol):
        fb = pb.function("derive", "lib.rs").param("seeds", sol.u8)
        fb.eval(fb.call("Pubkey::create_program_address", fb.var("seeds"),
                        fb.var("program_id")))
        assert run(pb.add(fb).build(), Category.BUMP_SEED_CANONICALIZATION) == []

    def test_single_seed_array(self, pb, sol):
        fb = pb.function("derive", "lib.rs").param("bump", sol.u8)
        seeds = fb.array_literal(fb.array_literal(fb.var("bump")))
        fb.eval(fb.call("Pubkey::create_program_address", fb.ref(seeds),
                        fb.var("program_id")))
        assert run(pb.add(fb).build(), Category.BUMP_SEED_CANONICALIZATION) == []

    def test_last_seed_not_a_bump_array(self, pb, sol):
        fb = pb.function("derive", "lib.rs").param("bump", sol.u8)
        seeds = fb.array_literal(fb.literal(b"vault"), fb.var("bump"))
        fb.eval(fb.call("Pubkey::create_program_address", fb.ref(seeds),
                        fb.var("program_id")))
        assert run(pb.add(fb).build(), Category.BUMP_SEED_CANONICALIZATION) == []

    def test_find_program_address_is_fine(self, pb, sol):
        fb = pb.function("derive", "lib.rs")
        fb.eval(fb.call("Pubkey::find_program_address", fb.var("seeds"),
                        fb.var("program_id")))
        assert run(pb.add(fb).build(), Category.BUMP_SEED_CANONICALIZATION) == []


# ═════════════════════════════════════════════════════════════════════════
#  sysvar-get / sysvar-address-check / improper-instruction-introspection
# ═════════════════════════════════════════════════════════════════════════

class TestSysvarGet:

    def test_from_account_info_call(self, pb, sol):
        fb = pb.function("tick", "lib.rs").at(7)
        fb.let("clock", fb.call("Clock::from_account_info", fb.var("clock_info"),
                                type_id=sol.result(sol.clock)))
        diags = run(pb.add(fb).build(), Category.SYSVAR_GET)
        assert len(diags) == 1
        assert diags[0].message == (
            "Use `Clock::get()` instead of `Clock::from_account_info(...)`")
        assert diags[0].severity is DiagnosticSeverity.STYLE
        assert diags[0].confidence is Confidence.HIGH

    def test_type_from_call_path(self, pb, sol):
        fb = pb.function("tick", "lib.rs")
        fb.eval(fb.call("Rent::from_account_info", fb.var("rent_info")))
        diags = run(pb.add(fb).build(), Category.SYSVAR_GET)
        assert [d.message for d in diags] == [
            "Use `Rent::get()` instead of `Rent::from_account_info(...)`"]

    def test_sysvar_without_get(self, pb, sol):
        fb = pb.function("tick", "lib.rs")
        fb.eval(fb.call("SlotHashes::from_account_info", fb.var("info"),
                        type_id=sol.result(sol.slot_hashes)))
        assert run(pb.add(fb).build(), Category.SYSVAR_GET) == []

    def test_single_sysvar_account_field(self, pb, sol):
        sol.accounts("crate::Tick", [field("clock", sol.sysvar(sol.clock), line=4)],
                     line=3)
        diags = run(pb.build(), Category.SYSVAR_GET)
        assert len(diags) == 1
        d = diags[0]
        assert d.message == "Use `Clock::get` instead of passing the account"
        assert d.location == SourceLocation("lib.rs", 3)
        assert d.secondary == (SourceLocation("lib.rs", 4),)
        assert d.function == ""

    def test_several_sysvar_account_fields(self, pb, sol):
        sol.accounts("crate::Tick", [
            field("clock", sol.sysvar(sol.clock)),
            field("rent", sol.sysvar(sol.rent)),
            field("slot_hashes", sol.sysvar(sol.slot_hashes)),
        ])
        diags = run(pb.build(), Category.SYSVAR_GET)
        assert [d.message for d in diags] == [
            "Use `Sysvar::get` instead of passing the accounts for "
            "`clock` and `rent`."]

    def test_plain_struct_is_not_an_accounts_struct(self, pb, sol):
        pb.struct("crate::NotAccounts", [("clock", sol.sysvar(sol.clock))])
        assert run(pb.build(), Category.SYSVAR_GET) == []


class TestSysvarAddressCheck:

    def test_raw_deserialize_of_sysvar(self, pb, sol):
        fb = pb.function("read_rent", "lib.rs")
        fb.eval(fb.call("bincode::deserialize", fb.var("data"),
                        type_id=sol.result(sol.rent)))
        diags = run(pb.add(fb).build(), Category.SYSVAR_ADDRESS_CHECK)
        assert [d.message for d in diags] == [
            "raw deserialization of a type that implements Sysvar"]
        assert diags[0].hint == "use from_account_info() instead"

    def test_raw_deserialize_of_plain_type(self, pb, sol):
        config = pb.struct("crate::Config", [("fee", sol.u64)])
        fb = pb.function("read_config", "lib.rs")
        fb.eval(fb.call("bincode::deserialize", fb.var("data"),
                        type_id=sol.result(config)))
        assert run(pb.add(fb).build(), Category.SYSVAR_ADDRESS_CHECK) == []


class TestInstructionIntrospection:

    def test_absolute_index(self, pb, sol):
        fb = pb.function("check", "lib.rs").at(15)
        fb.eval(fb.call("load_instruction_at_checked", fb.literal(0),
                        fb.var("instructions_sysvar")))
        diags = run(pb.add(fb).build(), Category.IMPROPER_INSTRUCTION_INTROSPECTION)
        assert len(diags) == 1
        assert "get_instruction_relative" in diags[0].message
        assert diags[0].location.line == 15

    def test_relative_index(self, pb, sol):
        fb = pb.function("check", "lib.rs")
        fb.eval(fb.call("get_instruction_relative", fb.literal(-1),
                        fb.var("instructions_sysvar")))
        assert run(pb.add(fb).build(), Category.IMPROPER_INSTRUCTION_INTROSPECTION) == []


# ═════════════════════════════════════════════════════════════════════════
#  duplicate-mutable-accounts
# ═════════════════════════════════════════════════════════════════════════

class TestDuplicateMutableAccounts:

    def _user(self, pb, sol):
        user = pb.struct("crate::User", [("balance", sol.u64)])
        return sol.account(user)

    def _borrow_both(self, fb):
        fb.at(60)
        fb.let("a", fb.ref(account_field(fb, "user_a"), mutable=True))
        fb.at(61)
        fb.let("b", fb.ref(account_field(fb, "user_b"), mutable=True))

    def test_two_mutable_borrows(self, pb, sol):
        acct = self._user(pb, sol)
        accts = sol.accounts("crate::Update", [
            field("user_a", acct), field("user_b", acct)])
        fb = pb.function("update", "lib.rs").param("ctx", sol.context(accts))
        self._borrow_both(fb)
        diags = run(pb.add(fb).build(), Category.DUPLICATE_MUTABLE_ACCOUNTS)
        assert len(diags) == 1
        assert diags[0].message == (
            "the expressions on line 60 and 61 have identical Account types, "
            "yet do not contain a proper key check.")
        assert diags[0].secondary == (SourceLocation("lib.rs", 61),)

    def test_key_comparison(self, pb, sol):
        acct = self._user(pb, sol)
        accts = sol.accounts("crate::Update", [
            field("user_a", acct), field("user_b", acct)])
        fb = pb.function("update", "lib.rs").param("ctx", sol.context(accts))
        fb.eval(fb.compare("!=", fb.method(account_field(fb, "user_a"), "key"),
                           fb.method(account_field(fb, "user_b"), "key")))
        self._borrow_both(fb)
        assert run(pb.add(fb).build(), Category.DUPLICATE_MUTABLE_ACCOUNTS) == []

    def test_distinct_constraint(self, pb, sol):
        acct = self._user(pb, sol)
        accts = sol.accounts("crate::Update", [
            field("user_a", acct, distinct=("user_b",)), field("user_b", acct)])
        fb = pb.function("update", "lib.rs").param("ctx", sol.context(accts))
        self._borrow_both(fb)
        assert run(pb.add(fb).build(), Category.DUPLICATE_MUTABLE_ACCOUNTS) == []

    def test_different_inner_types(self, pb, sol):
        acct = self._user(pb, sol)
        other = sol.account(pb.struct("crate::Other", [("x", sol.u64)]))
        accts = sol.accounts("crate::Update", [
            field("user_a", acct), field("user_b", other)])
        fb = pb.function("update", "lib.rs").param("ctx", sol.context(accts))
        self._borrow_both(fb)
        assert run(pb.add(fb).build(), Category.DUPLICATE_MUTABLE_ACCOUNTS) == []

    def test_declared_mutable_fields(self, pb, sol):
        acct = self._user(pb, sol)
        sol.accounts("crate::Update", [
            field("user_a", acct, "mut", line=5), field("user_b", acct, "mut", line=6)])
        diags = run(pb.build(), Category.DUPLICATE_MUTABLE_ACCOUNTS)
        assert len(diags) == 1
        d = diags[0]
        assert d.message == ("user_a and user_b have identical account types but "
                             "do not have a key check constraint")
        assert d.hint.endswith("#[account(constraint = user_a.key() != user_b.key())]")
        assert d.location == SourceLocation("lib.rs", 5)

    def test_declared_with_distinct_constraint(self, pb, sol):
        acct = self._user(pb, sol)
        sol.accounts("crate::Update", [
            field("user_a", acct, "mut", distinct=("user_b",)),
            field("user_b", acct, "mut")])
        assert run(pb.build(), Category.DUPLICATE_MUTABLE_ACCOUNTS) == []

    def test_three_declared_fields_give_every_pair(self, pb, sol):
        acct = self._user(pb, sol)
        sol.accounts("crate::Update", [
            field(name, acct, "mut", line=i)
            for i, name in enumerate(("a", "b", "c"), start=1)])
        diags = run(pb.build(), Category.DUPLICATE_MUTABLE_ACCOUNTS)
        assert [d.message.split(" and ")[0] for d in diags] == ["a", "a", "b"]

    def test_immutable_fields_are_ignored(self, pb, sol):
        acct = self._user(pb, sol)
        sol.accounts("crate::Update", [field("user_a", acct), field("user_b", acct)])
        assert run(pb.build(), Category.DUPLICATE_MUTABLE_ACCOUNTS) == []


# ═════════════════════════════════════════════════════════════════════════
#  type-cosplay
# ═════════════════════════════════════════════════════════════════════════

class TestTypeCosplay:

    def _deserialize(self, pb, sol, fn_name, type_id, line):
        fb = pb.function(fn_name, "lib.rs").param("account", sol.account_info)
        fb.at(line)
        data = fb.ref(fb.method(fb.field(fb.var("account"), "data"), "borrow"))
        name = pb.type(type_id).name
        fb.let("value", fb.call(f"{name}::try_from_slice", data,
                                type_id=sol.result(type_id)))
        pb.add(fb)

    def test_two_undiscriminated_structs(self, pb, sol):
        user = pb.struct("crate::User", [("authority", sol.pubkey)])
        meta = pb.struct("crate::Metadata", [("account", sol.pubkey)])
        self._deserialize(pb, sol, "update_user", user, 10)
        self._deserialize(pb, sol, "update_meta", meta, 20)
        diags = run(pb.build(), Category.TYPE_COSPLAY)
        assert [d.message for d in diags] == [
            "`User` is deserialized from account data but has no discriminant",
            "`Metadata` is deserialized from account data but has no discriminant",
        ]
        assert [d.function for d in diags] == ["update_user", "update_meta"]
        assert {d.confidence for d in diags} == {Confidence.MEDIUM}

    def test_umbrella_enum(self, pb, sol):
        kind = pb.enum("crate::AccountDiscriminant", 2)
        user = pb.struct("crate::User", [("authority", sol.pubkey), ("kind", kind)])
        meta = pb.struct("crate::Metadata", [("account", sol.pubkey), ("kind", kind)])
        self._deserialize(pb, sol, "update_user", user, 10)
        self._deserialize(pb, sol, "update_meta", meta, 20)
        assert run(pb.build(), Category.TYPE_COSPLAY) == []

    def test_single_enum(self, pb, sol):
        state = pb.enum("crate::AccountState", 3)
        self._deserialize(pb, sol, "update", state, 10)
        assert run(pb.build(), Category.TYPE_COSPLAY) == []

    def test_same_type_in_two_functions(self, pb, sol):
        user = pb.struct("crate::User", [("authority", sol.pubkey)])
        self._deserialize(pb, sol, "first", user, 10)
        self._deserialize(pb, sol, "second", user, 20)
        diags = run(pb.build(), Category.TYPE_COSPLAY)
        assert len(diags) == 1
        assert diags[0].location.line == 10
        assert diags[0].secondary == (SourceLocation("lib.rs", 20),)

    def test_not_from_account_data(self, pb, sol):
        user = pb.struct("crate::User", [("authority", sol.pubkey)])
        fb = pb.function("parse", "lib.rs")
        fb.eval(fb.call("User::try_from_slice", fb.var("instruction_data"),
                        type_id=sol.result(user)))
        assert run(pb.add(fb).build(), Category.TYPE_COSPLAY) == []


# ═════════════════════════════════════════════════════════════════════════
#  runner
# ═════════════════════════════════════════════════════════════════════════

def mixed_program(pb, sol, n=6):
    """Several functions with findings in several categories and files."""
    for i in range(n):
        fb = pb.function(f"handler_{i}", f"src/mod_{i % 3}.rs")
        fb.param("account", sol.account_info).param("bump", sol.u8)
        fb.at(10 + i)
        fb.eval(fb.call("load_instruction_at_checked", fb.literal(i),
                        fb.var("instructions_sysvar")))
        fb.at(20 + i)
        seeds = fb.array_literal(fb.literal(b"vault"), fb.array_literal(fb.var("bump")))
        fb.eval(fb.call("create_program_address", fb.ref(seeds), fb.var("program_id")))
        fb.at(30 + i)
        fb.assign(fb.field(fb.var("account"), "lamports"), fb.literal(0))
        pb.add(fb)
    return pb.build()


class TestLintRunner:

    def test_every_function_contributes(self, pb, sol):
        program = mixed_program(pb, sol)
        results = LintRunner().run(program)
        assert results.total_count == 18
        assert set(results.by_category()) == {
            "improper-instruction-introspection",
            "bump-seed-canonicalization",
            "insecure-account-close",
        }
        assert results.skipped_functions == []
        assert results.stats["functions"] == 6

    def test_sorted_by_location(self, pb, sol):
        diags = analyse(mixed_program(pb, sol))
        assert diags == sorted(diags, key=lambda d: d.sort_key())
        assert diags[0].location.file == "src/mod_0.rs"

    def test_idempotent(self, pb, sol):
        program = mixed_program(pb, sol)
        runner = LintRunner()
        assert runner.run(program).diagnostics == runner.run(program).diagnostics

    def test_parallel_equals_sequential(self, pb, sol):
        program = mixed_program(pb, sol, n=12)
        sequential = run(program, jobs=1)
        parallel = run(program, jobs=4)
        assert parallel == sequential

    def test_disabled_category(self, pb, sol):
        program = mixed_program(pb, sol)
        config = AnalysisConfig(disabled=frozenset({Category.BUMP_SEED_CANONICALIZATION}))
        results = LintRunner(config=config).run(program)
        assert "bump-seed-canonicalization" not in results.by_category()
        assert "bump-seed-canonicalization" not in results.rule_names

    def test_unmodeled_function_is_skipped(self, pb, sol, caplog):
        fb = pb.function("opaque_body", "lib.rs")
        fb.eval(fb.call("load_instruction_at_checked", fb.literal(0), fb.var("s")))
        fb.modeled = False
        results = LintRunner().run(pb.add(fb).build())
        assert results.diagnostics == []
        assert results.skipped_functions == ["opaque_body"]
        assert "opaque_body" in caplog.text

    def test_malformed_function_is_skipped(self, pb, sol):
        fb = pb.function("good", "lib.rs")
        fb.eval(fb.call("load_instruction_at_checked", fb.literal(0), fb.var("s")))
        good = fb.build()
        bad = FunctionModel(name="bad", blocks=(BasicBlock(0, (), (5,)),))
        program = ProgramModel(types=pb.build().types, functions=(good, bad))
        results = LintRunner().run(program)
        assert results.skipped_functions == ["bad"]
        assert len(results.diagnostics) == 1

    @pytest.mark.parametrize("bad", [
        FunctionModel(name="bad", blocks=(BasicBlock(1),)),
        FunctionModel(
            name="bad",
            exprs=(Expr(id=0, kind=ExprKind.FIELD, receiver=0, name="key"),),
            blocks=(BasicBlock(0, (Statement(StmtKind.EVAL, 0),)),),
        ),
    ], ids=["misnumbered-block", "self-receiver"])
    def test_malformed_arena_is_skipped(self, pb, sol, bad):
        fb = pb.function("good", "lib.rs")
        fb.eval(fb.call("load_instruction_at_checked", fb.literal(0), fb.var("s")))
        program = ProgramModel(types=pb.build().types, functions=(fb.build(), bad))
        results = LintRunner().run(program)
        assert results.skipped_functions == ["bad"]
        assert [d.function for d in results.diagnostics] == ["good"]

    def test_child_allocated_after_parent_is_rejected(self):
        fn = FunctionModel(
            name="forward",
            exprs=(
                Expr(id=0, kind=ExprKind.REF, receiver=1),
                Expr(id=1, kind=ExprKind.LOCAL, local="x"),
            ),
            blocks=(BasicBlock(0, (Statement(StmtKind.EVAL, 0),)),),
        )
        with pytest.raises(ModelError, match="expression 0"):
            fn.validate()

    def test_empty_registry_runs_nothing(self, pb, sol):
        results = LintRunner(registry=RuleRegistry()).run(mixed_program(pb, sol))
        assert results.rule_names == []
        assert results.diagnostics == []

    def test_registry_is_honoured(self, pb, sol):
        registry = RuleRegistry.default()
        registry.unregister("improper-instruction-introspection")
        results = LintRunner(registry=registry).run(mixed_program(pb, sol))
        assert "improper-instruction-introspection" not in results.by_category()

    def test_summary(self, pb, sol):
        results = LintRunner().run(mixed_program(pb, sol, n=3))
        text = results.summary()
        assert text.startswith("sealevel-lints: 9 diagnostic(s)")
        assert "insecure-account-close" in text

    def test_error_count(self, pb, sol):
        accts = sol.accounts("crate::Transfer", [field("token_program", sol.account_info)])
        fb = pb.function("transfer", "lib.rs").param("ctx", sol.context(accts))
        cpi_program = fb.method(account_field(fb, "token_program"), "to_account_info")
        fb.eval(fb.call("CpiContext::new", cpi_program, fb.var("cpi_accounts")))
        results = LintRunner(config=AnalysisConfig(
            enabled=frozenset({Category.ARBITRARY_CPI}))).run(pb.add(fb).build())
        assert results.error_count == 1

    def test_verdict_engine_on_one_function(self, pb, sol):
        program = mixed_program(pb, sol, n=1)
        engine = VerdictEngine(program, RuleRegistry.default().get_enabled())
        result = engine.analyse_function(program.functions[0])
        assert not result.skipped
        assert len(result.diagnostics) == 3

    @pytest.mark.parametrize("fmt", ["gcc", "dict"])
    def test_diagnostic_rendering(self, pb, sol, fmt):
        d = analyse(mixed_program(pb, sol, n=1))[0]
        if fmt == "gcc":
            assert d.to_gcc_format().startswith("src/mod_0.rs:10: warning:")
        else:
            assert d.to_dict()["errorId"] == "improperInstructionIntrospection"
