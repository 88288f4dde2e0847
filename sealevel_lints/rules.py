"""
sealevel_lints/rules.py
═══════════════════════

The declarative rule table.

Every vulnerability category is one :class:`RuleDescriptor`: which
expressions are *sinks*, which facts are *guards* for them, which sinks
are *exempt*, and how guard coverage is decided (``CoveragePolicy``).
The analyses in :mod:`guards`, :mod:`sinks`, :mod:`type_analysis` and the
verdict engine in :mod:`checkers` interpret these rows; no category has
code of its own beyond its table entry.

Pattern families are tagged variants: a small frozen dataclass whose
``kind`` selects the interpretation, with the remaining fields as its
parameters.

    ┌─────────────────────┬───────────────────────┬────────────────┐
    │ category            │ sink                  │ policy         │
    ├─────────────────────┼───────────────────────┼────────────────┤
    │ missing-owner-check │ TYPED_USE AccountInfo │ PRESENCE       │
    │ missing-signer-check│ CONTEXT_FUNCTION      │ PRESENCE       │
    │ arbitrary-cpi       │ CONSTRUCT_FIELD,      │ ALL_PATHS      │
    │                     │ CALL_ARG              │                │
    │ insecure-account-.. │ ZERO_ASSIGN lamports  │ PRESENCE       │
    │ type-cosplay        │ DESERIALIZE           │ STRUCTURAL     │
    │ bump-seed-canon..   │ SEED_BUMP             │ PRESENCE       │
    │ sysvar-get          │ TYPED_CALL            │ UNCONDITIONAL  │
    │ sysvar-address-check│ DESERIALIZE (Sysvar)  │ UNCONDITIONAL  │
    │ improper-instr-..   │ CALL                  │ UNCONDITIONAL  │
    │ duplicate-mutable-..│ MUTABLE_BORROW_PAIR   │ PRESENCE       │
    └─────────────────────┴───────────────────────┴────────────────┘

License: MIT — same as sealevel-lints.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum, auto
from typing import Dict, FrozenSet, Iterable, Iterator, List, Optional, Tuple

from sealevel_lints.diagnostics import DiagnosticSeverity
from sealevel_lints.errors import ConfigError
from sealevel_lints.program_model import (
    FACT_ACCOUNTS_STRUCT,
    FACT_DISCRIMINANT,
    FACT_SIGNER,
    FACT_VALIDATES_OWNER,
    FACT_VALIDATES_PROGRAM_ID,
    ProgramModel,
    TypeDescriptor,
)

_log = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════
#  PART 1 — WELL-KNOWN PATHS
# ═════════════════════════════════════════════════════════════════════════

ACCOUNT_INFO = "solana_program::account_info::AccountInfo"
INSTRUCTION = "solana_program::instruction::Instruction"
CREATE_PROGRAM_ADDRESS = "solana_program::pubkey::Pubkey::create_program_address"
SYSVAR_TRAIT = "solana_program::sysvar::Sysvar"
SYSVAR_FROM_ACCOUNT_INFO = "solana_program::sysvar::Sysvar::from_account_info"
LOAD_INSTRUCTION_AT_CHECKED = (
    "solana_program::sysvar::instructions::load_instruction_at_checked"
)
BINCODE_DESERIALIZE = "bincode::deserialize"

ANCHOR_ACCOUNT = "anchor_lang::accounts::account::Account"
ANCHOR_ACCOUNT_LOADER = "anchor_lang::accounts::account_loader::AccountLoader"
ANCHOR_PROGRAM = "anchor_lang::accounts::program::Program"
ANCHOR_INTERFACE = "anchor_lang::accounts::interface::Interface"
ANCHOR_SYSTEM_ACCOUNT = "anchor_lang::accounts::system_account::SystemAccount"
ANCHOR_SIGNER = "anchor_lang::accounts::signer::Signer"
ANCHOR_SYSVAR = "anchor_lang::accounts::sysvar::Sysvar"
ANCHOR_CONTEXT = "anchor_lang::context::Context"
ANCHOR_CPI_CONTEXT_NEW = "anchor_lang::context::CpiContext::new"
ANCHOR_CPI_CONTEXT_NEW_WITH_SIGNER = "anchor_lang::context::CpiContext::new_with_signer"
ANCHOR_ACCOUNT_DESERIALIZE = "anchor_lang::AccountDeserialize"
ANCHOR_DISCRIMINATOR = "anchor_lang::Discriminator"
ANCHOR_ACCOUNTS = "anchor_lang::Accounts"

BORSH_TRY_FROM_SLICE = "borsh::de::BorshDeserialize::try_from_slice"
BORSH_DESERIALIZE = "borsh::de::BorshDeserialize::deserialize"
ANCHOR_TRY_DESERIALIZE_UNCHECKED = (
    "anchor_lang::AccountDeserialize::try_deserialize_unchecked"
)

# Sysvars that offer `get()`; the name is the type's last path segment.
GETTABLE_SYSVARS: FrozenSet[str] = frozenset({
    "Clock", "EpochRewards", "EpochSchedule", "Fees", "LastRestartSlot", "Rent",
})
# Sysvars that may be passed as Anchor `Sysvar<'info, T>` accounts needlessly.
GETTABLE_SYSVAR_ACCOUNTS: FrozenSet[str] = frozenset({
    "Clock", "Rewards", "EpochSchedule", "Fees", "Rent",
})
SYSVAR_TYPES: FrozenSet[str] = frozenset({
    "solana_program::clock::Clock",
    "solana_program::epoch_rewards::EpochRewards",
    "solana_program::epoch_schedule::EpochSchedule",
    "solana_program::fees::Fees",
    "solana_program::last_restart_slot::LastRestartSlot",
    "solana_program::rent::Rent",
    "solana_program::slot_hashes::SlotHashes",
    "solana_program::slot_history::SlotHistory",
    "solana_program::stake_history::StakeHistory",
    "solana_program::sysvar::instructions::Instructions",
})

# Anchor wrappers and the facts their validation establishes.
_IMPLIED_FACTS: Dict[str, FrozenSet[str]] = {
    ANCHOR_ACCOUNT: frozenset({FACT_VALIDATES_OWNER, FACT_DISCRIMINANT}),
    ANCHOR_ACCOUNT_LOADER: frozenset({FACT_VALIDATES_OWNER, FACT_DISCRIMINANT}),
    ANCHOR_PROGRAM: frozenset({FACT_VALIDATES_OWNER, FACT_VALIDATES_PROGRAM_ID}),
    ANCHOR_INTERFACE: frozenset({FACT_VALIDATES_OWNER, FACT_VALIDATES_PROGRAM_ID}),
    ANCHOR_SYSTEM_ACCOUNT: frozenset({FACT_VALIDATES_OWNER}),
    ANCHOR_SIGNER: frozenset({FACT_VALIDATES_OWNER, FACT_SIGNER}),
    ANCHOR_SYSVAR: frozenset({FACT_VALIDATES_OWNER}),
}
_IMPLIED_BY_TRAIT: Dict[str, str] = {
    ANCHOR_DISCRIMINATOR: FACT_DISCRIMINANT,
    ANCHOR_ACCOUNTS: FACT_ACCOUNTS_STRUCT,
}


def path_matches(pattern: str, path: Optional[str]) -> bool:
    """True if *path* and *pattern* agree on their trailing segments.

    ``Pubkey::create_program_address`` and ``create_program_address`` both
    match ``solana_program::pubkey::Pubkey::create_program_address``.
    Generic arguments (``Account<'info, T>``) are ignored.
    """
    if not path:
        return False
    path = path.split("<", 1)[0]
    if path == pattern:
        return True
    short, long_ = (path, pattern) if len(path) < len(pattern) else (pattern, path)
    return long_.endswith("::" + short)


def matches_any(patterns: Iterable[str], path: Optional[str]) -> bool:
    return any(path_matches(p, path) for p in patterns)


def associated_call_matches(pattern: str, path: Optional[str]) -> bool:
    """Like :func:`path_matches`, but also accepts ``Type::method`` for a
    trait method pattern ``...::Trait::method``."""
    if path_matches(pattern, path):
        return True
    if not path or "::" not in path:
        return False
    return path.rsplit("::", 1)[-1] == pattern.rsplit("::", 1)[-1]


def call_qualifier(path: Optional[str]) -> str:
    """``Clock`` for ``Clock::from_account_info``; "" for a bare name."""
    if not path or "::" not in path:
        return ""
    return path.rsplit("::", 2)[-2]


def type_has_fact(t: Optional[TypeDescriptor], fact: str) -> bool:
    """Attribute fact, set by the front end or implied by a well-known path."""
    if t is None:
        return False
    if fact in t.attributes:
        return True
    for path, facts in _IMPLIED_FACTS.items():
        if fact in facts and path_matches(path, t.path):
            return True
    return any(
        implied == fact and any(path_matches(trait, tr) for tr in t.traits)
        for trait, implied in _IMPLIED_BY_TRAIT.items()
    )


def type_has_trait(t: Optional[TypeDescriptor], trait: str) -> bool:
    if t is None:
        return False
    if any(path_matches(trait, tr) for tr in t.traits):
        return True
    return trait == SYSVAR_TRAIT and t.path in SYSVAR_TYPES


def unwrap_type(program: ProgramModel, type_id: Optional[int],
                wrappers: Iterable[str] = ("Result", "Option", "Box")) -> Optional[int]:
    """Peel ``Result<T>``/``Option<T>``/``Box<T>`` down to ``T``."""
    names = frozenset(wrappers)
    seen = set()
    while type_id is not None and type_id not in seen:
        seen.add(type_id)
        t = program.type(type_id)
        if t is None or t.name not in names or not t.generic_args:
            break
        type_id = t.generic_args[0]
    return type_id


def inner_type(program: ProgramModel, type_id: Optional[int]) -> Optional[int]:
    """Last generic argument of a wrapper (``Account<'info, T>`` → ``T``)."""
    t = program.type(type_id)
    if t is None or not t.generic_args:
        return None
    return t.generic_args[-1]


def struct_behind(program: ProgramModel, type_id: Optional[int]) -> Optional[TypeDescriptor]:
    """The struct a value of *type_id* gives field access to (auto-deref)."""
    seen = set()
    work = [type_id]
    while work:
        tid = work.pop()
        if tid is None or tid in seen:
            continue
        seen.add(tid)
        t = program.type(tid)
        if t is None:
            continue
        if t.is_struct:
            return t
        work.extend(t.generic_args)
    return None


# ═════════════════════════════════════════════════════════════════════════
#  PART 2 — PATTERN VARIANTS
# ═════════════════════════════════════════════════════════════════════════

class Category(Enum):
    MISSING_OWNER_CHECK = "missing-owner-check"
    MISSING_SIGNER_CHECK = "missing-signer-check"
    ARBITRARY_CPI = "arbitrary-cpi"
    INSECURE_ACCOUNT_CLOSE = "insecure-account-close"
    TYPE_COSPLAY = "type-cosplay"
    BUMP_SEED_CANONICALIZATION = "bump-seed-canonicalization"
    SYSVAR_GET = "sysvar-get"
    SYSVAR_ADDRESS_CHECK = "sysvar-address-check"
    IMPROPER_INSTRUCTION_INTROSPECTION = "improper-instruction-introspection"
    DUPLICATE_MUTABLE_ACCOUNTS = "duplicate-mutable-accounts"

    @classmethod
    def parse(cls, text: str) -> "Category":
        key = text.strip().lower().replace("_", "-")
        for c in cls:
            if c.value == key:
                return c
        raise ConfigError(f"unknown category {text!r}",
                          hint="one of: " + ", ".join(c.value for c in cls))


class CoveragePolicy(Enum):
    ALL_PATHS = auto()       # covering guards must dominate the sink as a set
    PRESENCE = auto()        # any covering guard anywhere in the function
    UNCONDITIONAL = auto()   # no guard grammar; every sink is reported
    STRUCTURAL = auto()      # decided program-wide from type structure


class SinkKind(Enum):
    CALL = auto()                 # any call to a target
    CALL_ARG = auto()             # argument ``argument`` of a call to a target
    CONSTRUCT_FIELD = auto()      # field ``field`` of a target-type constructor
    TYPED_USE = auto()            # a non-trivial expression of a target type
    ZERO_ASSIGN = auto()          # ``<place>.<field> = 0``
    CONTEXT_FUNCTION = auto()     # a function taking a target-type parameter
    MUTABLE_BORROW_PAIR = auto()  # two ``&mut`` of the same target wrapper type
    TYPED_CALL = auto()           # ``T::method`` for ``T`` in ``types``
    SEED_BUMP = auto()            # bump seed of a PDA derivation call
    DESERIALIZE = auto()          # raw deserialization of a type


@dataclass(frozen=True)
class SinkPattern:
    kind: SinkKind
    targets: Tuple[str, ...] = ()
    argument: int = 0
    field: str = ""
    types: FrozenSet[str] = frozenset()
    trait: str = ""
    from_account_data: bool = False


class GuardKind(Enum):
    FIELD_READ = auto()            # read of ``base.<name>``; covers ``base``
    COMPARISON = auto()            # ``a == b`` / ``a != b`` and call forms
    SIGNER_MARKER = auto()         # a declared signer account
    DECLARED_CONSTRAINT = auto()   # ``#[account(owner = ..)]`` and friends
    DISTINCT_CONSTRAINT = auto()   # ``#[account(constraint = a.key() != b.key())]``
    DATA_CLEAR = auto()            # account data zeroed in a loop / by fill(0)


COMPARISON_CALLS: Tuple[str, ...] = (
    "core::cmp::PartialEq::eq",
    "core::cmp::PartialEq::ne",
    "anchor_lang::require_keys_eq",
    "anchor_lang::require_keys_neq",
    "anchor_lang::require_eq",
    "anchor_lang::require_neq",
    "core::assert_eq",
    "core::assert_ne",
)


@dataclass(frozen=True)
class GuardPattern:
    kind: GuardKind
    names: FrozenSet[str] = frozenset()
    ops: FrozenSet[str] = frozenset({"==", "!="})
    strip: FrozenSet[str] = frozenset()
    calls: Tuple[str, ...] = ()


class ExemptionKind(Enum):
    WRAPPER_CONVERSION = auto()            # ``x.to_account_info()`` on a validating wrapper
    CLOSED_ACCOUNT_DISCRIMINATOR = auto()  # data[0..8] overwritten with a closed marker


@dataclass(frozen=True)
class ExemptionPattern:
    kind: ExemptionKind
    fact: str = ""


class DeclarationKind(Enum):
    SYSVAR_ACCOUNT_FIELDS = auto()
    DUPLICATE_MUTABLE_FIELDS = auto()


@dataclass(frozen=True)
class DeclarationPattern:
    kind: DeclarationKind
    message: str
    hint: str = ""
    label: str = ""


# ═════════════════════════════════════════════════════════════════════════
#  PART 3 — RULE DESCRIPTORS
# ═════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class RuleDescriptor:
    """One row of the rule table.

    ``message`` and ``hint`` are ``str.format`` templates; the sink that
    triggered the rule supplies the fields (``{path}``, ``{sysvar}``, ...).
    """
    category: Category
    error_id: str
    description: str
    sinks: Tuple[SinkPattern, ...]
    coverage: CoveragePolicy
    message: str
    guards: Tuple[GuardPattern, ...] = ()
    exemptions: Tuple[ExemptionPattern, ...] = ()
    declaration: Optional[DeclarationPattern] = None
    hint: str = ""
    severity: DiagnosticSeverity = DiagnosticSeverity.WARNING
    cwe: int = 0
    enabled: bool = True

    @property
    def name(self) -> str:
        return self.category.value


_KEY_COMPARISON = GuardPattern(
    GuardKind.COMPARISON, strip=frozenset({"key"}), calls=COMPARISON_CALLS)

_OWNER_CONSTRAINTS = frozenset({
    "owner", "address", "seeds", "bump", "signer", "init_if_needed", "executable",
})

DEFAULT_RULES: Tuple[RuleDescriptor, ...] = (
    RuleDescriptor(
        category=Category.MISSING_OWNER_CHECK,
        error_id="missingOwnerCheck",
        description="AccountInfo used without validating its owner",
        sinks=(SinkPattern(SinkKind.TYPED_USE, targets=(ACCOUNT_INFO,)),),
        guards=(
            GuardPattern(GuardKind.FIELD_READ, names=frozenset({"owner"})),
            _KEY_COMPARISON,
            GuardPattern(GuardKind.DECLARED_CONSTRAINT, names=_OWNER_CONSTRAINTS),
        ),
        exemptions=(ExemptionPattern(ExemptionKind.WRAPPER_CONVERSION,
                                     fact=FACT_VALIDATES_OWNER),),
        coverage=CoveragePolicy.PRESENCE,
        message="this Account struct is used but there is no check on its owner field",
        hint="compare `{path}.owner` with the expected program id",
        cwe=283,
    ),
    RuleDescriptor(
        category=Category.MISSING_SIGNER_CHECK,
        error_id="missingSignerCheck",
        description="instruction handler never checks a signer",
        sinks=(SinkPattern(SinkKind.CONTEXT_FUNCTION, targets=(ANCHOR_CONTEXT,)),),
        guards=(
            GuardPattern(GuardKind.FIELD_READ, names=frozenset({"is_signer"})),
            GuardPattern(GuardKind.SIGNER_MARKER, names=frozenset({"signer"})),
        ),
        coverage=CoveragePolicy.PRESENCE,
        message="this function lacks a use of `is_signer`",
        hint="declare the authority as `Signer<'info>` or check `is_signer`",
        cwe=862,
    ),
    RuleDescriptor(
        category=Category.ARBITRARY_CPI,
        error_id="arbitraryCpi",
        description="cross-program invocation of an unchecked program id",
        sinks=(
            SinkPattern(SinkKind.CONSTRUCT_FIELD, targets=(INSTRUCTION,),
                        field="program_id"),
            SinkPattern(SinkKind.CALL_ARG,
                        targets=(ANCHOR_CPI_CONTEXT_NEW,
                                 ANCHOR_CPI_CONTEXT_NEW_WITH_SIGNER),
                        argument=0),
        ),
        guards=(
            _KEY_COMPARISON,
            GuardPattern(GuardKind.DECLARED_CONSTRAINT, names=frozenset({"address"})),
        ),
        exemptions=(ExemptionPattern(ExemptionKind.WRAPPER_CONVERSION,
                                     fact=FACT_VALIDATES_PROGRAM_ID),),
        coverage=CoveragePolicy.ALL_PATHS,
        message="program_id may not be checked",
        hint="compare `{path}` with the expected program id before the invocation",
        severity=DiagnosticSeverity.ERROR,
        cwe=829,
    ),
    RuleDescriptor(
        category=Category.INSECURE_ACCOUNT_CLOSE,
        error_id="insecureAccountClose",
        description="account closed without clearing its data",
        sinks=(SinkPattern(SinkKind.ZERO_ASSIGN, field="lamports"),),
        guards=(GuardPattern(GuardKind.DATA_CLEAR, names=frozenset({"data"}),
                             calls=("fill", "solana_program::program_memory::sol_memset")),),
        exemptions=(ExemptionPattern(ExemptionKind.CLOSED_ACCOUNT_DISCRIMINATOR),),
        coverage=CoveragePolicy.PRESENCE,
        message="attempt to close an account without also clearing its data",
        hint="zero `{path}.data` as well, or use anchor's `close` constraint",
        cwe=459,
    ),
    RuleDescriptor(
        category=Category.TYPE_COSPLAY,
        error_id="typeCosplay",
        description="deserialized account types cannot be told apart",
        sinks=(SinkPattern(SinkKind.DESERIALIZE,
                           targets=(BORSH_TRY_FROM_SLICE, BORSH_DESERIALIZE,
                                    ANCHOR_TRY_DESERIALIZE_UNCHECKED),
                           from_account_data=True),),
        coverage=CoveragePolicy.STRUCTURAL,
        message="`{type}` is deserialized from account data but has no discriminant",
        hint="add a leading enum tag field, or use anchor's #[account] (Discriminator)",
        severity=DiagnosticSeverity.ERROR,
        cwe=843,
    ),
    RuleDescriptor(
        category=Category.BUMP_SEED_CANONICALIZATION,
        error_id="bumpSeedCanonicalization",
        description="PDA derived from a bump seed that may not be canonical",
        sinks=(SinkPattern(SinkKind.SEED_BUMP, targets=(CREATE_PROGRAM_ADDRESS,)),),
        guards=(GuardPattern(GuardKind.COMPARISON, calls=COMPARISON_CALLS),),
        coverage=CoveragePolicy.PRESENCE,
        message=("Bump seed may not be constrained. If stored in an account, "
                 "use anchor's #[account(seed=..., bump=...)] macro instead"),
        hint="derive the address with `Pubkey::find_program_address`",
    ),
    RuleDescriptor(
        category=Category.SYSVAR_GET,
        error_id="sysvarGet",
        description="sysvar read from an account instead of `get()`",
        sinks=(SinkPattern(SinkKind.TYPED_CALL, targets=(SYSVAR_FROM_ACCOUNT_INFO,),
                           types=GETTABLE_SYSVARS),),
        declaration=DeclarationPattern(
            DeclarationKind.SYSVAR_ACCOUNT_FIELDS,
            message="Use `{sysvar}::get` instead of passing the account",
            hint="Sysvar accounts passed in this instruction",
        ),
        coverage=CoveragePolicy.UNCONDITIONAL,
        message="Use `{sysvar}::get()` instead of `{sysvar}::from_account_info(...)`",
        severity=DiagnosticSeverity.STYLE,
    ),
    RuleDescriptor(
        category=Category.SYSVAR_ADDRESS_CHECK,
        error_id="sysvarAddressCheck",
        description="raw deserialization of a sysvar",
        sinks=(SinkPattern(SinkKind.DESERIALIZE, targets=(BINCODE_DESERIALIZE,),
                           trait=SYSVAR_TRAIT),),
        coverage=CoveragePolicy.UNCONDITIONAL,
        message="raw deserialization of a type that implements Sysvar",
        hint="use from_account_info() instead",
        cwe=345,
    ),
    RuleDescriptor(
        category=Category.IMPROPER_INSTRUCTION_INTROSPECTION,
        error_id="improperInstructionIntrospection",
        description="instruction sysvar accessed by absolute index",
        sinks=(SinkPattern(SinkKind.CALL, targets=(LOAD_INSTRUCTION_AT_CHECKED,)),),
        coverage=CoveragePolicy.UNCONDITIONAL,
        message=("Access instructions through relative indexes using the "
                 "`get_instruction_relative` helper function."),
    ),
    RuleDescriptor(
        category=Category.DUPLICATE_MUTABLE_ACCOUNTS,
        error_id="duplicateMutableAccounts",
        description="two mutable accounts of one type without a key check",
        sinks=(SinkPattern(SinkKind.MUTABLE_BORROW_PAIR, targets=(ANCHOR_ACCOUNT,)),),
        guards=(
            _KEY_COMPARISON,
            GuardPattern(GuardKind.DISTINCT_CONSTRAINT),
        ),
        declaration=DeclarationPattern(
            DeclarationKind.DUPLICATE_MUTABLE_FIELDS,
            message=("{first} and {second} have identical account types but do "
                     "not have a key check constraint"),
            hint=("add an anchor key check constraint: "
                  "#[account(constraint = {first}.key() != {second}.key())]"),
        ),
        coverage=CoveragePolicy.PRESENCE,
        message=("the expressions on line {line} and {other_line} have identical "
                 "Account types, yet do not contain a proper key check."),
        hint=("add a key check to make sure the accounts have different keys, "
              "e.g., {first}.key() != {second}.key()"),
    ),
)


# ═════════════════════════════════════════════════════════════════════════
#  PART 4 — RULE REGISTRY
# ═════════════════════════════════════════════════════════════════════════

class RuleRegistry:
    """
    Ordered set of rule descriptors with per-category enable flags.

    Usage:
        registry = RuleRegistry.default()
        registry.disable("sysvar-get")
    """

    def __init__(self, rules: Iterable[RuleDescriptor] = ()) -> None:
        self._rules: Dict[Category, RuleDescriptor] = {}
        for r in rules:
            self.register(r)

    @classmethod
    def default(cls) -> "RuleRegistry":
        return cls(DEFAULT_RULES)

    def register(self, rule: RuleDescriptor) -> None:
        if rule.category in self._rules:
            _log.warning("replacing rule for category %s", rule.name)
        self._rules[rule.category] = rule

    def unregister(self, category: "Category | str") -> None:
        self._rules.pop(self._key(category), None)

    def enable(self, category: "Category | str") -> None:
        self._set_enabled(category, True)

    def disable(self, category: "Category | str") -> None:
        self._set_enabled(category, False)

    def _set_enabled(self, category: "Category | str", value: bool) -> None:
        key = self._key(category)
        if key not in self._rules:
            raise ConfigError(f"no rule registered for {key.value!r}")
        self._rules[key] = replace(self._rules[key], enabled=value)

    @staticmethod
    def _key(category: "Category | str") -> Category:
        return category if isinstance(category, Category) else Category.parse(category)

    def get(self, category: "Category | str") -> Optional[RuleDescriptor]:
        return self._rules.get(self._key(category))

    def get_all(self) -> List[RuleDescriptor]:
        return list(self._rules.values())

    def get_enabled(self) -> List[RuleDescriptor]:
        return [r for r in self._rules.values() if r.enabled]

    def filter_by_policy(self, policy: CoveragePolicy) -> List[RuleDescriptor]:
        return [r for r in self.get_enabled() if r.coverage is policy]

    def names(self) -> List[str]:
        return [c.value for c in self._rules]

    def __len__(self) -> int:
        return len(self._rules)

    def __iter__(self) -> Iterator[RuleDescriptor]:
        return iter(self._rules.values())

    def __contains__(self, category: object) -> bool:
        if isinstance(category, str):
            return any(c.value == category for c in self._rules)
        return category in self._rules


__all__ = [
    "Category",
    "CoveragePolicy",
    "SinkKind",
    "SinkPattern",
    "GuardKind",
    "GuardPattern",
    "ExemptionKind",
    "ExemptionPattern",
    "DeclarationKind",
    "DeclarationPattern",
    "RuleDescriptor",
    "RuleRegistry",
    "DEFAULT_RULES",
    "COMPARISON_CALLS",
    "GETTABLE_SYSVARS",
    "GETTABLE_SYSVAR_ACCOUNTS",
    "path_matches",
    "matches_any",
    "associated_call_matches",
    "call_qualifier",
    "type_has_fact",
    "type_has_trait",
    "unwrap_type",
    "inner_type",
    "struct_behind",
]
