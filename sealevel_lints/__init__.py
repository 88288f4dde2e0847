"""
sealevel_lints — Access-Control and Deserialization Checks for Sealevel Programs
===============================================================================

This package provides the shared analytical core behind a family of static
checks for Solana ("sealevel") smart contracts: missing owner and signer
checks, arbitrary cross-program invocation, insecure account closing, type
cosplay, bump-seed canonicalization, sysvar access, instruction
introspection and duplicate mutable accounts.

Each check is a row of a declarative rule table interpreted by one engine:
a sink classifier, a guard detector, an alias tracker, a dominance oracle
and a structural type analyzer.

Core modules
------------
program_model
    Arena-allocated, index-referenced model of types, functions and CFGs.
model_builder
    Programmatic construction of the model with projection type inference.
ctrlflow_analysis
    Dominance by removal-reachability, set dominance, natural loops.
alias_analysis
    Function-local access-path aliasing.
rules
    The rule table, its pattern variants and the rule registry.
guards / sinks
    Interpreters for the guard and sink pattern families.
type_analysis
    Discriminated-type sets and the type-cosplay verdict.
checkers
    The two-phase verdict engine and runner.
config
    Analysis configuration and logging setup.

Addon modules
-------------
model_loader
    S-expression interchange reader (needs ``sexpdata``).

Quick start
-----------
::

    from sealevel_lints import LintRunner, configure_logging, load_program_file

    configure_logging(1)
    program = load_program_file("program.sexp")
    for d in LintRunner().run(program).diagnostics:
        print(d.to_gcc_format())

Package layout
--------------
::

    sealevel_lints/
    ├── __init__.py            ← this file
    ├── errors.py
    ├── program_model.py
    ├── model_builder.py
    ├── model_loader.py
    ├── ctrlflow_analysis.py
    ├── alias_analysis.py
    ├── facts.py
    ├── rules.py
    ├── guards.py
    ├── sinks.py
    ├── type_analysis.py
    ├── diagnostics.py
    ├── config.py
    └── checkers.py
"""

from __future__ import annotations

import importlib
import sys
import warnings
from typing import List

# ---------------------------------------------------------------------------
# Package metadata
# ---------------------------------------------------------------------------

__version__ = "0.4.0"
__author__ = "sealevel-lints contributors"
__license__ = "MIT"

__all__: List[str] = []          # populated incrementally below


# ---------------------------------------------------------------------------
# Internal registry: (module_name, list_of_names_to_import)
#
#   CORE  — always imported; failure is fatal
#   ADDON — imported eagerly but failure only warns (package still usable)
# ---------------------------------------------------------------------------

_CORE_MODULES = {
    "errors": [
        "SealevelLintError",
        "ModelError",
        "ModelLoadError",
        "ConfigError",
    ],
    "program_model": [
        "SourceLocation",
        "TypeKind",
        "FieldDef",
        "TypeDescriptor",
        "ExprKind",
        "Expr",
        "StmtKind",
        "Statement",
        "BasicBlock",
        "Param",
        "LocalVar",
        "FunctionModel",
        "ProgramModel",
    ],
    "model_builder": [
        "ProgramBuilder",
        "FunctionBuilder",
    ],
    "ctrlflow_analysis": [
        "DominatorTree",
        "reverse_postorder",
    ],
    "alias_analysis": [
        "AccessPath",
        "AliasSet",
        "AliasTracker",
    ],
    "rules": [
        "Category",
        "CoveragePolicy",
        "RuleDescriptor",
        "RuleRegistry",
        "DEFAULT_RULES",
    ],
    "guards": [
        "Guard",
        "GuardDetector",
    ],
    "sinks": [
        "Sink",
        "SinkClassifier",
    ],
    "type_analysis": [
        "DiscriminatedTypeSet",
        "StructuralTypeAnalyzer",
    ],
    "diagnostics": [
        "Diagnostic",
        "DiagnosticSeverity",
        "Confidence",
    ],
    "config": [
        "AnalysisConfig",
        "configure_logging",
    ],
    "checkers": [
        "LintRunner",
        "LintRunResults",
        "VerdictEngine",
        "analyse",
    ],
}

_ADDON_MODULES = {
    "model_loader": [
        "load_program",
        "load_program_file",
    ],
}


# ---------------------------------------------------------------------------
# Import helper
# ---------------------------------------------------------------------------

def _import_names(module_rel_name: str, names: List[str], *, fatal: bool) -> None:
    """Bind *names* from a submodule in the package namespace.

    A core module that fails to import is fatal.  An addon module only
    warns, and its names stay unbound.
    """
    try:
        mod = importlib.import_module(f"{__name__}.{module_rel_name}")
    except ImportError as exc:
        if fatal:
            raise
        warnings.warn(
            f"sealevel_lints: {module_rel_name} is unavailable ({exc})",
            ImportWarning,
            stacklevel=2,
        )
        return

    package = sys.modules[__name__]
    for name in names:
        setattr(package, name, getattr(mod, name))
        __all__.append(name)


for _mod, _names in _CORE_MODULES.items():
    _import_names(_mod, _names, fatal=True)

for _mod, _names in _ADDON_MODULES.items():
    _import_names(_mod, _names, fatal=False)

del _mod, _names


# ---------------------------------------------------------------------------
# Package-level utilities
# ---------------------------------------------------------------------------

def list_submodules() -> List[str]:
    """Return the names of all submodules in the package (core + addon)."""
    return sorted(set(list(_CORE_MODULES.keys()) + list(_ADDON_MODULES.keys())))


def package_info() -> dict:
    """Return a dict of metadata about the loaded analyses and rules."""
    loaded = []
    missing = []
    for mod_name in list_submodules():
        if f"{__name__}.{mod_name}" in sys.modules:
            loaded.append(mod_name)
        else:
            missing.append(mod_name)
    return {
        "package": __name__,
        "version": __version__,
        "loaded_modules": loaded,
        "missing_modules": missing,
        "categories": [c.value for c in Category],  # noqa: F821
    }


__all__ += ["list_submodules", "package_info"]
