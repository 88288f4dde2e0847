# sealevel_lints/errors.py
"""
Exception types for sealevel-lints.

Error Hierarchy:
────────────────
    SealevelLintError (base)
    ├── ModelError        - malformed program model (dangling ids, bad CFG)
    │   └── ModelLoadError - interchange text could not be read
    └── ConfigError       - unknown category or invalid option

Every error carries a short code of the form ``SL-XXXX``:
  - 1000-1999: model errors
  - 2000-2999: model loading errors
  - 3000-3999: configuration errors

Analyses never raise for constructs they do not understand; those degrade
to "guard not established".  ``ModelError`` raised while analysing one
function is caught by the runner, logged, and the function is skipped.
"""

from __future__ import annotations

from typing import Optional


class SealevelLintError(Exception):
    """Base exception for all sealevel-lints errors."""

    code = "SL-0000"

    def __init__(self, message: str, hint: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint

    def __str__(self) -> str:
        text = f"[{self.code}] {self.message}"
        if self.hint:
            text += f" (hint: {self.hint})"
        return text


class ModelError(SealevelLintError):
    """The program model violates one of its structural invariants."""

    code = "SL-1000"


class ModelLoadError(ModelError):
    """Raised when the S-expression interchange form cannot be read."""

    code = "SL-2000"

    def __init__(
        self,
        message: str,
        form: Optional[object] = None,
        hint: str = "",
    ) -> None:
        if form is not None:
            message = f"{message}: {form!r}"
        super().__init__(message, hint)
        self.form = form


class ConfigError(SealevelLintError):
    """Invalid analysis configuration."""

    code = "SL-3000"


__all__ = [
    "SealevelLintError",
    "ModelError",
    "ModelLoadError",
    "ConfigError",
]
