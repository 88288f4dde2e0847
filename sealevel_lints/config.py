"""
sealevel_lints/config.py
════════════════════════

Analysis configuration: which categories run, how many worker threads
phase 1 may use, which field names count as type tags.

Configuration arrives as keyword arguments, as a plain mapping (the shape
a driver's option dict or a JSON document has), or as a JSON file::

    {
        "disabled": ["sysvar-get"],
        "jobs": 4,
        "tag_names": ["tag", "kind"]
    }

Unknown keys and unknown categories raise :class:`ConfigError`.
"""

from __future__ import annotations

import json
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, FrozenSet, Iterable, Mapping, Optional, TextIO, Union

from sealevel_lints.errors import ConfigError
from sealevel_lints.rules import Category, RuleRegistry
from sealevel_lints.type_analysis import DEFAULT_TAG_NAMES

_log = logging.getLogger(__name__)

_KNOWN_KEYS = frozenset({"enabled", "disabled", "jobs", "tag_names"})


def _categories(values: Iterable[Union[str, Category]]) -> FrozenSet[Category]:
    if isinstance(values, str):
        values = [values]
    return frozenset(
        v if isinstance(v, Category) else Category.parse(v) for v in values
    )


@dataclass(frozen=True)
class AnalysisConfig:
    """
    Attributes
    ----------
    enabled   : categories to run; empty means every registered category
    disabled  : categories never to run (wins over ``enabled``)
    jobs      : worker threads for the per-function phase (1 = sequential)
    tag_names : leading field names recognised as a type discriminant
    """
    enabled: FrozenSet[Category] = frozenset()
    disabled: FrozenSet[Category] = frozenset()
    jobs: int = 1
    tag_names: FrozenSet[str] = field(default=DEFAULT_TAG_NAMES)

    def __post_init__(self) -> None:
        if isinstance(self.jobs, bool) or not isinstance(self.jobs, int) or self.jobs < 1:
            raise ConfigError(f"jobs must be a positive integer, got {self.jobs!r}")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "AnalysisConfig":
        unknown = set(data) - _KNOWN_KEYS
        if unknown:
            raise ConfigError(
                "unknown configuration keys: " + ", ".join(sorted(unknown)),
                hint="known keys: " + ", ".join(sorted(_KNOWN_KEYS)),
            )
        kwargs: dict = {}
        if "enabled" in data:
            kwargs["enabled"] = _categories(data["enabled"])
        if "disabled" in data:
            kwargs["disabled"] = _categories(data["disabled"])
        if "jobs" in data:
            kwargs["jobs"] = data["jobs"]
        if "tag_names" in data:
            kwargs["tag_names"] = frozenset(data["tag_names"])
        return cls(**kwargs)

    @classmethod
    def from_json_file(cls, path: Union[str, Path]) -> "AnalysisConfig":
        path = Path(path)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except OSError as exc:
            raise ConfigError(f"cannot read {path}: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise ConfigError(f"{path}: invalid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigError(f"{path}: expected a JSON object")
        return cls.from_mapping(data)

    def is_enabled(self, category: Category) -> bool:
        if category in self.disabled:
            return False
        return not self.enabled or category in self.enabled

    def apply(self, registry: RuleRegistry) -> RuleRegistry:
        """Enable / disable the registry's rules to match this config."""
        for rule in registry.get_all():
            if self.is_enabled(rule.category):
                registry.enable(rule.category)
            else:
                registry.disable(rule.category)
        for category in self.enabled - {r.category for r in registry.get_all()}:
            _log.warning("category %s is enabled but has no registered rule",
                         category.value)
        return registry


_HANDLER_NAME = "sealevel_lints.console"
_LEVELS = {0: logging.WARNING, 1: logging.INFO}


def configure_logging(verbosity: int,
                      stream: Optional[TextIO] = None) -> logging.Handler:
    """Attach a console handler to the ``sealevel_lints`` logger.

    Parameters
    ----------
    verbosity:
        0 → WARNING, 1 → INFO, 2+ → DEBUG.
    stream:
        Destination of the records, ``sys.stderr`` by default.

    A handler installed by an earlier call is replaced, never duplicated.
    """
    level = _LEVELS.get(verbosity, logging.DEBUG if verbosity > 1 else logging.WARNING)
    logger = logging.getLogger("sealevel_lints")
    for old in [h for h in logger.handlers if h.get_name() == _HANDLER_NAME]:
        logger.removeHandler(old)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(
        logging.Formatter(fmt="%(levelname)s %(name)s: %(message)s")
    )
    logger.setLevel(level)
    logger.addHandler(handler)
    return handler


__all__ = ["AnalysisConfig", "configure_logging"]
