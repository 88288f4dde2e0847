"""
sealevel_lints/type_analysis.py
═══════════════════════════════

Structural analysis of the types a program deserializes from raw account
bytes ("type cosplay").

Theory
──────
An attacker who controls an account's data can hand an instruction an
account of the *wrong* type.  That is harmless only if the deserialized
types can be told apart from their bytes:

  * a single enum is self-describing (its tag picks the variant);
  * structs that all embed one *umbrella* enum as a tag field, with enough
    variants to give each struct its own value, are distinguishable;
  * a struct whose leading field is an enum tag, a recognised tag name,
    or that carries an Anchor discriminator is distinguishable on its own.

Two layers:

  1. **collect** — per function, the discriminated-type set T: the
     distinct type ids deserialized from account data, with their sites.
     Sets from all functions are merged before the verdict.

  2. **verdict** — decides, for the merged T, which types are reported.

        n = |T|
        n == 0                               → nothing
        n == 1 and the type is an enum       → secure
        T all structs, umbrella enum E with
          every struct holding an E field and
          variant_count(E) ≥ n − 1           → secure
        otherwise                            → every struct in T without a
                                               discriminant, and every enum
                                               in T when T holds several

License: MIT — same as sealevel-lints.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, Iterator, List, Optional

from sealevel_lints.program_model import (
    FACT_DISCRIMINANT,
    ProgramModel,
    SourceLocation,
    TypeDescriptor,
)
from sealevel_lints.rules import type_has_fact
from sealevel_lints.sinks import Sink

_log = logging.getLogger(__name__)

DEFAULT_TAG_NAMES: FrozenSet[str] = frozenset({
    "discriminant", "discriminator", "tag", "kind", "account_type",
    "account_kind",
})

AMBIGUOUS_ENUM_MESSAGE = (
    "`{type}` is one of several enums deserialized from account data; "
    "their variants cannot be told apart"
)


@dataclass(frozen=True)
class DeserializationSite:
    type_id: int
    function: str
    location: SourceLocation


class DiscriminatedTypeSet:
    """Type ids deserialized from account data, with every site seen."""

    def __init__(self, sites: Iterable[DeserializationSite] = ()) -> None:
        self._sites: Dict[int, List[DeserializationSite]] = {}
        for site in sites:
            self.add(site)

    def add(self, site: DeserializationSite) -> None:
        bucket = self._sites.setdefault(site.type_id, [])
        if site not in bucket:
            bucket.append(site)

    def merge(self, other: "DiscriminatedTypeSet") -> "DiscriminatedTypeSet":
        for tid in other.type_ids:
            for site in other.sites_of(tid):
                self.add(site)
        return self

    @property
    def type_ids(self) -> List[int]:
        return sorted(self._sites)

    def sites_of(self, type_id: int) -> List[DeserializationSite]:
        return sorted(self._sites.get(type_id, ()),
                      key=lambda s: (s.location.sort_key(), s.function))

    def __len__(self) -> int:
        return len(self._sites)

    def __iter__(self) -> Iterator[int]:
        return iter(self.type_ids)

    def __contains__(self, type_id: object) -> bool:
        return type_id in self._sites


@dataclass(frozen=True)
class TypeVerdict:
    """One reported type of the discriminated-type set."""
    type: TypeDescriptor
    ambiguous_enum: bool
    sites: tuple


class StructuralTypeAnalyzer:
    def __init__(self, program: ProgramModel,
                 tag_names: FrozenSet[str] = DEFAULT_TAG_NAMES):
        self.program = program
        self.tag_names = tag_names

    # ---- collection ----------------------------------------------------

    def collect(self, sinks: Iterable[Sink], function: str) -> DiscriminatedTypeSet:
        tset = DiscriminatedTypeSet()
        for sink in sinks:
            if sink.type_id is not None:
                tset.add(DeserializationSite(sink.type_id, function, sink.location))
        return tset

    # ---- structure queries --------------------------------------------

    def _field_type(self, type_id: Optional[int]) -> Optional[TypeDescriptor]:
        return self.program.type(type_id)

    def has_discriminant(self, t: TypeDescriptor) -> bool:
        if type_has_fact(t, FACT_DISCRIMINANT):
            return True
        if not t.is_struct or not t.fields:
            return False
        lead = t.fields[0]
        lead_type = self._field_type(lead.type_id)
        return (lead_type is not None and lead_type.is_enum) or lead.name in self.tag_names

    def umbrella_enum(self, structs: List[TypeDescriptor],
                      n: int) -> Optional[TypeDescriptor]:
        """An enum every struct embeds, with at least ``n − 1`` variants."""
        for e in self.program.enums():
            if e.variant_count < n - 1:
                continue
            if all(any(f.type_id == e.id for f in s.fields) for s in structs):
                return e
        return None

    # ---- verdict -------------------------------------------------------

    def verdict(self, tset: DiscriminatedTypeSet) -> List[TypeVerdict]:
        types = [self.program.type(tid) for tid in tset.type_ids]
        types = [t for t in types if t is not None]
        n = len(types)
        if n == 0:
            return []
        if n == 1 and types[0].is_enum:
            return []
        if all(t.is_struct for t in types):
            umbrella = self.umbrella_enum(types, n)
            if umbrella is not None:
                _log.debug("umbrella enum %s covers %d types", umbrella.path, n)
                return []
        enums = [t for t in types if t.is_enum]
        reported: List[TypeVerdict] = []
        for t in types:
            if t.is_enum:
                if len(enums) > 1:
                    reported.append(TypeVerdict(t, True, tuple(tset.sites_of(t.id))))
            elif not self.has_discriminant(t):
                reported.append(TypeVerdict(t, False, tuple(tset.sites_of(t.id))))
        _log.debug("type cosplay: %d of %d deserialized types reported",
                   len(reported), n)
        return reported


__all__ = [
    "AMBIGUOUS_ENUM_MESSAGE",
    "DEFAULT_TAG_NAMES",
    "DeserializationSite",
    "DiscriminatedTypeSet",
    "StructuralTypeAnalyzer",
    "TypeVerdict",
]
