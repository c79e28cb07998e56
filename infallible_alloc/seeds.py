"""
infallible_alloc.seeds
======================

Decides, by identity rules, where taint starts and where it must never go.

Rules, checked in order for every unit of the call graph:

1. **Marker** — the identity text contains the assume-fallible marker
   substring.  The unit and its direct neighbours (callers by default,
   callees with ``MarkerScope.CALLEES``) are whitelisted: they start out
   visited, so propagation never taints them.
2. **Primitive** — the identity text equals an allowlisted allocation
   primitive.  The unit is a taint seed.
3. Otherwise no classification.

Independently, every callee that is a *leaf* (never reported as an
accessor, so it has no forward entry) and originates from a boundary crate
(``alloc`` by default) is a leaf seed.  Helpers such as ``len()`` or
``is_empty()`` that are code-generated in this crate are accessors, even
when they call nothing, so they are never leaves.

The rules are a best-effort heuristic.  A fallible-looking name that is
missing from the allowlist falls through silently; maintainers extend the
allowlist through configuration rather than by touching propagation.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import (
    TYPE_CHECKING,
    AbstractSet,
    Dict,
    Iterable,
    List,
    Optional,
    Set,
    Tuple,
)

from infallible_alloc.access_model import Unit
from infallible_alloc.callgraph import CallGraph

if TYPE_CHECKING:
    from infallible_alloc.config import AnalysisConfig

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  RULE TABLES
# ═══════════════════════════════════════════════════════════════════════════

class PrimitiveKind(enum.Enum):
    """Known allocation primitives, tagged by what they do.

    Each member carries the identity string it matches.
    """

    ALLOC = "alloc::alloc::__rust_alloc"
    ALLOC_ZEROED = "alloc::alloc::__rust_alloc_zeroed"
    REALLOC = "alloc::alloc::__rust_realloc"
    DEALLOC = "alloc::alloc::__rust_dealloc"
    RESERVE = "alloc::string::String::reserve"
    RESERVE_EXACT = "alloc::string::String::reserve_exact"

    @property
    def identity(self) -> str:
        return self.value

    @classmethod
    def from_identity(cls, text: str) -> Optional[PrimitiveKind]:
        try:
            return cls(text)
        except ValueError:
            return None


class MarkerScope(enum.Enum):
    """Which direct neighbours of an assume-fallible marker are whitelisted."""

    CALLERS = "callers"
    CALLEES = "callees"


@dataclass(frozen=True)
class SeedRule:
    """An allowlist entry.  ``kind`` is ``None`` for configured extras."""

    identity: str
    kind: Optional[PrimitiveKind] = None

    def matches(self, unit: Unit) -> bool:
        return unit.def_path_str() == self.identity

    @classmethod
    def for_identity(cls, identity: str) -> SeedRule:
        return cls(identity, PrimitiveKind.from_identity(identity))


DEFAULT_RULES: Tuple[SeedRule, ...] = tuple(
    SeedRule(kind.identity, kind) for kind in PrimitiveKind
)


# ═══════════════════════════════════════════════════════════════════════════
#  CLASSIFICATION RESULT
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class Classification:
    """Output of :meth:`SeedClassifier.classify`.

    Attributes:
        markers: Units whose identity contains the marker.
        whitelist: Markers plus their whitelisted neighbours.
        primitive_seeds: Units matching an allowlist rule, in discovery order.
        leaf_seeds: Boundary-crate leaves, in discovery order.
        matched_rules: Which rule matched each primitive seed.
    """

    markers: List[Unit] = field(default_factory=list)
    whitelist: Set[Unit] = field(default_factory=set)
    primitive_seeds: List[Unit] = field(default_factory=list)
    leaf_seeds: List[Unit] = field(default_factory=list)
    matched_rules: Dict[Unit, SeedRule] = field(default_factory=dict)

    @property
    def seeds(self) -> List[Unit]:
        """Initial worklist contents, primitives first."""
        return self.primitive_seeds + self.leaf_seeds

    def initial_visited(self) -> Set[Unit]:
        """The whitelist minus the primitives, which always stay seeds."""
        return self.whitelist.difference(self.primitive_seeds)


# ═══════════════════════════════════════════════════════════════════════════
#  CLASSIFIER
# ═══════════════════════════════════════════════════════════════════════════

class SeedClassifier:
    """Applies the marker, primitive and boundary-leaf rules to a graph."""

    def __init__(
        self,
        marker: str = "assume_fallible",
        rules: Iterable[SeedRule] = DEFAULT_RULES,
        boundary_crates: AbstractSet[str] = frozenset({"alloc"}),
        marker_scope: MarkerScope = MarkerScope.CALLERS,
    ) -> None:
        self.marker = marker
        self.rules: Dict[str, SeedRule] = {r.identity: r for r in rules}
        self.boundary_crates = frozenset(boundary_crates)
        self.marker_scope = marker_scope

    @classmethod
    def from_config(cls, config: AnalysisConfig) -> SeedClassifier:
        return cls(
            marker=config.marker,
            rules=[SeedRule.for_identity(p) for p in config.all_primitives],
            boundary_crates=config.boundary_crates,
            marker_scope=config.marker_scope,
        )

    # ----- single-unit queries ----------------------------------------------

    def is_marker(self, unit: Unit) -> bool:
        return self.marker in unit.def_path_str()

    def match_rule(self, unit: Unit) -> Optional[SeedRule]:
        return self.rules.get(unit.def_path_str())

    def is_boundary_leaf(self, cg: CallGraph, unit: Unit) -> bool:
        return cg.is_leaf(unit) and unit.crate in self.boundary_crates

    def _marker_neighbours(self, cg: CallGraph, unit: Unit):
        if self.marker_scope is MarkerScope.CALLEES:
            return cg.callees(unit)
        return cg.callers(unit)

    # ----- whole graph ------------------------------------------------------

    def classify(self, cg: CallGraph) -> Classification:
        result = Classification()

        for unit in cg.units:
            if self.is_marker(unit):
                result.markers.append(unit)
                result.whitelist.add(unit)
                result.whitelist.update(
                    edge.node for edge in self._marker_neighbours(cg, unit)
                )
                continue

            rule = self.match_rule(unit)
            if rule is not None:
                result.primitive_seeds.append(unit)
                result.matched_rules[unit] = rule

        for unit in cg.backward:
            if self.is_boundary_leaf(cg, unit):
                result.leaf_seeds.append(unit)

        logger.debug(
            "classified: %d marker(s), %d whitelisted, %d primitive seed(s), "
            "%d leaf seed(s)",
            len(result.markers), len(result.whitelist),
            len(result.primitive_seeds), len(result.leaf_seeds),
        )
        return result


def classify(
    cg: CallGraph,
    config: Optional[AnalysisConfig] = None,
) -> Classification:
    """Classify *cg* with the default rules or those of *config*."""
    if config is None:
        return SeedClassifier().classify(cg)
    return SeedClassifier.from_config(config).classify(cg)


__all__ = [
    "PrimitiveKind",
    "MarkerScope",
    "SeedRule",
    "DEFAULT_RULES",
    "Classification",
    "SeedClassifier",
    "classify",
]
