"""
infallible_alloc.analysis
=========================

Whole-crate driver: access map in, diagnostics out.

Pipeline::

    AccessMap ──normalize──► triples ──build──► CallGraph
        ──classify──► seeds + whitelist ──propagate──► taint
        ──report──► [AllocationDiagnostic]

Every stage is a pure function of its inputs; all state belongs to one
:meth:`InfallibleAllocationLint.check_crate` call.

Usage::

    from infallible_alloc import InfallibleAllocationLint, load_dump

    dump = load_dump("demo.json")
    result = InfallibleAllocationLint().check_crate(dump.access_map)
    for diag in result.diagnostics:
        print(diag.render())
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Union

from infallible_alloc.access_model import AccessMap, RawAccess, Unit
from infallible_alloc.callgraph import CallGraph, build_callgraph
from infallible_alloc.config import AnalysisConfig
from infallible_alloc.plus_reporter import Reporter, Severity, emit_allocation_diagnostics
from infallible_alloc.propagation import TaintResult, propagate_classified
from infallible_alloc.report import AllocationDiagnostic, build_diagnostics
from infallible_alloc.seeds import Classification, SeedClassifier

logger = logging.getLogger(__name__)


@dataclass
class AnalysisResult:
    """Everything one run produced, for inspection and reporting."""

    callgraph: CallGraph
    classification: Classification
    taint: TaintResult
    diagnostics: List[AllocationDiagnostic] = field(default_factory=list)

    @property
    def tainted_units(self) -> List[Unit]:
        """Tainted units sorted by display string."""
        return sorted(self.taint.taint, key=lambda u: (u.display(), u.crate))

    @property
    def tainted_local_units(self) -> List[Unit]:
        return [u for u in self.tainted_units if u.is_local]


class InfallibleAllocationLint:
    """Runs the infallible-allocation analysis over one crate."""

    name = "infallible_allocation"

    def __init__(self, config: Optional[AnalysisConfig] = None) -> None:
        self.config = config or AnalysisConfig()
        self.classifier = SeedClassifier.from_config(self.config)

    def check_crate(
        self,
        accesses: Union[AccessMap, Iterable[RawAccess]],
    ) -> AnalysisResult:
        cg = build_callgraph(accesses)
        classification = self.classifier.classify(cg)
        taint = propagate_classified(cg, classification)
        diagnostics = build_diagnostics(cg, taint.taint, self.config.failure_handler)

        logger.info(
            "%d unit(s), %d call site(s), %d tainted, %d diagnostic(s)",
            len(cg.units), cg.edge_count, len(taint), len(diagnostics),
        )
        return AnalysisResult(cg, classification, taint, diagnostics)


def analyze(
    accesses: Union[AccessMap, Iterable[RawAccess]],
    config: Optional[AnalysisConfig] = None,
) -> AnalysisResult:
    """Shorthand for ``InfallibleAllocationLint(config).check_crate(accesses)``."""
    return InfallibleAllocationLint(config).check_crate(accesses)


def emit_diagnostics(
    diagnostics: Iterable[AllocationDiagnostic],
    reporter: Reporter,
    severity: Union[Severity, str] = Severity.WARNING,
) -> int:
    """Hand *diagnostics* to *reporter*; returns the number emitted."""
    if isinstance(severity, str):
        severity = Severity.from_string(severity)
    return emit_allocation_diagnostics(reporter, diagnostics, severity)


__all__ = [
    "AnalysisResult",
    "InfallibleAllocationLint",
    "analyze",
    "emit_diagnostics",
]
