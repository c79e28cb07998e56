"""
infallible_alloc.report
=======================

Turns the taint set into diagnostics, one per offending call site.

A call site ``caller → callee`` is offending when the caller is local and
tainted and the callee is external and tainted.  Each diagnostic carries
two witness chains:

* **caller witness chain** — while the current unit is a generic
  instance, walk to the first caller not yet used and note
  ``called from `…```.  Shows the monomorphization context that makes the
  path reachable.
* **callee cause chain** — from the callee, walk to the first tainted
  callee not yet used and note ``… calls into `…```.  Ends at the
  primitive responsible.

Both walks share one visited set per diagnostic, seeded with the caller
and the callee, so no unit is noted twice and both walks terminate.
Choices always take the first matching edge in stored order, so the same
graph always yields byte-identical notes.

Diagnostics are plain data.  Emission belongs to
:mod:`infallible_alloc.plus_reporter`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import (
    AbstractSet,
    Any,
    Dict,
    List,
    Optional,
    Set,
    Tuple,
)

from infallible_alloc.access_model import Location, Unit
from infallible_alloc.callgraph import CallEdge, CallGraph

logger = logging.getLogger(__name__)

LINT_NAME = "infallible_allocation"
DEFAULT_FAILURE_HANDLER = "alloc_error_handler"


# ═════════════════════════════════════════════════════════════════════════
#  DATA STRUCTURES
# ═════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class DiagnosticNote:
    """A secondary message, with the span it points at if any."""

    message: str
    location: Optional[Location] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"message": self.message}
        if self.location is not None:
            result["location"] = _location_dict(self.location)
        return result


@dataclass(frozen=True)
class AllocationDiagnostic:
    """One offending call site.

    Attributes
    ----------
    message : str
        Primary message.
    location : Location
        The call site.
    caller, callee : Unit
        The local caller and the external callee of the call site.
    notes : tuple[DiagnosticNote, ...]
        Caller witness notes, then cause notes, then the closing note.
    lint : str
        Lint identifier.
    """

    message: str
    location: Location
    caller: Unit
    callee: Unit
    notes: Tuple[DiagnosticNote, ...] = ()
    lint: str = LINT_NAME

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lint": self.lint,
            "message": self.message,
            "location": _location_dict(self.location),
            "caller": self.caller.display(),
            "callee": self.callee.display(),
            "notes": [note.to_dict() for note in self.notes],
        }

    def render(self) -> str:
        """Plain rustc-style text, without colour."""
        lines = [f"warning[{self.lint}]: {self.message}", f"  --> {self.location}"]
        for note in self.notes:
            lines.append(f"  = note: {note.message}")
            if note.location is not None:
                lines.append(f"    --> {note.location}")
        return "\n".join(lines)


def _location_dict(loc: Location) -> Dict[str, Any]:
    return {
        "file": loc.file,
        "line": loc.line,
        "column": loc.column,
        "end_line": loc.end_line,
        "end_column": loc.end_column,
    }


# ═════════════════════════════════════════════════════════════════════════
#  WITNESS CHAINS
# ═════════════════════════════════════════════════════════════════════════

def _first_unvisited(
    edges: List[CallEdge],
    visited: Set[Unit],
    taint: Optional[AbstractSet[Unit]] = None,
) -> Optional[CallEdge]:
    for edge in edges:
        if edge.node in visited:
            continue
        if taint is not None and edge.node not in taint:
            continue
        return edge
    return None


def caller_witness_chain(
    cg: CallGraph,
    caller: Unit,
    visited: Set[Unit],
) -> List[DiagnosticNote]:
    """Walk generic ancestors of *caller*; *visited* is updated in place."""
    notes: List[DiagnosticNote] = []
    current = caller
    while current.is_generic:
        edge = _first_unvisited(cg.backward.get(current, []), visited)
        if edge is None:
            break
        current = edge.node
        visited.add(current)
        notes.append(
            DiagnosticNote(f"called from `{current.display()}`", edge.location)
        )
    return notes


def callee_cause_chain(
    cg: CallGraph,
    callee: Unit,
    taint: AbstractSet[Unit],
    visited: Set[Unit],
) -> Tuple[List[DiagnosticNote], str]:
    """Walk tainted descendants of *callee*.

    Returns the notes and the lead-in phrase for whatever note comes next.
    """
    notes: List[DiagnosticNote] = []
    lead = f"`{callee.display()}` is determined to be infallible because it"
    current = callee
    while True:
        edge = _first_unvisited(cg.forward.get(current, []), visited, taint)
        if edge is None:
            break
        current = edge.node
        visited.add(current)
        notes.append(
            DiagnosticNote(f"{lead} calls into `{current.display()}`", edge.location)
        )
        lead = "which"
    return notes, lead


# ═════════════════════════════════════════════════════════════════════════
#  DIAGNOSTICS
# ═════════════════════════════════════════════════════════════════════════

def primary_message(caller: Unit, callee: Unit) -> str:
    message = f"`{callee.display()}` can perform an infallible allocation"
    if caller.is_generic:
        message += f", when the caller is monomorphized as `{caller.display()}`"
    return message


def build_diagnostic(
    cg: CallGraph,
    taint: AbstractSet[Unit],
    caller: Unit,
    edge: CallEdge,
    failure_handler: str = DEFAULT_FAILURE_HANDLER,
) -> AllocationDiagnostic:
    """Build the diagnostic for the call site ``caller → edge.node``."""
    callee = edge.node
    visited: Set[Unit] = {caller, callee}

    notes = caller_witness_chain(cg, caller, visited)
    cause_notes, lead = callee_cause_chain(cg, callee, taint, visited)
    notes.extend(cause_notes)
    notes.append(DiagnosticNote(f"{lead} may call {failure_handler}"))

    return AllocationDiagnostic(
        message=primary_message(caller, callee),
        location=edge.location,
        caller=caller,
        callee=callee,
        notes=tuple(notes),
    )


def offending_call_sites(
    cg: CallGraph,
    taint: AbstractSet[Unit],
) -> List[Tuple[Unit, CallEdge]]:
    """Local tainted callers paired with each external tainted call site."""
    sites: List[Tuple[Unit, CallEdge]] = []
    for caller, edges in cg.forward.items():
        if not caller.is_local or caller not in taint:
            continue
        for edge in edges:
            if not edge.node.is_local and edge.node in taint:
                sites.append((caller, edge))
    return sites


def build_diagnostics(
    cg: CallGraph,
    taint: AbstractSet[Unit],
    failure_handler: str = DEFAULT_FAILURE_HANDLER,
) -> List[AllocationDiagnostic]:
    """Build every diagnostic, in forward-index order."""
    diagnostics = [
        build_diagnostic(cg, taint, caller, edge, failure_handler)
        for caller, edge in offending_call_sites(cg, taint)
    ]
    logger.debug("built %d diagnostic(s)", len(diagnostics))
    return diagnostics


__all__ = [
    "LINT_NAME",
    "DEFAULT_FAILURE_HANDLER",
    "DiagnosticNote",
    "AllocationDiagnostic",
    "caller_witness_chain",
    "callee_cause_chain",
    "primary_message",
    "build_diagnostic",
    "offending_call_sites",
    "build_diagnostics",
]
