"""
infallible_alloc.callgraph
==========================

Builds the forward and backward call-graph indices from the normalized
access triples.

The call graph is a pair of adjacency maps over :class:`Unit` nodes:

- **forward**  ``caller → [CallEdge(callee, location), …]``
- **backward** ``callee → [CallEdge(caller, location), …]``

Both lists keep discovery order and keep duplicates: two calls to the same
function from the same caller are two call sites.  The backward map is
filled in the same pass as the forward map and is its exact transpose.

Span synthesis
--------------
Accesses discovered through constant evaluation carry no span.  For those,
the caller's definition span is used instead.  The span is looked up at
most once per caller.

Public API
----------
    CallEdge         - an adjacency-list entry (node + location)
    CallGraph        - forward/backward indices plus queries
    build_callgraph  - build from an ``AccessMap`` or a triple stream
    callgraph_summary - human-readable multi-line summary

Typical usage::

    from infallible_alloc.callgraph import build_callgraph

    cg = build_callgraph(access_map)
    for caller, edges in cg.forward.items():
        print(caller, "calls", [str(e.node) for e in edges])
    print(cg.to_dot())
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import (
    AbstractSet,
    Any,
    Dict,
    Iterable,
    Iterator,
    List,
    Optional,
    Set,
    Tuple,
    Union,
)

from infallible_alloc.access_model import (
    DUMMY_LOCATION,
    AccessMap,
    Location,
    RawAccess,
    Unit,
    normalize_accesses,
)

logger = logging.getLogger(__name__)

_EMPTY: Tuple["CallEdge", ...] = ()


# ---------------------------------------------------------------------------
# CallEdge
# ---------------------------------------------------------------------------

class CallEdge:
    """An entry in an adjacency list.

    In the forward index ``node`` is the callee; in the backward index it
    is the caller.  ``location`` is the call site in both.
    """

    __slots__ = ("node", "location")

    def __init__(self, node: Unit, location: Location) -> None:
        self.node = node
        self.location = location

    def __repr__(self) -> str:
        return f"CallEdge({self.node.display()!r} @ {self.location})"

    def __hash__(self) -> int:
        return hash((self.node, self.location))

    def __eq__(self, other) -> bool:
        if isinstance(other, CallEdge):
            return self.node == other.node and self.location == other.location
        return NotImplemented


# ---------------------------------------------------------------------------
# CallGraph
# ---------------------------------------------------------------------------

class CallGraph:
    """Forward and backward call-graph indices for one crate.

    Attributes
    ----------
    forward : dict[Unit, list[CallEdge]]
        Outgoing call sites per caller, in discovery order.
    backward : dict[Unit, list[CallEdge]]
        Incoming call sites per callee, in discovery order.
    synthesized_spans : int
        How many call sites got the caller's definition span because the
        collector reported none.
    """

    def __init__(self) -> None:
        self.forward: Dict[Unit, List[CallEdge]] = {}
        self.backward: Dict[Unit, List[CallEdge]] = {}
        self.synthesized_spans = 0
        self._def_spans: Dict[Unit, Location] = {}

    # ----- construction -----------------------------------------------------

    def _call_site(self, caller: Unit, location: Optional[Location]) -> Location:
        if location is not None and not location.is_dummy:
            return location
        span = self._def_spans.get(caller)
        if span is None:
            span = caller.def_span or DUMMY_LOCATION
            self._def_spans[caller] = span
        self.synthesized_spans += 1
        return span

    def add_node(self, caller: Unit) -> None:
        """Register a code-generated unit as a caller, even with no call sites."""
        self.forward.setdefault(caller, [])

    def add_edge(
        self,
        caller: Unit,
        callee: Unit,
        location: Optional[Location] = None,
    ) -> Location:
        """Record one call site in both indices; return the span used."""
        span = self._call_site(caller, location)
        self.forward.setdefault(caller, []).append(CallEdge(callee, span))
        self.backward.setdefault(callee, []).append(CallEdge(caller, span))
        return span

    # ----- lookups ----------------------------------------------------------

    def callees(self, unit: Unit) -> Tuple[CallEdge, ...]:
        return tuple(self.forward.get(unit, _EMPTY))

    def callers(self, unit: Unit) -> Tuple[CallEdge, ...]:
        return tuple(self.backward.get(unit, _EMPTY))

    def is_leaf(self, unit: Unit) -> bool:
        """A unit that was never an accessor: it has no forward entry."""
        return unit not in self.forward

    @property
    def units(self) -> List[Unit]:
        """Every node, callers first, each once, in discovery order."""
        seen: Dict[Unit, None] = dict.fromkeys(self.forward)
        for unit in self.backward:
            seen.setdefault(unit, None)
        return list(seen)

    def edges(self) -> Iterator[Tuple[Unit, Unit, Location]]:
        """All call sites as ``(caller, callee, location)``."""
        for caller, out in self.forward.items():
            for edge in out:
                yield caller, edge.node, edge.location

    @property
    def edge_count(self) -> int:
        return sum(len(out) for out in self.forward.values())

    def check_transpose(self) -> bool:
        """Verify that backward is exactly the transpose of forward."""
        fwd = Counter(self.edges())
        bwd = Counter(
            (edge.node, callee, edge.location)
            for callee, incoming in self.backward.items()
            for edge in incoming
        )
        return fwd == bwd

    # ----- whole-graph queries ----------------------------------------------

    def transitive_callers(self, unit: Unit) -> Set[Unit]:
        """Every unit that transitively calls *unit*."""
        visited: Set[Unit] = set()
        stack = [unit]
        while stack:
            current = stack.pop()
            if current in visited:
                continue
            visited.add(current)
            stack.extend(edge.node for edge in self.backward.get(current, _EMPTY))
        visited.discard(unit)
        return visited

    def strongly_connected_components(self) -> List[List[Unit]]:
        """Tarjan's SCC algorithm with an explicit stack.

        Components come out callee-first.
        """
        index: Dict[Unit, int] = {}
        lowlink: Dict[Unit, int] = {}
        on_stack: Set[Unit] = set()
        stack: List[Unit] = []
        result: List[List[Unit]] = []
        counter = 0

        for root in self.units:
            if root in index:
                continue
            work: List[Tuple[Unit, int]] = [(root, 0)]
            while work:
                v, pos = work.pop()
                if pos == 0:
                    index[v] = lowlink[v] = counter
                    counter += 1
                    stack.append(v)
                    on_stack.add(v)
                out = self.forward.get(v, _EMPTY)
                if pos < len(out):
                    work.append((v, pos + 1))
                    w = out[pos].node
                    if w not in index:
                        work.append((w, 0))
                    elif w in on_stack:
                        lowlink[v] = min(lowlink[v], index[w])
                    continue
                # all successors done; fold lowlink into the parent frame
                if work:
                    parent = work[-1][0]
                    lowlink[parent] = min(lowlink[parent], lowlink[v])
                if lowlink[v] == index[v]:
                    scc: List[Unit] = []
                    while True:
                        w = stack.pop()
                        on_stack.discard(w)
                        scc.append(w)
                        if w == v:
                            break
                    result.append(scc)
        return result

    # ----- statistics -------------------------------------------------------

    def statistics(self) -> Dict[str, Any]:
        """Return a dict with summary statistics."""
        units = self.units
        sccs = self.strongly_connected_components()
        n_self = sum(
            1 for u, out in self.forward.items() if any(e.node == u for e in out)
        )
        return {
            "units": len(units),
            "local_units": sum(1 for u in units if u.is_local),
            "external_units": sum(1 for u in units if not u.is_local),
            "generic_units": sum(1 for u in units if u.is_generic),
            "call_sites": self.edge_count,
            "synthesized_spans": self.synthesized_spans,
            "leaf_units": sum(1 for u in self.backward if self.is_leaf(u)),
            "recursive_sccs": sum(1 for scc in sccs if len(scc) > 1),
            "self_recursive_units": n_self,
        }

    # ----- serialisation ----------------------------------------------------

    def to_dot(
        self,
        title: Optional[str] = None,
        taint: Optional[AbstractSet[Unit]] = None,
    ) -> str:
        """Return a Graphviz DOT representation.

        When *taint* is given, tainted units are filled red.
        """
        ids: Dict[Unit, str] = {}
        lines = ["digraph CallGraph {"]
        lines.append("  rankdir=TB;")
        if title:
            lines.append(f'  label="{title}";')
        lines.append('  node [shape=box, fontname="Helvetica", fontsize=10];')

        for n, unit in enumerate(self.units):
            ids[unit] = f"n{n}"
            if taint is not None and unit in taint:
                attrs = 'style=filled, fillcolor="#ffcccc"'
            elif unit.is_local:
                attrs = 'style=filled, fillcolor="#ddeeff"'
            else:
                attrs = 'style=filled, fillcolor="#fff3cd", shape=ellipse'
            escaped = unit.display().replace('"', '\\"')
            lines.append(f'  {ids[unit]} [label="{escaped}", {attrs}];')

        for caller, callee, location in self.edges():
            label = f"{location.line}" if not location.is_dummy else ""
            lines.append(f'  {ids[caller]} -> {ids[callee]} [label="{label}"];')
        lines.append("}")
        return "\n".join(lines)

    def __repr__(self) -> str:
        return (
            f"CallGraph(units={len(self.units)}, call_sites={self.edge_count})"
        )


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------

def build_callgraph(
    accesses: Union[AccessMap, Iterable[RawAccess]],
) -> CallGraph:
    """Build the call graph in a single pass over the access triples.

    Parameters
    ----------
    accesses : AccessMap or iterable of RawAccess
        Collector output, or an already-normalized triple stream.  Only an
        ``AccessMap`` can register accessors that have no call sites.

    Returns
    -------
    CallGraph
        Forward and backward indices, complete and mutually consistent.
        Later stages add no edges.
    """
    cg = CallGraph()
    if isinstance(accesses, AccessMap):
        # Every callable accessor gets a forward entry before its accessees
        # are walked, so a helper that calls nothing is not a leaf.
        for accessor, _ in accesses.iter_accesses():
            caller = accessor.to_unit()
            if caller is not None:
                cg.add_node(caller)
        accesses = normalize_accesses(accesses)

    for caller, callee, location in accesses:
        cg.add_edge(caller, callee, location)

    logger.debug(
        "built call graph: %d callers, %d callees, %d call sites "
        "(%d synthesized spans)",
        len(cg.forward), len(cg.backward), cg.edge_count, cg.synthesized_spans,
    )
    return cg


# ---------------------------------------------------------------------------
# Convenience utilities
# ---------------------------------------------------------------------------

def callgraph_summary(cg: CallGraph) -> str:
    """Return a human-readable multi-line summary."""
    stats = cg.statistics()
    lines = [
        f"Call Graph Summary",
        f"  Units:                {stats['units']}",
        f"  Local units:          {stats['local_units']}",
        f"  External units:       {stats['external_units']}",
        f"  Generic instances:    {stats['generic_units']}",
        f"  Call sites:           {stats['call_sites']}",
        f"  Synthesized spans:    {stats['synthesized_spans']}",
        f"  Leaf callees:         {stats['leaf_units']}",
        f"  Recursive SCCs:       {stats['recursive_sccs']}",
        f"  Self-recursive units: {stats['self_recursive_units']}",
    ]
    return "\n".join(lines)


__all__ = [
    "CallEdge",
    "CallGraph",
    "build_callgraph",
    "callgraph_summary",
]
