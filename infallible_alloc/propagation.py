"""
infallible_alloc.propagation
============================

Fixed-point taint propagation over the backward index.

Algorithm::

    worklist = seeds                      # explicit LIFO stack
    visited  = whitelist - primitive seeds
    while worklist:
        w = worklist.pop()
        if w in visited: continue
        taint += w; visited += w
        if w is local: continue           # boundary stop
        worklist += callers of w

Taint stops at local units: once it reaches code owned by the crate under
analysis it goes no further.  Every report is then anchored at the first
local caller instead of cascading through every local caller above it.

Each unit enters ``visited`` at most once, so the loop terminates on
recursive (cyclic) graphs.  The final taint set does not depend on pop
order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, List, Optional, Set

from infallible_alloc.access_model import Unit
from infallible_alloc.callgraph import CallGraph
from infallible_alloc.seeds import Classification

logger = logging.getLogger(__name__)


@dataclass
class TaintResult:
    """Outcome of one propagation run.

    ``taint`` is always a subset of ``visited``.
    """

    taint: Set[Unit] = field(default_factory=set)
    visited: Set[Unit] = field(default_factory=set)
    seeds: List[Unit] = field(default_factory=list)
    boundary_stops: int = 0

    def is_tainted(self, unit: Unit) -> bool:
        return unit in self.taint

    def __contains__(self, unit: object) -> bool:
        return unit in self.taint

    def __len__(self) -> int:
        return len(self.taint)

    def frozen(self) -> FrozenSet[Unit]:
        return frozenset(self.taint)


def propagate(
    cg: CallGraph,
    seeds: Iterable[Unit],
    visited: Optional[Iterable[Unit]] = None,
) -> TaintResult:
    """Propagate taint from *seeds* to their transitive external callers.

    Parameters
    ----------
    cg : CallGraph
        The graph; only its backward index is read.
    seeds : iterable of Unit
        Initial worklist.  The last seed is popped first.
    visited : iterable of Unit, optional
        Units that start out visited (whitelisted) and are never tainted.
    """
    result = TaintResult(seeds=list(seeds), visited=set(visited or ()))
    worklist: List[Unit] = list(result.seeds)

    while worklist:
        work_item = worklist.pop()
        if work_item in result.visited:
            continue

        result.taint.add(work_item)
        result.visited.add(work_item)

        if work_item.is_local:
            result.boundary_stops += 1
            continue

        worklist.extend(edge.node for edge in cg.backward.get(work_item, ()))

    logger.debug(
        "propagated taint to %d unit(s) from %d seed(s); %d boundary stop(s)",
        len(result.taint), len(result.seeds), result.boundary_stops,
    )
    return result


def propagate_classified(cg: CallGraph, classification: Classification) -> TaintResult:
    """Run :func:`propagate` with a classifier's seeds and whitelist."""
    return propagate(
        cg,
        seeds=classification.seeds,
        visited=classification.initial_visited(),
    )


__all__ = [
    "TaintResult",
    "propagate",
    "propagate_classified",
]
