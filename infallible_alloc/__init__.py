"""
infallible_alloc — Call-Graph Lint for Infallible Allocation
============================================================

Finds call paths from code owned by the crate under analysis into library
functions that may abort the process on allocation failure, and explains
each finding with a chain of notes.

Modules
-------
access_model
    Units, collector items and the accessor → accessees multimap.
instance_path
    Parsimonious grammar for rendered instance paths.
callgraph
    Forward/backward call-graph indices with span synthesis.
seeds
    Marker, allocation-primitive and boundary-leaf rules.
propagation
    Worklist taint propagation that stops at local units.
report
    Offending call sites with caller witness and callee cause chains.
analysis
    The whole pipeline behind one call.
loader
    JSON and S-expression collector dumps.
config
    Defaults, JSON file and environment overrides.
plus_reporter
    Terminal, plain, JSON, SARIF and HTML diagnostic output.

Quick start
-----------
>>> from infallible_alloc import load_dump, analyze
>>> result = analyze(load_dump("crate.json").access_map)
>>> for diag in result.diagnostics:
...     print(diag.render())
"""

from __future__ import annotations

import importlib
import logging
import sys
from typing import Dict, List

# ---------------------------------------------------------------------------
# Package metadata
# ---------------------------------------------------------------------------

__version__ = "0.1.0"
__all__: List[str] = []          # populated below

_log = logging.getLogger(__name__)
_log.addHandler(logging.NullHandler())

# ---------------------------------------------------------------------------
# Re-export registry: module name → public names
# ---------------------------------------------------------------------------

_MODULES: Dict[str, List[str]] = {
    "errors": [
        "InfallibleAllocError",
        "DumpFormatError",
        "InstancePathError",
        "ConfigError",
        "ErrorCodes",
    ],
    "access_model": [
        "ItemKind",
        "GenericArg",
        "Location",
        "Unit",
        "MonoItem",
        "Access",
        "AccessMap",
        "RawAccess",
        "normalize_accesses",
    ],
    "instance_path": [
        "parse_instance_path",
        "unit_from_path",
    ],
    "callgraph": [
        "CallEdge",
        "CallGraph",
        "build_callgraph",
    ],
    "seeds": [
        "PrimitiveKind",
        "MarkerScope",
        "SeedClassifier",
        "Classification",
        "classify",
    ],
    "propagation": [
        "TaintResult",
        "propagate",
    ],
    "report": [
        "AllocationDiagnostic",
        "DiagnosticNote",
        "build_diagnostics",
    ],
    "config": [
        "AnalysisConfig",
        "load_config",
    ],
    "loader": [
        "CollectorDump",
        "load_dump",
    ],
    "plus_reporter": [
        "Reporter",
        "Severity",
    ],
    "analysis": [
        "AnalysisResult",
        "InfallibleAllocationLint",
        "analyze",
        "emit_diagnostics",
    ],
}


def _import_names(module_rel_name: str, names: List[str]) -> None:
    """Import *names* from a submodule and bind them in the package namespace."""
    mod = importlib.import_module(f"{__name__}.{module_rel_name}")
    current_module = sys.modules[__name__]
    for name in names:
        setattr(current_module, name, getattr(mod, name))
        __all__.append(name)
    setattr(current_module, module_rel_name, mod)
    __all__.append(module_rel_name)


for _mod, _names in _MODULES.items():
    _import_names(_mod, _names)

del _mod, _names

_log.debug("infallible_alloc %s loaded (%d names)", __version__, len(__all__))
