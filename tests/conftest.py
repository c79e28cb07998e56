# tests/conftest.py
"""
Shared fixtures and graph builders for the infallible-allocation tests.

Units are built directly instead of through a collector dump so that each
test states exactly which units are local, generic or external.
"""

import pytest

from infallible_alloc.access_model import (
    Access,
    AccessMap,
    GenericArg,
    ItemKind,
    Location,
    MonoItem,
    Unit,
)
from infallible_alloc.callgraph import CallGraph


# ── Builders ─────────────────────────────────────────────────────

def make_unit(path, *, local=False, crate=None, args=(), def_span=None,
              kind=ItemKind.FN):
    """A Unit whose crate defaults to the first path segment.

    ``args`` may be GenericArg objects or strings (taken as types).
    """
    generic_args = tuple(
        a if isinstance(a, GenericArg) else GenericArg.type_(a) for a in args
    )
    return Unit(
        path=path,
        crate=crate if crate is not None else path.split("::")[0],
        generic_args=generic_args,
        is_local=local,
        kind=kind,
        def_span=def_span,
    )


def loc(line, column=5, file="src/lib.rs"):
    """A one-line span of width 10."""
    return Location(file, line, column, line, column + 10)


def make_graph(*edges):
    """Build a CallGraph from ``(caller, callee[, location])`` tuples.

    Edges without a location get ``loc(n)`` with ``n`` the edge number,
    so every call site is distinct and identifiable.
    """
    cg = CallGraph()
    for n, edge in enumerate(edges, 1):
        caller, callee = edge[0], edge[1]
        location = edge[2] if len(edge) > 2 else loc(n)
        cg.add_edge(caller, callee, location)
    return cg


def make_access_map(*entries):
    """Build an AccessMap from ``(accessor_unit, [accessee_unit, …])``.

    Accessees may also be MonoItem objects (for global asm) or
    ``(unit, location)`` pairs.
    """
    amap = AccessMap()
    for accessor, accessees in entries:
        accesses = []
        for accessee in accessees:
            location = None
            if isinstance(accessee, tuple):
                accessee, location = accessee
            item = accessee if isinstance(accessee, MonoItem) else MonoItem.fn(accessee)
            accesses.append(Access(item, location))
        item = accessor if isinstance(accessor, MonoItem) else MonoItem.fn(accessor)
        amap.add(item, accesses)
    return amap


# ── Well-known units ─────────────────────────────────────────────

RAW_ALLOC = make_unit("alloc::alloc::__rust_alloc")
RAW_REALLOC = make_unit("alloc::alloc::__rust_realloc")


@pytest.fixture
def raw_alloc():
    return RAW_ALLOC


@pytest.fixture
def wrapper_graph():
    """``main → wrapper → __rust_alloc`` with main and wrapper local."""
    main = make_unit("demo::main", local=True)
    wrapper = make_unit("demo::wrapper", local=True)
    cg = make_graph((main, wrapper), (wrapper, RAW_ALLOC))
    return cg, main, wrapper


@pytest.fixture
def vec_push_graph():
    """A local function calling ``Vec::<u8>::push``, which reaches __rust_alloc.

    ::

        demo::run ──► Vec::<u8>::push ──► RawVec::<u8>::grow_one ──► finish_grow
                                                                        │
                                               __rust_alloc ◄───────────┘
    """
    run = make_unit("demo::run", local=True)
    push = make_unit("alloc::vec::Vec::push", args=("u8",))
    grow = make_unit("alloc::raw_vec::RawVec::grow_one", args=("u8",))
    finish = make_unit("alloc::raw_vec::finish_grow")
    cg = make_graph(
        (run, push),
        (push, grow),
        (grow, finish),
        (finish, RAW_ALLOC),
    )
    return cg, {"run": run, "push": push, "grow": grow, "finish": finish}


@pytest.fixture
def json_dump_text():
    return """
    {
      "crate": "demo",
      "items": {
        "main": {"kind": "fn", "name": "demo::main",
                 "def_span": ["src/main.rs", 1, 1, 1, 12]},
        "push": {"kind": "fn", "name": "alloc::vec::Vec::<u8>::push"},
        "alloc": {"kind": "fn", "name": "alloc::alloc::__rust_alloc"},
        "table": {"kind": "static", "name": "demo::TABLE"},
        "glue": {"kind": "asm", "name": "global_asm!{0}"}
      },
      "accesses": [
        {"accessor": "main",
         "accessees": [{"item": "push", "span": ["src/main.rs", 3, 5, 3, 20]},
                       "table"]},
        {"accessor": "push", "accessees": [{"item": "alloc"}]}
      ]
    }
    """


@pytest.fixture
def sexp_dump_text():
    return """
    ; collector dump for crate demo
    (crate demo)
    (item main fn "demo::main" (def-span "src/main.rs" 1 1 1 12))
    (item push fn "alloc::vec::Vec::<u8>::push")
    (item alloc fn "alloc::alloc::__rust_alloc")
    (item table static "demo::TABLE")
    (item glue asm "global_asm")
    (access main (push (span "src/main.rs" 3 5 3 20)) table)
    (access push alloc)
    """
