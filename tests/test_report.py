# tests/test_report.py
"""
Tests for offending call-site detection and witness-chain notes.
"""

import pytest

from infallible_alloc.access_model import GenericArg
from infallible_alloc.instance_path import unit_from_path
from infallible_alloc.propagation import propagate, propagate_classified
from infallible_alloc.report import (
    LINT_NAME,
    build_diagnostic,
    build_diagnostics,
    caller_witness_chain,
    offending_call_sites,
    primary_message,
)
from infallible_alloc.seeds import classify
from tests.conftest import RAW_ALLOC, loc, make_graph, make_unit


def _diagnostics(cg, failure_handler="alloc_error_handler"):
    taint = propagate_classified(cg, classify(cg)).taint
    return build_diagnostics(cg, taint, failure_handler)


class TestWrapperScenario:

    def test_local_wrapper_reports_once(self, wrapper_graph):
        cg, _main, wrapper = wrapper_graph
        [diag] = _diagnostics(cg)
        assert diag.caller == wrapper
        assert diag.callee == RAW_ALLOC
        assert diag.location == loc(2)
        assert diag.message == (
            "`alloc::alloc::__rust_alloc` can perform an infallible allocation"
        )
        assert diag.lint == LINT_NAME

    def test_closing_note_without_cause_chain(self, wrapper_graph):
        cg, _main, _wrapper = wrapper_graph
        [diag] = _diagnostics(cg)
        [note] = diag.notes
        assert note.message == (
            "`alloc::alloc::__rust_alloc` is determined to be infallible "
            "because it may call alloc_error_handler"
        )
        assert note.location is None

    def test_all_external_reports_nothing(self):
        main = make_unit("lib::main")
        wrapper = make_unit("lib::wrapper")
        cg = make_graph((main, wrapper), (wrapper, RAW_ALLOC))
        assert _diagnostics(cg) == []


class TestCauseChain:

    def test_chain_walks_to_primitive(self, vec_push_graph):
        cg, units = vec_push_graph
        [diag] = _diagnostics(cg)
        assert diag.caller == units["run"]
        assert diag.message == (
            "`alloc::vec::Vec::push::<u8>` can perform an infallible allocation"
        )
        assert [(n.message, n.location) for n in diag.notes] == [
            ("`alloc::vec::Vec::push::<u8>` is determined to be infallible because "
             "it calls into `alloc::raw_vec::RawVec::grow_one::<u8>`", loc(2)),
            ("which calls into `alloc::raw_vec::finish_grow`", loc(3)),
            ("which calls into `alloc::alloc::__rust_alloc`", loc(4)),
            ("which may call alloc_error_handler", None),
        ]

    def test_untainted_callees_are_skipped(self):
        run = make_unit("demo::run", local=True)
        push = make_unit("alloc::vec::Vec::push", args=("u8",))
        helper = make_unit("core::ptr::write")
        cg = make_graph((run, push), (push, helper), (push, RAW_ALLOC))
        [diag] = _diagnostics(cg)
        assert diag.notes[0].message.endswith("calls into `alloc::alloc::__rust_alloc`")
        assert diag.notes[0].location == loc(3)

    def test_custom_failure_handler(self, wrapper_graph):
        cg, _main, _wrapper = wrapper_graph
        [diag] = _diagnostics(cg, failure_handler="oom_hook")
        assert diag.notes[-1].message.endswith("may call oom_hook")

    def test_cycle_in_callees_terminates(self):
        run = make_unit("demo::run", local=True)
        a = make_unit("lib::a")
        b = make_unit("lib::b")
        cg = make_graph((run, a), (a, b), (b, a), (b, RAW_ALLOC))
        [diag] = _diagnostics(cg)
        messages = [n.message for n in diag.notes]
        assert messages == [
            "`lib::a` is determined to be infallible because it calls into `lib::b`",
            "which calls into `alloc::alloc::__rust_alloc`",
            "which may call alloc_error_handler",
        ]


class TestGenericScenario:

    def _graph(self, bar_args=("u8",)):
        main = make_unit("demo::main", local=True)
        foo = make_unit("demo::foo", local=True, args=("u8",))
        bar = make_unit("demo::bar", local=True, args=bar_args)
        push = make_unit("alloc::vec::Vec::push", args=("u8",))
        cg = make_graph((main, foo), (foo, bar), (bar, push), (push, RAW_ALLOC))
        return cg, main, foo, bar, push

    def test_monomorphization_clause_and_ancestors(self):
        cg, _main, _foo, bar, push = self._graph()
        [diag] = _diagnostics(cg)
        assert diag.caller == bar
        assert diag.callee == push
        assert diag.message == (
            "`alloc::vec::Vec::push::<u8>` can perform an infallible allocation, "
            "when the caller is monomorphized as `demo::bar::<u8>`"
        )
        assert [(n.message, n.location) for n in diag.notes[:2]] == [
            ("called from `demo::foo::<u8>`", loc(2)),
            ("called from `demo::main`", loc(1)),
        ]

    def test_lifetime_only_caller_has_no_clause(self):
        cg, _main, _foo, _bar, _push = self._graph(
            bar_args=(GenericArg.lifetime("'a"),)
        )
        [diag] = _diagnostics(cg)
        assert "monomorphized" not in diag.message
        assert not any(n.message.startswith("called from") for n in diag.notes)

    def test_ancestor_walk_stops_at_recursion(self):
        foo = make_unit("demo::foo", local=True, args=("u8",))
        bar = make_unit("demo::bar", local=True, args=("u8",))
        cg = make_graph((foo, bar), (bar, foo))
        notes = caller_witness_chain(cg, bar, {bar})
        assert [n.message for n in notes] == ["called from `demo::foo::<u8>`"]

    def test_trait_impl_caller_on_generic_type(self):
        drop = unit_from_path("<demo::Foo<u8> as core::ops::Drop>::drop", is_local=True)
        outer = make_unit("demo::outer", local=True, args=("u8",))
        push = make_unit("alloc::vec::Vec::push", args=("u8",))
        cg = make_graph((outer, drop), (drop, push), (push, RAW_ALLOC))
        [diag] = _diagnostics(cg)
        assert diag.caller == drop
        assert diag.message.endswith(
            "when the caller is monomorphized as "
            "`<demo::Foo<u8> as core::ops::Drop>::drop`"
        )
        assert diag.notes[0].message == "called from `demo::outer::<u8>`"

    def test_primary_message_helper(self):
        caller = make_unit("demo::f", local=True, args=(GenericArg.const("4"),))
        callee = make_unit("alloc::vec::from_elem", args=("u8",))
        assert primary_message(caller, callee).endswith(
            "when the caller is monomorphized as `demo::f::<4>`"
        )


class TestSuppression:

    def test_marker_suppresses_reports(self):
        caller = make_unit("demo::caller", local=True)
        marker = make_unit("kernel::alloc::assume_fallible", args=("u8",))
        cg = make_graph((caller, marker), (marker, RAW_ALLOC))
        assert _diagnostics(cg) == []

    def test_marker_and_its_callers_never_appear_as_callee(self):
        caller = make_unit("demo::caller", local=True)
        wrapper = make_unit("lib::wrapper")
        marker = make_unit("kernel::alloc::assume_fallible")
        other_caller = make_unit("demo::other", local=True)
        other = make_unit("alloc::vec::Vec::push", args=("u8",))
        cg = make_graph((caller, wrapper), (wrapper, marker), (marker, RAW_ALLOC),
                        (other_caller, other), (other, RAW_ALLOC))
        diagnostics = _diagnostics(cg)
        assert [(d.caller, d.callee) for d in diagnostics] == [(other_caller, other)]


class TestSites:

    def test_only_local_to_external_tainted_edges(self, vec_push_graph):
        cg, units = vec_push_graph
        taint = propagate(cg, [RAW_ALLOC]).taint
        sites = offending_call_sites(cg, taint)
        assert [(c, e.node) for c, e in sites] == [(units["run"], units["push"])]

    def test_duplicate_call_sites_report_twice(self):
        run = make_unit("demo::run", local=True)
        cg = make_graph((run, RAW_ALLOC, loc(7)), (run, RAW_ALLOC, loc(9)))
        diagnostics = _diagnostics(cg)
        assert [d.location for d in diagnostics] == [loc(7), loc(9)]


class TestDeterminism:

    def test_identical_graphs_give_identical_notes(self):
        def build():
            main = make_unit("demo::main", local=True)
            foo = make_unit("demo::foo", local=True, args=("u8",))
            push = make_unit("alloc::vec::Vec::push", args=("u8",))
            grow = make_unit("alloc::raw_vec::RawVec::grow_one", args=("u8",))
            return make_graph((main, foo), (foo, push), (push, grow),
                              (grow, RAW_ALLOC), (push, RAW_ALLOC))

        first = [d.to_dict() for d in _diagnostics(build())]
        second = [d.to_dict() for d in _diagnostics(build())]
        assert first == second
        assert first[0]["notes"][0] == {
            "message": "called from `demo::main`",
            "location": {"file": "src/lib.rs", "line": 1, "column": 5,
                         "end_line": 1, "end_column": 15},
        }


class TestRendering:

    def test_render_plain_text(self, wrapper_graph):
        cg, _main, wrapper = wrapper_graph
        taint = propagate(cg, [RAW_ALLOC]).taint
        diag = build_diagnostic(cg, taint, wrapper, cg.forward[wrapper][0])
        lines = diag.render().splitlines()
        assert lines[0] == (
            "warning[infallible_allocation]: `alloc::alloc::__rust_alloc` can "
            "perform an infallible allocation"
        )
        assert lines[1] == "  --> src/lib.rs:2:5"
        assert lines[2].startswith("  = note: ")
