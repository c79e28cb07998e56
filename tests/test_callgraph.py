# tests/test_callgraph.py
"""
Tests for the forward/backward call-graph indices.
"""

import pytest

from infallible_alloc.access_model import DUMMY_LOCATION, Location, RawAccess
from infallible_alloc.callgraph import (
    CallEdge,
    CallGraph,
    build_callgraph,
    callgraph_summary,
)
from tests.conftest import loc, make_access_map, make_graph, make_unit


class TestTranspose:

    def test_backward_is_transpose_of_forward(self, vec_push_graph):
        cg, _units = vec_push_graph
        assert cg.check_transpose()
        assert sum(len(v) for v in cg.backward.values()) == cg.edge_count

    def test_duplicate_call_sites_are_kept(self):
        f, g = make_unit("demo::f"), make_unit("demo::g")
        cg = make_graph((f, g, loc(1)), (f, g, loc(2)))
        assert [e.location for e in cg.forward[f]] == [loc(1), loc(2)]
        assert [e.location for e in cg.backward[g]] == [loc(1), loc(2)]
        assert cg.check_transpose()

    def test_tampered_graph_fails_check(self):
        f, g = make_unit("demo::f"), make_unit("demo::g")
        cg = make_graph((f, g))
        cg.backward[g].append(CallEdge(f, loc(99)))
        assert not cg.check_transpose()


class TestSpanSynthesis:

    def test_missing_span_uses_caller_def_span(self):
        def_span = Location("src/lib.rs", 10, 1, 12, 2)
        f = make_unit("demo::f", def_span=def_span)
        g = make_unit("demo::g")
        cg = CallGraph()
        assert cg.add_edge(f, g, None) == def_span
        assert cg.forward[f][0].location == def_span
        assert cg.synthesized_spans == 1

    def test_dummy_span_is_replaced(self):
        def_span = Location("src/lib.rs", 10, 1)
        f = make_unit("demo::f", def_span=def_span)
        cg = CallGraph()
        cg.add_edge(f, make_unit("demo::g"), DUMMY_LOCATION)
        assert cg.forward[f][0].location == def_span

    def test_def_span_is_looked_up_once_per_caller(self):
        f = make_unit("demo::f", def_span=loc(10))
        cg = CallGraph()
        cg.add_edge(f, make_unit("demo::g"))
        # A caller equal to f but carrying another def span hits the memo.
        f_again = make_unit("demo::f", def_span=loc(20))
        assert cg.add_edge(f_again, make_unit("demo::h")) == loc(10)
        assert cg.synthesized_spans == 2

    def test_no_def_span_falls_back_to_dummy(self):
        cg = CallGraph()
        span = cg.add_edge(make_unit("demo::f"), make_unit("demo::g"))
        assert span.is_dummy

    def test_real_span_is_not_counted(self):
        cg = make_graph((make_unit("demo::f"), make_unit("demo::g"), loc(3)))
        assert cg.synthesized_spans == 0


class TestQueries:

    def test_leaf_means_no_forward_entry(self, vec_push_graph, raw_alloc):
        cg, units = vec_push_graph
        assert cg.is_leaf(raw_alloc)
        assert not cg.is_leaf(units["push"])

    def test_units_are_unique_and_callers_first(self, wrapper_graph, raw_alloc):
        cg, main, wrapper = wrapper_graph
        assert cg.units == [main, wrapper, raw_alloc]

    def test_callers_and_callees(self, wrapper_graph, raw_alloc):
        cg, main, wrapper = wrapper_graph
        assert [e.node for e in cg.callees(wrapper)] == [raw_alloc]
        assert [e.node for e in cg.callers(wrapper)] == [main]
        assert cg.callers(main) == ()

    def test_transitive_callers(self, vec_push_graph, raw_alloc):
        cg, units = vec_push_graph
        assert cg.transitive_callers(raw_alloc) == set(units.values())

    def test_strongly_connected_components(self):
        a, b, c = make_unit("demo::a"), make_unit("demo::b"), make_unit("demo::c")
        cg = make_graph((a, b), (b, a), (b, c))
        sccs = cg.strongly_connected_components()
        assert sorted(len(s) for s in sccs) == [1, 2]
        assert {a, b} in [set(s) for s in sccs]
        # callee-first ordering
        assert sccs[0] == [c]

    def test_statistics(self):
        a = make_unit("demo::a", local=True)
        b = make_unit("alloc::b", args=("u8",))
        cg = make_graph((a, b), (b, b))
        stats = cg.statistics()
        assert stats["units"] == 2
        assert stats["local_units"] == 1
        assert stats["generic_units"] == 1
        assert stats["call_sites"] == 2
        assert stats["self_recursive_units"] == 1
        assert stats["leaf_units"] == 0


class TestBuild:

    def test_from_access_map(self):
        f, g = make_unit("demo::f"), make_unit("demo::g")
        cg = build_callgraph(make_access_map((f, [(g, loc(4))])))
        assert cg.forward[f] == [CallEdge(g, loc(4))]
        assert cg.backward[g] == [CallEdge(f, loc(4))]

    def test_accessor_without_call_sites_has_forward_entry(self):
        f, g = make_unit("demo::f"), make_unit("alloc::g")
        cg = build_callgraph(make_access_map((f, [g]), (g, [])))
        assert list(cg.forward) == [f, g]
        assert cg.forward[g] == []
        assert not cg.is_leaf(g)
        assert cg.units == [f, g]
        assert cg.check_transpose()

    def test_from_triples(self):
        f, g = make_unit("demo::f"), make_unit("demo::g")
        cg = build_callgraph([RawAccess(f, g, loc(4))])
        assert cg.edge_count == 1


class TestRendering:

    def test_dot_marks_tainted_units(self, wrapper_graph, raw_alloc):
        cg, _main, _wrapper = wrapper_graph
        dot = cg.to_dot(title="demo", taint={raw_alloc})
        assert dot.startswith("digraph CallGraph {")
        assert 'label="demo";' in dot
        assert dot.count("#ffcccc") == 1
        assert "n0 -> n1" in dot and "n1 -> n2" in dot

    def test_summary(self, wrapper_graph):
        cg, _main, _wrapper = wrapper_graph
        text = callgraph_summary(cg)
        rows = dict(
            (key.strip(), value.strip())
            for key, value in (line.split(":") for line in text.splitlines()[1:])
        )
        assert rows["Units"] == "3"
        assert rows["Call sites"] == "2"
