"""Tests for dependency graph construction."""

import pytest

from checkcell.errors import GraphBuildError, NoApplicableInputError
from checkcell.graph import DependencyGraph, NodeKind
from checkcell.sheets.memory import InMemoryWorkbook
from checkcell.sheets.models import Address, RangeRef


def make_workbook(cells: dict) -> InMemoryWorkbook:
    return InMemoryWorkbook.from_dict({"sheets": {"Sheet1": cells}})


class TestBuild:
    """Test graph construction."""

    def test_range_becomes_one_input(self, spike_workbook):
        """Test an all-raw range is collapsed into one vector input."""
        graph = DependencyGraph.build(spike_workbook)

        inputs = graph.terminal_inputs()
        outputs = graph.terminal_outputs()

        assert len(inputs) == 1
        assert inputs[0].ref == RangeRef.parse("A1:A4")
        assert inputs[0].values == ("10", "1000", "10", "15")
        assert inputs[0].is_vector
        assert inputs[0].kind == NodeKind.RAW_INPUT
        assert [o.label for o in outputs] == ["Sheet1!B1"]
        assert outputs[0].kind == NodeKind.TERMINAL_OUTPUT
        assert graph.has_vector_inputs()
        assert graph.inputs_are_raw()

    def test_shared_range_node(self):
        """Test two formulas over the same range share its node."""
        wb = make_workbook(
            {"A1": "1", "A2": "2", "A3": "3", "B1": "=SUM(A1:A3)", "C1": "=MAX(A1:A3)"}
        )
        graph = DependencyGraph.build(wb)

        inputs = graph.terminal_inputs()
        assert len(inputs) == 1
        assert len(inputs[0].dependents) == 2
        assert len(graph.terminal_outputs()) == 2

    def test_reference_touching_formula_is_split(self):
        """Test a range containing a formula cell gets per-cell edges."""
        wb = make_workbook(
            {"A1": "1", "A2": "2", "A3": "3", "A4": "=A1*2", "B1": "=SUM(A1:A4)"}
        )
        graph = DependencyGraph.build(wb)

        inputs = graph.terminal_inputs()
        assert [n.label for n in inputs] == ["Sheet1!A1", "Sheet1!A2", "Sheet1!A3"]
        assert not graph.has_vector_inputs()

        a4 = next(n for n in graph.nodes if n.label == "Sheet1!A4")
        assert a4.kind == NodeKind.INTERMEDIATE
        assert [o.label for o in graph.terminal_outputs()] == ["Sheet1!B1"]

    def test_constant_formula_is_not_an_input(self):
        """Test a formula with no references is never resampled."""
        wb = make_workbook({"A1": "1", "A2": "2", "B1": "=SUM(A1:A2)", "C1": "=1+2"})
        graph = DependencyGraph.build(wb)

        assert all(not n.is_formula for n in graph.terminal_inputs())
        assert "Sheet1!C1" in [o.label for o in graph.terminal_outputs()]

    def test_construction_order_is_stable(self, two_spike_workbook):
        """Test repeated builds enumerate inputs and outputs identically."""
        first = DependencyGraph.build(two_spike_workbook)
        second = DependencyGraph.build(two_spike_workbook)

        assert [n.label for n in first.terminal_inputs()] == [
            n.label for n in second.terminal_inputs()
        ]
        assert [n.label for n in first.terminal_inputs()] == [
            "Sheet1!A1:A4",
            "Sheet1!C1:C4",
        ]
        assert [n.label for n in first.terminal_outputs()] == ["Sheet1!B1", "Sheet1!D1"]

    def test_cycle_raises(self):
        """Test circular references abort the build."""
        wb = make_workbook({"A1": "=B1+1", "B1": "=A1*2", "C1": "1", "C2": "2"})

        with pytest.raises(GraphBuildError, match="Circular reference"):
            DependencyGraph.build(wb)

    def test_parse_error_raises(self):
        """Test a malformed formula aborts the build by default."""
        wb = make_workbook({"A1": "1", "A2": "2", "B1": "=SUM(A1:A2", "C1": "=SUM(A1:A2)"})

        with pytest.raises(GraphBuildError):
            DependencyGraph.build(wb)

    def test_parse_error_skipped(self):
        """Test malformed formulas are skipped when asked to."""
        wb = make_workbook({"A1": "1", "A2": "2", "B1": "=SUM(A1:A2", "C1": "=SUM(A1:A2)"})

        graph = DependencyGraph.build(wb, ignore_parse_errors=True)

        assert graph.skipped_cells == [Address.parse("B1")]
        assert [o.label for o in graph.terminal_outputs()] == ["Sheet1!C1"]

    def test_require_vector_inputs(self):
        """Test workbooks with only single-cell inputs are not applicable."""
        wb = make_workbook({"A1": "5", "B1": "=A1*2"})
        graph = DependencyGraph.build(wb)

        with pytest.raises(NoApplicableInputError):
            graph.require_vector_inputs()

    def test_input_cell_count(self, two_spike_workbook):
        """Test distinct raw input cells are counted."""
        graph = DependencyGraph.build(two_spike_workbook)

        assert graph.input_cell_count() == 8


class TestWeights:
    """Test weight propagation and reachability."""

    def test_weights_count_input_paths(self):
        """Test a node's weight sums its dependencies' weights."""
        wb = make_workbook(
            {
                "A1": "1",
                "A2": "2",
                "C1": "3",
                "B1": "=SUM(A1:A2)",
                "B2": "=B1+C1",
            }
        )
        graph = DependencyGraph.build(wb)
        graph.propagate_weights()

        weights = {n.label: n.weight for n in graph.nodes}
        assert weights["Sheet1!A1:A2"] == 1.0
        assert weights["Sheet1!C1"] == 1.0
        assert weights["Sheet1!B1"] == 1.0
        assert weights["Sheet1!B2"] == 2.0

    def test_reachability(self, two_spike_workbook):
        """Test each output is reached only by its own range."""
        graph = DependencyGraph.build(two_spike_workbook)
        reach = graph.propagate_weights()

        range_a, range_c = graph.terminal_inputs()
        out_b, out_d = graph.terminal_outputs()

        assert reach.reaches(range_a.index, out_b.index)
        assert not reach.reaches(range_a.index, out_d.index)
        assert reach.is_reachable(Address.parse("C3"), Address.parse("D1"))
        assert not reach.is_reachable(Address.parse("C3"), Address.parse("B1"))

    def test_influence_report(self, spike_workbook):
        """Test the influence report lists reaching cells per output."""
        graph = DependencyGraph.build(spike_workbook)

        report = graph.influence_report()

        assert report == [
            {
                "output": "Sheet1!B1",
                "weight": 1.0,
                "inputs": ["Sheet1!A1:A4"],
                "cells": ["Sheet1!A1", "Sheet1!A2", "Sheet1!A3", "Sheet1!A4"],
            }
        ]
