"""Dependency graph construction over a host's formulas."""

import logging
from collections import deque
from typing import Optional

from ..errors import FormulaParseError, GraphBuildError, NoApplicableInputError
from ..formulas.parser import FormulaParser
from ..sheets.host import HostSession
from ..sheets.models import Address, RangeRef
from .models import Node, NodeKind, Reachability

logger = logging.getLogger(__name__)


class DependencyGraph:
    """
    Graph of raw inputs, intermediate formulas and terminal outputs.

    Nodes live in a flat list in construction order; every ordering the
    graph reports (terminal inputs, terminal outputs) follows that order so
    repeated passes over the same workbook are stable.
    """

    def __init__(self):
        self.nodes: list[Node] = []
        self.skipped_cells: list[Address] = []
        self._by_ref: dict[RangeRef, int] = {}
        self._topological: list[int] = []
        self._reachability: Optional[Reachability] = None

    @classmethod
    def build(
        cls,
        host: HostSession,
        parser: Optional[FormulaParser] = None,
        ignore_parse_errors: bool = False,
    ) -> "DependencyGraph":
        """
        Build the graph from the host's formulas.

        Args:
            host: Spreadsheet host to read formulas and values from
            parser: Reference extractor (a default FormulaParser if omitted)
            ignore_parse_errors: Skip malformed formulas instead of aborting

        Returns:
            The constructed graph

        Raises:
            GraphBuildError: If a formula cannot be parsed, or formulas form a cycle
        """
        parser = parser or FormulaParser()
        graph = cls()

        formulas = host.read_formulas()
        parsed: dict[Address, list[RangeRef]] = {}
        for address, formula in formulas.items():
            try:
                parsed[address] = parser.references(formula, address.sheet, address.a1)
            except FormulaParseError as e:
                if not ignore_parse_errors:
                    raise GraphBuildError(str(e)) from e
                logger.warning(f"Skipping unparseable formula: {e}")
                graph.skipped_cells.append(address)

        skipped = set(graph.skipped_cells)

        # formula nodes first, in host order
        for address in parsed:
            ref = RangeRef(address, address)
            graph._add_node(ref, (host.read_cell_value(address),), formulas[address])

        for address, refs in parsed.items():
            node_index = graph._by_ref[RangeRef(address, address)]
            for ref in refs:
                for dep_index in graph._resolve_reference(host, ref, parsed, skipped):
                    graph._add_edge(dep_index, node_index)

        graph._check_acyclic()
        graph._classify()

        logger.info(
            f"Built dependency graph: {len(graph.nodes)} nodes, "
            f"{len(graph.terminal_inputs())} terminal inputs, "
            f"{len(graph.terminal_outputs())} terminal outputs, "
            f"{len(graph.skipped_cells)} skipped formulas"
        )
        return graph

    def _add_node(self, ref: RangeRef, values: tuple[str, ...], formula: Optional[str] = None) -> int:
        index = len(self.nodes)
        self.nodes.append(Node(index=index, ref=ref, values=values, formula=formula))
        self._by_ref[ref] = index
        return index

    def _add_edge(self, dependency: int, dependent: int):
        if dependency not in self.nodes[dependent].dependencies:
            self.nodes[dependent].dependencies.append(dependency)
            self.nodes[dependency].dependents.append(dependent)

    def _raw_node(self, host: HostSession, ref: RangeRef) -> int:
        index = self._by_ref.get(ref)
        if index is None:
            values = tuple(host.read_values(ref.addresses()))
            index = self._add_node(ref, values)
        return index

    def _resolve_reference(
        self,
        host: HostSession,
        ref: RangeRef,
        parsed: dict[Address, list[RangeRef]],
        skipped: set[Address],
    ) -> list[int]:
        """Node indices a formula depends on through one reference."""
        cells = ref.addresses()
        touches_formula = any(cell in parsed or cell in skipped for cell in cells)

        if not ref.is_single_cell and not touches_formula:
            # a purely raw block becomes one vector input
            return [self._raw_node(host, ref)]

        indices = []
        for cell in cells:
            if cell in skipped:
                continue
            single = RangeRef(cell, cell)
            if cell in parsed:
                indices.append(self._by_ref[single])
            else:
                indices.append(self._raw_node(host, single))
        return indices

    def _check_acyclic(self):
        pending = [len(node.dependencies) for node in self.nodes]
        ready = deque(node.index for node in self.nodes if pending[node.index] == 0)
        order = []
        while ready:
            index = ready.popleft()
            order.append(index)
            for child in self.nodes[index].dependents:
                pending[child] -= 1
                if pending[child] == 0:
                    ready.append(child)

        if len(order) != len(self.nodes):
            in_cycle = [self.nodes[i].label for i, count in enumerate(pending) if count > 0]
            raise GraphBuildError(
                f"Circular reference involving: {', '.join(in_cycle[:10])}"
            )
        self._topological = order

    def _classify(self):
        for node in self.nodes:
            if not node.is_formula:
                node.kind = NodeKind.RAW_INPUT
            elif not node.dependents:
                node.kind = NodeKind.TERMINAL_OUTPUT
            else:
                node.kind = NodeKind.INTERMEDIATE

    def terminal_inputs(self) -> list[Node]:
        """Raw nodes with no dependencies, in construction order."""
        return [n for n in self.nodes if not n.dependencies and not n.is_formula]

    def terminal_outputs(self) -> list[Node]:
        """Formula nodes nothing depends on, in construction order."""
        return [n for n in self.nodes if n.is_formula and not n.dependents]

    def has_vector_inputs(self) -> bool:
        return any(node.is_vector for node in self.terminal_inputs())

    def require_vector_inputs(self):
        """Raise NoApplicableInputError unless some terminal input spans several cells."""
        if not self.has_vector_inputs():
            raise NoApplicableInputError()

    def input_cell_count(self) -> int:
        """Distinct raw cells covered by terminal inputs."""
        cells = set()
        for node in self.terminal_inputs():
            cells.update(node.cells)
        return len(cells)

    def inputs_are_raw(self) -> bool:
        """True when no terminal input range contains a formula cell."""
        formula_cells = {n.ref.start for n in self.nodes if n.is_formula}
        return all(
            cell not in formula_cells
            for node in self.terminal_inputs()
            for cell in node.cells
        )

    def propagate_weights(self) -> Reachability:
        """
        Seed terminal inputs with weight 1.0 and push weights to the outputs.

        A node's weight is the sum of its dependencies' weights, i.e. the
        number of input paths reaching it. One pass in topological order.

        Returns:
            Reachability of inputs and raw cells per terminal output
        """
        reach: dict[int, set[int]] = {}
        for index in self._topological:
            node = self.nodes[index]
            if not node.dependencies:
                node.weight = 1.0 if not node.is_formula else 0.0
                reach[index] = {index} if not node.is_formula else set()
                continue
            node.weight = sum(self.nodes[d].weight for d in node.dependencies)
            reached: set[int] = set()
            for d in node.dependencies:
                reached |= reach[d]
            reach[index] = reached

        inputs_by_output: dict[int, frozenset[int]] = {}
        cells_by_output: dict[Address, frozenset[Address]] = {}
        for output in self.terminal_outputs():
            inputs = frozenset(reach[output.index])
            inputs_by_output[output.index] = inputs
            cells_by_output[output.ref.start] = frozenset(
                cell for i in inputs for cell in self.nodes[i].cells
            )

        self._reachability = Reachability(inputs_by_output, cells_by_output)
        return self._reachability

    @property
    def reachability(self) -> Reachability:
        if self._reachability is None:
            return self.propagate_weights()
        return self._reachability

    def influence_report(self) -> list[dict]:
        """Per terminal output: its propagated weight and the raw inputs reaching it."""
        reachability = self.reachability
        report = []
        for output in self.terminal_outputs():
            inputs = sorted(reachability.inputs_by_output.get(output.index, ()))
            report.append(
                {
                    "output": output.label,
                    "weight": output.weight,
                    "inputs": [self.nodes[i].label for i in inputs],
                    "cells": sorted(
                        c.a1 for c in reachability.cells_by_output.get(output.ref.start, ())
                    ),
                }
            )
        return report
