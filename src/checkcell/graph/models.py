"""Data models for the dependency graph."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from ..sheets.models import Address, RangeRef


class NodeKind(str, Enum):
    """Position of a node in the computation."""

    RAW_INPUT = "raw_input"
    INTERMEDIATE = "intermediate"
    TERMINAL_OUTPUT = "terminal_output"


@dataclass
class Node:
    """A single cell, or a contiguous raw input range collapsed to one unit.

    Edges are stored as indices into the owning graph's node list.
    """

    index: int
    ref: RangeRef
    values: tuple[str, ...]  # current value of each cell, row-major
    formula: Optional[str] = None
    dependencies: list[int] = field(default_factory=list)
    dependents: list[int] = field(default_factory=list)
    weight: float = 0.0
    kind: NodeKind = NodeKind.RAW_INPUT

    @property
    def cells(self) -> list[Address]:
        return self.ref.addresses()

    @property
    def value(self) -> str:
        """Current value as text (cells joined with ',' for ranges)."""
        return ",".join(self.values)

    @property
    def is_formula(self) -> bool:
        return self.formula is not None

    @property
    def is_vector(self) -> bool:
        return len(self.ref) > 1

    @property
    def label(self) -> str:
        return self.ref.a1


@dataclass(frozen=True)
class Reachability:
    """Which raw inputs reach which terminal outputs after weight propagation."""

    inputs_by_output: dict[int, frozenset[int]]  # output node index -> input node indices
    cells_by_output: dict[Address, frozenset[Address]]  # output cell -> raw cells reaching it

    def reaches(self, input_index: int, output_index: int) -> bool:
        return input_index in self.inputs_by_output.get(output_index, frozenset())

    def is_reachable(self, cell: Address, output: Address) -> bool:
        return cell in self.cells_by_output.get(output, frozenset())
