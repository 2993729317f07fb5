"""Dictionary-backed workbook host."""

import json
import logging
from collections import deque
from pathlib import Path
from typing import Any, Optional, Union

from ..errors import FormulaParseError, HostIOError
from ..formulas.evaluator import (
    Expr,
    FormulaEvaluator,
    coerce_text,
    compile_formula,
    expression_references,
    format_value,
)
from .host import HostSession
from .models import Address, CellData, DisplayAttribute

logger = logging.getLogger(__name__)


class InMemoryWorkbook(HostSession):
    """
    A workbook held in memory that recalculates its own formulas.

    Cell contents are stored as text exactly as a user would type them:
    raw values ("10", "apple") or formulas ("=SUM(A1:A4)").
    """

    def __init__(self, cells: Optional[dict[Address, str]] = None):
        self._contents: dict[Address, str] = {}
        self._compiled: dict[Address, Optional[Expr]] = {}
        self._values: dict[Address, Any] = {}
        self._attributes: dict[Address, DisplayAttribute] = {}
        self._order: Optional[tuple[list[Address], list[Address]]] = None
        self.recalculation_count = 0
        for address, text in (cells or {}).items():
            self._set_content(address, text)
        self.recalculate()

    @classmethod
    def from_dict(cls, data: dict) -> "InMemoryWorkbook":
        """
        Build a workbook from a JSON-style mapping.

        Args:
            data: {"sheets": {"Sheet1": {"A1": "10", "B1": "=SUM(A1:A4)"}}}

        Returns:
            The loaded workbook, already recalculated
        """
        sheets = data.get("sheets")
        if not isinstance(sheets, dict):
            raise ValueError("Workbook data must contain a 'sheets' mapping")

        cells: dict[Address, str] = {}
        for sheet_name, sheet_cells in sheets.items():
            for cell, content in sheet_cells.items():
                address = Address.parse(cell, sheet_name)
                cells[address] = "" if content is None else str(content)
        return cls(cells)

    @classmethod
    def from_json_file(cls, path: Union[str, Path]) -> "InMemoryWorkbook":
        """Load a workbook from a JSON file."""
        with open(path, "r", encoding="utf-8") as f:
            return cls.from_dict(json.load(f))

    def to_dict(self) -> dict:
        """Serialize cell contents in the from_dict format."""
        sheets: dict[str, dict[str, str]] = {}
        for address in sorted(self._contents):
            sheets.setdefault(address.sheet, {})[address.cell] = self._contents[address]
        return {"sheets": sheets}

    def save_json_file(self, path: Union[str, Path]):
        """Write cell contents to a JSON file."""
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2)

    def cells(self) -> list[CellData]:
        """Every non-empty cell with its content and current value."""
        result = []
        for address in sorted(self._contents):
            content = self._contents[address]
            is_formula = content.startswith("=")
            result.append(
                CellData(
                    sheet_name=address.sheet,
                    cell=address.cell,
                    value=self.read_cell_value(address),
                    formula=content if is_formula else None,
                )
            )
        return result

    def get_content(self, address: Address) -> str:
        """Raw content of a cell (the formula text for formula cells)."""
        return self._contents.get(address, "")

    def _set_content(self, address: Address, text: str):
        if address in self._compiled or (text or "").startswith("="):
            self._order = None
        if text is None or text == "":
            self._contents.pop(address, None)
            self._compiled.pop(address, None)
            return
        self._contents[address] = text
        if text.startswith("="):
            try:
                self._compiled[address] = compile_formula(text, address.sheet)
            except FormulaParseError as e:
                logger.warning(f"Formula in {address} does not compile: {e}")
                self._compiled[address] = None
        else:
            self._compiled.pop(address, None)

    # HostSession interface

    def read_formulas(self) -> dict[Address, str]:
        return {
            address: content
            for address, content in sorted(self._contents.items())
            if content.startswith("=")
        }

    def read_cell_value(self, address: Address) -> str:
        if address in self._compiled:
            return format_value(self._values.get(address))
        return self._contents.get(address, "")

    def write_cell_value(self, address: Address, text: str) -> None:
        if not isinstance(text, str):
            raise HostIOError(f"Cannot write non-text value {text!r} into {address}")
        self._set_content(address, text)

    def recalculate(self) -> None:
        """Evaluate every formula in dependency order."""
        self.recalculation_count += 1
        self._values = {}
        if self._order is None:
            self._order = self._evaluation_order()
        order, cyclic = self._order
        for address in cyclic:
            self._values[address] = "#CYCLE!"

        evaluator = FormulaEvaluator(self._resolve)
        for address in order:
            expr = self._compiled[address]
            self._values[address] = "#NAME?" if expr is None else evaluator.evaluate(expr)

    def get_display_attribute(self, address: Address) -> DisplayAttribute:
        return self._attributes.get(address, DisplayAttribute()).model_copy()

    def set_display_attribute(self, address: Address, attr: DisplayAttribute) -> None:
        if attr.background_color is None:
            self._attributes.pop(address, None)
        else:
            self._attributes[address] = attr.model_copy()

    # Evaluation helpers

    def _resolve(self, address: Address) -> Any:
        if address in self._compiled:
            return self._values.get(address)
        return coerce_text(self._contents.get(address))

    def _evaluation_order(self) -> tuple[list[Address], list[Address]]:
        """Topological order of formula cells, plus cells caught in cycles."""
        formula_cells = list(self._compiled)
        dependents: dict[Address, list[Address]] = {a: [] for a in formula_cells}
        pending: dict[Address, int] = {}
        for address in formula_cells:
            expr = self._compiled[address]
            upstream = set()
            if expr is not None:
                for ref in expression_references(expr):
                    for dep in ref.addresses():
                        if dep in self._compiled and dep != address:
                            upstream.add(dep)
                        elif dep == address:
                            upstream.add(dep)
            pending[address] = len(upstream)
            for dep in upstream:
                if dep != address:
                    dependents[dep].append(address)

        ready = deque(a for a in formula_cells if pending[a] == 0)
        order = []
        while ready:
            address = ready.popleft()
            order.append(address)
            for child in dependents[address]:
                pending[child] -= 1
                if pending[child] == 0:
                    ready.append(child)

        resolved = set(order)
        cyclic = [a for a in formula_cells if a not in resolved]
        return order, cyclic
