"""Tests for the in-memory workbook host and its formula evaluator."""

import json

import pytest

from checkcell.errors import FormulaParseError, HostIOError
from checkcell.formulas.evaluator import compile_formula, format_value
from checkcell.sheets.memory import InMemoryWorkbook
from checkcell.sheets.models import Address, DisplayAttribute


def make_workbook(cells: dict) -> InMemoryWorkbook:
    return InMemoryWorkbook.from_dict({"sheets": {"Sheet1": cells}})


def value(workbook: InMemoryWorkbook, cell: str) -> str:
    return workbook.read_cell_value(Address.parse(cell))


class TestFormatValue:
    """Test display formatting of evaluated values."""

    def test_integral_float(self):
        """Test whole numbers print without a decimal point."""
        assert format_value(1035.0) == "1035"

    def test_fraction(self):
        """Test fractions keep their digits."""
        assert format_value(258.75) == "258.75"

    def test_booleans_and_empty(self):
        """Test booleans print as TRUE/FALSE and None as empty."""
        assert format_value(True) == "TRUE"
        assert format_value(False) == "FALSE"
        assert format_value(None) == ""


class TestCompile:
    """Test formula compilation."""

    def test_compile_error(self):
        """Test a dangling operator does not compile."""
        with pytest.raises(FormulaParseError):
            compile_formula("=1+")

    def test_requires_equals(self):
        """Test formulas must start with '='."""
        with pytest.raises(FormulaParseError):
            compile_formula("1+2")


class TestEvaluation:
    """Test formula evaluation through the workbook."""

    def test_sum_and_average(self, spike_workbook):
        """Test aggregate functions over a range."""
        spike_workbook.write_cell_value(Address.parse("C1"), "=AVERAGE(A1:A4)")
        spike_workbook.recalculate()

        assert value(spike_workbook, "B1") == "1035"
        assert value(spike_workbook, "C1") == "258.75"

    def test_operators_and_precedence(self):
        """Test arithmetic precedence and unary minus."""
        wb = make_workbook({"A1": "2", "A2": "3", "B1": "=A1+A2*2^2", "B2": "=-A1*(A2-1)"})

        assert value(wb, "B1") == "14"
        assert value(wb, "B2") == "-4"

    def test_chained_formulas(self):
        """Test formulas that depend on other formulas."""
        wb = make_workbook({"A1": "1", "A2": "2", "B1": "=C1*10", "C1": "=SUM(A1:A2)"})

        assert value(wb, "C1") == "3"
        assert value(wb, "B1") == "30"

    def test_text_functions(self):
        """Test concatenation and text functions."""
        wb = make_workbook({"A1": "ab", "A2": "7", "B1": '=UPPER(A1)&"-"&A2', "B2": "=LEN(A1)"})

        assert value(wb, "B1") == "AB-7"
        assert value(wb, "B2") == "2"

    def test_if_and_comparison(self):
        """Test IF with a comparison condition."""
        wb = make_workbook({"A1": "5", "B1": '=IF(A1>3,"big","small")'})

        assert value(wb, "B1") == "big"

    def test_round_half_away_from_zero(self):
        """Test ROUND follows spreadsheet rounding."""
        wb = make_workbook({"B1": "=ROUND(2.5)", "B2": "=ROUND(-2.5)", "B3": "=ROUND(1.234,2)"})

        assert value(wb, "B1") == "3"
        assert value(wb, "B2") == "-3"
        assert value(wb, "B3") == "1.23"

    def test_error_values(self):
        """Test errors evaluate to error codes."""
        wb = make_workbook({"A1": "0", "B1": "=1/A1", "B2": "=FOO(A1)", "B3": "=SQRT(-1)"})

        assert value(wb, "B1") == "#DIV/0!"
        assert value(wb, "B2") == "#NAME?"
        assert value(wb, "B3") == "#NUM!"

    def test_errors_propagate(self):
        """Test a formula over an error cell is an error."""
        wb = make_workbook({"A1": "0", "B1": "=1/A1", "C1": "=B1+1"})

        assert value(wb, "C1") == "#DIV/0!"

    def test_cycle(self):
        """Test cells in a cycle evaluate to #CYCLE!."""
        wb = make_workbook({"A1": "=B1", "B1": "=A1+1", "C1": "4"})

        assert value(wb, "A1") == "#CYCLE!"
        assert value(wb, "B1") == "#CYCLE!"

    def test_uncompilable_formula(self):
        """Test a formula that does not compile shows #NAME?."""
        wb = make_workbook({"A1": "=SUM(B1", "B1": "1"})

        assert value(wb, "A1") == "#NAME?"

    def test_cross_sheet_reference(self):
        """Test references to another sheet."""
        wb = InMemoryWorkbook.from_dict(
            {"sheets": {"Data": {"A1": "4"}, "Sheet1": {"B1": "=Data!A1*2"}}}
        )

        assert value(wb, "B1") == "8"


class TestHostInterface:
    """Test the HostSession contract."""

    def test_read_formulas(self, spike_workbook):
        """Test only formula cells are reported."""
        formulas = spike_workbook.read_formulas()

        assert formulas == {Address.parse("B1"): "=SUM(A1:A4)"}

    def test_write_then_recalculate(self, spike_workbook):
        """Test a write is visible after recalculation."""
        spike_workbook.write_values(
            [Address.parse("A2"), Address.parse("A4")], ["20", "5"]
        )
        spike_workbook.recalculate()

        assert value(spike_workbook, "B1") == "45"
        assert spike_workbook.read_values([Address.parse("A2"), Address.parse("B1")]) == ["20", "45"]

    def test_write_values_length_mismatch(self, spike_workbook):
        """Test batch writes need one value per cell."""
        with pytest.raises(ValueError):
            spike_workbook.write_values([Address.parse("A1")], ["1", "2"])

    def test_write_non_text(self, spike_workbook):
        """Test only text can be written."""
        with pytest.raises(HostIOError):
            spike_workbook.write_cell_value(Address.parse("A1"), 5)

    def test_writing_formula_updates_order(self, spike_workbook):
        """Test replacing a raw cell with a formula is picked up."""
        spike_workbook.write_cell_value(Address.parse("A4"), "=A1*3")
        spike_workbook.recalculate()

        assert value(spike_workbook, "A4") == "30"
        assert value(spike_workbook, "B1") == "1050"

    def test_recalculation_count(self, spike_workbook):
        """Test recalculations are counted."""
        before = spike_workbook.recalculation_count
        spike_workbook.recalculate()

        assert spike_workbook.recalculation_count == before + 1

    def test_display_attributes(self, spike_workbook):
        """Test setting and clearing a cell color."""
        cell = Address.parse("A2")
        assert spike_workbook.get_display_attribute(cell).background_color is None

        spike_workbook.set_display_attribute(cell, DisplayAttribute(background_color="#FF0000"))
        assert spike_workbook.get_display_attribute(cell).background_color == "#FF0000"

        spike_workbook.set_display_attribute(cell, DisplayAttribute())
        assert spike_workbook.get_display_attribute(cell).background_color is None

    def test_get_display_attribute_is_a_copy(self, spike_workbook):
        """Test callers cannot mutate stored attributes."""
        cell = Address.parse("A2")
        spike_workbook.set_display_attribute(cell, DisplayAttribute(background_color="#00FF00"))

        attr = spike_workbook.get_display_attribute(cell)
        attr.background_color = "#000000"

        assert spike_workbook.get_display_attribute(cell).background_color == "#00FF00"


class TestPersistence:
    """Test loading and saving workbooks."""

    def test_from_dict_requires_sheets(self):
        """Test malformed workbook data is rejected."""
        with pytest.raises(ValueError):
            InMemoryWorkbook.from_dict({"cells": {}})

    def test_numbers_become_text(self):
        """Test JSON numbers are stored as text."""
        wb = InMemoryWorkbook.from_dict({"sheets": {"Sheet1": {"A1": 3, "A2": 4.5}}})

        assert wb.get_content(Address.parse("A1")) == "3"
        assert wb.get_content(Address.parse("A2")) == "4.5"

    def test_json_round_trip(self, spike_workbook, tmp_path):
        """Test saving and reloading keeps contents and values."""
        path = tmp_path / "book.json"
        spike_workbook.save_json_file(path)

        data = json.loads(path.read_text())
        assert data["sheets"]["Sheet1"]["B1"] == "=SUM(A1:A4)"

        reloaded = InMemoryWorkbook.from_json_file(path)
        assert value(reloaded, "B1") == "1035"

    def test_cells_listing(self, spike_workbook):
        """Test the cell listing carries values and formulas."""
        cells = {c.cell: c for c in spike_workbook.cells()}

        assert cells["B1"].formula == "=SUM(A1:A4)"
        assert cells["B1"].value == "1035"
        assert cells["A2"].formula is None
        assert cells["A2"].value == "1000"
