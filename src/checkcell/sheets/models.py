"""Data models for cell addresses, ranges and display attributes."""

import re
from dataclasses import dataclass
from typing import Optional

from pydantic import BaseModel

DEFAULT_SHEET = "Sheet1"

_CELL_PATTERN = re.compile(r"^\$?([A-Za-z]{1,3})\$?(\d+)$")


def col_letter_to_index(col: str) -> int:
    """Convert column letter(s) to 0-based index. A=0, B=1, ..., Z=25, AA=26, etc."""
    result = 0
    for char in col.upper():
        result = result * 26 + (ord(char) - ord("A") + 1)
    return result - 1


def index_to_col_letter(index: int) -> str:
    """Convert 0-based index to column letter(s)."""
    result = ""
    index += 1
    while index > 0:
        index -= 1
        result = chr(ord("A") + (index % 26)) + result
        index //= 26
    return result


def parse_cell_notation(cell: str) -> tuple[str, int]:
    """Parse A1 notation (absolute markers allowed) into column letters and row number."""
    match = _CELL_PATTERN.match(cell.strip())
    if not match:
        raise ValueError(f"Invalid cell notation: {cell}")
    return match.group(1).upper(), int(match.group(2))


def split_sheet(reference: str, default_sheet: str = DEFAULT_SHEET) -> tuple[str, str]:
    """Split 'Sheet!A1' or "'My Sheet'!A1" into (sheet, local part)."""
    if "!" not in reference:
        return default_sheet, reference
    sheet, local = reference.rsplit("!", 1)
    sheet = sheet.strip()
    if sheet.startswith("'") and sheet.endswith("'") and len(sheet) >= 2:
        sheet = sheet[1:-1].replace("''", "'")
    return sheet, local


def quote_sheet(sheet: str) -> str:
    """Quote a sheet name for A1 notation when it is not a plain identifier."""
    if re.match(r"^[A-Za-z_][A-Za-z0-9_]*$", sheet):
        return sheet
    return "'" + sheet.replace("'", "''") + "'"


@dataclass(frozen=True, order=True)
class Address:
    """A single cell on a sheet. Rows are 1-based, columns 0-based."""

    sheet: str
    row: int
    col: int

    @classmethod
    def parse(cls, reference: str, default_sheet: str = DEFAULT_SHEET) -> "Address":
        sheet, local = split_sheet(reference, default_sheet)
        col_letters, row = parse_cell_notation(local)
        return cls(sheet=sheet, row=row, col=col_letter_to_index(col_letters))

    @property
    def cell(self) -> str:
        """A1 notation without the sheet, e.g. 'B3'."""
        return f"{index_to_col_letter(self.col)}{self.row}"

    @property
    def a1(self) -> str:
        """Fully qualified A1 notation, e.g. 'Sheet1!B3'."""
        return f"{quote_sheet(self.sheet)}!{self.cell}"

    def __str__(self) -> str:
        return self.a1


@dataclass(frozen=True)
class RangeRef:
    """A rectangular block of cells on one sheet."""

    start: Address
    end: Address

    @classmethod
    def parse(cls, reference: str, default_sheet: str = DEFAULT_SHEET) -> "RangeRef":
        sheet, local = split_sheet(reference, default_sheet)
        if ":" in local:
            first, last = local.split(":", 1)
        else:
            first = last = local
        start = Address.parse(first, sheet)
        end = Address.parse(last, sheet)
        # normalize so start is the top-left corner
        top_left = Address(sheet, min(start.row, end.row), min(start.col, end.col))
        bottom_right = Address(sheet, max(start.row, end.row), max(start.col, end.col))
        return cls(start=top_left, end=bottom_right)

    @property
    def sheet(self) -> str:
        return self.start.sheet

    @property
    def is_single_cell(self) -> bool:
        return self.start == self.end

    def __len__(self) -> int:
        return (self.end.row - self.start.row + 1) * (self.end.col - self.start.col + 1)

    def addresses(self) -> list[Address]:
        """Cells of the range in row-major order."""
        return [
            Address(self.sheet, row, col)
            for row in range(self.start.row, self.end.row + 1)
            for col in range(self.start.col, self.end.col + 1)
        ]

    @property
    def a1(self) -> str:
        if self.is_single_cell:
            return self.start.a1
        return f"{quote_sheet(self.sheet)}!{self.start.cell}:{self.end.cell}"

    def __str__(self) -> str:
        return self.a1


class DisplayAttribute(BaseModel):
    """Visual state of a cell that the audit tool may alter and later restore."""

    background_color: Optional[str] = None  # "#RRGGBB", None means no fill

    @classmethod
    def from_rgb(cls, red: int, green: int, blue: int) -> "DisplayAttribute":
        return cls(background_color=f"#{red:02X}{green:02X}{blue:02X}")

    def to_rgb(self) -> Optional[tuple[int, int, int]]:
        if not self.background_color:
            return None
        hex_value = self.background_color.lstrip("#")
        return (
            int(hex_value[0:2], 16),
            int(hex_value[2:4], 16),
            int(hex_value[4:6], 16),
        )


class CellData(BaseModel):
    """Represents the content of a single cell as seen by a host."""

    sheet_name: str
    cell: str  # A1 notation, e.g., "A1", "B2"
    value: Optional[str] = None
    formula: Optional[str] = None

    @property
    def has_formula(self) -> bool:
        return self.formula is not None and self.formula.startswith("=")
