"""Reference extraction for spreadsheet formulas."""

import re
from typing import Optional

from ..errors import FormulaParseError
from ..sheets.models import DEFAULT_SHEET, RangeRef

# Pattern for cell references (A1, $A$1, Sheet1!A1, 'My Sheet'!A1:B4, etc.).
# The lookarounds keep function names such as LOG10( and the exponent of
# numbers such as 1E5 from being read as references.
CELL_REF_PATTERN = re.compile(
    r"(?<![A-Za-z0-9_.$'!])"
    r"(?:(?P<sheet>'(?:[^']|'')+'|[A-Za-z_][A-Za-z0-9_.]*)!)?"
    r"(?P<start>\$?[A-Za-z]{1,3}\$?\d+)"
    r"(?::(?P<end>\$?[A-Za-z]{1,3}\$?\d+))?"
    r"(?![A-Za-z0-9_(!])"
)

ERROR_LITERALS = ("#REF!", "#NAME?")


class FormulaParser:
    """Extracts the ordered dependency list of a formula."""

    def __init__(self, default_sheet: str = DEFAULT_SHEET):
        self.default_sheet = default_sheet

    def references(
        self,
        formula: str,
        sheet: Optional[str] = None,
        address: Optional[str] = None,
    ) -> list[RangeRef]:
        """
        Return the distinct references of a formula in order of appearance.

        Args:
            formula: Formula text, starting with '='
            sheet: Sheet that holds the formula; unqualified references resolve to it
            address: Location of the formula, used in error messages

        Returns:
            List of RangeRef (single cells are one-cell ranges)

        Raises:
            FormulaParseError: If the formula is malformed
        """
        if not formula or not formula.startswith("="):
            raise FormulaParseError(formula, "formula must start with '='", address)

        body = self._mask_strings(formula[1:], formula, address)
        for literal in ERROR_LITERALS:
            if literal in body.upper():
                raise FormulaParseError(formula, f"formula contains {literal}", address)

        home_sheet = sheet or self.default_sheet
        refs: list[RangeRef] = []
        seen: set[RangeRef] = set()
        for match in CELL_REF_PATTERN.finditer(body):
            text = match.group(0)
            try:
                ref = RangeRef.parse(text, home_sheet)
            except ValueError as e:
                raise FormulaParseError(formula, str(e), address) from e
            if ref not in seen:
                seen.add(ref)
                refs.append(ref)
        return refs

    def _mask_strings(self, body: str, formula: str, address: Optional[str]) -> str:
        """Blank out string literals and check that parentheses balance."""
        masked = []
        depth = 0
        in_string = False
        i = 0
        while i < len(body):
            char = body[i]
            if in_string:
                if char == '"':
                    if i + 1 < len(body) and body[i + 1] == '"':
                        masked.append("  ")
                        i += 2
                        continue
                    in_string = False
                    masked.append('"')
                else:
                    masked.append(" ")
            elif char == '"':
                in_string = True
                masked.append('"')
            else:
                if char == "(":
                    depth += 1
                elif char == ")":
                    depth -= 1
                    if depth < 0:
                        raise FormulaParseError(formula, "unbalanced ')'", address)
                masked.append(char)
            i += 1

        if in_string:
            raise FormulaParseError(formula, "unterminated string literal", address)
        if depth != 0:
            raise FormulaParseError(formula, "unbalanced '('", address)
        return "".join(masked)
