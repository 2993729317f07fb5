"""Formula reference extraction and in-memory evaluation."""

from .parser import FormulaParser, CELL_REF_PATTERN
from .evaluator import (
    FormulaEvaluator,
    compile_formula,
    format_value,
)

__all__ = [
    "FormulaParser",
    "CELL_REF_PATTERN",
    "FormulaEvaluator",
    "compile_formula",
    "format_value",
]
