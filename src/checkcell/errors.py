"""Exceptions raised by the analysis engine and the audit workflow."""

from typing import Optional


class CheckCellError(Exception):
    """Base class for all CheckCell errors."""

    pass


class FormulaParseError(CheckCellError):
    """Raised when a formula's references cannot be extracted."""

    def __init__(self, formula: str, message: str, address: Optional[str] = None):
        self.formula = formula
        self.address = address
        location = f" in {address}" if address else ""
        super().__init__(f"Could not parse formula{location}: {message} ({formula!r})")


class GraphBuildError(CheckCellError):
    """Raised when the dependency graph cannot be constructed."""

    pass


class NoApplicableInputError(CheckCellError):
    """Raised when a workbook has no multi-cell terminal input ranges."""

    def __init__(self, message: str = "This spreadsheet contains no vector-input functions."):
        super().__init__(message)


class HostIOError(CheckCellError):
    """Raised when a read, write or recalculation call to the host fails."""

    pass


class NumericConversionError(CheckCellError):
    """Raised when bootstrap outputs cannot all be read as numbers."""

    pass


class ResourceExhaustionError(CheckCellError):
    """Raised when an analysis pass runs out of memory."""

    def __init__(self, message: str = "Insufficient memory to perform analysis."):
        super().__init__(message)


class InvalidTransitionError(CheckCellError):
    """Raised when a workflow action is not available in the current state."""

    def __init__(self, action: str, state: str):
        self.action = action
        self.state = state
        super().__init__(f"Cannot {action} while the audit session is {state}")


class AnalysisInProgressError(CheckCellError):
    """Raised when a second analysis pass is started on the same session."""

    def __init__(self):
        super().__init__("An analysis pass is already running for this session")
