"""Data models for the audit workflow."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class AuditState(str, Enum):
    """Where the audit session is in the flag / fix loop."""

    IDLE = "idle"
    ANALYZED = "analyzed"
    FLAGGED = "flagged"


class ScoreEntry(BaseModel):
    """One scored input cell."""

    cell: str  # Sheet-qualified A1 notation
    score: int
    normalized: float = Field(ge=0.0, le=1.0)
    flaggable: bool = False
    known_good: bool = False


class WorkflowResult(BaseModel):
    """Outcome of a workflow action, in place of a dialog box."""

    state: AuditState
    message: str
    flagged_cell: Optional[str] = None
    score: Optional[int] = None
    applicable: bool = True  # False when the workbook has no vector inputs
    error: Optional[str] = None  # Set when re-analysis after a fix failed
    flaggable_count: int = 0
    timed_out: bool = False
