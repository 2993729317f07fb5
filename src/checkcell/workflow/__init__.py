"""Interactive audit workflow."""

from .audit import AuditEntry, AuditLogger
from .models import AuditState, ScoreEntry, WorkflowResult
from .state import AuditSession

__all__ = [
    "AuditEntry",
    "AuditLogger",
    "AuditState",
    "ScoreEntry",
    "WorkflowResult",
    "AuditSession",
]
