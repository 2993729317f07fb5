"""Audit trail of workflow actions."""

import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass
class AuditEntry:
    """Single audit log entry."""

    action: str  # "analyze", "flag", "mark_ok", "fix", "reset", ...
    state: str  # Session state after the action
    status: str  # "success", "failed", "not_applicable"
    cell: Optional[str] = None
    detail: Optional[str] = None
    duration_ms: float = 0.0
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_dict(self) -> dict:
        return asdict(self)


class AuditLogger:
    """
    Keeps the trail of actions taken during an audit session.

    Entries are held in memory, newest last, and mirrored to the module
    logger so a CLI run leaves the same trail in its log output.
    """

    def __init__(self, max_entries: Optional[int] = 1000):
        """
        Initialize audit logger.

        Args:
            max_entries: Oldest entries are dropped beyond this count (None keeps all)
        """
        self.max_entries = max_entries
        self._entries: list[AuditEntry] = []

    def log_operation(self, entry: AuditEntry):
        """
        Log an operation to the audit trail.

        Args:
            entry: AuditEntry to log
        """
        self._entries.append(entry)
        if self.max_entries is not None and len(self._entries) > self.max_entries:
            del self._entries[: len(self._entries) - self.max_entries]

        target = f" {entry.cell}" if entry.cell else ""
        logger.info(f"Audit: {entry.action}{target} - {entry.status} -> {entry.state}")

    def get_recent_operations(self, limit: int = 50, action: Optional[str] = None) -> list[AuditEntry]:
        """
        Retrieve recent operations, newest first.

        Args:
            limit: Maximum number of entries to return
            action: Filter by action name (optional)

        Returns:
            List of AuditEntry objects
        """
        entries = [e for e in reversed(self._entries) if action is None or e.action == action]
        return entries[:limit]

    def clear(self):
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
