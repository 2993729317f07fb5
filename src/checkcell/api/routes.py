"""API routes for CheckCell."""

import logging
from typing import Any, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from ..errors import (
    AnalysisInProgressError,
    CheckCellError,
    HostIOError,
    InvalidTransitionError,
    ResourceExhaustionError,
)
from ..sheets.memory import InMemoryWorkbook
from ..workflow import AuditSession, ScoreEntry, WorkflowResult

logger = logging.getLogger(__name__)

router = APIRouter()

# Global audit session (one workbook at a time)
_session: Optional[AuditSession] = None


def get_session() -> AuditSession:
    """Get the global audit session."""
    if _session is None:
        raise HTTPException(status_code=404, detail="No workbook loaded")
    return _session


def set_session(session: Optional[AuditSession]):
    """Replace the global audit session."""
    global _session
    _session = session


def _http_error(e: CheckCellError) -> HTTPException:
    """Translate an engine error to an HTTP error."""
    if isinstance(e, (InvalidTransitionError, AnalysisInProgressError)):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, HostIOError):
        return HTTPException(status_code=502, detail=str(e))
    if isinstance(e, ResourceExhaustionError):
        return HTTPException(status_code=503, detail=str(e))
    # GraphBuildError and anything else the workbook itself caused
    return HTTPException(status_code=400, detail=str(e))


class WorkbookRequest(BaseModel):
    """Workbook to audit: inline cells, or a Google spreadsheet ID."""

    sheets: Optional[dict[str, dict[str, Any]]] = None
    spreadsheet_id: Optional[str] = None


class AnalyzeRequest(BaseModel):
    """Request to run an analysis pass."""

    time_budget_ms: Optional[int] = Field(default=None, ge=1)


class FixRequest(BaseModel):
    """Corrected content for the flagged cell."""

    content: str


class StateResponse(BaseModel):
    """Current audit session state."""

    state: str
    flagged_cell: Optional[str]
    known_good: list[str]
    flaggable_count: int
    analyze_enabled: bool
    flag_enabled: bool
    mark_as_ok_enabled: bool
    fix_error_enabled: bool
    clear_coloring_enabled: bool
    analysis_running: bool = False
    draws_completed: Optional[int] = None
    draws_requested: Optional[int] = None
    cache_hit_rate: Optional[float] = None
    timed_out: bool = False


@router.get("/health")
async def health_check():
    """Health check endpoint with diagnostics."""
    from ..config import settings

    # Gather non-secret diagnostics
    config = {
        "num_bootstraps": settings.num_bootstraps,
        "max_duration_ms": settings.max_duration_ms,
        "tool_significance": settings.tool_significance,
        "google_credentials_configured": settings.google_credentials_path.exists(),
    }

    return {
        "status": "ok",
        "service": "checkcell",
        "workbook_loaded": _session is not None,
        "config": config,
    }


# Workbook endpoints


@router.post("/workbook")
def load_workbook(request: WorkbookRequest):
    """Load a workbook and start a fresh audit session."""
    if request.sheets is not None:
        try:
            host = InMemoryWorkbook.from_dict({"sheets": request.sheets})
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
    elif request.spreadsheet_id:
        from ..sheets.client import GoogleSheetsHost

        host = GoogleSheetsHost(request.spreadsheet_id)
    else:
        raise HTTPException(status_code=400, detail="Provide either 'sheets' or 'spreadsheet_id'")

    set_session(AuditSession(host))
    logger.info(f"Loaded workbook into a new audit session ({type(host).__name__})")
    return {"status": "ok", "state": _session.state.value}


@router.get("/workbook")
def get_workbook():
    """Current contents of an in-memory workbook."""
    session = get_session()
    if isinstance(session.host, InMemoryWorkbook):
        return session.host.to_dict()
    return {"spreadsheet_id": getattr(session.host, "spreadsheet_id", None)}


# Workflow endpoints


@router.post("/analyze", response_model=WorkflowResult)
def analyze(request: Optional[AnalyzeRequest] = None):
    """Run an analysis pass."""
    session = get_session()
    budget = request.time_budget_ms if request else None
    try:
        return session.analyze(budget)
    except CheckCellError as e:
        raise _http_error(e)


@router.post("/cancel")
def cancel_analysis():
    """Ask a running analysis pass to stop and score the draws it has."""
    session = get_session()
    return {"cancelled": session.cancel_analysis()}


@router.post("/flag", response_model=WorkflowResult)
def flag():
    """Flag the most suspicious remaining cell."""
    session = get_session()
    try:
        return session.flag()
    except CheckCellError as e:
        raise _http_error(e)


@router.post("/mark-ok", response_model=WorkflowResult)
def mark_ok():
    """Confirm the flagged cell and flag the next one."""
    session = get_session()
    try:
        return session.mark_as_ok()
    except CheckCellError as e:
        raise _http_error(e)


@router.post("/fix", response_model=WorkflowResult)
def fix(request: FixRequest):
    """Correct the flagged cell and re-analyze."""
    session = get_session()
    try:
        return session.fix_error(request.content)
    except CheckCellError as e:
        raise _http_error(e)


@router.post("/reset", response_model=WorkflowResult)
def reset():
    """Reset the audit session."""
    session = get_session()
    try:
        return session.reset_tool()
    except CheckCellError as e:
        raise _http_error(e)


@router.post("/shade", response_model=WorkflowResult)
def shade():
    """Shade every scored cell by its score."""
    session = get_session()
    try:
        return session.shade_scores()
    except CheckCellError as e:
        raise _http_error(e)


@router.post("/clear-coloring", response_model=WorkflowResult)
def clear_coloring():
    """Remove shading and flag color."""
    session = get_session()
    try:
        return session.clear_coloring()
    except CheckCellError as e:
        raise _http_error(e)


# Views


@router.get("/state", response_model=StateResponse)
def get_state():
    """Get the audit session state and available actions."""
    session = get_session()
    result = session.result
    return StateResponse(
        state=session.state.value,
        flagged_cell=session.flagged.a1 if session.flagged else None,
        known_good=sorted(cell.a1 for cell in session.known_good),
        flaggable_count=len(session.flaggable),
        analyze_enabled=session.analyze_enabled,
        flag_enabled=session.flag_enabled,
        mark_as_ok_enabled=session.mark_as_ok_enabled,
        fix_error_enabled=session.fix_error_enabled,
        clear_coloring_enabled=session.clear_coloring_enabled,
        analysis_running=session.analysis_running,
        draws_completed=result.draws_completed if result else None,
        draws_requested=result.draws_requested if result else None,
        cache_hit_rate=result.hit_rate if result else None,
        timed_out=result.timed_out if result else False,
    )


@router.get("/scores", response_model=list[ScoreEntry])
def get_scores(limit: Optional[int] = None):
    """Ranked scores of the last analysis pass."""
    session = get_session()
    scores = session.scores_view()
    return scores[:limit] if limit else scores


@router.get("/influence")
def get_influence():
    """Per output: propagated weight and the raw cells reaching it."""
    session = get_session()
    report = session.influence()
    return {"count": len(report), "outputs": report}


@router.get("/audit")
def get_audit_log(limit: int = 50, action: Optional[str] = None):
    """Recent workflow actions, newest first."""
    session = get_session()
    entries = session.audit.get_recent_operations(limit=limit, action=action)
    return {"count": len(entries), "entries": [entry.to_dict() for entry in entries]}
