"""Audit session: analysis passes and the interactive flag / fix loop."""

import logging
import threading
import time
from contextlib import contextmanager
from typing import Optional

from ..analysis.bootstrap import data_debug
from ..analysis.models import AnalysisResult
from ..analysis.scoring import flaggable_cells, normalize_scores, rank_scores, shade_color
from ..config import Settings, settings as default_settings
from ..errors import (
    AnalysisInProgressError,
    GraphBuildError,
    InvalidTransitionError,
    NoApplicableInputError,
    ResourceExhaustionError,
)
from ..formulas.parser import FormulaParser
from ..graph.builder import DependencyGraph
from ..progress import LoggingProgress, ProgressSink
from ..sheets.host import HostSession
from ..sheets.models import Address, DisplayAttribute
from .audit import AuditEntry, AuditLogger
from .models import AuditState, ScoreEntry, WorkflowResult

logger = logging.getLogger(__name__)

NO_BUGS_MESSAGE = "No bugs remain."


class AuditSession:
    """
    State of one workbook under audit.

    Holds the graph and ranked scores of the last pass, the cells the user
    confirmed as correct, the currently flagged cell, and the original
    display attributes of every cell the session has painted.
    """

    def __init__(
        self,
        host: HostSession,
        config: Optional[Settings] = None,
        parser: Optional[FormulaParser] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self.host = host
        self.config = config or default_settings
        self.parser = parser or FormulaParser()
        self.audit = audit_logger or AuditLogger()

        self.state = AuditState.IDLE
        self.graph: Optional[DependencyGraph] = None
        self.result: Optional[AnalysisResult] = None
        self.ranked: list[tuple[Address, int]] = []
        self.flaggable: list[tuple[Address, int]] = []
        self.known_good: set[Address] = set()
        self.flagged: Optional[Address] = None

        self._saved_attributes: dict[Address, DisplayAttribute] = {}
        self._lock = threading.Lock()
        self._progress: Optional[ProgressSink] = None

    # Available actions

    @property
    def analyze_enabled(self) -> bool:
        return self.state != AuditState.FLAGGED and not self._lock.locked()

    @property
    def flag_enabled(self) -> bool:
        return self.state in (AuditState.ANALYZED, AuditState.FLAGGED) and not self._lock.locked()

    @property
    def mark_as_ok_enabled(self) -> bool:
        return self.state == AuditState.FLAGGED and not self._lock.locked()

    @property
    def fix_error_enabled(self) -> bool:
        return self.state == AuditState.FLAGGED and not self._lock.locked()

    @property
    def clear_coloring_enabled(self) -> bool:
        return bool(self._saved_attributes)

    @property
    def analysis_running(self) -> bool:
        return self._lock.locked()

    def _require(self, action: str, *states: AuditState):
        if self.state not in states:
            raise InvalidTransitionError(action, self.state.value)

    @contextmanager
    def _exclusive(self):
        # the host belongs to whichever action holds the lock
        if not self._lock.acquire(blocking=False):
            raise AnalysisInProgressError()
        try:
            yield
        finally:
            self._lock.release()

    # Analysis

    def analyze(
        self,
        time_budget_ms: Optional[int] = None,
        progress: Optional[ProgressSink] = None,
    ) -> WorkflowResult:
        """
        Rebuild the graph and run one bootstrap pass.

        Args:
            time_budget_ms: Wall-clock budget (defaults to the configured one)
            progress: Receives draw ticks; may cancel the pass. Defaults to a
                LoggingProgress that cancel_analysis() can stop.

        Returns:
            WorkflowResult in state ANALYZED, or IDLE when the workbook has
            no vector inputs

        Raises:
            InvalidTransitionError: If a cell is currently flagged
            AnalysisInProgressError: If another action is running on this session
            GraphBuildError: If the graph cannot be built; state is unchanged
        """
        with self._exclusive():
            self._require("analyze", AuditState.IDLE, AuditState.ANALYZED)
            return self._analyze(time_budget_ms, progress)

    def cancel_analysis(self) -> bool:
        """
        Ask the running pass to stop after its current draw.

        The pass still scores the draws it collected. Returns False when no
        cancellable pass is running.
        """
        progress = self._progress
        if not self._lock.locked() or not isinstance(progress, LoggingProgress):
            return False
        progress.cancel()
        logger.info("Cancellation requested for the running analysis")
        return True

    def _analyze(
        self,
        time_budget_ms: Optional[int] = None,
        progress: Optional[ProgressSink] = None,
    ) -> WorkflowResult:
        started = time.perf_counter()
        try:
            graph = DependencyGraph.build(self.host, self.parser, self.config.ignore_parse_errors)
        except GraphBuildError as e:
            self._log("analyze", "failed", detail=str(e), started=started)
            raise

        try:
            graph.require_vector_inputs()
        except NoApplicableInputError as e:
            self.graph = graph
            self._clear_analysis()
            self.state = AuditState.IDLE
            self._log("analyze", "not_applicable", detail=str(e), started=started)
            return WorkflowResult(state=self.state, message=str(e), applicable=False)

        budget = time_budget_ms if time_budget_ms is not None else self.config.max_duration_ms
        self._progress = progress if progress is not None else LoggingProgress()
        try:
            result = data_debug(
                self.host,
                graph,
                num_bootstraps=self.config.num_bootstraps,
                max_duration_ms=budget,
                seed=self.config.rng_seed,
                progress=self._progress,
                consider_all_outputs=self.config.consider_all_outputs,
                resample_workers=self.config.resample_workers,
            )
        finally:
            self._progress = None

        self.graph = graph
        self.result = result
        self.ranked = rank_scores(result.scores)
        self.flaggable = flaggable_cells(self.ranked, self.config.tool_significance, self.known_good)
        self.flagged = None
        self.state = AuditState.ANALYZED

        if self.config.debug_mode:
            self._log_top_scores()

        message = f"Analysis complete: {len(self.flaggable)} suspicious cells"
        if result.timed_out:
            message += " (time budget exhausted; scores are partial)"
        elif result.cancelled:
            message += " (cancelled; scores are partial)"
        self._log("analyze", "success", detail=message, started=started)
        return WorkflowResult(
            state=self.state,
            message=message,
            flaggable_count=len(self.flaggable),
            timed_out=result.timed_out,
        )

    def _clear_analysis(self):
        self.result = None
        self.ranked = []
        self.flaggable = []
        self.flagged = None

    def _log_top_scores(self, count: int = 10):
        lines = [f"{cell.a1}: {score}" for cell, score in self.ranked[:count]]
        logger.info("Top scores:\n" + "\n".join(lines))

    # Flag loop

    def flag(self) -> WorkflowResult:
        """
        Flag the most suspicious cell not yet confirmed as correct.

        When none remain the session is reset and reports "No bugs remain."
        """
        with self._exclusive():
            self._require("flag", AuditState.ANALYZED, AuditState.FLAGGED)
            return self._flag()

    def _flag(self) -> WorkflowResult:
        self.flaggable = [item for item in self.flaggable if item[0] not in self.known_good]

        if not self.flaggable:
            self._reset()
            self._log("flag", "success", detail=NO_BUGS_MESSAGE)
            return WorkflowResult(state=self.state, message=NO_BUGS_MESSAGE)

        cell, score = self.flaggable[0]
        self._paint(cell, DisplayAttribute(background_color=self.config.flag_color))
        self.flagged = cell
        self.state = AuditState.FLAGGED
        self._log("flag", "success", cell=cell.a1, detail=f"score {score}")
        return WorkflowResult(
            state=self.state,
            message=f"Flagged {cell.a1} (score {score})",
            flagged_cell=cell.a1,
            score=score,
            flaggable_count=len(self.flaggable),
        )

    def mark_as_ok(self) -> WorkflowResult:
        """Confirm the flagged cell as correct and flag the next one."""
        with self._exclusive():
            self._require("mark as OK", AuditState.FLAGGED)
            cell = self.flagged
            self.known_good.add(cell)
            self.host.set_display_attribute(
                cell, DisplayAttribute(background_color=self.config.known_good_color)
            )
            self.restore_display_attributes()
            self._log("mark_ok", "success", cell=cell.a1)
            return self._flag()

    def fix_error(self, content: str) -> WorkflowResult:
        """
        Replace the flagged cell's content, then re-analyze and flag again.

        A parse failure or memory exhaustion during re-analysis is reported in
        the result; the session is then left IDLE with known-good cells kept.
        """
        with self._exclusive():
            self._require("fix error", AuditState.FLAGGED)
            cell = self.flagged
            started = time.perf_counter()

            self.host.write_cell_value(cell, content)
            self.host.recalculate()
            self.known_good.add(cell)
            self.restore_display_attributes()
            self._clear_analysis()
            self.state = AuditState.IDLE
            self._log("fix", "success", cell=cell.a1, detail=f"new content {content!r}", started=started)

            try:
                result = self._analyze()
            except (GraphBuildError, ResourceExhaustionError) as e:
                logger.error(f"Re-analysis after fixing {cell.a1} failed: {e}")
                return WorkflowResult(state=self.state, message=str(e), error=str(e))

            if not result.applicable:
                return result
            return self._flag()

    def reset_tool(self) -> WorkflowResult:
        """Restore every painted cell, forget known-good cells and return to IDLE."""
        with self._exclusive():
            return self._reset()

    def _reset(self) -> WorkflowResult:
        self.restore_display_attributes()
        self.known_good.clear()
        self.flaggable = []
        self.flagged = None
        self.state = AuditState.IDLE
        self._log("reset", "success")
        return WorkflowResult(state=self.state, message="Audit reset")

    # Display attributes

    def _save_attribute(self, cell: Address):
        # the first save holds the attribute from before the session touched the cell
        if cell not in self._saved_attributes:
            self._saved_attributes[cell] = self.host.get_display_attribute(cell)

    def _paint(self, cell: Address, attr: DisplayAttribute):
        self._save_attribute(cell)
        self.host.set_display_attribute(cell, attr)

    def restore_display_attributes(self):
        """Put back the original attributes of every cell the session painted."""
        for cell, attr in self._saved_attributes.items():
            self.host.set_display_attribute(cell, attr)
        self._saved_attributes.clear()

    def shade_scores(self) -> WorkflowResult:
        """Paint each scored cell a shade of red proportional to its score."""
        with self._exclusive():
            self._require("shade scores", AuditState.ANALYZED, AuditState.FLAGGED)
            normalized = normalize_scores(dict(self.ranked))
            for cell, value in normalized.items():
                if cell == self.flagged:
                    continue
                self._paint(cell, shade_color(value))
            self._log("shade", "success", detail=f"{len(normalized)} cells")
            return WorkflowResult(
                state=self.state,
                message=f"Shaded {len(normalized)} cells",
                flagged_cell=self.flagged.a1 if self.flagged else None,
            )

    def clear_coloring(self) -> WorkflowResult:
        """Remove shading and flag color without changing the audit state."""
        with self._exclusive():
            self.restore_display_attributes()
            self._log("clear_coloring", "success")
            return WorkflowResult(
                state=self.state,
                message="Coloring cleared",
                flagged_cell=self.flagged.a1 if self.flagged else None,
            )

    # Views

    def scores_view(self) -> list[ScoreEntry]:
        """Ranked scores of the last pass, most suspicious first."""
        normalized = normalize_scores(dict(self.ranked))
        flaggable = {cell for cell, _ in self.flaggable}
        return [
            ScoreEntry(
                cell=cell.a1,
                score=score,
                normalized=normalized[cell],
                flaggable=cell in flaggable,
                known_good=cell in self.known_good,
            )
            for cell, score in self.ranked
        ]

    def influence(self) -> list[dict]:
        if self.graph is None:
            return []
        return self.graph.influence_report()

    def _log(
        self,
        action: str,
        status: str,
        cell: Optional[str] = None,
        detail: Optional[str] = None,
        started: Optional[float] = None,
    ):
        duration_ms = (time.perf_counter() - started) * 1000 if started is not None else 0.0
        self.audit.log_operation(
            AuditEntry(
                action=action,
                state=self.state.value,
                status=status,
                cell=cell,
                detail=detail,
                duration_ms=duration_ms,
            )
        )
