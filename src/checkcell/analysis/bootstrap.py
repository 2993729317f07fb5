"""One bootstrap analysis pass over a workbook."""

import logging
from typing import Optional

from ..config import DEFAULT_MAX_DURATION_MS, DEFAULT_NUM_BOOTSTRAPS
from ..errors import ResourceExhaustionError
from ..graph.builder import DependencyGraph
from ..progress import NullProgress, ProgressSink, TimeBudget
from ..sheets.host import HostSession
from .memo import BootMemo, EvaluationCache
from .models import AnalysisResult, BootstrapSet, InputSample
from .resample import resample_all
from .scoring import score_bootstraps

logger = logging.getLogger(__name__)


def data_debug(
    host: HostSession,
    graph: DependencyGraph,
    num_bootstraps: int = DEFAULT_NUM_BOOTSTRAPS,
    max_duration_ms: Optional[int] = DEFAULT_MAX_DURATION_MS,
    seed: Optional[int] = None,
    progress: Optional[ProgressSink] = None,
    consider_all_outputs: bool = True,
    resample_workers: int = 1,
) -> AnalysisResult:
    """
    Resample every terminal input, re-evaluate the outputs and score each cell.

    Draws are substituted into the host one range at a time; each range is
    written back to its original values when its draws are done. When the
    time budget runs out or the progress sink cancels, no further draws are
    scheduled and the draws collected so far are scored.

    Args:
        host: Spreadsheet host holding the workbook
        graph: Dependency graph built from ``host``
        num_bootstraps: Draws per input range
        max_duration_ms: Soft wall-clock budget (None for no limit)
        seed: Seed for reproducible draws
        progress: Receives one tick per evaluated draw
        consider_all_outputs: Test every output against every input; when
            False only outputs reachable from an input are tested
        resample_workers: Threads used to generate draws

    Returns:
        AnalysisResult with scores in terminal input order

    Raises:
        NoApplicableInputError: If no terminal input spans several cells
        HostIOError: If the host fails during the pass
        ResourceExhaustionError: If the pass runs out of memory
    """
    graph.require_vector_inputs()
    progress = progress or NullProgress()
    budget = TimeBudget(max_duration_ms)

    inputs = graph.terminal_inputs()
    outputs = graph.terminal_outputs()
    assert graph.inputs_are_raw(), "a terminal input range contains a formula"

    output_cells = [node.ref.start for node in outputs]
    initial_inputs = [InputSample.initial(node.values) for node in inputs]
    initial_outputs = host.read_values(output_cells)

    reachability = None
    if not consider_all_outputs:
        reachability = graph.propagate_weights()

    cache = EvaluationCache()
    memo = BootMemo(host, cache)
    boots = BootstrapSet(len(outputs), len(inputs))
    total = num_bootstraps * len(inputs)
    completed = 0
    timed_out = False

    def tick():
        nonlocal completed
        completed += 1
        progress.report_progress(completed, total)

    def should_stop() -> bool:
        nonlocal timed_out
        if budget.expired():
            timed_out = True
        return timed_out or progress.is_cancelled()

    logger.info(
        f"Starting analysis: {len(inputs)} input ranges, {len(outputs)} outputs, "
        f"{num_bootstraps} draws per range"
    )

    try:
        draws = resample_all(num_bootstraps, initial_inputs, seed, resample_workers)
        for r, node in enumerate(inputs):
            if should_stop():
                break
            results = memo.replace_all(
                node.cells, initial_inputs[r], draws[r], output_cells, tick, should_stop
            )
            for function_outputs in results:
                boots.add_draw(r, function_outputs)
        scores = score_bootstraps(boots, initial_outputs, inputs, outputs, reachability)
    except MemoryError as e:
        raise ResourceExhaustionError() from e

    cancelled = progress.is_cancelled()
    if timed_out:
        logger.warning(f"Time budget of {max_duration_ms} ms exhausted after {completed}/{total} draws")
    elif cancelled:
        logger.warning(f"Analysis cancelled after {completed}/{total} draws")

    result = AnalysisResult(
        scores=scores,
        draws_requested=total,
        draws_completed=completed,
        timed_out=timed_out,
        cancelled=cancelled and not timed_out,
        cache_hits=cache.hits,
        cache_misses=cache.misses,
        elapsed_ms=budget.elapsed_ms,
        untested_inputs=[node.label for r, node in enumerate(inputs) if boots.draw_count(r) == 0],
    )
    logger.info(
        f"Analysis finished in {result.elapsed_ms:.0f} ms: {completed}/{total} draws, "
        f"cache hit rate {result.hit_rate:.1%} ({cache.hits} hits, {cache.misses} misses, "
        f"{cache.size()} distinct patterns)"
    )
    return result
