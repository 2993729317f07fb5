"""Exclusion tests and aggregation of rejections into suspicion scores."""

import logging
import math
from abc import ABC, abstractmethod
from collections import Counter
from typing import Iterable, Optional, Sequence

import numpy as np

from ..errors import NumericConversionError
from ..graph.models import Node, Reachability
from ..sheets.models import Address, DisplayAttribute
from .models import BootstrapSet, FunctionOutput

logger = logging.getLogger(__name__)

LOW_QUANTILE = 0.025
HIGH_QUANTILE = 0.975
MIN_FREQUENCY = 0.05


def percentile_bounds(n: int) -> tuple[int, int]:
    """Indices of the 2.5% and 97.5% order statistics of ``n`` sorted values."""
    if n <= 0:
        raise ValueError("Percentile bounds need at least one value")
    low = int(math.floor((n - 1) * LOW_QUANTILE))
    high = int(math.ceil((n - 1) * HIGH_QUANTILE))
    return low, high


def to_numeric(text: str) -> float:
    """Convert an output value to a finite float or raise NumericConversionError."""
    try:
        value = float(text)
    except (TypeError, ValueError) as e:
        raise NumericConversionError(f"Not a number: {text!r}") from e
    if not math.isfinite(value):
        raise NumericConversionError(f"Not a finite number: {text!r}")
    return value


class ExclusionTest(ABC):
    """
    Hypothesis test of one original output against the draws of one input range.

    Each call to ``rejects`` considers only the draws that left out the given
    position; no such draws means no evidence, so nothing is rejected.
    """

    def __init__(self, outputs: Sequence[FunctionOutput[str]]):
        self.outputs = outputs
        if outputs:
            self._includes = np.vstack([output.includes for output in outputs])
        else:
            self._includes = np.zeros((0, 0), dtype=bool)

    def excluded_draws(self, position: int) -> np.ndarray:
        """Indices of the draws that did not include ``position``."""
        if not self.outputs:
            return np.zeros(0, dtype=int)
        return np.flatnonzero(~self._includes[:, position])

    def rejects(self, position: int) -> bool:
        draws = self.excluded_draws(position)
        if len(draws) == 0:
            return False
        return self._rejects(draws)

    @abstractmethod
    def _rejects(self, draws: np.ndarray) -> bool:
        pass


class NumericTest(ExclusionTest):
    """Rejects when the original output falls outside the central 95% of the draws."""

    def __init__(self, original: str, outputs: Sequence[FunctionOutput[str]]):
        super().__init__(outputs)
        self.original = to_numeric(original)
        self.values = np.array([to_numeric(o.value) for o in outputs], dtype=float)

    def _rejects(self, draws: np.ndarray) -> bool:
        values = np.sort(self.values[draws])
        low, high = percentile_bounds(len(values))
        return bool(self.original < values[low] or self.original > values[high])


class FrequencyTest(ExclusionTest):
    """Rejects when the original output occurs in fewer than 5% of the draws."""

    def __init__(self, original: str, outputs: Sequence[FunctionOutput[str]]):
        super().__init__(outputs)
        self.original = original

    def _rejects(self, draws: np.ndarray) -> bool:
        counts = Counter(self.outputs[i].value for i in draws)
        return counts.get(self.original, 0) / len(draws) < MIN_FREQUENCY


def select_test(original: str, outputs: Sequence[FunctionOutput[str]]) -> ExclusionTest:
    """Numeric test when the original and every draw are numbers, else frequency test."""
    try:
        return NumericTest(original, outputs)
    except NumericConversionError as e:
        logger.debug(f"Using frequency test: {e}")
        return FrequencyTest(original, outputs)


def score_bootstraps(
    boots: BootstrapSet,
    initial_outputs: Sequence[str],
    inputs: Sequence[Node],
    outputs: Sequence[Node],
    reachability: Optional[Reachability] = None,
) -> dict[Address, int]:
    """
    Count rejections per raw input cell.

    Every (output, input range, position) triple runs one exclusion test; a
    rejection adds one to the cell's score. Cells of a range with no draws
    are left out entirely.

    Args:
        boots: Outputs of every draw, indexed by (output, input range, draw)
        initial_outputs: Unperturbed value of each output
        inputs: Terminal input nodes, in the order used by ``boots``
        outputs: Terminal output nodes, in the order used by ``boots``
        reachability: When given, only outputs an input reaches are tested

    Returns:
        Score per cell, in terminal input order
    """
    scores: dict[Address, int] = {}
    for r, node in enumerate(inputs):
        if boots.draw_count(r) == 0:
            logger.debug(f"No draws for {node.label}; not scored")
            continue
        cells = node.cells
        for cell in cells:
            scores.setdefault(cell, 0)

        for f, output in enumerate(outputs):
            if reachability is not None and not reachability.reaches(node.index, output.index):
                continue
            test = select_test(initial_outputs[f], boots.draws(f, r))
            for position, cell in enumerate(cells):
                if test.rejects(position):
                    scores[cell] += 1
    return scores


def rank_scores(scores: dict[Address, int]) -> list[tuple[Address, int]]:
    """Scores sorted descending; ties keep their original order."""
    return sorted(scores.items(), key=lambda item: -item[1])


def normalize_scores(scores: dict[Address, int]) -> dict[Address, float]:
    """Min-max scale to [0, 1]; all cells get 0.5 when every score is equal."""
    if not scores:
        return {}
    low = min(scores.values())
    high = max(scores.values())
    if high == low:
        return {cell: 0.5 for cell in scores}
    return {cell: (score - low) / (high - low) for cell, score in scores.items()}


def shade_color(normalized: float) -> DisplayAttribute:
    """Red shade for a normalized score: white at 0, pure red at 1."""
    c = int(255 * min(max(normalized, 0.0), 1.0))
    return DisplayAttribute.from_rgb(255, 255 - c, 255 - c)


def cutoff_index(count: int, significance: float) -> int:
    """Index into the ranked list of the lowest score still considered suspicious."""
    thresh = count - int(round(count * significance))
    return min(max(thresh, 0), count - 1)


def flaggable_cells(
    ranked: Sequence[tuple[Address, int]],
    significance: float,
    known_good: Iterable[Address] = (),
) -> list[tuple[Address, int]]:
    """
    Cells worth showing the user, most suspicious first.

    A cell qualifies when its score reaches the cutoff score, is nonzero,
    and the cell has not been confirmed as correct.
    """
    if not ranked:
        return []
    known_good = set(known_good)
    cutoff = ranked[cutoff_index(len(ranked), significance)][1]
    return [
        (cell, score)
        for cell, score in ranked
        if score >= cutoff and score != 0 and cell not in known_good
    ]
