"""Bootstrap resampling, memoized re-evaluation and scoring."""

from .bootstrap import data_debug
from .memo import BootMemo, EvaluationCache
from .models import AnalysisResult, BootstrapSet, FunctionOutput, InputSample
from .resample import resample, resample_all
from .scoring import (
    ExclusionTest,
    FrequencyTest,
    NumericTest,
    flaggable_cells,
    normalize_scores,
    rank_scores,
    score_bootstraps,
    select_test,
    shade_color,
)

__all__ = [
    "data_debug",
    "BootMemo",
    "EvaluationCache",
    "AnalysisResult",
    "BootstrapSet",
    "FunctionOutput",
    "InputSample",
    "resample",
    "resample_all",
    "ExclusionTest",
    "FrequencyTest",
    "NumericTest",
    "flaggable_cells",
    "normalize_scores",
    "rank_scores",
    "score_bootstraps",
    "select_test",
    "shade_color",
]
