"""Data models for bootstrap analysis."""

from dataclasses import dataclass, field
from typing import Generic, Sequence, TypeVar

import numpy as np

from ..sheets.models import Address

T = TypeVar("T")


def _frozen(mask: np.ndarray) -> np.ndarray:
    mask = np.asarray(mask, dtype=bool)
    mask.setflags(write=False)
    return mask


@dataclass(frozen=True, eq=False)
class InputSample:
    """Values for one input range plus the original positions the draw included."""

    values: tuple[str, ...]
    includes: np.ndarray  # bool per original position, read-only

    def __post_init__(self):
        if len(self.includes) != len(self.values):
            raise ValueError(
                f"Inclusion mask has {len(self.includes)} positions for {len(self.values)} values"
            )
        object.__setattr__(self, "includes", _frozen(self.includes))

    @classmethod
    def initial(cls, values: Sequence[str]) -> "InputSample":
        """The unperturbed sample: every position included."""
        return cls(values=tuple(values), includes=np.ones(len(values), dtype=bool))

    def __len__(self) -> int:
        return len(self.values)


@dataclass(frozen=True, eq=False)
class FunctionOutput(Generic[T]):
    """An output value and the inclusion mask of the sample that produced it."""

    value: T
    includes: np.ndarray


class BootstrapSet:
    """
    Outputs indexed by (output, input range, draw).

    Draw lists may be shorter than requested when the time budget ran out.
    """

    def __init__(self, num_outputs: int, num_inputs: int):
        self.num_outputs = num_outputs
        self.num_inputs = num_inputs
        self._boots: list[list[list[FunctionOutput[str]]]] = [
            [[] for _ in range(num_inputs)] for _ in range(num_outputs)
        ]

    def add_draw(self, input_index: int, outputs: Sequence[FunctionOutput[str]]):
        """Record the outputs of one draw of an input range."""
        if len(outputs) != self.num_outputs:
            raise ValueError(f"Expected {self.num_outputs} outputs, got {len(outputs)}")
        for f, output in enumerate(outputs):
            self._boots[f][input_index].append(output)

    def draws(self, output_index: int, input_index: int) -> list[FunctionOutput[str]]:
        return self._boots[output_index][input_index]

    def draw_count(self, input_index: int) -> int:
        if self.num_outputs == 0:
            return 0
        return len(self._boots[0][input_index])


@dataclass
class AnalysisResult:
    """Outcome of one bootstrap analysis pass."""

    scores: dict[Address, int]  # insertion order follows terminal-input enumeration
    draws_requested: int
    draws_completed: int
    timed_out: bool = False
    cancelled: bool = False
    cache_hits: int = 0
    cache_misses: int = 0
    elapsed_ms: float = 0.0
    untested_inputs: list[str] = field(default_factory=list)

    @property
    def hit_rate(self) -> float:
        total = self.cache_hits + self.cache_misses
        return self.cache_hits / total if total else 0.0

    @property
    def complete(self) -> bool:
        return self.draws_completed == self.draws_requested
