"""Memoized evaluation of bootstrap draws through the host."""

import logging
from typing import Callable, Optional, Sequence

from ..sheets.host import HostSession
from ..sheets.models import Address
from .models import FunctionOutput, InputSample

logger = logging.getLogger(__name__)

SubstitutionKey = tuple[tuple[Address, str], ...]


def substitution_key(addresses: Sequence[Address], values: Sequence[str]) -> SubstitutionKey:
    """The exact (address, value) pattern a draw writes into the host."""
    return tuple(zip(addresses, values))


class EvaluationCache:
    """
    In-memory map from substitution pattern to output vector.

    Scoped to one analysis pass: host state differs between passes, so a
    cache must never be reused across them.
    """

    def __init__(self):
        self._cache: dict[SubstitutionKey, tuple[str, ...]] = {}
        self.hits = 0
        self.misses = 0

    def get(self, key: SubstitutionKey) -> Optional[tuple[str, ...]]:
        """Return the stored outputs for a pattern, counting the hit or miss."""
        outputs = self._cache.get(key)
        if outputs is None:
            self.misses += 1
        else:
            self.hits += 1
        return outputs

    def store(self, key: SubstitutionKey, outputs: Sequence[str]):
        self._cache[key] = tuple(outputs)

    def size(self) -> int:
        return len(self._cache)


class BootMemo:
    """Substitutes draws into the host and captures the resulting outputs."""

    def __init__(self, host: HostSession, cache: Optional[EvaluationCache] = None):
        self.host = host
        self.cache = cache if cache is not None else EvaluationCache()
        self._dirty = False

    def fast_replace(
        self,
        addresses: Sequence[Address],
        original: InputSample,
        sample: InputSample,
        outputs: Sequence[Address],
    ) -> list[FunctionOutput[str]]:
        """
        Evaluate one draw of an input range.

        On a cache miss the draw is written into the host, the host is
        recalculated and the outputs are read back. On a hit the host is
        not touched. Either way the outputs carry this draw's inclusion mask.

        The host is left holding the draw; callers restore ``original`` once
        after the last draw of the range (see ``replace_all``).
        """
        if len(sample) != len(original):
            raise ValueError(
                f"Draw has {len(sample)} values but the range holds {len(original)}"
            )
        key = substitution_key(addresses, sample.values)
        values = self.cache.get(key)
        if values is None:
            # a failed write may leave part of the draw behind
            self._dirty = True
            self.host.write_values(addresses, sample.values)
            self.host.recalculate()
            values = tuple(self.host.read_values(outputs))
            self.cache.store(key, values)
        return [FunctionOutput(value, sample.includes) for value in values]

    def replace_all(
        self,
        addresses: Sequence[Address],
        original: InputSample,
        draws: Sequence[InputSample],
        outputs: Sequence[Address],
        on_draw: Optional[Callable[[], None]] = None,
        should_stop: Optional[Callable[[], bool]] = None,
    ) -> list[list[FunctionOutput[str]]]:
        """
        Evaluate the draws of one input range, then restore it once.

        Args:
            addresses: Cells of the input range
            original: Unperturbed values, written back at the end
            draws: Bootstrap samples to evaluate in order
            outputs: Terminal output cells to read
            on_draw: Called after each evaluated draw (progress tick)
            should_stop: Checked before each draw; True stops scheduling draws

        Returns:
            Output vectors of the evaluated draws (may be fewer than ``draws``)

        Raises:
            HostIOError: If the host fails; restoration is attempted first
        """
        results = []
        self._dirty = False
        completed = False
        try:
            for sample in draws:
                if should_stop is not None and should_stop():
                    break
                results.append(self.fast_replace(addresses, original, sample, outputs))
                if on_draw is not None:
                    on_draw()
            completed = True
        finally:
            if self._dirty:
                if completed:
                    self.restore(addresses, original)
                else:
                    self._restore_best_effort(addresses, original)
        return results

    def restore(self, addresses: Sequence[Address], original: InputSample):
        """Write the original values back and recalculate."""
        self.host.write_values(addresses, original.values)
        self.host.recalculate()
        self._dirty = False

    def _restore_best_effort(self, addresses: Sequence[Address], original: InputSample):
        try:
            self.restore(addresses, original)
        except Exception as e:
            logger.error(f"Could not restore original values of {len(addresses)} cells: {e}")
