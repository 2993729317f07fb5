"""Bootstrap resampling of input ranges."""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Optional, Sequence

import numpy as np

from .models import InputSample

logger = logging.getLogger(__name__)


def only_inputs_in_resample(original: InputSample, sample: InputSample) -> bool:
    """True when every value of ``sample`` occurs among the original values."""
    return set(sample.values) <= set(original.values)


def resample(count: int, original: InputSample, rng: np.random.Generator) -> list[InputSample]:
    """
    Draw ``count`` bootstrap samples from an input range.

    Each draw picks ``len(original)`` positions uniformly with replacement.
    A position is included in a draw when it was picked at least once.

    Args:
        count: Number of draws
        original: The unperturbed values of the range
        rng: Seeded generator; the same seed reproduces the same draws

    Returns:
        List of ``count`` samples, each as long as ``original``
    """
    n = len(original)
    if n == 0:
        raise ValueError("Cannot resample an empty input range")

    positions = rng.integers(0, n, size=(count, n))
    samples = []
    for row in positions:
        sample = InputSample(
            values=tuple(original.values[i] for i in row),
            includes=np.bincount(row, minlength=n) > 0,
        )
        assert only_inputs_in_resample(original, sample), "resample drew a foreign value"
        samples.append(sample)
    return samples


def resample_all(
    count: int,
    originals: Sequence[InputSample],
    seed: Optional[int] = None,
    max_workers: int = 1,
) -> list[list[InputSample]]:
    """
    Resample every input range.

    Each range gets its own generator spawned from one seed sequence, so the
    draws do not depend on evaluation order and may be generated in parallel.

    Args:
        count: Draws per range
        originals: Unperturbed samples, one per input range
        seed: Seed for reproducible draws (None for fresh entropy)
        max_workers: Thread pool size; 1 generates sequentially

    Returns:
        Draws per range, in the order of ``originals``
    """
    children = np.random.SeedSequence(seed).spawn(len(originals))
    rngs = [np.random.default_rng(child) for child in children]

    if max_workers > 1 and len(originals) > 1:
        logger.debug(f"Resampling {len(originals)} ranges with {max_workers} workers")
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            return list(pool.map(lambda pair: resample(count, *pair), zip(originals, rngs)))

    return [resample(count, original, rng) for original, rng in zip(originals, rngs)]
