"""
Random sampling helpers shared by the effects and the pipeline.

All randomness flows through an explicit numpy Generator so a whole batch can
be reproduced from one seed.
"""

from typing import Optional, Sequence, Tuple, Union

import numpy as np

Range = Tuple[float, float]
Param = Union[int, float, Range]


def make_rng(seed: Optional[int] = None) -> np.random.Generator:
    """Create the generator for a run; None gives fresh OS entropy."""
    return np.random.default_rng(seed)


def ensure_rng(rng: Optional[np.random.Generator]) -> np.random.Generator:
    return rng if rng is not None else np.random.default_rng()


def passes_batch(batch_perc: float, rng: np.random.Generator) -> bool:
    """Decide whether this document is part of the affected share of the batch.

    One uniform draw is made only when batch_perc < 1, and the document is
    skipped when the draw exceeds batch_perc. A zero share never passes.
    """
    if batch_perc >= 1:
        return True
    draw = rng.random()
    if batch_perc <= 0:
        return False
    return bool(draw <= batch_perc)


def sample(value: Param, rng: np.random.Generator, integer: bool = False):
    """Resolve a fixed value or a (min, max) pair into one concrete value.

    Integer pairs are sampled inclusively, continuous pairs uniformly.
    """
    if isinstance(value, (tuple, list)):
        lo, hi = value
        if integer:
            return int(rng.integers(int(lo), int(hi), endpoint=True))
        return float(lo + rng.random() * (hi - lo))
    return int(value) if integer else float(value)


def randint(rng: np.random.Generator, lo: int, hi: int) -> int:
    """Inclusive random integer; collapses to lo when hi < lo."""
    if hi <= lo:
        return int(lo)
    return int(rng.integers(lo, hi, endpoint=True))


def choice(rng: np.random.Generator, options: Sequence):
    return options[int(rng.integers(0, len(options)))]


def pick_param(fixed: Optional[float], lo: Optional[float], hi: Optional[float],
               rng: np.random.Generator, share: float = 1.0,
               pinned: bool = False) -> Param:
    """Choose between the fixed value and the (lo, hi) range for one document.

    The range is used when both bounds are configured and the document falls
    in `share` of the batch; `pinned` (debug runs) always keeps the fixed value.
    """
    has_range = lo is not None and hi is not None
    if pinned or not has_range:
        if fixed is None:
            return (lo, hi)
        return fixed
    if share >= 1 or rng.random() < share:
        return (lo, hi)
    if fixed is None:
        return (lo, hi)
    return fixed
