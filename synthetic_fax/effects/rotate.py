"""
Rotate effect - small random skew of the whole page, plus optional mirroring.

The canvas never changes size: the page is rotated about its center and the
uncovered corners are filled with white.
"""

import logging
from pathlib import Path
from typing import Optional, Sequence

import numpy as np

from ..engine import RasterEngine
from ..operations import WHITE, Extent, Flip, Flop, Rotate
from ..sampling import Param, choice, ensure_rng, passes_batch, sample
from ..scratch import ScratchArena

logger = logging.getLogger(__name__)

MIRROR_MODES = {
    "vertical": (Flip(),),
    "horizontal": (Flop(),),
    "both": (Flip(), Flop()),
    "horizontal+vertical": (Flip(), Flop()),
    "180": (Rotate(180.0),),
}


def apply_rotate(cur: Path, arena: ScratchArena, engine: RasterEngine,
                 batch_perc: float, angle: Param,
                 rng: Optional[np.random.Generator] = None) -> Path:
    """Rotate by `angle` degrees (fixed, or sampled from a (min, max) pair)."""
    rng = ensure_rng(rng)
    if not passes_batch(batch_perc, rng):
        return cur

    w, h = engine.identify(cur)
    degrees = sample(angle, rng)

    out = arena.path_for("rotated")
    engine.transform(cur, out, [Rotate(degrees, WHITE), Extent(w, h, WHITE)])
    arena.release(cur)
    logger.debug("%s: rotated %.3f deg", arena.name, degrees)
    return out


def apply_mirror(cur: Path, arena: ScratchArena, engine: RasterEngine,
                 batch_perc: float, modes: Sequence[str],
                 rng: Optional[np.random.Generator] = None) -> Path:
    """Mirror with one mode picked uniformly from `modes`."""
    rng = ensure_rng(rng)
    if not modes or not passes_batch(batch_perc, rng):
        return cur

    mode = choice(rng, list(modes))
    if mode not in MIRROR_MODES:
        raise ValueError(f"Unknown mirror mode: {mode!r}")

    out = arena.path_for("mirrored")
    engine.transform(cur, out, list(MIRROR_MODES[mode]))
    arena.release(cur)
    logger.debug("%s: mirrored (%s)", arena.name, mode)
    return out
