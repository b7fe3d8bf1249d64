"""
White-noise effect - single white pixels scattered over the page.
"""

import logging
import math
from pathlib import Path
from typing import Optional

import numpy as np

from ..engine import RasterEngine
from ..operations import WHITE, Color, Draw, DrawScript
from ..sampling import Param, ensure_rng, passes_batch, sample
from ..scratch import ScratchArena

logger = logging.getLogger(__name__)


def build_speckle_script(width: int, height: int, density: float,
                         rng: np.random.Generator,
                         color: Color = WHITE) -> Optional[DrawScript]:
    """Exactly floor(width * height * density) points, or None when zero."""
    count = int(math.floor(width * height * density))
    if count < 1:
        return None
    script = DrawScript(fill=color)
    xs = rng.integers(0, width, size=count)
    ys = rng.integers(0, height, size=count)
    for x, y in zip(xs, ys):
        script.point(x, y)
    return script


def apply_white_noise(cur: Path, arena: ScratchArena, engine: RasterEngine,
                      batch_perc: float, density: Param,
                      rng: Optional[np.random.Generator] = None) -> Path:
    rng = ensure_rng(rng)
    if not passes_batch(batch_perc, rng):
        return cur

    w, h = engine.identify(cur)
    script = build_speckle_script(w, h, sample(density, rng), rng)
    if script is None:
        return cur

    out = arena.path_for("noiseW")
    engine.transform(cur, out, [Draw(script)])
    arena.release(cur)
    logger.debug("%s: %d white speckles", arena.name, len(script))
    return out
