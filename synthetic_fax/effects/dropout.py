"""
Dropout effect - white squares where the fax line lost data.

Blocks are placed independently; overlaps are allowed.
"""

import logging
import math
from pathlib import Path
from typing import Optional

import numpy as np

from ..engine import RasterEngine
from ..operations import WHITE, Draw, DrawScript
from ..sampling import Param, ensure_rng, passes_batch, sample
from ..scratch import ScratchArena

logger = logging.getLogger(__name__)


def block_count(width: int, height: int, amount: float, block: int) -> int:
    return int(math.floor(width * height * amount / float(block * block)))


def build_dropout_script(width: int, height: int, amount: float, size: float,
                         rng: np.random.Generator) -> Optional[DrawScript]:
    """Draw-script of white squares covering roughly `amount` of the page.

    Returns None when fewer than one block fits.
    """
    block = 1 if size < 1 else int(math.floor(size))
    count = block_count(width, height, amount, block)
    if count < 1:
        return None

    script = DrawScript(fill=WHITE)
    xs = rng.integers(0, max(1, width - block), size=count)
    ys = rng.integers(0, max(1, height - block), size=count)
    for x, y in zip(xs, ys):
        script.rectangle(x, y, x + block - 1, y + block - 1)
    return script


def apply_dropout(cur: Path, arena: ScratchArena, engine: RasterEngine,
                  batch_perc: float, amount: Param, size: Param,
                  rng: Optional[np.random.Generator] = None) -> Path:
    rng = ensure_rng(rng)
    if not passes_batch(batch_perc, rng):
        return cur

    w, h = engine.identify(cur)
    script = build_dropout_script(w, h, sample(amount, rng),
                                  sample(size, rng, integer=True), rng)
    if script is None:
        logger.debug("%s: dropout skipped, no block fits", arena.name)
        return cur

    out = arena.path_for("rb")
    engine.transform(cur, out, [Draw(script)])
    arena.release(cur)
    logger.debug("%s: dropout drew %d blocks", arena.name, len(script))
    return out
